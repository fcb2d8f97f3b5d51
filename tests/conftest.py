"""Shared fixtures: scripted completion gateway, in-memory calendar and mailbox, fixed clocks."""

import base64
from datetime import date, datetime, time, timedelta, timezone

import pytest
from dateutil import parser

from assistant.config import Settings
from assistant.errors import BackendError, GatewayError
from assistant.orchestrator import Assistant
from assistant.store import InMemoryConversationStore
from util.cache import TTLCache
from util.retry import RetryPolicy


# Tuesday morning, before the working day starts.
FIXED_NOW = datetime(2025, 6, 10, 8, 0, tzinfo=timezone.utc)
TODAY = FIXED_NOW.date()
TOMORROW = TODAY + timedelta(days=1)

# Prompt fragments that identify each gateway call.
CLASSIFY = "Classify the intent"
SCHEDULE_PARSE = "Parse this scheduling request"
MAIL_ENTITIES = "Extract the following information"
RESEARCH_TOPIC = "Extract the research topic"
SLOT_SUGGESTIONS = "Given the following events"
STYLE_ANALYSIS = "Analyze these previous emails"
CONTEXT_CHECK = "Analyze this email purpose"
DRAFT = "Generate a very natural"
SUBJECT = "Generate a natural, human-sounding email subject"


class FakeClock:
    """Aware datetime clock that only moves when told to."""

    def __init__(self, now=FIXED_NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeTime:
    """Epoch-seconds clock for the cache and the session registry."""

    def __init__(self, start=1_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeGateway:
    """Answers prompts by substring rules; anything unmatched raises GatewayError."""

    def __init__(self, chat_reply="Happy to help!"):
        self.rules = []
        self.prompts = []
        self.chat_calls = []
        self.chat_reply = chat_reply

    def on(self, needle, reply):
        self.rules.append((needle, reply))
        return self

    def prompts_for(self, needle):
        return [p for p in self.prompts if needle in p]

    def generate(self, prompt):
        self.prompts.append(prompt)
        for needle, reply in self.rules:
            if needle in prompt:
                if isinstance(reply, Exception):
                    raise reply
                return reply(prompt) if callable(reply) else reply
        raise GatewayError("no scripted response")

    def generate_chat(self, history, message):
        self.chat_calls.append((list(history), message))
        if isinstance(self.chat_reply, Exception):
            raise self.chat_reply
        return self.chat_reply


def timed_event(summary, start, end):
    return {"summary": summary, "start": {"dateTime": start.isoformat()}, "end": {"dateTime": end.isoformat()}}


def all_day_event(summary, day):
    return {
        "summary": summary,
        "start": {"date": day.isoformat()},
        "end": {"date": (day + timedelta(days=1)).isoformat()},
    }


def at(day, hour, minute=0):
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


def _event_span(event, tz):
    start, end = event["start"], event["end"]
    if "dateTime" in start:
        return parser.isoparse(start["dateTime"]), parser.isoparse(end["dateTime"])
    return (datetime.combine(date.fromisoformat(start["date"]), time.min, tzinfo=tz),
            datetime.combine(date.fromisoformat(end["date"]), time.min, tzinfo=tz))


class FakeCalendar:
    def __init__(self, events=None):
        self.events = list(events or [])
        self.created = []
        self.list_calls = []
        self.fail_list = False
        self.fail_create = False

    def list_events(self, time_min, time_max):
        self.list_calls.append((time_min, time_max))
        if self.fail_list:
            raise BackendError("calendar unavailable")
        found = []
        for ev in self.events:
            start, end = _event_span(ev, time_min.tzinfo)
            if start < time_max and end > time_min:
                found.append(ev)
        return found

    def create_event(self, details):
        if self.fail_create:
            raise BackendError("calendar insert rejected")
        self.created.append(details)
        n = len(self.created)
        created = {"id": f"evt-{n}", "htmlLink": f"https://calendar.example/evt-{n}"}
        if details.get("video_conference"):
            created["meetLink"] = f"https://meet.example/evt-{n}"
        return created


def b64(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def gmail_message(message_id, text):
    return {"id": message_id, "payload": {"mimeType": "text/plain", "body": {"data": b64(text)}}}


class FakeMail:
    def __init__(self, messages=None, page_size=5):
        self.messages = {m["id"]: m for m in (messages or [])}
        self.page_size = page_size
        self.sent = []
        self.list_calls = []
        self.get_calls = []
        self.fail_ids = set()
        self.fail_list = False
        self.fail_send = False

    def list_messages(self, query, page_token=None, max_results=5):
        self.list_calls.append((query, page_token, max_results))
        if self.fail_list:
            raise BackendError("mail search unavailable")
        ids = sorted(self.messages)
        start = int(page_token or 0)
        size = min(self.page_size, max_results)
        page = {"messages": [{"id": i} for i in ids[start:start + size]]}
        if start + size < len(ids):
            page["nextPageToken"] = str(start + size)
        return page

    def get_message(self, message_id):
        self.get_calls.append(message_id)
        if message_id in self.fail_ids:
            raise BackendError(f"could not load {message_id}")
        return self.messages[message_id]

    def send(self, to, subject, body):
        if self.fail_send:
            raise BackendError("send rejected")
        self.sent.append((to, subject, body))
        return {"id": f"msg-{len(self.sent)}"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tz():
    return timezone.utc


@pytest.fixture
def ticks():
    return FakeTime()


@pytest.fixture
def cache(ticks):
    return TTLCache(max_size=100, default_ttl=60, cleanup_interval=300, clock=ticks)


@pytest.fixture
def no_wait_retry():
    return RetryPolicy(max_attempts=3, base_delay=1.0, factor=2.0, sleep=lambda _s: None)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def mailbox():
    return FakeMail()


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def make_assistant(gateway, calendar, mailbox, store, clock, tz, cache, no_wait_retry):
    def build(**overrides):
        kwargs = dict(
            gateway=gateway, calendar_backend=calendar, mail_backend=mailbox, store=store,
            cache=cache, clock=clock, tz=tz, retry=no_wait_retry,
        )
        kwargs.update(overrides)
        return Assistant.from_settings(Settings(timezone="UTC"), **kwargs)
    return build


@pytest.fixture
def assistant(make_assistant):
    return make_assistant()
