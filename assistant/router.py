"""
assistant/router.py

Intent detection and entity extraction from free text.

Key pieces:
- classify_intent(text): gateway classification with the fixed category prompt, then a keyword
  table (whole-word matching for single words, inflections included), default 'chat'.
- extract_entities(text, intent, mail_flow_active): intent-specific fields. Mail extraction is
  skipped entirely while a mail flow is active for the session.
- parse_date_and_time(text): strict-JSON gateway parse validated with pydantic, falling back to
  regex/heuristics (ISO and relative dates, clock times, "called X" titles, attendee emails).
Every gateway -> regex path is an ordered FallbackChain.
"""

import logging
import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ValidationError as PydanticValidationError, field_validator

from assistant.errors import ParseError
from assistant.postprocess import clean_line, extract_json_object
from assistant.prompts import classify_prompt, mail_entities_prompt, research_topic_prompt, schedule_parse_prompt
from util.dates import ISO_DATE_FMT, infer_duration, parse_clock_time, parse_date_phrase, resolve_tz
from util.fallback import FAILED, FallbackChain, Strategy


logger = logging.getLogger(__name__)

DEFAULT_DURATION = 60
DEFAULT_TITLE = "New Event"
DEFAULT_TOPIC = "AI"


class Intent(str, Enum):
    RESEARCH = "research"
    CALENDAR = "calendar"
    MAIL = "mail"
    EXIT = "exit"
    CHAT = "chat"


# Priority order matters: the first token found in the model reply wins.
INTENT_TOKENS = [
    (Intent.RESEARCH, "research_intent"),
    (Intent.CALENDAR, "calendar_intent"),
    (Intent.MAIL, "email_intent"),
    (Intent.EXIT, "exit_intent"),
]

INTENT_HINTS = [
    (Intent.RESEARCH, {"research", "look up", "find out about", "tell me about"}),
    (Intent.CALENDAR, {"schedule", "calendar", "appointment", "book a", "set up a meeting"}),
    (Intent.MAIL, {"email", "e-mail", "mail", "write to", "send a message"}),
    (Intent.EXIT, {"quit", "exit", "bye", "goodbye"}),
]

EMAIL_RX = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_STOP_WORDS = r"on|at|for|tomorrow|today|tonight|next|this|from|with|in|by|to"
TITLE_RX = re.compile(
    rf"\b(?:called|titled|named)\s+[\"']?(.+?)[\"']?(?=\s+(?:{_STOP_WORDS})\b|[,.!?]|$)",
    re.IGNORECASE,
)
COMMAND_RX = re.compile(
    r"^\s*(?:(?:can|could|would)\s+you\s+)?(?:please\s+)?"
    r"(?:schedule|book|set\s+up|create|add|plan|put|arrange|organi[sz]e)\s+(?:me\s+)?(?:an?\s+|the\s+)?",
    re.IGNORECASE,
)
LEADING_PHRASE_RX = re.compile(rf"^(.+?)(?=\s+(?:{_STOP_WORDS})\b|\s+\d|[,.!?]|$)", re.IGNORECASE)
LOCATION_RX = re.compile(r"\b(?:at|in)\s+(?:the\s+)?([A-Z][\w'&-]*(?:\s+[A-Z0-9][\w'&-]*)*)")
END_TIME_RX = re.compile(
    r"(?:\bto\b|\buntil\b|\btill\b|-|–)\s*"
    r"((?:1[0-2]|0?[1-9])(?::[0-5]\d)?\s*[ap]\.?m\.?|(?:[01]?\d|2[0-3]):[0-5]\d|noon|midnight)",
    re.IGNORECASE,
)
DURATION_RX = re.compile(
    r"\bfor\s+(half\s+an\s+hour|an?\s+hour|\d+(?:\.\d+)?)\s*(hours?|hrs?|h|minutes?|mins?|m)?\b",
    re.IGNORECASE,
)

SUBJECT_RX = re.compile(r"\bsubject\s*(?::|is\b)?\s*[\"']?(.+?)[\"']?(?=\s+and\b|\s+body\b|$)", re.IGNORECASE)
BODY_RX = re.compile(r"\bbody\s*(?::|is\b)?\s*[\"']?(.+?)[\"']?$", re.IGNORECASE)
ABOUT_RX = re.compile(r"\babout\s+(.+?)[.!?]*$", re.IGNORECASE)


def _inflected(word: str) -> str:
    """Pattern for a word and its plain inflections (emails, emailed, scheduling, ...)."""
    if word.endswith("e"):
        return re.escape(word[:-1]) + r"(?:e|es|ed|ing|er|ers)"
    return re.escape(word) + r"(?:s|es|ed|ing|er|ers)?"


def contains_hint(low: str, hints: set[str]) -> bool:
    """Return True if any hint in `hints` appears in `low`.

    - Single-token hints are matched as whole words, inflections included
      ('emailing' matches 'email', 'mailbox' does not match 'mail').
    - Multi-word phrases are matched as substrings (already lowercased).
    """
    for h in hints:
        if " " in h:
            if h in low:
                return True
            continue
        if re.search(r"\b" + _inflected(h) + r"\b", low):
            return True
    return False


def _missing_to_none(value):
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.upper() == "MISSING" or text.lower() in {"null", "none"}:
        return None
    return text


class ParsedRequest(BaseModel):
    """Scheduling fields returned by the model; malformed values degrade to None."""

    date: str | None = None
    time: str | None = None
    endTime: str | None = None
    duration: int | None = None
    title: str | None = None
    description: str | None = None
    attendees: list[str] = []
    location: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _iso_date(cls, v):
        v = _missing_to_none(v)
        if v is None:
            return None
        try:
            return datetime.strptime(v[:10], ISO_DATE_FMT).strftime(ISO_DATE_FMT)
        except ValueError:
            return None

    @field_validator("time", "endTime", mode="before")
    @classmethod
    def _clock(cls, v):
        v = _missing_to_none(v)
        return parse_clock_time(v) if v else None

    @field_validator("duration", mode="before")
    @classmethod
    def _minutes(cls, v):
        try:
            minutes = int(float(v))
        except (TypeError, ValueError):
            return None
        return minutes if minutes > 0 else None

    @field_validator("title", "description", "location", mode="before")
    @classmethod
    def _text(cls, v):
        return _missing_to_none(v)

    @field_validator("attendees", mode="before")
    @classmethod
    def _emails(cls, v):
        if not isinstance(v, (list, tuple)):
            return []
        return [a.strip() for a in v if isinstance(a, str) and EMAIL_RX.fullmatch(a.strip())]


def finalize_request(parsed: dict) -> dict:
    """Fill defaults: duration from start/end when missing, else 60; title 'New Event'."""
    out = dict(parsed)
    if not out.get("duration"):
        if out.get("time") and out.get("endTime"):
            out["duration"] = infer_duration(out["time"], out["endTime"])
        else:
            out["duration"] = DEFAULT_DURATION
    out["title"] = out.get("title") or DEFAULT_TITLE
    out.setdefault("attendees", [])
    return out


def _duration_from_text(text):
    m = DURATION_RX.search(text)
    if not m:
        return None
    amount, unit = m.group(1).lower(), (m.group(2) or "").lower()
    if amount.startswith("half"):
        return 30
    if amount in {"a hour", "an hour"}:
        return 60
    value = float(amount)
    if unit.startswith("h"):
        return int(value * 60)
    if unit.startswith("m"):
        return int(value)
    return None


def _title_from_text(text):
    m = TITLE_RX.search(text)
    if m:
        return m.group(1).strip()
    stripped = COMMAND_RX.sub("", text, count=1)
    if stripped == text:
        return None
    stripped = stripped.strip()
    if not stripped or stripped[0].isdigit() or re.match(rf"(?:{_STOP_WORDS})\b", stripped, re.IGNORECASE):
        return None
    m = LEADING_PHRASE_RX.match(stripped)
    if not m:
        return None
    phrase = m.group(1).strip()
    return phrase[:1].upper() + phrase[1:] if phrase else None


class IntentRouter:
    def __init__(self, gateway, tz=None, clock=None):
        self.gateway = gateway
        self.tz = tz or resolve_tz()
        self.clock = clock or (lambda: datetime.now(self.tz))
        self._classify = FallbackChain(
            "classify_intent",
            [Strategy("gateway", self._llm_classify), Strategy("keywords", self._keyword_classify)],
            default=Intent.CHAT,
        )
        self._schedule = FallbackChain(
            "parse_date_and_time",
            [Strategy("gateway", self._llm_parse_date_and_time), Strategy("regex", self.regex_parse_date_and_time)],
        )
        self._mail = FallbackChain(
            "mail_entities",
            [Strategy("gateway", self._llm_mail_entities), Strategy("regex", self.regex_mail_entities)],
        )
        self._research = FallbackChain(
            "research_topic",
            [Strategy("gateway", self._llm_research_topic), Strategy("text", self._text_research_topic)],
            default=lambda: {"topic": DEFAULT_TOPIC},
        )

    def today(self):
        return self.clock().astimezone(self.tz).date()

    # ---- intent ----

    def classify_intent(self, text) -> Intent:
        return self._classify.run(text)

    def _llm_classify(self, text):
        low = self.gateway.generate(classify_prompt(text)).lower()
        for intent, token in INTENT_TOKENS:
            if token in low:
                return intent
        return FAILED

    def _keyword_classify(self, text):
        low = (text or "").lower()
        for intent, hints in INTENT_HINTS:
            if contains_hint(low, hints):
                return intent
        return FAILED

    # ---- entities ----

    def extract_entities(self, text, intent, mail_flow_active=False) -> dict:
        intent = Intent(intent)
        if intent is Intent.RESEARCH:
            return self._research.run(text)
        if intent is Intent.CALENDAR:
            return self.parse_date_and_time(text)
        if intent is Intent.MAIL:
            if mail_flow_active:
                return {}
            return self._mail.run(text)
        return {}

    def _llm_research_topic(self, text):
        topic = clean_line(self.gateway.generate(research_topic_prompt(text)))
        return {"topic": topic or DEFAULT_TOPIC}

    def _text_research_topic(self, text):
        low = text.lower()
        idx = low.find("research")
        rest = text[idx + len("research"):] if idx != -1 else text
        topic = re.sub(r"^\s*(?:on|about|into|for)\s+", "", rest, flags=re.IGNORECASE).strip(" .?!")
        return {"topic": topic or DEFAULT_TOPIC}

    def _llm_mail_entities(self, text):
        data = extract_json_object(self.gateway.generate(mail_entities_prompt(text)))
        to = _missing_to_none(data.get("to"))
        match = EMAIL_RX.search(to) if to else None
        return {
            "to": match.group(0) if match else None,
            "subject": _missing_to_none(data.get("subject")),
            "body": _missing_to_none(data.get("body")),
        }

    def regex_mail_entities(self, text):
        to = EMAIL_RX.search(text)
        subject = SUBJECT_RX.search(text)
        body = BODY_RX.search(text)
        out = {
            "to": to.group(0) if to else None,
            "subject": subject.group(1).strip() if subject else None,
            "body": body.group(1).strip() if body else None,
        }
        if not out["subject"]:
            about = ABOUT_RX.search(text)
            if about:
                out["subject"] = about.group(1).strip()
        return out

    # ---- scheduling ----

    def parse_date_and_time(self, text) -> dict:
        return finalize_request(self._schedule.run(text))

    def _llm_parse_date_and_time(self, text):
        raw = extract_json_object(self.gateway.generate(schedule_parse_prompt(text, self.today().isoformat())))
        try:
            parsed = ParsedRequest.model_validate(raw).model_dump()
        except PydanticValidationError as exc:
            raise ParseError(f"scheduling parse did not validate: {exc}") from exc
        if not parsed["date"] and not parsed["time"]:
            # nothing usable; let the regex pass have a go
            return FAILED
        return parsed

    def regex_parse_date_and_time(self, text) -> dict:
        text = text or ""
        day = parse_date_phrase(text, self.today())
        end = None
        start = None
        m = END_TIME_RX.search(text)
        if m:
            start = parse_clock_time(text[:m.start()])
            if start:
                end = parse_clock_time(m.group(1))
        if not start:
            start = parse_clock_time(text)
        location = LOCATION_RX.search(text)
        parsed = {
            "date": day.strftime(ISO_DATE_FMT) if day else None,
            "time": start,
            "endTime": end,
            "duration": _duration_from_text(text),
            "title": _title_from_text(text),
            "description": None,
            "attendees": EMAIL_RX.findall(text),
            "location": location.group(1).strip() if location else None,
        }
        logger.debug("regex scheduling parse: %s", parsed)
        return parsed
