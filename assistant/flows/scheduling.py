"""
assistant/flows/scheduling.py

Calendar scheduling sub-dialogue.

init -> parsing_request -> collecting_date -> suggesting_time -> confirming -> done

- A request with a date and a time goes straight to confirming, unless that time has passed or
  clashes with an existing event, in which case alternatives are offered.
- Date only -> suggesting_time. Nothing usable -> collecting_date.
- Suggestions come from the pattern analyzer, else the working-hours gap finder.
- confirming only accepts an exact 'yes' / 'no'; other answers re-prompt.
- confirm_pending / handle_time_selection resolve the orchestrator's markers.
- Dates before today are refused; the flow asks for another date.
- Mentioning a video call (request or slot choice) adds a Google Meet link to the event.
- The flow times out 10 minutes after it started.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timedelta
from enum import Enum

from assistant.calendar_patterns import MAX_SLOTS, TimeSlot
from assistant.errors import FlowStateError
from assistant.replies import NeedsChoice, NeedsConfirmation, Plain
from assistant.router import DEFAULT_DURATION, DEFAULT_TITLE, finalize_request
from util.dates import ISO_DATE_FMT, combine, format_clock, format_date, parse_date_phrase


logger = logging.getLogger(__name__)

SCHEDULE_FLOW_TIMEOUT = 10 * 60

CANCEL_WORDS = {"cancel", "stop", "never mind", "nevermind"}
SELECTION_RX = re.compile(r"(?:schedule\s+)?(?:option\s+)?(?:#\s*)?([1-9])\.?(?:,?\s+(?:with|via|on|over|using|and)\b.*)?")
VIDEO_RX = re.compile(
    r"\b(?:video(?:\s*call)?|google meet|meet link|hangouts?|(?:with|on|via|over) (?:a )?meet)\b", re.IGNORECASE
)

RECOVERY_MESSAGE = "Something went wrong while scheduling that. Let's start over. What would you like to schedule?"
TIMEOUT_MESSAGE = "Our scheduling session timed out. Let's start over. What would you like to schedule?"
NOT_PENDING_MESSAGE = "That request is no longer pending. Would you like to schedule something new?"


class ScheduleStage(str, Enum):
    INIT = "init"
    PARSING_REQUEST = "parsing_request"
    COLLECTING_DATE = "collecting_date"
    SUGGESTING_TIME = "suggesting_time"
    CONFIRMING = "confirming"
    DONE = "done"


@dataclass
class ScheduleState:
    active: bool = False
    stage: ScheduleStage = ScheduleStage.INIT
    title: str = DEFAULT_TITLE
    day: date | None = None
    duration: int = DEFAULT_DURATION
    description: str | None = None
    attendees: list[str] = field(default_factory=list)
    location: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    suggestions: list[TimeSlot] = field(default_factory=list)
    pending_id: str | None = None
    started_at: datetime | None = None
    video_conference: bool = False

    def reset(self):
        fresh = ScheduleState()
        for f in fields(self):
            setattr(self, f.name, getattr(fresh, f.name))

    def parsed_input(self):
        """JSON-safe request details, carried in suggestion markers."""
        return {
            "title": self.title,
            "date": self.day.strftime(ISO_DATE_FMT) if self.day else None,
            "duration": self.duration,
            "description": self.description,
            "attendees": list(self.attendees),
            "location": self.location,
            "videoConference": self.video_conference,
        }

    def load(self, parsed):
        self.title = parsed.get("title") or DEFAULT_TITLE
        self.duration = int(parsed.get("duration") or DEFAULT_DURATION)
        self.description = parsed.get("description")
        self.attendees = list(parsed.get("attendees") or [])
        self.location = parsed.get("location")
        self.video_conference = bool(parsed.get("videoConference"))
        raw_day = parsed.get("date")
        self.day = datetime.strptime(raw_day, ISO_DATE_FMT).date() if raw_day else None


class SchedulingFlow:
    def __init__(self, router, calendar, patterns, tz, clock, timeout=SCHEDULE_FLOW_TIMEOUT):
        self.router = router
        self.calendar = calendar
        self.patterns = patterns
        self.tz = tz
        self.clock = clock
        self.timeout = timeout

    # ---- entry points ----

    def handle(self, state: ScheduleState, text, entities=None):
        return self._guarded(state, self._handle, state, (text or "").strip(), entities)

    def confirm_pending(self, state: ScheduleState, pending_id, approve):
        return self._guarded(state, self._confirm_pending, state, pending_id, approve)

    def handle_time_selection(self, state: ScheduleState, text, context):
        return self._guarded(state, self._time_selection, state, (text or "").strip(), context or {})

    def _guarded(self, state, fn, *args):
        try:
            return fn(*args)
        except Exception:
            logger.exception("Unexpected error in scheduling flow (stage=%s)", state.stage)
            state.reset()
            return Plain(RECOVERY_MESSAGE)

    def _timed_out(self, state):
        if state.active and (self.clock() - state.started_at).total_seconds() > self.timeout:
            logger.info("Scheduling flow timed out at stage %s", state.stage.value)
            state.reset()
            return True
        return False

    # ---- turn handling ----

    def _handle(self, state, text, entities):
        if not state.active:
            return self._start(state, text, entities)
        if self._timed_out(state):
            return Plain(TIMEOUT_MESSAGE)
        if text.lower() in CANCEL_WORDS:
            state.reset()
            return Plain("Okay, I've stopped scheduling that. What else can I help you with?")

        match state.stage:
            case ScheduleStage.COLLECTING_DATE:
                day = parse_date_phrase(text, self._today())
                if not day:
                    return Plain("I couldn't work out the date. Could you give me one, like 'tomorrow' or '2025-06-12'?")
                if day < self._today():
                    return Plain(f"{format_date(day)} has already passed. Could you give me a date from today on?")
                state.day = day
                return self._suggest(state)
            case ScheduleStage.SUGGESTING_TIME:
                return self._select(state, text)
            case ScheduleStage.CONFIRMING:
                answer = text.lower()
                if answer == "yes":
                    return self._create(state)
                if answer == "no":
                    state.reset()
                    return Plain("No problem, I won't schedule it. What else can I help you with?")
                return NeedsConfirmation(
                    f"Please reply 'yes' to schedule \"{state.title}\" or 'no' to cancel.",
                    state.pending_id,
                    state.title,
                )
            case _:
                raise FlowStateError(f"scheduling flow cannot continue from stage {state.stage.value}")

    def _start(self, state, text, entities):
        state.reset()
        state.active = True
        state.started_at = self.clock()
        state.stage = ScheduleStage.PARSING_REQUEST
        parsed = finalize_request(entities) if entities else self.router.parse_date_and_time(text)
        state.load(parsed)
        state.video_conference = state.video_conference or bool(VIDEO_RX.search(text))
        logger.info("Scheduling %r: date=%s time=%s duration=%s", state.title, state.day, parsed.get("time"),
                    state.duration)

        if state.day and state.day < self._today():
            return self._ask_date(state, f"{format_date(state.day)} has already passed. ")

        if state.day and parsed.get("time"):
            start = combine(state.day, parsed["time"], self.tz)
            end = start + timedelta(minutes=state.duration)
            if start < self.clock():
                return self._suggest(state, note="That time has already passed. ")
            conflicts = self.calendar.check_conflicts(start, end)
            if conflicts:
                name = conflicts[0].get("summary") or "another event"
                return self._suggest(state, note=f"You already have \"{name}\" at that time. ")
            state.start, state.end = start, end
            return self._ask_confirmation(state)

        if state.day:
            return self._suggest(state)
        return self._ask_date(state)

    def _today(self):
        return self.clock().astimezone(self.tz).date()

    def _ask_date(self, state, note=""):
        state.stage = ScheduleStage.COLLECTING_DATE
        state.day = None
        return Plain(f"{note}What date would you like to schedule \"{state.title}\" for?")

    def _suggest(self, state, note=""):
        state.stage = ScheduleStage.SUGGESTING_TIME
        slots = self.patterns.suggest(state.day, state.duration, state.title)[:MAX_SLOTS]
        if not slots:
            day = format_date(state.day)
            state.stage = ScheduleStage.COLLECTING_DATE
            state.day = None
            return Plain(f"{note}I couldn't find any open time on {day}. Is there another date that works?")
        state.suggestions = slots
        return self._choice(state, f"{note}Here are some available times for \"{state.title}\" "
                                   f"on {format_date(state.day)}:")

    def _choice(self, state, header):
        lines = [f"{i}. {slot.display_text}" for i, slot in enumerate(state.suggestions, start=1)]
        text = header + "\n" + "\n".join(lines) + "\n\nReply with the number of the option you'd like."
        return NeedsChoice(text, [s.to_dict() for s in state.suggestions], state.parsed_input())

    def _select(self, state, text):
        m = SELECTION_RX.fullmatch(text.lower())
        index = int(m.group(1)) if m else 0
        if not 1 <= index <= len(state.suggestions):
            return self._choice(state, f"Please pick one of the options (1-{len(state.suggestions)}):")
        slot = state.suggestions[index - 1]
        if VIDEO_RX.search(text):
            state.video_conference = True
        state.start, state.end = slot.start, slot.end
        state.day = slot.start.date()
        return self._ask_confirmation(state)

    def _ask_confirmation(self, state):
        state.stage = ScheduleStage.CONFIRMING
        state.pending_id = uuid.uuid4().hex
        video = " with a video call" if state.video_conference else ""
        return NeedsConfirmation(
            f"Should I schedule \"{state.title}\" on {format_date(state.start.date())} at "
            f"{format_clock(state.start)} for {state.duration} minutes{video}? (yes/no)",
            state.pending_id,
            state.title,
        )

    def _create(self, state):
        title, start = state.title, state.start
        result = self.calendar.create_event({
            "title": title,
            "description": state.description,
            "start": start,
            "end": state.end,
            "attendees": state.attendees,
            "location": state.location,
            "video_conference": state.video_conference,
        })
        state.reset()
        if not result["success"]:
            return Plain("I couldn't add that event to your calendar. Please try again in a moment.")
        reply = f"Done! \"{title}\" is on your calendar for {format_date(start.date())} at {format_clock(start)}."
        if result.get("eventLink"):
            reply += f"\n{result['eventLink']}"
        if result.get("meetLink"):
            reply += f"\nVideo call: {result['meetLink']}"
        return Plain(reply)

    # ---- marker resolution ----

    def _confirm_pending(self, state, pending_id, approve):
        if self._timed_out(state):
            return Plain(TIMEOUT_MESSAGE)
        if not state.active or state.stage is not ScheduleStage.CONFIRMING or state.pending_id != pending_id:
            return Plain(NOT_PENDING_MESSAGE)
        if approve:
            return self._create(state)
        state.reset()
        return Plain("Okay, I won't schedule it. What else can I help you with?")

    def _time_selection(self, state, text, context):
        if self._timed_out(state):
            return Plain(TIMEOUT_MESSAGE)
        if not state.active or state.stage is not ScheduleStage.SUGGESTING_TIME:
            self._rehydrate(state, context)
        if text.lower() in CANCEL_WORDS:
            state.reset()
            return Plain("Okay, I've stopped scheduling that. What else can I help you with?")
        return self._select(state, text)

    def _rehydrate(self, state, context):
        suggestions = [TimeSlot.from_dict(s, self.tz) for s in context.get("suggestions") or []]
        if not suggestions:
            raise FlowStateError("suggestion marker carries no slots")
        state.reset()
        state.active = True
        state.started_at = self.clock()
        state.load(context.get("parsedInput") or {})
        state.suggestions = suggestions
        state.stage = ScheduleStage.SUGGESTING_TIME
        logger.info("Rehydrated scheduling flow for %r from suggestion marker", state.title)
