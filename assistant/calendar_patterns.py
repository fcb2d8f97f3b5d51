"""
assistant/calendar_patterns.py

Time-slot suggestions for new events.
- analyze_event_patterns: model-proposed slots (up to 3) given the events two days either side
  of the target date; [] when the model fails or answers with something unusable
- find_available_time_slots: deterministic gap search inside working hours, 30-minute aligned,
  all-day events ignored, at most 5 slots
- suggest: the two above as an ordered fallback chain
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from assistant.errors import GatewayError, ParseError
from assistant.postprocess import extract_json_array
from assistant.prompts import slot_suggestion_prompt
from assistant.tools.calendar import timed_bounds
from util.dates import ceil_to_half_hour, combine, day_bounds, format_range, parse_iso_datetime
from util.fallback import FAILED, FallbackChain, Strategy


logger = logging.getLogger(__name__)

MAX_SLOTS = 5
MAX_MODEL_SLOTS = 3
SLOT_STEP = timedelta(minutes=30)
PATTERN_WINDOW_DAYS = 2


@dataclass
class TimeSlot:
    start: datetime
    end: datetime
    display_text: str

    @classmethod
    def between(cls, start, end):
        return cls(start=start, end=end, display_text=format_range(start, end))

    def to_dict(self):
        return {"start": self.start.isoformat(), "end": self.end.isoformat(), "displayText": self.display_text}

    @classmethod
    def from_dict(cls, data, tz):
        start = parse_iso_datetime(data["start"], tz)
        end = parse_iso_datetime(data["end"], tz)
        display = data.get("displayText") or format_range(start, end)
        return cls(start=start, end=end, display_text=str(display))


class PatternAnalyzer:
    def __init__(self, calendar, gateway, tz, clock=None, workday_start=9, workday_end=17):
        self.calendar = calendar
        self.gateway = gateway
        self.tz = tz
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.workday_start = workday_start
        self.workday_end = workday_end
        self._chain = FallbackChain(
            "slot_suggestions",
            [Strategy("patterns", self._patterns_or_decline), Strategy("gaps", self.find_available_time_slots)],
            default=list,
        )

    def suggest(self, target_date, duration, purpose):
        return self._chain.run(target_date, duration, purpose)

    def _patterns_or_decline(self, target_date, duration, purpose):
        return self.analyze_event_patterns(target_date, duration, purpose) or FAILED

    def analyze_event_patterns(self, target_date, duration, purpose):
        window_start, _ = day_bounds(target_date - timedelta(days=PATTERN_WINDOW_DAYS), self.tz)
        _, window_end = day_bounds(target_date + timedelta(days=PATTERN_WINDOW_DAYS), self.tz)
        events = self.calendar.get_events(window_start, window_end)
        prompt = slot_suggestion_prompt(events, purpose or "meeting", target_date.isoformat(), duration)
        try:
            raw = extract_json_array(self.gateway.generate(prompt))
        except (GatewayError, ParseError) as exc:
            logger.info("Pattern-based suggestions unavailable: %s", exc)
            return []

        now = self.clock().astimezone(self.tz)
        slots = []
        for item in raw:
            try:
                slot = TimeSlot.from_dict(item, self.tz)
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.debug("Skipping malformed suggested slot: %r", item)
                continue
            if slot.start.date() != target_date or slot.end <= slot.start or slot.start < now:
                continue
            slots.append(slot)
            if len(slots) >= MAX_MODEL_SLOTS:
                break
        return slots

    def find_available_time_slots(self, target_date, duration, purpose=None):
        now = self.clock().astimezone(self.tz)
        if target_date < now.date():
            return []
        day_start, day_end = day_bounds(target_date, self.tz)
        events = self.calendar.get_events(day_start, day_end)
        work_start = combine(target_date, f"{self.workday_start:02d}:00", self.tz)
        work_end = combine(target_date, f"{self.workday_end:02d}:00", self.tz)

        # no slot may start before the current time
        work_start = max(work_start, ceil_to_half_hour(now))

        busy = sorted(b for b in (timed_bounds(ev, self.tz) for ev in events) if b)
        length = timedelta(minutes=duration)
        slots = []

        def fill(cursor, gap_end):
            limit = min(gap_end, work_end)
            start = ceil_to_half_hour(cursor)
            while start + length <= limit and len(slots) < MAX_SLOTS:
                slots.append(TimeSlot.between(start, start + length))
                start += SLOT_STEP

        cursor = work_start
        for ev_start, ev_end in busy:
            if ev_start > cursor:
                fill(cursor, ev_start)
            if ev_end > cursor:
                cursor = ev_end
        fill(cursor, work_end)
        return slots[:MAX_SLOTS]
