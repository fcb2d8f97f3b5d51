"""
util/dates.py

Date and time helpers for free-text scheduling requests.
- parse_date_phrase: ISO dates, today/tomorrow, (next) weekdays, month-name dates
- parse_clock_time: '14:30', '9am', '9:15 pm', 'noon' -> 'HH:MM' (24h)
- infer_duration: minutes between two clock times, wrapping past midnight
- formatting helpers for user-facing times ('9:00 AM') and dates ('10/20/2026')
"""

import re
from datetime import date, datetime, time, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser


ISO_DATE_FMT = "%Y-%m-%d"

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
_WEEKDAY_ALT = "|".join(WEEKDAYS)

ISO_DATE_RX = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
RELATIVE_DAY_RX = re.compile(r"\b(today|tonight|tomorrow)\b", re.IGNORECASE)
NEXT_WEEKDAY_RX = re.compile(rf"\bnext\s+({_WEEKDAY_ALT})\b", re.IGNORECASE)
WEEKDAY_RX = re.compile(rf"\b(?:on\s+|this\s+)?({_WEEKDAY_ALT})\b", re.IGNORECASE)
_MONTHS = (r"jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
           r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?")
MONTH_DAY_RX = re.compile(
    rf"\b(?:(?:{_MONTHS})\.?\s+\d{{1,2}}(?:st|nd|rd|th)?|\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?(?:{_MONTHS}))\b(?:,?\s+\d{{4}})?",
    re.IGNORECASE,
)

AMPM_RX = re.compile(r"\b(1[0-2]|0?[1-9])(?::([0-5][0-9]))?\s*([ap])\.?m\.?(?!\w)", re.IGNORECASE)
CLOCK_24_RX = re.compile(r"\b([01]?[0-9]|2[0-3]):([0-5][0-9])\b")
NAMED_TIME_RX = re.compile(r"\b(noon|midday|midnight)\b", re.IGNORECASE)


def resolve_tz(name=None) -> tzinfo:
    """Return the named zone, or the system local zone when no usable name is given."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return datetime.now().astimezone().tzinfo


def parse_date_phrase(text, today: date) -> date | None:
    """Find the first recognisable date reference in text, relative to `today`."""
    if not text:
        return None

    m = ISO_DATE_RX.search(text)
    if m:
        try:
            return datetime.strptime(m.group(1), ISO_DATE_FMT).date()
        except ValueError:
            pass

    m = RELATIVE_DAY_RX.search(text)
    if m:
        word = m.group(1).lower()
        return today + timedelta(days=1) if word == "tomorrow" else today

    m = NEXT_WEEKDAY_RX.search(text)
    if m:
        target = WEEKDAYS.index(m.group(1).lower())
        days_ahead = target - today.weekday()
        if days_ahead <= 0:
            days_ahead += 7
        return today + timedelta(days=days_ahead)

    m = MONTH_DAY_RX.search(text)
    if m:
        raw = re.sub(r"(\d)(st|nd|rd|th)", r"\1", m.group(0), flags=re.IGNORECASE)
        try:
            parsed = parser.parse(raw, default=datetime(today.year, today.month, 1)).date()
        except (ValueError, OverflowError):
            parsed = None
        if parsed:
            if not re.search(r"\d{4}", raw) and parsed < today:
                parsed = parsed.replace(year=parsed.year + 1)
            return parsed

    m = WEEKDAY_RX.search(text)
    if m:
        target = WEEKDAYS.index(m.group(1).lower())
        return today + timedelta(days=(target - today.weekday()) % 7)

    return None


def parse_clock_time(text) -> str | None:
    """Return the first clock time in text as 24h 'HH:MM', or None."""
    if not text:
        return None
    m = AMPM_RX.search(text)
    if m:
        hour = int(m.group(1))
        minute = int(m.group(2) or 0)
        is_pm = m.group(3).lower() == "p"
        if is_pm and hour < 12:
            hour += 12
        if not is_pm and hour == 12:
            hour = 0
        return f"{hour:02d}:{minute:02d}"
    m = CLOCK_24_RX.search(text)
    if m:
        return f"{int(m.group(1)):02d}:{m.group(2)}"
    m = NAMED_TIME_RX.search(text)
    if m:
        return "00:00" if m.group(1).lower() == "midnight" else "12:00"
    return None


def clock_to_minutes(hhmm) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def infer_duration(start_hhmm, end_hhmm) -> int:
    """Minutes from start to end; a nonpositive difference wraps past midnight."""
    minutes = clock_to_minutes(end_hhmm) - clock_to_minutes(start_hhmm)
    if minutes <= 0:
        minutes += 24 * 60
    return minutes


def combine(day: date, hhmm, tz: tzinfo) -> datetime:
    hours, minutes = (int(p) for p in hhmm.split(":"))
    return datetime.combine(day, time(hours, minutes), tzinfo=tz)


def day_bounds(day: date, tz: tzinfo):
    """(00:00, 23:59:59.999999) of `day` in tz."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, datetime.combine(day, time.max, tzinfo=tz)


def ceil_to_half_hour(dt: datetime) -> datetime:
    """Next :00/:30 boundary at or after dt."""
    floored = dt.replace(minute=(dt.minute // 30) * 30, second=0, microsecond=0)
    if floored == dt:
        return floored
    return floored + timedelta(minutes=30)


def parse_iso_datetime(value, tz: tzinfo) -> datetime:
    """Parse an ISO-8601 string; naive values are taken to be in tz."""
    dt = parser.isoparse(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def format_clock(dt: datetime) -> str:
    """'9:00 AM' style, independent of locale."""
    hour12 = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    return f"{hour12}:{dt.minute:02d} {suffix}"


def format_range(start: datetime, end: datetime) -> str:
    return f"{format_clock(start)} - {format_clock(end)}"


def format_date(day: date) -> str:
    """US style 'M/D/YYYY'."""
    return f"{day.month}/{day.day}/{day.year}"
