"""
assistant.tools.calendar

Google Calendar access through its REST API, plus the cached service the flows use.

- GoogleCalendarClient: list_events(time_min, time_max) / create_event(details) with a bearer token.
- CalendarService: cached event listing (key 'events_<min>_<max>'), conflict checks and validated
  event creation returning {success, eventId, eventLink[, meetLink]} or {success: False, error}.
- details["video_conference"] asks Google for a Meet link (conferenceDataVersion=1).
- timed_bounds(event, tz): (start, end) of a timed event, None for all-day events.
"""

import logging
import uuid
from datetime import datetime
from typing import Protocol
from urllib.parse import quote

import requests

from assistant.errors import BackendError
from util.dates import parse_iso_datetime
from util.http import get_json, post_json


logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
EVENTS_TTL = 60


class CalendarBackend(Protocol):
    def list_events(self, time_min: datetime, time_max: datetime) -> list[dict]: ...

    def create_event(self, details: dict) -> dict: ...


class GoogleCalendarClient:
    def __init__(self, access_token, calendar_id="primary", timeout=None):
        self.access_token = access_token
        self.calendar_id = calendar_id
        self.timeout = timeout

    def _headers(self):
        if not self.access_token:
            raise BackendError("No Google access token configured")
        return {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}

    def _events_url(self):
        return f"{GOOGLE_CALENDAR_API}/calendars/{quote(self.calendar_id, safe='')}/events"

    def list_events(self, time_min, time_max):
        try:
            data = get_json(
                self._events_url(),
                params={
                    "timeMin": time_min.isoformat(),
                    "timeMax": time_max.isoformat(),
                    "singleEvents": "true",
                    "orderBy": "startTime",
                    "maxResults": 100,
                },
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise BackendError(f"Calendar list failed: {exc}") from exc
        return data.get("items") or []

    def create_event(self, details):
        start, end = details["start"], details["end"]
        body = {
            "summary": details["title"],
            "description": details.get("description") or "",
            "start": {"dateTime": start.isoformat()},
            "end": {"dateTime": end.isoformat()},
        }
        zone = getattr(start.tzinfo, "key", None)
        if zone:
            body["start"]["timeZone"] = body["end"]["timeZone"] = zone
        attendees = details.get("attendees") or []
        if attendees:
            body["attendees"] = [{"email": a, "responseStatus": "needsAction"} for a in attendees]
        if details.get("location"):
            body["location"] = details["location"]
        params = {"sendUpdates": "all" if attendees else "none"}
        if details.get("video_conference"):
            body["conferenceData"] = {
                "createRequest": {"requestId": uuid.uuid4().hex, "conferenceSolutionKey": {"type": "hangoutsMeet"}}
            }
            params["conferenceDataVersion"] = 1
        try:
            data = post_json(
                self._events_url(),
                body,
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise BackendError(f"Calendar insert failed: {exc}") from exc
        created = {"id": data.get("id"), "htmlLink": data.get("htmlLink")}
        meet = meet_link(data)
        if meet:
            created["meetLink"] = meet
        return created


def meet_link(event):
    """Video entry point of an event's conference data, if it has one."""
    conference = event.get("conferenceData") or {}
    for entry in conference.get("entryPoints") or []:
        if isinstance(entry, dict) and entry.get("entryPointType", "video") == "video" and entry.get("uri"):
            return entry["uri"]
    return event.get("hangoutLink")


def timed_bounds(event, tz):
    """Return (start, end) for a timed event; None for all-day or malformed events."""
    start = (event.get("start") or {}).get("dateTime")
    end = (event.get("end") or {}).get("dateTime")
    if not start or not end:
        return None
    try:
        return parse_iso_datetime(start, tz), parse_iso_datetime(end, tz)
    except (TypeError, ValueError):
        return None


class CalendarService:
    def __init__(self, backend: CalendarBackend, cache, tz, events_ttl=EVENTS_TTL):
        self.backend = backend
        self.cache = cache
        self.tz = tz
        self.events_ttl = events_ttl

    def get_events(self, time_min, time_max):
        """Events in [time_min, time_max], cached per exact window. Backend failure -> []."""
        key = f"events_{time_min.isoformat()}_{time_max.isoformat()}"
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Using cached calendar events for %s", key)
            return cached
        try:
            events = self.backend.list_events(time_min, time_max)
        except BackendError as exc:
            logger.warning("Fetching calendar events failed: %s", exc)
            return []
        self.cache.set(key, events, self.events_ttl)
        return events

    def check_conflicts(self, start, end):
        """Timed events overlapping [start, end). All-day events never conflict."""
        try:
            events = self.backend.list_events(start, end)
        except BackendError as exc:
            logger.warning("Conflict check failed: %s", exc)
            return []
        conflicts = []
        for ev in events:
            bounds = timed_bounds(ev, self.tz)
            if bounds and bounds[0] < end and bounds[1] > start:
                conflicts.append(ev)
        return conflicts

    def create_event(self, details):
        title = (details.get("title") or "").strip()
        start, end = details.get("start"), details.get("end")
        if not title or start is None or end is None:
            return {"success": False, "error": "Missing required event details (title, start or end)"}
        if end <= start:
            return {"success": False, "error": "The event must end after it starts"}
        try:
            created = self.backend.create_event({**details, "title": title})
        except BackendError as exc:
            logger.warning("Creating calendar event failed: %s", exc)
            return {"success": False, "error": str(exc)}
        logger.info("Created calendar event %s", created.get("id"))
        result = {"success": True, "eventId": created.get("id"), "eventLink": created.get("htmlLink")}
        if created.get("meetLink"):
            result["meetLink"] = created["meetLink"]
        return result
