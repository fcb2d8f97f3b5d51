"""
assistant/session.py

Per-session conversation state.

Classes:
- ConversationTurn: one {role, content} entry; role is user, assistant or system.
- PendingConfirmation / PendingSuggestions: markers stored as system turns with JSON content.
  At most one marker lives in a window at a time.
- ConversationWindow: the last N turns, used for marker recovery and light chat context.
- Session: window plus mail and scheduling flow state for one session id.
- SessionRegistry: session id -> Session, rebuilt from the durable log on first use and
  evicted after a period of inactivity.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field

from assistant.errors import BackendError
from assistant.flows.mail import MailState
from assistant.flows.scheduling import ScheduleState


logger = logging.getLogger(__name__)

HISTORY_TURNS = 10
SESSION_IDLE_TTL = 60 * 60
CHAT_ROLES = {"user", "assistant"}


@dataclass
class ConversationTurn:
    role: str
    content: str

    def as_message(self):
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class PendingConfirmation:
    pending_id: str
    event_name: str

    def encode(self):
        return json.dumps({"pendingCalendarEvent": self.pending_id, "eventName": self.event_name})


@dataclass(frozen=True)
class PendingSuggestions:
    suggestions: list
    parsed_input: dict

    def encode(self):
        return json.dumps({
            "calendarSuggestions": True,
            "context": {"suggestions": self.suggestions, "parsedInput": self.parsed_input},
        })

    def context(self):
        return {"suggestions": self.suggestions, "parsedInput": self.parsed_input}


def decode_marker(content):
    """Marker encoded in a system turn, or None for ordinary content."""
    try:
        data = json.loads(content)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    if data.get("pendingCalendarEvent"):
        return PendingConfirmation(str(data["pendingCalendarEvent"]), str(data.get("eventName") or ""))
    if data.get("calendarSuggestions"):
        ctx = data.get("context") or {}
        return PendingSuggestions(list(ctx.get("suggestions") or []), dict(ctx.get("parsedInput") or {}))
    return None


class ConversationWindow:
    def __init__(self, limit=HISTORY_TURNS):
        self.limit = limit
        self.turns: list[ConversationTurn] = []

    def __len__(self):
        return len(self.turns)

    def add(self, role, content):
        """Append a turn, dropping the oldest once the window is full."""
        self.turns.append(ConversationTurn(role, content))
        while len(self.turns) > self.limit:
            self.turns.pop(0)

    def store_marker(self, marker):
        self.clear_markers()
        self.add("system", marker.encode())

    def find_marker(self):
        for turn in reversed(self.turns):
            if turn.role == "system":
                marker = decode_marker(turn.content)
                if marker is not None:
                    return marker
        return None

    def clear_markers(self):
        self.turns = [t for t in self.turns if not (t.role == "system" and decode_marker(t.content) is not None)]

    def chat_history(self):
        return [t.as_message() for t in self.turns if t.role in CHAT_ROLES]


@dataclass
class Session:
    session_id: str
    window: ConversationWindow = field(default_factory=ConversationWindow)
    mail: MailState = field(default_factory=MailState)
    schedule: ScheduleState = field(default_factory=ScheduleState)
    last_seen: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class SessionRegistry:
    def __init__(self, store=None, history_turns=HISTORY_TURNS, idle_ttl=SESSION_IDLE_TTL, clock=time.time):
        self.store = store
        self.history_turns = history_turns
        self.idle_ttl = idle_ttl
        self.clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._sessions)

    def __contains__(self, session_id):
        return session_id in self._sessions

    def get_or_create(self, session_id) -> Session:
        with self._lock:
            self._evict_idle_locked()
            sess = self._sessions.get(session_id)
            if sess is None:
                sess = Session(session_id, window=ConversationWindow(self.history_turns))
                self._rebuild(sess)
                self._sessions[session_id] = sess
            sess.last_seen = self.clock()
            return sess

    def evict_idle(self) -> int:
        with self._lock:
            return self._evict_idle_locked()

    def _evict_idle_locked(self):
        now = self.clock()
        idle = [sid for sid, s in self._sessions.items() if now - s.last_seen > self.idle_ttl]
        for sid in idle:
            del self._sessions[sid]
        if idle:
            logger.info("Evicted %d idle session(s)", len(idle))
        return len(idle)

    def _rebuild(self, sess):
        if self.store is None:
            return
        try:
            messages = self.store.recent_messages(sess.session_id, self.history_turns)
        except BackendError as exc:
            logger.warning("Could not rebuild history for %s: %s", sess.session_id, exc)
            return
        for msg in messages:
            if msg.get("role") in CHAT_ROLES:
                sess.window.add(msg["role"], msg.get("content", ""))
