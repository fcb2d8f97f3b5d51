"""
assistant/store.py

Durable conversation log. Append-only; the in-memory window is rebuilt from it.
- InMemoryConversationStore: process-local, for tests and throwaway runs
- JsonlConversationStore: one JSON object per line in CONVERSATION_LOG
"""

import json
import logging
import os
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Protocol

from assistant.errors import BackendError


logger = logging.getLogger(__name__)


class ConversationStore(Protocol):
    def append_message(self, session_id: str, role: str, content: str) -> None: ...

    def append_exchange(self, session_id: str, user_id: str, user_text: str, ai_text: str) -> None: ...

    def recent_messages(self, session_id: str, limit: int) -> list[dict]: ...


def _stamp():
    return datetime.now(timezone.utc).isoformat()


class InMemoryConversationStore:
    def __init__(self):
        self.messages: dict[str, list[dict]] = defaultdict(list)
        self.exchanges: list[dict] = []
        self._lock = threading.Lock()

    def append_message(self, session_id, role, content):
        with self._lock:
            self.messages[session_id].append({"role": role, "content": content, "ts": _stamp()})

    def append_exchange(self, session_id, user_id, user_text, ai_text):
        with self._lock:
            self.exchanges.append({
                "session_id": session_id, "user_id": user_id,
                "user": user_text, "assistant": ai_text, "ts": _stamp(),
            })

    def recent_messages(self, session_id, limit=10):
        with self._lock:
            return [dict(m) for m in self.messages.get(session_id, [])[-limit:]]


class JsonlConversationStore:
    def __init__(self, path):
        self.path = os.path.abspath(path)
        self._lock = threading.Lock()

    def _append(self, record):
        line = json.dumps(record, ensure_ascii=False)
        try:
            with self._lock:
                os.makedirs(os.path.dirname(self.path), exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as exc:
            raise BackendError(f"Could not write conversation log: {exc}") from exc

    def append_message(self, session_id, role, content):
        self._append({"type": "message", "session_id": session_id, "role": role, "content": content, "ts": _stamp()})

    def append_exchange(self, session_id, user_id, user_text, ai_text):
        self._append({
            "type": "exchange", "session_id": session_id, "user_id": user_id,
            "user": user_text, "assistant": ai_text, "ts": _stamp(),
        })

    def recent_messages(self, session_id, limit=10):
        if not os.path.exists(self.path):
            return []
        found = []
        try:
            with self._lock, open(self.path, encoding="utf-8") as f:
                for line in f:
                    try:
                        record = json.loads(line)
                    except ValueError:
                        logger.debug("Skipping malformed conversation log line")
                        continue
                    if not isinstance(record, dict):
                        continue
                    if record.get("type") == "message" and record.get("session_id") == session_id:
                        found.append({"role": record.get("role"), "content": record.get("content", "")})
        except OSError as exc:
            raise BackendError(f"Could not read conversation log: {exc}") from exc
        return found[-limit:]
