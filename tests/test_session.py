"""Tests for conversation windows, markers, the session registry and conversation stores."""

import json

from conftest import FakeTime

from assistant.session import (
    ConversationWindow,
    PendingConfirmation,
    PendingSuggestions,
    SessionRegistry,
    decode_marker,
)
from assistant.store import InMemoryConversationStore, JsonlConversationStore


class TestConversationWindow:
    def test_oldest_turns_drop_off(self):
        window = ConversationWindow(limit=3)
        for i in range(5):
            window.add("user", f"m{i}")
        assert [t.content for t in window.turns] == ["m2", "m3", "m4"]

    def test_only_one_marker_at_a_time(self):
        window = ConversationWindow()
        window.add("user", "hi")
        window.store_marker(PendingSuggestions([{"start": "x"}], {"title": "T"}))
        window.store_marker(PendingConfirmation("abc", "T"))
        assert sum(1 for t in window.turns if t.role == "system") == 1
        assert window.find_marker() == PendingConfirmation("abc", "T")

    def test_chat_history_skips_markers(self):
        window = ConversationWindow()
        window.add("user", "hi")
        window.store_marker(PendingConfirmation("abc", "T"))
        window.add("assistant", "hello")
        assert window.chat_history() == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_clear_markers_keeps_other_system_turns(self):
        window = ConversationWindow()
        window.add("system", "plain note")
        window.store_marker(PendingConfirmation("abc", "T"))
        window.clear_markers()
        assert [t.content for t in window.turns] == ["plain note"]


class TestMarkers:
    def test_suggestions_encode_with_context(self):
        marker = PendingSuggestions([{"start": "s", "end": "e", "displayText": "d"}], {"title": "T"})
        data = json.loads(marker.encode())
        assert data["calendarSuggestions"] is True
        assert data["context"]["parsedInput"] == {"title": "T"}
        assert decode_marker(marker.encode()) == marker

    def test_confirmation_wire_format(self):
        data = json.loads(PendingConfirmation("abc", "Standup").encode())
        assert data == {"pendingCalendarEvent": "abc", "eventName": "Standup"}

    def test_non_markers(self):
        assert decode_marker("hello") is None
        assert decode_marker("[1, 2]") is None
        assert decode_marker('{"other": true}') is None


class TestSessionRegistry:
    def test_same_id_same_session(self):
        registry = SessionRegistry()
        assert registry.get_or_create("a") is registry.get_or_create("a")
        assert len(registry) == 1

    def test_idle_sessions_are_evicted(self):
        ticks = FakeTime()
        registry = SessionRegistry(idle_ttl=60, clock=ticks)
        registry.get_or_create("a")
        ticks.advance(30)
        registry.get_or_create("b")
        ticks.advance(45)
        assert registry.evict_idle() == 1
        assert "a" not in registry
        assert "b" in registry

    def test_rebuilds_recent_chat_turns(self):
        store = InMemoryConversationStore()
        for i in range(15):
            store.append_message("s", "user" if i % 2 == 0 else "assistant", f"m{i}")
        session = SessionRegistry(store, history_turns=10).get_or_create("s")
        assert len(session.window) == 10
        assert session.window.turns[-1].content == "m14"


class TestJsonlConversationStore:
    def test_append_and_read_back(self, tmp_path):
        store = JsonlConversationStore(tmp_path / "logs" / "conversation.jsonl")
        store.append_message("s1", "user", "hi")
        store.append_message("s2", "user", "other session")
        store.append_exchange("s1", "u1", "hi", "hello")
        store.append_message("s1", "assistant", "hello")
        assert store.recent_messages("s1") == [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
        ]

    def test_malformed_lines_are_skipped(self, tmp_path):
        path = tmp_path / "conversation.jsonl"
        path.write_text('not json\n[1]\n{"type": "message", "session_id": "s", "role": "user", "content": "ok"}\n',
                        encoding="utf-8")
        assert JsonlConversationStore(path).recent_messages("s") == [{"role": "user", "content": "ok"}]

    def test_missing_file_reads_empty(self, tmp_path):
        assert JsonlConversationStore(tmp_path / "absent.jsonl").recent_messages("s") == []
