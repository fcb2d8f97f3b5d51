"""End-to-end turns through Assistant.handle_turn with scripted collaborators."""

import pytest
from conftest import CLASSIFY, CONTEXT_CHECK, DRAFT, TOMORROW, FakeGateway, at

from assistant.errors import BackendError, GatewayError
from assistant.orchestrator import CHAT_APOLOGY, EMPTY_INPUT, FAREWELL, TURN_APOLOGY
from assistant.session import PendingConfirmation, PendingSuggestions
from assistant.store import InMemoryConversationStore
from assistant.tools import research as research_tool


def keyword_intents(gateway):
    """Let every classification fall through to the keyword table."""
    gateway.on(CLASSIFY, "not sure")


class TestSchedulingTurns:
    def test_standup_request_to_created_event(self, assistant, gateway, calendar):
        keyword_intents(gateway)
        reply = assistant.handle_turn("s1", "u1", "Schedule a meeting called Standup tomorrow at 9am")
        assert "Standup" in reply
        assert "9:00 AM" in reply

        done = assistant.handle_turn("s1", "u1", "yes")
        assert len(calendar.created) == 1
        assert calendar.created[0]["title"] == "Standup"
        assert calendar.created[0]["start"] == at(TOMORROW, 9)
        assert calendar.created[0]["end"] == at(TOMORROW, 10)
        assert done.startswith("Done!")

    def test_suggestion_marker_then_confirmation_marker(self, assistant, gateway, calendar):
        keyword_intents(gateway)
        assistant.handle_turn("s1", None, "schedule a planning session tomorrow")
        session = assistant.sessions.get_or_create("s1")
        assert isinstance(session.window.find_marker(), PendingSuggestions)

        assistant.handle_turn("s1", None, "2")
        markers = [t for t in session.window.turns if t.role == "system"]
        assert len(markers) == 1
        assert isinstance(session.window.find_marker(), PendingConfirmation)

        assistant.handle_turn("s1", None, "sure, schedule it")
        assert calendar.created[0]["start"] == at(TOMORROW, 9, 30)
        assert session.window.find_marker() is None

    def test_deny_phrasing_cancels(self, assistant, gateway, calendar):
        keyword_intents(gateway)
        assistant.handle_turn("s1", None, "Schedule a meeting called Standup tomorrow at 9am")
        assistant.handle_turn("s1", None, "no thanks")
        assert calendar.created == []
        assert not assistant.sessions.get_or_create("s1").schedule.active

    def test_unclear_answer_keeps_the_question_open(self, assistant, gateway, calendar):
        keyword_intents(gateway)
        assistant.handle_turn("s1", None, "Schedule a meeting called Standup tomorrow at 9am")
        reply = assistant.handle_turn("s1", None, "maybe later")
        assert "Please reply 'yes'" in reply
        session = assistant.sessions.get_or_create("s1")
        assert isinstance(session.window.find_marker(), PendingConfirmation)
        assistant.handle_turn("s1", None, "yes")
        assert len(calendar.created) == 1

    def test_active_flow_takes_input_without_classifying(self, assistant, gateway):
        keyword_intents(gateway)
        assistant.handle_turn("s1", None, "schedule a haircut")
        before = len(gateway.prompts_for(CLASSIFY))
        assistant.handle_turn("s1", None, "next friday")
        assert len(gateway.prompts_for(CLASSIFY)) == before


class TestMailTurns:
    def test_full_mail_dialogue_sends_once(self, assistant, gateway, mailbox):
        gateway.on(CLASSIFY, "email_intent")
        gateway.on(CONTEXT_CHECK, '{"hasAllContext": true}')
        gateway.on(DRAFT, "Subject: Budget\n\nHi Alice,\n\nApproved.\n\nBest,")
        assistant.handle_turn("s1", None, "email alice@example.com about the budget")
        draft = assistant.handle_turn("s1", None, "Let her know the Q3 budget is approved")
        assert "Should I send this email?" in draft
        assistant.handle_turn("s1", None, "yes")
        assert len(mailbox.sent) == 1
        assert mailbox.sent[0][0] == "alice@example.com"

    def test_mail_flow_keeps_input_while_active(self, assistant, gateway):
        gateway.on(CLASSIFY, "email_intent")
        assistant.handle_turn("s1", None, "write an email")
        assistant.handle_turn("s1", None, "schedule a meeting tomorrow")
        session = assistant.sessions.get_or_create("s1")
        assert session.mail.active
        assert not session.schedule.active
        assert len(gateway.prompts_for(CLASSIFY)) == 1

    def test_sessions_are_isolated(self, assistant, gateway):
        keyword_intents(gateway)
        assistant.handle_turn("a", None, "write an email")
        reply = assistant.handle_turn("b", None, "hello there")
        assert reply == "Happy to help!"
        assert assistant.sessions.get_or_create("a").mail.active
        assert not assistant.sessions.get_or_create("b").mail.active


class TestOtherIntents:
    def test_exit_says_goodbye(self, assistant, gateway):
        keyword_intents(gateway)
        assert assistant.handle_turn("s1", None, "bye") == FAREWELL
        session = assistant.sessions.get_or_create("s1")
        assert not session.mail.active and not session.schedule.active

    def test_chat_gets_prior_history(self, assistant, gateway):
        keyword_intents(gateway)
        assistant.handle_turn("s1", None, "hello")
        assistant.handle_turn("s1", None, "how are you?")
        history, message = gateway.chat_calls[-1]
        assert message == "how are you?"
        assert history == [
            {"role": "user", "content": "hello"},
            {"role": "assistant", "content": "Happy to help!"},
        ]

    def test_chat_failure_apologises(self, make_assistant):
        gateway = FakeGateway(chat_reply=GatewayError("down"))
        assistant = make_assistant(gateway=gateway)
        assert assistant.handle_turn("s1", None, "hello") == CHAT_APOLOGY

    def test_research_uses_extract_when_summary_fails(self, assistant, gateway, monkeypatch):
        gateway.on(CLASSIFY, "research_intent")
        monkeypatch.setattr(research_tool, "fetch_wikipedia_extract", lambda topic: "Black holes are regions.")
        monkeypatch.setattr(research_tool, "fetch_arxiv_entry", lambda topic: None)
        reply = assistant.handle_turn("s1", None, "research black holes")
        assert reply.startswith("Black holes are regions.")
        assert "Source: Wikipedia (https://en.wikipedia.org/wiki/black_holes)" in reply

    def test_empty_input_is_not_persisted(self, assistant, store):
        assert assistant.handle_turn("s1", None, "   ") == EMPTY_INPUT
        assert store.messages == {}

    def test_unexpected_errors_still_produce_a_reply(self, make_assistant, store):
        class BrokenGateway(FakeGateway):
            def generate(self, prompt):
                raise RuntimeError("unexpected response shape")

            def generate_chat(self, history, message):
                raise RuntimeError("unexpected response shape")

        assistant = make_assistant(gateway=BrokenGateway())
        assert assistant.handle_turn("s1", "u1", "hello") == TURN_APOLOGY
        assert [m["role"] for m in store.messages["s1"]] == ["user", "assistant"]
        assert store.messages["s1"][1]["content"] == TURN_APOLOGY

    def test_past_date_is_refused(self, assistant, gateway, calendar):
        keyword_intents(gateway)
        reply = assistant.handle_turn("s1", None, "Schedule a meeting called Retro on 2020-01-01 at 10am")
        assert "has already passed" in reply
        session = assistant.sessions.get_or_create("s1")
        assert session.window.find_marker() is None
        assistant.handle_turn("s1", None, "1")
        assistant.handle_turn("s1", None, "yes")
        assert calendar.created == []

    def test_video_call_request_adds_meet_link(self, assistant, gateway, calendar):
        keyword_intents(gateway)
        assistant.handle_turn("s1", None, "Schedule a video call called Sync tomorrow at 2pm")
        done = assistant.handle_turn("s1", None, "yes")
        assert calendar.created[0]["video_conference"] is True
        assert "Video call: https://meet.example/evt-1" in done


class TestPersistence:
    def test_history_returns_recent_messages(self, assistant, gateway):
        keyword_intents(gateway)
        assistant.handle_turn("s1", None, "hello")
        assistant.handle_turn("s1", None, "how are you?")
        history = assistant.history("s1", limit=3)
        assert [m["content"] for m in history] == ["Happy to help!", "how are you?", "Happy to help!"]
        assert assistant.history("unknown") == []

    def test_messages_and_exchanges_are_logged(self, assistant, gateway, store):
        keyword_intents(gateway)
        assistant.handle_turn("s1", "u1", "hello")
        assert [m["role"] for m in store.messages["s1"]] == ["user", "assistant"]
        assert store.exchanges[0]["user"] == "hello"
        assert store.exchanges[0]["assistant"] == "Happy to help!"

    def test_window_is_rebuilt_from_the_log(self, make_assistant, gateway, store):
        keyword_intents(gateway)
        store.append_message("s1", "user", "my name is Ada")
        store.append_message("s1", "assistant", "Nice to meet you, Ada!")
        store.append_message("s1", "system", '{"pendingCalendarEvent": "old", "eventName": "x"}')
        assistant = make_assistant()
        assistant.handle_turn("s1", None, "what's my name?")
        history, _ = gateway.chat_calls[-1]
        assert history == [
            {"role": "user", "content": "my name is Ada"},
            {"role": "assistant", "content": "Nice to meet you, Ada!"},
        ]

    def test_store_failures_do_not_break_the_turn(self, make_assistant, gateway):
        class BrokenStore(InMemoryConversationStore):
            def append_message(self, *args):
                raise BackendError("disk full")

            def recent_messages(self, *args):
                raise BackendError("disk full")

        keyword_intents(gateway)
        assistant = make_assistant(store=BrokenStore())
        assert assistant.handle_turn("s1", "u1", "hello") == "Happy to help!"


@pytest.mark.parametrize("text", ["yes", "ok", "Sure thing"])
def test_confirmation_words_without_pending_event_go_to_chat(assistant, gateway, calendar, text):
    keyword_intents(gateway)
    assert assistant.handle_turn("s1", None, text) == "Happy to help!"
    assert calendar.created == []
