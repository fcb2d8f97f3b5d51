"""
assistant/orchestrator.py

Top-level turn handler shared by the CLI and the HTTP app.

Per turn:
1. get or create the session, persist the user message, add it to the window
2. a pending confirmation marker is resolved by confirm / deny phrasing (otherwise dropped)
3. a pending suggestion marker is handed to slot selection
4. an active mail flow, then an active scheduling flow, gets the input unconditionally
5. otherwise classify the intent, extract entities and dispatch
Flow replies are matched by type; choices and confirmations leave a marker for the next turn.
"""

import logging
import re
from datetime import datetime

from assistant.calendar_patterns import PatternAnalyzer
from assistant.config import Settings
from assistant.errors import BackendError, GatewayError
from assistant.flows.mail import MailFlow
from assistant.flows.scheduling import SchedulingFlow
from assistant.mail_style import MailStyleAnalyzer
from assistant.replies import NeedsChoice, NeedsConfirmation, Plain
from assistant.router import Intent, IntentRouter
from assistant.session import PendingConfirmation, PendingSuggestions, SessionRegistry
from assistant.store import InMemoryConversationStore, JsonlConversationStore
from assistant.tools.calendar import CalendarService, GoogleCalendarClient
from assistant.tools.mail import GmailClient
from assistant.tools.research import ResearchTool
from llm.client import CompletionGateway
from util.cache import TTLCache
from util.dates import resolve_tz


logger = logging.getLogger(__name__)

CONFIRM_RX = re.compile(r"\b(yes|confirm|ok|okay|sure|schedule it)\b", re.IGNORECASE)
DENY_RX = re.compile(r"\b(no|cancel|don'?t|nope)\b", re.IGNORECASE)

FAREWELL = "Goodbye! Let me know whenever you need help with research, your calendar or email."
CHAT_APOLOGY = "Sorry, I'm having trouble responding right now. Could you try again in a moment?"
EMPTY_INPUT = "I didn't catch that. What can I help you with?"
TURN_APOLOGY = "Sorry, something went wrong on my side. Could you say that again?"


class Assistant:
    def __init__(self, router, mail_flow, schedule_flow, research, gateway, store, sessions, cache=None):
        self.router = router
        self.mail_flow = mail_flow
        self.schedule_flow = schedule_flow
        self.research = research
        self.gateway = gateway
        self.store = store
        self.sessions = sessions
        self.cache = cache

    @classmethod
    def from_settings(cls, settings=None, gateway=None, calendar_backend=None, mail_backend=None,
                      store=None, cache=None, clock=None, tz=None, retry=None):
        """Wire the default collaborators; any of them can be swapped in (tests pass fakes)."""
        settings = settings or Settings.from_env()
        tz = tz or resolve_tz(settings.timezone)
        clock = clock or (lambda: datetime.now(tz))
        cache = cache or TTLCache(
            max_size=settings.cache_max_size,
            default_ttl=settings.cache_default_ttl,
            cleanup_interval=settings.cache_cleanup_interval,
        )
        gateway = gateway or CompletionGateway()
        calendar_backend = calendar_backend or GoogleCalendarClient(
            settings.google_access_token, settings.google_calendar_id
        )
        mail_backend = mail_backend or GmailClient(settings.google_access_token)
        if store is None:
            store = (JsonlConversationStore(settings.conversation_log) if settings.conversation_log
                     else InMemoryConversationStore())

        router = IntentRouter(gateway, tz=tz, clock=clock)
        calendar = CalendarService(calendar_backend, cache, tz)
        patterns = PatternAnalyzer(calendar, gateway, tz, clock=clock,
                                   workday_start=settings.workday_start_hour,
                                   workday_end=settings.workday_end_hour)
        style = MailStyleAnalyzer(mail_backend, gateway, cache, retry=retry)
        return cls(
            router=router,
            mail_flow=MailFlow(style, mail_backend, clock, timeout=settings.mail_flow_timeout),
            schedule_flow=SchedulingFlow(router, calendar, patterns, tz, clock,
                                         timeout=settings.schedule_flow_timeout),
            research=ResearchTool(gateway, cache),
            gateway=gateway,
            store=store,
            sessions=SessionRegistry(store, history_turns=settings.history_turns,
                                     idle_ttl=settings.session_idle_ttl),
            cache=cache,
        )

    def handle_turn(self, session_id, user_id, text) -> str:
        text = (text or "").strip()
        if not text:
            return EMPTY_INPUT
        session = self.sessions.get_or_create(session_id)
        with session.lock:
            self._persist(session_id, "user", text)
            session.window.add("user", text)
            try:
                reply = self._surface(session, self._route(session, text))
            except Exception:
                logger.exception("Session %s: turn failed", session_id)
                reply = TURN_APOLOGY
            session.window.add("assistant", reply)
            self._persist(session_id, "assistant", reply)
            if user_id:
                self._persist_exchange(session_id, user_id, text, reply)
        return reply

    def history(self, session_id, limit=10):
        """Most recent logged chat messages of a session, oldest first."""
        try:
            return self.store.recent_messages(session_id, limit)
        except BackendError as exc:
            logger.warning("Could not read history for %s: %s", session_id, exc)
            return []

    def _route(self, session, text):
        marker = session.window.find_marker()
        if isinstance(marker, PendingConfirmation):
            session.window.clear_markers()
            if CONFIRM_RX.search(text):
                return self.schedule_flow.confirm_pending(session.schedule, marker.pending_id, True)
            if DENY_RX.search(text):
                return self.schedule_flow.confirm_pending(session.schedule, marker.pending_id, False)
            logger.debug("Confirmation marker for %s dropped; input was neither yes nor no", marker.pending_id)
        elif isinstance(marker, PendingSuggestions):
            session.window.clear_markers()
            return self.schedule_flow.handle_time_selection(session.schedule, text, marker.context())

        if session.mail.active:
            return self.mail_flow.handle(session.mail, text)
        if session.schedule.active:
            return self.schedule_flow.handle(session.schedule, text)

        intent = self.router.classify_intent(text)
        logger.info("Session %s: intent=%s", session.session_id, intent.value)
        match intent:
            case Intent.RESEARCH:
                entities = self.router.extract_entities(text, intent)
                return Plain(self.research.research(entities.get("topic")))
            case Intent.CALENDAR:
                entities = self.router.extract_entities(text, intent)
                return self.schedule_flow.handle(session.schedule, text, entities)
            case Intent.MAIL:
                entities = self.router.extract_entities(text, intent, mail_flow_active=session.mail.active)
                return self.mail_flow.handle(session.mail, text, entities)
            case Intent.EXIT:
                session.mail.reset()
                session.schedule.reset()
                return Plain(FAREWELL)
            case _:
                return Plain(self._chat(session, text))

    def _chat(self, session, text):
        # the current message is passed separately
        history = session.window.chat_history()[:-1]
        try:
            return self.gateway.generate_chat(history, text)
        except GatewayError as exc:
            logger.warning("Chat generation failed: %s", exc)
            return CHAT_APOLOGY

    def _surface(self, session, reply):
        match reply:
            case Plain(text=text):
                return text
            case NeedsChoice(text=text, suggestions=suggestions, parsed_input=parsed_input):
                session.window.store_marker(PendingSuggestions(suggestions, parsed_input))
                return text
            case NeedsConfirmation(text=text, pending_id=pending_id, event_name=event_name):
                session.window.store_marker(PendingConfirmation(pending_id, event_name))
                return text
            case _:
                raise TypeError(f"unexpected reply type: {type(reply).__name__}")

    def _persist(self, session_id, role, content):
        try:
            self.store.append_message(session_id, role, content)
        except BackendError as exc:
            logger.warning("Could not persist %s message for %s: %s", role, session_id, exc)

    def _persist_exchange(self, session_id, user_id, user_text, ai_text):
        try:
            self.store.append_exchange(session_id, user_id, user_text, ai_text)
        except BackendError as exc:
            logger.warning("Could not persist exchange for %s: %s", session_id, exc)
