"""
assistant/flows/mail.py

Mail composition sub-dialogue.

init -> collecting_recipient -> collecting_purpose -> checking_context -> collecting_context
     -> generating -> confirming -> editing | done

- The flow times out 15 minutes after it started; the next turn resets it.
- Generation failures send the user back to collecting_purpose; the state is never left in
  'generating' or 'checking_context' between turns.
- Any unexpected error resets the flow and returns a generic recovery message.
"""

import logging
from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum

from assistant.errors import FlowStateError
from assistant.replies import Plain
from assistant.router import EMAIL_RX, contains_hint
from assistant.tools.mail import send_email


logger = logging.getLogger(__name__)

MAIL_FLOW_TIMEOUT = 15 * 60

CANCEL_HINTS = {"cancel", "discard", "never mind", "nevermind", "forget it"}
RECIPIENT_HINTS = {"recipient", "address", "someone else", "different person"}
EDIT_HINTS = {"edit", "content", "rewrite", "change the text", "reword"}

RECOVERY_MESSAGE = ("I encountered an unexpected error while working on your email. "
                    "Let's start over. What would you like to do?")
TIMEOUT_MESSAGE = "It looks like our email drafting session timed out. Let's start over. What would you like to do?"


class MailStage(str, Enum):
    INIT = "init"
    COLLECTING_RECIPIENT = "collecting_recipient"
    COLLECTING_PURPOSE = "collecting_purpose"
    CHECKING_CONTEXT = "checking_context"
    COLLECTING_CONTEXT = "collecting_context"
    GENERATING = "generating"
    CONFIRMING = "confirming"
    EDITING = "editing"
    DONE = "done"


@dataclass
class MailState:
    active: bool = False
    stage: MailStage = MailStage.INIT
    to: str | None = None
    purpose: str = ""
    missing_info: str | None = None
    subject: str = ""
    body: str = ""
    started_at: datetime | None = None

    def reset(self):
        fresh = MailState()
        for f in fields(self):
            setattr(self, f.name, getattr(fresh, f.name))


class MailFlow:
    def __init__(self, style, backend, clock, timeout=MAIL_FLOW_TIMEOUT):
        self.style = style
        self.backend = backend
        self.clock = clock
        self.timeout = timeout

    def handle(self, state: MailState, text, entities=None):
        try:
            return self._handle(state, (text or "").strip(), entities or {})
        except Exception:
            logger.exception("Unexpected error in mail flow (stage=%s)", state.stage)
            state.reset()
            return Plain(RECOVERY_MESSAGE)

    def _handle(self, state, text, entities):
        if not state.active:
            return self._start(state, entities)

        if (self.clock() - state.started_at).total_seconds() > self.timeout:
            logger.info("Mail flow timed out at stage %s", state.stage.value)
            state.reset()
            return Plain(TIMEOUT_MESSAGE)

        match state.stage:
            case MailStage.COLLECTING_RECIPIENT:
                return self._collect_recipient(state, text)
            case MailStage.COLLECTING_PURPOSE:
                return self._collect_purpose(state, text)
            case MailStage.COLLECTING_CONTEXT:
                state.purpose = f"{state.purpose} {text}".strip()
                state.missing_info = None
                return self._generate(state)
            case MailStage.CONFIRMING:
                return self._confirm(state, text)
            case MailStage.EDITING:
                return self._edit(state, text)
            case _:
                raise FlowStateError(f"mail flow cannot continue from stage {state.stage.value}")

    def _start(self, state, entities):
        state.reset()
        state.active = True
        state.started_at = self.clock()
        match = EMAIL_RX.search(entities.get("to") or "")
        if match:
            state.to = match.group(0)
            state.stage = MailStage.COLLECTING_PURPOSE
            logger.info("Starting mail flow for %s", state.to)
            return Plain(f"Great, I'll help you draft an email to {state.to}. What's the purpose of this email?")
        state.stage = MailStage.COLLECTING_RECIPIENT
        return Plain("Who would you like to send an email to? (Please provide their email address)")

    def _collect_recipient(self, state, text):
        match = EMAIL_RX.search(text)
        if not match:
            return Plain("I didn't catch a valid email address. "
                         "Please provide a full email address like example@domain.com")
        state.to = match.group(0)
        state.stage = MailStage.COLLECTING_PURPOSE
        return Plain(f"Thanks! What's the purpose of your email to {state.to}?")

    def _collect_purpose(self, state, text):
        if not text:
            return Plain(f"What would you like the email to {state.to} to say?")
        state.purpose = text
        state.stage = MailStage.CHECKING_CONTEXT
        verdict = self.style.check_context_completeness(state.purpose)
        if not verdict.hasAllContext and verdict.missingInfo:
            state.stage = MailStage.COLLECTING_CONTEXT
            state.missing_info = verdict.missingInfo
            return Plain(f"I can draft that email, but could you clarify {verdict.missingInfo}? "
                         "This will help me write a more specific message.")
        return self._generate(state)

    def _generate(self, state):
        state.stage = MailStage.GENERATING
        try:
            profile = self.style.analyze_email_context(state.to)
            subject, body = self.style.generate_humanized_email(state.to, state.purpose, profile, state.missing_info)
        except Exception as exc:
            logger.warning("Email generation failed for %s: %s", state.to, exc)
            state.stage = MailStage.COLLECTING_PURPOSE
            return Plain("I encountered an issue creating your email. Could you please describe the purpose again?")
        state.subject, state.body = subject, body
        state.stage = MailStage.CONFIRMING
        return Plain(
            f"Here's your personalized email draft:\n\nTo: {state.to}\nSubject: {subject}\n\n{body}\n\n"
            "Should I send this email? (yes/no)"
        )

    def _confirm(self, state, text):
        low = text.lower()
        if "yes" in low:
            to, subject, body = state.to, state.subject, state.body
            state.reset()
            result = send_email(self.backend, to, subject, body)
            if result["success"]:
                return Plain(f"Your email to {to} has been sent!")
            return Plain("I couldn't send your email just now. Please try again in a moment.")
        if "no" in low:
            state.stage = MailStage.EDITING
            return Plain("Would you like to edit the email, change the recipient, or cancel?")
        return Plain("Please confirm with 'yes' to send the email or 'no' to make changes.")

    def _edit(self, state, text):
        low = text.lower()
        if contains_hint(low, CANCEL_HINTS):
            state.reset()
            return Plain("Email canceled. What else can I help you with?")
        if contains_hint(low, RECIPIENT_HINTS):
            state.stage = MailStage.COLLECTING_RECIPIENT
            return Plain("Who would you like to send this email to instead?")
        if contains_hint(low, EDIT_HINTS):
            state.stage = MailStage.COLLECTING_PURPOSE
            return Plain("Please describe again what you want to say in this email.")
        return Plain("Would you like to edit the email content, change the recipient, or cancel?")
