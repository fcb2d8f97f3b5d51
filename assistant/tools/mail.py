"""
assistant.tools.mail

Gmail access through its REST API.

- GmailClient.list_messages(query, page_token, max_results): one page of message ids
- GmailClient.get_message(id): full message with MIME parts
- GmailClient.send(to, subject, body): sends a plain-text message (base64url raw RFC 822)
- send_email(backend, to, subject, body): {success, messageId} or {success: False, error}
"""

import base64
import logging
from email.message import EmailMessage
from typing import Protocol

import requests

from assistant.errors import BackendError
from util.http import get_json, post_json


logger = logging.getLogger(__name__)

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"


class MailBackend(Protocol):
    def list_messages(self, query: str, page_token: str | None = None, max_results: int = 5) -> dict: ...

    def get_message(self, message_id: str) -> dict: ...

    def send(self, to: str, subject: str, body: str) -> dict: ...


class GmailClient:
    def __init__(self, access_token, timeout=None):
        self.access_token = access_token
        self.timeout = timeout

    def _headers(self):
        if not self.access_token:
            raise BackendError("No Google access token configured")
        return {"Authorization": f"Bearer {self.access_token}", "Accept": "application/json"}

    def list_messages(self, query, page_token=None, max_results=5):
        params = {"q": query, "maxResults": max_results}
        if page_token:
            params["pageToken"] = page_token
        try:
            return get_json(f"{GMAIL_API}/messages", params=params, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise BackendError(f"Gmail list failed: {exc}") from exc

    def get_message(self, message_id):
        try:
            return get_json(
                f"{GMAIL_API}/messages/{message_id}",
                params={"format": "full"},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise BackendError(f"Gmail get failed: {exc}") from exc

    def send(self, to, subject, body):
        msg = EmailMessage()
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode("ascii").rstrip("=")
        try:
            data = post_json(f"{GMAIL_API}/messages/send", {"raw": raw}, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as exc:
            raise BackendError(f"Gmail send failed: {exc}") from exc
        return {"id": data.get("id")}


def send_email(backend: MailBackend, to, subject, body):
    try:
        result = backend.send(to, subject, body)
    except BackendError as exc:
        logger.warning("Sending email to %s failed: %s", to, exc)
        return {"success": False, "error": str(exc)}
    logger.info("Sent email to %s (%s)", to, result.get("id"))
    return {"success": True, "messageId": result.get("id")}
