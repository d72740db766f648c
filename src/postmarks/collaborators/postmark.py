"""Email notifications through the Postmark API."""

from __future__ import annotations

import asyncio
import logging

import requests

from postmarks.collaborators.base import Notifier
from postmarks.errors import NotificationError

logger = logging.getLogger(__name__)


class PostmarkNotifier(Notifier):
    """Send owner notifications as Postmark emails.

    Parameters
    ----------
    server_token:
        Postmark server API token.
    from_email / reply_to_email:
        Sender and reply-to addresses.
    api_url:
        Postmark ``/email`` endpoint.
    """

    def __init__(
        self,
        server_token: str,
        from_email: str,
        *,
        reply_to_email: str = "",
        api_url: str = "https://api.postmarkapp.com/email",
        timeout: float = 30.0,
    ) -> None:
        self.server_token = server_token
        self.from_email = from_email
        self.reply_to_email = reply_to_email or from_email
        self.api_url = api_url
        self.timeout = timeout

    async def notify(self, owner: str, subject: str, body_text: str, body_html: str) -> None:
        await asyncio.to_thread(self._send, owner, subject, body_text, body_html)

    def _send(self, to: str, subject: str, text: str, html: str) -> None:
        logger.info("Sending email to %s with subject %r", to, subject)
        try:
            resp = requests.post(
                self.api_url,
                headers={
                    "Content-Type": "application/json",
                    "X-Postmark-Server-Token": self.server_token,
                },
                json={
                    "To": to,
                    "ReplyTo": self.reply_to_email,
                    "From": self.from_email,
                    "Subject": subject,
                    "TextBody": text,
                    "HtmlBody": html,
                    "MessageStream": "outbound",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NotificationError(f"Failed to send email to {to}: {exc}") from exc

        if resp.status_code != 200:
            raise NotificationError(f"Failed to send email to {to}: {resp.status_code} {resp.text}")
        logger.info("Email sent successfully to %s", to)
