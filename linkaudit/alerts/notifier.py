"""Outbound notification channels.

The audit core only needs ``send(recipient, subject, body)``; delivery
failures raise and are handled by the caller.
"""

from __future__ import annotations

import logging
import smtplib
from collections import deque
from email.mime.text import MIMEText
from typing import Deque, Protocol, Tuple

from linkaudit.config import Settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, recipient: str, subject: str, body: str) -> None: ...


class SmtpNotifier:
    """Plain-text email over SMTP with STARTTLS when credentials are set."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        sender: str = "linkaudit@localhost",
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.timeout = timeout

    def send(self, recipient: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain", "utf-8")
        msg["From"] = self.sender
        msg["To"] = recipient
        msg["Subject"] = subject

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.username:
                server.starttls()
                server.login(self.username, self.password)
            server.sendmail(self.sender, [recipient], msg.as_string())
        logger.info("[ALERT] Email sent to %s: %s", recipient, subject)


class LogNotifier:
    """Writes notifications to the log; used when no SMTP host is configured.

    The last *max_kept* messages stay available on :attr:`sent`.
    """

    def __init__(self, max_kept: int = 100) -> None:
        self.sent: Deque[Tuple[str, str, str]] = deque(maxlen=max_kept)

    def send(self, recipient: str, subject: str, body: str) -> None:
        self.sent.append((recipient, subject, body))
        logger.info("[ALERT] (log only) to=%s subject=%s\n%s", recipient, subject, body)


def notifier_from_settings(settings: Settings) -> Notifier:
    if settings.smtp_host:
        return SmtpNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.smtp_from,
        )
    return LogNotifier()
