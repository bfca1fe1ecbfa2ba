"""Outbound mail collaborators."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import List, Protocol, Tuple

from .config import SmtpSettings

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send_mail(self, address: str, subject: str, body: str) -> bool:
        ...


class LoggingMailer:
    """Used when SMTP is disabled; keeps what would have been sent."""

    def __init__(self) -> None:
        self.outbox: List[Tuple[str, str, str]] = []

    def send_mail(self, address: str, subject: str, body: str) -> bool:
        self.outbox.append((address, subject, body))
        logger.info("Mail to %s not sent (SMTP disabled): %s", address, subject)
        return True


class SmtpMailer:
    def __init__(self, settings: SmtpSettings, timeout: float = 10.0) -> None:
        self.settings = settings
        self.timeout = timeout

    def _connect(self) -> smtplib.SMTP:
        if self.settings.ssl:
            return smtplib.SMTP_SSL(self.settings.host, self.settings.port, timeout=self.timeout)
        client = smtplib.SMTP(self.settings.host, self.settings.port, timeout=self.timeout)
        client.starttls()
        return client

    def send_mail(self, address: str, subject: str, body: str) -> bool:
        message = EmailMessage()
        message["From"] = self.settings.sender
        message["To"] = address
        message["Subject"] = subject
        message.set_content(body)
        try:
            with self._connect() as client:
                if self.settings.username:
                    client.login(self.settings.username, self.settings.password)
                client.send_message(message)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send mail to %s", address)
            return False
        logger.info("Mail sent to %s: %s", address, subject)
        return True


def create_mailer(settings: SmtpSettings) -> Mailer:
    if settings.enable:
        return SmtpMailer(settings)
    return LoggingMailer()
