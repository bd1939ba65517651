"""Email senders.

``EmailSender`` is the interface the order flow depends on. The SMTP sender
is used in production; the console sender logs messages for local runs and
the in-memory sender records them for tests.
"""
import logging
import smtplib
import uuid
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import List, Optional

from storefront.shared.config import Settings, settings as default_settings

logger = logging.getLogger("storefront.email")


class EmailDeliveryError(Exception):
    pass


class EmailSender(ABC):
    """Abstract interface for email dispatch adapters."""

    @abstractmethod
    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> str:
        """Send one message and return its message id."""


def build_message(sender: str, to: str, subject: str, body: str, html_body: Optional[str] = None) -> EmailMessage:
    message = EmailMessage()
    message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message["Message-ID"] = f"<{uuid.uuid4().hex}@storefront>"
    message.set_content(body)
    if html_body:
        message.add_alternative(html_body, subtype="html")
    return message


class SMTPEmailSender(EmailSender):
    def __init__(self, config: Settings = default_settings, timeout: float = 10.0):
        self.config = config
        self.timeout = timeout

    def send(self, to, subject, body, html_body=None):
        message = build_message(self.config.EMAIL_FROM, to, subject, body, html_body)
        try:
            with smtplib.SMTP(self.config.SMTP_HOST, self.config.SMTP_PORT, timeout=self.timeout) as smtp:
                if self.config.SMTP_USE_TLS:
                    smtp.starttls()
                if self.config.SMTP_USERNAME:
                    smtp.login(self.config.SMTP_USERNAME, self.config.SMTP_PASSWORD)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"SMTP delivery to {to} failed: {e}") from e
        return message["Message-ID"]


class ConsoleEmailSender(EmailSender):
    def send(self, to, subject, body, html_body=None):
        message_id = f"<{uuid.uuid4().hex}@console>"
        logger.info(f"Email: {subject}", extra={"recipient": to})
        return message_id


class InMemoryEmailSender(EmailSender):
    """Email adapter that records messages in memory for test assertions."""

    def __init__(self):
        self.sent: List[dict] = []
        self.fail_with: Optional[Exception] = None

    def send(self, to, subject, body, html_body=None):
        if self.fail_with is not None:
            raise self.fail_with
        message_id = f"email-{uuid.uuid4().hex[:12]}"
        self.sent.append({
            "message_id": message_id,
            "to": to,
            "subject": subject,
            "body": body,
            "html_body": html_body,
        })
        return message_id


def get_email_sender(config: Settings = default_settings) -> EmailSender:
    backend = config.EMAIL_BACKEND.lower()
    if backend == "smtp":
        return SMTPEmailSender(config)
    if backend == "console":
        return ConsoleEmailSender()
    if backend == "memory":
        return InMemoryEmailSender()
    raise ValueError(f"Unknown email backend: {config.EMAIL_BACKEND}")
