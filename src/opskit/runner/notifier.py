"""
Notification delivery for critical job errors.

Email is sent over SMTP. SMS is sent as a short plain-text email to a carrier
email-to-SMS gateway address (e.g. ``5551234567@txt.example.net``), so both
channels share one transport.
"""

import logging
import smtplib
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import Optional

from .exceptions import NotificationError

logger = logging.getLogger(__name__)


SMS_MAX_BYTES = 500


def truncate_bytes(text: str, limit: int = SMS_MAX_BYTES) -> str:
    """Cut ``text`` to at most ``limit`` UTF-8 bytes without splitting a character."""
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text
    return encoded[:limit].decode("utf-8", errors="ignore")


class Notifier(ABC):
    """Delivery boundary used by the alert throttle."""

    @abstractmethod
    def send_email(self, recipient: str, subject: str, body: str) -> None:
        """Send ``body`` to ``recipient``; raise NotificationError on failure."""

    @abstractmethod
    def send_sms(self, recipient: str, body: str) -> None:
        """Send a short ``body`` (at most SMS_MAX_BYTES) to ``recipient``."""


@dataclass(frozen=True)
class SmtpSettings:
    """Connection settings for SmtpNotifier."""

    host: str = "localhost"
    port: int = 25
    sender: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    use_ssl: bool = False
    timeout: float = 30.0

    def __post_init__(self):
        if not self.host:
            raise ValueError("SMTP host cannot be empty")
        if not 0 < self.port < 65536:
            raise ValueError(f"SMTP port must be between 1 and 65535, got {self.port}")

    @property
    def from_address(self) -> str:
        return self.sender or f"opskit@{socket.getfqdn()}"


class SmtpNotifier(Notifier):
    """Notifier delivering both channels through an SMTP server."""

    def __init__(self, settings: SmtpSettings):
        self.settings = settings

    def send_email(self, recipient: str, subject: str, body: str) -> None:
        message = MIMEText(body, "plain", "utf-8")
        message["Subject"] = subject
        message["From"] = self.settings.from_address
        message["To"] = recipient
        self._deliver(recipient, message)
        logger.info(f"Email alert sent to {recipient}")

    def send_sms(self, recipient: str, body: str) -> None:
        message = MIMEText(truncate_bytes(body), "plain", "utf-8")
        message["From"] = self.settings.from_address
        message["To"] = recipient
        self._deliver(recipient, message)
        logger.info(f"SMS alert sent to {recipient}")

    def _deliver(self, recipient: str, message: MIMEText) -> None:
        settings = self.settings
        smtp_class = smtplib.SMTP_SSL if settings.use_ssl else smtplib.SMTP
        try:
            with smtp_class(settings.host, settings.port, timeout=settings.timeout) as server:
                if settings.user and settings.password:
                    server.login(settings.user, settings.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(
                f"Failed to deliver to {recipient} via {settings.host}:{settings.port}: {e}"
            ) from e
