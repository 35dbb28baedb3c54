"""Shared fixtures for opskit tests."""

from typing import List, Tuple

import pytest

from opskit.runner.exceptions import NotificationError
from opskit.runner.notifier import Notifier


class RecordingNotifier(Notifier):
    """Notifier that records deliveries instead of sending them."""

    def __init__(self, fail_for: Tuple[str, ...] = ()):
        self.emails: List[Tuple[str, str, str]] = []
        self.sms: List[Tuple[str, str]] = []
        self.fail_for = set(fail_for)

    def send_email(self, recipient: str, subject: str, body: str) -> None:
        if recipient in self.fail_for:
            raise NotificationError(f"refused {recipient}")
        self.emails.append((recipient, subject, body))

    def send_sms(self, recipient: str, body: str) -> None:
        if recipient in self.fail_for:
            raise NotificationError(f"refused {recipient}")
        self.sms.append((recipient, body))

    @property
    def dispatch_count(self) -> int:
        return len(self.emails) + len(self.sms)


@pytest.fixture
def notifier():
    """A notifier that records every delivery."""
    return RecordingNotifier()
