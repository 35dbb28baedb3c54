"""
Alert throttling for critical job errors.

Every observed error is appended to a per-job pending log. A notification
carrying the whole pending log is dispatched only when no notification was
sent within the configured gap; otherwise the text stays pending and goes out
with the next dispatch. This keeps a rapidly re-triggering broken job from
flooding recipients while never losing error text.
"""

import enum
import logging
import socket
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .exceptions import NotificationError
from .notifier import Notifier, truncate_bytes

logger = logging.getLogger(__name__)


class AlertOutcome(enum.Enum):
    """Result of one throttle evaluation."""

    DISPATCHED = "dispatched"
    BUFFERED = "buffered"
    FAILED = "failed"


class AlertStore:
    """
    Durable per-job alert markers.

    Two files live in ``state_dir``:

    - ``<slug>.critical.log``: error text not yet sent (append-only)
    - ``<slug>.lastsent``: epoch time of the last successful dispatch
    """

    def __init__(self, state_dir: Union[str, Path], slug: str):
        self.state_dir = Path(state_dir)
        self.slug = slug
        self.pending_path = self.state_dir / f"{slug}.critical.log"
        self.last_sent_path = self.state_dir / f"{slug}.lastsent"

    def append_error(self, text: str) -> None:
        if not text:
            return
        if not text.endswith("\n"):
            text += "\n"
        with open(self.pending_path, "a", encoding="utf-8") as f:
            f.write(text)

    def pending_text(self) -> str:
        try:
            return self.pending_path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""

    def last_sent(self) -> Optional[float]:
        try:
            raw = self.last_sent_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None

        try:
            return float(raw)
        except ValueError:
            logger.warning(f"Ignoring unreadable last-sent marker {self.last_sent_path}: {raw!r}")
            return None

    def should_notify(self, now: float, gap_minutes: float) -> bool:
        last = self.last_sent()
        if last is None:
            return True
        return (now - last) > gap_minutes * 60

    def mark_notified(self, now: float) -> None:
        """Clear the pending log and advance the last-sent marker to ``now``."""
        last = self.last_sent()
        stamp = now if last is None else max(last, now)
        self.last_sent_path.write_text(f"{stamp:.3f}\n", encoding="utf-8")
        # Truncate rather than delete so tailing tools keep their handle
        with open(self.pending_path, "w", encoding="utf-8"):
            pass


@dataclass
class DispatchReport:
    """Deliveries attempted during one dispatch."""

    delivered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return bool(self.delivered) or not self.failed


class AlertThrottle:
    """
    Decides whether an observed error is sent now or only buffered.

    Args:
        store: Durable markers for the job
        notifier: Delivery collaborator
        job_name: Human-readable job name used in subjects
        email_recipients: Addresses receiving the full pending log
        sms_recipients: Addresses receiving a 500 byte digest
        gap_minutes: Minimum minutes between two dispatches
    """

    def __init__(
        self,
        store: AlertStore,
        notifier: Notifier,
        job_name: str,
        email_recipients: Sequence[str] = (),
        sms_recipients: Sequence[str] = (),
        gap_minutes: float = 60,
    ):
        self.store = store
        self.notifier = notifier
        self.job_name = job_name
        self.email_recipients = list(email_recipients)
        self.sms_recipients = list(sms_recipients)
        self.gap_minutes = gap_minutes

    def report(self, text: str, now: Optional[float] = None) -> AlertOutcome:
        """
        Record ``text`` and dispatch the pending log if the gap has elapsed.

        Args:
            text: Error text observed by this invocation
            now: Current epoch time

        Returns:
            The AlertOutcome of this evaluation
        """
        now = time.time() if now is None else now
        self.store.append_error(text)

        if not self.store.should_notify(now, self.gap_minutes):
            logger.info(
                f"Alert for '{self.job_name}' buffered: last notification was sent "
                f"less than {self.gap_minutes} minute(s) ago"
            )
            return AlertOutcome.BUFFERED

        pending = self.store.pending_text()
        report = self.dispatch(pending)
        if not report.succeeded:
            logger.error(
                f"Alert for '{self.job_name}' could not be delivered to any recipient; "
                f"error text stays pending"
            )
            return AlertOutcome.FAILED

        self.store.mark_notified(now)
        logger.info(f"Alert for '{self.job_name}' dispatched to {len(report.delivered)} recipient(s)")
        return AlertOutcome.DISPATCHED

    def dispatch(self, pending: str) -> DispatchReport:
        report = DispatchReport()
        if not self.email_recipients and not self.sms_recipients:
            logger.warning(f"No alert recipients configured for '{self.job_name}'")
            return report

        subject = f"[{self.job_name}] critical error on {socket.gethostname()}"
        for recipient in self.email_recipients:
            try:
                self.notifier.send_email(recipient, subject, pending)
                report.delivered.append(recipient)
            except NotificationError as e:
                logger.error(f"Email alert to {recipient} failed: {e}")
                report.failed.append(recipient)

        digest = truncate_bytes(pending)
        for recipient in self.sms_recipients:
            try:
                self.notifier.send_sms(recipient, digest)
                report.delivered.append(recipient)
            except NotificationError as e:
                logger.error(f"SMS alert to {recipient} failed: {e}")
                report.failed.append(recipient)

        return report
