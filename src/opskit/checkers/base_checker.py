"""
Common ground for the fetcher's data sources.

Every source (WHOIS, DNS, HTTP) answers a lookup with a CheckResult. A source
that could not be queried at all reports ERROR; CRITICAL and WARNING are
reserved for data that was fetched and looks bad (e.g. a domain about to
expire).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional


@dataclass
class CheckResult:
    """
    Outcome of one source lookup.

    Attributes:
        domain: Domain that was looked up
        check_type: Name of the source ('whois', 'dns' or 'http')
        status: OK, WARNING, ERROR or CRITICAL
        message: One-line summary
        details: Source data, already normalized by the checker
        timestamp: When the lookup finished
    """
    domain: str
    check_type: str
    status: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    OK = "OK"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def failed(self) -> bool:
        """The source could not be queried; ``details`` carries no data."""
        return self.status == CheckResult.ERROR


# Lower sorts first: the worst status of a set is its minimum
STATUS_PRIORITY = {
    CheckResult.CRITICAL: 0,
    CheckResult.ERROR: 1,
    CheckResult.WARNING: 2,
    CheckResult.OK: 3,
}


def status_rank(status: str) -> int:
    return STATUS_PRIORITY.get(status, len(STATUS_PRIORITY))


def worst_status(statuses: Iterable[str]) -> str:
    """Most severe of ``statuses``; OK for an empty iterable."""
    return min(statuses, key=status_rank, default=CheckResult.OK)


class BaseChecker(ABC):
    """
    One data source queried by the fetcher.

    Args:
        timeout: Seconds allowed for a lookup; also passed to the network client
    """

    source = "base"

    def __init__(self, timeout: int = 10):
        self.timeout = timeout

    @abstractmethod
    async def check(self, domain: str, **kwargs) -> CheckResult:
        """Look ``domain`` up and return what the source knows about it."""

    def _create_result(
        self,
        domain: str,
        status: str,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> CheckResult:
        return CheckResult(
            domain=domain,
            check_type=self.source,
            status=status,
            message=message,
            details=details or {},
        )

    def _error_result(self, domain: str, message: str, **details) -> CheckResult:
        """ERROR result for a lookup that produced no data."""
        return self._create_result(domain, CheckResult.ERROR, message, details)
