"""
WHOIS source: registration data and expiry.

python-whois hands back whatever the registry printed, so every field goes
through the normalize helpers before it reaches the DomainRecord.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, Optional

import whois

from opskit.normalize import (
    as_list,
    first_value,
    normalize_hostnames,
    normalize_statuses,
    parse_date,
)
from .base_checker import BaseChecker, CheckResult

logger = logging.getLogger(__name__)


EXPIRY_CRITICAL_DAYS = 30
EXPIRY_WARNING_DAYS = 60


def days_until(expiry: datetime, now: Optional[datetime] = None) -> int:
    """Whole days from ``now`` to ``expiry``; negative once expired."""
    if expiry.tzinfo is not None:
        expiry = expiry.replace(tzinfo=None)
    return (expiry - (now or datetime.now())).days


def expiry_status(days: int) -> str:
    if days < EXPIRY_CRITICAL_DAYS:
        return CheckResult.CRITICAL
    if days < EXPIRY_WARNING_DAYS:
        return CheckResult.WARNING
    return CheckResult.OK


def _text_field(whois_data: Any, name: str) -> Optional[str]:
    value = first_value(getattr(whois_data, name, None))
    if isinstance(value, str):
        return value.strip() or None
    return None


def extract_registration(whois_data: Any) -> Dict[str, Any]:
    """
    Pull the registration fields out of a python-whois response.

    Dates become naive ISO 8601 strings; when a registry lists several
    expiration dates the first parseable one is used.
    """
    country = _text_field(whois_data, 'country')
    creation = parse_date(getattr(whois_data, 'creation_date', None))
    updated = parse_date(getattr(whois_data, 'updated_date', None))
    expiration = parse_date(getattr(whois_data, 'expiration_date', None))

    return {
        "registrar": _text_field(whois_data, 'registrar'),
        "country": country.upper() if country else None,
        "statuses": normalize_statuses(getattr(whois_data, 'status', None)),
        "name_servers": normalize_hostnames(as_list(getattr(whois_data, 'name_servers', None))),
        "creation_date": creation.isoformat() if creation else None,
        "updated_date": updated.isoformat() if updated else None,
        "expiration_date": expiration.isoformat() if expiration else None,
    }


class WhoisChecker(BaseChecker):
    """
    Registration lookup.

    The status reflects the time left before expiration: CRITICAL below
    30 days, WARNING below 60, OK otherwise. A response without a usable
    expiration date is a WARNING that still carries the other fields.
    """

    source = "whois"

    async def check(self, domain: str, **kwargs) -> CheckResult:
        started = time.time()
        try:
            # python-whois blocks on a socket; keep the event loop free
            loop = asyncio.get_event_loop()
            whois_data = await loop.run_in_executor(None, whois.whois, domain)
            details = extract_registration(whois_data)
        except (AttributeError, KeyError) as e:
            logger.error(f"WHOIS response for {domain} could not be parsed: {e}", exc_info=True)
            return self._error_result(domain, f"WHOIS query failed: {e}", error_type="whois_error")
        except Exception as e:
            logger.error(f"WHOIS lookup failed for {domain}: {e}", exc_info=True)
            return self._error_result(domain, f"WHOIS check failed: {e}", error_type=type(e).__name__)

        details["query_time"] = time.time() - started
        logger.debug(f"WHOIS for {domain} answered in {details['query_time']:.3f}s")

        if details["expiration_date"] is None:
            logger.warning(f"No expiration date in WHOIS data for {domain}")
            return self._create_result(
                domain, CheckResult.WARNING, "Unable to extract expiration date from WHOIS data", details
            )

        days = days_until(datetime.fromisoformat(details["expiration_date"]))
        details["days_until_expiry"] = days
        if days < 0:
            message = f"Domain expired {abs(days)} days ago"
        else:
            message = f"Domain expires in {days} days"
        return self._create_result(domain, expiry_status(days), message, details)
