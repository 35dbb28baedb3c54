"""
DNS source: A, AAAA, MX, NS and TXT records.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

import dns.exception
import dns.resolver

from opskit.normalize import normalize_hostname, normalize_hostnames
from .base_checker import BaseChecker, CheckResult

logger = logging.getLogger(__name__)


def _format_mx(answers: Iterable) -> List[str]:
    return sorted(
        f"{answer.preference} {normalize_hostname(answer.exchange.to_text())}"
        for answer in answers
    )


def _format_txt(answers: Iterable) -> List[str]:
    # Long TXT values arrive as several character-strings
    return [
        ''.join(
            part.decode('utf-8', errors='replace') if isinstance(part, bytes) else str(part)
            for part in answer.strings
        )
        for answer in answers
    ]


def _format_ns(answers: Iterable) -> List[str]:
    return normalize_hostnames(answer.to_text() for answer in answers)


def _format_address(answers: Iterable) -> List[str]:
    return sorted(answer.to_text() for answer in answers)


RECORD_FORMATTERS: Dict[str, Callable[[Iterable], List[str]]] = {
    'A': _format_address,
    'AAAA': _format_address,
    'MX': _format_mx,
    'NS': _format_ns,
    'TXT': _format_txt,
}


class DNSChecker(BaseChecker):
    """
    Record lookup through the system resolver or one given nameserver.

    Record types are queried concurrently. A type without an answer is an
    empty list; only NXDOMAIN turns the whole lookup into an ERROR. A domain
    with neither A nor AAAA records is a WARNING.

    Args:
        timeout: Resolver lifetime per query in seconds
        nameserver: Nameserver IP, or None for the system resolver
    """

    source = "dns"
    RECORD_TYPES = list(RECORD_FORMATTERS)

    def __init__(self, timeout: int = 10, nameserver: Optional[str] = None):
        super().__init__(timeout=timeout)
        self.nameserver = nameserver

    async def check(self, domain: str, **kwargs) -> CheckResult:
        started = time.time()
        try:
            answers = await asyncio.gather(
                *(self._query_record(domain, record_type) for record_type in self.RECORD_TYPES)
            )
        except dns.resolver.NXDOMAIN:
            logger.info(f"{domain} does not exist (NXDOMAIN)")
            return self._error_result(domain, "Domain does not exist (NXDOMAIN)", error_type="NXDOMAIN")
        except Exception as e:
            logger.error(f"DNS lookup failed for {domain}: {e}", exc_info=True)
            return self._error_result(domain, f"DNS check failed: {e}", error_type=type(e).__name__)

        records = dict(zip(self.RECORD_TYPES, answers))
        details = {f"{record_type.lower()}_records": values for record_type, values in records.items()}
        details["query_time"] = time.time() - started

        if not (records['A'] or records['AAAA']):
            return self._create_result(domain, CheckResult.WARNING, "No A or AAAA records found", details)

        total = sum(map(len, records.values()))
        return self._create_result(domain, CheckResult.OK, f"Resolved {total} record(s)", details)

    async def _query_record(self, domain: str, record_type: str) -> List[str]:
        """
        Records of one type, or [] when the server has none or cannot answer.

        Raises:
            dns.resolver.NXDOMAIN: If the domain does not exist
        """
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(
                None, self._query_record_sync, domain, record_type, self.nameserver
            )
        except (dns.resolver.NoAnswer, dns.resolver.NoNameservers, dns.exception.Timeout) as e:
            logger.debug(f"No {record_type} answer for {domain}: {type(e).__name__}")
            return []

    def _query_record_sync(
        self,
        domain: str,
        record_type: str,
        nameserver: Optional[str] = None
    ) -> List[str]:
        resolver = dns.resolver.Resolver()
        resolver.timeout = self.timeout
        resolver.lifetime = self.timeout
        if nameserver:
            resolver.nameservers = [nameserver]

        return RECORD_FORMATTERS[record_type](resolver.resolve(domain, record_type))
