"""
Domain intelligence fetcher.

Runs the WHOIS, DNS and HTTP checkers for every domain concurrently and
merges their output into one normalized DomainRecord per domain.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .checkers.base_checker import BaseChecker, CheckResult, worst_status
from .checkers.dns import DNSChecker
from .checkers.http import HTTPChecker
from .checkers.whois import WhoisChecker
from .console.output import ConsoleManager
from .console.progress import FetchProgress
from .normalize import merge_name_servers, normalize_hostnames


logger = logging.getLogger(__name__)


@dataclass
class DomainRecord:
    """
    Normalized intelligence for a single domain.

    Attributes:
        domain: The domain name
        registrar: Registrar reported by WHOIS
        country: Registrant country reported by WHOIS
        statuses: EPP status codes
        creation_date: Registration date (ISO 8601)
        expiration_date: Expiration date (ISO 8601)
        days_until_expiry: Days left before expiration (negative if expired)
        name_servers: Union of WHOIS and DNS name servers
        ns_mismatch: WHOIS and DNS disagree on the name servers
        a_records: IPv4 addresses
        aaaa_records: IPv6 addresses
        mx_records: Mail exchangers as "preference host"
        txt_records: TXT record strings
        http_status: Final HTTP status code, if a server answered
        final_url: URL reached after redirects
        alive: A web server answered with a status below 500
        overall_status: Worst status among the sources
        errors: Per-source error messages
        fetch_time: Seconds spent on this domain
    """
    domain: str
    registrar: Optional[str] = None
    country: Optional[str] = None
    statuses: List[str] = field(default_factory=list)
    creation_date: Optional[str] = None
    expiration_date: Optional[str] = None
    days_until_expiry: Optional[int] = None
    name_servers: List[str] = field(default_factory=list)
    ns_mismatch: bool = False
    a_records: List[str] = field(default_factory=list)
    aaaa_records: List[str] = field(default_factory=list)
    mx_records: List[str] = field(default_factory=list)
    txt_records: List[str] = field(default_factory=list)
    http_status: Optional[int] = None
    final_url: Optional[str] = None
    alive: bool = False
    overall_status: str = CheckResult.OK
    errors: Dict[str, str] = field(default_factory=dict)
    fetch_time: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


def build_record(domain: str, results: Dict[str, CheckResult], fetch_time: float = 0.0) -> DomainRecord:
    """
    Merge the per-source results for ``domain`` into one DomainRecord.

    Sources that failed contribute their message to ``errors`` and nothing
    else; the name server lists of WHOIS and DNS are merged and compared.
    """
    record = DomainRecord(domain=domain, fetch_time=fetch_time)

    for check_type, result in results.items():
        if result.failed:
            record.errors[check_type] = result.message

    whois_result = results.get('whois')
    whois_ns: List[str] = []
    if whois_result and not whois_result.failed:
        details = whois_result.details
        record.registrar = details.get('registrar')
        record.country = details.get('country')
        record.statuses = list(details.get('statuses') or [])
        record.creation_date = details.get('creation_date')
        record.expiration_date = details.get('expiration_date')
        record.days_until_expiry = details.get('days_until_expiry')
        whois_ns = normalize_hostnames(details.get('name_servers') or [])

    dns_result = results.get('dns')
    dns_ns: List[str] = []
    if dns_result and not dns_result.failed:
        details = dns_result.details
        record.a_records = list(details.get('a_records') or [])
        record.aaaa_records = list(details.get('aaaa_records') or [])
        record.mx_records = list(details.get('mx_records') or [])
        record.txt_records = list(details.get('txt_records') or [])
        dns_ns = normalize_hostnames(details.get('ns_records') or [])

    record.name_servers = merge_name_servers(whois_ns, dns_ns)
    record.ns_mismatch = bool(whois_ns and dns_ns and set(whois_ns) != set(dns_ns))
    if record.ns_mismatch:
        logger.info(f"Name server mismatch for {domain}: whois={whois_ns} dns={dns_ns}")

    http_result = results.get('http')
    if http_result:
        record.http_status = http_result.details.get('status_code')
        record.final_url = http_result.details.get('final_url')
        record.alive = bool(http_result.details.get('alive'))

    record.overall_status = overall_status(results)
    return record


def overall_status(results: Dict[str, CheckResult]) -> str:
    """Worst status among ``results`` (OK when there are none)."""
    return worst_status(result.status for result in results.values())


class DomainFetcher:
    """
    Fetches WHOIS, DNS and HTTP data for many domains in parallel.

    Args:
        timeout: Per-source timeout in seconds
        nameserver: Optional nameserver for DNS queries
        console_manager: Optional ConsoleManager for progress display
    """

    # Maximum number of domains to fetch concurrently
    MAX_CONCURRENT_DOMAINS = 20

    def __init__(
        self,
        timeout: int = 10,
        nameserver: Optional[str] = None,
        console_manager: Optional[ConsoleManager] = None
    ):
        self.timeout = timeout
        self.console_manager = console_manager
        self.checkers: Dict[str, BaseChecker] = {
            'whois': WhoisChecker(timeout=timeout),
            'dns': DNSChecker(timeout=timeout, nameserver=nameserver),
            'http': HTTPChecker(timeout=timeout),
        }

    async def fetch_all(self, domains: List[str]) -> List[DomainRecord]:
        """
        Fetch intelligence for all domains concurrently.

        Returns:
            One DomainRecord per domain, in input order
        """
        logger.info(f"Fetching data for {len(domains)} domain(s)")
        start_time = time.time()
        semaphore = asyncio.Semaphore(self.MAX_CONCURRENT_DOMAINS)

        if self.console_manager:
            progress = FetchProgress(self.console_manager.console, len(domains))
        else:
            progress = None

        async def bounded_fetch(domain: str) -> DomainRecord:
            async with semaphore:
                if progress:
                    progress.working_on(domain)
                record = await self.fetch_domain(domain)
                if progress:
                    progress.done(record.overall_status)
                return record

        with progress or contextlib.nullcontext():
            results = await asyncio.gather(*(bounded_fetch(d) for d in domains), return_exceptions=True)

        records = []
        for domain, result in zip(domains, results):
            if isinstance(result, Exception):
                logger.error(f"Failed to fetch data for {domain}: {result}", exc_info=result)
                records.append(DomainRecord(
                    domain=domain,
                    overall_status=CheckResult.ERROR,
                    errors={'fetch': str(result) or type(result).__name__}
                ))
            else:
                records.append(result)

        logger.info(f"Fetched {len(records)} domain(s) in {time.time() - start_time:.2f}s")
        return records

    async def fetch_domain(self, domain: str) -> DomainRecord:
        """Query every source for ``domain`` in parallel and merge the results."""
        start_time = time.time()
        check_types = list(self.checkers)
        check_results = await asyncio.gather(
            *(safe_check(self.checkers[check_type], domain) for check_type in check_types)
        )
        results = dict(zip(check_types, check_results))
        return build_record(domain, results, fetch_time=time.time() - start_time)


async def safe_check(checker: BaseChecker, domain: str, **kwargs) -> CheckResult:
    """
    Run ``checker`` with a timeout, converting any failure into an ERROR result.

    Keeps one slow or broken source from taking down the other lookups for
    the same domain.
    """
    try:
        return await asyncio.wait_for(checker.check(domain, **kwargs), timeout=checker.timeout)
    except asyncio.TimeoutError:
        logger.error(f"{checker.source} lookup timed out for {domain} after {checker.timeout}s")
        return checker._error_result(
            domain,
            f"Check timed out after {checker.timeout}s",
            error_type="TimeoutError",
            timeout_seconds=checker.timeout,
        )
    except Exception as e:
        error_msg = str(e) or f"{type(e).__name__} occurred"
        logger.error(f"{checker.source} lookup failed for {domain}: {error_msg}", exc_info=True)
        return checker._error_result(domain, f"Check failed: {error_msg}", error_type=type(e).__name__)
