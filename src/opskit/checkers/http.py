"""
HTTP source: is a web server answering for the domain?
"""

import asyncio
import logging
import time
from typing import Any, List, Tuple

import aiohttp

from .base_checker import BaseChecker, CheckResult

logger = logging.getLogger(__name__)


# Statuses below this mean a server is up, even if it refuses the root page
ALIVE_BELOW = 500


def http_status_level(status_code: int) -> str:
    """OK for 2xx, ERROR for 5xx, WARNING for anything else."""
    if 200 <= status_code < 300:
        return CheckResult.OK
    if 500 <= status_code < 600:
        return CheckResult.ERROR
    return CheckResult.WARNING


class HTTPChecker(BaseChecker):
    """
    Liveness lookup of ``https://<domain>``, falling back to ``http://``.

    The fallback is taken only when HTTPS could not connect at all (refused,
    TLS failure); any HTTP answer over HTTPS is final. Redirects are followed
    and the chain is kept in the details.
    """

    source = "http"
    PROTOCOLS = ('https', 'http')

    async def check(self, domain: str, **kwargs) -> CheckResult:
        started = time.time()
        try:
            for protocol in self.PROTOCOLS:
                url = f"{protocol}://{domain}"
                try:
                    status_code, chain, headers = await self._make_request(url)
                except (aiohttp.ClientSSLError, aiohttp.ClientConnectorError) as e:
                    if protocol == self.PROTOCOLS[-1]:
                        raise
                    logger.debug(f"{url} unreachable ({e}); trying the next protocol")
                    continue
                return self._response_result(domain, protocol, url, status_code, chain, headers, started)
        except asyncio.TimeoutError:
            logger.warning(f"HTTP request to {domain} timed out after {self.timeout}s")
            return self._error_result(domain, f"Request timed out after {self.timeout}s", alive=False)
        except aiohttp.ClientError as e:
            logger.info(f"HTTP request failed for {domain}: {e}")
            return self._error_result(domain, f"HTTP request failed: {e}", alive=False)
        except Exception as e:
            logger.error(f"HTTP check failed for {domain}: {e}", exc_info=True)
            return self._error_result(
                domain, f"HTTP check failed: {e}", alive=False, error_type=type(e).__name__
            )

    def _response_result(
        self,
        domain: str,
        protocol: str,
        url: str,
        status_code: int,
        chain: List[str],
        headers: Any,
        started: float,
    ) -> CheckResult:
        details = {
            'status_code': status_code,
            'protocol': protocol,
            'final_url': chain[-1] if chain else url,
            'alive': status_code < ALIVE_BELOW,
            'server': dict(headers).get('Server'),
            'request_time': time.time() - started,
        }
        message = f"HTTP {status_code}"
        if chain:
            details['redirect_chain'] = chain
            message += f" (followed {len(chain) - 1} redirect(s))"
        logger.debug(f"{url} answered {status_code}")
        return self._create_result(domain, http_status_level(status_code), message, details)

    async def _make_request(self, url: str) -> Tuple[int, List[str], Any]:
        """
        GET ``url`` following redirects.

        Returns:
            (final status, visited URLs or [] when not redirected, response headers)
        """
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            # Certificate problems must not hide a running server
            async with session.get(url, allow_redirects=True, ssl=False) as response:
                chain = [str(r.url) for r in response.history]
                if chain:
                    chain.append(str(response.url))
                return response.status, chain, response.headers
