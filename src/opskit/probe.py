"""One-line HTTP status and timing probe."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import aiohttp

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """Outcome of a single probe request."""

    url: str
    status_code: Optional[int] = None
    final_url: Optional[str] = None
    total_time: float = 0.0
    ttfb: Optional[float] = None
    size: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status_code is not None and self.status_code < 400

    def format_line(self) -> str:
        """Render the result as a single line, e.g. ``200 0.132s ttfb=0.101s size=1256B https://x/``."""
        if self.error is not None:
            return f"ERR {self.total_time:.3f}s {self.error} {self.url}"
        ttfb = f"{self.ttfb:.3f}s" if self.ttfb is not None else "-"
        return (
            f"{self.status_code} {self.total_time:.3f}s ttfb={ttfb} "
            f"size={self.size}B {self.final_url or self.url}"
        )


def normalize_url(url: str) -> str:
    """Add ``http://`` to scheme-less URLs."""
    url = url.strip()
    if '://' not in url:
        return f"http://{url}"
    if urlparse(url).scheme not in ('http', 'https'):
        raise ValueError(f"Unsupported URL scheme in '{url}'")
    return url


class HTTPProbe:
    """
    Issues one request and measures it.

    Time to first byte is taken from aiohttp's request tracing hooks: the
    ``on_request_end`` hook fires once response headers have arrived.
    """

    def __init__(self, timeout: float = 10.0, method: str = 'GET', follow_redirects: bool = True):
        self.timeout = timeout
        self.method = method.upper()
        self.follow_redirects = follow_redirects

    async def probe(self, url: str) -> ProbeResult:
        url = normalize_url(url)
        result = ProbeResult(url=url)
        timings = {}

        async def on_request_start(session, context, params):
            timings.setdefault('start', time.perf_counter())

        async def on_request_end(session, context, params):
            timings['headers'] = time.perf_counter()

        trace_config = aiohttp.TraceConfig()
        trace_config.on_request_start.append(on_request_start)
        trace_config.on_request_end.append(on_request_end)

        start = time.perf_counter()
        try:
            client_timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=client_timeout, trace_configs=[trace_config]) as session:
                async with session.request(
                    self.method,
                    url,
                    allow_redirects=self.follow_redirects,
                    ssl=False
                ) as response:
                    body = await response.read()
                    result.status_code = response.status
                    result.final_url = str(response.url)
                    result.size = len(body)
        except asyncio.TimeoutError:
            result.error = f"timeout after {self.timeout:g}s"
        except aiohttp.ClientError as e:
            result.error = str(e) or type(e).__name__
            logger.debug(f"Probe of {url} failed: {result.error}")
        finally:
            result.total_time = time.perf_counter() - start

        if 'headers' in timings:
            result.ttfb = timings['headers'] - timings.get('start', start)
        return result
