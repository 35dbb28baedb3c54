"""
Data sources for the domain intelligence fetcher.

Each checker module queries one source (WHOIS, DNS or HTTP) for a domain.
"""

from .base_checker import BaseChecker, CheckResult
from .whois import WhoisChecker
from .http import HTTPChecker
from .dns import DNSChecker

__all__ = ['BaseChecker', 'CheckResult', 'WhoisChecker', 'HTTPChecker', 'DNSChecker']
