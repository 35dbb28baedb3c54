"""
opskit - small operational toolkit.

- a locking task runner that gives cron jobs single-instance execution,
  stale-run detection and throttled critical-error alerts
- a domain intelligence fetcher aggregating WHOIS, DNS and HTTP liveness data
- a one-line HTTP status/timing probe
"""

__version__ = "0.1.0"

from .config import RunnerConfig, JobIdentity, slugify, load_job_file, load_domain_list
from .runner.task_runner import TaskRunner
from .fetcher import DomainFetcher, DomainRecord
from .probe import HTTPProbe, ProbeResult
from .main import main

__all__ = [
    'RunnerConfig',
    'JobIdentity',
    'slugify',
    'load_job_file',
    'load_domain_list',
    'TaskRunner',
    'DomainFetcher',
    'DomainRecord',
    'HTTPProbe',
    'ProbeResult',
    'main',
]
