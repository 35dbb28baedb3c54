"""Configuration management for opskit jobs and domain lists."""

import json
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from opskit.runner.exceptions import ConfigurationError


DEFAULT_MAX_RUN_MINUTES = 60
DEFAULT_ALERT_GAP_MINUTES = 60

# Keys accepted in a job file, mapped to RunnerConfig field names
JOB_FILE_KEYS = {
    'name': 'name',
    'workdir': 'workdir',
    'command': 'command',
    'log_dir': 'log_dir',
    'lock_dir': 'lock_dir',
    'sms': 'sms_recipients',
    'email': 'email_recipients',
    'max_run_minutes': 'max_run_minutes',
    'alert_gap_minutes': 'alert_gap_minutes',
    'ignore_patterns': 'ignore_patterns',
    'kill_after_max': 'kill_after_max',
}

_SLUG_STRIP = re.compile(r'[^A-Za-z0-9]')


def slugify(name: str) -> str:
    """Derive the filesystem-safe job slug by keeping only ASCII letters and digits."""
    return _SLUG_STRIP.sub('', name)


def split_recipients(values: Optional[List[str]]) -> Tuple[str, ...]:
    """
    Flatten repeated and comma/whitespace separated recipient options.

    Args:
        values: Raw option values, e.g. ['a@x.com,b@x.com', 'c@x.com']

    Returns:
        Tuple of recipients in order of appearance without duplicates
    """
    recipients: List[str] = []
    for value in values or []:
        for item in re.split(r'[,\s]+', value):
            if item and item not in recipients:
                recipients.append(item)
    return tuple(recipients)


@dataclass(frozen=True)
class JobIdentity:
    """Human-readable job name and its derived slug."""

    name: str
    slug: str

    @classmethod
    def from_name(cls, name: str) -> 'JobIdentity':
        name = (name or '').strip()
        slug = slugify(name)
        if not slug:
            raise ConfigurationError(
                f"Job name '{name}' must contain at least one letter or digit"
            )
        return cls(name=name, slug=slug)


@dataclass(frozen=True)
class RunnerConfig:
    """Immutable configuration of one locking task runner invocation."""

    name: str
    workdir: str
    command: str
    log_dir: Optional[str] = None
    lock_dir: Optional[str] = None
    sms_recipients: Tuple[str, ...] = ()
    email_recipients: Tuple[str, ...] = ()
    max_run_minutes: float = DEFAULT_MAX_RUN_MINUTES
    alert_gap_minutes: float = DEFAULT_ALERT_GAP_MINUTES
    ignore_patterns: Tuple[str, ...] = ()
    kill_after_max: bool = False
    identity: JobIdentity = field(init=False)

    def __post_init__(self):
        missing = [
            option for option, value in (
                ('--name', self.name),
                ('--workdir', self.workdir),
                ('--command', self.command),
            )
            if not value or not str(value).strip()
        ]
        if missing:
            raise ConfigurationError(f"Missing mandatory option(s): {', '.join(missing)}")

        if self.max_run_minutes <= 0:
            raise ConfigurationError(f"max run minutes must be positive, got {self.max_run_minutes}")
        if self.alert_gap_minutes < 0:
            raise ConfigurationError(f"alert gap minutes cannot be negative, got {self.alert_gap_minutes}")

        # frozen dataclass: assign derived fields through object.__setattr__
        object.__setattr__(self, 'identity', JobIdentity.from_name(self.name))
        object.__setattr__(self, 'sms_recipients', tuple(self.sms_recipients))
        object.__setattr__(self, 'email_recipients', tuple(self.email_recipients))
        object.__setattr__(self, 'ignore_patterns', tuple(self.ignore_patterns))

    @property
    def slug(self) -> str:
        return self.identity.slug

    @property
    def resolved_log_dir(self) -> Path:
        if self.log_dir:
            return Path(self.log_dir)
        return Path(self.workdir) / 'logs'

    @property
    def resolved_lock_dir(self) -> Path:
        if self.lock_dir:
            return Path(self.lock_dir)
        return Path(tempfile.gettempdir())


def _read_structured_file(path: Path) -> Any:
    """Parse a YAML or JSON file, wrapping syntax errors in ValueError."""
    try:
        content = path.read_text(encoding='utf-8')
        if path.suffix in ['.yaml', '.yml']:
            return yaml.safe_load(content)
        if path.suffix == '.json':
            return json.loads(content)
        raise ValueError(f"Unsupported file format: {path.suffix}. Use .yaml, .yml, or .json")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML syntax: {str(e)}")
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON syntax at line {e.lineno}, column {e.colno}: {e.msg}")


def load_job_file(file_path: str) -> Dict[str, Any]:
    """
    Load a job definition file (YAML or JSON).

    Expected format:
        name: Nightly Sync
        workdir: /srv/sync
        command: ./sync.sh --full
        email: [ops@example.com]
        sms: [5551234567@txt.example.net]
        max_run_minutes: 90
        ignore_patterns:
          - '^warning: \\d+ rows unloaded'

    Args:
        file_path: Path to the job file

    Returns:
        Dictionary keyed by RunnerConfig field names

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file cannot be parsed or contains unknown keys
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Job file not found: {file_path}")

    data = _read_structured_file(path)
    if data is None:
        raise ValueError("Job file is empty")
    if not isinstance(data, dict):
        raise ValueError("Job file must contain an object/dictionary")

    unknown = sorted(set(data) - set(JOB_FILE_KEYS))
    if unknown:
        raise ValueError(
            f"Unknown key(s) in job file: {', '.join(unknown)}. "
            f"Valid keys are: {', '.join(sorted(JOB_FILE_KEYS))}"
        )

    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key in ('sms', 'email'):
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, list):
                raise ValueError(f"'{key}' must be a list or a string")
            value = split_recipients([str(v) for v in value])
        elif key == 'ignore_patterns':
            if not isinstance(value, list):
                raise ValueError("'ignore_patterns' must be a list")
            value = tuple(str(v) for v in value)
        elif key in ('max_run_minutes', 'alert_gap_minutes'):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"'{key}' must be a number")
        elif key == 'kill_after_max':
            value = bool(value)
        else:
            value = str(value)
        values[JOB_FILE_KEYS[key]] = value

    return values


def load_domain_list(file_path: str) -> List[str]:
    """
    Load domain names for the fetcher.

    YAML/JSON files hold a ``domains`` list whose items are either strings or
    objects with a ``name`` key. Any other file is read as plain text with one
    domain per line; blank lines and ``#`` comments are ignored.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file format is invalid
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Domain list not found: {file_path}")

    if path.suffix in ['.yaml', '.yml', '.json']:
        data = _read_structured_file(path)
        if data is None:
            raise ValueError("Domain list file is empty")
        if isinstance(data, list):
            entries = data
        elif isinstance(data, dict):
            entries = data.get('domains', [])
        else:
            raise ValueError("Domain list must be a list or contain a 'domains' list")
        if not isinstance(entries, list):
            raise ValueError("'domains' must be a list")

        domains = []
        for idx, entry in enumerate(entries):
            if isinstance(entry, dict):
                entry = entry.get('name')
            if not isinstance(entry, str) or not entry.strip():
                raise ValueError(f"Domain at index {idx} must be a non-empty string or have a 'name'")
            domains.append(entry.strip())
    else:
        domains = []
        for line in path.read_text(encoding='utf-8').splitlines():
            line = line.split('#', 1)[0].strip()
            if line:
                domains.append(line)

    return dedupe_domains(domains)


def dedupe_domains(domains: List[str]) -> List[str]:
    """Lower-case domains, drop trailing dots and duplicates, keep order."""
    seen = []
    for domain in domains:
        domain = domain.strip().lower().rstrip('.')
        if domain and domain not in seen:
            seen.append(domain)
    return seen
