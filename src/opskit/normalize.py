"""
Normalization helpers for merging WHOIS, DNS and HTTP data.

WHOIS servers disagree on almost everything: fields may be scalars or lists,
dates may be datetimes or strings in a dozen layouts, host names come in any
case with or without a trailing dot. These helpers collapse that variety into
one consistent shape.
"""

from datetime import datetime
from typing import Any, Iterable, List, Optional


# Date layouts seen in raw WHOIS output that python-whois leaves as strings
DATE_FORMATS = [
    '%Y-%m-%d',
    '%Y-%m-%d %H:%M:%S',
    '%Y-%m-%dT%H:%M:%S',
    '%Y-%m-%dT%H:%M:%SZ',
    '%Y-%m-%dT%H:%M:%S.%fZ',
    '%Y.%m.%d',
    '%Y/%m/%d',
    '%d-%b-%Y',
    '%d.%m.%Y',
    '%d/%m/%Y',
    '%Y%m%d',
]


def first_value(value: Any) -> Any:
    """Return the first item of a list/tuple, or the value itself."""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def as_list(value: Any) -> List[Any]:
    """Wrap a scalar in a list; drop None and empty strings."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple, set)):
        value = [value]
    return [v for v in value if v is not None and v != '']


def parse_date(value: Any) -> Optional[datetime]:
    """
    Convert a WHOIS date field into a naive datetime.

    Lists use their first parseable entry. Timezone-aware values are
    converted to naive by dropping the tzinfo, matching how expiry
    arithmetic is done elsewhere.

    Args:
        value: datetime, string, or list of either

    Returns:
        Parsed datetime, or None if nothing could be parsed
    """
    for candidate in as_list(value):
        parsed = _parse_single_date(candidate)
        if parsed is not None:
            return parsed
    return None


def _parse_single_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None) if value.tzinfo else value
    if not isinstance(value, str):
        return None

    text = value.strip()
    try:
        parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        return parsed.replace(tzinfo=None) if parsed.tzinfo else parsed
    except ValueError:
        pass

    # Drop trailing timezone names such as "UTC" before trying the fixed layouts
    text = text.split(' (')[0]
    for suffix in (' UTC', ' GMT'):
        if text.endswith(suffix):
            text = text[:-len(suffix)]

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def normalize_hostname(name: Any) -> Optional[str]:
    """Lower-case a host name and strip whitespace and the trailing root dot."""
    if not isinstance(name, str):
        return None
    cleaned = name.strip().lower().rstrip('.')
    return cleaned or None


def normalize_hostnames(names: Iterable[Any]) -> List[str]:
    """Normalize, de-duplicate and sort host names."""
    result = set()
    for name in names:
        # Some registries append the glue address: "ns1.example.com 192.0.2.1"
        if isinstance(name, str):
            name = name.split()[0] if name.split() else name
        cleaned = normalize_hostname(name)
        if cleaned:
            result.add(cleaned)
    return sorted(result)


def normalize_statuses(value: Any) -> List[str]:
    """
    Reduce EPP status entries to their status code.

    ``"clientTransferProhibited https://icann.org/epp#clientTransferProhibited"``
    becomes ``"clientTransferProhibited"``; duplicates are removed.
    """
    statuses: List[str] = []
    for entry in as_list(value):
        if not isinstance(entry, str) or not entry.split():
            continue
        code = entry.split()[0]
        if code not in statuses:
            statuses.append(code)
    return statuses


def merge_name_servers(whois_servers: Iterable[Any], dns_servers: Iterable[Any]) -> List[str]:
    """Union of the name servers reported by WHOIS and by DNS NS records."""
    return normalize_hostnames(list(whois_servers) + list(dns_servers))
