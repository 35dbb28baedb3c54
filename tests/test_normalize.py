"""
Tests for WHOIS/DNS normalization helpers.
"""

from datetime import datetime, timezone

import pytest
from hypothesis import given, strategies as st

from opskit.normalize import (
    as_list,
    first_value,
    merge_name_servers,
    normalize_hostname,
    normalize_hostnames,
    normalize_statuses,
    parse_date,
)


class TestScalarsAndLists:

    def test_first_value(self):
        assert first_value(["a", "b"]) == "a"
        assert first_value([]) is None
        assert first_value("a") == "a"

    def test_as_list_drops_empty(self):
        assert as_list(None) == []
        assert as_list("x") == ["x"]
        assert as_list(["x", None, "", "y"]) == ["x", "y"]


class TestParseDate:
    """Tests for parse_date."""

    @pytest.mark.parametrize("raw,expected", [
        ("2025-08-13", datetime(2025, 8, 13)),
        ("2025-08-13T04:00:00Z", datetime(2025, 8, 13, 4, 0, 0)),
        ("2025-08-13 04:00:00 UTC", datetime(2025, 8, 13, 4, 0, 0)),
        ("13-Aug-2025", datetime(2025, 8, 13)),
        ("13.08.2025", datetime(2025, 8, 13)),
        ("2025.08.13", datetime(2025, 8, 13)),
        ("20250813", datetime(2025, 8, 13)),
    ])
    def test_string_layouts(self, raw, expected):
        assert parse_date(raw) == expected

    def test_aware_datetime_made_naive(self):
        parsed = parse_date(datetime(2025, 8, 13, tzinfo=timezone.utc))

        assert parsed == datetime(2025, 8, 13)
        assert parsed.tzinfo is None

    def test_list_uses_first_parseable(self):
        assert parse_date(["garbage", datetime(2030, 1, 1), "2031-01-01"]) == datetime(2030, 1, 1)

    def test_unparseable(self):
        assert parse_date("sometime next year") is None
        assert parse_date(None) is None
        assert parse_date(42) is None


class TestHostnames:
    """Tests for host name normalization."""

    def test_normalize_hostname(self):
        assert normalize_hostname(" NS1.Example.COM. ") == "ns1.example.com"
        assert normalize_hostname(".") is None
        assert normalize_hostname(None) is None

    def test_glue_address_dropped(self):
        assert normalize_hostnames(["ns1.example.com 192.0.2.1", "NS2.example.com."]) == [
            "ns1.example.com",
            "ns2.example.com",
        ]

    def test_merge_name_servers(self):
        merged = merge_name_servers(["NS1.example.com"], ["ns1.example.com.", "ns2.example.com"])

        assert merged == ["ns1.example.com", "ns2.example.com"]

    @given(st.lists(st.from_regex(r"[A-Za-z0-9]{1,10}(\.[A-Za-z0-9]{1,10}){1,3}\.?", fullmatch=True)))
    def test_normalization_is_idempotent(self, names):
        once = normalize_hostnames(names)

        assert normalize_hostnames(once) == once
        assert once == sorted(set(once))


class TestStatuses:

    def test_epp_url_suffix_removed(self):
        raw = [
            "clientTransferProhibited https://icann.org/epp#clientTransferProhibited",
            "clientTransferProhibited",
            "ok",
        ]

        assert normalize_statuses(raw) == ["clientTransferProhibited", "ok"]

    def test_scalar_status(self):
        assert normalize_statuses("active") == ["active"]
