"""
Tests for the domain intelligence reporter.
"""

import csv
import json
from io import StringIO

import pytest
from rich.console import Console

from opskit.checkers.base_checker import CheckResult
from opskit.console.output import ConsoleManager
from opskit.fetcher import DomainRecord
from opskit.reporter import CSV_FIELDS, Reporter


@pytest.fixture
def console_manager():
    """ConsoleManager writing into a buffer."""
    manager = ConsoleManager()
    manager.console = Console(file=StringIO(), theme=manager.theme, width=200)
    return manager


@pytest.fixture
def records():
    return [
        DomainRecord(
            domain="example.com",
            registrar="Example Registrar",
            expiration_date="2030-01-01T00:00:00",
            days_until_expiry=1200,
            name_servers=["ns1.example.com", "ns2.example.com"],
            a_records=["192.0.2.1"],
            http_status=200,
            alive=True,
        ),
        DomainRecord(
            domain="broken.example",
            overall_status=CheckResult.ERROR,
            errors={'dns': "Domain does not exist (NXDOMAIN)"},
        ),
    ]


class TestDisplay:

    def test_table_lists_domains_worst_first(self, records, console_manager):
        reporter = Reporter(records, console_manager)

        reporter.display_table()
        output = console_manager.console.file.getvalue()

        assert "example.com" in output
        assert "Example Registrar" in output
        assert "2030-01-01 (1200d)" in output
        assert output.index("broken.example") < output.index("example.com")
        assert "NXDOMAIN" in output

    def test_sorted_records(self, records, console_manager):
        ordered = Reporter(records, console_manager).sorted_records()

        assert [r.domain for r in ordered] == ["broken.example", "example.com"]


class TestExport:

    def test_export_json(self, records, console_manager, tmp_path):
        output = tmp_path / "report.json"

        Reporter(records, console_manager).export(str(output))

        data = json.loads(output.read_text())
        assert data['total_domains'] == 2
        assert data['domains'][0]['domain'] == "example.com"
        assert data['domains'][1]['errors'] == {'dns': "Domain does not exist (NXDOMAIN)"}

    def test_export_csv(self, records, console_manager, tmp_path):
        output = tmp_path / "nested" / "report.csv"

        Reporter(records, console_manager).export(str(output))

        with open(output, newline='') as f:
            rows = list(csv.DictReader(f))
        assert list(rows[0].keys()) == CSV_FIELDS
        assert rows[0]['name_servers'] == "ns1.example.com;ns2.example.com"
        assert rows[0]['registrar'] == "Example Registrar"
        assert rows[1]['registrar'] == ""
        assert rows[1]['errors'] == "dns: Domain does not exist (NXDOMAIN)"

    def test_export_csv_without_records(self, console_manager, tmp_path):
        output = tmp_path / "empty.csv"

        Reporter([], console_manager).export_csv(str(output))

        assert not output.exists()

    def test_unsupported_format(self, records, console_manager, tmp_path):
        with pytest.raises(ValueError, match="Unsupported output format"):
            Reporter(records, console_manager).export(str(tmp_path / "report.xml"))
