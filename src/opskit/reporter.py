"""
Reporter for domain intelligence records.

Displays fetched records as a rich table and exports them to JSON or CSV.
"""

import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.table import Table
from rich.text import Text

from .console.output import ConsoleManager
from .console.themes import status_label
from .checkers.base_checker import status_rank
from .fetcher import DomainRecord


logger = logging.getLogger(__name__)


CSV_FIELDS = [
    'domain',
    'overall_status',
    'registrar',
    'country',
    'creation_date',
    'expiration_date',
    'days_until_expiry',
    'statuses',
    'name_servers',
    'ns_mismatch',
    'a_records',
    'aaaa_records',
    'mx_records',
    'http_status',
    'final_url',
    'alive',
    'errors',
]


class Reporter:
    """
    Formats and outputs DomainRecords.

    Args:
        records: Records returned by DomainFetcher
        console_manager: ConsoleManager used for display and feedback
    """

    def __init__(self, records: List[DomainRecord], console_manager: Optional[ConsoleManager] = None):
        self.records = records
        self.console_manager = console_manager or ConsoleManager()
        self.console = self.console_manager.console

    def display_table(self) -> None:
        """Print one table row per domain, worst status first."""
        table = Table(title="Domain Intelligence", show_lines=False)
        table.add_column("Domain", style="domain", no_wrap=True)
        table.add_column("Status")
        table.add_column("Registrar")
        table.add_column("Expires")
        table.add_column("Name servers")
        table.add_column("A")
        table.add_column("HTTP")

        for record in self.sorted_records():
            table.add_row(
                record.domain,
                status_label(record.overall_status),
                record.registrar or "-",
                self._format_expiry(record),
                "\n".join(record.name_servers) or "-",
                "\n".join(record.a_records) or "-",
                self._format_http(record),
            )

        self.console.print(table)

        for record in self.records:
            for source, message in record.errors.items():
                self.console_manager.print_warning(f"{record.domain} [{source}] {message}")

    def sorted_records(self) -> List[DomainRecord]:
        return sorted(
            self.records,
            key=lambda r: (status_rank(r.overall_status), r.domain)
        )

    def _format_expiry(self, record: DomainRecord) -> str:
        if not record.expiration_date:
            return "-"
        date = record.expiration_date.split('T')[0]
        if record.days_until_expiry is None:
            return date
        return f"{date} ({record.days_until_expiry}d)"

    def _format_http(self, record: DomainRecord) -> Text:
        if record.http_status is None:
            return Text("down", style="red")
        style = "green" if record.alive else "red"
        return Text(str(record.http_status), style=style)

    def export(self, file_path: str) -> None:
        """Export to JSON or CSV depending on the file suffix."""
        suffix = Path(file_path).suffix.lower()
        if suffix == '.json':
            self.export_json(file_path)
        elif suffix == '.csv':
            self.export_csv(file_path)
        else:
            raise ValueError(f"Unsupported output format: {suffix}. Please use .json or .csv extension.")

    def export_json(self, file_path: str) -> None:
        output_path = Path(file_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(self._records_to_dict(), f, indent=2, default=str)

        logger.info(f"Results exported to JSON: {file_path}")
        self.console_manager.print_success(f"Results exported to: {file_path}")

    def export_csv(self, file_path: str) -> None:
        """
        Export records to CSV, one row per domain.

        List fields are joined with ``;`` and the per-source errors are
        rendered as ``source: message`` pairs.
        """
        rows = [self._record_to_row(record) for record in self.records]
        if not rows:
            logger.warning("No results to export")
            self.console_manager.print_warning("No results to export")
            return

        output_path = Path(file_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
            writer.writeheader()
            writer.writerows(rows)

        logger.info(f"Results exported to CSV: {file_path}")
        self.console_manager.print_success(
            f"Results exported to: {file_path} ({len(rows)} row{'s' if len(rows) != 1 else ''})"
        )

    def _records_to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": datetime.now().isoformat(),
            "total_domains": len(self.records),
            "domains": [record.to_dict() for record in self.records],
        }

    def _record_to_row(self, record: DomainRecord) -> Dict[str, Any]:
        data = record.to_dict()
        row = {}
        for name in CSV_FIELDS:
            value = data.get(name)
            if name == 'errors':
                value = '; '.join(f"{source}: {message}" for source, message in value.items())
            elif isinstance(value, list):
                value = ';'.join(str(v) for v in value)
            elif value is None:
                value = ''
            row[name] = value
        return row
