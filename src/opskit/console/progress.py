"""Transient progress bar for ``opskit fetch``."""

import time
from typing import Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn


class FetchProgress:
    """
    Progress bar over a batch of domains, usable as a context manager.

    The bar disappears when the batch is done and leaves a single summary
    line with the elapsed time and the number of domains that need a look.
    """

    def __init__(self, console: Console, total: int):
        self.console = console
        self.total = total
        self.problems = 0
        self._started: Optional[float] = None
        self._task = None
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=True,
        )

    def __enter__(self) -> 'FetchProgress':
        self._started = time.time()
        self._progress.start()
        self._task = self._progress.add_task("[cyan]Fetching domains...", total=self.total)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._progress.stop()
        if exc_type is None:
            elapsed = time.time() - self._started
            summary = f"[bold green]✓[/bold green] Fetched {self.total} domain(s) in {elapsed:.2f}s"
            if self.problems:
                summary += f", [yellow]{self.problems} need attention[/yellow]"
            self.console.print(summary)

    def working_on(self, domain: str) -> None:
        self._progress.update(self._task, description=f"[cyan]Fetching {domain}...")

    def done(self, status: str) -> None:
        if status != 'OK':
            self.problems += 1
        self._progress.advance(self._task, 1)
