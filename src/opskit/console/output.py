"""Central console output manager for Rich-formatted output.

All user-facing console output of the fetch, probe and lockrun commands goes
through ConsoleManager. Cron jobs usually mail whatever a command prints, so
nothing here prints unless there is something the operator must see.
"""

from typing import Optional, Dict, Any
import traceback
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text
from .themes import get_theme, ICONS


# (substring, suggestion) pairs checked in order against lower-cased messages
ERROR_SUGGESTIONS = [
    (('file not found', 'no such file'),
     "Check that the file path is correct and the file exists. Use absolute paths if needed."),
    (('permission denied', 'access denied'),
     "Check directory permissions of the log and lock directories for the user the scheduler runs as."),
    (('missing mandatory',),
     "Pass --name, --workdir and --command, or provide them in a --job-file."),
    (('timeout', 'timed out'),
     "Check your network connection and firewall settings. The host may be unreachable or slow to respond."),
    (('nxdomain', 'failed to resolve', 'name or service not known'),
     "Verify the domain name is correct and has valid DNS records."),
    (('connection refused',),
     "The server is not accepting connections on this port. Verify the service is running."),
    (('smtp',),
     "Check the SMTP host, port and credentials (--smtp-* options or OPSKIT_SMTP_* variables)."),
    (('whois',),
     "WHOIS queries may be rate-limited or blocked. Try again later or check if the domain is registered."),
]


class ConsoleManager:
    """Central console output manager.

    Attributes:
        console: Rich Console instance (stderr when ``stderr`` is set)
        debug_mode: Whether info messages and stack traces are shown
    """

    def __init__(self, debug_mode: bool = False, stderr: bool = False):
        self.debug_mode = debug_mode
        self.theme = get_theme()
        self.console = Console(theme=self.theme, stderr=stderr)

    def print_error(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        exception: Optional[Exception] = None,
        show_traceback: bool = False
    ) -> None:
        """Display an error message in a panel.

        Args:
            message: Error message to display
            details: Optional context (job, domain, log file, ...)
            exception: Optional exception whose traceback is shown in debug mode
            show_traceback: Force showing the traceback outside debug mode
        """
        error_text = Text()
        error_text.append(f"{ICONS['error']} ", style="error")
        error_text.append(message, style="error")

        if details:
            error_text.append("\n\n", style="white")
            error_text.append("Context:\n", style="bold dim")
            for key, value in details.items():
                error_text.append(f"  {key.replace('_', ' ').title()}: ", style="dim")
                error_text.append(f"{value}\n", style="white")

        suggestion = self._get_error_suggestion(message)
        if suggestion:
            error_text.append("\n", style="white")
            error_text.append(f"{ICONS['info']} Suggestion: ", style="info")
            error_text.append(suggestion, style="cyan")

        self.console.print(Panel(
            error_text,
            title="[bold red]Error[/bold red]",
            border_style="red",
            padding=(1, 2)
        ))

        if (self.debug_mode or show_traceback) and exception:
            self._print_traceback(exception)

    def _get_error_suggestion(self, message: str) -> Optional[str]:
        message_lower = message.lower()
        for needles, suggestion in ERROR_SUGGESTIONS:
            if any(needle in message_lower for needle in needles):
                return suggestion
        return None

    def _print_traceback(self, exception: Exception) -> None:
        tb_text = ''.join(traceback.format_exception(
            type(exception),
            exception,
            exception.__traceback__
        ))
        self.console.print()
        self.console.print(Panel(
            Syntax(tb_text, "python", theme="monokai", line_numbers=True, word_wrap=True),
            title="[bold red]Stack Trace[/bold red]",
            border_style="red",
            padding=(1, 2)
        ))

    def print_success(self, message: str) -> None:
        self.console.print(f"{ICONS['success']} {message}", style="success")

    def print_warning(self, message: str) -> None:
        self.console.print(f"{ICONS['warning']} {message}", style="warning")

    def print_info(self, message: str) -> None:
        """Display info message (only in debug mode)."""
        if self.debug_mode:
            self.console.print(f"{ICONS['info']} {message}", style="info")
