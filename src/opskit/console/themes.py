"""Styles and status labels shared by opskit's console output."""

from rich.text import Text
from rich.theme import Theme

ICONS = {
    'success': '✓',
    'error': '✗',
    'warning': '⚠',
    'info': 'ℹ',
}

# status -> (icon, style)
STATUS_STYLES = {
    'OK': (ICONS['success'], 'green'),
    'WARNING': (ICONS['warning'], 'yellow'),
    'ERROR': (ICONS['error'], 'red'),
    'CRITICAL': (ICONS['error'], 'bold red'),
}


def status_label(status: str) -> Text:
    """Icon and status name in the status color, e.g. ``✓ OK`` in green."""
    icon, style = STATUS_STYLES.get(status, (ICONS['info'], 'white'))
    return Text(f"{icon} {status}", style=style)


def get_theme() -> Theme:
    return Theme({
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "success": "bold green",
        "domain": "bold cyan",
    })
