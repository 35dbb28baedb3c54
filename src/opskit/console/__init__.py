"""
Rich console output for opskit commands.
"""

from .output import ConsoleManager
from .progress import FetchProgress
from .themes import ICONS, STATUS_STYLES, get_theme, status_label

__all__ = [
    'ConsoleManager',
    'FetchProgress',
    'ICONS',
    'STATUS_STYLES',
    'get_theme',
    'status_label',
]
