"""
Locking task runner.

Runs a scheduled command with single-instance mutual exclusion, stale-run
detection and throttled critical-error alerting.
"""

from .exceptions import ConfigurationError, EnvironmentSetupError, NotificationError, RunnerError
from .lock import Acquired, AlreadyHeld, LockManager
from .errors import ErrorFilter, DEFAULT_IGNORE_PATTERNS
from .notifier import Notifier, SmtpNotifier, SmtpSettings
from .throttle import AlertOutcome, AlertStore, AlertThrottle
from .command import CommandExecutor, CommandOutcome

__all__ = [
    'Acquired',
    'AlertOutcome',
    'AlertStore',
    'AlertThrottle',
    'AlreadyHeld',
    'CommandExecutor',
    'CommandOutcome',
    'ConfigurationError',
    'DEFAULT_IGNORE_PATTERNS',
    'EnvironmentSetupError',
    'ErrorFilter',
    'LockManager',
    'Notifier',
    'NotificationError',
    'RunnerError',
    'SmtpNotifier',
    'SmtpSettings',
]
