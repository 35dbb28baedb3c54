"""Exception types raised by the locking task runner."""


class RunnerError(Exception):
    """Base class for task runner errors."""


class ConfigurationError(RunnerError, ValueError):
    """Mandatory job parameters are missing or invalid."""


class EnvironmentSetupError(RunnerError):
    """Log directory, debug log or error buffer could not be created."""


class NotificationError(RunnerError):
    """An email or SMS could not be handed to the transport."""
