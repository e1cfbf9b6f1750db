"""Exception types raised outside the retry loop."""


class ReserveBotError(Exception):
    """Base class for all reservebot failures."""


class ConfigError(ReserveBotError):
    """Raised when the task document is missing or invalid."""


class InvalidScheduleError(ReserveBotError):
    """Raised when the target instant is not strictly in the future."""


class DriverSetupError(ReserveBotError):
    """Raised when the Action Driver cannot prepare the session."""


class DriverCommitError(ReserveBotError):
    """Raised when the irreversible final commit fails."""


class DriverTeardownError(ReserveBotError):
    """Raised when the Action Driver cannot release its resources."""


class StatusStoreError(ReserveBotError):
    """Raised when the status record cannot be read or written."""
