"""Exception hierarchy shared by the cache, the facade and storage adapters."""

from typing import Dict, List, Optional


class SettingsError(Exception):
    """Base class for all livesettings errors."""


class SettingValidationError(SettingsError):
    """A setting failed its type or format constraints.

    This is a permanent error: the record is never written and retrying will
    not help. ``errors`` maps field names to human readable messages.
    """

    def __init__(self, errors: Dict[str, List[str]], message: Optional[str] = None):
        self.errors = {field: list(messages) for field, messages in errors.items()}
        if message is None:
            details = "; ".join(
                f"{field} {msg}" for field, messages in self.errors.items() for msg in messages
            )
            message = f"Invalid setting: {details}" if details else "Invalid setting"
        super().__init__(message)


class StoreUnavailableError(SettingsError):
    """The backing store could not be reached (connection refused, timeout, ...).

    Transient. Background refreshes skip the cycle and try again on the next
    tick; synchronous lookups propagate it so a failure is never mistaken for
    a missing key.
    """


class NamespaceError(SettingsError, ValueError):
    """An invalid or unknown settings namespace was requested."""


class InvalidStoreDataError(SettingsError):
    """The store answered, but with data that cannot be parsed.

    Permanent: the same payload fails again on the next attempt, so it is
    logged as an error instead of being treated like an outage.
    """
