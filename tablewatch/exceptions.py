"""Exceptions raised by tablewatch.

Subscription and initialization errors propagate to the caller. Protocol and
callback errors are reported through the observer's error handlers instead.
"""

from __future__ import annotations


class TableWatchError(Exception):
    """Base exception for tablewatch."""

    pass


class ConfigurationError(TableWatchError):
    """Raised when arguments or settings have an invalid shape."""

    pass


class DuplicateTableInRequestError(ConfigurationError):
    """Raised when one subscribe call lists the same table twice."""

    def __init__(self, tables: list[str]) -> None:
        self.tables = tables
        super().__init__(f"Tables contain duplicates: {', '.join(tables)}")


class DuplicateSubscriptionError(TableWatchError):
    """Raised when a callback is already subscribed to a table."""

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(f"Table already being observed with this callback: {table}")


class AlreadyInitializedError(TableWatchError):
    """Raised when initialize() runs twice on the same observer."""

    pass


class InitializationError(TableWatchError):
    """Raised when installing the trigger program or the listener fails."""

    pass


class TriggerError(TableWatchError):
    """Raised when creating or dropping a per-table trigger fails."""

    def __init__(self, table: str, message: str) -> None:
        self.table = table
        super().__init__(f"Trigger operation failed for table '{table}': {message}")


class DatabaseConnectionError(TableWatchError):
    """Raised when the dedicated listening connection cannot be opened."""

    pass


class ProtocolError(TableWatchError):
    """Base class for notification protocol violations."""

    pass


class MalformedFragmentError(ProtocolError):
    """Raised when a fragment does not follow hash:count:index:text."""

    def __init__(self, fragment: str, reason: str) -> None:
        self.fragment = fragment
        self.reason = reason
        preview = fragment if len(fragment) <= 64 else fragment[:64] + "..."
        super().__init__(f"Malformed fragment ({reason}): {preview!r}")


class PayloadParseError(ProtocolError):
    """Raised when an assembled message is not a valid change payload."""

    def __init__(self, message: str, reason: str) -> None:
        self.payload = message
        self.reason = reason
        super().__init__(f"Cannot parse change payload: {reason}")


class CallbackError(TableWatchError):
    """Wraps an exception raised by a subscriber callback."""

    def __init__(self, table: str, subscription_id: str, error: BaseException) -> None:
        self.table = table
        self.subscription_id = subscription_id
        self.error = error
        super().__init__(
            f"Callback for subscription {subscription_id} on table '{table}' failed: {error!r}"
        )


class ConnectionLostError(TableWatchError):
    """Raised when the dedicated listening connection terminates unexpectedly."""

    def __init__(self, channel: str, message: str = "listening connection terminated") -> None:
        self.channel = channel
        super().__init__(f"Channel '{channel}': {message}")
