"""tablewatch: receive PostgreSQL row changes through triggers and NOTIFY."""

from tablewatch.config import DebounceOptions, ObserverSettings, load_settings
from tablewatch.exceptions import (
    AlreadyInitializedError,
    CallbackError,
    ConfigurationError,
    ConnectionLostError,
    DatabaseConnectionError,
    DuplicateSubscriptionError,
    DuplicateTableInRequestError,
    InitializationError,
    MalformedFragmentError,
    PayloadParseError,
    ProtocolError,
    TableWatchError,
    TriggerError,
)
from tablewatch.observer import ChangeEvent, DebouncedSubscription, Operation, SubscriptionHandle, TableObserver

__all__ = [
    "AlreadyInitializedError",
    "CallbackError",
    "ChangeEvent",
    "ConfigurationError",
    "ConnectionLostError",
    "DatabaseConnectionError",
    "DebounceOptions",
    "DebouncedSubscription",
    "DuplicateSubscriptionError",
    "DuplicateTableInRequestError",
    "InitializationError",
    "MalformedFragmentError",
    "ObserverSettings",
    "Operation",
    "PayloadParseError",
    "ProtocolError",
    "SubscriptionHandle",
    "TableObserver",
    "TableWatchError",
    "TriggerError",
    "load_settings",
]
