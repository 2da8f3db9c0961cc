"""Table change observation over PostgreSQL LISTEN/NOTIFY."""

from tablewatch.observer.debounce import DebouncedSubscription
from tablewatch.observer.dispatcher import EventDispatcher
from tablewatch.observer.events import ChangeEvent, ChangeMessage, Operation, build_change_event, diff_rows, parse_change_message
from tablewatch.observer.fragments import Fragment, FragmentReassembler, parse_fragment
from tablewatch.observer.listener import PostgresNotifyListener
from tablewatch.observer.observer import TableObserver
from tablewatch.observer.protocols import NotificationListener, StatementExecutor
from tablewatch.observer.registry import Subscription, SubscriptionHandle, SubscriptionRegistry, normalize_tables
from tablewatch.observer.sql import build_trigger_function_sql

__all__ = [
    "ChangeEvent",
    "ChangeMessage",
    "DebouncedSubscription",
    "EventDispatcher",
    "Fragment",
    "FragmentReassembler",
    "NotificationListener",
    "Operation",
    "PostgresNotifyListener",
    "StatementExecutor",
    "Subscription",
    "SubscriptionHandle",
    "SubscriptionRegistry",
    "TableObserver",
    "build_change_event",
    "build_trigger_function_sql",
    "diff_rows",
    "normalize_tables",
    "parse_change_message",
    "parse_fragment",
]
