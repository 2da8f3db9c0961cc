"""Table subscriptions and the lifecycle of per-table triggers."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from tablewatch.exceptions import (
    ConfigurationError,
    DuplicateSubscriptionError,
    DuplicateTableInRequestError,
    TriggerError,
)
from tablewatch.observer.protocols import StatementExecutor
from tablewatch.observer.sql import create_table_trigger_sql, drop_table_trigger_sql, table_trigger_name

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Any], Any]


@dataclass(slots=True, eq=False)
class Subscription:
    """One callback observing a fixed set of tables."""

    id: str
    tables: tuple[str, ...]
    callback: ChangeCallback
    active: bool = True


class SubscriptionHandle:
    """Returned by subscribe(); stop() removes the subscription."""

    def __init__(self, registry: SubscriptionRegistry, subscription: Subscription) -> None:
        self._registry = registry
        self._subscription = subscription

    @property
    def id(self) -> str:
        return self._subscription.id

    @property
    def tables(self) -> tuple[str, ...]:
        return self._subscription.tables

    @property
    def active(self) -> bool:
        return self._subscription.active

    async def stop(self) -> None:
        """Stop delivery to this callback. Further calls are no-ops."""
        await self._registry.unsubscribe(self._subscription)

    async def __aenter__(self) -> SubscriptionHandle:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def __repr__(self) -> str:
        return f"SubscriptionHandle(id={self.id!r}, tables={self.tables!r}, active={self.active})"


def normalize_tables(tables: str | Iterable[str]) -> tuple[str, ...]:
    """Validate the tables argument and lower-case every name.

    Raises:
        ConfigurationError: not a string or a non-empty collection of strings.
        DuplicateTableInRequestError: a table is listed more than once.
    """
    if isinstance(tables, str):
        tables = [tables]
    elif isinstance(tables, (bytes, bytearray)) or not isinstance(tables, Iterable):
        raise ConfigurationError("Tables missing: expected a table name or a collection of names")
    names: list[str] = []
    for table in tables:
        if not isinstance(table, str) or not table.strip():
            raise ConfigurationError(f"Invalid table name: {table!r}")
        names.append(table.strip().lower())
    if not names:
        raise ConfigurationError("Tables missing: at least one table is required")
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise DuplicateTableInRequestError(duplicates)
    return tuple(names)


class SubscriptionRegistry:
    """Map tables to subscriptions and keep one trigger per observed table.

    Callback lists change synchronously so validation and registration cannot
    interleave with another subscribe call. Trigger DDL for a table runs under
    that table's lock, and whether to create or drop is decided under the lock
    from the current callback list.
    """

    def __init__(self, executor: StatementExecutor, channel: str, function_name: str) -> None:
        self._executor = executor
        self._channel = channel
        self._function_name = function_name
        self._entries: dict[str, list[Subscription]] = {}
        self._installed: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, table: object) -> bool:
        return isinstance(table, str) and table.lower() in self._entries

    @property
    def tables(self) -> list[str]:
        return list(self._entries)

    @property
    def installed_triggers(self) -> set[str]:
        return set(self._installed)

    @property
    def subscription_count(self) -> int:
        return len({sub.id for subs in self._entries.values() for sub in subs})

    def subscriptions_for(self, table: str) -> list[Subscription]:
        """Snapshot of subscriptions for table, in registration order."""
        return list(self._entries.get(table.lower(), ()))

    def validate(self, tables: str | Iterable[str], callback: ChangeCallback) -> tuple[str, ...]:
        """Check arguments without touching the database.

        Raises:
            ConfigurationError: invalid tables or callback.
            DuplicateTableInRequestError: duplicate table in this request.
            DuplicateSubscriptionError: callback already observes a table.
        """
        names = normalize_tables(tables)
        if not callable(callback):
            raise ConfigurationError("Callback missing: expected a callable")
        for table in names:
            if any(sub.callback == callback for sub in self._entries.get(table, ())):
                raise DuplicateSubscriptionError(table)
        return names

    async def subscribe(self, tables: str | Iterable[str], callback: ChangeCallback) -> SubscriptionHandle:
        """Register callback for tables, creating triggers for new tables.

        On a trigger failure every table of this call is rolled back and the
        first TriggerError is raised.
        """
        names = self.validate(tables, callback)
        subscription = Subscription(id=uuid.uuid4().hex, tables=names, callback=callback)
        for table in names:
            self._entries.setdefault(table, []).append(subscription)
        handle = SubscriptionHandle(self, subscription)

        results = await asyncio.gather(*(self._ensure_trigger(t) for t in names), return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            try:
                await handle.stop()
            except TriggerError:
                logger.exception("Rollback of subscription %s failed", subscription.id)
            raise errors[0]
        logger.debug("Subscription %s observes %s", subscription.id, ", ".join(names))
        return handle

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Remove subscription and drop triggers of tables nobody observes."""
        if not subscription.active:
            return
        subscription.active = False
        for table in subscription.tables:
            entries = self._entries.get(table)
            if entries is None:
                continue
            entries[:] = [sub for sub in entries if sub.id != subscription.id]
            if not entries:
                del self._entries[table]

        results = await asyncio.gather(
            *(self._release_trigger(t) for t in subscription.tables), return_exceptions=True
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise errors[0]

    def clear(self) -> None:
        """Forget all subscriptions. Triggers are assumed dropped by cascade."""
        for subs in self._entries.values():
            for sub in subs:
                sub.active = False
        self._entries.clear()
        self._installed.clear()

    @contextlib.asynccontextmanager
    async def _table_lock(self, table: str) -> AsyncIterator[None]:
        """Hold the lock for table; the lock is dropped once nobody holds or awaits it."""
        lock = self._locks.setdefault(table, asyncio.Lock())
        self._lock_users[table] = self._lock_users.get(table, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[table] -= 1
            if not self._lock_users[table]:
                del self._lock_users[table]
                del self._locks[table]

    async def _ensure_trigger(self, table: str) -> None:
        async with self._table_lock(table):
            if table in self._installed or not self._entries.get(table):
                return
            trigger_name = table_trigger_name(self._channel, table)
            try:
                await self._executor.execute(drop_table_trigger_sql(trigger_name, table))
                await self._executor.execute(create_table_trigger_sql(trigger_name, table, self._function_name))
            except Exception as exc:
                raise TriggerError(table, str(exc)) from exc
            self._installed.add(table)
            logger.debug("Created trigger %s on %s", trigger_name, table)

    async def _release_trigger(self, table: str) -> None:
        async with self._table_lock(table):
            if table not in self._installed or self._entries.get(table):
                return
            trigger_name = table_trigger_name(self._channel, table)
            try:
                await self._executor.execute(drop_table_trigger_sql(trigger_name, table))
            except Exception as exc:
                raise TriggerError(table, str(exc)) from exc
            self._installed.discard(table)
            logger.debug("Dropped trigger %s on %s", trigger_name, table)
