"""Table observer: trigger installation, notification loop and lifecycle."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from tablewatch.config.models import DebounceOptions, ObserverSettings
from tablewatch.db.engine import create_engine
from tablewatch.db.executor import EngineStatementExecutor
from tablewatch.exceptions import (
    AlreadyInitializedError,
    CallbackError,
    ConfigurationError,
    ConnectionLostError,
    InitializationError,
    MalformedFragmentError,
    PayloadParseError,
    ProtocolError,
)
from tablewatch.observer.debounce import DebouncedSubscription, FireCallback, Predicate
from tablewatch.observer.dispatcher import EventDispatcher
from tablewatch.observer.fragments import FragmentReassembler
from tablewatch.observer.listener import PostgresNotifyListener
from tablewatch.observer.protocols import NotificationListener, StatementExecutor
from tablewatch.observer.registry import ChangeCallback, SubscriptionHandle, SubscriptionRegistry
from tablewatch.observer.sql import build_trigger_function_sql, drop_trigger_function_sql, trigger_function_name

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[Exception], Any]


class _ConnectionReset:
    """Queue marker: the listening connection was lost."""

    def __init__(self, error: ConnectionLostError) -> None:
        self.error = error


class TableObserver:
    """Observe insert, update and delete events on PostgreSQL tables.

    One observer owns one NOTIFY channel. The first subscribe() installs the
    trigger program and opens a dedicated listening connection. Fragments
    received on that connection are queued and processed by a single dispatch
    task, which reassembles them and calls the subscribers of the table.

    Example::

        observer = TableObserver("postgresql://localhost/app", "myapp")
        handle = await observer.subscribe(["orders"], print)
        ...
        await handle.stop()
        await observer.cleanup()
    """

    def __init__(
        self,
        database: str | AsyncEngine | StatementExecutor | None,
        channel: str,
        *,
        listener: NotificationListener | None = None,
        settings: ObserverSettings | None = None,
    ) -> None:
        if not isinstance(channel, str) or not channel.strip() or "\x00" in channel:
            raise ConfigurationError("Channel must be a non-empty string")
        self._settings = settings or ObserverSettings()
        self._channel = channel.strip()
        self._function_name = trigger_function_name(self._channel, self._settings.function_prefix)
        self._owned_engine: AsyncEngine | None = None
        self._executor, self._listener = self._resolve_backends(database, listener)

        self._registry = SubscriptionRegistry(self._executor, self._channel, self._function_name)
        self._reassembler = FragmentReassembler(
            max_pending=self._settings.max_pending_messages,
            max_pages=self._settings.max_message_pages,
            pending_ttl=self._settings.pending_ttl_seconds,
        )
        self._dispatcher = EventDispatcher(self._registry, self._report_error)
        self._error_handlers: list[ErrorHandler] = []
        self._debounced: set[DebouncedSubscription] = set()
        self._queue: asyncio.Queue[str | _ConnectionReset] = asyncio.Queue()
        self._dispatch_task: asyncio.Task[None] | None = None
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._counters = {"malformed_fragments": 0, "parse_errors": 0, "callback_errors": 0}

    def _resolve_backends(
        self,
        database: str | AsyncEngine | StatementExecutor | None,
        listener: NotificationListener | None,
    ) -> tuple[StatementExecutor, NotificationListener]:
        reconnect = self._settings.reconnect_interval
        if database is None:
            database = self._settings.database_url
        if database is None or isinstance(database, str):
            engine = create_engine(database)
            self._owned_engine = engine
            database = engine
        if isinstance(database, AsyncEngine):
            executor: StatementExecutor = EngineStatementExecutor(database)
            if listener is None:
                dsn = database.url.render_as_string(hide_password=False)
                listener = PostgresNotifyListener(dsn, reconnect_interval=reconnect)
            return executor, listener
        if listener is None:
            raise ConfigurationError("A listener is required when passing a custom statement executor")
        return database, listener

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def function_name(self) -> str:
        return self._function_name

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def reassembler(self) -> FragmentReassembler:
        return self._reassembler

    def on_error(self, handler: ErrorHandler) -> None:
        """Register a handler for non-fatal errors and connection loss."""
        self._error_handlers.append(handler)

    async def initialize(self) -> None:
        """Install the trigger program and start listening on the channel.

        Raises:
            AlreadyInitializedError: called twice without cleanup().
            InitializationError: any step failed; partial state is rolled back.
        """
        if self._initialized:
            raise AlreadyInitializedError(f"Observer for channel '{self._channel}' already initialized")
        self._initialized = True
        try:
            await self._executor.execute(drop_trigger_function_sql(self._function_name))
            await self._executor.execute(
                build_trigger_function_sql(self._function_name, self._channel, self._settings.fragment_size)
            )
            self._dispatch_task = asyncio.get_running_loop().create_task(
                self._dispatch_loop(), name=f"tablewatch-dispatch-{self._channel}"
            )
            await self._listener.connect(self._on_connection_lost)
            await self._listener.listen(self._channel, self._on_fragment)
        except Exception as exc:
            try:
                await self.cleanup()
            except Exception:
                logger.exception("Rollback after failed initialization of channel %s failed", self._channel)
            raise InitializationError(f"Cannot initialize observer for channel '{self._channel}': {exc}") from exc
        logger.info("Observing channel %s with trigger function %s", self._channel, self._function_name)

    async def subscribe(self, tables: str | Iterable[str], callback: ChangeCallback) -> SubscriptionHandle:
        """Call callback with a ChangeEvent for every row change on tables.

        Raises:
            ConfigurationError: invalid tables or callback.
            DuplicateTableInRequestError: the same table listed twice.
            DuplicateSubscriptionError: callback already observes a table.
            InitializationError: first-use initialization failed.
            TriggerError: a table trigger could not be created.
        """
        names = self._registry.validate(tables, callback)
        await self._ensure_initialized()
        return await self._registry.subscribe(names, callback)

    async def subscribe_debounced(
        self,
        tables: str | Iterable[str],
        predicate: Predicate,
        on_fire: FireCallback,
        options: DebounceOptions | None = None,
    ) -> DebouncedSubscription:
        """Call on_fire at most twice per debounce window while predicate matches."""
        if not callable(predicate):
            raise ConfigurationError("Predicate missing: expected a callable")
        if not callable(on_fire):
            raise ConfigurationError("Callback missing: expected a callable")
        debounced = DebouncedSubscription(
            predicate,
            on_fire,
            options or DebounceOptions(),
            self._report_error,
            on_stop=self._debounced.discard,
        )
        handle = await self.subscribe(tables, debounced.on_change)
        debounced.bind(handle)
        self._debounced.add(debounced)
        return debounced

    async def cleanup(self) -> None:
        """Drop the trigger program, close the listener and forget all state.

        Safe to call when never initialized and safe to call repeatedly.
        """
        for debounced in self._debounced:
            debounced.deactivate()
        self._debounced.clear()
        if not self._initialized:
            return
        try:
            await self._executor.execute(drop_trigger_function_sql(self._function_name))
        finally:
            self._initialized = False
            try:
                await self._listener.close()
            finally:
                await self._stop_dispatch_loop()
                self._reassembler.clear()
                self._registry.clear()
                logger.info("Stopped observing channel %s", self._channel)

    async def close(self) -> None:
        """cleanup() and dispose the engine created by this observer."""
        try:
            await self.cleanup()
        finally:
            if self._owned_engine is not None:
                await self._owned_engine.dispose()
                self._owned_engine = None

    async def wait_idle(self) -> None:
        """Wait until every queued fragment has been processed."""
        await self._queue.join()

    def health_check(self) -> dict[str, Any]:
        """Return observer state and counters."""
        return {
            "initialized": self._initialized,
            "connected": self._initialized and self._listener.connected,
            "channel": self._channel,
            "function_name": self._function_name,
            "tables": self._registry.tables,
            "subscriptions": self._registry.subscription_count,
            "pending_messages": len(self._reassembler),
            "dropped_messages": self._reassembler.dropped_messages,
            "delivered_events": self._dispatcher.delivered_events,
            **self._counters,
        }

    async def __aenter__(self) -> TableObserver:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _ensure_initialized(self) -> None:
        async with self._init_lock:
            if not self._initialized:
                await self.initialize()

    def _on_fragment(self, payload: str) -> None:
        self._queue.put_nowait(payload)

    def _on_connection_lost(self, error: ConnectionLostError) -> None:
        self._queue.put_nowait(_ConnectionReset(error))

    async def _dispatch_loop(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._process(item)
            except Exception:
                logger.exception("Unexpected error while processing notification on %s", self._channel)
            finally:
                self._queue.task_done()

    async def _process(self, item: str | _ConnectionReset) -> None:
        if isinstance(item, _ConnectionReset):
            self._reassembler.clear()
            await self._report_error(item.error)
            return
        try:
            message = self._reassembler.ingest(item)
        except MalformedFragmentError as exc:
            await self._report_error(exc)
            return
        if message is None:
            return
        try:
            await self._dispatcher.dispatch(message)
        except PayloadParseError as exc:
            await self._report_error(exc)

    async def _stop_dispatch_loop(self) -> None:
        task, self._dispatch_task = self._dispatch_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    async def _report_error(self, error: Exception) -> None:
        if isinstance(error, MalformedFragmentError):
            self._counters["malformed_fragments"] += 1
            logger.warning("Dropping fragment on channel %s: %s", self._channel, error)
        elif isinstance(error, ProtocolError):
            self._counters["parse_errors"] += 1
            logger.warning("Dropping message on channel %s: %s", self._channel, error)
        elif isinstance(error, CallbackError):
            self._counters["callback_errors"] += 1
            logger.error("%s", error, exc_info=error.error)
        elif isinstance(error, ConnectionLostError):
            logger.error("Lost listening connection: %s", error)
        else:
            logger.error("tablewatch error on channel %s: %s", self._channel, error)

        for handler in list(self._error_handlers):
            try:
                result = handler(error)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error handler %r failed", handler)
