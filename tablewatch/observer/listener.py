"""PostgreSQL LISTEN connection based on asyncpg."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

import asyncpg

from tablewatch.db.engine import to_asyncpg_dsn
from tablewatch.exceptions import ConnectionLostError, DatabaseConnectionError

logger = logging.getLogger(__name__)


class PostgresNotifyListener:
    """Dedicated asyncpg connection that forwards NOTIFY payloads.

    The connection is opened with ``asyncpg.connect`` and never comes from a
    pool. When ``reconnect_interval`` is set, an unexpected termination starts
    a background loop that reconnects and re-issues LISTEN; notifications sent
    while disconnected are lost.
    """

    def __init__(self, dsn: str, reconnect_interval: float | None = None) -> None:
        self._dsn = to_asyncpg_dsn(dsn)
        self._reconnect_interval = reconnect_interval
        self._conn: Any | None = None
        self._channel: str | None = None
        self._on_fragment: Callable[[str], None] | None = None
        self._on_connection_lost: Callable[[ConnectionLostError], None] | None = None
        self._closing = False
        self._reconnect_task: asyncio.Task[None] | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.is_closed()

    async def connect(self, on_connection_lost: Callable[[ConnectionLostError], None]) -> None:
        self._on_connection_lost = on_connection_lost
        self._closing = False
        await self._open()

    async def listen(self, channel: str, on_fragment: Callable[[str], None]) -> None:
        if self._conn is None:
            raise DatabaseConnectionError("listen() called before connect()")
        self._channel = channel
        self._on_fragment = on_fragment
        await self._conn.add_listener(channel, self._on_notify)

    async def close(self) -> None:
        self._closing = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reconnect_task
            self._reconnect_task = None
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        if self._channel is not None and not conn.is_closed():
            try:
                await conn.remove_listener(self._channel, self._on_notify)
            except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
                logger.debug("remove_listener failed on channel %s", self._channel, exc_info=True)
        await conn.close()

    async def _open(self) -> None:
        try:
            conn = await asyncpg.connect(self._dsn)
        except (asyncpg.PostgresError, OSError) as exc:
            raise DatabaseConnectionError(f"Cannot open listening connection: {exc}") from exc
        conn.add_termination_listener(self._on_terminated)
        self._conn = conn

    def _on_notify(self, conn: Any, pid: int, channel: str, payload: str) -> None:  # noqa: ARG002
        if channel != self._channel or self._on_fragment is None:
            return
        self._on_fragment(payload)

    def _on_terminated(self, conn: Any) -> None:
        if self._closing or conn is not self._conn:
            return
        self._conn = None
        channel = self._channel or ""
        logger.warning("Listening connection for channel %s terminated", channel)
        if self._on_connection_lost is not None:
            self._on_connection_lost(ConnectionLostError(channel))
        if self._reconnect_interval is not None and self._channel is not None:
            self._reconnect_task = asyncio.get_running_loop().create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        assert self._reconnect_interval is not None
        while not self._closing:
            await asyncio.sleep(self._reconnect_interval)
            try:
                await self._open()
                assert self._channel is not None and self._on_fragment is not None
                await self.listen(self._channel, self._on_fragment)
            except (DatabaseConnectionError, asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
                logger.warning("Reconnect on channel %s failed, retrying: %s", self._channel, exc)
                if self._conn is not None:
                    conn, self._conn = self._conn, None
                    try:
                        await conn.close()
                    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError):
                        logger.debug("Closing failed connection on %s failed", self._channel, exc_info=True)
                continue
            logger.info("Listening connection for channel %s re-established", self._channel)
            return
