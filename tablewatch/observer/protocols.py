"""Protocols for the database capabilities the observer depends on."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from tablewatch.exceptions import ConnectionLostError


class StatementExecutor(Protocol):
    """General-purpose connection (or pool) that runs DDL statements."""

    async def execute(self, statement: str) -> None:
        """Execute one SQL statement."""


class NotificationListener(Protocol):
    """Dedicated, non-pooled connection that receives channel notifications."""

    @property
    def connected(self) -> bool:
        """Return whether the dedicated connection is open."""

    async def connect(self, on_connection_lost: Callable[[ConnectionLostError], None]) -> None:
        """Open the dedicated connection."""

    async def listen(self, channel: str, on_fragment: Callable[[str], None]) -> None:
        """Register the fragment handler and issue LISTEN for channel."""

    async def close(self) -> None:
        """Close the connection. Safe to call when never connected."""
