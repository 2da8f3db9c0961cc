"""In-memory fakes for the database capabilities used by TableObserver."""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections.abc import Callable
from typing import Any

from tablewatch.exceptions import ConnectionLostError


class FakeExecutor:
    """Records statements; optionally fails on statements containing a marker."""

    def __init__(self, *, delay: float = 0.0, fail_on: str | None = None) -> None:
        self.statements: list[str] = []
        self.delay = delay
        self.fail_on = fail_on

    async def execute(self, statement: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on is not None and self.fail_on in statement:
            raise RuntimeError(f"statement failed: {self.fail_on}")
        self.statements.append(statement)

    def matching(self, prefix: str) -> list[str]:
        return [s for s in self.statements if s.lstrip().startswith(prefix)]


class FakeListener:
    """In-memory stand-in for the dedicated LISTEN connection."""

    def __init__(self, *, fail_connect: bool = False) -> None:
        self.fail_connect = fail_connect
        self.channel: str | None = None
        self.on_fragment: Callable[[str], None] | None = None
        self.on_connection_lost: Callable[[ConnectionLostError], None] | None = None
        self.connect_calls = 0
        self.close_calls = 0
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self, on_connection_lost: Callable[[ConnectionLostError], None]) -> None:
        self.connect_calls += 1
        if self.fail_connect:
            raise OSError("connection refused")
        self.on_connection_lost = on_connection_lost
        self._connected = True

    async def listen(self, channel: str, on_fragment: Callable[[str], None]) -> None:
        self.channel = channel
        self.on_fragment = on_fragment

    async def close(self) -> None:
        self.close_calls += 1
        self._connected = False
        self.on_fragment = None

    def deliver(self, *payloads: str) -> None:
        assert self.on_fragment is not None, "listener is not listening"
        for payload in payloads:
            self.on_fragment(payload)

    def terminate(self) -> None:
        self._connected = False
        assert self.on_connection_lost is not None
        self.on_connection_lost(ConnectionLostError(self.channel or ""))


def make_fragments(message: str, size: int) -> list[str]:
    """Split message the way the trigger function does: byte-bounded pages."""
    msg_hash = hashlib.md5(message.encode("utf-8")).hexdigest()
    pages: list[str] = []
    pos = 0
    while True:
        page = message[pos : pos + size]
        excess = len(page.encode("utf-8")) - size
        if excess > 0:
            page = page[: max(1, len(page) - excess)]
        pages.append(page)
        pos += len(page)
        if pos >= len(message) and len(page.encode("utf-8")) < size:
            break
    return [f"{msg_hash}:{len(pages)}:{index}:{page}" for index, page in enumerate(pages, start=1)]


def change_message(table: str, op: str, data: dict[str, Any], old_data: dict[str, Any] | None = None) -> str:
    payload: dict[str, Any] = {"table": table, "op": op, "data": [data]}
    if old_data is not None:
        payload["old_data"] = [old_data]
    return json.dumps(payload)
