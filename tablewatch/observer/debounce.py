"""Leading and trailing debounce on top of table subscriptions."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from tablewatch.config.models import DebounceOptions
from tablewatch.exceptions import CallbackError
from tablewatch.observer.events import ChangeEvent
from tablewatch.observer.registry import SubscriptionHandle

logger = logging.getLogger(__name__)

Predicate = Callable[[ChangeEvent], Any]
FireCallback = Callable[[], Any]


class DebouncedSubscription:
    """Coalesce matching change events into rate-limited on_fire calls.

    The first matching event opens a window of ``options.delay`` seconds. With
    ``fire_first`` it fires immediately; any further match inside the window
    produces one trailing fire when the window closes. The window is never
    extended by later events. Once stopped, nothing fires again, even for an
    event whose predicate was still running.
    """

    def __init__(
        self,
        predicate: Predicate,
        on_fire: FireCallback,
        options: DebounceOptions,
        report_error: Callable[[Exception], Awaitable[None]],
        on_stop: Callable[[DebouncedSubscription], None] | None = None,
    ) -> None:
        self._predicate = predicate
        self._on_fire = on_fire
        self._options = options
        self._report_error = report_error
        self._on_stop = on_stop
        self._timer: asyncio.Task[None] | None = None
        self._hit = False
        self._stopped = False
        self._handle: SubscriptionHandle | None = None
        self.fire_count = 0

    @property
    def id(self) -> str:
        return self._handle.id if self._handle is not None else ""

    @property
    def tables(self) -> tuple[str, ...]:
        return self._handle.tables if self._handle is not None else ()

    @property
    def active(self) -> bool:
        return not self._stopped and self._handle is not None and self._handle.active

    @property
    def window_open(self) -> bool:
        return self._timer is not None

    @property
    def pending_hit(self) -> bool:
        return self._hit

    def bind(self, handle: SubscriptionHandle) -> None:
        self._handle = handle

    async def on_change(self, event: ChangeEvent) -> None:
        """Subscription callback receiving every change on the tables."""
        options = self._options
        if self._stopped:
            return
        if self._timer is None and await self._matches(event):
            if self._stopped:
                return
            self._hit = not options.fire_first
            self._timer = asyncio.get_running_loop().create_task(self._window())
            if options.fire_first:
                await self._fire()
        elif self._timer is not None and not self._hit and await self._matches(event):
            if not self._stopped:
                self._hit = True
        elif not options.reduce:
            matched = await self._matches(event)
            if matched and options.fire_unreduced and not self._stopped:
                await self._fire()

    def cancel_timer(self) -> None:
        """Cancel the open window without waiting for the timer task."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._hit = False

    def deactivate(self) -> None:
        """Stop firing for good and cancel the open window."""
        self._stopped = True
        self.cancel_timer()

    async def stop(self) -> None:
        timer = self._timer
        self.deactivate()
        if self._on_stop is not None:
            self._on_stop(self)
        if timer is not None and timer is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await timer
        if self._handle is not None:
            await self._handle.stop()

    async def __aenter__(self) -> DebouncedSubscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def _matches(self, event: ChangeEvent) -> bool:
        result = self._predicate(event)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)

    async def _window(self) -> None:
        try:
            await asyncio.sleep(self._options.delay)
        except asyncio.CancelledError:
            return
        self._timer = None
        if self._hit and not self._stopped:
            self._hit = False
            await self._fire()

    async def _fire(self) -> None:
        self.fire_count += 1
        try:
            result = self._on_fire()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            await self._report_error(CallbackError(",".join(self.tables), self.id, exc))
