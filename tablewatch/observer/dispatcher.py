"""Turn assembled messages into change events and fan them out."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable

from tablewatch.exceptions import CallbackError
from tablewatch.observer.events import ChangeEvent, build_change_event, parse_change_message
from tablewatch.observer.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

ErrorReporter = Callable[[Exception], Awaitable[None]]


class EventDispatcher:
    """Deliver change events to the callbacks registered for their table."""

    def __init__(self, registry: SubscriptionRegistry, report_error: ErrorReporter) -> None:
        self._registry = registry
        self._report_error = report_error
        self.delivered_events = 0

    async def dispatch(self, message: str) -> ChangeEvent | None:
        """Parse one assembled message and invoke its subscribers in order.

        Returns the event, or None when nobody subscribes to its table.

        Raises:
            PayloadParseError: the message is not a valid change payload.
        """
        change = parse_change_message(message)
        subscriptions = self._registry.subscriptions_for(change.table)
        if not subscriptions:
            logger.debug("Discarding change for unobserved table %s", change.table)
            return None

        event = build_change_event(change)
        for subscription in subscriptions:
            if not subscription.active:
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                await self._report_error(CallbackError(event.table, subscription.id, exc))
        self.delivered_events += 1
        return event
