"""Synchronous in-process bus carrying domain events to outbound channels."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Handler = Callable[[BaseModel], None]


class EventBus:
    """Routes each published domain event to the handlers of its exact type.

    Delivery is synchronous and in subscription order. Handlers are
    best-effort side effects: a failing handler is logged and the remaining
    handlers still run, so the publisher's decision stands.
    """

    def __init__(self) -> None:
        self._routes: dict[type[BaseModel], list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type[BaseModel], handler: Handler) -> None:
        self._routes[event_type].append(handler)

    def publish(self, event: BaseModel) -> None:
        handlers = self._routes.get(type(event), [])
        logger.debug("Publishing %s to %d handler(s)", type(event).__name__, len(handlers))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s",
                    getattr(handler, "__qualname__", repr(handler)),
                    type(event).__name__,
                )

    def publish_all(self, events: Iterable[BaseModel]) -> None:
        for event in events:
            self.publish(event)
