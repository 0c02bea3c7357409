"""
In-process event bus.

Decouples the latest-value cache from its consumers: the cache publishes
``RawValueCommitted`` after every write of a source point, and the
composite fan-out subscribes to it. Handlers are awaited in subscription
order within the publishing request.

CHANGELOG:
- 2026-02-28: Initial creation

TODO:
- None
"""

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]


@dataclass(frozen=True)
class RawValueCommitted:
    """A point's newest value was written to the latest-value cache.

    Attributes:
        system_id: System the value belongs to.
        point_index: Index of the point within the system.
        logical_path: Logical path the value was cached under.
        value: Observed value (None for an error reading).
        measurement_time: Measurement time in epoch milliseconds.
        received_time: Receipt time in epoch milliseconds.
        metric_unit: Unit of the value.
    """

    system_id: int
    point_index: int
    logical_path: str
    value: float | None
    measurement_time: int
    received_time: int
    metric_unit: str


class EventBus:
    """Minimal typed publish/subscribe dispatcher."""

    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> None:
        """Register ``handler`` for events of exactly ``event_type``."""
        self._handlers[event_type].append(handler)

    def handler_count(self, event_type: type) -> int:
        """Return the number of handlers registered for ``event_type``."""
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: Any) -> None:
        """Deliver ``event`` to every handler of its type.

        All handlers run even if one fails. Failures are logged and the
        first one is re-raised once delivery is complete.
        """
        first_error: Exception | None = None
        for handler in list(self._handlers.get(type(event), [])):
            try:
                await handler(event)
            except Exception as exc:
                logger.error(
                    "Event handler %s failed for %s",
                    getattr(handler, "__qualname__", repr(handler)),
                    type(event).__name__,
                    exc_info=True,
                )
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
