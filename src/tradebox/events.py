"""In-process event bus for trade lifecycle notifications.

Producers publish after their transaction commits; subscribers (the
WebSocket hub, tests, external bridges) receive a JSON-ready payload.
Delivery is best-effort: a failing subscriber is logged and never breaks
the producer.
"""

import inspect
from collections.abc import Awaitable, Callable
from decimal import Decimal
from typing import Any

from tradebox.logging import get_logger

logger = get_logger(__name__)

TRADE_CREATED = "trade.created"
TRADE_SETTLED = "trade.settled"
BALANCE_UPDATED = "balance.updated"
TRADES_UPDATED = "trades.updated"

# Subscribing to this name receives every event
ALL_EVENTS = "*"

Handler = Callable[[str, dict], Awaitable[None] | None]


def _jsonable(obj: Any) -> Any:
    """Recursively convert Decimal values to strings for JSON serialization."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, dict):
        return {k: _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_jsonable(item) for item in obj]
    return obj


class EventBus:
    """Publish/subscribe hub keyed by event name."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._emit_counts: dict[str, int] = {}

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register a handler. Returns a function that unsubscribes it."""
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: str, payload: dict) -> None:
        """Deliver an event to its subscribers and to wildcard subscribers."""
        data = _jsonable(payload)
        self._emit_counts[event] = self._emit_counts.get(event, 0) + 1

        handlers = [*self._handlers.get(event, []), *self._handlers.get(ALL_EVENTS, [])]
        for handler in handlers:
            try:
                result = handler(event, data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.error("event_handler_failed", event_name=event, exc_info=True)

    def get_emit_count(self, event: str) -> int:
        return self._emit_counts.get(event, 0)
