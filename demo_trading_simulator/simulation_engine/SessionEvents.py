import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

SESSION_STARTED = "sessionStarted"
TICK_PROCESSED = "tickProcessed"
TRADE_EXECUTED = "tradeExecuted"
SESSION_PAUSED = "sessionPaused"
SESSION_RESUMED = "sessionResumed"
SESSION_COMPLETED = "sessionCompleted"

EVENT_TYPES = (
    SESSION_STARTED,
    TICK_PROCESSED,
    TRADE_EXECUTED,
    SESSION_PAUSED,
    SESSION_RESUMED,
    SESSION_COMPLETED,
)

EventCallback = Callable[[str, Dict[str, Any]], Union[None, Awaitable[None]]]


class SessionEvents:
    """
    Subscription point for session lifecycle and per-tick notifications.

    Each SessionManager owns one instance. Callbacks receive (event_type, payload)
    and may be plain functions or coroutines. A failing callback is logged and
    never reaches the replay loop.
    """

    def __init__(self):
        self._subscribers: List[tuple[EventCallback, Optional[frozenset]]] = []

    def subscribe(self, callback: EventCallback, event_types: Optional[List[str]] = None) -> Callable[[], None]:
        """Register callback, optionally for a subset of event types. Returns an unsubscribe function."""
        if event_types is not None:
            unknown = set(event_types) - set(EVENT_TYPES)
            if unknown:
                raise ValueError(f"Unknown event types: {sorted(unknown)}")
        entry = (callback, frozenset(event_types) if event_types is not None else None)
        self._subscribers.append(entry)

        def unsubscribe():
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def emit(self, event_type: str, payload: Dict[str, Any]):
        for callback, wanted in list(self._subscribers):
            if wanted is not None and event_type not in wanted:
                continue
            try:
                res = callback(event_type, payload)
                if asyncio.iscoroutine(res) or hasattr(res, "__await__"):
                    await res
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Error in {event_type} subscriber")
