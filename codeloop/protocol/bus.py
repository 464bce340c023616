import logging
import asyncio
from typing import Dict, List, Callable, Any, Awaitable

from .events import EventTypes

# Type definition for event handlers
EventHandler = Callable[[Any], Awaitable[None]]


class EventBus:
    """
    Asynchronous Event Bus.

    - Uses a lock for subscriber registration.
    - Iterates over a snapshot of handlers so handlers may (un)subscribe
      while an event is being delivered.
    - Handlers run sequentially, in subscription order.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._subscribers: Dict[EventTypes, List[EventHandler]] = {}
        self._logger = logging.getLogger("EventBus")

    async def subscribe(self, event_type: EventTypes, handler: EventHandler) -> None:
        """
        Register a callback for a specific event type safely.
        """
        async with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)

    async def unsubscribe(self, event_type: EventTypes, handler: EventHandler) -> None:
        async with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    async def emit(self, event_type: EventTypes, data: Any = None) -> None:
        """
        Emit an event to all subscribers.
        """
        if event_type not in self._subscribers:
            return

        async with self._lock:
            handlers_snapshot = list(self._subscribers.get(event_type, []))

        for handler in handlers_snapshot:
            # Skip handlers removed while an earlier handler was running.
            async with self._lock:
                if handler not in self._subscribers.get(event_type, []):
                    continue

            try:
                await handler(data)
            except Exception as e:  # pylint: disable=broad-exception-caught
                # Log error but keep the bus alive (Fail-soft)
                self._logger.error(
                    f"Error in handler for {event_type.value}: {e}", exc_info=True
                )
