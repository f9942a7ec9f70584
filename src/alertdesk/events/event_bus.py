"""In-process publish/subscribe for alert lifecycle events."""

import asyncio
from collections import defaultdict, deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Type

from ..config.logging import get_logger
from .events import DomainEvent

logger = get_logger(__name__)

HISTORY_LIMIT = 1000


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventBus:
    """
    Routes each published event to the handlers registered for its class.

    Handlers may be coroutines or plain callables; the latter run in a worker
    thread. Unless the publisher waits, handler tasks are tracked in an owned
    set until they complete and ``drain`` awaits whatever is still running.
    A handler that raises is logged and counted; the publisher never sees it.
    """

    def __init__(self, name: str = "default"):
        self.name = name
        self.logger = logger.bind(event_bus=name)

        self._subscribers: Dict[Type[DomainEvent], List[Callable]] = defaultdict(list)
        self._in_flight: Set[asyncio.Task] = set()
        self._recent: Deque[Dict[str, Any]] = deque(maxlen=HISTORY_LIMIT)

        self._published = 0
        self._dispatched = 0
        self._failures = 0
        self._last_published_at: Optional[datetime] = None

    def subscribe(self, event_type: Type[DomainEvent], handler: Callable) -> None:
        """Register ``handler`` for events of exactly ``event_type``."""
        self._subscribers[event_type].append(handler)
        self.logger.debug(
            "Subscribed", event_type=event_type.__name__, handler=_handler_name(handler)
        )

    def unsubscribe(self, event_type: Type[DomainEvent], handler: Callable) -> bool:
        """Remove a handler; returns True if it was registered."""
        registered = self._subscribers.get(event_type, [])
        if handler not in registered:
            return False
        registered.remove(handler)
        return True

    async def publish(
        self, event: DomainEvent, wait_for_handlers: bool = False
    ) -> Dict[str, Any]:
        """
        Hand ``event`` to its subscribers.

        With ``wait_for_handlers`` the call returns after every handler has
        finished and ``failed_handlers`` counts the ones that raised;
        otherwise handlers keep running in the background and the count is 0.
        """
        self._published += 1
        self._last_published_at = datetime.now()
        self._recent.append(
            {
                "event_type": type(event).__name__,
                "event_id": event.event_id,
                "timestamp": event.timestamp.isoformat(),
            }
        )

        targets = list(self._subscribers.get(type(event), []))
        summary = {
            "event_id": event.event_id,
            "handlers_executed": len(targets),
            "failed_handlers": 0,
        }
        if not targets:
            return summary

        self.logger.debug(
            "Dispatching event",
            event_type=type(event).__name__,
            event_id=event.event_id,
            handlers=len(targets),
        )
        self._dispatched += len(targets)
        tasks = [asyncio.create_task(self._invoke(h, event)) for h in targets]

        if wait_for_handlers:
            results = await asyncio.gather(*tasks)
            summary["failed_handlers"] = sum(1 for ok in results if not ok)
        else:
            for task in tasks:
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)

        return summary

    async def _invoke(self, handler: Callable, event: DomainEvent) -> bool:
        try:
            if asyncio.iscoroutinefunction(handler):
                await handler(event)
            else:
                await asyncio.to_thread(handler, event)
        except Exception as e:
            self._failures += 1
            self.logger.error(
                "Event handler raised",
                event_type=type(event).__name__,
                handler=_handler_name(handler),
                error=str(e),
                exc_info=True,
            )
            return False
        return True

    async def drain(self) -> None:
        """Wait until no background handler task is left."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight))

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "events_published": self._published,
            "handlers_executed": self._dispatched,
            "errors_count": self._failures,
            "last_event_time": self._last_published_at,
            "pending_handlers": len(self._in_flight),
            "total_handlers": sum(len(h) for h in self._subscribers.values()),
        }

    def get_event_history(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent published events, oldest first."""
        return list(self._recent)[-limit:]
