"""In-process publish/subscribe bus used to notify other services of changes.

Delivery is fire-and-forget: handlers run in publish order but nothing is
retried, and a failing handler never affects the publisher.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set
from uuid import uuid4

from .dates import utcnow

LOGGER = logging.getLogger(__name__)

WILDCARD = "*"


@dataclass
class Event:
    event_type: str
    source: str
    data: Dict[str, Any]
    timestamp: Any = field(default_factory=utcnow)
    program_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "source": self.source,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "program_id": self.program_id,
            "user_id": self.user_id,
            "metadata": self.metadata,
        }


EventHandler = Callable[[Event], Any]
EventFilter = Callable[[Event], bool]


@dataclass
class Subscription:
    subscription_id: str
    event_type: str
    callback: EventHandler
    filter: Optional[EventFilter] = None


class EventBus:
    """Memory-backed event bus."""

    def __init__(self, source: str = "pmo-financial") -> None:
        self.source = source
        self._subscriptions: Dict[str, Subscription] = {}
        self._pending: Set["asyncio.Task[Any]"] = set()

    def subscribe(self, event_type: str, callback: EventHandler, filter: Optional[EventFilter] = None) -> str:
        """Register ``callback`` for ``event_type`` (``"*"`` for every event)."""

        subscription_id = f"sub-{uuid4().hex[:12]}"
        self._subscriptions[subscription_id] = Subscription(subscription_id, event_type, callback, filter)
        LOGGER.debug("Subscribed %s to %s", subscription_id, event_type)
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        return self._subscriptions.pop(subscription_id, None) is not None

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    async def publish(
        self,
        event_type: str,
        data: Dict[str, Any],
        *,
        source: Optional[str] = None,
        program_id: Optional[str] = None,
        user_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Event:
        event = Event(
            event_type=event_type,
            source=source or self.source,
            data=data,
            program_id=program_id,
            user_id=user_id,
            metadata=metadata or {},
        )
        await self.emit(event)
        return event

    async def emit(self, event: Event) -> None:
        """Deliver an already built event to matching subscribers."""

        for subscription in list(self._subscriptions.values()):
            if subscription.event_type not in (event.event_type, WILDCARD):
                continue
            self._deliver(subscription, event)

    def _deliver(self, subscription: Subscription, event: Event) -> None:
        try:
            if subscription.filter is not None and not subscription.filter(event):
                return
            result = subscription.callback(event)
        except Exception:
            LOGGER.exception("Event handler %s failed for %s", subscription.subscription_id, event.event_type)
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._pending.add(task)
            task.add_done_callback(self._task_finished(subscription.subscription_id, event.event_type))

    def _task_finished(self, subscription_id: str, event_type: str) -> Callable[["asyncio.Task[Any]"], None]:
        def _done(task: "asyncio.Task[Any]") -> None:
            self._pending.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                LOGGER.error("Event handler %s failed for %s: %s", subscription_id, event_type, exc)

        return _done

    async def drain(self) -> None:
        """Wait for asynchronous handlers scheduled so far."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        self._subscriptions.clear()


BACKENDS = ("memory",)


def create_event_bus(backend: str = "memory", source: str = "pmo-financial") -> EventBus:
    if backend not in BACKENDS:
        raise ValueError(f"Unknown event bus backend: {backend}")
    return EventBus(source=source)
