"""
Lifecycle Event Emitter - Package Operation Notifications

This module provides the publish mechanism for lifecycle events emitted by
long-running package operations:
1. Defines the fixed event set, namespaced per operation kind
2. Routes each event to the handlers subscribed to it
3. Keeps a bounded history of emitted events for audit

IMPORTANT:
- emit() awaits every handler before returning, so subscribers observe
  events in the same order as the status transitions that caused them
- A failing handler is logged and skipped; it never aborts the poll loop
- The emitter holds no per-operation state. Filtering by operation id is
  the subscriber's job (see LifecycleEvent.operation_id)
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

logger = logging.getLogger("lifecycle_events")

EVENT_PREFIX = "Package"
DEFAULT_HISTORY_SIZE = 100


class EventNamespace(str, Enum):
    """Operation kinds that emit lifecycle events."""
    CREATE = "create"
    PUBLISH = "publish"
    INSTALL = "install"
    UNINSTALL = "uninstall"


class LifecycleEventType(str, Enum):
    """
    Fixed set of lifecycle events.

    LOCKED: every namespace emits exactly these.
    """
    ENQUEUED = "enqueued"
    PROGRESS = "progress"
    SUCCESS = "success"
    ERROR = "error"
    TIMED_OUT = "timed-out"


def event_name(namespace: EventNamespace, event_type: LifecycleEventType) -> str:
    """Full event name, e.g. 'Package/create-enqueued'."""
    return f"{EVENT_PREFIX}/{namespace.value}-{event_type.value}"


@dataclass(frozen=True)
class LifecycleEvent:
    """Payload carried by every lifecycle event."""
    name: str
    operation_id: str
    record: Optional[Any]
    remaining_wait_time: Optional[timedelta] = None
    emitted_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def status(self) -> Optional[str]:
        return getattr(self.record, "status", None)

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "operation_id": self.operation_id,
            "status": self.status,
            "remaining_wait_seconds": (
                self.remaining_wait_time.total_seconds()
                if self.remaining_wait_time is not None else None
            ),
            "emitted_at": self.emitted_at.isoformat(),
        }


EventHandler = Callable[[LifecycleEvent], Awaitable[None]]


class LifecycleEventEmitter:
    """
    Broadcasts named lifecycle events to subscribed handlers.

    Features:
    - Per-event subscriptions and catch-all subscriptions
    - Ordered, awaited delivery
    - Bounded emission history
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE):
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._catch_all: List[EventHandler] = []
        self._history: Deque[LifecycleEvent] = deque(maxlen=history_size)

    def subscribe(self, name: str, handler: EventHandler):
        """Register a handler for one event name."""
        self._handlers.setdefault(name, []).append(handler)
        logger.debug(f"Subscribed handler to {name}")

    def subscribe_all(self, handler: EventHandler):
        """Register a handler that receives every event."""
        self._catch_all.append(handler)

    def unsubscribe(self, name: str, handler: EventHandler) -> bool:
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    async def emit(self, name: str, payload: LifecycleEvent):
        """
        Deliver an event to its subscribers.

        Args:
            name: Full event name
            payload: Event payload
        """
        self._history.append(payload)
        handlers = list(self._handlers.get(name, [])) + list(self._catch_all)

        for handler in handlers:
            try:
                await handler(payload)
            except Exception as e:
                logger.error(f"Lifecycle event handler failed for {name}: {e}")

    def recent_events(
        self,
        operation_id: Optional[str] = None,
        limit: int = 50
    ) -> List[Dict]:
        """Get recently emitted events, newest last."""
        events = [
            event.to_dict() for event in self._history
            if operation_id is None or event.operation_id == operation_id
        ]
        return events[-limit:]


# Global instance
_event_emitter: Optional[LifecycleEventEmitter] = None


def get_event_emitter(history_size: int = DEFAULT_HISTORY_SIZE) -> LifecycleEventEmitter:
    """Get or create the process-wide event emitter. history_size applies on creation only."""
    global _event_emitter

    if _event_emitter is None:
        _event_emitter = LifecycleEventEmitter(history_size)

    return _event_emitter
