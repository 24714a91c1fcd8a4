"""
Workflow Event Module

Status-transition events published to audit and notification consumers
through a publish/subscribe dispatcher. Delivery is at-least-once, so
consumers dedupe on (instance_id, to_status, timestamp); DeduplicatingHandler
does that for them.
"""

from typing import Callable, Dict, List, Any, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime
from collections import OrderedDict
import uuid
import logging
from threading import RLock

from .models import WorkflowStatus
from .storage import parse_datetime


@dataclass(frozen=True)
class WorkflowEvent:
    """A workflow instance moved from one status to another"""
    instance_id: str
    from_status: WorkflowStatus
    to_status: WorkflowStatus
    timestamp: datetime
    template_id: Optional[str] = None
    actor: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def dedupe_key(self) -> Tuple[str, str, str]:
        return (self.instance_id, self.to_status.value, self.timestamp.isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'instance_id': self.instance_id,
            'from_status': self.from_status.value,
            'to_status': self.to_status.value,
            'timestamp': self.timestamp.isoformat(),
            'template_id': self.template_id,
            'actor': self.actor,
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WorkflowEvent':
        return cls(
            instance_id=data['instance_id'],
            from_status=WorkflowStatus(data['from_status']),
            to_status=WorkflowStatus(data['to_status']),
            timestamp=parse_datetime(data['timestamp']),
            template_id=data.get('template_id'),
            actor=data.get('actor'),
            event_id=data.get('event_id') or str(uuid.uuid4())
        )


EventHandler = Callable[[WorkflowEvent], None]


class EventDispatcher:
    """Publishes workflow events to subscribed handlers"""

    def __init__(self):
        self._handlers: Dict[WorkflowStatus, List[EventHandler]] = {}
        self._global_handlers: List[EventHandler] = []
        self._lock = RLock()
        self.logger = logging.getLogger("entity_workflows.events")

    def subscribe(self, to_status: WorkflowStatus, handler: EventHandler) -> None:
        """Subscribe to transitions into a specific status"""
        with self._lock:
            self._handlers.setdefault(to_status, []).append(handler)
            self.logger.debug(f"Subscribed handler {_name(handler)} to {to_status.value}")

    def subscribe_all(self, handler: EventHandler) -> None:
        """Subscribe to every transition"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_name(handler)}")

    def unsubscribe(self, to_status: WorkflowStatus, handler: EventHandler) -> None:
        with self._lock:
            try:
                self._handlers.get(to_status, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_name(handler)} was not subscribed to {to_status.value}")

    def unsubscribe_all(self, handler: EventHandler) -> None:
        with self._lock:
            try:
                self._global_handlers.remove(handler)
            except ValueError:
                self.logger.warning(f"Global handler {_name(handler)} was not subscribed")

    def publish(self, event: WorkflowEvent) -> None:
        """Deliver an event; handler failures are logged, never raised"""
        with self._lock:
            handlers = list(self._handlers.get(event.to_status, [])) + list(self._global_handlers)

        self.logger.debug(
            f"Publishing {event.from_status.value} -> {event.to_status.value} for instance {event.instance_id}"
        )
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    f"Error in event handler {_name(handler)} for instance {event.instance_id}: {e}"
                )

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, to_status: Optional[WorkflowStatus] = None) -> int:
        with self._lock:
            if to_status:
                return len(self._handlers.get(to_status, []))
            return sum(len(h) for h in self._handlers.values()) + len(self._global_handlers)


class DeduplicatingHandler:
    """Wraps a consumer so redelivered events reach it only once"""

    def __init__(self, handler: EventHandler, max_remembered: int = 10000):
        self.handler = handler
        self.max_remembered = max_remembered
        self._seen: "OrderedDict[Tuple[str, str, str], None]" = OrderedDict()
        self._lock = RLock()
        self.__name__ = f"dedupe({_name(handler)})"

    def __call__(self, event: WorkflowEvent) -> None:
        with self._lock:
            if event.dedupe_key in self._seen:
                return
            self._seen[event.dedupe_key] = None
            if len(self._seen) > self.max_remembered:
                self._seen.popitem(last=False)
        self.handler(event)


class EventRecorder:
    """Handler that keeps every event it receives, in order"""

    def __init__(self):
        self.events: List[WorkflowEvent] = []
        self._lock = RLock()

    def __call__(self, event: WorkflowEvent) -> None:
        with self._lock:
            self.events.append(event)

    def for_instance(self, instance_id: str) -> List[WorkflowEvent]:
        with self._lock:
            return [e for e in self.events if e.instance_id == instance_id]

    def transitions(self, instance_id: str) -> List[Tuple[str, str]]:
        return [(e.from_status.value, e.to_status.value) for e in self.for_instance(instance_id)]


def _name(handler: Callable) -> str:
    return getattr(handler, '__name__', repr(handler))
