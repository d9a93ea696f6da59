"""
Lifecycle event journal

Supervisor transitions and credential changes are appended here, so one
invocation's history can be inspected afterwards.
"""
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from .logging import get_logger

logger = get_logger(__name__)

MAX_EVENTS = 1000


@dataclass(frozen=True)
class Event:
    name: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def subject(self) -> Optional[str]:
        """Endpoint or client the event is about"""
        return self.metadata.get("name")


class Telemetry:
    """Bounded in-process event journal; the oldest events are dropped first"""

    def __init__(self, max_events: int = MAX_EVENTS):
        self._events: Deque[Event] = deque(maxlen=max_events)

    def record_event(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> Event:
        event = Event(name=name, metadata=dict(metadata or {}))
        self._events.append(event)
        logger.debug(f"event {name} {event.metadata}")
        return event

    def get_events(self, prefix: str = "", subject: Optional[str] = None) -> List[Event]:
        """Events whose name starts with prefix, optionally about one subject"""
        return [
            e for e in self._events
            if e.name.startswith(prefix) and (subject is None or e.subject == subject)
        ]

    def clear(self) -> None:
        self._events.clear()


_telemetry = Telemetry()


def get_telemetry() -> Telemetry:
    """Process-wide journal"""
    return _telemetry
