"""Events exchanged between the DNS server and its controller."""

from __future__ import annotations

import queue
from dataclasses import dataclass
from enum import Enum
from typing import Any


class EventType(str, Enum):
    START_DNS_SERVER = "START_DNS_SERVER"
    STOP_DNS_SERVER = "STOP_DNS_SERVER"
    START_DOH_SERVER = "START_DOH_SERVER"
    STOP_DOH_SERVER = "STOP_DOH_SERVER"
    UPDATE_CONFIG = "UPDATE_CONFIG"
    UPDATE_SITE_LIST = "UPDATE_SITE_LIST"
    ERROR = "ERROR"
    LOG = "LOG"


@dataclass
class Event:
    type: EventType
    payload: Any = None


class EventBus:
    """A bounded first-in first-out queue of events."""

    def __init__(self, maxsize: int = 10) -> None:
        self._queue: queue.Queue[Event] = queue.Queue(maxsize=maxsize)

    def publish(self, event: Event) -> None:
        """Queue an event, waiting while the bus is full."""
        self._queue.put(event)

    def log(self, message: str) -> None:
        self.publish(Event(EventType.LOG, message))

    def error(self, payload: Any) -> None:
        self.publish(Event(EventType.ERROR, payload))

    def drain(self) -> list[Event]:
        """Remove and return every queued event, oldest first."""
        events: list[Event] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events