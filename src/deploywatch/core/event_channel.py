"""Outbound notification channels."""

from __future__ import annotations

import queue

from deploywatch.models.events import EventType, EventValue, WatchEvent


class EventChannel:
    """Unbounded FIFO of events handed from one component to its consumer."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._queue: queue.SimpleQueue[WatchEvent] = queue.SimpleQueue()

    def emit(self, event_type: EventType, project: str = "", **payload: EventValue) -> WatchEvent:
        event = WatchEvent(event_type=event_type, project=project, payload=payload)
        self._queue.put(event)
        return event

    def log(self, text: str, project: str = "") -> WatchEvent:
        return self.emit(EventType.LOG_MESSAGE, project, text=text, source=self.name)

    def get(self, timeout: float | None = None) -> WatchEvent | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> list[WatchEvent]:
        events: list[WatchEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events
