"""Keyed event fan-out for push-style notifications.

A single event channel is shared by several logical listeners.  Each listener
registers a sink under its own key; events published for a key reach only the
sink currently registered under it and are dropped when there is none.
"""

from __future__ import annotations

import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Tuple

from .outcomes import BridgeError

LOG = logging.getLogger(__name__)

_END = object()


class EventStreamError(BridgeError):
    """Terminal error delivered to an event sink."""

    def __init__(self, code: str, message: Optional[str] = None, details: Any = None) -> None:
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message
        self.details = details


class EventSink(ABC):
    """Destination for a sequence of named events."""

    @abstractmethod
    def send(self, event_name: str, payload: Any) -> None:
        """Deliver one event."""

    @abstractmethod
    def error(self, code: str, message: Optional[str] = None, details: Any = None) -> None:
        """Terminate the stream with an error."""

    @abstractmethod
    def end_of_stream(self) -> None:
        """Terminate the stream normally."""


class QueueEventSink(EventSink):
    """Buffer events in a queue and expose them as an iterator.

    Iteration stops at end-of-stream; a terminal error is raised as
    :class:`EventStreamError`.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event_name: str, payload: Any) -> None:
        if self._closed:
            return
        self._queue.put((event_name, payload))

    def error(self, code: str, message: Optional[str] = None, details: Any = None) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(EventStreamError(code, message, details))

    def end_of_stream(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(_END)

    def get(self, timeout: Optional[float] = None) -> Optional[Tuple[str, Any]]:
        """Return the next event, or ``None`` once the stream has ended.

        Raises :class:`queue.Empty` on timeout.
        """

        item = self._queue.get(timeout=timeout)
        if item is _END:
            return None
        if isinstance(item, EventStreamError):
            raise item
        return item  # type: ignore[return-value]

    def drain(self) -> List[Tuple[str, Any]]:
        """Return every event buffered so far without blocking."""

        events = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if isinstance(item, tuple):
                events.append(item)
        return events

    def __iter__(self) -> Iterator[Tuple[str, Any]]:
        while True:
            item = self._queue.get()
            if item is _END:
                return
            if isinstance(item, EventStreamError):
                raise item
            yield item  # type: ignore[misc]


class CallbackEventSink(EventSink):
    """Adapt plain callables to the :class:`EventSink` interface."""

    def __init__(
        self,
        on_event: Callable[[str, Any], None],
        on_error: Optional[Callable[[str, Optional[str], Any], None]] = None,
        on_end: Optional[Callable[[], None]] = None,
    ) -> None:
        self._on_event = on_event
        self._on_error = on_error
        self._on_end = on_end

    def send(self, event_name: str, payload: Any) -> None:
        self._on_event(event_name, payload)

    def error(self, code: str, message: Optional[str] = None, details: Any = None) -> None:
        if self._on_error is not None:
            self._on_error(code, message, details)

    def end_of_stream(self) -> None:
        if self._on_end is not None:
            self._on_end()


class EventMultiplexer:
    """Process-wide registry of subscriber keys to live sinks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sinks: Dict[Hashable, EventSink] = {}

    def subscribe(self, key: Hashable, sink: EventSink) -> None:
        with self._lock:
            replaced = self._sinks.get(key)
            self._sinks[key] = sink
        if replaced is not None and replaced is not sink:
            LOG.debug("Replaced event sink for key=%r", key)
        else:
            LOG.debug("Registered event sink for key=%r", key)

    def unsubscribe(self, key: Hashable) -> bool:
        with self._lock:
            removed = self._sinks.pop(key, None)
        if removed is None:
            return False
        LOG.debug("Removed event sink for key=%r", key)
        return True

    def publish(self, key: Hashable, event_name: str, payload: Any = None) -> bool:
        """Deliver an event to the sink under *key*.

        Returns ``False`` when no sink is registered; the event is dropped and
        not buffered.
        """

        with self._lock:
            sink = self._sinks.get(key)
        if sink is None:
            LOG.debug("No sink for key=%r; dropping event %s", key, event_name)
            return False
        return self._deliver(key, sink, event_name, payload)

    def broadcast(self, event_name: str, payload: Any = None) -> int:
        with self._lock:
            targets = list(self._sinks.items())
        return sum(1 for key, sink in targets if self._deliver(key, sink, event_name, payload))

    def fail(self, key: Hashable, code: str, message: Optional[str] = None, details: Any = None) -> bool:
        """Send a terminal error to the sink under *key* and drop it."""

        with self._lock:
            sink = self._sinks.pop(key, None)
        if sink is None:
            return False
        try:
            sink.error(code, message, details)
        except Exception:
            LOG.warning("Event sink for key=%r failed while receiving an error", key, exc_info=True)
        return True

    def close(self) -> None:
        """End every stream and clear the registry."""

        with self._lock:
            sinks = list(self._sinks.items())
            self._sinks.clear()
        for key, sink in sinks:
            try:
                sink.end_of_stream()
            except Exception:
                LOG.warning("Event sink for key=%r failed on end-of-stream", key, exc_info=True)
        if sinks:
            LOG.info("Closed %d event stream(s)", len(sinks))

    def keys(self) -> List[Hashable]:
        with self._lock:
            return list(self._sinks)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._sinks

    def __len__(self) -> int:
        with self._lock:
            return len(self._sinks)

    @staticmethod
    def _deliver(key: Hashable, sink: EventSink, event_name: str, payload: Any) -> bool:
        try:
            sink.send(event_name, payload)
        except Exception:
            LOG.warning("Event sink for key=%r raised on %s", key, event_name, exc_info=True)
            return False
        return True


__all__ = [
    "CallbackEventSink",
    "EventMultiplexer",
    "EventSink",
    "EventStreamError",
    "QueueEventSink",
]
