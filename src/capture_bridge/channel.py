"""Method/event channel facade exposed to the embedding runtime.

The runtime calls operations by name and receives replies through a
:class:`MethodResult`; listeners on the event channel are keyed by the
argument they pass when they start listening.
"""

from __future__ import annotations

import concurrent.futures
import enum
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from .capture import CaptureLauncher, CaptureRequestFlow
from .config import BridgeConfig
from .discovery import DeviceDiscovery
from .dispatcher import ResultDispatcher
from .events import EventMultiplexer, EventSink
from .hotplug import HotplugWatcher
from .outcomes import CaptureOutcome, ImageBytes

LOG = logging.getLogger(__name__)


class Operation(str, enum.Enum):
    INITIALIZE = "initialize"
    CAPTURE = "capture"
    DISPOSE = "dispose"

    @classmethod
    def parse(cls, method: str) -> Optional["Operation"]:
        try:
            return cls(method)
        except ValueError:
            return None


class MethodResult(ABC):
    """Reply handle for one inbound method call."""

    @abstractmethod
    def success(self, value: Any = None) -> None:
        ...

    @abstractmethod
    def error(self, code: str, message: Optional[str] = None, details: Any = None) -> None:
        ...

    @abstractmethod
    def not_implemented(self) -> None:
        ...


class MethodReply:
    """Value delivered through :class:`FutureMethodResult`."""

    __slots__ = ("ok", "value", "code", "message", "details", "implemented")

    def __init__(
        self,
        ok: bool,
        value: Any = None,
        code: Optional[str] = None,
        message: Optional[str] = None,
        details: Any = None,
        implemented: bool = True,
    ) -> None:
        self.ok = ok
        self.value = value
        self.code = code
        self.message = message
        self.details = details
        self.implemented = implemented

    def __repr__(self) -> str:
        if not self.implemented:
            return "MethodReply(not_implemented)"
        if self.ok:
            return f"MethodReply(ok, value={self.value!r})"
        return f"MethodReply(error, code={self.code!r}, message={self.message!r})"


class FutureMethodResult(MethodResult):
    """Collect the reply in a :class:`concurrent.futures.Future`."""

    def __init__(self) -> None:
        self.future: "concurrent.futures.Future[MethodReply]" = concurrent.futures.Future()

    def success(self, value: Any = None) -> None:
        self._set(MethodReply(True, value=value))

    def error(self, code: str, message: Optional[str] = None, details: Any = None) -> None:
        self._set(MethodReply(False, code=code, message=message, details=details))

    def not_implemented(self) -> None:
        self._set(MethodReply(False, implemented=False))

    def reply(self, timeout: Optional[float] = None) -> MethodReply:
        return self.future.result(timeout)

    def _set(self, reply: MethodReply) -> None:
        try:
            self.future.set_result(reply)
        except concurrent.futures.InvalidStateError:
            LOG.warning("Method result replied twice; ignoring %r", reply)


def reply_with_outcome(result: MethodResult, outcome: CaptureOutcome) -> None:
    if isinstance(outcome, ImageBytes):
        result.success(outcome.reply_value())
    else:
        result.error(outcome.code, outcome.message, None)


class ChannelFacade:
    """Route runtime calls to discovery and capture, and events to listeners."""

    def __init__(
        self,
        discovery: DeviceDiscovery,
        flow: CaptureRequestFlow,
        events: Optional[EventMultiplexer] = None,
        *,
        config: Optional[BridgeConfig] = None,
        hotplug: Optional[HotplugWatcher] = None,
    ) -> None:
        self._config = config or BridgeConfig()
        self._discovery = discovery
        self._flow = flow
        self._events = events or EventMultiplexer()
        self._hotplug = hotplug
        self._attached = False
        self._handlers: Dict[Operation, Callable[[Any, MethodResult], None]] = {
            Operation.INITIALIZE: self._on_initialize,
            Operation.CAPTURE: self._on_capture,
            Operation.DISPOSE: self._on_dispose,
        }
        self.attach()

    @property
    def channel_name(self) -> str:
        return self._config.channel_name

    @property
    def event_channel_name(self) -> str:
        return self._config.event_channel_name

    @property
    def events(self) -> EventMultiplexer:
        return self._events

    @property
    def flow(self) -> CaptureRequestFlow:
        return self._flow

    @property
    def attached(self) -> bool:
        return self._attached

    def attach(self) -> None:
        """Install the method handler; calls are answered from now on."""

        if self._attached:
            return
        self._attached = True
        LOG.info("Method handler attached on %s", self.channel_name)
        if self._hotplug is not None:
            self._hotplug.start()

    def handle_call(self, method: str, arguments: Any, result: MethodResult) -> None:
        LOG.debug("Method call %s", method)
        if not self._attached:
            LOG.debug("Method handler detached; %s not handled", method)
            result.not_implemented()
            return
        operation = Operation.parse(method)
        if operation is None:
            result.not_implemented()
            return
        self._handlers[operation](arguments, result)

    def initialize(self) -> Dict[str, bool]:
        has_usb = self._discovery.has_video_capable_device()
        has_capture = has_usb or self._flow.can_capture()
        LOG.info("USB video device detected: %s (capture available: %s)", has_usb, has_capture)
        return {"hasCaptureCapability": has_capture, "isUsbDevice": has_usb}

    def capture(self) -> "concurrent.futures.Future[CaptureOutcome]":
        return self._flow.initiate()

    def dispose(self) -> None:
        self._flow.dispose()
        if self._attached:
            self._attached = False
            LOG.info("Method handler detached from %s", self.channel_name)

    def handle_activity_result(self, request_code: int, status: int, payload: Any = None) -> bool:
        """Route an activity-style result; foreign request codes are ignored."""

        return self._flow.deliver(request_code, status, payload)

    def on_listen(self, arguments: Any, sink: EventSink) -> None:
        LOG.info("Event listener added on %s: key=%r", self.event_channel_name, arguments)
        self._events.subscribe(arguments, sink)

    def on_cancel(self, arguments: Any) -> None:
        LOG.info("Event listener cancelled on %s: key=%r", self.event_channel_name, arguments)
        self._events.unsubscribe(arguments)

    def publish(self, key: Any, event_name: str, payload: Any = None) -> bool:
        return self._events.publish(key, event_name, payload)

    def close(self) -> None:
        """Tear everything down: capture, hotplug and event streams."""

        self.dispose()
        if self._hotplug is not None:
            self._hotplug.stop()
        self._events.close()

    def __enter__(self) -> "ChannelFacade":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _on_initialize(self, arguments: Any, result: MethodResult) -> None:
        result.success(self.initialize())

    def _on_capture(self, arguments: Any, result: MethodResult) -> None:
        future = self.capture()
        future.add_done_callback(lambda done: reply_with_outcome(result, done.result()))

    def _on_dispose(self, arguments: Any, result: MethodResult) -> None:
        self.dispose()
        result.success(None)


def create_bridge(
    config: Optional[BridgeConfig] = None,
    launcher: Optional[CaptureLauncher] = None,
    discovery: Optional[DeviceDiscovery] = None,
    events: Optional[EventMultiplexer] = None,
) -> ChannelFacade:
    """Wire a :class:`ChannelFacade` from *config*."""

    config = (config or BridgeConfig()).validate()
    discovery = discovery or DeviceDiscovery(vid=config.vid, pid=config.pid)
    events = events or EventMultiplexer()
    dispatcher = ResultDispatcher(config.pending_policy)
    flow = CaptureRequestFlow(
        dispatcher,
        launcher,
        request_code=config.request_code,
        jpeg_quality=config.jpeg_quality,
        timeout=config.capture_timeout_s,
    )
    hotplug = HotplugWatcher(events, key=config.hotplug_key) if config.hotplug else None
    return ChannelFacade(discovery, flow, events, config=config, hotplug=hotplug)


__all__ = [
    "ChannelFacade",
    "FutureMethodResult",
    "MethodReply",
    "MethodResult",
    "Operation",
    "create_bridge",
    "reply_with_outcome",
]
