"""Public interface for the capture_bridge package.

The routing core lives in a handful of small modules; this module re-exports
their public names so that ``from capture_bridge import ...`` is enough for
embedders.
"""

from __future__ import annotations

import logging

from .capture import REQUEST_CODE_CAMERA, CaptureLauncher, CaptureRequestFlow, CaptureState, ThreadedLauncher
from .channel import (
    ChannelFacade,
    FutureMethodResult,
    MethodReply,
    MethodResult,
    Operation,
    create_bridge,
    reply_with_outcome,
)
from .config import ENV_PREFIX, BridgeConfig
from .discovery import (
    USB_CLASS_VIDEO,
    USB_PROTOCOL_VIDEO,
    USB_SUBCLASS_VIDEOCONTROL,
    DeviceDescriptor,
    DeviceDiscovery,
    InterfaceDescriptor,
    describe,
    matches_video_class,
)
from .dispatcher import PendingPolicy, PendingRequest, ResultDispatcher
from .events import CallbackEventSink, EventMultiplexer, EventSink, EventStreamError, QueueEventSink
from .hotplug import EVENT_DEVICE_ATTACHED, EVENT_DEVICE_DETACHED, HotplugWatcher
from .imaging import (
    JPEG_QUALITY,
    ImageDecodeError,
    base64_to_bytes,
    bytes_to_base64,
    encode_jpeg,
    image_to_base64,
)
from .outcomes import (
    RESULT_CANCELED,
    RESULT_OK,
    AlreadyPending,
    BridgeError,
    Cancelled,
    CaptureOutcome,
    ConfigError,
    Error,
    ErrorKind,
    ImageBytes,
    NoDeviceAvailable,
    NoImage,
)

__version__ = "0.1.0"

LOG = logging.getLogger(__name__)
LOG.addHandler(logging.NullHandler())

__all__ = [
    "AlreadyPending",
    "BridgeConfig",
    "BridgeError",
    "CallbackEventSink",
    "Cancelled",
    "CaptureLauncher",
    "CaptureOutcome",
    "CaptureRequestFlow",
    "CaptureState",
    "ChannelFacade",
    "ConfigError",
    "DeviceDescriptor",
    "DeviceDiscovery",
    "ENV_PREFIX",
    "EVENT_DEVICE_ATTACHED",
    "EVENT_DEVICE_DETACHED",
    "Error",
    "ErrorKind",
    "EventMultiplexer",
    "EventSink",
    "EventStreamError",
    "FutureMethodResult",
    "HotplugWatcher",
    "ImageBytes",
    "ImageDecodeError",
    "InterfaceDescriptor",
    "JPEG_QUALITY",
    "MethodReply",
    "MethodResult",
    "NoDeviceAvailable",
    "NoImage",
    "Operation",
    "PendingPolicy",
    "PendingRequest",
    "QueueEventSink",
    "REQUEST_CODE_CAMERA",
    "RESULT_CANCELED",
    "RESULT_OK",
    "ResultDispatcher",
    "ThreadedLauncher",
    "USB_CLASS_VIDEO",
    "USB_PROTOCOL_VIDEO",
    "USB_SUBCLASS_VIDEOCONTROL",
    "base64_to_bytes",
    "bytes_to_base64",
    "create_bridge",
    "describe",
    "encode_jpeg",
    "image_to_base64",
    "matches_video_class",
    "reply_with_outcome",
]
