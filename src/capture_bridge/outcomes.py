"""Capture outcomes and the error taxonomy shared by the bridge components.

Every capture request settles with exactly one :class:`CaptureOutcome`.  The
variants know how to render themselves as a method-channel reply so that the
facade never has to switch on the concrete type.
"""

from __future__ import annotations

import dataclasses
import enum
from typing import Optional, Union

# Activity-result status codes delivered by the platform.
RESULT_OK = -1
RESULT_CANCELED = 0


class BridgeError(RuntimeError):
    """Base class for errors raised by the bridge core."""


class AlreadyPending(BridgeError):
    """Raised when a request is started while another one is outstanding."""

    def __init__(self, kind) -> None:
        super().__init__(f"A request is already pending for {kind!r}")
        self.kind = kind


class NoDeviceAvailable(BridgeError):
    """Raised when no handler can service a capture trigger."""


class ConfigError(BridgeError):
    """Raised for invalid bridge configuration values."""


class ErrorKind(str, enum.Enum):
    """Error codes reported to the embedding runtime."""

    NO_DEVICE_AVAILABLE = "NO_CAMERA"
    CAPTURE_FAILED = "CAMERA_ERROR"
    DECODE_FAILURE = "DECODE_FAILURE"
    ALREADY_PENDING = "ALREADY_PENDING"


@dataclasses.dataclass(frozen=True)
class ImageBytes:
    """Encoded image returned by a successful capture."""

    data: bytes

    code = None

    @property
    def message(self) -> Optional[str]:
        return None

    def reply_value(self) -> dict:
        return {"imageBytes": self.data}

    def __repr__(self) -> str:
        return f"ImageBytes(<{len(self.data)} bytes>)"


@dataclasses.dataclass(frozen=True)
class Cancelled:
    """The user or an external actor declined the request."""

    reason: str = "user"

    code = "CANCELLED"

    @property
    def message(self) -> str:
        if self.reason == "user":
            return "The user cancelled the capture"
        return f"Capture cancelled: {self.reason}"

    def reply_value(self) -> None:
        return None


@dataclasses.dataclass(frozen=True)
class NoImage:
    """A result arrived but carried no image."""

    code = "NO_IMAGE"

    @property
    def message(self) -> str:
        return "No image was returned"

    def reply_value(self) -> None:
        return None


@dataclasses.dataclass(frozen=True)
class Error:
    """A failure recovered into a normal completion."""

    kind: ErrorKind
    detail: str = ""

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def message(self) -> str:
        return self.detail or self.kind.name.replace("_", " ").lower()

    def reply_value(self) -> None:
        return None


CaptureOutcome = Union[ImageBytes, Cancelled, NoImage, Error]


def is_success(outcome: CaptureOutcome) -> bool:
    return isinstance(outcome, ImageBytes)


__all__ = [
    "AlreadyPending",
    "BridgeError",
    "Cancelled",
    "CaptureOutcome",
    "ConfigError",
    "Error",
    "ErrorKind",
    "ImageBytes",
    "NoDeviceAvailable",
    "NoImage",
    "RESULT_CANCELED",
    "RESULT_OK",
    "is_success",
]
