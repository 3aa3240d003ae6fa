"""Bridge configuration."""

from __future__ import annotations

import dataclasses
import logging
import os
from typing import Mapping, Optional

from .capture import REQUEST_CODE_CAMERA
from .dispatcher import PendingPolicy
from .imaging import JPEG_QUALITY
from .outcomes import ConfigError

LOG = logging.getLogger(__name__)

ENV_PREFIX = "CAPTURE_BRIDGE_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclasses.dataclass
class BridgeConfig:
    """Settings shared by the facade and the components it wires."""

    channel_name: str = "capture_bridge/uvc_camera"
    event_channel_name: str = "capture_bridge/events"
    request_code: int = REQUEST_CODE_CAMERA
    jpeg_quality: int = JPEG_QUALITY
    capture_timeout_s: Optional[float] = None
    pending_policy: PendingPolicy = PendingPolicy.REJECT
    hotplug: bool = False
    hotplug_key: str = "usb"
    vid: Optional[int] = None
    pid: Optional[int] = None

    def validate(self) -> "BridgeConfig":
        if not 1 <= self.jpeg_quality <= 95:
            raise ConfigError(f"jpeg_quality must be within 1..95, got {self.jpeg_quality}")
        if self.capture_timeout_s is not None and self.capture_timeout_s <= 0:
            raise ConfigError(f"capture_timeout_s must be positive, got {self.capture_timeout_s}")
        for name in ("vid", "pid"):
            value = getattr(self, name)
            if value is not None and not 0 <= value <= 0xFFFF:
                raise ConfigError(f"{name} must be between 0x0000 and 0xFFFF")
        try:
            self.pending_policy = PendingPolicy(self.pending_policy)
        except ValueError as exc:
            raise ConfigError(f"Unknown pending policy {self.pending_policy!r}") from exc
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BridgeConfig":
        """Build a configuration from ``CAPTURE_BRIDGE_*`` variables.

        Unset variables keep their defaults, e.g. ``CAPTURE_BRIDGE_JPEG_QUALITY=90``
        or ``CAPTURE_BRIDGE_PENDING_POLICY=replace``.
        """

        env = os.environ if environ is None else environ
        values = {}
        for field in dataclasses.fields(cls):
            raw = env.get(ENV_PREFIX + field.name.upper())
            if raw is None:
                continue
            values[field.name] = _parse_field(field.name, raw.strip())
        config = cls(**values).validate()
        if values:
            LOG.debug("Configuration overrides from environment: %s", sorted(values))
        return config


def _parse_field(name: str, raw: str):
    try:
        if name in ("request_code", "jpeg_quality"):
            return int(raw, 0)
        if name in ("vid", "pid"):
            # USB identifiers are always read as hex, with or without 0x.
            return int(raw[2:] if raw.lower().startswith("0x") else raw, 16)
        if name == "capture_timeout_s":
            return float(raw) if raw else None
        if name == "pending_policy":
            return PendingPolicy(raw.lower())
    except ValueError as exc:
        raise ConfigError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from exc
    if name == "hotplug":
        lowered = raw.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConfigError(f"Invalid boolean for {ENV_PREFIX}HOTPLUG: {raw!r}")
    return raw


__all__ = ["BridgeConfig", "ENV_PREFIX"]
