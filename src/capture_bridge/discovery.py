"""USB inventory snapshots and video-class detection on top of PyUSB.

Descriptors are read fresh on every call; nothing is cached between calls
because devices come and go while the bridge is running.  Enumeration
problems are never raised to callers: a missing backend or a permission error
simply means no device is visible.
"""

from __future__ import annotations

import ctypes
import dataclasses
import logging
from typing import Callable, Iterable, List, Optional, Tuple

import usb.core

LOG = logging.getLogger(__name__)

USB_CLASS_VIDEO = 0x0E
USB_SUBCLASS_VIDEOCONTROL = 0x01
USB_PROTOCOL_VIDEO = 0x01

_LIBUSB_HOTPLUG_DISABLED = False
_LIBUSB_HOTPLUG_ATTEMPTED = False


@dataclasses.dataclass(frozen=True)
class InterfaceDescriptor:
    """Class codes of one interface of a configuration."""

    number: int
    interface_class: int
    interface_subclass: int = 0
    interface_protocol: int = 0


@dataclasses.dataclass(frozen=True)
class DeviceDescriptor:
    """Snapshot of a single USB device as reported by the platform."""

    vendor_id: int
    product_id: int
    device_class: int = 0
    device_subclass: int = 0
    device_protocol: int = 0
    interfaces: Tuple[InterfaceDescriptor, ...] = ()
    bus: Optional[int] = None
    address: Optional[int] = None

    @property
    def usb_id(self) -> str:
        return f"{self.vendor_id:04x}:{self.product_id:04x}"

    @classmethod
    def from_usb_device(cls, dev) -> "DeviceDescriptor":
        """Build a descriptor from a :class:`usb.core.Device`."""

        try:
            interfaces = tuple(_iter_interfaces(dev))
        except (usb.core.USBError, NotImplementedError, ValueError) as exc:
            LOG.debug(
                "Could not read configurations of %04x:%04x: %s",
                dev.idVendor,
                dev.idProduct,
                exc,
            )
            interfaces = ()
        return cls(
            vendor_id=int(dev.idVendor),
            product_id=int(dev.idProduct),
            device_class=int(getattr(dev, "bDeviceClass", 0) or 0),
            device_subclass=int(getattr(dev, "bDeviceSubClass", 0) or 0),
            device_protocol=int(getattr(dev, "bDeviceProtocol", 0) or 0),
            interfaces=interfaces,
            bus=getattr(dev, "bus", None),
            address=getattr(dev, "address", None),
        )


def _iter_interfaces(dev) -> Iterable[InterfaceDescriptor]:
    for cfg in dev:
        for intf in cfg:
            yield InterfaceDescriptor(
                number=int(intf.bInterfaceNumber),
                interface_class=int(intf.bInterfaceClass),
                interface_subclass=int(getattr(intf, "bInterfaceSubClass", 0) or 0),
                interface_protocol=int(getattr(intf, "bInterfaceProtocol", 0) or 0),
            )


def _disable_hotplug_and_get_backend():
    """Try to reinitialise libusb without the udev hotplug monitor.

    Some sandboxes block access to udev, causing ``libusb_init`` to return
    ``LIBUSB_ERROR_OTHER``.  In that situation we ask libusb to skip device
    discovery so that PyUSB can still enumerate already-present devices.
    """

    global _LIBUSB_HOTPLUG_ATTEMPTED, _LIBUSB_HOTPLUG_DISABLED
    from usb.backend import libusb1

    if _LIBUSB_HOTPLUG_DISABLED or _LIBUSB_HOTPLUG_ATTEMPTED:
        return libusb1.get_backend()

    _LIBUSB_HOTPLUG_ATTEMPTED = True

    try:
        libusb = ctypes.CDLL("libusb-1.0.so.0")
    except OSError:
        return None

    set_option = getattr(libusb, "libusb_set_option", None)
    if set_option is None:
        return None
    set_option.argtypes = [ctypes.c_void_p, ctypes.c_int]
    set_option.restype = ctypes.c_int

    # LIBUSB_OPTION_NO_DEVICE_DISCOVERY on the default context.
    if set_option(None, 2) != 0:
        return None

    # Force PyUSB to load the library again so the option takes effect.
    libusb1._lib = None  # type: ignore[attr-defined]
    libusb1._lib_object = None  # type: ignore[attr-defined]

    backend = libusb1.get_backend()
    if backend is not None:
        _LIBUSB_HOTPLUG_DISABLED = True
    return backend


def _find_all_devices() -> List[object]:
    try:
        devices = usb.core.find(find_all=True)
    except usb.core.NoBackendError:
        backend = _disable_hotplug_and_get_backend()
        if backend is None:
            raise
        devices = usb.core.find(find_all=True, backend=backend)
    return list(devices or [])


def matches_video_class(descriptor: DeviceDescriptor) -> bool:
    """Return ``True`` if either the device or one of its interfaces is video.

    Device-level and interface-level codes are each unreliable depending on
    firmware, so a match on either signal is enough.
    """

    device_level = (
        descriptor.device_class == USB_CLASS_VIDEO
        or descriptor.device_subclass == USB_SUBCLASS_VIDEOCONTROL
        or descriptor.device_protocol == USB_PROTOCOL_VIDEO
    )
    if device_level:
        return True
    return any(intf.interface_class == USB_CLASS_VIDEO for intf in descriptor.interfaces)


def describe(descriptor: DeviceDescriptor) -> str:
    ifaces = ",".join(
        f"{intf.number}:{intf.interface_class:02x}/{intf.interface_subclass:02x}"
        for intf in descriptor.interfaces
    )
    location = ""
    if descriptor.bus is not None:
        location = f" bus={descriptor.bus} addr={descriptor.address}"
    return (
        f"{descriptor.usb_id} class={descriptor.device_class:02x}/"
        f"{descriptor.device_subclass:02x}/{descriptor.device_protocol:02x}"
        f" ifaces=[{ifaces}]{location}"
    )


class DeviceDiscovery:
    """Query the current USB inventory and classify it.

    ``finder`` returns the raw device objects; it defaults to a PyUSB
    ``find(find_all=True)`` and exists so that tests and embedders can feed
    their own inventory.
    """

    def __init__(
        self,
        finder: Optional[Callable[[], Iterable[object]]] = None,
        *,
        vid: Optional[int] = None,
        pid: Optional[int] = None,
    ) -> None:
        self._finder = finder or _find_all_devices
        self._vid = vid
        self._pid = pid

    def list_devices(self, vid: Optional[int] = None, pid: Optional[int] = None) -> List[DeviceDescriptor]:
        """Return a snapshot of every visible device, or ``[]`` on failure."""

        vid = self._vid if vid is None else vid
        pid = self._pid if pid is None else pid
        try:
            raw_devices = list(self._finder())
        except usb.core.NoBackendError:
            LOG.warning("No libusb backend available; reporting no USB devices")
            return []
        except Exception:
            LOG.warning("USB enumeration failed; reporting no USB devices", exc_info=True)
            return []

        LOG.debug("Enumerated %d USB device(s)", len(raw_devices))
        result = []
        for dev in raw_devices:
            try:
                descriptor = dev if isinstance(dev, DeviceDescriptor) else DeviceDescriptor.from_usb_device(dev)
            except Exception:
                LOG.warning("Skipping USB device with unreadable descriptors", exc_info=True)
                continue
            if vid is not None and descriptor.vendor_id != vid:
                continue
            if pid is not None and descriptor.product_id != pid:
                continue
            LOG.debug("USB device: %s", describe(descriptor))
            result.append(descriptor)
        return result

    def matches_video_class(self, descriptor: DeviceDescriptor) -> bool:
        return matches_video_class(descriptor)

    def has_video_capable_device(self) -> bool:
        devices = self.list_devices()
        for descriptor in devices:
            if matches_video_class(descriptor):
                LOG.debug("Video-capable device found: %s", describe(descriptor))
                return True
        LOG.debug("No video-capable device among %d device(s)", len(devices))
        return False

    def list_video_devices(self) -> List[DeviceDescriptor]:
        """Return devices whose device-level codes declare the video class."""

        return [
            descriptor
            for descriptor in self.list_devices()
            if descriptor.device_class == USB_CLASS_VIDEO
            or descriptor.device_subclass == USB_SUBCLASS_VIDEOCONTROL
        ]


__all__ = [
    "DeviceDescriptor",
    "DeviceDiscovery",
    "InterfaceDescriptor",
    "USB_CLASS_VIDEO",
    "USB_PROTOCOL_VIDEO",
    "USB_SUBCLASS_VIDEOCONTROL",
    "describe",
    "matches_video_class",
]
