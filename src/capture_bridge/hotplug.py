"""USB attach/detach notifications published through the event multiplexer.

libusb1 invokes hotplug callbacks from inside ``handleEventsTimeout``; a
daemon thread keeps pumping the context so that callbacks arrive without the
embedding runtime having to poll.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import Optional

import usb1

from .discovery import DeviceDescriptor, InterfaceDescriptor, matches_video_class
from .events import EventMultiplexer

LOG = logging.getLogger(__name__)

EVENT_DEVICE_ATTACHED = "deviceAttached"
EVENT_DEVICE_DETACHED = "deviceDetached"


def descriptor_from_usb1(device: usb1.USBDevice) -> DeviceDescriptor:
    """Build a :class:`DeviceDescriptor` from a libusb1 device."""

    interfaces = []
    try:
        for setting in device.iterSettings():
            if setting.getAlternateSetting() != 0:
                continue
            interfaces.append(
                InterfaceDescriptor(
                    number=setting.getNumber(),
                    interface_class=setting.getClass(),
                    interface_subclass=setting.getSubClass(),
                    interface_protocol=setting.getProtocol(),
                )
            )
    except usb1.USBError as exc:
        LOG.debug("Could not read interfaces of hotplugged device: %s", exc)
        interfaces = []

    return DeviceDescriptor(
        vendor_id=device.getVendorID(),
        product_id=device.getProductID(),
        device_class=device.getDeviceClass(),
        device_subclass=device.getDeviceSubClass(),
        device_protocol=device.getDeviceProtocol(),
        interfaces=tuple(interfaces),
        bus=device.getBusNumber(),
        address=device.getDeviceAddress(),
    )


class HotplugWatcher:
    """Publish ``deviceAttached``/``deviceDetached`` events for one key."""

    def __init__(
        self,
        events: EventMultiplexer,
        *,
        key: str = "usb",
        context: Optional[usb1.USBContext] = None,
        poll_interval: float = 0.25,
        enumerate_existing: bool = True,
    ) -> None:
        self._events = events
        self._key = key
        self._ctx = context
        self._owns_context = context is None
        self._poll_interval = poll_interval
        self._enumerate_existing = enumerate_existing
        self._handle = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def key(self) -> str:
        return self._key

    def is_active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        """Register the hotplug callback and start pumping events.

        Returns ``False`` when the platform's libusb has no hotplug support.
        """

        if self.is_active():
            return True
        if self._thread is not None:
            LOG.info("USB hotplug event loop has stopped; restarting the watcher")
            self.stop()
        if not usb1.hasCapability(usb1.CAP_HAS_HOTPLUG):
            LOG.warning("libusb hotplug is not supported on this platform")
            return False

        if self._ctx is None:
            self._ctx = usb1.USBContext()
            self._ctx.open()

        flags = usb1.HOTPLUG_ENUMERATE if self._enumerate_existing else 0
        try:
            self._handle = self._ctx.hotplugRegisterCallback(
                self._on_hotplug,
                events=usb1.HOTPLUG_EVENT_DEVICE_ARRIVED | usb1.HOTPLUG_EVENT_DEVICE_LEFT,
                flags=flags,
            )
        except usb1.USBError as exc:
            LOG.warning("Failed to register hotplug callback: %s", exc)
            self._close_context()
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="usb-hotplug", daemon=True)
        self._thread.start()
        LOG.info("USB hotplug watcher started (key=%r)", self._key)
        return True

    def stop(self) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        if self._handle is not None and self._ctx is not None:
            with contextlib.suppress(usb1.USBError):
                self._ctx.hotplugDeregisterCallback(self._handle)
        self._handle = None
        thread.join(timeout=max(1.0, self._poll_interval * 4))
        self._thread = None
        self._close_context()
        LOG.info("USB hotplug watcher stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self._ctx.handleEventsTimeout(self._poll_interval)
            except usb1.USBError as exc:
                # is_active() turns false; the next start() re-registers.
                LOG.error("USB event handling failed; hotplug events stopped: %s", exc)
                break

    def _on_hotplug(self, context, device, event) -> bool:
        attached = event == usb1.HOTPLUG_EVENT_DEVICE_ARRIVED
        descriptor = descriptor_from_usb1(device)
        payload = {
            "vendorId": descriptor.vendor_id,
            "productId": descriptor.product_id,
            "isVideo": matches_video_class(descriptor),
        }
        name = EVENT_DEVICE_ATTACHED if attached else EVENT_DEVICE_DETACHED
        LOG.debug("Hotplug %s %s", name, descriptor.usb_id)
        self._events.publish(self._key, name, payload)
        # Returning a true value would deregister the callback.
        return False

    def _close_context(self) -> None:
        if self._ctx is not None and self._owns_context:
            with contextlib.suppress(Exception):
                self._ctx.close()
            self._ctx = None


__all__ = [
    "EVENT_DEVICE_ATTACHED",
    "EVENT_DEVICE_DETACHED",
    "HotplugWatcher",
    "descriptor_from_usb1",
]
