"""Photo capture request flow.

A capture is started, handed to an external actor (a system picker, a USB
camera grab running on a worker thread, ...) and completed later when the
actor reports back with a status code and a payload.  The flow owns the
request for its channel and always returns to ``IDLE`` once the request has
settled, whatever the outcome.
"""

from __future__ import annotations

import collections
import concurrent.futures
import contextlib
import enum
import functools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Deque, Optional

from .dispatcher import ResultDispatcher
from .imaging import JPEG_QUALITY, RESULT_DATA_KEY, ImageDecodeError, extract_image, to_image_bytes
from .outcomes import (
    RESULT_CANCELED,
    RESULT_OK,
    AlreadyPending,
    Cancelled,
    CaptureOutcome,
    Error,
    ErrorKind,
    ImageBytes,
    NoDeviceAvailable,
    NoImage,
)

LOG = logging.getLogger(__name__)

REQUEST_CODE_CAMERA = 1001

ResultDelivery = Callable[[int, int, object], bool]


class CaptureState(enum.Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    COMPLETED = "completed"


class CaptureLauncher(ABC):
    """External actor that performs the capture and reports back later.

    The flow binds a delivery callable before launching; launchers that
    produce results themselves call it with ``(request_code, status,
    payload)``.  Launchers whose results come back through the embedding
    runtime can ignore it.
    """

    _deliver: Optional[ResultDelivery] = None

    def bind(self, deliver: Optional[ResultDelivery]) -> None:
        self._deliver = deliver

    @abstractmethod
    def can_handle(self) -> bool:
        """Return ``True`` if a capture can be serviced right now."""

    @abstractmethod
    def launch(self, request_code: int) -> None:
        """Trigger the capture and return immediately."""

    def release(self) -> None:
        self._deliver = None


class ThreadedLauncher(CaptureLauncher):
    """Run a blocking ``grab()`` callable on a daemon thread.

    ``grab`` returns encoded image bytes, a Pillow image, a numpy array, or
    ``None`` when the user backed out.  ``available`` gates
    :meth:`can_handle`; for a USB camera this is usually
    :meth:`DeviceDiscovery.has_video_capable_device`.
    """

    def __init__(
        self,
        grab: Callable[[], object],
        *,
        available: Optional[Callable[[], bool]] = None,
        name: str = "capture-launcher",
    ) -> None:
        self._grab = grab
        self._available = available
        self._name = name
        self._thread: Optional[threading.Thread] = None

    def can_handle(self) -> bool:
        if self._available is None:
            return True
        return bool(self._available())

    def launch(self, request_code: int) -> None:
        deliver = self._deliver
        if deliver is None:
            raise NoDeviceAvailable("Capture launcher is not bound to a flow")
        thread = threading.Thread(
            target=self._run,
            args=(request_code, deliver),
            name=self._name,
            daemon=True,
        )
        self._thread = thread
        thread.start()

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _run(self, request_code: int, deliver: ResultDelivery) -> None:
        try:
            image = self._grab()
        except Exception:
            LOG.error("Capture grab failed", exc_info=True)
            image = None

        if self._deliver is not deliver:
            LOG.debug("Launcher released before the grab finished; dropping result")
            return
        if image is None:
            deliver(request_code, RESULT_CANCELED, None)
        else:
            deliver(request_code, RESULT_OK, {RESULT_DATA_KEY: image})


def _completed(outcome: CaptureOutcome) -> "concurrent.futures.Future[CaptureOutcome]":
    future: "concurrent.futures.Future[CaptureOutcome]" = concurrent.futures.Future()
    future.set_result(outcome)
    return future


class CaptureRequestFlow:
    """State machine for one photo request at a time.

    ``IDLE -> REQUESTED -> COMPLETED -> IDLE``.  The pending request lives in
    the :class:`ResultDispatcher` under :attr:`request_code`; every resolution
    carries the request token so a late callback cannot complete a newer
    request.
    """

    def __init__(
        self,
        dispatcher: Optional[ResultDispatcher] = None,
        launcher: Optional[CaptureLauncher] = None,
        *,
        request_code: int = REQUEST_CODE_CAMERA,
        jpeg_quality: int = JPEG_QUALITY,
        timeout: Optional[float] = None,
    ) -> None:
        self._dispatcher = dispatcher or ResultDispatcher()
        self._request_code = request_code
        self._jpeg_quality = jpeg_quality
        self._timeout = timeout
        self._lock = threading.RLock()
        self._state = CaptureState.IDLE
        self._token: Optional[int] = None
        # Tokens of launched requests whose result has not come back, oldest first.
        self._awaiting: Deque[int] = collections.deque()
        self._launcher: Optional[CaptureLauncher] = None
        if launcher is not None:
            self.register_launcher(launcher)

    @property
    def state(self) -> CaptureState:
        with self._lock:
            return self._state

    @property
    def request_code(self) -> int:
        return self._request_code

    @property
    def launcher(self) -> Optional[CaptureLauncher]:
        return self._launcher

    def register_launcher(self, launcher: Optional[CaptureLauncher]) -> None:
        with self._lock:
            previous = self._launcher
            self._launcher = launcher
        if previous is not None and previous is not launcher:
            previous.release()
        if launcher is not None:
            launcher.bind(self.deliver)

    def can_capture(self) -> bool:
        launcher = self._launcher
        if launcher is None:
            return False
        try:
            return bool(launcher.can_handle())
        except Exception:
            LOG.warning("Capture launcher availability check failed", exc_info=True)
            return False

    def initiate(self) -> "concurrent.futures.Future[CaptureOutcome]":
        """Start a capture and return a future for its outcome."""

        with self._lock:
            try:
                request = self._dispatcher.begin(self._request_code, timeout=self._timeout)
            except AlreadyPending:
                LOG.warning("Capture requested while another capture is pending")
                return _completed(Error(ErrorKind.ALREADY_PENDING, "A capture is already in progress"))

            self._token = request.token
            self._state = CaptureState.REQUESTED
            request.future.add_done_callback(functools.partial(self._on_settled, request.token))

            launcher = self._launcher
            if launcher is None or not self.can_capture():
                LOG.warning("No capture handler available")
                self._resolve(Error(ErrorKind.NO_DEVICE_AVAILABLE, "No camera is available"))
                return request.future

            if request.future.done():
                LOG.warning("Capture request token=%d settled before launch; not launching", request.token)
                return request.future

            LOG.info("Launching capture (request code %d)", self._request_code)
            launcher.bind(functools.partial(self._deliver_for, request.token))
            self._awaiting.append(request.token)
            try:
                launcher.launch(self._request_code)
            except NoDeviceAvailable as exc:
                self._consume(request.token)
                LOG.warning("Capture handler unavailable: %s", exc)
                self._resolve(Error(ErrorKind.NO_DEVICE_AVAILABLE, str(exc) or "No camera is available"))
            except Exception as exc:
                self._consume(request.token)
                LOG.error("Failed to open the camera", exc_info=True)
                self._resolve(Error(ErrorKind.CAPTURE_FAILED, str(exc)))
            return request.future

    def deliver(self, request_code: int, status: int, payload: object = None) -> bool:
        """Route an external result to this flow if *request_code* is ours.

        Results carry no request identity, so they are matched to launches in
        order.  A result whose launch already settled (timed out, superseded)
        is dropped instead of completing the current request.
        """

        if request_code != self._request_code:
            LOG.debug("Ignoring result for foreign request code %s", request_code)
            return False
        with self._lock:
            if self._awaiting:
                token = self._awaiting.popleft()
                if token != self._token:
                    LOG.info("Dropping late result of settled capture request token=%d", token)
                    return False
            return self.on_external_result(status, payload) is not None

    def _deliver_for(self, token: int, request_code: int, status: int, payload: object = None) -> bool:
        if request_code != self._request_code:
            LOG.debug("Ignoring result for foreign request code %s", request_code)
            return False
        with self._lock:
            self._consume(token)
            if self._token != token:
                LOG.debug("Dropping launcher result for settled request token=%d", token)
                return False
            return self.on_external_result(status, payload) is not None

    def on_external_result(self, status: int, payload: object = None) -> Optional[CaptureOutcome]:
        """Classify an external result and complete the pending request."""

        with self._lock:
            if self._state is not CaptureState.REQUESTED:
                LOG.debug("Dropping external result (status=%s) in state %s", status, self._state.name)
                return None
            self._consume(self._token)
            try:
                outcome = self._classify(status, payload)
            except Exception as exc:
                LOG.error("Could not interpret capture result", exc_info=True)
                outcome = Error(ErrorKind.DECODE_FAILURE, str(exc))
            self._resolve(outcome)
            return outcome

    def dispose(self) -> None:
        """Cancel any pending request and drop the launcher.  Idempotent."""

        with self._lock:
            token = self._token
            if token is not None:
                self._dispatcher.resolve(self._request_code, Cancelled("disposed"), token=token)
            launcher = self._launcher
            self._launcher = None
            self._token = None
            self._state = CaptureState.IDLE
            # Results of released launches are no longer expected.
            self._awaiting.clear()
        if launcher is not None:
            try:
                launcher.release()
            except Exception:
                LOG.warning("Capture launcher release failed", exc_info=True)
            LOG.info("Capture flow disposed")

    def _classify(self, status: int, payload: object) -> CaptureOutcome:
        if status != RESULT_OK:
            return Cancelled()
        image = extract_image(payload)
        if image is None:
            return NoImage()
        try:
            data = to_image_bytes(image, self._jpeg_quality)
        except ImageDecodeError as exc:
            LOG.warning("Capture returned an unusable image: %s", exc)
            return Error(ErrorKind.DECODE_FAILURE, str(exc))
        LOG.info("Capture completed with %d image bytes", len(data))
        return ImageBytes(data)

    def _resolve(self, outcome: CaptureOutcome) -> bool:
        with self._lock:
            token = self._token
            if token is None:
                return False
            self._state = CaptureState.COMPLETED
            try:
                return self._dispatcher.resolve(self._request_code, outcome, token=token)
            finally:
                if self._token == token:
                    self._token = None
                    self._state = CaptureState.IDLE

    def _consume(self, token: Optional[int]) -> None:
        with contextlib.suppress(ValueError):
            self._awaiting.remove(token)

    def _on_settled(self, token: int, _future) -> None:
        with self._lock:
            if self._token == token:
                self._token = None
                self._state = CaptureState.IDLE


__all__ = [
    "CaptureLauncher",
    "CaptureRequestFlow",
    "CaptureState",
    "REQUEST_CODE_CAMERA",
    "ThreadedLauncher",
]
