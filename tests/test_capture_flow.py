"""Capture request flow scenarios driven by a recording launcher."""

from __future__ import annotations

import io
import threading

import numpy as np
import pytest
from PIL import Image

from capture_bridge import (
    RESULT_CANCELED,
    RESULT_OK,
    REQUEST_CODE_CAMERA,
    Cancelled,
    CaptureRequestFlow,
    CaptureState,
    Error,
    ErrorKind,
    ImageBytes,
    NoDeviceAvailable,
    NoImage,
    PendingPolicy,
    ResultDispatcher,
    ThreadedLauncher,
)

from .mocks import RecordingLauncher, make_jpeg, wait_until


@pytest.fixture()
def launcher() -> RecordingLauncher:
    return RecordingLauncher()


@pytest.fixture()
def flow(launcher: RecordingLauncher) -> CaptureRequestFlow:
    return CaptureRequestFlow(ResultDispatcher(), launcher)


def test_successful_capture_returns_bytes_and_goes_idle(flow: CaptureRequestFlow, launcher: RecordingLauncher):
    jpeg = make_jpeg()
    future = flow.initiate()
    assert flow.state is CaptureState.REQUESTED
    assert launcher.launches == [REQUEST_CODE_CAMERA]

    outcome = flow.on_external_result(RESULT_OK, {"data": jpeg})

    assert outcome == ImageBytes(jpeg)
    assert future.result(timeout=1) == ImageBytes(jpeg)
    assert flow.state is CaptureState.IDLE

    second = flow.initiate()
    assert flow.state is CaptureState.REQUESTED
    assert not second.done()
    assert len(launcher.launches) == 2


def test_raw_bytes_payload_is_passed_through(flow: CaptureRequestFlow):
    jpeg = make_jpeg(color=(0, 0, 255))
    future = flow.initiate()
    flow.on_external_result(RESULT_OK, jpeg)
    assert future.result(timeout=1).data == jpeg


def test_cancel_status_yields_cancelled(flow: CaptureRequestFlow):
    future = flow.initiate()
    flow.on_external_result(RESULT_CANCELED, None)
    assert future.result(timeout=1) == Cancelled()
    assert flow.state is CaptureState.IDLE


def test_no_handler_reports_no_device_without_launching():
    launcher = RecordingLauncher(available=False)
    flow = CaptureRequestFlow(ResultDispatcher(), launcher)

    outcome = flow.initiate().result(timeout=1)

    assert isinstance(outcome, Error)
    assert outcome.kind is ErrorKind.NO_DEVICE_AVAILABLE
    assert outcome.code == "NO_CAMERA"
    assert launcher.launches == []
    assert flow.state is CaptureState.IDLE


def test_missing_launcher_reports_no_device():
    flow = CaptureRequestFlow()
    outcome = flow.initiate().result(timeout=1)
    assert outcome.kind is ErrorKind.NO_DEVICE_AVAILABLE


@pytest.mark.parametrize("payload", [None, {}, {"data": None}, {"data": b""}, b""])
def test_success_without_image_yields_no_image(flow: CaptureRequestFlow, payload):
    future = flow.initiate()
    flow.on_external_result(RESULT_OK, payload)
    assert future.result(timeout=1) == NoImage()
    assert flow.state is CaptureState.IDLE


def test_malformed_image_reports_decode_failure(flow: CaptureRequestFlow):
    future = flow.initiate()
    flow.on_external_result(RESULT_OK, {"data": b"definitely not a jpeg"})
    outcome = future.result(timeout=1)
    assert outcome.kind is ErrorKind.DECODE_FAILURE
    assert flow.state is CaptureState.IDLE
    flow.initiate()
    assert flow.state is CaptureState.REQUESTED


def test_bitmap_payloads_are_encoded_to_jpeg(flow: CaptureRequestFlow):
    future = flow.initiate()
    flow.on_external_result(RESULT_OK, {"data": Image.new("RGBA", (4, 4), (1, 2, 3, 255))})
    assert future.result(timeout=1).data.startswith(b"\xff\xd8")

    future = flow.initiate()
    flow.on_external_result(RESULT_OK, {"data": np.zeros((6, 4, 3), dtype=np.uint8)})
    data = future.result(timeout=1).data
    assert data.startswith(b"\xff\xd8")
    with Image.open(io.BytesIO(data)) as decoded:
        assert decoded.size == (4, 6)


def test_second_initiate_while_pending_is_rejected(flow: CaptureRequestFlow, launcher: RecordingLauncher):
    first = flow.initiate()
    second = flow.initiate()

    assert second.result(timeout=1).kind is ErrorKind.ALREADY_PENDING
    assert not first.done()
    assert launcher.launches == [REQUEST_CODE_CAMERA]

    flow.on_external_result(RESULT_CANCELED)
    assert first.result(timeout=1) == Cancelled()


def test_replace_policy_supersedes_first_caller(launcher: RecordingLauncher):
    flow = CaptureRequestFlow(ResultDispatcher(PendingPolicy.REPLACE), launcher)
    first = flow.initiate()
    second = flow.initiate()

    assert first.result(timeout=1) == Cancelled("superseded")
    assert flow.state is CaptureState.REQUESTED

    jpeg = make_jpeg()
    flow.on_external_result(RESULT_OK, {"data": jpeg})
    assert second.result(timeout=1) == ImageBytes(jpeg)


def test_late_launcher_delivery_cannot_complete_newer_request(launcher: RecordingLauncher):
    flow = CaptureRequestFlow(ResultDispatcher(PendingPolicy.REPLACE), launcher)
    flow.initiate()
    second = flow.initiate()
    stale_delivery, current_delivery = launcher.deliveries

    assert stale_delivery(REQUEST_CODE_CAMERA, RESULT_OK, {"data": make_jpeg()}) is False
    assert not second.done()

    assert current_delivery(REQUEST_CODE_CAMERA, RESULT_CANCELED, None) is True
    assert second.result(timeout=1) == Cancelled()


def test_result_in_idle_state_is_ignored(flow: CaptureRequestFlow):
    assert flow.on_external_result(RESULT_OK, {"data": make_jpeg()}) is None
    assert flow.state is CaptureState.IDLE


def test_foreign_request_code_is_ignored(flow: CaptureRequestFlow):
    future = flow.initiate()
    assert flow.deliver(4242, RESULT_OK, {"data": make_jpeg()}) is False
    assert not future.done()
    assert flow.deliver(REQUEST_CODE_CAMERA, RESULT_CANCELED) is True
    assert future.result(timeout=1) == Cancelled()


def test_dispose_cancels_pending_and_is_idempotent(flow: CaptureRequestFlow, launcher: RecordingLauncher):
    future = flow.initiate()
    flow.dispose()
    flow.dispose()

    assert future.result(timeout=1) == Cancelled("disposed")
    assert flow.state is CaptureState.IDLE
    assert launcher.released == 1
    assert flow.launcher is None
    assert flow.initiate().result(timeout=1).kind is ErrorKind.NO_DEVICE_AVAILABLE


def test_register_launcher_after_dispose(flow: CaptureRequestFlow):
    flow.dispose()
    replacement = RecordingLauncher()
    flow.register_launcher(replacement)
    flow.initiate()
    assert replacement.launches == [REQUEST_CODE_CAMERA]


@pytest.mark.parametrize(
    "error, expected",
    [
        (RuntimeError("camera busy"), ErrorKind.CAPTURE_FAILED),
        (NoDeviceAvailable("unplugged"), ErrorKind.NO_DEVICE_AVAILABLE),
    ],
)
def test_launch_errors_are_recovered(error, expected):
    flow = CaptureRequestFlow(ResultDispatcher(), RecordingLauncher(error=error))
    outcome = flow.initiate().result(timeout=1)
    assert outcome.kind is expected
    assert str(error) in outcome.message
    assert flow.state is CaptureState.IDLE


def test_timeout_returns_flow_to_idle(launcher: RecordingLauncher):
    flow = CaptureRequestFlow(ResultDispatcher(), launcher, timeout=0.05)
    future = flow.initiate()

    assert future.result(timeout=2) == Cancelled("timeout")
    assert wait_until(lambda: flow.state is CaptureState.IDLE)
    assert flow.on_external_result(RESULT_OK, {"data": make_jpeg()}) is None


def test_threaded_launcher_delivers_grabbed_image():
    jpeg = make_jpeg()
    launcher = ThreadedLauncher(lambda: jpeg)
    flow = CaptureRequestFlow(ResultDispatcher(), launcher)

    assert flow.initiate().result(timeout=2) == ImageBytes(jpeg)
    assert wait_until(lambda: flow.state is CaptureState.IDLE)


@pytest.mark.parametrize("grab_result", [None, RuntimeError("sensor timeout")])
def test_threaded_launcher_failures_become_cancelled(grab_result):
    def _grab():
        if isinstance(grab_result, Exception):
            raise grab_result
        return grab_result

    flow = CaptureRequestFlow(ResultDispatcher(), ThreadedLauncher(_grab))
    assert flow.initiate().result(timeout=2) == Cancelled()


def test_threaded_launcher_respects_availability():
    launcher = ThreadedLauncher(make_jpeg, available=lambda: False)
    flow = CaptureRequestFlow(ResultDispatcher(), launcher)
    assert flow.initiate().result(timeout=1).kind is ErrorKind.NO_DEVICE_AVAILABLE


def test_threaded_launcher_drops_result_after_dispose():
    release = threading.Event()

    def _grab():
        release.wait(2)
        return make_jpeg()

    launcher = ThreadedLauncher(_grab)
    flow = CaptureRequestFlow(ResultDispatcher(), launcher)
    future = flow.initiate()
    flow.dispose()
    release.set()
    launcher.join(2)

    assert future.result(timeout=1) == Cancelled("disposed")
    assert flow.state is CaptureState.IDLE


def test_late_activity_result_after_timeout_is_dropped(launcher: RecordingLauncher):
    flow = CaptureRequestFlow(ResultDispatcher(), launcher, timeout=0.05)
    assert flow.initiate().result(timeout=2) == Cancelled("timeout")
    assert wait_until(lambda: flow.state is CaptureState.IDLE)

    second = flow.initiate()
    assert flow.deliver(REQUEST_CODE_CAMERA, RESULT_OK, {"data": make_jpeg()}) is False
    assert not second.done()

    fresh = make_jpeg(color=(10, 200, 10))
    assert flow.deliver(REQUEST_CODE_CAMERA, RESULT_OK, {"data": fresh}) is True
    assert second.result(timeout=1) == ImageBytes(fresh)


def test_late_activity_result_of_superseded_request_is_dropped(launcher: RecordingLauncher):
    flow = CaptureRequestFlow(ResultDispatcher(PendingPolicy.REPLACE), launcher)
    first = flow.initiate()
    second = flow.initiate()
    assert first.result(timeout=1) == Cancelled("superseded")

    assert flow.deliver(REQUEST_CODE_CAMERA, RESULT_OK, {"data": make_jpeg()}) is False
    assert not second.done()
    assert flow.deliver(REQUEST_CODE_CAMERA, RESULT_CANCELED) is True
    assert second.result(timeout=1) == Cancelled()


def test_direct_result_does_not_shift_activity_matching(flow: CaptureRequestFlow):
    first = flow.initiate()
    flow.on_external_result(RESULT_CANCELED)
    assert first.result(timeout=1) == Cancelled()

    second = flow.initiate()
    jpeg = make_jpeg()
    assert flow.deliver(REQUEST_CODE_CAMERA, RESULT_OK, {"data": jpeg}) is True
    assert second.result(timeout=1) == ImageBytes(jpeg)


def test_failed_launch_expects_no_result(launcher: RecordingLauncher):
    launcher.error = RuntimeError("camera busy")
    flow = CaptureRequestFlow(ResultDispatcher(), launcher)
    assert flow.initiate().result(timeout=1).kind is ErrorKind.CAPTURE_FAILED

    launcher.error = None
    pending = flow.initiate()
    assert flow.deliver(REQUEST_CODE_CAMERA, RESULT_CANCELED) is True
    assert pending.result(timeout=1) == Cancelled()


class _ExpiringDispatcher(ResultDispatcher):
    """Settles every request as soon as it is registered."""

    def begin(self, kind, *, timeout=None):
        request = super().begin(kind, timeout=timeout)
        self.resolve(kind, Cancelled("timeout"), token=request.token)
        return request


def test_request_settled_before_launch_is_not_launched(launcher: RecordingLauncher):
    flow = CaptureRequestFlow(_ExpiringDispatcher(), launcher, timeout=5)
    assert flow.initiate().result(timeout=1) == Cancelled("timeout")
    assert launcher.launches == []
    assert flow.state is CaptureState.IDLE
