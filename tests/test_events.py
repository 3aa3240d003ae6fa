from __future__ import annotations

import threading

import pytest

from capture_bridge import CallbackEventSink, EventMultiplexer, EventStreamError, QueueEventSink


@pytest.fixture()
def events() -> EventMultiplexer:
    return EventMultiplexer()


def test_publish_reaches_registered_sink(events: EventMultiplexer):
    sink = QueueEventSink()
    events.subscribe("ble", sink)
    assert events.publish("ble", "connected", {"address": "AA:BB"}) is True
    assert sink.drain() == [("connected", {"address": "AA:BB"})]


def test_resubscribe_replaces_previous_sink(events: EventMultiplexer):
    first, second = QueueEventSink(), QueueEventSink()
    events.subscribe("ble", first)
    events.subscribe("ble", second)

    events.publish("ble", "status", 1)

    assert first.drain() == []
    assert second.drain() == [("status", 1)]
    assert len(events) == 1


def test_publish_without_subscriber_is_dropped(events: EventMultiplexer):
    assert events.publish("nobody", "status", 1) is False
    late = QueueEventSink()
    events.subscribe("nobody", late)
    assert late.drain() == []


def test_unsubscribe_stops_delivery(events: EventMultiplexer):
    sink = QueueEventSink()
    events.subscribe("ble", sink)
    assert events.unsubscribe("ble") is True
    assert events.unsubscribe("ble") is False
    events.publish("ble", "status", 1)
    assert sink.drain() == []
    assert "ble" not in events


def test_events_only_reach_their_key(events: EventMultiplexer):
    left, right = QueueEventSink(), QueueEventSink()
    events.subscribe("left", left)
    events.subscribe("right", right)
    events.publish("left", "battery", 80)
    assert left.drain() == [("battery", 80)]
    assert right.drain() == []


def test_failing_sink_does_not_break_publishing(events: EventMultiplexer):
    def _boom(name, payload):
        raise RuntimeError("sink gone")

    healthy = QueueEventSink()
    events.subscribe("broken", CallbackEventSink(_boom))
    events.subscribe("healthy", healthy)

    assert events.publish("broken", "status", 1) is False
    assert events.broadcast("status", 2) == 1
    assert healthy.drain() == [("status", 2)]


def test_fail_sends_terminal_error_and_removes_sink(events: EventMultiplexer):
    sink = QueueEventSink()
    events.subscribe("ble", sink)
    events.publish("ble", "status", 1)
    assert events.fail("ble", "BLE_OFF", "Bluetooth disabled")

    iterator = iter(sink)
    assert next(iterator) == ("status", 1)
    with pytest.raises(EventStreamError) as excinfo:
        next(iterator)
    assert excinfo.value.code == "BLE_OFF"
    assert "ble" not in events


def test_close_ends_every_stream(events: EventMultiplexer):
    ended = []
    events.subscribe("a", CallbackEventSink(lambda *_: None, on_end=lambda: ended.append("a")))
    sink = QueueEventSink()
    events.subscribe("b", sink)
    events.publish("b", "status", 1)

    events.close()

    assert ended == ["a"]
    assert list(sink) == [("status", 1)]
    assert events.keys() == []
    assert sink.closed


def test_queue_sink_get_returns_none_after_end():
    sink = QueueEventSink()
    sink.send("x", 1)
    sink.end_of_stream()
    sink.send("ignored", 2)
    assert sink.get(timeout=1) == ("x", 1)
    assert sink.get(timeout=1) is None


def test_concurrent_publish_and_subscribe(events: EventMultiplexer):
    sink = QueueEventSink()
    events.subscribe("ble", sink)
    stop = threading.Event()

    def _churn():
        while not stop.is_set():
            events.subscribe("other", QueueEventSink())
            events.unsubscribe("other")

    churner = threading.Thread(target=_churn)
    churner.start()
    try:
        for index in range(500):
            events.publish("ble", "tick", index)
    finally:
        stop.set()
        churner.join()

    assert [payload for _, payload in sink.drain()] == list(range(500))
