"""Tests for event bus."""

from poseforge.core.events import EventBus, EventType


def test_subscribe_publish():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.NEUTRAL_POSE_CAPTURED, lambda **kw: received.append(kw))
    bus.publish(EventType.NEUTRAL_POSE_CAPTURED, label="first-frame", bone_count=52)
    assert len(received) == 1
    assert received[0] == {"label": "first-frame", "bone_count": 52}


def test_unsubscribe():
    bus = EventBus()
    received = []
    handler = lambda **kw: received.append(kw)
    bus.subscribe(EventType.STATE_RESET, handler)
    bus.unsubscribe(EventType.STATE_RESET, handler)
    bus.publish(EventType.STATE_RESET)
    assert len(received) == 0


def test_multiple_subscribers():
    bus = EventBus()
    a, b = [], []
    bus.subscribe(EventType.IK_SOLVED, lambda **kw: a.append(1))
    bus.subscribe(EventType.IK_SOLVED, lambda **kw: b.append(1))
    bus.publish(EventType.IK_SOLVED, result=None)
    assert len(a) == 1
    assert len(b) == 1


def test_different_events_independent():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.CALIBRATED, lambda **kw: received.append("cal"))
    bus.publish(EventType.INITIALIZED, result=None)
    assert len(received) == 0


def test_handler_may_unsubscribe_during_publish():
    bus = EventBus()
    calls = []

    def once(**kw):
        calls.append(1)
        bus.unsubscribe(EventType.STATE_UPDATED, once)

    bus.subscribe(EventType.STATE_UPDATED, once)
    bus.publish(EventType.STATE_UPDATED, result=None)
    bus.publish(EventType.STATE_UPDATED, result=None)
    assert calls == [1]


def test_clear():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.STATE_RESET, lambda **kw: received.append(1))
    bus.clear()
    bus.publish(EventType.STATE_RESET)
    assert received == []
