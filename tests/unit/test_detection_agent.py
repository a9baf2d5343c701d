"""Unit tests for the detection throttle and detection loop."""

import asyncio
from unittest.mock import AsyncMock

import pytest

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), os.pardir, os.pardir, "backend"))

from sahayak.agents.detection_agent import (
    DetectionClass,
    DetectionLoop,
    DetectionThrottle,
    classify,
    estimate_distance,
)
from sahayak.models import Detection, DetectionFrame, Priority


def _frame(*detections, height=480.0):
    return DetectionFrame(detections=list(detections), frame_height=height)


def _person(score=0.9, box_h=240.0):
    return Detection("person", score, (0.0, 0.0, 80.0, box_h))


class _FakeSource:
    def __init__(self, available=True):
        self.available = available
        self.opened = False
        self.closed = False
        self.frames = asyncio.Queue()

    def open(self):
        self.opened = True

    async def detect(self):
        item = await self.frames.get()
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


# ── classification & distance ────────────────────────────────

def test_classify_known_and_unknown_labels():
    assert classify("person") is DetectionClass.PERSON
    assert classify(" Cell Phone ") is DetectionClass.CELL_PHONE
    assert classify("auto rickshaw") is DetectionClass.OTHER
    assert len(DetectionClass) == 81


def test_estimate_distance_uses_reference_height():
    # half the frame tall: 0.9 * 1.7 / 0.5
    assert estimate_distance("person", 240, 480) == 3.1
    assert estimate_distance("car", 300, 600) == 2.7
    # unknown classes use the 1.0 m default
    assert estimate_distance("scooter", 480, 480) == 0.9


# ── throttle ─────────────────────────────────────────────────

def test_announces_with_distance_at_normal_priority():
    throttle = DetectionThrottle(clock=lambda: 0.0)
    requests = throttle.on_frame(_frame(_person()))
    assert len(requests) == 1
    assert requests[0].text == "person, 3.1 meters away"
    assert requests[0].priority is Priority.NORMAL


def test_cooldown_is_strict_per_class():
    throttle = DetectionThrottle()
    assert len(throttle.on_frame(_frame(_person()), now=0.0)) == 1
    assert throttle.on_frame(_frame(_person()), now=2000.0) == []
    assert throttle.on_frame(_frame(_person()), now=4000.0) == []
    assert len(throttle.on_frame(_frame(_person()), now=4001.0)) == 1


def test_classes_are_independent():
    throttle = DetectionThrottle()
    car = Detection("car", 0.8, (0, 0, 100, 120))
    assert len(throttle.on_frame(_frame(_person(), car), now=0.0)) == 2
    chair = Detection("chair", 0.7, (0, 0, 50, 100))
    requests = throttle.on_frame(_frame(_person(), chair), now=100.0)
    assert [r.text.split(",")[0] for r in requests] == ["chair"]


def test_same_class_twice_in_one_frame_announced_once():
    throttle = DetectionThrottle()
    requests = throttle.on_frame(_frame(_person(), _person(box_h=120.0)), now=0.0)
    assert len(requests) == 1


def test_unknown_labels_share_one_slot():
    throttle = DetectionThrottle()
    scooter = Detection("scooter", 0.9, (0, 0, 10, 100))
    rickshaw = Detection("rickshaw", 0.9, (0, 0, 10, 100))
    assert len(throttle.on_frame(_frame(scooter), now=0.0)) == 1
    assert throttle.on_frame(_frame(rickshaw), now=10.0) == []


def test_skips_low_confidence_and_degenerate_boxes():
    throttle = DetectionThrottle()
    assert throttle.on_frame(_frame(_person(score=0.6)), now=0.0) == []
    assert throttle.on_frame(_frame(_person(box_h=0.0)), now=0.0) == []
    assert throttle.on_frame(_frame(_person(), height=0.0), now=0.0) == []
    assert throttle.last_spoken("person") is None


def test_reset_clears_cooldowns():
    throttle = DetectionThrottle()
    throttle.on_frame(_frame(_person()), now=0.0)
    throttle.reset()
    assert len(throttle.on_frame(_frame(_person()), now=10.0)) == 1


# ── loop ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_loop_refuses_unavailable_source():
    loop = DetectionLoop(DetectionThrottle(), AsyncMock())
    source = _FakeSource(available=False)
    assert loop.start(source) is False
    assert not loop.running
    assert not source.opened


@pytest.mark.asyncio
async def test_client_fed_session_processes_frames():
    submit = AsyncMock()
    loop = DetectionLoop(DetectionThrottle(clock=lambda: 0.0), submit)
    assert loop.start() is True
    requests = await loop.process(_frame(_person()))
    assert len(requests) == 1
    submit.assert_awaited_once_with(requests[0])
    loop.stop()
    assert not loop.running


@pytest.mark.asyncio
async def test_polling_loop_feeds_throttle_and_survives_errors():
    seen = asyncio.Event()
    submitted = []

    async def submit(request):
        submitted.append(request)
        seen.set()

    loop = DetectionLoop(DetectionThrottle(), submit, idle_delay=0)
    source = _FakeSource()
    assert loop.start(source)
    assert source.opened

    source.frames.put_nowait(RuntimeError("camera glitch"))
    source.frames.put_nowait(_frame(_person()))
    await asyncio.wait_for(seen.wait(), timeout=1.0)
    assert submitted[0].text == "person, 3.1 meters away"

    loop.stop()
    assert source.closed
    assert loop.source is None
    assert loop.throttle.last_spoken("person") is None


@pytest.mark.asyncio
async def test_restart_resets_cooldown_table():
    submit = AsyncMock()
    loop = DetectionLoop(DetectionThrottle(clock=lambda: 0.0), submit)
    loop.start()
    await loop.process(_frame(_person()))
    loop.stop()
    loop.start()
    assert len(await loop.process(_frame(_person()))) == 1
    assert submit.await_count == 2
    loop.stop()
