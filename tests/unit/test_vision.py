"""
Unit Tests for Vision Sampling
"""

import asyncio

import pytest

from adapt_live_coach.models import DetectedObject
from adapt_live_coach.vision import DetectionBuffer, VisionSampler, detected_labels


class ManualClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestDetectionBuffer:

    @pytest.fixture
    def clock(self):
        return ManualClock()

    @pytest.fixture
    def buffer(self, clock):
        return DetectionBuffer(min_confidence=0.5, stale_after=2.0, clock=clock)

    def test_empty_before_first_report(self, buffer):
        assert buffer.detect() == []

    def test_low_confidence_dropped(self, buffer):
        buffer.push([
            DetectedObject("lug wrench", 0.92),
            DetectedObject("phone", 0.31),
        ])
        assert [d.label for d in buffer.detect()] == ["lug wrench"]

    def test_stale_report_reads_empty(self, buffer, clock):
        buffer.push([DetectedObject("jack", 0.8)])
        clock.now += 1.9
        assert len(buffer.detect()) == 1
        clock.now += 0.2
        assert buffer.detect() == []

    def test_newer_report_replaces_older(self, buffer):
        buffer.push([DetectedObject("jack", 0.8)])
        buffer.push([DetectedObject("phone", 0.9)])
        assert [d.label for d in buffer.detect()] == ["phone"]


def test_detected_labels_normalized():
    labels = detected_labels([DetectedObject(" Lug Wrench "), DetectedObject("PHONE")])
    assert labels == {"lug wrench", "phone"}


class TestVisionSampler:

    @pytest.mark.asyncio
    async def test_samples_until_stopped(self):
        buffer = DetectionBuffer()
        buffer.push([DetectedObject("jack", 0.9)])
        ticks = []

        sampler = VisionSampler(buffer, ticks.append, interval=0.01)
        sampler.start()
        await asyncio.sleep(0.05)
        await sampler.stop()

        assert not sampler.running
        assert len(ticks) >= 2
        assert ticks[0][0].label == "jack"

        count = len(ticks)
        await asyncio.sleep(0.03)
        assert len(ticks) == count

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_stop_sampling(self):
        calls = []

        def flaky(detections):
            calls.append(detections)
            if len(calls) == 1:
                raise RuntimeError("boom")

        sampler = VisionSampler(DetectionBuffer(), flaky, interval=0.01)
        sampler.start()
        await asyncio.sleep(0.05)
        await sampler.stop()

        assert len(calls) >= 2
