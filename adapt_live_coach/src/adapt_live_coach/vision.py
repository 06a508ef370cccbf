"""
Vision Sampling

Object detection runs in the trainee's browser next to the camera. Reports are
pushed into a `DetectionBuffer`, and the `VisionSampler` polls it on a fixed
interval to drive the coach's proactive check.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional, Set

from adapt_live_coach.models import DetectedObject

logger = logging.getLogger(__name__)


class ObjectDetector(ABC):
    """Source of detections for the current camera frame."""

    async def initialize(self) -> None:
        """Prepare the detector. Raises if the camera/model is unavailable."""

    @abstractmethod
    def detect(self) -> List[DetectedObject]:
        """Return the objects visible right now."""


class DetectionBuffer(ObjectDetector):
    """
    Holds the most recent detections reported by the client.

    Detections below the confidence floor are dropped, and the buffer reads
    empty once the last report is older than `stale_after` seconds.
    """

    def __init__(
        self,
        min_confidence: float = 0.5,
        stale_after: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_confidence = min_confidence
        self.stale_after = stale_after
        self._clock = clock
        self._latest: List[DetectedObject] = []
        self._reported_at: Optional[float] = None

    def push(self, detections: Iterable[DetectedObject]) -> None:
        kept = [d for d in detections if d.confidence >= self.min_confidence]
        if kept:
            self._latest = kept
            self._reported_at = self._clock()

    def detect(self) -> List[DetectedObject]:
        if self._reported_at is None:
            return []
        if self._clock() - self._reported_at > self.stale_after:
            self._latest = []
            self._reported_at = None
            return []
        return list(self._latest)


def detected_labels(detections: Iterable[DetectedObject]) -> Set[str]:
    """Lower-cased set of labels for needs matching."""
    return {d.label.strip().lower() for d in detections}


class VisionSampler:
    """Periodically samples a detector and hands the result to a callback."""

    def __init__(
        self,
        detector: ObjectDetector,
        on_detections: Callable[[List[DetectedObject]], None],
        interval: float = 0.5,
    ):
        self.detector = detector
        self.on_detections = on_detections
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning("⚠️ [VisionSampler] Sampler already running")
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"👁️ [VisionSampler] Sampling every {self.interval:.1f}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("🛑 [VisionSampler] Sampling stopped")

    async def _loop(self) -> None:
        while True:
            try:
                self.on_detections(self.detector.detect())
            except Exception as e:
                logger.error(f"❌ [VisionSampler] Detection tick failed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)
