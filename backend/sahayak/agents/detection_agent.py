import asyncio
import logging
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from sahayak.models import DetectionFrame, FeedbackRequest, Priority

logger = logging.getLogger("sahayak.detection")

CONFIDENCE_THRESHOLD = 0.6
COOLDOWN_MS = 4000.0
FOCAL_FACTOR = 0.9  # tuned for the wide field of view of phone cameras

# Label set of the COCO-SSD detector running on the phone
COCO_LABELS = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck",
    "boat", "traffic light", "fire hydrant", "stop sign", "parking meter", "bench",
    "bird", "cat", "dog", "horse", "sheep", "cow", "elephant", "bear", "zebra",
    "giraffe", "backpack", "umbrella", "handbag", "tie", "suitcase", "frisbee",
    "skis", "snowboard", "sports ball", "kite", "baseball bat", "baseball glove",
    "skateboard", "surfboard", "tennis racket", "bottle", "wine glass", "cup",
    "fork", "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange",
    "broccoli", "carrot", "hot dog", "pizza", "donut", "cake", "chair", "couch",
    "potted plant", "bed", "dining table", "toilet", "tv", "laptop", "mouse",
    "remote", "keyboard", "cell phone", "microwave", "oven", "toaster", "sink",
    "refrigerator", "book", "clock", "vase", "scissors", "teddy bear",
    "hair drier", "toothbrush",
)

DetectionClass = Enum(
    "DetectionClass",
    [(label.upper().replace(" ", "_"), label) for label in COCO_LABELS] + [("OTHER", "other")],
    type=str,
)
DetectionClass.__doc__ = "Closed set of detector labels; anything else is OTHER."

_BY_LABEL: Dict[str, "DetectionClass"] = {c.value: c for c in DetectionClass}

# Approximate real-world heights in meters
REFERENCE_HEIGHTS: Dict["DetectionClass", float] = {
    DetectionClass.PERSON: 1.7,
    DetectionClass.BICYCLE: 1.0,
    DetectionClass.CAR: 1.5,
    DetectionClass.MOTORCYCLE: 1.0,
    DetectionClass.BUS: 3.0,
    DetectionClass.TRUCK: 2.5,
    DetectionClass.CAT: 0.3,
    DetectionClass.DOG: 0.5,
    DetectionClass.CHAIR: 0.9,
    DetectionClass.BOTTLE: 0.3,
    DetectionClass.CUP: 0.15,
    DetectionClass.LAPTOP: 0.3,
    DetectionClass.CELL_PHONE: 0.15,
}
DEFAULT_REFERENCE_HEIGHT = 1.0


def classify(label: str) -> "DetectionClass":
    return _BY_LABEL.get(label.strip().lower(), DetectionClass.OTHER)


def estimate_distance(label: str, bbox_height: float, frame_height: float) -> float:
    """Pinhole estimate from the box's share of the frame height, in meters."""
    real_height = REFERENCE_HEIGHTS.get(classify(label), DEFAULT_REFERENCE_HEIGHT)
    screen_ratio = bbox_height / frame_height
    return round(FOCAL_FACTOR * real_height / screen_ratio, 1)


class DetectionThrottle:
    """At most one announcement per object class per cooldown window."""

    def __init__(
        self,
        cooldown_ms: float = COOLDOWN_MS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.cooldown_ms = cooldown_ms
        self._clock = clock or (lambda: time.monotonic() * 1000.0)
        self._last_spoken: Dict["DetectionClass", Optional[float]] = {c: None for c in DetectionClass}

    def reset(self) -> None:
        for cls in self._last_spoken:
            self._last_spoken[cls] = None

    def last_spoken(self, label: str) -> Optional[float]:
        return self._last_spoken[classify(label)]

    def on_frame(self, frame: DetectionFrame, now: Optional[float] = None) -> List[FeedbackRequest]:
        if frame.frame_height <= 0:
            return []
        now = self._clock() if now is None else now

        requests: List[FeedbackRequest] = []
        for detection in frame.detections:
            if detection.score <= CONFIDENCE_THRESHOLD or detection.height <= 0:
                continue
            cls = classify(detection.label)
            last = self._last_spoken[cls]
            if last is not None and now - last <= self.cooldown_ms:
                continue
            distance = estimate_distance(detection.label, detection.height, frame.frame_height)
            requests.append(
                FeedbackRequest(f"{detection.label}, {distance} meters away", Priority.NORMAL)
            )
            self._last_spoken[cls] = now
        return requests


class DetectionSource(Protocol):
    """Camera + detector. ``detect`` yields the next frame's boxes, or None."""

    available: bool

    def open(self) -> None: ...

    async def detect(self) -> Optional[DetectionFrame]: ...

    def close(self) -> None: ...


class DetectionLoop:
    """Drives a detection source while the camera session is active."""

    def __init__(
        self,
        throttle: DetectionThrottle,
        submit: Callable[[FeedbackRequest], Awaitable[None]],
        idle_delay: float = 0.03,
    ) -> None:
        self.throttle = throttle
        self._submit = submit
        self.idle_delay = idle_delay
        self.source: Optional[DetectionSource] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self, source: Optional[DetectionSource] = None) -> bool:
        """Begin a detection session.

        Without a source the session is client-fed: frames arrive through
        ``process`` and no polling task is started.
        """
        if self._running:
            return True
        if source is not None and not getattr(source, "available", False):
            logger.info("Detection source unavailable (model not loaded)")
            return False
        self.throttle.reset()
        self._running = True
        if source is not None:
            source.open()
            self.source = source
            self._task = asyncio.ensure_future(self._run())
        logger.info("Detection session started (%s)", "polling" if source is not None else "client-fed")
        return True

    def stop(self) -> None:
        """Synchronous so the camera is released before the caller continues."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self.source is not None:
            try:
                self.source.close()
            except Exception as exc:
                logger.warning("Error closing detection source: %s", exc)
            self.source = None
        self.throttle.reset()

    async def process(self, frame: DetectionFrame) -> List[FeedbackRequest]:
        requests = self.throttle.on_frame(frame)
        for request in requests:
            await self._submit(request)
        return requests

    async def _run(self) -> None:
        while self._running and self.source is not None:
            try:
                frame = await self.source.detect()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Detection error: %s", exc)
                await asyncio.sleep(self.idle_delay)
                continue
            if not self._running:
                break
            if frame is None:
                await asyncio.sleep(self.idle_delay)
                continue
            await self.process(frame)
