import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from sahayak.models import MotionSample

logger = logging.getLogger("sahayak.motion")

FREEFALL_THRESHOLD = 2.5  # m/s^2, near weightlessness (gravity is ~9.8)
IMPACT_THRESHOLD = 20.0  # m/s^2
IMPACT_WINDOW_MS = 1000.0


class MotionSource(Protocol):
    """Permission-gated accelerometer on the user's device."""

    supported: bool

    async def request_permission(self) -> bool: ...


@dataclass(frozen=True)
class FallDetected:
    magnitude: float
    freefall_ms: float  # time from free-fall onset to impact


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class MotionAnalyzer:
    """Two-phase fall signature: free-fall (low g) followed by an impact spike.

    The analyzer is inert until ``arm()`` succeeds, and is suspended by the
    engine while an escalation is already counting down so a second fall
    cannot re-trigger it.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or _monotonic_ms
        self.available = False
        self.armed = False
        self.suspended = False
        self._freefall_active = False
        self._freefall_start = 0.0

    async def arm(self, source: MotionSource) -> bool:
        """One-time permission step. Returns whether sampling is now active."""
        if self.armed:
            return True
        if not getattr(source, "supported", False):
            logger.info("Motion sensing not supported on this device")
            self.available = False
            return False
        try:
            granted = await source.request_permission()
        except Exception as exc:
            logger.warning("Motion permission request failed: %s", exc)
            granted = False
        self.available = bool(granted)
        self.armed = bool(granted)
        if not granted:
            logger.info("Motion permission denied; fall detection disabled")
        return self.armed

    def suspend(self) -> None:
        self.suspended = True
        self._reset()

    def resume(self) -> None:
        self.suspended = False
        self._reset()

    @property
    def in_freefall(self) -> bool:
        return self._freefall_active

    def on_sample(self, sample: MotionSample) -> Optional[FallDetected]:
        if not self.armed or self.suspended:
            return None

        now = sample.timestamp_ms if sample.timestamp_ms is not None else self._clock()
        magnitude = sample.magnitude

        if magnitude < FREEFALL_THRESHOLD and not self._freefall_active:
            self._freefall_active = True
            self._freefall_start = now

        if not self._freefall_active:
            return None

        elapsed = now - self._freefall_start
        if elapsed < IMPACT_WINDOW_MS:
            if magnitude > IMPACT_THRESHOLD:
                self._reset()
                logger.info("Fall signature: impact %.1f m/s^2 after %.0fms", magnitude, elapsed)
                return FallDetected(magnitude=magnitude, freefall_ms=elapsed)
        else:
            # window expired without an impact
            self._reset()
        return None

    def _reset(self) -> None:
        self._freefall_active = False
        self._freefall_start = 0.0
