"""Sahayak data models shared by the agents and the engine."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    @property
    def preempts(self) -> bool:
        """High and emergency requests cut off whatever is playing."""
        return self.rank >= _PRIORITY_RANK[Priority.HIGH]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Priority):
            return NotImplemented
        return self.rank >= other.rank


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.NORMAL: 1,
    Priority.HIGH: 2,
    Priority.EMERGENCY: 3,
}


class Language(str, Enum):
    ENGLISH = "en-IN"
    HINDI = "hi-IN"


class HazardType(str, Enum):
    OBSTACLE = "obstacle"
    POTHOLE = "pothole"
    DRAIN = "drain"
    STAIRS = "stairs"
    VEHICLE = "vehicle"
    VENDOR = "vendor"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class HapticEvent(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    DANGER = "danger"
    SUCCESS = "success"
    FALL = "fall"


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float


@dataclass(frozen=True)
class FeedbackRequest:
    text: str
    priority: Priority = Priority.NORMAL


@dataclass(frozen=True)
class NavigationState:
    is_navigating: bool = False
    current_location: Optional[Location] = None
    destination: str = ""
    heading: float = 0.0  # degrees, [0, 360)
    expected_heading: float = 0.0
    drift_detected: bool = False


@dataclass
class Hazard:
    id: str
    type: HazardType
    severity: Severity
    distance: float  # meters
    description: str = ""


@dataclass
class EmergencyContact:
    id: str
    name: str
    phone: str
    relationship: Optional[str] = None


class EscalationPhase(str, Enum):
    IDLE = "idle"
    FALL_DETECTED = "fall_detected"


class EscalationOutcome(str, Enum):
    CANCELLED = "cancelled"
    TRIGGERED = "triggered"


@dataclass(frozen=True)
class EmergencyState:
    phase: EscalationPhase = EscalationPhase.IDLE
    countdown: int = 0  # seconds left before dispatch
    outcome: Optional[EscalationOutcome] = None

    @property
    def is_fall_detected(self) -> bool:
        return self.phase is EscalationPhase.FALL_DETECTED


@dataclass(frozen=True)
class MotionSample:
    """Acceleration including gravity, m/s^2."""
    x: float
    y: float
    z: float
    timestamp_ms: Optional[float] = None

    @property
    def magnitude(self) -> float:
        return math.sqrt(self.x ** 2 + self.y ** 2 + self.z ** 2)


@dataclass(frozen=True)
class Detection:
    label: str
    score: float
    bbox: Tuple[float, float, float, float]  # x, y, width, height in pixels

    @property
    def height(self) -> float:
        return self.bbox[3]


@dataclass
class DetectionFrame:
    detections: List[Detection] = field(default_factory=list)
    frame_height: float = 0.0
