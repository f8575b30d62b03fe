"""
Calibration data models.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from PageTurner.core.profiles import InstrumentType


class LightingQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    DARK = "dark"

    @property
    def rank(self) -> int:
        """Ordinal position, 0 = dark ... 4 = excellent."""
        return _LIGHTING_ORDER.index(self)

    @classmethod
    def parse(cls, value) -> "LightingQuality":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown lighting quality: {value!r}") from None


_LIGHTING_ORDER = [
    LightingQuality.DARK,
    LightingQuality.POOR,
    LightingQuality.FAIR,
    LightingQuality.GOOD,
    LightingQuality.EXCELLENT,
]


@dataclass(frozen=True)
class CalibrationContext:
    instrument: InstrumentType
    lighting: LightingQuality
    user_distance: int  # cm, whole-centimetre bucket

    def __post_init__(self) -> None:
        object.__setattr__(self, "instrument", InstrumentType.parse(self.instrument))
        object.__setattr__(self, "lighting", LightingQuality.parse(self.lighting))
        object.__setattr__(self, "user_distance", int(self.user_distance))

    @property
    def key(self) -> str:
        return f"{self.instrument.value}_{self.user_distance}_{self.lighting.value}"

    @classmethod
    def parse_key(cls, key: str) -> Optional["CalibrationContext"]:
        """Inverse of ``key``; returns None for keys that do not parse.

        Instrument values contain underscores, so split from the right.
        """
        parts = str(key).rsplit("_", 2)
        if len(parts) != 3:
            return None
        try:
            return cls(
                instrument=InstrumentType.parse(parts[0]),
                lighting=LightingQuality.parse(parts[2]),
                user_distance=int(float(parts[1])),
            )
        except ValueError:
            return None


@dataclass(frozen=True)
class CalibrationSample:
    gesture_type: str
    measured_value: float
    context: CalibrationContext
    timestamp: float = field(default_factory=time.time)


MIN_SAMPLE_SIZE = 3
RELIABLE_CONFIDENCE = 0.7


class CalibrationFeedback(str, Enum):
    TOO_SENSITIVE = "too_sensitive"
    TOO_INSENSITIVE = "too_insensitive"
    PERFECT = "perfect"
    NEEDS_ADJUSTMENT = "needs_adjustment"

    @property
    def adjustment_factor(self) -> float:
        return _FEEDBACK_FACTORS[self]


_FEEDBACK_FACTORS = {
    CalibrationFeedback.TOO_SENSITIVE: 1.2,
    CalibrationFeedback.TOO_INSENSITIVE: 0.8,
    CalibrationFeedback.PERFECT: 1.0,
    CalibrationFeedback.NEEDS_ADJUSTMENT: 1.1,
}


class CalibrationStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    OPTIMIZING = "optimizing"


class GestureOutcome(str, Enum):
    TRUE_POSITIVE = "true_positive"
    FALSE_POSITIVE = "false_positive"
    FALSE_NEGATIVE = "false_negative"
    USER_CONFIRMED = "user_confirmed"
    USER_REJECTED = "user_rejected"

    @property
    def is_success(self) -> bool:
        return self in (GestureOutcome.TRUE_POSITIVE, GestureOutcome.USER_CONFIRMED)


@dataclass(frozen=True)
class CalibrationResult:
    gesture_type: str
    recommended_threshold: float
    confidence: float
    sample_size: int
    variance: float
    context: CalibrationContext

    @property
    def is_reliable(self) -> bool:
        return self.confidence > RELIABLE_CONFIDENCE and self.sample_size >= MIN_SAMPLE_SIZE


@dataclass(frozen=True)
class LearningRecord:
    gesture_type: str
    threshold: float
    accuracy: float
    context: CalibrationContext
    feedback: CalibrationFeedback
    timestamp: float


@dataclass
class OptimizationTask:
    gesture_type: str
    context: CalibrationContext
    target_accuracy: float
    deadline: float  # monotonic seconds

    def is_expired(self, now: float) -> bool:
        return now > self.deadline
