"""
Per-frame face pose sample delivered by the perception collaborator.

Angles are in radians (as produced by face landmark solvers); helpers convert
to degrees for profile comparisons. A missing sample (no face) is represented
by ``None`` at call sites and is never replaced by a zero-valued PoseSample.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass, field


def deg_to_rad(deg: float) -> float:
    return float(deg) * math.pi / 180.0


def rad_to_deg(rad: float) -> float:
    return float(rad) * 180.0 / math.pi


@dataclass(frozen=True)
class PoseSample:
    left_eye_open: bool
    right_eye_open: bool
    left_eye_openness: float = 1.0   # 0 = fully closed, 1 = fully open
    right_eye_openness: float = 1.0
    yaw: float = 0.0                 # radians, positive = head turned right
    pitch: float = 0.0
    roll: float = 0.0
    confidence: float = 1.0
    timestamp: float = field(default_factory=time.monotonic)

    @property
    def yaw_degrees(self) -> float:
        return rad_to_deg(self.yaw)

    @property
    def pitch_degrees(self) -> float:
        return rad_to_deg(self.pitch)

    @property
    def roll_degrees(self) -> float:
        return rad_to_deg(self.roll)

    @property
    def both_eyes_closed(self) -> bool:
        return not self.left_eye_open and not self.right_eye_open

    def closure_depth(self) -> float:
        """Return how closed the more-open eye is, in [0, 1].

        Using the more-open eye means both eyes must close for the depth to rise.
        """
        openness = max(float(self.left_eye_openness), float(self.right_eye_openness))
        return max(0.0, min(1.0, 1.0 - openness))

    @classmethod
    def from_dict(cls, data: dict) -> "PoseSample":
        """Build a sample from a recorded JSON row (angles in radians)."""
        return cls(
            left_eye_open=bool(data.get("left_eye_open", True)),
            right_eye_open=bool(data.get("right_eye_open", True)),
            left_eye_openness=float(data.get("left_eye_openness", 1.0)),
            right_eye_openness=float(data.get("right_eye_openness", 1.0)),
            yaw=float(data.get("yaw", 0.0)),
            pitch=float(data.get("pitch", 0.0)),
            roll=float(data.get("roll", 0.0)),
            confidence=float(data.get("confidence", 1.0)),
            timestamp=float(data.get("timestamp", time.monotonic())),
        )
