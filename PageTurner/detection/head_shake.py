"""
Head shake detection from a continuous yaw angle.

State machine: NEUTRAL -> EXCEEDING(direction, since) -> fire -> COOLDOWN -> NEUTRAL

- |yaw| below the angle threshold returns to NEUTRAL and cancels any timer.
- |yaw| at or above the threshold starts (or continues) an EXCEEDING timer for
  the direction given by the sign; holding it for `duration` seconds fires
  that direction once and enters COOLDOWN.
- A direction flip restarts the timer with no partial credit.
- During COOLDOWN every observation returns NONE.
- yaw=None means the face was lost this frame: the EXCEEDING timer is dropped
  without counting as a return to neutral, and cooldown keeps running.
"""
from __future__ import annotations

import math
import time
from enum import Enum
from typing import Optional

from PageTurner.control.events import NavigationDirection


class HeadShakeDirection(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    NONE = "none"

    @property
    def page_direction(self) -> Optional[NavigationDirection]:
        if self is HeadShakeDirection.LEFT:
            return NavigationDirection.PREVIOUS
        if self is HeadShakeDirection.RIGHT:
            return NavigationDirection.NEXT
        return None


class ShakeState(str, Enum):
    NEUTRAL = "neutral"
    EXCEEDING = "exceeding"
    COOLDOWN = "cooldown"


class HeadShakeDetector:
    def __init__(
        self,
        angle_threshold_deg: float = 30.0,
        duration: float = 0.3,
        cooldown: float = 0.5,
    ) -> None:
        self.angle_threshold_deg = float(angle_threshold_deg)
        self.duration = float(duration)
        self.cooldown = float(cooldown)

        self._state = ShakeState.NEUTRAL
        self._direction = HeadShakeDirection.NONE
        self._since: Optional[float] = None
        self._cooldown_until: Optional[float] = None

    # Configuration -------------------------------------------------------
    def configure(
        self,
        angle_threshold_deg: Optional[float] = None,
        duration: Optional[float] = None,
        cooldown: Optional[float] = None,
    ) -> None:
        if angle_threshold_deg is not None:
            self.angle_threshold_deg = float(angle_threshold_deg)
        if duration is not None:
            self.duration = float(duration)
        if cooldown is not None:
            self.cooldown = float(cooldown)

    @property
    def angle_threshold_rad(self) -> float:
        return self.angle_threshold_deg * math.pi / 180.0

    def reset(self) -> None:
        """Drop all timers, cooldown included."""
        self._state = ShakeState.NEUTRAL
        self._direction = HeadShakeDirection.NONE
        self._since = None
        self._cooldown_until = None

    @property
    def state(self) -> ShakeState:
        return self._state

    @property
    def exceeding_direction(self) -> HeadShakeDirection:
        return self._direction

    # Detection -----------------------------------------------------------
    def observe(self, yaw: Optional[float], now: Optional[float] = None) -> HeadShakeDirection:
        t = time.monotonic() if now is None else float(now)

        if self._state is ShakeState.COOLDOWN:
            if self._cooldown_until is not None and t < self._cooldown_until:
                return HeadShakeDirection.NONE
            self._state = ShakeState.NEUTRAL
            self._cooldown_until = None

        if yaw is None or yaw != yaw:  # signal loss or NaN
            self._cancel_exceeding()
            return HeadShakeDirection.NONE

        direction = self._direction_for(float(yaw))
        if direction is HeadShakeDirection.NONE:
            self._cancel_exceeding()
            return HeadShakeDirection.NONE

        if self._state is not ShakeState.EXCEEDING or direction is not self._direction or self._since is None:
            self._state = ShakeState.EXCEEDING
            self._direction = direction
            self._since = t
            return HeadShakeDirection.NONE

        if t - self._since >= self.duration:
            self._direction = HeadShakeDirection.NONE
            self._since = None
            self._state = ShakeState.COOLDOWN
            self._cooldown_until = t + self.cooldown
            return direction
        return HeadShakeDirection.NONE

    # Internals -----------------------------------------------------------
    def _direction_for(self, yaw: float) -> HeadShakeDirection:
        thr = self.angle_threshold_rad
        if yaw >= thr:
            return HeadShakeDirection.RIGHT
        if yaw <= -thr:
            return HeadShakeDirection.LEFT
        return HeadShakeDirection.NONE

    def _cancel_exceeding(self) -> None:
        self._state = ShakeState.NEUTRAL
        self._direction = HeadShakeDirection.NONE
        self._since = None
