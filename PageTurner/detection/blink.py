"""
Blink pattern detection over per-frame eye-open flags.

BlinkDetector counts recurring closures: a frame with both eyes closed is a
closure. A closure that follows the previous one by more than
min_blink_duration and less than blink_time_window extends the pattern;
anything closer is the same closure (jitter) and anything later restarts the
pattern. The detector fires once when required_blink_count closures line up.

LongBlinkDetector measures how long both eyes stay closed and fires on the
reopening frame when the closure lasted at least long_blink_duration. It is
only consulted when a profile opts in with enable_long_blink.

Usage:
    det = BlinkDetector()
    fired = det.observe(left_open=False, right_open=False, now=t)
"""
from __future__ import annotations

import time
from typing import Optional


class BlinkDetector:
    def __init__(
        self,
        blink_time_window: float = 0.5,
        min_blink_duration: float = 0.1,
        required_blink_count: int = 2,
    ) -> None:
        self.blink_time_window = float(blink_time_window)
        self.min_blink_duration = float(min_blink_duration)
        self.required_blink_count = max(1, int(required_blink_count))

        # State
        self._last_closure_time: Optional[float] = None
        self._closure_count: int = 0

    def configure(
        self,
        blink_time_window: Optional[float] = None,
        min_blink_duration: Optional[float] = None,
        required_blink_count: Optional[int] = None,
    ) -> None:
        if blink_time_window is not None:
            self.blink_time_window = float(blink_time_window)
        if min_blink_duration is not None:
            self.min_blink_duration = float(min_blink_duration)
        if required_blink_count is not None:
            self.required_blink_count = max(1, int(required_blink_count))

    def reset(self) -> None:
        self._last_closure_time = None
        self._closure_count = 0

    @property
    def closure_count(self) -> int:
        return self._closure_count

    # Public API ---------------------------------------------------------
    def observe(self, left_open: bool, right_open: bool, now: Optional[float] = None) -> bool:
        """Feed one frame. Returns True only on the frame the pattern completes."""
        if left_open or right_open:
            return False

        t = time.monotonic() if now is None else float(now)
        last = self._last_closure_time
        if last is None:
            self._closure_count = 1
        else:
            gap = t - last
            if gap <= self.min_blink_duration:
                # Same physical closure seen on consecutive frames
                pass
            elif gap < self.blink_time_window:
                self._closure_count += 1
            else:
                self._closure_count = 1
        self._last_closure_time = t

        if self._closure_count >= self.required_blink_count:
            self._closure_count = 0
            return True
        return False


class LongBlinkDetector:
    def __init__(self, long_blink_duration: float = 0.5) -> None:
        self.long_blink_duration = float(long_blink_duration)
        self._closed_since: Optional[float] = None

    def configure(self, long_blink_duration: Optional[float] = None) -> None:
        if long_blink_duration is not None:
            self.long_blink_duration = float(long_blink_duration)

    def reset(self) -> None:
        self._closed_since = None

    @property
    def is_closed(self) -> bool:
        return self._closed_since is not None

    def observe(self, left_open: bool, right_open: bool, now: Optional[float] = None) -> bool:
        t = time.monotonic() if now is None else float(now)
        both_closed = not left_open and not right_open
        both_open = left_open and right_open

        if both_closed:
            if self._closed_since is None:
                self._closed_since = t
            return False

        if both_open and self._closed_since is not None:
            elapsed = t - self._closed_since
            self._closed_since = None
            return elapsed >= self.long_blink_duration

        # One eye open: a wink does not end or start a long blink
        return False
