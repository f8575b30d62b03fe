"""
Gesture coordinator: turns detector output into navigation events according
to the active GestureProfile.

Dispatch:
- blink only: a completed blink pattern emits NEXT immediately
  (a long blink emits PREVIOUS when the profile opts in with enable_long_blink)
- head shake only: LEFT emits PREVIOUS, RIGHT emits NEXT immediately
- hybrid (both enabled + require_confirmation): a shake enters
  WAITING_CONFIRMATION until now + confirmation_timeout; a blink before the
  deadline emits the pending direction, otherwise a timeout status is emitted.
  Another shake while waiting replaces the pending direction and deadline.
- both enabled without confirmation: either detector emits immediately

The confirmation deadline is an explicit value checked on every frame and on
poll(), so cancellation (confirming blink, superseding shake, profile swap,
reset) is just clearing it under the coordinator lock.
"""
from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import List, Mapping, Optional, Tuple

from PageTurner.calibration.engine import BLINK, HEAD_SHAKE, CalibrationEngine
from PageTurner.calibration.models import CalibrationContext
from PageTurner.control.events import (
    ConfirmationTimeout,
    EventSink,
    GestureEvent,
    GestureSource,
    NavigationDirection,
    NavigationEvent,
    WaitingForConfirmation,
    deliver,
)
from PageTurner.core.profiles import GestureProfile, InstrumentType, ProfileValidationError, default_profile
from PageTurner.detection.blink import BlinkDetector, LongBlinkDetector
from PageTurner.detection.head_shake import HeadShakeDetector, HeadShakeDirection
from PageTurner.tracking.pose import PoseSample

logger = logging.getLogger(__name__)

# A calibrated head_shake value is a fraction of this angle.
FULL_TURN_DEG = 90.0


class CoordinatorState(str, Enum):
    IDLE = "idle"
    WAITING_CONFIRMATION = "waiting_confirmation"


class GestureCoordinator:
    def __init__(
        self,
        profile: Optional[GestureProfile] = None,
        *,
        sink: Optional[EventSink] = None,
        min_face_confidence: float = 0.0,
        blink_detector: Optional[BlinkDetector] = None,
        long_blink_detector: Optional[LongBlinkDetector] = None,
        head_shake_detector: Optional[HeadShakeDetector] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._profile = (profile or default_profile(InstrumentType.KEYBOARD)).validate()
        self._sink = sink
        self.min_face_confidence = float(min_face_confidence)

        self.blink = blink_detector or BlinkDetector()
        self.long_blink = long_blink_detector or LongBlinkDetector()
        self.head_shake = head_shake_detector or HeadShakeDetector()

        self._state = CoordinatorState.IDLE
        self._pending: Optional[NavigationDirection] = None
        self._deadline: Optional[float] = None

        # Adaptive thresholds
        self._engine: Optional[CalibrationEngine] = None
        self._context: Optional[CalibrationContext] = None
        self._cached_snapshot: Optional[Mapping] = None
        self._cached_values: Tuple[Optional[float], Optional[float]] = (None, None)

        self._configure_detectors()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    @property
    def profile(self) -> GestureProfile:
        return self._profile

    def set_profile(self, profile: GestureProfile) -> None:
        """Swap the active profile; in-flight gestures are discarded.

        Raises ProfileValidationError and keeps the current profile if the new
        one is malformed.
        """
        try:
            profile.validate()
        except ProfileValidationError as e:
            logger.warning(f"Rejected profile swap: {e}")
            raise
        with self._lock:
            self._profile = profile
            self._configure_detectors()
            self._reset_unlocked()
        logger.info(f"Active profile: {profile.instrument.value}")

    def switch_to_instrument(self, instrument) -> None:
        self.set_profile(default_profile(instrument))

    def set_sink(self, sink: Optional[EventSink]) -> None:
        with self._lock:
            self._sink = sink

    def attach_thresholds(self, engine: Optional[CalibrationEngine], context: Optional[CalibrationContext]) -> None:
        with self._lock:
            self._engine = engine
            self._context = context
            self._cached_snapshot = None
            self._cached_values = (None, None)
            self.head_shake.configure(angle_threshold_deg=self._profile.shake_angle_threshold)

    def set_context(self, context: Optional[CalibrationContext]) -> None:
        self.attach_thresholds(self._engine, context)

    def reset(self) -> None:
        with self._lock:
            self._reset_unlocked()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def pending_direction(self) -> Optional[NavigationDirection]:
        return self._pending

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    @property
    def is_hybrid_mode(self) -> bool:
        return self._profile.is_hybrid

    @property
    def is_blink_only_mode(self) -> bool:
        return self._profile.is_blink_only

    @property
    def is_head_shake_only_mode(self) -> bool:
        return self._profile.is_head_shake_only

    def describe(self) -> str:
        p = self._profile
        lines = [
            f"Instrument: {p.instrument.display_name}",
            f"Blink enabled: {p.enable_blink}",
            f"Head shake enabled: {p.enable_head_shake}",
            f"Requires confirmation: {p.require_confirmation}",
        ]
        if self._state is CoordinatorState.WAITING_CONFIRMATION and self._pending is not None:
            lines.append(f"Status: waiting for confirmation ({self._pending.value})")
        else:
            lines.append("Status: ready")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Frame input
    # ------------------------------------------------------------------
    def feed_pose(self, sample: Optional[PoseSample], now: Optional[float] = None) -> List[GestureEvent]:
        """Process one frame. Returns the events emitted for it (also sent to the sink)."""
        if now is not None:
            t = float(now)
        elif sample is not None:
            t = float(sample.timestamp)
        else:
            t = time.monotonic()

        events: List[GestureEvent] = []
        with self._lock:
            self._expire(t, events)

            if sample is None or sample.confidence < self.min_face_confidence:
                self._signal_lost(t)
            else:
                self._process_sample(sample, t, events)
        return self._emit(events)

    def _process_sample(self, sample: PoseSample, t: float, events: List[GestureEvent]) -> None:
        blink_value, shake_value = self._adaptive_values()
        profile = self._profile

        if profile.enable_blink:
            left_open, right_open = self._eye_flags(sample, blink_value)
            self._run_blink(left_open, right_open, t, events)

        if profile.enable_head_shake:
            if shake_value is not None:
                self.head_shake.configure(angle_threshold_deg=shake_value * FULL_TURN_DEG)
            direction = self.head_shake.observe(sample.yaw, t)
            if direction is not HeadShakeDirection.NONE:
                self._handle_shake(direction, t, events)

    def process_eye_state(self, left_open: bool, right_open: bool, now: Optional[float] = None) -> List[GestureEvent]:
        """Feed eye flags directly, for hosts that build no PoseSample."""
        t = time.monotonic() if now is None else float(now)
        events: List[GestureEvent] = []
        with self._lock:
            self._expire(t, events)
            if self._profile.enable_blink:
                self._run_blink(bool(left_open), bool(right_open), t, events)
        return self._emit(events)

    def process_head_shake(self, direction: HeadShakeDirection, now: Optional[float] = None) -> List[GestureEvent]:
        """Feed an already-detected shake direction."""
        t = time.monotonic() if now is None else float(now)
        events: List[GestureEvent] = []
        with self._lock:
            self._expire(t, events)
            if not self._profile.enable_head_shake:
                logger.debug("Head shake ignored: disabled by profile")
            elif direction is not HeadShakeDirection.NONE:
                self._handle_shake(direction, t, events)
        return self._emit(events)

    def poll(self, now: Optional[float] = None) -> List[GestureEvent]:
        """Expire an elapsed confirmation deadline without a new frame."""
        t = time.monotonic() if now is None else float(now)
        events: List[GestureEvent] = []
        with self._lock:
            self._expire(t, events)
        return self._emit(events)

    # ------------------------------------------------------------------
    # Internals (called with the lock held)
    # ------------------------------------------------------------------
    def _configure_detectors(self) -> None:
        p = self._profile
        self.blink.configure(
            blink_time_window=p.blink_time_window,
            min_blink_duration=p.min_blink_duration,
            required_blink_count=p.required_blink_count,
        )
        self.long_blink.configure(long_blink_duration=p.long_blink_duration)
        self.head_shake.configure(
            angle_threshold_deg=p.shake_angle_threshold,
            duration=p.shake_duration,
            cooldown=p.shake_cooldown,
        )

    def _reset_unlocked(self) -> None:
        self._state = CoordinatorState.IDLE
        self._pending = None
        self._deadline = None
        self.blink.reset()
        self.long_blink.reset()
        self.head_shake.reset()

    def _signal_lost(self, t: float) -> None:
        # Blink recurrence survives a dropout; closure timing and shake holds do not.
        self.long_blink.reset()
        self.head_shake.observe(None, t)

    def _expire(self, t: float, events: List[GestureEvent]) -> None:
        if self._state is not CoordinatorState.WAITING_CONFIRMATION or self._deadline is None:
            return
        if t >= self._deadline:
            logger.debug(f"Confirmation timed out for {self._pending}")
            self._state = CoordinatorState.IDLE
            self._pending = None
            self._deadline = None
            events.append(ConfirmationTimeout())

    def _run_blink(self, left_open: bool, right_open: bool, t: float, events: List[GestureEvent]) -> None:
        p = self._profile
        if p.enable_long_blink and not p.is_hybrid:
            if self.long_blink.observe(left_open, right_open, t):
                # A held closure must not also count towards a double blink
                self.blink.reset()
                events.append(NavigationEvent(NavigationDirection.PREVIOUS, GestureSource.BLINK))
                return
        if self.blink.observe(left_open, right_open, t):
            self._handle_blink(events)

    def _handle_blink(self, events: List[GestureEvent]) -> None:
        if self._state is CoordinatorState.WAITING_CONFIRMATION and self._pending is not None:
            direction = self._pending
            self._state = CoordinatorState.IDLE
            self._pending = None
            self._deadline = None
            events.append(NavigationEvent(direction, GestureSource.HYBRID))
        elif self._profile.is_hybrid:
            logger.debug("Blink ignored: no head shake awaiting confirmation")
        else:
            events.append(NavigationEvent(NavigationDirection.NEXT, GestureSource.BLINK))

    def _handle_shake(self, direction: HeadShakeDirection, t: float, events: List[GestureEvent]) -> None:
        page = direction.page_direction
        if page is None:
            return
        if self._profile.is_hybrid:
            self._state = CoordinatorState.WAITING_CONFIRMATION
            self._pending = page
            self._deadline = t + self._profile.confirmation_timeout
            events.append(WaitingForConfirmation(page))
        else:
            events.append(NavigationEvent(page, GestureSource.HEAD_SHAKE))

    def _adaptive_values(self) -> Tuple[Optional[float], Optional[float]]:
        engine = self._engine
        ctx = self._context
        if engine is None or ctx is None:
            return (None, None)
        snap = engine.store.snapshot()
        if snap is not self._cached_snapshot:
            self._cached_values = (engine.resolve(BLINK, ctx), engine.resolve(HEAD_SHAKE, ctx))
            self._cached_snapshot = snap
            if self._cached_values[1] is None:
                self.head_shake.configure(angle_threshold_deg=self._profile.shake_angle_threshold)
        return self._cached_values

    @staticmethod
    def _eye_flags(sample: PoseSample, blink_value: Optional[float]) -> Tuple[bool, bool]:
        if blink_value is None:
            return bool(sample.left_eye_open), bool(sample.right_eye_open)
        left_open = (1.0 - float(sample.left_eye_openness)) < blink_value
        right_open = (1.0 - float(sample.right_eye_openness)) < blink_value
        return left_open, right_open

    def _emit(self, events: List[GestureEvent]) -> List[GestureEvent]:
        # Delivered outside the lock so a sink may call back into the coordinator.
        for ev in events:
            if isinstance(ev, NavigationEvent):
                logger.info(f"Page turn {ev.direction.value} via {ev.source.value}")
            deliver(self._sink, ev)
        return events
