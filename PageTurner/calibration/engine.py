"""
Adaptive calibration engine.

Three entry points share one threshold table (ThresholdStore):

- calibrate(): one-shot calibration from a small batch of samples. The mean
  becomes the recommended threshold after contextual multipliers; the batch
  variance and size give a confidence score. Only reliable results are written.
- record_feedback(): user feedback scales the current threshold and is merged
  into the table with exponential smoothing. Each feedback also queues a
  background optimization task.
- adaptive_threshold(): exact context lookup, then the most similar stored
  context, then the gesture's base default.

optimize() is the periodic background pass. It is driven by the host's timer,
never by the per-frame path.

This is a hand-tuned statistical heuristic; nothing here is a trained model.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np  # type: ignore

from PageTurner.calibration.models import (
    CalibrationContext,
    CalibrationFeedback,
    CalibrationResult,
    CalibrationSample,
    CalibrationStatus,
    GestureOutcome,
    LearningRecord,
    LightingQuality,
    OptimizationTask,
)
from PageTurner.calibration.thresholds import ThresholdStore
from PageTurner.control.events import CalibrationCompleted, EventSink, deliver
from PageTurner.core.profiles import InstrumentType

logger = logging.getLogger(__name__)

BLINK = "blink"
HEAD_SHAKE = "head_shake"
EYEBROW_RAISE = "eyebrow_raise"
SMILE = "smile"
HEAD_NOD = "head_nod"
MOUTH_OPEN = "mouth_open"

GESTURE_TYPES = (BLINK, HEAD_SHAKE, EYEBROW_RAISE, SMILE, HEAD_NOD, MOUTH_OPEN)

# Normalized sensitivities in [0.1, 1.0]; larger = less sensitive.
# Angular gestures are expressed as a fraction of a 90 degree turn.
BASE_THRESHOLDS: Dict[str, float] = {
    BLINK: 0.6,
    HEAD_SHAKE: 30.0 / 90.0,
    EYEBROW_RAISE: 0.3,
    SMILE: 0.4,
    HEAD_NOD: 12.0 / 90.0,
    MOUTH_OPEN: 0.5,
}

MAX_SAMPLE_SIZE = 10
ACCURACY_TARGET = 0.95
OPTIMIZATION_INTERVAL_S = 300.0
CONTEXT_SIMILARITY_THRESHOLD = 0.8
LEARNING_RATE = 0.1
THRESHOLD_MIN = 0.1
THRESHOLD_MAX = 1.0
DISTANCE_SIMILARITY_SPAN_CM = 50.0
ACCURACY_WINDOW = 10
FEEDBACK_WINDOW = 5


def confidence_score(variance: float, sample_size: int, max_sample_size: int = MAX_SAMPLE_SIZE) -> float:
    """Higher sample size and lower variance give higher confidence."""
    size_conf = min(float(sample_size) / float(max(1, max_sample_size)), 1.0)
    var_conf = max(0.0, 1.0 - float(variance))
    return (size_conf + var_conf) / 2.0


def contextual_multiplier(gesture_type: str, context: CalibrationContext) -> float:
    m = 1.0
    if context.lighting is LightingQuality.POOR:
        m *= 1.2  # less sensitive in poor light
    elif context.lighting is LightingQuality.EXCELLENT:
        m *= 0.9
    if context.user_distance > 60:
        m *= 1.1
    elif context.user_distance < 40:
        m *= 0.95
    if context.instrument is InstrumentType.VOCAL and gesture_type == MOUTH_OPEN:
        m *= 0.8
    elif context.instrument is InstrumentType.PERCUSSION and gesture_type == HEAD_NOD:
        m *= 0.9
    return m


def context_similarity(target: CalibrationContext, candidate: CalibrationContext) -> float:
    instrument_match = 1.0 if candidate.instrument is target.instrument else 0.0
    distance_diff = abs(float(candidate.user_distance) - float(target.user_distance))
    distance_match = max(0.0, 1.0 - distance_diff / DISTANCE_SIMILARITY_SPAN_CM)
    lighting_match = 1.0 if candidate.lighting is target.lighting else 0.0
    return (instrument_match + distance_match + lighting_match) / 3.0


class CalibrationEngine:
    def __init__(
        self,
        *,
        store: Optional[ThresholdStore] = None,
        learning_rate: float = LEARNING_RATE,
        max_sample_size: int = MAX_SAMPLE_SIZE,
        similarity_threshold: float = CONTEXT_SIMILARITY_THRESHOLD,
        optimization_window_s: float = OPTIMIZATION_INTERVAL_S,
        accuracy_target: float = ACCURACY_TARGET,
        history_limit: int = 200,
        base_thresholds: Optional[Mapping[str, float]] = None,
        sink: Optional[EventSink] = None,
    ) -> None:
        bases = dict(BASE_THRESHOLDS)
        if base_thresholds:
            bases.update({k: float(v) for k, v in base_thresholds.items()})
        self.store = store if store is not None else ThresholdStore(bases, learning_rate=learning_rate)
        self.max_sample_size = max(1, int(max_sample_size))
        self.similarity_threshold = float(similarity_threshold)
        self.optimization_window_s = float(optimization_window_s)
        self.accuracy_target = float(accuracy_target)
        self.sink = sink

        self._lock = threading.RLock()
        self._history: Deque[LearningRecord] = deque(maxlen=max(1, int(history_limit)))
        self._outcomes: Dict[str, Deque[bool]] = {}
        self._status: Dict[str, CalibrationStatus] = {g: CalibrationStatus.NOT_STARTED for g in GESTURE_TYPES}
        self._accuracy: Dict[str, float] = {g: 0.0 for g in GESTURE_TYPES}
        self._tasks: List[OptimizationTask] = []
        self.last_optimization_time: Optional[float] = None

    # ------------------------------------------------------------------
    # One-shot calibration
    # ------------------------------------------------------------------
    def calibrate(
        self,
        gesture_type: str,
        context: CalibrationContext,
        samples: Sequence[CalibrationSample],
    ) -> CalibrationResult:
        values = np.array([float(s.measured_value) for s in samples], dtype=np.float64)
        n = int(values.size)
        if n == 0:
            logger.info(f"Calibration for {gesture_type} received no samples")
            return CalibrationResult(
                gesture_type=gesture_type,
                recommended_threshold=self._clamp(self.store.base_value(gesture_type)),
                confidence=0.0,
                sample_size=0,
                variance=0.0,
                context=context,
            )

        mean = float(values.mean())
        variance = float(values.var())
        confidence = confidence_score(variance, n, self.max_sample_size)
        recommended = self._clamp(mean * contextual_multiplier(gesture_type, context))
        result = CalibrationResult(
            gesture_type=gesture_type,
            recommended_threshold=recommended,
            confidence=confidence,
            sample_size=n,
            variance=variance,
            context=context,
        )

        if not result.is_reliable:
            logger.info(
                f"Calibration for {gesture_type} not applied: confidence={confidence:.3f} n={n} var={variance:.5f}"
            )
            return result

        self.store.merge(gesture_type, context.key, recommended)
        with self._lock:
            self._status[gesture_type] = CalibrationStatus.COMPLETED
            self._accuracy[gesture_type] = confidence
        logger.info(
            f"Calibrated {gesture_type} for {context.key}: threshold={recommended:.4f} confidence={confidence:.3f}"
        )
        deliver(self.sink, CalibrationCompleted(gesture_type, recommended, confidence))
        return result

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------
    def resolve(self, gesture_type: str, context: CalibrationContext) -> Optional[float]:
        """Calibrated value for an exact or similar context, or None."""
        per_context = self.store.snapshot().get(gesture_type)
        if not per_context:
            return None
        exact = per_context.get(context.key)
        if exact is not None:
            return exact
        best_score = -1.0
        best_value: Optional[float] = None
        for key, value in per_context.items():
            candidate = CalibrationContext.parse_key(key)
            if candidate is None:
                continue
            score = context_similarity(context, candidate)
            if score > self.similarity_threshold and score > best_score:
                best_score = score
                best_value = value
        return best_value

    def adaptive_threshold(self, gesture_type: str, context: CalibrationContext) -> float:
        value = self.resolve(gesture_type, context)
        if value is not None:
            return value
        return self.store.base_value(gesture_type)

    # ------------------------------------------------------------------
    # Feedback and outcomes
    # ------------------------------------------------------------------
    def record_feedback(
        self,
        gesture_type: str,
        feedback: CalibrationFeedback,
        context: CalibrationContext,
        now: Optional[float] = None,
    ) -> float:
        """Apply feedback; returns the stored threshold after the merge."""
        feedback = CalibrationFeedback(feedback)
        t = time.monotonic() if now is None else float(now)
        seen: List[float] = []

        def adjust() -> float:
            seen.append(self.adaptive_threshold(gesture_type, context))
            return seen[-1] * feedback.adjustment_factor

        adjusted, stored = self.store.update(gesture_type, context.key, adjust)
        current = seen[-1]

        with self._lock:
            self._history.append(
                LearningRecord(
                    gesture_type=gesture_type,
                    threshold=adjusted,
                    accuracy=self.current_accuracy(gesture_type),
                    context=context,
                    feedback=feedback,
                    timestamp=time.time(),
                )
            )
            self._schedule(gesture_type, context, t)
        logger.debug(f"Feedback {feedback.value} on {gesture_type}/{context.key}: {current:.4f} -> {stored:.4f}")
        return stored

    def record_outcome(self, gesture_type: str, outcome: GestureOutcome) -> None:
        outcome = GestureOutcome(outcome)
        with self._lock:
            dq = self._outcomes.get(gesture_type)
            if dq is None:
                dq = deque(maxlen=ACCURACY_WINDOW)
                self._outcomes[gesture_type] = dq
            dq.append(outcome.is_success)

    def current_accuracy(self, gesture_type: str) -> float:
        """Rolling success rate of recent outcomes, else the last calibration confidence."""
        with self._lock:
            return self._accuracy_unlocked(gesture_type)

    # ------------------------------------------------------------------
    # Background optimization
    # ------------------------------------------------------------------
    def pending_tasks(self) -> List[OptimizationTask]:
        with self._lock:
            return list(self._tasks)

    def optimize(self, now: Optional[float] = None) -> int:
        """Run one background pass; returns how many thresholds were nudged."""
        t = time.monotonic() if now is None else float(now)
        with self._lock:
            live = [task for task in self._tasks if not task.is_expired(t)]
            dropped = len(self._tasks) - len(live)
            self._tasks = []
        if dropped:
            logger.debug(f"Dropped {dropped} expired optimization task(s)")

        adjusted = 0
        for task in live:
            if self._optimize_task(task):
                adjusted += 1
        with self._lock:
            self.last_optimization_time = t
        return adjusted

    def _optimize_task(self, task: OptimizationTask) -> bool:
        gesture_type = task.gesture_type
        changed = False
        if self.current_accuracy(gesture_type) < task.target_accuracy:
            factor = self._average_adjustment(gesture_type)
            if factor is not None:
                self.store.update(
                    gesture_type,
                    task.context.key,
                    lambda: self.adaptive_threshold(gesture_type, task.context) * factor,
                )
                changed = True
                logger.debug(f"Optimized {gesture_type}/{task.context.key} with mean factor {factor:.3f}")
        with self._lock:
            self._status[gesture_type] = CalibrationStatus.OPTIMIZING
        return changed

    def _average_adjustment(self, gesture_type: str) -> Optional[float]:
        with self._lock:
            recent = [r for r in self._history if r.gesture_type == gesture_type][-FEEDBACK_WINDOW:]
        if not recent:
            return None
        return float(np.mean([r.feedback.adjustment_factor for r in recent]))

    def _schedule(self, gesture_type: str, context: CalibrationContext, now: float) -> None:
        # One pending task per (gesture, context); a newer request extends the deadline.
        self._tasks = [
            task for task in self._tasks
            if not (task.gesture_type == gesture_type and task.context == context)
        ]
        self._tasks.append(
            OptimizationTask(
                gesture_type=gesture_type,
                context=context,
                target_accuracy=self.accuracy_target,
                deadline=now + self.optimization_window_s,
            )
        )

    # ------------------------------------------------------------------
    # Status, recommendations, reset
    # ------------------------------------------------------------------
    def status(self, gesture_type: str) -> CalibrationStatus:
        with self._lock:
            return self._status.get(gesture_type, CalibrationStatus.NOT_STARTED)

    def history(self, gesture_type: Optional[str] = None) -> List[LearningRecord]:
        with self._lock:
            if gesture_type is None:
                return list(self._history)
            return [r for r in self._history if r.gesture_type == gesture_type]

    def recommendations(self, context: CalibrationContext, gestures: Optional[Iterable[str]] = None) -> List[str]:
        tips: List[str] = []
        if context.lighting in (LightingQuality.POOR, LightingQuality.DARK):
            tips.append("Improve the lighting for more reliable gesture recognition")
        if context.user_distance < 30:
            tips.append("Keep a viewing distance of 30-60 cm")
        elif context.user_distance > 80:
            tips.append("You are far from the device; gestures may need to be larger")

        names = list(gestures) if gestures is not None else list(GESTURE_TYPES)
        with self._lock:
            uncalibrated = [g for g in names if self._status.get(g) is not CalibrationStatus.COMPLETED]
            low = [
                g for g in names
                if self._status.get(g) is not CalibrationStatus.NOT_STARTED and self._accuracy_unlocked(g) < 0.8
            ]
        if uncalibrated:
            tips.append("Calibrate these gestures first: " + ", ".join(uncalibrated))
        if low:
            tips.append("Recognition accuracy is low, consider recalibrating: " + ", ".join(low))
        return tips

    def reset_calibration(self, gesture_type: Optional[str] = None) -> None:
        with self._lock:
            if gesture_type is None:
                self._status = {g: CalibrationStatus.NOT_STARTED for g in GESTURE_TYPES}
                self._accuracy = {g: 0.0 for g in GESTURE_TYPES}
                self._history.clear()
                self._outcomes.clear()
                self._tasks = []
            else:
                self._status[gesture_type] = CalibrationStatus.NOT_STARTED
                self._accuracy[gesture_type] = 0.0
                self._outcomes.pop(gesture_type, None)
                self._tasks = [t for t in self._tasks if t.gesture_type != gesture_type]
        self.store.clear(gesture_type)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            state = {
                "status": {g: s.value for g, s in self._status.items()},
                "accuracy": dict(self._accuracy),
            }
        state["thresholds"] = self.store.to_dict()
        return state

    def load_dict(self, data: Mapping[str, Any]) -> None:
        thresholds = data.get("thresholds")
        if isinstance(thresholds, dict):
            self.store.load_dict(thresholds)
            self.store.mark_clean()
        with self._lock:
            for g, s in (data.get("status") or {}).items():
                try:
                    self._status[str(g)] = CalibrationStatus(s)
                except ValueError:
                    logger.warning(f"Ignoring unknown calibration status {s!r} for {g}")
            for g, a in (data.get("accuracy") or {}).items():
                try:
                    self._accuracy[str(g)] = float(a)
                except (TypeError, ValueError):
                    continue

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _accuracy_unlocked(self, gesture_type: str) -> float:
        dq = self._outcomes.get(gesture_type)
        if dq:
            return float(sum(1 for ok in dq if ok)) / float(len(dq))
        return float(self._accuracy.get(gesture_type, 0.0))

    @staticmethod
    def _clamp(value: float) -> float:
        return max(THRESHOLD_MIN, min(THRESHOLD_MAX, float(value)))
