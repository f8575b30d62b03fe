from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Iterable, List, Optional, Sequence, Union

try:
    from PyQt6.QtCore import QTimer
except Exception:  # pragma: no cover
    QTimer = None  # type: ignore

from PageTurner.analysis.report import format_report, summarize_history
from PageTurner.calibration.engine import CalibrationEngine
from PageTurner.calibration.models import (
    CalibrationContext,
    CalibrationFeedback,
    CalibrationResult,
    CalibrationSample,
    LightingQuality,
)
from PageTurner.control.coordinator import GestureCoordinator
from PageTurner.control.events import (
    CalibrationCompleted,
    ConfirmationTimeout,
    EventChannel,
    EventSink,
    GestureEvent,
    NavigationEvent,
    WaitingForConfirmation,
)
from PageTurner.core.profiles import InstrumentType
from PageTurner.core.settings import SettingsManager
from PageTurner.tracking.environment import make_context
from PageTurner.tracking.pose import PoseSample

logger = logging.getLogger(__name__)

DEFAULT_LIGHTING = LightingQuality.GOOD
DEFAULT_DISTANCE_CM = 60.0


class GestureRuntime:
    """Hosts the coordinator and calibration engine for one session.

    Three timers drive the off-frame work once start() is called inside a Qt
    event loop: background optimization, confirmation timeout polling and a
    deferred flush of the threshold table to settings. Every tick is also a
    plain method, so hosts without an event loop can call them directly.
    """

    def __init__(self, settings: Optional[SettingsManager] = None, sink: Optional[EventSink] = None) -> None:
        self.settings = settings or SettingsManager()
        self.engine = CalibrationEngine(
            learning_rate=self.settings.learning_rate(),
            max_sample_size=self.settings.max_sample_size(),
            similarity_threshold=self.settings.similarity_threshold(),
            optimization_window_s=self.settings.optimization_interval_s(),
            history_limit=self.settings.history_limit(),
            sink=sink,
        )
        self.engine.load_dict(self.settings.engine_state())

        self.coordinator = GestureCoordinator(
            self.settings.active_profile(),
            sink=sink,
            min_face_confidence=self.settings.min_face_confidence(),
        )
        self.context: CalibrationContext = make_context(
            self.coordinator.profile.instrument, DEFAULT_LIGHTING, DEFAULT_DISTANCE_CM
        )
        self.coordinator.attach_thresholds(self.engine, self.context)

        self._timers: List[Any] = []
        self.running = False

    # Inputs ------------------------------------------------------------
    def feed_pose(self, sample: Optional[PoseSample], now: Optional[float] = None) -> List[GestureEvent]:
        return self.coordinator.feed_pose(sample, now)

    def feed_calibration_batch(
        self,
        gesture_type: str,
        context: Optional[CalibrationContext],
        samples: Iterable[Union[CalibrationSample, float]],
    ) -> CalibrationResult:
        ctx = context or self.context
        batch = [
            s if isinstance(s, CalibrationSample) else CalibrationSample(gesture_type, float(s), ctx)
            for s in samples
        ]
        return self.engine.calibrate(gesture_type, ctx, batch)

    def feed_feedback(
        self,
        gesture_type: str,
        feedback: Union[CalibrationFeedback, str],
        context: Optional[CalibrationContext] = None,
        now: Optional[float] = None,
    ) -> float:
        return self.engine.record_feedback(gesture_type, CalibrationFeedback(feedback), context or self.context, now)

    # Session -----------------------------------------------------------
    def set_sink(self, sink: Optional[EventSink]) -> None:
        self.coordinator.set_sink(sink)
        self.engine.sink = sink

    def switch_instrument(self, instrument) -> None:
        inst = InstrumentType.parse(instrument)
        self.coordinator.set_profile(self.settings.profile_for(inst))
        self.settings.set_active_instrument(inst)
        self.set_environment(self.context.lighting, self.context.user_distance)

    def set_environment(self, lighting, distance_cm: float) -> None:
        self.context = make_context(self.coordinator.profile.instrument, lighting, distance_cm)
        self.coordinator.set_context(self.context)
        logger.debug(f"Calibration context: {self.context.key}")

    # Ticks -------------------------------------------------------------
    def optimize_tick(self, now: Optional[float] = None) -> int:
        return self.engine.optimize(now)

    def poll_tick(self, now: Optional[float] = None) -> List[GestureEvent]:
        return self.coordinator.poll(now)

    def flush(self, force: bool = False) -> bool:
        """Write the threshold table to settings if it changed; returns True if saved."""
        store = self.engine.store
        if not force and not store.dirty:
            return False
        self.settings.store_engine_state(self.engine.to_dict())
        try:
            self.settings.save()
        except OSError as e:
            logger.warning(f"Failed to save settings to {self.settings.path}: {e}")
            return False
        store.mark_clean()
        logger.debug(f"Saved calibration state to {self.settings.path}")
        return True

    def start(self) -> None:
        if self.running:
            return
        if QTimer is None:
            raise RuntimeError("PyQt6 is required to run the background timers")
        self._timers = [
            self._make_timer(int(self.settings.optimization_interval_s() * 1000), self.optimize_tick),
            self._make_timer(self.settings.timeout_poll_ms(), self.poll_tick),
            self._make_timer(self.settings.flush_interval_ms(), self.flush),
        ]
        for t in self._timers:
            t.start()
        self.running = True

    def stop(self) -> None:
        for t in self._timers:
            t.stop()
        self._timers = []
        self.running = False
        self.flush()

    @staticmethod
    def _make_timer(interval_ms: int, callback) -> Any:
        timer = QTimer()
        timer.setInterval(max(1, int(interval_ms)))
        timer.timeout.connect(callback)  # type: ignore[attr-defined]
        return timer


# CLI ---------------------------------------------------------------------


def _format_event(ev: GestureEvent) -> str:
    if isinstance(ev, NavigationEvent):
        return f"navigate {ev.direction.value} ({ev.source.value})"
    if isinstance(ev, WaitingForConfirmation):
        return f"waiting for confirmation: {ev.direction.value}"
    if isinstance(ev, ConfirmationTimeout):
        return "confirmation timed out"
    if isinstance(ev, CalibrationCompleted):
        return (
            f"calibrated {ev.gesture_type}: threshold={ev.recommended_threshold:.3f} "
            f"confidence={ev.confidence:.2f}"
        )
    return repr(ev)


def _row_context(runtime: GestureRuntime, row: dict) -> CalibrationContext:
    if not any(k in row for k in ("instrument", "lighting", "distance")):
        return runtime.context
    return make_context(
        row.get("instrument", runtime.context.instrument),
        row.get("lighting", runtime.context.lighting),
        float(row.get("distance", runtime.context.user_distance)),
    )


def replay(runtime: GestureRuntime, lines: Iterable[str]) -> int:
    """Feed recorded JSON lines through the runtime; returns the number of rows applied.

    Row kinds (the "type" key, default "pose"):
      pose         PoseSample fields, angles in radians
      lost         {"timestamp"}: a frame without a face
      calibration  {"gesture", "values", [instrument, lighting, distance]}
      feedback     {"gesture", "feedback", [instrument, lighting, distance]}
    """
    applied = 0
    last_t: Optional[float] = None
    for lineno, line in enumerate(lines, start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            row = json.loads(line)
            kind = str(row.get("type", "pose"))
            if kind == "pose":
                sample = PoseSample.from_dict(row)
                last_t = sample.timestamp
                runtime.feed_pose(sample)
            elif kind == "lost":
                last_t = float(row["timestamp"])
                runtime.feed_pose(None, last_t)
            elif kind == "calibration":
                runtime.feed_calibration_batch(row["gesture"], _row_context(runtime, row), row.get("values", []))
            elif kind == "feedback":
                runtime.feed_feedback(row["gesture"], row["feedback"], _row_context(runtime, row), last_t)
            else:
                logger.warning(f"line {lineno}: unknown row type {kind!r}")
                continue
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"line {lineno}: skipped ({e})")
            continue
        applied += 1
    if last_t is not None:
        # Let any confirmation still pending at the end of the recording expire
        runtime.poll_tick(last_t + runtime.coordinator.profile.confirmation_timeout)
        runtime.optimize_tick(last_t)
    return applied


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Replay recorded face-pose streams through the page-turn gesture core")
    ap.add_argument("--replay", metavar="FILE", help="JSON-lines recording to replay ('-' for stdin)")
    ap.add_argument("--instrument", help="Instrument profile to use (default: from settings)")
    ap.add_argument("--settings", help="Settings JSON path (default: $PAGETURNER_SETTINGS or PageTurner/settings.json)")
    ap.add_argument("--lighting", default=None, help="Lighting quality for the calibration context")
    ap.add_argument("--distance", type=float, default=None, help="Viewing distance in cm")
    ap.add_argument("--log-level", default=None, help="Logging level (default: from settings)")
    ap.add_argument("--no-save", action="store_true", help="Do not write calibration changes back to settings")
    ap.add_argument("--describe", action="store_true", help="Print the active profile and exit")
    ap.add_argument("--report", action="store_true", help="Print a feedback history summary after the replay")
    ap.add_argument("--plots", metavar="PREFIX", help="Save history plots as PREFIX_*.png")
    args = ap.parse_args(argv)

    settings = SettingsManager(args.settings)
    logging.basicConfig(
        level=(args.log_level or settings.log_level()).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    channel = EventChannel()
    try:
        runtime = GestureRuntime(settings, sink=channel)
        if args.instrument:
            runtime.switch_instrument(args.instrument)
        if args.lighting is not None or args.distance is not None:
            runtime.set_environment(
                args.lighting or runtime.context.lighting,
                args.distance if args.distance is not None else runtime.context.user_distance,
            )
    except ValueError as e:
        print(f"Error: {e}")
        return 2

    if args.describe or not args.replay:
        print(runtime.coordinator.describe())
        print(runtime.coordinator.profile.instrument.control_description)
        for tip in runtime.engine.recommendations(runtime.context):
            print(f"- {tip}")
        return 0

    try:
        if args.replay == "-":
            applied = replay(runtime, sys.stdin)
        else:
            with open(args.replay, "r", encoding="utf-8") as f:
                applied = replay(runtime, f)
    except OSError as e:
        print(f"Error: cannot read {args.replay}: {e}")
        return 1

    events = channel.drain()
    for ev in events:
        print(_format_event(ev))
    turns = sum(1 for ev in events if isinstance(ev, NavigationEvent))
    print(f"Replayed {applied} rows, {turns} page turns")

    if args.report or args.plots:
        records = runtime.engine.history()
        summaries = summarize_history(records)
        if args.report:
            print(format_report(summaries))
        if args.plots:
            from PageTurner.analysis.plots import save_history_plots

            for path in save_history_plots(records, summaries, args.plots):
                print(f"Saved {path}")

    if not args.no_save:
        runtime.flush()
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
