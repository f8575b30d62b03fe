import pytest

from PageTurner.calibration.engine import BLINK, HEAD_SHAKE, CalibrationEngine
from PageTurner.calibration.models import CalibrationContext, LightingQuality
from PageTurner.control.coordinator import CoordinatorState, GestureCoordinator
from PageTurner.control.events import (
    ConfirmationTimeout,
    DelegateSink,
    EventChannel,
    GestureSource,
    NavigationDirection,
    NavigationEvent,
    WaitingForConfirmation,
)
from PageTurner.core.profiles import InstrumentType, ProfileValidationError, default_profile
from PageTurner.detection.head_shake import HeadShakeDirection, ShakeState
from PageTurner.tracking.pose import PoseSample, deg_to_rad


def closed(t, yaw_deg=0.0, confidence=1.0):
    return PoseSample(False, False, 0.0, 0.0, yaw=deg_to_rad(yaw_deg), confidence=confidence, timestamp=t)


def opened(t, yaw_deg=0.0, confidence=1.0):
    return PoseSample(True, True, 1.0, 1.0, yaw=deg_to_rad(yaw_deg), confidence=confidence, timestamp=t)


class Recorder:
    def __init__(self):
        self.calls = []

    def on_navigation_event(self, direction, source):
        self.calls.append(("nav", direction, source))

    def on_waiting_for_confirmation(self, direction):
        self.calls.append(("waiting", direction))

    def on_confirmation_timeout(self):
        self.calls.append(("timeout",))


def test_blink_only_emits_next():
    channel = EventChannel()
    coord = GestureCoordinator(default_profile(InstrumentType.STRING_INSTRUMENTS), sink=channel)
    assert coord.is_blink_only_mode
    assert coord.feed_pose(closed(0.0)) == []
    assert coord.feed_pose(opened(0.1)) == []
    events = coord.feed_pose(closed(0.3))
    assert events == [NavigationEvent(NavigationDirection.NEXT, GestureSource.BLINK)]
    assert channel.drain() == events


def test_head_shake_only_maps_directions():
    coord = GestureCoordinator(default_profile(InstrumentType.KEYBOARD))
    assert coord.is_head_shake_only_mode
    coord.feed_pose(opened(0.0, 35))
    assert coord.feed_pose(opened(0.3, 35)) == [NavigationEvent(NavigationDirection.NEXT, GestureSource.HEAD_SHAKE)]
    coord.feed_pose(opened(1.0, 0))
    coord.feed_pose(opened(2.0, -35))
    assert coord.feed_pose(opened(2.4, -35)) == [
        NavigationEvent(NavigationDirection.PREVIOUS, GestureSource.HEAD_SHAKE)
    ]


def test_head_shake_only_never_emits_from_blinks():
    coord = GestureCoordinator(default_profile(InstrumentType.KEYBOARD))
    events = []
    for t in (0.0, 0.3, 0.6, 0.9, 1.2):
        events += coord.feed_pose(closed(t))
    assert events == []
    assert coord.blink.closure_count == 0


def test_hybrid_shake_then_blink_confirms():
    rec = Recorder()
    profile = default_profile(InstrumentType.WOODWIND_BRASS).with_changes(confirmation_timeout=3.0)
    coord = GestureCoordinator(profile, sink=DelegateSink(rec))
    assert coord.is_hybrid_mode

    assert coord.process_head_shake(HeadShakeDirection.RIGHT, now=0.0) == [
        WaitingForConfirmation(NavigationDirection.NEXT)
    ]
    assert coord.state is CoordinatorState.WAITING_CONFIRMATION
    assert coord.pending_direction is NavigationDirection.NEXT
    assert coord.deadline == pytest.approx(3.0)

    assert coord.feed_pose(closed(1.2)) == [NavigationEvent(NavigationDirection.NEXT, GestureSource.HYBRID)]
    assert coord.state is CoordinatorState.IDLE
    assert rec.calls == [
        ("waiting", NavigationDirection.NEXT),
        ("nav", NavigationDirection.NEXT, GestureSource.HYBRID),
    ]


def test_hybrid_timeout_without_blink():
    channel = EventChannel()
    coord = GestureCoordinator(default_profile(InstrumentType.WOODWIND_BRASS), sink=channel)
    coord.feed_pose(opened(-0.3, 25))
    assert coord.feed_pose(opened(0.0, 25)) == [WaitingForConfirmation(NavigationDirection.NEXT)]

    assert coord.poll(1.9) == []
    assert coord.poll(2.0) == [ConfirmationTimeout()]
    assert coord.poll(2.1) == []
    # Late blink after the timeout does nothing
    assert coord.feed_pose(closed(2.5)) == []

    events = channel.drain()
    assert sum(1 for e in events if isinstance(e, ConfirmationTimeout)) == 1
    assert not any(isinstance(e, NavigationEvent) for e in events)


def test_timeout_is_checked_on_frames_too():
    coord = GestureCoordinator(default_profile(InstrumentType.WOODWIND_BRASS))
    coord.process_head_shake(HeadShakeDirection.LEFT, now=0.0)
    # A blink arriving after the deadline expires the wait first
    assert coord.feed_pose(closed(2.5)) == [ConfirmationTimeout()]


def test_second_shake_replaces_pending():
    coord = GestureCoordinator(default_profile(InstrumentType.WOODWIND_BRASS))
    coord.process_head_shake(HeadShakeDirection.RIGHT, now=0.0)
    assert coord.process_head_shake(HeadShakeDirection.LEFT, now=1.0) == [
        WaitingForConfirmation(NavigationDirection.PREVIOUS)
    ]
    assert coord.pending_direction is NavigationDirection.PREVIOUS
    assert coord.poll(2.5) == []
    assert coord.feed_pose(closed(2.6)) == [NavigationEvent(NavigationDirection.PREVIOUS, GestureSource.HYBRID)]


def test_hybrid_blink_without_shake_is_ignored():
    coord = GestureCoordinator(default_profile(InstrumentType.WOODWIND_BRASS))
    assert coord.feed_pose(closed(0.0)) == []
    assert coord.state is CoordinatorState.IDLE


def test_both_enabled_without_confirmation_emit_immediately():
    coord = GestureCoordinator(default_profile(InstrumentType.CUSTOM))
    assert not coord.is_hybrid_mode
    coord.feed_pose(closed(0.0))
    assert coord.feed_pose(closed(0.3)) == [NavigationEvent(NavigationDirection.NEXT, GestureSource.BLINK)]
    coord.feed_pose(opened(1.0, -40))
    assert coord.feed_pose(opened(1.3, -40)) == [
        NavigationEvent(NavigationDirection.PREVIOUS, GestureSource.HEAD_SHAKE)
    ]


def test_invalid_profile_keeps_current():
    coord = GestureCoordinator(default_profile(InstrumentType.STRING_INSTRUMENTS))
    bad = default_profile(InstrumentType.STRING_INSTRUMENTS).with_changes(blink_time_window=0.05)
    with pytest.raises(ProfileValidationError):
        coord.set_profile(bad)
    assert coord.profile == default_profile(InstrumentType.STRING_INSTRUMENTS)


def test_profile_swap_cancels_pending_confirmation():
    coord = GestureCoordinator(default_profile(InstrumentType.WOODWIND_BRASS))
    coord.process_head_shake(HeadShakeDirection.RIGHT, now=0.0)
    coord.switch_to_instrument(InstrumentType.KEYBOARD)
    assert coord.state is CoordinatorState.IDLE
    assert coord.pending_direction is None
    assert coord.poll(10.0) == []
    assert coord.is_head_shake_only_mode


def test_profile_swap_resets_blink_progress():
    coord = GestureCoordinator(default_profile(InstrumentType.STRING_INSTRUMENTS))
    coord.feed_pose(closed(0.0))
    coord.set_profile(default_profile(InstrumentType.CUSTOM))
    assert coord.blink.closure_count == 0
    assert coord.feed_pose(closed(0.3)) == []


def test_reset_clears_waiting_state():
    coord = GestureCoordinator(default_profile(InstrumentType.WOODWIND_BRASS))
    coord.process_head_shake(HeadShakeDirection.RIGHT, now=0.0)
    coord.reset()
    assert coord.state is CoordinatorState.IDLE
    assert coord.poll(5.0) == []


def test_signal_loss_does_not_double_trigger():
    coord = GestureCoordinator(default_profile(InstrumentType.KEYBOARD))
    coord.feed_pose(opened(0.0, 35))
    assert coord.feed_pose(None, now=0.2) == []
    assert coord.feed_pose(opened(0.35, 35)) == []
    assert coord.feed_pose(opened(0.5, 35)) == []


def test_dropout_during_cooldown_keeps_cooldown():
    coord = GestureCoordinator(default_profile(InstrumentType.KEYBOARD))
    for t in (0.0, 0.1, 0.2):
        assert coord.feed_pose(opened(t, 34)) == []
    assert coord.feed_pose(opened(0.4, 34)) == [
        NavigationEvent(NavigationDirection.NEXT, GestureSource.HEAD_SHAKE)
    ]
    # cooldown runs until 0.9 on the frame clock
    assert coord.feed_pose(None, now=0.45) == []
    for t in (0.5, 0.6, 0.7, 0.85):
        assert coord.feed_pose(opened(t, 34)) == []
    assert coord.head_shake.state is ShakeState.COOLDOWN


def test_low_confidence_counts_as_signal_loss():
    coord = GestureCoordinator(default_profile(InstrumentType.KEYBOARD), min_face_confidence=0.5)
    coord.feed_pose(opened(0.0, 35, confidence=0.9))
    assert coord.feed_pose(opened(0.3, 35, confidence=0.2)) == []
    assert coord.feed_pose(opened(0.4, 35, confidence=0.9)) == []
    assert coord.feed_pose(opened(0.8, 35, confidence=0.9)) == [
        NavigationEvent(NavigationDirection.NEXT, GestureSource.HEAD_SHAKE)
    ]


def test_missing_or_failing_sink_does_not_break_frames():
    coord = GestureCoordinator(default_profile(InstrumentType.STRING_INSTRUMENTS))
    coord.feed_pose(closed(0.0))
    assert len(coord.feed_pose(closed(0.3))) == 1

    def boom(event):
        raise RuntimeError("sink down")

    coord.set_sink(boom)
    coord.feed_pose(closed(1.0))
    assert coord.feed_pose(closed(1.3)) == [NavigationEvent(NavigationDirection.NEXT, GestureSource.BLINK)]


def test_long_blink_is_opt_in():
    held = [closed(round(0.05 * i, 2)) for i in range(13)] + [opened(0.7)]

    coord = GestureCoordinator(default_profile(InstrumentType.STRING_INSTRUMENTS))
    events = []
    for s in held:
        events += coord.feed_pose(s)
    assert events == []

    profile = default_profile(InstrumentType.STRING_INSTRUMENTS).with_changes(enable_long_blink=True)
    coord = GestureCoordinator(profile)
    events = []
    for s in held:
        events += coord.feed_pose(s)
    assert events == [NavigationEvent(NavigationDirection.PREVIOUS, GestureSource.BLINK)]
    assert coord.blink.closure_count == 0


def test_calibrated_blink_threshold_uses_openness():
    ctx = CalibrationContext(InstrumentType.STRING_INSTRUMENTS, LightingQuality.GOOD, 50)
    engine = CalibrationEngine()
    coord = GestureCoordinator(default_profile(InstrumentType.STRING_INSTRUMENTS))
    # Flags say open, openness says mostly shut
    squint = [PoseSample(True, True, 0.3, 0.3, timestamp=t) for t in (0.0, 0.3)]

    coord.attach_thresholds(engine, ctx)
    assert [e for s in squint for e in coord.feed_pose(s)] == []

    engine.store.set(BLINK, ctx.key, 0.5)
    coord.reset()
    squint = [PoseSample(True, True, 0.3, 0.3, timestamp=t) for t in (1.0, 1.3)]
    assert [e for s in squint for e in coord.feed_pose(s)] == [
        NavigationEvent(NavigationDirection.NEXT, GestureSource.BLINK)
    ]


def test_calibrated_head_shake_angle():
    ctx = CalibrationContext(InstrumentType.KEYBOARD, LightingQuality.GOOD, 50)
    engine = CalibrationEngine()
    engine.store.set(HEAD_SHAKE, ctx.key, 0.5)  # 45 degrees
    coord = GestureCoordinator(default_profile(InstrumentType.KEYBOARD))
    coord.attach_thresholds(engine, ctx)

    coord.feed_pose(opened(0.0, 35))
    assert coord.feed_pose(opened(0.4, 35)) == []
    assert coord.head_shake.angle_threshold_deg == pytest.approx(45.0)

    coord.feed_pose(opened(1.0, 50))
    assert coord.feed_pose(opened(1.4, 50)) == [NavigationEvent(NavigationDirection.NEXT, GestureSource.HEAD_SHAKE)]


def test_uncalibrated_context_keeps_profile_angle():
    engine = CalibrationEngine()
    stored = CalibrationContext(InstrumentType.VOCAL, LightingQuality.DARK, 150)
    engine.store.set(HEAD_SHAKE, stored.key, 0.9)
    ctx = CalibrationContext(InstrumentType.KEYBOARD, LightingQuality.GOOD, 50)
    coord = GestureCoordinator(default_profile(InstrumentType.KEYBOARD))
    coord.attach_thresholds(engine, ctx)
    coord.feed_pose(opened(0.0, 35))
    assert coord.head_shake.angle_threshold_deg == pytest.approx(30.0)
    assert coord.feed_pose(opened(0.3, 35)) == [NavigationEvent(NavigationDirection.NEXT, GestureSource.HEAD_SHAKE)]


def test_describe_reports_waiting():
    coord = GestureCoordinator(default_profile(InstrumentType.WOODWIND_BRASS))
    assert "ready" in coord.describe()
    coord.process_head_shake(HeadShakeDirection.LEFT, now=0.0)
    assert "waiting for confirmation (previous)" in coord.describe()
