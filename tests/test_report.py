import os

import pytest

from PageTurner.analysis.report import format_report, summarize_history, threshold_trend
from PageTurner.calibration.engine import BLINK, HEAD_SHAKE, CalibrationEngine
from PageTurner.calibration.models import CalibrationContext, CalibrationFeedback, LightingQuality
from PageTurner.core.profiles import InstrumentType


def make_history():
    engine = CalibrationEngine()
    c = CalibrationContext(InstrumentType.CUSTOM, LightingQuality.GOOD, 50)
    for _ in range(4):
        engine.record_feedback(BLINK, CalibrationFeedback.TOO_SENSITIVE, c, now=0.0)
    engine.record_feedback(HEAD_SHAKE, CalibrationFeedback.PERFECT, c, now=0.0)
    return engine.history()


def test_threshold_trend():
    records = make_history()
    blink = [r for r in records if r.gesture_type == BLINK]
    assert threshold_trend(blink) > 0
    assert threshold_trend(blink[:1]) == 0.0


def test_summaries():
    summaries = summarize_history(make_history())
    assert set(summaries) == {BLINK, HEAD_SHAKE}
    s = summaries[BLINK]
    assert s.count == 4
    assert s.feedback_counts == {"too_sensitive": 4}
    assert s.trend == "rising"
    assert s.last_threshold > s.mean_threshold
    assert summaries[HEAD_SHAKE].trend == "stable"
    assert summaries[HEAD_SHAKE].last_threshold == pytest.approx(30.0 / 90.0)


def test_format_report():
    assert format_report({}) == "No feedback recorded."
    text = format_report(summarize_history(make_history()))
    lines = text.splitlines()
    assert lines[0].startswith("blink: n=4")
    assert "rising" in lines[0]
    assert lines[1].startswith("head_shake: n=1")


def test_history_plots_are_written(tmp_path):
    pytest.importorskip("matplotlib")
    from PageTurner.analysis.plots import save_history_plots

    records = make_history()
    paths = save_history_plots(records, summarize_history(records), str(tmp_path / "hist"))
    assert len(paths) == 3
    for p in paths:
        assert os.path.getsize(p) > 0
