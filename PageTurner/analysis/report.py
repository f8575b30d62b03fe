from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np  # type: ignore

from PageTurner.calibration.models import LearningRecord


@dataclass
class GestureSummary:
    gesture_type: str
    count: int
    mean_threshold: float
    last_threshold: float
    mean_accuracy: float
    threshold_slope: float
    feedback_counts: Dict[str, int] = field(default_factory=dict)

    @property
    def trend(self) -> str:
        if abs(self.threshold_slope) < 1e-3:
            return "stable"
        return "rising" if self.threshold_slope > 0 else "falling"


def threshold_trend(records: Sequence[LearningRecord]) -> float:
    """Least-squares slope of the threshold per feedback record (0.0 with fewer than two)."""
    if len(records) < 2:
        return 0.0
    y = np.array([r.threshold for r in records], dtype=float)
    x = np.arange(len(y), dtype=float)
    slope, _ = np.polyfit(x, y, 1)
    return float(slope)


def count_feedback(records: Sequence[LearningRecord]) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for r in records:
        out[r.feedback.value] = out.get(r.feedback.value, 0) + 1
    return out


def summarize_history(records: Sequence[LearningRecord]) -> Dict[str, GestureSummary]:
    grouped: Dict[str, List[LearningRecord]] = {}
    for r in records:
        grouped.setdefault(r.gesture_type, []).append(r)
    out: Dict[str, GestureSummary] = {}
    for g, recs in grouped.items():
        thr = np.array([r.threshold for r in recs], dtype=float)
        acc = np.array([r.accuracy for r in recs], dtype=float)
        out[g] = GestureSummary(
            gesture_type=g,
            count=len(recs),
            mean_threshold=float(thr.mean()),
            last_threshold=float(thr[-1]),
            mean_accuracy=float(acc.mean()),
            threshold_slope=threshold_trend(recs),
            feedback_counts=count_feedback(recs),
        )
    return out


def format_report(summaries: Dict[str, GestureSummary]) -> str:
    if not summaries:
        return "No feedback recorded."
    lines = []
    for g in sorted(summaries):
        s = summaries[g]
        fb = ", ".join(f"{k}={v}" for k, v in sorted(s.feedback_counts.items()))
        lines.append(
            f"{g}: n={s.count} threshold mean={s.mean_threshold:.3f} last={s.last_threshold:.3f} "
            f"({s.trend}) accuracy={s.mean_accuracy:.2f} [{fb}]"
        )
    return "\n".join(lines)
