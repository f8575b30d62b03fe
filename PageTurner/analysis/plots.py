from __future__ import annotations

from typing import Dict, Optional, Sequence

import numpy as np  # type: ignore
import matplotlib
matplotlib.use("Agg")  # headless-safe backend
import matplotlib.pyplot as plt  # type: ignore

from PageTurner.calibration.models import LearningRecord

from .report import GestureSummary


def fig_threshold_history(records: Sequence[LearningRecord], gesture_type: Optional[str] = None):
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.set_title("Adaptive Threshold History" + (f" ({gesture_type})" if gesture_type else ""))
    groups: Dict[str, list] = {}
    for r in records:
        if gesture_type is not None and r.gesture_type != gesture_type:
            continue
        groups.setdefault(r.gesture_type, []).append(r.threshold)
    for g, values in sorted(groups.items()):
        y = np.array(values, dtype=float)
        ax.plot(np.arange(len(y)), y, marker="o", markersize=3, label=g)
    ax.set_ylim(0.0, 1.05)
    ax.set_xlabel("Feedback #")
    ax.set_ylabel("Threshold")
    if groups:
        ax.legend(loc="best")
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    return fig


def fig_accuracy_history(records: Sequence[LearningRecord], target: float = 0.95):
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.set_title("Recognition Accuracy")
    groups: Dict[str, list] = {}
    for r in records:
        groups.setdefault(r.gesture_type, []).append(r.accuracy)
    for g, values in sorted(groups.items()):
        y = np.array(values, dtype=float)
        ax.plot(np.arange(len(y)), y, label=g)
    ax.axhline(target, color="red", linestyle="--", label=f"Target {target:.2f}")
    ax.set_ylim(0.0, 1.05)
    ax.set_xlabel("Feedback #")
    ax.set_ylabel("Accuracy")
    ax.legend(loc="best")
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    return fig


def fig_feedback_bars(summaries: Dict[str, GestureSummary]):
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.set_title("Feedback by Gesture")
    names = sorted(summaries)
    kinds = sorted({k for s in summaries.values() for k in s.feedback_counts})
    if not names or not kinds:
        ax.axis("off")
        ax.text(0.1, 0.5, "No feedback recorded", fontsize=12)
        fig.tight_layout()
        return fig
    x = np.arange(len(names), dtype=float)
    width = 0.8 / len(kinds)
    for i, k in enumerate(kinds):
        counts = [summaries[n].feedback_counts.get(k, 0) for n in names]
        ax.bar(x + i * width, counts, width=width, label=k)
    ax.set_xticks(x + width * (len(kinds) - 1) / 2.0)
    ax.set_xticklabels(names)
    ax.set_ylabel("Count")
    ax.legend(loc="best")
    fig.tight_layout()
    return fig


def save_history_plots(records: Sequence[LearningRecord], summaries: Dict[str, GestureSummary], prefix: str) -> list:
    """Write the three history figures as PNGs named <prefix>_*.png; returns the paths."""
    paths = []
    for name, fig in (
        ("thresholds", fig_threshold_history(records)),
        ("accuracy", fig_accuracy_history(records)),
        ("feedback", fig_feedback_bars(summaries)),
    ):
        path = f"{prefix}_{name}.png"
        fig.savefig(path, dpi=100)
        plt.close(fig)
        paths.append(path)
    return paths
