"""
Environment estimates used to build calibration contexts.

- classify_lighting(): brightness/contrast/uniformity -> LightingQuality
- frame_brightness(): mean luminance of a grayscale or BGR frame in [0, 1]
- estimate_distance_cm(): user distance from normalized face width and/or
  inter-eye distance
- bucket_distance() / distance_range(): discretize the estimate
"""
from __future__ import annotations

from typing import Any, Optional

import numpy as np  # type: ignore

from PageTurner.calibration.models import CalibrationContext, LightingQuality
from PageTurner.core.profiles import InstrumentType

# Reference geometry for distance estimation
REAL_FACE_WIDTH_CM = 14.0
REAL_EYE_DISTANCE_CM = 6.3
DEFAULT_DISTANCE_CM = 100.0
MIN_DISTANCE_CM = 20.0
MAX_DISTANCE_CM = 200.0


def classify_lighting(brightness: float, contrast: float = 0.0, uniformity: float = 1.0) -> LightingQuality:
    b = float(brightness)
    c = float(contrast)
    u = float(uniformity)
    if b > 0.7 and c < 0.8 and u > 0.8:
        return LightingQuality.EXCELLENT
    if b > 0.5 and c < 0.9 and u > 0.6:
        return LightingQuality.GOOD
    if b > 0.3:
        return LightingQuality.FAIR
    if b > 0.1:
        return LightingQuality.POOR
    return LightingQuality.DARK


def frame_brightness(frame: Any) -> float:
    """Mean luminance in [0, 1] for a uint8 grayscale (H, W) or BGR (H, W, 3) array."""
    arr = np.asarray(frame)
    if arr.size == 0:
        return 0.0
    if arr.ndim == 3 and arr.shape[2] >= 3:
        b = arr[:, :, 0].astype(np.float64)
        g = arr[:, :, 1].astype(np.float64)
        r = arr[:, :, 2].astype(np.float64)
        lum = 0.114 * b + 0.587 * g + 0.299 * r
    else:
        lum = arr.astype(np.float64)
    scale = 255.0 if arr.dtype == np.uint8 or float(lum.max()) > 1.0 else 1.0
    return float(np.clip(lum.mean() / scale, 0.0, 1.0))


def frame_contrast(frame: Any) -> float:
    """RMS contrast (std of normalized luminance, doubled) in [0, 1]."""
    arr = np.asarray(frame)
    if arr.size == 0:
        return 0.0
    if arr.ndim == 3 and arr.shape[2] >= 3:
        arr = arr[:, :, :3].mean(axis=2)
    lum = arr.astype(np.float64)
    if float(lum.max()) > 1.0:
        lum = lum / 255.0
    return float(np.clip(2.0 * lum.std(), 0.0, 1.0))


def _clamp_distance(d: float) -> float:
    return max(MIN_DISTANCE_CM, min(MAX_DISTANCE_CM, float(d)))


def estimate_distance_cm(face_width: Optional[float] = None, eye_distance: Optional[float] = None) -> float:
    """Estimate camera-to-face distance with a pinhole model.

    face_width and eye_distance are in normalized image units (1.0 = frame
    width). Available estimates are averaged.
    """
    estimates = []
    if face_width is not None and face_width > 0:
        estimates.append(_clamp_distance(REAL_FACE_WIDTH_CM / float(face_width)))
    if eye_distance is not None and eye_distance > 0:
        estimates.append(_clamp_distance(REAL_EYE_DISTANCE_CM / float(eye_distance)))
    if not estimates:
        return DEFAULT_DISTANCE_CM
    return _clamp_distance(sum(estimates) / len(estimates))


def bucket_distance(cm: float) -> int:
    return int(cm)


def distance_range(cm: float) -> str:
    d = float(cm)
    if d < 30:
        return "too_close"
    if d < 50:
        return "close"
    if d < 80:
        return "optimal"
    if d < 120:
        return "far"
    return "too_far"


def make_context(instrument: Any, lighting: Any, distance_cm: float) -> CalibrationContext:
    return CalibrationContext(
        instrument=InstrumentType.parse(instrument),
        lighting=LightingQuality.parse(lighting),
        user_distance=bucket_distance(distance_cm),
    )
