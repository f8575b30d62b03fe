"""
Settings manager for PageTurner.

Loads/saves JSON settings from PageTurner/settings.json (or $PAGETURNER_SETTINGS)
and exposes typed helpers for profiles, the calibrated threshold table and
runtime tuning.
"""
from __future__ import annotations

import copy
import json
import logging
import os
from typing import Any, Dict, Optional

from PageTurner.core.profiles import GestureProfile, InstrumentType, default_profile

logger = logging.getLogger(__name__)

ENV_VAR = "PAGETURNER_SETTINGS"

DEFAULTS: Dict[str, Any] = {
    "active_instrument": InstrumentType.KEYBOARD.value,
    # Per-instrument overrides keyed by instrument value; missing entries use built-in defaults
    "profiles": {},
    "thresholds": {},
    "calibration": {"status": {}, "accuracy": {}},
    "engine": {
        "learning_rate": 0.1,
        "optimization_interval_s": 300.0,
        "similarity_threshold": 0.8,
        "max_sample_size": 10,
        "history_limit": 200,
    },
    "runtime": {
        "min_face_confidence": 0.0,
        "timeout_poll_ms": 100,
        "flush_interval_ms": 2000,
    },
    "logging": {"level": "INFO"},
}


class SettingsManager:
    def __init__(self, path: Optional[str] = None) -> None:
        if path is None:
            path = os.environ.get(ENV_VAR) or None
        if path is None:
            here = os.path.dirname(os.path.abspath(__file__))
            path = os.path.join(os.path.dirname(here), "settings.json")
        self.path = path
        self.data: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        if not os.path.exists(self.path):
            self.data = copy.deepcopy(DEFAULTS)
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read settings from {self.path}, using defaults: {e}")
            self.data = copy.deepcopy(DEFAULTS)
            return
        if not isinstance(data, dict):
            logger.warning(f"Settings file {self.path} is not a JSON object, using defaults")
            data = {}
        self.data = data

    def save(self) -> None:
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=2)

    def _section(self, name: str) -> Dict[str, Any]:
        sec = self.data.get(name)
        if not isinstance(sec, dict):
            sec = copy.deepcopy(DEFAULTS.get(name, {}))
            self.data[name] = sec
        return sec

    # Profiles ----------------------------------------------------------
    def active_instrument(self) -> InstrumentType:
        raw = self.data.get("active_instrument", DEFAULTS["active_instrument"])
        try:
            return InstrumentType.parse(raw)
        except ValueError:
            logger.warning(f"Unknown active instrument {raw!r} in settings, using keyboard")
            return InstrumentType.KEYBOARD

    def set_active_instrument(self, instrument) -> None:
        self.data["active_instrument"] = InstrumentType.parse(instrument).value

    def profile_for(self, instrument) -> GestureProfile:
        """Stored profile for an instrument, or its built-in default.

        Raises ProfileValidationError when the stored entry is malformed.
        """
        inst = InstrumentType.parse(instrument)
        stored = self._section("profiles").get(inst.value)
        if not isinstance(stored, dict):
            return default_profile(inst)
        merged = dict(stored)
        merged["instrument"] = inst.value
        return GestureProfile.from_dict(merged).validate()

    def active_profile(self) -> GestureProfile:
        return self.profile_for(self.active_instrument())

    def set_profile(self, profile: GestureProfile) -> None:
        profile.validate()
        self._section("profiles")[profile.instrument.value] = profile.to_dict()

    # Calibration state -------------------------------------------------
    def thresholds(self) -> Dict[str, Any]:
        return dict(self._section("thresholds"))

    def set_thresholds(self, table: Dict[str, Any]) -> None:
        self.data["thresholds"] = dict(table)

    def calibration_state(self) -> Dict[str, Any]:
        sec = self._section("calibration")
        return {
            "status": dict(sec.get("status") or {}),
            "accuracy": dict(sec.get("accuracy") or {}),
        }

    def engine_state(self) -> Dict[str, Any]:
        """Thresholds plus calibration status/accuracy, in CalibrationEngine.load_dict shape."""
        state = self.calibration_state()
        state["thresholds"] = self.thresholds()
        return state

    def store_engine_state(self, state: Dict[str, Any]) -> None:
        self.set_thresholds(state.get("thresholds") or {})
        self.data["calibration"] = {
            "status": dict(state.get("status") or {}),
            "accuracy": dict(state.get("accuracy") or {}),
        }

    # Engine tuning -----------------------------------------------------
    def learning_rate(self) -> float:
        return float(self._section("engine").get("learning_rate", 0.1))

    def optimization_interval_s(self) -> float:
        return float(self._section("engine").get("optimization_interval_s", 300.0))

    def similarity_threshold(self) -> float:
        return float(self._section("engine").get("similarity_threshold", 0.8))

    def max_sample_size(self) -> int:
        return int(self._section("engine").get("max_sample_size", 10))

    def history_limit(self) -> int:
        return int(self._section("engine").get("history_limit", 200))

    # Runtime -----------------------------------------------------------
    def min_face_confidence(self) -> float:
        return float(self._section("runtime").get("min_face_confidence", 0.0))

    def timeout_poll_ms(self) -> int:
        return int(self._section("runtime").get("timeout_poll_ms", 100))

    def flush_interval_ms(self) -> int:
        return int(self._section("runtime").get("flush_interval_ms", 2000))

    def log_level(self) -> str:
        return str(self._section("logging").get("level", "INFO")).upper()

    def set_log_level(self, level: str) -> None:
        self._section("logging")["level"] = str(level).upper()
