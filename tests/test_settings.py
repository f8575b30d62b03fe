import json
import logging

import pytest

from PageTurner.core.profiles import InstrumentType, ProfileValidationError, default_profile
from PageTurner.core.settings import ENV_VAR, SettingsManager


def test_defaults_when_file_missing(tmp_path):
    s = SettingsManager(str(tmp_path / "settings.json"))
    assert s.active_instrument() is InstrumentType.KEYBOARD
    assert s.active_profile() == default_profile(InstrumentType.KEYBOARD)
    assert s.learning_rate() == 0.1
    assert s.optimization_interval_s() == 300.0
    assert s.similarity_threshold() == 0.8
    assert s.max_sample_size() == 10
    assert s.history_limit() == 200
    assert s.min_face_confidence() == 0.0
    assert s.timeout_poll_ms() == 100
    assert s.flush_interval_ms() == 2000
    assert s.log_level() == "INFO"


def test_env_var_overrides_path(tmp_path, monkeypatch):
    path = tmp_path / "env.json"
    path.write_text(json.dumps({"active_instrument": "vocal"}), encoding="utf-8")
    monkeypatch.setenv(ENV_VAR, str(path))
    s = SettingsManager()
    assert s.path == str(path)
    assert s.active_instrument() is InstrumentType.VOCAL


def test_corrupt_file_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    with caplog.at_level(logging.WARNING):
        s = SettingsManager(str(path))
    assert s.active_instrument() is InstrumentType.KEYBOARD
    assert "using defaults" in caplog.text


def test_unknown_active_instrument_falls_back(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"active_instrument": "kazoo"}), encoding="utf-8")
    assert SettingsManager(str(path)).active_instrument() is InstrumentType.KEYBOARD


def test_profile_round_trip_through_file(tmp_path):
    path = str(tmp_path / "nested" / "settings.json")
    s = SettingsManager(path)
    edited = default_profile(InstrumentType.WOODWIND_BRASS).with_changes(confirmation_timeout=3.0)
    s.set_profile(edited)
    s.set_active_instrument("woodwind_brass")
    s.set_log_level("debug")
    s.save()

    again = SettingsManager(path)
    assert again.active_profile() == edited
    assert again.profile_for(InstrumentType.KEYBOARD) == default_profile(InstrumentType.KEYBOARD)
    assert again.log_level() == "DEBUG"


def test_malformed_stored_profile_raises(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps({"profiles": {"keyboard": {"shake_angle_threshold": 120}}}),
        encoding="utf-8",
    )
    s = SettingsManager(str(path))
    with pytest.raises(ProfileValidationError):
        s.profile_for("keyboard")


def test_set_profile_validates(tmp_path):
    s = SettingsManager(str(tmp_path / "settings.json"))
    with pytest.raises(ProfileValidationError):
        s.set_profile(default_profile(InstrumentType.KEYBOARD).with_changes(shake_duration=0))
    assert s.data["profiles"] == {}


def test_engine_state_layout(tmp_path):
    s = SettingsManager(str(tmp_path / "settings.json"))
    state = {
        "thresholds": {"blink": {"base": 0.6, "learning_rate": 0.1, "contexts": {"keyboard_60_good": 0.5}}},
        "status": {"blink": "completed"},
        "accuracy": {"blink": 0.9},
    }
    s.store_engine_state(state)
    assert s.data["thresholds"]["blink"]["contexts"] == {"keyboard_60_good": 0.5}
    assert s.data["calibration"] == {"status": {"blink": "completed"}, "accuracy": {"blink": 0.9}}
    assert s.engine_state() == state
