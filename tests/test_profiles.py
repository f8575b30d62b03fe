import pytest

from PageTurner.core.profiles import (
    GestureProfile,
    InstrumentType,
    ProfileValidationError,
    default_profile,
    default_profiles,
)


def test_instrument_defaults():
    strings = default_profile(InstrumentType.STRING_INSTRUMENTS)
    assert strings.is_blink_only and strings.required_blink_count == 2

    wind = default_profile("woodwind_brass")
    assert wind.is_hybrid
    assert wind.required_blink_count == 1
    assert wind.shake_angle_threshold == 18.0
    assert wind.confirmation_timeout == 2.0

    plucked = default_profile(InstrumentType.PLUCKED_STRINGS)
    assert plucked.is_head_shake_only
    assert (plucked.shake_angle_threshold, plucked.shake_duration, plucked.shake_cooldown) == (35.0, 0.5, 0.8)

    for inst in (InstrumentType.KEYBOARD, InstrumentType.PERCUSSION, InstrumentType.VOCAL):
        assert default_profile(inst).is_head_shake_only

    custom = default_profile(InstrumentType.CUSTOM)
    assert custom.enable_blink and custom.enable_head_shake and not custom.is_hybrid
    assert not custom.enable_long_blink


def test_all_defaults_validate():
    profiles = default_profiles()
    assert set(profiles) == set(InstrumentType)
    for p in profiles.values():
        assert p.validate() is p


def test_parse_instrument():
    assert InstrumentType.parse(" Keyboard ") is InstrumentType.KEYBOARD
    with pytest.raises(ValueError):
        InstrumentType.parse("theremin")
    assert InstrumentType.WOODWIND_BRASS.display_name == "Woodwind/Brass"


@pytest.mark.parametrize(
    "instrument, changes",
    [
        (InstrumentType.STRING_INSTRUMENTS, {"blink_time_window": 0.1}),
        (InstrumentType.STRING_INSTRUMENTS, {"required_blink_count": 0}),
        (InstrumentType.STRING_INSTRUMENTS, {"min_blink_duration": 0.0}),
        (InstrumentType.KEYBOARD, {"shake_angle_threshold": 95.0}),
        (InstrumentType.KEYBOARD, {"shake_duration": 0.0}),
        (InstrumentType.KEYBOARD, {"shake_cooldown": -1.0}),
        (InstrumentType.WOODWIND_BRASS, {"confirmation_timeout": 0.0}),
        (InstrumentType.CUSTOM, {"enable_blink": False, "enable_head_shake": False}),
    ],
)
def test_validation_rejects(instrument, changes):
    with pytest.raises(ProfileValidationError):
        default_profile(instrument).with_changes(**changes).validate()


def test_zero_cooldown_is_allowed():
    default_profile(InstrumentType.KEYBOARD).with_changes(shake_cooldown=0.0).validate()


def test_dict_round_trip_and_partial_dict():
    p = default_profile(InstrumentType.WOODWIND_BRASS).with_changes(confirmation_timeout=3.5)
    data = p.to_dict()
    assert data["instrument"] == "woodwind_brass"
    assert GestureProfile.from_dict(data) == p

    partial = GestureProfile.from_dict({"instrument": "plucked_strings", "shake_cooldown": 1.2, "unknown": 1})
    assert partial.shake_cooldown == 1.2
    assert partial.shake_angle_threshold == 35.0


def test_from_dict_errors():
    with pytest.raises(ProfileValidationError):
        GestureProfile.from_dict({"enable_blink": True})
    with pytest.raises(ProfileValidationError):
        GestureProfile.from_dict({"instrument": "keyboard", "shake_duration": "slow"})


def test_describe_lists_enabled_gestures():
    text = default_profile(InstrumentType.WOODWIND_BRASS).describe()
    assert "Blink" in text and "Head shake" in text and "Confirmation" in text
    assert "Head shake" not in default_profile(InstrumentType.STRING_INSTRUMENTS).describe()
