"""
Instrument types and per-instrument gesture profiles.

A GestureProfile is an immutable snapshot of every tunable the detectors and
the coordinator need. Defaults per instrument:

- string_instruments: blink only (double blink = next page)
- woodwind_brass: hybrid (slight head shake + single blink confirmation)
- keyboard / percussion / vocal: head shake only
- plucked_strings: head shake only with a higher angle and longer hold
- custom: everything enabled, no confirmation
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any, Dict


class ProfileValidationError(ValueError):
    """Raised when a profile cannot be loaded or swapped in."""


class InstrumentType(str, Enum):
    STRING_INSTRUMENTS = "string_instruments"
    WOODWIND_BRASS = "woodwind_brass"
    KEYBOARD = "keyboard"
    PLUCKED_STRINGS = "plucked_strings"
    PERCUSSION = "percussion"
    VOCAL = "vocal"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Any) -> "InstrumentType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown instrument type: {value!r}") from None

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def control_description(self) -> str:
        return _CONTROL_DESCRIPTIONS[self]


_DISPLAY_NAMES = {
    InstrumentType.STRING_INSTRUMENTS: "String Instruments",
    InstrumentType.WOODWIND_BRASS: "Woodwind/Brass",
    InstrumentType.KEYBOARD: "Keyboard",
    InstrumentType.PLUCKED_STRINGS: "Plucked Strings",
    InstrumentType.PERCUSSION: "Percussion",
    InstrumentType.VOCAL: "Vocal",
    InstrumentType.CUSTOM: "Custom",
}

_CONTROL_DESCRIPTIONS = {
    InstrumentType.STRING_INSTRUMENTS: "Blink: double blink = next page",
    InstrumentType.WOODWIND_BRASS: "Hybrid: slight head shake + blink confirmation",
    InstrumentType.KEYBOARD: "Head shake: left = previous, right = next",
    InstrumentType.PLUCKED_STRINGS: "Head shake: deliberate slow shake (avoid false triggers)",
    InstrumentType.PERCUSSION: "User choice: head shake or blink",
    InstrumentType.VOCAL: "Head shake: clear left/right shake",
    InstrumentType.CUSTOM: "Fully customizable",
}


@dataclass(frozen=True)
class GestureProfile:
    instrument: InstrumentType
    enable_blink: bool
    enable_head_shake: bool
    require_confirmation: bool = False
    # blink
    blink_threshold: float = 0.03
    blink_time_window: float = 0.5    # s, max gap between closures of one pattern
    min_blink_duration: float = 0.1   # s, closures closer than this are one closure
    required_blink_count: int = 2
    long_blink_duration: float = 0.5
    enable_long_blink: bool = False
    # head shake
    shake_angle_threshold: float = 30.0  # degrees
    shake_duration: float = 0.3
    shake_cooldown: float = 0.5
    # hybrid
    confirmation_timeout: float = 2.0

    @property
    def is_hybrid(self) -> bool:
        return self.enable_blink and self.enable_head_shake and self.require_confirmation

    @property
    def is_blink_only(self) -> bool:
        return self.enable_blink and not self.enable_head_shake

    @property
    def is_head_shake_only(self) -> bool:
        return self.enable_head_shake and not self.enable_blink

    def with_changes(self, **changes: Any) -> "GestureProfile":
        return replace(self, **changes)

    def validate(self) -> "GestureProfile":
        """Return self, or raise ProfileValidationError describing the first problem."""
        problems = []
        if not (self.enable_blink or self.enable_head_shake):
            problems.append("at least one of blink or head shake must be enabled")
        if self.enable_blink:
            if self.min_blink_duration <= 0:
                problems.append("min_blink_duration must be > 0")
            if self.blink_time_window <= self.min_blink_duration:
                problems.append("blink_time_window must be larger than min_blink_duration")
            if self.required_blink_count < 1:
                problems.append("required_blink_count must be >= 1")
            if self.long_blink_duration <= 0:
                problems.append("long_blink_duration must be > 0")
        if self.enable_head_shake:
            if not (0.0 < self.shake_angle_threshold < 90.0):
                problems.append("shake_angle_threshold must be within (0, 90) degrees")
            if self.shake_duration <= 0:
                problems.append("shake_duration must be > 0")
            if self.shake_cooldown < 0:
                problems.append("shake_cooldown must be >= 0")
        if self.is_hybrid and self.confirmation_timeout <= 0:
            problems.append("confirmation_timeout must be > 0 in a hybrid profile")
        if problems:
            raise ProfileValidationError(f"Invalid {self.instrument.value} profile: " + "; ".join(problems))
        return self

    # Serialization ------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["instrument"] = self.instrument.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GestureProfile":
        """Build a profile from a flat mapping, filling gaps from the instrument default."""
        if "instrument" not in data:
            raise ProfileValidationError("profile mapping has no 'instrument' key")
        instrument = InstrumentType.parse(data["instrument"])
        base = default_profile(instrument).to_dict()
        known = {f.name for f in fields(cls)}
        for k, v in data.items():
            if k in known and k != "instrument":
                base[k] = v
        try:
            return cls(
                instrument=instrument,
                enable_blink=bool(base["enable_blink"]),
                enable_head_shake=bool(base["enable_head_shake"]),
                require_confirmation=bool(base["require_confirmation"]),
                blink_threshold=float(base["blink_threshold"]),
                blink_time_window=float(base["blink_time_window"]),
                min_blink_duration=float(base["min_blink_duration"]),
                required_blink_count=int(base["required_blink_count"]),
                long_blink_duration=float(base["long_blink_duration"]),
                enable_long_blink=bool(base["enable_long_blink"]),
                shake_angle_threshold=float(base["shake_angle_threshold"]),
                shake_duration=float(base["shake_duration"]),
                shake_cooldown=float(base["shake_cooldown"]),
                confirmation_timeout=float(base["confirmation_timeout"]),
            )
        except (TypeError, ValueError) as e:
            raise ProfileValidationError(f"Malformed {instrument.value} profile: {e}") from e

    def describe(self) -> str:
        lines = [f"Instrument: {self.instrument.display_name}"]
        if self.enable_blink:
            lines.append(
                f"Blink: count={self.required_blink_count} window={self.blink_time_window:.2f}s "
                f"min={self.min_blink_duration:.2f}s"
            )
        if self.enable_head_shake:
            lines.append(
                f"Head shake: angle={self.shake_angle_threshold:.1f}deg hold={self.shake_duration:.2f}s "
                f"cooldown={self.shake_cooldown:.2f}s"
            )
        if self.require_confirmation:
            lines.append(f"Confirmation timeout: {self.confirmation_timeout:.2f}s")
        return "\n".join(lines)


def default_profile(instrument: Any) -> GestureProfile:
    inst = InstrumentType.parse(instrument)
    if inst is InstrumentType.STRING_INSTRUMENTS:
        return GestureProfile(inst, enable_blink=True, enable_head_shake=False, required_blink_count=2)
    if inst is InstrumentType.WOODWIND_BRASS:
        return GestureProfile(
            inst,
            enable_blink=True,
            enable_head_shake=True,
            require_confirmation=True,
            required_blink_count=1,
            shake_angle_threshold=18.0,
            confirmation_timeout=2.0,
        )
    if inst is InstrumentType.PLUCKED_STRINGS:
        return GestureProfile(
            inst,
            enable_blink=False,
            enable_head_shake=True,
            shake_angle_threshold=35.0,
            shake_duration=0.5,
            shake_cooldown=0.8,
        )
    if inst is InstrumentType.CUSTOM:
        return GestureProfile(inst, enable_blink=True, enable_head_shake=True)
    # keyboard, percussion, vocal
    return GestureProfile(inst, enable_blink=False, enable_head_shake=True)


def default_profiles() -> Dict[InstrumentType, GestureProfile]:
    return {inst: default_profile(inst) for inst in InstrumentType}
