"""
Adaptive threshold table.

Mechanics:
- One AdaptiveThreshold per gesture type, holding a base value and a map of
  per-context values keyed by CalibrationContext.key.
- Updates merge into the stored value with exponential smoothing:
  stored = stored * (1 - rate) + new * rate, or stored = new when absent.
- ThresholdStore serializes writers with a lock (read-modify-write through
  update) and publishes an immutable snapshot after every write, so
  per-frame readers never block.
"""
from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple


class AdaptiveThreshold:
    def __init__(self, base_value: float, learning_rate: float = 0.1) -> None:
        self.base_value = float(base_value)
        self.learning_rate = float(learning_rate)
        self.per_context: Dict[str, float] = {}

    def get(self, context_key: str) -> Optional[float]:
        return self.per_context.get(context_key)

    def merge(self, context_key: str, new_value: float) -> float:
        existing = self.per_context.get(context_key)
        if existing is None:
            merged = float(new_value)
        else:
            rate = self.learning_rate
            merged = existing * (1.0 - rate) + float(new_value) * rate
        self.per_context[context_key] = merged
        return merged

    def clear(self) -> None:
        self.per_context.clear()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base": self.base_value,
            "learning_rate": self.learning_rate,
            "contexts": dict(self.per_context),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], default_base: float, default_rate: float) -> "AdaptiveThreshold":
        inst = cls(float(data.get("base", default_base)), float(data.get("learning_rate", default_rate)))
        contexts = data.get("contexts", {})
        if isinstance(contexts, dict):
            for k, v in contexts.items():
                try:
                    inst.per_context[str(k)] = float(v)
                except (TypeError, ValueError):
                    continue
        return inst

    def __repr__(self) -> str:
        return f"AdaptiveThreshold(base={self.base_value}, contexts={len(self.per_context)})"


# Snapshot shape: {gesture_type: {context_key: value}}
Snapshot = Mapping[str, Mapping[str, float]]


class ThresholdStore:
    def __init__(self, base_values: Mapping[str, float], learning_rate: float = 0.1) -> None:
        self.learning_rate = float(learning_rate)
        self._lock = threading.Lock()
        self._thresholds: Dict[str, AdaptiveThreshold] = {
            g: AdaptiveThreshold(v, self.learning_rate) for g, v in base_values.items()
        }
        self._default_base = 0.5
        self._dirty = False
        self._snapshot: Snapshot = MappingProxyType({})
        self._publish()

    # Readers (lock-free) -------------------------------------------------
    def snapshot(self) -> Snapshot:
        return self._snapshot

    def stored(self, gesture_type: str, context_key: str) -> Optional[float]:
        return self._snapshot.get(gesture_type, {}).get(context_key)

    def base_value(self, gesture_type: str) -> float:
        th = self._thresholds.get(gesture_type)
        return th.base_value if th is not None else self._default_base

    @property
    def dirty(self) -> bool:
        return self._dirty

    # Writers -------------------------------------------------------------
    def merge(self, gesture_type: str, context_key: str, new_value: float) -> float:
        with self._lock:
            th = self._ensure(gesture_type)
            merged = th.merge(context_key, new_value)
            self._dirty = True
            self._publish()
        return merged

    def update(self, gesture_type: str, context_key: str, compute: Callable[[], float]) -> Tuple[float, float]:
        """Merge ``compute()`` into the stored value under the writer lock.

        ``compute`` runs with the lock held, so a lookup it performs through
        the snapshot sees every earlier write to the same key. Returns the
        computed value and the value stored after the merge.
        """
        with self._lock:
            value = float(compute())
            th = self._ensure(gesture_type)
            merged = th.merge(context_key, value)
            self._dirty = True
            self._publish()
        return value, merged

    def set(self, gesture_type: str, context_key: str, value: float) -> float:
        """Replace the stored value outright (seeding and restores)."""
        with self._lock:
            th = self._ensure(gesture_type)
            th.per_context[context_key] = float(value)
            self._dirty = True
            self._publish()
        return float(value)

    def clear(self, gesture_type: Optional[str] = None) -> None:
        with self._lock:
            if gesture_type is None:
                for th in self._thresholds.values():
                    th.clear()
            elif gesture_type in self._thresholds:
                self._thresholds[gesture_type].clear()
            self._dirty = True
            self._publish()

    def mark_clean(self) -> None:
        self._dirty = False

    # Persistence ---------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {g: th.to_dict() for g, th in self._thresholds.items()}

    def load_dict(self, data: Mapping[str, Any]) -> None:
        with self._lock:
            for g, entry in data.items():
                if not isinstance(entry, dict):
                    continue
                existing = self._thresholds.get(g)
                base = existing.base_value if existing is not None else self._default_base
                self._thresholds[g] = AdaptiveThreshold.from_dict(entry, base, self.learning_rate)
            self._publish()

    # Internals -----------------------------------------------------------
    def _ensure(self, gesture_type: str) -> AdaptiveThreshold:
        th = self._thresholds.get(gesture_type)
        if th is None:
            th = AdaptiveThreshold(self._default_base, self.learning_rate)
            self._thresholds[gesture_type] = th
        return th

    def _publish(self) -> None:
        # Called with the lock held; a fresh mapping replaces the old one atomically.
        self._snapshot = MappingProxyType(
            {g: MappingProxyType(dict(th.per_context)) for g, th in self._thresholds.items()}
        )
