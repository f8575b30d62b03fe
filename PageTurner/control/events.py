"""
Events emitted by the gesture core, and sinks that deliver them.

Events are plain dataclasses; a sink is any callable taking one event.
- EventChannel: thread-safe buffer the host drains on its own thread.
- DelegateSink: forwards each event to an on_* method of a delegate object.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, List, Optional, Union

logger = logging.getLogger(__name__)


class NavigationDirection(str, Enum):
    NEXT = "next"
    PREVIOUS = "previous"


class GestureSource(str, Enum):
    BLINK = "blink"
    HEAD_SHAKE = "head_shake"
    HYBRID = "hybrid"


@dataclass(frozen=True)
class NavigationEvent:
    direction: NavigationDirection
    source: GestureSource


@dataclass(frozen=True)
class WaitingForConfirmation:
    direction: NavigationDirection


@dataclass(frozen=True)
class ConfirmationTimeout:
    pass


@dataclass(frozen=True)
class CalibrationCompleted:
    gesture_type: str
    recommended_threshold: float
    confidence: float


GestureEvent = Union[NavigationEvent, WaitingForConfirmation, ConfirmationTimeout, CalibrationCompleted]
EventSink = Callable[[GestureEvent], None]


def deliver(sink: Optional[EventSink], event: GestureEvent) -> bool:
    """Send an event to a sink; returns False if it was dropped.

    A missing sink drops the event. A failing sink is logged and does not
    propagate into the caller's frame loop.
    """
    if sink is None:
        logger.debug(f"No event sink registered, dropping {event}")
        return False
    try:
        sink(event)
    except Exception:
        logger.exception(f"Event sink failed while handling {event}")
        return False
    return True


class EventChannel:
    def __init__(self, maxlen: int = 256) -> None:
        self._events: Deque[GestureEvent] = deque(maxlen=max(1, int(maxlen)))
        self._lock = threading.Lock()

    def __call__(self, event: GestureEvent) -> None:
        with self._lock:
            self._events.append(event)

    def drain(self) -> List[GestureEvent]:
        with self._lock:
            out = list(self._events)
            self._events.clear()
        return out

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class DelegateSink:
    """Adapter for delegate-style consumers.

    The delegate may implement any subset of:
      on_navigation_event(direction, source)
      on_waiting_for_confirmation(direction)
      on_confirmation_timeout()
      on_calibration_completed(gesture_type, recommended_threshold, confidence)
    """

    def __init__(self, delegate: Any) -> None:
        self.delegate = delegate

    def __call__(self, event: GestureEvent) -> None:
        d = self.delegate
        if isinstance(event, NavigationEvent):
            fn = getattr(d, "on_navigation_event", None)
            if fn is not None:
                fn(event.direction, event.source)
        elif isinstance(event, WaitingForConfirmation):
            fn = getattr(d, "on_waiting_for_confirmation", None)
            if fn is not None:
                fn(event.direction)
        elif isinstance(event, ConfirmationTimeout):
            fn = getattr(d, "on_confirmation_timeout", None)
            if fn is not None:
                fn()
        elif isinstance(event, CalibrationCompleted):
            fn = getattr(d, "on_calibration_completed", None)
            if fn is not None:
                fn(event.gesture_type, event.recommended_threshold, event.confidence)
