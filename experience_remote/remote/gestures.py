"""Tap, double-tap, two-finger-tap and long-press recognition.

One recognizer follows one touch surface through an explicit state
machine. Every timer it starts is held in a handle and cancelled by the
transition that makes it obsolete.

    IDLE --start--> DOWN --moved > 10--> MOVING --end--> IDLE
                     |
                     +--quick release--> TAP_PENDING --300 ms--> tap, IDLE
                                              |
                                              +--second quick tap--> double_tap, IDLE
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Protocol

from ..events import Subscribers
from .motion import MotionSample

logger = logging.getLogger("remote.gestures")

TAP_MAX_DISTANCE = 10
TAP_MAX_DURATION_MS = 200
DOUBLE_TAP_WINDOW_MS = 300
LONG_PRESS_MS = 500


class Gesture(str, Enum):
    TAP = "tap"
    DOUBLE_TAP = "double_tap"
    TWO_FINGER_TAP = "two_finger_tap"
    LONG_PRESS = "long_press"


class GestureState(str, Enum):
    IDLE = "idle"
    DOWN = "down"
    MOVING = "moving"
    TAP_PENDING = "tap_pending"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopScheduler:
    """Schedules on the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class GestureRecognizer:
    def __init__(self, scheduler: Optional[Scheduler] = None, defer_single_tap: bool = True):
        self.scheduler = scheduler or LoopScheduler()
        # With defer_single_tap=False a tap is emitted on release and a
        # quick second tap emits double_tap in addition.
        self.defer_single_tap = defer_single_tap
        self.state = GestureState.IDLE

        self._start: Optional[MotionSample] = None
        self._touch_count = 0
        self._count_stable = True
        self._moved = False
        self._last_tap_ms: Optional[float] = None
        self._long_press: Optional[TimerHandle] = None
        self._pending_tap: Optional[TimerHandle] = None
        self._gestures = Subscribers("remote.gestures")

    def on_gesture(self, callback: Callable[[Gesture], object]) -> Callable[[], None]:
        return self._gestures.subscribe(callback)

    def _emit(self, gesture: Gesture):
        logger.debug(f"Gesture: {gesture.value}")
        self._gestures.emit(gesture)

    def touch_start(self, sample: MotionSample):
        self._cancel_long_press()
        self._start = sample
        self._touch_count = sample.touch_count
        self._count_stable = True
        self._moved = False
        self.state = GestureState.DOWN
        if sample.touch_count == 1:
            self._long_press = self.scheduler.call_later(LONG_PRESS_MS / 1000, self._fire_long_press)

    def touch_move(self, sample: MotionSample):
        if self._start is None:
            return
        if sample.touch_count != self._touch_count:
            self._count_stable = False
        if (abs(sample.x - self._start.x) > TAP_MAX_DISTANCE
                or abs(sample.y - self._start.y) > TAP_MAX_DISTANCE):
            self._moved = True
            self._cancel_long_press()
            self.state = GestureState.MOVING

    def touch_end(self, timestamp_ms: float):
        self._cancel_long_press()
        start, self._start = self._start, None
        if start is None:
            return

        quick = timestamp_ms - start.timestamp_ms < TAP_MAX_DURATION_MS
        if self._moved or not quick:
            self.state = GestureState.TAP_PENDING if self._pending_tap else GestureState.IDLE
            return

        if self._touch_count == 2 and self._count_stable:
            self._emit(Gesture.TWO_FINGER_TAP)
            self.state = GestureState.TAP_PENDING if self._pending_tap else GestureState.IDLE
        elif self._touch_count == 1:
            self._single_tap(timestamp_ms)
        else:
            self.state = GestureState.TAP_PENDING if self._pending_tap else GestureState.IDLE

    def _single_tap(self, now_ms: float):
        second = self._last_tap_ms is not None and now_ms - self._last_tap_ms < DOUBLE_TAP_WINDOW_MS
        if second:
            self._cancel_pending_tap()
            self._last_tap_ms = None
            self.state = GestureState.IDLE
            self._emit(Gesture.DOUBLE_TAP)
            return

        self._last_tap_ms = now_ms
        if self.defer_single_tap:
            self._cancel_pending_tap()
            self._pending_tap = self.scheduler.call_later(DOUBLE_TAP_WINDOW_MS / 1000, self._fire_pending_tap)
            self.state = GestureState.TAP_PENDING
        else:
            self.state = GestureState.IDLE
            self._emit(Gesture.TAP)

    def _fire_pending_tap(self):
        self._pending_tap = None
        self._last_tap_ms = None
        if self.state == GestureState.TAP_PENDING:
            self.state = GestureState.IDLE
        self._emit(Gesture.TAP)

    def _fire_long_press(self):
        self._long_press = None
        if self._start is not None and not self._moved:
            self._emit(Gesture.LONG_PRESS)

    def _cancel_long_press(self):
        if self._long_press is not None:
            self._long_press.cancel()
            self._long_press = None

    def _cancel_pending_tap(self):
        if self._pending_tap is not None:
            self._pending_tap.cancel()
            self._pending_tap = None

    def reset(self):
        """Drop the current touch and any pending timers."""
        self._cancel_long_press()
        self._cancel_pending_tap()
        self._start = None
        self._last_tap_ms = None
        self.state = GestureState.IDLE
