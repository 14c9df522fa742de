"""Trackpad surface: touch and orientation input to relay messages."""

from typing import Callable, Optional

from pydantic import BaseModel

from ..events import Subscribers
from ..messages import Click, Gyro, MouseDown, MouseMove, MouseUp, Scroll
from .gestures import Gesture, GestureRecognizer, Scheduler
from .gyro import GyroFilter, Orientation
from .motion import MotionFilter, MotionSample


class Trackpad:
    """Feeds touch samples through the motion filter and gesture recognizer.

    Emitted messages go to on_message subscribers, typically
    ClientSession.send. Tap is a left click and two-finger tap a right
    click. A long press holds the left button until the finger lifts, so
    moving after it drags.
    """

    def __init__(self, sensitivity: float = 1.0, scheduler: Optional[Scheduler] = None,
                 defer_single_tap: bool = True):
        self.motion = MotionFilter(sensitivity=sensitivity)
        self.gestures = GestureRecognizer(scheduler=scheduler, defer_single_tap=defer_single_tap)
        self.gyro = GyroFilter(sensitivity=sensitivity)
        self.gyro_enabled = False
        self.dragging = False
        self._messages = Subscribers("remote.trackpad")
        self.gestures.on_gesture(self._on_gesture)

    def on_message(self, callback: Callable[[BaseModel], object]) -> Callable[[], None]:
        return self._messages.subscribe(callback)

    def touch_start(self, sample: MotionSample):
        self.motion.start(sample)
        self.gestures.touch_start(sample)

    def touch_move(self, sample: MotionSample):
        motion = self.motion.filter_move(sample)
        self.gestures.touch_move(sample)
        if motion is None:
            return
        if motion.kind == "scroll":
            self._messages.emit(Scroll(type="scroll", dx=motion.dx, dy=motion.dy))
        else:
            self._messages.emit(MouseMove(type="mouse_move", dx=motion.dx, dy=motion.dy))

    def touch_end(self, timestamp_ms: float):
        self.motion.end()
        self.gestures.touch_end(timestamp_ms)
        if self.dragging:
            self.dragging = False
            self._messages.emit(MouseUp(type="mouse_up", button="left"))

    def orientation(self, reading: Orientation):
        if not self.gyro_enabled:
            return
        delta = self.gyro.update(reading)
        if delta is not None:
            self._messages.emit(Gyro(type="gyro", dx=delta[0], dy=delta[1]))

    def _on_gesture(self, gesture: Gesture):
        if gesture == Gesture.TAP:
            self._messages.emit(Click(type="click", button="left"))
        elif gesture == Gesture.DOUBLE_TAP:
            self._messages.emit(Click(type="click", button="left"))
            self._messages.emit(Click(type="click", button="left"))
        elif gesture == Gesture.TWO_FINGER_TAP:
            self._messages.emit(Click(type="click", button="right"))
        elif gesture == Gesture.LONG_PRESS:
            self.dragging = True
            self._messages.emit(MouseDown(type="mouse_down", button="left"))
