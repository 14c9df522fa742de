"""Apply relay messages from the phone to the input and trigger sinks."""

import logging
from typing import Optional, assert_never

from pydantic import ValidationError

from ..errors import InputSinkFailure, SinkError, UnknownMessageTag
from ..messages import (
    Click, Gyro, GyroCalibrate, Key, Media, MouseDown, MouseMove, MouseUp,
    Navigate, OscTrigger, Ping, Pong, RelayMessage, Scroll, Text, parse_message,
)
from .sinks import InputSink, TriggerSink

logger = logging.getLogger("desktop.dispatch")


def media_address(action: str) -> str:
    return f"/remote/media/{action}"


def trigger_address(trigger: int) -> str:
    return f"/remote/osc/{trigger}"


class Dispatcher:
    """Routes each relay message to exactly one sink call.

    Every failure (unknown tag, malformed fields, sink error) is logged
    and confined to the message that caused it.
    """

    def __init__(self, input_sink: Optional[InputSink], trigger_sink: Optional[TriggerSink]):
        self.input_sink = input_sink
        self.trigger_sink = trigger_sink
        self.handled = 0
        self.dropped = 0

    def dispatch(self, data) -> bool:
        """Apply one decoded message. Returns True if a sink accepted it."""
        try:
            message = parse_message(data)
        except UnknownMessageTag as e:
            logger.info(f"Ignoring message: {e}")
            self.dropped += 1
            return False
        except ValidationError as e:
            logger.warning(f"Malformed {data.get('type')} message ({e.error_count()} errors)")
            self.dropped += 1
            return False

        try:
            self.apply(message)
        except SinkError as e:
            logger.warning(f"Error handling {message.type}: {e}")
            self.dropped += 1
            return False
        except Exception as e:
            logger.error(f"Unexpected error handling {message.type}: {e}")
            self.dropped += 1
            return False

        self.handled += 1
        return True

    def apply(self, message: RelayMessage):
        match message:
            case MouseMove(dx=dx, dy=dy) | Gyro(dx=dx, dy=dy):
                self._input().move_cursor(dx, dy)
            case Click(button=button):
                self._input().click(button)
            case MouseDown(button=button):
                self._input().mouse_down(button)
            case MouseUp(button=button):
                self._input().mouse_up(button)
            case Scroll(dx=dx, dy=dy):
                self._input().scroll(dx, dy)
            case Key(key=key, action="down"):
                self._input().key_down(key)
            case Key(key=key, action="up"):
                self._input().key_up(key)
            case Key(key=key):
                self._input().press_key(key)
            case Text(text=text):
                self._input().type_text(text)
            case Navigate(direction=direction):
                self._input().press_key(f"Arrow{direction.title()}")
            case Media(action=action):
                # value is not forwarded
                self._trigger(media_address(action), [])
            case OscTrigger(trigger=trigger, address=address):
                self._trigger(address or trigger_address(trigger), [])
            case GyroCalibrate():
                # Calibration happens on the phone
                logger.debug("Gyro calibrated on remote")
            case Ping() | Pong():
                logger.debug(f"{message.type} {message.timestamp}")
            case _:
                assert_never(message)

    def _input(self) -> InputSink:
        if self.input_sink is None:
            raise InputSinkFailure("No input sink available")
        return self.input_sink

    def _trigger(self, address: str, args: list):
        if self.trigger_sink is None:
            logger.info(f"No trigger sink; dropped {address}")
            return
        self.trigger_sink.send_trigger(address, args)
