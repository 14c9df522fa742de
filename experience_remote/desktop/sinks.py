"""Input and trigger sinks: where dispatched relay messages end up."""

import logging
import math
from typing import Protocol, Sequence

from pythonosc.udp_client import SimpleUDPClient

from .. import config
from ..errors import InputSinkFailure, TriggerSinkFailure

logger = logging.getLogger("desktop.sinks")


class InputSink(Protocol):
    def move_cursor(self, dx: float, dy: float) -> None: ...
    def click(self, button: str) -> None: ...
    def mouse_down(self, button: str) -> None: ...
    def mouse_up(self, button: str) -> None: ...
    def scroll(self, dx: float, dy: float) -> None: ...
    def press_key(self, key: str) -> None: ...
    def key_down(self, key: str) -> None: ...
    def key_up(self, key: str) -> None: ...
    def type_text(self, text: str) -> None: ...


class TriggerSink(Protocol):
    def send_trigger(self, address: str, args: Sequence = ()) -> None: ...


# Browser KeyboardEvent.key names -> pyautogui key names
KEY_MAP = {
    "Enter": "enter",
    "Backspace": "backspace",
    "Tab": "tab",
    "Escape": "esc",
    " ": "space",
    "Space": "space",
    "ArrowUp": "up",
    "ArrowDown": "down",
    "ArrowLeft": "left",
    "ArrowRight": "right",
    "Delete": "delete",
    "Home": "home",
    "End": "end",
    "PageUp": "pageup",
    "PageDown": "pagedown",
    "Shift": "shift",
    "Control": "ctrl",
    "Alt": "alt",
    "Meta": "command",
}


def map_key(key: str):
    """Translate a browser key name, or None if it has no desktop equivalent."""
    if key in KEY_MAP:
        return KEY_MAP[key]
    if len(key) == 1 and key.isalnum():
        return key.lower()
    if len(key) >= 2 and key[0] == "F" and key[1:].isdigit():
        return key.lower()
    return None


class PyAutoGUIInputSink:
    """Replays motion and key commands as real OS input through pyautogui.

    Cursor deltas arrive as floats; fractions are carried over between
    calls so slow motion still adds up to whole pixels.
    """

    def __init__(self):
        # Importing pyautogui needs a display, so it happens at construction
        import pyautogui

        pyautogui.FAILSAFE = False
        pyautogui.MINIMUM_DURATION = 0
        pyautogui.MINIMUM_SLEEP = 0
        pyautogui.PAUSE = 0
        self._gui = pyautogui
        self._carry_x = 0.0
        self._carry_y = 0.0

    def move_cursor(self, dx: float, dy: float):
        self._carry_x += dx
        self._carry_y += dy
        step_x = math.trunc(self._carry_x)
        step_y = math.trunc(self._carry_y)
        if not step_x and not step_y:
            return
        self._carry_x -= step_x
        self._carry_y -= step_y
        self._call("moveRel", step_x, step_y, duration=0)

    def click(self, button: str):
        self._call("click", button=button)

    def mouse_down(self, button: str):
        self._call("mouseDown", button=button)

    def mouse_up(self, button: str):
        self._call("mouseUp", button=button)

    def scroll(self, dx: float, dy: float):
        # Dominant axis only; positive dy scrolls down, pyautogui's positive is up
        if abs(dy) > abs(dx):
            clicks = round(dy)
            if clicks:
                self._call("scroll", -clicks)
        else:
            clicks = round(dx)
            if clicks:
                self._call("hscroll", clicks)

    def press_key(self, key: str):
        name = map_key(key)
        if name is None:
            logger.info(f"No desktop key for {key!r}")
            return
        self._call("press", name)

    def key_down(self, key: str):
        name = map_key(key)
        if name is not None:
            self._call("keyDown", name)

    def key_up(self, key: str):
        name = map_key(key)
        if name is not None:
            self._call("keyUp", name)

    def type_text(self, text: str):
        self._call("write", text)

    def _call(self, method: str, *args, **kwargs):
        try:
            getattr(self._gui, method)(*args, **kwargs)
        except Exception as e:
            raise InputSinkFailure(f"pyautogui.{method} failed: {e}") from e


class NullInputSink:
    """Logs input commands instead of performing them (headless runs)."""

    def _log(self, action: str, *args):
        logger.debug(f"input {action}{args}")

    def move_cursor(self, dx, dy):
        self._log("move_cursor", dx, dy)

    def click(self, button):
        self._log("click", button)

    def mouse_down(self, button):
        self._log("mouse_down", button)

    def mouse_up(self, button):
        self._log("mouse_up", button)

    def scroll(self, dx, dy):
        self._log("scroll", dx, dy)

    def press_key(self, key):
        self._log("press_key", key)

    def key_down(self, key):
        self._log("key_down", key)

    def key_up(self, key):
        self._log("key_up", key)

    def type_text(self, text):
        self._log("type_text", text)


class OscTriggerSink:
    """Sends OSC messages over UDP to a controller application."""

    def __init__(self, host: str = None, port: int = None):
        self.host = host or config.get_setting("osc_host")
        self.port = int(port or config.get_setting("osc_port"))
        self._client = SimpleUDPClient(self.host, self.port)
        logger.info(f"OSC client configured for {self.host}:{self.port}")

    def update_settings(self, host: str, port: int):
        self._client = SimpleUDPClient(host, int(port))
        self.host, self.port = host, int(port)
        logger.info(f"OSC settings updated: {host}:{port}")

    def send_trigger(self, address: str, args: Sequence = ()):
        try:
            self._client.send_message(address, list(args))
        except OSError as e:
            raise TriggerSinkFailure(f"OSC send to {self.host}:{self.port} failed: {e}") from e
        logger.debug(f"OSC sent: {address} {list(args)}")
