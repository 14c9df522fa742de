"""
Shared pytest fixtures for Experience Remote tests.

Provides:
- Isolated settings directory (no reads from the real home directory)
- Controllable clock and timer scheduler
- Recording input/trigger sinks
- Registry and channel fixtures
"""

import os
import tempfile

os.environ.setdefault("EXPERIENCE_REMOTE_HOME", tempfile.mkdtemp(prefix="experience-remote-test-"))

import pytest

from experience_remote.relay.channel import RelayChannel
from experience_remote.relay.rooms import RoomRegistry


class FakeClock:
    """Manually advanced wall clock (seconds)."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeTimer:
    def __init__(self, when: float, callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """call_later() scheduler driven by advance() instead of real time."""

    def __init__(self):
        self.now = 0.0
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float):
        target = self.now + seconds
        while True:
            due = sorted(
                (t for t in self.pending if t.when <= target),
                key=lambda t: t.when,
            )
            if not due:
                break
            timer = due[0]
            self.timers.remove(timer)
            self.now = timer.when
            timer.callback()
        self.now = target


class RecordingInputSink:
    """Input sink that records every call as (method, *args)."""

    def __init__(self):
        self.calls = []

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)

        def record(*args):
            self.calls.append((name, *args))

        return record


class RecordingTriggerSink:
    def __init__(self):
        self.sent = []

    def send_trigger(self, address, args=()):
        self.sent.append((address, list(args)))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def registry(clock):
    return RoomRegistry(clock=clock)


@pytest.fixture
def channel(registry):
    return RelayChannel(registry)


@pytest.fixture
def input_sink():
    return RecordingInputSink()


@pytest.fixture
def trigger_sink():
    return RecordingTriggerSink()
