"""Touch motion filtering: dead zone, velocity smoothing and pointer acceleration."""

import math
from collections import deque
from dataclasses import dataclass
from typing import Literal, Optional

# Raw displacement below this is treated as jitter
MOVEMENT_DEAD_ZONE = 0.5
VELOCITY_HISTORY_SIZE = 3
SCROLL_FACTOR = 0.5


@dataclass(frozen=True)
class AccelerationConfig:
    """Pointer ballistics curve. Velocities are in units per millisecond."""

    # Below this, precision mode
    min_velocity_threshold: float = 0.15
    # Above this, the curve saturates at max_acceleration
    max_velocity: float = 1.5
    curve_exponent: float = 1.2
    base_multiplier: float = 1.0
    max_acceleration: float = 2.2


DEFAULT_ACCELERATION = AccelerationConfig()


def calculate_acceleration(velocity: float, config: AccelerationConfig = DEFAULT_ACCELERATION) -> float:
    """Map a smoothed velocity magnitude to a delta multiplier.

    Slow motion gets a damped multiplier for precision. Above the threshold
    the velocity is normalized into [0, 1], shaped by the curve exponent
    and interpolated between base_multiplier and max_acceleration.
    """
    if velocity < config.min_velocity_threshold:
        return config.base_multiplier * 0.8

    normalized = min(
        (velocity - config.min_velocity_threshold) / (config.max_velocity - config.min_velocity_threshold),
        1.0,
    )
    curved = normalized ** config.curve_exponent
    return config.base_multiplier + curved * (config.max_acceleration - config.base_multiplier)


@dataclass(frozen=True)
class MotionSample:
    x: float
    y: float
    timestamp_ms: float
    touch_count: int = 1


@dataclass(frozen=True)
class Motion:
    kind: Literal["move", "scroll"]
    dx: float
    dy: float


class MotionFilter:
    """Turns the samples of one touch gesture into cursor or scroll deltas.

    Call start() on touch-start, filter_move() for every move sample and
    end() on release.
    """

    def __init__(self, sensitivity: float = 1.0, config: AccelerationConfig = DEFAULT_ACCELERATION,
                 dead_zone: float = MOVEMENT_DEAD_ZONE):
        self.sensitivity = sensitivity
        self.config = config
        self.dead_zone = dead_zone
        self._last: Optional[MotionSample] = None
        self._velocities: deque[tuple[float, float]] = deque(maxlen=VELOCITY_HISTORY_SIZE)

    @property
    def active(self) -> bool:
        return self._last is not None

    def start(self, sample: MotionSample):
        self._last = sample
        self._velocities.clear()

    def end(self):
        self._last = None
        self._velocities.clear()

    def filter_move(self, sample: MotionSample) -> Optional[Motion]:
        """Return the delta for this sample, or None if nothing should move."""
        last = self._last
        if last is None:
            return None
        self._last = sample

        raw_dx = sample.x - last.x
        raw_dy = sample.y - last.y
        if math.hypot(raw_dx, raw_dy) < self.dead_zone:
            return None

        if sample.touch_count == 2:
            return Motion(
                "scroll",
                -raw_dx * self.sensitivity * SCROLL_FACTOR,
                -raw_dy * self.sensitivity * SCROLL_FACTOR,
            )
        if sample.touch_count != 1:
            return None

        elapsed = max(sample.timestamp_ms - last.timestamp_ms, 1)
        vx, vy = self._smoothed_velocity(raw_dx / elapsed, raw_dy / elapsed)
        factor = calculate_acceleration(math.hypot(vx, vy), self.config)
        return Motion("move", raw_dx * factor * self.sensitivity, raw_dy * factor * self.sensitivity)

    def _smoothed_velocity(self, vx: float, vy: float) -> tuple[float, float]:
        # Linearly weighted, most recent sample heaviest
        self._velocities.append((vx, vy))
        total = sum_x = sum_y = 0.0
        for weight, (hx, hy) in enumerate(self._velocities, start=1):
            sum_x += hx * weight
            sum_y += hy * weight
            total += weight
        return sum_x / total, sum_y / total
