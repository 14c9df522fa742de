"""Device orientation to cursor deltas ("air mouse" mode)."""

from dataclasses import dataclass
from typing import Optional

GYRO_FACTOR = 0.5
# Deltas at or below this on both axes are sensor noise
GYRO_NOISE_THRESHOLD = 0.1


@dataclass(frozen=True)
class Orientation:
    alpha: float = 0.0
    beta: float = 0.0
    gamma: float = 0.0


class GyroFilter:
    """Converts successive orientation readings into (dx, dy).

    gamma (left/right tilt) drives x, beta (front/back tilt) drives y.
    """

    def __init__(self, sensitivity: float = 1.0):
        self.sensitivity = sensitivity
        self._last = Orientation()
        self._calibration = Orientation()

    def calibrate(self):
        """Treat the most recent reading as the neutral pose."""
        self._calibration = self._last

    def update(self, orientation: Orientation) -> Optional[tuple[float, float]]:
        last, calib = self._last, self._calibration
        dx = (orientation.gamma - last.gamma - calib.gamma) * self.sensitivity * GYRO_FACTOR
        dy = (orientation.beta - last.beta - calib.beta) * self.sensitivity * GYRO_FACTOR
        self._last = orientation
        if abs(dx) > GYRO_NOISE_THRESHOLD or abs(dy) > GYRO_NOISE_THRESHOLD:
            return dx, dy
        return None
