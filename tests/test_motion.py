"""
Module: test_motion.py
Purpose: Motion filter (dead zone, smoothing, acceleration, scroll) and gyro filter
"""

import pytest

from experience_remote.remote.gyro import GyroFilter, Orientation
from experience_remote.remote.motion import (
    DEFAULT_ACCELERATION, AccelerationConfig, MotionFilter, MotionSample, calculate_acceleration,
)


def sample(x, y, t, touches=1):
    return MotionSample(x=x, y=y, timestamp_ms=t, touch_count=touches)


class TestAccelerationCurve:

    def test_precision_mode_below_threshold(self):
        assert calculate_acceleration(0.0) == pytest.approx(0.8)
        assert calculate_acceleration(0.149) == pytest.approx(0.8)

    def test_saturates_at_max_velocity(self):
        assert calculate_acceleration(1.5) == pytest.approx(2.2)
        assert calculate_acceleration(10.0) == pytest.approx(2.2)

    def test_threshold_starts_at_base(self):
        assert calculate_acceleration(0.15) == pytest.approx(1.0)

    def test_monotonic_non_decreasing(self):
        velocities = [i * 0.01 for i in range(0, 200)]
        factors = [calculate_acceleration(v) for v in velocities]
        assert all(b >= a for a, b in zip(factors, factors[1:]))
        assert calculate_acceleration(0) < calculate_acceleration(DEFAULT_ACCELERATION.max_velocity)

    def test_custom_config(self):
        linear = AccelerationConfig(min_velocity_threshold=0.0, max_velocity=1.0,
                                    curve_exponent=1.0, base_multiplier=1.0, max_acceleration=3.0)
        assert calculate_acceleration(0.5, linear) == pytest.approx(2.0)


class TestMotionFilter:

    def test_no_delta_before_start(self):
        assert MotionFilter().filter_move(sample(10, 10, 0)) is None

    def test_dead_zone_suppresses_jitter(self):
        f = MotionFilter()
        f.start(sample(100, 100, 0))
        assert f.filter_move(sample(100.3, 100.2, 16)) is None

    def test_dead_zone_advances_position(self):
        """A suppressed sample still becomes the reference point"""
        f = MotionFilter()
        f.start(sample(100, 100, 0))
        f.filter_move(sample(100.4, 100, 16))
        motion = f.filter_move(sample(102.4, 100, 32))
        # Raw delta is measured from the suppressed sample: 2.0, not 2.4
        assert motion.dx == pytest.approx(2.0 * calculate_acceleration(2.0 / 16))

    @pytest.mark.parametrize("dx, dy", [(5, -3), (-4, 2), (0, 6), (-7, -7)])
    def test_sign_matches_raw_displacement(self, dx, dy):
        f = MotionFilter()
        f.start(sample(0, 0, 0))
        motion = f.filter_move(sample(dx, dy, 16))
        assert motion.kind == "move"
        assert (motion.dx > 0) == (dx > 0) and (motion.dx < 0) == (dx < 0)
        assert (motion.dy > 0) == (dy > 0) and (motion.dy < 0) == (dy < 0)

    def test_slow_motion_is_damped(self):
        f = MotionFilter()
        f.start(sample(0, 0, 0))
        # 1 unit over 100 ms is well below the precision threshold
        motion = f.filter_move(sample(1, 0, 100))
        assert motion.dx == pytest.approx(0.8)

    def test_fast_motion_is_accelerated(self):
        f = MotionFilter()
        f.start(sample(0, 0, 0))
        motion = f.filter_move(sample(40, 0, 10))
        assert motion.dx == pytest.approx(40 * 2.2)

    def test_sensitivity_scales_output(self):
        slow, fast = MotionFilter(sensitivity=1.0), MotionFilter(sensitivity=2.0)
        for f in (slow, fast):
            f.start(sample(0, 0, 0))
        a = slow.filter_move(sample(3, 0, 16))
        b = fast.filter_move(sample(3, 0, 16))
        assert b.dx == pytest.approx(2 * a.dx)

    def test_zero_elapsed_time_does_not_divide_by_zero(self):
        f = MotionFilter()
        f.start(sample(0, 0, 50))
        motion = f.filter_move(sample(2, 0, 50))
        assert motion.dx == pytest.approx(2 * 2.2)

    def test_velocity_smoothing_weights_recent_samples(self):
        f = MotionFilter()
        f.start(sample(0, 0, 0))
        # Velocities 0.1, 0.1, then 1.0 units/ms
        f.filter_move(sample(1, 0, 10))
        f.filter_move(sample(2, 0, 20))
        motion = f.filter_move(sample(12, 0, 30))
        smoothed = (0.1 * 1 + 0.1 * 2 + 1.0 * 3) / 6
        assert motion.dx == pytest.approx(10 * calculate_acceleration(smoothed))

    def test_history_limited_to_three(self):
        f = MotionFilter()
        f.start(sample(0, 0, 0))
        x = 0
        for t in range(1, 5):
            x += 20
            f.filter_move(sample(x, 0, t * 10))
        assert len(f._velocities) == 3

    def test_two_finger_scroll_inverted_and_unaccelerated(self):
        f = MotionFilter(sensitivity=2.0)
        f.start(sample(0, 0, 0, touches=2))
        motion = f.filter_move(sample(40, -10, 5, touches=2))
        assert motion.kind == "scroll"
        assert motion.dx == pytest.approx(-40 * 2.0 * 0.5)
        assert motion.dy == pytest.approx(10 * 2.0 * 0.5)

    def test_end_resets(self):
        f = MotionFilter()
        f.start(sample(0, 0, 0))
        f.end()
        assert not f.active
        assert f.filter_move(sample(10, 10, 10)) is None


class TestGyroFilter:

    def test_tilt_to_delta(self):
        g = GyroFilter(sensitivity=1.0)
        assert g.update(Orientation(gamma=4.0, beta=-2.0)) == pytest.approx((2.0, -1.0))

    def test_noise_suppressed(self):
        g = GyroFilter()
        g.update(Orientation(gamma=10.0, beta=10.0))
        assert g.update(Orientation(gamma=10.1, beta=10.1)) is None

    def test_calibrate_uses_last_reading(self):
        g = GyroFilter()
        g.update(Orientation(gamma=10.0, beta=5.0))
        g.calibrate()
        # Same pose as last reading: delta is minus the calibration offset
        assert g.update(Orientation(gamma=10.0, beta=5.0)) == pytest.approx((-5.0, -2.5))
