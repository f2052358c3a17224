import numpy as np
import pytest

from ec_heatflux.footprint import (
    FootprintEstimate,
    estimate_roughness_length,
    friction_velocity,
    peak_footprint_distance,
)


class TestRoughnessLength:
    def test_tenth_of_height(self):
        assert estimate_roughness_length(3.0) == pytest.approx(0.3)


class TestFrictionVelocity:
    def test_log_profile(self):
        u_star = friction_velocity(5.0, 3.0, 0.3)
        assert u_star == pytest.approx(5.0 * 0.41 / np.log(10.0))


class TestPeakFootprintDistance:
    """Test suite for the neutral footprint peak estimate"""

    def test_default_roughness(self):
        estimate = peak_footprint_distance(5.0, 3.0)

        expected = 3.0 * 2.0 * np.log(10.0) / 0.41 * (1.0 - np.exp(-15.0))
        assert isinstance(estimate, FootprintEstimate)
        assert estimate.peak_distance == pytest.approx(expected)
        assert estimate.roughness_length == pytest.approx(0.3)
        assert estimate.measurement_height == 3.0
        assert estimate.friction_velocity == pytest.approx(5.0 * 0.41 / np.log(10.0))

    def test_explicit_roughness(self):
        estimate = peak_footprint_distance(4.0, 2.0, roughness_length=0.05)

        expected = 2.0 * 2.0 * np.log(40.0) / 0.41 * (1.0 - np.exp(-60.0))
        assert estimate.peak_distance == pytest.approx(expected)

    def test_independent_of_wind_speed(self):
        """u* scales with the mean wind, so only the profile shape matters"""
        slow = peak_footprint_distance(2.0, 3.0)
        fast = peak_footprint_distance(8.0, 3.0)
        assert slow.peak_distance == pytest.approx(fast.peak_distance)

    def test_rougher_surface_shortens_footprint(self):
        smooth = peak_footprint_distance(5.0, 3.0, roughness_length=0.01)
        rough = peak_footprint_distance(5.0, 3.0, roughness_length=0.5)
        assert rough.peak_distance < smooth.peak_distance

    def test_calm_wind_undefined(self):
        estimate = peak_footprint_distance(0.0, 3.0)
        assert np.isnan(estimate.peak_distance)

    @pytest.mark.parametrize("height", [0.0, -2.0])
    def test_invalid_measurement_height(self, height):
        with pytest.raises(ValueError, match="Measurement height must be positive"):
            peak_footprint_distance(5.0, height)

    @pytest.mark.parametrize("z0", [0.0, -0.1, 3.0, 4.5])
    def test_invalid_roughness_length(self, z0):
        with pytest.raises(ValueError, match="Roughness length"):
            peak_footprint_distance(5.0, 3.0, roughness_length=z0)
