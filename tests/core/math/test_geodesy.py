"""Tests for geodetic and local ENU conversions."""

import numpy as np
import pytest

from resection.core.math.geodesy import LocalFrame, ecef_to_geodetic, geodetic_to_ecef


class TestGeodesy:
    """Test WGS84 conversions."""

    def test_equator_prime_meridian(self):
        xyz = geodetic_to_ecef(0.0, 0.0, 0.0)
        np.testing.assert_allclose(xyz[0], [6378137.0, 0.0, 0.0], atol=1e-6)

    def test_ecef_round_trip(self):
        lat = np.array([37.0, -33.9, 64.1])
        lon = np.array([-122.0, 151.2, -21.9])
        alt = np.array([100.0, 5.0, -20.0])

        lat2, lon2, alt2 = ecef_to_geodetic(geodetic_to_ecef(lat, lon, alt))

        np.testing.assert_allclose(lat2, lat, atol=1e-10)
        np.testing.assert_allclose(lon2, lon, atol=1e-10)
        np.testing.assert_allclose(alt2, alt, atol=1e-5)


class TestLocalFrame:
    """Test the local tangent frame."""

    def setup_method(self):
        self.frame = LocalFrame(37.0, -122.0, 100.0)

    def test_origin_maps_to_zero(self):
        np.testing.assert_allclose(self.frame.geodetic_to_enu(37.0, -122.0, 100.0), [[0, 0, 0]], atol=1e-6)

    def test_axes(self):
        up = self.frame.geodetic_to_enu(37.0, -122.0, 110.0)[0]
        np.testing.assert_allclose(up, [0, 0, 10], atol=1e-6)

        north = self.frame.geodetic_to_enu(37.001, -122.0, 100.0)[0]
        assert north[1] == pytest.approx(111.0, rel=0.01)
        assert abs(north[0]) < 1e-6

        east = self.frame.geodetic_to_enu(37.0, -121.999, 100.0)[0]
        assert east[0] == pytest.approx(111.32 * np.cos(np.radians(37.0)), rel=0.01)

    def test_enu_round_trip(self):
        enu = np.array([[10.0, -25.0, 3.0], [500.0, 200.0, -40.0]])
        lat, lon, alt = self.frame.enu_to_geodetic(enu)
        np.testing.assert_allclose(self.frame.geodetic_to_enu(lat, lon, alt), enu, atol=1e-6)

    def test_basis_is_orthonormal(self):
        R = self.frame.R_enu_from_ecef
        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)

    def test_rotation_between_frames(self):
        other = LocalFrame(37.01, -121.99, 0.0)
        R = self.frame.rotation_to(other)

        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)
        np.testing.assert_allclose(R, np.eye(3), atol=1e-3)
        np.testing.assert_allclose(R, other.R_enu_from_ecef @ self.frame.R_enu_from_ecef.T)

    def test_frame_at_centroid(self):
        enu = np.array([[100.0, 0.0, 0.0], [-100.0, 0.0, 0.0], [0.0, 50.0, 20.0], [0.0, -50.0, -20.0]])
        frame = LocalFrame.at_centroid(self.frame.enu_to_ecef(enu))

        assert frame.lat == pytest.approx(37.0, abs=1e-9)
        assert frame.lon == pytest.approx(-122.0, abs=1e-9)
        assert frame.alt == pytest.approx(100.0, abs=1e-3)
