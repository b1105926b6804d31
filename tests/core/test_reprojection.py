"""Tests for standalone reprojection."""

import numpy as np

from resection.core.math.geodesy import LocalFrame
from resection.core.models.entities import CameraIntrinsics, GeodeticPose
from resection.core.models.warnings import WarningCode
from resection.core.reprojection import reproject


POSE = GeodeticPose(37.0, -122.0, 100.0, 0.0, 0.0, 0.0)
INTRINSICS = CameraIntrinsics(1000.0, np.array([960.0, 540.0]))


def points_enu(enu):
    return LocalFrame(POSE.lat, POSE.lon, POSE.alt).enu_to_ecef(np.asarray(enu, dtype=float))


class TestReproject:
    """Projection of ECEF points through a geodetic camera."""

    def test_point_on_optical_axis(self):
        result = reproject(POSE, INTRINSICS, points_enu([[0.0, 50.0, 0.0]]))

        assert result.valid.tolist() == [True]
        np.testing.assert_allclose(result.pixels[0], [960.0, 540.0], atol=1e-6)
        assert len(result.warnings) == 0

    def test_offsets_follow_image_axes(self):
        # East is +u, up is -v for a level north-looking camera
        result = reproject(POSE, INTRINSICS, points_enu([[5.0, 50.0, 0.0], [0.0, 50.0, 5.0]]))

        np.testing.assert_allclose(result.pixels[0], [1060.0, 540.0], atol=1e-6)
        np.testing.assert_allclose(result.pixels[1], [960.0, 440.0], atol=1e-6)

    def test_point_behind_camera(self):
        result = reproject(POSE, INTRINSICS, points_enu([[0.0, 50.0, 0.0], [0.0, -50.0, 0.0]]))

        assert result.valid.tolist() == [True, False]
        assert np.all(np.isnan(result.pixels[1]))
        assert result.warnings.codes() == [WarningCode.UNPROJECTABLE_POINTS]

    def test_non_finite_input(self):
        points = points_enu([[0.0, 50.0, 0.0], [0.0, 60.0, 0.0]])
        points[1, 0] = np.nan
        result = reproject(POSE, INTRINSICS, points)

        assert result.valid.tolist() == [True, False]
        assert result.warnings.codes() == [WarningCode.UNPROJECTABLE_POINTS]

    def test_outside_image(self):
        points = points_enu([[0.0, 50.0, 0.0], [100.0, 50.0, 0.0]])

        without = reproject(POSE, INTRINSICS, points)
        with_image = reproject(POSE, INTRINSICS, points, image_size=(1920, 1080))

        assert len(without.warnings) == 0
        assert with_image.valid.tolist() == [True, True]
        assert with_image.warnings.codes() == [WarningCode.OUTSIDE_IMAGE]

    def test_pitched_camera(self):
        pose = GeodeticPose(37.0, -122.0, 100.0, 0.0, -45.0, 0.0)
        result = reproject(pose, INTRINSICS, points_enu([[0.0, 50.0, -50.0]]))
        np.testing.assert_allclose(result.pixels[0], [960.0, 540.0], atol=1e-6)
