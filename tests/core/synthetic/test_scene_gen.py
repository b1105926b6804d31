"""Tests for synthetic scene generation."""

import numpy as np
import pytest

from resection.core.math.geodesy import LocalFrame
from resection.core.models import messages
from resection.core.initialization.pnp import is_coplanar
from resection.core.synthetic.scene_gen import SceneGenerator, make_resection_scene


class TestSceneGenerator:
    """Generated scenes are consistent with their ground truth."""

    def test_points_inside_image(self):
        scene = make_resection_scene(n_points=20, seed=1)

        assert scene.n_points == 20
        assert scene.ids == [f"p{i:02d}" for i in range(20)]
        assert np.all(scene.pixels[:, 0] >= 0.1 * 1920) and np.all(scene.pixels[:, 0] <= 0.9 * 1920)
        assert np.all(scene.pixels[:, 1] >= 0.1 * 1080) and np.all(scene.pixels[:, 1] <= 0.9 * 1080)

    def test_seed_reproducible(self):
        first = make_resection_scene(seed=4)
        second = make_resection_scene(seed=4)
        np.testing.assert_array_equal(first.lla, second.lla)
        np.testing.assert_array_equal(first.pixels, second.pixels)

    def test_depths_in_range(self):
        scene = make_resection_scene(n_points=10, seed=2, depth_range=(50.0, 60.0))
        frame = LocalFrame(scene.pose.lat, scene.pose.lon, scene.pose.alt)
        enu = frame.geodetic_to_enu(scene.lla[:, 0], scene.lla[:, 1], scene.lla[:, 2])

        # Level north-looking camera: depth is the north coordinate
        assert np.all(enu[:, 1] > 49.9) and np.all(enu[:, 1] < 60.1)

    def test_ground_plane_is_coplanar(self):
        scene = make_resection_scene(n_points=8, seed=3, pitch_deg=-30.0, ground_height=40.0)
        frame = LocalFrame(scene.pose.lat, scene.pose.lon, scene.pose.alt)
        enu = frame.geodetic_to_enu(scene.lla[:, 0], scene.lla[:, 1], scene.lla[:, 2])

        assert is_coplanar(enu)
        np.testing.assert_allclose(enu[:, 2], -40.0, atol=1e-6)

    def test_add_outliers(self):
        generator = SceneGenerator(seed=0)
        scene = make_resection_scene(seed=0)
        moved = generator.add_outliers(scene, ["p02"], offset_px=50.0)

        offsets = np.linalg.norm(moved.pixels - scene.pixels, axis=1)
        assert offsets[2] == pytest.approx(50.0)
        assert np.count_nonzero(offsets) == 1
        assert moved.outlier_ids == ["p02"]
        assert scene.outlier_ids == []

    def test_request_payload_validates(self):
        scene = make_resection_scene(seed=0)
        request = messages.SolveRequest.model_validate(
            scene.to_request(model={"estimateFocal": False}, intrinsics=scene.intrinsics_payload())
        )

        assert len(request.correspondences) == 6
        assert request.correspondences[0].id == "p00"
        assert request.model.estimate_focal is False
        assert request.intrinsics.focal_px == 1000.0
