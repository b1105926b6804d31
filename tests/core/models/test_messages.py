"""Tests for the camelCase wire models."""

import numpy as np
import pytest
from pydantic import ValidationError

from resection.core.models.entities import CameraIntrinsics
from resection.core.models.messages import (
    BootstrapConfig,
    Intrinsics,
    RefineConfig,
    ReprojectRequest,
    SolveRequest,
    SolverModel,
    WorldENU,
    WorldLLA,
)


def _request(**extra):
    request = {
        "image": {"width": 1920, "height": 1080},
        "correspondences": [
            {"id": "a", "pixel": {"u": 100.0, "v": 200.0}, "world": {"lat": 37.0, "lon": -122.0, "alt": 10.0}},
            {"id": "b", "pixel": {"u": 300.0, "v": 400.0, "sigmaPx": 2.0}, "world": {"east": 1.0, "north": 2.0, "up": 3.0}},
        ],
    }
    request.update(extra)
    return request


class TestSolveRequest:
    """Test request parsing."""

    def test_defaults(self):
        request = SolveRequest.model_validate(_request())

        assert request.model.estimate_focal is True
        assert request.model.estimate_principal_point is False
        assert request.ransac.max_iters == 1000
        assert request.ransac.inlier_px == 4.0
        assert request.ransac.minimal_method == "auto"
        assert request.refine.robust_loss == "huber"
        assert request.uncertainty.bootstrap.enabled is False
        assert request.intrinsics is None

    def test_world_variants(self):
        request = SolveRequest.model_validate(_request())

        assert isinstance(request.correspondences[0].world, WorldLLA)
        assert isinstance(request.correspondences[1].world, WorldENU)
        assert request.correspondences[1].pixel.sigma_px == 2.0
        assert request.correspondences[0].enabled is True

    def test_camel_case_sections(self):
        request = SolveRequest.model_validate(_request(
            model={"estimateFocal": False, "estimatePrincipalPoint": True},
            ransac={"inlierPx": 2.5, "timeBudgetMs": 500, "minimalMethod": "p3p", "seed": 7},
            priors={"focalPx": {"mean": 1000, "sigma": 50}, "cameraAlt": {"mean": 100, "sigma": 5}},
        ))

        assert request.model.estimate_focal is False
        assert request.model.estimate_principal_point is True
        assert request.ransac.inlier_px == 2.5
        assert request.ransac.time_budget_ms == 500
        assert request.ransac.seed == 7
        assert request.priors.focal_px.mean == 1000

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError):
            SolveRequest.model_validate(_request(ransac={"inlierPixels": 3.0}))

    def test_invalid_values_rejected(self):
        with pytest.raises(ValidationError):
            SolveRequest.model_validate(_request(image={"width": 0, "height": 1080}))
        with pytest.raises(ValidationError):
            SolveRequest.model_validate(_request(ransac={"minimalMethod": "epnp"}))
        with pytest.raises(ValidationError):
            SolveRequest.model_validate(_request(priors={"bounds": {"latMin": 1, "latMax": 0, "lonMin": 0, "lonMax": 1}}))

    def test_empty_id_rejected(self):
        data = _request()
        data["correspondences"][0]["id"] = ""
        with pytest.raises(ValidationError):
            SolveRequest.model_validate(data)

    def test_json_text(self):
        request = SolveRequest.model_validate_json(
            '{"image": {"width": 640, "height": 480}, "correspondences": []}'
        )
        assert request.image.width == 640
        assert request.correspondences == []

    def test_browser_client_request(self):
        request = SolveRequest.model_validate({
            "image": {"width": 1920, "height": 1080},
            "correspondences": [
                {"id": "p1", "pixel": {"u": 100.0, "v": 200.0}, "world": {"lat": 37.0, "lon": -122.0, "alt": 10.0}, "enabled": True},
            ],
            "model": {"estimateFocal": True, "estimatePrincipalPoint": False, "estimateDistortion": False},
            "ransac": {"maxIters": 5000, "inlierPx": 2.0, "targetProb": 0.999},
            "refine": {"maxIters": 50, "robustLoss": "huber", "huberDelta": 1.0},
            "uncertainty": {"bootstrap": {"enabled": False, "samples": 0}},
        })

        assert request.ransac.target_prob == 0.999
        assert request.refine.huber_delta == 1.0
        assert request.uncertainty.bootstrap.samples == 0


class TestSolverModel:

    def test_distortion_flag_covers_radial_terms(self):
        description = SolverModel.model_fields["estimate_distortion"].description
        assert "k1, k2" in description
        assert "p1, p2 are carried through" in description


class TestBootstrapConfig:

    def test_samples_checked_only_when_enabled(self):
        assert BootstrapConfig(enabled=False, samples=0).samples == 0
        assert BootstrapConfig(enabled=True, samples=2).samples == 2
        with pytest.raises(ValidationError):
            BootstrapConfig(enabled=True, samples=0)
        with pytest.raises(ValidationError):
            BootstrapConfig(enabled=True, samples=1)


class TestRefineConfig:
    """Test refinement policy validation."""

    def test_lm_requires_plain_loss(self):
        with pytest.raises(ValidationError):
            RefineConfig(method="lm", robust_loss="huber")
        assert RefineConfig(method="lm", robust_loss="none").method == "lm"

    def test_loss_scale(self):
        assert RefineConfig(robust_loss="huber", huber_delta=2.0).loss_scale == 2.0
        assert RefineConfig(robust_loss="cauchy", cauchy_sigma=3.0).loss_scale == 3.0


class TestIntrinsics:
    """Test intrinsics conversion."""

    def test_round_trip_without_distortion(self):
        wire = Intrinsics(focal_px=1000.0, cx=960.0, cy=540.0)
        intr = wire.to_camera_intrinsics()

        assert intr.distortion is None
        assert Intrinsics.from_camera_intrinsics(intr) == wire

    def test_partial_distortion(self):
        intr = Intrinsics(focal_px=1000.0, cx=960.0, cy=540.0, k1=-0.1).to_camera_intrinsics()
        np.testing.assert_allclose(intr.distortion, [-0.1, 0, 0, 0])

    def test_dump_is_camel_case(self):
        intr = CameraIntrinsics(1000.0, np.array([960.0, 540.0]))
        dumped = Intrinsics.from_camera_intrinsics(intr).model_dump(by_alias=True, exclude_none=True)
        assert dumped == {"focalPx": 1000.0, "cx": 960.0, "cy": 540.0}


class TestReprojectRequest:

    def test_parse(self):
        request = ReprojectRequest.model_validate({
            "pose": {"lat": 37, "lon": -122, "alt": 100, "yawDeg": 0, "pitchDeg": 0, "rollDeg": 0},
            "intrinsics": {"focalPx": 1000, "cx": 960, "cy": 540},
            "points": [{"lat": 37.001, "lon": -122, "alt": 100}],
        })

        assert request.pose.yaw_deg == 0
        assert request.image is None
        assert isinstance(request.points[0], WorldLLA)

    def test_pitch_range(self):
        with pytest.raises(ValidationError):
            ReprojectRequest.model_validate({
                "pose": {"lat": 37, "lon": -122, "alt": 100, "yawDeg": 0, "pitchDeg": 91, "rollDeg": 0},
                "intrinsics": {"focalPx": 1000, "cx": 960, "cy": 540},
                "points": [],
            })
