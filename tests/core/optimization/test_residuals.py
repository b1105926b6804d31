"""Tests for reprojection residuals and their Jacobians."""

import numpy as np
import pytest

from resection.core.math.camera import unproject
from resection.core.math.jacobians import check_jacobian
from resection.core.math.rotations import so3_exp
from resection.core.models.entities import CameraIntrinsics, CameraState, CorrespondenceSet
from resection.core.optimization.residuals import (
    FOCAL_INDEX,
    UNPROJECTABLE_PENALTY,
    GaussianPriorTerm,
    ReprojectionResiduals,
    compute_residuals,
    free_parameter_mask,
)


def make_problem_data(seed=0, n=8):
    """Camera looking at random points with exact observations."""
    rng = np.random.default_rng(seed)
    R = so3_exp(np.array([0.1, -0.2, 0.05]))
    C = np.array([2.0, -1.0, 3.0])
    intr = CameraIntrinsics(900.0, np.array([640.0, 360.0]))

    uv = np.column_stack([rng.uniform(100, 1180, n), rng.uniform(80, 640, n)])
    depths = rng.uniform(10, 40, n)
    world = unproject(uv, depths, R, C, intr.focal_px, intr.principal_point)

    ids = [f"p{i}" for i in range(n)]
    cset = CorrespondenceSet.from_arrays(ids, uv, world)
    return cset, CameraState(R, C, intr)


class TestFreeParameterMask:

    def test_default_mask(self):
        mask = free_parameter_mask()
        assert mask.sum() == 7
        assert mask[:7].all()

    def test_fixed_intrinsics(self):
        assert free_parameter_mask(False, False, False).sum() == 6

    def test_all_free(self):
        mask = free_parameter_mask(True, True, True)
        assert mask.sum() == 11
        assert not mask[11:].any()


class TestComputeResiduals:
    """Observed minus projected for the whole set."""

    def setup_method(self):
        self.cset, self.state = make_problem_data()

    def test_zero_at_truth(self):
        residuals, jacobian, unprojectable = compute_residuals(self.cset, self.state)

        assert residuals.shape == (len(self.cset), 2)
        assert jacobian.shape == (2 * len(self.cset), 13)
        np.testing.assert_allclose(residuals, 0.0, atol=1e-8)
        assert not unprojectable.any()

    def test_sign_convention(self):
        shifted = CorrespondenceSet.from_arrays(self.cset.ids, self.cset.pixels + [2.0, -1.0], self.cset.world)
        residuals, _, _ = compute_residuals(shifted, self.state)
        np.testing.assert_allclose(residuals, np.tile([2.0, -1.0], (len(shifted), 1)), atol=1e-8)

    def test_free_mask_selects_columns(self):
        _, jacobian, _ = compute_residuals(self.cset, self.state, free_parameter_mask())
        assert jacobian.shape == (2 * len(self.cset), 7)

    def test_unprojectable_rows(self):
        world = self.cset.world.copy()
        world[0] = self.state.C - 5.0 * self.state.R[2]  # behind the camera
        cset = CorrespondenceSet.from_arrays(self.cset.ids, self.cset.pixels, world)

        residuals, jacobian, unprojectable = compute_residuals(cset, self.state)
        assert unprojectable[0] and not unprojectable[1:].any()
        assert np.all(np.isinf(residuals[0]))
        assert np.all(jacobian[:2] == 0)


class TestReprojectionResiduals:
    """Residual problem used by the refiner."""

    def setup_method(self):
        self.cset, self.truth = make_problem_data(seed=3)
        R = so3_exp(np.array([0.01, 0.02, -0.01])) @ self.truth.R
        self.reference = CameraState(R, self.truth.C + [0.2, -0.1, 0.3], self.truth.intrinsics.with_focal(950.0))

    def test_initial_parameters(self):
        problem = ReprojectionResiduals(self.cset, self.reference, free_parameter_mask())
        x0 = problem.initial_parameters()

        assert problem.n_params == 7
        np.testing.assert_allclose(x0[:3], self.reference.C)
        np.testing.assert_allclose(x0[3:6], 0.0)
        assert x0[6] == 950.0

        state = problem.state(x0)
        np.testing.assert_allclose(state.R, self.reference.R, atol=1e-12)

    @pytest.mark.parametrize("flags", [(True, False, False), (True, True, False), (False, False, False), (True, True, True)])
    def test_jacobian_matches_finite_differences(self, flags):
        problem = ReprojectionResiduals(self.cset, self.reference, free_parameter_mask(*flags))
        x = problem.initial_parameters()
        x[3:6] = [0.01, -0.02, 0.015]

        ok, max_err, _ = check_jacobian(problem.residuals, problem.jacobian, x, h=1e-6, atol=1e-3, rtol=1e-5)
        assert ok, f"max error {max_err}"

    def test_weights_scale_rows(self):
        weights = np.full(len(self.cset), 4.0)
        plain = ReprojectionResiduals(self.cset, self.reference, free_parameter_mask())
        weighted = ReprojectionResiduals(self.cset, self.reference, free_parameter_mask(), weights=weights)
        x = plain.initial_parameters()

        np.testing.assert_allclose(weighted.residuals(x), 2.0 * plain.residuals(x))

    def test_indices_restrict_rows(self):
        problem = ReprojectionResiduals(self.cset, self.reference, free_parameter_mask(), indices=[0, 2, 4])
        x = problem.initial_parameters()

        assert problem.n_observation_rows == 6
        assert problem.residuals(x).shape == (6,)
        assert problem.point_residuals(x).shape == (len(self.cset),)

    def test_priors_append_rows(self):
        problem = ReprojectionResiduals(
            self.cset,
            self.reference,
            free_parameter_mask(),
            focal_prior=GaussianPriorTerm(1000.0, 10.0),
            up_prior=GaussianPriorTerm(5.0, 2.0),
        )
        x = problem.initial_parameters()
        r = problem.residuals(x)
        J = problem.jacobian(x)

        assert r.shape == (2 * len(self.cset) + 2,)
        assert r[-2] == pytest.approx((950.0 - 1000.0) / 10.0)
        assert r[-1] == pytest.approx((self.reference.C[2] - 5.0) / 2.0)
        assert J[-2, FOCAL_INDEX] == pytest.approx(0.1)
        assert J[-1, 2] == pytest.approx(0.5)

    def test_focal_prior_ignored_when_fixed(self):
        problem = ReprojectionResiduals(
            self.cset,
            self.reference,
            free_parameter_mask(estimate_focal=False),
            focal_prior=GaussianPriorTerm(1000.0, 10.0),
        )
        assert problem.residuals(problem.initial_parameters()).shape == (2 * len(self.cset),)

    def test_unprojectable_penalty(self):
        world = self.cset.world.copy()
        world[1] = self.reference.C - 3.0 * self.reference.R[2]
        cset = CorrespondenceSet.from_arrays(self.cset.ids, self.cset.pixels, world)
        problem = ReprojectionResiduals(cset, self.reference, free_parameter_mask())
        x = problem.initial_parameters()

        r = problem.residuals(x).reshape(-1, 2)
        np.testing.assert_allclose(r[1], UNPROJECTABLE_PENALTY)
        assert problem.unprojectable(x)[1]
        assert np.all(problem.jacobian(x)[2:4] == 0)
