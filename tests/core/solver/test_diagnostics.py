"""Tests for diagnostics and Jacobian analysis."""

import numpy as np
import pytest

from resection.core.math.camera import unproject
from resection.core.models.entities import CameraIntrinsics, CameraState, CorrespondenceSet
from resection.core.models.warnings import SolveWarning, WarningCode, WarningLog
from resection.core.solver.diagnostics import DiagnosticsBuilder, analyze_jacobian_rank, largest_residuals


def make_correspondences(n=6, shifts=None):
    state = CameraState(np.eye(3), np.zeros(3), CameraIntrinsics(800.0, np.array([400.0, 300.0])))
    uv = np.column_stack([np.linspace(100, 700, n), np.linspace(50, 550, n)])
    world = unproject(uv, np.full(n, 10.0), state.R, state.C, 800.0, state.intrinsics.principal_point)
    pixels = uv.copy()
    for i, shift in (shifts or {}).items():
        pixels[i] += shift
    return CorrespondenceSet.from_arrays([f"c{i}" for i in range(n)], pixels, world), state


class TestDiagnosticsBuilder:
    """Fit quality summary."""

    def setup_method(self):
        self.builder = DiagnosticsBuilder()

    def test_perfect_fit(self):
        cset, state = make_correspondences()
        diag = self.builder.build(cset, state, np.ones(len(cset), dtype=bool))

        assert diag.rmse_px == pytest.approx(0.0, abs=1e-9)
        assert diag.inlier_ratio == 1.0
        assert diag.inlier_ids == cset.ids
        assert diag.warnings == []

    def test_residuals_keep_input_order(self):
        cset, state = make_correspondences(shifts={1: [3.0, 4.0], 4: [0.0, -2.0]})
        mask = np.array([True, False, True, True, True, True])
        diag = self.builder.build(cset, state, mask)

        assert diag.residuals_px.shape == (6,)
        np.testing.assert_allclose(diag.residuals_px, [0, 5, 0, 0, 2, 0], atol=1e-9)
        # RMSE over inliers only
        assert diag.rmse_px == pytest.approx(np.sqrt(4.0 / 5.0))
        assert diag.inlier_ratio == pytest.approx(5 / 6)
        assert "c1" not in diag.inlier_ids

    def test_unprojectable_point(self):
        cset, state = make_correspondences()
        world = cset.world.copy()
        world[2] = [0.0, 0.0, -5.0]
        cset = CorrespondenceSet.from_arrays(cset.ids, cset.pixels, world)

        diag = self.builder.build(cset, state, np.ones(len(cset), dtype=bool))

        assert np.isinf(diag.residuals_px[2])
        assert np.isfinite(diag.rmse_px)
        assert [w.code for w in diag.warnings] == [WarningCode.UNPROJECTABLE_POINTS]
        assert "c2" in diag.warnings[0].message

    def test_stage_warnings_merged_in_order(self):
        cset, state = make_correspondences()
        first = WarningLog()
        first.add(WarningCode.CONSENSUS_EXHAUSTED, "budget spent")
        second = [SolveWarning(WarningCode.REFINEMENT_ITERATION_CAP, "cap reached")]

        diag = self.builder.build(cset, state, np.ones(len(cset), dtype=bool), [first, second])

        assert [w.code for w in diag.warnings] == [
            WarningCode.CONSENSUS_EXHAUSTED,
            WarningCode.REFINEMENT_ITERATION_CAP,
        ]

    def test_largest_residuals(self):
        cset, _ = make_correspondences()
        residuals = np.array([0.1, np.inf, 2.0, 0.5, 7.0, 0.0])

        top = largest_residuals(cset, residuals, top_k=3)
        assert [id_ for id_, _ in top] == ["c1", "c4", "c2"]
        assert top[1][1] == 7.0


class TestJacobianRank:
    """Rank and conditioning of a Jacobian."""

    def test_full_rank(self):
        J = np.array([[1.0, 0.0], [0.0, 2.0], [1.0, 1.0]])
        info = analyze_jacobian_rank(J)

        assert info["rank"] == 2
        assert info["full_rank"]
        assert info["nullspace_dimension"] == 0
        assert np.isfinite(info["condition_number"])

    def test_rank_deficient(self):
        J = np.array([[1.0, 2.0, 3.0], [2.0, 4.0, 6.0], [0.0, 1.0, 1.0]])
        info = analyze_jacobian_rank(J)

        assert info["rank"] == 2
        assert not info["full_rank"]
        assert info["nullspace_dimension"] == 1

    def test_more_columns_than_rows(self):
        info = analyze_jacobian_rank(np.ones((2, 4)))
        assert info["nullspace_dimension"] == 3
        assert info["condition_number"] == np.inf

    def test_empty(self):
        info = analyze_jacobian_rank(np.zeros((0, 0)))
        assert info["rank"] == 0
        assert info["full_rank"]
