"""Parameter covariance from the refiner's final Jacobian."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from ..georeference import camera_frame, camera_orientation
from ..math.geodesy import LocalFrame
from ..math.jacobians import finite_difference_jacobian
from ..math.robust import apply_robust_loss
from ..math.rotations import wrap_degrees
from ..models.entities import CameraState, Covariance
from ..models.warnings import WarningCode, WarningLog
from ..optimization.residuals import (
    DISTORTION_LABELS,
    OUTPUT_LABELS,
    UNPROJECTABLE_PENALTY,
    ReprojectionResiduals,
)
from .diagnostics import analyze_jacobian_rank


# Finite-difference steps per internal parameter: metres, radians, pixels, unitless
_OUTPUT_STEPS = np.array([1e-3, 1e-3, 1e-3, 1e-7, 1e-7, 1e-7, 1e-3, 1e-3, 1e-3, 1e-7, 1e-7, 1e-7, 1e-7])


@dataclass
class CovarianceOptions:
    """Options for covariance estimation."""

    max_condition: float = 1e10
    rank_tolerance: float = 1e-10
    loss: str = "huber"
    loss_scale: float = 1.0


def output_labels(estimate_distortion: bool) -> List[str]:
    return OUTPUT_LABELS + (DISTORTION_LABELS if estimate_distortion else [])


class CovarianceEstimator:
    """Covariance of the reported parameters.

    Computes sigma^2 (J^T W J)^-1 in the internal parameterisation, where W
    holds the robust IRLS weights at the solution and sigma^2 the residual
    variance, then maps it onto the output labels
    [x, y, z, yaw, pitch, roll, focal, cx, cy (, k1, k2)]. Position is in
    metres East/North/Up at the camera, angles in degrees. Parameters held
    fixed get zero rows and columns.
    """

    def __init__(self, options: Optional[CovarianceOptions] = None):
        self.options = options or CovarianceOptions()
        self.logger = logging.getLogger(__name__)

    def estimate(
        self,
        problem: ReprojectionResiduals,
        x: np.ndarray,
        frame: LocalFrame,
        estimate_distortion: bool = False
    ) -> Tuple[Covariance, WarningLog]:
        """Estimate the labelled covariance at the refined parameters.

        Args:
            problem: Residual problem the refiner solved
            x: Refined parameter vector
            frame: Working frame of the solve
            estimate_distortion: Whether k1, k2 are reported

        Returns:
            Tuple of (covariance, warnings); the covariance matrix is empty
            when the information matrix is singular or ill-conditioned
        """
        warnings = WarningLog()
        labels = output_labels(estimate_distortion)

        J = problem.jacobian(x)
        r = problem.residuals(x)
        _, weights = apply_robust_loss(r, self.options.loss, self.options.loss_scale)
        weights = np.where(np.abs(r) >= UNPROJECTABLE_PENALTY, 0.0, weights)

        n_params = J.shape[1]
        n_rows = int(np.count_nonzero(weights))
        Jw = J * np.sqrt(weights)[:, None]

        # Column scaling so the conditioning reflects geometry rather than units
        scale = np.linalg.norm(Jw, axis=0)
        if np.any(scale == 0):
            n_unconstrained = int(np.count_nonzero(scale == 0))
            return self._singular(
                labels, warnings, f"{n_unconstrained} parameter(s) unconstrained by the inliers"
            )

        Js = Jw / scale
        rank_info = analyze_jacobian_rank(Js, tolerance=self.options.rank_tolerance)
        if rank_info["nullspace_dimension"] > 0:
            return self._singular(
                labels,
                warnings,
                f"information matrix has rank {rank_info['rank']} < {n_params}",
            )
        if rank_info["condition_number"] > self.options.max_condition:
            return self._singular(
                labels,
                warnings,
                f"information matrix condition number {rank_info['condition_number']:.3g} "
                f"exceeds {self.options.max_condition:.3g}",
            )

        info = Js.T @ Js
        cov_scaled = np.linalg.solve(info, np.eye(n_params))
        cov_params = cov_scaled / np.outer(scale, scale)

        dof = n_rows - n_params
        if dof > 0:
            sigma2 = float(np.sum(weights * r**2) / dof)
        else:
            sigma2 = 1.0
            warnings.add(
                WarningCode.COVARIANCE_UNIT_VARIANCE,
                f"{n_rows} residuals for {n_params} parameters; residual variance assumed to be 1 px^2",
            )
        cov_params = sigma2 * cov_params

        G = self._output_jacobian(problem, x, frame, estimate_distortion)
        cov = G @ cov_params @ G.T
        cov = 0.5 * (cov + cov.T)

        self.logger.debug(f"Covariance: sigma^2={sigma2:.3g}, condition={rank_info['condition_number']:.3g}")
        return Covariance(cov, labels), warnings

    def _singular(self, labels: List[str], warnings: WarningLog, reason: str) -> Tuple[Covariance, WarningLog]:
        self.logger.warning(f"Covariance not estimated: {reason}")
        warnings.add(WarningCode.COVARIANCE_SINGULAR, f"{reason}; covariance omitted")
        return Covariance(np.empty((0, 0)), labels), warnings

    def _output_jacobian(
        self,
        problem: ReprojectionResiduals,
        x: np.ndarray,
        frame: LocalFrame,
        estimate_distortion: bool
    ) -> np.ndarray:
        """Derivative of the reported parameters w.r.t. the free internal parameters."""
        solved = problem.state(x)
        at = camera_frame(solved, frame)
        R_at_from_frame = frame.rotation_to(at)
        angles0 = np.array(camera_orientation(solved, frame, at))
        n_intrinsics = 5 if estimate_distortion else 3

        def outputs(params: np.ndarray) -> np.ndarray:
            state = problem.state(params)
            offset = R_at_from_frame @ (state.C - solved.C)
            angles = np.array(camera_orientation(state, frame, at))
            intrinsics = _intrinsic_vector(state)[:n_intrinsics]
            return np.concatenate([offset, wrap_degrees(angles - angles0), intrinsics])

        steps = _OUTPUT_STEPS[problem.free_mask]
        return finite_difference_jacobian(outputs, x, method="central", steps=steps)


def _intrinsic_vector(state: CameraState) -> np.ndarray:
    intr = state.intrinsics
    distortion = np.zeros(4) if intr.distortion is None else intr.distortion
    return np.array([intr.focal_px, intr.cx, intr.cy, distortion[0], distortion[1]])
