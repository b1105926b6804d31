"""Reprojection residuals and their Jacobians over the camera parameters."""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..math.camera import N_PARAMS, project_with_jacobian
from ..math.rotations import so3_exp, so3_left_jacobian
from ..models.entities import CameraIntrinsics, CameraState, CorrespondenceSet


# Internal parameter order
PARAMETER_LABELS = ["x", "y", "z", "rx", "ry", "rz", "focal", "cx", "cy", "k1", "k2", "p1", "p2"]

# Covariance labels reported to callers
OUTPUT_LABELS = ["x", "y", "z", "yaw", "pitch", "roll", "focal", "cx", "cy"]
DISTORTION_LABELS = ["k1", "k2"]

FOCAL_INDEX = PARAMETER_LABELS.index("focal")
UP_INDEX = PARAMETER_LABELS.index("z")

# Residual assigned to unprojectable points inside the optimiser
UNPROJECTABLE_PENALTY = 1e6


def free_parameter_mask(
    estimate_focal: bool = True,
    estimate_principal_point: bool = False,
    estimate_distortion: bool = False
) -> np.ndarray:
    """Boolean mask over PARAMETER_LABELS of the parameters being estimated.

    The six pose parameters are always free. Distortion estimation covers the
    radial k1, k2 terms; tangential terms are only ever carried through.
    """
    mask = np.zeros(N_PARAMS, dtype=bool)
    mask[:6] = True
    mask[6] = estimate_focal
    mask[7:9] = estimate_principal_point
    mask[9:11] = estimate_distortion
    return mask


def compute_residuals(
    correspondences: CorrespondenceSet,
    state: CameraState,
    free_mask: Optional[np.ndarray] = None
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Observed minus projected pixels for every correspondence.

    Args:
        correspondences: Correspondences in input order
        state: Camera pose and intrinsics
        free_mask: Columns to keep in the Jacobian (all 13 by default)

    Returns:
        Tuple of (Nx2 residuals, inf rows for unprojectable points;
        2N x k Jacobian of the residuals, zero rows for unprojectable points;
        N-element mask of unprojectable points)
    """
    intr = state.intrinsics
    uv, valid, J = project_with_jacobian(
        correspondences.world,
        state.R,
        state.C,
        intr.focal_px,
        intr.principal_point,
        intr.distortion,
    )
    residuals = correspondences.pixels - uv
    residuals[~valid] = np.inf

    jacobian = -J.reshape(-1, N_PARAMS)
    if free_mask is not None:
        jacobian = jacobian[:, free_mask]
    return residuals, jacobian, ~valid


@dataclass
class GaussianPriorTerm:
    """Soft constraint (value - mean) / sigma on a single parameter."""

    mean: float
    sigma: float


class ReprojectionResiduals:
    """Weighted residual vector for the refiner.

    The parameter vector holds the free entries of
    [x, y, z, rx, ry, rz, focal, cx, cy, k1, k2, p1, p2] where the rotation
    entries are an increment w on the reference rotation, R = exp([w]x) R0.
    Residual rows are sqrt(weight) * (projected - observed) for each active
    correspondence, followed by one row per prior.
    """

    def __init__(
        self,
        correspondences: CorrespondenceSet,
        reference: CameraState,
        free_mask: np.ndarray,
        indices: Optional[Sequence[int]] = None,
        weights: Optional[np.ndarray] = None,
        focal_prior: Optional[GaussianPriorTerm] = None,
        up_prior: Optional[GaussianPriorTerm] = None
    ):
        """Initialize residuals.

        Args:
            correspondences: Full correspondence set
            reference: State the parameter vector is relative to
            free_mask: Boolean mask of estimated parameters
            indices: Correspondences that contribute (all by default)
            weights: Per-correspondence weights (inverse pixel variance),
                defaulting to the observation weights
            focal_prior: Prior on the focal length in pixels
            up_prior: Prior on the camera's up coordinate in the working frame
        """
        self.correspondences = correspondences
        self.reference = reference
        self.free_mask = np.asarray(free_mask, dtype=bool)
        self.indices = np.arange(len(correspondences)) if indices is None else np.asarray(indices, dtype=int)

        all_weights = correspondences.weights if weights is None else np.asarray(weights, dtype=float)
        self.sqrt_weights = np.sqrt(all_weights[self.indices])
        self.world = correspondences.world[self.indices]
        self.pixels = correspondences.pixels[self.indices]

        self.priors: List[Tuple[int, GaussianPriorTerm]] = []
        if focal_prior is not None and self.free_mask[FOCAL_INDEX]:
            self.priors.append((FOCAL_INDEX, focal_prior))
        if up_prior is not None:
            self.priors.append((UP_INDEX, up_prior))

        intr = reference.intrinsics
        distortion = np.zeros(4) if intr.distortion is None else intr.distortion
        self.base = np.concatenate([
            reference.C,
            np.zeros(3),
            [intr.focal_px],
            intr.principal_point,
            distortion,
        ])
        self.carries_distortion = intr.distortion is not None or bool(self.free_mask[9:].any())

    @property
    def n_params(self) -> int:
        return int(self.free_mask.sum())

    @property
    def n_observation_rows(self) -> int:
        return 2 * len(self.indices)

    def initial_parameters(self) -> np.ndarray:
        return self.base[self.free_mask].copy()

    def full_parameters(self, x: np.ndarray) -> np.ndarray:
        p = self.base.copy()
        p[self.free_mask] = x
        return p

    def state(self, x: np.ndarray) -> CameraState:
        """Camera state for a parameter vector."""
        p = self.full_parameters(x)
        R = so3_exp(p[3:6]) @ self.reference.R
        distortion = p[9:13].copy() if self.carries_distortion else None
        intrinsics = CameraIntrinsics(max(p[6], 1e-9), p[7:9].copy(), distortion)
        return CameraState(R, p[:3].copy(), intrinsics)

    def _project(self, x: np.ndarray):
        p = self.full_parameters(x)
        state = self.state(x)
        intr = state.intrinsics
        return p, project_with_jacobian(
            self.world,
            state.R,
            state.C,
            intr.focal_px,
            intr.principal_point,
            intr.distortion,
            rotation_jacobian=so3_left_jacobian(p[3:6]),
        )

    def residuals(self, x: np.ndarray) -> np.ndarray:
        p, (uv, valid, _) = self._project(x)
        r = (uv - self.pixels) * self.sqrt_weights[:, None]
        r[~valid] = UNPROJECTABLE_PENALTY
        prior_rows = [(p[i] - prior.mean) / prior.sigma for i, prior in self.priors]
        return np.concatenate([r.ravel(), prior_rows])

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        _, (_, _, J) = self._project(x)
        J = J * self.sqrt_weights[:, None, None]
        J = J.reshape(-1, N_PARAMS)

        prior_rows = np.zeros((len(self.priors), N_PARAMS))
        for row, (i, prior) in enumerate(self.priors):
            prior_rows[row, i] = 1.0 / prior.sigma

        return np.vstack([J, prior_rows])[:, self.free_mask]

    def point_residuals(self, x: np.ndarray) -> np.ndarray:
        """Unweighted pixel error magnitude of every correspondence in the full set."""
        return self.state(x).residual_norms(self.correspondences)

    def unprojectable(self, x: np.ndarray) -> np.ndarray:
        """Mask over the active correspondences that cannot be projected."""
        _, (_, valid, _) = self._project(x)
        return ~valid
