"""Bootstrap resampling of the inlier set for empirical pose uncertainty."""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from ..georeference import pose_to_vector, state_to_geodetic
from ..math.geodesy import LocalFrame
from ..models.entities import BootstrapSamples, CameraState, CorrespondenceSet
from ..models.warnings import WarningCode, WarningLog
from ..optimization.residuals import FOCAL_INDEX, GaussianPriorTerm, ReprojectionResiduals
from .refiner import PoseRefiner


@dataclass
class BootstrapOptions:
    """Options for bootstrap resampling."""

    samples: int = 50
    seed: Optional[int] = None


class BootstrapEstimator:
    """Re-refines the solution on inlier sets drawn with replacement."""

    def __init__(self, refiner: PoseRefiner, options: Optional[BootstrapOptions] = None):
        self.refiner = refiner
        self.options = options or BootstrapOptions()
        self.logger = logging.getLogger(__name__)

    def run(
        self,
        correspondences: CorrespondenceSet,
        solution: CameraState,
        inlier_mask: np.ndarray,
        free_mask: np.ndarray,
        frame: LocalFrame,
        weights: Optional[np.ndarray] = None,
        focal_prior: Optional[GaussianPriorTerm] = None,
        up_prior: Optional[GaussianPriorTerm] = None,
        seed: int = 0
    ) -> Tuple[BootstrapSamples, WarningLog]:
        """Draw bootstrap samples.

        Args:
            correspondences: Full correspondence set
            solution: Refined camera state each resample starts from
            inlier_mask: Final inliers to resample
            free_mask: Parameters being estimated
            frame: Working frame of the solve
            weights: Per-correspondence inverse pixel variances
            focal_prior: Optional focal prior
            up_prior: Optional camera-height prior
            seed: Fallback seed when options.seed is unset

        Returns:
            Tuple of (samples, warnings). Positions are [lat, lon, alt] and
            orientations [yaw, pitch, roll] per successful resample.
        """
        warnings = WarningLog()
        rng = np.random.default_rng(self.options.seed if self.options.seed is not None else seed)
        inliers = np.flatnonzero(inlier_mask)
        n_params = int(np.count_nonzero(free_mask))

        poses = []
        focals = []
        failures = 0
        for _ in range(self.options.samples):
            indices = np.sort(rng.choice(inliers, size=len(inliers), replace=True))
            if 2 * len(np.unique(indices)) < n_params:
                failures += 1
                continue

            problem = ReprojectionResiduals(
                correspondences,
                solution,
                free_mask,
                indices=indices,
                weights=weights,
                focal_prior=focal_prior,
                up_prior=up_prior,
            )
            run = self.refiner.optimize(problem, WarningLog())
            if run.failure is not None:
                failures += 1
                continue

            state = problem.state(run.x)
            poses.append(pose_to_vector(state_to_geodetic(state, frame)))
            focals.append(state.intrinsics.focal_px)

        if failures:
            warnings.add(
                WarningCode.BOOTSTRAP_FAILURES,
                f"{failures} of {self.options.samples} bootstrap resamples failed and were skipped",
            )

        poses = np.array(poses).reshape(-1, 6)
        self.logger.info(f"Bootstrap: {len(poses)} samples, {failures} failures")
        samples = BootstrapSamples(
            positions=poses[:, :3],
            orientations=poses[:, 3:],
            focals=np.array(focals) if free_mask[FOCAL_INDEX] else None,
        )
        return samples, warnings
