"""Camera resection pipeline: consensus, refinement, covariance, diagnostics."""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .errors import InputValidationError
from .georeference import camera_frame, state_to_geodetic, world_to_ecef
from .initialization.consensus import ConsensusOptions, ConsensusSearch, derive_seed
from .initialization.pnp import (
    MINIMAL_SAMPLE_SIZES,
    MinimalSolver,
    focal_search_range,
    is_collinear,
    is_coplanar,
    resolve_method,
    undistort_pixels,
)
from .math.camera import point_depth
from .math.geodesy import LocalFrame
from .models import messages
from .models.entities import (
    CameraIntrinsics,
    CameraState,
    Correspondence,
    CorrespondenceSet,
    Observation,
    SolveResult,
    WorldPoint,
)
from .models.warnings import WarningCode, WarningLog
from .optimization.residuals import GaussianPriorTerm, free_parameter_mask
from .solver.bootstrap import BootstrapEstimator, BootstrapOptions
from .solver.covariance import CovarianceEstimator, CovarianceOptions
from .solver.diagnostics import DiagnosticsBuilder, largest_residuals
from .solver.refiner import PoseRefiner, RefinerOptions


@dataclass
class PreparedProblem:
    """Request converted into the working frame."""

    frame: LocalFrame
    correspondences: CorrespondenceSet
    pixel_sigmas: np.ndarray
    initial_intrinsics: CameraIntrinsics
    free_mask: np.ndarray
    method: str


class ResectionSolver:
    """Estimates camera pose and intrinsics from 2D-3D correspondences.

    Stages run strictly in order: request validation, consensus search over
    minimal samples, nonlinear refinement over the inliers, covariance
    estimation, optional bootstrap, diagnostics. Each stage contributes its
    warnings to the final diagnostics in that order.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def solve(self, request: messages.SolveRequest) -> SolveResult:
        """Solve one request.

        Args:
            request: Validated solve request

        Returns:
            SolveResult with geodetic pose, intrinsics, covariance and diagnostics

        Raises:
            InputValidationError: If the request cannot be solved as given
        """
        problem = self.prepare(request)
        cset = problem.correspondences
        frame = problem.frame

        # Consensus
        width, height = request.image.width, request.image.height
        focal_prior = request.priors.focal_px if request.priors else None
        solver = MinimalSolver(
            problem.method,
            problem.initial_intrinsics.principal_point,
            focal_px=problem.initial_intrinsics.focal_px,
            focal_range=focal_search_range(
                width,
                height,
                focal_prior.mean if focal_prior else None,
                focal_prior.sigma if focal_prior else None,
            ),
        )
        seed = request.ransac.seed if request.ransac.seed is not None else derive_seed(cset)
        consensus = ConsensusSearch(solver, ConsensusOptions(
            threshold_px=request.ransac.inlier_px,
            target_prob=request.ransac.target_prob,
            max_iters=request.ransac.max_iters,
            time_budget_s=request.ransac.time_budget_ms / 1000.0,
            seed=seed,
            workers=request.ransac.workers,
        )).run(cset, undistort_pixels(cset.pixels, problem.initial_intrinsics))

        hypothesis = consensus.hypothesis
        focal = hypothesis.focal_px if request.model.estimate_focal else problem.initial_intrinsics.focal_px
        initial = CameraState(hypothesis.R, hypothesis.C, problem.initial_intrinsics.with_focal(focal))

        weights = self._weights(cset, initial, problem.pixel_sigmas)
        focal_term = GaussianPriorTerm(focal_prior.mean, focal_prior.sigma) if focal_prior else None
        up_term = self._altitude_prior(request, initial, frame)

        # Refinement
        loss_scale = request.refine.loss_scale
        refiner = PoseRefiner(RefinerOptions(
            method=request.refine.method,
            max_iterations=request.refine.max_iters,
            tolerance=request.refine.tolerance,
            loss=request.refine.robust_loss,
            loss_scale=loss_scale,
            inlier_threshold_px=request.ransac.inlier_px,
        ))
        refined = refiner.refine(
            cset,
            initial,
            consensus.inlier_mask,
            problem.free_mask,
            weights=weights,
            focal_prior=focal_term,
            up_prior=up_term,
        )

        # Covariance
        covariance, covariance_warnings = CovarianceEstimator(CovarianceOptions(
            loss=request.refine.robust_loss,
            loss_scale=loss_scale,
        )).estimate(refined.problem, refined.x, frame, request.model.estimate_distortion)

        # Bootstrap
        bootstrap = None
        bootstrap_warnings = WarningLog()
        bootstrap_cfg = request.uncertainty.bootstrap
        if bootstrap_cfg.enabled:
            bootstrap, bootstrap_warnings = BootstrapEstimator(
                refiner, BootstrapOptions(samples=bootstrap_cfg.samples, seed=bootstrap_cfg.seed)
            ).run(
                cset,
                refined.state,
                refined.inlier_mask,
                problem.free_mask,
                frame,
                weights=weights,
                focal_prior=focal_term,
                up_prior=up_term,
                seed=seed,
            )

        pose = state_to_geodetic(refined.state, frame)
        pose_warnings = WarningLog()
        bounds = request.priors.bounds if request.priors else None
        if bounds is not None and not bounds.contains(pose.lat, pose.lon):
            pose_warnings.add(
                WarningCode.OUTSIDE_BOUNDS,
                f"camera at ({pose.lat:.6f}, {pose.lon:.6f}) lies outside the expected bounds",
            )

        diagnostics = DiagnosticsBuilder().build(
            cset,
            refined.state,
            refined.inlier_mask,
            [consensus.warnings, refined.warnings, covariance_warnings, bootstrap_warnings, pose_warnings],
        )
        self.logger.debug(f"Largest residuals: {largest_residuals(cset, diagnostics.residuals_px)}")

        return SolveResult(
            pose=pose,
            intrinsics=refined.state.intrinsics,
            covariance=covariance,
            diagnostics=diagnostics,
            bootstrap=bootstrap,
        )

    def prepare(self, request: messages.SolveRequest) -> PreparedProblem:
        """Validate the request and move it into a local ENU working frame.

        Raises:
            InputValidationError: On duplicate ids, missing origin or focal
                length, too few enabled correspondences, or collinear points
        """
        model = request.model
        if not model.estimate_focal and request.intrinsics is None and (
            request.priors is None or request.priors.focal_px is None
        ):
            raise InputValidationError(
                "Fixed-focal mode requires intrinsics.focalPx or a focal prior"
            )

        corrs = request.correspondences
        if not corrs:
            raise InputValidationError("No correspondences given")

        ecef = world_to_ecef([c.world for c in corrs], request.origin)
        frame = LocalFrame.at_centroid(ecef)
        world = frame.ecef_to_enu(ecef)

        sigmas = np.array([c.pixel.sigma_px or 1.0 for c in corrs])
        cset = CorrespondenceSet([
            Correspondence(
                Observation(c.id, (c.pixel.u, c.pixel.v), 1.0 / sigmas[i]**2),
                WorldPoint(c.id, tuple(world[i]), c.world.sigma_m),
                c.enabled,
            )
            for i, c in enumerate(corrs)
        ])

        method = resolve_method(request.ransac.minimal_method, model.estimate_focal)
        enabled = cset.enabled_indices()
        sample_size = MINIMAL_SAMPLE_SIZES[method]
        if len(enabled) < sample_size:
            raise InputValidationError(
                f"At least {sample_size} enabled correspondences are required for "
                f"{method}, got {len(enabled)}"
            )
        if is_collinear(cset.world[enabled]):
            raise InputValidationError("Enabled world points are collinear or coincident")
        if method == "dlt" and is_coplanar(cset.world[enabled]):
            raise InputValidationError("dlt requires world points that are not coplanar")

        intrinsics = self._initial_intrinsics(request)
        free_mask = free_parameter_mask(
            model.estimate_focal, model.estimate_principal_point, model.estimate_distortion
        )

        self.logger.info(
            f"Prepared {len(cset)} correspondences ({len(enabled)} enabled) in {frame!r}, "
            f"method={method}, free={int(free_mask.sum())} parameters"
        )
        return PreparedProblem(frame, cset, sigmas, intrinsics, free_mask, method)

    def _initial_intrinsics(self, request: messages.SolveRequest) -> CameraIntrinsics:
        width, height = request.image.width, request.image.height
        if request.intrinsics is not None:
            intrinsics = request.intrinsics.to_camera_intrinsics()
        else:
            focal = max(width, height)
            if request.priors is not None and request.priors.focal_px is not None:
                focal = request.priors.focal_px.mean
            intrinsics = CameraIntrinsics(focal, np.array([width / 2, height / 2]))

        if request.model.estimate_distortion and intrinsics.distortion is None:
            intrinsics.distortion = np.zeros(4)
        return intrinsics

    def _weights(self, cset: CorrespondenceSet, state: CameraState, pixel_sigmas: np.ndarray) -> np.ndarray:
        """Inverse pixel variances, inflated by world-point uncertainty at the consensus pose."""
        depth = np.abs(point_depth(state.R, state.C, cset.world))
        world_px = state.intrinsics.focal_px * cset.world_sigmas / np.maximum(depth, 1e-6)
        return 1.0 / (pixel_sigmas**2 + world_px**2)

    def _altitude_prior(
        self,
        request: messages.SolveRequest,
        state: CameraState,
        frame: LocalFrame
    ) -> Optional[GaussianPriorTerm]:
        """Camera-altitude prior expressed on the working-frame up coordinate."""
        prior = request.priors.camera_alt if request.priors else None
        if prior is None:
            return None
        at = camera_frame(state, frame)
        up = frame.geodetic_to_enu(at.lat, at.lon, prior.mean)[0, 2]
        return GaussianPriorTerm(float(up), prior.sigma)

