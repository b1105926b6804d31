"""Nonlinear least-squares refinement of pose and intrinsics."""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from scipy.optimize import least_squares

from ..math.robust import SCIPY_LOSS_NAMES, apply_robust_loss
from ..models.entities import CameraState, CorrespondenceSet
from ..models.warnings import WarningCode, WarningLog
from ..optimization.residuals import FOCAL_INDEX, GaussianPriorTerm, ReprojectionResiduals


@dataclass
class RefinerOptions:
    """Options for the pose refiner."""

    method: str = "trf"  # "trf", "dogbox", "lm"
    max_iterations: int = 100
    tolerance: float = 1e-12
    loss: str = "huber"  # "none", "huber", "cauchy"
    loss_scale: float = 1.0
    inlier_threshold_px: float = 4.0
    min_focal_px: float = 1.0
    verbose: int = 0


@dataclass
class RefinementResult:
    """Outcome of a refinement, including the problem for covariance estimation."""

    state: CameraState
    inlier_mask: np.ndarray
    problem: ReprojectionResiduals
    x: np.ndarray
    initial_cost: float
    final_cost: float
    evaluations: int
    converged: bool
    warnings: WarningLog = field(default_factory=WarningLog)


@dataclass
class RefinementRun:
    """One least_squares run; failure is set when the run was discarded."""

    x: np.ndarray
    initial_cost: float
    final_cost: float
    evaluations: int
    converged: bool
    hit_cap: bool
    failure: Optional[str] = None


class PoseRefiner:
    """Joint refinement of camera pose and the free intrinsics over the inliers.

    Wraps scipy.optimize.least_squares with the analytic Jacobian of
    ReprojectionResiduals. The result is never worse than the starting
    state: a run that raises, produces non-finite parameters or increases the
    cost is discarded and the initial state is kept with a warning.
    """

    def __init__(self, options: Optional[RefinerOptions] = None):
        self.options = options or RefinerOptions()
        self.logger = logging.getLogger(__name__)

        if self.options.loss not in SCIPY_LOSS_NAMES:
            raise ValueError(f"Unknown loss type: {self.options.loss}")
        if self.options.method == "lm" and self.options.loss != "none":
            raise ValueError("method 'lm' does not support a robust loss")

    def refine(
        self,
        correspondences: CorrespondenceSet,
        initial: CameraState,
        inlier_mask: np.ndarray,
        free_mask: np.ndarray,
        weights: Optional[np.ndarray] = None,
        focal_prior: Optional[GaussianPriorTerm] = None,
        up_prior: Optional[GaussianPriorTerm] = None
    ) -> RefinementResult:
        """Refine a consensus hypothesis.

        Args:
            correspondences: Full correspondence set
            initial: Starting camera state
            inlier_mask: Correspondences used by the fit
            free_mask: Parameters being estimated (see free_parameter_mask)
            weights: Per-correspondence inverse pixel variances
            focal_prior: Optional Gaussian prior on the focal length
            up_prior: Optional Gaussian prior on the camera's up coordinate

        Returns:
            RefinementResult; inliers whose refined residual exceeds the
            threshold are dropped and the fit is repeated once without them
        """
        warnings = WarningLog()
        inlier_mask = np.asarray(inlier_mask, dtype=bool).copy()

        def build(reference: CameraState, mask: np.ndarray) -> ReprojectionResiduals:
            return ReprojectionResiduals(
                correspondences,
                reference,
                free_mask,
                indices=np.flatnonzero(mask),
                weights=weights,
                focal_prior=focal_prior,
                up_prior=up_prior,
            )

        problem = build(initial, inlier_mask)
        run = self.optimize(problem, warnings)
        state = problem.state(run.x)

        # Inliers that no longer fit after refinement
        norms = state.residual_norms(correspondences)
        keep = inlier_mask & (norms < self.options.inlier_threshold_px)
        dropped = np.flatnonzero(inlier_mask & ~keep)

        if len(dropped) and 2 * keep.sum() >= problem.n_params:
            ids = [correspondences.ids[i] for i in dropped]
            warnings.add(
                WarningCode.INLIERS_DROPPED,
                f"{len(ids)} consensus inlier(s) exceed {self.options.inlier_threshold_px}px "
                f"after refinement and were removed: {', '.join(ids)}",
            )
            self.logger.info(f"Re-refining without {len(ids)} dropped inliers")
            inlier_mask = keep
            problem = build(state, inlier_mask)
            run = self.optimize(problem, warnings)
            state = problem.state(run.x)

        return RefinementResult(
            state=state,
            inlier_mask=inlier_mask,
            problem=problem,
            x=run.x,
            initial_cost=run.initial_cost,
            final_cost=run.final_cost,
            evaluations=run.evaluations,
            converged=run.converged,
            warnings=warnings,
        )

    def cost(self, problem: ReprojectionResiduals, x: np.ndarray) -> float:
        """Robust cost with the same normalisation as least_squares."""
        rho, _ = apply_robust_loss(problem.residuals(x), self.options.loss, self.options.loss_scale)
        return float(np.sum(rho))

    def _bounds(self, problem: ReprojectionResiduals):
        if self.options.method == "lm" or not problem.free_mask[FOCAL_INDEX]:
            return -np.inf, np.inf

        lower = np.full(problem.n_params, -np.inf)
        upper = np.full(problem.n_params, np.inf)
        focal_column = int(np.count_nonzero(problem.free_mask[:FOCAL_INDEX]))
        lower[focal_column] = self.options.min_focal_px
        return lower, upper

    def optimize(self, problem: ReprojectionResiduals, warnings: WarningLog) -> RefinementRun:
        """Run least_squares once from the problem's reference state."""
        opts = self.options
        x0 = problem.initial_parameters()
        initial_cost = self.cost(problem, x0)

        try:
            result = least_squares(
                fun=problem.residuals,
                x0=x0,
                jac=problem.jacobian,
                bounds=self._bounds(problem),
                method=opts.method,
                loss=SCIPY_LOSS_NAMES[opts.loss],
                f_scale=opts.loss_scale,
                x_scale="jac",
                ftol=opts.tolerance,
                xtol=opts.tolerance,
                gtol=opts.tolerance,
                max_nfev=opts.max_iterations,
                verbose=opts.verbose,
            )
        except (np.linalg.LinAlgError, ValueError) as e:
            return self._revert(x0, initial_cost, f"solver error: {e}", warnings)

        if not np.all(np.isfinite(result.x)):
            return self._revert(x0, initial_cost, "non-finite parameters", warnings)

        final_cost = self.cost(problem, result.x)
        if not np.isfinite(final_cost) or final_cost > initial_cost * (1 + 1e-9) + 1e-12:
            return self._revert(
                x0,
                initial_cost,
                f"cost increased from {initial_cost:.6g} to {final_cost:.6g}",
                warnings,
            )

        hit_cap = result.status == 0
        if hit_cap:
            warnings.add(
                WarningCode.REFINEMENT_ITERATION_CAP,
                f"stopped after {result.nfev} evaluations without meeting tolerance {opts.tolerance:g}",
            )

        self.logger.debug(
            f"Refinement: cost {initial_cost:.6g} -> {final_cost:.6g} "
            f"in {result.nfev} evaluations ({result.message})"
        )
        return RefinementRun(
            x=result.x,
            initial_cost=initial_cost,
            final_cost=final_cost,
            evaluations=int(result.nfev),
            converged=result.status > 0,
            hit_cap=hit_cap,
        )

    def _revert(self, x0: np.ndarray, cost: float, reason: str, warnings: WarningLog) -> RefinementRun:
        self.logger.warning(f"Refinement diverged ({reason}); keeping the consensus estimate")
        warnings.add(
            WarningCode.REFINEMENT_DIVERGED,
            f"{reason}; returned the consensus estimate unrefined",
        )
        return RefinementRun(
            x=x0,
            initial_cost=cost,
            final_cost=cost,
            evaluations=0,
            converged=False,
            hit_cap=False,
            failure=reason,
        )
