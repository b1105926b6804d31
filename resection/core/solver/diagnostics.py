"""Solve diagnostics and Jacobian analysis tools."""

import logging
from typing import Any, Dict, Iterable, List

import numpy as np
from scipy.linalg import svd

from ..models.entities import CameraState, CorrespondenceSet, Diagnostics
from ..models.warnings import SolveWarning, WarningCode, WarningLog


class DiagnosticsBuilder:
    """Aggregates fit quality and the warnings of every stage."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def build(
        self,
        correspondences: CorrespondenceSet,
        state: CameraState,
        inlier_mask: np.ndarray,
        stage_warnings: Iterable[Iterable[SolveWarning]] = ()
    ) -> Diagnostics:
        """Compute diagnostics for the final camera state.

        Args:
            correspondences: All correspondences in input order
            state: Final camera state
            inlier_mask: Final inlier mask (aligned to correspondences)
            stage_warnings: Warning sequences in stage order

        Returns:
            Diagnostics with residuals for every correspondence (inf where
            the point cannot be projected), RMSE over the inliers and the
            merged warnings
        """
        log = WarningLog()
        for warnings in stage_warnings:
            log.extend(warnings)

        residuals = state.residual_norms(correspondences)
        inlier_mask = np.asarray(inlier_mask, dtype=bool)

        inlier_residuals = residuals[inlier_mask & np.isfinite(residuals)]
        rmse = float(np.sqrt(np.mean(inlier_residuals**2))) if len(inlier_residuals) else 0.0

        n = len(correspondences)
        inlier_ratio = float(inlier_mask.sum() / n) if n else 0.0
        inlier_ids = [correspondences.ids[i] for i in np.flatnonzero(inlier_mask)]

        unprojectable = [correspondences.ids[i] for i in np.flatnonzero(~np.isfinite(residuals))]
        if unprojectable:
            log.add(
                WarningCode.UNPROJECTABLE_POINTS,
                f"{len(unprojectable)} point(s) behind the camera or otherwise unprojectable: "
                f"{', '.join(unprojectable)}",
            )

        self.logger.info(
            f"Diagnostics: rmse={rmse:.4g}px, inliers={len(inlier_ids)}/{n}, warnings={len(log)}"
        )
        return Diagnostics(
            rmse_px=rmse,
            inlier_ratio=inlier_ratio,
            residuals_px=residuals,
            inlier_ids=inlier_ids,
            warnings=list(log),
        )


def analyze_jacobian_rank(jacobian: np.ndarray, tolerance: float = 1e-6) -> Dict[str, Any]:
    """Analyze Jacobian matrix rank and condition.

    Args:
        jacobian: Jacobian matrix
        tolerance: Singular values below tolerance * largest count as zero

    Returns:
        Dictionary with rank analysis
    """
    if jacobian.size == 0:
        return {
            "rank": 0,
            "full_rank": True,
            "condition_number": 1.0,
            "singular_values": [],
            "nullspace_dimension": 0
        }

    s = svd(jacobian, compute_uv=False)

    rank = int(np.sum(s > tolerance * s[0])) if s[0] > 0 else 0
    nullspace_dim = jacobian.shape[1] - rank
    condition_number = s[0] / s[-1] if s[-1] > 0 and len(s) == jacobian.shape[1] else np.inf

    return {
        "rank": rank,
        "full_rank": nullspace_dim == 0,
        "condition_number": float(condition_number),
        "singular_values": s.tolist(),
        "nullspace_dimension": int(nullspace_dim),
        "matrix_shape": jacobian.shape,
        "largest_singular_value": float(s[0]),
        "smallest_singular_value": float(s[-1])
    }


def largest_residuals(correspondences: CorrespondenceSet, residuals: np.ndarray, top_k: int = 5) -> List[tuple]:
    """(id, residual) pairs with the largest errors first."""
    order = np.argsort(-np.nan_to_num(residuals, posinf=np.finfo(float).max))
    return [(correspondences.ids[i], float(residuals[i])) for i in order[:top_k]]
