"""Reprojection residuals for the nonlinear solver."""

from .residuals import ReprojectionResiduals, compute_residuals, free_parameter_mask

__all__ = [
    "ReprojectionResiduals",
    "compute_residuals",
    "free_parameter_mask",
]
