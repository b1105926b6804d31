"""Nonlinear refinement and uncertainty estimation."""

from .refiner import PoseRefiner, RefinerOptions
from .covariance import CovarianceEstimator
from .diagnostics import DiagnosticsBuilder, analyze_jacobian_rank
from .bootstrap import BootstrapEstimator

__all__ = [
    "PoseRefiner",
    "RefinerOptions",
    "CovarianceEstimator",
    "DiagnosticsBuilder",
    "analyze_jacobian_rank",
    "BootstrapEstimator",
]
