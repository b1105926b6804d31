"""Resection - camera pose and intrinsics from 2D-3D correspondences

Robust single-image resection against geodetic reference points, with
joint intrinsics refinement, covariance and diagnostics.
"""

__version__ = "0.1.0"

# Core models
from .core.models.entities import CameraIntrinsics, CameraState, GeodeticPose, SolveResult
from .core.models.messages import SolveRequest, SolveResponse, ReprojectRequest, ReprojectResponse
from .core.errors import (
    ResectionError,
    InputValidationError,
    DegenerateGeometryError,
    SerializationError,
)

# Pipeline
from .core.pipeline import ResectionSolver

# Operations
from .api import solve, solve_json, reproject_points, reproject_points_json

__all__ = [
    # Version
    "__version__",
    # Models
    "CameraIntrinsics",
    "CameraState",
    "GeodeticPose",
    "SolveResult",
    "SolveRequest",
    "SolveResponse",
    "ReprojectRequest",
    "ReprojectResponse",
    # Errors
    "ResectionError",
    "InputValidationError",
    "DegenerateGeometryError",
    "SerializationError",
    # Pipeline
    "ResectionSolver",
    # Operations
    "solve",
    "solve_json",
    "reproject_points",
    "reproject_points_json",
]
