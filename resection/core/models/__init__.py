"""Data models for camera resection."""

from .entities import (
    Observation,
    WorldPoint,
    Correspondence,
    CorrespondenceSet,
    CameraIntrinsics,
    CameraState,
    GeodeticPose,
    Covariance,
    Diagnostics,
    BootstrapSamples,
    SolveResult,
)
from .warnings import WarningCode, SolveWarning, WarningLog
from .messages import SolveRequest, SolveResponse, ReprojectRequest, ReprojectResponse

__all__ = [
    "Observation",
    "WorldPoint",
    "Correspondence",
    "CorrespondenceSet",
    "CameraIntrinsics",
    "CameraState",
    "GeodeticPose",
    "Covariance",
    "Diagnostics",
    "BootstrapSamples",
    "SolveResult",
    "WarningCode",
    "SolveWarning",
    "WarningLog",
    "SolveRequest",
    "SolveResponse",
    "ReprojectRequest",
    "ReprojectResponse",
]
