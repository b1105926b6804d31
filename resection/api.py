"""Request/response entry points over the camelCase JSON wire format."""

import logging
from typing import Any, Dict, Union

import numpy as np
from pydantic import ValidationError

from .core.errors import SerializationError
from .core.georeference import world_to_ecef
from .core.models import messages
from .core.models.entities import GeodeticPose, SolveResult
from .core.pipeline import ResectionSolver
from .core.reprojection import reproject

logger = logging.getLogger(__name__)

# Wire stand-in for residuals of unprojectable points
NONFINITE_RESIDUAL = 1e10

RequestInput = Union[Dict[str, Any], str, bytes]


def _parse(model_cls, request):
    if isinstance(request, model_cls):
        return request
    try:
        if isinstance(request, (str, bytes)):
            return model_cls.model_validate_json(request)
        return model_cls.model_validate(request)
    except ValidationError as e:
        raise SerializationError(f"Invalid {model_cls.__name__}: {e}") from e


def _dump(response) -> str:
    try:
        return response.model_dump_json(by_alias=True, exclude_none=True)
    except (ValueError, TypeError) as e:
        raise SerializationError(f"Cannot encode {type(response).__name__}: {e}") from e


def _finite(values: np.ndarray) -> list:
    return [float(v) if np.isfinite(v) else NONFINITE_RESIDUAL for v in np.asarray(values, dtype=float)]


def to_response(result: SolveResult) -> messages.SolveResponse:
    """Wire form of a solve result."""
    pose = result.pose
    diagnostics = result.diagnostics

    bootstrap = None
    if result.bootstrap is not None:
        bootstrap = messages.Bootstrap(
            position_samples=result.bootstrap.positions.tolist(),
            orientation_samples=result.bootstrap.orientations.tolist(),
            focal_samples=result.bootstrap.focals.tolist() if result.bootstrap.focals is not None else None,
        )

    return messages.SolveResponse(
        pose=messages.Pose(
            lat=pose.lat,
            lon=pose.lon,
            alt=pose.alt,
            yaw_deg=pose.yaw_deg,
            pitch_deg=pose.pitch_deg,
            roll_deg=pose.roll_deg,
        ),
        intrinsics=messages.Intrinsics.from_camera_intrinsics(result.intrinsics),
        covariance=messages.Covariance(
            matrix=result.covariance.matrix.ravel().tolist(),
            labels=list(result.covariance.labels),
        ),
        bootstrap=bootstrap,
        diagnostics=messages.Diagnostics(
            rmse_px=diagnostics.rmse_px,
            inlier_ratio=diagnostics.inlier_ratio,
            residuals_px=_finite(diagnostics.residuals_px),
            inlier_ids=list(diagnostics.inlier_ids),
            warnings=[str(w) for w in diagnostics.warnings],
        ),
    )


def solve(request: Union[messages.SolveRequest, RequestInput]) -> messages.SolveResponse:
    """Estimate camera pose and intrinsics.

    Args:
        request: SolveRequest model, its dict form, or JSON text

    Returns:
        SolveResponse

    Raises:
        SerializationError: If the request does not match the wire schema
        InputValidationError: If the request cannot be solved as given
    """
    request = _parse(messages.SolveRequest, request)
    logger.info(f"Solving with {len(request.correspondences)} correspondences")
    return to_response(ResectionSolver().solve(request))


def solve_json(text: Union[str, bytes]) -> str:
    """JSON text in, JSON text out."""
    return _dump(solve(text))


def reproject_points(request: Union[messages.ReprojectRequest, RequestInput]) -> messages.ReprojectResponse:
    """Project world points through a known camera.

    Args:
        request: ReprojectRequest model, its dict form, or JSON text

    Returns:
        ReprojectResponse with one pixel entry per input point

    Raises:
        SerializationError: If the request does not match the wire schema
        InputValidationError: If ENU points are given without an origin
    """
    request = _parse(messages.ReprojectRequest, request)
    p = request.pose
    pose = GeodeticPose(p.lat, p.lon, p.alt, p.yaw_deg, p.pitch_deg, p.roll_deg)
    image_size = (request.image.width, request.image.height) if request.image else None

    result = reproject(
        pose,
        request.intrinsics.to_camera_intrinsics(),
        world_to_ecef(request.points, request.origin),
        image_size,
    )

    pixels = [
        messages.ProjectedPixel(u=float(uv[0]), v=float(uv[1]), valid=True)
        if ok else messages.ProjectedPixel(valid=False)
        for uv, ok in zip(result.pixels, result.valid)
    ]
    return messages.ReprojectResponse(pixels=pixels, warnings=result.warnings.messages())


def reproject_points_json(text: Union[str, bytes]) -> str:
    """JSON text in, JSON text out."""
    return _dump(reproject_points(text))

