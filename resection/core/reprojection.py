"""Standalone reprojection of world points through a known camera."""

import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

from .georeference import geodetic_to_state
from .math.geodesy import LocalFrame
from .models.entities import CameraIntrinsics, GeodeticPose
from .models.warnings import WarningCode, WarningLog


logger = logging.getLogger(__name__)


@dataclass
class ReprojectionResult:
    """Projected pixels aligned to the input points; NaN rows where invalid."""

    pixels: np.ndarray
    valid: np.ndarray
    warnings: WarningLog = field(default_factory=WarningLog)


def reproject(
    pose: GeodeticPose,
    intrinsics: CameraIntrinsics,
    points_ecef: np.ndarray,
    image_size: Optional[Tuple[float, float]] = None
) -> ReprojectionResult:
    """Project ECEF points into the image of a geodetic camera.

    The projection runs in the ENU frame at the camera, so the orientation
    angles apply without any frame correction.

    Args:
        pose: Camera position and orientation
        intrinsics: Camera intrinsics
        points_ecef: Nx3 ECEF points
        image_size: Optional (width, height); valid points outside it are
            reported but still returned

    Returns:
        ReprojectionResult with one row per input point
    """
    points_ecef = np.atleast_2d(np.asarray(points_ecef, dtype=float))
    n = len(points_ecef)
    warnings = WarningLog()

    pixels = np.full((n, 2), np.nan)
    valid = np.zeros(n, dtype=bool)

    finite = np.all(np.isfinite(points_ecef), axis=1)
    if not np.all(finite):
        warnings.add(
            WarningCode.UNPROJECTABLE_POINTS,
            f"{n - finite.sum()} point(s) have non-finite coordinates: indices "
            f"{', '.join(str(i) for i in np.flatnonzero(~finite))}",
        )

    if np.any(finite):
        at = LocalFrame(pose.lat, pose.lon, pose.alt)
        camera = geodetic_to_state(pose, intrinsics, at)
        uv, ok = camera.project(at.ecef_to_enu(points_ecef[finite]))

        rows = np.flatnonzero(finite)
        pixels[rows[ok]] = uv[ok]
        valid[rows] = ok

        behind = rows[~ok]
        if len(behind):
            warnings.add(
                WarningCode.UNPROJECTABLE_POINTS,
                f"{len(behind)} point(s) behind the camera or otherwise unprojectable: indices "
                f"{', '.join(str(i) for i in behind)}",
            )

    if image_size is not None:
        width, height = image_size
        u, v = pixels[:, 0], pixels[:, 1]
        inside = (u >= 0) & (u <= width) & (v >= 0) & (v <= height)
        outside = np.flatnonzero(valid & ~inside)
        if len(outside):
            warnings.add(
                WarningCode.OUTSIDE_IMAGE,
                f"{len(outside)} point(s) project outside the {width:g}x{height:g} image: indices "
                f"{', '.join(str(i) for i in outside)}",
            )

    logger.debug(f"Reprojected {valid.sum()}/{n} points")
    return ReprojectionResult(pixels, valid, warnings)
