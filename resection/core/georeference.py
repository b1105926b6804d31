"""Conversion between working-frame camera states and geodetic poses.

Solves run in a local ENU frame anchored at the correspondences' centroid.
Reported orientations are relative to the ENU frame at the camera itself, so
the two frames differ by a small rotation that grows with their separation.
"""

from typing import Optional, Sequence, Tuple

import numpy as np

from .errors import InputValidationError
from .math.geodesy import LocalFrame, geodetic_to_ecef
from .math.rotations import euler_to_matrix, matrix_to_euler
from .models import messages
from .models.entities import CameraIntrinsics, CameraState, GeodeticPose


def camera_frame(state: CameraState, frame: LocalFrame) -> LocalFrame:
    """Local ENU frame anchored at the camera centre."""
    lat, lon, alt = frame.enu_to_geodetic(state.C)
    return LocalFrame(lat[0], lon[0], alt[0])


def camera_orientation(state: CameraState, frame: LocalFrame, at: LocalFrame) -> Tuple[float, float, float]:
    """Yaw/pitch/roll (degrees) of a working-frame camera relative to the frame `at`."""
    R_enu_from_cam = frame.rotation_to(at) @ state.R.T
    return matrix_to_euler(R_enu_from_cam)


def state_to_geodetic(state: CameraState, frame: LocalFrame) -> GeodeticPose:
    """Geodetic pose of a camera solved in `frame`."""
    at = camera_frame(state, frame)
    yaw, pitch, roll = camera_orientation(state, frame, at)
    return GeodeticPose(at.lat, at.lon, at.alt, yaw, pitch, roll)


def geodetic_to_state(pose: GeodeticPose, intrinsics: CameraIntrinsics, frame: LocalFrame) -> CameraState:
    """Camera state in `frame` for a geodetic pose."""
    at = LocalFrame(pose.lat, pose.lon, pose.alt)
    C = frame.geodetic_to_enu(pose.lat, pose.lon, pose.alt)[0]
    R_enu_from_cam = euler_to_matrix(pose.yaw_deg, pose.pitch_deg, pose.roll_deg)
    R_frame_from_cam = at.rotation_to(frame) @ R_enu_from_cam
    return CameraState(R_frame_from_cam.T, C, intrinsics)


def pose_to_vector(pose: GeodeticPose) -> np.ndarray:
    return np.array([pose.lat, pose.lon, pose.alt, pose.yaw_deg, pose.pitch_deg, pose.roll_deg])


def world_to_ecef(
    points: Sequence[messages.WorldPosition],
    origin: Optional[messages.GeodeticOrigin] = None
) -> np.ndarray:
    """Nx3 ECEF coordinates of geodetic or origin-relative ENU points.

    Raises:
        InputValidationError: If an ENU point is given without an origin
    """
    ecef = np.empty((len(points), 3))

    lla_rows = [i for i, p in enumerate(points) if isinstance(p, messages.WorldLLA)]
    if lla_rows:
        lla = np.array([[points[i].lat, points[i].lon, points[i].alt] for i in lla_rows])
        ecef[lla_rows] = geodetic_to_ecef(lla[:, 0], lla[:, 1], lla[:, 2])

    enu_rows = [i for i, p in enumerate(points) if isinstance(p, messages.WorldENU)]
    if enu_rows:
        if origin is None:
            raise InputValidationError("ENU world points require a request-level origin")
        origin_frame = LocalFrame(origin.lat, origin.lon, origin.alt)
        enu = np.array([[points[i].east, points[i].north, points[i].up] for i in enu_rows])
        ecef[enu_rows] = origin_frame.enu_to_ecef(enu)

    return ecef
