"""SO(3) rotation operations and the yaw/pitch/roll boundary convention."""

import numpy as np
from typing import Tuple


# Camera axes (x right, y down, z forward) expressed in ENU at zero attitude:
# x -> East, y -> Down, z -> North.
CAMERA_BASE = np.array([
    [1.0, 0.0, 0.0],
    [0.0, 0.0, 1.0],
    [0.0, -1.0, 0.0],
])


def skew_symmetric(v: np.ndarray) -> np.ndarray:
    """Create skew-symmetric matrix from 3D vector."""
    if v.shape != (3,):
        raise ValueError(f"v must be 3-element vector, got shape {v.shape}")

    return np.array([
        [0, -v[2], v[1]],
        [v[2], 0, -v[0]],
        [-v[1], v[0], 0]
    ])


def quat_from_axis_angle(axis: np.ndarray, angle: float) -> np.ndarray:
    """Create unit quaternion [w, x, y, z] from a rotation axis and angle (radians)."""
    if axis.shape != (3,):
        raise ValueError(f"Axis must be 3-element vector, got shape {axis.shape}")

    axis_norm = np.linalg.norm(axis)
    if axis_norm < 1e-12:
        return np.array([1.0, 0.0, 0.0, 0.0])

    axis = axis / axis_norm
    half_angle = angle / 2
    sin_half = np.sin(half_angle)

    return np.array([np.cos(half_angle), sin_half * axis[0], sin_half * axis[1], sin_half * axis[2]])


def quat_to_matrix(q: np.ndarray) -> np.ndarray:
    """Convert quaternion [w, x, y, z] to rotation matrix."""
    if q.shape != (4,):
        raise ValueError(f"Quaternion must be 4-element vector, got shape {q.shape}")

    norm = np.linalg.norm(q)
    if norm < 1e-12:
        raise ValueError("Cannot normalize zero quaternion")
    w, x, y, z = q / norm

    return np.array([
        [1 - 2*(y**2 + z**2), 2*(x*y - w*z), 2*(x*z + w*y)],
        [2*(x*y + w*z), 1 - 2*(x**2 + z**2), 2*(y*z - w*x)],
        [2*(x*z - w*y), 2*(y*z + w*x), 1 - 2*(x**2 + y**2)]
    ])


def so3_exp(phi: np.ndarray) -> np.ndarray:
    """Map an axis-angle vector to a rotation matrix.

    Args:
        phi: 3-element rotation vector (axis * angle, radians)

    Returns:
        3x3 rotation matrix
    """
    if phi.shape != (3,):
        raise ValueError(f"phi must be 3-element vector, got shape {phi.shape}")

    theta = np.linalg.norm(phi)
    if theta < 1e-10:
        # First-order expansion, re-orthonormalised
        return orthonormalize(np.eye(3) + skew_symmetric(phi))

    return quat_to_matrix(quat_from_axis_angle(phi / theta, theta))


def so3_log(R: np.ndarray) -> np.ndarray:
    """Map a rotation matrix to its axis-angle vector."""
    if R.shape != (3, 3):
        raise ValueError(f"R must be 3x3 matrix, got shape {R.shape}")

    theta = np.arccos(np.clip((np.trace(R) - 1) / 2, -1, 1))
    w = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])

    if theta < 1e-6:
        return 0.5 * w

    if np.pi - theta < 1e-4:
        # sin(theta) vanishes near pi; recover the axis from the symmetric part
        B = (R + np.eye(3)) / 2
        k = int(np.argmax(np.diag(B)))
        axis = B[:, k] / np.sqrt(max(B[k, k], 1e-12))
        axis = axis / np.linalg.norm(axis)
        if np.dot(axis, w) < 0:
            axis = -axis
        return theta * axis

    return theta / (2 * np.sin(theta)) * w


def so3_left_jacobian(phi: np.ndarray) -> np.ndarray:
    """Left Jacobian of SO(3): exp(phi + d) ~= exp(J_l(phi) d) exp(phi)."""
    if phi.shape != (3,):
        raise ValueError(f"phi must be 3-element vector, got shape {phi.shape}")

    theta = np.linalg.norm(phi)
    if theta < 1e-6:
        return np.eye(3) + 0.5 * skew_symmetric(phi)

    axis = phi / theta
    s = np.sin(theta)
    c = np.cos(theta)
    return (s / theta) * np.eye(3) + (1 - c) / theta * skew_symmetric(axis) + \
        (theta - s) / theta * np.outer(axis, axis)


def orthonormalize(M: np.ndarray) -> np.ndarray:
    """Project a 3x3 matrix onto the closest rotation (Frobenius norm)."""
    U, _, Vt = np.linalg.svd(M)
    R = U @ Vt
    if np.linalg.det(R) < 0:
        U[:, -1] = -U[:, -1]
        R = U @ Vt
    return R


def rot_x(angle: float) -> np.ndarray:
    """Rotation about the x (East) axis, radians."""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])


def rot_z(angle: float) -> np.ndarray:
    """Rotation about the z (Up) axis, radians, counter-clockwise seen from above."""
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def wrap_degrees(angle):
    """Wrap angle(s) in degrees to [-180, 180)."""
    return (np.asarray(angle) + 180.0) % 360.0 - 180.0


def euler_to_matrix(yaw_deg: float, pitch_deg: float, roll_deg: float) -> np.ndarray:
    """Build the camera-to-ENU rotation from yaw/pitch/roll in degrees.

    Yaw is heading clockwise from north, pitch raises the optical axis above
    the horizon and roll turns the image about the optical axis.

    Returns:
        3x3 rotation mapping camera-frame vectors into the local ENU frame
    """
    yaw, pitch, roll = np.radians([yaw_deg, pitch_deg, roll_deg])
    return rot_z(-yaw) @ rot_x(pitch) @ CAMERA_BASE @ rot_z(roll)


def matrix_to_euler(R_enu_from_cam: np.ndarray) -> Tuple[float, float, float]:
    """Inverse of euler_to_matrix.

    At pitch = +-90 degrees heading is undefined; yaw is reported as 0 and the
    whole rotation about the vertical is folded into roll.

    Returns:
        (yaw_deg, pitch_deg, roll_deg), yaw and roll in [-180, 180)
    """
    if R_enu_from_cam.shape != (3, 3):
        raise ValueError(f"R must be 3x3 matrix, got shape {R_enu_from_cam.shape}")

    forward = R_enu_from_cam[:, 2]
    pitch = np.arctan2(forward[2], np.hypot(forward[0], forward[1]))

    if np.hypot(forward[0], forward[1]) < 1e-9:
        yaw = 0.0
    else:
        yaw = np.arctan2(forward[0], forward[1])

    M = CAMERA_BASE.T @ rot_x(pitch).T @ rot_z(-yaw).T @ R_enu_from_cam
    roll = np.arctan2(M[1, 0], M[0, 0])

    yaw_deg, pitch_deg, roll_deg = np.degrees([yaw, pitch, roll])
    return float(wrap_degrees(yaw_deg)), float(pitch_deg), float(wrap_degrees(roll_deg))
