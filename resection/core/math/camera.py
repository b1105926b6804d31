"""Pinhole camera projection with Brown-Conrady distortion and analytic derivatives."""

import numpy as np
from typing import Tuple, Optional

from .rotations import skew_symmetric


# Points closer than this to the camera plane are unprojectable
MIN_DEPTH = 1e-6

# Column layout of projection Jacobians
N_POSE_PARAMS = 6
N_PARAMS = 13


def _check_pose(R: np.ndarray, C: np.ndarray) -> None:
    if R.shape != (3, 3):
        raise ValueError(f"R must be 3x3 matrix, got shape {R.shape}")
    if C.shape != (3,):
        raise ValueError(f"C must be 3-element vector, got shape {C.shape}")


def _as_points(X: np.ndarray) -> np.ndarray:
    X = np.atleast_2d(np.asarray(X, dtype=float))
    if X.shape[1] != 3:
        raise ValueError(f"X must be Nx3 array, got shape {X.shape}")
    return X


def _as_distortion(distortion: Optional[np.ndarray]) -> np.ndarray:
    if distortion is None:
        return np.zeros(4)
    distortion = np.asarray(distortion, dtype=float)
    if distortion.shape != (4,):
        raise ValueError(f"distortion must be [k1, k2, p1, p2], got shape {distortion.shape}")
    return distortion


def to_camera(R: np.ndarray, C: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Transform world points into the camera frame.

    Args:
        R: 3x3 rotation matrix (world to camera)
        C: 3-element camera centre in world coordinates
        X: Nx3 array of world points

    Returns:
        Nx3 array of camera-frame points
    """
    _check_pose(R, C)
    X = _as_points(X)
    return (X - C) @ R.T


def point_depth(R: np.ndarray, C: np.ndarray, X: np.ndarray) -> np.ndarray:
    """Depth of world points along the optical axis (positive = in front)."""
    return to_camera(R, C, X)[:, 2]


def distort(xy: np.ndarray, distortion: Optional[np.ndarray] = None) -> np.ndarray:
    """Apply radial (k1, k2) and tangential (p1, p2) distortion to normalised coordinates."""
    k1, k2, p1, p2 = _as_distortion(distortion)
    x, y = xy[:, 0], xy[:, 1]
    r2 = x**2 + y**2
    radial = 1 + k1 * r2 + k2 * r2**2

    xd = x * radial + 2 * p1 * x * y + p2 * (r2 + 2 * x**2)
    yd = y * radial + p1 * (r2 + 2 * y**2) + 2 * p2 * x * y
    return np.column_stack([xd, yd])


def distortion_jacobians(
    xy: np.ndarray,
    distortion: Optional[np.ndarray] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """Derivatives of the distortion model.

    Returns:
        Tuple of (d_xy: Nx2x2 derivative w.r.t. normalised coordinates,
        d_coeffs: Nx2x4 derivative w.r.t. [k1, k2, p1, p2])
    """
    k1, k2, p1, p2 = _as_distortion(distortion)
    x, y = xy[:, 0], xy[:, 1]
    r2 = x**2 + y**2
    radial = 1 + k1 * r2 + k2 * r2**2
    dradial = k1 + 2 * k2 * r2  # d(radial)/d(r2)

    n = len(xy)
    d_xy = np.empty((n, 2, 2))
    d_xy[:, 0, 0] = radial + 2 * x**2 * dradial + 2 * p1 * y + 6 * p2 * x
    d_xy[:, 0, 1] = 2 * x * y * dradial + 2 * p1 * x + 2 * p2 * y
    d_xy[:, 1, 0] = 2 * x * y * dradial + 2 * p1 * x + 2 * p2 * y
    d_xy[:, 1, 1] = radial + 2 * y**2 * dradial + 6 * p1 * y + 2 * p2 * x

    d_coeffs = np.empty((n, 2, 4))
    d_coeffs[:, 0, 0] = x * r2
    d_coeffs[:, 0, 1] = x * r2**2
    d_coeffs[:, 0, 2] = 2 * x * y
    d_coeffs[:, 0, 3] = r2 + 2 * x**2
    d_coeffs[:, 1, 0] = y * r2
    d_coeffs[:, 1, 1] = y * r2**2
    d_coeffs[:, 1, 2] = r2 + 2 * y**2
    d_coeffs[:, 1, 3] = 2 * x * y
    return d_xy, d_coeffs


def project(
    X: np.ndarray,
    R: np.ndarray,
    C: np.ndarray,
    focal: float,
    principal_point: np.ndarray,
    distortion: Optional[np.ndarray] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """Project 3D world points to pixel coordinates.

    Args:
        X: Nx3 array of world points
        R: 3x3 rotation matrix (world to camera)
        C: 3-element camera centre in world coordinates
        focal: Focal length in pixels
        principal_point: [cx, cy] in pixels
        distortion: Optional [k1, k2, p1, p2]

    Returns:
        Tuple of (Nx2 pixel array with NaN rows for unprojectable points,
        N-element boolean mask of projectable points)
    """
    X_cam = to_camera(R, C, X)

    valid = np.isfinite(X_cam).all(axis=1) & (X_cam[:, 2] > MIN_DEPTH)
    depth = np.where(valid, X_cam[:, 2], np.nan)

    xy = X_cam[:, :2] / depth[:, None]
    xy_d = distort(xy, distortion)

    uv = focal * xy_d + np.asarray(principal_point, dtype=float)
    return uv, valid


def project_with_jacobian(
    X: np.ndarray,
    R: np.ndarray,
    C: np.ndarray,
    focal: float,
    principal_point: np.ndarray,
    distortion: Optional[np.ndarray] = None,
    rotation_jacobian: Optional[np.ndarray] = None
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Project points and differentiate the pixels w.r.t. every camera parameter.

    Columns follow [x, y, z, rx, ry, rz, focal, cx, cy, k1, k2, p1, p2] where
    (x, y, z) is the camera centre and (rx, ry, rz) a rotation increment w
    applied as R = exp([w]x) R0. When the increment is non-zero pass its SO(3)
    left Jacobian as rotation_jacobian; by default the derivative is taken at w = 0.

    Returns:
        Tuple of (uv Nx2, valid N mask, jacobian Nx2x13); rows of
        unprojectable points are NaN in uv and zero in the Jacobian
    """
    uv, valid = project(X, R, C, focal, principal_point, distortion)
    X_cam = to_camera(R, C, X)
    n = len(X_cam)

    Z = np.where(valid, X_cam[:, 2], 1.0)
    xy = X_cam[:, :2] / Z[:, None]

    # d(normalised)/d(X_cam)
    d_norm = np.zeros((n, 2, 3))
    d_norm[:, 0, 0] = 1.0 / Z
    d_norm[:, 1, 1] = 1.0 / Z
    d_norm[:, 0, 2] = -xy[:, 0] / Z
    d_norm[:, 1, 2] = -xy[:, 1] / Z

    # d(X_cam)/d(pose): centre then rotation increment
    J_l = np.eye(3) if rotation_jacobian is None else rotation_jacobian
    d_cam = np.zeros((n, 3, N_POSE_PARAMS))
    d_cam[:, :, :3] = -R
    for i in range(n):
        d_cam[i, :, 3:] = -skew_symmetric(X_cam[i]) @ J_l

    d_xy, d_coeffs = distortion_jacobians(xy, distortion)
    xy_d = distort(xy, distortion)

    J = np.zeros((n, 2, N_PARAMS))
    J[:, :, :N_POSE_PARAMS] = focal * np.einsum("nij,njk,nkl->nil", d_xy, d_norm, d_cam)
    J[:, :, 6] = xy_d
    J[:, 0, 7] = 1.0
    J[:, 1, 8] = 1.0
    J[:, :, 9:] = focal * d_coeffs

    J[~valid] = 0.0
    return uv, valid, J


def unproject(
    uv: np.ndarray,
    depth: np.ndarray,
    R: np.ndarray,
    C: np.ndarray,
    focal: float,
    principal_point: np.ndarray
) -> np.ndarray:
    """Lift undistorted pixel coordinates to world points at given depths.

    Args:
        uv: Nx2 array of pixel coordinates
        depth: Depth along the optical axis (scalar or N-element array)
        R: 3x3 rotation matrix (world to camera)
        C: 3-element camera centre
        focal: Focal length in pixels
        principal_point: [cx, cy]

    Returns:
        Nx3 array of world points
    """
    _check_pose(R, C)
    uv = np.atleast_2d(np.asarray(uv, dtype=float))
    if uv.shape[1] != 2:
        raise ValueError(f"uv must be Nx2 array, got shape {uv.shape}")

    depth = np.broadcast_to(np.asarray(depth, dtype=float), (len(uv),))
    xy = (uv - np.asarray(principal_point, dtype=float)) / focal
    X_cam = np.column_stack([xy * depth[:, None], depth])

    return X_cam @ R + C
