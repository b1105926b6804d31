"""Minimal-set camera pose solvers used to seed the consensus search."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np
from scipy.linalg import rq
from scipy.optimize import minimize_scalar

from ..math.camera import MIN_DEPTH, project
from ..models.entities import CameraIntrinsics

logger = logging.getLogger(__name__)


# Correspondences consumed by each minimal method
MINIMAL_SAMPLE_SIZES = {
    "p3p": 3,
    "p4pf": 4,
    "dlt": 6,
}

# Relative singular-value floor below which a point set counts as collinear/coplanar
COLLINEAR_TOLERANCE = 1e-6
COPLANAR_TOLERANCE = 1e-3

# Pixels closer than this are treated as the same observation
MIN_PIXEL_SEPARATION = 1.0

# Number of log-spaced focal lengths probed before the 1-D refinement
FOCAL_GRID_SIZE = 48


@dataclass
class PoseHypothesis:
    """Candidate camera from a minimal solver.

    R rotates world vectors into the camera frame; C is the camera centre.
    """

    R: np.ndarray
    C: np.ndarray
    focal_px: float
    method: str = ""


def resolve_method(method: str, estimate_focal: bool) -> str:
    """Map "auto" to the concrete minimal method."""
    if method == "auto":
        return "p4pf" if estimate_focal else "p3p"
    if method not in MINIMAL_SAMPLE_SIZES:
        raise ValueError(f"Unknown minimal method: {method}")
    return method


def focal_search_range(
    image_width: float,
    image_height: float,
    prior_mean: Optional[float] = None,
    prior_sigma: Optional[float] = None
) -> Tuple[float, float]:
    """Focal interval probed by the focal-estimating minimal solver."""
    if prior_mean is not None and prior_sigma is not None:
        low = max(prior_mean - 4 * prior_sigma, 0.05 * prior_mean)
        return low, prior_mean + 4 * prior_sigma

    size = max(image_width, image_height)
    return 0.2 * size, 10.0 * size


def _relative_spread(points: np.ndarray) -> np.ndarray:
    """Singular values of centred points, normalised by the largest."""
    centred = points - points.mean(axis=0)
    s = np.linalg.svd(centred, compute_uv=False)
    if s[0] < 1e-12:
        return np.zeros_like(s)
    return s / s[0]


def is_collinear(points: np.ndarray, tolerance: float = COLLINEAR_TOLERANCE) -> bool:
    """True when all points lie on a line (or coincide)."""
    points = np.atleast_2d(np.asarray(points, dtype=float))
    if len(points) < 3:
        return True
    return bool(_relative_spread(points)[1] < tolerance)


def is_coplanar(points: np.ndarray, tolerance: float = COPLANAR_TOLERANCE) -> bool:
    """True when 3D points lie close to a single plane."""
    points = np.atleast_2d(np.asarray(points, dtype=float))
    if len(points) < 4:
        return True
    return bool(_relative_spread(points)[2] < tolerance)


def is_degenerate_sample(world: np.ndarray, pixels: np.ndarray, method: str = "p3p") -> bool:
    """Reject minimal samples whose geometry cannot determine a pose.

    Args:
        world: kx3 world points of the sample
        pixels: kx2 (undistorted) observations of the sample
        method: Minimal method the sample is destined for

    Returns:
        True when the sample should be skipped
    """
    if is_collinear(world) or is_collinear(pixels):
        return True

    diffs = pixels[:, None, :] - pixels[None, :, :]
    dists = np.linalg.norm(diffs, axis=2)
    np.fill_diagonal(dists, np.inf)
    if np.min(dists) < MIN_PIXEL_SEPARATION:
        return True

    if method == "dlt" and is_coplanar(world):
        return True

    return False


def undistort_pixels(pixels: np.ndarray, intrinsics: CameraIntrinsics) -> np.ndarray:
    """Remove lens distortion from observed pixels, keeping pixel units."""
    if not intrinsics.has_distortion():
        return np.asarray(pixels, dtype=float)

    K = intrinsics.matrix()
    points = np.ascontiguousarray(pixels, dtype=np.float64).reshape(-1, 1, 2)
    criteria = (cv2.TERM_CRITERIA_COUNT | cv2.TERM_CRITERIA_EPS, 50, 1e-12)
    undistorted = cv2.undistortPointsIter(points, K, intrinsics.distortion, None, K, criteria)
    return undistorted.reshape(-1, 2)


def _camera_matrix(focal: float, principal_point: np.ndarray) -> np.ndarray:
    return np.array([
        [focal, 0.0, principal_point[0]],
        [0.0, focal, principal_point[1]],
        [0.0, 0.0, 1.0],
    ])


def _p3p_poses(
    world: np.ndarray,
    pixels: np.ndarray,
    focal: float,
    principal_point: np.ndarray
) -> List[Tuple[np.ndarray, np.ndarray]]:
    """All P3P roots as (R, C) pairs with the three points in front."""
    object_points = np.ascontiguousarray(world[:3], dtype=np.float64).reshape(-1, 1, 3)
    image_points = np.ascontiguousarray(pixels[:3], dtype=np.float64).reshape(-1, 1, 2)
    K = _camera_matrix(focal, principal_point)

    try:
        n_solutions, rvecs, tvecs = cv2.solveP3P(
            object_points, image_points, K, None, flags=cv2.SOLVEPNP_P3P
        )
    except cv2.error as e:
        logger.debug(f"P3P failed: {e}")
        return []

    poses = []
    for rvec, tvec in zip(rvecs[:n_solutions], tvecs[:n_solutions]):
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64))
        t = np.asarray(tvec, dtype=np.float64).reshape(3)
        C = -R.T @ t
        depths = (world[:3] - C) @ R[2]
        if np.all(np.isfinite(R)) and np.all(depths > MIN_DEPTH):
            poses.append((R, C))
    return poses


def solve_p3p(
    world: np.ndarray,
    pixels: np.ndarray,
    focal_px: float,
    principal_point: np.ndarray
) -> List[PoseHypothesis]:
    """Pose from three correspondences with known intrinsics (up to four roots)."""
    return [
        PoseHypothesis(R, C, float(focal_px), "p3p")
        for R, C in _p3p_poses(world, pixels, focal_px, principal_point)
    ]


def solve_p4pf(
    world: np.ndarray,
    pixels: np.ndarray,
    principal_point: np.ndarray,
    focal_range: Tuple[float, float],
    grid_size: int = FOCAL_GRID_SIZE,
    n_candidates: int = 3
) -> List[PoseHypothesis]:
    """Pose and focal length from four correspondences.

    P3P on the first three points is run across a log-spaced focal grid and
    the focal that best reprojects the fourth point is polished with a bounded
    scalar search. The poses of the best local minima are returned.
    """
    world = np.asarray(world, dtype=float)
    pixels = np.asarray(pixels, dtype=float)
    principal_point = np.asarray(principal_point, dtype=float)
    probe, target = world[3:4], pixels[3]

    def fourth_point_error(log_focal: float) -> float:
        focal = np.exp(log_focal)
        best = 1e12
        for R, C in _p3p_poses(world, pixels, focal, principal_point):
            uv, valid = project(probe, R, C, focal, principal_point)
            if valid[0]:
                best = min(best, float(np.sum((uv[0] - target)**2)))
        return best

    log_grid = np.linspace(np.log(focal_range[0]), np.log(focal_range[1]), grid_size)
    errors = np.array([fourth_point_error(lf) for lf in log_grid])

    # Interior and boundary local minima of the sampled error curve
    minima = []
    for i in range(grid_size):
        left = errors[i - 1] if i > 0 else np.inf
        right = errors[i + 1] if i < grid_size - 1 else np.inf
        if errors[i] < 1e12 and errors[i] <= left and errors[i] <= right:
            minima.append(i)
    minima.sort(key=lambda i: errors[i])

    hypotheses = []
    for i in minima[:n_candidates]:
        lo = log_grid[max(i - 1, 0)]
        hi = log_grid[min(i + 1, grid_size - 1)]
        result = minimize_scalar(
            fourth_point_error,
            bounds=(lo, hi),
            method="bounded",
            options={"xatol": 1e-12},
        )
        log_focal = result.x if result.fun <= errors[i] else log_grid[i]
        focal = float(np.exp(log_focal))
        hypotheses.extend(
            PoseHypothesis(R, C, focal, "p4pf")
            for R, C in _p3p_poses(world, pixels, focal, principal_point)
        )

    return hypotheses


def _normalization(points: np.ndarray) -> np.ndarray:
    """Similarity moving the centroid to the origin with mean distance sqrt(dim)."""
    dim = points.shape[1]
    centroid = points.mean(axis=0)
    mean_dist = np.mean(np.linalg.norm(points - centroid, axis=1))
    scale = np.sqrt(dim) / max(mean_dist, 1e-12)

    T = np.eye(dim + 1)
    T[:dim, :dim] *= scale
    T[:dim, dim] = -scale * centroid
    return T


def solve_dlt(world: np.ndarray, pixels: np.ndarray) -> List[PoseHypothesis]:
    """Pose and focal length from six or more non-coplanar correspondences.

    Estimates the 3x4 projection matrix with a normalised direct linear
    transform and splits it into calibration and pose by RQ decomposition.
    The focal is the mean of the two diagonal scale terms.
    """
    world = np.asarray(world, dtype=float)
    pixels = np.asarray(pixels, dtype=float)
    n = len(world)
    if n < MINIMAL_SAMPLE_SIZES["dlt"]:
        return []

    T_world = _normalization(world)
    T_image = _normalization(pixels)
    Xh = np.column_stack([world, np.ones(n)]) @ T_world.T
    xh = np.column_stack([pixels, np.ones(n)]) @ T_image.T

    A = np.zeros((2 * n, 12))
    for i in range(n):
        X = Xh[i]
        u, v, w = xh[i]
        A[2 * i, 4:8] = -w * X
        A[2 * i, 8:12] = v * X
        A[2 * i + 1, 0:4] = w * X
        A[2 * i + 1, 8:12] = -u * X

    _, s, Vt = np.linalg.svd(A)
    if s[-2] < 1e-8 * s[0]:
        # Null space is not one-dimensional
        return []

    P = np.linalg.inv(T_image) @ Vt[-1].reshape(3, 4) @ T_world
    M = P[:, :3]
    if abs(np.linalg.det(M)) < 1e-12 * np.linalg.norm(M)**3:
        return []
    if np.linalg.det(M) < 0:
        P = -P
        M = -M

    K, R = rq(M)
    D = np.diag(np.sign(np.diag(K)))
    K = K @ D
    R = D @ R
    if np.linalg.det(R) < 0:
        return []
    K = K / K[2, 2]

    focal = 0.5 * (K[0, 0] + K[1, 1])
    if not np.isfinite(focal) or focal <= 0:
        return []

    C = -np.linalg.solve(M, P[:, 3])
    depths = (world - C) @ R[2]
    if np.count_nonzero(depths > MIN_DEPTH) < n:
        return []

    return [PoseHypothesis(R, C, float(focal), "dlt")]


class MinimalSolver:
    """Minimal-set pose solver bound to one method and fixed camera terms."""

    def __init__(
        self,
        method: str,
        principal_point: np.ndarray,
        focal_px: Optional[float] = None,
        focal_range: Optional[Tuple[float, float]] = None
    ):
        """Initialize minimal solver.

        Args:
            method: "p3p", "p4pf" or "dlt"
            principal_point: Principal point used by the P3P-based methods
            focal_px: Known focal length (required by "p3p")
            focal_range: Focal interval searched by "p4pf"
        """
        if method not in MINIMAL_SAMPLE_SIZES:
            raise ValueError(f"Unknown minimal method: {method}")
        if method == "p3p" and focal_px is None:
            raise ValueError("p3p requires a known focal length")
        if method == "p4pf" and focal_range is None:
            raise ValueError("p4pf requires a focal search range")

        self.method = method
        self.principal_point = np.asarray(principal_point, dtype=float)
        self.focal_px = focal_px
        self.focal_range = focal_range

    @property
    def sample_size(self) -> int:
        return MINIMAL_SAMPLE_SIZES[self.method]

    def is_degenerate(self, world: np.ndarray, pixels: np.ndarray) -> bool:
        return is_degenerate_sample(world, pixels, self.method)

    def solve(self, world: np.ndarray, pixels: np.ndarray) -> List[PoseHypothesis]:
        """Candidate poses for one minimal sample."""
        if self.method == "p3p":
            return solve_p3p(world, pixels, self.focal_px, self.principal_point)
        elif self.method == "p4pf":
            return solve_p4pf(world, pixels, self.principal_point, self.focal_range)
        else:
            return solve_dlt(world, pixels)
