"""Core entities: observations, world points, camera state and solve results."""

from dataclasses import dataclass, field, replace
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from ..errors import InputValidationError
from ..math.camera import project
from .warnings import SolveWarning


@dataclass(frozen=True)
class Observation:
    """2D pixel measurement; weight is the inverse pixel variance."""

    id: str
    pixel: Tuple[float, float]
    weight: float = 1.0


@dataclass(frozen=True)
class WorldPoint:
    """Reference point in the solve's local ENU frame (metres)."""

    id: str
    position: Tuple[float, float, float]
    sigma_m: Optional[float] = None


@dataclass(frozen=True)
class Correspondence:
    """Observation matched to a world point sharing its id."""

    observation: Observation
    world_point: WorldPoint
    enabled: bool = True

    def __post_init__(self):
        if self.observation.id != self.world_point.id:
            raise InputValidationError(
                f"Observation {self.observation.id!r} paired with world point {self.world_point.id!r}"
            )

    @property
    def id(self) -> str:
        return self.observation.id


class CorrespondenceSet:
    """Ordered correspondences with array views for the numerical stages.

    Input order is preserved everywhere so diagnostics can be aligned to the
    caller's observations.
    """

    def __init__(self, correspondences: Sequence[Correspondence]):
        self.correspondences = list(correspondences)

        seen = set()
        for c in self.correspondences:
            if c.id in seen:
                raise InputValidationError(f"Duplicate correspondence id: {c.id!r}")
            seen.add(c.id)

        n = len(self.correspondences)
        self.ids: List[str] = [c.id for c in self.correspondences]
        self.pixels = np.array([c.observation.pixel for c in self.correspondences], dtype=float).reshape(n, 2)
        self.world = np.array([c.world_point.position for c in self.correspondences], dtype=float).reshape(n, 3)
        self.weights = np.array([c.observation.weight for c in self.correspondences], dtype=float)
        self.enabled = np.array([c.enabled for c in self.correspondences], dtype=bool)
        self.world_sigmas = np.array(
            [c.world_point.sigma_m or 0.0 for c in self.correspondences], dtype=float
        )

    @classmethod
    def from_arrays(
        cls,
        ids: Sequence[str],
        pixels: np.ndarray,
        world: np.ndarray,
        weights: Optional[np.ndarray] = None
    ) -> "CorrespondenceSet":
        """Build a set from parallel arrays (all enabled)."""
        if weights is None:
            weights = np.ones(len(ids))
        return cls([
            Correspondence(
                Observation(id_, (float(p[0]), float(p[1])), float(w)),
                WorldPoint(id_, (float(X[0]), float(X[1]), float(X[2]))),
            )
            for id_, p, X, w in zip(ids, pixels, world, weights)
        ])

    def subset(self, indices: Sequence[int]) -> "CorrespondenceSet":
        return CorrespondenceSet([self.correspondences[i] for i in indices])

    def enabled_indices(self) -> np.ndarray:
        return np.flatnonzero(self.enabled)

    def __len__(self) -> int:
        return len(self.correspondences)

    def __iter__(self) -> Iterator[Correspondence]:
        return iter(self.correspondences)


@dataclass
class CameraIntrinsics:
    """Pinhole intrinsics with square pixels and optional [k1, k2, p1, p2] distortion."""

    focal_px: float
    principal_point: np.ndarray
    distortion: Optional[np.ndarray] = None

    def __post_init__(self):
        self.principal_point = np.asarray(self.principal_point, dtype=float).reshape(2)
        if self.distortion is not None:
            self.distortion = np.asarray(self.distortion, dtype=float).reshape(4)
        if not np.isfinite(self.focal_px) or self.focal_px <= 0:
            raise ValueError(f"focal_px must be positive, got {self.focal_px}")

    @property
    def cx(self) -> float:
        return float(self.principal_point[0])

    @property
    def cy(self) -> float:
        return float(self.principal_point[1])

    def matrix(self) -> np.ndarray:
        """3x3 calibration matrix K."""
        return np.array([
            [self.focal_px, 0.0, self.cx],
            [0.0, self.focal_px, self.cy],
            [0.0, 0.0, 1.0],
        ])

    def has_distortion(self) -> bool:
        return self.distortion is not None and bool(np.any(self.distortion != 0))

    def with_focal(self, focal_px: float) -> "CameraIntrinsics":
        return replace(self, focal_px=float(focal_px))


@dataclass
class CameraState:
    """Camera pose and intrinsics in the solve's working frame.

    R rotates world vectors into the camera frame; C is the camera centre.
    """

    R: np.ndarray
    C: np.ndarray
    intrinsics: CameraIntrinsics

    def project(self, X: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        return project(
            X,
            self.R,
            self.C,
            self.intrinsics.focal_px,
            self.intrinsics.principal_point,
            self.intrinsics.distortion,
        )

    def residual_norms(self, correspondences: CorrespondenceSet) -> np.ndarray:
        """Per-correspondence pixel error magnitudes; inf where unprojectable."""
        uv, valid = self.project(correspondences.world)
        norms = np.linalg.norm(correspondences.pixels - uv, axis=1)
        return np.where(valid, norms, np.inf)


@dataclass
class GeodeticPose:
    """Camera position (WGS84) and orientation relative to local ENU at the camera."""

    lat: float
    lon: float
    alt: float
    yaw_deg: float
    pitch_deg: float
    roll_deg: float


@dataclass
class Covariance:
    """Labelled parameter covariance; an empty matrix means it could not be estimated."""

    matrix: np.ndarray
    labels: List[str]

    @property
    def is_empty(self) -> bool:
        return self.matrix.size == 0

    def std(self, label: str) -> float:
        i = self.labels.index(label)
        return float(np.sqrt(max(self.matrix[i, i], 0.0)))


@dataclass
class Diagnostics:
    """Fit quality summary aligned to the caller's observation order."""

    rmse_px: float
    inlier_ratio: float
    residuals_px: np.ndarray
    inlier_ids: List[str]
    warnings: List[SolveWarning] = field(default_factory=list)


@dataclass
class BootstrapSamples:
    """Per-resample solutions: positions [lat, lon, alt], orientations [yaw, pitch, roll]."""

    positions: np.ndarray
    orientations: np.ndarray
    focals: Optional[np.ndarray] = None


@dataclass
class SolveResult:
    """Everything produced by one solve invocation."""

    pose: GeodeticPose
    intrinsics: CameraIntrinsics
    covariance: Covariance
    diagnostics: Diagnostics
    bootstrap: Optional[BootstrapSamples] = None
