"""Wire models for the solve and reprojection operations.

Field names are camelCase on the wire (``yawDeg``, ``focalPx``) and snake_case
in Python. Unknown fields are rejected so a misspelt key fails loudly instead
of silently falling back to a default.
"""

from typing import List, Literal, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .entities import CameraIntrinsics


class WireModel(BaseModel):
    """Base for all request/response models."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        allow_inf_nan=False,
    )


class ImageSize(WireModel):
    """Image dimensions in pixels."""

    width: float = Field(gt=0, description="Image width in pixels")
    height: float = Field(gt=0, description="Image height in pixels")


class Pixel(WireModel):
    """Observed image location."""

    u: float
    v: float
    sigma_px: Optional[float] = Field(default=None, gt=0, description="Measurement std-dev in pixels")


class WorldLLA(WireModel):
    """Geodetic reference point (WGS84 degrees, ellipsoidal metres)."""

    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-360, le=360)
    alt: float = 0.0
    sigma_m: Optional[float] = Field(default=None, gt=0, description="Position std-dev in metres")


class WorldENU(WireModel):
    """Reference point in a local East-North-Up frame around the request origin."""

    east: float
    north: float
    up: float
    sigma_m: Optional[float] = Field(default=None, gt=0, description="Position std-dev in metres")


WorldPosition = Union[WorldLLA, WorldENU]


class GeodeticOrigin(WireModel):
    """Anchor of the local ENU frame used by ENU world points."""

    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-360, le=360)
    alt: float = 0.0


class Corr(WireModel):
    """One 2D-3D correspondence."""

    id: str = Field(min_length=1)
    pixel: Pixel
    world: WorldPosition
    enabled: bool = True


class SolverModel(WireModel):
    """Which intrinsic parameters are estimated jointly with the pose."""

    estimate_focal: bool = True
    estimate_principal_point: bool = False
    estimate_distortion: bool = Field(
        default=False, description="Estimate radial k1, k2; tangential p1, p2 are carried through unchanged"
    )


class GaussianPrior(WireModel):
    mean: float
    sigma: float = Field(gt=0)


class GeoBounds(WireModel):
    """Expected geographic extent of the camera position."""

    lat_min: float = Field(ge=-90, le=90)
    lat_max: float = Field(ge=-90, le=90)
    lon_min: float
    lon_max: float

    @model_validator(mode="after")
    def validate_order(self):
        if self.lat_min > self.lat_max or self.lon_min > self.lon_max:
            raise ValueError("bounds minimum must not exceed maximum")
        return self

    def contains(self, lat: float, lon: float) -> bool:
        return self.lat_min <= lat <= self.lat_max and self.lon_min <= lon <= self.lon_max


class Priors(WireModel):
    """Optional soft constraints added to the refinement."""

    focal_px: Optional[GaussianPrior] = None
    camera_alt: Optional[GaussianPrior] = None
    bounds: Optional[GeoBounds] = None

    @field_validator("focal_px")
    @classmethod
    def validate_focal(cls, v):
        if v is not None and v.mean <= 0:
            raise ValueError("focal prior mean must be positive")
        return v


class RansacConfig(WireModel):
    """Consensus search policy."""

    max_iters: int = Field(default=1000, gt=0, description="Maximum minimal samples")
    inlier_px: float = Field(default=4.0, gt=0, description="Inlier reprojection threshold")
    target_prob: float = Field(default=0.999, gt=0, lt=1, description="Confidence of an outlier-free sample")
    time_budget_ms: float = Field(default=10000.0, gt=0, description="Wall-clock budget")
    seed: Optional[int] = Field(default=None, ge=0, description="Sampling seed; derived from input when omitted")
    workers: int = Field(default=4, ge=1, le=64, description="Scoring threads")
    minimal_method: Literal["auto", "p3p", "p4pf", "dlt"] = "auto"


class RefineConfig(WireModel):
    """Nonlinear refinement policy."""

    max_iters: int = Field(default=100, gt=0, description="Maximum solver iterations")
    robust_loss: Literal["none", "huber", "cauchy"] = "huber"
    huber_delta: float = Field(default=1.0, gt=0, description="Huber transition in pixels")
    cauchy_sigma: float = Field(default=1.0, gt=0, description="Cauchy scale in pixels")
    method: Literal["trf", "dogbox", "lm"] = "trf"
    tolerance: float = Field(default=1e-12, gt=0, description="Function/parameter/gradient tolerance")

    @model_validator(mode="after")
    def validate_method(self):
        if self.method == "lm" and self.robust_loss != "none":
            raise ValueError("method 'lm' does not support a robust loss")
        return self

    @property
    def loss_scale(self) -> float:
        return self.cauchy_sigma if self.robust_loss == "cauchy" else self.huber_delta


class BootstrapConfig(WireModel):
    enabled: bool = False
    samples: int = Field(default=50, ge=0, le=10000)
    seed: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def validate_samples(self):
        if self.enabled and self.samples < 2:
            raise ValueError("bootstrap needs at least 2 samples when enabled")
        return self


class UncertaintyConfig(WireModel):
    bootstrap: BootstrapConfig = Field(default_factory=BootstrapConfig)


class Intrinsics(WireModel):
    """Camera intrinsics; distortion terms are omitted when absent."""

    focal_px: float = Field(gt=0)
    cx: float
    cy: float
    k1: Optional[float] = None
    k2: Optional[float] = None
    p1: Optional[float] = None
    p2: Optional[float] = None

    def to_camera_intrinsics(self) -> CameraIntrinsics:
        terms = [self.k1, self.k2, self.p1, self.p2]
        distortion = None
        if any(t is not None for t in terms):
            distortion = np.array([t or 0.0 for t in terms])
        return CameraIntrinsics(self.focal_px, np.array([self.cx, self.cy]), distortion)

    @classmethod
    def from_camera_intrinsics(cls, intrinsics: CameraIntrinsics) -> "Intrinsics":
        fields = {}
        if intrinsics.distortion is not None:
            k1, k2, p1, p2 = (float(v) for v in intrinsics.distortion)
            fields = {"k1": k1, "k2": k2, "p1": p1, "p2": p2}
        return cls(
            focal_px=float(intrinsics.focal_px),
            cx=intrinsics.cx,
            cy=intrinsics.cy,
            **fields,
        )


class Pose(WireModel):
    """Geodetic camera position and yaw/pitch/roll relative to local ENU."""

    lat: float = Field(ge=-90, le=90)
    lon: float
    alt: float
    yaw_deg: float
    pitch_deg: float = Field(ge=-90, le=90)
    roll_deg: float


class SolveRequest(WireModel):
    """Input of the solve operation."""

    image: ImageSize
    correspondences: List[Corr]
    model: SolverModel = Field(default_factory=SolverModel)
    intrinsics: Optional[Intrinsics] = Field(default=None, description="Initial guess or fixed intrinsics")
    priors: Optional[Priors] = None
    origin: Optional[GeodeticOrigin] = Field(default=None, description="Required for ENU world points")
    ransac: RansacConfig = Field(default_factory=RansacConfig)
    refine: RefineConfig = Field(default_factory=RefineConfig)
    uncertainty: UncertaintyConfig = Field(default_factory=UncertaintyConfig)


class Covariance(WireModel):
    """Row-major flattened covariance with its parameter labels."""

    matrix: List[float]
    labels: List[str]


class Diagnostics(WireModel):
    rmse_px: float = Field(ge=0)
    inlier_ratio: float = Field(ge=0, le=1)
    residuals_px: List[float]
    inlier_ids: List[str]
    warnings: List[str]


class Bootstrap(WireModel):
    position_samples: List[List[float]]
    orientation_samples: List[List[float]]
    focal_samples: Optional[List[float]] = None


class SolveResponse(WireModel):
    """Output of the solve operation."""

    pose: Pose
    intrinsics: Intrinsics
    covariance: Covariance
    bootstrap: Optional[Bootstrap] = None
    diagnostics: Diagnostics


class ReprojectRequest(WireModel):
    """Input of the reprojection operation."""

    pose: Pose
    intrinsics: Intrinsics
    points: List[WorldPosition]
    origin: Optional[GeodeticOrigin] = None
    image: Optional[ImageSize] = Field(default=None, description="Flags points falling outside the frame")


class ProjectedPixel(WireModel):
    u: Optional[float] = None
    v: Optional[float] = None
    valid: bool


class ReprojectResponse(WireModel):
    pixels: List[ProjectedPixel]
    warnings: List[str]
