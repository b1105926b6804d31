"""Synthetic resection scenes with exact observations."""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..georeference import geodetic_to_state
from ..math.camera import unproject
from ..math.geodesy import LocalFrame
from ..models.entities import CameraIntrinsics, GeodeticPose


@dataclass
class SyntheticScene:
    """Ground-truth camera plus geodetic reference points and their pixels."""

    pose: GeodeticPose
    intrinsics: CameraIntrinsics
    image_size: Tuple[float, float]
    ids: List[str]
    lla: np.ndarray
    pixels: np.ndarray
    outlier_ids: List[str] = field(default_factory=list)

    @property
    def n_points(self) -> int:
        return len(self.ids)

    def to_request(self, **sections: Any) -> Dict[str, Any]:
        """Solve request payload (wire format) for this scene.

        Extra keyword arguments are added as top-level request sections,
        e.g. ``model={"estimateFocal": False}``.
        """
        request = {
            "image": {"width": self.image_size[0], "height": self.image_size[1]},
            "correspondences": [
                {
                    "id": id_,
                    "pixel": {"u": float(uv[0]), "v": float(uv[1])},
                    "world": {"lat": float(p[0]), "lon": float(p[1]), "alt": float(p[2])},
                }
                for id_, uv, p in zip(self.ids, self.pixels, self.lla)
            ],
        }
        request.update(sections)
        return request

    def intrinsics_payload(self) -> Dict[str, float]:
        return {
            "focalPx": float(self.intrinsics.focal_px),
            "cx": self.intrinsics.cx,
            "cy": self.intrinsics.cy,
        }


class SceneGenerator:
    """Generator for synthetic resection scenes."""

    def __init__(self, seed: Optional[int] = None):
        """Initialize scene generator.

        Args:
            seed: Random seed for reproducible generation
        """
        self.rng = np.random.default_rng(seed)

    def generate(
        self,
        pose: GeodeticPose,
        intrinsics: CameraIntrinsics,
        image_size: Tuple[float, float],
        n_points: int = 6,
        depth_range: Tuple[float, float] = (40.0, 120.0),
        margin: float = 0.1,
        ground_height: Optional[float] = None
    ) -> SyntheticScene:
        """Generate points visible from a camera.

        Pixels are drawn inside the image (leaving a relative margin) and
        lifted to random depths. With ground_height set, the rays are instead
        intersected with the horizontal plane that far below the camera, which
        gives a coplanar point set.

        Args:
            pose: Ground-truth geodetic camera pose
            intrinsics: Ground-truth intrinsics
            image_size: (width, height) in pixels
            n_points: Number of correspondences
            depth_range: Depth interval along the optical axis (metres)
            margin: Fraction of the image kept free at each border
            ground_height: Camera height above a ground plane (metres)

        Returns:
            SyntheticScene with exact pixels
        """
        width, height = image_size
        at = LocalFrame(pose.lat, pose.lon, pose.alt)
        camera = geodetic_to_state(pose, intrinsics, at)

        points = []
        while len(points) < n_points:
            uv = np.array([
                self.rng.uniform(margin * width, (1 - margin) * width),
                self.rng.uniform(margin * height, (1 - margin) * height),
            ])

            if ground_height is None:
                depth = self.rng.uniform(*depth_range)
                points.append(unproject(uv, depth, camera.R, camera.C, intrinsics.focal_px, intrinsics.principal_point)[0])
                continue

            ray = unproject(uv, 1.0, camera.R, camera.C, intrinsics.focal_px, intrinsics.principal_point)[0] - camera.C
            if ray[2] > -1e-3:
                continue
            depth = -ground_height / ray[2]
            if depth_range[0] <= depth <= depth_range[1]:
                points.append(camera.C + depth * ray)

        lat, lon, alt = at.enu_to_geodetic(np.array(points))
        lla = np.column_stack([lat, lon, alt])

        # Exact pixels for the geodetic coordinates actually reported
        world = at.geodetic_to_enu(lat, lon, alt)
        pixels, valid = camera.project(world)
        if not np.all(valid):
            raise ValueError("Generated point fell behind the camera")

        ids = [f"p{i:02d}" for i in range(n_points)]
        return SyntheticScene(pose, intrinsics, (width, height), ids, lla, pixels)

    def add_outliers(
        self,
        scene: SyntheticScene,
        ids: Sequence[str],
        offset_px: float = 50.0
    ) -> SyntheticScene:
        """Copy of the scene with the given observations moved by offset_px in a random direction."""
        pixels = scene.pixels.copy()
        for id_ in ids:
            i = scene.ids.index(id_)
            angle = self.rng.uniform(0, 2 * np.pi)
            pixels[i] += offset_px * np.array([np.cos(angle), np.sin(angle)])
        return replace(scene, pixels=pixels, outlier_ids=list(scene.outlier_ids) + list(ids))


def make_resection_scene(
    lat: float = 37.0,
    lon: float = -122.0,
    alt: float = 100.0,
    yaw_deg: float = 0.0,
    pitch_deg: float = 0.0,
    roll_deg: float = 0.0,
    focal_px: float = 1000.0,
    image_size: Tuple[float, float] = (1920, 1080),
    n_points: int = 6,
    seed: int = 0,
    **kwargs
) -> SyntheticScene:
    """Scene with a centred principal point and no distortion."""
    pose = GeodeticPose(lat, lon, alt, yaw_deg, pitch_deg, roll_deg)
    intrinsics = CameraIntrinsics(focal_px, np.array([image_size[0] / 2, image_size[1] / 2]))
    return SceneGenerator(seed).generate(pose, intrinsics, image_size, n_points=n_points, **kwargs)
