"""Geodetic (WGS84) <-> ECEF <-> local East-North-Up conversions."""

from functools import lru_cache
from typing import Tuple

import numpy as np
from pyproj import CRS, Transformer


@lru_cache(maxsize=None)
def _ecef_from_geodetic() -> Transformer:
    return Transformer.from_crs(CRS.from_epsg(4979), CRS.from_epsg(4978), always_xy=True)


@lru_cache(maxsize=None)
def _geodetic_from_ecef() -> Transformer:
    return Transformer.from_crs(CRS.from_epsg(4978), CRS.from_epsg(4979), always_xy=True)


def geodetic_to_ecef(lat: np.ndarray, lon: np.ndarray, alt: np.ndarray) -> np.ndarray:
    """Convert geodetic coordinates (degrees, metres) to an Nx3 ECEF array."""
    lat, lon, alt = np.broadcast_arrays(
        np.atleast_1d(np.asarray(lat, dtype=float)),
        np.atleast_1d(np.asarray(lon, dtype=float)),
        np.atleast_1d(np.asarray(alt, dtype=float)),
    )
    x, y, z = _ecef_from_geodetic().transform(lon, lat, alt)
    return np.column_stack([x, y, z])


def ecef_to_geodetic(xyz: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Convert an Nx3 ECEF array to (lat, lon, alt) arrays."""
    xyz = np.atleast_2d(np.asarray(xyz, dtype=float))
    lon, lat, alt = _geodetic_from_ecef().transform(xyz[:, 0], xyz[:, 1], xyz[:, 2])
    return np.asarray(lat), np.asarray(lon), np.asarray(alt)


def enu_basis(lat: float, lon: float) -> np.ndarray:
    """Rotation taking ECEF vectors into the ENU frame at (lat, lon)."""
    phi, lam = np.radians(lat), np.radians(lon)
    sin_p, cos_p = np.sin(phi), np.cos(phi)
    sin_l, cos_l = np.sin(lam), np.cos(lam)
    return np.array([
        [-sin_l, cos_l, 0.0],
        [-sin_p * cos_l, -sin_p * sin_l, cos_p],
        [cos_p * cos_l, cos_p * sin_l, sin_p],
    ])


class LocalFrame:
    """Local tangent ENU frame anchored at a geodetic origin."""

    def __init__(self, lat: float, lon: float, alt: float = 0.0):
        self.lat = float(lat)
        self.lon = float(lon)
        self.alt = float(alt)
        self.origin_ecef = geodetic_to_ecef(lat, lon, alt)[0]
        self.R_enu_from_ecef = enu_basis(lat, lon)

    @classmethod
    def at_centroid(cls, xyz: np.ndarray) -> "LocalFrame":
        """Frame anchored at the centroid of Nx3 ECEF points."""
        centroid = np.atleast_2d(np.asarray(xyz, dtype=float)).mean(axis=0)
        c_lat, c_lon, c_alt = ecef_to_geodetic(centroid)
        return cls(c_lat[0], c_lon[0], c_alt[0])

    def ecef_to_enu(self, xyz: np.ndarray) -> np.ndarray:
        xyz = np.atleast_2d(np.asarray(xyz, dtype=float))
        return (xyz - self.origin_ecef) @ self.R_enu_from_ecef.T

    def enu_to_ecef(self, enu: np.ndarray) -> np.ndarray:
        enu = np.atleast_2d(np.asarray(enu, dtype=float))
        return enu @ self.R_enu_from_ecef + self.origin_ecef

    def geodetic_to_enu(self, lat, lon, alt) -> np.ndarray:
        """Nx3 ENU coordinates of geodetic points."""
        return self.ecef_to_enu(geodetic_to_ecef(lat, lon, alt))

    def enu_to_geodetic(self, enu: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return ecef_to_geodetic(self.enu_to_ecef(enu))

    def rotation_to(self, other: "LocalFrame") -> np.ndarray:
        """Rotation taking vectors in this frame into the other frame's axes."""
        return other.R_enu_from_ecef @ self.R_enu_from_ecef.T

    def __repr__(self) -> str:
        return f"LocalFrame(lat={self.lat:.8f}, lon={self.lon:.8f}, alt={self.alt:.3f})"
