"""Math primitives for camera resection."""

from .rotations import so3_exp, so3_log, euler_to_matrix, matrix_to_euler
from .camera import project, project_with_jacobian, unproject, point_depth
from .geodesy import LocalFrame, geodetic_to_ecef, ecef_to_geodetic
from .robust import huber_loss, cauchy_loss, apply_robust_loss
from .jacobians import finite_difference_jacobian, check_jacobian

__all__ = [
    "so3_exp",
    "so3_log",
    "euler_to_matrix",
    "matrix_to_euler",
    "project",
    "project_with_jacobian",
    "unproject",
    "point_depth",
    "LocalFrame",
    "geodetic_to_ecef",
    "ecef_to_geodetic",
    "huber_loss",
    "cauchy_loss",
    "apply_robust_loss",
    "finite_difference_jacobian",
    "check_jacobian",
]
