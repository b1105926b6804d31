"""Robust loss functions and the weights they induce on pixel residuals.

Every loss returns ``(rho, weights)``: the per-residual cost, normalised like
scipy's ``least_squares`` (``rho = r^2 / 2`` near zero), and the IRLS weight
``rho'(r) / r`` used when the normal equations are formed by hand.
"""

from typing import Tuple

import numpy as np


# Names understood by scipy.optimize.least_squares(loss=...)
SCIPY_LOSS_NAMES = {
    "none": "linear",
    "huber": "huber",
    "cauchy": "cauchy",
}


def no_loss(residual: np.ndarray, scale: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
    """Plain least squares; scale is accepted for a uniform signature."""
    r = np.asarray(residual, dtype=float)
    return 0.5 * r * r, np.ones_like(r)


def huber_loss(residual: np.ndarray, delta: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
    """Huber loss: quadratic within delta pixels, linear beyond.

    Args:
        residual: Residual values (pixels)
        delta: Transition point (pixels)

    Returns:
        Tuple of (rho, weights)
    """
    r = np.abs(np.asarray(residual, dtype=float))
    clipped = np.minimum(r, delta)

    # Quadratic part up to delta plus the linear tail beyond it
    rho = clipped * (r - 0.5 * clipped)
    weights = delta / np.maximum(r, delta)
    return rho, weights


def cauchy_loss(residual: np.ndarray, sigma: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
    """Cauchy (Lorentzian) loss with scale sigma."""
    z = (np.asarray(residual, dtype=float) / sigma)**2
    return 0.5 * sigma**2 * np.log1p(z), 1.0 / (1.0 + z)


_LOSSES = {
    "none": no_loss,
    "huber": huber_loss,
    "cauchy": cauchy_loss,
}


def apply_robust_loss(residual: np.ndarray, loss_type: str = "huber", scale: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
    """Evaluate the named loss ("none", "huber" or "cauchy") at the given scale."""
    if loss_type not in _LOSSES:
        raise ValueError(f"Unknown loss type: {loss_type}")
    return _LOSSES[loss_type](residual, scale)
