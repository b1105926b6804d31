"""Numerical Jacobians, used to map covariances and to verify analytic derivatives."""

from typing import Callable, Optional, Tuple

import numpy as np


def finite_difference_jacobian(
    func: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    h: float = 1e-7,
    method: str = "central",
    steps: Optional[np.ndarray] = None
) -> np.ndarray:
    """Differentiate a vector function one parameter at a time.

    Args:
        func: Function that takes x and returns a vector
        x: Point of evaluation
        h: Step size for every parameter (ignored when steps is given)
        method: "forward" or "central"
        steps: Per-parameter step sizes, for parameters of mixed units

    Returns:
        Jacobian matrix J with J[i, j] = df_i/dx_j
    """
    if method not in ("forward", "central"):
        raise ValueError(f"Unknown finite difference method: {method}")

    x = np.atleast_1d(np.asarray(x, dtype=float))
    steps = np.full(x.shape, h) if steps is None else np.asarray(steps, dtype=float)

    def f(point: np.ndarray) -> np.ndarray:
        return np.atleast_1d(np.asarray(func(point), dtype=float))

    f0 = f(x) if method == "forward" else None
    columns = []
    for j, step in enumerate(steps):
        dx = np.zeros_like(x)
        dx[j] = step
        if f0 is not None:
            columns.append((f(x + dx) - f0) / step)
        else:
            columns.append((f(x + dx) - f(x - dx)) / (2.0 * step))

    if not columns:
        return np.zeros((len(f(x)), 0))
    return np.column_stack(columns)


def check_jacobian(
    func: Callable[[np.ndarray], np.ndarray],
    jacobian_func: Callable[[np.ndarray], np.ndarray],
    x: np.ndarray,
    h: float = 1e-7,
    atol: float = 1e-6,
    rtol: float = 1e-6
) -> Tuple[bool, float, np.ndarray]:
    """Compare an analytic Jacobian with central differences.

    An entry passes when |analytic - numeric| <= atol + rtol * |numeric|.

    Returns:
        Tuple of (all entries pass, max absolute error, absolute error matrix)
    """
    numeric = finite_difference_jacobian(func, x, h)
    analytic = np.asarray(jacobian_func(x), dtype=float)
    if analytic.shape != numeric.shape:
        raise ValueError(f"Analytic Jacobian has shape {analytic.shape}, expected {numeric.shape}")

    error = np.abs(analytic - numeric)
    passed = bool(np.all(error <= atol + rtol * np.abs(numeric)))
    return passed, float(error.max()) if error.size else 0.0, error
