"""Tests for robust loss functions."""

import numpy as np
import pytest

from resection.core.math.robust import (
    SCIPY_LOSS_NAMES,
    apply_robust_loss,
    cauchy_loss,
    huber_loss,
    no_loss,
)


class TestRobustLoss:
    """Test robust loss functions."""

    def test_no_loss(self):
        residual = np.array([-2, -1, 0, 1, 2])
        rho, weights = no_loss(residual)

        np.testing.assert_allclose(rho, 0.5 * residual**2, atol=1e-10)
        np.testing.assert_allclose(weights, np.ones(5), atol=1e-10)

    def test_huber_loss_inliers(self):
        """Huber is quadratic inside delta."""
        residual = np.array([-0.5, 0, 0.5])
        rho, weights = huber_loss(residual, 1.0)

        np.testing.assert_allclose(rho, 0.5 * residual**2, atol=1e-10)
        np.testing.assert_allclose(weights, np.ones(3), atol=1e-10)

    def test_huber_loss_outliers(self):
        """Huber is linear outside delta."""
        residual = np.array([-3.0, 3.0])
        delta = 1.0
        rho, weights = huber_loss(residual, delta)

        np.testing.assert_allclose(rho, delta * (np.abs(residual) - 0.5 * delta), atol=1e-10)
        np.testing.assert_allclose(weights, delta / np.abs(residual), atol=1e-10)

    def test_huber_continuous_at_delta(self):
        delta = 2.0
        below, _ = huber_loss(np.array([delta - 1e-9]), delta)
        above, _ = huber_loss(np.array([delta + 1e-9]), delta)
        assert below[0] == pytest.approx(above[0], abs=1e-8)

    def test_cauchy_loss(self):
        residual = np.array([0.0, 1.0, 10.0])
        rho, weights = cauchy_loss(residual, 1.0)

        np.testing.assert_allclose(rho, 0.5 * np.log1p(residual**2))
        np.testing.assert_allclose(weights, 1 / (1 + residual**2))
        assert weights[2] < weights[1] < weights[0]

    def test_apply_robust_loss_dispatch(self):
        residual = np.array([0.5, 5.0])
        for name, func in [("huber", huber_loss), ("cauchy", cauchy_loss)]:
            rho, weights = apply_robust_loss(residual, name, 2.0)
            expected_rho, expected_weights = func(residual, 2.0)
            np.testing.assert_allclose(rho, expected_rho)
            np.testing.assert_allclose(weights, expected_weights)

    def test_unknown_loss(self):
        with pytest.raises(ValueError):
            apply_robust_loss(np.ones(2), "tukey")

    def test_scipy_names(self):
        assert set(SCIPY_LOSS_NAMES) == {"none", "huber", "cauchy"}
        assert SCIPY_LOSS_NAMES["none"] == "linear"
