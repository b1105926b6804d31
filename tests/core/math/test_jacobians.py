"""Tests for Jacobian computation utilities."""

import numpy as np
import pytest

from resection.core.math.jacobians import check_jacobian, finite_difference_jacobian


class TestJacobians:
    """Test Jacobian computation utilities."""

    def test_finite_difference_linear(self):
        """Test finite difference for linear function."""
        A = np.array([[1, 2], [3, 4], [5, 6]])
        J = finite_difference_jacobian(lambda x: A @ x, np.array([1.0, 2.0]))
        np.testing.assert_allclose(J, A, atol=1e-6)

    def test_forward_difference(self):
        J = finite_difference_jacobian(lambda x: x**2, np.array([3.0]), h=1e-7, method="forward")
        np.testing.assert_allclose(J, [[6.0]], atol=1e-5)

    def test_per_parameter_steps(self):
        func = lambda x: np.array([np.sin(x[0]), 1e3 * x[1]])
        J = finite_difference_jacobian(func, np.array([0.3, 2.0]), steps=np.array([1e-6, 1e-2]))
        np.testing.assert_allclose(J, [[np.cos(0.3), 0], [0, 1e3]], atol=1e-6)

    def test_unknown_method(self):
        with pytest.raises(ValueError):
            finite_difference_jacobian(lambda x: x, np.ones(2), method="backward")

    def test_check_jacobian(self):
        def func(x):
            return np.array([x[0]**2, x[0] * x[1], x[1]**2])

        def good(x):
            return np.array([[2 * x[0], 0], [x[1], x[0]], [0, 2 * x[1]]])

        def bad(x):
            return good(x) + 0.1

        x = np.array([1.5, -0.5])
        ok, max_err, _ = check_jacobian(func, good, x)
        assert ok
        assert max_err < 1e-6

        ok, max_err, _ = check_jacobian(func, bad, x)
        assert not ok
        assert max_err == pytest.approx(0.1, abs=1e-6)
