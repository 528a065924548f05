"""Test cubic spline interpolation and the host-side interval search."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from jaxthermo.errors import OutOfRangeQuery
from jaxthermo.interpolation import (
    CubicSpline,
    InterpolationMode,
    find_interval,
    monotone_hermite_interval,
    spline_eval_interval,
)


def test_spline_sin():
    """Spline of sin(x) should match to high accuracy."""
    x = jnp.linspace(0, 2 * jnp.pi, 100)
    spl = CubicSpline(x, jnp.sin(x))

    x_eval = jnp.linspace(0.1, 2 * jnp.pi - 0.1, 500)
    max_err = float(jnp.max(jnp.abs(spl.evaluate(x_eval) - jnp.sin(x_eval))))
    assert max_err < 1e-5, f"Spline sin error: {max_err:.2e}"


def test_spline_derivative_cos():
    """Derivative of spline(sin) should be cos."""
    x = jnp.linspace(0, 2 * jnp.pi, 200)
    spl = CubicSpline(x, jnp.sin(x))

    x_eval = jnp.linspace(0.1, 2 * jnp.pi - 0.1, 100)
    max_err = float(jnp.max(jnp.abs(spl.derivative(x_eval) - jnp.cos(x_eval))))
    assert max_err < 1e-3, f"Spline derivative error: {max_err:.2e}"


def test_spline_second_derivative():
    """Second derivative of spline(sin) should be -sin away from the ends."""
    x = jnp.linspace(0, 2 * jnp.pi, 400)
    spl = CubicSpline(x, jnp.sin(x))

    x_eval = jnp.linspace(0.5, 2 * jnp.pi - 0.5, 100)
    max_err = float(jnp.max(jnp.abs(spl.derivative2(x_eval) + jnp.sin(x_eval))))
    assert max_err < 1e-3, f"Spline second derivative error: {max_err:.2e}"


def test_spline_nonuniform_knots():
    """Non-uniform grid (like the redshift table) still interpolates exp accurately."""
    x = jnp.concatenate([jnp.linspace(0, 1, 30, endpoint=False), jnp.linspace(1, 5, 40)])
    spl = CubicSpline(x, jnp.exp(x))

    x_eval = jnp.linspace(0.1, 4.9, 200)
    rel = jnp.abs(spl.evaluate(x_eval) - jnp.exp(x_eval)) / jnp.exp(x_eval)
    assert float(jnp.max(rel)) < 1e-3


def test_multicolumn_matches_single_columns():
    """A (N, M) spline is the same as M separate splines."""
    x = jnp.linspace(0, 3, 60)
    y = jnp.stack([jnp.sin(x), x**3, jnp.exp(-x)], axis=1)
    spl = CubicSpline(x, y)

    x_eval = jnp.linspace(0.05, 2.95, 37)
    table = spl.evaluate(x_eval)
    assert table.shape == (37, 3)
    for j in range(3):
        single = CubicSpline(x, y[:, j])
        np.testing.assert_allclose(table[:, j], single.evaluate(x_eval), rtol=1e-12, atol=1e-14)
        np.testing.assert_allclose(spl.d2y[:, j], single.d2y, rtol=1e-12, atol=1e-12)


def test_integrate_cumulative():
    """Cumulative integral of spline(cos) is sin, and starts at exactly zero."""
    x = jnp.linspace(0, jnp.pi, 200)
    spl = CubicSpline(x, jnp.cos(x))
    cum = spl.integrate_cumulative()

    assert float(cum[0]) == 0.0
    max_err = float(jnp.max(jnp.abs(cum - jnp.sin(x))))
    assert max_err < 1e-4, f"Cumulative integral error: {max_err:.2e}"


def test_integrate_to_point():
    """Integral up to an arbitrary point agrees with the knot-wise integral."""
    x = jnp.linspace(0, 2.0, 80)
    spl = CubicSpline(x, x**2)
    cum = spl.integrate_cumulative()

    assert abs(float(spl.integrate(x[17])) - float(cum[17])) < 1e-12
    assert abs(float(spl.integrate(1.234)) - 1.234**3 / 3.0) < 1e-4


def test_spline_pytree():
    """CubicSpline should work as a JAX pytree (flatten/unflatten)."""
    x = jnp.linspace(0, 1, 10)
    spl = CubicSpline(x, x**2)

    leaves, treedef = jax.tree_util.tree_flatten(spl)
    spl2 = jax.tree_util.tree_unflatten(treedef, leaves)

    x_eval = jnp.array([0.5])
    assert jnp.allclose(spl.evaluate(x_eval), spl2.evaluate(x_eval))


def test_spline_grad():
    """Gradients should flow through spline evaluation."""
    x = jnp.linspace(0, 1, 20)

    def f(y_knots):
        return CubicSpline(x, y_knots).evaluate(jnp.array(0.5))

    grad = jax.grad(f)(jnp.sin(x))
    assert float(jnp.sum(jnp.abs(grad))) > 0, "Gradient through spline is zero"
    assert jnp.all(jnp.isfinite(grad)), "NaN in spline gradient"


class TestFindInterval:
    x = np.array([0.0, 0.5, 1.0, 2.0, 4.0, 8.0])

    @pytest.mark.parametrize("mode", list(InterpolationMode))
    def test_modes_agree(self, mode):
        for x_eval in [0.0, 0.25, 0.5, 0.75, 1.0, 3.9, 4.0, 7.9, 8.0]:
            expected = find_interval(self.x, x_eval)
            assert find_interval(self.x, x_eval, mode, 0) == expected

    def test_closest_walks_back(self):
        assert find_interval(self.x, 0.6, InterpolationMode.CLOSEST, last_index=4) == 1

    def test_right_edge_uses_last_interval(self):
        assert find_interval(self.x, 8.0) == len(self.x) - 2

    def test_growing_refuses_to_move_back(self):
        with pytest.raises(ValueError, match="growing"):
            find_interval(self.x, 0.6, InterpolationMode.GROWING, last_index=4)

    @pytest.mark.parametrize("x_eval", [-1e-9, 8.0 + 1e-9, float("nan")])
    def test_out_of_range(self, x_eval):
        with pytest.raises(OutOfRangeQuery):
            find_interval(self.x, x_eval)

    def test_eval_interval_matches_spline(self):
        x = jnp.linspace(0.0, 3.0, 40)
        y = jnp.stack([jnp.sin(x), jnp.cos(x)], axis=1)
        spl = CubicSpline(x, y)
        xh, yh, d2h = np.asarray(x), np.asarray(y), np.asarray(spl.d2y)
        for x_eval in [0.0, 0.31, 1.7, 3.0]:
            i = find_interval(xh, x_eval)
            np.testing.assert_allclose(
                spline_eval_interval(xh, yh, d2h, i, x_eval), spl.evaluate(x_eval), rtol=1e-12, atol=1e-14
            )


class TestMonotoneHermite:

    def test_reproduces_cubic(self):
        """With exact slopes and no limiting, a cubic comes back exactly."""
        x = np.linspace(0.0, 2.0, 9)
        y = x**3 + x
        dy = 3.0 * x**2 + 1.0
        for x_eval in [0.0, 0.1, 0.8, 1.33, 2.0]:
            i = find_interval(x, x_eval)
            assert monotone_hermite_interval(x, y, dy, i, x_eval) == pytest.approx(x_eval**3 + x_eval, rel=1e-12)

    def test_steep_growth_stays_monotone(self):
        """exp(40 x) on a coarse grid: no overshoot, no dips."""
        x = np.linspace(0.0, 1.0, 11)
        y = np.exp(40.0 * x)
        dy = 40.0 * y
        xs = np.linspace(0.0, 1.0, 2001)
        vals = np.array([monotone_hermite_interval(x, y, dy, find_interval(x, xe), xe) for xe in xs])
        assert np.all(np.diff(vals) >= 0.0)
        for xe, v in zip(xs, vals):
            i = find_interval(x, xe)
            assert y[i] * (1.0 - 1e-12) <= v <= y[i + 1] * (1.0 + 1e-12)

    def test_flat_interval(self):
        x = np.array([0.0, 1.0, 2.0])
        y = np.array([1.0, 1.0, 3.0])
        dy = np.array([0.5, 0.5, 2.0])
        assert monotone_hermite_interval(x, y, dy, 0, 0.4) == pytest.approx(1.0, rel=1e-15)
