"""Cubic spline interpolation for jaxthermo.

Provides a natural cubic spline class registered as a JAX pytree, so it can
live inside other pytrees (e.g., BackgroundResult) and flow through jit/grad/vmap.
Knot values may be a vector (N,) or a table (N, M): every column is splined
over the same knots, which is how the thermodynamics table is handled.

The second half of the module is the host-side query path used by
thermodynamics_at_z(): one interval search with a selectable strategy
(binary search, hinted local search, forward scan) followed by the
standard cubic spline formula on that interval. monotone_hermite_interval()
serves columns that must stay monotone between knots (the optical depth).

References:
    DISCO-EB: src/discoeb/spline_interpolation.py
    CLASS: tools/arrays.c (array_spline_table_lines,
           array_interpolate_spline, array_interpolate_spline_growing_closeby)
"""

from __future__ import annotations

import enum

import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float

from jaxthermo.errors import OutOfRangeQuery


def _expand(h, ndim):
    """Reshape a knot-spacing vector so it broadcasts against (N, ...) values."""
    return h.reshape(h.shape + (1,) * (ndim - 1))


@jax.tree_util.register_pytree_node_class
class CubicSpline:
    """Natural cubic spline interpolation, registered as a JAX pytree.

    Constructed from knot positions x and values y. Supports evaluation,
    first/second derivatives, and cumulative integrals.

    The spline satisfies: S''(x[0]) = S''(x[-1]) = 0 (natural boundary conditions).

    Attributes:
        x: knot positions, shape (N,), strictly increasing
        y: knot values, shape (N,) or (N, M)
        d2y: second derivatives at knots, same shape as y
    """

    def __init__(self, x: Float[Array, "N"], y: Float[Array, "N ..."]):
        """Build cubic spline from knot positions and values.

        Args:
            x: knot positions, shape (N,), must be strictly increasing
            y: knot values, shape (N,) or (N, M)
        """
        self.x = jnp.asarray(x)
        self.y = jnp.asarray(y)
        self.d2y = _compute_natural_spline_coeffs(self.x, self.y)

    def _interval(self, x_eval):
        x_clamped = jnp.clip(x_eval, self.x[0], self.x[-1])
        idx = jnp.searchsorted(self.x, x_clamped, side="right") - 1
        idx = jnp.clip(idx, 0, len(self.x) - 2)
        h = self.x[idx + 1] - self.x[idx]
        A = (self.x[idx + 1] - x_clamped) / h
        B = (x_clamped - self.x[idx]) / h
        if self.y.ndim > 1:
            h, A, B = h[..., None], A[..., None], B[..., None]
        return idx, h, A, B

    def evaluate(self, x_eval: Float[Array, "..."]) -> Float[Array, "..."]:
        """Evaluate the spline at given points.

        Uses the standard cubic spline formula:
            S(x) = A*y_i + B*y_{i+1} + (A^3 - A)*d2y_i*h^2/6 + (B^3 - B)*d2y_{i+1}*h^2/6
        where A = (x_{i+1} - x) / h, B = (x - x_i) / h, h = x_{i+1} - x_i.

        Points outside [x[0], x[-1]] are clamped to the end knots.
        """
        idx, h, A, B = self._interval(jnp.asarray(x_eval))
        return (
            A * self.y[idx]
            + B * self.y[idx + 1]
            + ((A**3 - A) * self.d2y[idx] + (B**3 - B) * self.d2y[idx + 1])
            * h**2
            / 6.0
        )

    def derivative(self, x_eval: Float[Array, "..."]) -> Float[Array, "..."]:
        """Evaluate the first derivative of the spline.

        S'(x) = (y_{i+1} - y_i)/h - (3A^2 - 1)*d2y_i*h/6 + (3B^2 - 1)*d2y_{i+1}*h/6
        """
        idx, h, A, B = self._interval(jnp.asarray(x_eval))
        return (
            (self.y[idx + 1] - self.y[idx]) / h
            - (3.0 * A**2 - 1.0) * self.d2y[idx] * h / 6.0
            + (3.0 * B**2 - 1.0) * self.d2y[idx + 1] * h / 6.0
        )

    def derivative2(self, x_eval: Float[Array, "..."]) -> Float[Array, "..."]:
        """Evaluate the second derivative of the spline.

        S''(x) = A * d2y_i + B * d2y_{i+1}
        """
        idx, h, A, B = self._interval(jnp.asarray(x_eval))
        return A * self.d2y[idx] + B * self.d2y[idx + 1]

    def integrate_cumulative(self) -> Float[Array, "N ..."]:
        """Exact integral of the spline from x[0] to every knot.

        Per interval: h*(y_i + y_{i+1})/2 - h^3*(d2y_i + d2y_{i+1})/24.
        The first entry is exactly zero.

        cf. CLASS arrays.c: array_integrate_spline_table_line_to_line
        """
        h = _expand(self.x[1:] - self.x[:-1], self.y.ndim)
        pieces = (
            0.5 * h * (self.y[:-1] + self.y[1:])
            - h**3 * (self.d2y[:-1] + self.d2y[1:]) / 24.0
        )
        zero = jnp.zeros((1,) + self.y.shape[1:])
        return jnp.concatenate([zero, jnp.cumsum(pieces, axis=0)])

    def integrate(self, x_eval: Float[Array, "..."]) -> Float[Array, "..."]:
        """Exact integral of the spline from x[0] to x_eval (clamped)."""
        idx, h, A, B = self._interval(jnp.asarray(x_eval))
        partial = h * (
            self.y[idx] * (B - 0.5 * B**2)
            + self.y[idx + 1] * 0.5 * B**2
            + h**2 / 6.0 * (
                self.d2y[idx] * (0.25 * (1.0 - A**4) - 0.5 * (1.0 - A**2))
                + self.d2y[idx + 1] * (0.25 * B**4 - 0.5 * B**2)
            )
        )
        return self.integrate_cumulative()[idx] + partial

    # --- JAX pytree registration ---

    def tree_flatten(self):
        children = (self.x, self.y, self.d2y)
        aux_data = None
        return children, aux_data

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        obj = object.__new__(cls)
        obj.x, obj.y, obj.d2y = children
        return obj


def _compute_natural_spline_coeffs(
    x: Float[Array, "N"], y: Float[Array, "N ..."]
) -> Float[Array, "N ..."]:
    """Compute second derivatives for natural cubic spline via Thomas algorithm.

    Natural boundary conditions: d2y[0] = d2y[-1] = 0.

    The tridiagonal system is:
        h_{i-1} * d2y_{i-1} + 2(h_{i-1} + h_i) * d2y_i + h_i * d2y_{i+1} = rhs_i
    where h_i = x_{i+1} - x_i and rhs_i = 6 * [(y_{i+1}-y_i)/h_i - (y_i-y_{i-1})/h_{i-1}]

    The matrix depends only on x, so all columns of y share one sweep.
    """
    n = x.shape[0]
    h = x[1:] - x[:-1]  # (N-1,)
    hb = _expand(h, y.ndim)

    rhs = 6.0 * ((y[2:] - y[1:-1]) / hb[1:] - (y[1:-1] - y[:-2]) / hb[:-1])  # (N-2, ...)

    diag = 2.0 * (h[:-1] + h[1:])  # (N-2,) main diagonal
    lower = h[:-1]                   # (N-2,) sub-diagonal
    upper = h[1:]                    # (N-2,) super-diagonal

    # forward sweep
    def forward_step(i, carry):
        d, r = carry
        w = lower[i] / d[i - 1]
        d = d.at[i].set(d[i] - w * upper[i - 1])
        r = r.at[i].set(r[i] - w * r[i - 1])
        return (d, r)

    diag_mod, rhs_mod = jax.lax.fori_loop(1, n - 2, forward_step, (diag, rhs))

    # back substitution
    d2y_interior = jnp.zeros_like(rhs_mod)
    d2y_interior = d2y_interior.at[-1].set(rhs_mod[-1] / diag_mod[-1])

    def backward_step(i, d2y):
        j = n - 4 - i  # counts down from n-4 to 0
        d2y = d2y.at[j].set((rhs_mod[j] - upper[j] * d2y[j + 1]) / diag_mod[j])
        return d2y

    d2y_interior = jax.lax.fori_loop(0, n - 3, backward_step, d2y_interior)

    zero = jnp.zeros((1,) + y.shape[1:])
    return jnp.concatenate([zero, d2y_interior, zero])


# ---------------------------------------------------------------------------
# Host-side point queries
# ---------------------------------------------------------------------------

class InterpolationMode(enum.Enum):
    """Interval search strategy for point queries.

    NORMAL:  binary search, O(log n), for random access.
    CLOSEST: local walk starting from a caller-supplied index.
    GROWING: forward-only scan; the caller guarantees non-decreasing queries.
    """
    NORMAL = "normal"
    CLOSEST = "closest"
    GROWING = "growing"


def find_interval(
    x: np.ndarray,
    x_eval: float,
    mode: InterpolationMode = InterpolationMode.NORMAL,
    last_index: int = 0,
) -> int:
    """Return i with x[i] <= x_eval < x[i+1], or i = len(x) - 2 at the right end.

    Every mode returns the same i for the same x_eval; they differ only in cost.

    Raises:
        OutOfRangeQuery: x_eval outside [x[0], x[-1]] (or NaN)
        ValueError: GROWING mode asked to move backwards
    """
    n = len(x)
    if not (x[0] <= x_eval <= x[-1]):
        raise OutOfRangeQuery(float(x_eval), (float(x[0]), float(x[-1])))

    if mode is InterpolationMode.NORMAL:
        i = int(np.searchsorted(x, x_eval, side="right")) - 1
        return min(max(i, 0), n - 2)

    i = min(max(int(last_index), 0), n - 2)
    if mode is InterpolationMode.CLOSEST:
        while x[i] > x_eval:
            i -= 1
    elif mode is InterpolationMode.GROWING:
        if x[i] > x_eval:
            raise ValueError(
                f"growing interpolation cannot move back from x[{i}]={x[i]:.6g} to {x_eval:.6g}"
            )
    else:
        raise ValueError(f"Unknown interpolation mode: {mode}")
    while i < n - 2 and x[i + 1] <= x_eval:
        i += 1
    return i


def spline_eval_interval(
    x: np.ndarray,
    y: np.ndarray,
    d2y: np.ndarray,
    i: int,
    x_eval: float,
) -> np.ndarray:
    """Cubic spline formula on interval i for every column of y."""
    h = x[i + 1] - x[i]
    A = (x[i + 1] - x_eval) / h
    B = (x_eval - x[i]) / h
    return (
        A * y[i]
        + B * y[i + 1]
        + ((A**3 - A) * d2y[i] + (B**3 - B) * d2y[i + 1]) * h**2 / 6.0
    )


def monotone_hermite_interval(
    x: np.ndarray,
    y: np.ndarray,
    dy: np.ndarray,
    i: int,
    x_eval: float,
) -> float:
    """Cubic Hermite value on interval i with Fritsch-Carlson limited slopes.

    y is a single monotone column and dy its derivative at the knots. The
    slopes are clipped so the cubic stays monotone between x[i] and x[i+1],
    which the natural spline does not guarantee. Knot values are reproduced
    exactly.
    """
    h = x[i + 1] - x[i]
    delta = (y[i + 1] - y[i]) / h
    if delta == 0.0:
        m0 = m1 = 0.0
    else:
        alpha = max(dy[i] / delta, 0.0)
        beta = max(dy[i + 1] / delta, 0.0)
        r2 = alpha * alpha + beta * beta
        if r2 > 9.0:
            scale = 3.0 / np.sqrt(r2)
            alpha *= scale
            beta *= scale
        m0 = alpha * delta
        m1 = beta * delta
    t = (x_eval - x[i]) / h
    return float(
        (1.0 + 2.0 * t) * (1.0 - t) ** 2 * y[i]
        + t * (1.0 - t) ** 2 * h * m0
        + t * t * (3.0 - 2.0 * t) * y[i + 1]
        + t * t * (t - 1.0) * h * m1
    )
