"""Optical depth and visibility function for jaxthermo.

All arrays here are sampled on the merged table, sorted by increasing z.
Derivatives with respect to conformal time eta use dz/deta = -H(z), applied
to spline derivatives in z:

    kappa'   = dkappa/deta = x_e n_H(z) sigma_T a
    kappa''  = -H d(kappa')/dz
    kappa''' = H (dH/dz d(kappa')/dz + H d2(kappa')/dz2)

kappa(z) is the exact integral of the kappa'/H spline from z = 0, so
kappa(0) = 0 exactly. exp(-kappa) is set to exactly 0 once it underflows.

References:
    CLASS: source/thermodynamics.c (thermodynamics_init)
    Ma & Bertschinger (1995)
"""

from __future__ import annotations

import logging

import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float

from jaxthermo import constants as const
from jaxthermo.background import BackgroundResult, H_of_z, dz_dtau
from jaxthermo.errors import MergeInconsistency
from jaxthermo.interpolation import CubicSpline
from jaxthermo.recombination import RecombinationTable, RecombinationWorkspace
from jaxthermo.table import ThermoField, ThermoTable

logger = logging.getLogger(__name__)

# beyond this kappa, exp(-kappa) is below the smallest normal double
KAPPA_UNDERFLOW = -float(np.log(np.finfo(np.float64).tiny))


def scattering_rate(z, xe, ws: RecombinationWorkspace):
    """Thomson scattering rate dkappa/deta [Mpc^-1]."""
    return xe * ws.Nnow * (1.0 + z) ** 2 * const.sigma_T * const.Mpc_over_m


def optical_depth(z: Float[Array, "N"], dkappa: Float[Array, "N"], H: Float[Array, "N"]) -> Float[Array, "N"]:
    """kappa(z) = int_0^z dkappa/deta / H dz' on an increasing grid starting at z = 0."""
    return CubicSpline(z, dkappa / H).integrate_cumulative()


def optical_depth_at(z, dkappa, H, z_eval):
    """kappa at a single redshift inside the grid."""
    return CubicSpline(z, dkappa / H).integrate(z_eval)


def scattering_rate_derivatives(z, dkappa, bg: BackgroundResult):
    """(d^2 kappa/deta^2, d^3 kappa/deta^3) from the z spline of dkappa/deta."""
    spline = CubicSpline(z, dkappa)
    d1 = spline.derivative(z)
    d2 = spline.derivative2(z)
    zdot = dz_dtau(bg, z)
    # d(zdot)/dz = -dH/dz
    dzdot_dz = bg.H_of_loga.derivative(-jnp.log1p(z)) / (1.0 + z)
    ddkappa = zdot * d1
    dddkappa = zdot * (dzdot_dz * d1 + zdot * d2)
    return ddkappa, dddkappa


def visibility(kappa, dkappa, ddkappa, dddkappa):
    """exp(-kappa), g, g' and g'' (derivatives in conformal time).

    g   = kappa' e^-kappa
    g'  = (kappa'' + kappa'^2) e^-kappa
    g'' = (kappa''' + 3 kappa' kappa'' + kappa'^3) e^-kappa
    """
    exp_m_kappa = jnp.where(kappa > KAPPA_UNDERFLOW, 0.0, jnp.exp(-jnp.minimum(kappa, KAPPA_UNDERFLOW)))
    g = dkappa * exp_m_kappa
    dg = (ddkappa + dkappa**2) * exp_m_kappa
    ddg = (dddkappa + 3.0 * dkappa * ddkappa + dkappa**3) * exp_m_kappa
    return exp_m_kappa, g, dg, ddg


def peak_visibility(z, g) -> tuple[float, int]:
    """Redshift of the maximum of g, refined by a parabola through three rows.

    Returns (z_peak, index of the largest tabulated g).

    Raises:
        MergeInconsistency: the maximum sits on a table edge
    """
    z = np.asarray(z)
    g = np.asarray(g)
    i = int(np.argmax(g))
    if i == 0 or i == len(g) - 1:
        raise MergeInconsistency(
            f"visibility function has no interior maximum (largest value at z={z[i]:.6g})",
            float(g[i]),
        )
    x0, x1, x2 = z[i - 1], z[i], z[i + 1]
    y0, y1, y2 = g[i - 1], g[i], g[i + 1]
    denom = (x0 - x1) * (x0 - x2) * (x1 - x2)
    a = (x2 * (y1 - y0) + x1 * (y0 - y2) + x0 * (y2 - y1)) / denom
    b = (x2**2 * (y0 - y1) + x1**2 * (y2 - y0) + x0**2 * (y1 - y2)) / denom
    z_peak = x1 if a >= 0.0 else -b / (2.0 * a)
    return float(np.clip(z_peak, x0, x2)), i


def free_streaming_redshift(z, g, i_peak: int, fraction: float) -> float:
    """First redshift below the visibility peak where g < fraction * g_max.

    Linear interpolation between the two bracketing rows. Falls back to the
    lowest tabulated z if g never drops that far.
    """
    z = np.asarray(z)
    g = np.asarray(g)
    threshold = fraction * g[i_peak]
    below = np.nonzero(g[:i_peak] < threshold)[0]
    if below.size == 0:
        logger.warning("visibility never drops below %.3g of its maximum; using z=%.6g",
                       fraction, z[0])
        return float(z[0])
    j = int(below[-1])
    # g[j] < threshold <= g[j + 1]
    t = (threshold - g[j]) / (g[j + 1] - g[j])
    return float(z[j] + t * (z[j + 1] - z[j]))


def variation_rate(dkappa, ddkappa, dddkappa, radius: int):
    """Largest variation rate of exp(-kappa), g and g', smoothed over 2*radius+1 rows.

    rate = sqrt(kappa'^2 + (kappa''/kappa')^2 + |kappa'''/kappa'|)
    """
    rate = jnp.sqrt(dkappa**2 + (ddkappa / dkappa) ** 2 + jnp.abs(dddkappa / dkappa))
    if radius <= 0:
        return rate
    window = jnp.ones(2 * radius + 1)
    counts = jnp.convolve(jnp.ones_like(rate), window, mode="same")
    return jnp.convolve(rate, window, mode="same") / counts


def build_thermo_table(
    merged: RecombinationTable,
    ws: RecombinationWorkspace,
    bg: BackgroundResult,
    rate_smoothing_radius: int,
):
    """Assemble every column of the thermodynamics table.

    Returns (ThermoTable, kappa).
    """
    z = merged.z
    H = H_of_z(bg, z)
    dkappa = scattering_rate(z, merged.xe, ws)
    kappa = optical_depth(z, dkappa, H)
    ddkappa, dddkappa = scattering_rate_derivatives(z, dkappa, bg)
    exp_m_kappa, g, dg, ddg = visibility(kappa, dkappa, ddkappa, dddkappa)

    # d[c_b^2/(1+z)]/deta
    dacb2 = -H * CubicSpline(z, merged.cb2 / (1.0 + z)).derivative(z)

    rate = variation_rate(dkappa, ddkappa, dddkappa, rate_smoothing_radius)

    columns = {
        ThermoField.XE: merged.xe,
        ThermoField.DKAPPA: dkappa,
        ThermoField.DDKAPPA: ddkappa,
        ThermoField.DDDKAPPA: dddkappa,
        ThermoField.EXP_M_KAPPA: exp_m_kappa,
        ThermoField.G: g,
        ThermoField.DG: dg,
        ThermoField.DDG: ddg,
        ThermoField.TB: merged.Tb,
        ThermoField.CB2: merged.cb2,
        ThermoField.DACB2: dacb2,
        ThermoField.RATE: rate,
    }
    data = jnp.stack([columns[f] for f in ThermoField], axis=1)
    logger.debug("thermodynamics table: %d rows x %d fields, kappa_max=%.3g",
                 data.shape[0], data.shape[1], float(kappa[-1]))
    return ThermoTable(z=z, data=data), kappa
