"""Reionization history for jaxthermo.

The CAMB-like scheme: x_e(z) follows a tanh step in (1+z)^exponent centered
on the reionization redshift, plus a second tanh for the full reionization
of helium. Above reio_start the profile returns the recombination value
x_e(reio_start) so that it joins the recombination history.

When the reionization optical depth is given instead of the redshift, the
redshift is found by bisection on [reionization_z_search_min, z_search_max].
Each trial builds the profile, splices it onto the recombination history,
and integrates the optical depth up to reio_start.

References:
    CLASS: source/thermodynamics.c (thermodynamics_reionization,
           thermodynamics_reionization_function)
    CAMB: camb/reionization.py (TanhReionization)
"""

from __future__ import annotations

import logging
import math
from dataclasses import astuple, dataclass, fields
from typing import Optional

import jax.numpy as jnp

from jaxthermo.background import BackgroundResult, H_of_z
from jaxthermo.errors import ConfigurationError, RootSearchNonconvergence
from jaxthermo.interpolation import CubicSpline
from jaxthermo.params import (
    CosmoParams,
    PrecisionParams,
    ReionizationInput,
    ReionizationParametrization,
)
from jaxthermo.recombination import RecombinationTable, RecombinationWorkspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReionizationParameters:
    """Named parameters of the reionization profile.

    cf. CLASS struct reionization (index_reio_* entries).
    """
    reio_redshift: float             # hydrogen reionization redshift
    reio_start: float                # above this, reionization is neglected
    xe_before: float                 # recombination x_e at reio_start
    xe_after: float                  # x_e after full hydrogen (+ first He) reionization
    reio_exponent: float
    reio_width: float
    helium_fullreio_fraction: float  # extra x_e from the second He ionization
    helium_fullreio_redshift: float
    helium_fullreio_width: float

    @property
    def size(self) -> int:
        return len(fields(self))

    def as_array(self):
        return jnp.array(astuple(self))


@dataclass(frozen=True)
class RootSearchResult:
    """Outcome of the optical depth -> redshift bisection."""
    converged: bool
    z_reio: float
    tau: float
    residual: float
    n_iter: int
    bracket: tuple[float, float]
    reason: str = ""


def reionization_xe(z, rp: ReionizationParameters):
    """x_e(z) of the CAMB-like reionization profile."""
    z = jnp.asarray(z)
    p = rp.reio_exponent
    argument = (
        ((1.0 + rp.reio_redshift) ** p - (1.0 + z) ** p)
        / (p * (1.0 + rp.reio_redshift) ** (p - 1.0))
        / rp.reio_width
    )
    xe = (rp.xe_after - rp.xe_before) * (jnp.tanh(argument) + 1.0) / 2.0 + rp.xe_before

    argument = (rp.helium_fullreio_redshift - z) / rp.helium_fullreio_width
    xe = xe + rp.helium_fullreio_fraction * (jnp.tanh(argument) + 1.0) / 2.0

    return jnp.where(z > rp.reio_start, rp.xe_before, xe)


def xe_before_reionization(reco: RecombinationTable, z) -> float:
    """Recombination-only x_e at redshift z (spline interpolation)."""
    return float(CubicSpline(reco.z, reco.xe).evaluate(z))


def reionization_parameters(
    z_reio: float,
    reco: RecombinationTable,
    ws: RecombinationWorkspace,
    prec: PrecisionParams,
) -> ReionizationParameters:
    """Profile parameters for reionization at z_reio.

    Raises:
        ConfigurationError: reio_start not strictly inside the recombination
            table, or above reionization_z_start_max
    """
    reio_start = z_reio + prec.reionization_start_factor * prec.reionization_width
    z_lo, z_hi = float(reco.z[0]), float(reco.z[-1])
    if not (z_lo < reio_start < z_hi):
        raise ConfigurationError(
            f"reionization start z={reio_start:.6g} outside the recombination table "
            f"({z_lo:.6g}, {z_hi:.6g})"
        )
    if reio_start > prec.reionization_z_start_max:
        raise ConfigurationError(
            f"reionization start z={reio_start:.6g} above reionization_z_start_max="
            f"{prec.reionization_z_start_max:.6g}"
        )
    if z_reio < 0.0:
        raise ConfigurationError(f"reionization redshift must be >= 0, got {z_reio}")

    return ReionizationParameters(
        reio_redshift=float(z_reio),
        reio_start=float(reio_start),
        xe_before=xe_before_reionization(reco, reio_start),
        xe_after=1.0 + ws.fHe,
        reio_exponent=prec.reionization_exponent,
        reio_width=prec.reionization_width,
        helium_fullreio_fraction=ws.fHe,
        helium_fullreio_redshift=prec.helium_fullreio_redshift,
        helium_fullreio_width=prec.helium_fullreio_width,
    )


def reionization_optical_depth(
    reco: RecombinationTable,
    rp: ReionizationParameters,
    ws: RecombinationWorkspace,
    bg: BackgroundResult,
    H=None,
) -> float:
    """Optical depth kappa(reio_start) of the spliced history.

    H may be passed in to avoid re-evaluating H(z) on the table.
    """
    from jaxthermo.merge import merge_xe
    from jaxthermo.optical_depth import optical_depth_at, scattering_rate

    if H is None:
        H = H_of_z(bg, reco.z)
    dkappa = scattering_rate(reco.z, merge_xe(reco, rp), ws)
    return float(optical_depth_at(reco.z, dkappa, H, rp.reio_start))


def search_reionization_redshift(
    tau_target: float,
    reco: RecombinationTable,
    ws: RecombinationWorkspace,
    bg: BackgroundResult,
    prec: PrecisionParams,
) -> RootSearchResult:
    """Bisection for the reionization redshift giving optical depth tau_target.

    The bracket [reionization_z_search_min, z_search_max] must contain the
    target; otherwise the result is not converged with reason "cannot bracket".
    Converges when |tau - tau_target| < reionization_optical_depth_tol * tau_target.
    """
    z_inf, z_sup = prec.reionization_z_search_min, prec.z_search_max
    if not z_sup > z_inf:
        raise ConfigurationError(f"empty reionization search bracket [{z_inf}, {z_sup}]")

    H = H_of_z(bg, reco.z)

    def tau_of(z_reio):
        rp = reionization_parameters(z_reio, reco, ws, prec)
        return reionization_optical_depth(reco, rp, ws, bg, H)

    tau_inf = tau_of(z_inf)
    tau_sup = tau_of(z_sup)
    if not (tau_inf <= tau_target <= tau_sup):
        residual = min(abs(tau_inf - tau_target), abs(tau_sup - tau_target))
        return RootSearchResult(
            converged=False,
            z_reio=math.nan,
            tau=math.nan,
            residual=residual,
            n_iter=0,
            bracket=(z_inf, z_sup),
            reason=(
                f"cannot bracket tau_reio={tau_target:.6g}: "
                f"tau in [{tau_inf:.6g}, {tau_sup:.6g}] over the search interval"
            ),
        )

    tol = prec.reionization_optical_depth_tol * tau_target
    z_mid, tau_mid = z_inf, tau_inf
    for n_iter in range(1, prec.reionization_max_iter + 1):
        z_mid = 0.5 * (z_inf + z_sup)
        tau_mid = tau_of(z_mid)
        residual = tau_mid - tau_target
        logger.debug("reionization search %d: z=%.6f tau=%.6g residual=%.3e",
                     n_iter, z_mid, tau_mid, residual)
        if abs(residual) < tol:
            return RootSearchResult(True, z_mid, tau_mid, residual, n_iter, (z_inf, z_sup))
        if tau_mid > tau_target:
            z_sup = z_mid
        else:
            z_inf = z_mid

    return RootSearchResult(
        converged=False,
        z_reio=z_mid,
        tau=tau_mid,
        residual=tau_mid - tau_target,
        n_iter=prec.reionization_max_iter,
        bracket=(z_inf, z_sup),
        reason="iteration ceiling reached",
    )


def reionization_solve(
    params: CosmoParams,
    reco: RecombinationTable,
    ws: RecombinationWorkspace,
    bg: BackgroundResult,
    prec: PrecisionParams,
) -> tuple[Optional[ReionizationParameters], Optional[RootSearchResult]]:
    """Reionization parameters for the configured scheme.

    Returns (None, None) without reionization, (rp, None) for a given
    redshift, and (rp, search result) for a given optical depth.

    Raises:
        ConfigurationError: invalid reionization start
        RootSearchNonconvergence: the optical depth search failed
    """
    if params.reio_parametrization == ReionizationParametrization.NONE:
        return None, None

    if params.reio_z_or_tau == ReionizationInput.Z:
        rp = reionization_parameters(params.z_reio, reco, ws, prec)
        logger.info("reionization at z=%.4f (start z=%.4f)", rp.reio_redshift, rp.reio_start)
        return rp, None

    result = search_reionization_redshift(params.tau_reio, reco, ws, bg, prec)
    if not result.converged:
        raise RootSearchNonconvergence(result.reason, result.bracket, result.residual, result.n_iter)
    rp = reionization_parameters(result.z_reio, reco, ws, prec)
    logger.info("reionization: tau=%.6g -> z=%.4f after %d iterations",
                params.tau_reio, rp.reio_redshift, result.n_iter)
    return rp, result
