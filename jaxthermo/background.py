"""Background time provider for jaxthermo.

Supplies the redshift <-> conformal time mapping, the Hubble rate and the
photon-baryon sound horizon that the thermodynamics module queries while
integrating. The model is flat LCDM with photons, massless neutrinos,
baryons, cold dark matter and a cosmological constant.

The ODE is integrated in log(a) from a_ini to a = 1, following CLASS's
approach (background.c:background_solve). H(a) itself is closed-form.

Key functions:
    background_solve(params, prec) -> BackgroundResult
    H_of_z, tau_of_z, z_of_tau, rs_of_z, dz_dtau

Units: lengths and conformal times in Mpc, H in Mpc^-1 (c = 1).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

import diffrax
import jax
import jax.numpy as jnp
from jaxtyping import Array, Float

from jaxthermo import constants as const
from jaxthermo.interpolation import CubicSpline
from jaxthermo.ode import solve_nonstiff
from jaxthermo.params import CosmoParams, PrecisionParams

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# BackgroundResult
# ---------------------------------------------------------------------------

@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class BackgroundResult:
    """Output of the background module.

    Spline tables for the background quantities as functions of log(a),
    plus derived scalars.
    """

    loga_table: Float[Array, "N"]     # log(a) grid
    tau_table: Float[Array, "N"]      # conformal time at each grid point

    tau_of_loga: CubicSpline          # conformal time tau(log a)
    loga_of_tau: CubicSpline          # inverse: log(a)(tau)
    H_of_loga: CubicSpline            # Hubble rate H(log a) [Mpc^-1]
    rs_of_loga: CubicSpline           # comoving sound horizon

    conformal_age: float              # tau_0 = tau(a=1) [Mpc]
    H0: float                         # H0 in Mpc^-1 (= h * 100 km/s/Mpc / c)
    Omega_g: float
    Omega_b: float
    Omega_cdm: float
    Omega_ur: float
    Omega_lambda: float

    def tree_flatten(self):
        fields = [
            self.loga_table, self.tau_table,
            self.tau_of_loga, self.loga_of_tau, self.H_of_loga, self.rs_of_loga,
            self.conformal_age, self.H0, self.Omega_g, self.Omega_b,
            self.Omega_cdm, self.Omega_ur, self.Omega_lambda,
        ]
        return fields, None

    @classmethod
    def tree_unflatten(cls, aux, fields):
        return cls(*fields)


# ---------------------------------------------------------------------------
# Density parameters
# ---------------------------------------------------------------------------

def _H0_from_h(h: float) -> float:
    """H0 in CLASS units [Mpc^-1]: h * 100 km/s/Mpc divided by c.

    cf. CLASS input.c: pba->H0 = pba->h * 1.e5 / _c_
    """
    return h * 1e5 / const.c_SI


def _compute_omega_g(T_cmb: float, H0: float) -> float:
    """Photon density parameter Omega_g from T_cmb.

    Omega_g H0^2 [Mpc^-2] = (8 pi G / 3) * (4 sigma_B / c) T_cmb^4 * Mpc^2 / c^4
    """
    rho_g_phys = 4.0 * const.sigma_B / const.c_SI * T_cmb**4  # J/m^3
    rho_g_class = (
        8.0 * math.pi * const.G_SI / 3.0
        * rho_g_phys
        * const.Mpc_over_m**2
        / const.c_SI**4
    )
    return rho_g_class / H0**2


def _compute_omega_ur(N_ur: float, Omega_g: float) -> float:
    """Massless neutrino density: N_ur * (7/8) * (4/11)^(4/3) * Omega_g."""
    return N_ur * (7.0 / 8.0) * (4.0 / 11.0) ** (4.0 / 3.0) * Omega_g


def _hubble(a, H0, Omega_r, Omega_m, Omega_lambda):
    """H(a) [Mpc^-1] for flat LCDM."""
    return H0 * jnp.sqrt(Omega_r / a**4 + Omega_m / a**3 + Omega_lambda)


# ---------------------------------------------------------------------------
# Background ODE right-hand side
# ---------------------------------------------------------------------------

def _background_rhs(loga, y, args):
    """Background ODE right-hand side, integrated in log(a).

    cf. CLASS background.c: background_derivs()

    State vector y = [tau, rs]
        d(tau)/d(loga) = 1/(a*H)
        d(rs)/d(loga)  = c_s/(a*H),  c_s = 1/sqrt(3*(1 + 3 rho_b / (4 rho_g)))
    """
    H0, Omega_r, Omega_m, Omega_lambda, Omega_b, Omega_g = args
    a = jnp.exp(loga)
    H = _hubble(a, H0, Omega_r, Omega_m, Omega_lambda)

    R = 3.0 * Omega_b * a / (4.0 * Omega_g)
    cs = 1.0 / jnp.sqrt(3.0 * (1.0 + R))
    return jnp.array([1.0 / (a * H), cs / (a * H)])


# ---------------------------------------------------------------------------
# Main solver
# ---------------------------------------------------------------------------

def background_solve(
    params: CosmoParams,
    prec: PrecisionParams = PrecisionParams(),
) -> BackgroundResult:
    """Solve the background cosmology.

    Args:
        params: cosmological parameters
        prec: precision parameters (static)

    Returns:
        BackgroundResult with background spline tables
    """
    H0 = _H0_from_h(params.h)
    Omega_g = _compute_omega_g(params.T_cmb, H0)
    Omega_ur = _compute_omega_ur(params.N_ur, Omega_g)
    Omega_b = params.omega_b / params.h**2
    Omega_cdm = params.omega_cdm / params.h**2
    Omega_r = Omega_g + Omega_ur
    Omega_m = Omega_b + Omega_cdm
    Omega_lambda = 1.0 - Omega_r - Omega_m

    loga_min = math.log(prec.bg_a_ini)
    # a few steps past a = 1 keep the natural end conditions away from today
    dloga = -loga_min / (prec.bg_n_points - 1)
    loga_max = prec.bg_n_future * dloga
    loga_grid = jnp.concatenate([
        jnp.linspace(loga_min, 0.0, prec.bg_n_points),
        dloga * jnp.arange(1, prec.bg_n_future + 1),
    ])
    a_ini = prec.bg_a_ini

    # Deep radiation domination: tau = 1/(a H), rs = tau/sqrt(3)
    H_ini = _hubble(a_ini, H0, Omega_r, Omega_m, Omega_lambda)
    tau_ini = 1.0 / (a_ini * H_ini)
    y0 = jnp.array([tau_ini, tau_ini / jnp.sqrt(3.0)])

    sol = solve_nonstiff(
        rhs_fn=_background_rhs,
        t0=loga_min,
        t1=loga_max,
        y0=y0,
        saveat=diffrax.SaveAt(ts=loga_grid),
        args=(H0, Omega_r, Omega_m, Omega_lambda, Omega_b, Omega_g),
        rtol=prec.bg_tol,
        atol=prec.bg_tol * 1e-3,
        max_steps=262144,
    )

    tau_grid = sol.ys[:, 0]
    rs_grid = sol.ys[:, 1]
    H_grid = _hubble(jnp.exp(loga_grid), H0, Omega_r, Omega_m, Omega_lambda)

    conformal_age = tau_grid[prec.bg_n_points - 1]
    logger.debug("background: conformal age %.3f Mpc, Omega_lambda %.5f",
                 float(conformal_age), float(Omega_lambda))

    return BackgroundResult(
        loga_table=loga_grid,
        tau_table=tau_grid,
        tau_of_loga=CubicSpline(loga_grid, tau_grid),
        loga_of_tau=CubicSpline(tau_grid, loga_grid),
        H_of_loga=CubicSpline(loga_grid, H_grid),
        rs_of_loga=CubicSpline(loga_grid, rs_grid),
        conformal_age=conformal_age,
        H0=H0,
        Omega_g=Omega_g,
        Omega_b=Omega_b,
        Omega_cdm=Omega_cdm,
        Omega_ur=Omega_ur,
        Omega_lambda=Omega_lambda,
    )


# ---------------------------------------------------------------------------
# Convenience functions
# ---------------------------------------------------------------------------

def H_of_z(bg: BackgroundResult, z):
    """Hubble rate at redshift z in Mpc^-1."""
    return bg.H_of_loga.evaluate(-jnp.log1p(z))


def tau_of_z(bg: BackgroundResult, z):
    """Conformal time at redshift z in Mpc."""
    return bg.tau_of_loga.evaluate(-jnp.log1p(z))


def z_of_tau(bg: BackgroundResult, tau):
    """Redshift at conformal time tau."""
    return jnp.exp(-bg.loga_of_tau.evaluate(tau)) - 1.0


def rs_of_z(bg: BackgroundResult, z):
    """Comoving photon-baryon sound horizon at redshift z in Mpc."""
    return bg.rs_of_loga.evaluate(-jnp.log1p(z))


def dz_dtau(bg: BackgroundResult, z):
    """dz/d(tau) = -H(z): since 1 + z = 1/a, d(1/a)/dtau = -a'/a^2 = -H."""
    return -H_of_z(bg, z)
