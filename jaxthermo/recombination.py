"""Recombination history for jaxthermo (RECFAST 1.5).

Computes x_e(z), T_b(z) and c_b^2(z) on a fixed redshift grid running from
th_z_max down to z = 0. The grid is walked from high to low redshift
through a sequence of regimes:

    1. H and He fully ionized, x_e = 1 + 2 fHe
    2. HeIII -> HeII Saha equilibrium (joined to 1 with the f1 window)
    3. HeII plateau, x_e = 1 + fHe (joined to 2 with the f2 window)
    4. HeII -> HeI Saha equilibrium (joined to 3 with the f2 window)
    5. stiff ODE for (x_He, T_b) while hydrogen is still in Saha equilibrium
    6. full stiff ODE for (x_H, x_He, T_b)

Regimes 1-4 are algebraic and evaluated on the whole grid at once. Each ODE
regime starts from the exact state at its switch row, so x_e is continuous
across every switch.

References:
    Seager, Sasselov & Scott (1999, 2000); Wong, Moss & Scott (2008)
    CLASS: source/thermodynamics.c (thermodynamics_recombination,
           thermodynamics_derivs_with_recfast)
    DISCO-EB: src/discoeb/thermodynamics_recfast.py
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields

import diffrax
import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float

from jaxthermo import constants as const
from jaxthermo.background import BackgroundResult, H_of_z
from jaxthermo.errors import ConfigurationError, IntegrationDivergence
from jaxthermo.ode import check_solution, solve_stiff
from jaxthermo.params import CosmoParams, PrecisionParams

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Smooth steps, cf. thermodynamics.h
# ---------------------------------------------------------------------------

def f1(x):
    """Goes from 0 to 1 when x goes from -1 to 1, with zero slope at both ends."""
    return -0.75 * x * (x * x / 3.0 - 1.0) + 0.5


def f2(x):
    """Goes from 0 to 1 when x goes from 0 to 1, with zero slope at both ends."""
    return x * x * (0.5 - x / 3.0) * 6.0


# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------

_WORKSPACE_STATIC = ("Hswitch", "He_corrections")


@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class RecombinationWorkspace:
    """RECFAST constants fixed by the cosmological parameters.

    cf. CLASS struct recombination. Temperatures in K, densities in m^-3,
    rates in s^-1.
    """

    CDB: float
    CR: float
    CK: float
    CL: float
    CT: float
    fHe: float
    CDB_He: float
    CK_He: float
    CL_He: float
    CL_PSt: float
    fu: float
    H_frac: float
    Tnow: float
    Nnow: float
    Bfact: float
    CB1: float
    CB1_He1: float
    CB1_He2: float
    H0: float
    Y_He: float
    fudge_He: float
    x_H0_trigger2: float
    Hswitch: bool
    He_corrections: bool

    def tree_flatten(self):
        names = tuple(f.name for f in fields(self) if f.name not in _WORKSPACE_STATIC)
        children = [getattr(self, name) for name in names]
        static = tuple(getattr(self, name) for name in _WORKSPACE_STATIC)
        return children, (names, static)

    @classmethod
    def tree_unflatten(cls, aux, children):
        names, static = aux
        kwargs = dict(zip(names, children))
        kwargs.update(zip(_WORKSPACE_STATIC, static))
        return cls(**kwargs)


def recombination_workspace(params: CosmoParams, prec: PrecisionParams) -> RecombinationWorkspace:
    """Derive the RECFAST constants from the cosmological parameters."""
    h, c, kB = const.h_P_SI, const.c_SI, const.k_B_SI
    Lalpha = 1.0 / const.L_H_alpha
    Lalpha_He = 1.0 / const.L_He_2p

    # 100 km/s/Mpc in s^-1
    H0 = params.h * 1e5 / const.Mpc_over_m
    Omega_b = params.omega_b / params.h**2
    Nnow = 3.0 * H0**2 * Omega_b / (8.0 * math.pi * const.G_SI * const.m_H) * (1.0 - params.Y_He)

    fu = prec.recfast_fudge_H
    if prec.recfast_Hswitch:
        fu += prec.recfast_delta_fudge_H

    return RecombinationWorkspace(
        CDB=h * c * (const.L_H_ion - const.L_H_alpha) / kB,
        CR=2.0 * math.pi * (const.m_e / h) * (kB / h),
        CK=Lalpha**3 / (8.0 * math.pi),
        CL=c * h / (kB * Lalpha),
        CT=(8.0 / 3.0) * (const.sigma_T / (const.m_e * c)) * const.a_rad,
        fHe=params.Y_He / (const.not4 * (1.0 - params.Y_He)),
        CDB_He=h * c * (const.L_He1_ion - const.L_He_2s) / kB,
        CK_He=Lalpha_He**3 / (8.0 * math.pi),
        CL_He=h * c * const.L_He_2s / kB,
        CL_PSt=h * c * (const.L_He_2Pt - const.L_He_2St) / kB,
        fu=fu,
        H_frac=prec.recfast_H_frac,
        Tnow=params.T_cmb,
        Nnow=Nnow,
        Bfact=h * c * (const.L_He_2p - const.L_He_2s) / kB,
        CB1=h * c * const.L_H_ion / kB,
        CB1_He1=h * c * const.L_He1_ion / kB,
        CB1_He2=h * c * const.L_He2_ion / kB,
        H0=H0,
        Y_He=params.Y_He,
        fudge_He=prec.recfast_fudge_He,
        x_H0_trigger2=prec.recfast_x_H0_trigger2,
        Hswitch=bool(prec.recfast_Hswitch),
        He_corrections=bool(prec.recfast_He_corrections),
    )


# ---------------------------------------------------------------------------
# RecombinationTable
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RecombinationTable:
    """Raw recombination-only history, sorted by increasing z."""
    z: Float[Array, "N"]
    xe: Float[Array, "N"]
    x_H: Float[Array, "N"]
    x_He: Float[Array, "N"]
    Tb: Float[Array, "N"]
    cb2: Float[Array, "N"]
    z_switch_He: float   # first redshift handled by the stiff ODE
    z_switch_H: float    # first redshift with free hydrogen evolution

    @property
    def size(self) -> int:
        return int(self.z.shape[0])


def redshift_grid(prec: PrecisionParams) -> np.ndarray:
    """Redshift samples from th_z_max down to 0 (strictly decreasing)."""
    high = np.linspace(prec.th_z_max, prec.th_z_dense, prec.th_n_high, endpoint=False)
    dense = np.linspace(prec.th_z_dense, prec.th_z_low, prec.th_n_dense, endpoint=False)
    low = np.linspace(prec.th_z_low, 0.0, prec.th_n_low + 1)
    return np.concatenate([high, dense, low])


# ---------------------------------------------------------------------------
# Saha equilibria
# ---------------------------------------------------------------------------

def _positive_root(b, c):
    """Positive root of x^2 + b x - c = 0 (c > 0), free of cancellation."""
    disc = jnp.sqrt(b * b + 4.0 * c)
    b_pos = jnp.maximum(b, 0.0)
    return jnp.where(b > 0.0, 2.0 * c / (disc + b_pos), 0.5 * (disc - b))


def _saha_rhs(z, ws, chi):
    """(2 pi m_e k T / h^2)^{3/2} exp(-chi/T) / n_H with T = T_cmb (1+z)."""
    return jnp.exp(1.5 * jnp.log(ws.CR * ws.Tnow / (1.0 + z)) - chi / (ws.Tnow * (1.0 + z))) / ws.Nnow


def saha_x_HeII(z, ws):
    """x_e during HeIII -> HeII recombination (hydrogen fully ionized)."""
    rhs = _saha_rhs(z, ws, ws.CB1_He2)  # ratio of g's is 1 for He++ <-> He+
    return _positive_root(rhs - 1.0 - ws.fHe, (1.0 + 2.0 * ws.fHe) * rhs)


def saha_x_HeI(z, ws):
    """x_e during HeII -> HeI recombination (hydrogen fully ionized)."""
    rhs = 4.0 * _saha_rhs(z, ws, ws.CB1_He1)  # ratio of g's is 4 for He+ <-> He0
    return _positive_root(rhs - 1.0, (1.0 + ws.fHe) * rhs)


def saha_x_H(z, ws):
    """Hydrogen ionization fraction in Saha equilibrium."""
    rhs = _saha_rhs(z, ws, ws.CB1)
    return 2.0 / (1.0 + jnp.sqrt(1.0 + 4.0 / rhs))


def helium_regime_xe(z, ws, prec: PrecisionParams):
    """Algebraic x_e through the three helium steps, blended by f1/f2.

    Valid above the switch to the stiff ODE; below z_He_3 this is the
    HeII -> HeI Saha value.
    """
    x_full = 1.0 + 2.0 * ws.fHe
    x_plateau = 1.0 + ws.fHe
    x_HeII = saha_x_HeII(z, ws)
    x_HeI = saha_x_HeI(z, ws)

    w1 = f1(jnp.clip((z - prec.recfast_z_He_1) / prec.recfast_delta_z_He_1, -1.0, 1.0))
    w2 = f2(jnp.clip((z - prec.recfast_z_He_2) / prec.recfast_delta_z_He_2, 0.0, 1.0))
    w3 = f2(jnp.clip((z - prec.recfast_z_He_3) / prec.recfast_delta_z_He_3, 0.0, 1.0))

    x_first = w1 * x_full + (1.0 - w1) * x_HeII
    x_plateau_step = w2 * x_HeII + (1.0 - w2) * x_plateau
    x_second = w3 * x_plateau + (1.0 - w3) * x_HeI

    return jnp.where(
        z >= prec.recfast_z_He_2 + prec.recfast_delta_z_He_2,
        x_first,
        jnp.where(
            z >= prec.recfast_z_He_2,
            x_plateau_step,
            jnp.where(z >= prec.recfast_z_He_3 + prec.recfast_delta_z_He_3, x_plateau, x_second),
        ),
    )


# ---------------------------------------------------------------------------
# RECFAST derivatives
# ---------------------------------------------------------------------------

def baryon_temperature_derivative(z, Tmat, x, Hz, ws):
    """dT_b/dz from Compton coupling and adiabatic cooling (RECFAST f[2]).

    Falls back to T_b ~ (1+z) while the Compton time is a small fraction
    H_frac of the Hubble time.
    """
    Trad = ws.Tnow * (1.0 + z)
    timeTh = (1.0 / (ws.CT * Trad**4)) * (1.0 + x + ws.fHe) / x
    timeH = 2.0 / (3.0 * ws.H0 * (1.0 + z) ** 1.5)
    coupled = Tmat / (1.0 + z)
    free = (
        ws.CT * Trad**4 * x / (1.0 + x + ws.fHe) * (Tmat - Trad) / (Hz * (1.0 + z))
        + 2.0 * Tmat / (1.0 + z)
    )
    return jnp.where(timeTh < ws.H_frac * timeH, coupled, free)


def recfast_derivs(z, y, Hz, ws):
    """dy/dz for y = (x_H, x_He, T_b).

    Hz is the Hubble rate in s^-1.

    cf. CLASS thermodynamics.c: thermodynamics_derivs_with_recfast()
    """
    x_H, x_He, Tmat = y[0], y[1], jnp.abs(y[2])
    fHe = ws.fHe
    x = x_H + fHe * x_He
    n = ws.Nnow * (1.0 + z) ** 3
    n_He = fHe * n
    one_minus_x_H = jnp.maximum(1.0 - x_H, 1e-30)
    one_minus_x_He = jnp.maximum(1.0 - x_He, 1e-30)
    CR_Tmat_15 = (ws.CR * Tmat) ** 1.5

    # Radiative rates: PPB fit for H, Verner & Ferland fit for He
    t4 = Tmat / 1e4
    Rdown = 1e-19 * const.a_PPB * t4**const.b_PPB / (1.0 + const.c_PPB * t4**const.d_PPB)
    Rup = Rdown * CR_Tmat_15 * jnp.exp(-ws.CDB / Tmat)

    sq_0 = jnp.sqrt(Tmat / const.T_0)
    sq_1 = jnp.sqrt(Tmat / const.T_1)
    Rdown_He = const.a_VF / (sq_0 * (1.0 + sq_0) ** (1.0 - const.b_VF) * (1.0 + sq_1) ** (1.0 + const.b_VF))
    Rup_He = 4.0 * Rdown_He * CR_Tmat_15 * jnp.exp(-ws.CDB_He / Tmat)
    He_Boltz = jnp.exp(jnp.minimum(680.0, ws.Bfact / Tmat))

    # Peebles K factor with the RECFAST 1.5 double-Gaussian correction
    K = ws.CK / Hz
    if ws.Hswitch:
        lnz = jnp.log(1.0 + z)
        K = K * (
            1.0
            + const.AGauss1 * jnp.exp(-(((lnz - const.zGauss1) / const.wGauss1) ** 2))
            + const.AGauss2 * jnp.exp(-(((lnz - const.zGauss2) / const.wGauss2) ** 2))
        )

    K_He = ws.CK_He / Hz
    he_outside = jnp.logical_or(x_He < 5e-9, x_He > 0.98)
    triplet = 0.0
    if ws.He_corrections:
        n_He_free = 3.0 * n_He * one_minus_x_He
        Doppler = jnp.sqrt(2.0 * const.k_B_SI * Tmat / (const.m_H * const.not4 * const.c_SI**2))

        # HeI 2^1P singlet: Sobolev escape plus continuum opacity of H
        tauHe_s = const.A2P_s * ws.CK_He * n_He_free / Hz
        pHe_s = (1.0 - jnp.exp(-tauHe_s)) / tauHe_s
        gamma_2Ps = (
            3.0 * const.A2P_s * fHe * one_minus_x_He * const.c_SI**2
            / (jnp.sqrt(math.pi) * const.sigma_He_2Ps * 8.0 * math.pi
               * const.c_SI * const.L_He_2p * Doppler * one_minus_x_H
               * (const.c_SI * const.L_He_2p) ** 2)
        )
        AHcon = const.A2P_s / (1.0 + 0.36 * gamma_2Ps**ws.fudge_He)
        K_He = jnp.where(
            he_outside,
            K_He,
            jnp.where(
                x_H < 0.9999999,
                1.0 / ((const.A2P_s * pHe_s + AHcon) * n_He_free),
                1.0 / (const.A2P_s * pHe_s * n_He_free),
            ),
        )

        # HeI 2^3P triplet channel
        tauHe_t = const.A2P_t * n_He_free / (8.0 * math.pi * Hz * const.L_He_2Pt**3)
        pHe_t = (1.0 - jnp.exp(-tauHe_t)) / tauHe_t
        gamma_2Pt = (
            3.0 * const.A2P_t * fHe * one_minus_x_He * const.c_SI**2
            / (jnp.sqrt(math.pi) * const.sigma_He_2Pt * 8.0 * math.pi
               * const.c_SI * const.L_He_2Pt * Doppler * one_minus_x_H
               * (const.c_SI * const.L_He_2Pt) ** 2)
        )
        AHcon_t = const.A2P_t / (1.0 + 0.66 * gamma_2Pt**0.9) / 3.0
        Rdown_trip = const.a_trip / (
            sq_0 * (1.0 + sq_0) ** (1.0 - const.b_trip) * (1.0 + sq_1) ** (1.0 + const.b_trip)
        )
        Rup_trip = (
            Rdown_trip
            * jnp.exp(-const.h_P_SI * const.c_SI * const.L_He2St_ion / (const.k_B_SI * Tmat))
            * CR_Tmat_15 * (4.0 / 3.0)
        )
        CfHe_t = jnp.where(x_H > 0.99999, const.A2P_t * pHe_t, const.A2P_t * pHe_t + AHcon_t)
        CfHe_t = CfHe_t * jnp.exp(-ws.CL_PSt / Tmat)
        CfHe_t = CfHe_t / (Rup_trip + CfHe_t)
        triplet = jnp.where(
            he_outside,
            0.0,
            (x * x_He * n * Rdown_trip
             - one_minus_x_He * 3.0 * Rup_trip
             * jnp.exp(-const.h_P_SI * const.c_SI * const.L_He_2St / (const.k_B_SI * Tmat)))
            * CfHe_t / (Hz * (1.0 + z)),
        )

    # Hydrogen
    rate_H = x * x_H * n * Rdown - Rup * one_minus_x_H * jnp.exp(-ws.CL / Tmat)
    K_Lambda = K * const.Lambda_H * n * one_minus_x_H
    peebles = rate_H * (1.0 + K_Lambda) / (
        Hz * (1.0 + z) * (1.0 / ws.fu + K_Lambda / ws.fu + K * Rup * n * one_minus_x_H)
    )
    # near equilibrium the Peebles factor is 1
    dx_H = jnp.where(x_H > ws.x_H0_trigger2, rate_H / (Hz * (1.0 + z)), peebles)

    # Helium
    rate_He = x * x_He * n * Rdown_He - Rup_He * one_minus_x_He * jnp.exp(-ws.CL_He / Tmat)
    He_free = n_He * one_minus_x_He * He_Boltz
    dx_He = rate_He * (1.0 + K_He * const.Lambda_He * He_free) / (
        Hz * (1.0 + z) * (1.0 + K_He * (const.Lambda_He + Rup_He) * He_free)
    )
    dx_He = jnp.where(x_He < 1e-15, 0.0, dx_He + triplet)

    dTmat = baryon_temperature_derivative(z, Tmat, x, Hz, ws)
    return jnp.stack([dx_H, dx_He, dTmat])


def _hubble_SI(bg: BackgroundResult, z):
    return H_of_z(bg, z) * const.c_SI / const.Mpc_over_m


def _rhs_full(loga, y, args):
    """RECFAST system in ln a: dy/dln a = -(1+z) dy/dz."""
    ws, bg = args
    z = jnp.exp(-loga) - 1.0
    return -(1.0 + z) * recfast_derivs(z, y, _hubble_SI(bg, z), ws)


def _rhs_hydrogen_saha(loga, y, args):
    """As _rhs_full, with x_H held at its Saha value."""
    ws, bg = args
    z = jnp.exp(-loga) - 1.0
    y = y.at[0].set(saha_x_H(z, ws))
    dy = recfast_derivs(z, y, _hubble_SI(bg, z), ws)
    return -(1.0 + z) * dy.at[0].set(0.0)


def _integrate(rhs_fn, z_seg, y0, ws, bg, prec: PrecisionParams):
    """Solve one stiff regime over a decreasing-z segment, saving every row."""
    loga = -jnp.log1p(jnp.asarray(z_seg))
    sol = solve_stiff(
        rhs_fn,
        t0=loga[0],
        t1=loga[-1],
        y0=y0,
        saveat=diffrax.SaveAt(ts=loga),
        args=(ws, bg),
        rtol=prec.th_ode_rtol,
        atol=prec.th_ode_atol,
        max_steps=prec.ode_max_steps,
        dtmin=prec.th_ode_dtmin,
        dtmax=prec.th_ode_dtmax,
    )
    if not check_solution(sol):
        raise IntegrationDivergence(
            f"recombination ODE failed ({sol.result})", (float(z_seg[0]), float(z_seg[-1]))
        )
    return sol.ys


# ---------------------------------------------------------------------------
# Main solver
# ---------------------------------------------------------------------------

def _check_grid(prec: PrecisionParams):
    if not (prec.th_z_max > prec.th_z_dense > prec.th_z_low > 0.0):
        raise ConfigurationError(
            "redshift grid needs th_z_max > th_z_dense > th_z_low > 0, got "
            f"{prec.th_z_max}, {prec.th_z_dense}, {prec.th_z_low}"
        )
    if min(prec.th_n_high, prec.th_n_dense, prec.th_n_low) < 2:
        raise ConfigurationError("each redshift grid segment needs at least 2 points")
    if not (prec.recfast_z_He_3 + prec.recfast_delta_z_He_3 <= prec.recfast_z_He_2
            and prec.recfast_z_He_2 + prec.recfast_delta_z_He_2
            <= prec.recfast_z_He_1 - prec.recfast_delta_z_He_1):
        raise ConfigurationError("helium smoothing windows overlap")
    if prec.recfast_delta_z_He_switch <= 0.0:
        raise ConfigurationError("recfast_delta_z_He_switch must be positive")


def recombination_solve(
    params: CosmoParams,
    prec: PrecisionParams,
    bg: BackgroundResult,
) -> tuple[RecombinationTable, RecombinationWorkspace]:
    """Integrate the recombination history on redshift_grid(prec).

    Args:
        params: cosmological parameters
        prec: precision parameters
        bg: background provider (H(z) in the RECFAST rates)

    Returns:
        (RecombinationTable sorted by increasing z, RecombinationWorkspace)

    Raises:
        ConfigurationError: inconsistent grid or smoothing settings
        IntegrationDivergence: stiff solve failed, or T_b left the fit range
    """
    _check_grid(prec)
    ws = recombination_workspace(params, prec)
    z_np = redshift_grid(prec)
    z = jnp.asarray(z_np)
    n = z_np.shape[0]

    # --- Algebraic regimes on the whole grid ---
    xe = helium_regime_xe(z, ws, prec)
    x_He = jnp.where(z < prec.recfast_z_He_3, (xe - 1.0) / ws.fHe, 1.0)
    x_H = jnp.ones_like(z)
    Tb = ws.Tnow * (1.0 + z)

    x_He_np = np.asarray(x_He)
    below = np.nonzero((z_np < prec.recfast_z_He_3) & (x_He_np <= prec.recfast_x_He0_trigger))[0]
    if below.size == 0 or below[0] < 1:
        raise ConfigurationError(
            f"redshift grid (z_max={prec.th_z_max}) does not bracket the helium Saha switch"
        )
    i_He = int(below[0])

    x_H_saha_np = np.asarray(saha_x_H(z, ws))
    h_below = np.nonzero(x_H_saha_np[i_He:] <= prec.recfast_x_H0_trigger)[0]
    i_H = i_He + int(h_below[0]) if h_below.size else n

    # the helium ODE starts a window above the switch and is blended into Saha
    # there, so x_e and its slope stay continuous
    z_sw = float(z_np[i_He - 1])
    in_window = np.nonzero((z_np <= z_sw + prec.recfast_delta_z_He_switch) & (z_np < prec.recfast_z_He_3))[0]
    i0 = min(int(in_window[0]), i_He - 1) if in_window.size else i_He - 1

    logger.info(
        "recombination: He ODE from z=%.2f (Saha until z=%.2f), H ODE from z=%.2f",
        z_np[i0], z_sw, z_np[min(i_H, n) - 1],
    )

    # --- Stiff regimes ---
    y_start = jnp.array([x_H_saha_np[i0], x_He[i0], Tb[i0]])
    ys_parts = []
    if i_H - 1 > i0:
        ys_A = _integrate(_rhs_hydrogen_saha, z_np[i0:i_H], y_start, ws, bg, prec)
        ys_A = ys_A.at[:, 0].set(x_H_saha_np[i0:i_H])
        y_start = jnp.array([x_H_saha_np[i_H - 1], ys_A[-1, 1], ys_A[-1, 2]])
        ys_parts.append(ys_A[:-1] if i_H < n else ys_A)
    if i_H < n:
        ys_parts.append(_integrate(_rhs_full, z_np[max(i_H - 1, i0):], y_start, ws, bg, prec))
    ys = jnp.concatenate(ys_parts, axis=0)

    # weight of the algebraic solution: 1 at the top of the window, 0 from z_sw down
    w = f2(jnp.clip((z[i0:] - z_sw) / prec.recfast_delta_z_He_switch, 0.0, 1.0))
    x_H = x_H.at[i0:].set(w * x_H[i0:] + (1.0 - w) * ys[:, 0])
    x_He = x_He.at[i0:].set(w * x_He[i0:] + (1.0 - w) * ys[:, 1])
    Tb = Tb.at[i0:].set(w * Tb[i0:] + (1.0 - w) * ys[:, 2])
    xe = xe.at[i0:].set(w * xe[i0:] + (1.0 - w) * (ys[:, 0] + ws.fHe * ys[:, 1]))

    Tb_np = np.asarray(Tb)
    if not (np.all(np.isfinite(Tb_np)) and np.all(np.isfinite(np.asarray(xe)))):
        raise IntegrationDivergence("non-finite recombination state", (float(z_np[0]), 0.0))
    if Tb_np.min() < prec.recfast_T_fit_min or Tb_np.max() > prec.recfast_T_fit_max:
        bad = np.nonzero((Tb_np < prec.recfast_T_fit_min) | (Tb_np > prec.recfast_T_fit_max))[0]
        raise IntegrationDivergence(
            "baryon temperature outside the recombination-coefficient fit range",
            (float(z_np[bad[0]]), float(z_np[bad[-1]])),
        )

    # --- Baryon sound speed ---
    # dT_b/dz is T_cmb in the algebraic regimes, RECFAST f[2] below
    Hz = _hubble_SI(bg, z)
    dTb_dz = baryon_temperature_derivative(z, Tb, xe, Hz, ws)
    dTb_dz = jnp.where(jnp.arange(n) < i0, ws.Tnow, dTb_dz)
    cb2 = baryon_sound_speed(z, xe, Tb, dTb_dz, ws.Y_He)

    # increasing z from here on
    return RecombinationTable(
        z=z[::-1],
        xe=xe[::-1],
        x_H=x_H[::-1],
        x_He=x_He[::-1],
        Tb=Tb[::-1],
        cb2=cb2[::-1],
        z_switch_He=float(z_np[i_He - 1]),
        z_switch_H=float(z_np[min(i_H, n) - 1]),
    ), ws


def baryon_sound_speed(z, xe, Tb, dTb_dz, Y_He):
    """c_b^2 = k_B T_b / (mu c^2) * (1 + (1+z)/3 dlnT_b/dz).

    mu = m_H / (1 + (1/not4 - 1) Y_He + x_e (1 - Y_He)) is the mean mass per particle.
    Where T_b rises with time (Compton heating after reionization) the
    bracket is floored at its isothermal value 1.
    """
    slope_factor = jnp.maximum(1.0 + (1.0 + z) / 3.0 * dTb_dz / Tb, 1.0)
    return (
        const.k_B_SI / (const.c_SI**2 * const.m_H)
        * (1.0 + (1.0 / const.not4 - 1.0) * Y_He + xe * (1.0 - Y_He))
        * Tb
        * slope_factor
    )
