"""Thermodynamics pipeline for jaxthermo.

thermodynamics_solve() runs, in order:
    validation -> recombination -> reionization (given z, or searched from tau)
    -> merge -> optical depth / visibility -> splines

and returns a ThermoResult only when every stage succeeded. Point queries go
through thermodynamics_at_z(), which evaluates the full quantity vector at a
single redshift with one of three interval-search strategies.

References:
    CLASS: source/thermodynamics.c (thermodynamics_init, thermodynamics_at_z,
           thermodynamics_free)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from jaxthermo import constants as const
from jaxthermo.background import BackgroundResult, H_of_z, rs_of_z, tau_of_z
from jaxthermo.errors import ConfigurationError, ThermodynamicsError
from jaxthermo.interpolation import (
    InterpolationMode,
    find_interval,
    monotone_hermite_interval,
    spline_eval_interval,
)
from jaxthermo.merge import merge_reco_and_reio
from jaxthermo.optical_depth import (
    KAPPA_UNDERFLOW,
    build_thermo_table,
    free_streaming_redshift,
    peak_visibility,
)
from jaxthermo.params import (
    CosmoParams,
    PrecisionParams,
    ReionizationInput,
    ReionizationParametrization,
)
from jaxthermo.recombination import recombination_solve
from jaxthermo.reionization import (
    ReionizationParameters,
    RootSearchResult,
    reionization_optical_depth,
    reionization_solve,
)
from jaxthermo.table import SplineTable, ThermoField, ThermoTable, check_table

logger = logging.getLogger(__name__)

_TINY = np.finfo(np.float64).tiny


# ---------------------------------------------------------------------------
# ThermoResult
# ---------------------------------------------------------------------------

@dataclass
class ThermoResult:
    """Output of the thermodynamics module.

    Owns the table and its spline coefficients until release() is called.
    """

    table: Optional[ThermoTable]
    spline: Optional[SplineTable]
    reio: Optional[ReionizationParameters]
    reio_search: Optional[RootSearchResult]

    z_visibility_max: float             # z at the visibility peak (recombination)
    z_visibility_free_streaming: float  # below this z, g < th_free_streaming_fraction * g_max
    eta_rec: float                      # conformal time at the visibility peak [Mpc]
    rs_rec: float                       # sound horizon at the visibility peak [Mpc]
    tau_reio: float                     # reionization optical depth (0 without reionization)
    z_reio: Optional[float]
    n_e: float                          # electrons per m^3 today, free or not
    eta_ini: float                      # conformal time at the top of the table [Mpc]

    # host copies for point queries
    _z: Optional[np.ndarray] = field(default=None, repr=False)
    _data: Optional[np.ndarray] = field(default=None, repr=False)
    _d2data: Optional[np.ndarray] = field(default=None, repr=False)
    # kappa and dkappa/dz on the table grid, for the exp(-kappa) query
    _kappa: Optional[np.ndarray] = field(default=None, repr=False)
    _dkappa_dz: Optional[np.ndarray] = field(default=None, repr=False)
    _xe_range: Optional[tuple[float, float]] = field(default=None, repr=False)

    def __post_init__(self):
        if self.table is not None:
            self._z = np.asarray(self.table.z)
            self._data = np.asarray(self.table.data)
            self._d2data = np.asarray(self.spline.d2data)
            xe = self._data[:, ThermoField.XE]
            self._xe_range = (float(xe.min()), float(xe.max()))

    @property
    def released(self) -> bool:
        return self.table is None

    @property
    def z_range(self) -> tuple[float, float]:
        self._require_tables()
        return float(self._z[0]), float(self._z[-1])

    def release(self):
        """Drop the table and spline coefficients. Scalars stay readable."""
        self.table = None
        self.spline = None
        self._z = self._data = self._d2data = None
        self._kappa = self._dkappa_dz = self._xe_range = None

    def _require_tables(self):
        if self.table is None:
            raise RuntimeError("thermodynamics tables have been released")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_parameters(params: CosmoParams, prec: PrecisionParams):
    """Reject invalid inputs before any integration.

    Raises:
        ConfigurationError
    """
    if not (const.T_cmb_small <= params.T_cmb <= const.T_cmb_big):
        raise ConfigurationError(
            f"T_cmb={params.T_cmb} K outside the RECFAST fit range "
            f"[{const.T_cmb_small}, {const.T_cmb_big}]"
        )
    if not (const.Y_He_small <= params.Y_He <= const.Y_He_big):
        raise ConfigurationError(
            f"Y_He={params.Y_He} outside the RECFAST fit range "
            f"[{const.Y_He_small}, {const.Y_He_big}]"
        )
    if params.omega_b <= 0.0:
        raise ConfigurationError(f"omega_b must be positive, got {params.omega_b}")

    if params.reio_parametrization == ReionizationParametrization.NONE:
        return
    if prec.reionization_width <= 0.0 or prec.reionization_exponent <= 0.0:
        raise ConfigurationError("reionization width and exponent must be positive")
    if prec.reionization_max_iter < 1 or prec.reionization_optical_depth_tol <= 0.0:
        raise ConfigurationError("reionization search needs max_iter >= 1 and a positive tolerance")

    if params.reio_z_or_tau == ReionizationInput.TAU:
        if params.tau_reio <= 0.0:
            raise ConfigurationError(f"tau_reio must be positive, got {params.tau_reio}")
        return

    z_start = params.z_reio + prec.reionization_start_factor * prec.reionization_width
    if params.z_reio < 0.0:
        raise ConfigurationError(f"z_reio must be >= 0, got {params.z_reio}")
    if z_start >= prec.th_z_max:
        raise ConfigurationError(
            f"reionization start z={z_start:.6g} above the recombination table (z_max={prec.th_z_max:.6g})"
        )
    if z_start > prec.reionization_z_start_max:
        raise ConfigurationError(
            f"reionization start z={z_start:.6g} above reionization_z_start_max="
            f"{prec.reionization_z_start_max:.6g}"
        )


# ---------------------------------------------------------------------------
# Main solver
# ---------------------------------------------------------------------------

def thermodynamics_solve(
    params: CosmoParams,
    prec: PrecisionParams,
    bg: BackgroundResult,
) -> ThermoResult:
    """Compute the thermodynamics table and characteristic scalars.

    Args:
        params: cosmological parameters
        prec: precision parameters
        bg: background provider

    Returns:
        ThermoResult

    Raises:
        ConfigurationError, IntegrationDivergence, RootSearchNonconvergence,
        MergeInconsistency
    """
    validate_parameters(params, prec)

    reco, ws = recombination_solve(params, prec, bg)
    rp, search = reionization_solve(params, reco, ws, bg, prec)
    merged = merge_reco_and_reio(reco, rp, ws, bg, prec)

    table, kappa = build_thermo_table(merged, ws, bg, prec.th_rate_smoothing_radius)
    problems = check_table(table)
    if problems:
        raise ThermodynamicsError("invalid thermodynamics table: " + "; ".join(problems))
    spline = SplineTable.from_table(table)

    g = table.column(ThermoField.G)
    z_vis, i_peak = peak_visibility(table.z, g)
    z_fs = free_streaming_redshift(table.z, g, i_peak, prec.th_free_streaming_fraction)

    tau_reio = 0.0 if rp is None else reionization_optical_depth(reco, rp, ws, bg)

    result = ThermoResult(
        table=table,
        spline=spline,
        reio=rp,
        reio_search=search,
        z_visibility_max=z_vis,
        z_visibility_free_streaming=z_fs,
        eta_rec=float(tau_of_z(bg, z_vis)),
        rs_rec=float(rs_of_z(bg, z_vis)),
        tau_reio=tau_reio,
        z_reio=None if rp is None else rp.reio_redshift,
        n_e=ws.Nnow * (1.0 + 2.0 * ws.fHe),
        eta_ini=float(tau_of_z(bg, table.z[-1])),
        _kappa=np.asarray(kappa),
        _dkappa_dz=np.asarray(table.column(ThermoField.DKAPPA) / H_of_z(bg, table.z)),
    )
    logger.info(
        "thermodynamics: z_rec=%.2f eta_rec=%.2f Mpc rs_rec=%.2f Mpc z_free_streaming=%.2f tau_reio=%.5f",
        result.z_visibility_max, result.eta_rec, result.rs_rec,
        result.z_visibility_free_streaming, result.tau_reio,
    )
    return result


# ---------------------------------------------------------------------------
# Point queries
# ---------------------------------------------------------------------------

def thermodynamics_at_z(
    th: ThermoResult,
    z: float,
    mode: InterpolationMode = InterpolationMode.NORMAL,
    last_index: int = 0,
) -> tuple[np.ndarray, int]:
    """All table quantities at redshift z, indexed by ThermoField.

    For CLOSEST and GROWING, last_index is the index returned by the
    previous call. Returns (vector, interval index).

    Between knots exp(-kappa) comes from a monotone interpolation of kappa,
    the visibility columns are 0 next to rows where exp(-kappa) underflows,
    and x_e is kept inside the range of the table.

    Raises:
        OutOfRangeQuery: z outside the table (the table stays usable)
        RuntimeError: tables already released
    """
    th._require_tables()
    i = find_interval(th._z, z, mode, last_index)
    vec = spline_eval_interval(th._z, th._data, th._d2data, i, z)

    # exp(-kappa) from a monotone interpolation of kappa, so it stays in [0, 1]
    # and never increases with z
    kappa = monotone_hermite_interval(th._z, th._kappa, th._dkappa_dz, i, z)
    vec[ThermoField.EXP_M_KAPPA] = 0.0 if kappa > KAPPA_UNDERFLOW else np.exp(-kappa)
    if min(th._data[i, ThermoField.EXP_M_KAPPA], th._data[i + 1, ThermoField.EXP_M_KAPPA]) < _TINY:
        vec[ThermoField.G] = vec[ThermoField.DG] = vec[ThermoField.DDG] = 0.0
    vec[ThermoField.XE] = min(max(vec[ThermoField.XE], th._xe_range[0]), th._xe_range[1])
    return vec, i
