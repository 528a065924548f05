"""Splicing of the reionization profile onto the recombination history.

Rows with z < reio_start are overwritten with the reionization x_e; rows
above it are kept as integrated. The baryon temperature below reio_start
is integrated again with the new x_e (Compton heating by the reionized
plasma), and c_b^2 follows from it.

cf. CLASS thermodynamics.c: thermodynamics_merge_reco_and_reio,
thermodynamics_reionization_sample
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Optional

import diffrax
import jax.numpy as jnp
import numpy as np

from jaxthermo import constants as const
from jaxthermo.background import BackgroundResult, H_of_z
from jaxthermo.errors import ConfigurationError, IntegrationDivergence, MergeInconsistency
from jaxthermo.ode import check_solution, solve_nonstiff
from jaxthermo.params import PrecisionParams
from jaxthermo.recombination import (
    RecombinationTable,
    RecombinationWorkspace,
    baryon_sound_speed,
    baryon_temperature_derivative,
)
from jaxthermo.reionization import ReionizationParameters, reionization_xe

logger = logging.getLogger(__name__)


def merge_xe(reco: RecombinationTable, rp: ReionizationParameters):
    """x_e of the spliced history on the recombination grid."""
    return jnp.where(reco.z < rp.reio_start, reionization_xe(reco.z, rp), reco.xe)


def _splice_index(reco: RecombinationTable, rp: ReionizationParameters) -> int:
    """Index of the last row below reio_start (rows 0..i are overwritten)."""
    z = np.asarray(reco.z)
    if not (z[0] < rp.reio_start < z[-1]):
        raise ConfigurationError(
            f"reionization start z={rp.reio_start:.6g} outside the recombination table "
            f"({z[0]:.6g}, {z[-1]:.6g})"
        )
    return int(np.searchsorted(z, rp.reio_start, side="left")) - 1


def _temperature_rhs(loga, y, args):
    ws, bg, rp = args
    z = jnp.exp(-loga) - 1.0
    Hz = H_of_z(bg, z) * const.c_SI / const.Mpc_over_m
    x = reionization_xe(z, rp)
    return -(1.0 + z) * baryon_temperature_derivative(z, y, x, Hz, ws)


def merge_reco_and_reio(
    reco: RecombinationTable,
    rp: Optional[ReionizationParameters],
    ws: RecombinationWorkspace,
    bg: BackgroundResult,
    prec: PrecisionParams,
) -> RecombinationTable:
    """Spliced x_e, T_b and c_b^2 on the recombination grid (increasing z).

    Without reionization the recombination table is returned as is.

    Raises:
        ConfigurationError: reio_start not strictly inside the table
        MergeInconsistency: x_e jumps by more than th_merge_rtol at the splice
        IntegrationDivergence: the temperature integration failed
    """
    if rp is None:
        return reco

    i_splice = _splice_index(reco, rp)
    z = reco.z
    xe_reio = reionization_xe(z[: i_splice + 1], rp)

    # both sides compared on the splice row
    xe_reco_row = float(reco.xe[i_splice])
    discrepancy = abs(float(xe_reio[-1]) - xe_reco_row) / xe_reco_row
    if discrepancy > prec.th_merge_rtol:
        raise MergeInconsistency(
            f"x_e discontinuity at the reionization splice z={float(z[i_splice]):.6g}", discrepancy
        )
    xe = reco.xe.at[: i_splice + 1].set(xe_reio)

    # T_b from the first untouched row down to z = 0
    z_seg = z[: i_splice + 2][::-1]
    loga = -jnp.log1p(z_seg)
    sol = solve_nonstiff(
        _temperature_rhs,
        t0=loga[0],
        t1=loga[-1],
        y0=reco.Tb[i_splice + 1],
        saveat=diffrax.SaveAt(ts=loga),
        args=(ws, bg, rp),
        rtol=prec.th_ode_rtol,
        atol=prec.th_ode_atol,
        max_steps=prec.ode_max_steps,
        throw=False,
    )
    if not check_solution(sol):
        raise IntegrationDivergence(
            f"baryon temperature integration after reionization failed ({sol.result})",
            (float(z[i_splice + 1]), 0.0),
        )
    Tb_seg = sol.ys[::-1]
    Tb = reco.Tb.at[: i_splice + 2].set(Tb_seg)

    Hz = H_of_z(bg, z) * const.c_SI / const.Mpc_over_m
    dTb_dz = baryon_temperature_derivative(z, Tb, xe, Hz, ws)
    cb2 = jnp.where(
        jnp.arange(z.shape[0]) <= i_splice + 1,
        baryon_sound_speed(z, xe, Tb, dTb_dz, ws.Y_He),
        reco.cb2,
    )

    logger.debug("merged %d reionization rows below z=%.4f (discrepancy %.2e)",
                 i_splice + 1, rp.reio_start, discrepancy)
    return dataclasses.replace(reco, xe=xe, Tb=Tb, cb2=cb2)
