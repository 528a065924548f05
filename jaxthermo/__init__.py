"""jaxthermo: ionization and thermal history of the universe in JAX.

Usage:
    import jaxthermo

    params = jaxthermo.CosmoParams(tau_reio=0.054)
    result = jaxthermo.compute(params)
    print(result.th.z_visibility_max, result.th.z_reio)

    vec, i = jaxthermo.thermodynamics_at_z(result.th, 1100.0)
    print(vec[jaxthermo.ThermoField.XE])
"""

import jax
jax.config.update("jax_enable_x64", True)

from jaxthermo.constants import *  # noqa: F401,F403
from jaxthermo.errors import (  # noqa: F401
    ConfigurationError,
    IntegrationDivergence,
    MergeInconsistency,
    OutOfRangeQuery,
    RootSearchNonconvergence,
    ThermodynamicsError,
)
from jaxthermo.params import (  # noqa: F401
    CosmoParams,
    PrecisionParams,
    ReionizationInput,
    ReionizationParametrization,
)
from jaxthermo.background import background_solve, BackgroundResult, H_of_z  # noqa: F401
from jaxthermo.interpolation import CubicSpline, InterpolationMode  # noqa: F401
from jaxthermo.table import SplineTable, ThermoField, ThermoTable  # noqa: F401
from jaxthermo.recombination import recombination_solve, RecombinationTable  # noqa: F401
from jaxthermo.reionization import (  # noqa: F401
    ReionizationParameters,
    RootSearchResult,
    reionization_xe,
    search_reionization_redshift,
)
from jaxthermo.thermodynamics import (  # noqa: F401
    ThermoResult,
    thermodynamics_at_z,
    thermodynamics_solve,
)

from dataclasses import dataclass


@dataclass(frozen=True)
class ComputeResult:
    """Background and thermodynamics for one parameter point."""
    bg: BackgroundResult
    th: ThermoResult


def compute(
    params: CosmoParams = CosmoParams(),
    prec: PrecisionParams = PrecisionParams(),
) -> ComputeResult:
    """Run background and thermodynamics.

    Args:
        params: cosmological parameters
        prec: precision parameters

    Returns:
        ComputeResult with background and thermodynamics results
    """
    bg = background_solve(params, prec)
    th = thermodynamics_solve(params, prec, bg)
    return ComputeResult(bg=bg, th=th)
