"""Parameter containers for jaxthermo.

CosmoParams: cosmological parameters, JAX-traced where they are floats.
PrecisionParams: numerical precision settings, static (not traced).

References:
    CLASS source: include/thermodynamics.h (struct thermo input block)
    CLASS source: include/precisions.h (recfast_*, reionization_* entries)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, fields
from typing import Optional

import jax

from jaxthermo.constants import T_cmb_default, Y_He_default


class ReionizationParametrization(str, enum.Enum):
    """Reionization scheme, cf. CLASS enum reionization_parametrization."""
    NONE = "none"
    CAMB = "camb"


class ReionizationInput(str, enum.Enum):
    """Whether the reionization input is a redshift or an optical depth."""
    Z = "z"
    TAU = "tau"


_STATIC_FIELDS = ("reio_parametrization", "reio_z_or_tau")


# ---------------------------------------------------------------------------
# CosmoParams: traced by JAX for autodiff
# ---------------------------------------------------------------------------

@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class CosmoParams:
    """Cosmological parameters.

    Float fields are pytree children. The two reionization selectors
    are static aux data (they change control flow, not values).

    Units follow CLASS conventions:
        - omega_b, omega_cdm: physical density parameters Omega_x h^2
        - h: dimensionless Hubble parameter H0/(100 km/s/Mpc)
        - T_cmb: CMB temperature in Kelvin
    """

    # Background
    h: float = 0.6736
    omega_b: float = 0.02237
    omega_cdm: float = 0.1200
    N_ur: float = 3.044

    # Thermodynamics
    T_cmb: float = T_cmb_default
    Y_He: float = Y_He_default

    # Reionization
    reio_parametrization: ReionizationParametrization = ReionizationParametrization.CAMB
    reio_z_or_tau: ReionizationInput = ReionizationInput.TAU
    z_reio: float = 7.67
    tau_reio: float = 0.0544

    # --- PyTree registration ---
    def tree_flatten(self):
        children = []
        child_names = []
        for f in fields(self):
            if f.name in _STATIC_FIELDS:
                continue
            children.append(getattr(self, f.name))
            child_names.append(f.name)
        # aux must be hashable for jit caching
        static = tuple(getattr(self, name) for name in _STATIC_FIELDS)
        return children, (static, tuple(child_names))

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        static, child_names = aux_data
        kwargs = dict(zip(child_names, children))
        kwargs.update(zip(_STATIC_FIELDS, static))
        return cls(**kwargs)

    def replace(self, **kwargs) -> CosmoParams:
        """Return a new CosmoParams with specified fields replaced."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(kwargs)
        return CosmoParams(**current)


# ---------------------------------------------------------------------------
# PrecisionParams: NOT traced by JAX
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PrecisionParams:
    """Numerical precision parameters. These are NOT JAX-traced.

    They control grid sizes, tolerances, iteration ceilings and the
    empirical RECFAST switches. Defaults follow CLASS precisions.h.
    """

    # Background
    bg_n_points: int = 800          # number of log(a) grid points
    bg_n_future: int = 10           # extra points past a = 1
    bg_a_ini: float = 1e-8          # initial scale factor
    bg_tol: float = 1e-10           # ODE tolerance

    # Redshift grid: coarse above th_z_dense, dense through recombination,
    # finest below th_z_low where reionization lives
    th_z_max: float = 1e4
    th_z_dense: float = 3500.0
    th_z_low: float = 50.0
    th_n_high: int = 650
    th_n_dense: int = 3450
    th_n_low: int = 1000

    # RECFAST
    recfast_fudge_H: float = 1.14
    recfast_delta_fudge_H: float = -0.015
    recfast_Hswitch: bool = True    # Gaussian K correction (RECFAST 1.5)
    recfast_fudge_He: float = 0.86
    recfast_He_corrections: bool = True  # Heswitch=6: HeI 2P opacity + triplets
    recfast_H_frac: float = 1e-3
    recfast_x_He0_trigger: float = 0.995
    recfast_x_H0_trigger: float = 0.995
    recfast_x_H0_trigger2: float = 0.995
    recfast_z_He_1: float = 8000.0
    recfast_delta_z_He_1: float = 50.0
    recfast_z_He_2: float = 5000.0
    recfast_delta_z_He_2: float = 100.0
    recfast_z_He_3: float = 3500.0
    recfast_delta_z_He_3: float = 50.0
    recfast_delta_z_He_switch: float = 50.0  # Saha -> ODE blending window above the He switch
    recfast_T_fit_min: float = 1e-4  # K, validity of the case-B fits
    recfast_T_fit_max: float = 1e9

    # Stiff ODE (integration variable is ln a)
    th_ode_rtol: float = 1e-6
    th_ode_atol: float = 1e-10
    th_ode_dtmax: float = 5e-3
    th_ode_dtmin: float = 1e-12
    ode_max_steps: int = 65536

    # Reionization
    reionization_exponent: float = 1.5
    reionization_width: float = 0.5
    reionization_start_factor: float = 8.0
    reionization_z_start_max: float = 50.0
    helium_fullreio_redshift: float = 3.5
    helium_fullreio_width: float = 0.5
    reionization_optical_depth_tol: float = 1e-4
    reionization_max_iter: int = 100
    reionization_z_search_min: float = 0.0
    reionization_z_search_max: Optional[float] = None

    # Merge, visibility, rate
    th_merge_rtol: float = 1e-2
    th_free_streaming_fraction: float = 1e-2
    th_rate_smoothing_radius: int = 50

    @property
    def z_search_max(self) -> float:
        """Upper end of the reionization-redshift search bracket."""
        if self.reionization_z_search_max is not None:
            return self.reionization_z_search_max
        return self.reionization_z_start_max - self.reionization_start_factor * self.reionization_width

    @staticmethod
    def fast():
        """Coarse preset for quick checks (about 4x fewer table rows)."""
        return PrecisionParams(
            bg_n_points=400,
            bg_tol=1e-8,
            th_n_high=200,
            th_n_dense=1150,
            th_n_low=400,
            th_ode_rtol=1e-5,
            th_ode_atol=1e-9,
            th_ode_dtmax=1e-2,
            reionization_optical_depth_tol=1e-3,
        )
