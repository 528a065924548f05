"""Thermodynamics table and its spline coefficients.

The table is a (N, n_fields) matrix over an increasing redshift grid.
Columns are addressed by ThermoField, never by raw integers.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

import jax
import jax.numpy as jnp
from jaxtyping import Array, Float

from jaxthermo.interpolation import _compute_natural_spline_coeffs


class ThermoField(enum.IntEnum):
    """Column of the thermodynamics table.

    cf. CLASS struct thermo (index_th_*).
    """
    XE = 0           # ionization fraction x_e
    DKAPPA = 1       # Thomson scattering rate dkappa/deta [Mpc^-1]
    DDKAPPA = 2      # d^2 kappa / deta^2
    DDDKAPPA = 3     # d^3 kappa / deta^3
    EXP_M_KAPPA = 4  # exp(-kappa)
    G = 5            # visibility function g = kappa' exp(-kappa)
    DG = 6           # dg/deta
    DDG = 7          # d^2 g / deta^2
    TB = 8           # baryon temperature [K]
    CB2 = 9          # squared baryon sound speed
    DACB2 = 10       # d[c_b^2 / (1+z)] / deta
    RATE = 11        # variation rate used to size perturbation time steps


@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class ThermoTable:
    """Thermodynamics quantities on an increasing, duplicate-free z grid."""
    z: Float[Array, "N"]
    data: Float[Array, "N F"]

    @property
    def size(self) -> int:
        return int(self.z.shape[0])

    def column(self, field: ThermoField) -> Float[Array, "N"]:
        return self.data[:, int(field)]

    def tree_flatten(self):
        return (self.z, self.data), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        return cls(*children)


@jax.tree_util.register_pytree_node_class
@dataclass(frozen=True)
class SplineTable:
    """Natural-spline second derivatives d^2/dz^2 of every ThermoTable column."""
    d2data: Float[Array, "N F"]

    @classmethod
    def from_table(cls, table: ThermoTable) -> SplineTable:
        return cls(d2data=_compute_natural_spline_coeffs(table.z, table.data))

    def column(self, field: ThermoField) -> Float[Array, "N"]:
        return self.d2data[:, int(field)]

    def tree_flatten(self):
        return (self.d2data,), None

    @classmethod
    def tree_unflatten(cls, aux, children):
        return cls(*children)


def check_table(table: ThermoTable) -> list[str]:
    """Invariant violations of a finished table (empty list if none)."""
    problems = []
    z = table.z
    if not bool(jnp.all(jnp.diff(z) > 0.0)):
        problems.append("z grid is not strictly increasing")
    if not bool(jnp.all(jnp.isfinite(table.data))):
        problems.append("non-finite entries")
    xe = table.column(ThermoField.XE)
    if not bool(jnp.all(xe > 0.0)):
        problems.append("x_e not positive")
    if not bool(jnp.all(table.column(ThermoField.CB2) > 0.0)):
        problems.append("c_b^2 not positive")
    emk = table.column(ThermoField.EXP_M_KAPPA)
    if not bool(jnp.all((emk >= 0.0) & (emk <= 1.0))):
        problems.append("exp(-kappa) outside [0, 1]")
    if not bool(jnp.all(jnp.diff(emk) <= 0.0)):
        problems.append("exp(-kappa) increases with z")
    return problems
