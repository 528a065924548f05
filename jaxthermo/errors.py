"""Exceptions raised by the thermodynamics pipeline.

Every fatal condition aborts thermodynamics_solve() before a ThermoResult
is constructed, so callers never see a partially filled table.
OutOfRangeQuery is the only recoverable error: it leaves the table intact.
"""

from __future__ import annotations


class ThermodynamicsError(Exception):
    """Base class for all jaxthermo errors."""


class ConfigurationError(ThermodynamicsError, ValueError):
    """Invalid parameter combination, detected before heavy computation."""


class IntegrationDivergence(ThermodynamicsError):
    """The recombination ODE failed inside the given redshift range."""

    def __init__(self, message: str, z_range: tuple[float, float]):
        super().__init__(f"{message} (z in [{z_range[1]:.6g}, {z_range[0]:.6g}])")
        self.z_range = z_range


class RootSearchNonconvergence(ThermodynamicsError):
    """The optical-depth -> redshift search failed to converge or to bracket."""

    def __init__(self, message: str, bracket: tuple[float, float], residual: float, n_iter: int):
        super().__init__(
            f"{message}: bracket=[{bracket[0]:.6g}, {bracket[1]:.6g}], "
            f"residual={residual:.3e}, iterations={n_iter}"
        )
        self.bracket = bracket
        self.residual = residual
        self.n_iter = n_iter


class MergeInconsistency(ThermodynamicsError):
    """Recombination and reionization histories do not join consistently."""

    def __init__(self, message: str, discrepancy: float):
        super().__init__(f"{message} (discrepancy={discrepancy:.3e})")
        self.discrepancy = discrepancy


class OutOfRangeQuery(ThermodynamicsError, ValueError):
    """Query redshift lies outside the tabulated range. No extrapolation is done."""

    def __init__(self, z: float, z_range: tuple[float, float]):
        super().__init__(
            f"z={z:.6g} outside tabulated range [{z_range[0]:.6g}, {z_range[1]:.6g}]"
        )
        self.z = z
        self.z_range = z_range
