"""Test fixtures for the jaxthermo test suite.

Provides:
- A coarse PrecisionParams shared by the pipeline tests
- Session-scoped background and thermodynamics results for the
  standard scenarios (tau search, no reionization, given z_reio)
- Relative-error helpers with concise failure messages
"""

# Enable 64-bit JAX (required for recombination numerics)
import jax
jax.config.update("jax_enable_x64", True)

import numpy as np
import pytest

from jaxthermo.background import background_solve
from jaxthermo.params import (
    CosmoParams,
    PrecisionParams,
    ReionizationInput,
    ReionizationParametrization,
)
from jaxthermo.thermodynamics import thermodynamics_solve


PREC = PrecisionParams.fast()

# Y_He = 0.24, T_cmb = 2.7255 K, tau_reio = 0.054
SCENARIO_A = CosmoParams(Y_He=0.24, T_cmb=2.7255, tau_reio=0.054,
                         reio_z_or_tau=ReionizationInput.TAU)
SCENARIO_B = CosmoParams(reio_parametrization=ReionizationParametrization.NONE)


@pytest.fixture(scope="session")
def prec():
    return PREC


@pytest.fixture(scope="session")
def bg():
    return background_solve(CosmoParams(), PREC)


@pytest.fixture(scope="session")
def bg_a():
    return background_solve(SCENARIO_A, PREC)


@pytest.fixture(scope="session")
def th_tau(bg_a):
    """Reionization redshift searched from tau_reio."""
    return thermodynamics_solve(SCENARIO_A, PREC, bg_a)


@pytest.fixture(scope="session")
def th_none(bg):
    """No reionization."""
    return thermodynamics_solve(SCENARIO_B, PREC, bg)


def relative_error(computed, reference, eps=1e-30):
    """Compute relative error, avoiding division by zero."""
    return np.abs(computed - reference) / (np.abs(reference) + eps)


def max_relative_error(computed, reference, eps=1e-30):
    """Return (max_rel_err, index_of_max)."""
    rel = relative_error(np.asarray(computed), np.asarray(reference), eps)
    idx = np.argmax(rel)
    return float(rel[idx]), int(idx)


def assert_close(computed, reference, rtol, name="quantity", coordinate=None):
    """Assert computed matches reference within rtol, with a one-line message."""
    computed = np.asarray(computed)
    reference = np.asarray(reference)
    max_err, idx = max_relative_error(computed, reference)
    if max_err > rtol:
        coord_str = f" at index {idx}"
        if coordinate is not None:
            coord_str = f" at {np.asarray(coordinate)[idx]:.6g}"
        msg = (
            f"{name}: max rel error {max_err:.4%}{coord_str}"
            f" (expected {reference.flat[idx]:.6e}, got {computed.flat[idx]:.6e})"
            f" -- tolerance {rtol:.4%}"
        )
        raise AssertionError(msg)
