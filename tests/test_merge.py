"""Test splicing the reionization profile onto the recombination history."""

import dataclasses

import jax.numpy as jnp
import numpy as np
import pytest

from jaxthermo.errors import ConfigurationError, IntegrationDivergence, MergeInconsistency
from jaxthermo.merge import merge_reco_and_reio, merge_xe
from jaxthermo.params import CosmoParams
from jaxthermo.recombination import recombination_solve
from jaxthermo.reionization import reionization_parameters, reionization_xe

from tests.conftest import PREC


@pytest.fixture(scope="module")
def reco_ws(bg):
    return recombination_solve(CosmoParams(), PREC, bg)


@pytest.fixture(scope="module")
def rp(reco_ws):
    reco, ws = reco_ws
    return reionization_parameters(7.7, reco, ws, PREC)


@pytest.fixture(scope="module")
def merged(reco_ws, rp, bg):
    reco, ws = reco_ws
    return merge_reco_and_reio(reco, rp, ws, bg, PREC)


def test_no_reionization_is_pass_through(reco_ws, bg):
    reco, ws = reco_ws
    assert merge_reco_and_reio(reco, None, ws, bg, PREC) is reco


def test_rows_above_start_untouched(reco_ws, rp, merged):
    reco, _ = reco_ws
    above = np.asarray(reco.z) > rp.reio_start
    np.testing.assert_array_equal(np.asarray(merged.xe)[above], np.asarray(reco.xe)[above])
    # T_b is integrated again from the first row above the start
    first = int(np.argmax(above))
    np.testing.assert_array_equal(np.asarray(merged.Tb)[first + 1:], np.asarray(reco.Tb)[first + 1:])


def test_rows_below_start_overwritten(reco_ws, rp, merged):
    reco, _ = reco_ws
    below = np.asarray(reco.z) < rp.reio_start
    expected = np.asarray(reionization_xe(reco.z, rp))[below]
    np.testing.assert_allclose(np.asarray(merged.xe)[below], expected, rtol=1e-14)


def test_same_grid(reco_ws, merged):
    reco, _ = reco_ws
    np.testing.assert_array_equal(np.asarray(merged.z), np.asarray(reco.z))
    assert np.all(np.diff(np.asarray(merged.z)) > 0.0)


def test_merge_xe_matches_full_merge(reco_ws, rp, merged):
    reco, _ = reco_ws
    np.testing.assert_allclose(np.asarray(merge_xe(reco, rp)), np.asarray(merged.xe), rtol=1e-14)


def test_reionized_gas_is_heated(reco_ws, merged):
    """Compton heating by the ionized plasma drives T_b towards T_cmb."""
    reco, _ = reco_ws
    i = int(np.argmin(np.abs(np.asarray(reco.z) - 3.0)))
    assert float(merged.Tb[i]) > 2.0 * float(reco.Tb[i])
    assert bool(jnp.all(jnp.isfinite(merged.cb2)))
    assert bool(jnp.all(merged.cb2 > 0.0))


def test_start_outside_table_rejected(reco_ws, rp, bg):
    reco, ws = reco_ws
    bad = dataclasses.replace(rp, reio_start=float(reco.z[-1]) + 1.0)
    with pytest.raises(ConfigurationError):
        merge_reco_and_reio(reco, bad, ws, bg, PREC)


def test_discontinuity_detected(reco_ws, rp, bg):
    """A profile that does not join the recombination value is rejected."""
    reco, ws = reco_ws
    bad = dataclasses.replace(rp, xe_before=10.0 * rp.xe_before)
    with pytest.raises(MergeInconsistency) as exc:
        merge_reco_and_reio(reco, bad, ws, bg, PREC)
    assert exc.value.discrepancy > PREC.th_merge_rtol


def test_temperature_failure_is_integration_divergence(reco_ws, rp, bg):
    """A solver that runs out of steps reports the reionized redshift range."""
    reco, ws = reco_ws
    prec = dataclasses.replace(PREC, ode_max_steps=2)
    with pytest.raises(IntegrationDivergence) as exc:
        merge_reco_and_reio(reco, rp, ws, bg, prec)
    z_hi, z_lo = exc.value.z_range
    assert z_lo == 0.0
    assert z_hi > rp.reio_start
