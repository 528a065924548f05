"""Test the background time provider used by the thermodynamics module.

H(z) is closed-form, so the splines are checked against it directly; the
conformal time and sound horizon are checked against their radiation and
matter era limits.
"""

import jax.numpy as jnp
import numpy as np
import pytest

from jaxthermo.background import (
    H_of_z,
    dz_dtau,
    rs_of_z,
    tau_of_z,
    z_of_tau,
)
from tests.conftest import assert_close


class TestBackgroundScalars:

    def test_H0(self, bg):
        """H0 = h * 100 km/s/Mpc / c in Mpc^-1."""
        expected = 0.6736 * 1e5 / 2.99792458e8
        assert abs(float(bg.H0) - expected) / expected < 1e-14

    def test_flatness(self, bg):
        total = bg.Omega_g + bg.Omega_ur + bg.Omega_b + bg.Omega_cdm + bg.Omega_lambda
        assert abs(float(total) - 1.0) < 1e-12

    def test_omega_g(self, bg):
        """Omega_g h^2 = 2.47e-5 for T_cmb = 2.7255 K."""
        val = float(bg.Omega_g) * 0.6736**2
        assert abs(val - 2.473e-5) / 2.473e-5 < 2e-3, f"Omega_g h^2 = {val:.4e}"

    def test_conformal_age(self, bg):
        """Conformal age for Planck-like LCDM is ~14.1 Gpc."""
        val = float(bg.conformal_age)
        assert 13800.0 < val < 14400.0, f"conformal_age = {val:.1f} Mpc"


class TestBackgroundFunctions:

    def test_hubble_matches_closed_form(self, bg):
        z = jnp.array([0.0, 1.0, 10.0, 1100.0, 5000.0])
        a = 1.0 / (1.0 + z)
        Omega_r = bg.Omega_g + bg.Omega_ur
        Omega_m = bg.Omega_b + bg.Omega_cdm
        exact = bg.H0 * jnp.sqrt(Omega_r / a**4 + Omega_m / a**3 + bg.Omega_lambda)
        assert_close(H_of_z(bg, z), exact, 1e-6, name="H(z)", coordinate=z)

    def test_tau_monotone(self, bg):
        z = jnp.linspace(0.0, 1e4, 500)
        assert bool(jnp.all(jnp.diff(tau_of_z(bg, z)) < 0.0))

    def test_z_of_tau_inverts_tau_of_z(self, bg):
        z = jnp.array([0.5, 3.0, 50.0, 1089.0, 3000.0])
        assert_close(z_of_tau(bg, tau_of_z(bg, z)), z, 1e-5, name="z(tau(z))", coordinate=z)

    def test_radiation_era_conformal_time(self, bg):
        """Deep in radiation domination tau = 1/(a H)."""
        z = 1e6
        a = 1.0 / (1.0 + z)
        expected = 1.0 / (a * float(H_of_z(bg, z)))
        assert abs(float(tau_of_z(bg, z)) - expected) / expected < 1e-2

    def test_sound_horizon_at_recombination(self, bg):
        """r_s(z~1090) is ~145 Mpc for Planck-like parameters."""
        val = float(rs_of_z(bg, 1090.0))
        assert 140.0 < val < 150.0, f"rs(1090) = {val:.2f} Mpc"

    def test_sound_horizon_below_light_horizon(self, bg):
        z = jnp.array([10.0, 1000.0, 1e4])
        assert bool(jnp.all(rs_of_z(bg, z) < tau_of_z(bg, z) / np.sqrt(3.0) * 1.0000001))

    @pytest.mark.parametrize("z", [0.0, 7.0, 1100.0])
    def test_dz_dtau_is_minus_H(self, bg, z):
        """Forward-difference check of dz/dtau = -H."""
        dz = 1e-4 * (1.0 + z)
        fd = dz / float(tau_of_z(bg, z + dz) - tau_of_z(bg, z))
        assert abs(fd - float(dz_dtau(bg, z))) / float(H_of_z(bg, z)) < 1e-3

    def test_tau_slope_today(self, bg):
        """dtau/dln a = 1/(a H) at a = 1, where the grid used to end."""
        slope = float(bg.tau_of_loga.derivative(jnp.array(0.0)))
        assert abs(slope * float(bg.H0) - 1.0) < 1e-4
        assert float(tau_of_z(bg, 0.0)) == pytest.approx(float(bg.conformal_age), rel=1e-12)
