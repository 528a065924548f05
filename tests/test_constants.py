"""Test that physical constants match the CLASS thermodynamics values exactly."""

from jaxthermo import constants as const


def test_mpc_over_m():
    assert const.Mpc_over_m == 3.085677581282e22


def test_speed_of_light():
    assert const.c_SI == 2.99792458e8


def test_gravitational_constant():
    assert const.G_SI == 6.67428e-11


def test_boltzmann_constant():
    assert const.k_B_SI == 1.3806504e-23


def test_planck_constant():
    assert const.h_P_SI == 6.62606896e-34


def test_stefan_boltzmann():
    """sigma_B should be approximately 5.670400e-8."""
    assert abs(const.sigma_B - 5.670400e-8) / 5.670400e-8 < 1e-4


def test_thomson_cross_section():
    assert const.sigma_T == 6.6524616e-29


def test_particle_masses():
    assert const.m_e == 9.10938215e-31
    assert const.m_H == 1.673575e-27
    assert const.not4 == 3.9715


def test_tcmb_default():
    assert const.T_cmb_default == 2.7255


def test_defaults_inside_fit_range():
    assert const.T_cmb_small <= const.T_cmb_default <= const.T_cmb_big
    assert const.Y_He_small <= const.Y_He_default <= const.Y_He_big


def test_hydrogen_levels():
    """Ly-alpha is 3/4 of the ionization level (Bohr model to 1e-4)."""
    assert abs(const.L_H_alpha / const.L_H_ion - 0.75) < 1e-3
