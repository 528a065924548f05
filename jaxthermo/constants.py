"""Physical and atomic constants for jaxthermo.

SI values follow the CLASS thermodynamics header (include/thermodynamics.h)
and RECFAST 1.5, so that the recombination history can be compared
line by line with CLASS output.

CLASS uses units where c=1, lengths in Mpc, times in Mpc (i.e., Mpc/c).

References:
    CLASS source: include/thermodynamics.h, include/background.h
    RECFAST: Seager, Sasselov & Scott (1999); Wong, Moss & Scott (2008)
"""

import math

# --- Conversion factors ---
Mpc_over_m = 3.085677581282e22
"""Conversion factor from meters to megaparsecs."""

# --- Fundamental constants (SI) ---
c_SI = 2.99792458e8
"""Speed of light in m/s."""

G_SI = 6.67428e-11
"""Newton's gravitational constant in m^3/kg/s^2."""

eV_SI = 1.602176487e-19
"""1 eV expressed in Joules."""

k_B_SI = 1.3806504e-23
"""Boltzmann constant in J/K."""

h_P_SI = 6.62606896e-34
"""Planck constant in J*s."""

sigma_B = 2.0 * math.pi**5 * k_B_SI**4 / (15.0 * h_P_SI**3 * c_SI**2)
"""Stefan-Boltzmann constant in W/m^2/K^4 (= 5.670400e-8)."""

a_rad = 4.0 * sigma_B / c_SI
"""Radiation constant a_R = 4 sigma_B / c in J/(m^3 K^4)."""

# --- Particle data, cf. thermodynamics.h ---
m_e = 9.10938215e-31
"""Electron mass in kg."""

m_p = 1.672621637e-27
"""Proton mass in kg."""

m_H = 1.673575e-27
"""Hydrogen atom mass in kg."""

not4 = 3.9715
"""Helium to hydrogen mass ratio (not exactly 4)."""

sigma_T = 6.6524616e-29
"""Thomson scattering cross section in m^2."""

# --- Defaults ---
T_cmb_default = 2.7255
"""Default CMB temperature today in Kelvin (Fixsen 2009)."""

Y_He_default = 0.2454006
"""Default primordial helium mass fraction Y_He."""

# --- Parameter limits, cf. thermodynamics.h ---
T_cmb_big = 2.8
T_cmb_small = 2.7
Y_He_big = 0.5
Y_He_small = 0.01

# ---------------------------------------------------------------------------
# RECFAST atomic data
# ---------------------------------------------------------------------------

Lambda_H = 8.2245809
"""H 2s-1s two photon rate in s^-1."""

Lambda_He = 51.3
"""HeI 2s-1s two photon rate in s^-1."""

L_H_ion = 1.096787737e7       # level for H ionization in m^-1
L_H_alpha = 8.225916453e6     # level for H Ly alpha in m^-1
L_He1_ion = 1.98310772e7      # level for HeI ionization in m^-1
L_He2_ion = 4.389088863e7     # level for HeII ionization in m^-1
L_He_2s = 1.66277434e7        # level for HeI 2s in m^-1
L_He_2p = 1.71134891e7        # level for He 21P1-11S0 in m^-1

A2P_s = 1.798287e9            # Einstein A coefficient for He 21P1-11S0
A2P_t = 177.58                # Einstein A coefficient for He 23P1-11S0
L_He_2Pt = 1.690871466e7      # level for 23P012-11S0 in m^-1
L_He_2St = 1.5985597526e7     # level for 23S1-11S0 in m^-1
L_He2St_ion = 3.8454693845e6  # level for 23S1-continuum in m^-1
sigma_He_2Ps = 1.436289e-22   # H ionization x-section at HeI 21P1-11S0 freq. in m^2
sigma_He_2Pt = 1.484872e-22   # H ionization x-section at HeI 23P1-11S0 freq. in m^2

# Pequignot, Petitjean & Boisson (1991) case-B fit for hydrogen
a_PPB = 4.309
b_PPB = -0.6166
c_PPB = 0.6703
d_PPB = 0.5300

# Verner & Ferland (1996) fit for helium singlets
a_VF = 10.0**(-16.744)
b_VF = 0.711
T_0 = 10.0**0.477121
T_1 = 10.0**5.114

# HeI triplet recombination fit
a_trip = 10.0**(-16.306)
b_trip = 0.761

# Gaussian correction to the hydrogen Peebles K factor (RECFAST 1.5 Hswitch)
AGauss1 = -0.14
AGauss2 = 0.079
zGauss1 = 7.28
zGauss2 = 6.73
wGauss1 = 0.18
wGauss2 = 0.33
