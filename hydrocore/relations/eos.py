"""Equations of state for the liquid and gas phases."""

from typing import Protocol, runtime_checkable

import numpy as np

from hydrocore.errors import ConfigurationError
from hydrocore.params.schema import EOSParams


@runtime_checkable
class EOS(Protocol):
    """Density and viscosity as functions of pressure."""

    def mass_density(self, p: np.ndarray) -> np.ndarray:
        ...

    def d_mass_density_dp(self, p: np.ndarray) -> np.ndarray:
        ...

    def molar_mass(self) -> float:
        ...

    def viscosity(self, p: np.ndarray) -> np.ndarray:
        ...


class EOSConstant:
    """Slightly compressible liquid with constant viscosity.

    ρ = ρ0·(1 + β·(p - p_ref)), n = ρ / M
    """

    def __init__(self, params: EOSParams):
        self.params = params
        self.rho0 = params.density
        self.beta = params.compressibility
        self.p_ref = params.reference_pressure
        self._molar_mass = params.molar_mass
        self.mu = params.viscosity

    def mass_density(self, p: np.ndarray) -> np.ndarray:
        p = np.asarray(p, dtype=np.float64)
        return self.rho0 * (1.0 + self.beta * (p - self.p_ref))

    def d_mass_density_dp(self, p: np.ndarray) -> np.ndarray:
        return np.full(np.shape(p), self.rho0 * self.beta)

    def molar_mass(self) -> float:
        return self._molar_mass

    def molar_density(self, p: np.ndarray) -> np.ndarray:
        return self.mass_density(p) / self._molar_mass

    def d_molar_density_dp(self, p: np.ndarray) -> np.ndarray:
        return self.d_mass_density_dp(p) / self._molar_mass

    def viscosity(self, p: np.ndarray) -> np.ndarray:
        return np.full(np.shape(p), self.mu)

GAS_CONSTANT = 8.31446261815324  # J/(mol·K)
MOLAR_MASS_AIR = 0.0289647  # kg/mol


class EOSIdealGas:
    """Air with water vapor at the gas pressure.

    n_g = p / (R·T); the vapor pressure follows Bolton's fit,
    p_sat = 611.2·exp(17.67·(T - 273.15) / (T - 29.65)).
    """

    def __init__(self, molar_mass_water: float, molar_mass_air: float = MOLAR_MASS_AIR):
        self.molar_mass_water = molar_mass_water
        self.molar_mass_air = molar_mass_air

    def molar_density(self, temperature: np.ndarray, p: np.ndarray) -> np.ndarray:
        return np.asarray(p, dtype=np.float64) / (GAS_CONSTANT * np.asarray(temperature, dtype=np.float64))

    def saturated_vapor_pressure(self, temperature: np.ndarray) -> np.ndarray:
        t = np.asarray(temperature, dtype=np.float64)
        return 611.2 * np.exp(17.67 * (t - 273.15) / (t - 29.65))

    def molar_mass(self, mol_frac_vapor: np.ndarray) -> np.ndarray:
        """Mixture molar mass for a vapor mole fraction."""
        x = np.asarray(mol_frac_vapor, dtype=np.float64)
        return x * self.molar_mass_water + (1.0 - x) * self.molar_mass_air


def create_eos(params: EOSParams) -> EOSConstant:
    """Factory keyed on params.model."""
    if params.model == "constant":
        return EOSConstant(params)
    raise ConfigurationError(f"Unknown EOS model '{params.model}'")
