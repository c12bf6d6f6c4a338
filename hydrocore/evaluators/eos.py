"""Liquid density and viscosity from pressure; gas phase properties."""

from typing import Any

import numpy as np

from hydrocore.evaluators.secondary import SecondaryVariablesEvaluator
from hydrocore.fields.base import FieldData, get_key
from hydrocore.evaluators.wrm import ATMOSPHERIC_PRESSURE
from hydrocore.relations.eos import EOSConstant, EOSIdealGas


class EOSEvaluator(SecondaryVariablesEvaluator):
    """[mass_density_liquid, molar_density_liquid, viscosity_liquid] from pressure."""

    def __init__(self, eos: EOSConstant, domain: str = "domain"):
        self.pressure_key = get_key(domain, "pressure")
        super().__init__(
            [
                get_key(domain, "mass_density_liquid"),
                get_key(domain, "molar_density_liquid"),
                get_key(domain, "viscosity_liquid"),
            ],
            [self.pressure_key],
        )
        self.eos = eos

    def evaluate_field_(self, state: Any, results: list[FieldData]) -> None:
        rho, n_liq, mu = results
        p = state.get_field_data(self.pressure_key).to_numpy("cell")[:, 0]
        rho.from_numpy("cell", self.eos.mass_density(p))
        n_liq.from_numpy("cell", self.eos.molar_density(p))
        mu.from_numpy("cell", self.eos.viscosity(p))

    def evaluate_field_partial_derivative_(self, state: Any, wrt_key: str) -> list[np.ndarray]:
        p = state.get_field_data(self.pressure_key).to_numpy("cell", owned=True)[:, 0]
        dp = self.dependency_derivative(state, self.pressure_key, wrt_key)
        return [
            self.eos.d_mass_density_dp(p) * dp,
            self.eos.d_molar_density_dp(p) * dp,
            np.zeros_like(p),
        ]


class VaporEvaluator(SecondaryVariablesEvaluator):
    """[mass_density_gas, molar_density_gas, mol_frac_gas] at a fixed temperature.

    The gas sits at atmospheric pressure with vapor at its saturated
    pressure: ω_g = p_sat(T) / p_atm. Nothing upstream changes these, so
    they are computed once and have zero derivatives.
    """

    def __init__(self, eos: EOSIdealGas, temperature: float, domain: str = "domain"):
        super().__init__(
            [
                get_key(domain, "mass_density_gas"),
                get_key(domain, "molar_density_gas"),
                get_key(domain, "mol_frac_gas"),
            ]
        )
        self.eos = eos
        self.temperature = temperature

    def evaluate_field_(self, state: Any, results: list[FieldData]) -> None:
        rho, n_gas, mol_frac = results
        p_atm = state.get_scalar(ATMOSPHERIC_PRESSURE)
        x = self.eos.saturated_vapor_pressure(self.temperature) / p_atm
        n = self.eos.molar_density(self.temperature, p_atm)
        mol_frac.put_scalar(float(x))
        n_gas.put_scalar(float(n))
        rho.put_scalar(float(self.eos.molar_mass(x) * n))
