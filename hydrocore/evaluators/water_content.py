"""
Water content [mol] of each cell.

    wc = (n_l·s_l + n_g·s_g·ω_g) · φ · V

The gas term is included only when vapor is enabled.
"""

from typing import Any

import numpy as np

from hydrocore.evaluators.secondary import SecondaryVariablesEvaluator
from hydrocore.fields.base import FieldData, get_key
from hydrocore.kernels.accumulation import water_content_liquid, water_content_two_phase


class WaterContentEvaluator(SecondaryVariablesEvaluator):
    """Total water content from porosity, cell volume, densities and saturations."""

    def __init__(self, domain: str = "domain", include_vapor: bool = False):
        self.porosity_key = get_key(domain, "porosity")
        self.cell_volume_key = get_key(domain, "cell_volume")
        self.n_liq_key = get_key(domain, "molar_density_liquid")
        self.sat_liq_key = get_key(domain, "saturation_liquid")
        self.n_gas_key = get_key(domain, "molar_density_gas")
        self.sat_gas_key = get_key(domain, "saturation_gas")
        self.mol_frac_key = get_key(domain, "mol_frac_gas")
        self.include_vapor = include_vapor

        deps = [self.porosity_key, self.cell_volume_key, self.n_liq_key, self.sat_liq_key]
        if include_vapor:
            deps += [self.n_gas_key, self.sat_gas_key, self.mol_frac_key]
        super().__init__([get_key(domain, "water_content")], deps)

    def evaluate_field_(self, state: Any, results: list[FieldData]) -> None:
        wc = results[0]

        def read(key):
            return state.get_field_data(key).kernel_input("cell")

        if self.include_vapor:
            water_content_two_phase(
                read(self.porosity_key), read(self.cell_volume_key),
                read(self.n_liq_key), read(self.sat_liq_key),
                read(self.n_gas_key), read(self.sat_gas_key), read(self.mol_frac_key),
                wc.component("cell"), wc.size("cell"),
            )
        else:
            water_content_liquid(
                read(self.porosity_key), read(self.cell_volume_key),
                read(self.n_liq_key), read(self.sat_liq_key),
                wc.component("cell"), wc.size("cell"),
            )

    def evaluate_field_partial_derivative_(self, state: Any, wrt_key: str) -> list[np.ndarray]:
        def value(key):
            return state.get_field_data(key).to_numpy("cell", owned=True)[:, 0]

        def deriv(key):
            return self.dependency_derivative(state, key, wrt_key)

        phi, vol = value(self.porosity_key), value(self.cell_volume_key)
        n_l, s_l = value(self.n_liq_key), value(self.sat_liq_key)
        mobile = n_l * s_l
        d_mobile = deriv(self.n_liq_key) * s_l + n_l * deriv(self.sat_liq_key)
        if self.include_vapor:
            n_g, s_g, x_g = value(self.n_gas_key), value(self.sat_gas_key), value(self.mol_frac_key)
            mobile = mobile + n_g * s_g * x_g
            d_mobile = d_mobile + (
                deriv(self.n_gas_key) * s_g * x_g
                + n_g * deriv(self.sat_gas_key) * x_g
                + n_g * s_g * deriv(self.mol_frac_key)
            )
        d_wc = (d_mobile * phi + mobile * deriv(self.porosity_key)) * vol + mobile * phi * deriv(self.cell_volume_key)
        return [d_wc]
