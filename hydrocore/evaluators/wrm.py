"""Saturation and relative permeability from pressure via water retention models."""

from typing import Any

import numpy as np

from hydrocore.evaluators.secondary import SecondaryVariablesEvaluator
from hydrocore.fields.base import FieldData, get_key, key_domain
from hydrocore.relations.wrm import WRMPartition

ATMOSPHERIC_PRESSURE = "atmospheric_pressure"


def _capillary_pressure(state: Any, pressure_key: str) -> np.ndarray:
    p = state.get_field_data(pressure_key).to_numpy("cell")[:, 0]
    return state.get_scalar(ATMOSPHERIC_PRESSURE) - p


class WRMEvaluator(SecondaryVariablesEvaluator):
    """[saturation_liquid, saturation_gas] from pressure; s_g = 1 - s_l."""

    def __init__(self, partition: WRMPartition, domain: str = "domain"):
        self.pressure_key = get_key(domain, "pressure")
        super().__init__(
            [get_key(domain, "saturation_liquid"), get_key(domain, "saturation_gas")],
            [self.pressure_key],
        )
        self.partition = partition

    def evaluate_field_(self, state: Any, results: list[FieldData]) -> None:
        sat_liq, sat_gas = results
        pc = _capillary_pressure(state, self.pressure_key)
        s = self.partition.apply(sat_liq.mesh, "saturation", pc)
        sat_liq.from_numpy("cell", s)
        sat_gas.from_numpy("cell", 1.0 - s)

    def evaluate_field_partial_derivative_(self, state: Any, wrt_key: str) -> list[np.ndarray]:
        # dpc/dp = -1
        mesh = state.get_mesh(key_domain(self.pressure_key))
        pc = _capillary_pressure(state, self.pressure_key)
        ds_dpc = self.partition.apply(mesh, "d_saturation", pc)[: mesh.n_owned_cells]
        dp = self.dependency_derivative(state, self.pressure_key, wrt_key)
        return [-ds_dpc * dp, ds_dpc * dp]


class RelPermEvaluator(SecondaryVariablesEvaluator):
    """Relative permeability from pressure.

    If a consumer requested a boundary-face component, each boundary face
    takes the value of its interior cell.
    """

    def __init__(self, partition: WRMPartition, domain: str = "domain"):
        self.pressure_key = get_key(domain, "pressure")
        super().__init__([get_key(domain, "relative_permeability")], [self.pressure_key])
        self.partition = partition

    def evaluate_field_(self, state: Any, results: list[FieldData]) -> None:
        krel = results[0]
        pc = _capillary_pressure(state, self.pressure_key)
        krel.from_numpy("cell", self.partition.apply(krel.mesh, "k_relative", pc))
        self.mirror_boundary_faces(krel)

    def evaluate_field_partial_derivative_(self, state: Any, wrt_key: str) -> list[np.ndarray]:
        mesh = state.get_mesh(key_domain(self.pressure_key))
        pc = _capillary_pressure(state, self.pressure_key)
        dkr_dpc = self.partition.apply(mesh, "d_k_relative", pc)[: mesh.n_owned_cells]
        return [-dkr_dpc * self.dependency_derivative(state, self.pressure_key, wrt_key)]
