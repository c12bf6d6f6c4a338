"""
Water retention models.

van Genuchten with Mualem or Burdine relative permeability, in terms of
capillary pressure pc = p_atm - p [Pa]:

    se(pc) = (1 + (α·pc)^n)^(-m)         for pc > 0, else 1
    s(pc)  = sr + (1 - sr)·se

    Mualem:  kr = se^ℓ · (1 - (1 - se^(1/m))^m)²
    Burdine: kr = se² · (1 - (1 - se^(1/m))^m)

All functions are vectorized over numpy arrays.
"""

from typing import Protocol, Sequence, runtime_checkable

import numpy as np

from hydrocore.core.mesh import UnstructuredMesh
from hydrocore.errors import ConfigurationError
from hydrocore.params.schema import WRMParams


@runtime_checkable
class WRM(Protocol):
    """Saturation and relative permeability as functions of capillary pressure."""

    def saturation(self, pc: np.ndarray) -> np.ndarray:
        ...

    def d_saturation(self, pc: np.ndarray) -> np.ndarray:
        ...

    def k_relative(self, pc: np.ndarray) -> np.ndarray:
        ...

    def d_k_relative(self, pc: np.ndarray) -> np.ndarray:
        ...

    def capillary_pressure(self, s: np.ndarray) -> np.ndarray:
        ...


class WRMVanGenuchten:
    """van Genuchten retention curve."""

    def __init__(self, params: WRMParams):
        self.params = params
        self.alpha = params.alpha
        self.n = params.n
        self.m = params.m
        self.sr = params.residual_saturation
        self.ell = params.ell
        self.mualem = params.krel_function == "Mualem"

    def residual_saturation(self) -> float:
        return self.sr

    def effective_saturation(self, pc: np.ndarray) -> np.ndarray:
        pc = np.asarray(pc, dtype=np.float64)
        pos = np.maximum(pc, 0.0)
        se = (1.0 + (self.alpha * pos) ** self.n) ** (-self.m)
        return np.where(pc > 0, se, 1.0)

    def d_effective_saturation(self, pc: np.ndarray) -> np.ndarray:
        """d(se)/d(pc)."""
        pc = np.asarray(pc, dtype=np.float64)
        pos = np.maximum(pc, 0.0)
        apn = (self.alpha * pos) ** self.n
        dse = -self.m * self.n * (1.0 + apn) ** (-self.m - 1.0) * self.alpha ** self.n * pos ** (self.n - 1.0)
        return np.where(pc > 0, dse, 0.0)

    def saturation(self, pc: np.ndarray) -> np.ndarray:
        return self.sr + (1.0 - self.sr) * self.effective_saturation(pc)

    def d_saturation(self, pc: np.ndarray) -> np.ndarray:
        """d(s)/d(pc)."""
        return (1.0 - self.sr) * self.d_effective_saturation(pc)

    def k_relative(self, pc: np.ndarray) -> np.ndarray:
        se = self.effective_saturation(pc)
        z = 1.0 - (1.0 - se ** (1.0 / self.m)) ** self.m
        if self.mualem:
            return se ** self.ell * z * z
        return se * se * z

    def d_k_relative(self, pc: np.ndarray) -> np.ndarray:
        """d(kr)/d(pc)."""
        se = self.effective_saturation(pc)
        dse = self.d_effective_saturation(pc)
        unsat = se < 1.0
        # Keep (1 - x) away from 0 where the derivative is masked anyway
        se_u = np.where(unsat, se, 0.5)
        y = 1.0 - se_u ** (1.0 / self.m)
        z = 1.0 - y ** self.m
        dz = y ** (self.m - 1.0) * se_u ** (1.0 / self.m - 1.0)
        if self.mualem:
            dkr = self.ell * se_u ** (self.ell - 1.0) * z * z + se_u ** self.ell * 2.0 * z * dz
        else:
            dkr = 2.0 * se_u * z + se_u * se_u * dz
        return np.where(unsat, dkr * dse, 0.0)

    def capillary_pressure(self, s: np.ndarray) -> np.ndarray:
        """Inverse of saturation(pc); zero at or above full saturation."""
        s = np.asarray(s, dtype=np.float64)
        se = np.clip((s - self.sr) / (1.0 - self.sr), 1e-300, 1.0)
        pc = (se ** (-1.0 / self.m) - 1.0) ** (1.0 / self.n) / self.alpha
        return np.where(se < 1.0, pc, 0.0)

    def d_capillary_pressure(self, s: np.ndarray) -> np.ndarray:
        """d(pc)/d(s)."""
        pc = self.capillary_pressure(s)
        ds = self.d_saturation(pc)
        return np.where(ds != 0.0, 1.0 / np.where(ds != 0.0, ds, 1.0), 0.0)


def create_wrm(params: WRMParams) -> WRM:
    """Factory keyed on params.model."""
    if params.model == "van Genuchten":
        return WRMVanGenuchten(params)
    raise ConfigurationError(f"Unknown WRM model '{params.model}'")


class WRMPartition:
    """Assignment of retention models to mesh regions.

    Every cell must be covered by exactly one region.
    """

    def __init__(self, params: Sequence[WRMParams]):
        self.entries = [(p.region, create_wrm(p)) for p in params]
        self._cache: dict[int, list[tuple[np.ndarray, WRM]]] = {}

    def assign(self, mesh: UnstructuredMesh) -> list[tuple[np.ndarray, WRM]]:
        """Cells (owned + ghost) of each model.

        Raises:
            ConfigurationError: If regions overlap or leave cells uncovered
        """
        key = id(mesh)
        if key not in self._cache:
            count = np.zeros(mesh.n_cells, dtype=np.int32)
            parts = []
            for region, wrm in self.entries:
                cells = mesh.region_cells(region, owned=False)
                count[cells] += 1
                parts.append((cells, wrm))
            if np.any(count == 0):
                raise ConfigurationError(
                    f"Mesh '{mesh.domain}': cells {np.flatnonzero(count == 0).tolist()} have no WRM"
                )
            if np.any(count > 1):
                raise ConfigurationError(
                    f"Mesh '{mesh.domain}': cells {np.flatnonzero(count > 1).tolist()} have several WRMs"
                )
            self._cache[key] = parts
        return self._cache[key]

    def apply(self, mesh: UnstructuredMesh, method: str, values: np.ndarray) -> np.ndarray:
        """Evaluate one WRM method cell-wise, e.g. apply(mesh, "saturation", pc)."""
        result = np.empty_like(np.asarray(values, dtype=np.float64))
        for cells, wrm in self.assign(mesh):
            result[cells] = getattr(wrm, method)(values[cells])
        return result
