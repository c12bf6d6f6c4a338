"""
Explicit first-order upwind solute transport.

Primary variable: total component concentration C [mol solute / mol water],
one dof per aqueous component. With water in a cell W = n_l·V [mol] and the
water flux q [mol/s] on each face (from the face field, frozen during the
step):

    W·C_new = W·C_old + dt·(Σ upwind inflow - Σ upwind outflow + S)

Exterior faces carry no solute unless an exchange with another domain is
enabled. The exchange source S is read from a cell field on the surface
manifold: the volumetric side loses it from the cell below each surface
cell, the manifold side gains it.

A step producing a concentration below -negative_tolerance fails and
leaves the state untouched.
"""

from enum import Enum
from typing import Any

import numpy as np
import taichi as ti

from hydrocore.core.dtypes import ITYPE
from hydrocore.core.mesh import UnstructuredMesh
from hydrocore.errors import ConfigurationError, ConsistencyError
from hydrocore.evaluators.cell_volume import CellVolumeEvaluator
from hydrocore.evaluators.primary import PrimaryVariableEvaluator
from hydrocore.fields.base import FieldTemplate, get_key
from hydrocore.fields.state import State
from hydrocore.kernels.transport import upwind_divergence
from hydrocore.kernels.utils import weighted_total
from hydrocore.params.schema import TransportParams
from hydrocore.pks.base import PhysicalPK
from hydrocore.pks.protocol import StepResult


class ExchangeSide(Enum):
    """Role of a transport PK in a surface/subsurface exchange."""

    VOLUMETRIC = "volumetric"
    MANIFOLD = "manifold"


class SoluteTransport(PhysicalPK):
    """Advection of aqueous components on one domain."""

    variable_name = "total_component_concentration"

    def __init__(self, params: TransportParams, logger=None):
        super().__init__(params, logger)
        d = params.domain
        self.flux_key = params.flux_key or get_key(d, "mass_flux")
        self.water_density_key = params.water_density_key or get_key(d, "molar_density_liquid")
        self.cv_key = get_key(d, "cell_volume")
        self.exchange_key: str | None = None
        self.exchange_side: ExchangeSide | None = None
        self._exchange_cells: np.ndarray | None = None
        self._partner_mesh: UnstructuredMesh | None = None
        self._face_cells: Any = None

    @property
    def component_names(self) -> tuple[str, ...]:
        return self.params.component_names

    @property
    def num_aqueous_components(self) -> int:
        return len(self.params.component_names)

    def primary_template(self, mesh) -> FieldTemplate:
        return FieldTemplate.cells(mesh, self.num_aqueous_components, self.component_names)

    def setup(self, state: State) -> None:
        super().setup(state)
        self.ensure_evaluator(state, CellVolumeEvaluator(self.domain))
        state.require_field(self.flux_key, template=FieldTemplate.faces(self.mesh))
        state.require_field(self.water_density_key)

    def enable_exchange(
        self,
        state: State,
        key: str,
        side: ExchangeSide,
        partner_mesh: UnstructuredMesh | None = None,
    ) -> None:
        """Couple to another domain through an exchange field on the surface.

        The volumetric side owns the exchange field (on partner_mesh, the
        surface manifold); the manifold side only reads it.
        """
        self.exchange_key = key
        self.exchange_side = side
        if side == ExchangeSide.VOLUMETRIC:
            if partner_mesh is None or partner_mesh.parent_faces is None:
                raise ConfigurationError(f"PK '{self.name}': exchange needs a surface mesh with parent faces")
            self._partner_mesh = partner_mesh
            state.require_field(
                key, owner=self.name, template=FieldTemplate.cells(partner_mesh, self.num_aqueous_components)
            )
            if not state.has_evaluator(key):
                state.set_evaluator(PrimaryVariableEvaluator(key))
        else:
            state.require_field(key, template=FieldTemplate.cells(self.mesh, self.num_aqueous_components))

    def initialize(self, state: State) -> None:
        super().initialize(state)
        n_faces = self.mesh.n_faces
        face_cells = np.full((max(n_faces, 1), 2), -1, dtype=np.int32)
        for f, cells in enumerate(self.mesh.face_cells):
            face_cells[f, : len(cells)] = cells
        self._face_cells = ti.field(ITYPE, shape=face_cells.shape)
        self._face_cells.from_numpy(face_cells)

        if self.exchange_side == ExchangeSide.VOLUMETRIC:
            cells = []
            for sc in range(self._partner_mesh.n_cells):
                f = self._partner_mesh.entity_get_parent(sc)
                adjacent = self.mesh.face_get_cells(f)
                if len(adjacent) != 1:
                    raise ConsistencyError(
                        f"Surface cell {sc} sits on face {f}, which is not an exterior face"
                    )
                cells.append(adjacent[0])
            self._exchange_cells = np.array(cells, dtype=np.int64)
            state.get_field_data(self.exchange_key, self.name).put_scalar(0.0)
            state.get_field(self.exchange_key).set_initialized(self.name)

    # Exchange

    def update_exchange_flux(self, partner_key: str) -> None:
        """Compute the solute exchange on every surface cell from current values.

        E = q·C_sub if water leaves the subsurface (q > 0), else q·C_surf,
        with q the outward water flux on the parent face.
        """
        if self.exchange_side != ExchangeSide.VOLUMETRIC:
            raise ConfigurationError(f"PK '{self.name}' does not own an exchange flux")
        state = self.S_next
        flux = state.get_field_data(self.flux_key).to_numpy("face")[:, 0]
        tcc_sub = self.primary_values()
        tcc_surf = state.get_field_data(partner_key).to_numpy("cell")

        parent_faces = self._partner_mesh.parent_faces
        q = flux[parent_faces][:, None]
        exchange = np.where(q > 0, q * tcc_sub[self._exchange_cells], q * tcc_surf)

        state.get_field_data(self.exchange_key, self.name).from_numpy("cell", exchange)
        state.get_evaluator(self.exchange_key).set_field_as_changed()

    def exchange_source_(self) -> np.ndarray:
        """Exchange contribution to the cell source [mol/s]."""
        source = np.zeros((self.mesh.n_cells, self.num_aqueous_components))
        if self.exchange_side is None:
            return source
        exchange = self.S_next.get_field_data(self.exchange_key).to_numpy("cell")
        if self.exchange_side == ExchangeSide.VOLUMETRIC:
            np.add.at(source, self._exchange_cells, -exchange)
        else:
            source[: exchange.shape[0]] += exchange
        return source

    # Stepping

    def _water(self) -> np.ndarray:
        wd = self.S_next.get_field_data(self.water_density_key).to_numpy("cell")[:, 0]
        vol = self.S_next.get_field_data(self.cv_key).to_numpy("cell")[:, 0]
        return wd * vol

    def get_dt(self) -> float:
        """CFL-limited step: cfl · min(W / outflow)."""
        flux = self.S_next.get_field_data(self.flux_key).to_numpy("face")[:, 0]
        outflow = np.zeros(self.mesh.n_cells)
        for f, cells in enumerate(self.mesh.face_cells):
            q = flux[f]
            if len(cells) == 2:
                outflow[cells[0] if q > 0 else cells[1]] += abs(q)
            elif q > 0:
                outflow[cells[0]] += q
        active = outflow > 0
        if not np.any(active):
            return self.params.max_dt
        dt = self.params.cfl * float(np.min(self._water()[active] / outflow[active]))
        return min(dt, self.params.max_dt)

    def advance_(self, t_old: float, t_new: float) -> StepResult:
        dt = t_new - t_old
        state = self.S_next
        tcc_data = state.get_field_data(self.key)
        tcc = tcc_data.to_numpy("cell")
        flux = state.get_field_data(self.flux_key)

        div = np.zeros((self.mesh.n_cells, self.num_aqueous_components))
        upwind_divergence(
            flux.kernel_input("face"), self._face_cells, tcc_data.kernel_input("cell"), div, self.mesh.n_faces
        )
        div += self.exchange_source_()

        water = self._water()[:, None]
        tcc_new = (water * tcc + dt * div) / water
        owned = tcc_new[: self.n_owned]

        min_value = float(np.min(owned)) if owned.size else 0.0
        if min_value < -self.params.negative_tolerance:
            return StepResult.fail(self.name, f"negative concentration {min_value:.3e}")

        state.get_field_data(self.key, self.name).from_numpy("cell", owned)
        self.changed_solution()
        return StepResult.ok()

    # Diagnostics

    def compute_solute(self, component: int) -> float:
        """Σ C·n_l·V over owned cells [mol] for one component."""
        if not 0 <= component < self.num_aqueous_components:
            raise IndexError(f"Component {component} out of range for '{self.name}'")
        state = self.S_next
        return float(
            weighted_total(
                state.get_field_data(self.key).kernel_input("cell"),
                state.get_field_data(self.water_density_key).kernel_input("cell"),
                state.get_field_data(self.cv_key).kernel_input("cell"),
                component,
                self.n_owned,
            )
        )

    def solute_masses(self) -> list[float]:
        """compute_solute for every component."""
        return [self.compute_solute(i) for i in range(self.num_aqueous_components)]
