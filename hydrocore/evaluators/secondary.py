"""
Secondary variables evaluator: fields computed from other fields.

The update rule, shared by every subclass:

    1. Ask each dependency whether it changed since *this* evaluator last
       asked (request = my first key). Every dependency is asked, so each
       one records the visit.
    2. Recompute if any dependency changed or if never computed.
    3. Report whether my output changed since the caller last asked.

Repeated reads with no upstream change therefore return False and do not
recompute.
"""

from abc import abstractmethod
from typing import Any, Iterable, Mapping, Sequence

import numpy as np
import taichi as ti

from hydrocore.core.dtypes import ITYPE
from hydrocore.core.mesh import UnstructuredMesh
from hydrocore.evaluators.base import Evaluator
from hydrocore.fields.base import FieldData, FieldTemplate, key_domain
from hydrocore.kernels.boundary import copy_cells_to_boundary_faces
from hydrocore.params.schema import IOParams

BOUNDARY_FACE = "boundary_face"


class SecondaryVariablesEvaluator(Evaluator):
    """Evaluator with dependencies; subclasses implement evaluate_field_."""

    def __init__(
        self,
        my_keys: Sequence[str],
        dependencies: Iterable[str] = (),
        io: Mapping[str, IOParams] | None = None,
    ):
        super().__init__(my_keys, dependencies, io)
        self._bface_maps: dict[int, Any] = {}

    def has_field_changed(self, state: Any, request: str) -> bool:
        state.require_setup()
        update = False
        for dep in sorted(self.dependencies):
            update |= state.get_evaluator(dep).has_field_changed(state, self.my_keys[0])
        if update or self._generation == 0:
            self.update_field_(state)
        return self._report(request)

    def update_field_(self, state: Any) -> None:
        """Recompute every key and bump the generation."""
        results = [state.get_field_data(key, key) for key in self.my_keys]
        self.evaluate_field_(state, results)
        for key in self.my_keys:
            state.get_field(key).set_initialized(key)
        self._generation += 1

    @abstractmethod
    def evaluate_field_(self, state: Any, results: list[FieldData]) -> None:
        """Write my keys, in order, into results."""
        ...

    def evaluate_field_partial_derivative_(self, state: Any, wrt_key: str) -> list[np.ndarray]:
        """Derivatives of my keys (owned cells) with respect to wrt_key."""
        raise NotImplementedError(
            f"{type(self).__name__} does not provide derivatives (requested d/d{wrt_key})"
        )

    def evaluate_partial_derivative(self, state: Any, wrt_key: str) -> list[np.ndarray]:
        """Cell-wise derivatives of each of my keys with respect to wrt_key.

        Returns one array per key over owned cells; zeros if wrt_key is not
        upstream of this evaluator.
        """
        self.has_field_changed(state, f"d/d{wrt_key}")
        if not self.is_dependency(state, wrt_key):
            return [
                np.zeros(state.get_mesh(key_domain(key)).n_owned_cells) for key in self.my_keys
            ]
        return self.evaluate_field_partial_derivative_(state, wrt_key)

    def dependency_derivative(self, state: Any, dep: str, wrt_key: str) -> np.ndarray:
        """d(dep)/d(wrt_key) over owned cells, by the chain rule through dep's evaluator."""
        n = state.get_mesh(key_domain(dep)).n_owned_cells
        if dep == wrt_key:
            return np.ones(n)
        ev = state.get_evaluator(dep)
        if not ev.is_dependency(state, wrt_key):
            return np.zeros(n)
        return ev.evaluate_partial_derivative(state, wrt_key)[ev.my_keys.index(dep)]

    def cell_template(self, state: Any, key: str, num_dofs: int = 1) -> FieldTemplate:
        """Cell template on the key's domain."""
        return FieldTemplate.cells(state.get_mesh(key_domain(key)), num_dofs)

    def ensure_compatibility(self, state: Any) -> None:
        for key in self.my_keys:
            state.require_field(key, owner=key, template=self.cell_template(state, key))
        for dep in self.dependencies:
            state.require_field(dep)
        self._apply_io(state)

    def mirror_boundary_faces(self, data: FieldData) -> None:
        """Copy the adjacent cell value into each boundary face, if present.

        Raises:
            ConsistencyError: If a boundary face does not border exactly one cell
        """
        if not data.has_component(BOUNDARY_FACE):
            return
        mesh = data.mesh
        n_bfaces = data.size(BOUNDARY_FACE)
        copy_cells_to_boundary_faces(
            data.component("cell"),
            data.component(BOUNDARY_FACE),
            self._bface_map(mesh),
            n_bfaces,
        )

    def _bface_map(self, mesh: UnstructuredMesh) -> Any:
        key = id(mesh)
        if key not in self._bface_maps:
            cells = mesh.boundary_face_cells()
            index = ti.field(ITYPE, shape=max(cells.shape[0], 1))
            padded = np.zeros(max(cells.shape[0], 1), dtype=np.int32)
            padded[: cells.shape[0]] = cells
            index.from_numpy(padded)
            self._bface_maps[key] = index
        return self._bface_maps[key]
