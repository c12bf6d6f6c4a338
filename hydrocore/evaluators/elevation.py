"""
Elevation and slope of a surface manifold.

Both fields are geometric: they are computed on the first evaluation no
matter what the dependencies report, and afterwards only when the mesh
deformation field changes (dynamic meshes only). Neither is differentiable.
"""

from abc import abstractmethod
from typing import Any

import numpy as np

from hydrocore.errors import ConfigurationError, ConsistencyError
from hydrocore.evaluators.secondary import SecondaryVariablesEvaluator
from hydrocore.fields.base import FieldData, get_key
from hydrocore.params.schema import ElevationParams


class ElevationEvaluator(SecondaryVariablesEvaluator):
    """Computes [elevation, slope_magnitude] on a surface domain."""

    def __init__(self, params: ElevationParams):
        keys = [get_key(params.domain, "elevation"), get_key(params.domain, "slope_magnitude")]
        deps = [params.deformation_key] if params.dynamic_mesh else []
        io = {key: params.io for key in keys}
        super().__init__(keys, deps, io)
        self.params = params
        self._updated_once = False

    def has_field_changed(self, state: Any, request: str) -> bool:
        changed = super().has_field_changed(state, request)
        if not self._updated_once:
            self._updated_once = True
            return True
        return changed

    def evaluate_field_(self, state: Any, results: list[FieldData]) -> None:
        elevation, slope = results
        self.evaluate_elevation_and_slope_(state, elevation, slope)
        self.mirror_boundary_faces(elevation)
        self.mirror_boundary_faces(slope)

    @abstractmethod
    def evaluate_elevation_and_slope_(self, state: Any, elevation: FieldData, slope: FieldData) -> None:
        """Write the cell components of elevation and slope."""
        ...


class MeshElevationEvaluator(ElevationEvaluator):
    """Elevation from surface cell centroids, slope from surface cell normals.

    slope = |n_horizontal| / |n_vertical|
    """

    def evaluate_elevation_and_slope_(self, state: Any, elevation: FieldData, slope: FieldData) -> None:
        mesh = elevation.mesh
        if mesh.cell_normals is None:
            raise ConfigurationError(f"Mesh '{mesh.domain}' has no cell normals; is it a surface mesh?")
        normals = mesh.cell_normals
        vertical = np.abs(normals[:, -1])
        if np.any(vertical == 0):
            raise ConsistencyError(f"Mesh '{mesh.domain}' has vertical surface cells")
        horizontal = np.linalg.norm(normals[:, :-1], axis=1)

        elevation.from_numpy("cell", mesh.cell_centroids[:, -1])
        slope.from_numpy("cell", horizontal / vertical)
