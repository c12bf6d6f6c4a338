"""Core infrastructure: types and the mesh service."""

from hydrocore.core.dtypes import DTYPE, ITYPE
from hydrocore.core.mesh import (
    EntityKind,
    Mesh,
    UnstructuredMesh,
    column_mesh,
    surface_mesh,
)

__all__ = [
    "DTYPE",
    "ITYPE",
    "EntityKind",
    "Mesh",
    "UnstructuredMesh",
    "column_mesh",
    "surface_mesh",
]
