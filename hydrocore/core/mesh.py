"""Mesh service: topology, geometry and named regions.

The engine treats the mesh as an opaque collaborator described by the
``Mesh`` protocol. ``UnstructuredMesh`` is a small host-side implementation
used by the reference PKs and the test-suite:

- Cells carry centroids and volumes; faces carry centroids, area-weighted
  normals and the 1 or 2 cells they separate.
- A face normal points out of the first cell listed in ``face_cells``.
- Exterior ("boundary") faces are indexed 0..nbf-1 in their own numbering;
  ``exterior_faces[bf]`` is the face id.
- Cells ``[0, n_owned_cells)`` are owned; the rest are ghosts.
- A 2-D surface manifold extracted from a volume mesh records, per cell,
  the parent face it came from (``parent_faces``).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence, runtime_checkable

import numpy as np

from hydrocore.errors import ConfigurationError, ConsistencyError

# Region name matching every cell of a mesh
ALL_REGION = "All"


class EntityKind(Enum):
    """Kinds of mesh entities a field component can be indexed by."""

    CELL = "cell"
    FACE = "face"
    BOUNDARY_FACE = "boundary_face"


@runtime_checkable
class Mesh(Protocol):
    """Mesh queries consumed by fields, evaluators and PKs."""

    domain: str

    @property
    def space_dimension(self) -> int:
        ...

    def num_entities(self, kind: EntityKind, owned: bool = True) -> int:
        ...

    def face_get_cells(self, f: int) -> tuple[int, ...]:
        ...

    def cell_get_faces_and_dirs(self, c: int) -> tuple[list[int], list[int]]:
        ...

    def boundary_face_cells(self) -> np.ndarray:
        ...

    def region_cells(self, region: str, owned: bool = True) -> np.ndarray:
        ...


@dataclass(eq=False)
class UnstructuredMesh:
    """Host-side unstructured mesh.

    Attributes:
        domain: Domain name ("domain" for the volume, e.g. "surface")
        cell_centroids: (n_cells, dim) cell centers [m]
        cell_volumes: (n_cells,) cell volumes [m³] (areas on a manifold)
        face_cells: Cells adjacent to each face (1 or 2 entries)
        face_centroids: (n_faces, dim) face centers [m]
        face_normals: (n_faces, dim) area-weighted normals [m²]
        exterior_faces: Face ids of boundary faces (default: faces with one cell)
        regions: Named cell sets
        cell_normals: (n_cells, dim) orientation of manifold cells
        parent_faces: Parent-mesh face of each cell (manifold meshes only)
        n_owned_cells: Number of owned cells (default: all)
        n_owned_faces: Number of owned faces (default: all)
    """

    domain: str
    cell_centroids: np.ndarray
    cell_volumes: np.ndarray
    face_cells: Sequence[Sequence[int]]
    face_centroids: np.ndarray
    face_normals: np.ndarray
    exterior_faces: np.ndarray | None = None
    regions: dict[str, np.ndarray] = field(default_factory=dict)
    cell_normals: np.ndarray | None = None
    parent_faces: np.ndarray | None = None
    n_owned_cells: int | None = None
    n_owned_faces: int | None = None

    def __post_init__(self):
        """Normalize arrays and build cell -> face adjacency."""
        self.cell_centroids = np.atleast_2d(np.asarray(self.cell_centroids, dtype=np.float64))
        self.cell_volumes = np.asarray(self.cell_volumes, dtype=np.float64).reshape(-1)
        self.face_cells = [tuple(int(c) for c in cells) for cells in self.face_cells]
        n_cells = self.cell_centroids.shape[0]
        n_faces = len(self.face_cells)
        dim = self.cell_centroids.shape[1]

        self.face_centroids = np.asarray(self.face_centroids, dtype=np.float64).reshape(n_faces, dim)
        self.face_normals = np.asarray(self.face_normals, dtype=np.float64).reshape(n_faces, dim)

        if self.cell_volumes.shape[0] != n_cells:
            raise ConfigurationError(
                f"Mesh '{self.domain}': {self.cell_volumes.shape[0]} volumes for {n_cells} cells"
            )
        if np.any(self.cell_volumes <= 0):
            raise ConfigurationError(f"Mesh '{self.domain}': cell volumes must be positive")
        for f, cells in enumerate(self.face_cells):
            if any(c < 0 or c >= n_cells for c in cells):
                raise ConfigurationError(
                    f"Mesh '{self.domain}': face {f} references unknown cells {cells}"
                )

        if self.exterior_faces is None:
            self.exterior_faces = np.array(
                [f for f, cells in enumerate(self.face_cells) if len(cells) == 1],
                dtype=np.int32,
            )
        else:
            self.exterior_faces = np.asarray(self.exterior_faces, dtype=np.int32).reshape(-1)

        self.regions = {
            name: np.asarray(cells, dtype=np.int32) for name, cells in self.regions.items()
        }
        if self.cell_normals is not None:
            self.cell_normals = np.asarray(self.cell_normals, dtype=np.float64).reshape(n_cells, dim)
        if self.parent_faces is not None:
            self.parent_faces = np.asarray(self.parent_faces, dtype=np.int32).reshape(n_cells)

        if self.n_owned_cells is None:
            self.n_owned_cells = n_cells
        if self.n_owned_faces is None:
            self.n_owned_faces = n_faces

        self._cell_faces: list[list[int]] = [[] for _ in range(n_cells)]
        self._cell_dirs: list[list[int]] = [[] for _ in range(n_cells)]
        for f, cells in enumerate(self.face_cells):
            for k, c in enumerate(cells):
                self._cell_faces[c].append(f)
                self._cell_dirs[c].append(1 if k == 0 else -1)

        # Bumped by deform(). Evaluators do not read it: a moved mesh is
        # announced through its deformation field.
        self.generation = 0

    @property
    def space_dimension(self) -> int:
        """Spatial dimension of coordinates."""
        return int(self.cell_centroids.shape[1])

    @property
    def n_cells(self) -> int:
        """Number of owned + ghost cells."""
        return int(self.cell_centroids.shape[0])

    @property
    def n_faces(self) -> int:
        """Number of owned + ghost faces."""
        return len(self.face_cells)

    def num_entities(self, kind: EntityKind, owned: bool = True) -> int:
        """Count entities of a kind, owned only or owned + ghost."""
        if kind == EntityKind.CELL:
            return self.n_owned_cells if owned else self.n_cells
        if kind == EntityKind.FACE:
            return self.n_owned_faces if owned else self.n_faces
        if kind == EntityKind.BOUNDARY_FACE:
            return int(self.exterior_faces.shape[0])
        raise ValueError(f"Unknown entity kind: {kind}")

    def face_get_cells(self, f: int) -> tuple[int, ...]:
        """Cells adjacent to face f."""
        return self.face_cells[f]

    def cell_get_faces_and_dirs(self, c: int) -> tuple[list[int], list[int]]:
        """Faces of cell c and orientation (+1 if the normal points outward)."""
        return list(self._cell_faces[c]), list(self._cell_dirs[c])

    def face_normal(self, f: int) -> np.ndarray:
        """Area-weighted normal of face f."""
        return self.face_normals[f]

    def face_area(self, f: int) -> float:
        """Area of face f."""
        return float(np.linalg.norm(self.face_normals[f]))

    def boundary_face_cells(self) -> np.ndarray:
        """Interior cell adjacent to each boundary face.

        Raises:
            ConsistencyError: If a boundary face does not border exactly
                one cell
        """
        cells = np.empty(self.exterior_faces.shape[0], dtype=np.int32)
        for bf, f in enumerate(self.exterior_faces):
            adjacent = self.face_cells[f]
            if len(adjacent) != 1:
                raise ConsistencyError(
                    f"Mesh '{self.domain}': boundary face {bf} (face {f}) has "
                    f"{len(adjacent)} interior neighbors, expected exactly 1"
                )
            cells[bf] = adjacent[0]
        return cells

    def region_cells(self, region: str, owned: bool = True) -> np.ndarray:
        """Cell ids of a named region.

        Raises:
            ConfigurationError: If the region is unknown
        """
        if region == ALL_REGION:
            cells = np.arange(self.n_cells, dtype=np.int32)
        elif region in self.regions:
            cells = self.regions[region]
        else:
            raise ConfigurationError(
                f"Mesh '{self.domain}' has no region '{region}'. "
                f"Available: {[ALL_REGION] + list(self.regions)}"
            )
        if owned:
            cells = cells[cells < self.n_owned_cells]
        return cells

    def entity_get_parent(self, c: int) -> int:
        """Parent-mesh face of manifold cell c."""
        if self.parent_faces is None:
            raise ConfigurationError(f"Mesh '{self.domain}' has no parent mesh")
        return int(self.parent_faces[c])

    def deform(
        self,
        cell_centroids: np.ndarray | None = None,
        face_centroids: np.ndarray | None = None,
        cell_volumes: np.ndarray | None = None,
        cell_normals: np.ndarray | None = None,
    ) -> None:
        """Move the mesh. Topology is unchanged."""
        if cell_centroids is not None:
            self.cell_centroids = np.asarray(cell_centroids, dtype=np.float64).reshape(
                self.cell_centroids.shape
            )
        if face_centroids is not None:
            self.face_centroids = np.asarray(face_centroids, dtype=np.float64).reshape(
                self.face_centroids.shape
            )
        if cell_volumes is not None:
            self.cell_volumes = np.asarray(cell_volumes, dtype=np.float64).reshape(self.n_cells)
        if cell_normals is not None:
            self.cell_normals = np.asarray(cell_normals, dtype=np.float64).reshape(
                self.cell_centroids.shape
            )
        self.generation += 1


def column_mesh(
    n_cells: int,
    dz: float = 1.0,
    area: float = 1.0,
    z_bottom: float = 0.0,
    domain: str = "domain",
) -> UnstructuredMesh:
    """Create a vertical 1-column volume mesh in 3-D.

    Face k sits at z_bottom + k*dz; face 0 is the bottom, face n_cells the
    top. Lateral faces are omitted (no-flow).

    Regions: "bottom" (cell 0) and "top" (cell n_cells - 1).
    """
    if n_cells < 1:
        raise ConfigurationError(f"n_cells must be >= 1, got {n_cells}")
    if dz <= 0 or area <= 0:
        raise ConfigurationError("dz and area must be positive")

    z_cells = z_bottom + (np.arange(n_cells) + 0.5) * dz
    z_faces = z_bottom + np.arange(n_cells + 1) * dz

    cell_centroids = np.zeros((n_cells, 3))
    cell_centroids[:, 2] = z_cells
    face_centroids = np.zeros((n_cells + 1, 3))
    face_centroids[:, 2] = z_faces

    face_cells = [(0,)] + [(k - 1, k) for k in range(1, n_cells)] + [(n_cells - 1,)]
    face_normals = np.zeros((n_cells + 1, 3))
    face_normals[:, 2] = area
    face_normals[0, 2] = -area  # points out of cell 0

    return UnstructuredMesh(
        domain=domain,
        cell_centroids=cell_centroids,
        cell_volumes=np.full(n_cells, dz * area),
        face_cells=face_cells,
        face_centroids=face_centroids,
        face_normals=face_normals,
        regions={"bottom": [0], "top": [n_cells - 1]},
    )


def surface_mesh(parent: UnstructuredMesh, domain: str = "surface") -> UnstructuredMesh:
    """Extract the upward-facing boundary of a volume mesh as a manifold.

    Each upward boundary face becomes one surface cell; the surface cells
    carry no lateral connectivity.
    """
    top = [
        int(f) for f in parent.exterior_faces
        if parent.face_normals[f, -1] > 0
    ]
    if not top:
        raise ConfigurationError(f"Mesh '{parent.domain}' has no upward boundary faces")

    normals = parent.face_normals[top]
    return UnstructuredMesh(
        domain=domain,
        cell_centroids=parent.face_centroids[top],
        cell_volumes=np.linalg.norm(normals, axis=1),
        face_cells=[],
        face_centroids=np.zeros((0, parent.space_dimension)),
        face_normals=np.zeros((0, parent.space_dimension)),
        cell_normals=normals,
        parent_faces=np.array(top, dtype=np.int32),
    )
