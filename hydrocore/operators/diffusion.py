"""
Two-point flux diffusion operator.

Discretizes -∇·(K·coef·∇p) on an unstructured mesh with one transmissibility
per face:

    interior face (c0, c1):  T = A / (d0/k0 + d1/k1)
    boundary face (c):       T = A·k / d

where d is the centroid-to-face distance and A the face area. The flux
out of c0 through a face is T·coef·(p0 - p1).

The operator moves through fixed stages each time it is rebuilt:

    build(coef) -> [add_elemental_rhs]* -> apply_boundary_conditions -> assemble

Right-hand-side contributions after boundary conditions are rejected.
"""

from enum import Enum, auto
from typing import Mapping, Protocol, runtime_checkable

import numpy as np

from hydrocore.core.mesh import UnstructuredMesh
from hydrocore.errors import ConfigurationError, ConsistencyError

DIRICHLET = "dirichlet"
NEUMANN = "neumann"


class OperatorStage(Enum):
    """Assembly stage."""

    EMPTY = auto()
    BUILT = auto()
    BCS_APPLIED = auto()
    ASSEMBLED = auto()


@runtime_checkable
class DiffusionOperator(Protocol):
    """Operator service consumed by flow PKs."""

    def build(self, face_coefficients: np.ndarray) -> None:
        ...

    def add_elemental_rhs(self, values: np.ndarray) -> None:
        ...

    def apply_boundary_conditions(self, bcs: Mapping[int, tuple[str, float]]) -> None:
        ...

    def assemble(self) -> None:
        ...

    def compute_negative_residual(self, p: np.ndarray) -> np.ndarray:
        ...


class TwoPointFluxDiffusion:
    """Cell-centered two-point flux approximation (serial meshes only).

    Attributes:
        mesh: Mesh the operator acts on
        transmissibility: (n_faces,) geometric face transmissibilities [m³]
        stage: Current assembly stage
    """

    def __init__(self, mesh: UnstructuredMesh, permeability: np.ndarray):
        if mesh.n_owned_cells != mesh.n_cells:
            raise ConfigurationError("TwoPointFluxDiffusion does not support ghost cells")
        k = np.asarray(permeability, dtype=np.float64).reshape(-1)
        if k.shape[0] != mesh.n_cells or np.any(k <= 0):
            raise ConfigurationError("permeability must be positive, one value per cell")

        self.mesh = mesh
        self.transmissibility = np.zeros(mesh.n_faces)
        for f, cells in enumerate(mesh.face_cells):
            area = mesh.face_area(f)
            resistance = 0.0
            for c in cells:
                d = np.linalg.norm(mesh.face_centroids[f] - mesh.cell_centroids[c])
                if d == 0:
                    raise ConsistencyError(f"Face {f} centroid coincides with cell {c} centroid")
                resistance += d / k[c]
            self.transmissibility[f] = area / resistance

        self.stage = OperatorStage.EMPTY
        self._coef: np.ndarray | None = None
        self._rhs = np.zeros(mesh.n_cells)
        self._bc_diag = np.zeros(mesh.n_cells)
        self._matrix: np.ndarray | None = None

    def build(self, face_coefficients: np.ndarray) -> None:
        """Start a new assembly with per-face coefficients (e.g. kr·n/μ)."""
        coef = np.asarray(face_coefficients, dtype=np.float64).reshape(-1)
        if coef.shape[0] != self.mesh.n_faces:
            raise ConfigurationError(
                f"Expected {self.mesh.n_faces} face coefficients, got {coef.shape[0]}"
            )
        self._coef = coef.copy()
        self._rhs = np.zeros(self.mesh.n_cells)
        self._bc_diag = np.zeros(self.mesh.n_cells)
        self._matrix = None
        self.stage = OperatorStage.BUILT

    def face_conductance(self, f: int) -> float:
        """T·coef of face f in the current build."""
        self._require(OperatorStage.BUILT, OperatorStage.BCS_APPLIED, OperatorStage.ASSEMBLED)
        return float(self.transmissibility[f] * self._coef[f])

    def add_elemental_rhs(self, values: np.ndarray) -> None:
        """Add a cell-wise source to the right-hand side."""
        if self.stage != OperatorStage.BUILT:
            raise ConfigurationError(
                f"Right-hand-side contributions must precede boundary conditions (stage {self.stage.name})"
            )
        self._rhs += np.asarray(values, dtype=np.float64).reshape(self.mesh.n_cells)

    def apply_boundary_conditions(self, bcs: Mapping[int, tuple[str, float]]) -> None:
        """Apply boundary conditions keyed by face id.

        Dirichlet values are boundary pressures; Neumann values are
        outward fluxes. Faces without a condition are no-flow.
        """
        self._require(OperatorStage.BUILT)
        for f, (kind, value) in bcs.items():
            cells = self.mesh.face_get_cells(f)
            if len(cells) != 1:
                raise ConfigurationError(f"Boundary condition on interior face {f}")
            c = cells[0]
            if kind == DIRICHLET:
                g = self.transmissibility[f] * self._coef[f]
                self._bc_diag[c] += g
                self._rhs[c] += g * value
            elif kind == NEUMANN:
                self._rhs[c] -= value
            else:
                raise ConfigurationError(f"Unknown boundary condition kind '{kind}'")
        self.stage = OperatorStage.BCS_APPLIED

    def assemble(self) -> None:
        """Form the dense cell matrix."""
        self._require(OperatorStage.BCS_APPLIED)
        n = self.mesh.n_cells
        matrix = np.diag(self._bc_diag)
        for f, cells in enumerate(self.mesh.face_cells):
            if len(cells) != 2:
                continue
            c0, c1 = cells
            g = self.transmissibility[f] * self._coef[f]
            matrix[c0, c0] += g
            matrix[c1, c1] += g
            matrix[c0, c1] -= g
            matrix[c1, c0] -= g
        self._matrix = matrix.reshape(n, n)
        self.stage = OperatorStage.ASSEMBLED

    @property
    def matrix(self) -> np.ndarray:
        """Assembled matrix (copy)."""
        self._require(OperatorStage.ASSEMBLED)
        return self._matrix.copy()

    @property
    def rhs(self) -> np.ndarray:
        """Right-hand side (copy)."""
        return self._rhs.copy()

    def compute_negative_residual(self, p: np.ndarray) -> np.ndarray:
        """A·p - b: net outflow of each cell."""
        self._require(OperatorStage.ASSEMBLED)
        return self._matrix @ np.asarray(p, dtype=np.float64).reshape(-1) - self._rhs

    def _require(self, *stages: OperatorStage) -> None:
        if self.stage not in stages:
            raise ConfigurationError(
                f"Operator is in stage {self.stage.name}; expected one of {[s.name for s in stages]}"
            )
