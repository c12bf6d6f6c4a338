"""Pytest fixtures and test utilities for hydrocore."""

import numpy as np
import pytest

from hydrocore.config import init_taichi
from hydrocore.core.mesh import UnstructuredMesh, column_mesh, surface_mesh
from hydrocore.evaluators import ATMOSPHERIC_PRESSURE, PrimaryVariableEvaluator, SecondaryVariablesEvaluator
from hydrocore.fields import FieldTemplate, State
from hydrocore.pks.richards import GRAVITY

P_ATM = 101325.0
G = (0.0, 0.0, -9.80665)


@pytest.fixture(scope="session", autouse=True)
def taichi_init():
    """Initialize Taichi once per test session with CPU backend."""
    init_taichi(backend="cpu", debug=True)
    yield


@pytest.fixture
def column():
    """Four-cell column of unit cells, z from 0 to 4."""
    return column_mesh(4)


@pytest.fixture
def strip():
    """Four cells in a row on a tilted 2-D strip with two boundary faces.

    Faces 0 and 4 are the left and right ends; faces 1-3 are interior.
    Every cell rises 0.5 m per metre in x.
    """
    return make_strip()


def make_strip(n: int = 4, rise: float = 0.5, domain: str = "surface") -> UnstructuredMesh:
    """Tilted strip of n unit cells, used as a surface manifold."""
    x = np.arange(n) + 0.5
    centroids = np.stack([x, np.zeros(n), rise * x], axis=1)
    xf = np.arange(n + 1, dtype=float)
    face_centroids = np.stack([xf, np.zeros(n + 1), rise * xf], axis=1)
    face_normals = np.zeros((n + 1, 3))
    face_normals[:, 0] = 1.0
    face_normals[0, 0] = -1.0
    face_cells = [(0,)] + [(k - 1, k) for k in range(1, n)] + [(n - 1,)]
    # upward normal of a plane z = rise * x
    normal = np.array([-rise, 0.0, 1.0])
    return UnstructuredMesh(
        domain=domain,
        cell_centroids=centroids,
        cell_volumes=np.ones(n),
        face_cells=face_cells,
        face_centroids=face_centroids,
        face_normals=face_normals,
        cell_normals=np.tile(normal, (n, 1)),
    )


@pytest.fixture
def column_state():
    """Factory: State with a column mesh, its surface and the driver constants."""
    return make_column_state


def make_column_state(n_cells: int = 4, dz: float = 1.0, surface: bool = False) -> State:
    """State with a registered column (and optionally its surface) plus p_atm and gravity."""
    state = State()
    mesh = column_mesh(n_cells, dz)
    state.register_mesh(mesh)
    if surface:
        state.register_mesh(surface_mesh(mesh))
    state.set_scalar(ATMOSPHERIC_PRESSURE, "simulation", P_ATM)
    state.set_constant_vector(GRAVITY, "simulation", G)
    return state


@pytest.fixture
def owned_leaf():
    """Factory: claim a cell (or face) field for an owner and give it a leaf evaluator."""
    return add_owned_leaf


def add_owned_leaf(state: State, key: str, owner: str, template: FieldTemplate) -> PrimaryVariableEvaluator:
    """Owner-written field with a PrimaryVariableEvaluator."""
    state.require_field(key, owner=owner, template=template)
    ev = PrimaryVariableEvaluator(key)
    state.set_evaluator(ev)
    return ev


class CountingSum(SecondaryVariablesEvaluator):
    """out = sum of dependencies, counting evaluations; d(out)/d(dep) = 1."""

    def __init__(self, key, deps):
        super().__init__([key], deps)
        self.calls = 0

    def evaluate_field_(self, state, results):
        self.calls += 1
        total = sum(state.get_field_data(d).to_numpy("cell") for d in sorted(self.dependencies))
        results[0].from_numpy("cell", total)

    def evaluate_field_partial_derivative_(self, state, wrt_key):
        n = results_size(state, self.my_keys[0])
        return [sum(self.dependency_derivative(state, d, wrt_key) for d in sorted(self.dependencies)) + np.zeros(n)]


def results_size(state: State, key: str) -> int:
    return state.get_field(key).template.mesh.n_owned_cells


@pytest.fixture
def counting_sum():
    """The CountingSum evaluator class."""
    return CountingSum
