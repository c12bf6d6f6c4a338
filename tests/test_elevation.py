"""Tests for the surface elevation/slope evaluator."""

import numpy as np
import pytest

from hydrocore.errors import ConsistencyError
from hydrocore.evaluators import MeshElevationEvaluator
from hydrocore.fields import FieldTemplate, State
from hydrocore.params import ElevationParams, IOParams

ELEV = "surface-elevation"
SLOPE = "surface-slope_magnitude"


def elevation_state(mesh, owned_leaf=None, dynamic=False, boundary=True, io=None):
    state = State()
    state.register_mesh(mesh)
    params = ElevationParams(dynamic_mesh=dynamic, deformation_key="surface-deformation", io=io or IOParams())
    ev = MeshElevationEvaluator(params)
    state.set_evaluator(ev)
    if boundary:
        state.require_field(ELEV, template=FieldTemplate.cells(mesh).with_boundary_faces())
    deformation = None
    if dynamic:
        deformation = owned_leaf(state, "surface-deformation", "deformer", FieldTemplate.cells(mesh))
    state.setup()
    return state, ev, deformation


class TestElevation:
    """Tests for elevation and slope values."""

    def test_values(self, strip):
        """Elevation is the cell centroid z; slope the tangent of the tilt."""
        state, _, _ = elevation_state(strip)

        np.testing.assert_allclose(state.get_field_data(ELEV).to_numpy()[:, 0], [0.25, 0.75, 1.25, 1.75])
        np.testing.assert_allclose(state.get_field_data(SLOPE).to_numpy()[:, 0], 0.5)

    def test_boundary_faces_mirror_cells(self, strip):
        """Each boundary face takes the value of its single neighbor cell."""
        state, _, _ = elevation_state(strip)
        elev = state.get_field_data(ELEV)

        assert elev.size("boundary_face") == 2
        np.testing.assert_allclose(elev.to_numpy("boundary_face")[:, 0], [0.25, 1.75])

    def test_no_boundary_component_requested(self, strip):
        """Without a boundary-face request only cells are computed."""
        state, _, _ = elevation_state(strip, boundary=False)

        assert not state.get_field_data(ELEV).has_component("boundary_face")
        assert state.get_field(ELEV).initialized

    def test_malformed_boundary(self, strip):
        """A boundary face with two neighbors is a consistency error."""
        strip.exterior_faces = np.array([0, 2], dtype=np.int32)
        state, _, _ = elevation_state(strip)

        with pytest.raises(ConsistencyError):
            state.get_field_data(ELEV)

    def test_io_flags(self, strip):
        """Output flags from the parameters reach both fields."""
        state, _, _ = elevation_state(strip, io=IOParams(visualize=False, checkpoint=True))

        assert state.get_field(ELEV).io.checkpoint
        assert not state.get_field(SLOPE).io.visualize


class TestElevationChanges:
    """Tests for when elevation reports a change."""

    def test_first_call_reports_change(self, strip):
        """The first query reports a change, later ones do not on a static mesh."""
        state, ev, _ = elevation_state(strip)

        assert state.has_field_changed(ELEV, "flow")
        assert not state.has_field_changed(ELEV, "flow")
        assert ev.generation == 1

    def test_dynamic_mesh(self, strip, owned_leaf):
        """On a dynamic mesh a deformation update triggers recomputation."""
        state, ev, deformation = elevation_state(strip, owned_leaf, dynamic=True)
        assert state.has_field_changed(ELEV, "flow")

        strip.deform(cell_centroids=strip.cell_centroids + np.array([0.0, 0.0, 1.0]))
        assert strip.generation == 1
        assert not state.has_field_changed(ELEV, "flow")

        deformation.set_field_as_changed()
        assert state.has_field_changed(ELEV, "flow")
        np.testing.assert_allclose(state.get_field_data(ELEV).to_numpy()[:, 0], [1.25, 1.75, 2.25, 2.75])
        assert ev.generation == 2
