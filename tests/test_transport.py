"""Tests for explicit upwind solute transport."""

import numpy as np
import pytest

from hydrocore.evaluators import IndependentVariableEvaluator
from hydrocore.fields import FieldTemplate
from hydrocore.params import FieldInitParams, TransportParams
from hydrocore.pks import PKStatus, SoluteTransport

TCC = "total_component_concentration"
UPWARD = [0.0, 2.0, 2.0, 2.0, 0.0]


@pytest.fixture
def transport(column_state, owned_leaf):
    """Factory: initialized transport PK on a 4-cell column with fixed water fluxes.

    Water: n_l = 1000 mol/m³ in unit cells, so W = 1000 mol per cell.
    """

    def make(flux=UPWARD, components=("tracer",), initial=None, **kwargs):
        state = column_state()
        mesh = state.get_mesh()
        initial = initial or {name: 0.0 for name in components}
        pk = SoluteTransport(TransportParams(
            name="transport",
            component_names=components,
            initial_condition=FieldInitParams(initial),
            **kwargs,
        ))
        pk.setup(state)
        owned_leaf(state, "mass_flux", "flow", FieldTemplate.faces(mesh))
        state.set_evaluator(IndependentVariableEvaluator(
            "molar_density_liquid", FieldInitParams({"molar_density_liquid": 1000.0})
        ))
        state.setup()
        state.get_field_data("mass_flux", "flow").from_numpy("face", flux)
        state.get_field("mass_flux").set_initialized("flow")
        pk.initialize(state)
        return state, pk

    return make


def set_concentration(state, pk, values):
    state.get_field_data(TCC, pk.name).from_numpy("cell", values)
    pk.changed_solution()


def concentration(state):
    return state.get_field_data(TCC).to_numpy()


class TestAdvection:
    """Tests for the upwind update."""

    def test_pulse_moves_downstream(self, transport):
        """C0 = 1 - q·dt/W, C1 = q·dt/W with q = 2, dt = 100, W = 1000."""
        state, pk = transport()
        set_concentration(state, pk, [1.0, 0.0, 0.0, 0.0])

        assert pk.advance_step(0.0, 100.0).success

        np.testing.assert_allclose(concentration(state)[:, 0], [0.8, 0.2, 0.0, 0.0])

    def test_uniform_concentration_is_steady(self, transport):
        """Through-flow of a uniform solution changes nothing inside the column."""
        state, pk = transport(flux=[0.0, 2.0, 2.0, 2.0, 0.0], initial={"tracer": 0.3})

        assert pk.advance_step(0.0, 100.0).success

        np.testing.assert_allclose(concentration(state)[1:3, 0], 0.3)

    def test_downward_flux(self, transport):
        """Negative face flux takes the upper cell as upwind."""
        state, pk = transport(flux=[0.0, -2.0, -2.0, -2.0, 0.0])
        set_concentration(state, pk, [0.0, 0.0, 0.0, 1.0])

        pk.advance_step(0.0, 100.0)

        np.testing.assert_allclose(concentration(state)[:, 0], [0.0, 0.0, 0.2, 0.8])

    def test_components_are_independent(self, transport):
        """Each dof advects with the same water flux."""
        state, pk = transport(components=("a", "b"), initial={"a": 1.0, "b": 2.0})
        set_concentration(state, pk, [[1.0, 2.0], [0.0, 0.0], [0.0, 0.0], [0.0, 0.0]])

        pk.advance_step(0.0, 100.0)

        np.testing.assert_allclose(concentration(state)[:2], [[0.8, 1.6], [0.2, 0.4]])

    def test_solute_is_conserved(self, transport):
        """Interior exchange between cells conserves total solute."""
        state, pk = transport()
        set_concentration(state, pk, [1.0, 0.5, 0.25, 0.0])
        before = pk.compute_solute(0)

        for k in range(3):
            assert pk.advance_step(100.0 * k, 100.0 * (k + 1)).success

        assert pk.compute_solute(0) == pytest.approx(before, rel=1e-12)


class TestTimestep:
    """Tests for the CFL limit."""

    def test_cfl(self, transport):
        """dt = cfl · W / outflow = 0.5 · 1000 / 2."""
        _, pk = transport()

        assert pk.get_dt() == pytest.approx(250.0)

    def test_no_flow(self, transport):
        """Without outflow the step is only limited by max_dt."""
        _, pk = transport(flux=np.zeros(5), max_dt=3600.0)

        assert pk.get_dt() == 3600.0


class TestNegativeConcentration:
    """Tests for the positivity check."""

    def test_overshoot_fails_and_leaves_state(self, transport):
        """A step over twice the CFL limit drives C0 negative and is rejected."""
        state, pk = transport()
        set_concentration(state, pk, [1.0, 0.0, 0.0, 0.0])
        before = concentration(state)

        result = pk.advance_step(0.0, 1000.0)

        assert result.failed
        assert "negative concentration" in result.failure.reason
        assert pk.status == PKStatus.PROPOSING
        np.testing.assert_allclose(concentration(state), before)


class TestSoluteMass:
    """Tests for solute inventories."""

    def test_compute_solute(self, transport):
        """Σ C·n_l·V per component."""
        _, pk = transport(components=("a", "b"), initial={"a": 1.0, "b": 2.0})

        assert pk.compute_solute(0) == pytest.approx(4000.0)
        assert pk.solute_masses() == pytest.approx([4000.0, 8000.0])

    def test_component_out_of_range(self, transport):
        """Component indices are checked."""
        _, pk = transport()

        with pytest.raises(IndexError, match="out of range"):
            pk.compute_solute(1)

    def test_subfield_names(self, transport):
        """Initial values are given per component name."""
        state, pk = transport(components=("a", "b"), initial={"a": 1.0, "b": 2.0})

        assert state.get_field(TCC).subfield_names() == {"cell": ["a", "b"]}
        assert pk.num_aqueous_components == 2
