"""Tests for the surface/subsurface transport coupler."""

import numpy as np
import pytest

from hydrocore.diagnostics import SoluteMassReport
from hydrocore.errors import ConfigurationError
from hydrocore.evaluators import IndependentVariableEvaluator
from hydrocore.fields import FieldTemplate
from hydrocore.params import CoupledTransportParams, FieldInitParams, PKParams, TransportParams
from hydrocore.pks import CoupledTransport, PKBase, SoluteTransport, StepResult

EXCHANGE = "surface-solute_exchange_flux"


class IdlePK(PKBase):
    """Leaf that does nothing."""

    def advance_(self, t_old, t_new):
        return StepResult.ok()


def transport_pk(name, domain="domain", components=("tracer",), value=0.0):
    return SoluteTransport(TransportParams(
        name=name,
        domain=domain,
        component_names=components,
        initial_condition=FieldInitParams({c: value for c in components}),
    ))


def coupler(children):
    names = tuple(pk.name for pk in children)
    return CoupledTransport(CoupledTransportParams(name="coupled transport", pks_order=names), children)


@pytest.fixture
def coupled(column_state, owned_leaf):
    """Factory: coupled transport on a 4-cell column and its one-cell surface.

    Water flows up through the column at 2 mol/s and leaves through the top
    face into the surface. W = 1000 mol in every cell of both domains.
    """

    def make(sub_value=1.0, surf_value=0.0, top_flux=2.0, surface_first=False):
        state = column_state(surface=True)
        mesh, surface = state.get_mesh(), state.get_mesh("surface")
        sub = transport_pk("transport", value=sub_value)
        surf = transport_pk("surface transport", domain="surface", value=surf_value)
        mpc = coupler([surf, sub] if surface_first else [sub, surf])
        mpc.setup(state)

        owned_leaf(state, "mass_flux", "flow", FieldTemplate.faces(mesh))
        owned_leaf(state, "surface-mass_flux", "overland flow", FieldTemplate.faces(surface))
        for key in ("molar_density_liquid", "surface-molar_density_liquid"):
            state.set_evaluator(IndependentVariableEvaluator(key, FieldInitParams({key: 1000.0})))
        state.setup()
        state.get_field_data("mass_flux", "flow").from_numpy("face", [0.0, 2.0, 2.0, 2.0, top_flux])
        mpc.initialize(state)
        return state, mpc

    return make


def total(report):
    return sum(report.totals)


class TestWiring:
    """Tests for identifying and checking the children."""

    def test_identified_by_domain(self, coupled):
        """Declaration order does not decide which child is the surface."""
        _, mpc = coupled(surface_first=True)

        assert mpc.subsurface_pk.name == "transport"
        assert mpc.surface_pk.name == "surface transport"

    def test_exchange_field_owned_by_subsurface(self, coupled):
        """The subsurface PK writes the exchange field on the surface mesh."""
        state, _ = coupled()
        field = state.get_field(EXCHANGE)

        assert field.owner == "transport"
        assert field.template.mesh.domain == "surface"

    def test_component_mismatch(self, column_state):
        """Both domains must carry the same components."""
        state = column_state(surface=True)
        mpc = coupler([
            transport_pk("transport"),
            transport_pk("surface transport", domain="surface", components=("a", "b")),
        ])

        with pytest.raises(ConfigurationError, match="1 subsurface components vs 2 surface components"):
            mpc.setup(state)

    def test_needs_two_children(self):
        """Exactly one subsurface and one surface child."""
        with pytest.raises(ConfigurationError, match="exactly 2 children"):
            coupler([transport_pk("transport")])

    def test_one_child_per_domain(self):
        """Two children on the same side are rejected."""
        with pytest.raises(ConfigurationError, match="expected one child"):
            coupler([transport_pk("a", domain="surface"), transport_pk("b", domain="surface")])

    def test_children_must_be_transport(self):
        """Other PK kinds cannot be coupled this way."""
        other = IdlePK(PKParams(name="surface transport", domain="surface"))

        with pytest.raises(ConfigurationError, match="not a transport PK"):
            coupler([transport_pk("transport"), other])


class TestExchange:
    """Tests for solute moving between the domains."""

    def test_outflow_carries_subsurface_concentration(self, coupled):
        """Upward water takes C of the top cell into the surface: 2 · 1 · 100 mol."""
        state, mpc = coupled()

        assert mpc.advance_step(0.0, 100.0).success

        np.testing.assert_allclose(state.get_field_data(EXCHANGE).to_numpy()[:, 0], [2.0])
        np.testing.assert_allclose(
            state.get_field_data("total_component_concentration").to_numpy()[:, 0], [0.8, 1.0, 1.0, 1.0]
        )
        np.testing.assert_allclose(
            state.get_field_data("surface-total_component_concentration").to_numpy()[:, 0], [0.2]
        )

    def test_inflow_carries_surface_concentration(self, coupled):
        """Downward water takes C of the surface into the top cell."""
        state, mpc = coupled(sub_value=0.0, surf_value=0.5, top_flux=-1.0)

        mpc.advance_step(0.0, 100.0)

        assert state.get_field_data(EXCHANGE).to_numpy()[0, 0] == pytest.approx(-0.5)
        assert mpc.surface_pk.compute_solute(0) == pytest.approx(500.0 - 50.0)

    def test_total_is_conserved(self, coupled):
        """What the subsurface loses the surface gains."""
        _, mpc = coupled(sub_value=1.0, surf_value=0.1)
        before = total(mpc.mass_report(0.0))

        for k in range(4):
            assert mpc.advance_step(100.0 * k, 100.0 * (k + 1)).success

        assert total(mpc.last_report) == pytest.approx(before, rel=1e-10)
        assert mpc.last_report.surface[0] > 100.0


class TestMassReport:
    """Tests for the per-domain solute report."""

    def test_matches_direct_sum(self, coupled):
        """Report masses equal Σ C·n_l·V computed directly."""
        state, mpc = coupled(sub_value=1.0, surf_value=0.5)
        mpc.advance_step(0.0, 100.0)
        report = mpc.last_report

        c_sub = state.get_field_data("total_component_concentration").to_numpy()[:, 0]
        c_surf = state.get_field_data("surface-total_component_concentration").to_numpy()[:, 0]
        assert report.time == 100.0
        assert report.subsurface[0] == pytest.approx(np.sum(c_sub * 1000.0), abs=1e-10)
        assert report.surface[0] == pytest.approx(np.sum(c_surf * 1000.0), abs=1e-10)

    def test_lines(self):
        """One line per component with both domains and the total."""
        report = SoluteMassReport(0.0, ("tracer",), subsurface=[3.0], surface=[1.0])

        assert report.totals == [4.0]
        assert report.lines() == [
            "tracer: subsurface 3.000000e+00 mol, surface 1.000000e+00 mol, total 4.000000e+00 mol"
        ]

    def test_dt_is_minimum(self, coupled):
        """The coupled step is the smaller transport step."""
        _, mpc = coupled()

        assert mpc.get_dt() == pytest.approx(min(mpc.surface_pk.get_dt(), mpc.subsurface_pk.get_dt()))
        assert mpc.get_dt() == pytest.approx(250.0)
