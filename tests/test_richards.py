"""Tests for the Richards flow PK."""

import numpy as np
import pytest
import taichi as ti

from hydrocore.core.dtypes import DTYPE
from hydrocore.core.mesh import column_mesh
from hydrocore.diagnostics import check_conservation
from hydrocore.errors import InitializationError
from hydrocore.evaluators import ATMOSPHERIC_PRESSURE
from hydrocore.fields import State
from hydrocore.kernels import add_accumulation, water_content_liquid
from hydrocore.params import (
    BoundaryConditionParams,
    EOSParams,
    FieldInitParams,
    MPCParams,
    RichardsParams,
    SolverParams,
    ToleranceParams,
    WRMParams,
)
from hydrocore.pks import PKStatus, Richards, StrongMPC
from hydrocore.pks.solution import SolutionVector
from hydrocore.relations.wrm import WRMVanGenuchten

P_ATM = 101325.0
RHO_G = 1000.0 * 9.80665
TIGHT = ToleranceParams(atol=1e-6, rtol=1e-12)


def flow_pk(state, **kwargs):
    """Set up and initialize a Richards PK named "flow" on the state."""
    pk = Richards(RichardsParams(name="flow", **kwargs))
    pk.setup(state)
    state.setup()
    pk.initialize(state)
    return pk


def run(pk, n_steps, dt):
    """Advance and commit n_steps steps of dt; return the final time."""
    t = 0.0
    for _ in range(n_steps):
        result = pk.advance_step(t, t + dt)
        assert result.success, result.failure
        pk.commit_state(t, t + dt, pk.S_next)
        t += dt
    return t


def pressure(state):
    return state.get_field_data("pressure").to_numpy()[:, 0]


def cell_field(value):
    f = ti.field(DTYPE, shape=(1, 1))
    f.from_numpy(np.array([[value]]))
    return f


class TestAccumulation:
    """Tests for the storage term of the residual."""

    def test_single_cell(self):
        """φ·V·n·(s_new - s_old)/dt = 0.4·1·1000·0.05/1 = 20."""
        porosity, volume, density = cell_field(0.4), cell_field(1.0), cell_field(1000.0)
        wc_old, wc_new = cell_field(0.0), cell_field(0.0)
        water_content_liquid(porosity, volume, density, cell_field(0.30), wc_old, 1)
        water_content_liquid(porosity, volume, density, cell_field(0.35), wc_new, 1)

        g = np.zeros(1)
        add_accumulation(wc_old, wc_new, g, 1.0, 1)

        assert g[0] == pytest.approx(20.0)

    def test_through_residual(self, column_state):
        """The same 20 mol/s from the PK residual of a closed one-cell column."""
        pc = WRMVanGenuchten(WRMParams()).capillary_pressure(np.array([0.30, 0.35]))
        state = column_state(n_cells=1)
        pk = flow_pk(
            state,
            porosity=0.4,
            eos=EOSParams(molar_mass=1.0),
            initial_condition=FieldInitParams({"pressure": P_ATM - pc[0]}),
        )
        u_old = SolutionVector(pk.layout, [P_ATM - pc[0]])
        u_new = SolutionVector(pk.layout, [P_ATM - pc[1]])
        f = u_new.zeros_like()

        pk.residual(0.0, 1.0, u_old, u_new, f)

        np.testing.assert_allclose(state.get_field_data("saturation_liquid").to_numpy()[:, 0], [0.35])
        assert f.data[0] == pytest.approx(20.0)


class TestInitialization:
    """Tests for initial conditions and required constants."""

    def test_hydrostatic(self, column_state):
        """p = p_atm + ρ·g·(z_wt - z)."""
        state = column_state()
        flow_pk(state, water_table_elevation=2.0)
        z = np.array([0.5, 1.5, 2.5, 3.5])

        np.testing.assert_allclose(pressure(state), P_ATM + RHO_G * (2.0 - z))
        assert state.get_field("pressure").initialized

    def test_constant_initial_condition(self, column_state):
        """A constant initial pressure from the parameters."""
        state = column_state()
        flow_pk(state, initial_condition=FieldInitParams({"pressure": 95000.0}))

        np.testing.assert_allclose(pressure(state), 95000.0)

    def test_missing_initial_condition(self, column_state):
        """Without a water table or constants there is nothing to start from."""
        state = column_state()
        with pytest.raises(InitializationError, match="no initial condition"):
            flow_pk(state)

    def test_missing_gravity(self):
        """Gravity is a driver constant the PK cannot do without."""
        state = State()
        state.register_mesh(column_mesh(4))
        state.set_scalar(ATMOSPHERIC_PRESSURE, "simulation", P_ATM)

        with pytest.raises(InitializationError, match="gravity"):
            flow_pk(state, water_table_elevation=2.0)

    def test_publishes_face_fluxes(self, column_state):
        """The face flux field is owned by the PK and initialized."""
        state = column_state()
        flow_pk(state, water_table_elevation=2.0)
        flux = state.get_field("mass_flux")

        assert flux.owner == "flow"
        assert flux.initialized
        assert state.get_field_data("mass_flux").size("face") == 5


class TestHydrostatic:
    """Tests for the equilibrium profile."""

    def test_steady_closed_column(self, column_state):
        """With no boundary conditions the hydrostatic profile does not move."""
        state = column_state()
        pk = flow_pk(state, water_table_elevation=2.0)
        p0 = pressure(state)

        run(pk, 3, 1000.0)

        np.testing.assert_allclose(pressure(state), p0, rtol=1e-10)
        np.testing.assert_allclose(state.get_field_data("mass_flux").to_numpy("face")[:, 0], 0.0, atol=1e-10)

    def test_steady_with_matching_dirichlet(self, column_state):
        """A bottom pressure matching the water table carries no flux."""
        state = column_state()
        bc = BoundaryConditionParams(kind="pressure", side="bottom", value=P_ATM + RHO_G * 2.0)
        pk = flow_pk(state, water_table_elevation=2.0, boundary_conditions=(bc,))
        p0 = pressure(state)

        run(pk, 2, 1000.0)

        np.testing.assert_allclose(pressure(state), p0, rtol=1e-10)
        assert pk.boundary_fluxes()[0] == pytest.approx(0.0, abs=1e-10)


class TestMassBalance:
    """Tests for conservation of water."""

    def test_closed_column_redistribution(self, column_state):
        """Water moves down under gravity but the total is unchanged."""
        state = column_state()
        pk = flow_pk(
            state,
            initial_condition=FieldInitParams({"pressure": 95000.0}),
            tolerance=TIGHT,
            initial_dt=10.0,
        )
        initial = pk.total_water_content()

        run(pk, 5, 10.0)

        p = pressure(state)
        assert p[0] > p[-1]
        check_conservation(initial, pk.total_water_content(), rtol=1e-9)

    def test_closed_column_with_vapor(self, column_state):
        """Vapor in the gas phase is part of the conserved water."""
        state = column_state()
        pk = flow_pk(
            state,
            initial_condition=FieldInitParams({"pressure": 95000.0}),
            tolerance=TIGHT,
            initial_dt=10.0,
            include_vapor=True,
        )
        initial = pk.total_water_content()

        run(pk, 5, 10.0)

        assert state.get_evaluator("water_content").include_vapor
        assert np.all(state.get_field_data("mol_frac_gas").to_numpy()[:, 0] > 0)
        check_conservation(initial, pk.total_water_content(), rtol=1e-9)

    def test_infiltration(self, column_state):
        """A top inflow of 0.01 mol/s adds exactly 0.01·t to the column."""
        state = column_state()
        bc = BoundaryConditionParams(kind="flux", side="top", value=-0.01)
        pk = flow_pk(
            state,
            water_table_elevation=1.0,
            boundary_conditions=(bc,),
            tolerance=TIGHT,
        )
        initial = pk.total_water_content()

        t = run(pk, 5, 10.0)

        assert pk.mass_balance.cumulative_inflow == pytest.approx(0.01 * t)
        pk.mass_balance.check(pk.total_water_content(), rtol=1e-9)
        check_conservation(initial, pk.total_water_content(), {"top": -0.01 * t}, rtol=1e-9)

    def test_neumann_face_flux(self, column_state):
        """The published flux on a Neumann face is the prescribed value."""
        state = column_state()
        bc = BoundaryConditionParams(kind="flux", side="top", value=-0.01)
        pk = flow_pk(state, water_table_elevation=1.0, boundary_conditions=(bc,))

        assert state.get_field_data("mass_flux").to_numpy("face")[4, 0] == pytest.approx(-0.01)
        assert pk.boundary_fluxes() == {4: pytest.approx(-0.01)}


class TestFailure:
    """Tests for recoverable solver failures."""

    def test_failed_step_rolls_back(self, column_state):
        """A step that cannot converge leaves pressure and fluxes at t_old."""
        state = column_state()
        pk = flow_pk(
            state,
            initial_condition=FieldInitParams({"pressure": 95000.0}),
            solver=SolverParams(max_iterations=1),
        )
        p0 = pressure(state)
        flux0 = state.get_field_data("mass_flux").to_numpy("face")

        result = pk.advance_step(0.0, 1e4)

        assert result.failed
        assert "no convergence" in result.failure.reason
        assert pk.status == PKStatus.PROPOSING
        np.testing.assert_allclose(pressure(state), p0)
        np.testing.assert_allclose(state.get_field_data("mass_flux").to_numpy("face"), flux0)

    def test_dt_grows_after_easy_steps(self, column_state):
        """Quick convergence raises the proposed step."""
        state = column_state()
        pk = flow_pk(state, water_table_elevation=2.0, initial_dt=10.0)

        run(pk, 1, 10.0)

        assert pk.get_dt() == pytest.approx(12.5)


class TestStrongCoupling:
    """Tests for a Richards PK inside a monolithic coupler."""

    @pytest.mark.parametrize("preconditioner", ["block diagonal", "fully coupled"])
    def test_matches_standalone(self, column_state, preconditioner):
        """A strong MPC around one flow PK takes the same step as the PK alone."""
        init = FieldInitParams({"pressure": 95000.0})

        alone = column_state()
        pk = flow_pk(alone, initial_condition=init, tolerance=TIGHT)
        run(pk, 2, 10.0)

        coupled = column_state()
        child = Richards(RichardsParams(name="flow", initial_condition=init, tolerance=TIGHT))
        params = MPCParams(name="mpc", pk_type="strong MPC", pks_order=("flow",), preconditioner=preconditioner)
        mpc = StrongMPC(params, [child])
        mpc.setup(coupled)
        coupled.setup()
        mpc.initialize(coupled)
        run(mpc, 2, 10.0)

        np.testing.assert_allclose(pressure(coupled), pressure(alone), rtol=1e-10)
        np.testing.assert_allclose(
            coupled.get_field_data("mass_flux").to_numpy("face"),
            alone.get_field_data("mass_flux").to_numpy("face"),
            rtol=1e-8,
            atol=1e-12,
        )
        assert np.any(np.abs(coupled.get_field_data("mass_flux").to_numpy("face")) > 0)
