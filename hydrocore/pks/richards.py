"""
Richards equation for variably saturated subsurface flow.

Primary variable: liquid pressure p [Pa]. Residual per cell [mol/s]:

    f = Σ_faces q_out + (wc(p_new) - wc(p_old)) / dt

with two-point face fluxes including gravity

    q_out = T·kr·n/μ · (p_c - p_nbr + ρ·g·(x_nbr - x_c))

Secondary quantities come from evaluators the PK registers in setup:
saturation and relative permeability (van Genuchten), density and
viscosity (EOS), porosity and permeability (constants), cell volume and
water content, plus the gas phase (ideal gas with saturated vapor) when
vapor is included. Old-time water content lives in a private copy of the
state taken at the start of each step.
"""

from typing import Any

import numpy as np

from hydrocore.diagnostics import MassBalance
from hydrocore.errors import ConfigurationError, ConsistencyError, InitializationError
from hydrocore.evaluators import (
    ATMOSPHERIC_PRESSURE,
    CellVolumeEvaluator,
    EOSEvaluator,
    IndependentVariableEvaluator,
    PrimaryVariableEvaluator,
    RelPermEvaluator,
    VaporEvaluator,
    WaterContentEvaluator,
    WRMEvaluator,
)
from hydrocore.fields.base import FieldTemplate, get_key
from hydrocore.fields.state import State
from hydrocore.kernels.accumulation import add_accumulation
from hydrocore.operators.diffusion import DIRICHLET, NEUMANN, TwoPointFluxDiffusion
from hydrocore.params.schema import FieldInitParams, RichardsParams
from hydrocore.pks.base import PhysicalPK
from hydrocore.pks.protocol import StepResult
from hydrocore.pks.solution import SolutionLayout, SolutionVector
from hydrocore.relations.eos import EOSIdealGas, create_eos
from hydrocore.relations.wrm import WRMPartition
from hydrocore.time_integration import BackwardEuler

GRAVITY = "gravity"


class Richards(PhysicalPK):
    """Implicit Richards flow PK (also a ResidualFunction)."""

    variable_name = "pressure"

    def __init__(self, params: RichardsParams, logger=None):
        super().__init__(params, logger)
        d = params.domain
        self.sat_key = get_key(d, "saturation_liquid")
        self.krel_key = get_key(d, "relative_permeability")
        self.rho_key = get_key(d, "mass_density_liquid")
        self.molar_dens_key = get_key(d, "molar_density_liquid")
        self.visc_key = get_key(d, "viscosity_liquid")
        self.wc_key = get_key(d, "water_content")
        self.poro_key = get_key(d, "porosity")
        self.perm_key = get_key(d, "permeability")
        self.cv_key = get_key(d, "cell_volume")
        self.flux_key = get_key(d, "mass_flux")

        self.partition = WRMPartition(params.wrm)
        self.eos = create_eos(params.eos)
        self.operator: TwoPointFluxDiffusion | None = None
        self.S_inter: State | None = None
        self.layout: SolutionLayout | None = None
        self.integrator: BackwardEuler | None = None
        self._bcs: dict[int, tuple[str, float]] = {}
        self._jacobian: np.ndarray | None = None
        self.mass_balance = MassBalance()

    # Setup

    def setup(self, state: State) -> None:
        super().setup(state)
        d = self.domain
        self.ensure_evaluator(state, WRMEvaluator(self.partition, d))
        self.ensure_evaluator(state, RelPermEvaluator(self.partition, d))
        self.ensure_evaluator(state, EOSEvaluator(self.eos, d))
        self.ensure_evaluator(state, CellVolumeEvaluator(d))
        self.ensure_evaluator(state, WaterContentEvaluator(d, include_vapor=self.params.include_vapor))
        if self.params.include_vapor:
            gas = EOSIdealGas(self.params.eos.molar_mass)
            self.ensure_evaluator(state, VaporEvaluator(gas, self.params.temperature, d))
        self.ensure_evaluator(
            state,
            IndependentVariableEvaluator(self.poro_key, FieldInitParams({self.poro_key: self.params.porosity})),
        )
        self.ensure_evaluator(
            state,
            IndependentVariableEvaluator(self.perm_key, FieldInitParams({self.perm_key: self.params.permeability})),
        )

        state.require_field(self.flux_key, owner=self.name, template=FieldTemplate.faces(self.mesh))
        self.ensure_evaluator(state, PrimaryVariableEvaluator(self.flux_key))

        # Dirichlet faces need kr on the boundary
        state.require_field(self.krel_key, template=FieldTemplate.cells(self.mesh).with_boundary_faces())
        for key in (self.sat_key, self.rho_key, self.molar_dens_key, self.visc_key, self.wc_key):
            state.require_field(key)

        self._bcs = self._resolve_boundary_conditions()
        self._bface_index = {int(f): bf for bf, f in enumerate(self.mesh.exterior_faces)}

    def _resolve_boundary_conditions(self) -> dict[int, tuple[str, float]]:
        bcs: dict[int, tuple[str, float]] = {}
        for bc in self.params.boundary_conditions:
            kind = DIRICHLET if bc.kind == "pressure" else NEUMANN
            sign = 1.0 if bc.side == "top" else -1.0
            faces = [int(f) for f in self.mesh.exterior_faces if sign * self.mesh.face_normals[f, -1] > 0]
            if not faces:
                raise ConfigurationError(f"PK '{self.name}': no exterior faces on side '{bc.side}'")
            for f in faces:
                if f in bcs:
                    raise ConfigurationError(f"PK '{self.name}': face {f} has two boundary conditions")
                bcs[f] = (kind, bc.value)
        return bcs

    def initialize(self, state: State) -> None:
        """Initial pressure, operator, old-time copy and integrator.

        Raises:
            InitializationError: If atmospheric pressure or gravity is missing
                or no initial condition is given
        """
        for name, present in (
            (ATMOSPHERIC_PRESSURE, state.has_scalar(ATMOSPHERIC_PRESSURE)),
            (GRAVITY, state.has_constant_vector(GRAVITY)),
        ):
            if not present:
                raise InitializationError(f"PK '{self.name}' requires '{name}' in the state")

        if self.params.water_table_elevation is not None:
            self._initialize_hydrostatic(state)
        super().initialize(state)

        permeability = state.get_field_data(self.perm_key).to_numpy("cell")[:, 0]
        self.operator = TwoPointFluxDiffusion(self.mesh, permeability)

        state.get_field_data(self.wc_key)
        self.S_inter = state.copy(f"{self.name}-inter", keys=[self.wc_key])

        self.layout = SolutionLayout()
        self.register_solution(self.layout)
        self.integrator = BackwardEuler(self, self.params.solver, self.logger)
        self.update_flux_(state)
        self.mass_balance = MassBalance(initial=self.total_water_content(state))
        self.logger.info(
            "%s initialized: %d cells, %d boundary conditions",
            self.name, self.n_owned, len(self._bcs),
        )

    def _initialize_hydrostatic(self, state: State) -> None:
        """p = p_atm + ρ·|g|·(z_wt - z)."""
        p_atm = state.get_scalar(ATMOSPHERIC_PRESSURE)
        g = np.linalg.norm(state.get_constant_vector(GRAVITY))
        rho = float(self.eos.mass_density(np.array([p_atm]))[0])
        z = self.mesh.cell_centroids[:, -1]
        p = p_atm + rho * g * (self.params.water_table_elevation - z)
        state.get_field_data(self.key, self.name).from_numpy("cell", p)
        state.get_field(self.key).set_initialized(self.name)

    # Stepping

    def begin_step(self, t_old: float, t_new: float) -> None:
        super().begin_step(t_old, t_new)
        self.S_next.get_field_data(self.wc_key)
        self.S_inter.assign_from(self.S_next, [self.wc_key])
        self.S_inter.time = t_old

    def advance_(self, t_old: float, t_new: float) -> StepResult:
        u_old = SolutionVector(self.layout)
        self.state_to_solution(self.S_next, u_old)
        u = u_old.copy()

        result = self.integrator.step(t_old, t_new, u_old, u)
        if not result.converged:
            return StepResult.fail(self.name, result.reason)

        self.solution_to_state(u, self.S_next)
        self.accept_solution_()
        self.set_dt(self.integrator.suggest_dt(t_new - t_old, result.iterations))
        self.logger.debug(
            "%s converged in %d iterations (error %.3e)", self.name, result.iterations, result.error
        )
        return StepResult.ok()

    # ResidualFunction

    def residual(
        self,
        t_old: float,
        t_new: float,
        u_old: SolutionVector,
        u_new: SolutionVector,
        f: SolutionVector,
    ) -> None:
        h = t_new - t_old
        if not h > 0:
            raise ConsistencyError(f"PK '{self.name}': non-positive step {h}")
        self.solution_to_state(u_new, self.S_next)
        g = f.sub(self.name)
        g[:] = self.apply_diffusion_(self.S_next)
        self.add_accumulation_(g, h)

    def apply_diffusion_(self, state: State) -> np.ndarray:
        """Assemble the operator at the current pressure; return net outflow per owned cell."""
        coef = self.face_coefficients_(state)
        self.operator.build(coef)
        self.operator.add_elemental_rhs(self.gravity_rhs_(state))
        self.operator.apply_boundary_conditions(self._bcs)
        self.operator.assemble()
        p = state.get_field_data(self.key).to_numpy("cell")[:, 0]
        return self.operator.compute_negative_residual(p)[: self.n_owned]

    def face_coefficients_(self, state: State) -> np.ndarray:
        """kr·n/μ per face: cell averages inside, boundary kr on exterior faces."""
        krel = state.get_field_data(self.krel_key)
        kr_cell = krel.to_numpy("cell")[:, 0]
        kr_bface = krel.to_numpy("boundary_face")[:, 0]
        n_liq = state.get_field_data(self.molar_dens_key).to_numpy("cell")[:, 0]
        mu = state.get_field_data(self.visc_key).to_numpy("cell")[:, 0]

        coef = np.zeros(self.mesh.n_faces)
        for f, cells in enumerate(self.mesh.face_cells):
            if len(cells) == 2:
                c0, c1 = cells
                coef[f] = 0.5 * (kr_cell[c0] + kr_cell[c1]) * 0.5 * (n_liq[c0] + n_liq[c1]) / (
                    0.5 * (mu[c0] + mu[c1])
                )
            else:
                c = cells[0]
                coef[f] = kr_bface[self._bface_index[f]] * n_liq[c] / mu[c]
        return coef

    def gravity_potentials_(self, state: State) -> np.ndarray:
        """ρ·g·(x_nbr - x_c) per face, seen from the first cell of the face."""
        g = state.get_constant_vector(GRAVITY)
        rho = state.get_field_data(self.rho_key).to_numpy("cell")[:, 0]
        x = self.mesh.cell_centroids
        xf = self.mesh.face_centroids
        pot = np.zeros(self.mesh.n_faces)
        for f, cells in enumerate(self.mesh.face_cells):
            if len(cells) == 2:
                c0, c1 = cells
                pot[f] = 0.5 * (rho[c0] + rho[c1]) * np.dot(g, x[c1] - x[c0])
            else:
                c = cells[0]
                pot[f] = rho[c] * np.dot(g, xf[f] - x[c])
        return pot

    def gravity_rhs_(self, state: State) -> np.ndarray:
        """Gravity contributions to the right-hand side."""
        pot = self.gravity_potentials_(state)
        rhs = np.zeros(self.mesh.n_cells)
        for f, cells in enumerate(self.mesh.face_cells):
            if len(cells) == 2:
                flux = self.operator.face_conductance(f) * pot[f]
                rhs[cells[0]] -= flux
                rhs[cells[1]] += flux
            elif self._bcs.get(f, ("",))[0] == DIRICHLET:
                rhs[cells[0]] -= self.operator.face_conductance(f) * pot[f]
        return rhs

    def add_accumulation_(self, g: np.ndarray, h: float) -> None:
        """g += (wc_new - wc_old) / h."""
        wc_new = self.S_next.get_field_data(self.wc_key).kernel_input("cell")
        wc_old = self.S_inter.get_field_data(self.wc_key).kernel_input("cell")
        add_accumulation(wc_old, wc_new, g, h, self.n_owned)

    def update_preconditioner(self, t: float, u: SolutionVector, h: float) -> None:
        """Newton Jacobian: diffusion matrix, its kr and n derivatives, storage."""
        self.solution_to_state(u, self.S_next)
        self.apply_diffusion_(self.S_next)
        jac = self.operator.matrix

        state = self.S_next
        p = state.get_field_data(self.key).to_numpy("cell")[:, 0]
        pot = self.gravity_potentials_(state)
        kr = state.get_field_data(self.krel_key).to_numpy("cell")[:, 0]
        n_liq = state.get_field_data(self.molar_dens_key).to_numpy("cell")[:, 0]
        mu = state.get_field_data(self.visc_key).to_numpy("cell")[:, 0]
        dkr = state.get_evaluator(self.krel_key).evaluate_partial_derivative(state, self.key)[0]
        eos_ev = state.get_evaluator(self.molar_dens_key)
        dn = eos_ev.evaluate_partial_derivative(state, self.key)[eos_ev.my_keys.index(self.molar_dens_key)]

        for f, cells in enumerate(self.mesh.face_cells):
            trans = self.operator.transmissibility[f]
            if len(cells) == 2:
                c0, c1 = cells
                kr_f, n_f, mu_f = 0.5 * (kr[c0] + kr[c1]), 0.5 * (n_liq[c0] + n_liq[c1]), 0.5 * (mu[c0] + mu[c1])
                phi = trans * (p[c0] - p[c1] + pot[f])
                for c, sign in ((c0, 1.0), (c1, -1.0)):
                    dcoef = 0.5 * (dkr[c] * n_f + kr_f * dn[c]) / mu_f
                    jac[c0, c] += dcoef * phi
                    jac[c1, c] -= dcoef * phi
            elif self._bcs.get(f, ("",))[0] == DIRICHLET:
                c = cells[0]
                phi = trans * (p[c] - self._bcs[f][1] + pot[f])
                jac[c, c] += (dkr[c] * n_liq[c] + kr[c] * dn[c]) / mu[c] * phi

        dwc = state.get_evaluator(self.wc_key).evaluate_partial_derivative(state, self.key)[0]
        n = self.n_owned
        self._jacobian = jac[:n, :n] + np.diag(dwc / h)

    def apply_preconditioner(self, u: SolutionVector, pu: SolutionVector) -> None:
        if self._jacobian is None:
            raise ConfigurationError(f"PK '{self.name}': update_preconditioner was never called")
        pu.sub(self.name)[:] = np.linalg.solve(self._jacobian, u.sub(self.name))

    # Diagnostics

    def total_water_content(self, state: State | None = None) -> float:
        """Σ wc over owned cells [mol]."""
        state = self.S_next if state is None else state
        return float(np.sum(state.get_field_data(self.wc_key).to_numpy("cell", owned=True)))

    def face_fluxes_(self, state: State) -> np.ndarray:
        """Molar flux [mol/s] per face, positive from the first cell of the face outward.

        Exterior faces without a boundary condition are closed.
        """
        self.apply_diffusion_(state)
        p = state.get_field_data(self.key).to_numpy("cell")[:, 0]
        pot = self.gravity_potentials_(state)
        flux = np.zeros(self.mesh.n_faces)
        for f, cells in enumerate(self.mesh.face_cells):
            if len(cells) == 2:
                flux[f] = self.operator.face_conductance(f) * (p[cells[0]] - p[cells[1]] + pot[f])
            elif f in self._bcs:
                kind, value = self._bcs[f]
                if kind == NEUMANN:
                    flux[f] = value
                else:
                    flux[f] = self.operator.face_conductance(f) * (p[cells[0]] - value + pot[f])
        return flux

    def update_flux_(self, state: State) -> None:
        """Publish the face fluxes at the current pressure."""
        flux = self.face_fluxes_(state)
        state.get_field_data(self.flux_key, self.name).from_numpy("face", flux)
        state.get_field(self.flux_key).set_initialized(self.name)
        state.get_evaluator(self.flux_key).set_field_as_changed()

    def accept_solution_(self) -> None:
        self.update_flux_(self.S_next)

    def rollback(self) -> None:
        super().rollback()
        self.update_flux_(self.S_next)

    def boundary_fluxes(self, state: State | None = None) -> dict[int, float]:
        """Outward molar flux [mol/s] through each boundary-conditioned face at the current pressure."""
        state = self.S_next if state is None else state
        flux = self.face_fluxes_(state)
        return {f: float(flux[f]) for f in self._bcs}

    def commit_state(self, t_old: float, t_new: float, state: State) -> None:
        flux = state.get_field_data(self.flux_key).to_numpy("face")[:, 0]
        self.mass_balance.record(float(sum(flux[f] for f in self._bcs)), t_new - t_old)
        super().commit_state(t_old, t_new, state)

    def calculate_diagnostics(self, state: State) -> None:
        total = self.total_water_content(state)
        expected = self.mass_balance.expected()
        self.logger.debug(
            "%s: total water content %.6e mol (expected %.6e, relative error %.2e)",
            self.name, total, expected, abs(total - expected) / max(abs(expected), 1e-300),
        )
