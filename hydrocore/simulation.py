"""Outer time loop driving a PK tree over one shared State.

Each cycle proposes dt from the root PK, clipped to the end time, and
advances. A failed advance leaves the PK state as it was at t_old; the
driver shrinks dt and retries, and gives up once dt falls below min_dt.
"""

from dataclasses import dataclass, field

from hydrocore.core.mesh import column_mesh, surface_mesh
from hydrocore.errors import HydroCoreError
from hydrocore.evaluators.independent import IndependentVariableEvaluator
from hydrocore.evaluators.wrm import ATMOSPHERIC_PRESSURE
from hydrocore.fields.state import State
from hydrocore.logging_config import get_logger
from hydrocore.params.schema import SimulationConfig, TimestepParams
from hydrocore.pks.base import PKBase
from hydrocore.pks.registry import PKRegistry, get_registry
from hydrocore.pks.richards import GRAVITY

DRIVER = "simulation"


class TimestepCrash(HydroCoreError):
    """The step size fell below the minimum while retrying a failed advance."""


@dataclass
class RunSummary:
    """Counters from one run."""

    cycles: int = 0
    failed_attempts: int = 0
    final_time: float = 0.0
    dt_history: list[float] = field(default_factory=list)


class Simulation:
    """Drives the root PK from t_start to t_end."""

    def __init__(self, pk: PKBase, state: State, params: TimestepParams | None = None, logger=None):
        self.pk = pk
        self.state = state
        self.params = params or TimestepParams()
        self.logger = logger or get_logger("simulation")
        self.summary = RunSummary(final_time=self.params.t_start)
        self._initialized = False

    @property
    def time(self) -> float:
        return self.state.time

    def setup(self) -> None:
        """Let the PK tree declare its fields, then resolve the State."""
        self.pk.setup(self.state)
        self.state.setup()
        self.logger.info(
            "State set up: %d evaluators, order %s",
            len(self.state.evaluation_order), self.state.evaluation_order,
        )

    def initialize(self) -> None:
        self.state.time = self.params.t_start
        self.pk.initialize(self.state)
        self._initialized = True

    def advance(self) -> float:
        """Advance one cycle, retrying with smaller steps on failure.

        Returns:
            The step size that succeeded

        Raises:
            TimestepCrash: If dt drops below min_dt
        """
        if not self._initialized:
            raise HydroCoreError("Simulation not initialized")
        p = self.params
        t_old = self.state.time
        dt = min(self.pk.get_dt(), p.max_dt, p.t_end - t_old)

        while True:
            if dt < p.min_dt:
                raise TimestepCrash(f"dt {dt:.3e} below min_dt {p.min_dt:.3e} at t = {t_old:.6g}")
            t_new = t_old + dt
            self.state.time = t_new
            result = self.pk.advance_step(t_old, t_new)
            if result.success:
                break
            self.state.time = t_old
            self.summary.failed_attempts += 1
            self.logger.warning(
                "Step %.3e failed at t = %.6g (%s: %s); retrying with %.3e",
                dt, t_old, result.failure.pk_name, result.failure.reason, dt * p.dt_reduction,
            )
            dt *= p.dt_reduction
            self.pk.set_dt(dt)

        self.pk.commit_state(t_old, t_new, self.state)
        self.pk.calculate_diagnostics(self.state)
        self.state.cycle += 1
        self.summary.cycles += 1
        self.summary.final_time = t_new
        self.summary.dt_history.append(dt)
        self.logger.debug("Cycle %d: t = %.6g, dt = %.3e", self.summary.cycles, t_new, dt)
        return dt

    def run(self) -> RunSummary:
        """Advance until t_end or max_cycles."""
        p = self.params
        # relative slack for float accumulation in t
        end_tol = 1e-12 * max(1.0, abs(p.t_end))
        while self.state.time < p.t_end - end_tol:
            if self.summary.cycles >= p.max_cycles:
                self.logger.warning("Stopping at max_cycles = %d, t = %.6g", p.max_cycles, self.state.time)
                break
            self.advance()
        self.logger.info(
            "Run finished: %d cycles, %d failed attempts, t = %.6g",
            self.summary.cycles, self.summary.failed_attempts, self.state.time,
        )
        return self.summary


def build_state(config: SimulationConfig) -> State:
    """State with the meshes, the driver's constants and any configured independent fields."""
    m = config.mesh
    state = State()
    mesh = column_mesh(m.n_cells, m.dz, m.area, m.z_bottom)
    state.register_mesh(mesh)
    if m.surface:
        state.register_mesh(surface_mesh(mesh))
    state.set_scalar(ATMOSPHERIC_PRESSURE, DRIVER, config.atmospheric_pressure)
    state.set_constant_vector(GRAVITY, DRIVER, config.gravity)
    for key, params in config.independent_variables.items():
        state.set_evaluator(IndependentVariableEvaluator(key, params, params.num_dofs, entity=params.entity))
    return state


def build_simulation(
    config: SimulationConfig,
    registry: PKRegistry | None = None,
    logger=None,
) -> Simulation:
    """Build, set up and initialize a simulation from a configuration."""
    registry = registry or get_registry()
    state = build_state(config)
    pk = registry.create(config.root_pk, config)
    sim = Simulation(pk, state, config.timestep, logger)
    sim.setup()
    sim.initialize()
    return sim
