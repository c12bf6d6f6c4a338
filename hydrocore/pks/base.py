"""
Base classes for process kernels.

PKBase carries the lifecycle every PK shares (name, logger, dt proposal,
status, failure handling). PhysicalPK adds a primary variable: a cell
field owned by the PK, its leaf evaluator, a rollback copy taken at the
start of every step, and the mapping between that field and a slice of a
SolutionVector.
"""

from abc import ABC, abstractmethod
from typing import Any

import numpy as np

from hydrocore.errors import ConfigurationError, ConsistencyError, InitializationError
from hydrocore.evaluators.primary import PrimaryVariableEvaluator
from hydrocore.fields.base import FieldData, FieldTemplate, get_key
from hydrocore.fields.state import State
from hydrocore.logging_config import get_logger
from hydrocore.params.schema import PKParams
from hydrocore.pks.protocol import PKStatus, StepResult
from hydrocore.pks.solution import SolutionLayout, SolutionVector


class PKBase(ABC):
    """Lifecycle shared by leaf PKs and couplers.

    Subclasses implement ``advance_``. ``advance_step`` validates the
    interval, calls ``begin_step``, and on failure calls ``rollback`` so
    owned state is back at t_old.

    Attributes:
        params: PK parameters
        logger: Logger for this PK
        status: Lifecycle status
        S_next: State being advanced (set in setup)
    """

    def __init__(self, params: PKParams, logger=None):
        self.params = params
        self.logger = logger or get_logger(f"pk.{params.name}")
        self.status = PKStatus.UNINITIALIZED
        self.S_next: State | None = None
        self._dt = params.initial_dt

    @property
    def name(self) -> str:
        return self.params.name

    @property
    def domain(self) -> str:
        return self.params.domain

    def setup(self, state: State) -> None:
        self.S_next = state

    def initialize(self, state: State) -> None:
        self.status = PKStatus.INITIALIZED

    def get_dt(self) -> float:
        return self._dt

    def set_dt(self, dt: float) -> None:
        """Set the next proposal, capped at max_dt."""
        self._dt = min(dt, self.params.max_dt)

    def advance_step(self, t_old: float, t_new: float) -> StepResult:
        """Advance from t_old to t_new, rolling back on failure.

        Raises:
            ConfigurationError: If called before initialize
            ConsistencyError: If t_new <= t_old
        """
        if self.status == PKStatus.UNINITIALIZED:
            raise ConfigurationError(f"PK '{self.name}' advanced before initialize()")
        if not t_new > t_old:
            raise ConsistencyError(f"PK '{self.name}': non-positive step from {t_old} to {t_new}")

        self.status = PKStatus.ADVANCING
        self.begin_step(t_old, t_new)
        result = self.advance_(t_old, t_new)
        if result.failed:
            self.rollback()
            self.status = PKStatus.PROPOSING
            self.logger.debug("%s failed: %s", self.name, result.failure.reason)
        return result

    @abstractmethod
    def advance_(self, t_old: float, t_new: float) -> StepResult:
        """Step implementation."""
        ...

    def begin_step(self, t_old: float, t_new: float) -> None:
        """Save whatever rollback needs."""

    def accept_solution_(self) -> None:
        """Refresh quantities derived from a newly solved state."""

    def rollback(self) -> None:
        """Restore owned state to its value at the last begin_step."""

    def commit_state(self, t_old: float, t_new: float, state: State) -> None:
        self.status = PKStatus.COMMITTED

    def calculate_diagnostics(self, state: State) -> None:
        pass

    # Implicit solution interface, for PKs that have one

    def register_solution(self, layout: SolutionLayout) -> None:
        raise ConfigurationError(f"PK '{self.name}' has no implicit solution")

    def state_to_solution(self, state: State, soln: SolutionVector) -> None:
        raise ConfigurationError(f"PK '{self.name}' has no implicit solution")

    def solution_to_state(self, soln: SolutionVector, state: State) -> None:
        raise ConfigurationError(f"PK '{self.name}' has no implicit solution")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class PhysicalPK(PKBase):
    """PK owning one primary cell field.

    Attributes:
        key: Primary variable key
        mesh: Mesh of the PK's domain (set in setup)
    """

    variable_name = "primary"

    def __init__(self, params: PKParams, logger=None):
        super().__init__(params, logger)
        self.key = params.primary_key or get_key(params.domain, self.variable_name)
        self.mesh = None
        self._rollback_data: FieldData | None = None

    def primary_template(self, mesh) -> FieldTemplate:
        """Structure of the primary variable."""
        return FieldTemplate.cells(mesh)

    @property
    def n_owned(self) -> int:
        return self.mesh.n_owned_cells

    @property
    def num_dofs(self) -> int:
        return self.S_next.get_field(self.key).template.component("cell").num_dofs

    def setup(self, state: State) -> None:
        super().setup(state)
        self.mesh = state.get_mesh(self.domain)
        state.require_field(self.key, owner=self.name, template=self.primary_template(self.mesh))
        if not state.has_evaluator(self.key):
            state.set_evaluator(PrimaryVariableEvaluator(self.key))

    def initialize(self, state: State) -> None:
        """Apply the initial condition and allocate the rollback copy.

        Raises:
            InitializationError: If the primary variable has no initial value
        """
        field = state.get_field(self.key)
        ic = getattr(self.params, "initial_condition", None)
        if ic is not None:
            field.initialize(self.name, ic.constants, ic.blocks)
        if not field.initialized:
            raise InitializationError(f"PK '{self.name}': no initial condition for '{self.key}'")
        self._rollback_data = field.read_data().copy(f"{self.key}@t_old", self.name)
        self.changed_solution(state)
        super().initialize(state)

    def changed_solution(self, state: State | None = None) -> None:
        """Tell the primary evaluator its field was written."""
        state = self.S_next if state is None else state
        if state.has_evaluator(self.key):
            state.get_evaluator(self.key).set_field_as_changed()

    def begin_step(self, t_old: float, t_new: float) -> None:
        self._rollback_data.assign(self.S_next.get_field(self.key).read_data())

    def rollback(self) -> None:
        self.S_next.get_field_data(self.key, self.name).assign(self._rollback_data)
        self.changed_solution()

    def register_solution(self, layout: SolutionLayout) -> None:
        layout.register(self.name, self.n_owned * self.num_dofs)

    def state_to_solution(self, state: State, soln: SolutionVector) -> None:
        values = state.get_field(self.key).read_data().to_numpy("cell", owned=True)
        soln.sub(self.name)[:] = values.reshape(-1)

    def solution_to_state(self, soln: SolutionVector, state: State) -> None:
        data = state.get_field_data(self.key, self.name)
        data.from_numpy("cell", soln.sub(self.name).reshape(self.n_owned, self.num_dofs))
        self.changed_solution(state)

    def error_norm(self, u: SolutionVector, du: SolutionVector) -> float:
        """max |du| / (atol + rtol·|u|) over this PK's entries."""
        uu = u.sub(self.name)
        dd = du.sub(self.name)
        if dd.size == 0:
            return 0.0
        tol = self.params.tolerance
        return float(np.max(np.abs(dd) / (tol.atol + tol.rtol * np.abs(uu))))

    def primary_values(self, state: State | None = None) -> np.ndarray:
        """Copy of the primary variable (owned + ghost cells)."""
        state = self.S_next if state is None else state
        return state.get_field_data(self.key).to_numpy("cell")

    def ensure_evaluator(self, state: State, evaluator: Any) -> None:
        """Register evaluator unless its keys already have one."""
        if not any(state.has_evaluator(k) for k in evaluator.my_keys):
            state.set_evaluator(evaluator)
