"""
Process-kernel protocol definitions.

A process kernel (PK) advances part of the physical state from t_old to
t_new. Leaves solve one physical process; couplers (MPCs) compose
children. Both implement ProcessKernel, so trees of arbitrary depth are
built from the same interface.

PKs that expose a nonlinear residual for implicit integration also
implement ResidualFunction.

Recoverable failures (solver divergence, negative concentrations) are
returned as a StepResult carrying a PhysicsFailure, never raised.
"""

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Protocol, runtime_checkable


class PKStatus(Enum):
    """Lifecycle of a PK."""

    UNINITIALIZED = auto()
    INITIALIZED = auto()
    PROPOSING = auto()  # after a failed advance: a new dt is needed
    ADVANCING = auto()
    COMMITTED = auto()


@dataclass(frozen=True)
class PhysicsFailure:
    """Recoverable physics failure.

    Attributes:
        pk_name: PK that failed
        reason: Human-readable cause
    """

    pk_name: str
    reason: str


@dataclass(frozen=True)
class StepResult:
    """Outcome of advance_step.

    Attributes:
        failure: None on success
    """

    failure: PhysicsFailure | None = None

    @property
    def success(self) -> bool:
        return self.failure is None

    @property
    def failed(self) -> bool:
        return self.failure is not None

    @classmethod
    def ok(cls) -> "StepResult":
        return cls()

    @classmethod
    def fail(cls, pk_name: str, reason: str) -> "StepResult":
        return cls(PhysicsFailure(pk_name, reason))


@runtime_checkable
class ProcessKernel(Protocol):
    """Interface shared by leaf PKs and couplers."""

    @property
    def name(self) -> str:
        """Unique PK name."""
        ...

    def setup(self, state: Any) -> None:
        """Require fields and register evaluators (before State.setup)."""
        ...

    def initialize(self, state: Any) -> None:
        """Set initial values (after State.setup)."""
        ...

    def get_dt(self) -> float:
        """Proposed timestep [s]. Pure: no state changes."""
        ...

    def advance_step(self, t_old: float, t_new: float) -> StepResult:
        """Advance owned state from t_old to t_new.

        On failure, owned state is left as it was at t_old.
        """
        ...

    def commit_state(self, t_old: float, t_new: float, state: Any) -> None:
        """Accept the step."""
        ...

    def calculate_diagnostics(self, state: Any) -> None:
        """Update derived output quantities."""
        ...


@runtime_checkable
class ResidualFunction(Protocol):
    """Nonlinear residual interface for implicit time integration.

    Vectors are hydrocore.pks.solution.SolutionVector instances.
    """

    def residual(self, t_old: float, t_new: float, u_old: Any, u_new: Any, f: Any) -> None:
        """f(u_new) for a backward Euler step from t_old to t_new."""
        ...

    def apply_preconditioner(self, u: Any, pu: Any) -> None:
        """pu = P·u."""
        ...

    def update_preconditioner(self, t: float, u: Any, h: float) -> None:
        """Rebuild P at (t, u) for step size h."""
        ...

    def error_norm(self, u: Any, du: Any) -> float:
        """Scaled update size; < 1 means converged."""
        ...
