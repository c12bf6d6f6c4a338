"""
Multi-process couplers.

MPC: owns an ordered list of child PKs and forwards lifecycle calls;
    the proposed step is the minimum over children.
WeakMPC: advances children one after another over the same interval and
    stops at the first failure (sequential splitting, no iteration).
StrongMPC: one implicit solve over the concatenated children's solution
    vectors, preconditioned block-diagonally or with the coupling
    blocks included.
"""

from typing import Sequence

import numpy as np

from hydrocore.errors import ConfigurationError
from hydrocore.fields.state import State
from hydrocore.params.schema import MPCParams
from hydrocore.pks.base import PKBase
from hydrocore.pks.protocol import ResidualFunction, StepResult
from hydrocore.pks.solution import SolutionLayout, SolutionVector
from hydrocore.time_integration import BackwardEuler, NonlinearResult


class MPC(PKBase):
    """Coupler over an ordered list of children.

    Attributes:
        sub_pks: Children in the order they were declared
    """

    def __init__(self, params: MPCParams, sub_pks: Sequence[PKBase], logger=None):
        super().__init__(params, logger)
        if not sub_pks:
            raise ConfigurationError(f"MPC '{params.name}' has no children")
        names = [pk.name for pk in sub_pks]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"MPC '{params.name}' has duplicate children {names}")
        self.sub_pks = list(sub_pks)

    def setup(self, state: State) -> None:
        super().setup(state)
        for pk in self.sub_pks:
            pk.setup(state)

    def initialize(self, state: State) -> None:
        for pk in self.sub_pks:
            pk.initialize(state)
        super().initialize(state)

    def get_dt(self) -> float:
        """Minimum of the children's proposals."""
        return min(pk.get_dt() for pk in self.sub_pks)

    def set_dt(self, dt: float) -> None:
        super().set_dt(dt)
        for pk in self.sub_pks:
            pk.set_dt(dt)

    def begin_step(self, t_old: float, t_new: float) -> None:
        for pk in self.sub_pks:
            pk.begin_step(t_old, t_new)

    def rollback(self) -> None:
        for pk in self.sub_pks:
            pk.rollback()

    def accept_solution_(self) -> None:
        for pk in self.sub_pks:
            pk.accept_solution_()

    def commit_state(self, t_old: float, t_new: float, state: State) -> None:
        for pk in self.sub_pks:
            pk.commit_state(t_old, t_new, state)
        super().commit_state(t_old, t_new, state)

    def calculate_diagnostics(self, state: State) -> None:
        for pk in self.sub_pks:
            pk.calculate_diagnostics(state)

    # Solution vector

    def register_solution(self, layout: SolutionLayout) -> None:
        for pk in self.sub_pks:
            pk.register_solution(layout)
        layout.register_span(self.name, self.sub_pks[0].name, self.sub_pks[-1].name)

    def state_to_solution(self, state: State, soln: SolutionVector) -> None:
        for pk in self.sub_pks:
            pk.state_to_solution(state, soln)

    def solution_to_state(self, soln: SolutionVector, state: State) -> None:
        for pk in self.sub_pks:
            pk.solution_to_state(soln, state)


class WeakMPC(MPC):
    """Sequential coupler: each child advances over [t_old, t_new] in order.

    The first failing child ends the step; later children are not
    advanced and the earlier ones are rolled back by ``rollback``.
    """

    def advance_(self, t_old: float, t_new: float) -> StepResult:
        for pk in self.sub_pks:
            result = pk.advance_step(t_old, t_new)
            if result.failed:
                self.logger.debug("%s: child %s failed, stopping", self.name, pk.name)
                return result
        return StepResult.ok()


class StrongMPC(MPC):
    """Monolithic implicit coupler over ResidualFunction children.

    With preconditioner "fully coupled" the off-diagonal blocks (how one
    child's residual responds to another child's unknowns) are built by
    forward differences of the composite residual, and the preconditioner
    solves the full system by block Jacobi sweeps around the children's
    own preconditioners.

    Attributes:
        last_solve: Outcome of the most recent nonlinear solve
    """

    def setup(self, state: State) -> None:
        for pk in self.sub_pks:
            if not isinstance(pk, ResidualFunction):
                raise ConfigurationError(
                    f"StrongMPC '{self.name}': child '{pk.name}' has no residual"
                )
        super().setup(state)

    def initialize(self, state: State) -> None:
        super().initialize(state)
        self.layout = SolutionLayout()
        self.register_solution(self.layout)
        self.integrator = BackwardEuler(self, self.params.solver, self.logger)
        self.last_solve: NonlinearResult | None = None
        self._u_old: SolutionVector | None = None
        self._coupling: np.ndarray | None = None

    @property
    def fully_coupled(self) -> bool:
        return self.params.preconditioner == "fully coupled"

    def advance_(self, t_old: float, t_new: float) -> StepResult:
        u_old = SolutionVector(self.layout)
        self.state_to_solution(self.S_next, u_old)
        u = u_old.copy()

        result = self.integrator.step(t_old, t_new, u_old, u)
        self.last_solve = result
        if not result.converged:
            return StepResult.fail(self.name, result.reason)

        self.solution_to_state(u, self.S_next)
        self.accept_solution_()
        self.set_dt(self.integrator.suggest_dt(t_new - t_old, result.iterations))
        return StepResult.ok()

    # ResidualFunction

    def residual(self, t_old, t_new, u_old, u_new, f) -> None:
        self._u_old = u_old
        for pk in self.sub_pks:
            pk.residual(t_old, t_new, u_old, u_new, f)

    def update_preconditioner(self, t, u, h) -> None:
        for pk in self.sub_pks:
            pk.update_preconditioner(t, u, h)
        if self.fully_coupled:
            self._coupling = self.coupling_blocks_(t, u, h)

    def coupling_blocks_(self, t: float, u: SolutionVector, h: float) -> np.ndarray:
        """Off-diagonal blocks of ∂f/∂u over this coupler's span, by forward differences.

        Entries inside one child's own block are zero; those belong to the
        child's preconditioner.

        Raises:
            ConfigurationError: If no residual has been evaluated yet
        """
        if self._u_old is None:
            raise ConfigurationError(f"StrongMPC '{self.name}': coupling blocks need a residual first")
        span = u.layout.slice_of(self.name)
        block_of = np.zeros(span.stop - span.start, dtype=np.int64)
        for i, pk in enumerate(self.sub_pks):
            sl = u.layout.slice_of(pk.name)
            block_of[sl.start - span.start : sl.stop - span.start] = i

        t_old = t - h
        f0 = u.zeros_like()
        self.residual(t_old, t, self._u_old, u, f0)
        up = u.copy()
        fp = u.zeros_like()
        jac = np.zeros((block_of.size, block_of.size))
        for k, j in enumerate(range(span.start, span.stop)):
            eps = 1e-7 * max(abs(u.data[j]), 1.0)
            up.data[j] += eps
            self.residual(t_old, t, self._u_old, up, fp)
            jac[:, k] = (fp.data[span] - f0.data[span]) / eps
            up.data[j] = u.data[j]

        jac[block_of[:, None] == block_of[None, :]] = 0.0
        # the residual left the last perturbed unknowns in the state
        self.solution_to_state(u, self.S_next)
        return jac

    def apply_preconditioner(self, u, pu) -> None:
        for pk in self.sub_pks:
            pk.apply_preconditioner(u, pu)
        if self.fully_coupled:
            self.apply_coupling_preconditioner_(u, pu)

    def apply_coupling_preconditioner_(self, u, pu) -> None:
        """Block Jacobi sweeps pu ← D⁻¹(u - C·pu), starting from pu = D⁻¹u.

        D is the children's preconditioners, C the coupling blocks.
        """
        if self._coupling is None:
            raise ConfigurationError(f"StrongMPC '{self.name}': update_preconditioner was never called")
        span = u.layout.slice_of(self.name)
        rhs = u.zeros_like()
        for _ in range(self.params.coupling_sweeps):
            rhs.data[span] = u.data[span] - self._coupling @ pu.data[span]
            for pk in self.sub_pks:
                pk.apply_preconditioner(rhs, pu)

    def error_norm(self, u, du) -> float:
        """Maximum over children."""
        return float(np.max([pk.error_norm(u, du) for pk in self.sub_pks]))
