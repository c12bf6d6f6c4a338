"""
Implicit time integration.

BackwardEuler solves f(u_new) = 0 for one step with a preconditioned
fixed-point (Newton-like) iteration:

    repeat:
        f  = residual(t_old, t_new, u_old, u)
        P  = update_preconditioner(t_new, u, h)
        du = P·f
        u  = u - du
    until error_norm(u, du) <= 1

Divergence, non-finite values, a singular preconditioner or running out
of iterations end the solve with converged=False; the caller turns that
into a PhysicsFailure.
"""

from dataclasses import dataclass
from typing import Any

import numpy as np

from hydrocore.errors import ConsistencyError
from hydrocore.logging_config import get_logger
from hydrocore.params.schema import SolverParams


@dataclass(frozen=True)
class NonlinearResult:
    """Outcome of one implicit solve.

    Attributes:
        converged: Whether the error norm dropped to 1 or below
        iterations: Iterations taken
        error: Last error norm
        reason: Why the solve stopped, if it failed
    """

    converged: bool
    iterations: int
    error: float
    reason: str = ""


class BackwardEuler:
    """First-order implicit integrator.

    fn implements hydrocore.pks.protocol.ResidualFunction; vectors are
    hydrocore.pks.solution.SolutionVector.
    """

    def __init__(self, fn: Any, params: SolverParams | None = None, logger=None):
        self.fn = fn
        self.params = params or SolverParams()
        self.logger = logger or get_logger("time_integration")

    def step(
        self,
        t_old: float,
        t_new: float,
        u_old: Any,
        u: Any,
    ) -> NonlinearResult:
        """Solve for u at t_new in place, starting from the given u.

        Raises:
            ConsistencyError: If t_new <= t_old
        """
        if not t_new > t_old:
            raise ConsistencyError(f"Non-positive step from {t_old} to {t_new}")
        h = t_new - t_old
        f = u.zeros_like()
        du = u.zeros_like()
        error = float("inf")

        for iteration in range(1, self.params.max_iterations + 1):
            self.fn.residual(t_old, t_new, u_old, u, f)
            if not np.all(np.isfinite(f.data)):
                return NonlinearResult(False, iteration, error, "non-finite residual")

            self.fn.update_preconditioner(t_new, u, h)
            try:
                self.fn.apply_preconditioner(f, du)
            except np.linalg.LinAlgError as err:
                return NonlinearResult(False, iteration, error, f"singular preconditioner: {err}")

            u.data -= du.data
            error = self.fn.error_norm(u, du)
            self.logger.debug("  iteration %d: error %.3e", iteration, error)

            if not np.isfinite(error) or error > self.params.divergence_norm:
                return NonlinearResult(False, iteration, error, f"diverged (error {error:.3e})")
            if error <= 1.0:
                return NonlinearResult(True, iteration, error)

        return NonlinearResult(
            False, self.params.max_iterations, error,
            f"no convergence in {self.params.max_iterations} iterations (error {error:.3e})",
        )

    def suggest_dt(self, dt: float, iterations: int) -> float:
        """Next step size from the iteration count of the last solve."""
        if iterations <= self.params.increase_below:
            return dt * self.params.increase_factor
        if iterations >= self.params.reduce_above:
            return dt * self.params.reduction_factor
        return dt
