"""Convergence tracking for a single nonlinear solve.

The monitor is a small state machine:

    ITERATING -> CONVERGED | DIVERGED | ITERATION_LIMIT

After every Newton iteration k >= 1 the solver reports the residual norm
r_k and the update norm s_k. The solve has converged when any of

    r_k <= absolute_residual_tolerance
    r_k <= relative_residual_tolerance * r_0
    s_k <= absolute_step_tolerance
    s_k <= relative_step_tolerance * max_step_seen

holds. Checking both residual and update norms, each in absolute and
relative form, stops ill-scaled residuals from ending the solve too early
and plateauing residuals from stalling it.

While iterating, the monitor also owns the tolerance handed to the next
linear solve. It starts at ``initial_linear_tolerance`` and only ever
tightens, tracking the current residual norm.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional

from jax import Array

from adaptive_time._logging import logger
from adaptive_time.analysis.norms import NormEvaluator, VariableDofs
from adaptive_time.analysis.options import NonlinearSolverOptions

# Guards the divergence ratio against a zero initial residual
_TINY = 1e-300


class ConvergenceStatus(Enum):
    """Outcome of a nonlinear solve."""

    ITERATING = "iterating"
    CONVERGED = "converged"
    DIVERGED = "diverged"
    ITERATION_LIMIT = "iteration_limit"

    @property
    def is_terminal(self) -> bool:
        return self is not ConvergenceStatus.ITERATING


@dataclass
class ConvergenceState:
    """Per-solve iteration record.

    Attributes:
        iteration: Completed Newton iterations (0 before the first update)
        residual_norm: Latest residual norm
        step_norm: Latest update norm (0.0 before the first update)
        max_residual_seen: Largest residual norm seen, including r_0
        max_step_seen: Largest update norm seen
        initial_residual_norm: r_0, reference for the relative criteria
    """

    iteration: int = 0
    residual_norm: float = 0.0
    step_norm: float = 0.0
    max_residual_seen: float = 0.0
    max_step_seen: float = 0.0
    initial_residual_norm: float = 0.0


@dataclass
class NonlinearConvergenceMonitor:
    """Classifies the progress of one nonlinear solve.

    Create one per solve, call ``start`` with the initial residual and then
    ``update`` (vectors) or ``record`` (precomputed norms) once per
    iteration until ``status.is_terminal``.

    Attributes:
        options: Stopping criteria and linear tolerance schedule
        norm: Evaluator used for residual and update vectors
        weights: Optional per-variable weights for the norms
        variable_dofs: Optional variable layout for the norms
    """

    options: NonlinearSolverOptions = field(default_factory=NonlinearSolverOptions)
    norm: NormEvaluator = field(default_factory=NormEvaluator)
    weights: Optional[Mapping[int, float]] = None
    variable_dofs: Optional[VariableDofs] = None

    status: ConvergenceStatus = field(default=ConvergenceStatus.ITERATING, init=False)
    state: Optional[ConvergenceState] = field(default=None, init=False)
    linear_tolerance: float = field(default=0.0, init=False)
    reason: str = field(default="", init=False)
    history: List[float] = field(default_factory=list, init=False)

    def start(self, residual: Array) -> ConvergenceStatus:
        """Begin a solve from the initial residual vector."""
        return self.start_norm(self._norm_of(residual))

    def start_norm(self, residual_norm: float) -> ConvergenceStatus:
        """Begin a solve from a precomputed initial residual norm.

        A residual already within ``absolute_residual_tolerance`` converges
        immediately at iteration 0.
        """
        residual_norm = float(residual_norm)
        self.state = ConvergenceState(
            iteration=0,
            residual_norm=residual_norm,
            step_norm=0.0,
            max_residual_seen=residual_norm,
            max_step_seen=0.0,
            initial_residual_norm=residual_norm,
        )
        self.linear_tolerance = self.options.initial_linear_tolerance
        self.history = [residual_norm]
        self.reason = ""
        self.status = ConvergenceStatus.ITERATING

        if not math.isfinite(residual_norm):
            self._finish(ConvergenceStatus.DIVERGED, "non-finite initial residual")
        elif residual_norm <= self.options.absolute_residual_tolerance:
            self._finish(ConvergenceStatus.CONVERGED, "absolute residual")
        return self.status

    def update(self, residual: Array, step: Array) -> ConvergenceStatus:
        """Record one completed iteration from its residual and update vectors."""
        return self.record(self._norm_of(residual), self._norm_of(step))

    def record(self, residual_norm: float, step_norm: float) -> ConvergenceStatus:
        """Record one completed iteration from precomputed norms.

        Returns:
            The status after this iteration
        """
        if self.state is None:
            raise RuntimeError("start() must be called before recording iterations")
        if self.status.is_terminal:
            raise RuntimeError(f"Solve already finished with status {self.status.value}")

        opts = self.options
        st = self.state
        residual_norm = float(residual_norm)
        step_norm = float(step_norm)

        st.iteration += 1
        st.residual_norm = residual_norm
        st.step_norm = step_norm
        self.history.append(residual_norm)

        if not (math.isfinite(residual_norm) and math.isfinite(step_norm)):
            return self._finish(ConvergenceStatus.DIVERGED, "non-finite norm")

        st.max_residual_seen = max(st.max_residual_seen, residual_norm)
        st.max_step_seen = max(st.max_step_seen, step_norm)

        if residual_norm <= opts.absolute_residual_tolerance:
            return self._finish(ConvergenceStatus.CONVERGED, "absolute residual")
        if residual_norm <= opts.relative_residual_tolerance * st.initial_residual_norm:
            return self._finish(ConvergenceStatus.CONVERGED, "relative residual")
        if step_norm <= opts.absolute_step_tolerance:
            return self._finish(ConvergenceStatus.CONVERGED, "absolute step")
        if step_norm <= opts.relative_step_tolerance * st.max_step_seen:
            return self._finish(ConvergenceStatus.CONVERGED, "relative step")

        if opts.divergence_factor and residual_norm > opts.divergence_factor * max(
            st.initial_residual_norm, _TINY
        ):
            return self._finish(ConvergenceStatus.DIVERGED, "residual growth")

        if st.iteration >= opts.max_nonlinear_iterations:
            return self._finish(ConvergenceStatus.ITERATION_LIMIT, "iteration limit")

        # Still iterating: tighten the next linear solve
        self.linear_tolerance = max(
            opts.minimum_linear_tolerance,
            min(self.linear_tolerance, opts.linear_tolerance_multiplier * residual_norm),
        )
        return self.status

    @property
    def iteration(self) -> int:
        return 0 if self.state is None else self.state.iteration

    def _finish(self, status: ConvergenceStatus, reason: str) -> ConvergenceStatus:
        self.status = status
        self.reason = reason
        st = self.state
        logger.debug(
            f"Nonlinear solve {status.value} ({reason}) after {st.iteration} iters, "
            f"|r|={st.residual_norm:.3e} |dx|={st.step_norm:.3e}"
        )
        return status

    def _norm_of(self, vector: Array) -> float:
        return self.norm.evaluate(vector, self.weights, self.variable_dofs)
