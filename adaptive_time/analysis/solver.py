"""Newton-Raphson solver driven by NonlinearConvergenceMonitor.

The system to solve is R(x) = 0 for the residual R assembled by the
caller. Each iteration:

    J(x_k) * delta = -R(x_k)        (linear solve, tolerance from monitor)
    x_{k+1} = x_k + step_scale * delta

The loop is a plain Python loop rather than lax.while_loop: the monitor's
state machine, the linear tolerance schedule and the per-iteration logging
all run on the host between device calls.
"""

import math
from typing import Callable, Mapping, NamedTuple, Optional, Tuple

import jax.numpy as jnp
from jax import Array

from adaptive_time.analysis.convergence import ConvergenceStatus, NonlinearConvergenceMonitor
from adaptive_time.analysis.linear import DenseLinearSolver, LinearSolver
from adaptive_time.analysis.norms import NormEvaluator, VariableDofs
from adaptive_time.analysis.options import NonlinearSolverOptions

BuildSystemFn = Callable[[Array], Tuple[Array, Array]]


class NRResult(NamedTuple):
    """Result from the Newton-Raphson solver.

    Attributes:
        x: Converged iterate, or the iterate with the smallest residual
            norm if the solve failed
        iterations: Number of Newton iterations performed
        status: Terminal convergence status
        residual_norm: Residual norm of ``x``
        step_norm: Norm of the last applied update
        reason: Which criterion ended the solve
    """

    x: Array
    iterations: int
    status: ConvergenceStatus
    residual_norm: float
    step_norm: float
    reason: str

    @property
    def converged(self) -> bool:
        return self.status is ConvergenceStatus.CONVERGED


def newton_solve(
    build_system_fn: BuildSystemFn,
    x_init: Array,
    options: Optional[NonlinearSolverOptions] = None,
    linear_solver: Optional[LinearSolver] = None,
    norm: Optional[NormEvaluator] = None,
    weights: Optional[Mapping[int, float]] = None,
    variable_dofs: Optional[VariableDofs] = None,
) -> NRResult:
    """Solve R(x) = 0 by Newton iteration.

    Args:
        build_system_fn: Function x -> (Jacobian, residual). Called once for
            the initial guess and once per iteration.
        x_init: Initial guess
        options: Stopping criteria (uses defaults if None)
        linear_solver: Linear solve entry point (dense LU if None)
        norm: Norm used for residual and update vectors
        weights: Optional per-variable norm weights
        variable_dofs: Optional variable layout for the norms

    Returns:
        NRResult; on failure ``x`` is the best iterate seen, starting from
        ``x_init``
    """
    if options is None:
        options = NonlinearSolverOptions()
    options.validate()
    if linear_solver is None:
        linear_solver = DenseLinearSolver()

    monitor = NonlinearConvergenceMonitor(
        options=options,
        norm=norm or NormEvaluator(),
        weights=weights,
        variable_dofs=variable_dofs,
    )

    x = jnp.asarray(x_init)
    J, f = build_system_fn(x)
    status = monitor.start(f)
    best_x, best_norm = x, monitor.state.residual_norm

    while not status.is_terminal:
        lin = linear_solver.solve(
            J,
            -f,
            tolerance=monitor.linear_tolerance,
            max_iterations=options.max_linear_iterations,
        )
        delta = lin.x

        # Apply damping and step limiting
        step_scale = options.damping
        if options.max_step:
            delta_max = float(jnp.max(jnp.abs(delta))) if delta.size else 0.0
            step_scale = min(step_scale, options.max_step / (delta_max + 1e-300))
        delta = step_scale * delta

        x = x + delta
        J, f = build_system_fn(x)
        status = monitor.update(f, delta)
        # Any finite residual beats a non-finite r_0
        r = monitor.state.residual_norm
        if math.isfinite(r) and not r >= best_norm:
            best_x, best_norm = x, r

    st = monitor.state
    residual_norm = st.residual_norm
    if status is not ConvergenceStatus.CONVERGED:
        x, residual_norm = best_x, best_norm
    return NRResult(
        x=x,
        iterations=st.iteration,
        status=status,
        residual_norm=residual_norm,
        step_norm=st.step_norm,
        reason=monitor.reason,
    )
