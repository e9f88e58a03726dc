"""Solution state and the system being integrated.

TransientSystem owns the committed solution vector and simulation time of
an ODE system dy/dt = f(t, y). Steppers and the controller receive it by
reference on every call and never keep their own copy of its state; only
``commit`` changes what the system holds.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import jax
import jax.numpy as jnp
from jax import Array

from adaptive_time import get_float_dtype
from adaptive_time.analysis.convergence import ConvergenceStatus
from adaptive_time.analysis.linear import DenseLinearSolver, LinearSolver
from adaptive_time.analysis.norms import VariableDofs, default_variable_dofs
from adaptive_time.errors import DimensionMismatch

RhsFn = Callable[[float, Array], Array]
JacobianFn = Callable[[float, Array], Array]


@dataclass(frozen=True)
class SolutionState:
    """Discretized solution vector at a simulation time.

    Instances are immutable; stepping always produces a new state.
    """

    values: Array
    time: float

    @property
    def n_dofs(self) -> int:
        return int(self.values.shape[0])

    def advanced(self, values: Array, deltat: float) -> "SolutionState":
        """New state holding ``values`` at ``time + deltat``."""
        return SolutionState(values=values, time=self.time + deltat)


@dataclass(frozen=True)
class StepAttempt:
    """Outcome of one fixed-size step.

    Attributes:
        requested_deltat: Step size that was attempted
        resulting_state: Final iterate, populated even if the solve failed
        converged: True only if the nonlinear solve reached CONVERGED
        iterations_used: Newton iterations spent
        status: Terminal convergence status of the nonlinear solve
        residual_norm: Final nonlinear residual norm
    """

    requested_deltat: float
    resulting_state: SolutionState
    converged: bool
    iterations_used: int
    status: ConvergenceStatus = ConvergenceStatus.CONVERGED
    residual_norm: float = 0.0


class TransientSystem:
    """ODE system dy/dt = f(t, y) with its committed solution.

    Args:
        rhs_fn: Right-hand side f(t, y) -> dy/dt
        y0: Initial solution vector
        t0: Initial simulation time
        jacobian_fn: Optional df/dy(t, y). Computed with jax.jacfwd if None.
        variable_dofs: Optional mapping variable index -> dof indices.
            Defaults to one variable per dof.
        linear_solver: Linear solve entry point for Newton updates
            (dense LU if None)
    """

    def __init__(
        self,
        rhs_fn: RhsFn,
        y0,
        t0: float = 0.0,
        jacobian_fn: Optional[JacobianFn] = None,
        variable_dofs: Optional[VariableDofs] = None,
        linear_solver: Optional[LinearSolver] = None,
    ):
        self.rhs_fn = rhs_fn
        self.jacobian_fn = jacobian_fn
        self.linear_solver = linear_solver or DenseLinearSolver()
        self.time = float(t0)
        self.solution = jnp.asarray(y0, dtype=get_float_dtype())
        self.variable_dofs: Dict[int, Sequence[int]] = {}
        self._set_layout(variable_dofs)

    @property
    def n_dofs(self) -> int:
        return int(self.solution.shape[0])

    @property
    def variables(self) -> List[int]:
        """Variable indices, in order."""
        return sorted(self.variable_dofs)

    def state(self) -> SolutionState:
        """Snapshot of the committed solution."""
        return SolutionState(values=self.solution, time=self.time)

    def commit(self, state: SolutionState) -> None:
        """Replace the committed solution and time with ``state``."""
        if state.n_dofs != self.n_dofs:
            raise DimensionMismatch(
                f"Cannot commit a state with {state.n_dofs} dofs to a system with {self.n_dofs}"
            )
        self.solution = state.values
        self.time = float(state.time)

    def reinit(self, values, variable_dofs: Optional[VariableDofs] = None) -> None:
        """Replace the solution vector after the variable set changed.

        The simulation time is kept.
        """
        self.solution = jnp.asarray(values, dtype=get_float_dtype())
        self._set_layout(variable_dofs)

    def evaluate_rhs(self, t: float, y: Array) -> Array:
        return self.rhs_fn(t, y)

    def evaluate_jacobian(self, t: float, y: Array) -> Array:
        if self.jacobian_fn is not None:
            return self.jacobian_fn(t, y)
        return jax.jacfwd(lambda v: self.rhs_fn(t, v))(y)

    def _set_layout(self, variable_dofs: Optional[VariableDofs]) -> None:
        if self.solution.ndim != 1:
            raise DimensionMismatch(
                f"Solution must be a 1-D vector, got shape {self.solution.shape}"
            )
        if variable_dofs is None:
            self.variable_dofs = default_variable_dofs(self.n_dofs)
            return
        layout = {int(var): tuple(int(d) for d in dofs) for var, dofs in variable_dofs.items()}
        for var, dofs in layout.items():
            for dof in dofs:
                if not 0 <= dof < self.n_dofs:
                    raise DimensionMismatch(
                        f"Variable {var} refers to dof {dof}, but the system has {self.n_dofs}"
                    )
        self.variable_dofs = layout
