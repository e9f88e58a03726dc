"""Fixed-size implicit time steps.

Supports two one-step schemes for dy/dt = f(t, y):
- Backward Euler (be): First-order, L-stable
- Trapezoidal (trap): Second-order, A-stable, good for oscillatory problems

Both are members of the theta family. One step of size h solves

    R(y) = y - y_n - h * (theta * f(t_n + h, y) + (1 - theta) * f(t_n, y_n)) = 0
    J(y) = I - h * theta * df/dy(t_n + h, y)

with Newton iteration (theta = 1 for BE, 1/2 for trap).

Each stepper reports ``error_order`` p, its order of accuracy: the local
truncation error of one step scales as h^(p+1) and the error accumulated
over a fixed interval as h^p. The adaptive controller uses p to turn the
difference between one full step and two half steps into an error
estimate and a new step size.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

import jax.numpy as jnp

from adaptive_time.analysis.options import NonlinearSolverOptions
from adaptive_time.analysis.solver import newton_solve
from adaptive_time.analysis.system import SolutionState, StepAttempt, TransientSystem


class IntegrationMethod(Enum):
    """Supported integration methods."""

    BACKWARD_EULER = "be"
    TRAPEZOIDAL = "trap"

    @classmethod
    def from_string(cls, s: str) -> "IntegrationMethod":
        """Parse integration method from string.

        Handles the usual aliases for both schemes.
        """
        s_lower = s.lower().strip().strip("\"'")
        aliases = {
            "be": cls.BACKWARD_EULER,
            "euler": cls.BACKWARD_EULER,
            "backward_euler": cls.BACKWARD_EULER,
            "implicit_euler": cls.BACKWARD_EULER,
            "bdf1": cls.BACKWARD_EULER,
            "trap": cls.TRAPEZOIDAL,
            "trapezoidal": cls.TRAPEZOIDAL,
            "crank_nicolson": cls.TRAPEZOIDAL,
            "am2": cls.TRAPEZOIDAL,  # Adams-Moulton order 2
        }
        if s_lower in aliases:
            return aliases[s_lower]
        raise ValueError(f"Unknown integration method: {s}. Supported: be, trap")


class CoreStepper(ABC):
    """One fixed-size step of a time discretization scheme.

    Args:
        options: Nonlinear solver options for the per-step Newton solve
    """

    method: IntegrationMethod

    def __init__(self, options: Optional[NonlinearSolverOptions] = None):
        self.options = options or NonlinearSolverOptions()

    @property
    def name(self) -> str:
        return self.__class__.__name__

    @property
    @abstractmethod
    def error_order(self) -> float:
        """Order of accuracy p of the scheme."""

    @abstractmethod
    def step(self, system: TransientSystem, state: SolutionState, deltat: float) -> StepAttempt:
        """Advance ``state`` by ``deltat`` without modifying it or ``system``."""


class BackwardEuler(CoreStepper):
    method = IntegrationMethod.BACKWARD_EULER

    @property
    def error_order(self) -> float:
        return 1.0

    def step(self, system, state, deltat):
        return theta_step(system, state, deltat, 1.0, self.options)


class Trapezoidal(CoreStepper):
    method = IntegrationMethod.TRAPEZOIDAL

    @property
    def error_order(self) -> float:
        return 2.0

    def step(self, system, state, deltat):
        return theta_step(system, state, deltat, 0.5, self.options)


def theta_step(
    system: TransientSystem,
    state: SolutionState,
    deltat: float,
    theta: float,
    options: NonlinearSolverOptions,
) -> StepAttempt:
    """Take one theta-method step, solving the implicit stage by Newton.

    Args:
        system: Supplies f, df/dy and the linear solver
        state: Start of the step (not modified)
        deltat: Step size
        theta: Implicitness, in (0, 1]
        options: Nonlinear solver options

    Returns:
        StepAttempt; on failure ``resulting_state`` holds the last iterate
    """
    y_n = state.values
    t_next = state.time + deltat
    eye = jnp.eye(y_n.shape[0], dtype=y_n.dtype)

    # Explicit part of the theta rule, fixed for the whole solve
    if theta < 1.0:
        explicit = (1.0 - theta) * deltat * system.evaluate_rhs(state.time, y_n)
    else:
        explicit = jnp.zeros_like(y_n)

    def build_system(y):
        f = system.evaluate_rhs(t_next, y)
        residual = y - y_n - theta * deltat * f - explicit
        jac = eye - theta * deltat * system.evaluate_jacobian(t_next, y)
        return jac, residual

    result = newton_solve(
        build_system,
        y_n,
        options,
        system.linear_solver,
        variable_dofs=system.variable_dofs,
    )

    return StepAttempt(
        requested_deltat=deltat,
        resulting_state=state.advanced(result.x, deltat),
        converged=result.converged,
        iterations_used=result.iterations,
        status=result.status,
        residual_norm=result.residual_norm,
    )


def build_stepper(
    method: IntegrationMethod | str = IntegrationMethod.BACKWARD_EULER,
    options: Optional[NonlinearSolverOptions] = None,
) -> CoreStepper:
    """Create the stepper for an integration method (enum or alias string)."""
    if isinstance(method, str):
        method = IntegrationMethod.from_string(method)
    if method == IntegrationMethod.BACKWARD_EULER:
        return BackwardEuler(options)
    elif method == IntegrationMethod.TRAPEZOIDAL:
        return Trapezoidal(options)
    else:
        raise ValueError(f"Unknown integration method: {method}")
