"""Time integration components for adaptive-time

Provides error norms, the nonlinear convergence monitor and Newton solver,
fixed-size implicit steppers and the adaptive step controller.
"""

from adaptive_time.analysis.convergence import (
    ConvergenceState,
    ConvergenceStatus,
    NonlinearConvergenceMonitor,
)
from adaptive_time.analysis.integration import (
    BackwardEuler,
    CoreStepper,
    IntegrationMethod,
    Trapezoidal,
    build_stepper,
    theta_step,
)
from adaptive_time.analysis.linear import (
    DenseLinearSolver,
    GMRESLinearSolver,
    LinearSolver,
    LinearSolveResult,
    get_linear_solver,
)
from adaptive_time.analysis.norms import NormEvaluator, NormType
from adaptive_time.analysis.options import ControllerConfig, NonlinearSolverOptions
from adaptive_time.analysis.solver import NRResult, newton_solve
from adaptive_time.analysis.system import SolutionState, StepAttempt, TransientSystem
from adaptive_time.analysis.transient import (
    AdaptiveStats,
    AdaptiveStepController,
    AdvanceResult,
    ErrorEstimate,
    TransientResult,
)

__all__ = [
    # Norms
    "NormEvaluator",
    "NormType",
    # Options
    "ControllerConfig",
    "NonlinearSolverOptions",
    # Nonlinear solve
    "ConvergenceState",
    "ConvergenceStatus",
    "NonlinearConvergenceMonitor",
    "NRResult",
    "newton_solve",
    # Linear solve
    "LinearSolver",
    "LinearSolveResult",
    "DenseLinearSolver",
    "GMRESLinearSolver",
    "get_linear_solver",
    # System and steppers
    "SolutionState",
    "StepAttempt",
    "TransientSystem",
    "CoreStepper",
    "BackwardEuler",
    "Trapezoidal",
    "IntegrationMethod",
    "build_stepper",
    "theta_step",
    # Adaptive control
    "AdaptiveStepController",
    "AdaptiveStats",
    "AdvanceResult",
    "ErrorEstimate",
    "TransientResult",
]
