"""adaptive-time: adaptive timestep control for implicit time integration"""

import jax

from adaptive_time._logging import enable_debug_logging, logger, set_log_level

__version__ = "0.1.0"


def configure_precision(force_x64: bool | None = None) -> bool:
    """Configure JAX float precision.

    Error norms and step-size ratios are compared against tolerances down
    to ~1e-12, so 64-bit floats are enabled unless explicitly disabled.

    Args:
        force_x64: If False, force x32. If None (default) or True, use x64.

    Returns:
        True if x64 is enabled, False otherwise.
    """
    enable_x64 = True if force_x64 is None else bool(force_x64)

    if enable_x64:
        logger.info("Using 64-bit float precision")
    else:
        logger.warning("Using 32-bit float precision")

    jax.config.update("jax_enable_x64", enable_x64)
    return enable_x64


def get_precision_info() -> dict:
    """Get information about the current precision configuration."""
    return {
        "x64_enabled": jax.config.jax_enable_x64,
        "backend": jax.default_backend(),
    }


# Auto-configure precision on import
_x64_enabled = configure_precision()


def get_float_dtype():
    """Get the appropriate float dtype based on x64 configuration.

    Returns:
        jnp.float64 if x64 is enabled, jnp.float32 otherwise.
    """
    import jax.numpy as jnp

    return jnp.float64 if jax.config.jax_enable_x64 else jnp.float32


# Core API
from adaptive_time.analysis import (
    AdaptiveStats,
    AdaptiveStepController,
    AdvanceResult,
    BackwardEuler,
    ControllerConfig,
    ConvergenceStatus,
    CoreStepper,
    ErrorEstimate,
    IntegrationMethod,
    NonlinearConvergenceMonitor,
    NonlinearSolverOptions,
    NormEvaluator,
    NormType,
    SolutionState,
    StepAttempt,
    TransientResult,
    TransientSystem,
    Trapezoidal,
    build_stepper,
)
from adaptive_time.errors import (
    AdaptiveTimeError,
    ConfigurationError,
    DimensionMismatch,
    TimestepFailure,
)

__all__ = [
    # Core API
    "AdaptiveStepController",
    "AdvanceResult",
    "AdaptiveStats",
    "ControllerConfig",
    "ErrorEstimate",
    "TransientResult",
    "TransientSystem",
    "SolutionState",
    "StepAttempt",
    # Steppers
    "CoreStepper",
    "BackwardEuler",
    "Trapezoidal",
    "IntegrationMethod",
    "build_stepper",
    # Nonlinear convergence
    "NonlinearConvergenceMonitor",
    "NonlinearSolverOptions",
    "ConvergenceStatus",
    # Norms
    "NormEvaluator",
    "NormType",
    # Errors
    "AdaptiveTimeError",
    "ConfigurationError",
    "DimensionMismatch",
    "TimestepFailure",
    # Precision and logging
    "configure_precision",
    "get_precision_info",
    "get_float_dtype",
    "enable_debug_logging",
    "set_log_level",
]
