"""Adaptive time marching.

Usage:
    from adaptive_time.analysis.transient import (
        AdaptiveStepController, ControllerConfig
    )

    config = ControllerConfig(target_tolerance=1e-3, max_growth=2.0)
    controller = AdaptiveStepController(system, config=config, deltat=1e-3)
    result = controller.run(t_stop=1.0)
    times, solutions = result.times, result.solutions
"""

from adaptive_time.analysis.options import ControllerConfig

from .adaptive import (
    AdaptiveStats,
    AdaptiveStepController,
    AdvanceResult,
    ErrorEstimate,
    TransientResult,
    compute_step_factor,
    estimate_error,
    rescale_exponent,
)

__all__ = [
    "AdaptiveStepController",
    "AdaptiveStats",
    "AdvanceResult",
    "ControllerConfig",
    "ErrorEstimate",
    "TransientResult",
    "compute_step_factor",
    "estimate_error",
    "rescale_exponent",
]
