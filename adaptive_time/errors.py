"""Exceptions raised by adaptive-time.

Recoverable solver outcomes (iteration limit, divergence, a step whose
error estimate is too large) are handled inside the step controller and
never surface as exceptions. Only the fatal conditions below propagate.
"""

from typing import Optional


class AdaptiveTimeError(Exception):
    """Base class for all adaptive-time errors."""

    pass


class ConfigurationError(AdaptiveTimeError, ValueError):
    """Invalid controller or solver configuration."""

    pass


class DimensionMismatch(AdaptiveTimeError, ValueError):
    """Vector length or variable layout does not match the weight mapping."""

    pass


class TimestepFailure(AdaptiveTimeError):
    """Raised when no acceptable timestep can be found.

    Attributes:
        requested_deltat: Step size of the last rejected attempt
        min_deltat: Configured lower bound (0.0 = unbounded)
        last_scaled_error: Scaled error of the last attempt (inf if the
            nonlinear solve did not converge)
        target_tolerance: Configured target tolerance
        upper_tolerance: Configured rejection tolerance (0.0 = disabled)
        iterations: Nonlinear iterations spent on the last attempt
        attempts: Number of attempts made during this advance
    """

    def __init__(
        self,
        message: str,
        *,
        requested_deltat: float,
        min_deltat: float = 0.0,
        last_scaled_error: float = float("inf"),
        target_tolerance: Optional[float] = None,
        upper_tolerance: Optional[float] = None,
        iterations: int = 0,
        attempts: int = 0,
    ):
        super().__init__(message)
        self.requested_deltat = requested_deltat
        self.min_deltat = min_deltat
        self.last_scaled_error = last_scaled_error
        self.target_tolerance = target_tolerance
        self.upper_tolerance = upper_tolerance
        self.iterations = iterations
        self.attempts = attempts
