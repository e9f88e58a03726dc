"""Step controller and nonlinear solver options.

Options are plain dataclasses that can be read and written freely between
steps. Values are checked when the controller or solver uses them (via
``validate()``), not on assignment, so several related fields can be
changed one after another without tripping over intermediate states.

Example usage:
    config = ControllerConfig(target_tolerance=1e-3, max_growth=2.0)
    config.set("upper_tolerance", "5e-3")
    config.update_from_mapping({"min_deltat": 1e-9, "global_tolerance": "false"})

    nl = NonlinearSolverOptions(max_nonlinear_iterations=10)
    nl.set("absolute_residual_tolerance", 1e-12)
"""

from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from adaptive_time._logging import logger
from adaptive_time.analysis.norms import NormType
from adaptive_time.config import (
    DEFAULT_MAX_NONLINEAR_ITERATIONS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_NONCONVERGENCE_SHRINK,
    DEFAULT_TARGET_TOLERANCE,
)
from adaptive_time.errors import ConfigurationError


def _parse_bool(value: Any) -> bool:
    """Parse a boolean from various input types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on")
    return bool(value)


class _OptionsMixin:
    """Shared get/set/serialization helpers for options dataclasses."""

    def set(self, name: str, value: Any) -> None:
        """Set an option by name, converting the value to the field's type.

        Raises:
            ConfigurationError: If the option name is unknown or the value
                cannot be converted
        """
        field_type = None
        for f in fields(self):
            if f.name == name:
                field_type = f.type
                break
        if field_type is None:
            raise ConfigurationError(f"Unknown option: {name}")

        try:
            if field_type in (float, "float"):
                value = float(value)
            elif field_type in (int, "int"):
                value = int(value)
            elif field_type in (bool, "bool"):
                value = _parse_bool(value)
            elif field_type in (NormType, "NormType"):
                if isinstance(value, str):
                    value = NormType.from_string(value)
            elif name == "component_scale":
                value = {int(k): float(v) for k, v in dict(value).items()}
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for {name}: {value!r} ({e})") from e

        setattr(self, name, value)

    def get(self, name: str, default: Any = None) -> Any:
        """Get an option value by name, or ``default`` if unset."""
        value = getattr(self, name, default)
        return default if value is None else value

    def update_from_mapping(
        self, opts: Mapping[str, Any], parse_number: Callable[[Any], float] = float
    ) -> None:
        """Update options from a mapping, e.g. a parsed settings file section.

        Unknown keys are skipped so that one mapping can feed several
        consumers. Values that fail to parse are logged and ignored.

        Args:
            opts: Mapping of option name to value
            parse_number: Function used to parse numeric strings
        """
        numeric = {f.name for f in fields(self) if f.type in (float, int, "float", "int")}
        for name, value in opts.items():
            if not hasattr(self, name):
                continue
            try:
                if name in numeric and isinstance(value, str):
                    value = parse_number(value)
                self.set(name, value)
            except (ConfigurationError, TypeError, ValueError) as e:
                logger.warning(
                    f"Failed to parse option {name}={value!r}: {e}"
                )

    def to_dict(self) -> Dict[str, Any]:
        """Convert options to a plain dictionary."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, NormType):
                value = value.value
            elif isinstance(value, dict):
                value = dict(value)
            result[f.name] = value
        return result


@dataclass
class ControllerConfig(_OptionsMixin):
    """Adaptive step controller configuration.

    A value of 0.0 for ``upper_tolerance``, ``max_deltat``, ``min_deltat``
    or ``max_growth`` means "no limit" for that bound.
    """

    target_tolerance: float = DEFAULT_TARGET_TOLERANCE
    """Target relative error between the full step and the two half steps.
    Future steps are grown or shrunk to hit it. Must be > 0."""

    upper_tolerance: float = 0.0
    """Maximum tolerated error; above it the step is redone with a smaller
    deltat. 0 disables rejection on error (only failed solves retry)."""

    max_deltat: float = 0.0
    """Never select deltat above this. 0 = unlimited."""

    min_deltat: float = 0.0
    """Never select deltat below this. 0 = unlimited."""

    max_growth: float = 0.0
    """Never grow deltat by more than this factor per step. 0 = unlimited."""

    global_tolerance: bool = True
    """Scale the error estimate for cumulative (whole-run) accuracy instead
    of one step's local accuracy."""

    component_scale: Dict[int, float] = field(default_factory=dict)
    """Per-variable error weights. Empty = all variables weighted equally."""

    norm_type: NormType = NormType.DISCRETE_L2
    """Norm used for error estimates."""

    nonconvergence_shrink: float = DEFAULT_NONCONVERGENCE_SHRINK
    """Timestep cut factor when a sub-solve fails to converge. In (0, 1)."""

    max_retries: int = DEFAULT_MAX_RETRIES
    """Maximum rejected attempts within a single advance."""

    def validate(self, variables: Optional[Iterable[int]] = None) -> None:
        """Validate all option values.

        Args:
            variables: Variable indices of the system being advanced. When
                given, a non-empty ``component_scale`` must cover exactly
                this set.

        Raises:
            ConfigurationError: On the first invalid value found
        """
        if not self.target_tolerance > 0:
            raise ConfigurationError(
                f"target_tolerance must be positive, got {self.target_tolerance}"
            )
        for name in ("upper_tolerance", "max_deltat", "min_deltat", "max_growth"):
            value = getattr(self, name)
            if value < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {value}")
        if self.upper_tolerance and self.upper_tolerance < self.target_tolerance:
            raise ConfigurationError(
                f"upper_tolerance ({self.upper_tolerance}) must be 0 or >= "
                f"target_tolerance ({self.target_tolerance})"
            )
        if self.max_deltat and self.min_deltat > self.max_deltat:
            raise ConfigurationError(
                f"min_deltat ({self.min_deltat}) exceeds max_deltat ({self.max_deltat})"
            )
        if self.max_growth and self.max_growth < 1.0:
            raise ConfigurationError(f"max_growth must be 0 or >= 1, got {self.max_growth}")
        if not (0 < self.nonconvergence_shrink < 1):
            raise ConfigurationError(
                f"nonconvergence_shrink must be in (0, 1), got {self.nonconvergence_shrink}"
            )
        if self.max_retries < 1:
            raise ConfigurationError(f"max_retries must be >= 1, got {self.max_retries}")
        if not isinstance(self.norm_type, NormType):
            raise ConfigurationError(
                f"norm_type must be a NormType, got {self.norm_type!r}; "
                "use set('norm_type', ...) to convert strings"
            )
        for var, weight in self.component_scale.items():
            if weight < 0:
                raise ConfigurationError(
                    f"component_scale[{var}] must be non-negative, got {weight}"
                )
        if variables is not None and self.component_scale:
            expected = set(variables)
            if set(self.component_scale) != expected:
                raise ConfigurationError(
                    f"component_scale covers variables {sorted(self.component_scale)}, "
                    f"but the system has {len(expected)} variables"
                )

    def copy(self) -> "ControllerConfig":
        """Create a copy of this configuration."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["component_scale"] = dict(self.component_scale)
        return ControllerConfig(**values)


@dataclass
class NonlinearSolverOptions(_OptionsMixin):
    """Newton solver stopping criteria and linear-solve controls.

    The solve converges as soon as any one of the four residual/step
    criteria holds. A tolerance of 0.0 only matches an exactly zero norm.
    """

    max_nonlinear_iterations: int = DEFAULT_MAX_NONLINEAR_ITERATIONS
    """Iteration budget; running out is reported as ITERATION_LIMIT."""

    max_linear_iterations: int = 200
    """Iteration cap for each internal linear solve."""

    absolute_residual_tolerance: float = 1e-10
    """Converged once the residual norm is at or below this."""

    relative_residual_tolerance: float = 1e-8
    """Converged once the residual norm is at or below this times the
    initial residual norm."""

    absolute_step_tolerance: float = 0.0
    """Converged once the Newton update norm is at or below this."""

    relative_step_tolerance: float = 0.0
    """Converged once the update norm is at or below this times the largest
    update norm seen during the solve."""

    initial_linear_tolerance: float = 1e-6
    """Tolerance of the first linear solve."""

    minimum_linear_tolerance: float = 1e-12
    """Floor for the linear tolerance schedule."""

    linear_tolerance_multiplier: float = 1e-3
    """Later linear solves use at most this times the current residual norm."""

    divergence_factor: float = 1e8
    """Diverged once the residual grows beyond this times the initial
    residual. 0 disables the check (non-finite norms always diverge)."""

    damping: float = 1.0
    """Newton update damping. 1.0 = full steps. Must be in (0, 1]."""

    max_step: float = 0.0
    """Largest allowed max-norm of a single update. 0 = unlimited."""

    def validate(self) -> None:
        """Validate all option values.

        Raises:
            ConfigurationError: On the first invalid value found
        """
        if self.max_nonlinear_iterations < 1:
            raise ConfigurationError(
                f"max_nonlinear_iterations must be >= 1, got {self.max_nonlinear_iterations}"
            )
        if self.max_linear_iterations < 1:
            raise ConfigurationError(
                f"max_linear_iterations must be >= 1, got {self.max_linear_iterations}"
            )
        for name in (
            "absolute_residual_tolerance",
            "relative_residual_tolerance",
            "absolute_step_tolerance",
            "relative_step_tolerance",
            "minimum_linear_tolerance",
            "divergence_factor",
            "max_step",
        ):
            value = getattr(self, name)
            if value < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {value}")
        if not self.initial_linear_tolerance > 0:
            raise ConfigurationError(
                f"initial_linear_tolerance must be positive, got {self.initial_linear_tolerance}"
            )
        if not self.linear_tolerance_multiplier > 0:
            raise ConfigurationError(
                "linear_tolerance_multiplier must be positive, "
                f"got {self.linear_tolerance_multiplier}"
            )
        if not (0 < self.damping <= 1.0):
            raise ConfigurationError(f"damping must be in (0, 1], got {self.damping}")

    def copy(self) -> "NonlinearSolverOptions":
        """Create a copy of these options."""
        return NonlinearSolverOptions(**{f.name: getattr(self, f.name) for f in fields(self)})
