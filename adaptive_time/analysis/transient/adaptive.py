"""Adaptive timestep control by step doubling.

This module wraps a CoreStepper and compares the result of one step of
size h against two chained steps of size h/2 over the same interval to
adjust the timestep.

The algorithm, per advance:
1. Take one full step of size h
2. Take two half steps of size h/2, the second starting from the first
3. If any of the three nonlinear solves failed, reject and cut h
4. Otherwise estimate the error from the difference of the two results
5. Reject and retry with a smaller h if the error exceeds upper_tolerance,
   else accept the (more accurate) half-step result and propose the next h

Error scaling. For a scheme of order p the two results differ by about
(2^p - 1) times the error of the half-step result (Richardson
extrapolation). That estimate is made relative to the solution norm and,
with ``global_tolerance``, divided by h to give an error per unit time,
which is what accumulates over a whole run. The step is then rescaled by

    factor = (target_tolerance / scaled_error) ^ exponent

with exponent 1/p for global scaling and 1/(p+1) for local scaling.
"""

import math
import time as time_module
from dataclasses import dataclass, field
from typing import List, Mapping, NamedTuple, Optional

import jax
import jax.numpy as jnp

from adaptive_time._logging import logger
from adaptive_time.analysis.integration import BackwardEuler, CoreStepper
from adaptive_time.analysis.norms import NormEvaluator, VariableDofs
from adaptive_time.analysis.options import ControllerConfig
from adaptive_time.analysis.system import SolutionState, StepAttempt, TransientSystem
from adaptive_time.config import MIN_SCALED_ERROR
from adaptive_time.debug.step_trace import StepRecord, format_step_record
from adaptive_time.errors import ConfigurationError, DimensionMismatch, TimestepFailure


class ErrorEstimate(NamedTuple):
    """Error estimate for one step-doubling comparison.

    Attributes:
        raw_norm: Norm of (full step result - half step result)
        scaled_error: Estimate compared against the tolerances
    """

    raw_norm: float
    scaled_error: float


class AdvanceResult(NamedTuple):
    """Result of one accepted advance.

    Attributes:
        state: Accepted solution, at ``time + accepted_deltat``
        accepted_deltat: Step size actually used; callers must advance
            their time bookkeeping by this, not by the requested hint
        next_deltat_hint: Proposed size for the following step
    """

    state: SolutionState
    accepted_deltat: float
    next_deltat_hint: float


@dataclass
class AdaptiveStats:
    """Statistics from adaptive timestepping.

    Attributes:
        accepted_steps: Number of accepted steps
        rejected_steps: Number of rejected attempts (any reason)
        nonconverged_attempts: Rejections caused by a failed nonlinear solve
        total_nr_iterations: Newton iterations across all attempts
        min_dt_used: Smallest accepted timestep
        max_dt_used: Largest accepted timestep
        wall_time: Wall clock time spent in run()
    """

    accepted_steps: int = 0
    rejected_steps: int = 0
    nonconverged_attempts: int = 0
    total_nr_iterations: int = 0
    min_dt_used: float = float("inf")
    max_dt_used: float = 0.0
    wall_time: float = 0.0


@dataclass
class TransientResult:
    """Accepted time points of a run.

    Attributes:
        times: Times of the initial and every accepted state, shape (n,)
        solutions: Stacked solution vectors, shape (n, n_dofs)
        stats: Statistics of the run
    """

    times: jax.Array
    solutions: jax.Array
    stats: AdaptiveStats = field(default_factory=AdaptiveStats)

    @property
    def num_steps(self) -> int:
        return int(self.times.shape[0])


class _StepPair(NamedTuple):
    full: StepAttempt
    refined: Optional[StepAttempt]
    iterations: int

    @property
    def converged(self) -> bool:
        return self.refined is not None and self.refined.converged


def rescale_exponent(error_order: float, global_tolerance: bool) -> float:
    """Exponent turning an error ratio into a step size ratio."""
    return 1.0 / error_order if global_tolerance else 1.0 / (error_order + 1.0)


def compute_step_factor(
    scaled_error: float,
    target_tolerance: float,
    error_order: float,
    global_tolerance: bool,
) -> float:
    """Factor by which to rescale h so the error would hit the target.

    A zero error is floored at MIN_SCALED_ERROR so the factor stays finite.
    """
    err = max(scaled_error, MIN_SCALED_ERROR)
    return (target_tolerance / err) ** rescale_exponent(error_order, global_tolerance)


def estimate_error(
    full: SolutionState,
    refined: SolutionState,
    deltat: float,
    error_order: float,
    global_tolerance: bool,
    norm: NormEvaluator,
    weights: Optional[Mapping[int, float]] = None,
    variable_dofs: Optional[VariableDofs] = None,
) -> ErrorEstimate:
    """Estimate the error of ``refined`` from its difference to ``full``.

    Args:
        full: Result of one step of size ``deltat``
        refined: Result of two steps of size ``deltat / 2``
        deltat: Full step size
        error_order: Order of accuracy p of the scheme
        global_tolerance: Scale per unit time for whole-run accuracy
        norm: Norm evaluator
        weights: Per-variable weights (empty/None = uniform)
        variable_dofs: Optional variable layout

    Returns:
        ErrorEstimate with the raw difference norm and the scaled error
    """
    weights = weights or None
    raw = norm.evaluate(full.values - refined.values, weights, variable_dofs)
    reference = max(
        norm.evaluate(full.values, weights, variable_dofs),
        norm.evaluate(refined.values, weights, variable_dofs),
    )

    scaled = raw / (2.0**error_order - 1.0)
    if reference > 0.0:
        scaled /= reference
    if global_tolerance:
        scaled /= deltat
    return ErrorEstimate(raw_norm=raw, scaled_error=scaled)


def _config_property(name: str) -> property:
    def getter(self):
        return getattr(self.config, name)

    def setter(self, value):
        setattr(self.config, name, value)

    return property(getter, setter, doc=f"Alias for ``config.{name}``.")


class AdaptiveStepController:
    """Step-doubling timestep controller around a CoreStepper.

    Example:
        system = TransientSystem(lambda t, y: -y, y0=[1.0])
        controller = AdaptiveStepController(
            system, config=ControllerConfig(target_tolerance=1e-3), deltat=0.01
        )
        result = controller.run(t_stop=1.0)
        print(f"Accepted: {result.stats.accepted_steps}, "
              f"Rejected: {result.stats.rejected_steps}")

    Args:
        system: System being advanced. Only ``advance_timestep`` and
            ``run`` write to it.
        core_stepper: Scheme used for the individual steps (BackwardEuler
            if None)
        config: Controller configuration (defaults if None)
        deltat: Initial timestep hint for ``advance_timestep``/``run``
        record_trace: Keep a StepRecord for every attempt in ``trace``
    """

    target_tolerance = _config_property("target_tolerance")
    upper_tolerance = _config_property("upper_tolerance")
    max_deltat = _config_property("max_deltat")
    min_deltat = _config_property("min_deltat")
    max_growth = _config_property("max_growth")
    global_tolerance = _config_property("global_tolerance")
    component_scale = _config_property("component_scale")

    def __init__(
        self,
        system: TransientSystem,
        core_stepper: Optional[CoreStepper] = None,
        config: Optional[ControllerConfig] = None,
        deltat: Optional[float] = None,
        record_trace: bool = False,
    ):
        self.system = system
        self.core_stepper = core_stepper or BackwardEuler()
        self.config = config or ControllerConfig()
        self.deltat = deltat
        self.record_trace = record_trace
        self.init()

    @property
    def name(self) -> str:
        return f"{self.__class__.__name__}({self.core_stepper.name})"

    @property
    def error_order(self) -> float:
        """Order of accuracy of the wrapped stepper."""
        return self.core_stepper.error_order

    @property
    def last_deltat(self) -> float:
        """Step size of the last accepted advance (0.0 before the first)."""
        return self._last_deltat

    # ---- bookkeeping ------------------------------------------------------

    def init(self) -> None:
        """Size the bookkeeping to the system's current variable set."""
        self.reinit()

    def reinit(self) -> None:
        """Reset bookkeeping, e.g. after the system's variables changed.

        Configuration and the current ``deltat`` hint are left alone.
        """
        self._n_dofs = self.system.n_dofs
        self._variables = list(self.system.variables)
        self._last_deltat = 0.0
        self.max_solution_norm = 0.0
        self.max_residual_norm = 0.0
        self.last_error: Optional[ErrorEstimate] = None
        self.stats = AdaptiveStats()
        self.trace: List[StepRecord] = []
        self._attempt_count = 0

    # ---- stepping ---------------------------------------------------------

    def advance(
        self, state: SolutionState, deltat_hint: float, final_step: bool = False
    ) -> AdvanceResult:
        """Advance ``state`` by one accepted step.

        Neither ``state`` nor the system is modified. ``last_deltat``,
        ``last_error`` and the max norms are only updated on acceptance;
        ``stats`` and ``trace`` also count rejected attempts, including
        those of an advance that ends in TimestepFailure.

        Args:
            state: Starting state
            deltat_hint: Proposed step size
            final_step: The hint was clipped to reach a stop time, so
                ``min_deltat`` must not raise it

        Returns:
            AdvanceResult with the accepted state, the step size used and
            the proposed next step size

        Raises:
            ConfigurationError: Invalid configuration or hint
            DimensionMismatch: ``state`` does not match the layout sized by
                the last ``init``/``reinit``
            TimestepFailure: No acceptable step above ``min_deltat``
        """
        cfg = self.config
        cfg.validate(variables=self._variables)
        if state.n_dofs != self._n_dofs:
            raise DimensionMismatch(
                f"State has {state.n_dofs} dofs, controller was sized for {self._n_dofs}; "
                "call reinit() after changing the system"
            )
        if not (deltat_hint > 0 and math.isfinite(deltat_hint)):
            raise ConfigurationError(f"deltat hint must be positive and finite, got {deltat_hint}")

        norm = NormEvaluator(cfg.norm_type)
        order = self.error_order
        hint = self._clamp_hint(float(deltat_hint), apply_min=not final_step)
        attempts = 0

        while True:
            attempts += 1
            pair = self._attempt(state, hint)
            self.stats.total_nr_iterations += pair.iterations

            if pair.converged:
                estimate = estimate_error(
                    pair.full.resulting_state,
                    pair.refined.resulting_state,
                    hint,
                    order,
                    cfg.global_tolerance,
                    norm,
                    cfg.component_scale,
                    self.system.variable_dofs,
                )
                too_large = bool(cfg.upper_tolerance) and estimate.scaled_error > cfg.upper_tolerance
            else:
                estimate = ErrorEstimate(raw_norm=math.inf, scaled_error=math.inf)
                too_large = True

            if not too_large:
                break

            self.stats.rejected_steps += 1
            if not pair.converged:
                self.stats.nonconverged_attempts += 1
                factor = cfg.nonconvergence_shrink
            else:
                factor = compute_step_factor(
                    estimate.scaled_error, cfg.target_tolerance, order, cfg.global_tolerance
                )
            self._record(state, hint, pair, estimate, accepted=False)
            hint = self._retry_deltat(state, hint, factor, estimate, pair, attempts)

        next_hint = self._next_deltat(hint, estimate.scaled_error)
        refined = pair.refined
        new_state = SolutionState(values=refined.resulting_state.values, time=state.time + hint)

        # Commit bookkeeping only now that the step is accepted
        self._last_deltat = hint
        self.last_error = estimate
        self.max_solution_norm = max(
            self.max_solution_norm,
            norm.evaluate(new_state.values, None, self.system.variable_dofs),
        )
        self.max_residual_norm = max(
            self.max_residual_norm,
            pair.full.residual_norm,
            refined.residual_norm,
        )
        self.stats.accepted_steps += 1
        self.stats.min_dt_used = min(self.stats.min_dt_used, hint)
        self.stats.max_dt_used = max(self.stats.max_dt_used, hint)
        self._record(state, hint, pair, estimate, accepted=True, next_deltat=next_hint)

        return AdvanceResult(state=new_state, accepted_deltat=hint, next_deltat_hint=next_hint)

    def advance_timestep(
        self, deltat: Optional[float] = None, final_step: bool = False
    ) -> AdvanceResult:
        """Advance the system by one accepted step and commit the result.

        Args:
            deltat: Step size hint; defaults to the controller's ``deltat``
            final_step: Passed through to ``advance``

        Returns:
            The AdvanceResult. The system time has moved by
            ``accepted_deltat`` and ``deltat`` holds the next hint.
        """
        hint = self.deltat if deltat is None else deltat
        if hint is None:
            raise ConfigurationError("No timestep hint: pass deltat or set controller.deltat")

        result = self.advance(self.system.state(), hint, final_step=final_step)
        self.system.commit(result.state)
        self.deltat = result.next_deltat_hint
        return result

    def run(
        self, t_stop: float, deltat: Optional[float] = None, max_steps: int = 100000
    ) -> TransientResult:
        """Advance the system until ``t_stop``.

        The final hint is clipped so the run lands on ``t_stop``, even when
        the remaining interval is shorter than ``min_deltat``.

        Args:
            t_stop: Simulation stop time
            deltat: Initial timestep hint (defaults to the controller's)
            max_steps: Maximum number of accepted steps (safety limit)

        Returns:
            TransientResult with all accepted time points
        """
        if deltat is not None:
            self.deltat = deltat
        if self.deltat is None:
            raise ConfigurationError("No timestep hint: pass deltat or set controller.deltat")

        system = self.system
        times = [system.time]
        solutions = [system.solution]
        end_eps = 1e-12 * max(1.0, abs(t_stop))

        logger.info(
            f"{self.name}: Starting adaptive run to t={t_stop:.3e}, "
            f"initial dt={self.deltat:.3e}, target={self.config.target_tolerance:.1e}"
        )
        t_start = time_module.perf_counter()

        steps = 0
        while t_stop - system.time > end_eps and steps < max_steps:
            remaining = t_stop - system.time
            if self.deltat >= remaining:
                self.advance_timestep(remaining, final_step=True)
            else:
                self.advance_timestep(self.deltat)
            times.append(system.time)
            solutions.append(system.solution)
            steps += 1

        self.stats.wall_time += time_module.perf_counter() - t_start
        if steps >= max_steps and t_stop - system.time > end_eps:
            logger.warning(f"{self.name}: Stopped at t={system.time:.3e} after {steps} steps")

        logger.info(
            f"{self.name}: Done, {self.stats.accepted_steps} accepted, "
            f"{self.stats.rejected_steps} rejected, {self.stats.wall_time:.2f}s"
        )
        return TransientResult(
            times=jnp.asarray(times),
            solutions=jnp.stack(solutions),
            stats=self.stats,
        )

    # ---- helpers ----------------------------------------------------------

    def _attempt(self, state: SolutionState, deltat: float) -> _StepPair:
        """One full step, then two chained half steps; stops at a failure."""
        stepper = self.core_stepper
        full = stepper.step(self.system, state, deltat)
        iterations = full.iterations_used
        if not full.converged:
            return _StepPair(full=full, refined=None, iterations=iterations)

        half = 0.5 * deltat
        first = stepper.step(self.system, state, half)
        iterations += first.iterations_used
        if not first.converged:
            return _StepPair(full=full, refined=None, iterations=iterations)

        second = stepper.step(self.system, first.resulting_state, half)
        iterations += second.iterations_used
        return _StepPair(full=full, refined=second, iterations=iterations)

    def _clamp_hint(self, hint: float, apply_min: bool = True) -> float:
        cfg = self.config
        if cfg.max_deltat:
            hint = min(hint, cfg.max_deltat)
        if cfg.max_growth and self._last_deltat > 0.0:
            hint = min(hint, cfg.max_growth * self._last_deltat)
        if apply_min and cfg.min_deltat:
            hint = max(hint, cfg.min_deltat)
        return hint

    def _next_deltat(self, deltat: float, scaled_error: float) -> float:
        cfg = self.config
        factor = compute_step_factor(
            scaled_error, cfg.target_tolerance, self.error_order, cfg.global_tolerance
        )
        if cfg.max_growth:
            factor = min(factor, cfg.max_growth)
        next_deltat = deltat * factor
        if cfg.max_deltat:
            next_deltat = min(next_deltat, cfg.max_deltat)
        if cfg.min_deltat:
            next_deltat = max(next_deltat, cfg.min_deltat)
        return next_deltat

    def _retry_deltat(
        self,
        state: SolutionState,
        deltat: float,
        factor: float,
        estimate: ErrorEstimate,
        pair: _StepPair,
        attempts: int,
    ) -> float:
        """Shrunk step size for the next attempt, or raise TimestepFailure."""
        cfg = self.config
        new_deltat = deltat * factor

        reason = None
        if attempts >= cfg.max_retries:
            reason = f"retry limit ({cfg.max_retries}) reached"
        elif cfg.min_deltat and deltat <= cfg.min_deltat:
            reason = f"deltat cannot shrink below min_deltat={cfg.min_deltat:.3e}"
        else:
            if cfg.min_deltat:
                new_deltat = max(new_deltat, cfg.min_deltat)
            if not new_deltat > 0.0 or state.time + new_deltat == state.time:
                reason = f"deltat underflow ({new_deltat:.3e} at t={state.time:.6e})"

        if reason is not None:
            message = (
                f"Timestep failure at t={state.time:.6e}: {reason}; last dt={deltat:.3e}, "
                f"scaled error={estimate.scaled_error:.3e} "
                f"(target={cfg.target_tolerance:.3e}, upper={cfg.upper_tolerance:.3e}), "
                f"NR iterations={pair.iterations}"
            )
            logger.warning(message)
            raise TimestepFailure(
                message,
                requested_deltat=deltat,
                min_deltat=cfg.min_deltat,
                last_scaled_error=estimate.scaled_error,
                target_tolerance=cfg.target_tolerance,
                upper_tolerance=cfg.upper_tolerance,
                iterations=pair.iterations,
                attempts=attempts,
            )
        return new_deltat

    def _record(
        self,
        state: SolutionState,
        deltat: float,
        pair: _StepPair,
        estimate: ErrorEstimate,
        accepted: bool,
        next_deltat: Optional[float] = None,
    ) -> None:
        self._attempt_count += 1
        record = StepRecord(
            step=self._attempt_count,
            time=state.time,
            deltat=deltat,
            nr_iters=pair.iterations,
            scaled_error=estimate.scaled_error,
            accepted=accepted,
            nr_failed=not pair.converged,
            next_deltat=next_deltat,
        )
        if self.record_trace:
            self.trace.append(record)
        logger.debug(format_step_record(record))
