"""Per-attempt step trace for the adaptive step controller.

The controller appends one StepRecord per attempt (accepted or rejected)
when tracing is enabled, and logs each record at DEBUG level in the line
format produced by ``format_step_record``. ``parse_step_trace`` turns such
log text back into records, so traces from earlier runs can be summarised
without re-running them.

Usage:
    controller = AdaptiveStepController(system, record_trace=True)
    controller.run(t_stop=1.0, deltat=1e-3)
    summary = summarize_trace(controller.trace)
    log_trace_summary(summary)
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class StepRecord:
    """One step attempt."""

    step: int
    time: float
    deltat: float
    nr_iters: int
    scaled_error: float
    accepted: bool
    nr_failed: bool = False
    next_deltat: float | None = None


@dataclass
class StepTraceSummary:
    """Aggregated statistics over a step trace."""

    total_attempts: int
    accepted_steps: int
    rejected_steps: int
    nr_failures: int
    error_min: float | None = None
    error_max: float | None = None
    error_mean: float | None = None
    deltat_min: float | None = None
    deltat_max: float | None = None
    nr_mean_iters: float | None = None


# ---------------------------------------------------------------------------
# Formatting and parsing
# ---------------------------------------------------------------------------

_STEP_PATTERN = re.compile(
    r"Step\s+(\d+):\s+"
    r"t=\s*([\deE.+-]+)\s+"
    r"dt=\s*([\deE.+-]+)\s+"
    r"NR=\s*(\d+)\s+"
    r"err=\s*([\deE.+-]+|inf)\s+"
    r"\[(accept|REJECT)\]"
    r"(.*)"
)


def format_step_record(record: StepRecord) -> str:
    """Format a record as a single log line.

    Example::

        Step   3: t=1.000000e-01 dt=5.000000e-02 NR=  6 err=4.215e-03 [accept] next=6.1e-02
        Step   4: t=1.500000e-01 dt=6.100000e-02 NR= 20 err=inf [REJECT] NR_FAIL
    """
    err = "inf" if math.isinf(record.scaled_error) else f"{record.scaled_error:.3e}"
    status = "accept" if record.accepted else "REJECT"
    line = (
        f"Step {record.step:3d}: t={record.time:.6e} dt={record.deltat:.6e} "
        f"NR={record.nr_iters:3d} err={err} [{status}]"
    )
    if record.nr_failed:
        line += " NR_FAIL"
    if record.next_deltat is not None:
        line += f" next={record.next_deltat:.6e}"
    return line


def parse_step_trace(text: str) -> list[StepRecord]:
    """Parse log text containing ``format_step_record`` lines."""
    records: list[StepRecord] = []
    for line in text.split("\n"):
        m = _STEP_PATTERN.search(line)
        if not m:
            continue
        extra = m.group(7)
        next_match = re.search(r"next=([\deE.+-]+)", extra)
        records.append(
            StepRecord(
                step=int(m.group(1)),
                time=float(m.group(2)),
                deltat=float(m.group(3)),
                nr_iters=int(m.group(4)),
                scaled_error=float(m.group(5)),
                accepted=m.group(6) == "accept",
                nr_failed="NR_FAIL" in extra,
                next_deltat=float(next_match.group(1)) if next_match else None,
            )
        )
    return records


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def summarize_trace(records: list[StepRecord]) -> StepTraceSummary:
    accepted = [r for r in records if r.accepted]
    errors = [r.scaled_error for r in records if math.isfinite(r.scaled_error)]

    return StepTraceSummary(
        total_attempts=len(records),
        accepted_steps=len(accepted),
        rejected_steps=len(records) - len(accepted),
        nr_failures=sum(1 for r in records if r.nr_failed),
        error_min=min(errors) if errors else None,
        error_max=max(errors) if errors else None,
        error_mean=sum(errors) / len(errors) if errors else None,
        deltat_min=min(r.deltat for r in accepted) if accepted else None,
        deltat_max=max(r.deltat for r in accepted) if accepted else None,
        nr_mean_iters=(sum(r.nr_iters for r in records) / len(records) if records else None),
    )


def log_trace_summary(summary: StepTraceSummary) -> None:
    """Log a formatted summary at INFO level."""
    logger.info(
        "  %d attempts: %d accepted, %d rejected (%d nonlinear failures)",
        summary.total_attempts,
        summary.accepted_steps,
        summary.rejected_steps,
        summary.nr_failures,
    )
    if summary.error_mean is not None:
        logger.info(
            "  scaled error: min=%.3e, max=%.3e, mean=%.3e",
            summary.error_min,
            summary.error_max,
            summary.error_mean,
        )
    if summary.deltat_min is not None:
        logger.info("  accepted dt range: [%.6e, %.6e]", summary.deltat_min, summary.deltat_max)
    if summary.nr_mean_iters is not None:
        logger.info("  NR iters: mean=%.1f", summary.nr_mean_iters)
