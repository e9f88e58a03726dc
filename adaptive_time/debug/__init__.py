"""Debug utilities for adaptive-time."""

from adaptive_time.debug.step_trace import (
    StepRecord,
    StepTraceSummary,
    format_step_record,
    log_trace_summary,
    parse_step_trace,
    summarize_trace,
)

__all__ = [
    "StepRecord",
    "StepTraceSummary",
    "format_step_record",
    "log_trace_summary",
    "parse_step_trace",
    "summarize_trace",
]
