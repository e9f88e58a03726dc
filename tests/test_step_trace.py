"""Tests for the per-attempt step trace and debug logging."""

import io
import logging
import math

import pytest

from adaptive_time import enable_debug_logging, set_log_level
from adaptive_time.analysis.integration import BackwardEuler
from adaptive_time.analysis.options import ControllerConfig
from adaptive_time.analysis.transient import AdaptiveStepController
from adaptive_time.debug.step_trace import (
    StepRecord,
    format_step_record,
    log_trace_summary,
    parse_step_trace,
    summarize_trace,
)


@pytest.fixture
def debug_stream():
    """Route adaptive_time debug output into a buffer for one test."""
    stream = io.StringIO()
    enable_debug_logging(stream=stream)
    yield stream
    set_log_level(logging.WARNING)


class TestFormatting:
    """Tests for format_step_record() and parse_step_trace()."""

    def test_accepted_line(self):
        record = StepRecord(
            step=3, time=0.1, deltat=0.05, nr_iters=6, scaled_error=4.215e-3,
            accepted=True, next_deltat=0.061,
        )
        line = format_step_record(record)
        assert line.startswith("Step   3: t=1.000000e-01 dt=5.000000e-02 NR=  6")
        assert "err=4.215e-03 [accept]" in line
        assert line.endswith("next=6.100000e-02")

    def test_failed_solve_line(self):
        record = StepRecord(
            step=4, time=0.15, deltat=0.061, nr_iters=20, scaled_error=math.inf,
            accepted=False, nr_failed=True,
        )
        line = format_step_record(record)
        assert "err=inf [REJECT] NR_FAIL" in line
        assert "next=" not in line

    def test_parse_recovers_records(self):
        records = [
            StepRecord(1, 0.0, 0.1, 3, 0.05, False),
            StepRecord(2, 0.0, 0.0447, 3, 0.0109, True, next_deltat=0.0428),
            StepRecord(3, 0.0447, 0.0428, 40, math.inf, False, nr_failed=True),
        ]
        text = "\n".join(
            ["Starting run"] + [format_step_record(r) for r in records] + ["Done"]
        )
        parsed = parse_step_trace(text)

        assert len(parsed) == 3
        assert [r.accepted for r in parsed] == [False, True, False]
        assert parsed[1].next_deltat == pytest.approx(0.0428)
        assert parsed[1].scaled_error == pytest.approx(0.0109, rel=1e-3)
        assert parsed[2].nr_failed
        assert math.isinf(parsed[2].scaled_error)
        assert parsed[0].next_deltat is None


class TestSummary:
    """Tests for summarize_trace()."""

    def test_summary(self):
        records = [
            StepRecord(1, 0.0, 0.1, 4, 0.05, False),
            StepRecord(2, 0.0, 0.05, 2, 0.01, True, next_deltat=0.05),
            StepRecord(3, 0.05, 0.05, 20, math.inf, False, nr_failed=True),
            StepRecord(4, 0.05, 0.0125, 2, 0.03, True, next_deltat=0.01),
        ]
        summary = summarize_trace(records)
        assert summary.total_attempts == 4
        assert summary.accepted_steps == 2
        assert summary.rejected_steps == 2
        assert summary.nr_failures == 1
        assert summary.error_min == pytest.approx(0.01)
        assert summary.error_max == pytest.approx(0.05)
        assert summary.error_mean == pytest.approx(0.03)
        assert summary.deltat_min == 0.0125
        assert summary.deltat_max == 0.05
        assert summary.nr_mean_iters == pytest.approx(7.0)

    def test_empty_trace(self):
        summary = summarize_trace([])
        assert summary.total_attempts == 0
        assert summary.error_mean is None
        assert summary.deltat_min is None

    def test_log_summary(self, caplog):
        summary = summarize_trace([StepRecord(1, 0.0, 0.1, 2, 0.02, True)])
        with caplog.at_level(logging.INFO, logger="adaptive_time.debug.step_trace"):
            log_trace_summary(summary)
        assert "1 attempts: 1 accepted, 0 rejected" in caplog.text
        assert "accepted dt range" in caplog.text


class TestControllerTrace:
    """The controller records and logs every attempt."""

    def test_record_trace(self, decay_system):
        config = ControllerConfig(target_tolerance=1e-2, upper_tolerance=2e-2)
        controller = AdaptiveStepController(
            decay_system, BackwardEuler(), config=config, record_trace=True
        )
        controller.run(t_stop=0.5, deltat=0.2)

        summary = summarize_trace(controller.trace)
        assert summary.accepted_steps == controller.stats.accepted_steps
        assert summary.rejected_steps == controller.stats.rejected_steps
        assert summary.rejected_steps >= 1
        assert controller.trace[-1].accepted
        assert [r.step for r in controller.trace] == list(range(1, len(controller.trace) + 1))

    def test_trace_off_by_default(self, decay_system):
        controller = AdaptiveStepController(decay_system, BackwardEuler())
        controller.advance_timestep(0.01)
        assert controller.trace == []

    def test_debug_log_round_trip(self, decay_system, debug_stream):
        controller = AdaptiveStepController(decay_system, BackwardEuler(), record_trace=True)
        controller.run(t_stop=0.2, deltat=0.01)

        parsed = parse_step_trace(debug_stream.getvalue())
        assert len(parsed) == len(controller.trace)
        for got, want in zip(parsed, controller.trace):
            assert got.accepted == want.accepted
            assert got.deltat == pytest.approx(want.deltat, rel=1e-6)
