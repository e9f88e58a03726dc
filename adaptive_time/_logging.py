"""Logging configuration for adaptive-time.

Provides two logging modes:
- Default: WARNING level only (quiet)
- Debug tracing: DEBUG level with immediate flush, so per-attempt
  accept/reject decisions show up while a long run is still going

Usage:
    from adaptive_time._logging import logger, enable_debug_logging

    # Default - only warnings
    logger.warning("This will show")
    logger.debug("This won't show")

    # Enable to follow the step controller attempt by attempt
    enable_debug_logging()
    logger.debug("Now this shows and flushes immediately")

    # Enable with perf_counter timestamps (for timing individual steps)
    enable_debug_logging(with_perf_counter=True)
    logger.debug("Now shows: [1234.567890] message")
"""

import logging
import sys
import time

# Create the adaptive_time logger
logger = logging.getLogger("adaptive_time")

# Default: WARNING level only (quiet operation)
logger.setLevel(logging.WARNING)

# Add a default handler if none exists
if not logger.handlers:
    _default_handler = logging.StreamHandler(sys.stdout)
    _default_handler.setLevel(logging.WARNING)
    _default_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(_default_handler)


class FlushingHandler(logging.StreamHandler):
    """StreamHandler that flushes after every emit."""

    def emit(self, record):
        super().emit(record)
        self.flush()


class PerfCounterHandler(FlushingHandler):
    """FlushingHandler that prepends time.perf_counter() to each message.

    Differences between consecutive stamps give the wall time spent on a
    step attempt without instrumenting the solver itself.
    """

    def emit(self, record):
        record.msg = f"[{time.perf_counter():.6f}] {record.msg}"
        super().emit(record)


def enable_debug_logging(with_perf_counter: bool = False, stream=None):
    """Enable DEBUG level logging with immediate flush.

    Args:
        with_perf_counter: If True, prepend time.perf_counter() timestamps.
        stream: Output stream (default: sys.stdout)
    """
    logger.setLevel(logging.DEBUG)

    # Remove existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    stream = sys.stdout if stream is None else stream
    if with_perf_counter:
        handler = PerfCounterHandler(stream)
    else:
        handler = FlushingHandler(stream)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)


def set_log_level(level: int):
    """Set the logging level.

    Args:
        level: logging.DEBUG, logging.INFO, logging.WARNING, etc.
    """
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
