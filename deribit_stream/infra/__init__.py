"""Infrastructure utilities for logging and metrics."""

from .logging import configure_logging
from .metrics import MetricsSink

__all__ = [
    "configure_logging",
    "MetricsSink",
]
