"""
Observability module - Logging, Metrics, and Tracing.
"""

from gem_ledger.observability.logging import bind_user, get_logger, log_context, setup_logging
from gem_ledger.observability.metrics import metrics
from gem_ledger.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "bind_user",
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
