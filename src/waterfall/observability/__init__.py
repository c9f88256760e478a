"""Observability module for the waterfall client.

Provides structured logging and run correlation ids.
"""

from waterfall.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
)
from waterfall.observability.tracing import generate_run_id, run_scope

__all__ = [
    "close_file_logging",
    "configure_logging",
    "generate_run_id",
    "get_logger",
    "run_scope",
]
