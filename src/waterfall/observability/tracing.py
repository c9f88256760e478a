"""Run correlation ids for waterfall runs.

Every pipeline run gets its own id, bound into structlog's context
variables so every event logged while the run is driving the stream
carries ``run_id`` without passing it around.

Usage:
    from waterfall.observability.tracing import generate_run_id, run_scope

    with run_scope(generate_run_id()):
        log.info("run_start")  # logged with run_id=...
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator


def generate_run_id() -> str:
    """Generate a unique run ID for a pipeline invocation.

    Returns:
        A UUID string that correlates every event of a single run.
    """
    return str(uuid.uuid4())


@contextmanager
def run_scope(run_id: str) -> Iterator[str]:
    """Bind a run ID into the structlog context for the duration of a block.

    The previous context is restored on exit, including when the block is
    left through cancellation.

    Args:
        run_id: The run ID to bind.

    Yields:
        The bound run ID.
    """
    with structlog.contextvars.bound_contextvars(run_id=run_id):
        yield run_id
