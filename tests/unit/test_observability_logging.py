"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest
from rich.logging import RichHandler

import waterfall.observability.logging as log_module
from waterfall.observability import (
    close_file_logging,
    configure_logging,
    get_logger,
    run_scope,
)

if TYPE_CHECKING:
    from pathlib import Path


def _read_entries(log_file: Path) -> list[dict[str, object]]:
    with log_file.open() as f:
        return [json.loads(line) for line in f]


def test_configure_logging_sets_level_warning() -> None:
    """Default verbosity (0) sets WARNING level."""
    configure_logging(verbosity=0)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.WARNING


def test_configure_logging_verbose_sets_debug_root() -> None:
    """verbosity=1 opens the root logger; the console handler filters at INFO."""
    configure_logging(verbosity=1)

    root_logger = logging.getLogger()
    assert root_logger.level == logging.DEBUG
    console_levels = [h.level for h in root_logger.handlers if isinstance(h, RichHandler)]
    assert console_levels == [logging.INFO]


def test_get_logger_returns_bound_logger() -> None:
    """get_logger returns a structlog logger with expected methods."""
    logger = get_logger(__name__)

    assert hasattr(logger, "info")
    assert hasattr(logger, "debug")
    assert hasattr(logger, "error")
    assert hasattr(logger, "warning")


def test_get_logger_auto_configures() -> None:
    """get_logger configures logging if not already done."""
    log_module._configured = False

    logger = get_logger("test")

    assert log_module._configured is True
    assert logger is not None


@pytest.mark.parametrize("name", ["httpx", "httpcore", "asyncio"])
def test_configure_logging_suppresses_noisy_loggers(name: str) -> None:
    """Transport and event-loop loggers stay at WARNING even at -vv."""
    configure_logging(verbosity=2)

    assert logging.getLogger(name).level == logging.WARNING


def test_configure_logging_with_file_logging(tmp_path: Path) -> None:
    """File logging creates the log directory and opens debug.jsonl in it."""
    log_dir = tmp_path / "logs"
    configure_logging(verbosity=0, log_to_file=True, log_dir=log_dir)

    assert log_dir.is_dir()
    assert log_module._file_handler is not None
    assert log_module._file_handler.baseFilename == str(log_dir / "debug.jsonl")
    close_file_logging()


def test_configure_logging_requires_log_dir_for_file_logging() -> None:
    """log_to_file=True without log_dir raises ValueError."""
    with pytest.raises(ValueError, match="log_dir is required"):
        configure_logging(verbosity=0, log_to_file=True, log_dir=None)


def test_configure_logging_reconfiguration_closes_handler(tmp_path: Path) -> None:
    """Reconfiguring logging closes previous file handler."""
    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    first_handler = log_module._file_handler
    assert first_handler is not None

    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    second_handler = log_module._file_handler

    assert first_handler.stream is None or first_handler.stream.closed
    assert second_handler is not None
    close_file_logging()


def test_close_file_logging_clears_handler(tmp_path: Path) -> None:
    """close_file_logging closes handler and clears reference."""
    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)
    assert log_module._file_handler is not None

    close_file_logging()

    assert log_module._file_handler is None


def test_jsonl_file_handler_writes_structlog_context(tmp_path: Path) -> None:
    """JSONLFileHandler writes event name and keyword context as JSON."""
    configure_logging(verbosity=2, log_to_file=True, log_dir=tmp_path)

    logger = get_logger("test.context")
    logger.info("transition_rejected", from_phase="architect", to_phase="executor")
    close_file_logging()

    entries = [
        e for e in _read_entries(tmp_path / "debug.jsonl") if e["message"] == "transition_rejected"
    ]
    assert len(entries) == 1
    assert entries[0]["from_phase"] == "architect"
    assert entries[0]["to_phase"] == "executor"
    assert entries[0]["level"] == "INFO"


def test_run_scope_binds_run_id_into_file_log(tmp_path: Path) -> None:
    """Events logged inside run_scope carry the run id."""
    configure_logging(verbosity=0, log_to_file=True, log_dir=tmp_path)

    logger = get_logger("test.run")
    with run_scope("run-42"):
        logger.info("run_start", provider="auto")
    close_file_logging()

    entries = [e for e in _read_entries(tmp_path / "debug.jsonl") if e["message"] == "run_start"]
    assert entries[0]["run_id"] == "run-42"
