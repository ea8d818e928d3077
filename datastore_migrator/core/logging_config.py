"""Logging configuration for the datastore migrator (console + optional file)."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog


def setup_logging(
    log_dir: Path | str | None = None,
    log_level: str | None = None,
    max_file_size_mb: int = 10,
) -> None:
    """Setup logging: structured console output on stderr plus an optional file.

    stdout is left untouched so the migration report can be piped cleanly.

    Args:
        log_dir: Directory for ``migration.log``; console-only when None
        log_level: Log level (defaults to LOG_LEVEL env var or INFO)
        max_file_size_mb: Max file size before truncation (no backup files kept)
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    log_level_num = getattr(logging, log_level.upper(), logging.INFO)

    # Clear any existing handlers to prevent duplicates
    logging.getLogger().handlers.clear()

    from structlog.stdlib import BoundLogger, LoggerFactory, ProcessorFormatter

    renderer = (
        structlog.dev.ConsoleRenderer()
        if sys.stderr.isatty()
        else structlog.processors.JSONRenderer()
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level_num)
    console_handler.setFormatter(ProcessorFormatter(processor=renderer))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_num)
    root_logger.addHandler(console_handler)

    log_file: Path | None = None
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "migration.log"
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=0,  # Don't keep old files, just truncate
            encoding="utf-8",
        )
        file_handler.setLevel(log_level_num)
        file_handler.setFormatter(
            ProcessorFormatter(processor=structlog.processors.JSONRenderer())
        )
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger("migrator")
    logger.debug(
        "Logging system initialized",
        log_level=log_level,
        log_file=str(log_file) if log_file else None,
        max_file_size_mb=max_file_size_mb,
    )


def get_logger(component: str | None = None) -> Any:
    """Get the migrator logger, optionally bound to a component name."""
    logger = structlog.get_logger("migrator")
    if component:
        return logger.bind(component=component)
    return logger
