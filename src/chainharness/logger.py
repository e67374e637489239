"""Structured logging for the harness.

Configured at import from ``LOG_LEVEL`` and ``LOG_FORMAT`` (``console`` or
``json``) so that engine code can log before Settings is loaded. Test suites
running in CI usually want ``LOG_FORMAT=json`` so container ids and exit codes
stay greppable across many concurrent jobs.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

_SHARED_PROCESSORS: list[structlog.typing.Processor] = [
    structlog.stdlib.filter_by_level,
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _renderer(fmt: str) -> structlog.typing.Processor:
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure(level_name: str, fmt: str = "console") -> None:
    """(Re)configure the root logger level and the structlog pipeline."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(level)

    processors = list(_SHARED_PROCESSORS)
    if fmt == "json":
        processors.append(structlog.processors.format_exc_info)
    else:
        processors.append(structlog.dev.set_exc_info)
    processors.append(_renderer(fmt))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def set_level(level_name: str) -> None:
    """Apply a log level picked up after import (from Settings or the CLI)."""
    logging.getLogger().setLevel(getattr(logging, level_name.upper(), logging.INFO))


configure(os.environ.get("LOG_LEVEL", "INFO"), os.environ.get("LOG_FORMAT", "console").lower())

logger: structlog.stdlib.BoundLogger = structlog.get_logger("chainharness")
