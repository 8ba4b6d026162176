"""
Structured logging configuration for the crisis detection engine.

Configures structlog to work alongside stdlib logging so that both
`logging.getLogger()` and `structlog.get_logger()` produce consistent,
structured output: JSON by default, human-readable in dev mode.

Everything is written to a local stream handler. Nothing here ships
logs anywhere, and callers must only log category names, scores and
counts, never raw interaction content.

Usage:
    from crisis_engine.lib.logging import setup_logging

    setup_logging()  # Call once when the host starts the engine
"""

import logging
import os
import sys

import structlog


def setup_logging(dev_mode: bool | None = None, log_level: str | None = None) -> None:
    """
    Configure structlog and stdlib logging for the engine.

    Args:
        dev_mode: Human-readable console output when True. Defaults to
                  CRISIS_ENGINE_DEV_MODE=1.
        log_level: Root log level name. Defaults to LOG_LEVEL or INFO.
    """
    if dev_mode is None:
        dev_mode = os.environ.get("CRISIS_ENGINE_DEV_MODE") == "1"
    level_name = (log_level or os.environ.get("LOG_LEVEL", "INFO")).upper()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if dev_mode:
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    engine_logger = logging.getLogger("crisis_engine")
    engine_logger.handlers.clear()
    engine_logger.addHandler(handler)
    engine_logger.setLevel(getattr(logging, level_name, logging.INFO))
    engine_logger.propagate = False

    # SQLAlchemy echoes statements (which include payloads) at INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
