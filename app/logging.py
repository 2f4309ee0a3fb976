"""Structured logging helpers."""

from __future__ import annotations

import logging

import structlog

# boto3 and aiohttp are chatty at INFO.
QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "aiohttp.access")


def configure_logging(level: int | str = logging.INFO, *, json_output: bool = True) -> None:
    """Route stdlib and structlog output to stdout.

    ``json_output`` renders one JSON object per line for log shippers; local
    runs can switch to the console renderer.
    """

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.set_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()

__all__ = ["configure_logging", "logger"]
