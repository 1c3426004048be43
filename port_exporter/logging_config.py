"""Structured logging setup.

Logging is configured once, explicitly, by the process entry point.
Loading configuration never changes logging state.
"""

import logging
from dataclasses import dataclass

import structlog

LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


@dataclass(frozen=True)
class LoggingConfig:
    """How the process should log."""

    level: str = "info"
    json_output: bool = True

    @property
    def level_number(self) -> int:
        return LOG_LEVELS[self.level.lower()]


def configure_logging(config: LoggingConfig) -> None:
    """Configure stdlib logging and structlog from config."""
    logging.basicConfig(
        level=config.level_number,
        format="%(message)s",
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if config.json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
