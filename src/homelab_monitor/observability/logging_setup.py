"""structlog setup.

Every module logs through ``structlog.get_logger(__name__)``; this module
only decides the output pipeline and the minimum level.
"""

import logging

import structlog

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog with a level-filtering bound logger.

    Raises:
        ValueError: If ``level`` is not a standard logging level name.
    """
    level = level.upper()
    if level not in VALID_LEVELS:
        raise ValueError(f"Unknown log level: {level}")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        cache_logger_on_first_use=False,
    )


def bind_logging_config(config) -> None:
    """Apply ``logging.level`` from a ConfigManager and follow later updates."""
    configure_logging(config.get("logging.level"))

    def _on_config_updated(key: str, value) -> None:
        if key == "logging.level":
            configure_logging(value)

    config.subscribe(_on_config_updated)
