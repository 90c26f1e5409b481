"""
Logging setup for hosts embedding the engine.

Engine modules log through ``logging.getLogger(__name__)``; this module
routes those records through structlog so hosts get JSON logs (or
console output at DEBUG level). Hosts call :func:`configure_logging`
once at startup; without an explicit level the ``log_level`` setting
(``TERRAIN_HYDRO_LOG_LEVEL``) is used.
"""

import logging

import structlog

from terrain_hydro.config import get_settings


def configure_logging(level: str | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Parameters
    ----------
    level : str, optional
        Logging level name (DEBUG, INFO, WARNING, ERROR). Defaults to
        ``Settings.log_level``.
    """
    if level is None:
        level = get_settings().log_level
    log_level = getattr(logging, level.upper())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
            if level.upper() != "DEBUG"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
    )
    logging.getLogger("terrain_hydro").setLevel(log_level)
