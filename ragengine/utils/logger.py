"""Logging configuration using loguru.

Every engine module logs through ``get_logger("<component>")`` which binds
the component name (``cache``, ``index``, ``ingestion``...) into the record's
``extra`` so sinks can show or filter on it.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from ragengine.utils.config import Settings

DEFAULT_COMPONENT = "ragengine"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[component]: <10}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[component]: <10} | "
    "{name}:{function}:{line} - {message}"
)


def setup_logger(settings: Optional[Settings] = None, component: Optional[str] = None):
    """Configure application logging using loguru.

    Replaces existing sinks with a console sink and, when ``log_file_path``
    is set, a rotating file sink (JSON lines if ``log_format`` is ``json``).

    Args:
        settings: Logging settings (read from the environment when omitted)
        component: Only emit records bound to this component
    """
    settings = settings or Settings()

    logger.remove()
    logger.configure(extra={"component": DEFAULT_COMPONENT})

    record_filter = None
    if component:
        def record_filter(record):
            return record["extra"].get("component") == component

    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=settings.log_level,
        colorize=True,
        filter=record_filter,
    )

    if settings.log_file_path:
        _add_file_sink(settings, record_filter)

    get_logger("logging").info(
        f"Logger initialized with level: {settings.log_level}"
        + (f", file: {settings.log_file_path}" if settings.log_file_path else "")
    )

    return logger


def _add_file_sink(settings: Settings, record_filter):
    log_path = Path(settings.log_file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    json_output = settings.log_format == "json"
    logger.add(
        log_path,
        format="{message}" if json_output else FILE_FORMAT,
        level=settings.log_level,
        rotation=f"{settings.log_max_size_mb} MB",
        retention=settings.log_backup_count,
        serialize=json_output,
        filter=record_filter,
    )


def get_logger(component: str = DEFAULT_COMPONENT):
    """Get the logger bound to an engine component."""
    return logger.bind(component=component)
