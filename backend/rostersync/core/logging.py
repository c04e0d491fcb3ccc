"""Logging setup shared by the API process and scripts."""

import logging

from rostersync.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DATE_FORMAT = "%H:%M:%S"


def configure_logging(level: str | int | None = None, *, force: bool = False) -> None:
    """
    Configure root logging once.

    The level defaults to settings.LOG_LEVEL. Calling again is a no-op
    unless force=True, which replaces any handlers already installed.
    """
    if level is None:
        level = settings.LOG_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT, force=force)
    # SQL echo is controlled separately; keep the engine logger quiet by default
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
