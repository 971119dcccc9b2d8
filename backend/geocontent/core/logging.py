"""Logging setup for the geocontent service.

Modules log through ``logging.getLogger(__name__)``; this module only
installs the console handler and format once per process.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from geocontent.core import config

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s]: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ROOT_LOGGER = "geocontent"


def configure_logging(settings: config.Settings) -> logging.Logger:
    """Attach a console handler to the ``geocontent`` logger tree.

    Calling it again only updates the level, so app factories and tests can
    invoke it freely.

    Args:
        settings: Application settings providing ``log_level``.

    Returns:
        The configured ``geocontent`` root logger.
    """
    logger = logging.getLogger(_ROOT_LOGGER)
    logger.setLevel(settings.log_level)
    if not any(getattr(h, "_geocontent", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        handler._geocontent = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger
