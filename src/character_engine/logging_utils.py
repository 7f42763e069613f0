from __future__ import annotations

import logging

LOG_FORMAT = "%(levelname)s:%(name)s:%(message)s"


def get_logger(name: str, level: str | int | None = None) -> logging.Logger:
    """Return a module-level logger configured with basicConfig."""
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger


def set_engine_level(level: str | int) -> None:
    """Apply one level to every ``character_engine`` logger."""
    logging.getLogger("character_engine").setLevel(level.upper() if isinstance(level, str) else level)
