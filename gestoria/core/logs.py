"""Logging setup for the application and its CLI."""

from __future__ import annotations

import logging

from flask import Flask

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(app: Flask) -> None:
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger("gestoria")
    logger.setLevel(level)
    if not any(getattr(h, "_gestoria", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._gestoria = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    app.logger.setLevel(level)
