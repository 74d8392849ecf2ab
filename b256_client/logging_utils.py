from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_HANDLER_NAME = "b256_client"


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """Attach a single stream handler to the package logger.

    Calling it again only adjusts the level, so repeated application start-up
    (tests, reloads) never duplicates log lines.
    """
    if level is None:
        level = os.getenv("B256_LOG_LEVEL", "INFO").strip().upper() or "INFO"

    logger = logging.getLogger("b256_client")
    logger.setLevel(level)

    if not any(handler.get_name() == _HANDLER_NAME for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger
