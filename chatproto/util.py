"""Logging setup shared by the server, client and CLI."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

__all__ = ["LOG", "LOG_FORMAT", "configure_logging"]

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(message)s"

# Package root logger; modules log through logging.getLogger(__name__).
LOG = logging.getLogger("chatproto")


def configure_logging(level: str = "INFO", logfile: Optional[str] = None) -> logging.Logger:
    """
    Attach a stdout handler (and a rotating file handler when `logfile` is
    given) to the package logger. Calling it again replaces the handlers
    instead of stacking duplicates.
    """
    LOG.setLevel(level.upper())
    for handler in list(LOG.handlers):
        LOG.removeHandler(handler)
        handler.close()

    fmt = logging.Formatter(LOG_FORMAT, "%H:%M:%S")

    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(fmt)
    LOG.addHandler(sh)

    if logfile:
        # 1 MiB per file, 3 backups
        fh = RotatingFileHandler(logfile, maxBytes=1_048_576, backupCount=3, encoding="utf-8")
        fh.setFormatter(fmt)
        LOG.addHandler(fh)

    return LOG
