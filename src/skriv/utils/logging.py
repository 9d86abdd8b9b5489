"""Logging setup: a rotating ``skriv.log`` under the data directory."""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from ..services.settings import Settings

__all__ = ["LOG_FILENAME", "setup_logging", "route_qt_messages"]

LOG_FILENAME = "skriv.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_QUIET_LOGGERS: tuple[str, ...] = ("asyncio", "qasync")


def setup_logging(settings: Settings, *, debug: bool = False, console: bool = True) -> Path:
    """Install the file (and console) handlers described by ``settings``.

    DEBUG is enabled by ``debug`` or ``settings.debug_logging``.
    ``SKRIV_LOG_DIR`` takes precedence over ``settings.log_dir``. Calling it
    again replaces the previous handlers. Returns the log file path.
    """

    level = logging.DEBUG if debug or settings.debug_logging else logging.INFO
    log_dir = Path(os.environ.get("SKRIV_LOG_DIR") or settings.log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILENAME

    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8"
        )
    ]
    if console:
        handlers.append(logging.StreamHandler())
    formatter = logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return log_path


def route_qt_messages() -> None:
    """Forward Qt's own diagnostics to the ``PySide6`` logger."""

    from PySide6.QtCore import QtMsgType, qInstallMessageHandler

    levels = {
        QtMsgType.QtDebugMsg: logging.DEBUG,
        QtMsgType.QtInfoMsg: logging.INFO,
        QtMsgType.QtWarningMsg: logging.WARNING,
        QtMsgType.QtCriticalMsg: logging.ERROR,
        QtMsgType.QtFatalMsg: logging.CRITICAL,
    }
    qt_logger = logging.getLogger("PySide6")

    def _handler(mode, _context, message):  # type: ignore[no-untyped-def]
        qt_logger.log(levels.get(mode, logging.INFO), message)

    qInstallMessageHandler(_handler)
