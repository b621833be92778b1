"""Run log configuration."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from cmsync.config.models import LoggingSettings

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
_HANDLER_NAME = "cmsync-run-log"


class RunLogFormatter(logging.Formatter):
    """Format run log lines, printing WARNING records as `WARN`."""

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno == logging.WARNING:
            # Copy so other handlers still see the standard level name.
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = "WARN"
        return super().format(record)


def configure_logging(settings: LoggingSettings, *, log_file: Path | None = None) -> Path:
    """Attach the append-only run log to the `cmsync` logger.

    Calling this again replaces the previously attached handler.

    Args:
        settings: Logging section of the resolved configuration.
        log_file: Optional path overriding `settings.file`.

    Returns:
        Path: Location of the log file.
    """
    path = (log_file or Path(settings.file)).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("cmsync")
    for handler in list(logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            logger.removeHandler(handler)
            handler.close()

    handler = RotatingFileHandler(
        path,
        mode="a",
        maxBytes=max(settings.max_size_mb, 0) * 1024 * 1024,
        backupCount=settings.backup_count,
        encoding="utf-8",
    )
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(RunLogFormatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    logger.setLevel(logging.getLevelName(settings.level.upper()))
    return path


__all__ = ["LOG_FORMAT", "RunLogFormatter", "configure_logging"]
