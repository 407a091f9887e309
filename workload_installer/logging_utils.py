from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

DEFAULT_LOG_PATH = "/var/log/workload-installer.log"
FALLBACK_LOG_NAME = "workload-installer.log"
PACKAGE_LOGGER = "workload_installer"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"


class _InstallLogHandler(logging.FileHandler):
    """File handler owned by ``configure_logging``; marks the package logger as set up."""


def _installed_handlers(logger: logging.Logger) -> List[logging.Handler]:
    return [h for h in logger.handlers if isinstance(h, _InstallLogHandler)]


def _open_log_file(requested: Path) -> _InstallLogHandler:
    try:
        requested.parent.mkdir(parents=True, exist_ok=True)
        return _InstallLogHandler(requested, encoding="utf-8")
    except OSError:
        # Per-user installs usually cannot write under /var/log.
        return _InstallLogHandler(Path.cwd() / FALLBACK_LOG_NAME, encoding="utf-8")


def configure_logging(
    log_path: Optional[str] = None,
    level: int = logging.INFO,
    also_console: bool = True,
) -> str:
    """Send the installer's log records to a file (and optionally stderr).

    Handlers go on the ``workload_installer`` package logger, so every pack
    install, rollback, record write and GC deletion lands in the file
    without touching the host application's root logger. Calling again is
    a no-op that returns the path already in use.

    Returns the actual file path being written.
    """

    logger = logging.getLogger(PACKAGE_LOGGER)
    existing = _installed_handlers(logger)
    if existing:
        return existing[0].baseFilename

    logger.setLevel(level)
    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    file_handler = _open_log_file(Path(log_path or DEFAULT_LOG_PATH))
    file_handler.setFormatter(fmt)
    logger.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(fmt)
        logger.addHandler(console)

    logging.getLogger(__name__).info(
        "Logging initialized (requested=%s, actual=%s)", log_path, file_handler.baseFilename
    )
    return file_handler.baseFilename
