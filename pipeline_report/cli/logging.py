"""Console and rotating-file logging for CLI commands.

``configure_cli_logging`` sets up console logging plus a rotating log file
per command under ``~/.local/share/pipeline-report/logs/``::

    serve.log     # HTTP server, including scheduled report runs
    report.log    # one-shot report generation

Follow a running server with::

    tail -f ~/.local/share/pipeline-report/logs/serve.log
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIR = Path.home() / ".local" / "share" / "pipeline-report" / "logs"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Per-request INFO logs from the HTTP client stack drown the pipeline output
NOISY_LOGGERS = ("httpx", "httpcore")


def get_log_dir() -> Path:
    """Log directory, created on first use."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    return LOG_DIR


def get_log_file(command: str) -> Path:
    return get_log_dir() / f"{command}.log"


def configure_cli_logging(
    command: str,
    *,
    verbose: bool = False,
    console_level: int | None = None,
    file_level: int = logging.DEBUG,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 3,
) -> Path:
    """Set console verbosity and attach the per-command rotating log file.

    Sets up:
    - Console: WARNING, INFO with ``verbose``, or ``console_level``
    - File: DEBUG-level rotating log at
      ``~/.local/share/pipeline-report/logs/<command>.log``

    Returns:
        Path to the log file
    """
    level = console_level if console_level is not None else (
        logging.INFO if verbose else logging.WARNING
    )
    logging.basicConfig(level=level, format=LOG_FORMAT)
    root = logging.getLogger()
    for handler in root.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    log_file = get_log_file(command)
    package_logger = logging.getLogger("pipeline_report")

    # One file handler per process, even if called twice
    for handler in package_logger.handlers[:]:
        if isinstance(handler, logging.FileHandler):
            package_logger.removeHandler(handler)
            handler.close()

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    package_logger.addHandler(file_handler)

    # NOTSET inherits WARNING from the root, which would starve the file handler
    if package_logger.level == logging.NOTSET or package_logger.level > file_level:
        package_logger.setLevel(file_level)

    return log_file
