"""Payment-ledger reconciliation over an Excel workbook.

Importing the package sets up the shared ``payledger`` logger. Log files go
to ``$PAYLEDGER_LOG_DIR`` when set, otherwise to ``~/.payledger/logs``.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Mapping, Optional


LOG_DIR_ENV = "PAYLEDGER_LOG_DIR"
LOG_FILE_NAME = "payledger.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def resolve_log_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Directory that receives the rotating log file."""
    environ = os.environ if environ is None else environ
    override = (environ.get(LOG_DIR_ENV) or "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / ".payledger" / "logs"


def _attach_file_handler(logger: logging.Logger, formatter: logging.Formatter, log_dir: Path) -> None:
    log_file = log_dir / LOG_FILE_NAME
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        # Console logging still works; a read-only home must not block the CLI.
        print(f"Warning: unable to open log file '{log_file}': {exc}", file=sys.stderr)
        return
    handler.setLevel(logging.INFO)
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def configure_logging(log_dir: Optional[Path] = None) -> logging.Logger:
    """Attach file and stderr handlers to the package logger once."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    _attach_file_handler(logger, formatter, log_dir or resolve_log_dir())

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.WARNING)
    console.setFormatter(formatter)
    logger.addHandler(console)
    return logger


log = configure_logging()
