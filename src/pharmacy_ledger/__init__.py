"""Pharmacy point-of-sale and inventory ledger backed by an Excel workbook."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = PROJECT_ROOT / ".logs"
LOG_FILE = LOG_DIR / "pharmacy_ledger.log"
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def resolve_log_level(level: str) -> int:
    """Translate a level name such as ``"debug"`` into its ``logging`` constant.

    Raises:
        ValueError: If ``level`` is not a standard logging level name.
    """
    numeric = logging.getLevelName(level.strip().upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return numeric


def set_log_level(level: str) -> None:
    """Apply ``level`` to the package logger and every handler attached to it."""
    numeric = resolve_log_level(level)
    log.setLevel(numeric)
    for handler in log.handlers:
        handler.setLevel(numeric)
    log.debug("Log level set to %s", logging.getLevelName(numeric))


def _build_handlers(level: int) -> list:
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers = []
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8"))
    except OSError as exc:
        print(f"Warning: ledger log file unavailable at '{LOG_FILE}': {exc}", file=sys.stderr)
    handlers.append(logging.StreamHandler(sys.stderr))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def _configure_logging() -> logging.Logger:
    """Attach the ledger's file and console handlers once per process.

    The level starts at :data:`DEFAULT_LOG_LEVEL`; ``[Logging] Level`` in
    ``config.ini`` overrides it when a runtime context is loaded.
    """
    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = resolve_log_level(DEFAULT_LOG_LEVEL)
    logger.setLevel(level)
    for handler in _build_handlers(level):
        logger.addHandler(handler)
    return logger


log = _configure_logging()
