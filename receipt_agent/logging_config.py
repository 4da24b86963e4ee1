# Logging configuration - rotating log file, console echo, error alert hook

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Optional, Union

LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
LOG_FILE = LOG_DIR / "receipt_agent.log"
LOG_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
LOG_BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Third-party loggers that are chatty at INFO
QUIET_LOGGERS = ("urllib3", "usb")

# callback(message, level), e.g. to flash the failure on the counter display
_error_alert_callback: Optional[Callable[[str, str], None]] = None


def set_error_alert_callback(callback: Optional[Callable[[str, str], None]]):
    """Install (or clear with None) the ERROR/CRITICAL alert callback."""
    global _error_alert_callback
    _error_alert_callback = callback


class ErrorAlertHandler(logging.Handler):
    """Forwards ERROR and CRITICAL records to the alert callback."""

    def __init__(self):
        super().__init__(level=logging.ERROR)

    def emit(self, record: logging.LogRecord):
        callback = _error_alert_callback
        if callback is None:
            return
        try:
            callback(self.format(record), record.levelname)
        except Exception:
            self.handleError(record)


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    return getattr(logging, str(level).upper(), logging.INFO)


def setup_logging(
    log_path: Optional[Union[str, Path]] = None,
    level: Union[int, str] = logging.INFO,
    console: bool = True,
    max_bytes: int = LOG_MAX_BYTES,
    backup_count: int = LOG_BACKUP_COUNT,
) -> Path:
    """
    Route every module logger to a rotating file (and stderr if console).
    Safe to call again; previous handlers are replaced, not stacked.
    Returns the log file path.
    """
    log_path = Path(log_path or LOG_FILE)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers = [
        RotatingFileHandler(log_path, maxBytes=max_bytes,
                            backupCount=backup_count, encoding="utf-8"),
        ErrorAlertHandler(),
    ]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    root.setLevel(_resolve_level(level))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_path
