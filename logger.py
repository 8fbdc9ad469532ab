import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_NAME = "thermabox.log"
_FORMAT = logging.Formatter('[%(asctime)s] %(levelname)s %(name)s - %(message)s')
_configured = False
_file_handler: Optional[TimedRotatingFileHandler] = None


def _log_dir() -> Optional[Path]:
    """Return the log directory from the environment, if any."""
    value = os.environ.get("THERMABOX_LOG_DIR")
    return Path(value) if value else None


def _attach_file_handler(root: logging.Logger, log_dir: Path) -> None:
    global _file_handler
    if _file_handler is not None:
        root.removeHandler(_file_handler)
        _file_handler.close()
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(str(log_dir / LOG_NAME), when='midnight', backupCount=7)
    handler.setFormatter(_FORMAT)
    root.addHandler(handler)
    _file_handler = handler


def _configure() -> None:
    global _configured
    if _configured:
        return
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    stream = logging.StreamHandler()
    stream.setFormatter(_FORMAT)
    root.addHandler(stream)
    log_dir = _log_dir()
    if log_dir is not None:
        _attach_file_handler(root, log_dir)
    _configured = True


def configure(verbose: bool = False, log_dir: Optional[Path] = None) -> None:
    """Set the root level and optionally start writing a rotating log file."""
    _configure()
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    if log_dir is not None:
        _attach_file_handler(root, Path(log_dir))


def get_logger(name: str) -> logging.Logger:
    """Return a logger with the given name after configuring logging."""
    _configure()
    return logging.getLogger(name)
