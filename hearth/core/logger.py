"""Unified logging for hearth with console and file output."""
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

console = Console()

# Log file configuration
LOG_DIR = Path("/var/log/hearth")
LOG_FILE = LOG_DIR / "hearth.log"
FALLBACK_LOG_FILE = Path("/tmp/hearth.log")

# Track which file logging has been set up
_file_log_path = None


def setup_file_logging(log_file: str = None, verbose: bool = False) -> Path:
    """Set up file logging for hearth operations.

    Args:
        log_file: Path to log file (defaults to /var/log/hearth/hearth.log)
        verbose: Enable debug-level logging

    Returns:
        Path of the log file actually in use

    Note:
        Creates log directory if it doesn't exist.
        Falls back to /tmp if the target directory is not writable.
    """
    global _file_log_path

    if _file_log_path is not None:
        return _file_log_path

    target_log_file = Path(log_file) if log_file else LOG_FILE

    try:
        target_log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(target_log_file)
    except OSError:
        target_log_file = FALLBACK_LOG_FILE
        target_log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(target_log_file)

    root_logger = logging.getLogger("hearth")
    file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root_logger.addHandler(file_handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    _file_log_path = target_log_file
    root_logger.info(f"hearth logging initialized: {target_log_file}")
    return target_log_file


def current_log_file() -> Path:
    """Return the active log file, or None when only console logging is on."""
    return _file_log_path


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance with console output.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger with Rich console handler

    Note:
        File logging must be enabled separately via setup_file_logging()
    """
    logger = logging.getLogger(name)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=console, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)

    return logger
