"""Logging setup for assistant-speech.

Library modules only create module loggers; the host application (or the
command-line entry point) decides where records go by calling
setup_logging() once at startup.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Get a module logger.

    Args:
        name: Logger name, normally __name__.

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    max_size_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Configure console and optional rotating file logging.

    Args:
        level: Log level name (e.g., "DEBUG", "INFO").
        log_file: Optional path for a rotating log file.
        max_size_mb: Maximum size of one log file before rotation.
        backup_count: Number of rotated files to keep.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
