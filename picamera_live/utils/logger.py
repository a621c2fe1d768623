"""
Logging setup for picamera-live.

Everything logs to the root logger, which writes to stdout and optionally to
a size-rotated file. A relative log file name is placed in the ``logs``
directory under the base directory.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .config import Config


DEFAULT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DIR = 'logs'

# Per-request access lines drown out capture messages
QUIET_LOGGERS = ('aiohttp.access',)


def setup_logging(
    log_file: Optional[Path] = None,
    level: str = 'INFO',
    max_size_mb: int = 10,
    backup_count: int = 3,
    log_format: Optional[str] = None,
    console: bool = True
) -> None:
    """
    Configure the root logger, replacing any existing handlers.

    Args:
        log_file: Log file path (None = no file logging)
        level: Log level name
        max_size_mb: Log file size in MB before rotation
        backup_count: Number of rotated files to keep
        log_format: Format string, defaults to DEFAULT_FORMAT
        console: Whether to log to stdout
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)
    formatter = logging.Formatter(log_format or DEFAULT_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers = []

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    quiet_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str) -> logging.Logger:
    """Get the logger for a module (usually ``__name__``)."""
    return logging.getLogger(name)


def resolve_log_file(config: 'Config') -> Optional[Path]:
    """
    Get the configured log file path.

    Absolute and ``~`` paths are used as given; bare names go to the logs
    directory under the base directory.
    """
    log_file = config.get('logging.file')
    if not log_file:
        return None

    path = Path(log_file).expanduser()
    if path.is_absolute():
        return path
    return config.config_dir(LOG_DIR) / path


def setup_from_config(config: 'Config') -> None:
    """Configure logging from the ``logging`` section of a Config."""
    section = config.get_logging_config()
    setup_logging(
        log_file=resolve_log_file(config),
        level=section.get('level', 'INFO'),
        max_size_mb=section.get('max_size_mb', 10),
        backup_count=section.get('backup_count', 3),
        log_format=section.get('format'),
        console=section.get('console', True)
    )
