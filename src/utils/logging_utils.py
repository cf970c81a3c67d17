import logging
import os
import time
from collections import deque
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

# Setup logger for this module
logger = logging.getLogger(__name__)

ACTIVITY_LOG_SIZE = 50


class ColoredFormatter(logging.Formatter):
    """Custom formatter to add colors to console output"""

    def format(self, record):
        log_message = super().format(record)

        # Only colorize WARNING and ERROR levels, leave INFO as default
        if record.levelname == 'WARNING':
            return f"\033[33m{log_message}\033[0m"  # Yellow
        elif record.levelname == 'ERROR':
            return f"\033[31m{log_message}\033[0m"  # Red
        elif record.levelname == 'CRITICAL':
            return f"\033[35m{log_message}\033[0m"  # Magenta
        else:
            return log_message


class ActivityLogHandler(logging.Handler):
    """Keeps the newest log records in memory as the operator activity feed."""

    def __init__(self, capacity: int = ACTIVITY_LOG_SIZE, level=logging.INFO):
        super().__init__(level)
        self._entries = deque(maxlen=capacity)

    def emit(self, record):
        try:
            self._entries.appendleft({
                'time': datetime.fromtimestamp(record.created).strftime('%H:%M:%S'),
                'message': record.getMessage(),
                'type': record.levelname.lower(),
            })
        except Exception:
            self.handleError(record)

    def entries(self) -> list[dict]:
        return list(self._entries)

    def clear(self):
        self._entries.clear()


_activity_handler: Optional[ActivityLogHandler] = None


def get_activity_handler() -> ActivityLogHandler:
    """Process-wide activity handler, created on first use."""
    global _activity_handler
    if _activity_handler is None:
        _activity_handler = ActivityLogHandler()
    return _activity_handler


def setup_logging(
        app_name: str,
        log_level=logging.INFO,
        log_dir: str = 'logs',
        info_modules: list[str] = None,
        console: bool = True
):
    """
    Configure standardized logging with rotation.

    Sets up:
    - Rotating file handler (10MB max per file, 5 backups)
    - Console handler with colored output (by default)
    - In-memory activity handler (newest 50 records, exported with the data)
    - Local timezone formatting

    Args:
        app_name: Name of the application, used for the log file name
        log_level: Logging level for root logger (default: logging.INFO)
        log_dir: Directory for log files (default: 'logs')
        info_modules: List of module names to set to INFO level (useful when root is WARNING)
        console: Whether to also log to the console

    Returns:
        logging.Logger: Root logger instance (configured)
    """
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())

    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, f'{app_name}.log')

    # Create rotating file handler (10MB max, 5 backups = ~50MB total)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter('%(asctime)s - %(filename)s:%(lineno)d - %(levelname)s - %(message)s')
    file_formatter.converter = time.localtime  # Use local timezone instead of UTC
    file_handler.setFormatter(file_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Clear any existing handlers (force=True equivalent)
    root_logger.handlers.clear()
    root_logger.addHandler(file_handler)
    root_logger.addHandler(get_activity_handler())

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(ColoredFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        root_logger.addHandler(console_handler)

    # Set specific modules to INFO level if provided
    if info_modules:
        for module_name in info_modules:
            logging.getLogger(module_name).setLevel(logging.INFO)

    # websocket-client is chatty at INFO on every reconnect
    logging.getLogger('websocket').setLevel(logging.WARNING)

    return logging.getLogger()
