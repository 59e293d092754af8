import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from rich.logging import RichHandler

FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", log_file: Optional[str] = None,
                  max_bytes: int = 10 * 1024 * 1024, backup_count: int = 3) -> logging.Logger:
    """
    Route blockrelay and werkzeug logs to the console and, optionally, a
    rotating log file.

    Args:
        level (str): Level name for the blockrelay loggers
        log_file (str): Path of the rotating log file, None for console only
        max_bytes (int): Size at which the log file rolls over
        backup_count (int): Rolled-over files kept

    Returns:
        logging.Logger: The package logger
    """
    handlers = [RichHandler(rich_tracebacks=True, show_path=False)]

    if log_file:
        if os.path.dirname(log_file):
            os.makedirs(os.path.dirname(log_file), exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(level=logging.WARNING, format="%(message)s", datefmt="[%X]",
                        handlers=handlers, force=True)

    logger = logging.getLogger('blockrelay')
    logger.setLevel(level.upper())
    # werkzeug's access and error lines (tracebacks of failed requests)
    logging.getLogger('werkzeug').setLevel(logging.INFO)
    return logger
