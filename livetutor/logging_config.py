"""Logging configuration using Loguru.

Console output always; a daily rotated file in production. User and model
text is shortened with preview() before it is logged.
"""

import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message}"


def setup_logging(
    level: str = "INFO",
    log_dir: str = "logs",
    enable_file: bool = True,
) -> None:
    """Configure application logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        enable_file: Whether to enable file logging
    """
    logger.remove()

    # Variable values in tracebacks only while developing
    logger.add(
        sys.stderr,
        format=CONSOLE_FORMAT,
        level=level,
        colorize=True,
        diagnose=not enable_file,
    )

    if enable_file:
        log_path = Path(log_dir)
        log_path.mkdir(exist_ok=True)

        logger.add(
            log_path / "livetutor_{time:YYYY-MM-DD}.log",
            format=FILE_FORMAT,
            level=level,
            rotation="00:00",
            retention="7 days",
            diagnose=False,
        )

    logger.info(f"Logging initialized at {level} level")


def get_logger(name: str):
    """Logger bound to a module name: `logger = get_logger(__name__)`."""
    return logger.bind(name=name)


def preview(text: str, limit: int = 80) -> str:
    """Shorten user or model text for a log line."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."
