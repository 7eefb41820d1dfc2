"""
Logging configuration using Loguru

Library modules log through the standard logging module; setup_logging()
installs Loguru sinks and routes those records into them.

Example:
    from unitbus.log_config import setup_logging

    setup_logging(level="DEBUG", logs_dir=Path("/var/log/unitbus"))
"""

import logging
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"


class InterceptHandler(logging.Handler):
    """Forward standard logging records to Loguru"""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: Any = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so Loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(
    level: str = "INFO",
    logs_dir: Optional[Path] = None,
    service_name: str = "unitbus",
) -> Any:
    """
    Setup logging for the command line tool

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logs_dir: Directory for a rotating log file; console only if None
        service_name: Log file name stem

    Returns:
        Configured logger instance
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level=level,
        format=CONSOLE_FORMAT,
        colorize=True,
    )

    if logs_dir is not None:
        logs_dir = Path(logs_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            logs_dir / f"{service_name}.log",
            level="DEBUG",
            rotation="50 MB",
            retention="10 days",
            compression="zip",
            format=FILE_FORMAT,
            enqueue=True,
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    logger.debug(f"Logging configured for {service_name} (level={level})")
    return logger
