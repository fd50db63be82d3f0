import sys
from pathlib import Path
from typing import Optional

from loguru import logger

_CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
_VERBOSE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logger(log_level: str = "INFO", log_file: Optional[Path] = None, verbose: bool = False):
    """Route loguru output to stderr and, optionally, a rotating DEBUG file.

    Safe to call more than once: existing sinks are replaced.
    """
    logger.remove()

    logger.add(
        sys.stderr,
        format=_VERBOSE_FORMAT if verbose else _CONSOLE_FORMAT,
        level="DEBUG" if verbose else log_level,
        colorize=True,
    )

    # Prompts and raw model responses are logged at DEBUG
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=_FILE_FORMAT,
            level="DEBUG",
            rotation="10 MB",
            retention="7 days",
            encoding="utf-8",
        )

    return logger
