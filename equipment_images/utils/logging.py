"""
Logging for the image pipeline.

loguru sinks driven by the LOG_* settings: a colorized stderr sink and, when
LOG_FILE is set, a rotating compressed file sink. Bulk runs and the CLI log
through the same sinks.
"""

import os
import sys
from pathlib import Path

from loguru import logger

from equipment_images.config import Settings, settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(
    level: str | None = None,
    log_file: Path | None = None,
    config: Settings | None = None,
) -> None:
    """
    Install the pipeline's log sinks, replacing any existing ones.

    Args:
        level: Log level, defaults to LOG_LEVEL
        log_file: File sink path, defaults to LOG_FILE (no file sink when unset)
        config: Settings to read defaults from
    """
    config = config or settings
    level = (level or config.log_level).upper()
    log_file = log_file or config.log_file

    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT, colorize=True)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=level,
            format=FILE_FORMAT,
            rotation=config.log_rotation,
            retention=config.log_retention,
            compression="gz",
        )

    logger.info(f"Logging configured: level={level}" + (f", file={log_file}" if log_file else ""))


if os.environ.get("DISABLE_LOGGING") != "1":
    setup_logging()
