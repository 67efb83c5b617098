"""
Logging Setup
============
Console and rotating file logging for the bot process
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from ..core.core_constants import LogFormat

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure the root logger once for the whole process"""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(LogFormat.FORMAT, datefmt=LogFormat.DATE_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=LogFormat.MAX_BYTES,
            backupCount=LogFormat.BACKUP_COUNT,
            encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # aiohttp access logs are noisy at INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    logger.info(f"✅ Logging configured (level={level.upper()}, file={log_file or 'none'})")
