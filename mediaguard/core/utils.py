import logging
import os
import sys
import tempfile
from datetime import datetime, timezone
from typing import Optional

import structlog

from mediaguard import config

logger = structlog.get_logger()


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Configure structlog on top of stdlib logging."""
    level = (level or config.LOG_LEVEL).upper()
    json_logs = config.JSON_LOGS if json_logs is None else json_logs

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def save_temp_media(data: bytes, suffix: str = "") -> str:
    """Write media bytes to a temporary file and return its path."""
    temp_fd, temp_path = tempfile.mkstemp(suffix=suffix, prefix="mediaguard_")
    try:
        with os.fdopen(temp_fd, "wb") as f:
            f.write(data)
    except Exception as e:
        cleanup_temp_file(temp_path)
        logger.error("Failed to save temporary media", temp_path=temp_path, error=str(e))
        raise

    logger.debug("Saved temporary media", temp_path=temp_path, size=len(data))
    return temp_path


def cleanup_temp_file(file_path: Optional[str]) -> bool:
    """Clean up temporary file safely."""
    try:
        if file_path and os.path.exists(file_path):
            os.unlink(file_path)
            logger.debug("Cleaned up temporary file", file_path=file_path)
            return True
        return False
    except OSError as e:
        logger.warning("Failed to cleanup temporary file", file_path=file_path, error=str(e))
        return False


def batch_cleanup_temp_files(file_paths: list[Optional[str]]) -> int:
    """Clean up multiple temporary files, return count of successfully cleaned files."""
    cleaned_count = 0
    for file_path in file_paths:
        if cleanup_temp_file(file_path):
            cleaned_count += 1
    return cleaned_count
