import logging
import os
from datetime import datetime
from pathlib import Path

# Dependency loggers and the lowest level worth keeping from them
QUIET_LOGGERS = {
    "aiosqlite": logging.INFO,
    "asyncio": logging.INFO,
    "fsspec": logging.INFO,
    "boto3": logging.WARNING,
    "botocore": logging.WARNING,
    "botocore.credentials": logging.WARNING,
    "s3transfer": logging.WARNING,
    "aioboto3": logging.WARNING,
    "aiobotocore": logging.WARNING,
}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def default_log_file() -> Path:
    """Timestamped log file in $ASSET_PUBLISHER_LOG_DIR (default: logs/)."""
    logs_dir = Path(os.environ.get("ASSET_PUBLISHER_LOG_DIR", "logs"))
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return logs_dir / f"asset_publisher_{timestamp}.log"


def setup_logging(level: str = "INFO", log_file: Path | None = None, append: bool = True) -> Path:
    """
    Configure logging for publishing operations.

    Everything at ``level`` goes to the log file; warnings and errors (the
    reported per-object failures among them) are echoed to the terminal.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path (defaults to timestamped file in logs/)
        append: Whether to append to existing log file (default: True)

    Returns:
        Path: the log file in use
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    if log_file is None:
        log_file = default_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(str(log_file), mode="a" if append else "w")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.WARNING)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    root_logger.addHandler(console_handler)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging to file: {log_file}")
    logger.info(f"Logging initialized at {level} level")
    return log_file
