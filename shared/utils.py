import logging
from datetime import UTC, datetime
from pathlib import Path
from uuid import uuid4

from shared.config import config


def setup_logging(service_name: str, log_level: str | None = None) -> logging.Logger:
    """Setup logging configuration for a service"""
    logger = logging.getLogger(service_name)
    level = log_level or config.get("log_level", "INFO")
    logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(f"%(asctime)s - {service_name} - %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def utc_now() -> datetime:
    """Timezone-aware current time used for every timestamp we persist"""
    return datetime.now(UTC)


def new_id() -> str:
    return uuid4().hex


def ensure_directory(path: str) -> None:
    """Ensure directory exists, create if not"""
    Path(path).mkdir(parents=True, exist_ok=True)


def sanitize_filename(filename: str) -> str:
    """Sanitize filename for safe storage"""
    invalid_chars = '<>:"/\\|?*'
    for char in invalid_chars:
        filename = filename.replace(char, "_")
    return filename


def truncate(text: str, max_length: int = 500) -> str:
    """Clip long provider messages before they are stored in error lists"""
    if len(text) > max_length:
        return text[: max_length - 3] + "..."
    return text
