"""Centralized logging configuration."""

import logging
import sys

from app.config import settings


def setup_logging() -> logging.Logger:
    """Configure and return the application logger."""

    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logger = logging.getLogger("lab_extraction")
    logger.setLevel(level)

    # Prevent duplicate handlers on re-import (uvicorn reload, tests)
    if not logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(console_handler)

    logger.debug(f"Logging configured with level: {settings.LOG_LEVEL}")

    return logger


class UploadLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the upload id a pipeline run works on."""

    def process(self, msg, kwargs):
        return f"[upload {self.extra['upload_id']}] {msg}", kwargs


def get_upload_logger(upload_id: str, component: str = "pipeline") -> UploadLogAdapter:
    """Return a child logger bound to one upload."""
    return UploadLogAdapter(logger.getChild(component), {"upload_id": upload_id})


# Create the global logger instance
logger = setup_logging()
