"""Logging configuration for the API entry point."""

import logging

from services.shared.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings.

    Args:
        settings: Application settings (uses log_level)
    """
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    logging.getLogger(__name__).debug(f"Logging configured at {settings.log_level}")
