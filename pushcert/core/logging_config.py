"""
Logging setup driven by Settings.log_level / Settings.log_format.
"""
import logging
from typing import Optional

from pushcert.core.config import Settings, get_settings


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure the root logger from settings."""
    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=settings.log_format)
    logging.getLogger("pushcert").setLevel(level)
