"""Logging configuration for MailSync"""
import logging
import sys

from mailsync.infrastructure.config.settings import Settings, get_settings


def setup_logging(settings: Settings | None = None):
    """Configure application-wide logging"""
    settings = settings or get_settings()
    log_level = logging.DEBUG if settings.debug else logging.INFO

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # The Google client is chatty at INFO about discovery caching
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)


def get_logger(name: str) -> logging.Logger:
    """Get logger for module"""
    return logging.getLogger(name)
