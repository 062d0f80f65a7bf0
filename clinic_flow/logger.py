"""
Central logger configuration. Use get_logger(__name__) from other modules.
"""
import logging

from .config import SETTINGS

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: str = "clinic_flow"):
    """Create (once) and return a named logger."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, SETTINGS.log_level.upper(), logging.INFO))
    return logger
