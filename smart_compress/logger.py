import logging

from smart_compress.config import get_config


def configure_logging(level_name=None):
    """Configure root logging using the LOG_LEVEL setting."""
    level_name = (level_name or get_config().log_level).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )


def get_logger(name: str) -> logging.Logger:
    """Return a logger with the given name."""
    return logging.getLogger(name)
