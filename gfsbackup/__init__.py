import os
import logging
from logging.handlers import RotatingFileHandler

__version__ = '1.0.0'


def configure_logging(config):
    """Configure application logging"""

    # Set log level based on environment
    log_level = logging.DEBUG if getattr(config, 'DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler, only when a log directory is configured
    log_dir = getattr(config, 'LOG_DIR', None)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'gfsbackup.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure package logger
    logger = logging.getLogger(__name__)
    logger.setLevel(log_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for handler in handlers:
        logger.addHandler(handler)

    # botocore is chatty at DEBUG
    logging.getLogger('botocore').setLevel(logging.WARNING)

    logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return logger
