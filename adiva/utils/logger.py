import logging
import uuid
import sys
import time
from logging.handlers import RotatingFileHandler
from functools import wraps
from flask import g, has_request_context

from adiva.config import config

# Add request_id filter
class RequestIdFilter(logging.Filter):
    """Add request_id to log records."""

    def filter(self, record):
        if has_request_context():
            record.request_id = getattr(g, 'request_id', 'no_request_id')
        else:
            record.request_id = 'no_request_id'
        return True

# Configure logger
def setup_logger(name="adiva", level=None, log_file=None):
    """Configure logger with console and optional file handlers."""
    logger = logging.getLogger(name)
    logger.setLevel(level if level is not None else config.LOG_LEVEL)

    # Remove existing handlers if any
    if logger.handlers:
        logger.handlers.clear()

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=5
        ))

    request_id_filter = RequestIdFilter()
    formatter = logging.Formatter(config.LOG_FORMAT)
    for handler in handlers:
        handler.addFilter(request_id_filter)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger

# Generate a request ID
def generate_request_id():
    """Generate a unique request ID."""
    return str(uuid.uuid4())

# Decorator to log function calls with timing
def log_function_call(logger):
    """Decorator to log function calls with timing."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            logger.debug(f"Calling {func.__qualname__}")

            try:
                result = func(*args, **kwargs)
                execution_time = (time.time() - start_time) * 1000
                logger.debug(f"Finished {func.__qualname__} in {execution_time:.2f}ms")
                return result
            except Exception as e:
                logger.error(f"Error in {func.__qualname__}: {str(e)}")
                raise

        return wrapper
    return decorator

# Create and export logger
logger = setup_logger(log_file=config.LOG_FILE)
