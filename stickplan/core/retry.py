"""Retry with backoff for unmounts that fail while a mount point is still busy."""
import functools
import time
from typing import Tuple, Type

from stickplan.core.errors import UnmountError
from stickplan.core.logger import get_logger

logger = get_logger(__name__)


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (UnmountError,),
):
    """Retry decorator with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (at least one is made)
        delay: Initial delay in seconds between attempts
        backoff: Multiplier applied to the delay after each failure
        exceptions: Exception types that trigger another attempt

    Example:
        @retry(max_attempts=5, delay=1)
        def release(partition):
            # udisks often reports "target is busy" right after copying
            ...
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay
            attempts = max(1, max_attempts)

            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == attempts:
                        logger.error(f"{func.__name__} failed after {attempts} attempts: {e}")
                        raise

                    logger.warning(f"{func.__name__} busy (attempt {attempt}/{attempts}): {e}")
                    time.sleep(current_delay)
                    current_delay *= backoff

        return wrapper

    return decorator
