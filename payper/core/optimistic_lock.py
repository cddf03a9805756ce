"""Retry decorator for version-checked order writes.

A ConflictError means another writer bumped the order's version between our
read and our write. The wrapped call re-reads and re-applies its change, so
retrying it is safe.

The backoff sleeps the calling thread. Routes that write orders are plain
``def`` endpoints, so FastAPI runs them in its threadpool and the event loop
keeps serving other requests and websockets.
"""
import functools
import logging
import random
import time

from ..config import settings
from .exceptions import ConflictError

logger = logging.getLogger(__name__)


def with_optimistic_retry(max_retries: int = None):
    """
    Usage:
        @with_optimistic_retry()
        def send_to_kitchen(self, order_id, ...):
            ...
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            _max = max_retries or settings.OPT_LOCK_MAX_RETRIES
            for attempt in range(1, _max + 1):
                try:
                    return func(*args, **kwargs)
                except ConflictError:
                    if attempt == _max:
                        logger.error(
                            "Optimistic lock conflict unresolved after %d retries for %s",
                            _max, func.__name__,
                        )
                        raise
                    # Exponential backoff: base * 2^attempt + jitter
                    base_delay = settings.OPT_LOCK_BASE_DELAY_MS / 1000.0
                    max_delay = settings.OPT_LOCK_MAX_DELAY_MS / 1000.0
                    jitter = random.uniform(0, settings.OPT_LOCK_JITTER_MS / 1000.0)
                    delay = min(base_delay * (2 ** attempt), max_delay) + jitter
                    logger.warning(
                        "Version conflict in %s on attempt %d/%d, retrying in %.3fs",
                        func.__name__, attempt, _max, delay,
                    )
                    time.sleep(delay)
        return wrapper
    return decorator
