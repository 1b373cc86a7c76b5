"""General utility functions."""

import logging
import threading
import time
from functools import wraps

logger = logging.getLogger(__name__)


def time_function(func):
    """
    Decorator to log function execution time at DEBUG level.
    For recursive functions, only times the top-level call.
    """
    state = threading.local()

    @wraps(func)
    def wrapper(*args, **kwargs):
        if getattr(state, "in_call", False):
            return func(*args, **kwargs)

        state.in_call = True
        start_time = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            state.in_call = False
            logger.debug("%s took %.6f seconds", func.__qualname__,
                         time.perf_counter() - start_time)

    return wrapper
