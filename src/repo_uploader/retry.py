"""Exponential backoff around remote calls."""

import functools
import logging
import time
from typing import Callable, Optional, TypeVar

from .errors import classify_error, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Retry transient failures with ``base_delay * 2**attempt`` backoff.

    Fatal failures (authentication, validation, not found, anything
    unrecognised) propagate from the first attempt without sleeping.
    Once ``max_attempts`` calls have failed, the last exception is
    re-raised unchanged.

    Args:
        max_attempts: Total number of calls, including the first one
        base_delay: Delay in seconds before the first retry
        sleep: Sleep function (injectable for tests)
    """

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0:
            raise ValueError("base_delay must not be negative")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return self.base_delay * (2 ** attempt)

    def call(self, fn: Callable[..., T], *args, description: Optional[str] = None, **kwargs) -> T:
        """Invoke ``fn(*args, **kwargs)`` under this policy."""
        what = description or getattr(fn, "__name__", "remote call")
        for attempt in range(self.max_attempts):
            try:
                return fn(*args, **kwargs)
            except Exception as e:
                kind = classify_error(e)
                if not is_retryable(kind):
                    raise
                if attempt == self.max_attempts - 1:
                    logger.error("%s failed after %d attempts: %s", what, self.max_attempts, e)
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s failed (%s), retry %d/%d in %.1fs: %s",
                    what, kind.value, attempt + 1, self.max_attempts - 1, delay, e,
                )
                self._sleep(delay)
        raise AssertionError("unreachable")

    def wrap(self, fn: Callable[..., T]) -> Callable[..., T]:
        """Decorator form of ``call``."""
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            return self.call(fn, *args, **kwargs)
        return wrapper
