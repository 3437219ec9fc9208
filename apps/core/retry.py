"""
Bounded retry for transient storage failures.

Only lock timeouts, deadlocks, serialization failures and detected
concurrent updates are retried. Business-rule errors (Forbidden, Conflict,
InvalidState, ...) pass straight through on the first attempt.
"""
import logging
import random
import time

from django.conf import settings
from django.db import OperationalError

from apps.core.exceptions import TransientStorageError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (OperationalError, TransientStorageError)


class RetryStrategy:
    """
    Exponential backoff with ±25% jitter.
    """

    def __init__(self, max_attempts=None, base_delay=None, max_delay=1.0, exponential_base=2.0):
        self.max_attempts = max_attempts or getattr(settings, 'RBAC_RETRY_ATTEMPTS', 3)
        if base_delay is None:
            base_delay = getattr(settings, 'RBAC_RETRY_BASE_DELAY', 0.05)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay before the given (zero-based) retry."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)
        jitter_range = delay * 0.25
        delay += random.uniform(-jitter_range, jitter_range)
        return max(0, delay)

    def run(self, func, *args, **kwargs):
        """
        Call func, retrying on transient storage errors.

        Raises:
            TransientStorageError: when every attempt failed transiently
        """
        name = getattr(func, '__name__', repr(func))
        last_error = None
        for attempt in range(self.max_attempts):
            try:
                return func(*args, **kwargs)
            except TRANSIENT_ERRORS as e:
                last_error = e
                if attempt + 1 >= self.max_attempts:
                    break
                delay = self.calculate_delay(attempt)
                logger.warning(
                    f"Transient storage error in {name}, retrying",
                    extra={
                        'attempt': attempt + 1,
                        'max_attempts': self.max_attempts,
                        'delay': round(delay, 3),
                        'error_type': type(e).__name__,
                    }
                )
                time.sleep(delay)

        logger.error(
            f"Giving up on {name} after {self.max_attempts} attempts",
            extra={'error_type': type(last_error).__name__},
        )
        if isinstance(last_error, TransientStorageError):
            raise last_error
        raise TransientStorageError(details={'operation': name}) from last_error

