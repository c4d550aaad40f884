"""
Retry policy for calls to unreliable remote dependencies.

The policy distinguishes only two kinds of failure: the provider's rate limit
was hit (longer back-off), and everything else (standard exponential
back-off). Sleeping goes through an injectable callable so the schedule can be
tested without real delays.
"""

import logging
import time
from typing import Any, Callable, Optional, Tuple, Type

from ..core.errors import EmbeddingError, EmbeddingRateLimitError

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    Bounded retry with exponential back-off.

    Args:
        max_attempts (int): Total attempts, including the first call.
        base_delay (float): Standard back-off base; attempt n waits
            base_delay * 2**(n-1) seconds.
        rate_limit_base_delay (float): Rate-limit back-off base; attempt n
            waits rate_limit_base_delay * 2**n seconds.
        sleep (Callable[[float], None]): Used for every back-off.
        retry_on (Tuple[Type[Exception], ...]): Exception types that are retried.
            Anything else propagates from the first attempt.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        rate_limit_base_delay: float = 4.0,
        sleep: Callable[[float], None] = time.sleep,
        retry_on: Tuple[Type[Exception], ...] = (EmbeddingError,),
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.rate_limit_base_delay = rate_limit_base_delay
        self.sleep = sleep
        self.retry_on = retry_on

    @staticmethod
    def is_rate_limited(error: Exception) -> bool:
        if isinstance(error, EmbeddingRateLimitError):
            return True
        return "rate limit" in str(error).lower()

    def delay_for(self, attempt: int, error: Exception) -> float:
        """Back-off to wait after the given (1-indexed) failed attempt."""
        if self.is_rate_limited(error):
            return self.rate_limit_base_delay * (2**attempt)
        return self.base_delay * (2 ** (attempt - 1))

    def call(self, fn: Callable[..., Any], *args, description: Optional[str] = None) -> Any:
        """Calls `fn(*args)` until it succeeds or attempts run out."""
        label = description or getattr(fn, "__name__", "call")
        last_error = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn(*args)
            except self.retry_on as e:
                last_error = e
                if attempt == self.max_attempts:
                    break
                delay = self.delay_for(attempt, e)
                if self.is_rate_limited(e):
                    logger.warning(
                        f"Rate limit hit for {label}, backing off {delay:.1f}s "
                        f"(attempt {attempt}/{self.max_attempts})"
                    )
                else:
                    logger.warning(
                        f"{label} failed: {e}. Retrying in {delay:.1f}s "
                        f"(attempt {attempt}/{self.max_attempts})"
                    )
                self.sleep(delay)

        raise last_error
