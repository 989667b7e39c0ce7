import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from src.core.constants import BULK_MAX_RETRIES, BULK_RETRY_BACKOFF

logger = logging.getLogger(__name__)

T = TypeVar("T")

@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    backoff: float = 0.0 # seconds between attempts

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff < 0:
            raise ValueError("backoff must not be negative")

    @classmethod
    def for_bulk(cls, auto_retry: bool = True) -> "RetryPolicy":
        """2 retries with a fixed 1s backoff, or a single attempt when retrying is off."""
        if auto_retry:
            return cls(max_attempts=1 + BULK_MAX_RETRIES, backoff=BULK_RETRY_BACKOFF)
        return cls(max_attempts=1)

OnRetry = Callable[[int, Exception], None]

async def retry_async(policy: RetryPolicy, operation: Callable[[], Awaitable[T]],
                      on_retry: Optional[OnRetry] = None) -> T:
    """
    Awaits operation() until it succeeds or the policy runs out of attempts.
    on_retry(attempt, error) is called before each retry. The last error is re-raised.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if attempt >= policy.max_attempts:
                raise
            logger.warning(f"Attempt {attempt}/{policy.max_attempts} failed: {e}. Retrying in {policy.backoff}s")
            if on_retry:
                on_retry(attempt, e)
            attempt += 1
            if policy.backoff:
                await asyncio.sleep(policy.backoff)
