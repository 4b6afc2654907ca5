"""
Retry utilities with exponential backoff.

Only idempotent, read-only RPC methods are retried. State-changing
submissions (``eth_sendRawTransaction``) are never passed through here:
a resubmitted signed transaction could land twice or race a replacement.

Usage:
    from safe_multisig.retry import RetryPolicy, retry_async

    policy = RetryPolicy(max_retries=3, base_delay=0.5)
    code = await retry_async(client.get_code, address, policy=policy)
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, ParamSpec, Type, TypeVar

from .config import RetryConfig

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behavior for one call site.

    Attributes:
        max_retries: Maximum number of retry attempts (0 means no retries)
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Maximum jitter factor (0.0-1.0) applied to delays
        retryable_exceptions: Exception types that trigger retries
        non_retryable_exceptions: Exception types that are raised immediately
    """

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: float = 0.2
    retryable_exceptions: tuple[Type[BaseException], ...] = (Exception,)
    non_retryable_exceptions: tuple[Type[BaseException], ...] = ()

    @classmethod
    def from_config(
        cls,
        config: RetryConfig,
        retryable_exceptions: tuple[Type[BaseException], ...] = (Exception,),
        non_retryable_exceptions: tuple[Type[BaseException], ...] = (),
    ) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            exponential_base=config.exponential_base,
            jitter=config.jitter,
            retryable_exceptions=retryable_exceptions,
            non_retryable_exceptions=non_retryable_exceptions,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Delay before retry ``attempt`` (0-based), capped and jittered."""
        delay = min(self.base_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay = delay + random.uniform(-jitter_range, jitter_range)
        return max(0.0, delay)

    def should_retry(self, exception: BaseException) -> bool:
        # Non-retryable takes precedence
        if isinstance(exception, self.non_retryable_exceptions):
            return False
        return isinstance(exception, self.retryable_exceptions)


NO_RETRY = RetryPolicy(max_retries=0)


async def retry_async(
    func: Callable[P, Awaitable[T]],
    *args: P.args,
    policy: Optional[RetryPolicy] = None,
    **kwargs: P.kwargs,
) -> T:
    """Execute an async function with retry logic.

    The last exception is re-raised unchanged once attempts are exhausted,
    so callers keep seeing the domain error (e.g. ``NetworkError``).
    """
    if policy is None:
        policy = RetryPolicy()

    name = getattr(func, "__name__", repr(func))
    for attempt in range(policy.max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if attempt >= policy.max_retries or not policy.should_retry(e):
                raise

            delay = policy.calculate_delay(attempt)
            logger.warning(
                f"Retry {attempt + 1}/{policy.max_retries} for "
                f"{name} after {type(e).__name__}: {e}. "
                f"Waiting {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
