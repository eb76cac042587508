"""
Retry policy shared by every network call site.

A policy is a maximum attempt count, a delay function and a predicate
deciding which errors are worth another attempt. Backends build one
policy each and run connect, resolve, iterate and HTTP fetches through
it instead of hand-rolling loops.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DelayFunction = Callable[[int], float]


def linear_backoff(base: float = 1.0) -> DelayFunction:
    """Delay of ``base * n`` seconds after the n-th failed attempt (1s, 2s, ...)."""
    def delay(attempt: int) -> float:
        return base * (attempt + 1)
    return delay


def exponential_backoff(
    base: float = 1.0,
    jitter: float = 0.25,
    rng: Optional[random.Random] = None
) -> DelayFunction:
    """
    Delay of ``base * 2**attempt`` plus up to ``jitter`` of that on top.

    With the defaults: 1s, 2s, 4s before the 2nd, 3rd and 4th attempt,
    each stretched by a random 0-25%.
    """
    rng = rng or random.Random()

    def delay(attempt: int) -> float:
        backoff = base * (2 ** attempt)
        return backoff + rng.uniform(0, backoff * jitter)
    return delay


def retry_on(*error_types: Type[BaseException]) -> Callable[[BaseException], bool]:
    """Build a predicate that accepts the given exception types."""
    def predicate(error: BaseException) -> bool:
        return isinstance(error, error_types)
    return predicate


def retry_except(*error_types: Type[BaseException]) -> Callable[[BaseException], bool]:
    """Build a predicate that accepts everything except the given types."""
    def predicate(error: BaseException) -> bool:
        return not isinstance(error, error_types)
    return predicate


class RetryPolicy:
    """
    Runs an async operation until it succeeds or attempts run out.

    Non-retryable errors propagate immediately. When the last attempt
    fails, its error is re-raised unchanged so callers see the real cause.

    Usage:
        policy = RetryPolicy(max_attempts=3, delay=linear_backoff(1.0))
        html = await policy.call(fetch, url, description="fetch page")
    """

    def __init__(
        self,
        max_attempts: int,
        delay: DelayFunction,
        retryable: Callable[[BaseException], bool] = retry_on(Exception),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "operation"
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.delay = delay
        self.retryable = retryable
        self.name = name
        self._sleep = sleep

    @property
    def max_retries(self) -> int:
        return self.max_attempts - 1

    async def call(
        self,
        operation: Callable[..., Awaitable[T]],
        *args,
        description: Optional[str] = None,
        **kwargs
    ) -> T:
        """Call ``operation(*args, **kwargs)`` under this policy."""
        label = description or self.name

        for attempt in range(self.max_attempts):
            try:
                return await operation(*args, **kwargs)
            except Exception as e:
                if not self.retryable(e):
                    raise

                if attempt + 1 >= self.max_attempts:
                    logger.error(
                        f"{label} failed after {self.max_attempts} attempts: {e}"
                    )
                    raise

                wait = self.delay(attempt)
                logger.warning(
                    f"{label} failed (attempt {attempt + 1}/{self.max_attempts}): {e}. "
                    f"Retrying in {wait * 1000:.0f}ms"
                )
                await self._sleep(wait)

        raise AssertionError("unreachable")

    def with_sleep(self, sleep: Callable[[float], Awaitable[None]]) -> "RetryPolicy":
        """Copy of this policy using a different sleep function."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            delay=self.delay,
            retryable=self.retryable,
            sleep=sleep,
            name=self.name
        )


def scraping_policy(
    retryable_errors: Tuple[Type[BaseException], ...],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> RetryPolicy:
    """3 attempts, linear 1s/2s backoff. Used for public page fetches."""
    return RetryPolicy(
        max_attempts=3,
        delay=linear_backoff(1.0),
        retryable=retry_on(*retryable_errors),
        sleep=sleep,
        name="HTTP request"
    )


def protocol_policy(
    fatal_errors: Tuple[Type[BaseException], ...],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Optional[random.Random] = None
) -> RetryPolicy:
    """4 attempts, exponential 1s/2s/4s backoff with 25% jitter. Used for MTProto calls."""
    return RetryPolicy(
        max_attempts=4,
        delay=exponential_backoff(1.0, 0.25, rng),
        retryable=retry_except(*fatal_errors),
        sleep=sleep,
        name="Telegram API call"
    )
