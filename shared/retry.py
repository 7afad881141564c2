"""Exponential backoff for async calls.

    from shared.retry import async_retry

    @async_retry(max_retries=2, exceptions=(httpx.HTTPError,))
    async def fetch() -> dict: ...

The count usually comes from settings, so the decorator is also applied at
call time: ``await async_retry(max_retries=n)(llm_call)()``.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from shared.log import get_logger

logger = get_logger("retry")

F = TypeVar("F", bound=Callable[..., Any])


@dataclass(frozen=True)
class RetryPolicy:
    """``max_retries`` extra attempts after the first, doubling the delay each time."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exceptions: tuple[type[BaseException], ...] = (Exception,)
    # Narrows ``exceptions``: errors it rejects are raised at once
    retry_if: Callable[[BaseException], bool] | None = None

    def delay(self, attempt: int) -> float:
        return min(self.base_delay * (2**attempt), self.max_delay)

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        if attempt >= self.max_retries or not isinstance(exc, self.exceptions):
            return False
        return self.retry_if is None or self.retry_if(exc)

    async def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        attempt = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    raise
                delay = self.delay(attempt)
                attempt += 1
                logger.warning(
                    "retry_attempt",
                    func=getattr(func, "__qualname__", repr(func)),
                    attempt=attempt,
                    max_retries=self.max_retries,
                    delay=delay,
                    error=str(exc) or type(exc).__name__,
                )
                await asyncio.sleep(delay)


def async_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: tuple[type[BaseException], ...] = (Exception,),
    retry_if: Callable[[BaseException], bool] | None = None,
) -> Callable[[F], F]:
    """Decorator form of ``RetryPolicy``. Cancellation is never retried."""
    policy = RetryPolicy(max_retries, base_delay, max_delay, exceptions, retry_if)

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await policy.call(func, *args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
