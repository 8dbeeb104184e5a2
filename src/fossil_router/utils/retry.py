"""Bounded retry with exponential backoff for provider invocations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from fossil_router.domain.exceptions import (
    ProviderRateLimitError,
    TerminalProviderError,
)

R = TypeVar("R")

SleepFn = Callable[[float], Awaitable[None]]

RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests")


def is_rate_limit_error(error: BaseException | None) -> bool:
    """Classify an error as a rate limit by type or by message substring."""

    if error is None:
        return False
    if isinstance(error, ProviderRateLimitError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


class RetryExecutor:
    """Runs one provider attempt chain: ATTEMPT(n) -> WAIT -> ATTEMPT(n+1)."""

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        rate_limit_delay: float = 60.0,
        sleep: Optional[SleepFn] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0 or rate_limit_delay < 0:
            raise ValueError("delays must be non-negative")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.rate_limit_delay = rate_limit_delay
        self._sleep = sleep or asyncio.sleep
        self.logger = logger or logging.getLogger(__name__)

    def backoff_delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** (attempt - 1))

    async def run(
        self, fn: Callable[[], Awaitable[R]], *, label: str = "provider"
    ) -> R:
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                last_error = exc
                if attempt < self.max_attempts:
                    delay = self.backoff_delay(attempt)
                    self.logger.info(
                        "provider_retry",
                        extra={
                            "provider": label,
                            "attempt": attempt,
                            "max_attempts": self.max_attempts,
                            "delay": delay,
                            "error": str(exc),
                        },
                    )
                    await self._sleep(delay)

        raise TerminalProviderError(
            str(last_error) if last_error else None,
            last_error=last_error,
            attempts=self.max_attempts,
        ) from last_error

    async def rate_limit_pause(self, *, label: str = "provider") -> None:
        self.logger.warning(
            "rate_limit_backoff",
            extra={"provider": label, "delay": self.rate_limit_delay},
        )
        await self._sleep(self.rate_limit_delay)
