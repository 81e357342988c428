"""Bounded retry policy for chat dispatch."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .config import DEFAULT_BACKOFF_MS, DEFAULT_MAX_RETRIES
from .errors import DispatchError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(error: BaseException) -> bool:
    """Timeouts, transport failures and 429/5xx responses are worth retrying."""
    return isinstance(error, DispatchError) and bool(error.transient)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = DEFAULT_MAX_RETRIES
    backoff_ms: int = DEFAULT_BACKOFF_MS
    linear: bool = True
    retryable: Callable[[BaseException], bool] = is_transient

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed ``attempt`` (0-based)."""
        factor = attempt + 1 if self.linear else 1
        return self.backoff_ms * factor / 1000

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        return attempt < self.max_retries and self.retryable(error)

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Call ``operation(attempt)`` until it succeeds or the budget runs out.

        Non-retryable errors propagate immediately; the last error propagates
        once every attempt has been used.
        """
        attempt = 0
        while True:
            try:
                return await operation(attempt)
            except DispatchError as e:
                if not self.should_retry(e, attempt):
                    raise
                delay = self.delay(attempt)
                logger.info(
                    "Attempt %d/%d failed (%s), retrying in %.2fs",
                    attempt + 1, self.max_attempts, e, delay,
                )
                if on_retry is not None:
                    on_retry(attempt, e)
                await sleep(delay)
                attempt += 1
