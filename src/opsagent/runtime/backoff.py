"""Retry policy for transient provider failures."""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Callable, TypeVar

from opsagent.errors import LLMError
from opsagent.util.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_DELAYS_MS = (1000, 5000, 30000)


@dataclass(frozen=True)
class BackoffPolicy:
    """Either a fixed delay sequence or exponential growth capped at `max_delay_ms`.

    With a fixed sequence the last delay repeats once attempts outrun it.
    """

    max_attempts: int = 3
    delays_ms: tuple[int, ...] | None = DEFAULT_DELAYS_MS
    initial_delay_ms: int = 1000
    multiplier: float = 2.0
    max_delay_ms: int = 30000

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delays_ms is not None and not self.delays_ms:
            raise ValueError("delays_ms must not be empty")

    @classmethod
    def exponential(
        cls,
        max_attempts: int = 3,
        initial_delay_ms: int = 1000,
        multiplier: float = 2.0,
        max_delay_ms: int = 30000,
    ) -> "BackoffPolicy":
        return cls(
            max_attempts=max_attempts,
            delays_ms=None,
            initial_delay_ms=initial_delay_ms,
            multiplier=multiplier,
            max_delay_ms=max_delay_ms,
        )

    def delay_ms(self, retry_index: int, retry_after_ms: int | None = None) -> int:
        """Delay before retry number `retry_index` (0-based); the provider's hint wins."""
        if retry_after_ms is not None:
            return retry_after_ms
        if self.delays_ms is not None:
            return self.delays_ms[min(retry_index, len(self.delays_ms) - 1)]
        return int(min(self.initial_delay_ms * (self.multiplier**retry_index), self.max_delay_ms))


def call_with_backoff(
    fn: Callable[[], T],
    policy: BackoffPolicy,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[LLMError, int, int], None] | None = None,
) -> T:
    """Call `fn`, retrying retryable LLMErrors up to `policy.max_attempts` calls in total."""
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except LLMError as exc:
            if not exc.retryable or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_ms(attempt - 1, exc.retry_after_ms)
            logger.warning(
                "Retrying %s call after %s (attempt %d/%d, delay %dms)",
                exc.provider,
                exc.kind.value,
                attempt,
                policy.max_attempts,
                delay,
            )
            if on_retry is not None:
                on_retry(exc, attempt, delay)
            sleep(delay / 1000)
