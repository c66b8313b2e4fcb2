"""
Intent Engine - Backoff Policy.

The single retry policy for transient chain errors
(TransactionNotFoundError, RpcUnavailableError). Bounded attempts,
exponential delay capped at max_delay_seconds, Retry-After honored.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple, Type, TypeVar

from .config import BackoffConfig
from .exceptions import ChainClientError, RpcUnavailableError, TransactionNotFoundError


logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[Exception], ...] = (TransactionNotFoundError, RpcUnavailableError)


class BackoffPolicy:
    """Bounded exponential backoff."""

    def __init__(
        self,
        config: Optional[BackoffConfig] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config or BackoffConfig()
        self._sleep = sleep

    @property
    def config(self) -> BackoffConfig:
        return self._config

    def delays(self) -> List[float]:
        """Delays applied between attempts."""
        delays = []
        delay = self._config.initial_delay_seconds
        for _ in range(self._config.max_retries):
            delays.append(delay)
            delay = min(delay * self._config.backoff_multiplier, self._config.max_delay_seconds)
        return delays

    def _delay_for(self, delay: float, error: Exception) -> float:
        retry_after = getattr(error, "retry_after_seconds", None)
        if self._config.honor_retry_after and retry_after:
            return min(max(delay, retry_after), max(self._config.max_delay_seconds, delay))
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "chain call",
        retry_on: Tuple[Type[Exception], ...] = TRANSIENT_ERRORS,
    ) -> T:
        """
        Run `operation`, retrying transient errors.

        Non-retryable errors and the last transient error propagate.
        """
        attempts = self._config.max_retries + 1
        delay = self._config.initial_delay_seconds

        for attempt in range(attempts):
            try:
                return await operation()
            except retry_on as e:
                if isinstance(e, ChainClientError) and not e.retryable:
                    raise
                if attempt + 1 >= attempts:
                    raise
                wait = self._delay_for(delay, e)
                logger.warning(
                    f"{description} failed "
                    f"(attempt {attempt + 1}/{attempts}): {e}. "
                    f"Retrying in {wait:.1f}s..."
                )
                await self._sleep(wait)
                delay = min(
                    delay * self._config.backoff_multiplier,
                    self._config.max_delay_seconds,
                )

        raise RuntimeError("unreachable")
