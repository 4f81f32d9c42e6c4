"""Pacing between enrichment batches.

The orchestrator calls ``wait()`` after a batch when more batches remain. The
default is a static one-second pause; a token bucket sized to the
Keepa plan's per-minute refill can be swapped in without touching the
orchestrator.
"""

import asyncio
import logging
import time
from typing import Optional

from bulkverify.config import settings

logger = logging.getLogger(__name__)


class BatchPacer:
    """Base pacer: no delay."""

    async def wait(self, cost: int = 1) -> float:
        """
        Pause before the next batch.

        Args:
            cost: Tokens the next batch will consume

        Returns:
            Seconds actually waited
        """
        return 0.0


class FixedDelayPacer(BatchPacer):
    """Static delay between batches."""

    def __init__(self, delay_seconds: Optional[float] = None):
        if delay_seconds is None:
            delay_seconds = settings.verify_batch_delay_seconds
        self.delay_seconds = max(0.0, delay_seconds)

    async def wait(self, cost: int = 1) -> float:
        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)
        return self.delay_seconds


class TokenBucketPacer(BatchPacer):
    """Token bucket refilled continuously at ``tokens_per_minute``."""

    def __init__(self, tokens_per_minute: Optional[float] = None, burst_size: Optional[int] = None):
        if tokens_per_minute is None:
            tokens_per_minute = settings.keepa_tokens_per_minute
        if tokens_per_minute <= 0:
            raise ValueError("tokens_per_minute must be positive")
        self.rate = tokens_per_minute / 60.0  # tokens per second
        self.burst_size = burst_size if burst_size is not None else max(int(tokens_per_minute), 1)
        self.tokens = float(self.burst_size)
        self.last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.tokens + elapsed * self.rate, float(self.burst_size))
        self.last_refill = now

    async def wait(self, cost: int = 1) -> float:
        # A batch larger than the bucket can never be fully covered; cap it
        cost = min(max(cost, 0), self.burst_size)
        async with self._lock:
            self._refill()
            if self.tokens >= cost:
                self.tokens -= cost
                return 0.0

            wait_time = (cost - self.tokens) / self.rate
            logger.debug(f"Token bucket empty, waiting {wait_time:.2f}s for {cost} tokens")
            await asyncio.sleep(wait_time)
            self._refill()
            self.tokens = max(0.0, self.tokens - cost)
            return wait_time


def build_pacer(strategy: Optional[str] = None) -> BatchPacer:
    """
    Build the pacer named by ``strategy`` (defaults to settings).

    Args:
        strategy: "fixed", "token_bucket" or "none"
    """
    strategy = (strategy or settings.verify_pacing_strategy).lower()
    if strategy == "fixed":
        return FixedDelayPacer()
    if strategy == "token_bucket":
        return TokenBucketPacer()
    if strategy == "none":
        return BatchPacer()
    raise ValueError(f"Unknown pacing strategy: {strategy}")
