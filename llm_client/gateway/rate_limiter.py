"""Rate Limiter — advisory request/token budgets over sliding windows.

Tracks completed requests as durable usage records and answers whether one
more request fits the budget:
  - requests per minute / hour / day
  - tokens per minute / day (optional)

The limiter never blocks and never records on its own: callers ask
``can_make_request`` before sending and call ``record_request`` with the
actual token usage afterwards.

Usage is recomputed from the full record list on every query, and every
write prunes records older than 24 hours.

Async-safe via asyncio.Lock around each read-prune-write cycle.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from llm_client.gateway.storage import InMemoryStore, KeyValueStore
from llm_client.gateway.types import (
    RATE_LIMIT_PRESETS,
    RateLimitBudget,
    RateLimitDecision,
    UsageRecord,
    UsageStats,
)

logger = logging.getLogger(__name__)

MINUTE_MS = 60_000
HOUR_MS = 3_600_000
DAY_MS = 86_400_000

STORAGE_KEY = "rateLimiterData"


def _now_ms() -> float:
    return time.time() * 1000


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class RateLimiter:
    """Sliding-window budget tracker for one RateLimitBudget.

    Usage:
        limiter = RateLimiter(RATE_LIMIT_PRESETS["DEEPSEEK"], store)

        # Before sending a request:
        decision = await limiter.can_make_request(estimated_tokens=1500)
        if not decision.allowed:
            ...  # show decision.reason, retry after decision.wait_time_ms

        # After response:
        await limiter.record_request(response.usage.total_tokens)
    """

    def __init__(
        self,
        budget: RateLimitBudget,
        store: KeyValueStore | None = None,
        storage_key: str = STORAGE_KEY,
        clock: Callable[[], float] = _now_ms,
    ):
        self.budget = budget
        self._store = store or InMemoryStore()
        self._storage_key = storage_key
        self._clock = clock
        self._lock = asyncio.Lock()

    async def _load(self) -> list[UsageRecord]:
        data = await self._store.get(self._storage_key)
        if not isinstance(data, dict) or not isinstance(data.get("requests"), list):
            return []

        records = []
        for raw in data["requests"]:
            record = UsageRecord.from_dict(raw) if isinstance(raw, dict) else None
            if record is None or not _is_number(record.timestamp) or not _is_number(record.tokens):
                logger.warning("Skipping malformed usage record: %r", raw)
                continue
            records.append(record)
        return records

    async def _save(self, records: list[UsageRecord]) -> None:
        await self._store.set(self._storage_key, {"requests": [r.to_dict() for r in records]})

    async def get_usage_stats(self) -> UsageStats:
        """Current usage over the trailing minute, hour and day."""
        async with self._lock:
            records = await self._load()
        return self._compute_stats(records, self._clock())

    @staticmethod
    def _compute_stats(records: list[UsageRecord], now: float) -> UsageStats:
        recent = [r for r in records if r.timestamp > now - DAY_MS]
        last_minute = [r for r in recent if r.timestamp > now - MINUTE_MS]
        last_hour = [r for r in recent if r.timestamp > now - HOUR_MS]

        return UsageStats(
            requests_last_minute=len(last_minute),
            requests_last_hour=len(last_hour),
            requests_last_day=len(recent),
            tokens_last_minute=sum(r.tokens for r in last_minute),
            tokens_last_day=sum(r.tokens for r in recent),
            last_request_time=max((r.timestamp for r in recent), default=0),
        )

    async def can_make_request(self, estimated_tokens: int = 1000) -> RateLimitDecision:
        """Check the budget, in fixed order: RPM, RPH, RPD, TPM, TPD.

        Returns on the first violated constraint. Minute-scoped waits count
        down from the most recent record; hour/day waits are the full window.
        """
        stats = await self.get_usage_stats()
        now = self._clock()
        budget = self.budget

        if stats.requests_last_minute >= budget.requests_per_minute:
            return self._deny(
                f"Rate limit exceeded: {budget.requests_per_minute} requests per minute",
                max(0, MINUTE_MS - (now - stats.last_request_time)),
            )

        if stats.requests_last_hour >= budget.requests_per_hour:
            return self._deny(
                f"Rate limit exceeded: {budget.requests_per_hour} requests per hour",
                HOUR_MS,
            )

        if stats.requests_last_day >= budget.requests_per_day:
            return self._deny(
                f"Rate limit exceeded: {budget.requests_per_day} requests per day",
                DAY_MS,
            )

        if budget.tokens_per_minute and stats.tokens_last_minute + estimated_tokens > budget.tokens_per_minute:
            return self._deny(
                f"Token rate limit exceeded: {budget.tokens_per_minute} tokens per minute",
                max(0, MINUTE_MS - (now - stats.last_request_time)),
            )

        if budget.tokens_per_day and stats.tokens_last_day + estimated_tokens > budget.tokens_per_day:
            return self._deny(
                f"Daily token limit exceeded: {budget.tokens_per_day} tokens per day",
                DAY_MS,
            )

        return RateLimitDecision(allowed=True)

    @staticmethod
    def _deny(reason: str, wait_time_ms: float) -> RateLimitDecision:
        logger.info("%s (wait %.0fms)", reason, wait_time_ms)
        return RateLimitDecision(allowed=False, reason=reason, wait_time_ms=wait_time_ms)

    async def record_request(self, actual_tokens: int) -> None:
        """Append a usage record for a completed request and prune old ones."""
        async with self._lock:
            records = await self._load()
            now = self._clock()
            records.append(UsageRecord(timestamp=now, tokens=actual_tokens))
            records = [r for r in records if r.timestamp > now - DAY_MS]
            await self._save(records)

        logger.debug("Recorded request: %d tokens (%d records kept)", actual_tokens, len(records))

    async def reset_usage(self) -> None:
        """Drop every usage record."""
        async with self._lock:
            await self._save([])
        logger.info("Rate limiter usage reset")


def create_rate_limiter(preset: str, store: KeyValueStore | None = None) -> RateLimiter:
    """Factory: build a limiter from a named budget in RATE_LIMIT_PRESETS."""
    budget = RATE_LIMIT_PRESETS.get(preset.upper())
    if budget is None:
        raise ValueError(f"Unknown rate limit preset: {preset}")
    return RateLimiter(budget, store)
