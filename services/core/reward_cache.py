"""
Reward Cache - fast balance copy in Redis

Holds the last known balance per owner (optimistic grants included) and
the pending delta of grants that have not been persisted yet. The SQL
ledger stays authoritative; a Redis outage only costs immediate feedback.

Keys:
    rewards:{owner}:balance   last known balance
    rewards:{owner}:pending   sum of unconfirmed grants
"""
from typing import Optional

import redis
import redis.asyncio as aioredis

from config import REDIS_URL, REWARD_CACHE_TTL_SECONDS
from logging_config import get_logger

logger = get_logger(__name__)


def _balance_key(owner: str) -> str:
    return f"rewards:{owner}:balance"


def _pending_key(owner: str) -> str:
    return f"rewards:{owner}:pending"


class RewardCache:
    """Thin async wrapper; every method degrades to a no-op when Redis fails."""

    def __init__(self, client, ttl: int = REWARD_CACHE_TTL_SECONDS):
        self._redis = client
        self._ttl = ttl

    @classmethod
    def from_url(cls, url: str = REDIS_URL) -> "RewardCache":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get_balance(self, owner: str) -> Optional[int]:
        try:
            value = await self._redis.get(_balance_key(owner))
        except redis.RedisError as e:
            logger.warning("reward_cache_read_failed", owner=owner, error=str(e))
            return None
        return int(value) if value is not None else None

    async def get_pending(self, owner: str) -> int:
        try:
            value = await self._redis.get(_pending_key(owner))
        except redis.RedisError as e:
            logger.warning("reward_cache_read_failed", owner=owner, error=str(e))
            return 0
        return max(0, int(value)) if value is not None else 0

    async def publish(self, owner: str, balance: int) -> None:
        """Overwrite the cached balance and refresh its TTL."""
        try:
            await self._redis.set(_balance_key(owner), str(balance), ex=self._ttl)
        except redis.RedisError as e:
            logger.warning("reward_cache_publish_failed", owner=owner, error=str(e))

    async def add_pending(self, owner: str, amount: int) -> bool:
        """Phase one of a grant. Returns False when the cache is unavailable."""
        try:
            await self._redis.incrby(_pending_key(owner), amount)
            await self._redis.incrby(_balance_key(owner), amount)
        except redis.RedisError as e:
            logger.warning("reward_cache_pending_failed", owner=owner, amount=amount, error=str(e))
            return False
        return True

    async def confirm(self, owner: str, amount: int, confirmed_balance: int) -> None:
        """Grant persisted: drop it from pending and publish the durable balance plus what is still pending."""
        try:
            remaining = await self._redis.decrby(_pending_key(owner), amount)
            remaining = max(0, int(remaining))
            await self._redis.set(_balance_key(owner), str(confirmed_balance + remaining), ex=self._ttl)
        except redis.RedisError as e:
            logger.warning("reward_cache_confirm_failed", owner=owner, amount=amount, error=str(e))

    async def rollback(self, owner: str, amount: int) -> None:
        """Grant failed to persist: undo the optimistic update."""
        try:
            await self._redis.decrby(_pending_key(owner), amount)
            await self._redis.decrby(_balance_key(owner), amount)
        except redis.RedisError as e:
            logger.warning("reward_cache_rollback_failed", owner=owner, amount=amount, error=str(e))
