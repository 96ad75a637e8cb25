import json
import logging
from decimal import Decimal

import redis.asyncio as redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockError

from wallet_ledger.core.config import config

logger = logging.getLogger("[LEDGER]")


def create_redis_client() -> redis.Redis:
    return redis.from_url(
        config.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
    )


def balance_key(user_id: str) -> str:
    return f"user:{user_id}:balance"


REFUND_PROCESSING_KEY = "refunds:processing"


class BalanceCache:
    """Кеш балансу гаманця у Redis; джерело правди завжди БД."""

    def __init__(self, client: redis.Redis, ttl: int | None = None):
        self.client = client
        self.ttl = ttl or config.CACHE_TTL_SECONDS

    async def get(self, user_id: str) -> dict | None:
        cached = await self.client.get(balance_key(user_id))
        if cached is None:
            return None
        data = json.loads(cached)
        data["balance"] = Decimal(data["balance"])
        return data

    async def set(self, user_id: str, wallet_id: int, balance: Decimal):
        await self.client.set(
            balance_key(user_id),
            json.dumps({"wallet_id": wallet_id, "balance": str(balance)}),
            ex=self.ttl,
        )

    async def delete(self, *user_ids: str):
        if user_ids:
            await self.client.delete(*(balance_key(u) for u in user_ids))

    # single-flight для batch обробки повернень; lock знає свій token,
    # тож запуск, що пережив TTL, не звільнить lock наступного запуску
    def processing_lock(self, ttl: int | None = None) -> Lock:
        return self.client.lock(
            REFUND_PROCESSING_KEY,
            timeout=ttl or config.REFUND_LOCK_TTL_SECONDS,
            blocking=False,
        )

    async def acquire_processing_lock(self, ttl: int | None = None) -> Lock | None:
        lock = self.processing_lock(ttl)
        if await lock.acquire():
            return lock
        return None

    async def release_processing_lock(self, lock: Lock):
        try:
            await lock.release()
        except LockError:
            logger.warning(
                "Refund processing lock expired before release, "
                "it may already belong to another run"
            )
