"""Redis-backed ledger of fully processed messages."""

from datetime import datetime
from typing import Iterable, Optional

import redis.asyncio as aioredis

from finsync.config.settings import RedisConfig, settings
from finsync.utils.logging import get_logger

logger = get_logger(__name__)


class ProcessedLedger:
    """
    Durable set of message ids whose every attachment has been archived.

    Entries are only ever added by a sync run (``clear_all`` and
    ``unmark_processed`` are explicit operator actions). Each id also gets a
    ``processed_at`` timestamp in a companion hash.
    """

    def __init__(self, config: Optional[RedisConfig] = None, client: Optional[aioredis.Redis] = None) -> None:
        self.config = config or settings.redis
        self.redis: Optional[aioredis.Redis] = client
        self.key = self.config.processed_key
        self.meta_key = f"{self.key}:meta"

    async def connect(self) -> None:
        """Connect to Redis."""
        self.redis = await aioredis.from_url(self.config.url, decode_responses=True)
        logger.info("Ledger connected to Redis", key=self.key)

    init = connect

    async def close(self) -> None:
        """Disconnect from Redis."""
        if self.redis:
            await self.redis.close()
            self.redis = None
            logger.info("Ledger disconnected from Redis")

    async def is_processed(self, message_id: str) -> bool:
        if not self.redis:
            await self.connect()
        return bool(await self.redis.sismember(self.key, message_id))

    async def filter_unprocessed(self, message_ids: Iterable[str]) -> list[str]:
        """Return the ids not yet in the ledger, in their original order."""
        if not self.redis:
            await self.connect()

        ids = list(message_ids)
        if not ids:
            return []
        flags = await self.redis.smismember(self.key, ids)
        return [message_id for message_id, seen in zip(ids, flags) if not seen]

    async def mark_many_processed(self, message_ids: Iterable[str]) -> int:
        """
        Add ids to the ledger.

        Ids already present are left untouched (their original timestamp is
        kept). An empty input issues no write.

        Returns:
            Number of ids newly added
        """
        ids = list(dict.fromkeys(message_ids))
        if not ids:
            return 0

        if not self.redis:
            await self.connect()

        processed_at = datetime.now().isoformat()
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.sadd(self.key, *ids)
            for message_id in ids:
                pipe.hsetnx(self.meta_key, message_id, processed_at)
            results = await pipe.execute()

        added = int(results[0])
        logger.info("Marked messages processed", requested=len(ids), added=added)
        return added

    async def mark_processed(self, message_id: str) -> int:
        return await self.mark_many_processed([message_id])

    async def unmark_processed(self, message_id: str) -> bool:
        """Remove one id so the next sync picks the message up again."""
        if not self.redis:
            await self.connect()

        removed = await self.redis.srem(self.key, message_id)
        await self.redis.hdel(self.meta_key, message_id)
        logger.info("Unmarked processed message", message_id=message_id, removed=bool(removed))
        return bool(removed)

    async def get_processed_at(self, message_id: str) -> Optional[datetime]:
        if not self.redis:
            await self.connect()

        value = await self.redis.hget(self.meta_key, message_id)
        return datetime.fromisoformat(value) if value else None

    async def get_processed_ids(self) -> set[str]:
        if not self.redis:
            await self.connect()
        return set(await self.redis.smembers(self.key))

    async def count(self) -> int:
        if not self.redis:
            await self.connect()
        return int(await self.redis.scard(self.key))

    async def clear_all(self) -> None:
        """Forget every processed message (full re-sync on the next run)."""
        if not self.redis:
            await self.connect()

        await self.redis.delete(self.key, self.meta_key)
        logger.warning("Processed ledger cleared", key=self.key)
