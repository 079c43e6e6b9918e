"""Redis-backed history of emails seen by sync runs."""

from typing import Iterable, Optional

import redis.asyncio as aioredis

from finsync.config.settings import RedisConfig, settings
from finsync.models.email import SavedEmail
from finsync.utils.logging import get_logger

logger = get_logger(__name__)


class EmailHistoryStore:
    """
    Email metadata records keyed by message id.

    Layout:
        <key>                         hash  message_id -> SavedEmail JSON
        <key>:by_year:<fy>            set   message ids in a financial year
        <key>:by_supplier:<id>        set   message ids matched to a supplier

    Records are insert-only: saving an id that already exists keeps the
    first record.
    """

    def __init__(self, config: Optional[RedisConfig] = None, client: Optional[aioredis.Redis] = None) -> None:
        self.config = config or settings.redis
        self.redis: Optional[aioredis.Redis] = client
        self.key = self.config.history_key

    async def connect(self) -> None:
        """Connect to Redis."""
        self.redis = await aioredis.from_url(self.config.url, decode_responses=True)
        logger.info("History store connected to Redis", key=self.key)

    async def close(self) -> None:
        """Disconnect from Redis."""
        if self.redis:
            await self.redis.close()
            self.redis = None

    def _year_key(self, financial_year: str) -> str:
        return f"{self.key}:by_year:{financial_year}"

    def _supplier_key(self, supplier_id: str) -> str:
        return f"{self.key}:by_supplier:{supplier_id}"

    async def save_emails(self, records: Iterable[SavedEmail]) -> int:
        """
        Store records whose message id is not yet known.

        Returns:
            Number of records added
        """
        records = list(records)
        if not records:
            return 0

        if not self.redis:
            await self.connect()

        batch: dict[str, SavedEmail] = {}
        for record in records:
            batch.setdefault(record.message_id, record)
        existing = await self.redis.hmget(self.key, list(batch))
        new_records = [record for record, value in zip(batch.values(), existing) if value is None]

        if new_records:
            async with self.redis.pipeline(transaction=True) as pipe:
                for record in new_records:
                    pipe.hsetnx(self.key, record.message_id, record.model_dump_json())
                    pipe.sadd(self._year_key(record.financial_year), record.message_id)
                    if record.supplier_id:
                        pipe.sadd(self._supplier_key(record.supplier_id), record.message_id)
                await pipe.execute()

        added = len(new_records)
        logger.info("Saved email history", received=len(records), added=added)
        return added

    async def get_email(self, message_id: str) -> Optional[SavedEmail]:
        if not self.redis:
            await self.connect()

        data = await self.redis.hget(self.key, message_id)
        return SavedEmail.model_validate_json(data) if data else None

    async def get_emails(self, financial_year: Optional[str] = None) -> list[SavedEmail]:
        """All records, or those in one financial year, newest first."""
        if not self.redis:
            await self.connect()

        if financial_year is None:
            values = list((await self.redis.hgetall(self.key)).values())
        else:
            values = await self._load(await self.redis.smembers(self._year_key(financial_year)))
        return self._sorted(values)

    async def get_emails_by_supplier(self, supplier_id: str) -> list[SavedEmail]:
        if not self.redis:
            await self.connect()

        values = await self._load(await self.redis.smembers(self._supplier_key(supplier_id)))
        return self._sorted(values)

    async def delete_emails_by_supplier(self, supplier_id: str) -> int:
        """Remove every record tagged with ``supplier_id``; returns how many were removed."""
        if not self.redis:
            await self.connect()

        supplier_key = self._supplier_key(supplier_id)
        message_ids = sorted(await self.redis.smembers(supplier_key))
        if not message_ids:
            return 0

        for record in [SavedEmail.model_validate_json(v) for v in await self._load(message_ids)]:
            await self.redis.srem(self._year_key(record.financial_year), record.message_id)

        removed = await self.redis.hdel(self.key, *message_ids)
        await self.redis.delete(supplier_key)
        logger.info("Deleted supplier email history", supplier_id=supplier_id, removed=removed)
        return int(removed)

    async def count(self) -> int:
        if not self.redis:
            await self.connect()
        return int(await self.redis.hlen(self.key))

    async def _load(self, message_ids: Iterable[str]) -> list[str]:
        ids = list(message_ids)
        if not ids:
            return []
        return [v for v in await self.redis.hmget(self.key, ids) if v is not None]

    @staticmethod
    def _sorted(values: list[str]) -> list[SavedEmail]:
        emails = [SavedEmail.model_validate_json(v) for v in values]
        return sorted(emails, key=lambda e: e.received_at, reverse=True)
