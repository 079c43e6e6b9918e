"""
Unit tests for the processed-message ledger
"""
from unittest.mock import patch

import pytest

from finsync.services.ledger_service import ProcessedLedger


@pytest.mark.unit
@pytest.mark.ledger
class TestProcessedLedger:
    """Test suite for ProcessedLedger"""

    @pytest.fixture
    def ledger(self, fake_redis):
        return ProcessedLedger(client=fake_redis)

    async def test_lazy_connect_on_first_use(self, fake_redis):
        """
        Given: A ledger that was never connected
        When: is_processed() is called
        Then: It connects to Redis itself and answers
        """
        # Arrange
        ledger = ProcessedLedger()

        async def from_url(url, decode_responses):
            return fake_redis

        # Act
        with patch("finsync.services.ledger_service.aioredis.from_url", side_effect=from_url) as connect:
            result = await ledger.is_processed("msg_1")

        # Assert
        assert result is False
        connect.assert_called_once()
        assert ledger.redis is fake_redis

    async def test_mark_many_then_is_processed(self, ledger):
        """
        Given: Two ids marked processed
        When: They are queried
        Then: Both are processed and an unknown id is not
        """
        added = await ledger.mark_many_processed(["msg_1", "msg_2"])

        assert added == 2
        assert await ledger.is_processed("msg_1")
        assert await ledger.is_processed("msg_2")
        assert not await ledger.is_processed("msg_3")
        assert await ledger.count() == 2

    async def test_marking_existing_ids_is_a_noop(self, ledger):
        """
        Given: An id already in the ledger
        When: It is marked again alongside a new id
        Then: Only the new id is added and the original timestamp is kept
        """
        await ledger.mark_many_processed(["msg_1"])
        first_seen = await ledger.get_processed_at("msg_1")

        added = await ledger.mark_many_processed(["msg_1", "msg_2", "msg_2"])

        assert added == 1
        assert await ledger.count() == 2
        assert await ledger.get_processed_at("msg_1") == first_seen

    async def test_empty_mark_issues_no_write(self, ledger, fake_redis):
        added = await ledger.mark_many_processed([])

        assert added == 0
        assert fake_redis.write_calls == 0

    async def test_filter_unprocessed_keeps_order(self, ledger):
        await ledger.mark_many_processed(["b"])

        assert await ledger.filter_unprocessed(["c", "b", "a"]) == ["c", "a"]
        assert await ledger.filter_unprocessed([]) == []

    async def test_unmark_processed(self, ledger):
        await ledger.mark_many_processed(["msg_1"])

        assert await ledger.unmark_processed("msg_1") is True
        assert not await ledger.is_processed("msg_1")
        assert await ledger.get_processed_at("msg_1") is None
        assert await ledger.unmark_processed("msg_1") is False

    async def test_clear_all_resets(self, ledger):
        """
        Given: A populated ledger
        When: clear_all() is called
        Then: Nothing is processed any more
        """
        await ledger.mark_many_processed(["msg_1", "msg_2"])

        await ledger.clear_all()

        assert await ledger.count() == 0
        assert await ledger.get_processed_ids() == set()

    async def test_close_disconnects(self, ledger, fake_redis):
        await ledger.close()

        assert fake_redis.closed
        assert ledger.redis is None
