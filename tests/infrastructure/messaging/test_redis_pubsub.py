"""Tests for SyncProgressPublisher"""

import json
from unittest.mock import AsyncMock

import redis.asyncio as redis

from mailsync.infrastructure.messaging.redis_pubsub import (
    SyncProgressEvent, SyncProgressPublisher, SyncStage)


class TestSyncProgressPublisher:
    """Tests for progress event publishing"""

    async def test_publish_stage_to_user_channel(self, settings):
        client = AsyncMock()
        publisher = SyncProgressPublisher(settings, redis_client=client)

        published = await publisher.publish_stage(
            "user-1", "account-1", SyncStage.PROCESSING, "Processed 10 of 20", total=20, processed=10
        )

        assert published is True
        channel, payload = client.publish.await_args.args
        assert channel == "sync_progress:user-1"
        event = SyncProgressEvent.from_dict(json.loads(payload))
        assert event.stage == SyncStage.PROCESSING
        assert event.account_id == "account-1"
        assert event.total == 20
        assert event.processed == 10

    async def test_unavailable_redis_is_skipped(self, settings):
        publisher = SyncProgressPublisher(settings)

        assert publisher.is_available() is False
        assert await publisher.publish_stage("user-1", "account-1", SyncStage.STARTED, "go") is False

    async def test_redis_error_is_not_raised(self, settings):
        client = AsyncMock()
        client.publish.side_effect = redis.ConnectionError("gone")
        publisher = SyncProgressPublisher(settings, redis_client=client)

        assert await publisher.publish_stage("user-1", "account-1", SyncStage.FAILED, "x") is False

    async def test_disconnect(self, settings):
        client = AsyncMock()
        publisher = SyncProgressPublisher(settings, redis_client=client)

        await publisher.disconnect()

        client.aclose.assert_awaited_once()
        assert publisher.is_available() is False
