"""Redis Pub/Sub for real-time sync progress events"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

import redis.asyncio as redis

from mailsync.infrastructure.config.settings import Settings
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import utc_now

logger = get_logger(__name__)


class SyncStage(str, Enum):
    """Stages of sync progress"""
    STARTED = "started"
    LISTING = "listing_messages"
    PROCESSING = "processing_messages"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SyncProgressEvent:
    """Sync progress event data"""
    account_id: str
    stage: SyncStage
    message: str
    timestamp: str
    run_id: str | None = None
    total: int = 0
    processed: int = 0
    stored: int = 0
    failed: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = asdict(self)
        data["stage"] = self.stage.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncProgressEvent":
        """Create from dictionary"""
        data = dict(data)
        data["stage"] = SyncStage(data["stage"])
        return cls(**data)


class SyncProgressPublisher:
    """Publishes sync progress events to Redis; a missing Redis is not an error"""

    CHANNEL_PREFIX = "sync_progress"

    def __init__(self, settings: Settings, redis_client: redis.Redis | None = None) -> None:
        self.redis = redis_client
        self.settings = settings
        self._connected = redis_client is not None

    async def connect(self) -> None:
        """Establish Redis connection"""
        if self.redis is None:
            try:
                self.redis = redis.Redis(
                    host=self.settings.redis_host,
                    port=self.settings.redis_port,
                    db=self.settings.redis_db,
                    password=self.settings.redis_password or None,
                    decode_responses=True,
                    socket_connect_timeout=5,
                )
                await self.redis.ping()
                self._connected = True
                logger.info("Redis pub/sub publisher connected")
            except (redis.ConnectionError, redis.TimeoutError) as e:
                logger.warning("Redis pub/sub connection failed: %s", e)
                self._connected = False
                self.redis = None

    async def disconnect(self) -> None:
        """Close Redis connection"""
        if self.redis:
            await self.redis.aclose()
            self._connected = False
            logger.info("Redis pub/sub publisher disconnected")

    def is_available(self) -> bool:
        """Check if Redis is connected"""
        return self._connected and self.redis is not None

    def _get_channel(self, user_id: str) -> str:
        """Get channel name for user"""
        return f"{self.CHANNEL_PREFIX}:{user_id}"

    async def publish(self, user_id: str, event: SyncProgressEvent) -> bool:
        """
        Publish sync progress event to the user's channel

        Returns:
            True if published successfully
        """
        if not self.is_available() or self.redis is None:
            logger.debug("Redis not available, skipping publish")
            return False

        try:
            channel = self._get_channel(user_id)
            await self.redis.publish(channel, json.dumps(event.to_dict()))
            logger.debug("Published sync progress to %s: %s", channel, event.stage.value)
            return True
        except redis.RedisError as e:
            logger.error("Failed to publish sync progress: %s", e)
            return False

    async def publish_stage(
        self,
        user_id: str,
        account_id: str,
        stage: SyncStage,
        message: str,
        **counters: Any,
    ) -> bool:
        """Build and publish an event for ``stage``"""
        event = SyncProgressEvent(
            account_id=account_id,
            stage=stage,
            message=message,
            timestamp=utc_now().isoformat(),
            **counters,
        )
        return await self.publish(user_id, event)
