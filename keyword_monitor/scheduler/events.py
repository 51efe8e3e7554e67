"""
Live mention events for dashboard subscribers.

Each new mention is published to a tenant-scoped Redis channel
("<prefix>:<tenant_id>"). Delivery is best effort: no retry and no
persistence of missed events - the mentions table is the system of record.
When no Redis URL is configured, events are only logged.
"""

import logging
from datetime import datetime
from typing import Optional, Protocol

import redis.asyncio as aioredis
from pydantic import BaseModel

from ..archivist.models import Mention
from ..config.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class MentionPayload(BaseModel):
    id: Optional[int] = None
    source_url: str
    content_snippet: str
    author: Optional[str] = None
    community: Optional[str] = None
    sentiment: str
    found_at: datetime
    tenant_id: str
    term_id: int
    created_at: Optional[datetime] = None


class MentionEvent(BaseModel):
    event: str
    mention: MentionPayload

    @classmethod
    def from_mention(cls, mention: Mention, event_name: str) -> "MentionEvent":
        return cls(
            event=event_name,
            mention=MentionPayload.model_validate(mention, from_attributes=True),
        )


class EventPublisher(Protocol):
    async def publish(self, tenant_id: str, mention: Mention) -> bool:
        ...

    async def close(self) -> None:
        ...


def tenant_channel(prefix: str, tenant_id: str) -> str:
    return f"{prefix}:{tenant_id}"


class RedisEventPublisher:
    """Publishes mention events with Redis PUBLISH."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        channel_prefix: str = "mentions",
        event_name: str = "new_mention",
    ):
        self._redis = redis_client
        self.channel_prefix = channel_prefix
        self.event_name = event_name

    async def publish(self, tenant_id: str, mention: Mention) -> bool:
        """Publish one mention. Returns False (never raises) if delivery failed."""
        channel = tenant_channel(self.channel_prefix, tenant_id)
        try:
            payload = MentionEvent.from_mention(mention, self.event_name).model_dump_json()
            receivers = await self._redis.publish(channel, payload)
            logger.debug(f"Published {self.event_name} to {channel} ({receivers} subscribers)")
            return True
        except Exception as e:
            # Live events are a convenience layer; the mention is already stored
            logger.warning(f"Failed to publish mention event to {channel}: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()


class LoggingEventPublisher:
    """Fallback publisher when Redis is not configured."""

    def __init__(self, event_name: str = "new_mention"):
        self.event_name = event_name

    async def publish(self, tenant_id: str, mention: Mention) -> bool:
        logger.info(f"[{tenant_id}] {self.event_name}: {mention.source_url}")
        return True

    async def close(self) -> None:
        return None


def create_event_publisher(settings: Optional[Settings] = None) -> EventPublisher:
    settings = settings or default_settings
    if not settings.redis_url:
        logger.warning("REDIS_URL not configured - mention events will only be logged")
        return LoggingEventPublisher(event_name=settings.mention_event_name)

    return RedisEventPublisher(
        aioredis.from_url(settings.redis_url),
        channel_prefix=settings.mention_channel_prefix,
        event_name=settings.mention_event_name,
    )
