"""Redis pub/sub transport for cross-process event fan-out."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional, Tuple

import redis.asyncio as redis

from ..errors import TransportError
from .base import BaseTransport

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport):
    """Relay events between processes through Redis channels."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        channel_prefix: str = "flowboard",
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.channel_prefix = channel_prefix
        self._redis: Optional[Any] = None

    def channel_for(self, topic: str) -> str:
        return f"{self.channel_prefix}:events:{topic}"

    def topic_of(self, channel: str) -> str:
        return channel[len(self.channel_for("")):]

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        # Test connection
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, topic: str, message: str) -> None:
        try:
            if not self._redis:
                await self.connect()
            await self._redis.publish(self.channel_for(topic), message)
        except redis.RedisError as exc:
            raise TransportError(f"Redis publish to {topic!r} failed: {exc}") from exc

    async def listen(self) -> AsyncIterator[Tuple[str, str]]:
        if not self._redis:
            await self.connect()

        pubsub = self._redis.pubsub()
        await pubsub.psubscribe(self.channel_for("*"))
        try:
            async for item in pubsub.listen():
                if item.get("type") != "pmessage":
                    continue
                yield self.topic_of(item["channel"]), item["data"]
        finally:
            await pubsub.punsubscribe()
            await pubsub.aclose()
