"""Tracks live viewers per workflow instance."""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Deque, Dict, Optional, Set

from ..errors import BroadcastDeliveryError
from ..events import KEEPALIVE_FRAME

logger = logging.getLogger(__name__)


class Subscriber:
    """One viewer's channel.

    Frames are buffered in publish order until the viewer's stream consumes
    them. A viewer that falls ``max_pending`` frames behind is closed.
    """

    def __init__(self, instance_id: str, max_pending: int = 256) -> None:
        self.id = uuid.uuid4().hex
        self.instance_id = instance_id
        self._max_pending = max_pending
        self._pending: Deque[str] = deque()
        self._ready = asyncio.Event()
        self._closed = False

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id!r}, instance_id={self.instance_id!r})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._pending)

    def send(self, frame: str) -> None:
        """Queue ``frame`` for delivery."""
        if self._closed:
            raise BroadcastDeliveryError(f"Subscriber {self.id} is closed")
        if len(self._pending) >= self._max_pending:
            self.close()
            raise BroadcastDeliveryError(
                f"Subscriber {self.id} fell {self._max_pending} events behind"
            )
        self._pending.append(frame)
        self._ready.set()

    def prime(self, frame: str) -> None:
        """Queue ``frame`` ahead of everything already pending."""
        if self._closed:
            raise BroadcastDeliveryError(f"Subscriber {self.id} is closed")
        self._pending.appendleft(frame)
        self._ready.set()

    def close(self) -> None:
        self._closed = True
        self._ready.set()

    async def frames(self, keepalive: Optional[float] = None) -> AsyncIterator[str]:
        """Yield queued frames until closed.

        When ``keepalive`` is set, an SSE comment frame is yielded after that
        many idle seconds so a vanished client surfaces as a write error.
        """
        while True:
            while self._pending:
                yield self._pending.popleft()
            if self._closed:
                return
            self._ready.clear()
            try:
                await asyncio.wait_for(self._ready.wait(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield KEEPALIVE_FRAME


class SubscriptionRegistry:
    """Live subscribers keyed by instance id.

    Safe to use from any task; membership changes are guarded by a lock and
    readers receive snapshot copies.
    """

    def __init__(self, max_pending: int = 256) -> None:
        self._max_pending = max_pending
        self._subscribers: Dict[str, Set[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, instance_id: str) -> Subscriber:
        subscriber = Subscriber(instance_id, max_pending=self._max_pending)
        with self._lock:
            self._subscribers.setdefault(instance_id, set()).add(subscriber)
        logger.debug(
            "Viewer subscribed",
            extra={"instance_id": instance_id, "subscriber_id": subscriber.id},
        )
        return subscriber

    def unsubscribe(self, instance_id: str, subscriber: Subscriber) -> None:
        """Remove ``subscriber``; unknown or already removed handles are ignored."""
        with self._lock:
            members = self._subscribers.get(instance_id)
            if members is None or subscriber not in members:
                return
            members.discard(subscriber)
            if not members:
                del self._subscribers[instance_id]
        subscriber.close()
        logger.debug(
            "Viewer unsubscribed",
            extra={"instance_id": instance_id, "subscriber_id": subscriber.id},
        )

    def subscribers_of(self, instance_id: str) -> frozenset[Subscriber]:
        with self._lock:
            return frozenset(self._subscribers.get(instance_id, ()))

    def count(self, instance_id: Optional[str] = None) -> int:
        with self._lock:
            if instance_id is not None:
                return len(self._subscribers.get(instance_id, ()))
            return sum(len(members) for members in self._subscribers.values())

    @asynccontextmanager
    async def connect(self, instance_id: str) -> AsyncIterator[Subscriber]:
        """Subscribe for the duration of the block, then always unsubscribe."""
        subscriber = self.subscribe(instance_id)
        try:
            yield subscriber
        finally:
            self.unsubscribe(instance_id, subscriber)

    def close(self) -> None:
        """Close and drop every subscriber."""
        with self._lock:
            members = [s for group in self._subscribers.values() for s in group]
            self._subscribers.clear()
        for subscriber in members:
            subscriber.close()
