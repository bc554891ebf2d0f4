"""Pushes workflow events to every live viewer of an instance."""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import BroadcastDeliveryError, TransportError
from ..events import WorkflowEvent
from ..transports import BaseTransport
from .registry import SubscriptionRegistry

logger = logging.getLogger(__name__)


class BroadcastDispatcher:
    """Fan events out to subscribers, optionally across processes.

    Without a transport, ``publish`` delivers straight to the local registry.
    With one, events go through the transport and every process running
    ``relay`` delivers them to its own viewers.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        transport: Optional[BaseTransport] = None,
    ) -> None:
        self._registry = registry
        self._transport = transport

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    async def publish(self, instance_id: str, event: WorkflowEvent) -> None:
        """Deliver ``event`` to viewers of ``instance_id``; never raises on delivery."""
        frame = event.to_frame()
        if self._transport is None:
            self.deliver(instance_id, frame)
            return
        try:
            await self._transport.publish(instance_id, frame)
        except TransportError as exc:
            # the store stays authoritative; viewers catch up on the next event
            logger.warning(
                "Event relay publish failed",
                extra={"instance_id": instance_id, "event_type": event.type, "error": str(exc)},
            )

    def deliver(self, instance_id: str, frame: str) -> int:
        """Queue ``frame`` on each local subscriber; return how many accepted it."""
        delivered = 0
        for subscriber in self._registry.subscribers_of(instance_id):
            try:
                subscriber.send(frame)
            except BroadcastDeliveryError as exc:
                logger.debug(
                    "Dropped event for viewer",
                    extra={"instance_id": instance_id, "subscriber_id": subscriber.id, "error": str(exc)},
                )
                continue
            delivered += 1
        return delivered

    async def relay(self) -> None:
        """Forward transport messages to local viewers until cancelled."""
        if self._transport is None:
            return
        async for instance_id, frame in self._transport.listen():
            self.deliver(instance_id, frame)
