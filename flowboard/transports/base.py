"""Base transport interface for cross-process event fan-out."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Tuple


class BaseTransport(metaclass=abc.ABCMeta):
    """Abstract publish/subscribe channel carrying serialized event frames.

    Topics are workflow instance ids. Every listener receives every message
    published after it started listening, in publish order per publisher.
    """

    async def connect(self) -> None:
        """Open connection to broker (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to broker (no-op by default)."""
        pass

    @abc.abstractmethod
    async def publish(self, topic: str, message: str) -> None:
        """Send a message to a topic."""
        raise NotImplementedError

    @abc.abstractmethod
    def listen(self) -> AsyncIterator[Tuple[str, str]]:
        """Yield ``(topic, message)`` pairs for all topics."""
        raise NotImplementedError
