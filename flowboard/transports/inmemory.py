"""In-memory transport for testing."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, List, Tuple

from .base import BaseTransport


class InMemoryTransport(BaseTransport):
    """Simple in-process fan-out for unit tests."""

    def __init__(self) -> None:
        self._listeners: List[asyncio.Queue[Tuple[str, str]]] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def publish(self, topic: str, message: str) -> None:
        """Hand message to every active listener."""
        for queue in list(self._listeners):
            queue.put_nowait((topic, message))

    async def listen(self) -> AsyncIterator[Tuple[str, str]]:
        queue: asyncio.Queue[Tuple[str, str]] = asyncio.Queue()
        self._listeners.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._listeners.remove(queue)
