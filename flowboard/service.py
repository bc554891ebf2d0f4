"""Application operations behind the HTTP surface and the CLI."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Mapping, Optional

from .broadcast import BroadcastDispatcher
from .errors import InstanceNotFoundError
from .events import WorkflowEvent
from .models import WorkflowInstance
from .persistence import WorkflowRepository
from .runner.base import StepRunner
from .state import now_ms
from .workflow import WorkflowTemplate

logger = logging.getLogger(__name__)

APPROVAL_EVENT = "approval"


class WorkflowService:
    def __init__(
        self,
        repository: WorkflowRepository,
        runner: StepRunner,
        dispatcher: BroadcastDispatcher,
        template: WorkflowTemplate,
    ) -> None:
        self._repository = repository
        self._runner = runner
        self._dispatcher = dispatcher
        self._template = template

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    async def start_workflow(
        self, params: Optional[Mapping[str, Any]] = None
    ) -> WorkflowInstance:
        """Create the store rows, launch the instance and return its first view."""
        step_names = self._template.step_names

        async def register(instance_id: str) -> None:
            await self._repository.create_instance(instance_id, step_names)

        instance_id = await self._runner.create(params or {}, before_start=register)
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    async def retry_workflow(self, instance_id: str) -> Optional[WorkflowInstance]:
        """Start a fresh sibling of ``instance_id``; ``None`` if it does not exist."""
        if await self._repository.get_instance(instance_id) is None:
            return None
        instance = await self.start_workflow()
        logger.info(
            "Workflow retried",
            extra={"instance_id": instance.id, "retry_of": instance_id},
        )
        return instance

    async def continue_workflow(self, instance_id: str) -> None:
        """Send the approval event to a waiting instance."""
        handle = self._runner.get(instance_id)
        await handle.send_event(
            APPROVAL_EVENT, {"approved": True, "timestamp": now_ms()}
        )
        logger.info("Approval sent", extra={"instance_id": instance_id})

    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        return await self._repository.get_instance(instance_id)

    async def list_instances(self) -> list[WorkflowInstance]:
        return await self._repository.list_instances()

    async def event_stream(
        self, instance_id: str, keepalive: Optional[float] = None
    ) -> AsyncIterator[str]:
        """SSE frames for one viewer: the current snapshot, then live events.

        The viewer is registered before the snapshot is read so no event
        published in between is lost; the snapshot is still sent first.
        """
        registry = self._dispatcher.registry
        async with registry.connect(instance_id) as subscriber:
            instance = await self._repository.get_instance(instance_id)
            if instance is not None:
                subscriber.prime(WorkflowEvent.snapshot("initial", instance).to_frame())
            async for frame in subscriber.frames(keepalive):
                yield frame
