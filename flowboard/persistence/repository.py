"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from ..models import InstanceStatus, StepUpdate, WorkflowInstance


class StateStore(Protocol):
    """Write side: the durable record of instance and step state."""

    async def create_instance(self, instance_id: str, step_names: Sequence[str]) -> None:
        """Insert a queued instance with one pending step per name."""

    async def update_step(
        self, instance_id: str, step_index: int, update: StepUpdate
    ) -> None:
        """Merge ``update`` into one step row atomically."""

    async def update_instance_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        end_time: Optional[int] = None,
    ) -> None:
        """Move the instance to ``status``."""

    async def delete_instance(self, instance_id: str) -> bool:
        """Remove the instance and its steps."""


class StateReader(Protocol):
    """Read side: reconstructs full instance views."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve the instance with its ordered steps."""

    async def list_instances(self) -> list[WorkflowInstance]:
        """Return all instances, most recently started first."""


class WorkflowRepository(StateStore, StateReader, Protocol):
    """Protocol for workflow state persistence backends."""

    async def close(self) -> None:
        """Release backend resources."""
