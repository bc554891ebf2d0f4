"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Callable, Dict, Optional, Sequence

from .. import state
from ..errors import (
    DuplicateInstanceError,
    InstanceNotFoundError,
    InstanceTerminalError,
    StepNotFoundError,
)
from ..models import InstanceStatus, StepRecord, StepUpdate, WorkflowInstance
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Every method runs without awaiting,
    so each call is atomic with respect to other tasks on the loop.
    """

    def __init__(self, clock: Callable[[], int] = state.now_ms) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        self._clock = clock

    # ------------------------------------------------------------------
    def _require(self, instance_id: str) -> WorkflowInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    async def create_instance(self, instance_id: str, step_names: Sequence[str]) -> None:
        if instance_id in self._instances:
            raise DuplicateInstanceError(instance_id)
        self._instances[instance_id] = WorkflowInstance(
            id=instance_id,
            status=InstanceStatus.QUEUED,
            start_time=self._clock(),
            steps=[
                StepRecord(step_index=index, name=name)
                for index, name in enumerate(step_names)
            ],
        )

    async def update_step(
        self, instance_id: str, step_index: int, update: StepUpdate
    ) -> None:
        instance = self._require(instance_id)
        if instance.status.is_terminal:
            raise InstanceTerminalError(instance_id, instance.status.value)
        step = instance.step(step_index)
        if step is None:
            raise StepNotFoundError(instance_id, step_index)
        instance.steps[step_index] = state.merge_step(step, update, self._clock())

    async def update_instance_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        end_time: Optional[int] = None,
    ) -> None:
        instance = self._require(instance_id)
        state.check_instance_transition(instance_id, instance.status, status)
        instance.end_time = state.resolve_end_time(status, end_time, self._clock())
        instance.status = status

    async def delete_instance(self, instance_id: str) -> bool:
        return self._instances.pop(instance_id, None) is not None

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def list_instances(self) -> list[WorkflowInstance]:
        # newest insertion wins ties on start_time
        ordered = sorted(
            reversed(list(self._instances.values())),
            key=lambda wf: wf.start_time,
            reverse=True,
        )
        return [instance.model_copy(deep=True) for instance in ordered]

    async def close(self) -> None:
        pass
