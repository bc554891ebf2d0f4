"""Sequences template steps through the runner and mirrors progress.

After every write the driver reads the canonical view back from the store
and publishes it, so viewers always see what was persisted.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from .activities import Activities, ActivityContext
from .broadcast import BroadcastDispatcher
from .errors import InstanceNotFoundError
from .events import WorkflowEvent
from .models import InstanceStatus, StepStatus, StepUpdate, WorkflowInstance
from .persistence import WorkflowRepository
from .runner.base import StepContext
from .state import derive_instance_status, plan_instance_transition
from .workflow import StepSpec, WorkflowTemplate

logger = logging.getLogger(__name__)

_STATUS_EVENTS = {
    InstanceStatus.WAITING: "waiting",
    InstanceStatus.COMPLETED: "completed",
    InstanceStatus.FAILED: "failed",
}


def error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class WorkflowDriver:
    """Entrypoint handed to the step runner for every instance."""

    def __init__(
        self,
        repository: WorkflowRepository,
        dispatcher: BroadcastDispatcher,
        template: WorkflowTemplate,
        activities: Optional[Activities] = None,
    ) -> None:
        self._repository = repository
        self._dispatcher = dispatcher
        self._template = template
        self._activities = activities

    @property
    def template(self) -> WorkflowTemplate:
        return self._template

    async def __call__(
        self, instance_id: str, params: Mapping[str, Any], step: StepContext
    ) -> None:
        await self.run(instance_id, params, step)

    async def run(
        self, instance_id: str, params: Mapping[str, Any], step: StepContext
    ) -> None:
        outputs: Dict[int, Any] = {}
        for index, spec in enumerate(self._template.steps):
            started = StepStatus.WAITING if spec.kind == "approval" else StepStatus.RUNNING
            logger.info(
                "Step started",
                extra={"instance_id": instance_id, "step_index": index, "step": spec.name},
            )
            await self._update_step(instance_id, index, StepUpdate(status=started))
            try:
                output = await self._execute(instance_id, index, spec, params, outputs, step)
                # a store that rejects the output fails the step like the activity would
                await self._update_step(
                    instance_id, index, StepUpdate(status=StepStatus.COMPLETED, output=output)
                )
            except Exception as exc:
                message = error_message(exc)
                logger.warning(
                    "Step failed",
                    extra={
                        "instance_id": instance_id,
                        "step_index": index,
                        "step": spec.name,
                        "error": message,
                    },
                )
                await self._update_step(
                    instance_id,
                    index,
                    StepUpdate(status=StepStatus.FAILED, error=message),
                    error=message,
                )
                raise
            outputs[index] = output
            logger.info(
                "Step completed",
                extra={"instance_id": instance_id, "step_index": index, "step": spec.name},
            )

    async def _execute(
        self,
        instance_id: str,
        index: int,
        spec: StepSpec,
        params: Mapping[str, Any],
        outputs: Dict[int, Any],
        step: StepContext,
    ) -> Any:
        if spec.kind == "approval":
            return await step.wait_for_event(spec.key, spec.event_type, spec.timeout)
        if spec.kind == "sleep":
            await step.sleep(spec.key, spec.duration)
            return {"message": f"Waited {spec.duration:g} seconds"}

        if self._activities is None or spec.activity is None:
            raise LookupError(f"No activity configured for step {spec.name!r}")
        activity = self._activities.resolve(spec.activity)

        async def unit(attempt: int) -> Any:
            if spec.retrying:
                await self._dispatcher.publish(
                    instance_id, WorkflowEvent.retry_attempt(index, attempt)
                )
            ctx = ActivityContext(
                instance_id=instance_id,
                params=params,
                step_index=index,
                attempt=attempt,
                outputs=dict(outputs),
            )
            return await activity(ctx)

        return await step.run_step(spec.key, spec.options, unit)

    async def _read(self, instance_id: str) -> WorkflowInstance:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    async def _update_step(
        self,
        instance_id: str,
        step_index: int,
        update: StepUpdate,
        error: Optional[str] = None,
    ) -> None:
        await self._repository.update_step(instance_id, step_index, update)
        instance = await self._read(instance_id)
        await self._dispatcher.publish(
            instance_id, WorkflowEvent.snapshot("stepUpdate", instance)
        )
        await self._sync_status(instance, error)

    async def _sync_status(self, instance: WorkflowInstance, error: Optional[str]) -> None:
        target = derive_instance_status(instance.steps, instance.status)
        for status in plan_instance_transition(instance.status, target):
            await self._repository.update_instance_status(instance.id, status)
            instance = await self._read(instance.id)
            await self._dispatcher.publish(
                instance.id, WorkflowEvent.snapshot("statusUpdate", instance)
            )
            event_type = _STATUS_EVENTS.get(status)
            if event_type is not None:
                await self._dispatcher.publish(
                    instance.id,
                    WorkflowEvent.snapshot(
                        event_type,
                        instance,
                        error=error if status == InstanceStatus.FAILED else None,
                    ),
                )
            logger.info(
                "Workflow status changed",
                extra={"instance_id": instance.id, "status": status.value},
            )
