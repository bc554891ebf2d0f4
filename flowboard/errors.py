"""Exception hierarchy shared by the store, broadcast and runner layers."""

from __future__ import annotations


class FlowboardError(Exception):
    """Base class for all flowboard errors."""


class NotFoundError(FlowboardError):
    """A requested record does not exist."""


class InstanceNotFoundError(NotFoundError):
    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Workflow instance {instance_id!r} not found")
        self.instance_id = instance_id


class StepNotFoundError(NotFoundError):
    def __init__(self, instance_id: str, step_index: int) -> None:
        super().__init__(
            f"Step {step_index} of workflow instance {instance_id!r} not found"
        )
        self.instance_id = instance_id
        self.step_index = step_index


class DuplicateInstanceError(FlowboardError):
    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Workflow instance {instance_id!r} already exists")
        self.instance_id = instance_id


class InvalidTransitionError(FlowboardError):
    """A status change is not allowed by the lifecycle rules."""


class InstanceTerminalError(InvalidTransitionError):
    """The instance is completed or failed and can no longer change."""

    def __init__(self, instance_id: str, status: str) -> None:
        super().__init__(
            f"Workflow instance {instance_id!r} is {status} and cannot be modified"
        )
        self.instance_id = instance_id
        self.status = status


class InvalidStepUpdateError(FlowboardError):
    """A step update would break the output/error rules."""


class BroadcastDeliveryError(FlowboardError):
    """A single subscriber could not accept an event."""


class RunnerError(FlowboardError):
    """The step runner rejected a request."""


class EventWaitTimeoutError(RunnerError):
    def __init__(self, name: str, event_type: str, timeout: float) -> None:
        super().__init__(
            f"Timed out after {timeout:g}s waiting for {event_type!r} event in step {name!r}"
        )
        self.name = name
        self.event_type = event_type
        self.timeout = timeout


class TransportError(FlowboardError):
    """The cross-process event transport failed."""
