"""Workflow instance and step models shared by every layer."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class InstanceStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (InstanceStatus.COMPLETED, InstanceStatus.FAILED)


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StepStatus.COMPLETED, StepStatus.FAILED)

    @property
    def is_active(self) -> bool:
        return self in (StepStatus.RUNNING, StepStatus.WAITING)


class WireModel(BaseModel):
    """Base for models sent to the dashboard with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StepRecord(WireModel):
    """State of one step within a workflow instance."""

    step_index: int
    name: str
    status: StepStatus = StepStatus.PENDING
    output: Any = None
    error: Optional[str] = None
    timestamp: Optional[int] = None
    duration: Optional[int] = None


class StepUpdate(BaseModel):
    """Partial step fields; only explicitly set fields are merged."""

    status: Optional[StepStatus] = None
    output: Any = None
    error: Optional[str] = None
    timestamp: Optional[int] = None
    duration: Optional[int] = None

    def changes(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}


class WorkflowInstance(WireModel):
    """Persisted workflow instance with its ordered steps."""

    id: str
    status: InstanceStatus = InstanceStatus.QUEUED
    start_time: int
    end_time: Optional[int] = None
    steps: list[StepRecord] = Field(default_factory=list)

    def step(self, step_index: int) -> Optional[StepRecord]:
        if 0 <= step_index < len(self.steps):
            return self.steps[step_index]
        return None
