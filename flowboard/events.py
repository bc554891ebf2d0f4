"""Events pushed to live viewers of a workflow instance."""

from __future__ import annotations

import json
from typing import Literal, Optional

from .models import WireModel, WorkflowInstance

EventType = Literal[
    "initial",
    "stepUpdate",
    "statusUpdate",
    "waiting",
    "completed",
    "failed",
    "retryAttempt",
]

KEEPALIVE_FRAME = ": keep-alive\n\n"


class WorkflowEvent(WireModel):
    """Tagged payload sent over the stream.

    Snapshot events carry the full ``instance``; ``failed`` also carries the
    ``error`` message and ``retryAttempt`` only carries ``step_index`` and
    ``attempt``.
    """

    type: EventType
    instance: Optional[WorkflowInstance] = None
    error: Optional[str] = None
    step_index: Optional[int] = None
    attempt: Optional[int] = None

    @classmethod
    def snapshot(
        cls, event_type: EventType, instance: WorkflowInstance, error: Optional[str] = None
    ) -> "WorkflowEvent":
        return cls(type=event_type, instance=instance, error=error)

    @classmethod
    def retry_attempt(cls, step_index: int, attempt: int) -> "WorkflowEvent":
        return cls(type="retryAttempt", step_index=step_index, attempt=attempt)

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"))

    def to_frame(self) -> str:
        """Server-sent-event frame for this event."""
        return f"data: {self.to_json()}\n\n"
