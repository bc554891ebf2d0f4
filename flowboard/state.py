"""Lifecycle rules for workflow instances and their steps.

Every backend and the driver go through these helpers so that status
derivation, ``end_time`` handling and step merging agree everywhere.
"""

from __future__ import annotations

import json
import time
from typing import Any, Iterable, Optional, Sequence

from .errors import InstanceTerminalError, InvalidStepUpdateError, InvalidTransitionError
from .models import InstanceStatus, StepRecord, StepStatus, StepUpdate

INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.QUEUED: frozenset({InstanceStatus.RUNNING}),
    InstanceStatus.RUNNING: frozenset(
        {InstanceStatus.WAITING, InstanceStatus.COMPLETED, InstanceStatus.FAILED}
    ),
    InstanceStatus.WAITING: frozenset({InstanceStatus.RUNNING}),
    InstanceStatus.COMPLETED: frozenset(),
    InstanceStatus.FAILED: frozenset(),
}

STEP_TRANSITIONS: dict[StepStatus, frozenset[StepStatus]] = {
    StepStatus.PENDING: frozenset({StepStatus.RUNNING, StepStatus.WAITING}),
    StepStatus.RUNNING: frozenset(
        {StepStatus.WAITING, StepStatus.COMPLETED, StepStatus.FAILED}
    ),
    StepStatus.WAITING: frozenset(
        {StepStatus.RUNNING, StepStatus.COMPLETED, StepStatus.FAILED}
    ),
    StepStatus.COMPLETED: frozenset(),
    StepStatus.FAILED: frozenset(),
}


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def encode_output(value: Any) -> Optional[str]:
    """JSON text stored for a step output."""
    if value is None:
        return None
    try:
        return json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise InvalidStepUpdateError(f"Step output is not JSON serializable: {exc}") from exc


def decode_output(raw: Optional[str]) -> Any:
    return None if raw is None else json.loads(raw)


def check_instance_transition(
    instance_id: str, current: InstanceStatus, target: InstanceStatus
) -> None:
    """Raise unless ``current -> target`` is allowed.

    Re-asserting a non-terminal status is accepted as a no-op transition.
    """
    if current.is_terminal:
        raise InstanceTerminalError(instance_id, current.value)
    if target == current:
        return
    if target not in INSTANCE_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Workflow instance {instance_id!r} cannot move from {current.value} to {target.value}"
        )


def resolve_end_time(
    status: InstanceStatus, end_time: Optional[int], now: int
) -> Optional[int]:
    """Return the ``end_time`` to store alongside ``status``."""
    if status.is_terminal:
        return end_time if end_time is not None else now
    if end_time is not None:
        raise InvalidTransitionError(
            f"end_time can only be set for terminal statuses, not {status.value}"
        )
    return None


def merge_step(step: StepRecord, update: StepUpdate, now: int) -> StepRecord:
    """Apply ``update`` to ``step`` and return the merged record.

    Entering ``running``/``waiting`` stamps ``timestamp`` (unless given) and
    clears any previous result. Entering a terminal status computes
    ``duration`` from the stored ``timestamp`` (unless given) and clears the
    field that does not belong to that outcome.
    """
    changes = update.changes()
    if "status" in changes and changes["status"] is None:
        raise InvalidStepUpdateError("Step status cannot be cleared")
    if "output" in changes:
        # every backend returns what a JSON round trip returns
        changes["output"] = decode_output(encode_output(changes["output"]))
    if changes.get("output") is not None and changes.get("error") is not None:
        raise InvalidStepUpdateError("A step cannot carry both output and error")

    target = changes.get("status", step.status)
    if target != step.status and target not in STEP_TRANSITIONS[step.status]:
        raise InvalidTransitionError(
            f"Step {step.step_index} cannot move from {step.status.value} to {target.value}"
        )

    merged = step.model_copy(update=changes)

    if target != step.status:
        if target.is_active:
            if "timestamp" not in changes:
                merged.timestamp = now
            merged.output = None
            merged.error = None
            merged.duration = None
        elif target.is_terminal and "duration" not in changes:
            started = merged.timestamp if merged.timestamp is not None else now
            merged.duration = max(0, now - started)

    if merged.status == StepStatus.COMPLETED:
        merged.error = None
    elif merged.status == StepStatus.FAILED:
        merged.output = None

    if merged.output is not None and merged.status != StepStatus.COMPLETED:
        raise InvalidStepUpdateError(
            f"Step {step.step_index} can only carry output once completed"
        )
    if merged.error is not None and merged.status != StepStatus.FAILED:
        raise InvalidStepUpdateError(
            f"Step {step.step_index} can only carry an error once failed"
        )
    return merged


def derive_instance_status(
    steps: Sequence[StepRecord], current: InstanceStatus
) -> InstanceStatus:
    """Instance status implied by step progress."""
    statuses = [step.status for step in steps]
    if StepStatus.FAILED in statuses:
        return InstanceStatus.FAILED
    if statuses and all(status == StepStatus.COMPLETED for status in statuses):
        return InstanceStatus.COMPLETED
    if StepStatus.WAITING in statuses:
        return InstanceStatus.WAITING
    if StepStatus.RUNNING in statuses or StepStatus.COMPLETED in statuses:
        return InstanceStatus.RUNNING
    return current


def plan_instance_transition(
    current: InstanceStatus, target: InstanceStatus
) -> list[InstanceStatus]:
    """Statuses to pass through to reach ``target`` from ``current``.

    ``failed`` is only entered from ``running``, so a failure while waiting
    resumes the instance first.
    """
    if target == current:
        return []
    if current == InstanceStatus.WAITING and target == InstanceStatus.FAILED:
        return [InstanceStatus.RUNNING, InstanceStatus.FAILED]
    if current == InstanceStatus.QUEUED and target != InstanceStatus.RUNNING:
        return [InstanceStatus.RUNNING] + plan_instance_transition(
            InstanceStatus.RUNNING, target
        )
    return [target]


def check_step_sequence(steps: Iterable[StepRecord]) -> None:
    """Raise ``ValueError`` unless steps form ``0..N-1`` with at most one
    active step, terminal steps before it and pending steps after it."""
    seen_active = False
    seen_pending = False
    for expected, step in enumerate(steps):
        if step.step_index != expected:
            raise ValueError(
                f"Expected step index {expected}, found {step.step_index}"
            )
        if step.status.is_active:
            if seen_active or seen_pending:
                raise ValueError(f"Step {expected} is active out of sequence")
            seen_active = True
        elif step.status == StepStatus.PENDING:
            seen_pending = True
        elif seen_active or seen_pending:
            raise ValueError(f"Step {expected} is terminal after an unfinished step")
