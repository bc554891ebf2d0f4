"""The step template executed for every workflow instance."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .config import WorkflowConfig
from .runner.base import RetryPolicy, StepOptions

StepKind = Literal["task", "approval", "sleep"]


class StepSpec(BaseModel):
    """One template step.

    ``name`` is shown on the dashboard; ``key`` names the durable step in the
    runner. ``task`` steps run the named activity, ``approval`` steps wait for
    an external event and ``sleep`` steps pause for ``duration`` seconds.
    """

    name: str
    key: str
    kind: StepKind = "task"
    activity: Optional[str] = None
    options: Optional[StepOptions] = None
    event_type: str = "approval"
    timeout: Optional[float] = None
    duration: float = 0.0

    @property
    def retrying(self) -> bool:
        return bool(self.options and self.options.retries)


class WorkflowTemplate(BaseModel):
    name: str
    steps: List[StepSpec] = Field(default_factory=list)

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]


def build_default_template(config: Optional[WorkflowConfig] = None) -> WorkflowTemplate:
    """Fetch files, wait for approval, call an API, sleep, then write."""
    config = config or WorkflowConfig()
    retries = config.write_retries
    return WorkflowTemplate(
        name="document-approval",
        steps=[
            StepSpec(name="Fetch Files", key="fetch-files", activity="fetch_files"),
            StepSpec(
                name="Wait for Approval",
                key="request-approval",
                kind="approval",
                event_type="approval",
                timeout=config.approval_timeout_seconds,
            ),
            StepSpec(name="Fetch API Data", key="fetch-api-data", activity="fetch_api_data"),
            StepSpec(
                name="Sleep",
                key="wait-on-something",
                kind="sleep",
                duration=config.sleep_seconds,
            ),
            StepSpec(
                name="Write Operation",
                key="write-operation",
                activity="write_operation",
                options=StepOptions(
                    retries=RetryPolicy(
                        limit=retries.limit,
                        delay=retries.delay_seconds,
                        backoff=retries.backoff,
                    ),
                    timeout=config.write_timeout_seconds,
                ),
            ),
        ],
    )
