"""Contract between the orchestration driver and a durable step runner.

The driver only depends on these protocols, so a hosted durable execution
platform can stand in for the local runner shipped with flowboard.
"""

from __future__ import annotations

from typing import (
    Any,
    Awaitable,
    Callable,
    Literal,
    Mapping,
    Optional,
    Protocol,
)

from pydantic import BaseModel, Field

Backoff = Literal["constant", "linear", "exponential"]

# A unit of work receives its 1-based attempt number.
Unit = Callable[[int], Awaitable[Any]]


class RetryPolicy(BaseModel):
    """``limit`` retries after the first attempt, ``delay`` seconds apart
    scaled by ``backoff``."""

    limit: int = Field(0, ge=0)
    delay: float = Field(0.0, ge=0)
    backoff: Backoff = "constant"


class StepOptions(BaseModel):
    retries: Optional[RetryPolicy] = None
    timeout: Optional[float] = None

    @property
    def max_attempts(self) -> int:
        return 1 + (self.retries.limit if self.retries else 0)


class StepContext(Protocol):
    """Per-instance handle the entrypoint uses to run durable steps."""

    async def run_step(
        self, name: str, options: Optional[StepOptions], unit: Unit
    ) -> Any:
        """Run ``unit`` with the runner's retry and timeout semantics."""

    async def wait_for_event(
        self, name: str, event_type: str, timeout: Optional[float] = None
    ) -> Any:
        """Suspend until an event of ``event_type`` is sent to the instance."""

    async def sleep(self, name: str, seconds: float) -> None:
        """Suspend for ``seconds``."""


Entrypoint = Callable[[str, Mapping[str, Any], StepContext], Awaitable[Any]]
BeforeStart = Callable[[str], Awaitable[None]]


class InstanceHandle(Protocol):
    instance_id: str

    async def send_event(self, event_type: str, payload: Any) -> None:
        """Deliver an external event to the running instance."""


class StepRunner(Protocol):
    async def create(
        self,
        params: Mapping[str, Any],
        before_start: Optional[BeforeStart] = None,
    ) -> str:
        """Allocate an instance id, await ``before_start`` and launch the entrypoint."""

    def get(self, instance_id: str) -> InstanceHandle:
        """Return the handle of a known instance or raise ``RunnerError``."""

    async def shutdown(self) -> None:
        """Stop all running instances."""
