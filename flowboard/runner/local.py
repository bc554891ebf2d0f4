"""In-process stand-in for a durable step runner.

Instances run as asyncio tasks. Nothing survives a restart: sleeps, event
waits and completed step results live in memory only.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Mapping, Optional

from ..errors import EventWaitTimeoutError, RunnerError
from ..utils.retry import compute_backoff
from .base import BeforeStart, Entrypoint, StepOptions, Unit

logger = logging.getLogger(__name__)


class LocalInstance:
    """Handle for one instance launched by :class:`LocalStepRunner`."""

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        self.task: Optional[asyncio.Task] = None
        self.error: Optional[BaseException] = None
        self._events: Dict[str, asyncio.Queue] = {}

    @property
    def finished(self) -> bool:
        return self.task is not None and self.task.done()

    def _queue(self, event_type: str) -> asyncio.Queue:
        return self._events.setdefault(event_type, asyncio.Queue())

    async def send_event(self, event_type: str, payload: Any) -> None:
        """Buffer ``payload`` until the instance waits for ``event_type``."""
        if self.finished:
            raise RunnerError(
                f"Workflow instance {self.instance_id!r} is no longer running"
            )
        self._queue(event_type).put_nowait(payload)


class LocalStepContext:
    def __init__(self, instance: LocalInstance) -> None:
        self._instance = instance
        self._results: Dict[str, Any] = {}

    async def run_step(
        self, name: str, options: Optional[StepOptions], unit: Unit
    ) -> Any:
        if name in self._results:
            return self._results[name]
        options = options or StepOptions()
        attempts = options.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                if options.timeout is not None:
                    result = await asyncio.wait_for(unit(attempt), options.timeout)
                else:
                    result = await unit(attempt)
            except Exception as exc:
                if attempt >= attempts:
                    raise
                policy = options.retries
                wait = compute_backoff(attempt, policy.delay, policy.backoff)
                logger.warning(
                    "Step attempt failed, retrying",
                    extra={
                        "instance_id": self._instance.instance_id,
                        "step": name,
                        "attempt": attempt,
                        "retry_in": wait,
                        "error": str(exc) or type(exc).__name__,
                    },
                )
                await asyncio.sleep(wait)
            else:
                self._results[name] = result
                return result

    async def wait_for_event(
        self, name: str, event_type: str, timeout: Optional[float] = None
    ) -> Any:
        if name in self._results:
            return self._results[name]
        queue = self._instance._queue(event_type)
        try:
            payload = await asyncio.wait_for(queue.get(), timeout)
        except asyncio.TimeoutError:
            raise EventWaitTimeoutError(name, event_type, timeout) from None
        self._results[name] = payload
        return payload

    async def sleep(self, name: str, seconds: float) -> None:
        await asyncio.sleep(seconds)


class LocalStepRunner:
    """Run workflow entrypoints as background tasks of the current loop."""

    def __init__(self, entrypoint: Optional[Entrypoint] = None) -> None:
        self._entrypoint = entrypoint
        self._instances: Dict[str, LocalInstance] = {}

    def bind(self, entrypoint: Entrypoint) -> None:
        self._entrypoint = entrypoint

    async def create(
        self,
        params: Mapping[str, Any],
        before_start: Optional[BeforeStart] = None,
    ) -> str:
        if self._entrypoint is None:
            raise RunnerError("No workflow entrypoint bound to the runner")
        instance_id = str(uuid.uuid4())
        if before_start is not None:
            await before_start(instance_id)
        instance = LocalInstance(instance_id)
        self._instances[instance_id] = instance
        instance.task = asyncio.create_task(
            self._execute(instance, dict(params)), name=f"workflow-{instance_id}"
        )
        logger.info("Workflow instance started", extra={"instance_id": instance_id})
        return instance_id

    async def _execute(self, instance: LocalInstance, params: Dict[str, Any]) -> None:
        context = LocalStepContext(instance)
        try:
            await self._entrypoint(instance.instance_id, params, context)
        except Exception as exc:
            instance.error = exc
            logger.error(
                "Workflow instance failed",
                extra={"instance_id": instance.instance_id, "error": str(exc)},
            )
        else:
            logger.info(
                "Workflow instance finished", extra={"instance_id": instance.instance_id}
            )
        finally:
            self._instances.pop(instance.instance_id, None)

    def get(self, instance_id: str) -> LocalInstance:
        try:
            return self._instances[instance_id]
        except KeyError:
            raise RunnerError(f"Unknown workflow instance {instance_id!r}") from None

    async def join(self, instance_id: str, timeout: Optional[float] = None) -> bool:
        """Wait for an instance to finish; return whether it did.

        Finished instances are forgotten, so an unknown id counts as done.
        """
        instance = self._instances.get(instance_id)
        if instance is None or instance.task is None:
            return True
        done, _ = await asyncio.wait({instance.task}, timeout=timeout)
        return bool(done)

    async def shutdown(self) -> None:
        tasks = [i.task for i in self._instances.values() if i.task and not i.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
