import asyncio

import pytest
from pydantic import ValidationError

from flowboard.errors import EventWaitTimeoutError, RunnerError
from flowboard.runner import LocalStepRunner, RetryPolicy, StepOptions


@pytest.mark.asyncio
async def test_before_start_runs_before_entrypoint():
    calls = []

    async def entrypoint(instance_id, params, step):
        calls.append(("run", instance_id, params))

    async def before_start(instance_id):
        calls.append(("before", instance_id))

    runner = LocalStepRunner(entrypoint)
    instance_id = await runner.create({"email": "ops@example.com"}, before_start=before_start)
    assert await runner.join(instance_id, timeout=1)

    assert calls == [
        ("before", instance_id),
        ("run", instance_id, {"email": "ops@example.com"}),
    ]


@pytest.mark.asyncio
async def test_create_requires_entrypoint():
    with pytest.raises(RunnerError):
        await LocalStepRunner().create({})


@pytest.mark.asyncio
async def test_run_step_retries_until_success():
    attempts = []

    async def flaky(attempt):
        attempts.append(attempt)
        if attempt < 3:
            raise RuntimeError("transient")
        return {"ok": attempt}

    async def entrypoint(instance_id, params, step):
        options = StepOptions(retries=RetryPolicy(limit=5, delay=0))
        return await step.run_step("write", options, flaky)

    runner = LocalStepRunner(entrypoint)
    instance_id = await runner.create({})
    handle = runner.get(instance_id)
    await runner.join(instance_id, timeout=1)

    assert attempts == [1, 2, 3]
    assert handle.error is None


@pytest.mark.asyncio
async def test_run_step_gives_up_after_retry_limit():
    attempts = []

    async def always_fails(attempt):
        attempts.append(attempt)
        raise RuntimeError(f"attempt {attempt} failed")

    async def entrypoint(instance_id, params, step):
        options = StepOptions(retries=RetryPolicy(limit=2, delay=0))
        await step.run_step("write", options, always_fails)

    runner = LocalStepRunner(entrypoint)
    instance_id = await runner.create({})
    handle = runner.get(instance_id)
    await runner.join(instance_id, timeout=1)

    assert attempts == [1, 2, 3]
    error = handle.error
    assert isinstance(error, RuntimeError)
    assert str(error) == "attempt 3 failed"


@pytest.mark.asyncio
async def test_step_without_retries_runs_once():
    attempts = []

    async def fails(attempt):
        attempts.append(attempt)
        raise ValueError("nope")

    async def entrypoint(instance_id, params, step):
        await step.run_step("once", None, fails)

    runner = LocalStepRunner(entrypoint)
    instance_id = await runner.create({})
    await runner.join(instance_id, timeout=1)
    assert attempts == [1]


@pytest.mark.asyncio
async def test_step_timeout_counts_as_failed_attempt():
    async def slow(attempt):
        await asyncio.sleep(10)

    async def entrypoint(instance_id, params, step):
        await step.run_step("slow", StepOptions(timeout=0.01), slow)

    runner = LocalStepRunner(entrypoint)
    instance_id = await runner.create({})
    handle = runner.get(instance_id)
    await runner.join(instance_id, timeout=1)
    assert isinstance(handle.error, asyncio.TimeoutError)


@pytest.mark.asyncio
async def test_event_sent_before_wait_is_delivered():
    received = []
    started = asyncio.Event()

    async def entrypoint(instance_id, params, step):
        await started.wait()
        received.append(await step.wait_for_event("approval", "approval", timeout=1))

    runner = LocalStepRunner(entrypoint)
    instance_id = await runner.create({})
    await runner.get(instance_id).send_event("approval", {"approved": True})
    started.set()
    await runner.join(instance_id, timeout=1)

    assert received == [{"approved": True}]


@pytest.mark.asyncio
async def test_wait_for_event_times_out():
    async def entrypoint(instance_id, params, step):
        await step.wait_for_event("request-approval", "approval", timeout=0.01)

    runner = LocalStepRunner(entrypoint)
    instance_id = await runner.create({})
    handle = runner.get(instance_id)
    await runner.join(instance_id, timeout=1)

    error = handle.error
    assert isinstance(error, EventWaitTimeoutError)
    assert error.event_type == "approval"


@pytest.mark.asyncio
async def test_unknown_and_finished_instances_reject_events():
    async def entrypoint(instance_id, params, step):
        return None

    runner = LocalStepRunner(entrypoint)
    with pytest.raises(RunnerError):
        runner.get("missing")

    instance_id = await runner.create({})
    handle = runner.get(instance_id)
    await runner.join(instance_id, timeout=1)
    with pytest.raises(RunnerError):
        await handle.send_event("approval", {})


@pytest.mark.asyncio
async def test_shutdown_cancels_running_instances():
    async def entrypoint(instance_id, params, step):
        await step.sleep("forever", 60)

    runner = LocalStepRunner(entrypoint)
    instance_id = await runner.create({})
    handle = runner.get(instance_id)
    await asyncio.sleep(0)

    await runner.shutdown()
    assert handle.task.cancelled()


@pytest.mark.asyncio
async def test_finished_instances_are_forgotten():
    async def entrypoint(instance_id, params, step):
        if params.get("fail"):
            raise RuntimeError("boom")

    runner = LocalStepRunner(entrypoint)
    ok_id = await runner.create({})
    failed_id = await runner.create({"fail": True})
    assert await runner.join(ok_id, timeout=1)
    assert await runner.join(failed_id, timeout=1)

    for instance_id in (ok_id, failed_id):
        with pytest.raises(RunnerError):
            runner.get(instance_id)
    assert await runner.join(ok_id, timeout=0)


@pytest.mark.asyncio
async def test_cancelled_instances_are_forgotten():
    async def entrypoint(instance_id, params, step):
        await step.sleep("forever", 60)

    runner = LocalStepRunner(entrypoint)
    instance_id = await runner.create({})
    await asyncio.sleep(0)
    await runner.shutdown()

    with pytest.raises(RunnerError):
        runner.get(instance_id)


@pytest.mark.parametrize("fields", [{"limit": -1}, {"delay": -0.5}])
def test_retry_policy_rejects_negative_values(fields):
    with pytest.raises(ValidationError):
        RetryPolicy(**fields)
