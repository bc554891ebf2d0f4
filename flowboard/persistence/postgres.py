"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from typing import Callable, Optional, Sequence

import asyncpg

from .. import state
from ..errors import (
    DuplicateInstanceError,
    InstanceNotFoundError,
    InstanceTerminalError,
    StepNotFoundError,
)
from ..models import InstanceStatus, StepRecord, StepStatus, StepUpdate, WorkflowInstance
from .repository import WorkflowRepository

_INSTANCE_COLUMNS = "id, status, start_time, end_time"
_STEP_COLUMNS = "workflow_id, step_index, name, status, output, error, timestamp, duration"


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str, clock: Callable[[], int] = state.now_ms):
        self._dsn = dsn
        self._clock = clock
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                start_time BIGINT NOT NULL,
                end_time BIGINT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id SERIAL PRIMARY KEY,
                workflow_id TEXT NOT NULL
                    REFERENCES workflow_instances(id) ON DELETE CASCADE,
                step_index INTEGER NOT NULL,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                output TEXT,
                error TEXT,
                timestamp BIGINT,
                duration BIGINT,
                created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp(),
                UNIQUE (workflow_id, step_index)
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_workflow_steps_workflow_id ON workflow_steps(workflow_id)"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_workflow_instances_status ON workflow_instances(status)"
        )

    @staticmethod
    async def _lock_status(conn: asyncpg.Connection, instance_id: str) -> InstanceStatus:
        status = await conn.fetchval(
            "SELECT status FROM workflow_instances WHERE id = $1 FOR UPDATE",
            instance_id,
        )
        if status is None:
            raise InstanceNotFoundError(instance_id)
        return InstanceStatus(status)

    @staticmethod
    def _to_step(row: asyncpg.Record) -> StepRecord:
        return StepRecord(
            step_index=row["step_index"],
            name=row["name"],
            status=StepStatus(row["status"]),
            output=state.decode_output(row["output"]),
            error=row["error"],
            timestamp=row["timestamp"],
            duration=row["duration"],
        )

    @staticmethod
    def _to_instance(row: asyncpg.Record, steps: list[StepRecord]) -> WorkflowInstance:
        return WorkflowInstance(
            id=row["id"],
            status=InstanceStatus(row["status"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            steps=steps,
        )

    # ------------------------------------------------------------------
    async def create_instance(self, instance_id: str, step_names: Sequence[str]) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    "INSERT INTO workflow_instances (id, status, start_time) VALUES ($1, $2, $3)",
                    instance_id,
                    InstanceStatus.QUEUED.value,
                    self._clock(),
                )
                await conn.executemany(
                    "INSERT INTO workflow_steps (workflow_id, step_index, name, status) "
                    "VALUES ($1, $2, $3, $4)",
                    [
                        (instance_id, index, name, StepStatus.PENDING.value)
                        for index, name in enumerate(step_names)
                    ],
                )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateInstanceError(instance_id) from exc
        finally:
            await conn.close()

    async def update_step(
        self, instance_id: str, step_index: int, update: StepUpdate
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                status = await self._lock_status(conn, instance_id)
                if status.is_terminal:
                    raise InstanceTerminalError(instance_id, status.value)
                row = await conn.fetchrow(
                    f"SELECT {_STEP_COLUMNS} FROM workflow_steps "
                    "WHERE workflow_id = $1 AND step_index = $2 FOR UPDATE",
                    instance_id,
                    step_index,
                )
                if row is None:
                    raise StepNotFoundError(instance_id, step_index)
                merged = state.merge_step(self._to_step(row), update, self._clock())
                await conn.execute(
                    """
                    UPDATE workflow_steps
                    SET status = $1, output = $2, error = $3, timestamp = $4, duration = $5
                    WHERE workflow_id = $6 AND step_index = $7
                    """,
                    merged.status.value,
                    state.encode_output(merged.output),
                    merged.error,
                    merged.timestamp,
                    merged.duration,
                    instance_id,
                    step_index,
                )
        finally:
            await conn.close()

    async def update_instance_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        end_time: Optional[int] = None,
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                current = await self._lock_status(conn, instance_id)
                state.check_instance_transition(instance_id, current, status)
                await conn.execute(
                    "UPDATE workflow_instances SET status = $1, end_time = $2 WHERE id = $3",
                    status.value,
                    state.resolve_end_time(status, end_time, self._clock()),
                    instance_id,
                )
        finally:
            await conn.close()

    async def delete_instance(self, instance_id: str) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                "DELETE FROM workflow_instances WHERE id = $1", instance_id
            )
        finally:
            await conn.close()
        return result.endswith(" 1")

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                row = await conn.fetchrow(
                    f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances WHERE id = $1",
                    instance_id,
                )
                if not row:
                    return None
                step_rows = await conn.fetch(
                    f"SELECT {_STEP_COLUMNS} FROM workflow_steps "
                    "WHERE workflow_id = $1 ORDER BY step_index",
                    instance_id,
                )
        finally:
            await conn.close()
        return self._to_instance(row, [self._to_step(r) for r in step_rows])

    async def list_instances(self) -> list[WorkflowInstance]:
        conn = await self._connect()
        try:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                rows = await conn.fetch(
                    f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances "
                    "ORDER BY start_time DESC, created_at DESC"
                )
                step_rows = await conn.fetch(
                    f"SELECT {_STEP_COLUMNS} FROM workflow_steps "
                    "ORDER BY workflow_id, step_index"
                )
        finally:
            await conn.close()
        steps: dict[str, list[StepRecord]] = {}
        for r in step_rows:
            steps.setdefault(r["workflow_id"], []).append(self._to_step(r))
        return [self._to_instance(r, steps.get(r["id"], [])) for r in rows]

    async def close(self) -> None:
        pass
