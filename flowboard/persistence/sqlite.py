"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Optional, Sequence

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


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite."""

    def __init__(
        self, db_path: str | Path, clock: Callable[[], int] = state.now_ms
    ) -> None:
        self.db_path = str(db_path)
        self._clock = clock
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._lock, self._conn:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS workflow_instances (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    start_time INTEGER NOT NULL,
                    end_time INTEGER,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS workflow_steps (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    workflow_id TEXT NOT NULL,
                    step_index INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    output TEXT,
                    error TEXT,
                    timestamp INTEGER,
                    duration INTEGER,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE (workflow_id, step_index),
                    FOREIGN KEY (workflow_id) REFERENCES workflow_instances(id) ON DELETE CASCADE
                );

                CREATE INDEX IF NOT EXISTS idx_workflow_steps_workflow_id
                    ON workflow_steps(workflow_id);
                CREATE INDEX IF NOT EXISTS idx_workflow_instances_status
                    ON workflow_instances(status);
                """
            )

    # ------------------------------------------------------------------
    # Helper methods
    def _fetch_status(self, instance_id: str) -> InstanceStatus:
        row = self._conn.execute(
            "SELECT status FROM workflow_instances WHERE id = ?", (instance_id,)
        ).fetchone()
        if row is None:
            raise InstanceNotFoundError(instance_id)
        return InstanceStatus(row["status"])

    @staticmethod
    def _to_step(row: sqlite3.Row) -> StepRecord:
        return StepRecord(
            step_index=row["step_index"],
            name=row["name"],
            status=StepStatus(row["status"]),
            output=state.decode_output(row["output"]),
            error=row["error"],
            timestamp=row["timestamp"],
            duration=row["duration"],
        )

    def _load_steps(self, instance_id: Optional[str] = None) -> dict[str, list[StepRecord]]:
        """Steps grouped by instance, for one instance or for all of them."""
        query = f"SELECT {_STEP_COLUMNS} FROM workflow_steps"
        params: tuple = ()
        if instance_id is not None:
            query += " WHERE workflow_id = ?"
            params = (instance_id,)
        rows = self._conn.execute(
            query + " ORDER BY workflow_id, step_index", params
        ).fetchall()
        steps: dict[str, list[StepRecord]] = {}
        for row in rows:
            steps.setdefault(row["workflow_id"], []).append(self._to_step(row))
        return steps

    @staticmethod
    def _to_instance(row: sqlite3.Row, steps: list[StepRecord]) -> WorkflowInstance:
        return WorkflowInstance(
            id=row["id"],
            status=InstanceStatus(row["status"]),
            start_time=row["start_time"],
            end_time=row["end_time"],
            steps=steps,
        )

    # ------------------------------------------------------------------
    # Units of work; each runs in one transaction under the connection lock
    def _create(self, instance_id: str, step_names: Sequence[str]) -> None:
        now = self._clock()
        with self._lock:
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO workflow_instances (id, status, start_time) VALUES (?, ?, ?)",
                        (instance_id, InstanceStatus.QUEUED.value, now),
                    )
                    self._conn.executemany(
                        "INSERT INTO workflow_steps (workflow_id, step_index, name, status) "
                        "VALUES (?, ?, ?, ?)",
                        [
                            (instance_id, index, name, StepStatus.PENDING.value)
                            for index, name in enumerate(step_names)
                        ],
                    )
            except sqlite3.IntegrityError as exc:
                raise DuplicateInstanceError(instance_id) from exc

    def _update_step(self, instance_id: str, step_index: int, update: StepUpdate) -> None:
        with self._lock, self._conn:
            status = self._fetch_status(instance_id)
            if status.is_terminal:
                raise InstanceTerminalError(instance_id, status.value)
            row = self._conn.execute(
                f"SELECT {_STEP_COLUMNS} FROM workflow_steps "
                "WHERE workflow_id = ? AND step_index = ?",
                (instance_id, step_index),
            ).fetchone()
            if row is None:
                raise StepNotFoundError(instance_id, step_index)
            merged = state.merge_step(self._to_step(row), update, self._clock())
            self._conn.execute(
                """
                UPDATE workflow_steps
                SET status = ?, output = ?, error = ?, timestamp = ?, duration = ?
                WHERE workflow_id = ? AND step_index = ?
                """,
                (
                    merged.status.value,
                    state.encode_output(merged.output),
                    merged.error,
                    merged.timestamp,
                    merged.duration,
                    instance_id,
                    step_index,
                ),
            )

    def _update_status(
        self, instance_id: str, status: InstanceStatus, end_time: Optional[int]
    ) -> None:
        with self._lock, self._conn:
            current = self._fetch_status(instance_id)
            state.check_instance_transition(instance_id, current, status)
            self._conn.execute(
                "UPDATE workflow_instances SET status = ?, end_time = ? WHERE id = ?",
                (
                    status.value,
                    state.resolve_end_time(status, end_time, self._clock()),
                    instance_id,
                ),
            )

    def _delete(self, instance_id: str) -> bool:
        with self._lock, self._conn:
            cur = self._conn.execute(
                "DELETE FROM workflow_instances WHERE id = ?", (instance_id,)
            )
            return cur.rowcount > 0

    def _get(self, instance_id: str) -> WorkflowInstance | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances WHERE id = ?",
                (instance_id,),
            ).fetchone()
            if row is None:
                return None
            steps = self._load_steps(instance_id)
        return self._to_instance(row, steps.get(instance_id, []))

    def _list(self) -> list[WorkflowInstance]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_INSTANCE_COLUMNS} FROM workflow_instances "
                "ORDER BY start_time DESC, rowid DESC"
            ).fetchall()
            steps = self._load_steps()
        return [self._to_instance(row, steps.get(row["id"], [])) for row in rows]

    # ------------------------------------------------------------------
    # Repository API
    async def create_instance(self, instance_id: str, step_names: Sequence[str]) -> None:
        await asyncio.to_thread(self._create, instance_id, list(step_names))

    async def update_step(
        self, instance_id: str, step_index: int, update: StepUpdate
    ) -> None:
        await asyncio.to_thread(self._update_step, instance_id, step_index, update)

    async def update_instance_status(
        self,
        instance_id: str,
        status: InstanceStatus,
        end_time: Optional[int] = None,
    ) -> None:
        await asyncio.to_thread(self._update_status, instance_id, status, end_time)

    async def delete_instance(self, instance_id: str) -> bool:
        return await asyncio.to_thread(self._delete, instance_id)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        return await asyncio.to_thread(self._get, instance_id)

    async def list_instances(self) -> list[WorkflowInstance]:
        return await asyncio.to_thread(self._list)

    async def close(self) -> None:
        with self._lock:
            self._conn.close()
