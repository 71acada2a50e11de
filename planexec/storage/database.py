"""
Persistence for plans and executions

SQLite access is synchronous; every public method runs its statement batch
in a worker thread so the event loop is never blocked.
"""

import json
import asyncio
import sqlite3
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime, timedelta

from ..core.errors import StorageError
from ..logging.config import get_logger
from ..models.execution import (
    ExecutionRecord,
    ExecutionStatistics,
    ExecutionStatus,
    ExecutionStepResult,
    StepStatus,
    TERMINAL_STATUSES,
)
from ..models.plan import Plan, PlanRequest
from .schema import get_connection, init_database


TERMINAL_VALUES = tuple(status.value for status in TERMINAL_STATUSES)


def _dump(value: Any) -> Optional[str]:
    return json.dumps(value, default=str) if value is not None else None


def _load(value: Optional[str]) -> Any:
    return json.loads(value) if value is not None else None


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class _SQLiteStore:
    """Shared plumbing for the async stores"""

    def __init__(self, db_path: str, initialize: bool = True):
        self.db_path = db_path
        self.logger = get_logger(__name__)
        if initialize:
            init_database(db_path)

    async def _run(self, operation: str, fn: Callable, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as e:
            self.logger.error("Storage operation failed", operation=operation, error=str(e))
            raise StorageError(f"Storage operation '{operation}' failed: {str(e)}") from e


class PlanStorage(_SQLiteStore):
    """Plans produced by the planning collaborator"""

    async def save_plan(self, plan_request: PlanRequest) -> PlanRequest:
        await self._run("save_plan", self._save_plan, plan_request)
        return plan_request

    def _save_plan(self, plan_request: PlanRequest) -> None:
        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT OR REPLACE INTO plans (request_id, query, plan, status, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                plan_request.request_id,
                plan_request.query,
                plan_request.plan.model_dump_json(),
                plan_request.status,
                plan_request.created_at.isoformat()
            ))
            conn.commit()

    async def get_plan_by_request_id(self, request_id: str) -> Optional[PlanRequest]:
        return await self._run("get_plan_by_request_id", self._get_plan, request_id)

    def _get_plan(self, request_id: str) -> Optional[PlanRequest]:
        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM plans WHERE request_id = ?", (request_id,))
            row = cursor.fetchone()

            if row:
                return PlanRequest(
                    request_id=row['request_id'],
                    query=row['query'],
                    plan=Plan.model_validate_json(row['plan']),
                    status=row['status'],
                    created_at=datetime.fromisoformat(row['created_at'])
                )
            return None


class ExecutionStorage(_SQLiteStore):
    """Execution aggregates and their per-step results"""

    async def save_execution(
        self,
        execution_id: str,
        plan_request_id: str,
        total_steps: int,
        results: List[ExecutionStepResult]
    ) -> ExecutionRecord:
        """Insert a new PENDING execution with its initial step results"""
        now = datetime.utcnow()
        record = ExecutionRecord(
            execution_id=execution_id,
            plan_request_id=plan_request_id,
            status=ExecutionStatus.PENDING,
            total_steps=total_steps,
            results=list(results),
            created_at=now,
            updated_at=now
        )
        await self._run("save_execution", self._save_execution, record)
        return record

    def _save_execution(self, record: ExecutionRecord) -> None:
        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO executions (
                    execution_id, plan_request_id, status, total_steps,
                    completed_steps, failed_steps, error, started_at, completed_at,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.execution_id,
                record.plan_request_id,
                ExecutionStatus(record.status).value,
                record.total_steps,
                record.completed_steps,
                record.failed_steps,
                record.error,
                _iso(record.started_at),
                _iso(record.completed_at),
                record.created_at.isoformat(),
                record.updated_at.isoformat()
            ))
            for step in record.results:
                self._write_step(cursor, record.execution_id, step)
            conn.commit()

    def _write_step(self, cursor: sqlite3.Cursor, execution_id: str, step: ExecutionStepResult) -> None:
        cursor.execute("""
            INSERT OR REPLACE INTO execution_steps (
                execution_id, step_index, tool, params, status, result, error,
                retry_count, dependencies, started_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            execution_id,
            step.step_index,
            step.tool,
            json.dumps(step.params, default=str),
            StepStatus(step.status).value,
            _dump(step.result),
            step.error,
            step.retry_count,
            json.dumps(step.dependencies),
            _iso(step.started_at),
            _iso(step.completed_at)
        ))

    async def get_execution_by_id(self, execution_id: str) -> Optional[ExecutionRecord]:
        return await self._run("get_execution_by_id", self._get_execution, execution_id)

    def _get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM executions WHERE execution_id = ?", (execution_id,))
            row = cursor.fetchone()
            if not row:
                return None

            cursor.execute("""
                SELECT * FROM execution_steps WHERE execution_id = ? ORDER BY step_index
            """, (execution_id,))
            steps = [self._row_to_step(step_row) for step_row in cursor.fetchall()]
            return self._row_to_execution(row, steps)

    async def update_execution_status(
        self,
        execution_id: str,
        status: ExecutionStatus,
        error: Optional[str] = None
    ) -> bool:
        """
        Set the execution status

        RUNNING stamps ``started_at``; terminal statuses stamp
        ``completed_at``. A terminal status is never overwritten.

        Returns:
            True if the row was updated
        """
        return await self._run("update_execution_status", self._update_status, execution_id, status, error)

    def _update_status(self, execution_id: str, status: ExecutionStatus, error: Optional[str]) -> bool:
        now = datetime.utcnow().isoformat()
        value = ExecutionStatus(status).value
        assignments = ["status = ?", "updated_at = ?"]
        params: List[Any] = [value, now]

        if error:
            assignments.append("error = ?")
            params.append(error)
        if value == ExecutionStatus.RUNNING.value:
            assignments.append("started_at = ?")
            params.append(now)
        elif value in TERMINAL_VALUES:
            assignments.append("completed_at = ?")
            params.append(now)

        placeholders = ", ".join("?" for _ in TERMINAL_VALUES)
        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE executions SET {', '.join(assignments)} "
                f"WHERE execution_id = ? AND status NOT IN ({placeholders})",
                (*params, execution_id, *TERMINAL_VALUES)
            )
            conn.commit()
            return cursor.rowcount > 0

    async def update_execution_progress(self, execution_id: str, completed_steps: int, failed_steps: int) -> None:
        await self._run("update_execution_progress", self._update_progress, execution_id, completed_steps, failed_steps)
        self.logger.debug(
            "Updated execution progress",
            execution_id=execution_id,
            completed_steps=completed_steps,
            failed_steps=failed_steps
        )

    def _update_progress(self, execution_id: str, completed_steps: int, failed_steps: int) -> None:
        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE executions SET completed_steps = ?, failed_steps = ?, updated_at = ?
                WHERE execution_id = ?
            """, (completed_steps, failed_steps, datetime.utcnow().isoformat(), execution_id))
            conn.commit()

    async def update_step_result(self, execution_id: str, step_index: int, step_result: ExecutionStepResult) -> None:
        """Write one step row; rows of different steps never conflict"""
        await self._run("update_step_result", self._update_step, execution_id, step_result)

    def _update_step(self, execution_id: str, step_result: ExecutionStepResult) -> None:
        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            self._write_step(cursor, execution_id, step_result)
            conn.commit()

    async def get_executions_by_plan_id(self, plan_request_id: str) -> List[ExecutionRecord]:
        return await self._run(
            "get_executions_by_plan_id",
            self._query_executions,
            "WHERE plan_request_id = ? ORDER BY created_at DESC",
            (plan_request_id,)
        )

    async def get_executions_by_status(self, status: ExecutionStatus, limit: int = 100) -> List[ExecutionRecord]:
        return await self._run(
            "get_executions_by_status",
            self._query_executions,
            "WHERE status = ? ORDER BY created_at DESC LIMIT ?",
            (ExecutionStatus(status).value, limit)
        )

    async def get_recent_executions(self, limit: int = 50) -> List[ExecutionRecord]:
        return await self._run(
            "get_recent_executions",
            self._query_executions,
            "ORDER BY created_at DESC LIMIT ?",
            (limit,)
        )

    async def get_running_executions(self) -> List[ExecutionRecord]:
        return await self._run(
            "get_running_executions",
            self._query_executions,
            "WHERE status = ? ORDER BY started_at ASC",
            (ExecutionStatus.RUNNING.value,)
        )

    def _query_executions(self, clause: str, params: tuple) -> List[ExecutionRecord]:
        """Execution rows without their step results"""
        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(f"SELECT * FROM executions {clause}", params)
            return [self._row_to_execution(row, []) for row in cursor.fetchall()]

    async def delete_execution(self, execution_id: str) -> bool:
        return await self._run("delete_execution", self._delete_execution, execution_id)

    def _delete_execution(self, execution_id: str) -> bool:
        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM execution_steps WHERE execution_id = ?", (execution_id,))
            cursor.execute("DELETE FROM executions WHERE execution_id = ?", (execution_id,))
            conn.commit()
            return cursor.rowcount > 0

    async def cleanup_old_executions(self, older_than_days: int = 30) -> int:
        """Delete terminal executions completed before the cutoff"""
        cutoff = datetime.utcnow() - timedelta(days=older_than_days)
        deleted = await self._run("cleanup_old_executions", self._cleanup, cutoff)
        self.logger.info("Cleaned up old executions", deleted=deleted, older_than_days=older_than_days)
        return deleted

    def _cleanup(self, cutoff: datetime) -> int:
        placeholders = ", ".join("?" for _ in TERMINAL_VALUES)
        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT execution_id FROM executions
                WHERE status IN ({placeholders}) AND completed_at IS NOT NULL AND completed_at < ?
            """, (*TERMINAL_VALUES, cutoff.isoformat()))
            ids = [row['execution_id'] for row in cursor.fetchall()]

            for execution_id in ids:
                cursor.execute("DELETE FROM execution_steps WHERE execution_id = ?", (execution_id,))
                cursor.execute("DELETE FROM executions WHERE execution_id = ?", (execution_id,))
            conn.commit()
            return len(ids)

    async def get_execution_statistics(self) -> ExecutionStatistics:
        return await self._run("get_execution_statistics", self._statistics)

    def _statistics(self) -> ExecutionStatistics:
        by_status: Dict[str, int] = {status.value: 0 for status in ExecutionStatus}

        with get_connection(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT status, COUNT(*) AS count FROM executions GROUP BY status")
            for row in cursor.fetchall():
                by_status[row['status']] = row['count']

            cursor.execute("SELECT AVG(total_steps) AS avg_steps FROM executions")
            avg_steps = cursor.fetchone()['avg_steps'] or 0.0

            cursor.execute("""
                SELECT started_at, completed_at FROM executions
                WHERE started_at IS NOT NULL AND completed_at IS NOT NULL
            """)
            durations = [
                (_parse(row['completed_at']) - _parse(row['started_at'])).total_seconds() * 1000
                for row in cursor.fetchall()
            ]

        total = sum(by_status.values())
        return ExecutionStatistics(
            total=total,
            by_status=by_status,
            average_execution_time_ms=sum(durations) / len(durations) if durations else 0.0,
            success_rate=(by_status[ExecutionStatus.COMPLETED.value] / total) * 100 if total > 0 else 0.0,
            average_steps_per_execution=float(avg_steps)
        )

    def _row_to_step(self, row: sqlite3.Row) -> ExecutionStepResult:
        return ExecutionStepResult(
            step_index=row['step_index'],
            tool=row['tool'],
            params=json.loads(row['params']) if row['params'] else {},
            status=row['status'],
            result=_load(row['result']),
            error=row['error'],
            retry_count=row['retry_count'],
            dependencies=json.loads(row['dependencies']) if row['dependencies'] else [],
            started_at=_parse(row['started_at']),
            completed_at=_parse(row['completed_at'])
        )

    def _row_to_execution(self, row: sqlite3.Row, steps: List[ExecutionStepResult]) -> ExecutionRecord:
        return ExecutionRecord(
            execution_id=row['execution_id'],
            plan_request_id=row['plan_request_id'],
            status=row['status'],
            total_steps=row['total_steps'],
            completed_steps=row['completed_steps'],
            failed_steps=row['failed_steps'],
            results=steps,
            error=row['error'],
            started_at=_parse(row['started_at']),
            completed_at=_parse(row['completed_at']),
            created_at=datetime.fromisoformat(row['created_at']),
            updated_at=datetime.fromisoformat(row['updated_at'])
        )
