"""
Tests for sqlite persistence
"""

import os
import sqlite3
import tempfile
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from planexec.core.errors import StorageError
from planexec.models.execution import ExecutionStatus, ExecutionStepResult, StepStatus
from planexec.models.plan import Plan, PlanMetadata, PlanRequest, PlanStep
from planexec.storage.database import ExecutionStorage, PlanStorage
from planexec.storage.schema import get_connection


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmp:
        yield os.path.join(tmp, "storage_test.db")


@pytest.fixture
def storage(db_path):
    return ExecutionStorage(db_path)


def initial_results(count=2):
    return [ExecutionStepResult(step_index=i, tool=f"tool_{i}", dependencies=[i - 1] if i else []) for i in range(count)]


class TestPlanStorage:

    @pytest.mark.asyncio
    async def test_save_and_load_plan(self, db_path):
        plans = PlanStorage(db_path)
        plan_request = PlanRequest(
            request_id="p1",
            query="list clients",
            plan=Plan(
                steps=[PlanStep(tool="clients_list", params={"page": 1}, parallel=True, description="List")],
                metadata=PlanMetadata(query="list clients", total_steps=1)
            )
        )

        await plans.save_plan(plan_request)
        loaded = await plans.get_plan_by_request_id("p1")

        assert loaded.request_id == "p1"
        assert loaded.plan.steps[0].params == {"page": 1}
        assert loaded.plan.steps[0].parallel is True
        assert loaded.plan.metadata.total_steps == 1
        assert await plans.get_plan_by_request_id("missing") is None


class TestExecutionStorage:

    @pytest.mark.asyncio
    async def test_save_and_get_execution(self, storage):
        await storage.save_execution("e1", "p1", 2, initial_results())

        record = await storage.get_execution_by_id("e1")

        assert record.status == ExecutionStatus.PENDING
        assert record.total_steps == 2
        assert [r.tool for r in record.results] == ["tool_0", "tool_1"]
        assert record.results[1].dependencies == [0]
        assert await storage.get_execution_by_id("missing") is None

    @pytest.mark.asyncio
    async def test_status_transitions_stamp_times(self, storage):
        await storage.save_execution("e1", "p1", 1, initial_results(1))

        assert await storage.update_execution_status("e1", ExecutionStatus.RUNNING) is True
        running = await storage.get_execution_by_id("e1")
        assert running.started_at is not None
        assert running.completed_at is None

        assert await storage.update_execution_status("e1", ExecutionStatus.FAILED, "boom") is True
        failed = await storage.get_execution_by_id("e1")
        assert failed.status == ExecutionStatus.FAILED
        assert failed.error == "boom"
        assert failed.completed_at is not None

    @pytest.mark.asyncio
    async def test_terminal_status_is_never_overwritten(self, storage):
        await storage.save_execution("e1", "p1", 1, initial_results(1))
        await storage.update_execution_status("e1", ExecutionStatus.FAILED, "Execution cancelled by user")

        assert await storage.update_execution_status("e1", ExecutionStatus.COMPLETED) is False
        record = await storage.get_execution_by_id("e1")
        assert record.status == ExecutionStatus.FAILED
        assert record.error == "Execution cancelled by user"

    @pytest.mark.asyncio
    async def test_step_and_progress_updates(self, storage):
        await storage.save_execution("e1", "p1", 2, initial_results())
        step = ExecutionStepResult(
            step_index=1,
            tool="tool_1",
            params={"facility_id": "f1"},
            status=StepStatus.COMPLETED,
            result={"items": [1, 2]},
            retry_count=2,
            dependencies=[0],
            started_at=datetime.utcnow(),
            completed_at=datetime.utcnow()
        )

        await storage.update_step_result("e1", 1, step)
        await storage.update_execution_progress("e1", 1, 0)
        record = await storage.get_execution_by_id("e1")

        assert record.completed_steps == 1
        assert record.results[1].status == StepStatus.COMPLETED
        assert record.results[1].params == {"facility_id": "f1"}
        assert record.results[1].result == {"items": [1, 2]}
        assert record.results[1].retry_count == 2
        assert record.results[0].status == StepStatus.PENDING

    @pytest.mark.asyncio
    async def test_listing_queries(self, storage):
        await storage.save_execution("e1", "p1", 1, initial_results(1))
        await storage.save_execution("e2", "p1", 1, initial_results(1))
        await storage.save_execution("e3", "p2", 1, initial_results(1))
        await storage.update_execution_status("e2", ExecutionStatus.RUNNING)

        assert {r.execution_id for r in await storage.get_executions_by_plan_id("p1")} == {"e1", "e2"}
        assert [r.execution_id for r in await storage.get_running_executions()] == ["e2"]
        pending = await storage.get_executions_by_status(ExecutionStatus.PENDING)
        assert {r.execution_id for r in pending} == {"e1", "e3"}
        assert len(await storage.get_recent_executions(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_delete_and_cleanup(self, storage, db_path):
        await storage.save_execution("e1", "p1", 1, initial_results(1))
        await storage.save_execution("e2", "p1", 1, initial_results(1))
        await storage.update_execution_status("e2", ExecutionStatus.COMPLETED)

        old = (datetime.utcnow() - timedelta(days=40)).isoformat()
        with get_connection(db_path) as conn:
            conn.execute("UPDATE executions SET completed_at = ? WHERE execution_id = 'e2'", (old,))
            conn.commit()

        assert await storage.cleanup_old_executions(older_than_days=30) == 1
        assert await storage.get_execution_by_id("e2") is None

        assert await storage.delete_execution("e1") is True
        assert await storage.delete_execution("e1") is False

    @pytest.mark.asyncio
    async def test_statistics(self, storage):
        for execution_id, status in (("e1", ExecutionStatus.COMPLETED), ("e2", ExecutionStatus.FAILED)):
            await storage.save_execution(execution_id, "p1", 3, initial_results(3))
            await storage.update_execution_status(execution_id, ExecutionStatus.RUNNING)
            await storage.update_execution_status(execution_id, status)

        stats = await storage.get_execution_statistics()

        assert stats.total == 2
        assert stats.by_status["COMPLETED"] == 1
        assert stats.by_status["ROLLED_BACK"] == 0
        assert stats.success_rate == 50.0
        assert stats.average_steps_per_execution == 3.0
        assert stats.average_execution_time_ms >= 0.0

    @pytest.mark.asyncio
    async def test_sqlite_errors_become_storage_errors(self, storage):
        with patch("planexec.storage.database.get_connection", side_effect=sqlite3.OperationalError("locked")):
            with pytest.raises(StorageError, match="locked"):
                await storage.get_execution_by_id("e1")
