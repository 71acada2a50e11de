"""
Tests for rollback planning and execution
"""

from unittest.mock import AsyncMock

import pytest

from planexec.core.rollback import RollbackHandler, get_inverse_operation
from planexec.models.execution import ExecutionStepResult, RollbackPlan, StepStatus
from planexec.models.plan import PlanStep


def step(index, tool, params=None, result=None, status=StepStatus.COMPLETED):
    return ExecutionStepResult(step_index=index, tool=tool, params=params or {}, result=result, status=status)


class TestInverseOperations:

    @pytest.mark.parametrize("tool,expected", [
        ("facilities_create", "facilities_delete"),
        ("facilities_delete", "facilities_create"),
        ("clients_update", "clients_update"),
        ("clients_list", None),
        ("create_report", None),
        ("", None),
    ])
    def test_get_inverse_operation(self, tool, expected):
        assert get_inverse_operation(tool) == expected

    def test_supports_rollback(self):
        handler = RollbackHandler()

        assert handler.supports_rollback("clients_create") is True
        assert handler.supports_rollback("clients_list") is False


class TestRollbackPlan:

    def test_plan_is_in_reverse_step_order(self):
        handler = RollbackHandler()
        completed = [
            step(0, "facilities_create", result={"id": "f1"}),
            step(1, "shipments_list", result=[]),
            step(2, "clients_update", params={"client_id": "c1", "name": "Acme"}),
            step(3, "contracts_delete", params={"contract_id": "k1"}),
        ]

        plan = handler.generate_rollback_plan(completed)

        assert [s.tool for s in plan.steps] == ["contracts_create", "clients_update", "facilities_delete"]
        assert plan.source_step_indices == [3, 2, 0]
        assert plan.steps[2].params == {"uid": "f1"}
        assert plan.steps[1].params == {"client_id": "c1", "name": "Acme"}
        assert plan.reason == "Rollback for 4 completed steps"

    def test_create_prefers_uid_then_falls_back_to_params(self):
        handler = RollbackHandler()
        plan = handler.generate_rollback_plan([
            step(0, "clients_create", params={"uid": "from-params"}, result={"name": "Acme"}),
            step(1, "facilities_create", result={"uid": "u1", "id": "i1"}),
        ])

        assert plan.steps[0].params == {"uid": "u1"}
        assert plan.steps[1].params == {"uid": "from-params"}

    def test_steps_without_identifier_or_inverse_are_skipped(self):
        handler = RollbackHandler()
        plan = handler.generate_rollback_plan([
            step(0, "clients_create", result={"name": "Acme"}),
            step(1, "clients_list", result=[]),
            step(2, "clients_update", status=StepStatus.FAILED),
        ])

        assert plan.steps == []

    def test_empty_inputs_give_empty_plan(self):
        handler = RollbackHandler()

        assert handler.generate_rollback_plan([]).steps == []

    def test_minimal_plan_only_covers_side_effecting_tools(self):
        handler = RollbackHandler()
        plan = handler.create_minimal_rollback_plan([
            step(0, "facilities_create", result={"id": "f1"}),
            step(1, "facilities_list", result=[]),
        ])

        assert [s.tool for s in plan.steps] == ["facilities_delete"]

    def test_stats_and_validation(self):
        handler = RollbackHandler()
        plan = RollbackPlan(steps=[
            PlanStep(tool="facilities_delete", params={"uid": "f1"}),
            PlanStep(tool="reports_run", params={}),
        ])

        stats = handler.get_rollback_stats(plan)

        assert stats == {"total_steps": 2, "supported_steps": 1, "unsupported_steps": 1, "support_rate": 50.0}
        assert handler.validate_rollback_plan(plan) == ["Rollback step 1 uses unsupported tool: reports_run"]
        assert handler.validate_rollback_plan(RollbackPlan()) == ["Rollback plan has no steps"]


class TestRollbackExecution:

    @pytest.mark.asyncio
    async def test_empty_plan_succeeds_without_calls(self):
        tools = AsyncMock()
        handler = RollbackHandler(tools)

        result = await handler.execute_rollback(RollbackPlan())

        assert result.success is True
        assert result.results == []
        assert result.errors == []
        tools.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failures_are_collected_and_remaining_steps_still_run(self):
        tools = AsyncMock(side_effect=[
            Exception("gone"),
            {"success": False, "error": "locked"},
            {"success": True, "data": {"ok": True}},
        ])
        handler = RollbackHandler(tools)
        plan = RollbackPlan(steps=[
            PlanStep(tool="a_delete", params={"uid": "1"}),
            PlanStep(tool="b_delete", params={"uid": "2"}),
            PlanStep(tool="c_update", params={"x": 1}),
        ])

        result = await handler.execute_rollback(plan, execution_id="e1")

        assert result.success is False
        assert result.errors == ["Rollback step 1 failed: gone", "Rollback step 2 failed: locked"]
        assert [r["success"] for r in result.results] == [False, False, True]
        assert tools.await_count == 3

    @pytest.mark.asyncio
    async def test_requires_tool_client(self):
        with pytest.raises(RuntimeError):
            await RollbackHandler().execute_rollback(RollbackPlan(steps=[PlanStep(tool="a_delete")]))
