"""
API routes for planexec
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..core.agent import ExecutionAgent
from ..core.errors import ExecutionError
from ..logging.config import generate_request_id
from ..models.execution import ExecutionRecord, ExecutionStatistics, ExecutionSummary
from ..models.plan import PlanRequest
from ..models.request import CancelResponse, ExecuteRequest, PlanCreateRequest
from ..storage.database import PlanStorage

router = APIRouter()


def get_agent(request: Request) -> ExecutionAgent:
    """Dependency for getting the execution agent from app state"""
    return request.app.state.agent


def get_plan_storage(request: Request) -> PlanStorage:
    """Dependency for getting plan storage from app state"""
    return request.app.state.plan_storage


@router.post("/plans", response_model=PlanRequest, status_code=201)
async def create_plan(
    plan_create: PlanCreateRequest,
    plan_storage: PlanStorage = Depends(get_plan_storage)
) -> PlanRequest:
    """Store a plan so it can be executed"""
    plan = plan_create.plan
    if not plan.metadata.query:
        plan.metadata.query = plan_create.query
    plan.metadata.total_steps = len(plan.steps)
    plan.metadata.parallel_steps = len([step for step in plan.steps if step.parallel])

    plan_request = PlanRequest(
        request_id=plan_create.request_id or generate_request_id(),
        query=plan_create.query,
        plan=plan
    )
    return await plan_storage.save_plan(plan_request)


@router.post("/executions", response_model=ExecutionRecord)
async def execute_plan(
    execute_request: ExecuteRequest,
    agent: ExecutionAgent = Depends(get_agent)
) -> ExecutionRecord:
    """
    Execute a stored plan

    Always answers with the final execution record; failures are reported
    through its status and error fields.
    """
    return await agent.execute_plan(execute_request.plan_request_id, execute_request.config)


@router.get("/executions", response_model=List[ExecutionSummary])
async def list_recent_executions(
    limit: int = Query(50, ge=1, le=500),
    agent: ExecutionAgent = Depends(get_agent)
) -> List[ExecutionSummary]:
    return await agent.get_recent_executions(limit)


@router.get("/executions/{execution_id}", response_model=ExecutionRecord)
async def get_execution(execution_id: str, agent: ExecutionAgent = Depends(get_agent)) -> ExecutionRecord:
    execution = await agent.get_execution(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail=f"Execution not found: {execution_id}")
    return execution


@router.post("/executions/{execution_id}/cancel", response_model=CancelResponse)
async def cancel_execution(execution_id: str, agent: ExecutionAgent = Depends(get_agent)) -> CancelResponse:
    """Mark a running execution as failed"""
    cancelled = await agent.cancel_execution(execution_id)
    return CancelResponse(execution_id=execution_id, cancelled=cancelled)


@router.post("/executions/{execution_id}/retry", response_model=ExecutionRecord)
async def retry_execution(execution_id: str, agent: ExecutionAgent = Depends(get_agent)) -> ExecutionRecord:
    """Run the plan of a failed execution again as a new execution"""
    if await agent.get_execution(execution_id) is None:
        raise HTTPException(status_code=404, detail=f"Execution not found: {execution_id}")

    try:
        return await agent.retry_execution(execution_id)
    except ExecutionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/plans/{plan_request_id}/executions", response_model=List[ExecutionSummary])
async def get_plan_executions(plan_request_id: str, agent: ExecutionAgent = Depends(get_agent)) -> List[ExecutionSummary]:
    return await agent.get_executions_by_plan_id(plan_request_id)


@router.get("/statistics", response_model=ExecutionStatistics)
async def get_statistics(agent: ExecutionAgent = Depends(get_agent)) -> ExecutionStatistics:
    return await agent.get_statistics()
