"""
Execution API Routes.

Endpoints for starting, inspecting and cancelling workflow executions.
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Query, status
import logging

from graph_engine.api.schemas import (
    CancelResponse,
    ErrorResponse,
    ExecutionListResponse,
    ExecutionRequest,
    ExecutionResponse,
)
from graph_engine.engine.builder import workflow_builder
from graph_engine.engine.executor import ExecutionOptions, execution_engine
from graph_engine.engine.state import ExecutionState
from graph_engine.exceptions import WorkflowNotFoundError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/executions", tags=["Executions"])


def _not_found(execution_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=f"Execution '{execution_id}' not found",
    )


@router.post(
    "",
    response_model=ExecutionResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Neither workflow_id nor definition given"},
        404: {"model": ErrorResponse, "description": "Workflow not found"},
    },
)
async def start_execution(request: ExecutionRequest) -> ExecutionResponse:
    """
    Execute a stored workflow or an inline definition.

    By default the request waits for the run to finish and returns its
    final state. If `async_execution` is True, the run continues in the
    background and you can poll GET /executions/{execution_id}.
    """
    if request.definition is not None:
        definition = request.definition
    elif request.workflow_id:
        definition = workflow_builder.get_workflow(request.workflow_id)
        if definition is None:
            raise WorkflowNotFoundError(request.workflow_id)
    else:
        raise HTTPException(
            status_code=400,
            detail="Provide either workflow_id or definition",
        )

    options = ExecutionOptions(validate_definition=request.validate_definition)
    if request.node_timeout is not None:
        options.node_timeout = request.node_timeout
    if request.run_timeout is not None:
        options.run_timeout = request.run_timeout

    result = await execution_engine.execute_workflow(definition, request.input_data, options)
    if not result.execution_id:
        return ExecutionResponse(**result.to_dict())

    if result.success and not request.async_execution:
        state = await execution_engine.wait_for_completion(result.execution_id)
    else:
        state = execution_engine.get_execution_state(result.execution_id)

    return ExecutionResponse(**result.to_dict(), state=state)


@router.get("", response_model=ExecutionListResponse)
async def list_executions(
    workflow_id: Optional[str] = Query(None, description="Only executions of this workflow"),
) -> ExecutionListResponse:
    """List executions, newest last."""
    executions = execution_engine.list_executions(workflow_id)
    return ExecutionListResponse(executions=executions, total=len(executions))


@router.get(
    "/{execution_id}",
    response_model=ExecutionState,
    responses={404: {"model": ErrorResponse}},
)
async def get_execution(execution_id: str) -> ExecutionState:
    """
    Get the current state of an execution.

    Useful for polling the status of async executions.
    """
    state = execution_engine.get_execution_state(execution_id)
    if state is None:
        raise _not_found(execution_id)
    return state


@router.post(
    "/{execution_id}/cancel",
    response_model=CancelResponse,
    responses={404: {"model": ErrorResponse}},
)
async def cancel_execution(execution_id: str) -> CancelResponse:
    """
    Cancel a running execution.

    Nodes already running are allowed to finish; their results are discarded.
    """
    if execution_engine.get_execution_state(execution_id) is None:
        raise _not_found(execution_id)
    cancelled = execution_engine.cancel_execution(execution_id)
    return CancelResponse(execution_id=execution_id, cancelled=cancelled)


@router.delete(
    "/{execution_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def discard_execution(execution_id: str):
    """Discard an execution, cancelling it first if it is still running."""
    if not execution_engine.discard_execution(execution_id):
        raise _not_found(execution_id)
    logger.info(f"Discarded execution: {execution_id}")
