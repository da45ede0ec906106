"""
Operations API Routes.

Endpoints for listing the operations nodes can name in `data.operation`.
"""

from fastapi import APIRouter, HTTPException

from graph_engine.api.schemas import (
    ErrorResponse,
    OperationInfo,
    OperationListResponse,
)
from graph_engine.operations.registry import operation_registry


router = APIRouter(prefix="/operations", tags=["Operations"])


@router.get("", response_model=OperationListResponse)
async def list_operations() -> OperationListResponse:
    """List all registered operations."""
    operations = [OperationInfo(**info) for info in operation_registry.list_operations()]
    return OperationListResponse(operations=operations, total=len(operations))


@router.get(
    "/{name}",
    response_model=OperationInfo,
    responses={404: {"model": ErrorResponse}},
)
async def get_operation(name: str) -> OperationInfo:
    """Get information about a specific operation."""
    operation = operation_registry.get(name)
    if not operation:
        raise HTTPException(
            status_code=404,
            detail=f"Operation '{name}' not found",
        )
    return OperationInfo(**operation.to_dict())
