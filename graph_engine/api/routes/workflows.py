"""
Workflow API Routes.

Endpoints for building, inspecting and validating workflow definitions.
Structural errors raised by the builder surface as 400, unknown workflow
ids as 404 (see the exception handlers in main.py).
"""

from typing import Any, Dict
from fastapi import APIRouter, Query, status
from uuid import uuid4
import logging

from graph_engine.api.schemas import (
    EdgeCreateRequest,
    EdgeResponse,
    ErrorResponse,
    NodeCreateRequest,
    NodeResponse,
    NodeUpdateRequest,
    WorkflowCreateRequest,
    WorkflowListResponse,
    WorkflowResponse,
)
from graph_engine.engine.builder import workflow_builder
from graph_engine.engine.models import WorkflowDefinition
from graph_engine.engine.validator import ValidationResult, validation_engine
from graph_engine.exceptions import WorkflowNotFoundError


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Workflows"])


def _workflow_response(workflow_id: str, include_diagram: bool = True) -> WorkflowResponse:
    definition = workflow_builder.get_workflow(workflow_id)
    if definition is None:
        raise WorkflowNotFoundError(workflow_id)

    info = workflow_builder.workflow_info(workflow_id)
    mermaid = workflow_builder.get_graph(workflow_id).to_mermaid() if include_diagram else None
    return WorkflowResponse(
        workflow_id=workflow_id,
        definition=definition,
        node_count=len(definition.nodes),
        edge_count=len(definition.edges),
        created_at=info["created_at"],
        updated_at=info["updated_at"],
        mermaid_diagram=mermaid,
    )


# ============================================================
# Workflow CRUD Endpoints
# ============================================================

@router.post(
    "",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "Invalid workflow"}},
)
async def create_workflow(request: WorkflowCreateRequest) -> WorkflowResponse:
    """
    Create a workflow.

    Nodes and edges given in the request are added through the builder;
    if any of them is rejected, no workflow is created.
    """
    if request.nodes or request.edges:
        workflow_id = workflow_builder.import_workflow({
            "id": str(uuid4()),
            "name": request.name,
            "description": request.description,
            "nodes": [node.model_dump() for node in request.nodes],
            "edges": [edge.model_dump() for edge in request.edges],
        })
    else:
        workflow_id = workflow_builder.create_workflow(request.name, request.description)

    return _workflow_response(workflow_id)


@router.post(
    "/import",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse, "description": "Invalid or duplicate workflow"}},
)
async def import_workflow(definition: WorkflowDefinition) -> WorkflowResponse:
    """Register a complete definition under its own id."""
    workflow_id = workflow_builder.import_workflow(definition)
    return _workflow_response(workflow_id)


@router.get("", response_model=WorkflowListResponse)
async def list_workflows() -> WorkflowListResponse:
    """List all workflows."""
    workflows = [
        _workflow_response(definition.id, include_diagram=False)  # Skip for list view
        for definition in workflow_builder.list_workflows()
    ]
    return WorkflowListResponse(workflows=workflows, total=len(workflows))


@router.get(
    "/{workflow_id}",
    response_model=WorkflowResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_workflow(workflow_id: str) -> WorkflowResponse:
    """Get a workflow definition and its Mermaid diagram."""
    return _workflow_response(workflow_id)


@router.delete(
    "/{workflow_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_workflow(workflow_id: str):
    """Delete a workflow."""
    if not workflow_builder.delete_workflow(workflow_id):
        raise WorkflowNotFoundError(workflow_id)


# ============================================================
# Node Endpoints
# ============================================================

@router.post(
    "/{workflow_id}/nodes",
    response_model=NodeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def add_node(workflow_id: str, request: NodeCreateRequest) -> NodeResponse:
    """Add a node. Unknown node types are rejected and nothing is added."""
    node_id = workflow_builder.add_node(workflow_id, request.model_dump())
    return NodeResponse(workflow_id=workflow_id, node_id=node_id)


@router.patch(
    "/{workflow_id}/nodes/{node_id}",
    response_model=NodeResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_node(workflow_id: str, node_id: str, request: NodeUpdateRequest) -> NodeResponse:
    """Update a node's type, data or position."""
    workflow_builder.update_node(workflow_id, node_id, request.model_dump(exclude_unset=True))
    return NodeResponse(workflow_id=workflow_id, node_id=node_id)


@router.delete(
    "/{workflow_id}/nodes/{node_id}",
    response_model=NodeResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def remove_node(workflow_id: str, node_id: str) -> NodeResponse:
    """Remove a node together with every edge touching it."""
    removed = workflow_builder.remove_node(workflow_id, node_id)
    return NodeResponse(workflow_id=workflow_id, node_id=node_id, removed_edges=removed)


# ============================================================
# Edge Endpoints
# ============================================================

@router.post(
    "/{workflow_id}/edges",
    response_model=EdgeResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def add_edge(workflow_id: str, request: EdgeCreateRequest) -> EdgeResponse:
    """Connect two existing nodes."""
    edge_id = workflow_builder.add_edge(workflow_id, request.model_dump())
    return EdgeResponse(workflow_id=workflow_id, edge_ids=[edge_id])


@router.delete(
    "/{workflow_id}/edges",
    response_model=EdgeResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def remove_edges_between(
    workflow_id: str,
    source: str = Query(..., description="Source node id"),
    target: str = Query(..., description="Target node id"),
) -> EdgeResponse:
    """Remove every edge from `source` to `target`."""
    removed = workflow_builder.remove_edge(workflow_id, {"source": source, "target": target})
    return EdgeResponse(workflow_id=workflow_id, edge_ids=removed)


@router.delete(
    "/{workflow_id}/edges/{edge_id}",
    response_model=EdgeResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def remove_edge(workflow_id: str, edge_id: str) -> EdgeResponse:
    """Remove an edge by id."""
    removed = workflow_builder.remove_edge(workflow_id, edge_id)
    return EdgeResponse(workflow_id=workflow_id, edge_ids=removed)


# ============================================================
# Validation Endpoints
# ============================================================

@router.post("/validate", response_model=ValidationResult)
async def validate_definition(definition: Dict[str, Any]) -> ValidationResult:
    """
    Validate a raw definition without storing it.

    Malformed input is reported as findings rather than rejected.
    """
    return validation_engine.validate_workflow(definition)


@router.get(
    "/{workflow_id}/validate",
    response_model=ValidationResult,
    responses={404: {"model": ErrorResponse}},
)
async def validate_workflow(workflow_id: str) -> ValidationResult:
    """Validate a stored workflow."""
    definition = workflow_builder.get_workflow(workflow_id)
    if definition is None:
        raise WorkflowNotFoundError(workflow_id)

    result = validation_engine.validate_workflow(definition)
    logger.info(
        f"Validated workflow {workflow_id}: "
        f"{len(result.errors)} errors, {len(result.warnings)} warnings"
    )
    return result
