"""
Pydantic Schemas for API Request/Response Models.

Workflow definitions, nodes, edges, validation results and execution
states are served with the engine's own models; the schemas here cover
request bodies and response envelopes.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from graph_engine.engine.models import Edge, Node, NodeData, WorkflowDefinition
from graph_engine.engine.state import ExecutionState


# ============================================================
# Workflow Schemas
# ============================================================

class WorkflowCreateRequest(BaseModel):
    """Request to create a workflow, optionally with its nodes and edges."""
    name: str = Field(..., description="Name of the workflow")
    description: str = Field("", description="What this workflow does")
    nodes: List[Node] = Field(default_factory=list, description="Initial nodes")
    edges: List[Edge] = Field(default_factory=list, description="Initial edges")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Patient intake",
                "description": "Validate and store patient submissions",
                "nodes": [
                    {"id": "start", "type": "start", "data": {"label": "Start"}},
                    {"id": "intake", "type": "dataInput", "data": {"label": "Read input"}},
                    {"id": "end", "type": "end", "data": {"label": "End"}},
                ],
                "edges": [
                    {"id": "e1", "source": "start", "target": "intake"},
                    {"id": "e2", "source": "intake", "target": "end"},
                ],
            }
        }


class WorkflowResponse(BaseModel):
    """A workflow with its current definition."""
    workflow_id: str
    definition: WorkflowDefinition
    node_count: int
    edge_count: int
    created_at: str
    updated_at: str
    mermaid_diagram: Optional[str] = Field(None, description="Mermaid diagram of the graph")


class WorkflowListResponse(BaseModel):
    """Response listing all workflows."""
    workflows: List[WorkflowResponse]
    total: int


# ============================================================
# Node / Edge Schemas
# ============================================================

class NodeCreateRequest(BaseModel):
    """Request to add a node. The type is checked against the known node types."""
    id: Optional[str] = Field(None, description="Node id (generated if omitted)")
    type: str = Field(..., description="Node type, e.g. start, end, dataProcessor, if")
    data: NodeData = Field(default_factory=NodeData)
    position: Optional[Dict[str, float]] = None

    class Config:
        json_schema_extra = {
            "example": {
                "type": "dataProcessor",
                "data": {
                    "label": "Uppercase name",
                    "operation": "transform",
                    "config": {"field": "name", "value": "uppercase"},
                },
            }
        }


class NodeUpdateRequest(BaseModel):
    """Request to update a node; `data` fields are merged over the current ones."""
    type: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Dict[str, float]] = None


class NodeResponse(BaseModel):
    workflow_id: str
    node_id: str
    removed_edges: List[str] = Field(default_factory=list)


class EdgeCreateRequest(BaseModel):
    """Request to connect two existing nodes."""
    id: Optional[str] = Field(None, description="Edge id (generated if omitted)")
    source: str
    target: str
    condition: Optional[str] = Field(
        None,
        description="Guard expression, or one of: error, true, false, default, else",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "source": "risk",
                "target": "escalate",
                "condition": "aiResult.riskLevel == 'high'",
            }
        }


class EdgeResponse(BaseModel):
    workflow_id: str
    edge_ids: List[str]


# ============================================================
# Execution Schemas
# ============================================================

class ExecutionRequest(BaseModel):
    """Request to execute a stored workflow or an inline definition."""
    workflow_id: Optional[str] = Field(None, description="Id of a stored workflow")
    definition: Optional[WorkflowDefinition] = Field(None, description="Inline definition")
    input_data: Dict[str, Any] = Field(default_factory=dict, description="Exposed as context.input")
    async_execution: bool = Field(
        False,
        description="If true, return immediately and poll GET /executions/{execution_id}",
    )
    node_timeout: Optional[float] = Field(None, gt=0, description="Seconds per node")
    run_timeout: Optional[float] = Field(None, gt=0, description="Seconds for the whole run")
    validate_definition: bool = Field(True, description="Refuse to run invalid definitions")

    class Config:
        json_schema_extra = {
            "example": {
                "workflow_id": "content-review-demo",
                "input_data": {
                    "title": "Managing seasonal allergies",
                    "category": "Wellness",
                    "content": "Simple steps to reduce exposure to pollen at home.",
                },
                "async_execution": False,
            }
        }


class ExecutionResponse(BaseModel):
    """Result of starting an execution, with its state once known."""
    success: bool
    execution_id: Optional[str]
    error: Optional[str] = None
    state: Optional[ExecutionState] = None


class ExecutionListResponse(BaseModel):
    executions: List[ExecutionState]
    total: int


class CancelResponse(BaseModel):
    execution_id: str
    cancelled: bool


# ============================================================
# Operation Schemas
# ============================================================

class OperationInfo(BaseModel):
    """Information about a registered operation."""
    name: str
    description: str
    output_key: Optional[str] = None
    is_async: bool


class OperationListResponse(BaseModel):
    """Response listing all registered operations."""
    operations: List[OperationInfo]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)
