"""
Engine package - Graph model, builder, validation and execution.
"""

from graph_engine.engine.models import Node, NodeData, NodeType, Edge, WorkflowDefinition
from graph_engine.engine.graph import GraphModel
from graph_engine.engine.builder import WorkflowBuilder, workflow_builder
from graph_engine.engine.validator import (
    ValidationEngine,
    ValidationError,
    ValidationResult,
    validation_engine,
    validate_workflow,
)
from graph_engine.engine.state import ExecutionState, ExecutionStatus
from graph_engine.engine.executor import (
    ExecutionEngine,
    ExecutionOptions,
    ExecutionResult,
    execution_engine,
)

__all__ = [
    "Node",
    "NodeData",
    "NodeType",
    "Edge",
    "WorkflowDefinition",
    "GraphModel",
    "WorkflowBuilder",
    "workflow_builder",
    "ValidationEngine",
    "ValidationError",
    "ValidationResult",
    "validation_engine",
    "validate_workflow",
    "ExecutionState",
    "ExecutionStatus",
    "ExecutionEngine",
    "ExecutionOptions",
    "ExecutionResult",
    "execution_engine",
]
