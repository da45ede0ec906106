"""
Exception taxonomy for the Graph Engine.

- GraphStructureError: raised synchronously by the builder and graph model
  when a mutation would break the graph; the graph is left unchanged.
- NodeExecutionError: raised while a node runs; caught by the engine and
  recorded on the execution state.

Validation findings are not exceptions, see engine.validator.
"""

from typing import Any, Dict, Optional


class WorkflowEngineError(Exception):
    """Base exception for all graph engine errors."""
    
    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "exception_type": self.__class__.__name__,
        }


class GraphStructureError(WorkflowEngineError):
    """Invalid graph mutation (unknown node type, dangling edge, duplicate id)."""


class WorkflowNotFoundError(WorkflowEngineError, KeyError):
    """No workflow is registered under the given id."""
    
    def __init__(self, workflow_id: str):
        super().__init__(
            f"Workflow '{workflow_id}' not found",
            details={"workflow_id": workflow_id},
        )
        self.workflow_id = workflow_id
    
    def __str__(self) -> str:
        return self.message


class ConditionSyntaxError(WorkflowEngineError, ValueError):
    """A condition expression could not be parsed."""
    
    def __init__(self, expression: str, reason: str):
        super().__init__(
            f"Invalid condition '{expression}': {reason}",
            details={"expression": expression},
        )
        self.expression = expression


class NodeExecutionError(WorkflowEngineError):
    """A node failed while the engine was running it."""
    
    kind = "error"
    
    def __init__(self, node_id: Optional[str], message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.node_id = node_id
    
    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"node_id": self.node_id, "kind": self.kind})
        return data


class NodeTimeoutError(NodeExecutionError):
    """A node or run exceeded its configured timeout."""
    
    kind = "timeout"


class OperationNotFoundError(NodeExecutionError):
    """A node names an operation that is not in the registry."""
    
    def __init__(self, node_id: Optional[str], operation: str):
        super().__init__(
            node_id,
            f"Operation '{operation}' is not registered",
            details={"operation": operation},
        )
        self.operation = operation
