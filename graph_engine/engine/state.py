"""
Execution State for the Workflow Engine.

One ExecutionState exists per `execute_workflow` call. It is owned by the
engine; callers only ever see deep copies of it.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
import uuid


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED)


class ErrorKind(str, Enum):
    ERROR = "error"
    TIMEOUT = "timeout"


class ExecutionErrorRecord(BaseModel):
    """A failure recorded during a run."""
    node_id: Optional[str] = None
    message: str
    kind: ErrorKind = ErrorKind.ERROR
    timestamp: datetime = Field(default_factory=datetime.now)


class ExecutionState(BaseModel):
    """
    The observable state of one workflow run.
    
    Attributes:
        execution_id: Unique id of the run
        workflow_id: Id of the definition being executed
        status: pending -> running -> completed | failed | cancelled
        current_node: Most recently dispatched node
        executed_nodes: Nodes that finished successfully, in completion order
        errors: Failures recorded during the run
        context: Shared key-value store threaded through the run
    """
    
    execution_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_node: Optional[str] = None
    executed_nodes: List[str] = Field(default_factory=list)
    errors: List[ExecutionErrorRecord] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    
    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal
    
    def snapshot(self) -> "ExecutionState":
        """Return an independent deep copy."""
        return self.model_copy(deep=True)
