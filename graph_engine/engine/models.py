"""
Workflow Definition Models.

Nodes and edges are plain, id-indexed records: edges refer to nodes by id,
never by object reference, so a definition is always serializable.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum


# Reserved edge conditions
ERROR_CONDITION = "error"
TRUE_CONDITION = "true"
FALSE_CONDITION = "false"
DEFAULT_CONDITIONS = frozenset({"default", "else"})


class NodeType(str, Enum):
    """Closed set of node types understood by the engine."""
    START = "start"
    END = "end"
    DATA_INPUT = "dataInput"
    DATA_OUTPUT = "dataOutput"
    DATA_PROCESSOR = "dataProcessor"
    AI_AGENT = "aiAgent"
    IF = "if"
    SWITCH = "switch"
    SPLIT = "split"
    MERGE = "merge"
    NOTIFICATION = "notification"
    FALLBACK = "fallback"

    @property
    def is_decision(self) -> bool:
        return self in (NodeType.IF, NodeType.SWITCH)


class NodeData(BaseModel):
    """Payload of a node: what it does and how it is configured."""

    label: str = ""
    operation: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    condition: Optional[str] = None

    class Config:
        extra = "allow"


class Node(BaseModel):
    """
    A node in the workflow graph.

    Attributes:
        id: Unique identifier within the workflow
        type: One of NodeType
        data: Label, operation name, config and optional decision condition
        position: Layout coordinates (cosmetic, ignored by the engine)
    """

    id: str
    type: NodeType
    data: NodeData = Field(default_factory=NodeData)
    position: Optional[Dict[str, float]] = None

    @property
    def operation(self) -> Optional[str]:
        return self.data.operation

    @property
    def config(self) -> Dict[str, Any]:
        return self.data.config

    @property
    def is_split(self) -> bool:
        return self.type == NodeType.SPLIT or self.data.operation == "split"

    @property
    def is_merge(self) -> bool:
        return self.type == NodeType.MERGE or self.data.operation == "merge"


class Edge(BaseModel):
    """A directed connection, optionally guarded by a condition."""

    id: str
    source: str
    target: str
    condition: Optional[str] = None

    @property
    def is_error_edge(self) -> bool:
        return self.condition == ERROR_CONDITION

    @property
    def is_conditional(self) -> bool:
        return bool(self.condition) and not self.is_error_edge

    @property
    def is_default(self) -> bool:
        return self.condition in DEFAULT_CONDITIONS


class WorkflowDefinition(BaseModel):
    """A snapshot of a workflow: metadata plus its nodes and edges."""

    id: str
    name: str
    description: str = ""
    nodes: List[Node] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)

    def get_node(self, node_id: str) -> Optional[Node]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the definition to a JSON-compatible dictionary."""
        return self.model_dump(mode="json", exclude_none=True)
