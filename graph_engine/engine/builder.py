"""
Workflow Builder.

The builder owns one GraphModel per workflow id and is the only way to
mutate a workflow definition. Node types are checked against the closed
NodeType enum before anything reaches the graph.
"""

from typing import Any, Dict, List, Mapping, Optional, Union
from dataclasses import dataclass, field
from datetime import datetime
import logging
import uuid

from pydantic import ValidationError as PydanticValidationError

from graph_engine.engine.graph import GraphModel
from graph_engine.engine.models import Edge, Node, NodeData, NodeType, WorkflowDefinition
from graph_engine.exceptions import GraphStructureError, WorkflowNotFoundError


logger = logging.getLogger(__name__)


NodeSpec = Union[Node, Mapping[str, Any]]
EdgeSpec = Union[Edge, Mapping[str, Any], str]


@dataclass
class _Workflow:
    """A workflow owned by the builder."""
    workflow_id: str
    name: str
    description: str
    graph: GraphModel = field(default_factory=GraphModel)
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def touch(self) -> None:
        self.updated_at = datetime.now()


class WorkflowBuilder:
    """
    Mutation API over one GraphModel per workflow.

    Usage:
        builder = WorkflowBuilder()
        wf = builder.create_workflow("Review", "Content review pipeline")
        start = builder.add_node(wf, {"type": "start", "data": {"label": "Start"}})
        end = builder.add_node(wf, {"type": "end", "data": {"label": "End"}})
        builder.add_edge(wf, {"source": start, "target": end})
        definition = builder.get_workflow(wf)
    """

    def __init__(self):
        self._workflows: Dict[str, _Workflow] = {}

    # ------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------

    def create_workflow(self, name: str, description: str = "", workflow_id: Optional[str] = None) -> str:
        """
        Create an empty workflow.

        Args:
            name: Non-empty workflow name
            description: Human-readable description
            workflow_id: Optional explicit id (generated if not provided)

        Returns:
            The new workflow id
        """
        if not isinstance(name, str) or not name.strip():
            raise GraphStructureError("Workflow name cannot be empty")

        workflow_id = workflow_id or str(uuid.uuid4())
        if workflow_id in self._workflows:
            raise GraphStructureError(
                f"Workflow '{workflow_id}' already exists",
                details={"workflow_id": workflow_id},
            )

        self._workflows[workflow_id] = _Workflow(
            workflow_id=workflow_id,
            name=name.strip(),
            description=description or "",
        )
        logger.info(f"Created workflow: {workflow_id} ({name})")
        return workflow_id

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """Return an immutable snapshot of the workflow, or None if unknown."""
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            return None
        return workflow.graph.get_snapshot(workflow.workflow_id, workflow.name, workflow.description)

    def get_graph(self, workflow_id: str) -> GraphModel:
        return self._get(workflow_id).graph

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow."""
        if workflow_id in self._workflows:
            del self._workflows[workflow_id]
            logger.info(f"Deleted workflow: {workflow_id}")
            return True
        return False

    def list_workflows(self) -> List[WorkflowDefinition]:
        """Snapshots of every workflow, in creation order."""
        return [
            wf.graph.get_snapshot(wf.workflow_id, wf.name, wf.description)
            for wf in self._workflows.values()
        ]

    def workflow_info(self, workflow_id: str) -> Dict[str, Any]:
        workflow = self._get(workflow_id)
        return {
            "created_at": workflow.created_at.isoformat(),
            "updated_at": workflow.updated_at.isoformat(),
        }

    def import_workflow(self, definition: Union[WorkflowDefinition, Mapping[str, Any]]) -> str:
        """
        Register a complete definition by replaying it through the builder.

        Every node and edge goes through the same checks as individual
        mutations. If any of them fails, nothing is registered.
        """
        if not isinstance(definition, WorkflowDefinition):
            try:
                definition = WorkflowDefinition.model_validate(definition)
            except PydanticValidationError as e:
                raise GraphStructureError(f"Malformed workflow definition: {e}") from e

        if definition.id in self._workflows:
            raise GraphStructureError(
                f"Workflow '{definition.id}' already exists",
                details={"workflow_id": definition.id},
            )

        staging = WorkflowBuilder()
        workflow_id = staging.create_workflow(definition.name, definition.description, definition.id)
        for node in definition.nodes:
            staging.add_node(workflow_id, node)
        for edge in definition.edges:
            staging.add_edge(workflow_id, edge)

        self._workflows[workflow_id] = staging._workflows[workflow_id]
        logger.info(
            f"Imported workflow: {workflow_id} "
            f"({len(definition.nodes)} nodes, {len(definition.edges)} edges)"
        )
        return workflow_id

    # ------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------

    def add_node(self, workflow_id: str, node_spec: NodeSpec) -> str:
        """
        Add a node to a workflow.

        Args:
            workflow_id: Target workflow
            node_spec: Node or mapping with `type`, optional `id` and `data`

        Returns:
            The node id

        Raises:
            GraphStructureError: Unknown node type, malformed spec or duplicate id
        """
        workflow = self._get(workflow_id)
        node = self._build_node(node_spec)
        workflow.graph.add_node(node)
        workflow.touch()
        logger.debug(f"Added node {node.id} ({node.type.value}) to {workflow_id}")
        return node.id

    def update_node(self, workflow_id: str, node_id: str, node_spec: NodeSpec) -> Node:
        """
        Update a node's type and/or data.

        `data` fields given in node_spec are merged over the existing ones.
        """
        workflow = self._get(workflow_id)
        current = workflow.graph.get_node(node_id)
        if current is None:
            raise GraphStructureError(
                f"Node '{node_id}' not found in workflow '{workflow_id}'",
                details={"node_id": node_id},
            )

        spec = _spec_to_dict(node_spec)
        node_type = current.type
        if "type" in spec and spec["type"] is not None:
            node_type = _parse_node_type(spec["type"])

        data = current.data.model_dump()
        data.update(spec.get("data") or {})
        try:
            updated = Node(
                id=node_id,
                type=node_type,
                data=NodeData.model_validate(data),
                position=spec.get("position", current.position),
            )
        except PydanticValidationError as e:
            raise GraphStructureError(f"Malformed node spec: {e}") from e

        result = workflow.graph.update_node(node_id, updated)
        workflow.touch()
        return result

    def remove_node(self, workflow_id: str, node_id: str) -> List[str]:
        """Remove a node and its incident edges. Returns the removed edge ids."""
        workflow = self._get(workflow_id)
        removed = workflow.graph.remove_node(node_id)
        workflow.touch()
        logger.debug(f"Removed node {node_id} and edges {removed} from {workflow_id}")
        return removed

    # ------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------

    def add_edge(self, workflow_id: str, edge_spec: Union[Edge, Mapping[str, Any]]) -> str:
        """
        Add an edge between two existing nodes.

        Returns:
            The edge id
        """
        workflow = self._get(workflow_id)
        spec = _spec_to_dict(edge_spec)
        spec.setdefault("id", None)
        if not spec["id"]:
            spec["id"] = f"edge-{uuid.uuid4().hex[:8]}"
        if spec.get("condition") == "":
            spec["condition"] = None

        try:
            edge = Edge.model_validate(spec)
        except PydanticValidationError as e:
            raise GraphStructureError(f"Malformed edge spec: {e}") from e

        workflow.graph.add_edge(edge)
        workflow.touch()
        return edge.id

    def remove_edge(self, workflow_id: str, edge_spec: EdgeSpec) -> List[str]:
        """
        Remove edges by id, or every edge between `source` and `target`.

        Returns:
            Ids of the removed edges
        """
        workflow = self._get(workflow_id)
        graph = workflow.graph

        if isinstance(edge_spec, str):
            edge_ids = [edge_spec]
        else:
            spec = _spec_to_dict(edge_spec)
            if spec.get("id"):
                edge_ids = [spec["id"]]
            elif spec.get("source") and spec.get("target"):
                edge_ids = [e.id for e in graph.find_edges(spec["source"], spec["target"])]
                if not edge_ids:
                    raise GraphStructureError(
                        f"No edge from '{spec['source']}' to '{spec['target']}'"
                    )
            else:
                raise GraphStructureError("Edge spec needs an id or a source and target")

        for edge_id in edge_ids:
            if graph.get_edge(edge_id) is None:
                raise GraphStructureError(
                    f"Edge '{edge_id}' not found in workflow '{workflow_id}'",
                    details={"edge_id": edge_id},
                )
        for edge_id in edge_ids:
            graph.remove_edge(edge_id)

        workflow.touch()
        return edge_ids

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    def _get(self, workflow_id: str) -> _Workflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def _build_node(self, node_spec: NodeSpec) -> Node:
        spec = _spec_to_dict(node_spec)
        node_type = _parse_node_type(spec.get("type"))
        node_id = spec.get("id") or f"{node_type.value}-{uuid.uuid4().hex[:8]}"
        try:
            return Node(
                id=node_id,
                type=node_type,
                data=NodeData.model_validate(spec.get("data") or {}),
                position=spec.get("position"),
            )
        except PydanticValidationError as e:
            raise GraphStructureError(f"Malformed node spec: {e}") from e

    def __len__(self) -> int:
        return len(self._workflows)

    def __contains__(self, workflow_id: str) -> bool:
        return workflow_id in self._workflows


def _spec_to_dict(spec: Any) -> Dict[str, Any]:
    if isinstance(spec, (Node, Edge)):
        return spec.model_dump()
    if isinstance(spec, Mapping):
        return dict(spec)
    raise GraphStructureError(f"Expected a mapping, got {type(spec).__name__}")


def _parse_node_type(value: Any) -> NodeType:
    if isinstance(value, NodeType):
        return value
    try:
        return NodeType(value)
    except ValueError:
        raise GraphStructureError(
            f"Unknown node type '{value}'. "
            f"Valid types: {[t.value for t in NodeType]}",
            details={"type": value},
        ) from None


# Global builder instance
workflow_builder = WorkflowBuilder()
