"""
Graph Model for the Workflow Engine.

The GraphModel is flat, id-indexed storage of nodes and edges. It enforces
referential integrity on every mutation and nothing else: semantic checks
live in the validator.
"""

from typing import Dict, Iterable, List, Optional, Set
from copy import deepcopy

from graph_engine.engine.models import Edge, Node, NodeType, WorkflowDefinition
from graph_engine.exceptions import GraphStructureError


class GraphModel:
    """
    Id-indexed nodes and edges of one workflow.

    Every mutation either succeeds completely or raises
    GraphStructureError and leaves the model untouched.

    Usage:
        graph = GraphModel()
        graph.add_node(Node(id="start", type="start"))
        graph.add_node(Node(id="end", type="end"))
        graph.add_edge(Edge(id="e1", source="start", target="end"))
    """

    def __init__(self):
        self._nodes: Dict[str, Node] = {}
        self._edges: Dict[str, Edge] = {}

    @classmethod
    def from_definition(cls, definition: WorkflowDefinition) -> "GraphModel":
        """Build a model from a definition, enforcing referential integrity."""
        graph = cls()
        for node in definition.nodes:
            graph.add_node(node)
        for edge in definition.edges:
            graph.add_edge(edge)
        return graph

    # ------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------

    def add_node(self, node: Node) -> Node:
        """Add a node. Fails if the id is already taken."""
        if not node.id:
            raise GraphStructureError("Node id cannot be empty")
        if node.id in self._nodes:
            raise GraphStructureError(
                f"Node '{node.id}' already exists in the graph",
                details={"node_id": node.id},
            )
        self._nodes[node.id] = node.model_copy(deep=True)
        return node

    def update_node(self, node_id: str, node: Node) -> Node:
        """Replace the node stored under node_id, keeping its id."""
        if node_id not in self._nodes:
            raise GraphStructureError(
                f"Node '{node_id}' not found in graph",
                details={"node_id": node_id},
            )
        updated = node.model_copy(update={"id": node_id}, deep=True)
        self._nodes[node_id] = updated
        return updated

    def remove_node(self, node_id: str) -> List[str]:
        """
        Remove a node and every edge touching it.

        Returns:
            Ids of the edges removed with the node
        """
        if node_id not in self._nodes:
            raise GraphStructureError(
                f"Node '{node_id}' not found in graph",
                details={"node_id": node_id},
            )
        incident = [
            edge_id for edge_id, edge in self._edges.items()
            if edge.source == node_id or edge.target == node_id
        ]
        for edge_id in incident:
            del self._edges[edge_id]
        del self._nodes[node_id]
        return incident

    def add_edge(self, edge: Edge) -> Edge:
        """Add an edge. Both endpoints must already exist."""
        if not edge.id:
            raise GraphStructureError("Edge id cannot be empty")
        if edge.id in self._edges:
            raise GraphStructureError(
                f"Edge '{edge.id}' already exists in the graph",
                details={"edge_id": edge.id},
            )
        if edge.source not in self._nodes:
            raise GraphStructureError(
                f"Source node '{edge.source}' not found in graph",
                details={"edge_id": edge.id, "node_id": edge.source},
            )
        if edge.target not in self._nodes:
            raise GraphStructureError(
                f"Target node '{edge.target}' not found in graph",
                details={"edge_id": edge.id, "node_id": edge.target},
            )
        self._edges[edge.id] = edge.model_copy(deep=True)
        return edge

    def remove_edge(self, edge_id: str) -> Edge:
        """Remove an edge by id."""
        if edge_id not in self._edges:
            raise GraphStructureError(
                f"Edge '{edge_id}' not found in graph",
                details={"edge_id": edge_id},
            )
        return self._edges.pop(edge_id)

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges.values())

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        return self._edges.get(edge_id)

    def outgoing(self, node_id: str) -> List[Edge]:
        """Edges leaving node_id, in insertion order."""
        return [edge for edge in self._edges.values() if edge.source == node_id]

    def incoming(self, node_id: str) -> List[Edge]:
        """Edges entering node_id, in insertion order."""
        return [edge for edge in self._edges.values() if edge.target == node_id]

    def find_edges(self, source: str, target: str) -> List[Edge]:
        return [
            edge for edge in self._edges.values()
            if edge.source == source and edge.target == target
        ]

    def nodes_of_type(self, node_type: NodeType) -> List[Node]:
        return [node for node in self._nodes.values() if node.type == node_type]

    def reachable_from(self, node_ids: Iterable[str]) -> Set[str]:
        """All nodes reachable from the given nodes (inclusive)."""
        reachable: Set[str] = set()
        to_visit = list(node_ids)

        while to_visit:
            node_id = to_visit.pop()
            if node_id in reachable or node_id not in self._nodes:
                continue
            reachable.add(node_id)
            to_visit.extend(edge.target for edge in self.outgoing(node_id))

        return reachable

    def ancestors(self, node_id: str) -> Set[str]:
        """All nodes with a path to node_id (exclusive)."""
        found: Set[str] = set()
        to_visit = [edge.source for edge in self.incoming(node_id)]

        while to_visit:
            current = to_visit.pop()
            if current in found:
                continue
            found.add(current)
            to_visit.extend(edge.source for edge in self.incoming(current))

        found.discard(node_id)
        return found

    def get_snapshot(self, workflow_id: str, name: str, description: str = "") -> WorkflowDefinition:
        """Return an independent copy of the graph as a WorkflowDefinition."""
        return WorkflowDefinition(
            id=workflow_id,
            name=name,
            description=description,
            nodes=deepcopy(self.nodes),
            edges=deepcopy(self.edges),
        )

    def to_mermaid(self) -> str:
        """Generate a Mermaid diagram of the graph."""
        lines = ["graph TD"]

        for node in self._nodes.values():
            label = (node.data.label or node.id).replace('"', "'")
            safe_id = _mermaid_id(node.id)
            if node.type == NodeType.START or node.type == NodeType.END:
                lines.append(f'    {safe_id}(("{label}"))')
            elif node.type.is_decision:
                lines.append(f'    {safe_id}{{"{label}"}}')
            else:
                lines.append(f'    {safe_id}["{label}"]')

        for edge in self._edges.values():
            source, target = _mermaid_id(edge.source), _mermaid_id(edge.target)
            if edge.condition:
                label = edge.condition.replace('"', "'").replace("|", "/")
                lines.append(f'    {source} -->|"{label}"| {target}')
            else:
                lines.append(f"    {source} --> {target}")

        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __repr__(self) -> str:
        return f"GraphModel(nodes={list(self._nodes.keys())}, edges={len(self._edges)})"


def _mermaid_id(node_id: str) -> str:
    return "".join(ch if ch.isalnum() or ch == "_" else "_" for ch in node_id)
