"""
Workflow Validation Engine.

Inspects a workflow definition without executing anything and reports
every structural and semantic defect it finds. Validation never raises:
malformed input is reported as findings too.

Checks, in order:
1. Structure: ids, edge endpoints, start/end nodes
2. Reachability from the start node
3. Cycles (the executor has no loop-back semantics)
4. Decision coverage for `if` / `switch` nodes
5. Split/merge pairing for `waitForAll` fan-outs
"""

from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Union
from collections import Counter, defaultdict
from enum import Enum
import logging

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from graph_engine.config import settings
from graph_engine.engine.conditions import is_valid_condition
from graph_engine.engine.models import (
    DEFAULT_CONDITIONS,
    ERROR_CONDITION,
    FALSE_CONDITION,
    TRUE_CONDITION,
    Edge,
    Node,
    NodeType,
    WorkflowDefinition,
)


logger = logging.getLogger(__name__)

_RESERVED_CONDITIONS = {ERROR_CONDITION, TRUE_CONDITION, FALSE_CONDITION} | DEFAULT_CONDITIONS


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class ValidationError(BaseModel):
    """A single validation finding, attributed to a node or edge where possible."""
    code: str
    message: str
    severity: Severity = Severity.ERROR
    node_id: Optional[str] = None
    edge_id: Optional[str] = None


class ValidationResult(BaseModel):
    """Outcome of validating a workflow."""
    is_valid: bool
    errors: List[ValidationError] = Field(default_factory=list)
    warnings: List[ValidationError] = Field(default_factory=list)


class _Findings:
    """Accumulates findings for one validation pass."""

    def __init__(self, decision_severity: Severity):
        self.items: List[ValidationError] = []
        self.decision_severity = decision_severity

    def error(self, code: str, message: str, node_id: str = None, edge_id: str = None) -> None:
        self.items.append(ValidationError(
            code=code, message=message, severity=Severity.ERROR,
            node_id=node_id, edge_id=edge_id,
        ))

    def warning(self, code: str, message: str, node_id: str = None, edge_id: str = None) -> None:
        self.items.append(ValidationError(
            code=code, message=message, severity=Severity.WARNING,
            node_id=node_id, edge_id=edge_id,
        ))

    def result(self) -> ValidationResult:
        errors = [f for f in self.items if f.severity == Severity.ERROR]
        warnings = [f for f in self.items if f.severity == Severity.WARNING]
        return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


class ValidationEngine:
    """
    Validates workflow definitions.

    Args:
        max_nodes: Node count above which a warning is reported
        max_edges: Edge count above which a warning is reported
        decision_coverage_severity: "warning" (default) or "error" for a
            decision node that does not cover both outcomes
    """

    def __init__(
        self,
        max_nodes: Optional[int] = None,
        max_edges: Optional[int] = None,
        decision_coverage_severity: Optional[str] = None,
    ):
        self.max_nodes = max_nodes if max_nodes is not None else settings.MAX_NODES
        self.max_edges = max_edges if max_edges is not None else settings.MAX_EDGES
        self.decision_coverage_severity = Severity(
            decision_coverage_severity or settings.DECISION_COVERAGE_SEVERITY
        )

    def validate_workflow(self, definition: Union[WorkflowDefinition, Mapping[str, Any]]) -> ValidationResult:
        """Validate a definition (model or raw mapping). Never raises."""
        findings = _Findings(self.decision_coverage_severity)
        try:
            nodes, edges = _coerce(definition, findings)
            if not nodes:
                findings.error("empty-workflow", "Workflow must contain at least one node")
                return findings.result()

            graph = _Adjacency(nodes, edges)
            start_id = self._check_structure(graph, findings)
            reachable = self._check_reachability(graph, start_id, findings)
            self._check_cycles(graph, findings)
            self._check_conditions(graph, findings)
            self._check_decisions(graph, findings)
            self._check_split_merge(graph, findings)
            if start_id is not None and reachable is not None:
                logger.debug(f"Validated workflow: {len(reachable)}/{len(graph.nodes)} nodes reachable")
        except Exception as e:
            logger.exception(f"Validation aborted: {e}")
            findings.error("validation-aborted", f"Validation could not complete: {e}")
        return findings.result()

    # ------------------------------------------------------------
    # 1. Structure
    # ------------------------------------------------------------

    def _check_structure(self, graph: "_Adjacency", findings: _Findings) -> Optional[str]:
        if len(graph.node_list) > self.max_nodes:
            findings.warning(
                "too-many-nodes",
                f"Workflow contains {len(graph.node_list)} nodes, recommended maximum is {self.max_nodes}",
            )
        if len(graph.edge_list) > self.max_edges:
            findings.warning(
                "too-many-edges",
                f"Workflow contains {len(graph.edge_list)} edges, recommended maximum is {self.max_edges}",
            )

        for node_id, count in Counter(n.id for n in graph.node_list).items():
            if count > 1:
                findings.error("duplicate-node-id", f"Node id '{node_id}' is used {count} times", node_id=node_id)

        for edge_id, count in Counter(e.id for e in graph.edge_list).items():
            if count > 1:
                findings.error("duplicate-edge-id", f"Edge id '{edge_id}' is used {count} times", edge_id=edge_id)

        for node in graph.node_list:
            if not node.data.label:
                findings.warning("missing-label", f"Node '{node.id}' has no label", node_id=node.id)

        seen_pairs: Set[Tuple[str, str, Optional[str]]] = set()
        for edge in graph.edge_list:
            if edge.source not in graph.nodes:
                findings.error(
                    "invalid-source",
                    f"Edge '{edge.id}' references non-existent source node '{edge.source}'",
                    edge_id=edge.id,
                )
            if edge.target not in graph.nodes:
                findings.error(
                    "invalid-target",
                    f"Edge '{edge.id}' references non-existent target node '{edge.target}'",
                    edge_id=edge.id,
                )
            if edge.source == edge.target:
                findings.error(
                    "self-loop",
                    f"Edge '{edge.id}' connects node '{edge.source}' to itself",
                    node_id=edge.source,
                    edge_id=edge.id,
                )
            pair = (edge.source, edge.target, edge.condition)
            if pair in seen_pairs:
                findings.warning(
                    "duplicate-connection",
                    f"Edge '{edge.id}' duplicates a connection from '{edge.source}' to '{edge.target}'",
                    edge_id=edge.id,
                )
            seen_pairs.add(pair)

        starts = [n for n in graph.node_list if n.type == NodeType.START]
        ends = [n for n in graph.node_list if n.type == NodeType.END]

        if not starts:
            findings.error("missing-start", "Workflow must have exactly one start node")
        for extra in starts[1:]:
            findings.error(
                "multiple-start",
                f"Workflow must have exactly one start node, '{extra.id}' is an additional one",
                node_id=extra.id,
            )
        if not ends:
            findings.error("missing-end", "Workflow must have at least one end node")

        for node in starts:
            for edge in graph.incoming[node.id]:
                findings.error(
                    "start-has-incoming",
                    f"Start node '{node.id}' cannot have incoming edges",
                    node_id=node.id,
                    edge_id=edge.id,
                )
        for node in ends:
            for edge in graph.outgoing[node.id]:
                findings.error(
                    "end-has-outgoing",
                    f"End node '{node.id}' cannot have outgoing edges",
                    node_id=node.id,
                    edge_id=edge.id,
                )

        if not starts:
            return None
        start_id = starts[0].id
        if ends:
            reachable = graph.reachable_from(start_id)
            if not any(end.id in reachable for end in ends):
                findings.error(
                    "end-unreachable",
                    f"No end node is reachable from start node '{start_id}'",
                    node_id=start_id,
                )
        return start_id

    # ------------------------------------------------------------
    # 2. Reachability
    # ------------------------------------------------------------

    def _check_reachability(
        self, graph: "_Adjacency", start_id: Optional[str], findings: _Findings
    ) -> Optional[Set[str]]:
        if start_id is None:
            return None
        reachable = graph.reachable_from(start_id)
        for node_id in graph.nodes:
            if node_id not in reachable:
                findings.error(
                    "unreachable-node",
                    f"Node '{node_id}' is not reachable from start node '{start_id}'",
                    node_id=node_id,
                )
        return reachable

    # ------------------------------------------------------------
    # 3. Cycles
    # ------------------------------------------------------------

    def _check_cycles(self, graph: "_Adjacency", findings: _Findings) -> None:
        for cycle in graph.find_cycles():
            path = " -> ".join(cycle + [cycle[0]])
            findings.error(
                "cycle",
                f"Workflow contains a cycle: {path}",
                node_id=cycle[0],
            )

    # ------------------------------------------------------------
    # Condition syntax
    # ------------------------------------------------------------

    def _check_conditions(self, graph: "_Adjacency", findings: _Findings) -> None:
        for node in graph.node_list:
            if node.data.condition and not is_valid_condition(node.data.condition):
                findings.error(
                    "invalid-condition",
                    f"Node '{node.id}' has an invalid condition '{node.data.condition}'",
                    node_id=node.id,
                )

        for edge in graph.edge_list:
            if not edge.condition or edge.condition in _RESERVED_CONDITIONS:
                continue
            source = graph.nodes.get(edge.source)
            if source is not None and source.type == NodeType.SWITCH:
                continue  # case labels, not expressions
            if not is_valid_condition(edge.condition):
                findings.error(
                    "invalid-condition",
                    f"Edge '{edge.id}' has an invalid condition '{edge.condition}'",
                    edge_id=edge.id,
                )

    # ------------------------------------------------------------
    # 4. Decision coverage
    # ------------------------------------------------------------

    def _check_decisions(self, graph: "_Adjacency", findings: _Findings) -> None:
        for node in graph.node_list:
            if not node.type.is_decision:
                continue

            branches = [e for e in graph.outgoing[node.id] if not e.is_error_edge]
            if not branches:
                findings.error(
                    "decision-no-branches",
                    f"Decision node '{node.id}' has no outgoing branches",
                    node_id=node.id,
                )
                continue

            has_fallback = any(not e.condition or e.is_default for e in branches)

            if node.type == NodeType.SWITCH:
                if not node.config.get("field"):
                    findings.error(
                        "switch-missing-field",
                        f"Switch node '{node.id}' must set config.field",
                        node_id=node.id,
                    )
                if not has_fallback:
                    findings.warning(
                        "switch-no-default",
                        f"Switch node '{node.id}' has no default branch",
                        node_id=node.id,
                    )
                continue

            labels = {e.condition for e in branches if e.condition}
            uses_outcome = bool(labels & {TRUE_CONDITION, FALSE_CONDITION})

            if uses_outcome and not node.data.condition:
                findings.error(
                    "decision-missing-condition",
                    f"Decision node '{node.id}' routes on true/false but has no condition",
                    node_id=node.id,
                )
                continue

            covered = has_fallback or {TRUE_CONDITION, FALSE_CONDITION} <= labels
            conditional = [e for e in branches if e.is_conditional and not e.is_default]
            if not covered and len(conditional) <= 1:
                message = (
                    f"Decision node '{node.id}' has a single conditional branch and no "
                    f"fallback; the other outcome ends the path"
                )
                if findings.decision_severity == Severity.ERROR:
                    findings.error("decision-incomplete", message, node_id=node.id)
                else:
                    findings.warning("decision-incomplete", message, node_id=node.id)

    # ------------------------------------------------------------
    # 5. Split / merge pairing
    # ------------------------------------------------------------

    def _check_split_merge(self, graph: "_Adjacency", findings: _Findings) -> None:
        for node in graph.node_list:
            if node.type == NodeType.MERGE and len(graph.incoming[node.id]) < 2:
                findings.warning(
                    "merge-single-input",
                    f"Merge node '{node.id}' has fewer than two incoming edges",
                    node_id=node.id,
                )

        for node in graph.node_list:
            if not graph.is_fan_out(node) or not node.config.get("waitForAll"):
                continue

            targets = [e.target for e in graph.outgoing[node.id] if not e.is_error_edge]
            declared = node.config.get("branches") or targets
            if not isinstance(declared, list):
                findings.error(
                    "split-invalid-branches",
                    f"Split node '{node.id}' config.branches must be a list of node ids",
                    node_id=node.id,
                )
                continue

            unknown = [b for b in declared if b not in targets]
            for branch in unknown:
                findings.error(
                    "split-unknown-branch",
                    f"Split node '{node.id}' declares branch '{branch}' that is not one of its targets",
                    node_id=node.id,
                )
            branches = [b for b in declared if b in targets and b in graph.nodes]
            if len(branches) < 2:
                continue

            common = set.intersection(*(graph.reachable_from(b) for b in branches))
            joins = {n for n in common if graph.is_join(graph.nodes[n])}
            if not joins:
                findings.error(
                    "split-without-merge",
                    f"Branches {branches} of split node '{node.id}' never reach a common merge node",
                    node_id=node.id,
                )
                continue

            # Joins take their wait mode from their own config, so the first
            # common join must not be set to fire on first arrival
            nearest = [j for j in joins if not any(j in graph.reachable_from(k) for k in joins if k != j)]
            for join_id in nearest:
                if graph.nodes[join_id].config.get("waitForAll", True) is False:
                    findings.error(
                        "merge-wait-conflict",
                        f"Split node '{node.id}' waits for all branches but merge node "
                        f"'{join_id}' fires on first arrival",
                        node_id=join_id,
                    )


class _Adjacency:
    """Lenient adjacency lists; tolerates dangling edges and duplicate ids."""

    def __init__(self, nodes: List[Node], edges: List[Edge]):
        self.node_list = nodes
        self.edge_list = edges
        self.nodes: Dict[str, Node] = {}
        for node in nodes:
            self.nodes.setdefault(node.id, node)
        self.outgoing: Dict[str, List[Edge]] = defaultdict(list)
        self.incoming: Dict[str, List[Edge]] = defaultdict(list)
        for edge in edges:
            if edge.source in self.nodes and edge.target in self.nodes:
                self.outgoing[edge.source].append(edge)
                self.incoming[edge.target].append(edge)

    def reachable_from(self, node_id: str) -> Set[str]:
        reachable: Set[str] = set()
        to_visit = [node_id]
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            to_visit.extend(e.target for e in self.outgoing[current])
        return reachable

    def is_fan_out(self, node: Node) -> bool:
        unconditional = [e for e in self.outgoing[node.id] if not e.condition]
        return node.is_split or len(unconditional) > 1

    def is_join(self, node: Node) -> bool:
        return node.is_merge or len(self.incoming[node.id]) > 1

    def find_cycles(self) -> List[List[str]]:
        """Distinct cycles (as node paths), excluding self-loops."""
        WHITE, GREY, BLACK = 0, 1, 2
        color = {node_id: WHITE for node_id in self.nodes}
        cycles: List[List[str]] = []
        seen: Set[frozenset] = set()

        for root in self.nodes:
            if color[root] != WHITE:
                continue
            path: List[str] = [root]
            stack = [(root, iter(self.outgoing[root]))]
            color[root] = GREY
            while stack:
                node_id, children = stack[-1]
                edge = next(children, None)
                if edge is None:
                    color[node_id] = BLACK
                    stack.pop()
                    path.pop()
                    continue
                target = edge.target
                if target == node_id:
                    continue
                if color[target] == GREY:
                    cycle = path[path.index(target):]
                    key = frozenset(cycle)
                    if key not in seen:
                        seen.add(key)
                        cycles.append(list(cycle))
                elif color[target] == WHITE:
                    color[target] = GREY
                    path.append(target)
                    stack.append((target, iter(self.outgoing[target])))
        return cycles


def _coerce(
    definition: Union[WorkflowDefinition, Mapping[str, Any]],
    findings: _Findings,
) -> Tuple[List[Node], List[Edge]]:
    """Turn a model or raw mapping into node/edge lists, reporting bad entries."""
    if isinstance(definition, WorkflowDefinition):
        return list(definition.nodes), list(definition.edges)

    if not isinstance(definition, Mapping):
        findings.error("malformed-definition", f"Expected a workflow definition, got {type(definition).__name__}")
        return [], []

    nodes: List[Node] = []
    for index, raw in enumerate(definition.get("nodes") or []):
        try:
            nodes.append(raw if isinstance(raw, Node) else Node.model_validate(raw))
        except PydanticValidationError as e:
            node_id = raw.get("id") if isinstance(raw, Mapping) else None
            findings.error(
                "invalid-node",
                f"Node {node_id or f'#{index}'} is malformed: {_first_error(e)}",
                node_id=node_id,
            )

    edges: List[Edge] = []
    for index, raw in enumerate(definition.get("edges") or []):
        try:
            edges.append(raw if isinstance(raw, Edge) else Edge.model_validate(raw))
        except PydanticValidationError as e:
            edge_id = raw.get("id") if isinstance(raw, Mapping) else None
            findings.error(
                "invalid-edge",
                f"Edge {edge_id or f'#{index}'} is malformed: {_first_error(e)}",
                edge_id=edge_id,
            )

    return nodes, edges


def _first_error(error: PydanticValidationError) -> str:
    details = error.errors()
    if not details:
        return str(error)
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else first.get("msg", "")


# Default validator instance
validation_engine = ValidationEngine()


def validate_workflow(definition: Union[WorkflowDefinition, Mapping[str, Any]]) -> ValidationResult:
    """Validate a workflow with the default settings."""
    return validation_engine.validate_workflow(definition)
