"""
Async Workflow Executor.

The ExecutionEngine runs workflow definitions in the background. Each run
moves tokens through the graph: a token sits at the node it is about to
execute, walks straight on while a single edge is eligible, and spawns
concurrent tasks where the graph fans out. Join nodes collect arrivals
and fire once no live token can still reach them.
"""

from typing import Any, Dict, List, Optional, Set, Tuple, Union
from collections import Counter
from contextlib import contextmanager
from copy import deepcopy
from dataclasses import dataclass, field
from datetime import datetime
import asyncio
import logging
import uuid

from pydantic import ValidationError as PydanticValidationError

from graph_engine.config import settings
from graph_engine.engine.conditions import evaluate_condition, resolve_path
from graph_engine.engine.graph import GraphModel
from graph_engine.engine.models import (
    FALSE_CONDITION,
    TRUE_CONDITION,
    Edge,
    Node,
    NodeType,
    WorkflowDefinition,
)
from graph_engine.engine.state import (
    ErrorKind,
    ExecutionErrorRecord,
    ExecutionState,
    ExecutionStatus,
)
from graph_engine.engine.validator import ValidationEngine, validation_engine
from graph_engine.exceptions import (
    ConditionSyntaxError,
    GraphStructureError,
    NodeExecutionError,
    NodeTimeoutError,
    OperationNotFoundError,
)
from graph_engine.operations.registry import OperationRegistry, operation_registry
from graph_engine.storage.memory import ExecutionStore


logger = logging.getLogger(__name__)


MERGE_STRATEGIES = ("combine", "first", "last", "list")


@dataclass
class ExecutionOptions:
    """
    Per-run options.

    Attributes:
        node_timeout: Seconds a single node may run (None or 0 disables);
            a node's `config.timeout` overrides it
        run_timeout: Seconds the whole run may take (None or 0 disables)
        validate_definition: Refuse to run definitions that fail validation
        max_steps: Upper bound on node steps per run
        execution_id: Explicit id for the run (generated if not provided)
    """
    node_timeout: Optional[float] = field(default_factory=lambda: settings.NODE_TIMEOUT)
    run_timeout: Optional[float] = field(default_factory=lambda: settings.EXECUTION_TIMEOUT)
    validate_definition: bool = True
    max_steps: int = field(default_factory=lambda: settings.MAX_NODE_STEPS)
    execution_id: Optional[str] = None


@dataclass
class ExecutionResult:
    """Immediate result of `execute_workflow`."""
    success: bool
    execution_id: Optional[str]
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "execution_id": self.execution_id,
            "error": self.error,
        }


class _RunStopped(Exception):
    """The run reached a terminal status; the current token stops."""


class _WorkflowRun:
    """
    Bookkeeping for one background run.

    All token accounting happens on the event loop thread, so the counters
    need no lock. The ExecutionState itself is only touched through the
    store's lock.
    """

    def __init__(
        self,
        graph: GraphModel,
        execution_id: str,
        store: ExecutionStore,
        registry: OperationRegistry,
        options: ExecutionOptions,
    ):
        self.graph = graph
        self.execution_id = execution_id
        self.store = store
        self.registry = registry
        self.options = options

        self.loop = asyncio.get_running_loop()
        self.done = asyncio.Event()

        # node id -> number of tokens positioned there (queued or running)
        self._active: Counter = Counter()
        # join id -> arrivals not yet combined, as (source node id, output)
        self._pending: Dict[str, List[Tuple[str, Any]]] = {}
        self._fired: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._steps = 0

        self._joins: Dict[str, Set[str]] = {
            node.id: graph.ancestors(node.id)
            for node in graph.nodes
            if node.is_merge or len(graph.incoming(node.id)) > 1
        }

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def start(self, start_node: str) -> None:
        with self._edit() as state:
            state.status = ExecutionStatus.RUNNING
        self._spawn(start_node)
        if self.options.run_timeout:
            self._track(asyncio.create_task(self._watchdog(self.options.run_timeout)))

    def signal_done(self) -> None:
        """Wake up waiters; safe to call from any thread."""
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.done.set)

    async def _watchdog(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self.done.wait(), timeout)
        except asyncio.TimeoutError:
            message = f"Execution exceeded timeout of {timeout}s"
            logger.error(f"[{self.execution_id}] {message}")
            self._fail_run(None, message, ErrorKind.TIMEOUT)

    # ------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------

    def _spawn(self, node_id: str, join_inputs: Optional[List[Tuple[str, Any]]] = None) -> None:
        self._active[node_id] += 1
        self._track(asyncio.create_task(self._walk(node_id, join_inputs)))

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _walk(self, node_id: str, join_inputs: Optional[List[Tuple[str, Any]]] = None) -> None:
        """Carry one token forward until it stops, joins, or the run ends."""
        holding: Optional[str] = node_id
        try:
            while holding is not None:
                if not self._is_running():
                    return
                node = self.graph.get_node(holding)
                output = None
                try:
                    output, updates = await self._execute_node(node, join_inputs)
                    targets = self._commit(node, output, updates)
                except NodeExecutionError as e:
                    targets = self._handle_failure(node, e)
                join_inputs = None
                holding = self._advance(holding, targets, output)
        except _RunStopped:
            return
        except Exception as e:
            logger.exception(f"[{self.execution_id}] Unexpected error at node '{holding}'")
            self._fail_run(holding, f"Internal error: {e}")
        finally:
            if holding is not None:
                self._active[holding] -= 1
                self._settle()

    def _advance(self, node_id: str, targets: List[str], output: Any) -> Optional[str]:
        """
        Move the token at node_id along targets.

        Returns the node this task continues with; other targets get their
        own task and joins record an arrival.
        """
        continue_with: Optional[str] = None
        for target in targets:
            if target in self._joins:
                self._arrive(target, node_id, output)
            elif continue_with is None:
                continue_with = target
                self._active[target] += 1
            else:
                self._spawn(target)

        self._active[node_id] -= 1
        self._settle()
        return continue_with

    def _arrive(self, join_id: str, source_id: str, output: Any) -> None:
        if join_id in self._fired and not self._waits_for_all(join_id):
            logger.warning(f"[{self.execution_id}] Discarding late arrival from '{source_id}' at '{join_id}'")
            return
        self._pending.setdefault(join_id, []).append((source_id, output))

    def _waits_for_all(self, join_id: str) -> bool:
        return bool(self.graph.get_node(join_id).config.get("waitForAll", True))

    def _join_ready(self, join_id: str) -> bool:
        if not self._waits_for_all(join_id):
            return True
        for ancestor in self._joins[join_id]:
            if self._active[ancestor] > 0 or ancestor in self._pending:
                return False
        return True

    def _settle(self) -> None:
        """Fire joins that are ready, then complete the run if nothing is left."""
        if not self._is_running():
            return

        fired = True
        while fired:
            fired = False
            for join_id in list(self._pending):
                if join_id in self._pending and self._join_ready(join_id):
                    arrivals = self._pending.pop(join_id)
                    self._fired.add(join_id)
                    logger.debug(
                        f"[{self.execution_id}] Join '{join_id}' fired with "
                        f"{[source for source, _ in arrivals]}"
                    )
                    self._spawn(join_id, arrivals)
                    fired = True

        if sum(self._active.values()) == 0 and not self._pending:
            self._complete()

    # ------------------------------------------------------------
    # Node execution
    # ------------------------------------------------------------

    async def _execute_node(
        self,
        node: Node,
        join_inputs: Optional[List[Tuple[str, Any]]],
    ) -> Tuple[Any, Dict[str, Any]]:
        """
        Run one node.

        Returns:
            The value edges are routed on, and the context writes to commit
        """
        with self._edit() as state:
            if state.is_terminal:
                raise _RunStopped()
            state.current_node = node.id
            context = dict(state.context)

        self._steps += 1
        if self._steps > self.options.max_steps:
            self._fail_run(node.id, f"Exceeded maximum of {self.options.max_steps} node steps")
            raise _RunStopped()

        logger.info(f"[{self.execution_id}] Executing node '{node.id}' ({node.type.value})")
        config = dict(node.config)
        if join_inputs is not None:
            config["branches"] = self._combine(node, join_inputs)

        output = None
        if node.operation:
            output = await self._call_operation(node, context, config)
        elif join_inputs is not None:
            output = config["branches"]

        updates: Dict[str, Any] = {}
        if output is not None:
            updates[self._output_key(node)] = output

        if node.type == NodeType.SWITCH:
            context.update(updates)
            value = resolve_path(context, str(config.get("field", "")))
            updates[node.id] = value
            return value, updates

        if node.type == NodeType.IF:
            if not node.data.condition:
                if self._routes_on_outcome(node):
                    raise NodeExecutionError(node.id, f"Decision node '{node.id}' has no condition")
                # Routed by the expressions on its edges
                return output, updates
            context.update(updates)
            try:
                outcome = evaluate_condition(node.data.condition, context)
            except ConditionSyntaxError as e:
                raise NodeExecutionError(node.id, e.message) from e
            updates[node.id] = outcome
            return outcome, updates

        return output, updates

    async def _call_operation(self, node: Node, context: Dict[str, Any], config: Dict[str, Any]) -> Any:
        operation = self.registry.get(node.operation)
        if operation is None:
            raise OperationNotFoundError(node.id, node.operation)

        timeout = config.get("timeout", self.options.node_timeout)
        try:
            if timeout:
                return await asyncio.wait_for(operation.execute(context, config), float(timeout))
            return await operation.execute(context, config)
        except asyncio.TimeoutError as e:
            raise NodeTimeoutError(node.id, f"Node '{node.id}' timed out after {timeout}s") from e
        except NodeExecutionError:
            raise
        except Exception as e:
            raise NodeExecutionError(node.id, str(e) or type(e).__name__) from e

    def _combine(self, node: Node, arrivals: List[Tuple[str, Any]]) -> Any:
        strategy = node.config.get("strategy", "combine")
        if strategy == "combine":
            return {source: output for source, output in arrivals}
        if strategy == "first":
            return arrivals[0][1]
        if strategy == "last":
            return arrivals[-1][1]
        if strategy == "list":
            return [output for _, output in arrivals]
        raise NodeExecutionError(
            node.id,
            f"Unknown merge strategy '{strategy}'. Valid strategies: {list(MERGE_STRATEGIES)}",
        )

    def _output_key(self, node: Node) -> str:
        key = node.config.get("outputKey")
        if not key and node.operation:
            operation = self.registry.get(node.operation)
            key = operation.output_key if operation else None
        if not key and node.type.is_decision:
            # The node id holds the decision outcome or switch value
            return f"{node.id}_output"
        return key or node.id

    def _routes_on_outcome(self, node: Node) -> bool:
        return any(
            edge.condition in (TRUE_CONDITION, FALSE_CONDITION)
            for edge in self.graph.outgoing(node.id)
        )

    def _commit(self, node: Node, output: Any, updates: Dict[str, Any]) -> List[str]:
        """Record a successful step and pick the edges to follow."""
        with self._edit() as state:
            if state.is_terminal:
                raise _RunStopped()
            state.context.update(updates)
            state.executed_nodes.append(node.id)
            context = dict(state.context)

        try:
            edges = self._eligible_edges(node, output, context)
        except ConditionSyntaxError as e:
            raise NodeExecutionError(node.id, e.message) from e

        targets = [edge.target for edge in edges]
        if node.is_split and isinstance(node.config.get("branches"), list):
            targets = [t for t in targets if t in node.config["branches"]]
        if not targets and node.type != NodeType.END:
            logger.debug(f"[{self.execution_id}] Path ends at '{node.id}' (no eligible edges)")
        return targets

    def _eligible_edges(self, node: Node, output: Any, context: Dict[str, Any]) -> List[Edge]:
        chosen: List[Edge] = []
        defaults: List[Edge] = []
        matched = False

        for edge in self.graph.outgoing(node.id):
            if edge.is_error_edge:
                continue
            if not edge.condition:
                chosen.append(edge)
            elif edge.is_default:
                defaults.append(edge)
            elif self._edge_matches(node, edge, output, context):
                chosen.append(edge)
                matched = True

        if not matched:
            chosen.extend(defaults)
        return chosen

    def _edge_matches(self, node: Node, edge: Edge, output: Any, context: Dict[str, Any]) -> bool:
        condition = edge.condition
        if node.type == NodeType.SWITCH:
            return condition == _case_label(output)
        if condition in (TRUE_CONDITION, FALSE_CONDITION):
            return bool(output) == (condition == TRUE_CONDITION)
        return evaluate_condition(condition, context)

    def _handle_failure(self, node: Node, error: NodeExecutionError) -> List[str]:
        """Record a node failure; follow its error edges or fail the run."""
        error_edges = [edge for edge in self.graph.outgoing(node.id) if edge.is_error_edge]
        record = ExecutionErrorRecord(node_id=node.id, message=error.message, kind=ErrorKind(error.kind))

        with self._edit() as state:
            if state.is_terminal:
                raise _RunStopped()
            state.errors.append(record)
            if error_edges:
                state.context["error"] = {
                    "node_id": node.id,
                    "message": error.message,
                    "kind": error.kind,
                }
            else:
                self._finish(state, ExecutionStatus.FAILED)

        if error_edges:
            logger.warning(
                f"[{self.execution_id}] Node '{node.id}' failed ({error.message}); "
                f"following error edge to {[e.target for e in error_edges]}"
            )
            return [edge.target for edge in error_edges]

        logger.error(f"[{self.execution_id}] Node '{node.id}' failed: {error.message}")
        raise _RunStopped()

    # ------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------

    @contextmanager
    def _edit(self):
        try:
            with self.store.edit(self.execution_id) as state:
                yield state
        except KeyError:
            # Discarded while running
            raise _RunStopped() from None

    def _is_running(self) -> bool:
        try:
            with self._edit() as state:
                return not state.is_terminal
        except _RunStopped:
            return False

    def _finish(self, state: ExecutionState, status: ExecutionStatus) -> None:
        state.status = status
        state.completed_at = datetime.now()
        self.signal_done()

    def _complete(self) -> None:
        try:
            with self._edit() as state:
                if state.is_terminal:
                    return
                self._finish(state, ExecutionStatus.COMPLETED)
                reached_end = any(
                    self.graph.get_node(n).type == NodeType.END for n in state.executed_nodes
                )
                executed = len(state.executed_nodes)
        except _RunStopped:
            return

        if not reached_end:
            logger.warning(f"[{self.execution_id}] Execution completed without reaching an end node")
        logger.info(f"[{self.execution_id}] Execution completed ({executed} nodes)")

    def _fail_run(self, node_id: Optional[str], message: str, kind: ErrorKind = ErrorKind.ERROR) -> None:
        try:
            with self._edit() as state:
                if state.is_terminal:
                    return
                state.errors.append(ExecutionErrorRecord(node_id=node_id, message=message, kind=kind))
                self._finish(state, ExecutionStatus.FAILED)
        except _RunStopped:
            return
        logger.error(f"[{self.execution_id}] Execution failed: {message}")


def _case_label(value: Any) -> str:
    if isinstance(value, bool):
        return TRUE_CONDITION if value else FALSE_CONDITION
    if value is None:
        return "null"
    return str(value)


class ExecutionEngine:
    """
    Runs workflow definitions in the background.

    Usage:
        engine = ExecutionEngine()
        result = await engine.execute_workflow(definition, {"id": "P1"})
        state = await engine.wait_for_completion(result.execution_id)
        print(state.status, state.executed_nodes)
    """

    def __init__(
        self,
        registry: Optional[OperationRegistry] = None,
        store: Optional[ExecutionStore] = None,
        validator: Optional[ValidationEngine] = None,
    ):
        self.registry = registry if registry is not None else operation_registry
        self.store = store if store is not None else ExecutionStore()
        self.validator = validator if validator is not None else validation_engine
        self._runs: Dict[str, _WorkflowRun] = {}

    async def execute_workflow(
        self,
        definition: Union[WorkflowDefinition, Dict[str, Any]],
        input_data: Optional[Dict[str, Any]] = None,
        options: Optional[ExecutionOptions] = None,
    ) -> ExecutionResult:
        """
        Start a run and return immediately.

        Args:
            definition: Workflow to run; the engine works on its own copy
            input_data: Exposed to nodes as `context["input"]`
            options: Timeouts, validation and step limits

        Returns:
            ExecutionResult. `success` is False when the run could not be
            started; the execution id is still returned when a state was
            registered for it.
        """
        options = options or ExecutionOptions()

        if isinstance(definition, WorkflowDefinition):
            definition = definition.model_copy(deep=True)
        else:
            try:
                definition = WorkflowDefinition.model_validate(deepcopy(definition))
            except PydanticValidationError as e:
                return ExecutionResult(success=False, execution_id=None, error=f"Malformed workflow definition: {e}")

        state = ExecutionState(
            execution_id=options.execution_id or str(uuid.uuid4()),
            workflow_id=definition.id,
            context={"input": deepcopy(input_data) if input_data is not None else {}},
        )
        try:
            self.store.add(state)
        except ValueError as e:
            return ExecutionResult(success=False, execution_id=state.execution_id, error=str(e))
        execution_id = state.execution_id

        if options.validate_definition:
            validation = self.validator.validate_workflow(definition)
            if not validation.is_valid:
                records = [
                    ExecutionErrorRecord(node_id=finding.node_id, message=finding.message)
                    for finding in validation.errors
                ]
                return self._reject(execution_id, records)

        try:
            graph = GraphModel.from_definition(definition)
        except GraphStructureError as e:
            return self._reject(execution_id, [ExecutionErrorRecord(message=e.message)])

        starts = graph.nodes_of_type(NodeType.START)
        if len(starts) != 1:
            message = f"Workflow must have exactly one start node, found {len(starts)}"
            return self._reject(execution_id, [ExecutionErrorRecord(message=message)])

        run = _WorkflowRun(graph, execution_id, self.store, self.registry, options)
        self._runs[execution_id] = run
        logger.info(f"[{execution_id}] Starting workflow '{definition.id}' ({definition.name})")
        run.start(starts[0].id)

        return ExecutionResult(success=True, execution_id=execution_id)

    def get_execution_state(self, execution_id: str) -> Optional[ExecutionState]:
        """Snapshot of a run (possibly still running), or None if unknown."""
        return self.store.get(execution_id)

    def cancel_execution(self, execution_id: str) -> bool:
        """
        Cancel a run. Nodes already running finish, but nothing new is
        dispatched and their results are discarded.

        Returns:
            True if a non-terminal run was cancelled
        """
        try:
            with self.store.edit(execution_id) as state:
                if state.is_terminal:
                    return False
                state.status = ExecutionStatus.CANCELLED
                state.completed_at = datetime.now()
        except KeyError:
            return False

        run = self._runs.get(execution_id)
        if run is not None:
            run.signal_done()
        logger.info(f"[{execution_id}] Execution cancelled")
        return True

    async def wait_for_completion(
        self,
        execution_id: str,
        timeout: Optional[float] = None,
    ) -> Optional[ExecutionState]:
        """
        Wait until a run is terminal (or the timeout elapses) and return
        its snapshot.
        """
        run = self._runs.get(execution_id)
        if run is not None:
            try:
                await asyncio.wait_for(run.done.wait(), timeout)
            except asyncio.TimeoutError:
                logger.debug(f"[{execution_id}] Still running after {timeout}s")
        return self.get_execution_state(execution_id)

    def list_executions(self, workflow_id: Optional[str] = None) -> List[ExecutionState]:
        if workflow_id is None:
            return self.store.list_all()
        return self.store.list_by_workflow(workflow_id)

    def discard_execution(self, execution_id: str) -> bool:
        """Forget a run, cancelling it first if it is still running."""
        self.cancel_execution(execution_id)
        self._runs.pop(execution_id, None)
        return self.store.delete(execution_id)

    def _reject(self, execution_id: str, records: List[ExecutionErrorRecord]) -> ExecutionResult:
        with self.store.edit(execution_id) as state:
            state.errors.extend(records)
            state.status = ExecutionStatus.FAILED
            state.completed_at = datetime.now()

        message = "; ".join(record.message for record in records)
        logger.warning(f"[{execution_id}] Workflow rejected: {message}")
        return ExecutionResult(success=False, execution_id=execution_id, error=message)


# Global engine instance
execution_engine = ExecutionEngine()
