"""
Tests for the ExecutionEngine.
"""

import asyncio
import logging

import pytest

from graph_engine.engine.builder import WorkflowBuilder
from graph_engine.engine.executor import ExecutionEngine, ExecutionOptions
from graph_engine.engine.models import WorkflowDefinition
from graph_engine.engine.state import ErrorKind, ExecutionStatus
from graph_engine.operations import operation_registry
from graph_engine.workflows.content_review import (
    CONTENT_REVIEW_WORKFLOW_ID,
    create_content_review_workflow,
    register_content_review_workflow,
)


def N(node_id, node_type, **data):
    data.setdefault("label", node_id)
    return {"id": node_id, "type": node_type, "data": data}


def E(source, target, condition=None):
    return {"id": f"{source}->{target}", "source": source, "target": target, "condition": condition}


def workflow(nodes, edges, workflow_id="wf"):
    return WorkflowDefinition.model_validate({
        "id": workflow_id,
        "name": "Test workflow",
        "nodes": nodes,
        "edges": edges,
    })


@pytest.fixture
def registry():
    registry = operation_registry.copy()

    @registry.register("explode")
    def explode(context, config):
        raise RuntimeError("boom")

    @registry.register("slow")
    async def slow(context, config):
        await asyncio.sleep(config.get("seconds", 1))
        return {"slept": True}

    return registry


@pytest.fixture
def engine(registry):
    return ExecutionEngine(registry=registry)


async def run_to_end(engine, definition, input_data=None, **options):
    result = await engine.execute_workflow(definition, input_data, ExecutionOptions(**options))
    assert result.success, result.error
    return await engine.wait_for_completion(result.execution_id, timeout=5)


# ============================================================
# Linear Execution Tests
# ============================================================

class TestLinearExecution:
    """Tests for simple sequential runs."""

    @pytest.mark.asyncio
    async def test_start_input_end(self, engine):
        """Test start -> dataInput -> end completes in order."""
        definition = workflow(
            [N("start", "start"), N("input", "dataInput"), N("end", "end")],
            [E("start", "input"), E("input", "end")],
        )
        state = await run_to_end(engine, definition, {"id": "P1"})

        assert state.status == ExecutionStatus.COMPLETED
        assert state.executed_nodes == ["start", "input", "end"]
        assert state.context["input"] == {"id": "P1"}
        assert state.errors == []
        assert state.completed_at is not None

    @pytest.mark.asyncio
    async def test_returns_immediately(self, engine):
        """Test that execute_workflow returns while the run is still in progress."""
        definition = workflow(
            [N("start", "start"), N("wait", "dataProcessor", operation="slow", config={"seconds": 0.05}),
             N("end", "end")],
            [E("start", "wait"), E("wait", "end")],
        )
        result = await engine.execute_workflow(definition, {})

        assert result.success
        assert engine.get_execution_state(result.execution_id).status == ExecutionStatus.RUNNING

        state = await engine.wait_for_completion(result.execution_id, timeout=5)
        assert state.status == ExecutionStatus.COMPLETED
        assert state.context["wait"] == {"slept": True}

    @pytest.mark.asyncio
    async def test_output_keys(self, engine):
        """Test that outputs land under outputKey, else under the node id."""
        definition = workflow(
            [
                N("start", "start"),
                N("upper", "dataProcessor", operation="transform",
                  config={"field": "name", "value": "uppercase", "outputKey": "formatted"}),
                N("check", "dataProcessor", operation="validate", config={"field": "name", "rules": ["required"]}),
                N("end", "end"),
            ],
            [E("start", "upper"), E("upper", "check"), E("check", "end")],
        )
        state = await run_to_end(engine, definition, {"name": "ada"})

        assert state.context["formatted"] == {"name": "ADA"}
        assert state.context["check"] == {"valid": True, "errors": []}
        assert "start" not in state.context

    @pytest.mark.asyncio
    async def test_input_is_copied(self, engine):
        input_data = {"tags": ["a"]}
        definition = workflow([N("start", "start"), N("end", "end")], [E("start", "end")])
        result = await engine.execute_workflow(definition, input_data)
        input_data["tags"].append("b")

        state = await engine.wait_for_completion(result.execution_id, timeout=5)
        assert state.context["input"] == {"tags": ["a"]}


# ============================================================
# Conditional Routing Tests
# ============================================================

def decision_workflow():
    return workflow(
        [
            N("start", "start"),
            N("check", "if", condition="input.risk == 'high'"),
            N("alert", "notification", operation="alert", config={"message": "High risk"}),
            N("log", "dataOutput", operation="log", config={"message": "Low risk"}),
            N("end", "end"),
        ],
        [E("start", "check"), E("check", "alert", "true"), E("check", "log", "false"),
         E("alert", "end"), E("log", "end")],
    )


class TestConditionalRouting:
    """Tests for decision nodes and conditional edges."""

    @pytest.mark.asyncio
    async def test_true_branch_only(self, engine):
        state = await run_to_end(engine, decision_workflow(), {"risk": "high"})

        assert state.status == ExecutionStatus.COMPLETED
        assert state.executed_nodes == ["start", "check", "alert", "end"]
        assert state.context["check"] is True

    @pytest.mark.asyncio
    async def test_false_branch_only(self, engine):
        state = await run_to_end(engine, decision_workflow(), {"risk": "low"})

        assert state.executed_nodes == ["start", "check", "log", "end"]
        assert "alert" not in state.executed_nodes
        assert state.context["check"] is False

    @pytest.mark.asyncio
    async def test_expression_edges_with_else(self, engine):
        definition = workflow(
            [N("start", "start"), N("triage", "dataInput"), N("senior", "dataProcessor"),
             N("minor", "dataProcessor"), N("adult", "dataProcessor"), N("end", "end")],
            [E("start", "triage"),
             E("triage", "senior", "input.age >= 65"),
             E("triage", "minor", "input.age < 18"),
             E("triage", "adult", "else"),
             E("senior", "end"), E("minor", "end"), E("adult", "end")],
        )
        adult = await run_to_end(engine, definition, {"age": 30})
        senior = await run_to_end(engine, definition, {"age": 70})

        assert adult.executed_nodes == ["start", "triage", "adult", "end"]
        assert senior.executed_nodes == ["start", "triage", "senior", "end"]

    @pytest.mark.asyncio
    async def test_if_without_condition_routes_on_edge_expressions(self, engine):
        definition = workflow(
            [N("start", "start"), N("check", "if"), N("hi", "dataProcessor"),
             N("lo", "dataProcessor"), N("end", "end")],
            [E("start", "check"),
             E("check", "hi", "input.value > 10"),
             E("check", "lo", "else"),
             E("hi", "end"), E("lo", "end")],
        )
        high = await run_to_end(engine, definition, {"value": 15})
        low = await run_to_end(engine, definition, {"value": 3})

        assert high.status == ExecutionStatus.COMPLETED
        assert high.executed_nodes == ["start", "check", "hi", "end"]
        assert low.status == ExecutionStatus.COMPLETED
        assert low.executed_nodes == ["start", "check", "lo", "end"]

    @pytest.mark.asyncio
    async def test_if_operation_output_kept_beside_outcome(self, engine):
        definition = workflow(
            [
                N("start", "start"),
                N("check", "if", operation="validate", condition="check_output.valid",
                  config={"field": "name", "rules": ["required"]}),
                N("alert", "notification", operation="alert", config={"message": "Named"}),
                N("log", "dataOutput", operation="log", config={"message": "Anonymous"}),
                N("end", "end"),
            ],
            [E("start", "check"), E("check", "alert", "true"), E("check", "log", "false"),
             E("alert", "end"), E("log", "end")],
        )
        state = await run_to_end(engine, definition, {"name": "ada"})

        assert state.context["check"] is True
        assert state.context["check_output"] == {"valid": True, "errors": []}
        assert state.executed_nodes == ["start", "check", "alert", "end"]

    @pytest.mark.asyncio
    async def test_switch(self, engine):
        definition = workflow(
            [N("start", "start"), N("route", "switch", config={"field": "input.priority"}),
             N("urgent", "notification"), N("normal", "dataOutput"), N("end", "end")],
            [E("start", "route"), E("route", "urgent", "high"), E("route", "normal", "default"),
             E("urgent", "end"), E("normal", "end")],
        )
        high = await run_to_end(engine, definition, {"priority": "high"})
        low = await run_to_end(engine, definition, {"priority": "low"})

        assert high.executed_nodes == ["start", "route", "urgent", "end"]
        assert high.context["route"] == "high"
        assert low.executed_nodes == ["start", "route", "normal", "end"]

    @pytest.mark.asyncio
    async def test_abandoned_path_completes(self, engine, caplog):
        """Test that a decision with no eligible branch ends the run without an end node."""
        definition = workflow(
            [N("start", "start"), N("check", "if", condition="input.ok"), N("end", "end")],
            [E("start", "check"), E("check", "end", "true")],
        )
        with caplog.at_level(logging.WARNING):
            state = await run_to_end(engine, definition, {"ok": False})

        assert state.status == ExecutionStatus.COMPLETED
        assert state.executed_nodes == ["start", "check"]
        assert "without reaching an end node" in caplog.text


# ============================================================
# Parallel Branch Tests
# ============================================================

def split_workflow(merge_config=None, delays=(0.03, 0.01, 0.02)):
    nodes = [N("start", "start"), N("fan", "split", operation="split", config={"waitForAll": True})]
    edges = [E("start", "fan")]
    for name, seconds in zip(("a", "b", "c"), delays):
        nodes.append(N(name, "dataProcessor", operation="slow", config={"seconds": seconds}))
        edges += [E("fan", name), E(name, "join")]
    nodes += [N("join", "merge", operation="merge", config=merge_config or {}), N("end", "end")]
    edges.append(E("join", "end"))
    return workflow(nodes, edges)


class TestParallelBranches:
    """Tests for fan-out and fan-in."""

    @pytest.mark.asyncio
    async def test_split_and_wait_for_all_merge(self, engine):
        """Test that every branch finishes before the merge runs."""
        state = await run_to_end(engine, split_workflow())

        assert state.status == ExecutionStatus.COMPLETED
        executed = state.executed_nodes
        assert executed.count("join") == 1
        for branch in ("a", "b", "c"):
            assert executed.index(branch) < executed.index("join")
        assert executed[-1] == "end"
        assert state.context["join"] == {"a": {"slept": True}, "b": {"slept": True}, "c": {"slept": True}}

    @pytest.mark.asyncio
    async def test_branches_run_concurrently(self, engine):
        loop = asyncio.get_running_loop()
        started = loop.time()
        await run_to_end(engine, split_workflow(delays=(0.2, 0.2, 0.2)))
        assert loop.time() - started < 0.5

    @pytest.mark.asyncio
    async def test_list_strategy(self, engine):
        state = await run_to_end(engine, split_workflow({"strategy": "list"}))
        assert state.context["join"] == [{"slept": True}] * 3

    @pytest.mark.asyncio
    async def test_first_arrival_merge(self, engine):
        """Test that without waitForAll the merge fires once and stragglers are discarded."""
        definition = workflow(
            [N("start", "start"), N("fan", "split"),
             N("fast", "dataProcessor", operation="transform", config={"field": "who", "value": "fast"}),
             N("slow", "dataProcessor", operation="slow", config={"seconds": 0.05}),
             N("join", "merge", config={"waitForAll": False, "strategy": "first"}),
             N("end", "end")],
            [E("start", "fan"), E("fan", "fast"), E("fan", "slow"),
             E("fast", "join"), E("slow", "join"), E("join", "end")],
        )
        state = await run_to_end(engine, definition)

        assert state.status == ExecutionStatus.COMPLETED
        assert state.executed_nodes.count("join") == 1
        assert state.executed_nodes.count("end") == 1
        assert state.context["join"] == {"who": "fast"}
        assert "slow" in state.executed_nodes

    @pytest.mark.asyncio
    async def test_implicit_fan_out(self, engine):
        """Test that several unconditional edges fan out without a split node."""
        definition = workflow(
            [N("start", "start"), N("b", "dataProcessor"), N("c", "dataProcessor"), N("end", "end")],
            [E("start", "b"), E("start", "c"), E("b", "end"), E("c", "end")],
        )
        state = await run_to_end(engine, definition)

        assert sorted(state.executed_nodes[1:3]) == ["b", "c"]
        assert state.executed_nodes[-1] == "end"
        assert state.executed_nodes.count("end") == 1

    @pytest.mark.asyncio
    async def test_unknown_strategy_fails(self, engine):
        state = await run_to_end(engine, split_workflow({"strategy": "zip"}))

        assert state.status == ExecutionStatus.FAILED
        assert state.errors[0].node_id == "join"
        assert "zip" in state.errors[0].message


# ============================================================
# Error Handling Tests
# ============================================================

class TestErrorHandling:
    """Tests for node failures, error edges and timeouts."""

    @pytest.mark.asyncio
    async def test_error_edge_recovers(self, engine):
        """Test that an unregistered operation with an error edge degrades to the fallback."""
        definition = workflow(
            [N("start", "start"), N("process", "dataProcessor", operation="does_not_exist"),
             N("recover", "fallback", operation="fallback", config={"value": "default"}),
             N("end", "end")],
            [E("start", "process"), E("process", "end"), E("process", "recover", "error"),
             E("recover", "end")],
        )
        state = await run_to_end(engine, definition)

        assert state.status == ExecutionStatus.COMPLETED
        assert len(state.errors) == 1
        assert state.errors[0].node_id == "process"
        assert "does_not_exist" in state.errors[0].message
        assert state.executed_nodes == ["start", "recover", "end"]
        assert state.context["error"]["node_id"] == "process"
        assert state.context["recover"]["recovered"] is True

    @pytest.mark.asyncio
    async def test_failure_without_error_edge(self, engine):
        definition = workflow(
            [N("start", "start"), N("process", "dataProcessor", operation="explode"),
             N("after", "dataOutput"), N("end", "end")],
            [E("start", "process"), E("process", "after"), E("after", "end")],
        )
        state = await run_to_end(engine, definition)

        assert state.status == ExecutionStatus.FAILED
        assert state.executed_nodes == ["start"]
        assert len(state.errors) == 1
        assert state.errors[0].message == "boom"
        assert state.errors[0].kind == ErrorKind.ERROR
        assert state.completed_at is not None

    @pytest.mark.asyncio
    async def test_failed_branch_discards_others(self, engine):
        """Test that results of in-flight branches are discarded once the run failed."""
        definition = workflow(
            [N("start", "start"), N("fan", "split"),
             N("bad", "dataProcessor", operation="explode"),
             N("good", "dataProcessor", operation="slow", config={"seconds": 0.05}),
             N("join", "merge"), N("end", "end")],
            [E("start", "fan"), E("fan", "bad"), E("fan", "good"),
             E("bad", "join"), E("good", "join"), E("join", "end")],
        )
        result = await engine.execute_workflow(definition, {})
        state = await engine.wait_for_completion(result.execution_id, timeout=5)
        assert state.status == ExecutionStatus.FAILED

        await asyncio.sleep(0.1)
        state = engine.get_execution_state(result.execution_id)
        assert state.status == ExecutionStatus.FAILED
        assert "good" not in state.executed_nodes
        assert "good" not in state.context

    @pytest.mark.asyncio
    async def test_node_timeout(self, engine):
        definition = workflow(
            [N("start", "start"), N("wait", "dataProcessor", operation="slow", config={"seconds": 1, "timeout": 0.05}),
             N("end", "end")],
            [E("start", "wait"), E("wait", "end")],
        )
        state = await run_to_end(engine, definition)

        assert state.status == ExecutionStatus.FAILED
        assert state.errors[0].kind == ErrorKind.TIMEOUT
        assert state.errors[0].node_id == "wait"

    @pytest.mark.asyncio
    async def test_node_timeout_follows_error_edge(self, engine):
        definition = workflow(
            [N("start", "start"), N("wait", "dataProcessor", operation="slow", config={"seconds": 1}),
             N("recover", "fallback", operation="fallback"), N("end", "end")],
            [E("start", "wait"), E("wait", "end"), E("wait", "recover", "error"), E("recover", "end")],
        )
        state = await run_to_end(engine, definition, node_timeout=0.05)

        assert state.status == ExecutionStatus.COMPLETED
        assert state.context["error"]["kind"] == "timeout"
        assert "recover" in state.executed_nodes

    @pytest.mark.asyncio
    async def test_run_timeout(self, engine):
        definition = workflow(
            [N("start", "start"), N("wait", "dataProcessor", operation="slow", config={"seconds": 0.3}),
             N("end", "end")],
            [E("start", "wait"), E("wait", "end")],
        )
        state = await run_to_end(engine, definition, run_timeout=0.05)

        assert state.status == ExecutionStatus.FAILED
        assert state.errors[0].kind == ErrorKind.TIMEOUT
        assert state.errors[0].node_id is None

    @pytest.mark.asyncio
    async def test_max_steps(self, engine):
        definition = workflow(
            [N("start", "start"), N("a", "dataProcessor"), N("b", "dataProcessor"), N("end", "end")],
            [E("start", "a"), E("a", "b"), E("b", "a", "input.loop"), E("b", "end", "else")],
        )
        state = await run_to_end(engine, definition, {"loop": True}, validate_definition=False, max_steps=10)

        assert state.status == ExecutionStatus.FAILED
        assert "maximum of 10" in state.errors[-1].message


# ============================================================
# Rejection Tests
# ============================================================

class TestRejection:
    """Tests for definitions that never start."""

    @pytest.mark.asyncio
    async def test_invalid_definition(self, engine):
        definition = workflow(
            [N("start", "start"), N("a", "dataProcessor"), N("b", "dataProcessor"), N("end", "end")],
            [E("start", "a"), E("a", "b"), E("b", "a"), E("b", "end")],
        )
        result = await engine.execute_workflow(definition, {})

        assert not result.success
        assert "cycle" in result.error
        state = engine.get_execution_state(result.execution_id)
        assert state.status == ExecutionStatus.FAILED
        assert state.executed_nodes == []

    @pytest.mark.asyncio
    async def test_needs_single_start_without_validation(self, engine):
        definition = workflow(
            [N("start", "start"), N("start2", "start"), N("end", "end")],
            [E("start", "end"), E("start2", "end")],
        )
        result = await engine.execute_workflow(definition, {}, ExecutionOptions(validate_definition=False))

        assert not result.success
        assert "exactly one start node" in result.error

    @pytest.mark.asyncio
    async def test_malformed_definition(self, engine):
        result = await engine.execute_workflow({"id": "x", "nodes": "nope"}, {})

        assert not result.success
        assert result.execution_id is None
        assert "Malformed" in result.error

    @pytest.mark.asyncio
    async def test_duplicate_execution_id(self, engine):
        definition = workflow([N("start", "start"), N("end", "end")], [E("start", "end")])
        first = await engine.execute_workflow(definition, {}, ExecutionOptions(execution_id="run-1"))
        second = await engine.execute_workflow(definition, {}, ExecutionOptions(execution_id="run-1"))

        assert first.success
        assert not second.success
        assert second.execution_id == "run-1"


# ============================================================
# State Registry Tests
# ============================================================

class TestExecutionRegistry:
    """Tests for state snapshots, cancellation and discarding."""

    @pytest.mark.asyncio
    async def test_snapshots_are_stable(self, engine):
        """Test that repeated reads without new dispatch return equal, independent snapshots."""
        definition = workflow([N("start", "start"), N("end", "end")], [E("start", "end")])
        state = await run_to_end(engine, definition, {"id": "P1"})

        first = engine.get_execution_state(state.execution_id)
        second = engine.get_execution_state(state.execution_id)
        assert first == second

        first.executed_nodes.append("tampered")
        first.context["input"]["id"] = "changed"
        assert engine.get_execution_state(state.execution_id) == second

    @pytest.mark.asyncio
    async def test_unknown_execution(self, engine):
        assert engine.get_execution_state("missing") is None
        assert engine.cancel_execution("missing") is False
        assert await engine.wait_for_completion("missing") is None

    @pytest.mark.asyncio
    async def test_cancel(self, engine):
        """Test that cancellation stops dispatch and discards in-flight results."""
        definition = workflow(
            [N("start", "start"), N("wait", "dataProcessor", operation="slow", config={"seconds": 0.1}),
             N("after", "dataOutput"), N("end", "end")],
            [E("start", "wait"), E("wait", "after"), E("after", "end")],
        )
        result = await engine.execute_workflow(definition, {})
        await asyncio.sleep(0.02)

        assert engine.cancel_execution(result.execution_id) is True
        assert engine.cancel_execution(result.execution_id) is False

        state = await engine.wait_for_completion(result.execution_id, timeout=5)
        assert state.status == ExecutionStatus.CANCELLED

        await asyncio.sleep(0.15)
        state = engine.get_execution_state(result.execution_id)
        assert state.status == ExecutionStatus.CANCELLED
        assert state.executed_nodes == ["start"]
        assert "wait" not in state.context

    @pytest.mark.asyncio
    async def test_list_and_discard(self, engine):
        one = workflow([N("start", "start"), N("end", "end")], [E("start", "end")], workflow_id="one")
        two = workflow([N("start", "start"), N("end", "end")], [E("start", "end")], workflow_id="two")
        first = await run_to_end(engine, one)
        await run_to_end(engine, two)

        assert len(engine.list_executions()) == 2
        assert [s.workflow_id for s in engine.list_executions("one")] == ["one"]

        assert engine.discard_execution(first.execution_id) is True
        assert engine.discard_execution(first.execution_id) is False
        assert engine.get_execution_state(first.execution_id) is None
        assert len(engine.list_executions()) == 1


# ============================================================
# Sample Workflow Tests
# ============================================================

class TestContentReviewWorkflow:
    """End-to-end runs of the sample content review workflow."""

    @pytest.fixture
    def definition(self):
        builder = WorkflowBuilder()
        return builder.get_workflow(create_content_review_workflow(builder))

    def test_factory_stores_in_given_builder(self):
        builder = WorkflowBuilder()
        workflow_id = create_content_review_workflow(builder)

        assert workflow_id in builder
        assert len(builder) == 1
        assert builder.get_workflow(workflow_id).name

    def test_register_is_idempotent(self):
        builder = WorkflowBuilder()

        assert register_content_review_workflow(builder) == CONTENT_REVIEW_WORKFLOW_ID
        assert register_content_review_workflow(builder) == CONTENT_REVIEW_WORKFLOW_ID
        assert CONTENT_REVIEW_WORKFLOW_ID in builder
        assert len(builder) == 1

    @pytest.mark.asyncio
    async def test_low_risk_is_prepared(self, engine, definition):
        state = await run_to_end(engine, definition, {
            "title": "Seasonal allergies",
            "category": "Wellness",
            "content": "Simple steps to reduce pollen at home.",
        })

        assert state.status == ExecutionStatus.COMPLETED
        assert state.context["aiResult"]["riskLevel"] == "low"
        assert state.context["prepared"] == {"title": "SEASONAL ALLERGIES", "category": "wellness"}
        assert "escalate" not in state.executed_nodes
        assert state.executed_nodes[-2:] == ["publish", "end"]

    @pytest.mark.asyncio
    async def test_high_risk_is_escalated(self, engine, definition):
        state = await run_to_end(engine, definition, {
            "title": "Dosage guide",
            "category": "Medicine",
            "content": "The recommended dosage depends on weight.",
        })

        assert state.status == ExecutionStatus.COMPLETED
        assert state.executed_nodes == ["start", "intake", "assess", "risk", "escalate", "end-escalated"]
        assert state.context["escalate"]["severity"] == "critical"

    @pytest.mark.asyncio
    async def test_invalid_submission_is_rejected(self, engine, definition):
        state = await run_to_end(engine, definition, {"content": "Too short"})

        assert state.status == ExecutionStatus.COMPLETED
        assert len(state.errors) == 1
        assert state.executed_nodes == ["start", "rejected", "end"]
        assert state.context["review"]["value"] == {"status": "rejected"}
