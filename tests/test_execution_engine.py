"""Tests for the workflow execution engine."""

import asyncio

import pytest

from workflow_core.core.execution_engine import CancellationToken, ExecutionEngine, collect_updates
from workflow_core.models.core import (
    ExecutionConfig,
    ExecutionContext,
    Position,
    UpdateType,
    WorkflowEdge,
    WorkflowNode,
)


def _node(node_id, node_type, x=0.0, **data):
    return WorkflowNode(id=node_id, type=node_type, position=Position(x=x, y=0), data=data)


def _edge(source, target):
    return WorkflowEdge(id=f"{source}-{target}", source=source, target=target)


def _events(updates):
    return [(update.type, update.node_id) for update in updates]


@pytest.fixture
def linear_graph():
    """start -> javascript(input1 + 1) -> end."""
    nodes = [
        _node("S", "start"),
        _node("J", "javascript", code="return input1+1"),
        _node("E", "end"),
    ]
    edges = [_edge("S", "J"), _edge("J", "E")]
    return nodes, edges


class TestExecutionEngine:
    """Test cases for ExecutionEngine.execute_workflow."""

    @pytest.mark.asyncio
    async def test_linear_workflow(self, engine, linear_graph):
        """Values flow from the initial input through every node."""
        nodes, edges = linear_graph
        context = ExecutionContext(variables={"initialInput": 5})

        result = await engine.execute_workflow(nodes, edges, context)

        assert result.success is True
        assert result.error is None
        assert result.results == {"S": 5, "J": 6, "E": 6}

    @pytest.mark.asyncio
    async def test_update_order(self, engine, linear_graph):
        """Each node emits start then complete, followed by one complete event."""
        nodes, edges = linear_graph
        updates, on_update = collect_updates()

        await engine.execute_workflow(
            nodes, edges, ExecutionContext(variables={"initialInput": 1}), on_update=on_update
        )

        assert _events(updates) == [
            (UpdateType.NODE_START, "S"), (UpdateType.NODE_COMPLETE, "S"),
            (UpdateType.NODE_START, "J"), (UpdateType.NODE_COMPLETE, "J"),
            (UpdateType.NODE_START, "E"), (UpdateType.NODE_COMPLETE, "E"),
            (UpdateType.COMPLETE, None),
        ]
        assert [u.output for u in updates if u.type == UpdateType.NODE_COMPLETE] == [1, 2, 2]

    @pytest.mark.asyncio
    async def test_metrics(self, engine, linear_graph):
        """Metrics count every node and time each one."""
        nodes, edges = linear_graph

        result = await engine.execute_workflow(nodes, edges)

        assert result.metrics.total_nodes == 3
        assert result.metrics.executed_nodes == 3
        assert result.metrics.failed_nodes == 0
        assert set(result.metrics.node_execution_times) == {"S", "J", "E"}
        assert result.metrics.total_execution_time >= 0

    @pytest.mark.asyncio
    async def test_empty_workflow(self, engine):
        """An empty graph completes with no results."""
        updates, on_update = collect_updates()

        result = await engine.execute_workflow([], [], on_update=on_update)

        assert result.success is True
        assert result.results == {}
        assert _events(updates) == [(UpdateType.COMPLETE, None)]

    @pytest.mark.asyncio
    async def test_cycle_fails_before_any_node(self, engine):
        """A two-node cycle fails the run and names both nodes."""
        nodes = [_node("A", "javascript", code="return 1"), _node("B", "javascript", code="return 2")]
        edges = [_edge("A", "B"), _edge("B", "A")]
        updates, on_update = collect_updates()

        result = await engine.execute_workflow(nodes, edges, on_update=on_update)

        assert result.success is False
        assert result.results == {}
        assert result.error.startswith("Workflow contains cycles")
        assert "A" in result.error and "B" in result.error
        assert _events(updates) == [(UpdateType.ERROR, None)]
        assert updates[0].message == result.error

    @pytest.mark.asyncio
    async def test_node_failure_stops_the_run(self, engine):
        """A failing node emits node_error and fails the run with its ID."""
        nodes = [
            _node("S", "start"),
            _node("J", "javascript", code="return missing + 1"),
            _node("E", "end"),
        ]
        edges = [_edge("S", "J"), _edge("J", "E")]
        updates, on_update = collect_updates()

        result = await engine.execute_workflow(nodes, edges, on_update=on_update)

        assert result.success is False
        assert result.results == {}
        assert result.error.startswith("Node J failed: Script execution failed:")
        assert _events(updates) == [
            (UpdateType.NODE_START, "S"), (UpdateType.NODE_COMPLETE, "S"),
            (UpdateType.NODE_START, "J"), (UpdateType.NODE_ERROR, "J"),
            (UpdateType.ERROR, None),
        ]
        assert updates[3].error.startswith("Script execution failed:")
        assert result.metrics.failed_nodes == 1
        assert result.metrics.executed_nodes == 1

    @pytest.mark.asyncio
    async def test_unsupported_node_type(self, engine):
        """A node type without an executor fails the run."""
        nodes = [_node("S", "start"), _node("T", "textModel", model="openai/gpt-4o")]
        edges = [_edge("S", "T")]

        result = await engine.execute_workflow(nodes, edges)

        assert result.success is False
        assert result.error == "Node T failed: Node type 'textModel' is not supported; register an executor for it"

    @pytest.mark.asyncio
    async def test_abort_before_first_node(self, engine, linear_graph):
        """An already aborted token stops the run before any node starts."""
        nodes, edges = linear_graph
        token = CancellationToken()
        token.abort()
        updates, on_update = collect_updates()

        result = await engine.execute_workflow(nodes, edges, on_update=on_update, cancel_token=token)

        assert result.success is False
        assert result.error == "Execution aborted"
        assert _events(updates) == [(UpdateType.ERROR, None)]

    @pytest.mark.asyncio
    async def test_abort_mid_run(self, registry):
        """Aborting while a node runs prevents every later node from starting."""
        token = CancellationToken()

        @registry.register("tripwire")
        def run_tripwire(node, inputs, context):
            token.abort()
            return "tripped"

        engine = ExecutionEngine(registry=registry)
        nodes = [_node("S", "start"), _node("T", "tripwire"), _node("X", "end"), _node("Y", "end")]
        edges = [_edge("S", "T"), _edge("T", "X"), _edge("X", "Y")]
        updates, on_update = collect_updates()

        result = await engine.execute_workflow(nodes, edges, on_update=on_update, cancel_token=token)

        assert result.success is False
        assert result.error == "Execution aborted"
        assert result.results == {}
        started = [u.node_id for u in updates if u.type == UpdateType.NODE_START]
        assert started == ["S", "T"]
        assert updates[-1].type == UpdateType.ERROR

    @pytest.mark.asyncio
    async def test_inputs_follow_source_positions(self, engine):
        """input1 comes from the left-most source."""
        nodes = [
            _node("R", "javascript", x=400, code="return 'R'"),
            _node("L", "javascript", x=50, code="return 'L'"),
            _node("J", "javascript", x=200, code="return input1 + input2"),
        ]
        edges = [_edge("R", "J"), _edge("L", "J")]

        result = await engine.execute_workflow(nodes, edges)

        assert result.results["J"] == "LR"

    @pytest.mark.asyncio
    async def test_conditional_and_prompt_nodes(self, engine):
        """Built-in node types compose in one run."""
        nodes = [
            _node("S", "start", x=0),
            _node("C", "conditional", x=100, condition="input1 > 3"),
            _node("P", "prompt", x=200, prompt="value=$input1 passed=$input2"),
        ]
        edges = [_edge("S", "C"), _edge("S", "P"), _edge("C", "P")]

        result = await engine.execute_workflow(nodes, edges, ExecutionContext(variables={"initialInput": 7}))

        assert result.success is True
        assert result.results["C"] is True
        assert result.results["P"] == "value=7 passed=true"

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_break_the_run(self, engine, linear_graph):
        """A failing on_update callback is logged and ignored."""
        nodes, edges = linear_graph

        def on_update(update):
            raise RuntimeError("listener exploded")

        result = await engine.execute_workflow(nodes, edges, on_update=on_update)

        assert result.success is True

    @pytest.mark.asyncio
    async def test_input_graph_is_not_mutated(self, engine, linear_graph):
        """Running leaves the caller's nodes and edges untouched."""
        nodes, edges = linear_graph
        before = ([n.model_dump() for n in nodes], [e.model_dump() for e in edges])

        await engine.execute_workflow(nodes, edges, ExecutionContext(variables={"initialInput": 1}))

        assert ([n.model_dump() for n in nodes], [e.model_dump() for e in edges]) == before

    @pytest.mark.asyncio
    async def test_engine_is_reentrant(self, engine, linear_graph):
        """Concurrent runs on one engine do not share results."""
        nodes, edges = linear_graph

        first, second = await asyncio.gather(
            engine.execute_workflow(nodes, edges, ExecutionContext(variables={"initialInput": 1})),
            engine.execute_workflow(nodes, edges, ExecutionContext(variables={"initialInput": 10})),
        )

        assert first.results == {"S": 1, "J": 2, "E": 2}
        assert second.results == {"S": 10, "J": 11, "E": 11}


class TestExecutionLimits:
    """Test cases for per-node timeout and retries."""

    @pytest.mark.asyncio
    async def test_timeout_fails_the_node(self, registry):
        """A node exceeding the timeout fails the run."""
        @registry.register("slow")
        async def run_slow(node, inputs, context):
            await asyncio.sleep(1)
            return "late"

        engine = ExecutionEngine(registry=registry, config=ExecutionConfig(timeout=0.05))

        result = await engine.execute_workflow([_node("W", "slow")], [])

        assert result.success is False
        assert result.error == "Node W failed: timed out after 0.05s"

    @pytest.mark.asyncio
    async def test_fast_node_within_timeout(self, registry, linear_graph):
        """Nodes finishing in time are unaffected by the timeout."""
        nodes, edges = linear_graph
        engine = ExecutionEngine(registry=registry, config=ExecutionConfig(timeout=5))

        result = await engine.execute_workflow(nodes, edges, ExecutionContext(variables={"initialInput": 2}))

        assert result.results == {"S": 2, "J": 3, "E": 3}

    @pytest.mark.asyncio
    async def test_retries_recover_flaky_node(self, registry):
        """A node that fails fewer times than allowed eventually succeeds."""
        calls = []

        @registry.register("flaky")
        def run_flaky(node, inputs, context):
            calls.append(node.id)
            if len(calls) < 3:
                raise ConnectionError("temporary failure")
            return "ok"

        engine = ExecutionEngine(registry=registry, config=ExecutionConfig(max_retries=2))
        updates, on_update = collect_updates()

        result = await engine.execute_workflow([_node("F", "flaky")], [], on_update=on_update)

        assert result.success is True
        assert result.results == {"F": "ok"}
        assert len(calls) == 3
        assert _events(updates) == [
            (UpdateType.NODE_START, "F"), (UpdateType.NODE_COMPLETE, "F"), (UpdateType.COMPLETE, None)
        ]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, registry):
        """The last failure is reported once retries run out."""
        calls = []

        @registry.register("broken")
        def run_broken(node, inputs, context):
            calls.append(node.id)
            raise ValueError("still broken")

        engine = ExecutionEngine(registry=registry, config=ExecutionConfig(max_retries=1))

        result = await engine.execute_workflow([_node("B", "broken")], [])

        assert result.success is False
        assert result.error == "Node B failed: still broken"
        assert len(calls) == 2

    def test_invalid_limits(self):
        """Non-positive timeouts and negative retries are rejected."""
        with pytest.raises(ValueError):
            ExecutionConfig(timeout=0)
        with pytest.raises(ValueError):
            ExecutionConfig(max_retries=-1)


class TestCancellationToken:
    """Test cases for CancellationToken."""

    def test_abort(self):
        """A token reports abortion once tripped."""
        token = CancellationToken()
        assert token.is_aborted is False

        token.abort()
        token.abort()

        assert token.is_aborted is True
