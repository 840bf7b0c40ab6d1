"""Tests for whole-graph and single-step runs."""

import time

import pytest
import requests

from botflow.core.exceptions import (
    AIGenerationError, CyclicGraphError, ExecutionEngineError, GraphValidationError, NodeExecutionError
)
from botflow.core.execution_engine import ExecutionEngine
from botflow.core.node_executor import NodeExecutor, NodeServices
from botflow.models.core import ExecutionStatusEnum, RunContext, RunMode, WorkflowDefinition

from fakes import FakeHttpClient, FakeTextGenerator, build_graph, edge, node


class TestFullGraphRuns:

    def test_single_message(self, engine):
        nodes, edges = build_graph([node("1", "mensagem", text="Oi")])

        trace = engine.run(nodes, edges)

        assert trace.lines() == ["Mensagem enviada: Oi"]
        assert trace.status == ExecutionStatusEnum.COMPLETED
        assert trace.mode == RunMode.FULL_GRAPH
        assert trace.completed_at is not None

    def test_message_wait_terminate_really_waits(self):
        engine = ExecutionEngine(NodeExecutor(NodeServices()), max_concurrent_executions=1)
        nodes, edges = build_graph(
            [
                node("A", "mensagem", text="Olá"),
                node("B", "aguardar", delay=1),
                node("C", "encerrar", endText="Fim"),
            ],
            [edge("A", "B"), edge("B", "C")]
        )

        started = time.monotonic()
        try:
            trace = engine.run(nodes, edges)
        finally:
            engine.shutdown()
        elapsed = time.monotonic() - started

        assert trace.lines() == ["Mensagem enviada: Olá", "Aguardou 1 segundos", "Fim"]
        assert trace.status == ExecutionStatusEnum.TERMINATED
        assert elapsed >= 1.0

    def test_unreachable_webhook_does_not_stop_the_run(self, services, sleep):
        services.http_client = FakeHttpClient(error=requests.ConnectionError("Failed to establish a new connection"))
        engine = ExecutionEngine(NodeExecutor(services), max_concurrent_executions=1)
        nodes, edges = build_graph(
            [
                node("1", "webhook", webhookUrl="http://unreachable.invalid/hook"),
                node("2", "message", text="still here"),
            ],
            [edge("1", "2")]
        )

        try:
            trace = engine.run(nodes, edges)
        finally:
            engine.shutdown()

        assert "error" in trace.lines()[0].lower()
        assert trace.entries[0].is_error
        assert trace.lines()[1] == "Mensagem enviada: still here"
        assert trace.status == ExecutionStatusEnum.COMPLETED

    def test_portuguese_webhook_error_line(self, engine, services):
        services.http_client = FakeHttpClient(error=requests.ConnectionError("recusado"))
        nodes, edges = build_graph([node("1", "webhook", webhookUrl="http://x"), node("2", "mensagem", text="ok")])

        trace = engine.run(nodes, edges)

        assert trace.lines() == ["Webhook error: recusado", "Mensagem enviada: ok"]
        assert trace.error_lines() == ["Webhook error: recusado"]
        assert trace.customer_lines() == ["Mensagem enviada: ok"]

    def test_one_entry_per_node_without_terminate(self, engine):
        nodes, edges = build_graph(
            [node(str(i), "mensagem", text=f"m{i}") for i in range(6)],
            [edge("0", "1"), edge("2", "3")]
        )

        trace = engine.run(nodes, edges)

        assert len(trace) == 6
        assert trace.status == ExecutionStatusEnum.COMPLETED

    def test_terminate_skips_remaining_nodes(self, engine):
        nodes, edges = build_graph(
            [node("1", "mensagem", text="a"), node("2", "encerrar", endText="Tchau"), node("3", "mensagem", text="b")],
            [edge("1", "2"), edge("2", "3")]
        )

        trace = engine.run(nodes, edges)

        assert trace.lines() == ["Mensagem enviada: a", "Tchau"]
        assert trace.status == ExecutionStatusEnum.TERMINATED

    def test_variables_flow_between_nodes(self, engine):
        nodes, edges = build_graph(
            [node("1", "variavel", varName="pedido", varValue=123), node("2", "mensagem", text="Pedido {{pedido}} confirmado")],
            [edge("1", "2")]
        )
        context = RunContext(recipient="5511", variables={})

        trace = engine.run(nodes, edges, context)

        assert trace.lines() == ["Variável pedido = 123", "Mensagem enviada: Pedido 123 confirmado"]
        assert context.variables["pedido"] == 123

    def test_unknown_types_do_not_stop_the_run(self, engine):
        nodes, edges = build_graph([node("1", "carrossel"), node("2", "mensagem", text="ok")])

        trace = engine.run(nodes, edges)

        assert trace.lines() == ["Não implementado: carrossel", "Mensagem enviada: ok"]

    def test_run_definition(self, engine):
        definition = WorkflowDefinition(nodes=[node("1", "mensagem", text="Oi")], edges=[])
        assert engine.run_definition(definition).lines() == ["Mensagem enviada: Oi"]

    def test_empty_graph(self, engine):
        trace = engine.run([], [])
        assert trace.lines() == []
        assert trace.status == ExecutionStatusEnum.COMPLETED


class TestFailedRuns:

    def test_cycle_raises_before_any_node_runs(self, engine, http_client):
        nodes, edges = build_graph(
            [node("A", "webhook", webhookUrl="http://a"), node("B", "webhook", webhookUrl="http://b")],
            [edge("A", "B"), edge("B", "A")]
        )

        with pytest.raises(CyclicGraphError):
            engine.run(nodes, edges)

        assert http_client.calls == []

    def test_dangling_edge_raises(self, engine):
        nodes, edges = build_graph([node("A", "mensagem")], [edge("A", "Z")])
        with pytest.raises(GraphValidationError):
            engine.run(nodes, edges)

    def test_ai_failure_halts_with_partial_trace(self, services):
        services.text_generator = FakeTextGenerator(error=AIGenerationError("rate limited"))
        engine = ExecutionEngine(NodeExecutor(services), max_concurrent_executions=1)
        nodes, edges = build_graph(
            [node("1", "mensagem", text="Oi"), node("2", "ia", prompt="?"), node("3", "mensagem", text="depois")],
            [edge("1", "2"), edge("2", "3")]
        )

        try:
            with pytest.raises(AIGenerationError) as exc_info:
                engine.run(nodes, edges, run_id="run-1")
        finally:
            engine.shutdown()

        partial = exc_info.value.partial_trace
        assert partial.run_id == "run-1"
        assert partial.lines() == ["Mensagem enviada: Oi"]
        assert partial.status == ExecutionStatusEnum.FAILED
        assert partial.error_message == "rate limited"
        assert exc_info.value.node_id == "2"
        assert exc_info.value.context["run_id"] == "run-1"

    def test_unexpected_failures_are_wrapped(self, engine, monkeypatch):
        def explode(node, context):
            raise KeyError("boom")

        monkeypatch.setattr(engine.node_executor, "execute", explode)
        nodes, edges = build_graph([node("1", "mensagem", text="Oi")])

        with pytest.raises(NodeExecutionError) as exc_info:
            engine.run(nodes, edges)

        assert exc_info.value.node_id == "1"
        assert isinstance(exc_info.value.__cause__, KeyError)
        assert exc_info.value.partial_trace.status == ExecutionStatusEnum.FAILED


class TestSingleStepRuns:

    @pytest.fixture
    def graph(self):
        return build_graph(
            [node("2", "mensagem", text="segundo"), node("1", "mensagem", text="primeiro")],
            [edge("1", "2")]
        )

    def test_runs_only_the_indexed_node(self, engine, graph):
        nodes, edges = graph

        first = engine.run(nodes, edges, mode=RunMode.SINGLE_STEP, step_index=0)
        second = engine.run(nodes, edges, mode=RunMode.SINGLE_STEP, step_index=1)

        assert first.lines() == ["Mensagem enviada: primeiro"]
        assert second.lines() == ["Mensagem enviada: segundo"]
        assert first.mode == RunMode.SINGLE_STEP

    @pytest.mark.parametrize("step_index", [-1, 2, 10])
    def test_out_of_range_index(self, engine, graph, step_index):
        nodes, edges = graph
        with pytest.raises(ExecutionEngineError):
            engine.run(nodes, edges, mode=RunMode.SINGLE_STEP, step_index=step_index)

    def test_terminate_step_is_terminated(self, engine):
        nodes, edges = build_graph([node("1", "encerrar", endText="Fim")])
        trace = engine.run(nodes, edges, mode=RunMode.SINGLE_STEP, step_index=0)
        assert trace.status == ExecutionStatusEnum.TERMINATED


class TestConcurrentRuns:

    def test_submitted_runs_are_independent(self, engine):
        futures = []
        for i in range(8):
            nodes, edges = build_graph(
                [node("1", "variavel", varName="n", varValue=i), node("2", "mensagem", text="n={{n}}")],
                [edge("1", "2")]
            )
            futures.append(engine.submit_run(nodes, edges, RunContext(variables={})))

        results = [future.result(timeout=10) for future in futures]

        for i, trace in enumerate(results):
            assert trace.lines()[-1] == f"Mensagem enviada: n={i}"
        assert len({trace.run_id for trace in results}) == 8

    def test_statistics(self, engine):
        stats = engine.get_execution_statistics()
        assert stats["max_concurrent_executions"] == 4
        assert stats["active_runs"] >= 0

    def test_submit_after_shutdown_fails(self, node_executor):
        engine = ExecutionEngine(node_executor, max_concurrent_executions=1)
        engine.shutdown()
        with pytest.raises(ExecutionEngineError):
            engine.submit_run([], [])
