"""Tests for per-type node execution."""

import pytest
import requests

from botflow.config import TraceLocale
from botflow.core.exceptions import AIGenerationError, ConfigurationError
from botflow.core.node_executor import NodeExecutor, NodeServices, display_value, interpolate
from botflow.models.core import Node, NodeType, RunContext

from fakes import FakeEmailQueue, FakeHttpClient, FakeQueryExecutor, FakeTextGenerator, RecordingSleep


def make_node(node_type, node_id="n1", **data):
    return Node(id=node_id, type=node_type, data=data)


@pytest.fixture
def context():
    return RunContext(recipient="5511999990000", variables={"nome": "Ana"})


class TestInterpolation:

    def test_known_placeholders_are_replaced(self):
        assert interpolate("Olá {{nome}}, {{ idade }} anos", {"nome": "Ana", "idade": 30}) == "Olá Ana, 30 anos"

    def test_unknown_placeholders_are_kept(self):
        assert interpolate("Olá {{desconhecido}}", {}) == "Olá {{desconhecido}}"

    def test_empty_template(self):
        assert interpolate(None, {"a": 1}) == ""

    def test_display_value(self):
        assert display_value(1.0) == "1"
        assert display_value(1.5) == "1.5"
        assert display_value(True) == "true"
        assert display_value(None) == ""
        assert display_value([1, "a"]) == '[1, "a"]'


class TestMessageNodes:

    def test_message(self, node_executor, context):
        outcome = node_executor.execute(make_node("mensagem", text="Oi"), context)
        assert outcome.output == "Mensagem enviada: Oi"
        assert outcome.reply == "Oi"
        assert not outcome.is_error
        assert not outcome.halt

    def test_message_interpolates_variables(self, node_executor, context):
        outcome = node_executor.execute(make_node("message", text="Oi {{nome}}"), context)
        assert outcome.output == "Mensagem enviada: Oi Ana"

    def test_numeric_text_is_accepted(self, node_executor, context):
        outcome = node_executor.execute(make_node("mensagem", text=42), context)
        assert outcome.output == "Mensagem enviada: 42"

    def test_question_defaults_to_yes(self, node_executor, context):
        outcome = node_executor.execute(make_node("pergunta", text="Confirma?"), context)
        assert outcome.output == "Pergunta respondida: Sim"
        assert outcome.reply == "Confirma?\n1. Sim\n2. Não"
        assert context.variables["last_answer"] == "Sim"

    def test_question_uses_first_option(self, node_executor, context):
        outcome = node_executor.execute(make_node("pergunta", text="Cor?", options=" Azul , Verde,"), context)
        assert outcome.output == "Pergunta respondida: Azul"
        assert outcome.reply == "Cor?\n1. Azul\n2. Verde"

    def test_question_accepts_option_list(self, node_executor, context):
        outcome = node_executor.execute(make_node("question", options=["Manhã", "Tarde"]), context)
        assert outcome.output == "Pergunta respondida: Manhã"

    def test_question_menu_has_title_and_footer(self, node_executor, context):
        outcome = node_executor.execute(
            make_node("pergunta", text="Horário?", options="Manhã,Tarde", title="Agenda de {{nome}}", footer="Responda com o número"),
            context
        )
        assert outcome.reply == "Agenda de Ana\nHorário?\n1. Manhã\n2. Tarde\nResponda com o número"

    def test_send_file(self, node_executor, context):
        outcome = node_executor.execute(make_node("arquivo", fileUrl="https://cdn.example.com/a.pdf"), context)
        assert outcome.output == "Arquivo enviado: https://cdn.example.com/a.pdf"
        assert outcome.reply == "https://cdn.example.com/a.pdf"

    def test_terminate_halts(self, node_executor, context):
        outcome = node_executor.execute(make_node("encerrar", endText="Fim, {{nome}}"), context)
        assert outcome.output == "Fim, Ana"
        assert outcome.reply == "Fim, Ana"
        assert outcome.halt


class TestConditionNode:

    def test_condition_trace_and_result(self, node_executor):
        context = RunContext(variables={"idade": 20})
        outcome = node_executor.execute(make_node("condicao", condition="idade > 18"), context)
        assert outcome.output == "Condição idade > 18 avaliada"
        assert context.variables["last_condition"] is True

    def test_condition_errors_do_not_raise(self, node_executor, context):
        outcome = node_executor.execute(make_node("condicao", condition="idade >"), context)
        assert outcome.output == "Condição idade > avaliada"
        assert not outcome.is_error
        assert "last_condition" not in context.variables


class TestAINode:

    def test_generated_text_is_output_and_stored(self, node_executor, text_generator, context):
        outcome = node_executor.execute(make_node("ia", prompt="Saudar {{nome}}", maxTokens="", temperature=0.2), context)

        assert outcome.output == "Resposta gerada"
        assert outcome.reply == "Resposta gerada"
        assert context.variables["ai_output"] == "Resposta gerada"
        assert text_generator.calls == [{"prompt": "Saudar Ana", "max_tokens": 150, "temperature": 0.2}]

    def test_provider_error_propagates_with_node_id(self, services, context):
        services.text_generator = FakeTextGenerator(error=AIGenerationError("quota exceeded"))
        executor = NodeExecutor(services)

        with pytest.raises(AIGenerationError) as exc_info:
            executor.execute(make_node("ia", node_id="ai-1", prompt="x"), context)

        assert exc_info.value.node_id == "ai-1"

    def test_unexpected_provider_failure_becomes_ai_error(self, services, context):
        services.text_generator = FakeTextGenerator(error=RuntimeError("socket closed"))
        executor = NodeExecutor(services)

        with pytest.raises(AIGenerationError, match="socket closed"):
            executor.execute(make_node("ia", prompt="x"), context)

    def test_missing_provider_raises(self, context):
        executor = NodeExecutor(NodeServices())
        with pytest.raises(AIGenerationError):
            executor.execute(make_node("ai", prompt="x"), context)


class TestWaitNode:

    def test_wait_sleeps_and_formats_whole_seconds(self, node_executor, sleep, context):
        outcome = node_executor.execute(make_node("aguardar", delay="1"), context)
        assert outcome.output == "Aguardou 1 segundos"
        assert sleep.delays == [1.0]

    def test_fractional_delay(self, node_executor, sleep, context):
        outcome = node_executor.execute(make_node("wait", delay=1.5), context)
        assert outcome.output == "Aguardou 1.5 segundos"

    def test_delay_is_capped(self, services, sleep, context):
        executor = NodeExecutor(services, max_wait_seconds=2.0)
        outcome = executor.execute(make_node("aguardar", delay=600), context)
        assert sleep.delays == [2.0]
        assert outcome.output == "Aguardou 2 segundos"

    def test_missing_delay_does_not_sleep(self, node_executor, sleep, context):
        outcome = node_executor.execute(make_node("aguardar"), context)
        assert outcome.output == "Aguardou 0 segundos"
        assert sleep.delays == []

    def test_invalid_delay_is_an_error_line(self, node_executor, sleep, context):
        outcome = node_executor.execute(make_node("aguardar", node_id="w1", delay="abc"), context)
        assert outcome.is_error
        assert outcome.output.startswith("Dados inválidos no nó w1")
        assert sleep.delays == []


class TestExternalCallNodes:

    def test_webhook_success(self, node_executor, http_client, context):
        outcome = node_executor.execute(make_node("webhook", webhookUrl="https://hooks.example.com/{{nome}}"), context)
        assert outcome.output == "Webhook recebido"
        assert http_client.calls == [("https://hooks.example.com/Ana", "GET")]

    def test_webhook_failure_is_soft(self, services, context):
        services.http_client = FakeHttpClient(error=requests.ConnectionError("connection refused"))
        outcome = NodeExecutor(services).execute(make_node("webhook", webhookUrl="http://10.0.0.1"), context)
        assert outcome.output == "Webhook error: connection refused"
        assert outcome.is_error
        assert not outcome.halt

    def test_webhook_without_client_is_soft(self, context):
        outcome = NodeExecutor(NodeServices()).execute(make_node("webhook", webhookUrl="http://x"), context)
        assert outcome.is_error
        assert outcome.output.startswith("Webhook error:")

    def test_http_reports_status(self, services, context):
        services.http_client = FakeHttpClient(status=201)
        outcome = NodeExecutor(services).execute(
            make_node("http", httpUrl="https://api.example.com", httpMethod="post"), context
        )
        assert outcome.output == "HTTP 201"
        assert services.http_client.calls == [("https://api.example.com", "POST")]

    def test_http_failure_is_soft(self, services, context):
        services.http_client = FakeHttpClient(error=requests.Timeout("timed out"))
        outcome = NodeExecutor(services).execute(make_node("http", httpUrl="https://slow.example.com"), context)
        assert outcome.output == "Erro HTTP: timed out"
        assert outcome.is_error

    def test_database_serializes_rows(self, services, context):
        services.query_executor = FakeQueryExecutor(rows=[{"id": 1, "nome": "José"}])
        outcome = NodeExecutor(services).execute(make_node("banco", sql="select * from clientes"), context)
        assert outcome.output == '[{"id": 1, "nome": "José"}]'
        assert context.variables["query_result"] == [{"id": 1, "nome": "José"}]
        assert services.query_executor.queries == ["select * from clientes"]

    def test_database_failure_is_soft(self, services, context):
        services.query_executor = FakeQueryExecutor(error=ValueError("syntax error at or near"))
        outcome = NodeExecutor(services).execute(make_node("banco", sql="selec"), context)
        assert outcome.output == "Erro SQL: syntax error at or near"
        assert outcome.is_error

    def test_email_is_queued_with_default_subject(self, node_executor, email_queue, context):
        outcome = node_executor.execute(
            make_node("email", to="ana@example.com", emailText="Olá {{nome}}"), context
        )
        assert outcome.output == "E-mail enfileirado para ana@example.com"
        assert email_queue.emails == [("ana@example.com", "Workflow Email", "Olá Ana")]

    def test_email_failure_is_soft(self, services, context):
        services.email_queue = FakeEmailQueue(error=ValueError("Email recipient is empty"))
        outcome = NodeExecutor(services).execute(make_node("email"), context)
        assert outcome.output == "Erro ao enfileirar e-mail: Email recipient is empty"
        assert outcome.is_error


class TestCodeNode:

    def test_expression_result(self, node_executor, context):
        outcome = node_executor.execute(make_node("codigo", code="return 1 + 1;"), context)
        assert outcome.output == "Resultado do código: 2"
        assert context.variables["code_result"] == 2

    def test_expression_reads_variables(self, node_executor):
        context = RunContext(variables={"preco": 5, "itens": [1, 2, 3]})
        outcome = node_executor.execute(make_node("code", code="preco * len(itens)"), context)
        assert outcome.output == "Resultado do código: 15"

    def test_errors_are_soft(self, node_executor, context):
        outcome = node_executor.execute(make_node("codigo", code="1 / 0"), context)
        assert outcome.is_error
        assert outcome.output.startswith("Erro de código:")

    def test_imports_are_rejected(self, node_executor, context):
        outcome = node_executor.execute(make_node("codigo", code="__import__('os').getcwd()"), context)
        assert outcome.is_error

    def test_empty_code_is_an_error(self, node_executor, context):
        outcome = node_executor.execute(make_node("codigo", code="  "), context)
        assert outcome.is_error


class TestVariablesAndDispatch:

    def test_set_variable(self, node_executor, context):
        outcome = node_executor.execute(make_node("variavel", varName="total", varValue=5), context)
        assert outcome.output == "Variável total = 5"
        assert context.variables["total"] == 5

    def test_set_variable_interpolates_strings(self, node_executor, context):
        node_executor.execute(make_node("set-variable", varName="saudacao", varValue="Oi {{nome}}"), context)
        assert context.variables["saudacao"] == "Oi Ana"

    def test_unknown_type_continues(self, node_executor, context):
        outcome = node_executor.execute(make_node("carrossel"), context)
        assert outcome.output == "Não implementado: carrossel"
        assert not outcome.halt

    def test_every_node_type_has_a_handler(self, node_executor):
        assert set(node_executor._handlers) == set(NodeType)

    def test_missing_handler_is_a_configuration_error(self, node_executor):
        del node_executor._handlers[NodeType.HTTP]
        with pytest.raises(ConfigurationError, match="http"):
            node_executor._check_handlers()


class TestEnglishLocale:

    @pytest.fixture
    def executor(self, services):
        return NodeExecutor(services, locale=TraceLocale.EN)

    def test_wording(self, executor, context):
        assert executor.execute(make_node("message", text="Hi"), context).output == "Message sent: Hi"
        assert executor.execute(make_node("question"), context).output == "Question answered: Yes"
        assert executor.execute(make_node("wait", delay=0), context).output == "Waited 0 seconds"
        assert executor.execute(make_node("send-file", fileUrl="f"), context).output == "File sent: f"
        assert executor.execute(make_node("other"), context).output == "Not implemented: other"

    def test_webhook_error_wording(self, services, context):
        services.http_client = FakeHttpClient(error=requests.ConnectionError("unreachable"))
        executor = NodeExecutor(services, locale=TraceLocale.EN)
        outcome = executor.execute(make_node("webhook", webhookUrl="http://x"), context)
        assert outcome.output == "Webhook error: unreachable"
