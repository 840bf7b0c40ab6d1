"""Tests for the REST API."""

import pytest
from fastapi.testclient import TestClient

from botflow.core.exceptions import AIGenerationError
from botflow.factory import create_app

from fakes import FakeTextGenerator, node, edge

IDENTITY = "5511977776666"

GREETING = {
    "nodes": [
        node("1", "mensagem", text="Olá!"),
        node("2", "pergunta", text="Posso ajudar?"),
        node("3", "encerrar", endText="Até mais"),
    ],
    "edges": [edge("1", "2"), edge("2", "3")],
}


@pytest.fixture
def client(app_config, services, transport):
    app = create_app(app_config, node_services=services, transport=transport)
    with TestClient(app) as test_client:
        yield test_client


def create_workflow(client, graph=GREETING, name="Atendimento", workflow_type=None):
    body = {"name": name, **graph}
    if workflow_type:
        body["type"] = workflow_type
    response = client.post("/api/v1/workflows", json=body)
    assert response.status_code == 201
    return response.json()["workflow_id"]


class TestHealth:

    def test_root_and_health(self, client):
        assert client.get("/").json()["message"] == "Botflow is running"
        assert client.get("/health").json()["status"] == "healthy"

    def test_detailed_health(self, client):
        response = client.get("/health/detailed")
        body = response.json()

        assert response.status_code == 200
        assert body["overall_status"] == "healthy"
        assert body["checks"]["execution_engine"]["max_concurrent_executions"] == 2

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "abc-123"})
        assert response.headers["X-Request-ID"] == "abc-123"


class TestExecute:

    def test_returns_trace(self, client):
        response = client.post("/api/v1/workflows/execute", json={
            "nodes": [{"id": "1", "type": "mensagem", "data": {"text": "Oi"}}],
            "edges": []
        })

        assert response.status_code == 200
        body = response.json()
        assert body["steps"] == ["Mensagem enviada: Oi"]
        assert body["status"] == "completed"

    def test_numeric_ids_and_variables(self, client):
        response = client.post("/api/v1/workflows/execute", json={
            "nodes": [
                {"id": 2, "type": "mensagem", "data": {"text": "Oi {{nome}}"}},
                {"id": 1, "type": "variavel", "data": {"varName": "nome", "varValue": "Bia"}},
            ],
            "edges": [{"source": 1, "target": 2}],
            "variables": {"nome": "Ana"}
        })

        assert response.json()["steps"] == ["Variável nome = Bia", "Mensagem enviada: Oi Bia"]

    def test_does_not_message_recipient(self, client, transport):
        client.post("/api/v1/workflows/execute", json={"recipient": IDENTITY, **GREETING})
        assert transport.sent == []

    def test_cycle_is_rejected(self, client):
        response = client.post("/api/v1/workflows/execute", json={
            "nodes": [node("A", "mensagem"), node("B", "mensagem")],
            "edges": [edge("A", "B"), edge("B", "A")]
        })

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "CyclicGraphError"
        assert detail["details"]["cycle_nodes"] == ["A", "B"]

    def test_dangling_edge_is_rejected(self, client):
        response = client.post("/api/v1/workflows/execute", json={
            "nodes": [node("A", "mensagem")],
            "edges": [edge("A", "B")]
        })
        assert response.status_code == 400

    def test_ai_failure_returns_partial_steps(self, client, services):
        services.text_generator = FakeTextGenerator(error=AIGenerationError("Cohere API key not set"))

        response = client.post("/api/v1/workflows/execute", json={
            "nodes": [node("1", "mensagem", text="Oi"), node("2", "ia", prompt="x")],
            "edges": [edge("1", "2")]
        })

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["error"] == "AIGenerationError"
        assert detail["details"]["steps"] == ["Mensagem enviada: Oi"]
        assert detail["context"]["node_id"] == "2"

    def test_malformed_node_is_a_422(self, client):
        response = client.post("/api/v1/workflows/execute", json={"nodes": [{"type": "mensagem"}], "edges": []})
        assert response.status_code == 422


class TestWorkflowCrud:

    def test_create_get_list_delete(self, client):
        workflow_id = create_workflow(client)

        record = client.get(f"/api/v1/workflows/{workflow_id}").json()
        assert record["name"] == "Atendimento"
        assert record["type"] == "atendimento"
        assert len(record["definition"]["nodes"]) == 3

        listed = client.get("/api/v1/workflows").json()
        assert [w["id"] for w in listed] == [workflow_id]
        assert client.get("/api/v1/workflows", params={"type": "vendas"}).json() == []

        assert client.delete(f"/api/v1/workflows/{workflow_id}").status_code == 200
        assert client.get(f"/api/v1/workflows/{workflow_id}").status_code == 404
        assert client.delete(f"/api/v1/workflows/{workflow_id}").status_code == 404

    def test_create_reports_warnings(self, client):
        response = client.post("/api/v1/workflows", json={
            "name": "solto",
            "nodes": [node("1", "mensagem"), node("2", "mensagem")],
            "edges": []
        })
        assert response.status_code == 201
        assert response.json()["validation_warnings"]

    def test_create_rejects_cycles(self, client):
        response = client.post("/api/v1/workflows", json={
            "name": "ciclo",
            "nodes": [node("A", "mensagem"), node("B", "mensagem")],
            "edges": [edge("A", "B"), edge("B", "A")]
        })
        assert response.status_code == 400
        assert client.get("/api/v1/workflows").json() == []

    def test_update(self, client):
        workflow_id = create_workflow(client)

        response = client.put(f"/api/v1/workflows/{workflow_id}", json={
            "name": "Novo",
            "type": "vendas",
            "nodes": [node("x", "mensagem", text="Novo")],
            "edges": []
        })

        assert response.status_code == 200
        assert response.json()["name"] == "Novo"
        assert response.json()["type"] == "vendas"
        run = client.post(f"/api/v1/workflows/{workflow_id}/run", json={}).json()
        assert run["steps"] == ["Mensagem enviada: Novo"]

    def test_update_missing(self, client):
        assert client.put("/api/v1/workflows/nope", json={"name": "x"}).status_code == 404

    def test_validate(self, client):
        valid = client.post("/api/v1/workflows/validate", json=GREETING).json()
        invalid = client.post("/api/v1/workflows/validate", json={
            "nodes": [node("A", "mensagem")],
            "edges": [edge("A", "A")]
        }).json()

        assert valid["is_valid"] is True
        assert invalid["is_valid"] is False

    def test_run_stored_workflow_and_history(self, client):
        workflow_id = create_workflow(client)

        run = client.post(f"/api/v1/workflows/{workflow_id}/run", json={"recipient": IDENTITY}).json()

        assert run["steps"] == ["Mensagem enviada: Olá!", "Pergunta respondida: Sim", "Até mais"]
        assert run["status"] == "terminated"
        record = client.get(f"/api/v1/runs/{run['run_id']}").json()
        assert record["workflow_id"] == workflow_id
        assert record["steps"] == run["steps"]
        assert [r["id"] for r in client.get("/api/v1/runs", params={"workflow_id": workflow_id}).json()] == [run["run_id"]]

    def test_run_missing_workflow(self, client):
        assert client.post("/api/v1/workflows/nope/run", json={}).status_code == 404
        assert client.get("/api/v1/runs/nope").status_code == 404


class TestInstances:

    def test_start_advance_and_inspect(self, client, transport):
        workflow_id = create_workflow(client)

        started = client.post(f"/api/v1/workflows/{workflow_id}/start", json={"identity": IDENTITY})
        assert started.status_code == 201
        assert started.json()["steps"] == ["Mensagem enviada: Olá!"]
        assert started.json()["instance"]["step_index"] == 0

        advanced = client.post(f"/api/v1/instances/{IDENTITY}/advance").json()
        assert advanced["steps"] == ["Pergunta respondida: Sim"]

        last = client.post(f"/api/v1/instances/{IDENTITY}/advance").json()
        assert last["status"] == "terminated"
        assert last["instance"]["active"] is False

        instance = client.get(f"/api/v1/instances/{IDENTITY}").json()
        assert instance["step_index"] == 2
        assert client.post(f"/api/v1/instances/{IDENTITY}/advance").status_code == 404
        assert len(transport.texts_for(IDENTITY)) == 3

    def test_credentials_are_used_for_delivery(self, client, transport):
        workflow_id = create_workflow(client)

        client.post(f"/api/v1/workflows/{workflow_id}/start", json={
            "identity": IDENTITY, "token": "tok-a", "phoneNumberId": 111
        })
        client.post(f"/api/v1/instances/{IDENTITY}/advance", json={"token": "tok-b", "phone_number_id": "222"})

        assert transport.credentials == [("tok-a", "111"), ("tok-b", "222")]

    def test_start_unknown_workflow(self, client):
        response = client.post("/api/v1/workflows/nope/start", json={"identity": IDENTITY})
        assert response.status_code == 404

    def test_unknown_identity(self, client):
        assert client.get("/api/v1/instances/000").status_code == 404


class TestWhatsAppWebhook:

    def test_verification(self, client):
        response = client.get("/api/v1/webhook/whatsapp", params={
            "hub.mode": "subscribe",
            "hub.verify_token": "segredo",
            "hub.challenge": "1158201444"
        })
        assert response.status_code == 200
        assert response.text == "1158201444"

    def test_verification_with_wrong_token(self, client):
        response = client.get("/api/v1/webhook/whatsapp", params={
            "hub.mode": "subscribe",
            "hub.verify_token": "errado",
            "hub.challenge": "1"
        })
        assert response.status_code == 403

    def test_inbound_message_runs_bound_workflow(self, client, transport):
        workflow_id = create_workflow(client, workflow_type="vip")
        assert client.put(f"/api/v1/identities/{IDENTITY}", json={"workflow_id": workflow_id}).status_code == 200

        response = client.post("/api/v1/webhook/whatsapp", json={
            "entry": [{"changes": [{"value": {"messages": [{"from": IDENTITY, "text": {"body": "oi"}}]}}]}]
        })

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "terminated"
        assert body["workflow_id"] == workflow_id
        assert body["delivered"] == 3
        assert transport.texts_for(IDENTITY)[0] == "Mensagem enviada: Olá!"

    def test_inbound_credentials_reach_the_transport(self, client, transport):
        create_workflow(client)

        response = client.post("/api/v1/webhook/whatsapp", json={
            "from": IDENTITY, "body": "oi", "userToken": "user-tok", "phoneNumberId": "123"
        })

        assert response.json()["delivered"] == 3
        assert set(transport.credentials) == {("user-tok", "123")}

    def test_bind_unknown_workflow(self, client):
        response = client.put(f"/api/v1/identities/{IDENTITY}", json={"workflow_id": "nope"})
        assert response.status_code == 404

    def test_sender_without_workflow_is_acknowledged(self, client):
        response = client.post("/api/v1/webhook/whatsapp", json={"from": IDENTITY, "body": "oi"})
        assert response.status_code == 200
        assert response.json()["status"] == "no_workflow"

    def test_status_callback_is_ignored(self, client):
        response = client.post("/api/v1/webhook/whatsapp", json={"entry": [{"changes": [{"value": {"statuses": []}}]}]})
        assert response.json()["status"] == "ignored"

    def test_body_must_be_json(self, client):
        response = client.post(
            "/api/v1/webhook/whatsapp",
            content=b"not json",
            headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
