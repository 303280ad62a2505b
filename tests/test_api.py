"""
API endpoint tests
"""
import pytest
from fastapi.testclient import TestClient

from automation_engine.api import create_app

from conftest import send_node, trigger_node, workflow_dict


WELCOME = {"contact": {"phone": "910000000021", "name": "John"}}


class TestWorkflowAPI:
    """Webhook, workflow and run endpoints"""

    @pytest.fixture
    def client(self, engine):
        app = create_app(engine=engine, start_scheduler=False)
        with TestClient(app) as client:
            yield client

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["workflows"] == 5
        assert data["active_workflows"] == 5
        assert data["scheduler"]["running"] is False

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/health"

    def test_webhook_starts_run(self, client, recorder):
        response = client.post("/webhook/welcome", json=WELCOME)

        assert response.status_code == 202
        data = response.json()
        assert data["workflow_id"] == "welcome_sequence"
        assert data["status"] == "waiting"
        assert data["sibling_run_ids"] == []
        assert len(recorder.sent) == 1

        run = client.get(f"/api/v1/runs/{data['run_id']}").json()
        assert run["status"] == "waiting"
        assert run["current_node"] == "Wait 2 Hours"
        assert run["wake_at"].startswith("2024-03-01T11:00:00")

    def test_webhook_unknown_path(self, client):
        response = client.post("/webhook/not-a-hook", json={})

        assert response.status_code == 404
        assert response.json()["error"] == "workflow_not_found"

    def test_webhook_invalid_json(self, client):
        response = client.post(
            "/webhook/welcome",
            content=b"{not json",
            headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400

    def test_list_workflows(self, client):
        response = client.get("/api/v1/workflows/")

        assert response.status_code == 200
        by_id = {w["id"]: w for w in response.json()}
        assert set(by_id) == {
            "abandoned_cart", "feedback_collection", "feedback_response", "lead_nurturing", "welcome_sequence"
        }
        assert by_id["lead_nurturing"]["trigger_path"] == "lead-tagged"

    def test_get_workflow(self, client):
        response = client.get("/api/v1/workflows/lead_nurturing")

        assert response.status_code == 200
        definition = response.json()["definition"]
        assert [node["name"] for node in definition["nodes"]][:2] == ["Webhook", "Extract Lead Data"]

        assert client.get("/api/v1/workflows/missing").status_code == 404

    def test_deactivate_and_activate(self, client):
        response = client.post("/api/v1/workflows/welcome_sequence/deactivate")
        assert response.status_code == 200
        assert response.json()["active"] is False
        assert client.post("/webhook/welcome", json=WELCOME).status_code == 404

        assert client.post("/api/v1/workflows/welcome_sequence/activate").json()["active"] is True
        assert client.post("/webhook/welcome", json=WELCOME).status_code == 202

    def test_execute_workflow(self, client, recorder):
        response = client.post(
            "/api/v1/workflows/lead_nurturing/execute",
            json={"payload": {"lead": {"score": 75}, "contact": {"phone": "15550001"}}}
        )

        assert response.status_code == 202
        assert response.json()["status"] == "completed"
        assert "special offer" in recorder.sent[0].body

    def test_cancel_run(self, client):
        run_id = client.post("/webhook/welcome", json=WELCOME).json()["run_id"]

        response = client.post(f"/api/v1/runs/{run_id}/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        response = client.post(f"/api/v1/runs/{run_id}/cancel")
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    def test_list_runs(self, client):
        client.post("/webhook/welcome", json=WELCOME)
        client.post("/webhook/lead-tagged", json={"lead": {"score": 10}, "contact": {"phone": "1"}})

        items = client.get("/api/v1/runs/").json()["items"]
        assert len(items) == 2

        waiting = client.get("/api/v1/runs/", params={"status": "waiting"}).json()["items"]
        assert [run["workflow_id"] for run in waiting] == ["welcome_sequence"]

        leads = client.get("/api/v1/runs/", params={"workflow_id": "lead_nurturing"}).json()["items"]
        assert [run["status"] for run in leads] == ["completed"]

    def test_run_not_found(self, client):
        response = client.get("/api/v1/runs/nope")

        assert response.status_code == 404
        assert response.json()["error"] == "run_not_found"

    def test_deploy_workflow(self, client, recorder):
        definition = workflow_dict([trigger_node(path="greet"), send_node("Send", message="hi")],
                                   [{"from": "Webhook", "to": "Send"}], workflow_id="greeting")

        response = client.post("/api/v1/workflows/", json=definition)

        assert response.status_code == 201
        assert response.json()["id"] == "greeting"
        assert response.json()["trigger_path"] == "greet"

        webhook = client.post("/webhook/greet", json={"phone": "15550001"})
        assert webhook.status_code == 202
        assert webhook.json()["status"] == "completed"
        assert webhook.headers["X-Run-ID"] == webhook.json()["run_id"]
        assert recorder.sent[-1].recipient == "15550001"

    def test_deploy_invalid_workflow(self, client):
        definition = workflow_dict([trigger_node(path="greet")], [{"from": "Webhook", "to": "Nowhere"}])

        response = client.post("/api/v1/workflows/", json=definition)

        assert response.status_code == 400
        assert response.json()["error"] == "dangling_connection"
        assert len(response.json()["details"]) == 1
        assert client.get("/api/v1/workflows/test_flow").status_code == 404

    def test_deploy_conflicts(self, client):
        same_id = workflow_dict([trigger_node(path="other")], [], workflow_id="welcome_sequence")
        same_path = workflow_dict([trigger_node(path="welcome")], [], workflow_id="second_welcome")

        for definition in (same_id, same_path):
            response = client.post("/api/v1/workflows/", json=definition)
            assert response.status_code == 409
            assert response.json()["error"] == "workflow_conflict"

    def test_update_workflow(self, client, recorder):
        definition = workflow_dict(
            [trigger_node(path="welcome"), send_node("Send", to='{{ $node["Webhook"].contact.phone }}', message="v2")],
            [{"from": "Webhook", "to": "Send"}],
            workflow_id="welcome_sequence",
            version="2.0.0",
        )

        response = client.put("/api/v1/workflows/welcome_sequence", json=definition)

        assert response.status_code == 200
        assert response.json()["version"] == "2.0.0"
        assert client.post("/webhook/welcome", json=WELCOME).json()["status"] == "completed"
        assert recorder.sent[-1].body == "v2"

    def test_update_rejects_other_id(self, client):
        definition = workflow_dict([trigger_node(path="welcome")], [], workflow_id="renamed")

        response = client.put("/api/v1/workflows/welcome_sequence", json=definition)

        assert response.status_code == 400
        assert response.json()["error"] == "malformed_definition"
        assert client.put("/api/v1/workflows/missing", json=definition).status_code == 404

    def test_delete_workflow(self, client):
        response = client.delete("/api/v1/workflows/lead_nurturing")

        assert response.status_code == 200
        assert response.json()["id"] == "lead_nurturing"
        assert client.get("/api/v1/workflows/lead_nurturing").status_code == 404
        assert client.post("/webhook/lead-tagged", json={}).status_code == 404
        assert client.delete("/api/v1/workflows/lead_nurturing").status_code == 404
        assert client.get("/health").json()["workflows"] == 4
