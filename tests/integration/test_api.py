import time

import pytest
from fastapi.testclient import TestClient

from flowboard.activities import Activities
from flowboard.api import create_app
from flowboard.config import FlowboardConfig
from flowboard.persistence import InMemoryWorkflowRepository
from tests.helpers import API_PAYLOAD, RecordingWriteTarget, fast_workflow_config, mock_api_client

STEP_NAMES = ["Fetch Files", "Wait for Approval", "Fetch API Data", "Sleep", "Write Operation"]


def _client(write_target=None, **workflow_overrides) -> TestClient:
    workflow = fast_workflow_config(**workflow_overrides)
    config = FlowboardConfig(workflow=workflow)
    activities = Activities(
        workflow, mock_api_client(), write_target=write_target or RecordingWriteTarget()
    )
    app = create_app(config, repository=InMemoryWorkflowRepository(), activities=activities)
    return TestClient(app)


def _wait_for_status(client: TestClient, instance_id: str, status: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/api/workflow/{instance_id}").json()
        if body["status"] == status:
            return body
        assert time.monotonic() < deadline, f"instance stuck in {body['status']}: {body}"
        time.sleep(0.02)


@pytest.fixture(autouse=True)
def local_transport(monkeypatch):
    monkeypatch.delenv("FLOWBOARD_TRANSPORT", raising=False)


def test_workflow_runs_to_completion_over_http():
    with _client() as client:
        created = client.post("/api/workflow")
        assert created.status_code == 200
        body = created.json()
        instance_id = body["id"]
        assert [step["name"] for step in body["steps"]] == STEP_NAMES
        assert body["startTime"] > 0

        waiting = _wait_for_status(client, instance_id, "waiting")
        assert waiting["steps"][0]["status"] == "completed"
        assert waiting["steps"][1]["status"] == "waiting"

        resumed = client.post(f"/api/workflow/{instance_id}/continue")
        assert resumed.status_code == 200
        assert resumed.json() == {"success": True}

        done = _wait_for_status(client, instance_id, "completed")
        assert "endTime" in done
        assert done["steps"][2]["output"] == API_PAYLOAD
        assert done["steps"][3]["output"] == {"message": "Waited 0 seconds"}
        assert done["steps"][4]["output"] == {"message": "Write operation successful", "retries": 1}
        assert all("duration" in step for step in done["steps"])

        listed = client.get("/api/workflows").json()
        assert [item["id"] for item in listed] == [instance_id]


def test_start_accepts_params():
    with _client() as client:
        instance_id = client.post("/api/workflow", json={"email": "ops@example.com"}).json()["id"]
        waiting = _wait_for_status(client, instance_id, "waiting")
        assert waiting["steps"][0]["output"]["inputParams"] == {"email": "ops@example.com"}


def test_failed_workflow_and_retry():
    target = RecordingWriteTarget(failures=100, message="API call to storage failed")
    with _client(write_target=target) as client:
        instance_id = client.post("/api/workflow").json()["id"]
        _wait_for_status(client, instance_id, "waiting")
        client.post(f"/api/workflow/{instance_id}/continue")

        failed = _wait_for_status(client, instance_id, "failed")
        assert failed["steps"][4]["status"] == "failed"
        assert failed["steps"][4]["error"] == "API call to storage failed"
        assert "endTime" in failed

        retried = client.post(f"/api/workflow/{instance_id}/retry")
        assert retried.status_code == 200
        sibling = retried.json()
        assert sibling["id"] != instance_id
        assert len(sibling["steps"]) == 5

        original = client.get(f"/api/workflow/{instance_id}").json()
        assert original["status"] == "failed"
        assert original["endTime"] == failed["endTime"]
        assert original["steps"][4]["error"] == "API call to storage failed"
        assert [step["status"] for step in original["steps"]] == [
            step["status"] for step in failed["steps"]
        ]
        assert original == failed


def test_not_found_and_bad_requests():
    with _client() as client:
        missing = client.get("/api/workflow/does-not-exist")
        assert missing.status_code == 404
        assert missing.json() == {"detail": "Workflow not found"}

        retry = client.post("/api/workflow/does-not-exist/retry")
        assert retry.status_code == 404

        resumed = client.post("/api/workflow/does-not-exist/continue")
        assert resumed.status_code == 500
        assert "does-not-exist" in resumed.json()["detail"]

        stream = client.get("/api/stream")
        assert stream.status_code == 400
        assert stream.json() == {"detail": "Missing instanceId"}


def test_dashboard_and_health():
    with _client() as client:
        page = client.get("/")
        assert page.status_code == 200
        assert page.headers["content-type"].startswith("text/html")
        assert "Workflow Dashboard" in page.text
        assert "/api/stream?instanceId=" in page.text

        health = client.get("/health")
        assert health.status_code == 200
        assert health.json()["status"] == "ok"


def test_store_errors_map_to_status_codes():
    repo = InMemoryWorkflowRepository()
    app = create_app(
        FlowboardConfig(workflow=fast_workflow_config()),
        repository=repo,
        activities=Activities(fast_workflow_config(), mock_api_client()),
    )

    @app.get("/boom/{kind}")
    async def boom(kind: str):
        if kind == "duplicate":
            await repo.create_instance("dup", ["a"])
            await repo.create_instance("dup", ["a"])
        if kind == "transition":
            await repo.create_instance("t", ["a"])
            from flowboard.models import InstanceStatus

            await repo.update_instance_status("t", InstanceStatus.COMPLETED)
        raise RuntimeError("unexpected")

    with TestClient(app) as client:
        assert client.get("/boom/duplicate").status_code == 409
        assert client.get("/boom/transition").status_code == 409
        crashed = client.get("/boom/other")
        assert crashed.status_code == 500
        assert crashed.json() == {"detail": "Internal Server Error"}
