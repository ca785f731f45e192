"""
Unit tests for FastAPI endpoints and API functionality.

Services are built over a temporary database with mocked messaging and LLM
providers.
"""

import pytest
from fastapi.testclient import TestClient

from claimdesk.api import create_app
from claimdesk.llm import SearchProvider

CRON_SECRET = "s3cret"


@pytest.fixture
def client(db, storage, mock_email, mock_sms, mock_webhook, mock_llm):
    app = create_app(
        database=db,
        storage=storage,
        email=mock_email,
        sms=mock_sms,
        webhook=mock_webhook,
        llm=mock_llm,
        search=SearchProvider(api_key=""),
        cron_secret=CRON_SECRET
    )
    return TestClient(app)


@pytest.fixture
def claim(client):
    response = client.post("/api/claims", json={
        "claim_number": "FC-2001",
        "policyholder_name": "Dana Rivera",
        "policyholder_email": "dana@example.com",
    })
    assert response.status_code == 201
    return response.json()


@pytest.mark.unit
class TestHealth:

    def test_health_check(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data


@pytest.mark.unit
class TestClaimEndpoints:

    def test_create_claim_defaults_status(self, claim):
        assert claim["status"] == "New"
        assert claim["is_closed"] == 0

    def test_get_claim(self, client, claim):
        response = client.get(f"/api/claims/{claim['id']}")
        assert response.status_code == 200
        assert response.json()["claim_number"] == "FC-2001"

    def test_missing_claim_is_404(self, client):
        response = client.get("/api/claims/missing")
        assert response.status_code == 404
        assert response.json()["error_code"] == "CLAIM_NOT_FOUND"

    def test_list_and_close(self, client, claim):
        response = client.patch(f"/api/claims/{claim['id']}", json={"status": "Closed", "is_closed": True})
        assert response.status_code == 200
        assert client.get("/api/claims").json() == []
        assert len(client.get("/api/claims", params={"include_closed": True}).json()) == 1

    def test_status_change_queues_automation(self, client, db, claim, make_automation):
        automation = make_automation("status_change", trigger_config={"status": "Open"})

        client.patch(f"/api/claims/{claim['id']}", json={"status": "Open"})

        executions = client.get(f"/api/automations/{automation['id']}/executions").json()
        assert len(executions) == 1
        assert executions[0]["status"] == "pending"
        assert executions[0]["trigger_data"]["new_status"] == "Open"

    def test_task_lifecycle(self, client, claim):
        response = client.post(f"/api/claims/{claim['id']}/tasks", json={"title": "Call carrier", "priority": "high"})
        assert response.status_code == 201
        task = response.json()

        completed = client.post(f"/api/tasks/{task['id']}/complete").json()
        assert completed["status"] == "completed"
        assert completed["completed_at"]

    def test_invalid_task_priority(self, client, claim):
        response = client.post(f"/api/claims/{claim['id']}/tasks", json={"title": "x", "priority": "whenever"})
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_schedule_inspection(self, client, claim):
        response = client.post(f"/api/claims/{claim['id']}/inspections", json={
            "inspection_date": "2025-03-20",
            "inspection_time": "13:30",
        })
        assert response.status_code == 201
        assert response.json()["claim_id"] == claim["id"]

    def test_inspection_time_validated(self, client, claim):
        response = client.post(f"/api/claims/{claim['id']}/inspections", json={
            "inspection_date": "2025-03-20",
            "inspection_time": "half past one",
        })
        assert response.status_code == 422

    def test_add_note(self, client, claim):
        response = client.post(f"/api/claims/{claim['id']}/notes", json={"content": "Left voicemail"})
        assert response.status_code == 201
        assert response.json()["content"] == "Left voicemail"

    def test_configure_follow_ups(self, client, claim):
        response = client.put(f"/api/claims/{claim['id']}/follow-ups", json={
            "follow_up_enabled": True,
            "follow_up_interval_days": 5,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["follow_up_enabled"] == 1
        assert data["follow_up_interval_days"] == 5
        assert data["follow_up_next_at"]


@pytest.mark.unit
class TestAutomationEndpoints:

    def automation_body(self, **overrides):
        body = {
            "name": "Intake task",
            "trigger_type": "webhook",
            "actions": [{"type": "create_task", "config": {"title": "Review {claim.claim_number}"}}],
        }
        body.update(overrides)
        return body

    def test_crud(self, client):
        created = client.post("/api/automations", json=self.automation_body())
        assert created.status_code == 201
        automation_id = created.json()["id"]

        assert client.get(f"/api/automations/{automation_id}").json()["name"] == "Intake task"
        assert len(client.get("/api/automations").json()) == 1

        updated = client.patch(f"/api/automations/{automation_id}", json={"is_active": False})
        assert updated.json()["is_active"] == 0

        deleted = client.delete(f"/api/automations/{automation_id}")
        assert deleted.json() == {"success": True, "automation_id": automation_id}
        assert client.get(f"/api/automations/{automation_id}").status_code == 404

    def test_unknown_action_type_rejected(self, client):
        response = client.post("/api/automations", json=self.automation_body(
            actions=[{"type": "send_fax", "config": {}}]
        ))
        assert response.status_code == 400
        assert "send_fax" in response.json()["message"]

    def test_unknown_action_type_rejected_on_update(self, client):
        automation_id = client.post("/api/automations", json=self.automation_body()).json()["id"]
        response = client.patch(f"/api/automations/{automation_id}", json={"actions": [{"type": "send_fax"}]})
        assert response.status_code == 400

    def test_unknown_trigger_type_rejected(self, client):
        response = client.post("/api/automations", json=self.automation_body(trigger_type="on_full_moon"))
        assert response.status_code == 422

    def test_webhook_trigger_runs_actions(self, client, db, claim):
        automation_id = client.post("/api/automations", json=self.automation_body()).json()["id"]

        response = client.post("/api/automations/webhook", json={
            "automation_id": automation_id,
            "claim_id": claim["id"],
            "trigger_data": {"source": "crm"},
        })

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Automation triggered successfully"

        execution = db.get("automation_executions", data["execution_id"])
        assert execution["status"] == "success"
        tasks = db.select("tasks", where={"claim_id": claim["id"]})
        assert [task["title"] for task in tasks] == ["Review FC-2001"]

    def test_webhook_requires_automation_id(self, client):
        response = client.post("/api/automations/webhook", json={"claim_id": "c1"})
        assert response.status_code == 400

    def test_webhook_rejects_wrong_trigger_type(self, client, claim):
        automation_id = client.post("/api/automations", json=self.automation_body(trigger_type="manual")).json()["id"]
        response = client.post("/api/automations/webhook", json={"automation_id": automation_id, "claim_id": claim["id"]})
        assert response.status_code == 404

    def test_manual_run(self, client, db, claim):
        automation_id = client.post("/api/automations", json=self.automation_body(trigger_type="manual")).json()["id"]

        response = client.post(f"/api/automations/{automation_id}/run", json={"claim_id": claim["id"]})

        assert response.status_code == 200
        assert db.count("tasks", where={"claim_id": claim["id"]}) == 1

    def test_executions_for_missing_automation(self, client):
        assert client.get("/api/automations/missing/executions").status_code == 404


@pytest.mark.unit
class TestTaskTemplateEndpoints:

    def test_create_and_list(self, client):
        response = client.post("/api/task-templates", json={
            "title": "Request documents",
            "trigger_type": "on_claim_creation",
            "due_date_offset": 1,
        })
        assert response.status_code == 201
        assert [t["title"] for t in client.get("/api/task-templates").json()] == ["Request documents"]

    def test_template_applied_to_new_claim(self, client, db):
        client.post("/api/task-templates", json={"title": "Welcome call", "trigger_type": "on_claim_creation"})
        claim = client.post("/api/claims", json={"claim_number": "FC-3"}).json()
        assert db.count("tasks", where={"claim_id": claim["id"]}) == 1

    def test_status_template_requires_status(self, client):
        response = client.post("/api/task-templates", json={
            "title": "x",
            "trigger_type": "on_status_change",
            "trigger_status": None,
        })
        assert response.status_code == 422


@pytest.mark.unit
class TestPipelineEndpoint:

    def test_non_strategic_request(self, client, claim):
        response = client.post("/api/pipeline/strategic", json={"claim_id": claim["id"], "analysis_type": "summary"})
        assert response.status_code == 200
        assert response.json()["pipeline_required"] is False
        assert response.json()["pipeline_context"] == ""

    def test_missing_claim(self, client):
        response = client.post("/api/pipeline/strategic", json={"claim_id": "missing", "analysis_type": "denial_rebuttal"})
        assert response.status_code == 404


@pytest.mark.unit
class TestCronEndpoints:

    @pytest.mark.parametrize("path", [
        "/api/cron/check-scheduled",
        "/api/cron/execute-automations",
        "/api/cron/follow-ups",
        "/api/cron/rd-follow-ups",
    ])
    def test_secret_required(self, client, path):
        assert client.post(path).status_code == 401
        assert client.post(path, headers={"x-cron-secret": "wrong"}).status_code == 401

    def test_execute_automations(self, client):
        response = client.post("/api/cron/execute-automations", headers={"x-cron-secret": CRON_SECRET})
        assert response.status_code == 200
        assert response.json() == {"success": True, "processed": 0, "results": []}

    def test_check_scheduled(self, client):
        response = client.post("/api/cron/check-scheduled", headers={"x-cron-secret": CRON_SECRET})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["checked"] == 0

    def test_follow_up_sweeps(self, client):
        for path in ("/api/cron/follow-ups", "/api/cron/rd-follow-ups"):
            response = client.post(path, headers={"x-cron-secret": CRON_SECRET})
            assert response.status_code == 200
            assert response.json() == {"success": True, "processed": [], "stopped": []}


@pytest.mark.unit
class TestFileDownloads:

    def test_signed_download(self, client, storage):
        storage.save("claim-1/Estimates/estimate.pdf", b"%PDF-1.7")
        url = storage.create_signed_url("claim-1/Estimates/estimate.pdf", expires_in=300)

        response = client.get(url)

        assert response.status_code == 200
        assert response.content == b"%PDF-1.7"

    def test_bad_signature(self, client, storage):
        storage.save("claim-1/a.pdf", b"data")
        response = client.get("/api/files/claim-1/a.pdf", params={"expires": 9999999999, "signature": "forged"})
        assert response.status_code == 401

    def test_signature_required(self, client):
        assert client.get("/api/files/claim-1/a.pdf").status_code == 422
