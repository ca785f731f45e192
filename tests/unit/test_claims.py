"""
Unit tests for claim management and task templates.
"""

from datetime import timedelta

import pytest

from claimdesk.database import to_iso
from claimdesk.error_handler import NotFoundError, ValidationError


@pytest.mark.unit
class TestClaims:

    def test_create_claim(self, claims, sample_claim):
        assert sample_claim["is_closed"] == 0
        assert sample_claim["status"] == "New"
        assert claims.get_claim(sample_claim["id"])["claim_number"] == "FC-1001"

    def test_get_missing_claim(self, claims):
        with pytest.raises(NotFoundError):
            claims.get_claim("missing")

    def test_list_hides_closed_claims(self, claims, sample_claim):
        closed = claims.create_claim({"claim_number": "FC-OLD"})
        claims.update_claim(closed["id"], {"is_closed": True})

        assert [claim["id"] for claim in claims.list_claims()] == [sample_claim["id"]]
        assert len(claims.list_claims(include_closed=True)) == 2

    def test_update_ignores_id_and_created_at(self, claims, sample_claim):
        updated = claims.update_claim(sample_claim["id"], {"id": "other", "created_at": "2000-01-01", "loss_type": "Wind"})
        assert updated["id"] == sample_claim["id"]
        assert updated["created_at"] == sample_claim["created_at"]
        assert updated["loss_type"] == "Wind"

    def test_empty_update_is_a_no_op(self, claims, sample_claim):
        assert claims.update_claim(sample_claim["id"], {}) == sample_claim

    def test_last_activity_uses_newest_record(self, db, claims, sample_claim, now):
        stale = to_iso(now - timedelta(days=30))
        db.update("claims", sample_claim["id"], {"updated_at": stale})
        db.insert("claim_updates", {
            "claim_id": sample_claim["id"],
            "content": "Called carrier",
            "created_at": to_iso(now - timedelta(days=2)),
        })
        claim = claims.get_claim(sample_claim["id"])
        assert claims.last_activity(claim) == now - timedelta(days=2)


@pytest.mark.unit
class TestTaskTemplates:

    def test_creation_templates_applied(self, db, claims):
        claims.create_task_template({
            "title": "Request policy documents",
            "priority": "high",
            "trigger_type": "on_claim_creation",
            "due_date_offset": 2,
        })
        claims.create_task_template({
            "title": "Inactive template",
            "trigger_type": "on_claim_creation",
            "is_active": False,
        })

        claim = claims.create_claim({"claim_number": "FC-2"})

        tasks = db.select("tasks", where={"claim_id": claim["id"]})
        assert len(tasks) == 1
        assert tasks[0]["title"] == "Request policy documents"
        assert tasks[0]["priority"] == "high"
        assert tasks[0]["status"] == "pending"
        assert tasks[0]["due_date"] == "2025-03-14"

    def test_status_templates_applied_on_change(self, db, claims, sample_claim):
        claims.create_task_template({
            "title": "Prepare for inspection",
            "trigger_type": "on_status_change",
            "trigger_status": "Inspection Scheduled",
        })

        claims.update_claim(sample_claim["id"], {"status": "Open"})
        assert db.count("tasks", where={"claim_id": sample_claim["id"]}) == 0

        claims.update_claim(sample_claim["id"], {"status": "Inspection Scheduled"})
        tasks = db.select("tasks", where={"claim_id": sample_claim["id"]})
        assert [task["title"] for task in tasks] == ["Prepare for inspection"]
        assert tasks[0]["due_date"] == "2025-03-12"

        claims.update_claim(sample_claim["id"], {"status": "Inspection Scheduled", "loss_type": "Wind"})
        assert db.count("tasks", where={"claim_id": sample_claim["id"]}) == 1

    def test_status_template_requires_status(self, claims):
        with pytest.raises(ValidationError):
            claims.create_task_template({"title": "x", "trigger_type": "on_status_change"})

    def test_unknown_trigger_type(self, claims):
        with pytest.raises(ValueError):
            claims.create_task_template({"title": "x", "trigger_type": "on_full_moon"})


@pytest.mark.unit
class TestTasks:

    def test_complete_task_stamps_completion(self, claims, sample_claim, now):
        task = claims.add_task(sample_claim["id"], {"title": "Call adjuster"})
        completed = claims.complete_task(task["id"])
        assert completed["status"] == "completed"
        assert completed["completed_at"] == to_iso(now)

    def test_add_task_to_missing_claim(self, claims):
        with pytest.raises(NotFoundError):
            claims.add_task("missing", {"title": "x"})

    def test_update_missing_task(self, claims):
        with pytest.raises(NotFoundError):
            claims.update_task("missing", {"status": "completed"})

    def test_task_created_completed_fires_trigger(self, db, claims, sample_claim, make_automation):
        automation = make_automation("task_completed")
        claims.add_task(sample_claim["id"], {"title": "Already done", "status": "completed"})
        assert db.count("automation_executions", where={"automation_id": automation["id"]}) == 1


@pytest.mark.unit
class TestRelatedRecords:

    def test_folders_are_reused(self, claims, sample_claim):
        first = claims.add_file(sample_claim["id"], "a.pdf", "p/a.pdf", folder_name="Estimates")
        second = claims.add_file(sample_claim["id"], "b.pdf", "p/b.pdf", folder_name="Estimates")
        assert first["folder_id"] == second["folder_id"]

    def test_notes_and_updates(self, db, claims, sample_claim):
        claims.add_note(sample_claim["id"], "Spoke with homeowner")
        claims.add_claim_update(sample_claim["id"], "Estimate sent", update_type="manual")
        assert db.count("notes", where={"claim_id": sample_claim["id"]}) == 1
        assert db.select_one("claim_updates", where={"claim_id": sample_claim["id"]})["update_type"] == "manual"

    def test_declared_position_locked_by_default(self, claims, sample_claim):
        position = claims.declare_position(sample_claim["id"], primary_cause_of_loss="Hail")
        assert position["is_locked"] == 1
