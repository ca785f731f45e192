"""
Unit tests for automation trigger matching and sweeps.
"""

from datetime import datetime, timedelta, timezone

import pytest

from claimdesk.database import to_iso
from claimdesk.error_handler import NotFoundError, ValidationError
from claimdesk.models import TriggerType


def executions_for(db, automation_id):
    return db.select("automation_executions", where={"automation_id": automation_id}, order_by="created_at")


@pytest.mark.unit
class TestEventTriggers:
    """Status change, task completion and inspection events."""

    def test_status_change_matches_configured_status(self, db, claims, sample_claim, make_automation):
        wanted = make_automation("status_change", trigger_config={"status": "Inspection Scheduled"})
        other = make_automation("status_change", trigger_config={"status": "Closed"})
        any_status = make_automation("status_change")

        claims.update_claim(sample_claim["id"], {"status": "Inspection Scheduled"})

        matched = executions_for(db, wanted["id"])
        assert len(matched) == 1
        assert matched[0]["status"] == "pending"
        assert matched[0]["trigger_data"] == {
            "old_status": "New",
            "new_status": "Inspection Scheduled",
            "claim_number": "FC-1001",
        }
        assert executions_for(db, other["id"]) == []
        assert len(executions_for(db, any_status["id"])) == 1

    def test_same_status_does_not_fire(self, db, claims, sample_claim, make_automation):
        automation = make_automation("status_change")
        claims.update_claim(sample_claim["id"], {"status": "New", "loss_type": "Wind"})
        assert executions_for(db, automation["id"]) == []

    def test_inactive_automation_never_fires(self, db, claims, sample_claim, make_automation):
        automation = make_automation("status_change", is_active=False)
        claims.update_claim(sample_claim["id"], {"status": "Closed"})
        assert executions_for(db, automation["id"]) == []

    def test_task_completed_title_pattern(self, db, claims, sample_claim, make_automation):
        matching = make_automation("task_completed", trigger_config={"task_title_pattern": "inspection"})
        blank = make_automation("task_completed", trigger_config={"task_title_pattern": ""})
        unrelated = make_automation("task_completed", trigger_config={"task_title_pattern": "invoice"})

        task = claims.add_task(sample_claim["id"], {"title": "Schedule Inspection", "status": "pending"})
        claims.complete_task(task["id"])

        queued = executions_for(db, matching["id"])
        assert len(queued) == 1
        assert queued[0]["trigger_data"]["task_title"] == "Schedule Inspection"
        assert queued[0]["trigger_data"]["completed_at"]
        assert len(executions_for(db, blank["id"])) == 1
        assert executions_for(db, unrelated["id"]) == []

    def test_completing_twice_fires_once(self, db, claims, sample_claim, make_automation):
        automation = make_automation("task_completed")
        task = claims.add_task(sample_claim["id"], {"title": "Call adjuster"})
        claims.complete_task(task["id"])
        claims.complete_task(task["id"])
        assert len(executions_for(db, automation["id"])) == 1

    def test_inspection_scheduled(self, db, claims, sample_claim, make_automation):
        automation = make_automation("inspection_scheduled")
        inspection = claims.schedule_inspection(sample_claim["id"], {
            "inspection_date": "2025-03-20",
            "inspection_time": "10:00",
            "inspector_name": "Pat",
        })
        queued = executions_for(db, automation["id"])
        assert len(queued) == 1
        assert queued[0]["trigger_data"]["inspection_id"] == inspection["id"]
        assert queued[0]["trigger_data"]["inspector_name"] == "Pat"


@pytest.mark.unit
class TestExternalTriggers:
    """Webhook and manual triggers."""

    def test_webhook_requires_automation_id(self, triggers):
        with pytest.raises(ValidationError):
            triggers.trigger_external(None, "claim-1", {})

    def test_webhook_rejects_wrong_type(self, triggers, make_automation):
        automation = make_automation("status_change")
        with pytest.raises(NotFoundError):
            triggers.trigger_external(automation["id"], "claim-1", {})

    def test_webhook_rejects_inactive(self, triggers, make_automation):
        automation = make_automation("webhook", is_active=False)
        with pytest.raises(NotFoundError):
            triggers.trigger_external(automation["id"], "claim-1", {})

    def test_webhook_defaults_trigger_data(self, triggers, make_automation):
        automation = make_automation("webhook")
        execution = triggers.trigger_external(automation["id"], "claim-1", None)
        assert execution["trigger_data"] == {}
        assert execution["status"] == "pending"

    def test_manual_trigger(self, triggers, make_automation):
        automation = make_automation("manual")
        execution = triggers.trigger_external(automation["id"], "claim-1", {"by": "ops"}, TriggerType.MANUAL)
        assert execution["trigger_data"] == {"by": "ops"}


@pytest.mark.unit
class TestScheduledSweep:
    """days_after scheduled automations."""

    def test_fires_once_for_claims_created_on_target_day(self, db, triggers, claims, make_automation, now):
        automation = make_automation("scheduled", trigger_config={"schedule_type": "days_after", "days_after_creation": 3})
        target = claims.create_claim({"claim_number": "FC-3"})
        too_new = claims.create_claim({"claim_number": "FC-NEW"})
        db.update("claims", target["id"], {"created_at": to_iso(now - timedelta(days=3, hours=2))})
        db.update("claims", too_new["id"], {"created_at": to_iso(now - timedelta(days=1))})

        result = triggers.sweep_scheduled(automation, now)
        assert result.created == 1
        execution = db.get("automation_executions", result.execution_ids[0])
        assert execution["claim_id"] == target["id"]
        assert execution["trigger_data"] == {
            "triggered_by": "scheduled",
            "days_after_creation": 3,
            "claim_number": "FC-3",
        }

        assert triggers.sweep_scheduled(automation, now).created == 0

    def test_default_is_seven_days(self, db, triggers, claims, make_automation, now):
        automation = make_automation("scheduled", trigger_config={"schedule_type": "days_after"})
        claim = claims.create_claim({"claim_number": "FC-7"})
        db.update("claims", claim["id"], {"created_at": to_iso(now - timedelta(days=7))})
        assert triggers.sweep_scheduled(automation, now).created == 1

    def test_closed_claims_skipped(self, db, triggers, claims, make_automation, now):
        automation = make_automation("scheduled", trigger_config={"schedule_type": "days_after"})
        claim = claims.create_claim({"claim_number": "FC-C"})
        db.update("claims", claim["id"], {"created_at": to_iso(now - timedelta(days=7)), "is_closed": True})
        assert triggers.sweep_scheduled(automation, now).created == 0

    def test_other_schedule_types_ignored(self, triggers, make_automation, now):
        automation = make_automation("scheduled", trigger_config={"schedule_type": "cron"})
        assert triggers.sweep_scheduled(automation, now).created == 0


@pytest.mark.unit
class TestInactivitySweep:
    """Inactivity automations."""

    def _stale_claim(self, db, claims, days):
        claim = claims.create_claim({"claim_number": f"FC-IDLE-{days}"})
        stale = to_iso(datetime.now(timezone.utc) - timedelta(days=days))
        return db.update("claims", claim["id"], {"created_at": stale, "updated_at": stale})

    def test_stale_claim_fires_once_per_period(self, db, triggers, claims, make_automation):
        automation = make_automation("inactivity", trigger_config={"inactivity_days": 10})
        claim = self._stale_claim(db, claims, 20)
        now = datetime.now(timezone.utc)

        result = triggers.sweep_inactivity(automation, now)
        assert result.created == 1
        execution = db.get("automation_executions", result.execution_ids[0])
        assert execution["claim_id"] == claim["id"]
        assert execution["trigger_data"]["triggered_by"] == "inactivity"
        assert execution["trigger_data"]["inactivity_days"] == 10

        assert triggers.sweep_inactivity(automation, now).created == 0

    def test_recent_claim_update_counts_as_activity(self, db, triggers, claims, make_automation):
        automation = make_automation("inactivity")
        claim = self._stale_claim(db, claims, 30)
        claims.add_claim_update(claim["id"], "Called the adjuster")

        assert triggers.sweep_inactivity(automation, datetime.now(timezone.utc)).created == 0

    def test_active_claim_skipped(self, triggers, claims, make_automation):
        automation = make_automation("inactivity")
        claims.create_claim({"claim_number": "FC-FRESH"})
        assert triggers.sweep_inactivity(automation, datetime.now(timezone.utc)).created == 0
