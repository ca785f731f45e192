"""
Unit tests for the automation execution runner.
"""

from datetime import timedelta

import pytest

from claimdesk.database import to_iso
from claimdesk.error_handler import NotFoundError
from claimdesk.models import ExecutionStatus


@pytest.mark.unit
@pytest.mark.asyncio
class TestExecutePending:

    async def test_runs_actions_and_records_results(self, db, runner, claims, sample_claim, make_automation, mock_email):
        automation = make_automation("status_change", actions=[
            {"type": "send_notification", "config": {"message": "Now {trigger.new_status}"}},
            {"type": "send_email", "config": {"recipient_type": "policyholder", "message": "Hi"}},
        ])
        claims.update_claim(sample_claim["id"], {"status": "Open"})

        result = await runner.execute_pending()

        assert result.processed == 1
        assert result.results[0].status == ExecutionStatus.SUCCESS
        execution = db.select_one("automation_executions", where={"automation_id": automation["id"]})
        assert execution["status"] == "success"
        assert execution["started_at"].startswith("2025-03-12")
        assert execution["completed_at"].startswith("2025-03-12")
        assert [action["action"] for action in execution["result"]["actions"]] == ["send_notification", "send_email"]
        assert all(action["success"] for action in execution["result"]["actions"])
        mock_email.send.assert_awaited_once()

    async def test_failed_action_does_not_stop_the_rest(self, db, runner, claims, sample_claim, make_automation):
        automation = make_automation("status_change", actions=[
            {"type": "send_email", "config": {"recipient_type": "referrer"}},
            {"type": "create_task", "config": {"title": "Follow up"}},
        ])
        claims.update_claim(sample_claim["id"], {"status": "Open"})

        await runner.execute_pending()

        execution = db.select_one("automation_executions", where={"automation_id": automation["id"]})
        assert execution["status"] == "success"
        failed, created = execution["result"]["actions"]
        assert failed["success"] is False
        assert "No email found for referrer" in failed["error"]
        assert created["success"] is True
        assert db.count("tasks", where={"claim_id": sample_claim["id"], "title": "Follow up"}) == 1

    async def test_missing_automation_marks_failed(self, db, runner, sample_claim):
        execution = db.insert("automation_executions", {
            "automation_id": "deleted",
            "claim_id": sample_claim["id"],
            "status": "pending",
        })

        result = await runner.execute_pending()

        assert result.results[0].status == ExecutionStatus.FAILED
        stored = db.get("automation_executions", execution["id"])
        assert stored["status"] == "failed"
        assert stored["error_message"]

    async def test_batch_limit_and_oldest_first(self, db, runner, make_automation, now):
        automation = make_automation("manual")
        ids = []
        for minutes in (5, 30, 10):
            row = db.insert("automation_executions", {
                "automation_id": automation["id"],
                "status": "pending",
                "created_at": to_iso(now - timedelta(minutes=minutes)),
            })
            ids.append(row["id"])

        result = await runner.execute_pending(limit=2)

        assert result.processed == 2
        assert [summary.id for summary in result.results] == [ids[1], ids[2]]
        assert db.get("automation_executions", ids[0])["status"] == "pending"

    async def test_nothing_pending(self, runner):
        result = await runner.execute_pending()
        assert result.processed == 0
        assert result.results == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestCheckScheduled:

    async def test_sweeps_then_drains_queue(self, db, runner, claims, make_automation, now):
        automation = make_automation(
            "scheduled",
            actions=[{"type": "create_task", "config": {"title": "Day 7 review"}}],
            trigger_config={"schedule_type": "days_after"}
        )
        claim = claims.create_claim({"claim_number": "FC-7"})
        db.update("claims", claim["id"], {"created_at": to_iso(now - timedelta(days=7))})

        result = await runner.check_scheduled(now)

        assert result.checked == 1
        assert result.results[0].automation_id == automation["id"]
        assert result.results[0].created == 1
        assert result.executed.processed == 1
        assert db.count("tasks", where={"claim_id": claim["id"], "title": "Day 7 review"}) == 1

    async def test_no_active_automations(self, runner, now):
        result = await runner.check_scheduled(now)
        assert result.checked == 0
        assert result.executed.processed == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestExternalRuns:

    async def test_trigger_webhook_runs_immediately(self, db, runner, sample_claim, make_automation):
        automation = make_automation("webhook", actions=[
            {"type": "send_notification", "config": {"message": "From {trigger.source}"}},
        ])

        result = await runner.trigger_webhook(automation["id"], sample_claim["id"], {"source": "zapier"})

        assert result.success is True
        assert result.message == "Automation triggered successfully"
        assert db.get("automation_executions", result.execution_id)["status"] == "success"
        update = db.select_one("claim_updates", where={"claim_id": sample_claim["id"]})
        assert update["content"] == "From zapier"

    async def test_trigger_webhook_unknown_automation(self, runner):
        with pytest.raises(NotFoundError):
            await runner.trigger_webhook("missing", None, {})

    async def test_run_manual(self, db, runner, sample_claim, make_automation):
        automation = make_automation("manual", actions=[{"type": "create_task", "config": {}}])
        result = await runner.run_manual(automation["id"], sample_claim["id"])
        assert db.get("automation_executions", result.execution_id)["status"] == "success"
        assert db.count("tasks", where={"title": "Automated Task"}) == 1
