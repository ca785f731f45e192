"""
Automation trigger matching.

Turns claim events (status change, task completion, inspection scheduling)
and periodic sweeps (scheduled, inactivity) into pending rows in
``automation_executions``. Nothing here runs actions; the runner picks the
pending rows up afterwards.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .database import Database, parse_iso, to_iso, utcnow
from .error_handler import NotFoundError, ValidationError
from .logging_conf import get_logger
from .models import ExecutionStatus, SweepResult, TriggerType

logger = get_logger(__name__)

DEFAULT_DAYS_AFTER_CREATION = 7
DEFAULT_INACTIVITY_DAYS = 14


def last_activity(database: Database, claim: Dict[str, Any]) -> datetime:
    """
    Most recent activity on a claim.

    The newest of the claim's own ``updated_at`` and the latest claim update,
    file upload and task change.
    """
    claim_id = claim["id"]
    candidates = [claim.get("updated_at")]

    latest_update = database.latest("claim_updates", claim_id, "created_at")
    latest_file = database.latest("claim_files", claim_id, "uploaded_at")
    latest_task = database.latest("tasks", claim_id, "updated_at")

    candidates.append(latest_update["created_at"] if latest_update else None)
    candidates.append(latest_file["uploaded_at"] if latest_file else None)
    candidates.append(latest_task["updated_at"] if latest_task else None)

    dates = [parse_iso(value) for value in candidates if value]
    if not dates:
        return parse_iso(claim.get("created_at")) or utcnow()
    return max(dates)


class AutomationTriggers:
    """Creates pending executions for automations whose trigger matches."""

    def __init__(self, database: Database):
        self.db = database

    def create_execution(
        self,
        automation_id: str,
        claim_id: Optional[str],
        trigger_data: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        execution = self.db.insert("automation_executions", {
            "automation_id": automation_id,
            "claim_id": claim_id,
            "trigger_data": trigger_data or {},
            "status": ExecutionStatus.PENDING.value,
        })
        logger.debug(
            "Queued automation execution",
            execution_id=execution["id"],
            automation_id=automation_id,
            claim_id=claim_id
        )
        return execution

    def active_automations(self, trigger_type: TriggerType) -> List[Dict[str, Any]]:
        return self.db.select(
            "automations",
            where={"is_active": True, "trigger_type": trigger_type.value},
            order_by="created_at"
        )

    # ─── event triggers ──────────────────────────────────────────────

    def on_status_change(self, claim: Dict[str, Any], old_status: Optional[str], new_status: Optional[str]) -> List[str]:
        """Queue status-change automations when a claim's status actually changed."""
        if old_status == new_status:
            return []

        created = []
        for automation in self.active_automations(TriggerType.STATUS_CHANGE):
            wanted = (automation.get("trigger_config") or {}).get("status")
            if wanted is not None and wanted != new_status:
                continue
            execution = self.create_execution(automation["id"], claim["id"], {
                "old_status": old_status,
                "new_status": new_status,
                "claim_number": claim.get("claim_number"),
            })
            created.append(execution["id"])

        if created:
            logger.info("Status change automations queued", claim_id=claim["id"], count=len(created))
        return created

    def on_task_completed(self, task: Dict[str, Any]) -> List[str]:
        """Queue task-completed automations whose title pattern matches the task."""
        title = task.get("title") or ""
        created = []
        for automation in self.active_automations(TriggerType.TASK_COMPLETED):
            pattern = (automation.get("trigger_config") or {}).get("task_title_pattern")
            if pattern and pattern.lower() not in title.lower():
                continue
            execution = self.create_execution(automation["id"], task.get("claim_id"), {
                "task_id": task["id"],
                "task_title": task.get("title"),
                "task_description": task.get("description"),
                "completed_at": task.get("completed_at"),
            })
            created.append(execution["id"])
        return created

    def on_inspection_scheduled(self, inspection: Dict[str, Any]) -> List[str]:
        """Queue every active inspection-scheduled automation."""
        created = []
        for automation in self.active_automations(TriggerType.INSPECTION_SCHEDULED):
            execution = self.create_execution(automation["id"], inspection["claim_id"], {
                "inspection_id": inspection["id"],
                "inspection_date": inspection.get("inspection_date"),
                "inspection_time": inspection.get("inspection_time"),
                "inspection_type": inspection.get("inspection_type"),
                "inspector_name": inspection.get("inspector_name"),
                "notes": inspection.get("notes"),
            })
            created.append(execution["id"])
        return created

    def trigger_external(
        self,
        automation_id: Optional[str],
        claim_id: Optional[str],
        trigger_data: Optional[Dict[str, Any]] = None,
        trigger_type: TriggerType = TriggerType.WEBHOOK
    ) -> Dict[str, Any]:
        """
        Queue an execution for a webhook or manually-run automation.

        Raises:
            ValidationError: automation_id is missing
            NotFoundError: the automation is missing, inactive or of another type
        """
        if not automation_id:
            raise ValidationError("automation_id", automation_id, "automation_id is required")

        automation = self.db.get("automations", automation_id)
        if (
            not automation
            or not automation.get("is_active")
            or automation.get("trigger_type") != trigger_type.value
        ):
            raise NotFoundError("automation", automation_id, detail="Automation not found or not active")

        return self.create_execution(automation_id, claim_id, trigger_data or {})

    # ─── sweeps ──────────────────────────────────────────────────────

    def sweep_scheduled(self, automation: Dict[str, Any], now: Optional[datetime] = None) -> SweepResult:
        """
        Queue one execution per open claim created ``days_after_creation`` days ago.

        Each (automation, claim) pair only ever gets one scheduled execution.
        """
        now = now or utcnow()
        config = automation.get("trigger_config") or {}
        result = SweepResult(automation_id=automation["id"], type=TriggerType.SCHEDULED.value)

        if config.get("schedule_type") != "days_after":
            return result

        days_ago = config.get("days_after_creation") or DEFAULT_DAYS_AFTER_CREATION
        target_day = (now - timedelta(days=days_ago)).date()

        for claim in self.db.select("claims", where={"is_closed": False}):
            created_at = parse_iso(claim.get("created_at"))
            if created_at is None or created_at.date() != target_day:
                continue

            already_ran = self.db.count("automation_executions", where={
                "automation_id": automation["id"],
                "claim_id": claim["id"],
            })
            if already_ran:
                continue

            execution = self.create_execution(automation["id"], claim["id"], {
                "triggered_by": "scheduled",
                "days_after_creation": days_ago,
                "claim_number": claim.get("claim_number"),
            })
            result.execution_ids.append(execution["id"])
            logger.info("Created scheduled execution", claim_id=claim["id"], automation_id=automation["id"])

        result.created = len(result.execution_ids)
        return result

    def sweep_inactivity(self, automation: Dict[str, Any], now: Optional[datetime] = None) -> SweepResult:
        """
        Queue executions for open claims with no activity for ``inactivity_days``.

        An execution created for the same pair since ``cutoff - 1 day``
        suppresses a new one, so a claim is nudged once per inactivity period.
        """
        now = now or utcnow()
        config = automation.get("trigger_config") or {}
        inactivity_days = config.get("inactivity_days") or DEFAULT_INACTIVITY_DAYS
        cutoff = now - timedelta(days=inactivity_days)
        period_start = cutoff - timedelta(days=1)
        result = SweepResult(automation_id=automation["id"], type=TriggerType.INACTIVITY.value)

        for claim in self.db.select("claims", where={"is_closed": False}):
            activity = last_activity(self.db, claim)
            if activity >= cutoff:
                continue

            recent = [
                execution for execution in self.db.select("automation_executions", where={
                    "automation_id": automation["id"],
                    "claim_id": claim["id"],
                })
                if parse_iso(execution["created_at"]) >= period_start
            ]
            if recent:
                continue

            execution = self.create_execution(automation["id"], claim["id"], {
                "triggered_by": "inactivity",
                "inactivity_days": inactivity_days,
                "last_activity": to_iso(activity),
                "claim_number": claim.get("claim_number"),
            })
            result.execution_ids.append(execution["id"])
            logger.info(
                "Created inactivity execution",
                claim_id=claim["id"],
                last_activity=to_iso(activity)
            )

        result.created = len(result.execution_ids)
        return result
