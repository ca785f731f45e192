"""
Claim intake and claim state management.

``ClaimManager`` owns every write to a claim and its related records, and
emits the automation events that follow from those writes: status changes,
task completions and scheduled inspections. Task templates are applied here
too, on claim creation and on status change.
"""

from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .automation_triggers import AutomationTriggers, last_activity
from .database import Database, to_iso, utcnow
from .error_handler import NotFoundError, ValidationError
from .logging_conf import bind_claim_context, get_logger
from .models import TaskTemplateTrigger

logger = get_logger(__name__)


class ClaimManager:
    """Manages claims and the records hanging off them."""

    def __init__(
        self,
        database: Database,
        triggers: Optional[AutomationTriggers] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.db = database
        self.triggers = triggers or AutomationTriggers(database)
        self.clock = clock

    def _today(self) -> date:
        return self.clock().date()

    # ─── claims ──────────────────────────────────────────────────────

    def create_claim(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Open a new claim and stamp out its creation task templates.

        Args:
            data: Claim column values

        Returns:
            The stored claim row
        """
        values = {key: value for key, value in data.items() if value is not None}
        values["is_closed"] = False

        claim = self.db.insert("claims", values)
        claim_logger = bind_claim_context(logger, claim["id"], claim.get("claim_number"))
        claim_logger.info("Claim created", status=claim.get("status"))

        self._apply_task_templates(claim, TaskTemplateTrigger.ON_CLAIM_CREATION)
        return claim

    def get_claim(self, claim_id: str) -> Dict[str, Any]:
        claim = self.db.get("claims", claim_id)
        if not claim:
            raise NotFoundError("claim", claim_id)
        return claim

    def list_claims(self, include_closed: bool = False) -> List[Dict[str, Any]]:
        where = None if include_closed else {"is_closed": False}
        return self.db.select("claims", where=where, order_by="created_at", descending=True)

    def update_claim(self, claim_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply changes to a claim.

        A real status change queues status-change automations and applies
        the task templates bound to the new status.
        """
        existing = self.get_claim(claim_id)
        values = {key: value for key, value in changes.items() if key not in ("id", "created_at")}
        if not values:
            return existing

        updated = self.db.update("claims", claim_id, values)

        if "status" in values and existing.get("status") != updated.get("status"):
            claim_logger = bind_claim_context(logger, claim_id, updated.get("claim_number"))
            claim_logger.info("Claim status changed", old_status=existing.get("status"), new_status=updated.get("status"))
            self.triggers.on_status_change(updated, existing.get("status"), updated.get("status"))
            self._apply_task_templates(updated, TaskTemplateTrigger.ON_STATUS_CHANGE)

        return updated

    def last_activity(self, claim: Dict[str, Any]) -> datetime:
        return last_activity(self.db, claim)

    # ─── task templates ──────────────────────────────────────────────

    def create_task_template(self, data: Dict[str, Any]) -> Dict[str, Any]:
        trigger_type = TaskTemplateTrigger(data.get("trigger_type"))
        if trigger_type == TaskTemplateTrigger.ON_STATUS_CHANGE and not data.get("trigger_status"):
            raise ValidationError("trigger_status", None, "trigger_status is required for on_status_change templates")
        values = dict(data)
        values["trigger_type"] = trigger_type.value
        return self.db.insert("task_automations", values)

    def list_task_templates(self) -> List[Dict[str, Any]]:
        return self.db.select("task_automations", order_by="created_at")

    def _apply_task_templates(self, claim: Dict[str, Any], trigger: TaskTemplateTrigger) -> List[Dict[str, Any]]:
        where: Dict[str, Any] = {"is_active": True, "trigger_type": trigger.value}
        if trigger == TaskTemplateTrigger.ON_STATUS_CHANGE:
            where["trigger_status"] = claim.get("status")

        created = []
        for template in self.db.select("task_automations", where=where, order_by="created_at"):
            due = self._today() + timedelta(days=template.get("due_date_offset") or 0)
            task = self.db.insert("tasks", {
                "claim_id": claim["id"],
                "title": template["title"],
                "description": template.get("description"),
                "priority": template.get("priority") or "medium",
                "status": "pending",
                "due_date": due.isoformat(),
            })
            created.append(task)

        if created:
            logger.info("Task templates applied", claim_id=claim["id"], trigger=trigger.value, count=len(created))
        return created

    # ─── tasks ───────────────────────────────────────────────────────

    def add_task(self, claim_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self.get_claim(claim_id)
        values = {key: value for key, value in data.items() if value is not None}
        values["claim_id"] = claim_id
        task = self.db.insert("tasks", values)
        if task.get("status") == "completed":
            self.triggers.on_task_completed(task)
        return task

    def update_task(self, task_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Update a task. Moving it into ``completed`` queues task-completed automations."""
        existing = self.db.get("tasks", task_id)
        if not existing:
            raise NotFoundError("task", task_id)

        values = dict(changes)
        becomes_completed = values.get("status") == "completed" and existing.get("status") != "completed"
        if becomes_completed and not values.get("completed_at"):
            values["completed_at"] = to_iso(self.clock())

        task = self.db.update("tasks", task_id, values)
        if becomes_completed:
            self.triggers.on_task_completed(task)
        return task

    def complete_task(self, task_id: str) -> Dict[str, Any]:
        return self.update_task(task_id, {"status": "completed"})

    # ─── inspections, notes, files ───────────────────────────────────

    def schedule_inspection(self, claim_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        self.get_claim(claim_id)
        inspection = self.db.insert("inspections", {**data, "claim_id": claim_id})
        self.triggers.on_inspection_scheduled(inspection)
        return inspection

    def add_note(self, claim_id: str, content: str) -> Dict[str, Any]:
        self.get_claim(claim_id)
        return self.db.insert("notes", {"claim_id": claim_id, "content": content})

    def add_claim_update(self, claim_id: str, content: str, update_type: Optional[str] = None) -> Dict[str, Any]:
        return self.db.insert("claim_updates", {
            "claim_id": claim_id,
            "content": content,
            "update_type": update_type,
        })

    def add_folder(self, claim_id: str, name: str) -> Dict[str, Any]:
        existing = self.db.select_one("claim_folders", where={"claim_id": claim_id, "name": name})
        if existing:
            return existing
        return self.db.insert("claim_folders", {"claim_id": claim_id, "name": name})

    def add_file(
        self,
        claim_id: str,
        file_name: str,
        file_path: str,
        folder_name: Optional[str] = None,
        **extra: Any
    ) -> Dict[str, Any]:
        self.get_claim(claim_id)
        values: Dict[str, Any] = {"claim_id": claim_id, "file_name": file_name, "file_path": file_path, **extra}
        if folder_name:
            values["folder_id"] = self.add_folder(claim_id, folder_name)["id"]
        return self.db.insert("claim_files", values)

    def add_photo(self, claim_id: str, **values: Any) -> Dict[str, Any]:
        self.get_claim(claim_id)
        return self.db.insert("claim_photos", {**values, "claim_id": claim_id})

    # ─── assignments and outcomes ────────────────────────────────────

    def assign_staff(self, claim_id: str, staff_id: str) -> Dict[str, Any]:
        return self.db.insert("claim_staff", {"claim_id": claim_id, "staff_id": staff_id})

    def assign_contractor(self, claim_id: str, contractor_id: str) -> Dict[str, Any]:
        return self.db.insert("claim_contractors", {"claim_id": claim_id, "contractor_id": contractor_id})

    def record_outcome(self, claim_id: str, **values: Any) -> Dict[str, Any]:
        self.get_claim(claim_id)
        return self.db.insert("claim_outcomes", {**values, "claim_id": claim_id})

    def declare_position(self, claim_id: str, is_locked: bool = True, **values: Any) -> Dict[str, Any]:
        self.get_claim(claim_id)
        return self.db.insert("declared_positions", {**values, "claim_id": claim_id, "is_locked": is_locked})
