"""
Automation execution runner.

Drains pending ``automation_executions`` rows in batches and runs the sweep
pass that the cron endpoint calls periodically.
"""

import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .automation_actions import ActionExecutor
from .automation_triggers import AutomationTriggers
from .database import Database, to_iso, utcnow
from .error_handler import NotFoundError
from .logging_conf import get_logger, log_performance_metric
from .models import (
    ActionResult, CheckScheduledResult, ExecuteResult, ExecutionStatus,
    ExecutionSummary, SweepResult, TriggerType, WebhookTriggerResult
)

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 10


class AutomationRunner:
    """Runs queued automation executions."""

    def __init__(
        self,
        database: Database,
        triggers: AutomationTriggers,
        actions: ActionExecutor,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = utcnow
    ):
        self.db = database
        self.triggers = triggers
        self.actions = actions
        self.batch_size = batch_size
        self.clock = clock

    async def execute_pending(self, limit: Optional[int] = None) -> ExecuteResult:
        """
        Run up to ``limit`` pending executions, oldest first.

        A failing action is recorded in the execution's result and does not
        stop the remaining actions. Only a failure outside the action loop
        marks the execution ``failed``.
        """
        start_time = time.time()
        pending = self.db.select(
            "automation_executions",
            where={"status": ExecutionStatus.PENDING.value},
            order_by="created_at",
            limit=limit or self.batch_size
        )
        logger.info("Processing pending automations", count=len(pending))

        summaries: List[ExecutionSummary] = []
        for execution in pending:
            summaries.append(await self._run_execution(execution))

        log_performance_metric("execute_pending", (time.time() - start_time) * 1000, processed=len(summaries))
        return ExecuteResult(processed=len(summaries), results=summaries)

    async def _run_execution(self, execution: Dict[str, Any]) -> ExecutionSummary:
        execution_id = execution["id"]
        try:
            self.db.update("automation_executions", execution_id, {
                "status": ExecutionStatus.RUNNING.value,
                "started_at": to_iso(self.clock()),
            })

            automation = self.db.get("automations", execution["automation_id"])
            if not automation:
                raise NotFoundError("automation", execution["automation_id"])

            action_results = []
            for action in automation.get("actions") or []:
                action_results.append(await self._run_action(action, execution))

            self.db.update("automation_executions", execution_id, {
                "status": ExecutionStatus.SUCCESS.value,
                "result": {"actions": [result.model_dump(exclude_none=True) for result in action_results]},
                "completed_at": to_iso(self.clock()),
            })
            return ExecutionSummary(id=execution_id, status=ExecutionStatus.SUCCESS)

        except Exception as e:
            logger.error("Automation execution failed", execution_id=execution_id, error=str(e))
            self.db.update("automation_executions", execution_id, {
                "status": ExecutionStatus.FAILED.value,
                "error_message": str(e),
                "completed_at": to_iso(self.clock()),
            })
            return ExecutionSummary(id=execution_id, status=ExecutionStatus.FAILED, error=str(e))

    async def _run_action(self, action: Dict[str, Any], execution: Dict[str, Any]) -> ActionResult:
        action_type = action.get("type") or ""
        try:
            result = await self.actions.execute(action, execution)
            return ActionResult(action=action_type, success=True, result=result)
        except Exception as e:
            logger.error(
                "Action failed",
                execution_id=execution["id"],
                action=action_type,
                error=str(e),
                error_type=type(e).__name__
            )
            return ActionResult(action=action_type, success=False, error=str(e))

    async def check_scheduled(self, now: Optional[datetime] = None) -> CheckScheduledResult:
        """
        Sweep scheduled and inactivity automations, then drain the queue.

        A failure in one automation's sweep is recorded and the pass moves on.
        """
        now = now or self.clock()
        results: List[SweepResult] = []

        sweeps = (
            (TriggerType.SCHEDULED, self.triggers.sweep_scheduled),
            (TriggerType.INACTIVITY, self.triggers.sweep_inactivity),
        )
        for trigger_type, sweep in sweeps:
            for automation in self.triggers.active_automations(trigger_type):
                try:
                    results.append(sweep(automation, now))
                except Exception as e:
                    logger.error("Automation sweep failed", automation_id=automation["id"], error=str(e))
                    results.append(SweepResult(automation_id=automation["id"], error=str(e)))

        executed = await self.execute_pending()
        logger.info(
            "Scheduled automation check complete",
            checked=len(results),
            created=sum(result.created for result in results)
        )
        return CheckScheduledResult(checked=len(results), results=results, executed=executed)

    async def trigger_webhook(
        self,
        automation_id: Optional[str],
        claim_id: Optional[str],
        trigger_data: Optional[Dict[str, Any]] = None
    ) -> WebhookTriggerResult:
        """Queue an execution for a webhook automation and run the queue."""
        execution = self.triggers.trigger_external(automation_id, claim_id, trigger_data, TriggerType.WEBHOOK)
        await self.execute_pending()
        return WebhookTriggerResult(execution_id=execution["id"])

    async def run_manual(
        self,
        automation_id: str,
        claim_id: str,
        trigger_data: Optional[Dict[str, Any]] = None
    ) -> WebhookTriggerResult:
        """Queue an execution for a manual automation and run the queue."""
        execution = self.triggers.trigger_external(automation_id, claim_id, trigger_data, TriggerType.MANUAL)
        await self.execute_pending()
        return WebhookTriggerResult(execution_id=execution["id"])
