"""
Automation action handlers.

Each action in an automation's ``actions`` list is a ``{type, config}`` pair.
``ActionExecutor.execute`` dispatches on the type; handlers raise on failure
and the runner records the error against that single action.
"""

import base64
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .claims import ClaimManager
from .database import Database, to_iso, utcnow
from .error_handler import DeliveryError, NotFoundError, ValidationError
from .logging_conf import get_logger
from .messaging import EmailProvider, SmsProvider, WebhookClient, normalize_phone
from .models import ActionType
from .storage import FileStorage
from .templating import render_template

logger = get_logger(__name__)

WEBHOOK_FILE_LIMIT = 20
SIGNED_URL_TTL = 3600

# Claim columns forwarded to webhook receivers
WEBHOOK_CLAIM_FIELDS = (
    "id", "claim_number", "policy_number", "status", "loss_type", "loss_date",
    "loss_description", "policyholder_name", "policyholder_email",
    "policyholder_phone", "policyholder_address", "adjuster_name",
    "adjuster_email", "adjuster_phone", "claim_amount", "created_at", "updated_at",
)


def add_business_days(start: date, days: int) -> date:
    """Count ``days`` weekdays forward from ``start``."""
    current = start
    added = 0
    while added < days:
        current += timedelta(days=1)
        if current.weekday() < 5:
            added += 1
    return current


def email_html(body: str) -> str:
    return '<div style="font-family: sans-serif;">' + body.replace("\n", "<br>") + "</div>"


class ActionExecutor:
    """Runs automation actions against the claim an execution belongs to."""

    def __init__(
        self,
        database: Database,
        claims: ClaimManager,
        storage: FileStorage,
        email: EmailProvider,
        sms: SmsProvider,
        webhook: Optional[WebhookClient] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.db = database
        self.claims = claims
        self.storage = storage
        self.email = email
        self.sms = sms
        self.webhook = webhook or WebhookClient()
        self.clock = clock

        self._handlers: Dict[str, Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[Any]]] = {
            ActionType.CREATE_TASK.value: self.create_task,
            ActionType.SEND_NOTIFICATION.value: self.send_notification,
            ActionType.SEND_EMAIL.value: self.send_email,
            ActionType.SEND_SMS.value: self.send_sms,
            ActionType.UPDATE_CLAIM.value: self.update_claim,
            ActionType.UPDATE_CLAIM_STATUS.value: self.update_claim_status,
            ActionType.WEBHOOK.value: self.call_webhook,
            ActionType.CALL_WEBHOOK.value: self.call_webhook,
        }

    async def execute(self, action: Dict[str, Any], execution: Dict[str, Any]) -> Any:
        """
        Run one action for an execution.

        Raises:
            ValidationError: unknown action type or missing configuration
            DeliveryError: an email, SMS or webhook could not be delivered
        """
        action_type = action.get("type")
        handler = self._handlers.get(action_type)
        if handler is None:
            raise ValidationError("type", action_type, f"Unknown action type: {action_type}")
        return await handler(action.get("config") or {}, execution)

    def _claim(self, execution: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.db.get("claims", execution.get("claim_id"))

    def _require_claim(self, execution: Dict[str, Any]) -> Dict[str, Any]:
        claim = self._claim(execution)
        if not claim:
            raise NotFoundError("claim", execution.get("claim_id"))
        return claim

    # ─── tasks and notifications ─────────────────────────────────────

    def _due_date(self, config: Dict[str, Any]) -> Optional[str]:
        offset = config.get("due_date_offset")
        if not offset:
            return None
        today = self.clock().date()
        if config.get("due_date_type") == "business":
            return add_business_days(today, int(offset)).isoformat()
        return (today + timedelta(days=int(offset))).isoformat()

    def _assignee(self, config: Dict[str, Any], claim_id: Optional[str]) -> Optional[str]:
        assign_type = config.get("assign_to_type")
        if assign_type == "user":
            return config.get("assign_to_user_id") or None
        if assign_type == "claim_staff":
            staff = self.db.select_one("claim_staff", where={"claim_id": claim_id}, order_by="created_at")
            if not staff:
                logger.info("No staff found for claim, task will be unassigned", claim_id=claim_id)
            return staff["staff_id"] if staff else None
        if assign_type == "claim_contractor":
            contractor = self.db.select_one("claim_contractors", where={"claim_id": claim_id}, order_by="created_at")
            if not contractor:
                logger.info("No contractor found for claim, task will be unassigned", claim_id=claim_id)
            return contractor["contractor_id"] if contractor else None
        return None

    async def create_task(self, config: Dict[str, Any], execution: Dict[str, Any]) -> Dict[str, Any]:
        claim = self._claim(execution)
        trigger_data = execution.get("trigger_data") or {}

        values: Dict[str, Any] = {
            "claim_id": execution.get("claim_id"),
            "title": render_template(config.get("title") or "Automated Task", claim, trigger_data),
            "description": (
                render_template(config["description"], claim, trigger_data)
                if config.get("description") else None
            ),
            "priority": config.get("priority") or "medium",
            "status": "pending",
            "due_date": self._due_date(config),
        }
        assignee = self._assignee(config, execution.get("claim_id"))
        if assignee:
            values["assigned_to"] = assignee

        task = self.db.insert("tasks", values)
        logger.info("Created task", task_id=task["id"], assigned_to=assignee)
        return task

    async def send_notification(self, config: Dict[str, Any], execution: Dict[str, Any]) -> Dict[str, Any]:
        claim = self._claim(execution)
        message = render_template(
            config.get("message") or "Automated notification",
            claim,
            execution.get("trigger_data")
        )
        return self.claims.add_claim_update(execution.get("claim_id"), message, update_type="automation")

    # ─── email ───────────────────────────────────────────────────────

    def _email_recipient(self, claim: Dict[str, Any], recipient_type: Optional[str]) -> Dict[str, Optional[str]]:
        if recipient_type == "policyholder":
            return {"email": claim.get("policyholder_email"), "name": claim.get("policyholder_name")}
        if recipient_type == "adjuster":
            return {"email": claim.get("adjuster_email"), "name": claim.get("adjuster_name")}
        if recipient_type == "referrer":
            referrer = self.db.get("referrers", claim.get("referrer_id")) or {}
            return {"email": referrer.get("email"), "name": referrer.get("name")}
        return {"email": None, "name": None}

    def _attachments(self, claim_id: str, config: Dict[str, Any]) -> List[Dict[str, str]]:
        folder_names = config.get("attachment_folders") or []
        if not folder_names:
            return []

        folders = self.db.select_in("claim_folders", "name", folder_names, where={"claim_id": claim_id})
        if not folders:
            return []

        files = self.db.select_in(
            "claim_files", "folder_id", [folder["id"] for folder in folders],
            where={"claim_id": claim_id}
        )
        patterns = [pattern.lower() for pattern in config.get("file_name_patterns") or []]
        if patterns:
            files = [
                file for file in files
                if any(pattern in file["file_name"].lower() for pattern in patterns)
            ]

        attachments = []
        for file in files:
            try:
                data = self.storage.download(file["file_path"])
            except (NotFoundError, ValidationError, OSError) as e:
                logger.warning("Skipping attachment", file_name=file["file_name"], error=str(e))
                continue
            attachments.append({
                "filename": file["file_name"],
                "content": base64.b64encode(data).decode("ascii"),
            })
        return attachments

    async def send_email(self, config: Dict[str, Any], execution: Dict[str, Any]) -> Dict[str, Any]:
        claim = self._require_claim(execution)
        trigger_data = execution.get("trigger_data") or {}
        recipient_type = config.get("recipient_type")
        recipient = self._email_recipient(claim, recipient_type)

        if not recipient["email"]:
            raise DeliveryError("email", f"No email found for {recipient_type}")

        subject = render_template(config.get("subject") or "Claim Update", claim, trigger_data)
        body = render_template(config.get("message") or "", claim, trigger_data)
        attachments = self._attachments(claim["id"], config)

        await self.email.send([recipient["email"]], subject, email_html(body), attachments=attachments)

        self.db.insert("emails", {
            "claim_id": claim["id"],
            "recipient_email": recipient["email"],
            "recipient_name": recipient["name"],
            "recipient_type": recipient_type,
            "subject": subject,
            "body": body,
            "sent_at": to_iso(self.clock()),
        })
        logger.info("Sent automation email", claim_id=claim["id"], attachments=len(attachments))
        return {"sent_to": recipient["email"], "attachments_count": len(attachments)}

    # ─── sms ─────────────────────────────────────────────────────────

    async def _send_sms(self, claim_id: str, phone: str, text: str) -> Dict[str, Any]:
        sent = await self.sms.send(phone, text)
        self.db.insert("sms_messages", {
            "claim_id": claim_id,
            "to_number": sent["to"],
            "from_number": sent.get("from"),
            "message_body": text,
            "direction": "outbound",
            "status": "sent",
            "vendor_message_id": sent.get("message_id"),
        })
        return {"sent_to": sent["to"], "message_id": sent.get("message_id")}

    async def send_sms(self, config: Dict[str, Any], execution: Dict[str, Any]) -> Dict[str, Any]:
        claim = self._require_claim(execution)
        inspection = self.db.select_one(
            "inspections", where={"claim_id": claim["id"]},
            order_by="inspection_date", descending=True
        )

        template = config.get("message") or ""
        if config.get("sms_template_id"):
            sms_template = self.db.get("sms_templates", config["sms_template_id"])
            if sms_template:
                template = sms_template["body"]
        text = render_template(template, claim, execution.get("trigger_data"), inspection)

        recipient_type = config.get("recipient_type")
        if recipient_type == "contractors":
            return await self._send_to_contractors(claim["id"], text)

        if recipient_type == "policyholder":
            phone = claim.get("policyholder_phone")
        elif recipient_type == "adjuster":
            phone = claim.get("adjuster_phone")
        else:
            phone = None

        if not phone:
            raise DeliveryError("sms", f"No phone found for {recipient_type}")
        return await self._send_sms(claim["id"], phone, text)

    async def _send_to_contractors(self, claim_id: str, text: str) -> Dict[str, Any]:
        assignments = self.db.select("claim_contractors", where={"claim_id": claim_id})
        if not assignments:
            raise DeliveryError("sms", "No contractors assigned to this claim")

        contractors = self.db.select_in("contacts", "id", [row["contractor_id"] for row in assignments])
        if not contractors:
            raise DeliveryError("sms", "No contractor details found")

        results = []
        for contractor in contractors:
            if not contractor.get("phone"):
                continue
            try:
                results.append(await self._send_sms(claim_id, contractor["phone"], text))
            except Exception as e:
                logger.error(
                    "Failed to send SMS to contractor",
                    contractor=contractor.get("name"),
                    to=normalize_phone(contractor["phone"]),
                    error=str(e)
                )

        if not results:
            raise DeliveryError("sms", "No contractors with phone numbers found")
        return {"sent_count": len(results), "results": results}

    # ─── claim updates ───────────────────────────────────────────────

    async def update_claim(self, config: Dict[str, Any], execution: Dict[str, Any]) -> Dict[str, Any]:
        return self.claims.update_claim(execution.get("claim_id"), dict(config.get("updates") or {}))

    async def update_claim_status(self, config: Dict[str, Any], execution: Dict[str, Any]) -> Dict[str, Any]:
        new_status = config.get("new_status")
        if not new_status:
            raise ValidationError("new_status", new_status, "No status specified for update_claim_status action")
        self.claims.update_claim(execution.get("claim_id"), {"status": new_status})
        logger.info("Updated claim status", claim_id=execution.get("claim_id"), new_status=new_status)
        return {"new_status": new_status, "claim_id": execution.get("claim_id")}

    # ─── webhooks ────────────────────────────────────────────────────

    def _claim_snapshot(self, claim: Dict[str, Any]) -> Dict[str, Any]:
        snapshot = {field: claim.get(field) for field in WEBHOOK_CLAIM_FIELDS}
        company = self.db.get("insurance_companies", claim.get("insurance_company_id")) or {}
        snapshot["insurance_company"] = claim.get("insurance_company") or company.get("name")
        snapshot["insurance_email"] = claim.get("insurance_email") or company.get("email")
        snapshot["insurance_phone"] = claim.get("insurance_phone") or company.get("phone")
        return snapshot

    def _signed_files(self, claim_id: str) -> List[Dict[str, Any]]:
        files = self.db.select(
            "claim_files", where={"claim_id": claim_id},
            order_by="uploaded_at", descending=True, limit=WEBHOOK_FILE_LIMIT
        )
        return [
            {
                "id": file["id"],
                "file_name": file["file_name"],
                "file_path": file["file_path"],
                "file_type": file.get("file_type"),
                "uploaded_at": file.get("uploaded_at"),
                "signed_url": self.storage.create_signed_url(file["file_path"], SIGNED_URL_TTL),
            }
            for file in files
        ]

    async def call_webhook(self, config: Dict[str, Any], execution: Dict[str, Any]) -> Dict[str, Any]:
        url = config.get("webhook_url") or config.get("url")
        if not url:
            raise ValidationError("webhook_url", url, "Webhook URL not configured")

        claim = self._claim(execution)
        payload: Dict[str, Any] = {
            "execution_id": execution["id"],
            "automation_id": execution.get("automation_id"),
            "trigger_data": execution.get("trigger_data"),
            "claim": self._claim_snapshot(claim) if claim else None,
            "timestamp": to_iso(self.clock()),
        }
        if config.get("webhook_include_files") and claim:
            files = self._signed_files(claim["id"])
            if files:
                payload["files"] = files

        logger.info("Calling webhook", url=url, execution_id=execution["id"])
        response = await self.webhook.post(url, payload)
        return {"status": response.get("status", 200), "webhook_url": url, "claim_id": execution.get("claim_id")}
