"""
Per-claim follow-up cadences.

Two cadences live on each ``claim_automations`` row: general follow-ups to
the adjuster (or policyholder), and recoverable depreciation (RD) follow-ups
that chase the carrier for RD release. Both are driven by a cron sweep that
drafts each email with the LLM and sends it through the email provider.
"""

import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from .automation_actions import email_html
from .claims import ClaimManager
from .database import Database, parse_iso, to_iso, utcnow
from .error_handler import ValidationError
from .llm.base import LLMProvider
from .logging_conf import bind_claim_context, get_logger
from .messaging import EmailProvider
from .models import FollowUpResult, FollowUpSweepResult

logger = get_logger(__name__)

# Statuses meaning RD has been requested from the carrier
RD_REQUEST_STATUSES = (
    "Recoverable Depreciation Requested",
    "RD Requested",
    "Awaiting RD Release",
    "RD Pending",
)

# Statuses meaning RD was released and the check is on its way
RD_RELEASED_STATUSES = (
    "Waiting on Recoverable Depreciation",
    "Waiting on RD Check",
    "RD Check Pending",
    "Awaiting RD Check",
)

FOLLOW_UP_SETTINGS = (
    "is_enabled",
    "follow_up_enabled",
    "follow_up_interval_days",
    "follow_up_max_count",
    "rd_follow_up_enabled",
    "rd_follow_up_interval_days",
    "rd_follow_up_max_count",
)

FOLLOW_UP_TEMPERATURE = 0.7
RD_TASK_MAX_DAYS = 3


def status_matches(status: Optional[str], candidates) -> bool:
    """Case-insensitive substring match in either direction. Empty never matches."""
    status = (status or "").strip().lower()
    if not status:
        return False
    return any(status in candidate.lower() or candidate.lower() in status for candidate in candidates)


def claim_cc_address(claim: Dict[str, Any], domain: str) -> str:
    """Per-claim inbox address that is copied on every follow-up."""
    if claim.get("policy_number"):
        local = re.sub(r"[^a-zA-Z0-9]", "", claim["policy_number"]).lower()
    else:
        local = claim["id"][:8]
    return f"claim-{local}@{domain}"


class FollowUpManager:
    """Configures and runs follow-up cadences."""

    def __init__(
        self,
        database: Database,
        claims: ClaimManager,
        email: EmailProvider,
        llm: Optional[LLMProvider] = None,
        company_name: Optional[str] = None,
        claim_email_domain: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        from .settings import settings

        config = settings.global_config
        self.db = database
        self.claims = claims
        self.email = email
        self.llm = llm
        self.company_name = company_name or config.company_name
        self.claim_email_domain = claim_email_domain or config.claim_email_domain
        self.clock = clock

    # ─── configuration ───────────────────────────────────────────────

    def get_settings(self, claim_id: str) -> Optional[Dict[str, Any]]:
        return self.db.select_one("claim_automations", where={"claim_id": claim_id})

    def configure(self, claim_id: str, **changes: Any) -> Dict[str, Any]:
        """
        Create or update a claim's cadence settings.

        Turning a cadence on restarts its count, schedules the next run one
        interval from now and clears any earlier stop. Turning it off stops
        it with reason ``manual``. A new interval on a running cadence
        reschedules its next run.
        """
        self.claims.get_claim(claim_id)
        unknown = set(changes) - set(FOLLOW_UP_SETTINGS)
        if unknown:
            raise ValidationError("settings", sorted(unknown), "Unknown follow-up settings")

        existing = self.get_settings(claim_id) or {}
        values: Dict[str, Any] = {key: value for key, value in changes.items() if value is not None}
        values["claim_id"] = claim_id
        now = self.clock()

        for prefix in ("follow_up", "rd_follow_up"):
            enabled = values.get(f"{prefix}_enabled")
            interval = values.get(f"{prefix}_interval_days") or existing.get(f"{prefix}_interval_days") or 3

            if enabled:
                values[f"{prefix}_current_count"] = 0
                values[f"{prefix}_next_at"] = to_iso(now + timedelta(days=interval))
                values[f"{prefix}_stopped_at"] = None
                values[f"{prefix}_stop_reason"] = None
            elif enabled is not None:
                values[f"{prefix}_stopped_at"] = to_iso(now)
                values[f"{prefix}_stop_reason"] = "manual"
            elif (
                f"{prefix}_interval_days" in values
                and existing.get(f"{prefix}_enabled")
                and not existing.get(f"{prefix}_stopped_at")
            ):
                values[f"{prefix}_next_at"] = to_iso(now + timedelta(days=interval))

        row = self.db.upsert("claim_automations", values, on_conflict="claim_id")
        logger.info(
            "Follow-up settings saved",
            claim_id=claim_id,
            follow_up_enabled=bool(row.get("follow_up_enabled")),
            rd_follow_up_enabled=bool(row.get("rd_follow_up_enabled"))
        )
        return row

    def _due(self, prefix: str, now: datetime) -> List[Dict[str, Any]]:
        rows = self.db.select("claim_automations", where={
            "is_enabled": True,
            f"{prefix}_enabled": True,
            f"{prefix}_stopped_at": None,
        })
        due = []
        for row in rows:
            next_at = parse_iso(row.get(f"{prefix}_next_at"))
            if next_at is not None and next_at <= now:
                due.append(row)
        return due

    def _stop(self, cadence: Dict[str, Any], prefix: str, reason: str, now: datetime, **extra: Any) -> None:
        self.db.update("claim_automations", cadence["id"], {
            f"{prefix}_stopped_at": to_iso(now),
            f"{prefix}_stop_reason": reason,
            **extra,
        })

    def _record_sent(self, cadence: Dict[str, Any], prefix: str, number: int, now: datetime) -> None:
        self.db.update("claim_automations", cadence["id"], {
            f"{prefix}_current_count": number,
            f"{prefix}_last_sent_at": to_iso(now),
            f"{prefix}_next_at": to_iso(now + timedelta(days=cadence[f"{prefix}_interval_days"])),
        })

    async def _draft(self, system: str, prompt: str) -> str:
        if self.llm is None:
            raise RuntimeError("LLM provider not configured")
        return await self.llm.generate(
            system, [{"role": "user", "content": prompt}], temperature=FOLLOW_UP_TEMPERATURE
        )

    async def _send(
        self,
        claim: Dict[str, Any],
        recipient_email: str,
        recipient_name: str,
        recipient_type: str,
        subject: str,
        body: str,
        now: datetime
    ) -> None:
        await self.email.send(
            [recipient_email],
            subject,
            email_html(body),
            cc=[claim_cc_address(claim, self.claim_email_domain)]
        )
        self.db.insert("emails", {
            "claim_id": claim["id"],
            "recipient_email": recipient_email,
            "recipient_name": recipient_name,
            "recipient_type": recipient_type,
            "subject": subject,
            "body": body,
            "sent_at": to_iso(now),
        })

    # ─── general follow-ups ──────────────────────────────────────────

    def _follow_up_prompt(self, claim: Dict[str, Any], number: int, max_count: int) -> str:
        return f"""You are a professional public adjuster assistant for {self.company_name}. Generate a brief, professional follow-up email.

CLAIM CONTEXT:
- Claim Number: {claim.get('claim_number') or 'N/A'}
- Policyholder: {claim.get('policyholder_name') or 'N/A'}
- Loss Type: {claim.get('loss_type') or 'N/A'}
- Status: {claim.get('status') or 'N/A'}

This is follow-up #{number} of {max_count}.

GUIDELINES:
1. Be polite but professional
2. Reference the claim number
3. Ask if they need any additional information
4. Keep it concise (under 150 words)
5. Don't be pushy - just a gentle reminder
6. Sign off as "{self.company_name} Team\""""

    async def process_follow_ups(self, now: Optional[datetime] = None) -> FollowUpSweepResult:
        """Send every general follow-up that is due."""
        now = now or self.clock()
        result = FollowUpSweepResult()
        due = self._due("follow_up", now)
        logger.info("Processing follow-ups", due=len(due))

        for cadence in due:
            claim = self.db.get("claims", cadence["claim_id"])
            if not claim:
                continue
            claim_logger = bind_claim_context(logger, claim["id"], claim.get("claim_number"))

            if cadence["follow_up_current_count"] >= cadence["follow_up_max_count"]:
                self._stop(cadence, "follow_up", "max_count_reached", now)
                result.stopped.append({"claim_id": claim["id"], "reason": "max_count_reached"})
                claim_logger.info("Max follow-ups reached, stopping")
                continue

            recipient_email = claim.get("adjuster_email") or claim.get("policyholder_email")
            recipient_name = claim.get("adjuster_name") or claim.get("policyholder_name") or "there"
            if not recipient_email:
                claim_logger.info("No recipient email found, skipping follow-up")
                continue

            number = cadence["follow_up_current_count"] + 1
            last_email = self.db.select_one(
                "emails",
                where={"claim_id": claim["id"], "recipient_type": ("!=", "inbound")},
                order_by="sent_at",
                descending=True
            )
            prompt = (
                f'Generate a follow-up email. The last email sent was about: "{last_email["subject"]}"'
                if last_email
                else "Generate a follow-up email checking on the status of this claim."
            )
            subject = claim.get("claim_number") or claim["id"][:8]

            try:
                body = await self._draft(self._follow_up_prompt(claim, number, cadence["follow_up_max_count"]), prompt)
                await self._send(claim, recipient_email, recipient_name, "follow_up", subject, body, now)
            except Exception as e:
                claim_logger.error("Failed to send follow-up", follow_up_number=number, error=str(e))
                continue

            self._record_sent(cadence, "follow_up", number, now)
            self.claims.add_claim_update(
                claim["id"],
                f"🤖 Automated follow-up #{number} sent to {recipient_name} ({recipient_email})",
                update_type="follow_up"
            )
            claim_logger.info("Follow-up sent", follow_up_number=number)
            result.processed.append(FollowUpResult(
                claim_id=claim["id"],
                claim_number=claim.get("claim_number"),
                follow_up_number=number,
                recipient=recipient_email,
            ))

        logger.info("Follow-ups processed", sent=len(result.processed), stopped=len(result.stopped))
        return result

    # ─── recoverable depreciation follow-ups ─────────────────────────

    def _rd_prompt(self, claim: Dict[str, Any], number: int) -> str:
        return f"""You are a professional public adjuster assistant for {self.company_name}. Generate a polite but firm follow-up email specifically about Recoverable Depreciation release.

CLAIM CONTEXT:
- Claim Number: {claim.get('claim_number') or 'N/A'}
- Policyholder: {claim.get('policyholder_name') or 'N/A'}
- Insurance Company: {claim.get('insurance_company') or 'the carrier'}
- Loss Type: {claim.get('loss_type') or 'N/A'}
- Current Status: {claim.get('status') or 'Recoverable Depreciation Requested'}

This is RD follow-up #{number}.

PURPOSE:
This email is specifically about Recoverable Depreciation (RD) release. The policyholder has completed work and submitted invoices. We need confirmation that:
1. The invoices and documentation were received
2. The recoverable depreciation is being processed for release
3. When the RD payment will be issued

GUIDELINES:
1. Be professional and courteous but persistent
2. Reference the claim number prominently
3. Ask specifically about:
   - Confirmation of receipt of invoices/documentation
   - Status of RD release processing
   - Expected timeline for RD payment
4. Keep it concise (under 150 words)
5. If this is follow-up #2 or later, mention that you've previously requested this information
6. Sign off as "{self.company_name} Team"
7. Use plain text only - no markdown formatting
8. Do NOT use aggressive language, but be firm about needing a response"""

    def _rd_recipient(self, claim: Dict[str, Any]):
        """Adjuster first, then the carrier's claims inbox."""
        if claim.get("adjuster_email"):
            return claim["adjuster_email"], claim.get("adjuster_name") or "Claims Department"

        if claim.get("insurance_company"):
            carrier = self.db.select_one(
                "insurance_companies", where={"name": ("like", f"%{claim['insurance_company']}%")}
            )
            if carrier and carrier.get("email"):
                return carrier["email"], carrier.get("name") or claim["insurance_company"]
        return None, None

    def _release(self, cadence: Dict[str, Any], claim: Dict[str, Any], now: datetime) -> None:
        self._stop(
            cadence, "rd_follow_up", "rd_released", now,
            rd_check_tracking_enabled=True,
            rd_check_released_at=cadence.get("rd_check_released_at") or to_iso(now),
        )
        self.claims.add_claim_update(
            claim["id"],
            f'✅ RD Request Follow-ups stopped - Status changed to "{claim.get("status")}". '
            "RD check tracking activated.",
            update_type="automation_status"
        )

    def _track_rd_response(self, claim: Dict[str, Any], number: int, recipient_name: str, interval: int, now: datetime) -> None:
        due_date = (now + timedelta(days=min(interval, RD_TASK_MAX_DAYS))).date().isoformat()
        carrier = claim.get("insurance_company") or "carrier"

        pending = self.db.select("tasks", where={"claim_id": claim["id"], "status": "pending"})
        existing = next(
            (
                task for task in pending
                if "rd" in task["title"].lower() and "response" in task["title"].lower()
            ),
            None
        )
        if existing:
            self.claims.update_task(existing["id"], {
                "description": (
                    f"RD Follow-up #{number} sent to {recipient_name}. "
                    "Check for carrier response and update claim status when RD is released."
                ),
                "due_date": due_date,
            })
        else:
            self.claims.add_task(claim["id"], {
                "title": f"Check for RD response from {carrier}",
                "description": (
                    f"RD Follow-up #{number} sent to {recipient_name}. "
                    "Monitor for carrier response and update claim status when RD is released."
                ),
                "due_date": due_date,
                "priority": "high",
                "status": "pending",
            })

    async def process_rd_follow_ups(self, now: Optional[datetime] = None) -> FollowUpSweepResult:
        """Stop released RD cadences and chase carriers on the rest."""
        now = now or self.clock()
        result = FollowUpSweepResult()
        due = self._due("rd_follow_up", now)

        requested = []
        for cadence in due:
            claim = self.db.get("claims", cadence["claim_id"])
            if not claim:
                continue
            if status_matches(claim.get("status"), RD_RELEASED_STATUSES):
                self._release(cadence, claim, now)
                result.stopped.append({"claim_id": claim["id"], "reason": "rd_released"})
                logger.info("RD released, stopping RD follow-ups", claim_id=claim["id"], status=claim.get("status"))
            elif status_matches(claim.get("status"), RD_REQUEST_STATUSES):
                requested.append((cadence, claim))

        logger.info("Processing RD follow-ups", due=len(requested), enabled=len(due))

        for cadence, claim in requested:
            claim_logger = bind_claim_context(logger, claim["id"], claim.get("claim_number"))

            if cadence["rd_follow_up_current_count"] >= cadence["rd_follow_up_max_count"]:
                self._stop(cadence, "rd_follow_up", "max_count_reached", now)
                result.stopped.append({"claim_id": claim["id"], "reason": "max_count_reached"})
                claim_logger.info("Max RD follow-ups reached, stopping")
                continue

            recipient_email, recipient_name = self._rd_recipient(claim)
            if not recipient_email:
                claim_logger.info("No adjuster or carrier email found for RD follow-up, skipping")
                continue

            number = cadence["rd_follow_up_current_count"] + 1
            interval = cadence["rd_follow_up_interval_days"]
            prompt = (
                "Generate the first RD follow-up email requesting confirmation that invoices were "
                "received and asking when recoverable depreciation will be released."
                if number == 1
                else f"Generate follow-up #{number} for RD release. Previous follow-ups have not received "
                "a response. Politely but firmly request an update on the recoverable depreciation release status."
            )
            subject = f"Recoverable Depreciation Status - Claim {claim.get('claim_number') or claim['id'][:8]}"

            try:
                body = await self._draft(self._rd_prompt(claim, number), prompt)
                await self._send(claim, recipient_email, recipient_name, "rd_follow_up", subject, body, now)
            except Exception as e:
                claim_logger.error("Failed to send RD follow-up", follow_up_number=number, error=str(e))
                continue

            self._record_sent(cadence, "rd_follow_up", number, now)
            self.claims.add_claim_update(
                claim["id"],
                f"💰 **RD Follow-up #{number}**\n\n"
                f"**Sent to:** {recipient_name} ({recipient_email})\n"
                f"**Subject:** {subject}\n"
                "**Purpose:** Requesting confirmation of invoice receipt and RD release status\n\n"
                f"_Next follow-up scheduled in {interval} days if no response._",
                update_type="rd_follow_up"
            )
            self.claims.add_note(
                claim["id"],
                f"[Auto] RD Follow-up #{number} sent to {recipient_name} at "
                f"{claim.get('insurance_company') or 'carrier'}. "
                "Awaiting response on invoice receipt and RD release timeline."
            )
            self._track_rd_response(claim, number, recipient_name, interval, now)

            claim_logger.info("RD follow-up sent", follow_up_number=number, recipient=recipient_email)
            result.processed.append(FollowUpResult(
                claim_id=claim["id"],
                claim_number=claim.get("claim_number"),
                follow_up_number=number,
                recipient=recipient_email,
                type="rd_follow_up",
            ))

        logger.info("RD follow-ups processed", sent=len(result.processed), stopped=len(result.stopped))
        return result
