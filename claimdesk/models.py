"""
Pydantic data models for ClaimDesk.

Defines enums, API request bodies, and the structured results returned by
the automation engine, follow-up sweeps and the strategic pipeline.
"""

from __future__ import annotations

import re
from typing import List, Optional, Dict, Any, Literal
from enum import Enum
from pydantic import BaseModel, Field, field_validator


class TriggerType(str, Enum):
    """Events and sweeps that can start an automation."""
    STATUS_CHANGE = "status_change"
    TASK_COMPLETED = "task_completed"
    INSPECTION_SCHEDULED = "inspection_scheduled"
    SCHEDULED = "scheduled"
    INACTIVITY = "inactivity"
    WEBHOOK = "webhook"
    MANUAL = "manual"


class ActionType(str, Enum):
    """Steps an automation can perform."""
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    CREATE_TASK = "create_task"
    SEND_NOTIFICATION = "send_notification"
    UPDATE_CLAIM = "update_claim"
    UPDATE_CLAIM_STATUS = "update_claim_status"
    WEBHOOK = "webhook"
    CALL_WEBHOOK = "call_webhook"


class ExecutionStatus(str, Enum):
    """Lifecycle of an automation execution row."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class TaskTemplateTrigger(str, Enum):
    """When a task template creates tasks."""
    ON_CLAIM_CREATION = "on_claim_creation"
    ON_STATUS_CHANGE = "on_status_change"


# ─── Claim intake requests ───────────────────────────────────────────────

class CreateClaimRequest(BaseModel):
    """Request to open a new claim."""
    claim_number: Optional[str] = None
    policy_number: Optional[str] = None
    status: Optional[str] = Field(default="New", description="Free-text workflow status")
    loss_type: Optional[str] = None
    loss_date: Optional[str] = None
    loss_description: Optional[str] = None
    policyholder_name: Optional[str] = None
    policyholder_email: Optional[str] = None
    policyholder_phone: Optional[str] = None
    policyholder_address: Optional[str] = None
    insurance_company: Optional[str] = None
    insurance_company_id: Optional[str] = None
    insurance_email: Optional[str] = None
    insurance_phone: Optional[str] = None
    adjuster_name: Optional[str] = None
    adjuster_email: Optional[str] = None
    adjuster_phone: Optional[str] = None
    referrer_id: Optional[str] = None
    claim_amount: Optional[float] = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Status cannot be blank")
        return v.strip() if v else v


class UpdateClaimRequest(BaseModel):
    """Partial claim update. Only fields that are set are applied."""
    claim_number: Optional[str] = None
    policy_number: Optional[str] = None
    status: Optional[str] = None
    loss_type: Optional[str] = None
    loss_date: Optional[str] = None
    loss_description: Optional[str] = None
    policyholder_name: Optional[str] = None
    policyholder_email: Optional[str] = None
    policyholder_phone: Optional[str] = None
    policyholder_address: Optional[str] = None
    insurance_company: Optional[str] = None
    insurance_email: Optional[str] = None
    insurance_phone: Optional[str] = None
    adjuster_name: Optional[str] = None
    adjuster_email: Optional[str] = None
    adjuster_phone: Optional[str] = None
    claim_amount: Optional[float] = None
    is_closed: Optional[bool] = None


class CreateTaskRequest(BaseModel):
    """Request to add a task to a claim."""
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    status: str = "pending"
    due_date: Optional[str] = None
    assigned_to: Optional[str] = None


class ScheduleInspectionRequest(BaseModel):
    """Request to schedule an inspection on a claim."""
    inspection_date: str
    inspection_time: Optional[str] = None
    inspection_type: Optional[str] = None
    inspector_name: Optional[str] = None
    notes: Optional[str] = None

    @field_validator('inspection_time')
    @classmethod
    def validate_time(cls, v):
        if v:
            if not re.match(r'^\d{1,2}:\d{2}(:\d{2})?$', v):
                raise ValueError("inspection_time must be HH:MM")
        return v


class CreateNoteRequest(BaseModel):
    content: str = Field(..., min_length=1)


# ─── Automations ─────────────────────────────────────────────────────────

class AutomationAction(BaseModel):
    """One action step of an automation."""
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)


class AutomationRequest(BaseModel):
    """Create or replace an automation definition."""
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    trigger_type: TriggerType
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    actions: List[AutomationAction] = Field(default_factory=list)
    is_active: bool = True


class UpdateAutomationRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    trigger_config: Optional[Dict[str, Any]] = None
    actions: Optional[List[AutomationAction]] = None
    is_active: Optional[bool] = None


class WebhookTriggerRequest(BaseModel):
    """Inbound webhook that starts a webhook-triggered automation."""
    automation_id: Optional[str] = None
    claim_id: Optional[str] = None
    trigger_data: Optional[Dict[str, Any]] = None


class ManualRunRequest(BaseModel):
    claim_id: str
    trigger_data: Optional[Dict[str, Any]] = None


class TaskTemplateRequest(BaseModel):
    """Template that stamps out tasks on claim creation or status change."""
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    trigger_type: TaskTemplateTrigger
    trigger_status: Optional[str] = None
    due_date_offset: int = Field(default=0, ge=0)
    is_active: bool = True

    @field_validator('trigger_status')
    @classmethod
    def validate_trigger_status(cls, v, info):
        if info.data.get('trigger_type') == TaskTemplateTrigger.ON_STATUS_CHANGE and not v:
            raise ValueError("trigger_status is required for on_status_change templates")
        return v


class FollowUpSettingsRequest(BaseModel):
    """Per-claim follow-up cadence settings."""
    is_enabled: bool = True
    follow_up_enabled: Optional[bool] = None
    follow_up_interval_days: Optional[int] = Field(default=None, ge=1)
    follow_up_max_count: Optional[int] = Field(default=None, ge=1)
    rd_follow_up_enabled: Optional[bool] = None
    rd_follow_up_interval_days: Optional[int] = Field(default=None, ge=1)
    rd_follow_up_max_count: Optional[int] = Field(default=None, ge=1)


class PipelineRequest(BaseModel):
    claim_id: str
    analysis_type: str
    force_refresh: bool = False


# ─── Results ─────────────────────────────────────────────────────────────

class ActionResult(BaseModel):
    """Outcome of one action within an execution."""
    action: str
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None


class ExecutionSummary(BaseModel):
    id: str
    status: ExecutionStatus
    error: Optional[str] = None


class ExecuteResult(BaseModel):
    processed: int
    results: List[ExecutionSummary] = Field(default_factory=list)


class SweepResult(BaseModel):
    """Result of checking one scheduled or inactivity automation."""
    automation_id: str
    type: Optional[str] = None
    created: int = 0
    execution_ids: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class CheckScheduledResult(BaseModel):
    checked: int
    results: List[SweepResult] = Field(default_factory=list)
    executed: Optional[ExecuteResult] = None


class WebhookTriggerResult(BaseModel):
    success: bool = True
    execution_id: str
    message: str = "Automation triggered successfully"


class FollowUpResult(BaseModel):
    """One follow-up email sent by a cadence sweep."""
    claim_id: str
    claim_number: Optional[str] = None
    follow_up_number: int
    recipient: str
    type: Literal["follow_up", "rd_follow_up"] = "follow_up"


class FollowUpSweepResult(BaseModel):
    success: bool = True
    processed: List[FollowUpResult] = Field(default_factory=list)
    stopped: List[Dict[str, str]] = Field(default_factory=list)


# ─── Strategic pipeline ──────────────────────────────────────────────────

class LossDomainClassification(BaseModel):
    domain: Literal[
        "roof_exterior", "interior_water", "fire_smoke", "theft_vandalism",
        "vehicle_impact", "wind_only", "hail", "mixed", "unknown"
    ]
    confidence: Literal["confirmed", "probable", "conditional"]
    roof_involvement: Literal["confirmed", "possible", "none", "unknown"]
    reasoning: str
    unanswered_questions: List[str] = Field(default_factory=list)


class EvidenceAnchor(BaseModel):
    """A claim document or photo that strategic output must cite."""
    type: Literal["document", "photo"]
    id: str
    name: Optional[str] = None
    relevance: str = ""

    @field_validator('type', mode='before')
    @classmethod
    def normalize_type(cls, v):
        return str(v).lower() if v else v

    @field_validator('id', mode='before')
    @classmethod
    def coerce_id(cls, v):
        return str(v) if v is not None else v


class ThesisObject(BaseModel):
    """The locked strategic position of a claim."""
    primary_cause_of_loss: str = ""
    primary_coverage_theory: str = ""
    primary_carrier_error: str = ""
    evidence_map: List[EvidenceAnchor] = Field(default_factory=list)
    anticipated_pushback: str = ""
    pushback_counter: str = ""
    loss_domain: LossDomainClassification


class WebSearchDecision(BaseModel):
    needed: bool
    queries: List[str] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)
    # query -> material, for manufacturer spec lookups
    materials: Dict[str, str] = Field(default_factory=dict)


class PipelineResult(BaseModel):
    pipeline_required: bool
    pipeline_context: str = ""
    thesis: Optional[ThesisObject] = None
    thesis_is_new: Optional[bool] = None
    validation_errors: List[str] = Field(default_factory=list)
    search_performed: bool = False
    search_reasons: List[str] = Field(default_factory=list)
    delta_summary: Optional[str] = None
    cross_claim_count: int = 0
    industry_notes_count: int = 0
