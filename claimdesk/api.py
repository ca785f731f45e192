"""
FastAPI backend surface for ClaimDesk.

Provides HTTP endpoints for claim intake, automation definitions, webhook and
manual automation runs, follow-up settings, the strategic pipeline, cron
sweeps and signed file downloads.
"""

import time
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from . import __version__
from .automation_actions import ActionExecutor
from .automation_runner import AutomationRunner
from .automation_triggers import AutomationTriggers
from .claims import ClaimManager
from .database import Database
from .error_handler import (
    AuthorizationError, BaseApplicationError, ConfigurationError, DeliveryError, NotFoundError,
    ServiceUnavailableError, ValidationError as AppValidationError, create_context, error_handler, handle_error
)
from .follow_ups import FollowUpManager
from .llm import GatewayProvider, SearchProvider
from .llm.base import LLMProvider, ResearchProvider
from .logging_conf import get_logger
from .messaging import EmailProvider, SmsProvider, WebhookClient
from .models import (
    ActionType, AutomationRequest, CreateClaimRequest, CreateNoteRequest, CreateTaskRequest,
    FollowUpSettingsRequest, ManualRunRequest, PipelineRequest, ScheduleInspectionRequest,
    TaskTemplateRequest, UpdateAutomationRequest, UpdateClaimRequest, WebhookTriggerRequest
)
from .settings import settings
from .storage import FileStorage
from .strategic_pipeline import StrategicPipeline

logger = get_logger(__name__)

ACTION_TYPES = {action.value for action in ActionType}


def _status_code(exc: BaseApplicationError) -> int:
    if isinstance(exc, AppValidationError):
        return 400
    if isinstance(exc, AuthorizationError):
        return 401
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (ServiceUnavailableError, ConfigurationError, DeliveryError)):
        return 503
    return 500


def _validate_actions(actions: List[Dict[str, Any]]) -> None:
    for action in actions:
        if action["type"] not in ACTION_TYPES:
            raise AppValidationError("actions", action["type"], f"Unknown action type: {action['type']}")


def create_app(
    database: Optional[Database] = None,
    storage: Optional[FileStorage] = None,
    email: Optional[EmailProvider] = None,
    sms: Optional[SmsProvider] = None,
    webhook: Optional[WebhookClient] = None,
    llm: Optional[LLMProvider] = None,
    search: Optional[ResearchProvider] = None,
    cron_secret: Optional[str] = None
) -> FastAPI:
    """
    Build the API application.

    Services not passed in are built from the global settings.
    """
    config = settings.global_config

    database = database or Database()
    storage = storage or FileStorage()
    email = email or EmailProvider()
    sms = sms or SmsProvider()
    llm = llm or GatewayProvider()
    search = search or SearchProvider()
    if cron_secret is None:
        cron_secret = settings.get_secret("cron_secret", "cron", "secret")

    triggers = AutomationTriggers(database)
    claims = ClaimManager(database, triggers)
    actions = ActionExecutor(database, claims, storage, email, sms, webhook)
    runner = AutomationRunner(database, triggers, actions, batch_size=config.automation_batch_size)
    follow_ups = FollowUpManager(database, claims, email, llm)
    pipeline = StrategicPipeline(
        database,
        llm=llm,
        search=search,
        default_state=config.default_state_code,
        note_ttl_days=config.industry_note_ttl_days,
        max_search_queries=config.search_max_queries,
    )

    app = FastAPI(title="ClaimDesk API", version=__version__)
    app.state.database = database
    app.state.storage = storage
    app.state.claims = claims
    app.state.runner = runner
    app.state.follow_ups = follow_ups
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ─── error handling ──────────────────────────────────────────────

    @app.exception_handler(BaseApplicationError)
    async def application_error_handler(request: Request, exc: BaseApplicationError):
        """Handle application-specific errors."""
        logger.error(
            f"Application error in {request.method} {request.url.path}",
            error_code=exc.error_code,
            severity=exc.severity.value,
            user_message=exc.user_message
        )
        return JSONResponse(status_code=_status_code(exc), content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """Handle FastAPI validation errors."""
        logger.warning(
            f"Validation error in {request.method} {request.url.path}",
            errors=str(exc.errors())
        )
        validation_error = AppValidationError(
            field="request",
            value=str(exc.errors()),
            constraint="Request validation failed",
            suggestion="Please check your request format and try again"
        )
        return JSONResponse(status_code=422, content=validation_error.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(
            f"Unexpected error in {request.method} {request.url.path}",
            error=str(exc),
            traceback=traceback.format_exc()
        )
        app_error = handle_error(exc, create_context(operation=f"{request.method} {request.url.path}"))
        return JSONResponse(status_code=500, content=app_error.to_dict())

    @app.middleware("http")
    async def timing_middleware(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        logger.debug(
            "Request completed",
            method=request.method,
            path=str(request.url.path),
            status_code=response.status_code,
            process_time=f"{time.time() - start_time:.3f}s"
        )
        return response

    @app.on_event("startup")
    async def startup_event():
        logger.info("Starting ClaimDesk API", version=__version__, database=str(database.storage_path))

    def require_cron_secret(provided: Optional[str]) -> None:
        if cron_secret and provided != cron_secret:
            logger.warning("Invalid or missing cron secret")
            raise AuthorizationError()

    # ─── health ──────────────────────────────────────────────────────

    @app.get("/api/health")
    async def health_check():
        """Get application health status."""
        return {
            "status": "healthy",
            "version": __version__,
            "timestamp": time.time(),
            "errors": error_handler.get_error_stats()["error_counts"],
        }

    # ─── claims ──────────────────────────────────────────────────────

    @app.post("/api/claims", status_code=201)
    async def create_claim(request: CreateClaimRequest):
        return claims.create_claim(request.model_dump(exclude_none=True))

    @app.get("/api/claims")
    async def list_claims(include_closed: bool = Query(False)):
        return claims.list_claims(include_closed=include_closed)

    @app.get("/api/claims/{claim_id}")
    async def get_claim(claim_id: str):
        return claims.get_claim(claim_id)

    @app.patch("/api/claims/{claim_id}")
    async def update_claim(claim_id: str, request: UpdateClaimRequest):
        return claims.update_claim(claim_id, request.model_dump(exclude_unset=True))

    @app.post("/api/claims/{claim_id}/tasks", status_code=201)
    async def create_task(claim_id: str, request: CreateTaskRequest):
        return claims.add_task(claim_id, request.model_dump())

    @app.post("/api/tasks/{task_id}/complete")
    async def complete_task(task_id: str):
        return claims.complete_task(task_id)

    @app.post("/api/claims/{claim_id}/inspections", status_code=201)
    async def schedule_inspection(claim_id: str, request: ScheduleInspectionRequest):
        return claims.schedule_inspection(claim_id, request.model_dump(exclude_none=True))

    @app.post("/api/claims/{claim_id}/notes", status_code=201)
    async def create_note(claim_id: str, request: CreateNoteRequest):
        return claims.add_note(claim_id, request.content)

    @app.put("/api/claims/{claim_id}/follow-ups")
    async def configure_follow_ups(claim_id: str, request: FollowUpSettingsRequest):
        return follow_ups.configure(claim_id, **request.model_dump())

    # ─── automations ─────────────────────────────────────────────────

    def get_automation(automation_id: str) -> Dict[str, Any]:
        automation = database.get("automations", automation_id)
        if not automation:
            raise NotFoundError("automation", automation_id)
        return automation

    @app.post("/api/automations", status_code=201)
    async def create_automation(request: AutomationRequest):
        values = request.model_dump(mode="json")
        _validate_actions(values["actions"])
        automation = database.insert("automations", values)
        logger.info("Automation created", automation_id=automation["id"], trigger_type=automation["trigger_type"])
        return automation

    @app.get("/api/automations")
    async def list_automations():
        return database.select("automations", order_by="created_at", descending=True)

    @app.get("/api/automations/{automation_id}")
    async def read_automation(automation_id: str):
        return get_automation(automation_id)

    @app.patch("/api/automations/{automation_id}")
    async def update_automation(automation_id: str, request: UpdateAutomationRequest):
        get_automation(automation_id)
        changes = request.model_dump(mode="json", exclude_unset=True)
        if changes.get("actions") is not None:
            _validate_actions(changes["actions"])
        return database.update("automations", automation_id, changes)

    @app.delete("/api/automations/{automation_id}")
    async def delete_automation(automation_id: str):
        get_automation(automation_id)
        database.delete("automations", automation_id)
        return {"success": True, "automation_id": automation_id}

    @app.get("/api/automations/{automation_id}/executions")
    async def list_executions(automation_id: str, limit: int = Query(50, ge=1, le=500)):
        get_automation(automation_id)
        return database.select(
            "automation_executions", where={"automation_id": automation_id},
            order_by="created_at", descending=True, limit=limit
        )

    @app.post("/api/automations/webhook")
    async def automation_webhook(request: WebhookTriggerRequest):
        result = await runner.trigger_webhook(request.automation_id, request.claim_id, request.trigger_data)
        return result.model_dump()

    @app.post("/api/automations/{automation_id}/run")
    async def run_automation(automation_id: str, request: ManualRunRequest):
        result = await runner.run_manual(automation_id, request.claim_id, request.trigger_data)
        return result.model_dump()

    # ─── task templates ──────────────────────────────────────────────

    @app.post("/api/task-templates", status_code=201)
    async def create_task_template(request: TaskTemplateRequest):
        return claims.create_task_template(request.model_dump(mode="json"))

    @app.get("/api/task-templates")
    async def list_task_templates():
        return claims.list_task_templates()

    # ─── strategic pipeline ──────────────────────────────────────────

    @app.post("/api/pipeline/strategic")
    async def strategic_pipeline(request: PipelineRequest):
        result = await pipeline.run(request.claim_id, request.analysis_type, request.force_refresh)
        return result.model_dump()

    # ─── cron ────────────────────────────────────────────────────────

    @app.post("/api/cron/check-scheduled")
    async def cron_check_scheduled(x_cron_secret: Optional[str] = Header(None)):
        require_cron_secret(x_cron_secret)
        result = await runner.check_scheduled()
        return {"success": True, **result.model_dump()}

    @app.post("/api/cron/execute-automations")
    async def cron_execute_automations(x_cron_secret: Optional[str] = Header(None)):
        require_cron_secret(x_cron_secret)
        result = await runner.execute_pending()
        return {"success": True, **result.model_dump()}

    @app.post("/api/cron/follow-ups")
    async def cron_follow_ups(x_cron_secret: Optional[str] = Header(None)):
        require_cron_secret(x_cron_secret)
        result = await follow_ups.process_follow_ups()
        return result.model_dump()

    @app.post("/api/cron/rd-follow-ups")
    async def cron_rd_follow_ups(x_cron_secret: Optional[str] = Header(None)):
        require_cron_secret(x_cron_secret)
        result = await follow_ups.process_rd_follow_ups()
        return result.model_dump()

    # ─── files ───────────────────────────────────────────────────────

    @app.get("/api/files/{path:path}")
    async def download_file(path: str, expires: int = Query(...), signature: str = Query(...)):
        if not storage.verify_signature(path, expires, signature):
            raise AuthorizationError("Invalid or expired file signature")
        return Response(content=storage.download(path), media_type="application/octet-stream")

    return app
