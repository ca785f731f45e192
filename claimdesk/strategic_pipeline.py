"""
Strategic context pipeline.

Every strategic output (rebuttals, demand packages, next steps and the like)
must be grounded in a claim thesis backed by evidence anchors. The pipeline
runs four steps before such output is generated:

    A. load claim memory, recent deltas, cross-claim lessons and cached
       industry notes
    B. decide whether web research is needed and cache what it finds
    C. build or reuse the claim thesis and validate it
    D. render the mandatory context block handed to the generating model
"""

import json
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .database import Database, parse_iso, to_iso, utcnow
from .error_handler import NotFoundError, ValidationError
from .llm.base import LLMProvider, ResearchProvider
from .logging_conf import bind_claim_context, get_logger, log_performance_metric
from .loss_domain import classify_loss_domain
from .models import (
    EvidenceAnchor, LossDomainClassification, PipelineResult, ThesisObject, WebSearchDecision
)

logger = get_logger(__name__)

STRATEGIC_TYPES = (
    "denial_rebuttal",
    "demand_package",
    "next_steps",
    "auto_draft_rebuttal",
    "systematic_dismantling",
    "correspondence",
    "one_click_package",
    "engineer_report_rebuttal",
    "supplement",
    "estimate_gap_analysis",
)

# document_classification -> why the document matters
CRITICAL_DOCUMENTS = {
    "denial": "Carrier denial to rebut",
    "estimate": "Scope/cost evidence",
    "engineering_report": "Technical evidence",
    "policy": "Coverage reference",
    "storm_report": "Causation evidence",
    "weather_report": "Causation evidence",
    "invoice": "Supporting evidence",
}
DAMAGE_RATINGS = ("Poor", "Failed")

STATE_CODE = re.compile(r"\b([A-Z]{2})\b")
CODE_FENCE = re.compile(r"```json?\n?")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

MAX_CROSS_CLAIM_OUTCOMES = 50
MAX_LESSONS = 5
MAX_CACHED_NOTES = 10
MAX_CONTEXT_NOTES = 5
MIN_CACHEABLE_RESULT = 50
MAX_CACHED_CONTENT = 5000

THESIS_SYSTEM_PROMPT = "You are a claims strategy AI. Return ONLY valid JSON, no markdown."


@dataclass
class ClaimMemory:
    """Everything Step A loads for one claim."""
    snapshot: Dict[str, Any]
    new_files: List[Dict[str, Any]] = field(default_factory=list)
    new_notes: List[Dict[str, Any]] = field(default_factory=list)
    new_emails: List[Dict[str, Any]] = field(default_factory=list)
    lessons: List[Dict[str, Any]] = field(default_factory=list)
    industry_notes: List[Dict[str, Any]] = field(default_factory=list)
    state: str = "NJ"

    @property
    def has_delta(self) -> bool:
        return bool(self.new_files or self.new_notes or self.new_emails)

    def delta_summary(self) -> str:
        if not self.has_delta:
            return "No new activity since last review"
        return (
            f"{len(self.new_files)} new files, {len(self.new_notes)} new notes, "
            f"{len(self.new_emails)} new emails"
        )


def extract_state(address: Optional[str], default: str = "NJ") -> str:
    """First standalone two-letter uppercase token of an address."""
    match = STATE_CODE.search(address or "")
    return match.group(1) if match else default


def build_evidence_map(files: List[Dict[str, Any]], photos: List[Dict[str, Any]]) -> List[EvidenceAnchor]:
    """Anchor critical documents and photos rated Poor or Failed."""
    anchors = []
    for file in files or []:
        classification = (file.get("document_classification") or "").lower()
        if classification in CRITICAL_DOCUMENTS:
            anchors.append(EvidenceAnchor(
                type="document",
                id=file["id"],
                name=file.get("file_name"),
                relevance=CRITICAL_DOCUMENTS[classification],
            ))

    for photo in photos or []:
        rating = photo.get("ai_condition_rating")
        if rating not in DAMAGE_RATINGS:
            continue
        material = f" ({photo['ai_material_type']})" if photo.get("ai_material_type") else ""
        anchors.append(EvidenceAnchor(
            type="photo",
            id=photo["id"],
            name=photo.get("file_name"),
            relevance=f"Damage evidence - {rating} condition{material}",
        ))
    return anchors


def validate_thesis(thesis: ThesisObject) -> List[str]:
    errors = []
    if not thesis.primary_cause_of_loss or thesis.primary_cause_of_loss == "Unknown":
        errors.append("Missing primary cause of loss")
    if not thesis.primary_coverage_theory:
        errors.append("Missing primary coverage theory")
    if not thesis.primary_carrier_error:
        errors.append("Missing primary carrier error")
    if not thesis.evidence_map:
        errors.append("No evidence anchors (doc IDs / photo IDs) found")
    return errors


def _short_date(value: Optional[str]) -> str:
    parsed = parse_iso(value)
    if parsed is None:
        return "unknown date"
    return f"{parsed.month}/{parsed.day}/{parsed.year}"


def _text(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


class StrategicPipeline:
    """Builds the grounded strategic context for a claim."""

    def __init__(
        self,
        database: Database,
        llm: Optional[LLMProvider] = None,
        search: Optional[ResearchProvider] = None,
        default_state: str = "NJ",
        note_ttl_days: int = 30,
        max_search_queries: int = 3,
        clock: Callable[[], datetime] = utcnow
    ):
        self.db = database
        self.llm = llm
        self.search = search
        self.default_state = default_state
        self.note_ttl_days = note_ttl_days
        self.max_search_queries = max_search_queries
        self.clock = clock

    async def run(self, claim_id: Optional[str], analysis_type: str, force_refresh: bool = False) -> PipelineResult:
        """
        Run the pipeline for one strategic request.

        Non-strategic analysis types return immediately with an empty
        context.

        Raises:
            ValidationError: claim_id is missing
            NotFoundError: the claim does not exist
        """
        if not claim_id:
            raise ValidationError("claim_id", claim_id, "claim_id is required")

        if analysis_type not in STRATEGIC_TYPES:
            return PipelineResult(pipeline_required=False, pipeline_context="")

        claim = self.db.get("claims", claim_id)
        if not claim:
            raise NotFoundError("claim", claim_id, detail="Claim not found")

        claim_logger = bind_claim_context(logger, claim_id, claim.get("claim_number"))
        start_time = time.time()

        memory = self.load_memory(claim)

        decision = self.decide_web_search(claim, memory)
        web_results: List[Dict[str, str]] = []
        if decision.needed:
            web_results = await self.execute_web_searches(decision.queries)
            self.cache_search_results(claim, memory.state, web_results, decision)

        thesis, is_new, validation_errors = await self.build_thesis(claim, memory, web_results, force_refresh)
        context = self.build_context(thesis, memory, web_results, validation_errors)

        claim_logger.info(
            "Strategic pipeline complete",
            analysis_type=analysis_type,
            thesis_is_new=is_new,
            warnings=len(validation_errors),
            context_length=len(context)
        )
        log_performance_metric("strategic_pipeline", (time.time() - start_time) * 1000, claim_id=claim_id)

        return PipelineResult(
            pipeline_required=True,
            pipeline_context=context,
            thesis=thesis,
            thesis_is_new=is_new,
            validation_errors=validation_errors,
            search_performed=decision.needed,
            search_reasons=decision.reasons,
            delta_summary=memory.delta_summary(),
            cross_claim_count=len(memory.lessons),
            industry_notes_count=len(memory.industry_notes),
        )

    # ─── Step A: memory ──────────────────────────────────────────────

    def load_memory(self, claim: Dict[str, Any]) -> ClaimMemory:
        claim_id = claim["id"]
        snapshot = {
            "declared_position": self.db.select_one(
                "declared_positions", where={"claim_id": claim_id, "is_locked": True},
                order_by="created_at", descending=True
            ),
            "recent_analyses": self.db.select(
                "analysis_results", where={"claim_id": claim_id},
                order_by="created_at", descending=True, limit=10
            ),
            "files": self.db.select("claim_files", where={"claim_id": claim_id}, order_by="uploaded_at"),
            "photos": self.db.select("claim_photos", where={"claim_id": claim_id}, order_by="created_at"),
            "notes": self.db.select(
                "notes", where={"claim_id": claim_id}, order_by="created_at", descending=True, limit=10
            ),
            "emails": self.db.select(
                "emails", where={"claim_id": claim_id}, order_by="created_at", descending=True, limit=10
            ),
            "checks": self.db.select("claim_checks", where={"claim_id": claim_id}),
            "settlement": self.db.select_one(
                "claim_settlements", where={"claim_id": claim_id}, order_by="created_at", descending=True
            ),
        }

        memory = ClaimMemory(snapshot=snapshot, state=extract_state(claim.get("policyholder_address"), self.default_state))
        self._load_deltas(claim_id, memory)
        memory.lessons = self.cross_claim_lessons(claim)
        memory.industry_notes = self.industry_notes(claim, memory.state)

        logger.debug(
            "Claim memory loaded",
            claim_id=claim_id,
            files=len(snapshot["files"]),
            has_delta=memory.has_delta,
            lessons=len(memory.lessons),
            industry_notes=len(memory.industry_notes)
        )
        return memory

    def _load_deltas(self, claim_id: str, memory: ClaimMemory) -> None:
        thesis = self.db.select_one("claim_thesis_objects", where={"claim_id": claim_id})
        reviewed_at = EPOCH
        if thesis:
            reviewed_at = parse_iso(thesis.get("last_deltas_reviewed_at") or thesis.get("updated_at")) or EPOCH

        def newer(rows: List[Dict[str, Any]], column: str) -> List[Dict[str, Any]]:
            return [row for row in rows if (parse_iso(row.get(column)) or EPOCH) > reviewed_at]

        memory.new_files = newer(memory.snapshot["files"], "uploaded_at")
        memory.new_notes = newer(self.db.select("notes", where={"claim_id": claim_id}), "created_at")
        memory.new_emails = newer(self.db.select("emails", where={"claim_id": claim_id}), "created_at")

    def cross_claim_lessons(self, claim: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Top outcomes from other claims, scored by carrier and loss type."""
        carrier = (claim.get("insurance_company") or "").lower()
        loss_type = (claim.get("loss_type") or "").lower()

        outcomes = self.db.select(
            "claim_outcomes", where={"claim_id": ("!=", claim["id"])},
            order_by="created_at", descending=True, limit=MAX_CROSS_CLAIM_OUTCOMES
        )
        if not outcomes:
            return []

        claims_by_id = {
            row["id"]: row
            for row in self.db.select_in("claims", "id", {outcome["claim_id"] for outcome in outcomes})
        }

        scored = []
        for outcome in outcomes:
            source = claims_by_id.get(outcome["claim_id"])
            if not source:
                continue
            score = 0
            if carrier and (source.get("insurance_company") or "").lower() == carrier:
                score += 3
            if loss_type and (source.get("loss_type") or "").lower() == loss_type:
                score += 2
            if outcome.get("winning_arguments"):
                score += 1
            if score > 0:
                scored.append({
                    **outcome,
                    "carrier": source.get("insurance_company"),
                    "loss_type": source.get("loss_type"),
                    "relevance_score": score,
                })

        scored.sort(key=lambda lesson: lesson["relevance_score"], reverse=True)
        return scored[:MAX_LESSONS]

    def industry_notes(self, claim: Dict[str, Any], state: str) -> List[Dict[str, Any]]:
        """Unexpired cached notes for the claim's state (or no state) and peril."""
        now = self.clock()
        loss_type = (claim.get("loss_type") or "").lower()

        candidates = [
            note for note in self.db.select("industry_notes_cache", order_by="created_at", descending=True)
            if note.get("state_code") in (state, None) and (parse_iso(note["expires_at"]) or EPOCH) > now
        ][:MAX_CACHED_NOTES]

        return [
            note for note in candidates
            if not (note.get("peril") and loss_type and note["peril"].lower() not in loss_type)
        ]

    # ─── Step B: web research ────────────────────────────────────────

    def decide_web_search(self, claim: Dict[str, Any], memory: ClaimMemory) -> WebSearchDecision:
        state = memory.state
        notes = memory.industry_notes
        queries: List[str] = []
        reasons: List[str] = []
        materials: Dict[str, str] = {}

        has_regulation = any(
            note.get("source_type") == "regulation" and note.get("state_code") == state for note in notes
        )
        if not has_regulation:
            queries.append(
                f"{state} state insurance regulations property damage claims unfair claims settlement practices statute"
            )
            reasons.append(f"State regulation for {state} not cached")

        seen: List[str] = []
        for photo in memory.snapshot["photos"]:
            material = photo.get("ai_material_type")
            if material and material not in seen:
                seen.append(material)

        for material in seen[:2]:
            has_spec = any(
                note.get("source_type") == "manufacturer_spec"
                and (note.get("material") or "").lower() == material.lower()
                for note in notes
            )
            if not has_spec:
                query = f"{material} manufacturer installation specifications warranty requirements"
                queries.append(query)
                materials[query] = material
                reasons.append(f"Manufacturer spec for {material} not cached")

        has_weather_file = any(
            file.get("document_classification") in ("weather_report", "storm_report")
            or "weather" in (file.get("file_name") or "").lower()
            or "storm" in (file.get("file_name") or "").lower()
            for file in memory.snapshot["files"]
        )
        if not has_weather_file and claim.get("loss_date"):
            queries.append(
                f"severe weather {claim.get('policyholder_address') or ''} {claim['loss_date']} "
                "hail wind storm damage reports NOAA NWS"
            )
            reasons.append("Weather validation for DOL not in claim files")

        decision = WebSearchDecision(needed=bool(queries), queries=queries, reasons=reasons, materials=materials)
        logger.debug("Web search decision", needed=decision.needed, reasons=reasons)
        return decision

    async def execute_web_searches(self, queries: List[str]) -> List[Dict[str, str]]:
        if self.search is None or not self.search.is_configured:
            logger.info("Search provider not configured, skipping web search")
            return []

        results = []
        for query in queries[:self.max_search_queries]:
            try:
                results.append({"query": query, "result": await self.search.search(query) or ""})
            except Exception as e:
                logger.error("Web search failed", query=query[:80], error=str(e))
        return results

    def cache_search_results(
        self,
        claim: Dict[str, Any],
        state: str,
        results: List[Dict[str, str]],
        decision: WebSearchDecision
    ) -> None:
        now = self.clock()
        expires_at = to_iso(now + timedelta(days=self.note_ttl_days))

        for index, result in enumerate(results):
            text = result.get("result") or ""
            if len(text) <= MIN_CACHEABLE_RESULT:
                continue

            query = result["query"]
            if "regulation" in query:
                source_type = "regulation"
            elif "manufacturer" in query:
                source_type = "manufacturer_spec"
            else:
                source_type = "weather_data"

            millis = int(now.timestamp() * 1000) + index
            try:
                self.db.upsert("industry_notes_cache", {
                    "cache_key": f"{state}_{claim.get('loss_type') or 'general'}_{millis}",
                    "state_code": state,
                    "peril": claim.get("loss_type") or None,
                    "material": decision.materials.get(query),
                    "content": text[:MAX_CACHED_CONTENT],
                    "source_type": source_type,
                    "expires_at": expires_at,
                }, on_conflict="cache_key")
            except Exception as e:
                logger.error("Failed to cache industry note", error=str(e))

    # ─── Step C: thesis ──────────────────────────────────────────────

    async def build_thesis(
        self,
        claim: Dict[str, Any],
        memory: ClaimMemory,
        web_results: List[Dict[str, str]],
        force_refresh: bool
    ):
        """Returns ``(thesis, is_new, validation_errors)``."""
        snapshot = memory.snapshot
        domain = classify_loss_domain(claim, snapshot["photos"], snapshot["files"])
        logger.debug("Loss domain classified", domain=domain.domain, roof=domain.roof_involvement)

        if not force_refresh:
            existing = self.db.select_one("claim_thesis_objects", where={"claim_id": claim["id"]})
            if existing and existing.get("is_locked"):
                return self._thesis_from_row(existing, domain), False, []

        position = snapshot["declared_position"]
        if position:
            thesis = ThesisObject(
                primary_cause_of_loss=position.get("primary_cause_of_loss") or claim.get("loss_type") or "Unknown",
                primary_coverage_theory=(
                    position.get("primary_coverage_theory") or "Direct physical loss from covered peril"
                ),
                primary_carrier_error=(
                    position.get("primary_carrier_error") or "Carrier failed to properly evaluate claim evidence"
                ),
                evidence_map=build_evidence_map(snapshot["files"], snapshot["photos"]),
                anticipated_pushback=position.get("carrier_dependency_statement") or "",
                pushback_counter="",
                loss_domain=domain,
            )
        else:
            thesis = await self._generate_thesis(claim, memory, domain)

        validation_errors = validate_thesis(thesis)
        self._save_thesis(claim["id"], thesis, memory, web_results)
        return thesis, True, validation_errors

    @classmethod
    def _thesis_from_row(cls, row: Dict[str, Any], domain: LossDomainClassification) -> ThesisObject:
        return ThesisObject(
            primary_cause_of_loss=row.get("primary_cause_of_loss") or "",
            primary_coverage_theory=row.get("primary_coverage_theory") or "",
            primary_carrier_error=row.get("primary_carrier_error") or "",
            evidence_map=cls._parse_anchors(row.get("evidence_map") or []),
            anticipated_pushback=row.get("anticipated_pushback") or "",
            pushback_counter=row.get("pushback_counter") or "",
            loss_domain=domain,
        )

    def _thesis_prompt(self, claim: Dict[str, Any], memory: ClaimMemory) -> str:
        files = "\n".join(
            f"- [{file['document_classification']}] {file['file_name']} (ID: {file['id']})"
            for file in memory.snapshot["files"] if file.get("document_classification")
        )
        photos = "\n".join(
            f"- {photo.get('file_name')} [{photo.get('ai_condition_rating') or 'N/A'}] "
            f"{photo.get('ai_material_type') or ''} (ID: {photo['id']})"
            for photo in memory.snapshot["photos"] if photo.get("ai_analyzed_at")
        )
        lessons = "\n".join(
            f"- Carrier: {lesson.get('carrier')}, Loss: {lesson.get('loss_type')}, "
            f"Recovery: {lesson.get('recovery_percentage')}%, "
            f"Winning args: {json.dumps(lesson.get('winning_arguments'))}"
            for lesson in memory.lessons
        )

        return f"""You are a senior public adjuster strategist. Based on the following claim data, generate a Claim Thesis Object.

CLAIM:
- Claim #: {claim.get('claim_number')}
- Loss Type: {claim.get('loss_type') or 'Unknown'}
- Loss Date: {claim.get('loss_date') or 'Unknown'}
- Insurance Company: {claim.get('insurance_company') or 'Unknown'}
- Status: {claim.get('status')}
- Description: {claim.get('loss_description') or 'N/A'}

DOCUMENTS ON FILE:
{files or 'None'}

PHOTOS ON FILE:
{photos or 'None'}

CROSS-CLAIM LESSONS:
{lessons or 'None available'}

You MUST return a JSON object with these exact fields:
{{
  "primary_cause_of_loss": "The specific peril/event that caused damage",
  "primary_coverage_theory": "Why this loss is covered under the policy",
  "primary_carrier_error": "What the carrier got wrong or failed to do",
  "evidence_map": [{{"type": "document|photo", "id": "actual ID from above", "name": "filename", "relevance": "why this matters"}}],
  "anticipated_pushback": "What the carrier will likely argue back",
  "pushback_counter": "How to counter their anticipated argument"
}}

IMPORTANT: evidence_map MUST reference actual document/photo IDs from the lists above. No fabricated IDs."""

    async def _generate_thesis(
        self,
        claim: Dict[str, Any],
        memory: ClaimMemory,
        domain: LossDomainClassification
    ) -> ThesisObject:
        snapshot = memory.snapshot
        evidence = build_evidence_map(snapshot["files"], snapshot["photos"])

        try:
            if self.llm is None:
                raise RuntimeError("LLM provider not configured")
            content = await self.llm.generate(
                THESIS_SYSTEM_PROMPT,
                [{"role": "user", "content": self._thesis_prompt(claim, memory)}],
                temperature=0.3
            )
        except Exception as e:
            logger.error("Thesis generation failed", claim_id=claim["id"], error=str(e))
            return ThesisObject(
                primary_cause_of_loss=claim.get("loss_type") or "Unknown - requires manual input",
                primary_coverage_theory="Direct physical loss from covered peril",
                primary_carrier_error="Insufficient evaluation of claim evidence",
                evidence_map=evidence,
                loss_domain=domain,
            )

        try:
            parsed = json.loads(CODE_FENCE.sub("", content or "").replace("```", "").strip())
            if not isinstance(parsed, dict):
                raise ValueError("Thesis response is not a JSON object")
            raw_map = parsed.get("evidence_map")
            return ThesisObject(
                primary_cause_of_loss=parsed.get("primary_cause_of_loss") or claim.get("loss_type") or "Unknown",
                primary_coverage_theory=parsed.get("primary_coverage_theory") or "Direct physical loss",
                primary_carrier_error=parsed.get("primary_carrier_error") or "Insufficient evaluation",
                evidence_map=self._parse_anchors(raw_map) if isinstance(raw_map, list) else evidence,
                anticipated_pushback=parsed.get("anticipated_pushback") or "",
                pushback_counter=parsed.get("pushback_counter") or "",
                loss_domain=domain,
            )
        except (ValueError, TypeError, PydanticValidationError) as e:
            logger.error("Failed to parse thesis", error=str(e), preview=(content or "")[:200])
            return ThesisObject(
                primary_cause_of_loss=claim.get("loss_type") or "Unknown",
                primary_coverage_theory="Direct physical loss from covered peril",
                primary_carrier_error="Carrier failed to properly evaluate claim",
                evidence_map=evidence,
                loss_domain=domain,
            )

    @staticmethod
    def _parse_anchors(raw: List[Any]) -> List[EvidenceAnchor]:
        anchors = []
        for item in raw:
            try:
                anchors.append(EvidenceAnchor.model_validate(item))
            except PydanticValidationError:
                logger.warning("Dropping malformed evidence anchor", anchor=str(item)[:200])
        return anchors

    def _save_thesis(
        self,
        claim_id: str,
        thesis: ThesisObject,
        memory: ClaimMemory,
        web_results: List[Dict[str, str]]
    ) -> None:
        snapshot = memory.snapshot
        self.db.upsert("claim_thesis_objects", {
            "claim_id": claim_id,
            "primary_cause_of_loss": thesis.primary_cause_of_loss,
            "primary_coverage_theory": thesis.primary_coverage_theory,
            "primary_carrier_error": thesis.primary_carrier_error,
            "evidence_map": [anchor.model_dump() for anchor in thesis.evidence_map],
            "anticipated_pushback": thesis.anticipated_pushback,
            "pushback_counter": thesis.pushback_counter,
            "last_memory_snapshot": {
                "file_count": len(snapshot["files"]),
                "photo_count": len(snapshot["photos"]),
                "analysis_count": len(snapshot["recent_analyses"]),
            },
            "last_deltas_reviewed_at": to_iso(self.clock()),
            "cross_claim_lessons": [
                {
                    "claim_id": lesson["claim_id"],
                    "carrier": lesson.get("carrier"),
                    "loss_type": lesson.get("loss_type"),
                    "winning_arguments": lesson.get("winning_arguments"),
                    "recovery_pct": lesson.get("recovery_percentage"),
                }
                for lesson in memory.lessons
            ],
            "industry_notes_used": [
                {"id": note["id"], "type": note.get("source_type"), "state": note.get("state_code")}
                for note in memory.industry_notes
            ],
            "web_search_performed": bool(web_results),
            "web_search_results": web_results or None,
        }, on_conflict="claim_id")

    # ─── Step D: context ─────────────────────────────────────────────

    def build_context(
        self,
        thesis: ThesisObject,
        memory: ClaimMemory,
        web_results: List[Dict[str, str]],
        validation_errors: List[str]
    ) -> str:
        lines: List[str] = [
            "",
            "",
            "=== STRATEGIC PIPELINE CONTEXT (MANDATORY REVIEW) ===",
            "You MUST review the following before generating output.",
            "",
        ]
        lines += self._domain_section(thesis.loss_domain)
        lines += self._thesis_section(thesis, validation_errors)
        lines += self._evidence_section(thesis)
        lines += self._delta_section(memory)
        lines += self._lessons_section(memory.lessons)
        lines += self._notes_section(memory.industry_notes)

        if web_results:
            lines.append("── WEB SEARCH RESULTS ──")
            for result in web_results:
                lines += [f"Query: {result['query']}", f"Result: {result['result'][:500]}", ""]

        lines += [
            "=== END STRATEGIC PIPELINE CONTEXT ===",
            "RULE: No rebuttal/strategic output unless thesis exists and is backed by claim anchors (doc IDs / photo IDs).",
        ]
        return "\n".join(lines) + "\n"

    @staticmethod
    def _domain_section(domain: LossDomainClassification) -> List[str]:
        lines = [
            "══ LOSS DOMAIN FIDELITY (MANDATORY: READ BEFORE ANYTHING ELSE) ══",
            f"Detected Domain: {domain.domain.upper()} (Confidence: {domain.confidence})",
            f"Roof Involvement: {domain.roof_involvement}",
            f"Reasoning: {domain.reasoning}",
        ]
        if domain.unanswered_questions:
            lines.append(f"Open Questions: {'; '.join(domain.unanswered_questions)}")
        lines.append("")

        if domain.domain == "interior_water" and domain.roof_involvement != "confirmed":
            qualifier = "UNCONFIRMED" if domain.roof_involvement == "possible" else "NO"
            lines += [
                f"🚫 HARD BLOCK: This is an INTERIOR WATER claim with {qualifier} roof involvement.",
                "   - DO NOT use roof-specific arguments, shingle standards, ARMA guidelines, or hail/wind damage terminology.",
                "   - DO NOT cite IRC roofing sections, manufacturer shingle specs, or wind speed thresholds.",
                "   - Focus on: water intrusion patterns, plumbing codes, moisture damage, mold risk, interior finish materials.",
            ]
            if domain.roof_involvement == "possible":
                lines += [
                    "   - If you need to reference roof as a water source, present it as a CONDITIONAL HYPOTHESIS ONLY:",
                    '     "If the source of water ingress is determined to be the roof system, then [argument]"',
                    f"   - ASK: {'; '.join(domain.unanswered_questions)}",
                ]
            lines.append("")
        elif domain.domain == "fire_smoke":
            lines += [
                "🔥 DOMAIN: FIRE/SMOKE. Use fire-specific standards, smoke damage evaluation, structural integrity assessment.",
                "   - DO NOT default to roofing arguments unless fire caused roof damage.",
                "   - Focus on: NFPA standards, smoke migration, char depth, thermal damage patterns, ALE/Coverage D.",
                "",
            ]
        elif domain.domain == "theft_vandalism":
            lines += [
                "🔒 DOMAIN: THEFT/VANDALISM. Focus on property crime evidence, police reports, inventory verification.",
                "   - DO NOT use weather-based or structural deterioration arguments.",
                "",
            ]
        elif domain.domain == "vehicle_impact":
            lines += [
                "🚗 DOMAIN: VEHICLE IMPACT. Focus on structural damage, masonry, foundation, impact trajectory.",
                "   - DO NOT use weather-based causation or roofing terminology.",
                "",
            ]
        elif domain.domain == "wind_only":
            lines += [
                "💨 DOMAIN: WIND ONLY. Focus on wind-specific damage patterns (uplift, creasing, displacement).",
                "   - Use wind speed data, directional indicators, and wind-specific manufacturer thresholds.",
                "",
            ]
        elif domain.domain in ("roof_exterior", "hail"):
            lines += ["🏠 DOMAIN: ROOF/EXTERIOR. Roof-specific arguments, standards, and citations ARE permitted.", ""]

        lines += ["══ END LOSS DOMAIN FIDELITY ══", ""]
        return lines

    @staticmethod
    def _thesis_section(thesis: ThesisObject, validation_errors: List[str]) -> List[str]:
        lines = [
            "── CLAIM THESIS (Locked Position) ──",
            f"Primary Cause of Loss: {thesis.primary_cause_of_loss}",
            f"Primary Coverage Theory: {thesis.primary_coverage_theory}",
            f"Primary Carrier Error: {thesis.primary_carrier_error}",
            f"Anticipated Pushback: {thesis.anticipated_pushback or 'Not specified'}",
            f"Counter: {thesis.pushback_counter or 'Not specified'}",
        ]
        if validation_errors:
            lines.append(f"⚠️ Thesis Warnings: {'; '.join(validation_errors)}")
        lines.append("")
        return lines

    @staticmethod
    def _evidence_section(thesis: ThesisObject) -> List[str]:
        lines = ["── EVIDENCE ANCHORS ──", "ALL outputs MUST cite at least one of these anchors:"]
        for anchor in thesis.evidence_map:
            lines.append(f"- [{anchor.type.upper()}] {anchor.name} (ID: {anchor.id}): {anchor.relevance}")
        if not thesis.evidence_map:
            lines.append("⚠️ NO EVIDENCE ANCHORS AVAILABLE. Output should note evidence gaps.")
        lines.append("")
        return lines

    @staticmethod
    def _delta_section(memory: ClaimMemory) -> List[str]:
        lines = ["── RECENT DELTAS ──"]
        if not memory.has_delta:
            return lines + ["No new file activity since last review.", ""]

        if memory.new_files:
            lines.append("New files since last review:")
            lines += [
                f"  - {file['file_name']} [{file.get('document_classification') or 'unclassified'}] "
                f"(uploaded {_short_date(file.get('uploaded_at'))})"
                for file in memory.new_files
            ]
        if memory.new_notes:
            lines.append(f"New notes: {len(memory.new_notes)}")
        if memory.new_emails:
            summary = ", ".join(f"{email.get('subject')} ({email.get('direction')})" for email in memory.new_emails)
            lines.append(f"New emails: {summary}")
        lines += ["MANDATE: You must explicitly incorporate at least one delta item in your output.", ""]
        return lines

    @staticmethod
    def _lessons_section(lessons: List[Dict[str, Any]]) -> List[str]:
        lines = ["── CROSS-CLAIM LESSONS ──"]
        if not lessons:
            return lines + ["No matching cross-claim lessons found.", ""]
        for lesson in lessons:
            lines.append(
                f"- Carrier: {lesson.get('carrier') or 'Unknown'}, Loss: {lesson.get('loss_type') or 'Unknown'}, "
                f"Recovery: {lesson.get('recovery_percentage') or 'N/A'}%"
            )
            if lesson.get("winning_arguments"):
                lines.append(f"  Winning args: {_text(lesson['winning_arguments'])[:200]}")
        lines.append("")
        return lines

    @staticmethod
    def _notes_section(notes: List[Dict[str, Any]]) -> List[str]:
        lines = ["── INDUSTRY NOTES ──"]
        if not notes:
            return lines + ["No cached industry notes matched.", ""]
        for note in notes[:MAX_CONTEXT_NOTES]:
            lines.append(f"- [{note.get('source_type')}] {note['cache_key']}: {note['content'][:200]}...")
        lines.append("")
        return lines
