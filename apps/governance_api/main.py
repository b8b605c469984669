from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from kctgov.core.audit import AuditEvent
from kctgov.core.errors import (
    CommentsClosed,
    ConcurrentModification,
    DuplicateVersion,
    GovernanceError,
    ImmutableContent,
    InvalidTransition,
    NotFound,
)
from kctgov.guardrails.mapping import mapping_status
from kctgov.guardrails.readiness import ReadinessReport
from kctgov.models.content import ContentSnapshot
from kctgov.models.mapping import ClassFacts, MappingValidationReport
from kctgov.models.rollout import RolloutPlan, RolloutScope, RolloutStats
from kctgov.models.rules import RuleCategory, RuleSeverity, ValidationRule
from kctgov.models.versions import CurriculumVersion, VersionDiff, VersionStats
from kctgov.pipeline.bootstrap import bootstrap_governance
from kctgov.pipeline.context import GovernanceContext

CONFLICT_ERRORS = (InvalidTransition, ConcurrentModification, DuplicateVersion, ImmutableContent, CommentsClosed)


@lru_cache
def get_context() -> GovernanceContext:
    return bootstrap_governance()


class HealthResponse(BaseModel):
    status: str
    storage_backend: str
    rules: int


class PolicyUpdate(BaseModel):
    updated_by: str
    changes: Dict[str, Any] = Field(default_factory=dict)


class RuleUpdate(BaseModel):
    updated_by: str
    enabled: Optional[bool] = None
    severity: Optional[RuleSeverity] = None
    config: Optional[Dict[str, Any]] = None


class CreateVersionRequest(BaseModel):
    framework_id: str
    version_label: str
    content: ContentSnapshot
    created_by: str
    changelog: str = ""


class SubmitRequest(BaseModel):
    actor: str
    reviewers: List[str] = Field(default_factory=list)


class DecisionRequest(BaseModel):
    reviewer: str
    decision: Literal["approve", "reject"]
    comment: Optional[str] = None


class ActorRequest(BaseModel):
    actor: str


class RollbackRequest(BaseModel):
    version_id: str
    actor: str


class MappingRequest(BaseModel):
    class_ids: List[str] = Field(..., min_length=1)


class MappingResponse(BaseModel):
    report: MappingValidationReport
    status: str


class CreatePlanRequest(BaseModel):
    version_id: str
    scope: RolloutScope
    target_class_ids: List[str] = Field(..., min_length=1)
    scheduled_at: datetime
    prerequisites: List[str] = Field(default_factory=list)
    created_by: str


app = FastAPI(title="KCT Governance API", version="0.1.0")


def _status_for(exc: GovernanceError) -> int:
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, CONFLICT_ERRORS):
        return 409
    return 422


@app.exception_handler(GovernanceError)
async def governance_error_handler(_: Any, exc: GovernanceError) -> JSONResponse:
    return JSONResponse(status_code=_status_for(exc), content={"detail": exc.to_dict()})


@app.exception_handler(HTTPException)
async def http_error_handler(_: Any, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/health", response_model=HealthResponse)
def health(ctx: GovernanceContext = Depends(get_context)) -> HealthResponse:
    return HealthResponse(status="ok", storage_backend=ctx.config.storage.backend, rules=len(ctx.policy.rules()))


# ------------------------------------------------------------------- policy


@app.get("/policy")
def read_policy(ctx: GovernanceContext = Depends(get_context)) -> Dict[str, Any]:
    return ctx.policy.snapshot()


@app.patch("/policy")
def update_policy(update: PolicyUpdate, ctx: GovernanceContext = Depends(get_context)) -> Dict[str, Any]:
    try:
        policy = ctx.policy.update_policy(update.updated_by, **update.changes)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return policy.model_dump(mode="json")


@app.get("/rules", response_model=List[ValidationRule])
def list_rules(
    category: Optional[RuleCategory] = Query(None, description="Filter by rule category"),
    effective: bool = Query(True, description="Apply policy tunables to the returned rules"),
    ctx: GovernanceContext = Depends(get_context),
) -> List[ValidationRule]:
    if effective:
        return ctx.policy.effective_rules(category)
    return ctx.policy.rules(category)


@app.patch("/rules/{rule_id}", response_model=ValidationRule)
def update_rule(rule_id: str, update: RuleUpdate, ctx: GovernanceContext = Depends(get_context)) -> ValidationRule:
    try:
        return ctx.policy.update_rule(
            rule_id,
            update.updated_by,
            enabled=update.enabled,
            severity=update.severity,
            config=update.config,
        )
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Rule {rule_id} not found") from exc


# ----------------------------------------------------------------- versions


@app.post("/versions", response_model=CurriculumVersion, status_code=201)
def create_version(request: CreateVersionRequest, ctx: GovernanceContext = Depends(get_context)) -> CurriculumVersion:
    try:
        return ctx.lifecycle.create_version(
            request.framework_id,
            request.version_label,
            request.content,
            request.created_by,
            request.changelog,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.get("/versions/{version_id}", response_model=CurriculumVersion)
def get_version(version_id: str, ctx: GovernanceContext = Depends(get_context)) -> CurriculumVersion:
    return ctx.lifecycle.get(version_id)


@app.post("/versions/{version_id}/submit", response_model=CurriculumVersion)
def submit_version(
    version_id: str,
    request: SubmitRequest,
    ctx: GovernanceContext = Depends(get_context),
) -> CurriculumVersion:
    return ctx.lifecycle.submit_for_review(version_id, request.actor, request.reviewers)


@app.post("/versions/{version_id}/decision", response_model=CurriculumVersion)
def decide_version(
    version_id: str,
    request: DecisionRequest,
    ctx: GovernanceContext = Depends(get_context),
) -> CurriculumVersion:
    return ctx.lifecycle.record_decision(version_id, request.reviewer, request.decision, request.comment)


@app.post("/versions/{version_id}/publish", response_model=CurriculumVersion)
def publish_version(
    version_id: str,
    request: ActorRequest,
    ctx: GovernanceContext = Depends(get_context),
) -> CurriculumVersion:
    return ctx.lifecycle.publish(version_id, request.actor)


@app.post("/versions/{version_id}/archive", response_model=CurriculumVersion)
def archive_version(
    version_id: str,
    request: ActorRequest,
    ctx: GovernanceContext = Depends(get_context),
) -> CurriculumVersion:
    return ctx.lifecycle.archive(version_id, request.actor)


@app.get("/versions/{version_id}/readiness", response_model=ReadinessReport)
def version_readiness(version_id: str, ctx: GovernanceContext = Depends(get_context)) -> ReadinessReport:
    return ctx.lifecycle.readiness(version_id)


@app.get("/versions/{version_id}/diff", response_model=List[VersionDiff])
def version_diff(version_id: str, ctx: GovernanceContext = Depends(get_context)) -> List[VersionDiff]:
    return ctx.lifecycle.diff_with_previous(version_id)


@app.post("/versions/{version_id}/mapping", response_model=MappingResponse)
def validate_mapping(
    version_id: str,
    request: MappingRequest,
    ctx: GovernanceContext = Depends(get_context),
) -> MappingResponse:
    version = ctx.lifecycle.get(version_id)
    classes = [ctx.repository.get_class(class_id) for class_id in request.class_ids]
    report = ctx.validator.validate_mapping(version, classes, ctx.policy.effective_rules(RuleCategory.MAPPING))
    return MappingResponse(report=report, status=mapping_status(report))


@app.get("/frameworks/{framework_id}/versions", response_model=List[CurriculumVersion])
def version_history(framework_id: str, ctx: GovernanceContext = Depends(get_context)) -> List[CurriculumVersion]:
    return ctx.lifecycle.history(framework_id)


@app.get("/frameworks/{framework_id}/stats", response_model=VersionStats)
def version_stats(framework_id: str, ctx: GovernanceContext = Depends(get_context)) -> VersionStats:
    return ctx.lifecycle.stats(framework_id)


@app.post("/frameworks/{framework_id}/rollback", response_model=CurriculumVersion)
def rollback_version(
    framework_id: str,
    request: RollbackRequest,
    ctx: GovernanceContext = Depends(get_context),
) -> CurriculumVersion:
    return ctx.lifecycle.rollback(framework_id, request.version_id, request.actor)


# ------------------------------------------------------------------ classes


@app.put("/classes/{class_id}", response_model=ClassFacts)
def put_class(class_id: str, facts: ClassFacts, ctx: GovernanceContext = Depends(get_context)) -> ClassFacts:
    if facts.class_id != class_id:
        raise HTTPException(status_code=422, detail="class_id in body does not match the path")
    ctx.repository.put_class(facts)
    return facts


@app.get("/classes/{class_id}", response_model=ClassFacts)
def get_class(class_id: str, ctx: GovernanceContext = Depends(get_context)) -> ClassFacts:
    return ctx.repository.get_class(class_id)


# ----------------------------------------------------------------- rollouts


@app.post("/rollouts", response_model=RolloutPlan, status_code=201)
def create_rollout(request: CreatePlanRequest, ctx: GovernanceContext = Depends(get_context)) -> RolloutPlan:
    try:
        return ctx.rollout.create_plan(
            request.version_id,
            request.scope,
            request.target_class_ids,
            request.scheduled_at,
            request.prerequisites,
            request.created_by,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@app.get("/rollouts", response_model=List[RolloutPlan])
def list_rollouts(
    version_id: Optional[str] = Query(None, description="Only plans for this version"),
    ctx: GovernanceContext = Depends(get_context),
) -> List[RolloutPlan]:
    return ctx.rollout.list_plans(version_id)


@app.get("/rollouts/stats", response_model=RolloutStats)
def rollout_stats(
    version_id: Optional[str] = Query(None, description="Only plans for this version"),
    ctx: GovernanceContext = Depends(get_context),
) -> RolloutStats:
    return ctx.rollout.stats(version_id)


@app.get("/rollouts/{plan_id}", response_model=RolloutPlan)
def get_rollout(plan_id: str, ctx: GovernanceContext = Depends(get_context)) -> RolloutPlan:
    return ctx.rollout.get_plan(plan_id)


# -------------------------------------------------------------------- audit


@app.get("/audit", response_model=List[AuditEvent])
def audit_trail(
    subject: Optional[str] = Query(None, description="Plan, class, version, framework, rule or override id"),
    event: Optional[str] = Query(None, description="Only this event type"),
    ctx: GovernanceContext = Depends(get_context),
) -> List[AuditEvent]:
    return ctx.audit.events(event, subject=subject)
