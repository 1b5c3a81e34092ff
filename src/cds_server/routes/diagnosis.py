"""Diagnosis suggestion endpoints — generate, list, accept, reject, stats.

All endpoints require the ``X-User-ID`` and ``X-Organization-ID`` headers.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cds_knowledge.engine import ClinicalDecisionEngine
from cds_knowledge.models.results import (
    AcceptedDiagnosis,
    DiagnosisSuggestionView,
    SuggestionSetResult,
    SuggestionStats,
)

from cds_server.dependencies import Caller, get_caller, get_db, get_engine

router = APIRouter(tags=["diagnosis-suggestions"])


# ------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------

class SuggestDiagnosisRequest(BaseModel):
    """Body for POST /encounters/{encounter_id}/diagnosis-suggestions.

    Text fields left out fall back to the stored encounter.
    """
    chief_complaint: str | None = None
    subjective: str | None = None
    objective: str | None = None
    include_enrichment: bool = True
    max_suggestions: int | None = Field(default=None, ge=1)


class AcceptSuggestionRequest(BaseModel):
    is_primary: bool = False
    notes: str | None = None


class RejectSuggestionRequest(BaseModel):
    reason: str


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("/encounters/{encounter_id}/diagnosis-suggestions", status_code=201)
async def suggest_diagnosis(
    encounter_id: str,
    body: SuggestDiagnosisRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> SuggestionSetResult:
    """Rank diagnoses for the encounter and store them as pending suggestions."""
    return await engine.suggest_diagnosis(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        encounter_id=encounter_id,
        chief_complaint=body.chief_complaint,
        subjective=body.subjective,
        objective=body.objective,
        include_enrichment=body.include_enrichment,
        max_suggestions=body.max_suggestions,
    )


@router.get("/encounters/{encounter_id}/diagnosis-suggestions")
async def list_pending_suggestions(
    encounter_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> list[DiagnosisSuggestionView]:
    return await engine.get_pending_suggestions(
        db, organization_id=caller.organization_id, encounter_id=encounter_id
    )


# Declared before the /{suggestion_id} routes so "stats" is not taken as an id
@router.get("/diagnosis-suggestions/stats")
async def suggestion_stats(
    since: datetime | None = Query(None),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> SuggestionStats:
    """Acceptance statistics for the caller's organization."""
    return await engine.get_suggestion_stats(
        db, organization_id=caller.organization_id, since=since
    )


@router.post("/diagnosis-suggestions/{suggestion_id}/accept")
async def accept_suggestion(
    suggestion_id: str,
    body: AcceptSuggestionRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> AcceptedDiagnosis:
    """Accept a pending suggestion as a diagnosis.  409 if already processed."""
    return await engine.accept_suggestion(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        suggestion_id=suggestion_id,
        is_primary=body.is_primary,
        notes=body.notes,
    )


@router.post("/diagnosis-suggestions/{suggestion_id}/reject")
async def reject_suggestion(
    suggestion_id: str,
    body: RejectSuggestionRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> DiagnosisSuggestionView:
    return await engine.reject_suggestion(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        suggestion_id=suggestion_id,
        reason=body.reason,
    )
