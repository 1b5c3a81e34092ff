"""Outcome prediction endpoints — predict, list, review, record actuals, stats.

All endpoints require the ``X-User-ID`` and ``X-Organization-ID`` headers.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cds_knowledge.engine import ClinicalDecisionEngine
from cds_knowledge.models.results import (
    OutcomePredictionResult,
    OutcomePredictionStats,
    OutcomePredictionView,
)

from cds_server.dependencies import Caller, get_caller, get_db, get_engine

router = APIRouter(tags=["outcome-predictions"])


# ------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------

class PredictOutcomeRequest(BaseModel):
    """Body for POST /patients/{patient_id}/outcome-predictions."""
    diagnosis_code: str
    diagnosis_description: str | None = None
    treatment_approach: str | None = None
    techniques: list[str] = Field(default_factory=list)
    encounter_id: str | None = None
    include_enrichment: bool = True


class RejectPredictionRequest(BaseModel):
    reason: str


class ActualOutcomeRequest(BaseModel):
    # 0-100, checked by the engine
    actual_improvement: float
    notes: str | None = None


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("/patients/{patient_id}/outcome-predictions", status_code=201)
async def predict_outcome(
    patient_id: str,
    body: PredictOutcomeRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> OutcomePredictionResult:
    return await engine.predict_outcome(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        patient_id=patient_id,
        diagnosis_code=body.diagnosis_code,
        diagnosis_description=body.diagnosis_description,
        treatment_approach=body.treatment_approach,
        techniques=body.techniques,
        encounter_id=body.encounter_id,
        include_enrichment=body.include_enrichment,
    )


@router.get("/patients/{patient_id}/outcome-predictions")
async def list_outcome_predictions(
    patient_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> list[OutcomePredictionView]:
    return await engine.get_patient_outcome_predictions(
        db, organization_id=caller.organization_id, patient_id=patient_id
    )


@router.get("/outcome-predictions/stats")
async def outcome_prediction_stats(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> OutcomePredictionStats:
    """Prediction accuracy for the caller's organization."""
    return await engine.get_outcome_prediction_stats(db, organization_id=caller.organization_id)


@router.post("/outcome-predictions/{prediction_id}/accept")
async def accept_outcome_prediction(
    prediction_id: str,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> OutcomePredictionView:
    return await engine.accept_outcome_prediction(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        prediction_id=prediction_id,
    )


@router.post("/outcome-predictions/{prediction_id}/reject")
async def reject_outcome_prediction(
    prediction_id: str,
    body: RejectPredictionRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> OutcomePredictionView:
    return await engine.reject_outcome_prediction(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        prediction_id=prediction_id,
        reason=body.reason,
    )


@router.post("/outcome-predictions/{prediction_id}/actual-outcome")
async def record_actual_outcome(
    prediction_id: str,
    body: ActualOutcomeRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> OutcomePredictionView:
    """Record the observed improvement.  409 when one is already recorded."""
    return await engine.record_actual_outcome(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        prediction_id=prediction_id,
        actual_improvement=body.actual_improvement,
        notes=body.notes,
    )
