"""Contraindication endpoints — safety checks, manual entries, overrides,
deactivation and stats.

All endpoints require the ``X-User-ID`` and ``X-Organization-ID`` headers.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from cds_knowledge.engine import ClinicalDecisionEngine
from cds_knowledge.models.enums import ContraindicationType
from cds_knowledge.models.evidence import ClinicalEvent
from cds_knowledge.models.results import (
    ContraindicationCheckResult,
    ContraindicationFindingView,
    ContraindicationStats,
)

from cds_server.dependencies import Caller, get_caller, get_db, get_engine

router = APIRouter(tags=["contraindications"])


# ------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------

class ContraindicationCheckRequest(BaseModel):
    """Body for POST /patients/{patient_id}/contraindication-checks."""
    procedure: str
    procedure_code: str | None = None
    encounter_id: str | None = None
    conditions: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    clinical_notes: str | None = None
    recent_surgeries: list[ClinicalEvent] = Field(default_factory=list)
    recent_trauma: list[ClinicalEvent] = Field(default_factory=list)
    include_enrichment: bool = True


class AddContraindicationRequest(BaseModel):
    """Body for POST /patients/{patient_id}/contraindications."""
    procedure: str
    contraindication_type: ContraindicationType
    reason: str
    procedure_code: str | None = None
    encounter_id: str | None = None
    source: str | None = None
    is_permanent: bool = False
    expires_at: datetime | None = None
    review_date: datetime | None = None


class OverrideRequest(BaseModel):
    reason: str
    risk_acknowledged: bool
    patient_consent: bool = False
    alternatives_considered: list[str] | None = None
    precautions_taken: list[str] | None = None


class DeactivateRequest(BaseModel):
    reason: str


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("/patients/{patient_id}/contraindication-checks")
async def check_contraindications(
    patient_id: str,
    body: ContraindicationCheckRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> ContraindicationCheckResult:
    """Screen a proposed procedure for the patient.

    Fired ABSOLUTE and RELATIVE rules are stored as findings; repeating
    the same check reuses them.
    """
    return await engine.check_contraindications(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        patient_id=patient_id,
        procedure=body.procedure,
        procedure_code=body.procedure_code,
        encounter_id=body.encounter_id,
        conditions=body.conditions,
        medications=body.medications,
        allergies=body.allergies,
        clinical_notes=body.clinical_notes,
        recent_surgeries=body.recent_surgeries,
        recent_trauma=body.recent_trauma,
        include_enrichment=body.include_enrichment,
    )


@router.get("/patients/{patient_id}/contraindications")
async def list_contraindications(
    patient_id: str,
    include_inactive: bool = Query(False),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> list[ContraindicationFindingView]:
    return await engine.get_patient_contraindications(
        db,
        organization_id=caller.organization_id,
        patient_id=patient_id,
        include_inactive=include_inactive,
    )


@router.post("/patients/{patient_id}/contraindications", status_code=201)
async def add_contraindication(
    patient_id: str,
    body: AddContraindicationRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> ContraindicationFindingView:
    """Record a provider-entered contraindication.  409 on a near-duplicate."""
    return await engine.add_contraindication(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        patient_id=patient_id,
        procedure=body.procedure,
        contraindication_type=body.contraindication_type,
        reason=body.reason,
        procedure_code=body.procedure_code,
        encounter_id=body.encounter_id,
        source=body.source,
        is_permanent=body.is_permanent,
        expires_at=body.expires_at,
        review_date=body.review_date,
    )


@router.get("/contraindications/stats")
async def contraindication_stats(
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> ContraindicationStats:
    return await engine.get_contraindication_stats(db, organization_id=caller.organization_id)


@router.post("/contraindications/{finding_id}/override")
async def override_contraindication(
    finding_id: str,
    body: OverrideRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> ContraindicationFindingView:
    """Override a RELATIVE or PRECAUTION finding.  ABSOLUTE findings → 409."""
    return await engine.override_contraindication(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        finding_id=finding_id,
        reason=body.reason,
        risk_acknowledged=body.risk_acknowledged,
        patient_consent=body.patient_consent,
        alternatives_considered=body.alternatives_considered,
        precautions_taken=body.precautions_taken,
    )


@router.post("/contraindications/{finding_id}/deactivate")
async def deactivate_contraindication(
    finding_id: str,
    body: DeactivateRequest,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> ContraindicationFindingView:
    return await engine.deactivate_contraindication(
        db,
        organization_id=caller.organization_id,
        actor_id=caller.user_id,
        finding_id=finding_id,
        reason=body.reason,
    )
