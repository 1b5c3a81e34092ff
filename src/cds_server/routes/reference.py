"""Reference data endpoints — diagnosis codes, red flags, contraindication
rules, techniques, guidelines and treatment recommendations.

These endpoints read the YAML catalogs loaded at startup and never touch
the database.  They still require caller identity like every /api/v1 route.
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from cds_knowledge.engine import ClinicalDecisionEngine
from cds_knowledge.knowledge import KnowledgeBase
from cds_knowledge.models.knowledge import (
    ClinicalRule,
    DiagnosisCatalogEntry,
    RedFlagDefinition,
    Technique,
)
from cds_knowledge.models.results import GuidelineMatch, TreatmentRecommendation

from cds_server.dependencies import Caller, get_caller, get_engine, get_kb

router = APIRouter(prefix="/reference", tags=["reference"])


# ------------------------------------------------------------------
# Request models
# ------------------------------------------------------------------

class TreatmentRecommendationRequest(BaseModel):
    """Body for POST /reference/treatment-recommendation."""
    diagnosis_code: str
    diagnosis_description: str | None = None
    chief_complaint: str | None = None
    subjective: str | None = None
    objective: str | None = None
    age: int | None = Field(default=None, ge=0)
    preferences: list[str] = Field(default_factory=list)
    include_enrichment: bool = True


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.get("/diagnosis-codes")
def list_diagnosis_codes(
    region: str | None = Query(None),
    caller: Caller = Depends(get_caller),
    kb: KnowledgeBase = Depends(get_kb),
) -> list[DiagnosisCatalogEntry]:
    """Return the diagnosis catalog, optionally limited to one body region."""
    if region:
        return kb.codes_for_region(region)
    return list(kb.diagnosis_codes)


@router.get("/red-flags")
def list_red_flags(
    caller: Caller = Depends(get_caller),
    kb: KnowledgeBase = Depends(get_kb),
) -> list[RedFlagDefinition]:
    return list(kb.red_flags)


@router.get("/contraindication-rules")
def list_contraindication_rules(
    caller: Caller = Depends(get_caller),
    kb: KnowledgeBase = Depends(get_kb),
) -> list[ClinicalRule]:
    """Return the contraindication rules in evaluation order."""
    return list(kb.rules)


@router.get("/techniques")
def list_techniques(
    caller: Caller = Depends(get_caller),
    kb: KnowledgeBase = Depends(get_kb),
) -> list[Technique]:
    return list(kb.techniques)


@router.get("/guidelines")
def list_guidelines(
    codes: list[str] | None = Query(None),
    region: str | None = Query(None),
    caller: Caller = Depends(get_caller),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> list[GuidelineMatch]:
    """Guidelines matching any of ``codes`` (repeatable) or ``region``."""
    return engine.find_guidelines(codes=codes or [], region=region)


@router.post("/treatment-recommendation")
async def treatment_recommendation(
    body: TreatmentRecommendationRequest,
    caller: Caller = Depends(get_caller),
    engine: ClinicalDecisionEngine = Depends(get_engine),
) -> TreatmentRecommendation:
    """Build an evidence-based plan for a diagnosis.  Nothing is stored."""
    return await engine.recommend_treatment(
        diagnosis_code=body.diagnosis_code,
        diagnosis_description=body.diagnosis_description,
        chief_complaint=body.chief_complaint,
        subjective=body.subjective,
        objective=body.objective,
        age=body.age,
        preferences=body.preferences,
        include_enrichment=body.include_enrichment,
    )
