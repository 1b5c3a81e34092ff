"""Data models exchanged with an ``EnrichmentProvider``.

Requests carry only what the external service needs; replies are parsed
leniently (unknown enum values fall back to a safe default) because the
service output is advisory.
"""

from pydantic import BaseModel, Field, field_validator

from cds_knowledge.models.enums import RiskLevel
from cds_knowledge.models.results import AdvisoryContraindication


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class DiagnosisContext(BaseModel):
    chief_complaint: str = ""
    subjective: str = ""
    objective: str = ""
    patient_age: int | None = None
    patient_gender: str | None = None
    existing_codes: list[str] = Field(default_factory=list)


class ContraindicationContext(BaseModel):
    procedure: str
    patient_age: int | None = None
    conditions: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    clinical_notes: str = ""
    # Names of rules that already fired, so the service can skip them
    already_found: list[str] = Field(default_factory=list)


class TreatmentContext(BaseModel):
    diagnosis_code: str
    diagnosis_description: str = ""
    acuity: str
    chief_complaint: str = ""
    subjective: str = ""
    objective: str = ""
    patient_age: int | None = None
    preferences: list[str] = Field(default_factory=list)


class OutcomeContext(BaseModel):
    condition_code: str
    condition_description: str = ""
    treatment_approach: str | None = None
    patient_age: int | None = None
    symptom_duration: str
    risk_factors: list[str] = Field(default_factory=list)
    comorbidities: list[str] = Field(default_factory=list)
    rule_improvement: float
    rule_timeline: str


# ---------------------------------------------------------------------------
# Replies
# ---------------------------------------------------------------------------

class EnrichmentSuggestion(BaseModel):
    code: str
    description: str = ""
    confidence: float = 0
    reasoning: str = ""
    supporting_findings: list[str] = Field(default_factory=list)

    @field_validator("confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return max(0.0, min(100.0, v))


class ContraindicationEnrichment(BaseModel):
    additional: list[AdvisoryContraindication] = Field(default_factory=list)
    safety_notes: list[str] = Field(default_factory=list)
    overall_risk_level: RiskLevel = RiskLevel.MODERATE


class TreatmentEnrichment(BaseModel):
    recommendation: str = ""
    techniques: list[str] = Field(default_factory=list)
    frequency: str = ""
    duration: str = ""
    expected_outcome: str = ""
    alternatives: list[dict[str, str]] = Field(default_factory=list)
    evidence: str = ""
    citations: list[str] = Field(default_factory=list)


class OutcomeEnrichment(BaseModel):
    predicted_outcome: str = ""
    timeline: str = ""
    additional_factors: list[str] = Field(default_factory=list)
