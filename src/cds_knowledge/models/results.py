"""Result models — the contract between the engine and API callers.

These models are intentionally decoupled from the ORM models in ``cds_db``
so that API consumers never see database internals.  Pure scoring
functions return the ``*Hit`` / ``*Assessment`` models; the orchestrator
wraps them into the ``*Result`` / ``*View`` models it returns.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from cds_knowledge.models.enums import (
    Acuity,
    ContraindicationType,
    RiskLevel,
    SafetyStatus,
    Severity,
    SuggestionSource,
    SymptomDuration,
    TreatmentResponse,
)
from cds_knowledge.models.knowledge import ClinicalRule


# ---------------------------------------------------------------------------
# Evidence extraction / scoring
# ---------------------------------------------------------------------------

class RedFlagHit(BaseModel):
    """A red flag whose keywords occur in the scanned text."""

    type: str
    severity: Severity
    message: str
    recommendation: str
    matched_keywords: list[str]


class ScoredDiagnosis(BaseModel):
    """A ranked diagnosis candidate before persistence."""

    code: str
    description: str
    confidence: float
    reasoning: str
    supporting_findings: list[str] = Field(default_factory=list)
    source: SuggestionSource = SuggestionSource.RULE_BASED


class ScoredTechnique(BaseModel):
    name: str
    category: str
    evidence: str
    score: float


# ---------------------------------------------------------------------------
# Contraindications
# ---------------------------------------------------------------------------

class FiredRule(BaseModel):
    """A contraindication rule that matched patient evidence."""

    rule: ClinicalRule
    matched_keywords: list[str]
    match_source: str

    @property
    def severity(self) -> Severity:
        return self.rule.alert_severity


class SafetyAssessment(BaseModel):
    """Pure result of evaluating the rule catalog for one procedure."""

    status: SafetyStatus
    can_proceed: bool
    requires_override: bool
    overall_risk_level: RiskLevel
    fired: list[FiredRule]


class ExistingFinding(BaseModel):
    """Stored finding summary as seen by the contraindication engine."""

    id: str
    procedure: str
    type: ContraindicationType
    reason: str
    rule_id: str | None = None
    is_overridden: bool = False


class ContraindicationFindingView(BaseModel):
    """Public view of a persisted contraindication finding."""

    id: str
    patient_id: str
    encounter_id: str | None = None
    procedure: str
    procedure_code: str | None = None
    type: ContraindicationType
    reason: str
    source: str | None = None
    rule_id: str | None = None
    is_permanent: bool = False
    review_date: datetime | None = None
    expires_at: datetime | None = None
    is_overridden: bool = False
    override_reason: str | None = None
    overridden_at: datetime | None = None
    overridden_by: str | None = None
    is_active: bool = True
    deactivation_reason: str | None = None
    created_at: datetime | None = None


class FiredRuleView(BaseModel):
    rule_id: str
    name: str
    type: ContraindicationType
    severity: Severity
    reason: str
    recommendation: str
    matched_keywords: list[str]
    match_source: str
    overridable: bool
    documentation_required: bool


class AdvisoryContraindication(BaseModel):
    """Enrichment-supplied contraindication.  Never affects safety status."""

    condition: str
    type: ContraindicationType = ContraindicationType.PRECAUTION
    reason: str = ""
    recommendation: str = ""


class ContraindicationCheckResult(BaseModel):
    patient_id: str
    procedure: str
    procedure_code: str | None = None
    safety_status: SafetyStatus
    can_proceed: bool
    requires_override: bool
    overall_risk_level: RiskLevel
    contraindications: list[FiredRuleView]
    existing_findings: list[ContraindicationFindingView] = Field(default_factory=list)
    new_finding_ids: list[str] = Field(default_factory=list)
    alert_ids: list[str] = Field(default_factory=list)
    counts: dict[str, int] = Field(default_factory=dict)
    patient_factors: dict = Field(default_factory=dict)
    advisory: list[AdvisoryContraindication] = Field(default_factory=list)
    safety_notes: list[str] = Field(default_factory=list)
    enrichment_used: bool = False


# ---------------------------------------------------------------------------
# Diagnosis suggestions
# ---------------------------------------------------------------------------

class DiagnosisSuggestionView(BaseModel):
    """Public view of a persisted diagnosis suggestion."""

    id: str
    encounter_id: str
    code: str
    description: str
    confidence: float
    reasoning: str | None = None
    supporting_findings: list[str] = Field(default_factory=list)
    has_red_flags: bool = False
    red_flag_details: str | None = None
    evidence_level: str | None = None
    source: str
    status: str
    rejection_reason: str | None = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    created_at: datetime | None = None


class SuggestionSetResult(BaseModel):
    encounter_id: str
    suggestions: list[DiagnosisSuggestionView]
    red_flags: list[RedFlagHit]
    alert_ids: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    symptom_duration: SymptomDuration = SymptomDuration.UNKNOWN
    enrichment_used: bool = False


class AcceptedDiagnosis(BaseModel):
    suggestion: DiagnosisSuggestionView
    diagnosis_id: str
    sequence: int
    is_primary: bool


class SuggestionStats(BaseModel):
    total: int
    accepted: int
    rejected: int
    pending: int
    acceptance_rate: int
    top_accepted_codes: list[dict]
    top_rejected_codes: list[dict]


class ContraindicationStats(BaseModel):
    """Active finding counts for an organization."""

    absolute: int
    relative: int
    precaution: int
    overridden: int
    inactive: int
    active_total: int


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class ClinicalAlertView(BaseModel):
    id: str
    patient_id: str
    encounter_id: str | None = None
    alert_type: str
    severity: Severity
    status: str
    message: str
    description: str | None = None
    recommendation: str | None = None
    triggered_by: str | None = None
    related_data: dict | None = None
    finding_id: str | None = None
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    resolution_note: str | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Outcome prediction
# ---------------------------------------------------------------------------

class BaselineOutcome(BaseModel):
    improvement: float
    timeline: str
    description: str
    confidence: float


class PrognosticFactors(BaseModel):
    favorable: list[str] = Field(default_factory=list)
    unfavorable: list[str] = Field(default_factory=list)
    neutral: list[str] = Field(default_factory=list)


class SimilarCaseStats(BaseModel):
    count: int = 0
    average_improvement: float | None = None
    # excellent / good / moderate / poor -> number of cases
    distribution: dict[str, int] = Field(default_factory=dict)


class ExpectationSetting(BaseModel):
    key_points: list[str]
    improvement_target: str
    timeline: str
    response_level: TreatmentResponse
    chronicity_risk: str


class OutcomeAssessment(BaseModel):
    """Pure outcome computation, before enrichment and persistence."""

    improvement: float
    confidence: float
    timeline: str
    description: str
    chronicity_risk: float
    treatment_response: TreatmentResponse
    response_description: str
    factors: PrognosticFactors
    prognostic_summary: str
    similar_cases: SimilarCaseStats
    patient_explanation: str
    expectation: ExpectationSetting


class OutcomePredictionView(BaseModel):
    """Public view of a persisted outcome prediction."""

    id: str
    patient_id: str
    encounter_id: str | None = None
    condition_code: str
    condition_description: str | None = None
    treatment_approach: str | None = None
    techniques: list[str] = Field(default_factory=list)
    predicted_outcome: str
    confidence: float
    expected_timeline: str
    expected_improvement: float
    chronicity_risk: float
    treatment_response: TreatmentResponse
    prognostic_factors: dict = Field(default_factory=dict)
    similar_cases: dict = Field(default_factory=dict)
    patient_age: int | None = None
    symptom_duration: SymptomDuration = SymptomDuration.UNKNOWN
    comorbidities: list[str] = Field(default_factory=list)
    risk_factors: list[str] = Field(default_factory=list)
    patient_explanation: str | None = None
    expectation_setting: dict = Field(default_factory=dict)
    status: str
    decided_by: str | None = None
    decided_at: datetime | None = None
    rejection_reason: str | None = None
    actual_improvement: float | None = None
    was_accurate: bool | None = None
    outcome_notes: str | None = None
    actual_recorded_at: datetime | None = None
    created_at: datetime | None = None


class OutcomePredictionResult(BaseModel):
    prediction: OutcomePredictionView
    response_description: str
    alert_id: str | None = None
    enrichment_used: bool = False


class OutcomePredictionStats(BaseModel):
    total: int
    with_actual: int
    accurate: int
    # Percentage of recorded outcomes within tolerance
    accuracy_rate: int
    mean_absolute_error: float | None = None
    mean_predicted_improvement: float | None = None
    by_status: dict[str, int] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Treatment & guidelines
# ---------------------------------------------------------------------------

class TreatmentRecommendation(BaseModel):
    condition_code: str
    condition_description: str
    recommendation: str
    acuity: Acuity
    primary_techniques: list[str]
    adjunct_therapies: list[str]
    exercises: list[str]
    frequency: dict[str, str]
    expected_outcome: str
    expected_timeline: str
    prognosis: str
    alternatives: list[dict[str, str]]
    evidence_level: str
    evidence_summary: str
    citations: list[str]
    red_flags: list[RedFlagHit]
    contraindications: list[str]
    protocol_name: str | None = None
    enrichment_used: bool = False


class GuidelineMatch(BaseModel):
    guideline_code: str
    name: str
    source: str
    condition: str
    matched_diagnosis: str
    evidence_level: str
    key_recommendations: list[dict[str, str]]
    key_points: list[str]
    red_flags_to_check: list[str]
    suggested_actions: list[str]
