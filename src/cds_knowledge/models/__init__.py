"""Public model re-exports for cds_knowledge.

Consumers should import from ``cds_knowledge.models`` rather than
reaching into sub-modules directly.
"""

# --- Enums ---
from cds_knowledge.models.enums import (
    Acuity,
    ContraindicationType,
    EvidenceSource,
    RiskLevel,
    SafetyStatus,
    Severity,
    SuggestionSource,
    SymptomDuration,
    TreatmentResponse,
)

# --- Knowledge catalogs ---
from cds_knowledge.models.knowledge import (
    ClinicalGuideline,
    ClinicalRule,
    DiagnosisCatalogEntry,
    FrequencyGuideline,
    GuidelineRecommendation,
    OutcomeBaseline,
    PatientPreference,
    RedFlagDefinition,
    Technique,
    TreatmentProtocol,
)

# --- Evidence ---
from cds_knowledge.models.evidence import ClinicalEvent, PatientEvidence

# --- Results ---
from cds_knowledge.models.results import (
    AcceptedDiagnosis,
    AdvisoryContraindication,
    BaselineOutcome,
    ClinicalAlertView,
    ContraindicationCheckResult,
    ContraindicationFindingView,
    ContraindicationStats,
    DiagnosisSuggestionView,
    ExistingFinding,
    ExpectationSetting,
    FiredRule,
    FiredRuleView,
    GuidelineMatch,
    OutcomeAssessment,
    OutcomePredictionResult,
    OutcomePredictionStats,
    OutcomePredictionView,
    PrognosticFactors,
    RedFlagHit,
    SafetyAssessment,
    ScoredDiagnosis,
    ScoredTechnique,
    SimilarCaseStats,
    SuggestionSetResult,
    SuggestionStats,
    TreatmentRecommendation,
)

# --- Enrichment ---
from cds_knowledge.models.enrichment import (
    ContraindicationContext,
    ContraindicationEnrichment,
    DiagnosisContext,
    EnrichmentSuggestion,
    OutcomeContext,
    OutcomeEnrichment,
    TreatmentContext,
    TreatmentEnrichment,
)

__all__ = [
    # Enums
    "Acuity",
    "ContraindicationType",
    "EvidenceSource",
    "RiskLevel",
    "SafetyStatus",
    "Severity",
    "SuggestionSource",
    "SymptomDuration",
    "TreatmentResponse",
    # Knowledge
    "ClinicalGuideline",
    "ClinicalRule",
    "DiagnosisCatalogEntry",
    "FrequencyGuideline",
    "GuidelineRecommendation",
    "OutcomeBaseline",
    "PatientPreference",
    "RedFlagDefinition",
    "Technique",
    "TreatmentProtocol",
    # Evidence
    "ClinicalEvent",
    "PatientEvidence",
    # Results
    "AcceptedDiagnosis",
    "AdvisoryContraindication",
    "BaselineOutcome",
    "ClinicalAlertView",
    "ContraindicationCheckResult",
    "ContraindicationFindingView",
    "ContraindicationStats",
    "DiagnosisSuggestionView",
    "ExistingFinding",
    "ExpectationSetting",
    "FiredRule",
    "FiredRuleView",
    "GuidelineMatch",
    "OutcomeAssessment",
    "OutcomePredictionResult",
    "OutcomePredictionStats",
    "OutcomePredictionView",
    "PrognosticFactors",
    "RedFlagHit",
    "SafetyAssessment",
    "ScoredDiagnosis",
    "ScoredTechnique",
    "SimilarCaseStats",
    "SuggestionSetResult",
    "SuggestionStats",
    "TreatmentRecommendation",
    # Enrichment
    "ContraindicationContext",
    "ContraindicationEnrichment",
    "DiagnosisContext",
    "EnrichmentSuggestion",
    "OutcomeContext",
    "OutcomeEnrichment",
    "TreatmentContext",
    "TreatmentEnrichment",
]
