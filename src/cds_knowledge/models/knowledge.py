"""Pydantic models for the static knowledge catalogs.

These models mirror the YAML files in ``cds_knowledge/data/``:

    - RedFlagDefinition: keyword-triggered serious-pathology signal
    - DiagnosisCatalogEntry: ICD-10 code with body region and prior
    - ClinicalRule: contraindication rule scanned per evidence source
    - Technique, FrequencyGuideline, PatientPreference, TreatmentProtocol
    - ClinicalGuideline with graded GuidelineRecommendation entries
    - OutcomeBaseline: expected improvement per code prefix

All models are frozen and use tuples for collections so that a loaded
catalog cannot be mutated at request time.
"""

from datetime import date

from pydantic import BaseModel, ConfigDict

from cds_knowledge.models.enums import ContraindicationType, EvidenceSource, Severity


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Safety catalogs
# ---------------------------------------------------------------------------

class RedFlagDefinition(_Frozen):
    """Red flag from red_flags.yaml, checked against raw encounter text."""

    type: str
    severity: Severity
    keywords: tuple[str, ...]
    message: str
    recommendation: str


class ClinicalRule(_Frozen):
    """Contraindication rule from contraindication_rules.yaml.

    ``source`` selects the matcher in ``contraindications._MATCHERS``.
    Age rules carry no keywords.
    """

    id: str
    name: str
    type: ContraindicationType
    alert_severity: Severity
    affected_procedures: tuple[str, ...]
    source: EvidenceSource
    keywords: tuple[str, ...] = ()
    reason: str
    recommendation: str
    overridable: bool
    documentation_required: bool = False
    review_period_days: int | None = None


# ---------------------------------------------------------------------------
# Diagnosis catalog
# ---------------------------------------------------------------------------

class DiagnosisCatalogEntry(_Frozen):
    code: str
    description: str
    region: str
    common: bool = False


# ---------------------------------------------------------------------------
# Treatment catalogs
# ---------------------------------------------------------------------------

class Technique(_Frozen):
    """Treatment technique.  ``category`` is one of manual, instrument,
    soft_tissue, therapy, adjunct, exercise."""

    name: str
    category: str
    evidence: str
    description: str


class FrequencyGuideline(_Frozen):
    initial: str
    transition: str
    maintenance: str
    total_visits: str


class PatientPreference(_Frozen):
    key: str
    techniques: tuple[str, ...]
    reason: str


class TreatmentProtocol(_Frozen):
    """Condition protocol, looked up by code prefix (see ``matches``)."""

    condition: str
    codes: tuple[str, ...]
    primary_techniques: tuple[str, ...]
    adjunct_therapies: tuple[str, ...]
    exercises: tuple[str, ...]
    expected_outcome: str
    typical_duration: str
    prognosis: str
    evidence: str
    alternatives: tuple[str, ...]
    contraindications: tuple[str, ...]

    def matches(self, code: str) -> bool:
        """True when *code* extends a protocol code (``XXA`` stripped) or
        a protocol code extends *code*."""
        return any(
            code.startswith(c.replace("XXA", "")) or c.startswith(code)
            for c in self.codes
        )


# ---------------------------------------------------------------------------
# Guidelines
# ---------------------------------------------------------------------------

class GuidelineRecommendation(_Frozen):
    level: str
    text: str
    grade: str
    strength: str


class ClinicalGuideline(_Frozen):
    code: str
    name: str
    source: str
    version: str
    condition: str
    condition_codes: tuple[str, ...]
    applicable_regions: tuple[str, ...] = ()
    summary: str
    recommendations: tuple[GuidelineRecommendation, ...] = ()
    evidence_level: str
    evidence_summary: str = ""
    key_points: tuple[str, ...] = ()
    red_flags: tuple[str, ...] = ()
    referral_criteria: tuple[str, ...] = ()
    contraindications: tuple[str, ...] = ()
    precautions: tuple[str, ...] = ()
    publication_date: date | None = None
    citation: str = ""
    external_url: str | None = None

    def matches_code(self, code: str) -> bool:
        """Exact code match, or *code* shares a condition code's 3-char category."""
        lowered = code.lower()
        return any(
            c.lower() == lowered or lowered.startswith(c[:3].lower())
            for c in self.condition_codes
        )


# ---------------------------------------------------------------------------
# Outcome baselines
# ---------------------------------------------------------------------------

class OutcomeBaseline(_Frozen):
    prefix: str
    improvement: float
    timeline: str
    description: str
