"""Diagnosis and treatment scoring over the knowledge catalogs.

Pure functions only; the orchestrator persists whatever they return.

    score_diagnosis      — points for one catalog entry
    rank_diagnoses       — rule-based candidates above the cutoff
    merge_suggestions    — fold enrichment suggestions into rule output
    score_technique      — suitability of one technique for a patient
    build_treatment_plan — protocol- or score-based treatment plan
    find_guidelines      — guideline matches for a set of codes
"""

from __future__ import annotations

from typing import Iterable, Sequence

from cds_knowledge.constants import (
    DEFAULT_MAX_SUGGESTIONS,
    EVIDENCE_ORDER,
    MAX_SUGGESTIONS_LIMIT,
    MIN_SUGGESTION_SCORE,
)
from cds_knowledge.extractor import REGION_INDICATORS, extract_keywords
from cds_knowledge.knowledge import KnowledgeBase
from cds_knowledge.models.enrichment import EnrichmentSuggestion, TreatmentEnrichment
from cds_knowledge.models.enums import Acuity, SuggestionSource
from cds_knowledge.models.knowledge import DiagnosisCatalogEntry, Technique
from cds_knowledge.models.results import (
    GuidelineMatch,
    RedFlagHit,
    ScoredDiagnosis,
    ScoredTechnique,
    TreatmentRecommendation,
)

# Citations attached to protocol-based plans.
_PROTOCOL_CITATIONS = [
    "CCGPP Guidelines for Chiropractic Quality Assurance",
    "JMPT Evidence-Based Practice Guidelines",
]
# Preferences that add points in score_technique.  quickVisits is informational.
_SCORED_PREFERENCES = ("lowForce", "noManual", "activeInvolvement")


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_limit(max_suggestions: int | None) -> int:
    """Coerce a caller-supplied suggestion limit into [1, MAX_SUGGESTIONS_LIMIT]."""
    if max_suggestions is None:
        return DEFAULT_MAX_SUGGESTIONS
    return int(clamp(max_suggestions, 1, MAX_SUGGESTIONS_LIMIT))


# ---------------------------------------------------------------------------
# Diagnosis suggestions
# ---------------------------------------------------------------------------

def score_diagnosis(
    entry: DiagnosisCatalogEntry,
    keywords: Sequence[str],
    chief_complaint: str | None,
) -> float:
    """Score one catalog entry against extracted keywords and the complaint.

    +20 per complaint word longer than 3 characters found in the description,
    +15 per keyword found in the description, +25 per region keyword that
    points at the entry's region, +10 for common codes.  Clamped to [0, 100].
    """
    description = entry.description.lower()
    score = 0.0

    for word in (chief_complaint or "").lower().split():
        if len(word) > 3 and word in description:
            score += 20

    for keyword in keywords:
        if keyword in description:
            score += 15
        if REGION_INDICATORS.get(keyword) == entry.region:
            score += 25

    if entry.common:
        score += 10

    return clamp(score, 0, 100)


def _reasoning(entry: DiagnosisCatalogEntry, keywords: Sequence[str]) -> str:
    description = entry.description.lower()
    matched = [k for k in keywords if k in description or k == entry.region]
    return f"Matched based on: {', '.join(matched) or 'general clinical presentation'}"


def rank_diagnoses(
    kb: KnowledgeBase,
    *,
    chief_complaint: str | None,
    text: str | None,
    limit: int = DEFAULT_MAX_SUGGESTIONS,
) -> list[ScoredDiagnosis]:
    """Rule-based suggestions scoring above the cutoff, best first.

    *text* is the combined encounter text keywords are extracted from.
    Ties keep catalog order.
    """
    keywords = extract_keywords(text)
    candidates = []
    for entry in kb.diagnosis_codes:
        confidence = score_diagnosis(entry, keywords, chief_complaint)
        if confidence <= MIN_SUGGESTION_SCORE:
            continue
        candidates.append(
            ScoredDiagnosis(
                code=entry.code,
                description=entry.description,
                confidence=confidence,
                reasoning=_reasoning(entry, keywords),
                supporting_findings=list(keywords),
                source=SuggestionSource.RULE_BASED,
            )
        )
    candidates.sort(key=lambda s: s.confidence, reverse=True)
    return candidates[:limit]


def merge_suggestions(
    rule_based: Iterable[ScoredDiagnosis],
    enriched: Iterable[EnrichmentSuggestion],
    limit: int = DEFAULT_MAX_SUGGESTIONS,
) -> list[ScoredDiagnosis]:
    """Merge enrichment suggestions into rule output, keyed by code.

    On a shared code the higher confidence is kept and the enrichment
    reasoning wins.  The result is sorted by confidence (stable) and cut
    to *limit*.
    """
    merged: dict[str, ScoredDiagnosis] = {}
    for item in enriched:
        if not item.code or item.code in merged:
            continue
        merged[item.code] = ScoredDiagnosis(
            code=item.code,
            description=item.description or item.code,
            confidence=clamp(item.confidence, 0, 100),
            reasoning=item.reasoning,
            supporting_findings=list(item.supporting_findings),
            source=SuggestionSource.ENRICHMENT,
        )
    for item in rule_based:
        existing = merged.get(item.code)
        if existing is None:
            merged[item.code] = item
        elif item.confidence > existing.confidence:
            merged[item.code] = existing.model_copy(update={"confidence": item.confidence})

    ranked = sorted(merged.values(), key=lambda s: s.confidence, reverse=True)
    return ranked[:limit]


# ---------------------------------------------------------------------------
# Techniques and treatment plans
# ---------------------------------------------------------------------------

def score_technique(
    technique: Technique,
    kb: KnowledgeBase,
    *,
    age: int | None = None,
    preferences: Sequence[str] = (),
) -> float:
    """Suitability score: base 50, evidence and preference bonuses, age tweaks, cap 100."""
    score = 50.0
    if technique.evidence == "HIGH":
        score += 20
    elif technique.evidence == "MODERATE":
        score += 10

    for key in _SCORED_PREFERENCES:
        preference = kb.preferences.get(key)
        if key in preferences and preference is not None and technique.name in preference.techniques:
            score += 15

    if age is not None:
        if age > 65 and technique.category == "instrument":
            score += 10
        if age < 18 and technique.category == "exercise":
            score += 10

    return min(score, 100.0)


def rank_techniques(
    kb: KnowledgeBase,
    *,
    age: int | None = None,
    preferences: Sequence[str] = (),
) -> list[ScoredTechnique]:
    scored = [
        ScoredTechnique(
            name=t.name,
            category=t.category,
            evidence=t.evidence,
            score=score_technique(t, kb, age=age, preferences=preferences),
        )
        for t in kb.techniques
    ]
    scored.sort(key=lambda t: t.score, reverse=True)
    return scored


def build_treatment_plan(
    kb: KnowledgeBase,
    *,
    diagnosis_code: str,
    diagnosis_description: str | None,
    acuity: Acuity,
    red_flags: list[RedFlagHit],
    age: int | None = None,
    preferences: Sequence[str] = (),
    enrichment: TreatmentEnrichment | None = None,
) -> TreatmentRecommendation:
    """Build a treatment plan from the matching protocol, or from technique
    scores when no protocol covers the code.  Enrichment may reword the plan
    and add techniques, alternatives and citations; it never drops the
    protocol's contraindications or the red flags.
    """
    frequency = kb.frequency[acuity]
    protocol = kb.find_protocol(diagnosis_code)
    label = acuity.value.capitalize()

    if protocol is not None:
        recommendation = (
            f"Based on {protocol.condition}, recommend "
            f"{', '.join(protocol.primary_techniques[:3])} with "
            f"{', '.join(protocol.adjunct_therapies[:2])}. "
            f"{label} presentation suggests {frequency.initial} initially."
        )
        primary = list(protocol.primary_techniques)
        adjunct = list(protocol.adjunct_therapies)
        exercises = list(protocol.exercises)
        expected_outcome = protocol.expected_outcome
        timeline = protocol.typical_duration
        prognosis = protocol.prognosis
        alternatives = [
            {"approach": alt, "reason": "Evidence-based alternative approach"}
            for alt in protocol.alternatives
        ]
        evidence_level = protocol.evidence
        evidence_summary = f"Treatment protocol based on clinical guidelines for {protocol.condition}"
        citations = list(_PROTOCOL_CITATIONS)
    else:
        ranked = rank_techniques(kb, age=age, preferences=preferences)
        top = ranked[:3]
        recommendation = (
            f"For {diagnosis_description or diagnosis_code}, recommend "
            f"{', '.join(t.name for t in top)}. "
            f"{label} presentation suggests {frequency.initial} initially."
        )
        primary = [t.name for t in top]
        adjunct = [t.name for t in ranked if t.category in ("therapy", "soft_tissue")][:2]
        exercises = [t.name for t in ranked if t.category == "exercise"][:2]
        expected_outcome = "Symptom improvement expected within 2-4 weeks with consistent care"
        timeline = frequency.total_visits
        prognosis = "Good with appropriate conservative care"
        alternatives = []
        evidence_level = "MODERATE"
        evidence_summary = "Generic recommendation based on clinical presentation"
        citations = []

    if enrichment is not None:
        recommendation = enrichment.recommendation or recommendation
        if enrichment.techniques:
            primary = list(dict.fromkeys([*enrichment.techniques, *primary]))[:5]
        expected_outcome = enrichment.expected_outcome or expected_outcome
        timeline = enrichment.duration or timeline
        if enrichment.alternatives:
            alternatives = enrichment.alternatives
        evidence_summary = enrichment.evidence or evidence_summary
        if enrichment.citations:
            citations = list(dict.fromkeys([*enrichment.citations, *citations]))

    return TreatmentRecommendation(
        condition_code=diagnosis_code,
        condition_description=diagnosis_description or diagnosis_code,
        recommendation=recommendation,
        acuity=acuity,
        primary_techniques=primary,
        adjunct_therapies=adjunct,
        exercises=exercises,
        frequency={
            "recommended": frequency.initial,
            "initial": frequency.initial,
            "transition": frequency.transition,
            "maintenance": frequency.maintenance,
            "total_visits": frequency.total_visits,
        },
        expected_outcome=expected_outcome,
        expected_timeline=timeline,
        prognosis=prognosis,
        alternatives=alternatives,
        evidence_level=evidence_level,
        evidence_summary=evidence_summary,
        citations=citations,
        red_flags=red_flags,
        contraindications=list(protocol.contraindications) if protocol else [],
        protocol_name=protocol.condition if protocol else None,
        enrichment_used=enrichment is not None,
    )


# ---------------------------------------------------------------------------
# Guidelines
# ---------------------------------------------------------------------------

def _evidence_rank(level: str) -> int:
    try:
        return EVIDENCE_ORDER.index(level)
    except ValueError:
        return len(EVIDENCE_ORDER)


def find_guidelines(
    kb: KnowledgeBase,
    codes: Sequence[str],
    *,
    region: str | None = None,
) -> list[GuidelineMatch]:
    """Guidelines matching any of *codes* (or *region*), strongest evidence first.

    Each guideline appears once, attributed to the first code that matched it.
    """
    matches: list[GuidelineMatch] = []
    seen: set[str] = set()

    def _add(guideline, matched: str) -> None:
        seen.add(guideline.code)
        matches.append(
            GuidelineMatch(
                guideline_code=guideline.code,
                name=guideline.name,
                source=guideline.source,
                condition=guideline.condition,
                matched_diagnosis=matched,
                evidence_level=guideline.evidence_level,
                key_recommendations=[
                    {"level": r.level, "text": r.text, "grade": r.grade}
                    for r in guideline.recommendations[:3]
                ],
                key_points=list(guideline.key_points[:3]),
                red_flags_to_check=list(guideline.red_flags[:5]),
                suggested_actions=[
                    f"Review {guideline.name} for evidence-based treatment approach",
                    *guideline.key_points[:2],
                ],
            )
        )

    for code in codes:
        for guideline in kb.guidelines:
            if guideline.code not in seen and guideline.matches_code(code):
                _add(guideline, code)

    if region:
        for guideline in kb.guidelines_for_region(region):
            if guideline.code not in seen:
                _add(guideline, region)

    matches.sort(key=lambda m: _evidence_rank(m.evidence_level))
    return matches
