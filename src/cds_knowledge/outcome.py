"""Outcome predictor — baseline, patient adjustment, empirical blend,
chronicity risk and the derived narrative.

All functions are pure.  The orchestrator supplies the similar-case
improvements it read from the store; :func:`assess_outcome` turns them
plus the patient picture into an :class:`OutcomeAssessment`.
"""

from __future__ import annotations

import re
from typing import Iterable, Sequence

from cds_knowledge.constants import ACCURACY_TOLERANCE, RULE_BLEND_WEIGHT
from cds_knowledge.errors import ValidationFailure
from cds_knowledge.knowledge import KnowledgeBase
from cds_knowledge.models.enums import SymptomDuration, TreatmentResponse
from cds_knowledge.models.results import (
    BaselineOutcome,
    ExpectationSetting,
    OutcomeAssessment,
    PrognosticFactors,
    SimilarCaseStats,
)

# Risk-factor labels produced by extractor.identify_risk_factors.
HIGH_RISK_FACTORS = (
    "Chronic symptom duration",
    "Previous treatment failure",
    "Psychological distress",
    "Workers compensation case",
    "Fear avoidance behavior",
)
MODERATE_RISK_FACTORS = (
    "Sedentary lifestyle",
    "Smoking history",
    "Overweight/obesity",
    "Heavy physical work",
    "Neurological involvement",
)
CHRONICITY_FACTORS = (
    "Psychological distress",
    "Fear avoidance behavior",
    "Workers compensation case",
    "Previous treatment failure",
    "Chronic symptom duration",
)

RESPONSE_DESCRIPTIONS: dict[TreatmentResponse, str] = {
    TreatmentResponse.EXCELLENT: "Patient expected to respond very well to treatment with significant improvement",
    TreatmentResponse.GOOD: "Patient expected to respond well with notable improvement in symptoms and function",
    TreatmentResponse.MODERATE: "Patient expected to show moderate improvement; consistent care important",
    TreatmentResponse.POOR: "Response may be limited; consider multimodal approach and managing expectations",
}

_PATIENT_RESPONSE = {
    TreatmentResponse.EXCELLENT: "Based on your condition and health profile, we expect you to respond very well to treatment.",
    TreatmentResponse.GOOD: "Based on your condition and health profile, we expect you to respond well to treatment.",
    TreatmentResponse.MODERATE: "Based on your condition and health profile, we expect gradual improvement with consistent treatment.",
    TreatmentResponse.POOR: "Your condition has some factors that may require a more comprehensive treatment approach.",
}

_RANGE = re.compile(r"(\d+)-(\d+)")
_WEEK_RANGE = re.compile(r"(\d+)-(\d+) weeks")


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _has_label(factor: str, labels: Iterable[str]) -> bool:
    return any(label in factor for label in labels)


# ---------------------------------------------------------------------------
# Baseline
# ---------------------------------------------------------------------------

def baseline_outcome(kb: KnowledgeBase, code: str, duration: SymptomDuration) -> BaselineOutcome:
    """Baseline by code prefix, shifted by symptom duration."""
    baseline = kb.get_baseline(code)
    improvement = baseline.improvement
    timeline = baseline.timeline

    if duration == SymptomDuration.ACUTE:
        improvement = min(improvement + 15, 95)
        timeline = _RANGE.sub(
            lambda m: f"{max(1, int(m.group(1)) - 2)}-{int(m.group(2)) - 2}", timeline, count=1
        )
        confidence = 80
    elif duration == SymptomDuration.SUBACUTE:
        confidence = 75
    elif duration == SymptomDuration.CHRONIC:
        improvement = max(improvement - 25, 30)
        timeline = _WEEK_RANGE.sub(
            lambda m: f"{int(m.group(1)) * 2}-{int(m.group(2)) * 2} weeks", timeline, count=1
        )
        confidence = 60
    else:
        confidence = 65

    return BaselineOutcome(
        improvement=improvement,
        timeline=timeline,
        description=baseline.description,
        confidence=confidence,
    )


# ---------------------------------------------------------------------------
# Patient adjustment and empirical blend
# ---------------------------------------------------------------------------

def adjust_for_patient(
    baseline: BaselineOutcome,
    *,
    age: int | None,
    risk_factors: Sequence[str],
    comorbidities: Sequence[str],
    duration: SymptomDuration,
    similar_average: float | None,
) -> tuple[float, float, str, PrognosticFactors]:
    """Return (improvement, confidence, description, factors).

    Improvement is clamped to [10, 95] and confidence to [40, 95].
    """
    improvement = baseline.improvement
    confidence = baseline.confidence
    factors = PrognosticFactors()

    if age is not None:
        if age < 40:
            improvement += 5
            factors.favorable.append("Younger age associated with better outcomes")
        elif age > 65:
            improvement -= 10
            factors.unfavorable.append("Advanced age may slow recovery")
        else:
            factors.neutral.append("Age within typical range")

    for factor in risk_factors:
        if _has_label(factor, HIGH_RISK_FACTORS):
            improvement -= 10
            confidence -= 5
            factors.unfavorable.append(factor)
        elif _has_label(factor, MODERATE_RISK_FACTORS):
            improvement -= 5
            factors.unfavorable.append(factor)

    if len(comorbidities) > 2:
        improvement -= 10
        factors.unfavorable.append("Multiple comorbidities")
    elif comorbidities:
        improvement -= 5
        factors.neutral.append("Some comorbidities present")
    else:
        factors.favorable.append("No significant comorbidities")

    if similar_average is not None:
        improvement = improvement * RULE_BLEND_WEIGHT + similar_average * (1 - RULE_BLEND_WEIGHT)
        confidence += 10
        factors.favorable.append(
            f"Based on {similar_average:.0f}% avg improvement in similar cases"
        )

    if not risk_factors:
        factors.favorable.append("No identified risk factors")
        improvement += 5

    if duration == SymptomDuration.ACUTE:
        factors.favorable.append("Acute presentation with good prognosis")

    improvement = _clamp(improvement, 10, 95)
    confidence = _clamp(confidence, 40, 95)

    if improvement >= 70:
        description = f"Good prognosis expected. {baseline.description}"
    elif improvement >= 50:
        description = "Moderate improvement expected with consistent care. Some factors may affect recovery."
    else:
        description = "Conservative improvement expected. Multiple factors may extend recovery time."

    return improvement, confidence, description, factors


def similar_case_stats(improvements: Iterable[float]) -> SimilarCaseStats:
    values = [float(v) for v in improvements]
    distribution = {
        "excellent": sum(1 for v in values if v >= 75),
        "good": sum(1 for v in values if 50 <= v < 75),
        "moderate": sum(1 for v in values if 25 <= v < 50),
        "poor": sum(1 for v in values if v < 25),
    }
    if not values:
        return SimilarCaseStats(distribution=distribution)
    return SimilarCaseStats(
        count=len(values),
        average_improvement=sum(values) / len(values),
        distribution=distribution,
    )


# ---------------------------------------------------------------------------
# Chronicity and response
# ---------------------------------------------------------------------------

def chronicity_risk(
    code: str,
    duration: SymptomDuration,
    age: int | None,
    risk_factors: Sequence[str],
) -> float:
    """Risk (percent) that the condition becomes chronic, clamped to [5, 95]."""
    risk = 15.0
    if duration == SymptomDuration.ACUTE:
        risk -= 5
    elif duration == SymptomDuration.SUBACUTE:
        risk += 10
    elif duration == SymptomDuration.CHRONIC:
        risk += 30

    if age is not None and age > 55:
        risk += 10

    for factor in risk_factors:
        if _has_label(factor, CHRONICITY_FACTORS):
            risk += 15

    # Disc conditions, then spondylosis
    if code.startswith("M51"):
        risk += 15
    if code.startswith("M47"):
        risk += 10

    return _clamp(risk, 5, 95)


def treatment_response(improvement: float) -> TreatmentResponse:
    if improvement >= 75:
        return TreatmentResponse.EXCELLENT
    if improvement >= 60:
        return TreatmentResponse.GOOD
    if improvement >= 40:
        return TreatmentResponse.MODERATE
    return TreatmentResponse.POOR


# ---------------------------------------------------------------------------
# Narrative
# ---------------------------------------------------------------------------

def prognostic_summary(factors: PrognosticFactors) -> str:
    favorable, unfavorable = len(factors.favorable), len(factors.unfavorable)
    if favorable > unfavorable:
        return "More favorable than unfavorable prognostic factors identified"
    if unfavorable > favorable:
        return "Some unfavorable prognostic factors present that may affect recovery"
    return "Balanced prognostic picture"


def patient_explanation(
    condition: str,
    timeline: str,
    response: TreatmentResponse,
    factors: PrognosticFactors,
) -> str:
    parts = [
        f"For your {condition}, {_PATIENT_RESPONSE[response]}",
        f"We typically see meaningful improvement within {timeline}.",
    ]
    if factors.favorable:
        parts.append(f"In your favor: {'; '.join(factors.favorable[:2])}.")
    if factors.unfavorable:
        parts.append(f"We'll pay special attention to: {'; '.join(factors.unfavorable[:2])}.")
    parts.append(
        "Your active participation in treatment and following home care "
        "recommendations will optimize your results."
    )
    return " ".join(parts)


def expectation_setting(
    improvement: float,
    timeline: str,
    response: TreatmentResponse,
    risk: float,
) -> ExpectationSetting:
    points = [f"Expected treatment timeline: {timeline}"]
    if improvement >= 70:
        points.append("Significant improvement in pain and function expected")
    elif improvement >= 50:
        points.append("Moderate improvement expected with consistent care")
    else:
        points.append("Gradual improvement expected; patience and consistency important")
    points.append("Initial phase focuses on pain relief and mobility")
    points.append("Subsequent phases focus on strengthening and prevention")
    if risk > 40:
        points.append("Early and consistent treatment important to prevent chronic pain")
    points.append("Home exercises and lifestyle modifications enhance outcomes")

    return ExpectationSetting(
        key_points=points,
        improvement_target=f"{improvement:.0f}% improvement expected",
        timeline=timeline,
        response_level=response,
        chronicity_risk="Moderate" if risk > 30 else "Low",
    )


# ---------------------------------------------------------------------------
# Full assessment
# ---------------------------------------------------------------------------

def assess_outcome(
    kb: KnowledgeBase,
    *,
    condition_code: str,
    condition_description: str | None,
    duration: SymptomDuration,
    age: int | None,
    risk_factors: Sequence[str],
    comorbidities: Sequence[str],
    similar: SimilarCaseStats | None = None,
) -> OutcomeAssessment:
    similar = similar or SimilarCaseStats()
    baseline = baseline_outcome(kb, condition_code, duration)
    improvement, confidence, description, factors = adjust_for_patient(
        baseline,
        age=age,
        risk_factors=risk_factors,
        comorbidities=comorbidities,
        duration=duration,
        similar_average=similar.average_improvement if similar.count else None,
    )
    risk = chronicity_risk(condition_code, duration, age, risk_factors)
    response = treatment_response(improvement)

    return OutcomeAssessment(
        improvement=improvement,
        confidence=confidence,
        timeline=baseline.timeline,
        description=description,
        chronicity_risk=risk,
        treatment_response=response,
        response_description=RESPONSE_DESCRIPTIONS[response],
        factors=factors,
        prognostic_summary=prognostic_summary(factors),
        similar_cases=similar,
        patient_explanation=patient_explanation(
            condition_description or condition_code, baseline.timeline, response, factors
        ),
        expectation=expectation_setting(improvement, baseline.timeline, response, risk),
    )


# ---------------------------------------------------------------------------
# Actual outcome
# ---------------------------------------------------------------------------

def validate_actual_improvement(value: float) -> float:
    if value < 0 or value > 100:
        raise ValidationFailure("Actual improvement must be between 0 and 100")
    return float(value)


def is_accurate(actual: float, predicted: float) -> bool:
    return abs(actual - predicted) <= ACCURACY_TOLERANCE
