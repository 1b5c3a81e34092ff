"""Outcome predictor unit tests — baselines, patient adjustment, blend,
chronicity, response bands and the actual-outcome helpers.
"""

import pytest

from cds_knowledge import outcome as oc
from cds_knowledge.errors import ValidationFailure
from cds_knowledge.models.enums import SymptomDuration, TreatmentResponse
from cds_knowledge.models.results import BaselineOutcome


def _baseline(improvement=75, confidence=65):
    return BaselineOutcome(
        improvement=improvement, timeline="4-8 weeks", description="desc", confidence=confidence,
    )


class TestBaseline:

    def test_acute_shift(self, kb):
        b = oc.baseline_outcome(kb, "M54.5", SymptomDuration.ACUTE)
        assert b.improvement == 90
        assert b.timeline == "2-6 weeks"
        assert b.confidence == 80

    def test_acute_capped_at_95(self, kb):
        b = oc.baseline_outcome(kb, "M99.01", SymptomDuration.ACUTE)
        assert b.improvement == 95
        assert b.timeline == "1-2 weeks"

    def test_chronic_shift(self, kb):
        b = oc.baseline_outcome(kb, "M51.16", SymptomDuration.CHRONIC)
        assert b.improvement == 35
        assert b.timeline == "12-24 weeks"
        assert b.confidence == 60

    def test_subacute_and_unknown(self, kb):
        assert oc.baseline_outcome(kb, "M54.2", SymptomDuration.SUBACUTE).confidence == 75
        unknown = oc.baseline_outcome(kb, "M54.2", SymptomDuration.UNKNOWN)
        assert unknown.improvement == 70
        assert unknown.confidence == 65


class TestAdjustment:

    def test_no_risk_factors_bonus(self):
        improvement, confidence, description, factors = oc.adjust_for_patient(
            _baseline(90, 80),
            age=45,
            risk_factors=[],
            comorbidities=[],
            duration=SymptomDuration.ACUTE,
            similar_average=None,
        )
        assert improvement == 95
        assert confidence == 80
        assert description == "Good prognosis expected. desc"
        assert "No identified risk factors" in factors.favorable
        assert "Acute presentation with good prognosis" in factors.favorable
        assert factors.neutral == ["Age within typical range"]

    def test_risk_factor_weights(self):
        improvement, confidence, _, factors = oc.adjust_for_patient(
            _baseline(75, 65),
            age=70,
            risk_factors=["Chronic symptom duration", "Smoking history", "Advanced age (>65)"],
            comorbidities=["a", "b", "c"],
            duration=SymptomDuration.CHRONIC,
            similar_average=None,
        )
        # -10 age, -10 high, -5 moderate, -10 comorbidities
        assert improvement == 40
        assert confidence == 60
        assert "Multiple comorbidities" in factors.unfavorable
        assert "Advanced age (>65)" not in factors.unfavorable

    def test_similar_case_blend(self):
        improvement, confidence, _, _ = oc.adjust_for_patient(
            _baseline(75, 65),
            age=None,
            risk_factors=["Sedentary lifestyle"],
            comorbidities=[],
            duration=SymptomDuration.UNKNOWN,
            similar_average=50,
        )
        assert improvement == pytest.approx(70 * 0.7 + 50 * 0.3)
        assert confidence == 75

    def test_clamps(self):
        improvement, confidence, description, _ = oc.adjust_for_patient(
            _baseline(30, 40),
            age=80,
            risk_factors=[
                "Chronic symptom duration",
                "Previous treatment failure",
                "Psychological distress",
                "Workers compensation case",
            ],
            comorbidities=["a", "b", "c"],
            duration=SymptomDuration.CHRONIC,
            similar_average=None,
        )
        assert improvement == 10
        assert confidence == 40
        assert description.startswith("Conservative improvement expected")


class TestSimilarCases:

    def test_distribution(self):
        stats = oc.similar_case_stats([80, 75, 60, 30, 10])
        assert stats.count == 5
        assert stats.average_improvement == pytest.approx(51)
        assert stats.distribution == {"excellent": 2, "good": 1, "moderate": 1, "poor": 1}

    def test_empty(self):
        stats = oc.similar_case_stats([])
        assert stats.count == 0
        assert stats.average_improvement is None
        assert sum(stats.distribution.values()) == 0


class TestChronicity:

    def test_acute_low_risk(self):
        assert oc.chronicity_risk("M54.5", SymptomDuration.ACUTE, 45, []) == 10

    def test_factors_add_up(self):
        risk = oc.chronicity_risk(
            "M51.16",
            SymptomDuration.SUBACUTE,
            60,
            ["Fear avoidance behavior", "Smoking history"],
        )
        # 15 + 10 subacute + 10 age + 15 factor + 15 disc
        assert risk == 65

    def test_clamped(self):
        risk = oc.chronicity_risk(
            "M51.16",
            SymptomDuration.CHRONIC,
            70,
            list(oc.CHRONICITY_FACTORS),
        )
        assert risk == 95

    @pytest.mark.parametrize(
        "improvement, expected",
        [
            (75, TreatmentResponse.EXCELLENT),
            (74.9, TreatmentResponse.GOOD),
            (60, TreatmentResponse.GOOD),
            (40, TreatmentResponse.MODERATE),
            (39, TreatmentResponse.POOR),
        ],
    )
    def test_response_bands(self, improvement, expected):
        assert oc.treatment_response(improvement) == expected


class TestAssessment:

    def test_acute_low_back_pain(self, kb):
        result = oc.assess_outcome(
            kb,
            condition_code="M54.5",
            condition_description="Low back pain",
            duration=SymptomDuration.ACUTE,
            age=45,
            risk_factors=[],
            comorbidities=[],
        )
        assert 90 <= result.improvement <= 95
        assert 80 <= result.confidence <= 85
        assert result.treatment_response in (TreatmentResponse.EXCELLENT, TreatmentResponse.GOOD)
        assert result.similar_cases.count == 0
        assert result.patient_explanation.startswith("For your Low back pain, ")
        assert result.expectation.improvement_target == "95% improvement expected"
        assert result.expectation.chronicity_risk == "Low"

    def test_similar_cases_ignored_when_empty(self, kb):
        with_empty = oc.assess_outcome(
            kb,
            condition_code="M54.5",
            condition_description=None,
            duration=SymptomDuration.UNKNOWN,
            age=None,
            risk_factors=[],
            comorbidities=[],
            similar=oc.similar_case_stats([]),
        )
        assert with_empty.improvement == 80
        assert with_empty.patient_explanation.startswith("For your M54.5, ")


class TestActualOutcome:

    @pytest.mark.parametrize("value", [-1, 100.5])
    def test_out_of_range(self, value):
        with pytest.raises(ValidationFailure):
            oc.validate_actual_improvement(value)

    def test_bounds_accepted(self):
        assert oc.validate_actual_improvement(0) == 0.0
        assert oc.validate_actual_improvement(100) == 100.0

    def test_accuracy_tolerance(self):
        assert oc.is_accurate(65, 80)
        assert not oc.is_accurate(64, 80)
