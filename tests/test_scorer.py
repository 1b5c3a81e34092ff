"""Scorer unit tests — diagnosis scoring and ranking, enrichment merge,
technique scoring, treatment plans and guideline lookup.
"""

import pytest

from cds_knowledge.models.enrichment import EnrichmentSuggestion, TreatmentEnrichment
from cds_knowledge.models.enums import Acuity, SuggestionSource
from cds_knowledge.models.results import ScoredDiagnosis
from cds_knowledge.scorer import (
    build_treatment_plan,
    clamp_limit,
    find_guidelines,
    merge_suggestions,
    rank_diagnoses,
    score_diagnosis,
    score_technique,
)


def _entry(kb, code):
    return next(e for e in kb.diagnosis_codes if e.code == code)


def _scored(code, confidence, reasoning="rule"):
    return ScoredDiagnosis(
        code=code, description=code, confidence=confidence, reasoning=reasoning,
    )


class TestLimits:

    @pytest.mark.parametrize("given, expected", [(None, 10), (0, 1), (-3, 1), (5, 5), (50, 20)])
    def test_clamp_limit(self, given, expected):
        assert clamp_limit(given) == expected


class TestDiagnosisScoring:

    def test_low_back_pain_scores_full(self, kb):
        keywords = ["back", "lower back", "pain"]
        assert score_diagnosis(_entry(kb, "M54.5"), keywords, "Lower back pain") == 100

    def test_common_prior_only(self, kb):
        keywords = ["back", "lower back", "pain"]
        assert score_diagnosis(_entry(kb, "M54.2"), keywords, "Lower back pain") == 10

    def test_region_bonus(self, kb):
        # region bonus plus the common prior
        assert score_diagnosis(_entry(kb, "M99.03"), ["lower back"], None) == 35

    def test_rank_applies_cutoff_and_limit(self, kb):
        ranked = rank_diagnoses(
            kb, chief_complaint="Lower back pain", text="Lower back pain", limit=3
        )
        assert [s.code for s in ranked] == ["M54.5", "M54.50", "M54.51"]
        assert all(s.source == SuggestionSource.RULE_BASED for s in ranked)
        assert ranked[0].reasoning == "Matched based on: back, pain"
        assert ranked[0].supporting_findings == ["back", "lower back", "pain"]

    def test_rank_excludes_low_scores(self, kb):
        ranked = rank_diagnoses(kb, chief_complaint="Lower back pain", text="Lower back pain", limit=20)
        assert "M54.2" not in [s.code for s in ranked]
        assert all(s.confidence > 20 for s in ranked)

    def test_rank_empty_text(self, kb):
        assert rank_diagnoses(kb, chief_complaint=None, text=None) == []


class TestMerge:

    def test_shared_code_keeps_higher_confidence(self):
        merged = merge_suggestions(
            [_scored("M54.5", 90)],
            [EnrichmentSuggestion(code="M54.5", confidence=60, reasoning="service")],
        )
        assert len(merged) == 1
        assert merged[0].confidence == 90
        assert merged[0].reasoning == "service"
        assert merged[0].source == SuggestionSource.ENRICHMENT

    def test_enrichment_higher_wins(self):
        merged = merge_suggestions(
            [_scored("M54.5", 40)],
            [EnrichmentSuggestion(code="M54.5", description="Low back pain", confidence=75)],
        )
        assert merged[0].confidence == 75
        assert merged[0].description == "Low back pain"

    def test_sorted_and_limited(self):
        merged = merge_suggestions(
            [_scored("A", 50), _scored("B", 70)],
            [EnrichmentSuggestion(code="C", confidence=60), EnrichmentSuggestion(code="", confidence=99)],
            limit=2,
        )
        assert [s.code for s in merged] == ["B", "C"]

    def test_missing_description_uses_code(self):
        merged = merge_suggestions([], [EnrichmentSuggestion(code="M62.830", confidence=50)])
        assert merged[0].description == "M62.830"

    def test_enrichment_confidence_clamped(self):
        assert EnrichmentSuggestion(code="X", confidence=140).confidence == 100


class TestTechniques:

    def test_evidence_bonus(self, kb):
        assert score_technique(kb.get_technique("Diversified Technique"), kb) == 70
        assert score_technique(kb.get_technique("Gonstead Technique"), kb) == 60
        assert score_technique(kb.get_technique("Toggle Recoil"), kb) == 50

    def test_preference_and_age_bonus(self, kb):
        activator = kb.get_technique("Activator Method")
        assert score_technique(activator, kb, preferences=["lowForce"]) == 85
        assert score_technique(activator, kb, age=70, preferences=["lowForce"]) == 95
        assert score_technique(activator, kb, age=70, preferences=["lowForce", "noManual"]) == 100

    def test_quick_visits_is_informational(self, kb):
        activator = kb.get_technique("Activator Method")
        assert score_technique(activator, kb, preferences=["quickVisits"]) == 70

    def test_pediatric_exercise_bonus(self, kb):
        assert score_technique(kb.get_technique("McKenzie Method"), kb, age=10) == 80


class TestTreatmentPlan:

    def test_protocol_plan(self, kb):
        plan = build_treatment_plan(
            kb,
            diagnosis_code="M54.5",
            diagnosis_description="Low back pain",
            acuity=Acuity.ACUTE,
            red_flags=[],
        )
        assert plan.protocol_name == "Acute Low Back Pain"
        assert plan.primary_techniques == [
            "Diversified Technique", "Flexion-Distraction", "Activator Method",
        ]
        assert plan.frequency["initial"] == "3x/week for 2-4 weeks"
        assert plan.recommendation.endswith("Acute presentation suggests 3x/week for 2-4 weeks initially.")
        assert plan.evidence_level == "HIGH"
        assert plan.alternatives[0] == {
            "approach": "Physical therapy referral",
            "reason": "Evidence-based alternative approach",
        }
        assert plan.enrichment_used is False

    def test_generic_plan_without_protocol(self, kb):
        plan = build_treatment_plan(
            kb,
            diagnosis_code="Z99.9",
            diagnosis_description=None,
            acuity=Acuity.SUBACUTE,
            red_flags=[],
        )
        assert plan.protocol_name is None
        assert plan.primary_techniques == [
            "Diversified Technique", "Activator Method", "Flexion-Distraction",
        ]
        assert plan.adjunct_therapies == ["ART (Active Release Technique)", "Trigger Point Therapy"]
        assert plan.exercises == ["McKenzie Method", "Stabilization Exercises"]
        assert plan.expected_timeline == "10-18 visits over 8-12 weeks"
        assert plan.evidence_level == "MODERATE"
        assert plan.contraindications == []
        assert plan.condition_description == "Z99.9"

    def test_enrichment_refines_but_keeps_safety(self, kb):
        plan = build_treatment_plan(
            kb,
            diagnosis_code="M54.5",
            diagnosis_description="Low back pain",
            acuity=Acuity.ACUTE,
            red_flags=[],
            enrichment=TreatmentEnrichment(
                recommendation="Refined plan",
                techniques=["Graston Technique", "Diversified Technique"],
                citations=["Service citation"],
            ),
        )
        assert plan.recommendation == "Refined plan"
        assert plan.primary_techniques[:2] == ["Graston Technique", "Diversified Technique"]
        assert plan.primary_techniques.count("Diversified Technique") == 1
        assert plan.citations[0] == "Service citation"
        assert "Cauda equina syndrome" in plan.contraindications
        assert plan.enrichment_used is True


class TestGuidelines:

    def test_strongest_evidence_first(self, kb):
        matches = find_guidelines(kb, ["M54.5"])
        assert [m.guideline_code for m in matches][:2] == ["CCGPP-LBP-2016", "AHRQ-LBP-2017"]
        assert {m.evidence_level for m in matches[:2]} == {"HIGH"}

    def test_each_guideline_once(self, kb):
        matches = find_guidelines(kb, ["M54.5", "M54.50"])
        codes = [m.guideline_code for m in matches]
        assert len(codes) == len(set(codes))
        assert all(m.matched_diagnosis == "M54.5" for m in matches)

    def test_region_lookup(self, kb):
        matches = find_guidelines(kb, [], region="thoracic")
        assert [m.guideline_code for m in matches] == ["CCGPP-THORACIC-2017"]
        assert matches[0].matched_diagnosis == "thoracic"
        assert len(matches[0].key_recommendations) <= 3

    def test_no_match(self, kb):
        assert find_guidelines(kb, ["Z99.9"]) == []
