"""PromptManager tests — verify enrichment prompt rendering for every task.

Tests construct the request context models directly (no HTTP, no DB) and
check that the rendered system and user prompts carry the role line, the
patient details and the JSON response instructions.
"""

import pytest

from cds_knowledge.models.enrichment import (
    ContraindicationContext,
    DiagnosisContext,
    OutcomeContext,
    TreatmentContext,
)
from cds_knowledge.prompt import PromptManager


# =====================================================================
# Fixtures
# =====================================================================


@pytest.fixture
def pm():
    """Fresh PromptManager for each test."""
    return PromptManager()


# =====================================================================
# System prompts
# =====================================================================


class TestSystemPrompt:

    def test_tasks(self, pm):
        assert pm.tasks == ["diagnosis", "contraindication", "treatment", "outcome"]

    @pytest.mark.parametrize(
        "task, role_fragment",
        [
            ("diagnosis", "ICD-10 diagnosis codes"),
            ("contraindication", "clinical safety advisor"),
            ("treatment", "evidence-based treatment recommendations"),
            ("outcome", "outcome prediction"),
        ],
    )
    def test_role_and_json_instruction(self, pm, task, role_fragment):
        prompt = pm.render_system(task)
        assert role_fragment in prompt
        assert "IMPORTANT: Respond ONLY with valid JSON, no markdown code blocks." in prompt

    def test_unknown_task(self, pm):
        with pytest.raises(KeyError):
            pm.render_system("billing")
        with pytest.raises(KeyError):
            pm.render_task("billing", DiagnosisContext())


# =====================================================================
# Task prompts
# =====================================================================


class TestDiagnosisPrompt:

    def test_full_context(self, pm):
        prompt = pm.render_task(
            "diagnosis",
            DiagnosisContext(
                chief_complaint="Lower back pain",
                subjective="Pain after lifting boxes",
                objective="Reduced lumbar flexion",
                patient_age=45,
                patient_gender="female",
                existing_codes=["M54.5", "M99.03"],
            ),
        )
        assert "Chief Complaint: Lower back pain" in prompt
        assert "Pain after lifting boxes" in prompt
        assert "Reduced lumbar flexion" in prompt
        assert "Patient Age: 45" in prompt
        assert "Gender: female" in prompt
        assert "Previously Used Codes: M54.5, M99.03" in prompt
        assert '"supportingFindings"' in prompt

    def test_sparse_context(self, pm):
        prompt = pm.render_task("diagnosis", DiagnosisContext())
        assert "Chief Complaint: Not specified" in prompt
        assert "Patient Age:" not in prompt
        assert "Previously Used Codes:" not in prompt


class TestContraindicationPrompt:

    def test_profile_and_already_found(self, pm):
        prompt = pm.render_task(
            "contraindication",
            ContraindicationContext(
                procedure="Diversified Technique",
                patient_age=70,
                medications=["Warfarin"],
                clinical_notes="bruises easily",
                already_found=["Anticoagulation therapy"],
            ),
        )
        assert "Proposed Procedure: Diversified Technique" in prompt
        assert "- Age: 70" in prompt
        assert "- Conditions: None listed" in prompt
        assert "- Medications: Warfarin" in prompt
        assert "bruises easily" in prompt
        assert "- Anticoagulation therapy" in prompt
        assert '"overallRiskLevel"' in prompt

    def test_unknown_age(self, pm):
        prompt = pm.render_task("contraindication", ContraindicationContext(procedure="Activator"))
        assert "- Age: Unknown" in prompt
        assert "Already Identified Contraindications" not in prompt


class TestTreatmentPrompt:

    def test_render(self, pm):
        prompt = pm.render_task(
            "treatment",
            TreatmentContext(
                diagnosis_code="M54.5",
                diagnosis_description="Low back pain",
                acuity="ACUTE",
                preferences=["lowForce"],
            ),
        )
        assert "Diagnosis: M54.5 - Low back pain" in prompt
        assert "Acuity: ACUTE" in prompt
        assert "Preferences: lowForce" in prompt
        assert '"expectedOutcome"' in prompt


class TestOutcomePrompt:

    def test_baseline_included(self, pm):
        prompt = pm.render_task(
            "outcome",
            OutcomeContext(
                condition_code="M51.16",
                condition_description="Disc disorder with radiculopathy",
                symptom_duration="CHRONIC",
                risk_factors=["Smoking history"],
                rule_improvement=42.6,
                rule_timeline="12-24 weeks",
            ),
        )
        assert "Diagnosis: M51.16 - Disc disorder with radiculopathy" in prompt
        assert "Symptom Duration: CHRONIC" in prompt
        assert "Treatment Approach: Standard chiropractic care" in prompt
        assert "Risk Factors: Smoking history" in prompt
        assert "- Expected Improvement: 43%" in prompt
        assert "- Timeline: 12-24 weeks" in prompt
