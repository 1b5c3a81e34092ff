"""Contraindication engine unit tests — rule applicability, matchers,
safety assessment and the override / manual-entry protocol helpers.

Operates on the shipped rule catalog with hand-built PatientEvidence;
nothing here touches the store.
"""

from datetime import date, datetime, timezone

import pytest

from cds_knowledge import contraindications as ci
from cds_knowledge.errors import InvalidStateError, ValidationFailure
from cds_knowledge.models.enums import (
    ContraindicationType,
    RiskLevel,
    SafetyStatus,
    Severity,
)
from cds_knowledge.models.evidence import ClinicalEvent, PatientEvidence
from cds_knowledge.models.results import ExistingFinding

NOW = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)


def _fire(kb, procedure, procedure_code=None, **evidence):
    return ci.evaluate_rules(kb, procedure, procedure_code, PatientEvidence(**evidence), NOW)


def _finding(procedure, kind, reason="reason", rule_id=None, overridden=False):
    return ExistingFinding(
        id="f-1",
        procedure=procedure,
        type=kind,
        reason=reason,
        rule_id=rule_id,
        is_overridden=overridden,
    )


# =====================================================================
# Applicability
# =====================================================================


class TestApplicability:

    def test_name_containment_either_way(self, kb):
        rule = kb.get_rule("ci-anticoagulation")
        assert ci.procedure_applies(rule, "Diversified Technique", None, kb)
        assert ci.procedure_applies(rule, "diversified", None, kb)
        assert ci.procedure_applies(rule, "Modified Diversified Technique (lumbar)", None, kb)
        assert not ci.procedure_applies(rule, "Activator Method", None, kb)

    def test_cpt_code_match(self, kb):
        rule = kb.get_rule("ci-muscle-relaxant")
        assert ci.procedure_applies(rule, "Chiropractic adjustment", "98943", kb)
        assert not ci.procedure_applies(rule, "Chiropractic adjustment", "97140", kb)

    def test_all_manual_therapies_wildcard(self, kb):
        rule = kb.get_rule("ci-vascular-emergency")
        assert ci.procedure_applies(rule, "Anything at all", None, kb)

    def test_finding_applies(self):
        assert ci.finding_applies("Spinal Manipulation", "Activator Method")
        assert ci.finding_applies("All", "Activator Method")
        assert ci.finding_applies("Cervical Manipulation", "cervical")
        assert not ci.finding_applies("Prone Positioning", "Activator Method")


# =====================================================================
# Matchers and evaluation
# =====================================================================


class TestEvaluateRules:

    def test_notes_match(self, kb):
        fired = _fire(kb, "Diversified Technique", clinical_notes="Reports Bladder Dysfunction")
        assert [f.rule.id for f in fired] == ["ci-cauda-equina"]
        assert fired[0].match_source == ci.NOTES_SOURCE

    def test_structured_match_names_last_item(self, kb):
        fired = _fire(
            kb,
            "Diversified Technique",
            medications=["Warfarin 5mg", "Eliquis 2.5mg"],
        )
        assert fired[0].rule.id == "ci-anticoagulation"
        assert fired[0].matched_keywords == ["warfarin", "eliquis"]
        assert fired[0].match_source == "Medication: Eliquis 2.5mg"

    def test_structured_source_beats_notes(self, kb):
        fired = _fire(
            kb,
            "Diversified Technique",
            medications=["coumadin"],
            clinical_notes="on a blood thinner",
        )
        assert fired[0].matched_keywords == ["coumadin", "blood thinner"]
        assert fired[0].match_source == "Medication: coumadin"

    def test_sorted_most_severe_first(self, kb):
        fired = _fire(
            kb,
            "Diversified Technique",
            conditions=["Osteopenia"],
            medications=["Heparin"],
            clinical_notes="saddle anesthesia",
        )
        assert [f.rule.id for f in fired] == [
            "ci-cauda-equina", "ci-anticoagulation", "ci-mild-osteoporosis",
        ]
        assert [f.severity for f in fired] == [Severity.CRITICAL, Severity.HIGH, Severity.MODERATE]

    def test_rule_skipped_for_other_procedure(self, kb):
        assert _fire(kb, "Activator Method", medications=["warfarin"]) == []

    def test_elderly_threshold_is_exclusive(self, kb):
        assert _fire(kb, "Diversified Technique", age=75) == []
        fired = _fire(kb, "Diversified Technique", age=76)
        assert [f.rule.id for f in fired] == ["ci-elderly-general"]
        assert fired[0].matched_keywords == ["age > 75"]

    def test_pediatric_needs_cervical_procedure(self, kb):
        fired = _fire(kb, "Cervical Manipulation", age=8)
        assert [f.rule.id for f in fired] == ["ci-pediatric-cervical"]
        assert fired[0].match_source == "Patient age: 8"
        assert _fire(kb, "Activator Method", age=8) == []

    def test_surgery_outside_window(self, kb):
        old = ClinicalEvent(description="Laminectomy", occurred_on=date(2025, 11, 30))
        recent = ClinicalEvent(description="Laminectomy", occurred_on=date(2025, 12, 1))
        assert _fire(kb, "Flexion-Distraction", surgeries=[old]) == []
        fired = _fire(kb, "Flexion-Distraction", surgeries=[recent])
        assert fired[0].rule.id == "ci-recent-surgery"
        assert fired[0].match_source == "Recent surgery: Laminectomy"

    def test_trauma_window(self, kb):
        fired = _fire(
            kb,
            "Spinal Manipulation",
            trauma=[ClinicalEvent(description="Motor vehicle accident", occurred_on=date(2026, 5, 25))],
        )
        assert [f.rule.id for f in fired] == ["ci-recent-trauma"]
        assert fired[0].match_source == "Recent trauma: Motor vehicle accident"

    def test_red_flag_rule_falls_back_to_conditions(self, kb):
        fired = _fire(kb, "Spinal Manipulation", conditions=["Myelopathy, cervical"])
        assert fired[0].rule.id == "ci-progressive-neuro"
        assert fired[0].match_source == "Condition: Myelopathy, cervical"

    def test_evaluation_is_repeatable(self, kb):
        evidence = dict(medications=["xarelto"], clinical_notes="fecal incontinence")
        first = _fire(kb, "Diversified Technique", **evidence)
        second = _fire(kb, "Diversified Technique", **evidence)
        assert first == second


# =====================================================================
# Safety assessment
# =====================================================================


class TestAssessSafety:

    def test_absolute_blocks(self, kb):
        fired = _fire(kb, "Diversified Technique", clinical_notes="urinary retention")
        result = ci.assess_safety(fired, [], "Diversified Technique")
        assert result.status == SafetyStatus.ABSOLUTE
        assert result.can_proceed is False
        assert result.requires_override is False
        assert result.overall_risk_level == RiskLevel.VERY_HIGH

    def test_relative_high_requires_override(self, kb):
        fired = _fire(kb, "Diversified Technique", medications=["warfarin"])
        result = ci.assess_safety(fired, [], "Diversified Technique")
        assert result.status == SafetyStatus.RELATIVE
        assert result.can_proceed is True
        assert result.requires_override is True
        assert result.overall_risk_level == RiskLevel.HIGH

    def test_relative_moderate_is_precaution(self, kb):
        fired = _fire(kb, "Diversified Technique", conditions=["osteopenia"])
        result = ci.assess_safety(fired, [], "Diversified Technique")
        assert result.status == SafetyStatus.PRECAUTION
        assert result.overall_risk_level == RiskLevel.MODERATE

    def test_stored_absolute_forces_absolute(self):
        existing = [_finding("Spinal Manipulation", ContraindicationType.ABSOLUTE)]
        result = ci.assess_safety([], existing, "Gonstead Technique")
        assert result.status == SafetyStatus.ABSOLUTE
        assert result.can_proceed is False

    def test_overridden_absolute_is_only_precaution(self):
        existing = [_finding("Spinal Manipulation", ContraindicationType.ABSOLUTE, overridden=True)]
        result = ci.assess_safety([], existing, "Gonstead Technique")
        assert result.status == SafetyStatus.PRECAUTION

    def test_unrelated_finding_is_clear(self):
        existing = [_finding("Prone Positioning", ContraindicationType.RELATIVE)]
        result = ci.assess_safety([], existing, "Activator Method")
        assert result.status == SafetyStatus.CLEAR
        assert result.overall_risk_level == RiskLevel.LOW

    @pytest.mark.parametrize(
        "rule_level, advisory_level, expected",
        [
            (RiskLevel.VERY_HIGH, RiskLevel.LOW, RiskLevel.VERY_HIGH),
            (RiskLevel.LOW, RiskLevel.HIGH, RiskLevel.HIGH),
            (RiskLevel.MODERATE, RiskLevel.MODERATE, RiskLevel.MODERATE),
            (RiskLevel.HIGH, None, RiskLevel.HIGH),
        ],
    )
    def test_higher_risk(self, rule_level, advisory_level, expected):
        assert ci.higher_risk(rule_level, advisory_level) == expected

    def test_severity_counts(self, kb):
        fired = _fire(kb, "Diversified Technique", medications=["warfarin", "prednisone"])
        assert ci.severity_counts(fired) == {"critical": 0, "high": 1, "moderate": 1, "low": 0}


# =====================================================================
# Side effects
# =====================================================================


class TestSideEffectSelection:

    def test_alert_and_persist_flags(self, kb):
        fired = {
            f.rule.id: f
            for f in _fire(
                kb,
                "Diversified Technique",
                age=80,
                conditions=["osteopenia"],
                medications=["warfarin"],
                clinical_notes="bowel dysfunction",
            )
        }
        assert ci.raises_alert(fired["ci-cauda-equina"])
        assert ci.raises_alert(fired["ci-anticoagulation"])
        assert not ci.raises_alert(fired["ci-mild-osteoporosis"])
        assert ci.persists_finding(fired["ci-cauda-equina"])
        assert ci.persists_finding(fired["ci-mild-osteoporosis"])
        assert not ci.persists_finding(fired["ci-elderly-general"])

    def test_finding_exists_by_rule_id_or_name(self, kb):
        rule = kb.get_rule("ci-anticoagulation")
        assert ci.finding_exists_for_rule(
            rule, [_finding("Anything", ContraindicationType.RELATIVE, rule_id=rule.id)]
        )
        assert ci.finding_exists_for_rule(
            rule,
            [_finding("High-Velocity Manipulation", ContraindicationType.RELATIVE,
                      reason="Anticoagulation therapy noted by GP")],
        )
        assert not ci.finding_exists_for_rule(
            rule, [_finding("Diversified Technique", ContraindicationType.RELATIVE)]
        )

    def test_review_date(self, kb):
        assert ci.review_date_for(kb.get_rule("ci-anticoagulation"), NOW) == datetime(
            2026, 7, 1, 9, 0, tzinfo=timezone.utc
        )
        assert ci.review_date_for(kb.get_rule("ci-cauda-equina"), NOW) is None


# =====================================================================
# Override and manual entry protocol
# =====================================================================


class TestOverrideProtocol:

    @pytest.mark.parametrize("reason", [None, "", "   too short  "])
    def test_reason_too_short(self, reason):
        with pytest.raises(ValidationFailure):
            ci.validate_override_request(reason, True)

    def test_risk_must_be_acknowledged(self):
        with pytest.raises(ValidationFailure):
            ci.validate_override_request("Long enough reason", False)

    def test_reason_is_stripped(self):
        assert ci.validate_override_request("  Long enough reason ", True) == "Long enough reason"

    def test_absolute_never_overridable(self):
        with pytest.raises(InvalidStateError, match="Absolute"):
            ci.check_overridable(ContraindicationType.ABSOLUTE, False, None)

    def test_already_overridden(self):
        with pytest.raises(InvalidStateError):
            ci.check_overridable(ContraindicationType.RELATIVE, True, None)

    def test_non_overridable_rule(self, kb):
        rule = kb.get_rule("ci-cauda-equina")
        with pytest.raises(InvalidStateError, match="not overridable"):
            ci.check_overridable(ContraindicationType.RELATIVE, False, rule)

    def test_relative_overridable(self, kb):
        ci.check_overridable(ContraindicationType.RELATIVE, False, kb.get_rule("ci-anticoagulation"))

    def test_compose_reason(self):
        composed = ci.compose_override_reason(
            "Low force only", True, ["Activator Method"], ["INR checked", "Consent form"]
        )
        assert composed == (
            "Low force only\n\n"
            "Patient informed consent obtained.\n\n"
            "Alternatives considered: Activator Method\n\n"
            "Precautions taken: INR checked, Consent form"
        )
        assert ci.compose_override_reason("Low force only") == "Low force only"


class TestManualEntry:

    def test_reason_minimums(self):
        with pytest.raises(ValidationFailure):
            ci.validate_manual_reason("abcd")
        assert ci.validate_manual_reason(" abcde ") == "abcde"
        with pytest.raises(ValidationFailure):
            ci.validate_deactivation_reason(None)

    def test_duplicate_uses_reason_prefix(self):
        reason = "x" * 50
        existing = [_finding("Spinal Manipulation", ContraindicationType.RELATIVE, reason=reason + " first")]
        assert ci.is_duplicate_manual(existing, "Spinal Manipulation", reason + " second")
        assert not ci.is_duplicate_manual(existing, "Cervical Manipulation", reason)
        assert not ci.is_duplicate_manual(existing, "Spinal Manipulation", "different reason")

    def test_manual_alert_severity(self):
        assert ci.manual_alert_severity(ContraindicationType.ABSOLUTE) == Severity.CRITICAL
        assert ci.manual_alert_severity(ContraindicationType.RELATIVE) == Severity.HIGH
        assert ci.manual_alert_severity(ContraindicationType.PRECAUTION) is None
