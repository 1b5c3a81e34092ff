"""Contraindication & red-flag engine.

Pure functions over the rule catalog and a :class:`PatientEvidence`:

  - :func:`evaluate_rules` fires every applicable rule whose keywords match
    the evidence source the rule names, sorted most severe first
  - :func:`assess_safety` folds fired rules and stored findings into a
    safety status, override requirement and overall risk level
  - the override / manual-entry / deactivation helpers enforce the
    protocol rules before the orchestrator touches the store

Nothing here reads or writes the database.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Sequence

from cds_knowledge.constants import (
    ALL_MANUAL_THERAPIES,
    DUPLICATE_REASON_PREFIX,
    ELDERLY_AGE_THRESHOLD,
    ELDERLY_RULE_ID,
    MIN_CONTRAINDICATION_REASON_LENGTH,
    MIN_DEACTIVATION_REASON_LENGTH,
    MIN_OVERRIDE_REASON_LENGTH,
    PEDIATRIC_CERVICAL_AGE_THRESHOLD,
    PEDIATRIC_CERVICAL_RULE_ID,
    RISK_ORDER,
    SEVERITY_ORDER,
)
from cds_knowledge.errors import InvalidStateError, ValidationFailure
from cds_knowledge.extractor import recent_surgeries, recent_trauma
from cds_knowledge.knowledge import KnowledgeBase
from cds_knowledge.models.enums import (
    ContraindicationType,
    EvidenceSource,
    RiskLevel,
    SafetyStatus,
    Severity,
)
from cds_knowledge.models.evidence import PatientEvidence
from cds_knowledge.models.knowledge import ClinicalRule
from cds_knowledge.models.results import ExistingFinding, FiredRule, SafetyAssessment

logger = logging.getLogger(__name__)

NOTES_SOURCE = "Clinical notes"

# (matched keywords, match source label)
Match = tuple[list[str], str]
Matcher = Callable[[ClinicalRule, PatientEvidence, str, datetime], Match]


# ---------------------------------------------------------------------------
# Procedure applicability
# ---------------------------------------------------------------------------

def procedure_applies(
    rule: ClinicalRule,
    procedure: str,
    procedure_code: str | None,
    kb: KnowledgeBase,
) -> bool:
    """True when *rule* covers the proposed procedure.

    Names match when either contains the other (case-insensitive); a
    procedure code matches through the CPT map of an affected procedure.
    """
    if ALL_MANUAL_THERAPIES in rule.affected_procedures:
        return True
    lowered = procedure.lower()
    for affected in rule.affected_procedures:
        name = affected.lower()
        if name in lowered or lowered in name:
            return True
        if procedure_code and procedure_code in kb.cpt_codes_for(affected):
            return True
    return False


def finding_applies(finding_procedure: str, procedure: str) -> bool:
    """True when a stored finding for *finding_procedure* covers *procedure*."""
    stored = finding_procedure.lower()
    lowered = procedure.lower()
    return (
        stored in lowered
        or lowered in stored
        or finding_procedure == "All"
        or "spinal manipulation" in stored
    )


# ---------------------------------------------------------------------------
# Matchers, one per evidence source
# ---------------------------------------------------------------------------

def _scan_items(rule: ClinicalRule, items: Iterable[str], label: str) -> Match:
    """Scan structured items; the last matching item names the source."""
    matched: list[str] = []
    source = ""
    for item in items:
        lowered = item.lower()
        for keyword in rule.keywords:
            if keyword.lower() in lowered:
                if keyword not in matched:
                    matched.append(keyword)
                source = f"{label}: {item}"
    return matched, source


def _scan_notes(rule: ClinicalRule, notes: str, matched: list[str], source: str) -> Match:
    """Add note hits not matched yet; the notes only name an empty source."""
    for keyword in rule.keywords:
        if keyword.lower() in notes and keyword not in matched:
            matched.append(keyword)
            source = source or NOTES_SOURCE
    return matched, source


def _match_condition(rule, evidence, procedure, now) -> Match:
    matched, source = _scan_items(rule, evidence.conditions, "Condition")
    return _scan_notes(rule, evidence.notes_lower, matched, source)


def _match_medication(rule, evidence, procedure, now) -> Match:
    matched, source = _scan_items(rule, evidence.medications, "Medication")
    return _scan_notes(rule, evidence.notes_lower, matched, source)


def _match_age(rule, evidence, procedure, now) -> Match:
    age = evidence.age
    if age is None:
        return [], ""
    if rule.id == ELDERLY_RULE_ID and age > ELDERLY_AGE_THRESHOLD:
        return [f"age > {ELDERLY_AGE_THRESHOLD}"], f"Patient age: {age}"
    if (
        rule.id == PEDIATRIC_CERVICAL_RULE_ID
        and age < PEDIATRIC_CERVICAL_AGE_THRESHOLD
        and "cervical" in procedure.lower()
    ):
        return [f"age < {PEDIATRIC_CERVICAL_AGE_THRESHOLD}"], f"Patient age: {age}"
    return [], ""


def _match_surgery(rule, evidence, procedure, now) -> Match:
    events = recent_surgeries(evidence.surgeries, now)
    matched, source = _scan_items(rule, (e.description for e in events), "Recent surgery")
    return _scan_notes(rule, evidence.notes_lower, matched, source)


def _match_trauma(rule, evidence, procedure, now) -> Match:
    events = recent_trauma(evidence.trauma, now)
    matched, source = _scan_items(rule, (e.description for e in events), "Recent trauma")
    return _scan_notes(rule, evidence.notes_lower, matched, source)


def _match_notes_first(rule, evidence, procedure, now) -> Match:
    matched, source = _scan_notes(rule, evidence.notes_lower, [], "")
    for condition in evidence.conditions:
        lowered = condition.lower()
        for keyword in rule.keywords:
            if keyword.lower() in lowered and keyword not in matched:
                matched.append(keyword)
                source = source or f"Condition: {condition}"
    return matched, source


_MATCHERS: dict[EvidenceSource, Matcher] = {
    EvidenceSource.CONDITION: _match_condition,
    EvidenceSource.MEDICATION: _match_medication,
    EvidenceSource.AGE: _match_age,
    EvidenceSource.SURGERY: _match_surgery,
    EvidenceSource.TRAUMA: _match_trauma,
    EvidenceSource.RED_FLAG: _match_notes_first,
    EvidenceSource.GENERAL: _match_notes_first,
}

_unhandled = set(EvidenceSource) - set(_MATCHERS)
if _unhandled:
    raise RuntimeError(f"No contraindication matcher for sources: {sorted(s.value for s in _unhandled)}")


# ---------------------------------------------------------------------------
# Rule evaluation
# ---------------------------------------------------------------------------

def _severity_rank(severity: Severity) -> int:
    return SEVERITY_ORDER.index(severity.value)


def evaluate_rules(
    kb: KnowledgeBase,
    procedure: str,
    procedure_code: str | None,
    evidence: PatientEvidence,
    now: datetime | None = None,
) -> list[FiredRule]:
    """Return every rule that fires for *procedure*, most severe first.

    Ties keep catalog order (``sorted`` is stable).
    """
    now = now or datetime.now(timezone.utc)
    fired: list[FiredRule] = []
    for rule in kb.rules:
        if not procedure_applies(rule, procedure, procedure_code, kb):
            continue
        matched, source = _MATCHERS[rule.source](rule, evidence, procedure, now)
        if matched:
            fired.append(FiredRule(rule=rule, matched_keywords=matched, match_source=source))
    return sorted(fired, key=lambda f: _severity_rank(f.severity))


def overall_risk(fired: Sequence[FiredRule]) -> RiskLevel:
    severities = {f.severity for f in fired}
    if Severity.CRITICAL in severities:
        return RiskLevel.VERY_HIGH
    if Severity.HIGH in severities:
        return RiskLevel.HIGH
    if fired:
        return RiskLevel.MODERATE
    return RiskLevel.LOW


def higher_risk(rule_level: RiskLevel, advisory_level: RiskLevel | None) -> RiskLevel:
    """Merge an advisory risk level into the rule-based one.

    The advisory level can raise the result but never lower it.
    """
    if advisory_level is None:
        return rule_level
    return min(rule_level, advisory_level, key=lambda level: RISK_ORDER.index(level.value))


def assess_safety(
    fired: Sequence[FiredRule],
    existing: Sequence[ExistingFinding],
    procedure: str,
) -> SafetyAssessment:
    """Fold fired rules and active stored findings into a safety status.

    *existing* must hold the patient's active findings only; applicability
    to *procedure* is decided here.
    """
    applicable = [f for f in existing if finding_applies(f.procedure, procedure)]

    absolute = any(f.rule.type == ContraindicationType.ABSOLUTE for f in fired) or any(
        f.type == ContraindicationType.ABSOLUTE and not f.is_overridden for f in applicable
    )
    relative = any(
        f.severity == Severity.CRITICAL
        or (
            f.rule.type == ContraindicationType.RELATIVE
            and f.severity in (Severity.CRITICAL, Severity.HIGH)
        )
        for f in fired
    )

    if absolute:
        status = SafetyStatus.ABSOLUTE
    elif relative:
        status = SafetyStatus.RELATIVE
    elif fired or applicable:
        status = SafetyStatus.PRECAUTION
    else:
        status = SafetyStatus.CLEAR

    return SafetyAssessment(
        status=status,
        can_proceed=status != SafetyStatus.ABSOLUTE,
        requires_override=status == SafetyStatus.RELATIVE,
        overall_risk_level=overall_risk(fired),
        fired=list(fired),
    )


def severity_counts(fired: Sequence[FiredRule]) -> dict[str, int]:
    counts = {s.value.lower(): 0 for s in Severity}
    for f in fired:
        counts[f.severity.value.lower()] += 1
    return counts


# ---------------------------------------------------------------------------
# Side-effect selection
# ---------------------------------------------------------------------------

def raises_alert(fired: FiredRule) -> bool:
    return fired.severity in (Severity.CRITICAL, Severity.HIGH)


def persists_finding(fired: FiredRule) -> bool:
    """ABSOLUTE rules, and RELATIVE rules above LOW, become patient findings."""
    rule_type = fired.rule.type
    return rule_type == ContraindicationType.ABSOLUTE or (
        rule_type == ContraindicationType.RELATIVE and fired.severity != Severity.LOW
    )


def finding_exists_for_rule(rule: ClinicalRule, existing: Iterable[ExistingFinding]) -> bool:
    """True when an active finding already records *rule*."""
    first = rule.affected_procedures[0].lower() if rule.affected_procedures else ""
    name = rule.name.lower()
    for finding in existing:
        if finding.rule_id == rule.id:
            return True
        if finding.procedure.lower() == first and name in finding.reason.lower():
            return True
    return False


def review_date_for(rule: ClinicalRule, now: datetime) -> datetime | None:
    if rule.review_period_days is None:
        return None
    return now + timedelta(days=rule.review_period_days)


# ---------------------------------------------------------------------------
# Override protocol
# ---------------------------------------------------------------------------

def validate_override_request(reason: str | None, risk_acknowledged: bool) -> str:
    """Check caller input for an override and return the stripped reason."""
    cleaned = (reason or "").strip()
    if len(cleaned) < MIN_OVERRIDE_REASON_LENGTH:
        raise ValidationFailure(
            f"Override reason must be at least {MIN_OVERRIDE_REASON_LENGTH} characters"
        )
    if not risk_acknowledged:
        raise ValidationFailure("Risk must be acknowledged before overriding a contraindication")
    return cleaned


def check_overridable(
    finding_type: ContraindicationType,
    is_overridden: bool,
    rule: ClinicalRule | None,
) -> None:
    """Raise :class:`InvalidStateError` when a stored finding cannot be overridden."""
    if is_overridden:
        raise InvalidStateError("Contraindication is already overridden")
    if finding_type == ContraindicationType.ABSOLUTE:
        raise InvalidStateError(
            "Absolute contraindications cannot be overridden. Consider alternative treatments."
        )
    if rule is not None and not rule.overridable:
        raise InvalidStateError(
            "This contraindication rule is not overridable. Patient safety requires alternative treatment."
        )


def compose_override_reason(
    reason: str,
    patient_consent: bool = False,
    alternatives: Sequence[str] | None = None,
    precautions: Sequence[str] | None = None,
) -> str:
    parts = [reason]
    if patient_consent:
        parts.append("Patient informed consent obtained.")
    if alternatives:
        parts.append(f"Alternatives considered: {', '.join(alternatives)}")
    if precautions:
        parts.append(f"Precautions taken: {', '.join(precautions)}")
    return "\n\n".join(parts)


# ---------------------------------------------------------------------------
# Manual entry and deactivation
# ---------------------------------------------------------------------------

def validate_reason(reason: str | None, minimum: int, what: str) -> str:
    cleaned = (reason or "").strip()
    if len(cleaned) < minimum:
        raise ValidationFailure(f"{what} must be at least {minimum} characters")
    return cleaned


def validate_manual_reason(reason: str | None) -> str:
    return validate_reason(reason, MIN_CONTRAINDICATION_REASON_LENGTH, "Contraindication reason")


def validate_deactivation_reason(reason: str | None) -> str:
    return validate_reason(reason, MIN_DEACTIVATION_REASON_LENGTH, "Deactivation reason")


def is_duplicate_manual(
    existing: Iterable[ExistingFinding],
    procedure: str,
    reason: str,
) -> bool:
    """Same procedure and the same leading reason text as an active finding."""
    prefix = reason[:DUPLICATE_REASON_PREFIX]
    return any(
        f.procedure == procedure and f.reason.startswith(prefix)
        for f in existing
    )


def manual_alert_severity(finding_type: ContraindicationType) -> Severity | None:
    """ABSOLUTE entries raise a CRITICAL alert, RELATIVE a HIGH one."""
    if finding_type == ContraindicationType.ABSOLUTE:
        return Severity.CRITICAL
    if finding_type == ContraindicationType.RELATIVE:
        return Severity.HIGH
    return None
