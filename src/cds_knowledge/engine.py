"""ClinicalDecisionEngine — the orchestrator behind every clinical operation.

Stateless engine pattern: each call loads the rows it needs, runs the pure
scorers in :mod:`cds_knowledge.scorer`, :mod:`cds_knowledge.contraindications`
and :mod:`cds_knowledge.outcome`, persists the outcome and returns a result
model.  No in-memory state is kept between calls.

The engine accepts an ``AsyncSession`` from the caller so that the caller
(typically a FastAPI dependency) controls transaction boundaries.  Every
mutation writes exactly one audit log entry in the same session.

Operation overview:
    suggestions      — suggest / accept / reject / list pending / stats
    contraindications — check / override / add / deactivate / list / stats
    outcomes         — predict / accept / reject / record actual / list / stats
    alerts           — list / acknowledge
    reference        — treatment recommendation and guideline lookup (no DB)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from cds_db.models.clinical import (
    ClinicalAlert,
    ContraindicationFinding,
    DiagnosisSuggestion,
    OutcomePrediction,
)
from cds_db.models.enums import AlertStatus, AlertType, PredictionStatus, SuggestionStatus
from cds_db.repository import ClinicalRepository

from cds_knowledge import contraindications as ci
from cds_knowledge import outcome as oc
from cds_knowledge.constants import (
    CHRONICITY_ALERT_THRESHOLD,
    CHRONICITY_HIGH_THRESHOLD,
    SEVERITY_ORDER,
    SIMILAR_CASE_AGE_BAND,
    SIMILAR_CASE_CODE_PREFIX,
    SIMILAR_CASE_LIMIT,
    TRIGGER_CONTRAINDICATION,
    TRIGGER_MANUAL,
    TRIGGER_OUTCOME,
    TRIGGER_SUGGESTION,
)
from cds_knowledge.errors import InvalidStateError, NotFoundError, ValidationFailure
from cds_knowledge.extractor import (
    calculate_age,
    classify_acuity,
    classify_duration,
    detect_red_flags,
    extract_keywords,
    identify_risk_factors,
)
from cds_knowledge.interfaces import EnrichmentProvider, NoOpEnrichment
from cds_knowledge.knowledge import KnowledgeBase
from cds_knowledge.models.enrichment import (
    ContraindicationContext,
    DiagnosisContext,
    OutcomeContext,
    TreatmentContext,
)
from cds_knowledge.models.enums import (
    ContraindicationType,
    EvidenceSource,
    SafetyStatus,
    Severity,
    SuggestionSource,
    SymptomDuration,
    TreatmentResponse,
)
from cds_knowledge.models.evidence import ClinicalEvent, PatientEvidence
from cds_knowledge.models.results import (
    AcceptedDiagnosis,
    ClinicalAlertView,
    ContraindicationCheckResult,
    ContraindicationFindingView,
    ContraindicationStats,
    DiagnosisSuggestionView,
    ExistingFinding,
    FiredRule,
    FiredRuleView,
    GuidelineMatch,
    OutcomePredictionResult,
    OutcomePredictionStats,
    OutcomePredictionView,
    SuggestionSetResult,
    SuggestionStats,
    TreatmentRecommendation,
)
from cds_knowledge.scorer import (
    build_treatment_plan,
    clamp_limit,
    find_guidelines,
    merge_suggestions,
    rank_diagnoses,
)

logger = logging.getLogger(__name__)

MANUAL_SOURCE = "Manual entry"
OUTCOME_ALERT_RECOMMENDATION = (
    "Consider more aggressive early intervention and patient education on prevention"
)
MANUAL_ALERT_RECOMMENDATION = "Review patient chart and consider alternative treatments"

# Audit entity types
_SUGGESTION_ENTITY = "DiagnosisSuggestion"
_FINDING_ENTITY = "Contraindication"
_PREDICTION_ENTITY = "OutcomePrediction"
_ALERT_ENTITY = "ClinicalAlert"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _join_text(*parts: str | None, sep: str = " ") -> str:
    return sep.join(p for p in parts if p)


def _require_text(value: str | None, what: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValidationFailure(f"{what} is required")
    return cleaned


class ClinicalDecisionEngine:
    """Runs clinical decision support operations against the store.

    Args:
        kb: a loaded :class:`KnowledgeBase` instance
        enrichment: optional :class:`EnrichmentProvider`; defaults to
            :class:`NoOpEnrichment` (rule-based output only)
    """

    def __init__(self, kb: KnowledgeBase, enrichment: EnrichmentProvider | None = None) -> None:
        self._kb = kb
        self._enrichment = enrichment or NoOpEnrichment()
        self._repo = ClinicalRepository()

    @property
    def enrichment_enabled(self) -> bool:
        return self._enrichment.enabled

    def _use_enrichment(self, requested: bool) -> bool:
        return requested and self._enrichment.enabled

    # ==================================================================
    # Diagnosis suggestions
    # ==================================================================

    async def suggest_diagnosis(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        encounter_id: str,
        chief_complaint: str | None = None,
        subjective: str | None = None,
        objective: str | None = None,
        include_enrichment: bool = True,
        max_suggestions: int | None = None,
    ) -> SuggestionSetResult:
        """Score the diagnosis catalog against an encounter and persist
        the top suggestions as pending.

        Caller text overrides the stored encounter text field by field.
        Every detected red flag also raises an ACTIVE RED_FLAG alert.
        """
        encounter = await self._repo.get_encounter(db, encounter_id, organization_id)
        if encounter is None:
            raise NotFoundError("Encounter not found")

        limit = clamp_limit(max_suggestions)
        chief_complaint = chief_complaint or encounter.chief_complaint or ""
        subjective = subjective or encounter.subjective or ""
        objective = objective or encounter.objective or ""
        combined = _join_text(chief_complaint, subjective, objective)

        red_flags = detect_red_flags(combined, self._kb)
        keywords = extract_keywords(combined)
        rule_based = rank_diagnoses(
            self._kb, chief_complaint=chief_complaint, text=combined, limit=limit
        )

        enriched = []
        if self._use_enrichment(include_enrichment):
            patient = await self._repo.get_patient(db, str(encounter.patient_id), organization_id)
            diagnoses = await self._repo.list_encounter_diagnoses(db, encounter_id, organization_id)
            enriched = await self._enrichment.suggest_diagnoses(
                DiagnosisContext(
                    chief_complaint=chief_complaint,
                    subjective=subjective,
                    objective=objective,
                    patient_age=calculate_age(patient.date_of_birth) if patient else None,
                    patient_gender=patient.gender if patient else None,
                    existing_codes=[d.code for d in diagnoses],
                )
            )
        ranked = merge_suggestions(rule_based, enriched, limit)

        red_flag_details = (
            "\n".join(f"{flag.type}: {flag.message}" for flag in red_flags) if red_flags else None
        )
        rows = []
        for suggestion in ranked:
            rows.append(
                await self._repo.create_suggestion(
                    db,
                    organization_id=organization_id,
                    encounter_id=encounter_id,
                    code=suggestion.code,
                    description=suggestion.description,
                    confidence=suggestion.confidence,
                    reasoning=suggestion.reasoning,
                    supporting_findings=list(suggestion.supporting_findings),
                    has_red_flags=bool(red_flags),
                    red_flag_details=red_flag_details,
                    evidence_level=(
                        "MODERATE" if suggestion.source == SuggestionSource.ENRICHMENT else "LOW"
                    ),
                    source=suggestion.source.value,
                )
            )

        alert_ids = []
        for flag in red_flags:
            alert = await self._repo.create_alert(
                db,
                organization_id=organization_id,
                patient_id=encounter.patient_id,
                encounter_id=encounter_id,
                alert_type=AlertType.RED_FLAG.value,
                severity=flag.severity.value,
                message=flag.message,
                description=f"Detected keywords: {', '.join(flag.matched_keywords)}",
                recommendation=flag.recommendation,
                triggered_by=TRIGGER_SUGGESTION,
                related_data={"flag_type": flag.type, "keywords": flag.matched_keywords},
            )
            alert_ids.append(str(alert.id))

        await self._audit(
            db,
            action="AI_DIAGNOSIS_SUGGESTION",
            entity_type=_SUGGESTION_ENTITY,
            entity_id=encounter_id,
            actor_id=actor_id,
            organization_id=organization_id,
            changes={
                "suggestions_count": len(rows),
                "has_red_flags": bool(red_flags),
                "red_flag_types": [flag.type for flag in red_flags],
                "enrichment_used": bool(enriched),
            },
        )
        if any(flag.severity == Severity.CRITICAL for flag in red_flags):
            logger.warning("Critical red flag detected for encounter %s", encounter_id)
        logger.info(
            "Suggested %d diagnoses for encounter %s (%d red flags)",
            len(rows), encounter_id, len(red_flags),
        )

        return SuggestionSetResult(
            encounter_id=encounter_id,
            suggestions=[self._to_suggestion_view(row) for row in rows],
            red_flags=red_flags,
            alert_ids=alert_ids,
            keywords=keywords,
            symptom_duration=classify_duration(combined),
            enrichment_used=bool(enriched),
        )

    async def accept_suggestion(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        suggestion_id: str,
        is_primary: bool = False,
        notes: str | None = None,
    ) -> AcceptedDiagnosis:
        """Turn a pending suggestion into a Diagnosis on its encounter.

        The new diagnosis takes the next sequence number.  When
        *is_primary* is set every other primary flag on the encounter is
        cleared first.
        """
        row = await self._repo.get_suggestion(db, suggestion_id, organization_id, for_update=True)
        if row is None:
            raise NotFoundError("Suggestion not found")
        if row.status != SuggestionStatus.PENDING:
            raise InvalidStateError("Suggestion has already been processed")

        encounter_id = str(row.encounter_id)
        sequence = await self._repo.next_diagnosis_sequence(db, encounter_id)
        if is_primary:
            await self._repo.clear_primary_diagnoses(db, encounter_id)
        diagnosis = await self._repo.add_diagnosis(
            db,
            organization_id=organization_id,
            encounter_id=encounter_id,
            code=row.code,
            description=row.description,
            sequence=sequence,
            is_primary=is_primary,
            notes=notes or f"AI-suggested: {row.reasoning}",
        )
        await self._repo.decide_suggestion(
            db, row, status=SuggestionStatus.ACCEPTED, decided_by=actor_id
        )

        await self._audit(
            db,
            action="AI_SUGGESTION_ACCEPTED",
            entity_type=_SUGGESTION_ENTITY,
            entity_id=suggestion_id,
            actor_id=actor_id,
            organization_id=organization_id,
            changes={
                "diagnosis_id": str(diagnosis.id),
                "code": row.code,
                "confidence": row.confidence,
                "is_primary": is_primary,
            },
        )
        logger.info("Suggestion %s accepted as diagnosis %s", suggestion_id, diagnosis.id)

        return AcceptedDiagnosis(
            suggestion=self._to_suggestion_view(row),
            diagnosis_id=str(diagnosis.id),
            sequence=sequence,
            is_primary=is_primary,
        )

    async def reject_suggestion(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        suggestion_id: str,
        reason: str | None,
    ) -> DiagnosisSuggestionView:
        """Reject a pending suggestion.  A non-blank reason is required."""
        reason = _require_text(reason, "Rejection reason")
        row = await self._repo.get_suggestion(db, suggestion_id, organization_id, for_update=True)
        if row is None:
            raise NotFoundError("Suggestion not found")
        if row.status != SuggestionStatus.PENDING:
            raise InvalidStateError("Suggestion has already been processed")

        await self._repo.decide_suggestion(
            db,
            row,
            status=SuggestionStatus.REJECTED,
            decided_by=actor_id,
            rejection_reason=reason,
        )
        await self._audit(
            db,
            action="AI_SUGGESTION_REJECTED",
            entity_type=_SUGGESTION_ENTITY,
            entity_id=suggestion_id,
            actor_id=actor_id,
            organization_id=organization_id,
            changes={"code": row.code, "confidence": row.confidence, "reason": reason},
        )
        logger.info("Suggestion %s rejected", suggestion_id)
        return self._to_suggestion_view(row)

    async def get_pending_suggestions(
        self, db: AsyncSession, *, organization_id: str, encounter_id: str
    ) -> list[DiagnosisSuggestionView]:
        """Pending suggestions for an encounter, highest confidence first."""
        encounter = await self._repo.get_encounter(db, encounter_id, organization_id)
        if encounter is None:
            raise NotFoundError("Encounter not found")
        rows = await self._repo.list_suggestions(
            db, encounter_id, organization_id, status=SuggestionStatus.PENDING
        )
        return [self._to_suggestion_view(row) for row in rows]

    async def get_suggestion_stats(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        since: datetime | None = None,
    ) -> SuggestionStats:
        counts = await self._repo.suggestion_status_counts(db, organization_id, since=since)
        accepted = counts.get(SuggestionStatus.ACCEPTED.value, 0)
        rejected = counts.get(SuggestionStatus.REJECTED.value, 0)
        pending = counts.get(SuggestionStatus.PENDING.value, 0)
        total = accepted + rejected + pending

        top_accepted = await self._repo.top_suggestion_codes(
            db, organization_id, SuggestionStatus.ACCEPTED, since=since
        )
        top_rejected = await self._repo.top_suggestion_codes(
            db, organization_id, SuggestionStatus.REJECTED, since=since
        )
        return SuggestionStats(
            total=total,
            accepted=accepted,
            rejected=rejected,
            pending=pending,
            acceptance_rate=round(accepted / total * 100) if total else 0,
            top_accepted_codes=[{"code": c, "count": n} for c, n in top_accepted],
            top_rejected_codes=[{"code": c, "count": n} for c, n in top_rejected],
        )

    # ==================================================================
    # Contraindications
    # ==================================================================

    async def check_contraindications(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        patient_id: str,
        procedure: str,
        procedure_code: str | None = None,
        encounter_id: str | None = None,
        conditions: Sequence[str] = (),
        medications: Sequence[str] = (),
        allergies: Sequence[str] = (),
        clinical_notes: str | None = None,
        recent_surgeries: Sequence[ClinicalEvent] = (),
        recent_trauma: Sequence[ClinicalEvent] = (),
        include_enrichment: bool = True,
    ) -> ContraindicationCheckResult:
        """Screen a proposed procedure against the rule catalog and the
        patient's stored findings.

        CRITICAL/HIGH fired rules raise CONTRAINDICATION alerts; ABSOLUTE
        and RELATIVE (non-LOW) fired rules are stored as findings unless an
        active finding already records the rule, so repeated checks reuse
        findings instead of duplicating them.

        Only catalog rules are evaluated here, including ``red_flag``-sourced
        ones such as ``ci-cauda-equina``; the red-flag definitions themselves
        drive RED_FLAG alerts in ``suggest_diagnosis`` alone.  Enrichment may
        raise the reported risk level but never lowers it or changes the
        safety status.
        """
        procedure = _require_text(procedure, "Procedure")
        patient = await self._repo.get_patient(db, patient_id, organization_id)
        if patient is None:
            raise NotFoundError("Patient not found")

        encounter_notes = ""
        if encounter_id is not None:
            encounter = await self._repo.get_encounter(db, encounter_id, organization_id)
            if encounter is None:
                raise NotFoundError("Encounter not found")
            encounter_notes = _join_text(
                encounter.chief_complaint, encounter.subjective, encounter.objective, sep="\n"
            )

        now = _now()
        age = calculate_age(patient.date_of_birth, now)
        evidence = PatientEvidence(
            age=age,
            conditions=list(conditions),
            medications=list(medications),
            allergies=list(allergies),
            surgeries=list(recent_surgeries),
            trauma=list(recent_trauma),
            clinical_notes=_join_text(clinical_notes, encounter_notes, sep="\n"),
        )

        stored = await self._repo.list_findings(db, patient_id, organization_id)
        existing = [self._to_existing_finding(row) for row in stored]
        applicable_rows = [row for row in stored if ci.finding_applies(row.procedure, procedure)]

        fired = ci.evaluate_rules(self._kb, procedure, procedure_code, evidence, now)
        assessment = ci.assess_safety(fired, existing, procedure)

        enrichment = None
        if self._use_enrichment(include_enrichment):
            enrichment = await self._enrichment.analyze_contraindications(
                ContraindicationContext(
                    procedure=procedure,
                    patient_age=age,
                    conditions=evidence.conditions,
                    medications=evidence.medications,
                    allergies=evidence.allergies,
                    clinical_notes=evidence.clinical_notes,
                    already_found=[f.rule.name for f in fired]
                    + [row.reason for row in applicable_rows],
                )
            )

        # Persist findings first so alerts can link to them
        finding_ids: dict[str, str] = {
            row.rule_id: str(row.id) for row in stored if row.rule_id is not None
        }
        new_finding_ids = []
        for hit in fired:
            if not ci.persists_finding(hit) or ci.finding_exists_for_rule(hit.rule, existing):
                continue
            rule = hit.rule
            row = await self._repo.create_finding(
                db,
                organization_id=organization_id,
                patient_id=patient_id,
                encounter_id=encounter_id,
                procedure=rule.affected_procedures[0] if rule.affected_procedures else procedure,
                procedure_code=procedure_code,
                contraindication_type=rule.type.value,
                reason=rule.reason,
                source=hit.match_source,
                rule_id=rule.id,
                source_details={"rule_id": rule.id, "matched_keywords": hit.matched_keywords},
                identified_by=actor_id,
                is_permanent=(
                    rule.source == EvidenceSource.CONDITION and rule.type == ContraindicationType.ABSOLUTE
                ),
                review_date=ci.review_date_for(rule, now),
            )
            existing.append(self._to_existing_finding(row))
            finding_ids[rule.id] = str(row.id)
            new_finding_ids.append(str(row.id))

        alert_ids = []
        for hit in fired:
            if not ci.raises_alert(hit):
                continue
            rule = hit.rule
            alert = await self._repo.create_alert(
                db,
                organization_id=organization_id,
                patient_id=patient_id,
                encounter_id=encounter_id,
                finding_id=finding_ids.get(rule.id),
                alert_type=AlertType.CONTRAINDICATION.value,
                severity=hit.severity.value,
                message=f"{rule.name}: {rule.reason}",
                description=(
                    f"Matched: {', '.join(hit.matched_keywords)}. Source: {hit.match_source}"
                ),
                recommendation=rule.recommendation,
                triggered_by=TRIGGER_CONTRAINDICATION,
                related_data={
                    "rule_id": rule.id,
                    "procedure": procedure,
                    "procedure_code": procedure_code,
                    "contraindication_type": rule.type.value,
                },
            )
            alert_ids.append(str(alert.id))

        await self._audit(
            db,
            action="AI_CONTRAINDICATION_CHECK",
            entity_type=_FINDING_ENTITY,
            entity_id=patient_id,
            actor_id=actor_id,
            organization_id=organization_id,
            changes={
                "procedure": procedure,
                "procedure_code": procedure_code,
                "safety_status": assessment.status.value,
                "fired_rule_ids": [f.rule.id for f in fired],
                "existing_checked": len(applicable_rows),
                "findings_created": len(new_finding_ids),
                "alerts_created": len(alert_ids),
                "enrichment_used": enrichment is not None,
            },
        )
        if assessment.status == SafetyStatus.ABSOLUTE:
            logger.warning(
                "ABSOLUTE contraindication for patient %s (rules: %s)",
                patient_id, ", ".join(f.rule.id for f in fired) or "stored finding",
            )
        logger.info(
            "Contraindication check for patient %s: %s, %d rules fired",
            patient_id, assessment.status.value, len(fired),
        )

        return ContraindicationCheckResult(
            patient_id=patient_id,
            procedure=procedure,
            procedure_code=procedure_code,
            safety_status=assessment.status,
            can_proceed=assessment.can_proceed,
            requires_override=assessment.requires_override,
            overall_risk_level=ci.higher_risk(
                assessment.overall_risk_level,
                enrichment.overall_risk_level if enrichment else None,
            ),
            contraindications=[self._to_fired_rule_view(f) for f in fired],
            existing_findings=[self._to_finding_view(row) for row in applicable_rows],
            new_finding_ids=new_finding_ids,
            alert_ids=alert_ids,
            counts=ci.severity_counts(fired),
            patient_factors={
                "age": age,
                "conditions_checked": len(evidence.conditions),
                "medications_checked": len(evidence.medications),
            },
            advisory=enrichment.additional if enrichment else [],
            safety_notes=enrichment.safety_notes if enrichment else [],
            enrichment_used=enrichment is not None,
        )

    async def override_contraindication(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        finding_id: str,
        reason: str | None,
        risk_acknowledged: bool,
        patient_consent: bool = False,
        alternatives_considered: Sequence[str] | None = None,
        precautions_taken: Sequence[str] | None = None,
    ) -> ContraindicationFindingView:
        """Override a RELATIVE or PRECAUTION finding with documentation.

        Input is validated before the finding is locked.  ABSOLUTE findings
        and findings whose rule is not overridable are always refused.
        """
        reason = ci.validate_override_request(reason, risk_acknowledged)

        row = await self._repo.get_finding(db, finding_id, organization_id, for_update=True)
        if row is None or not row.is_active:
            raise NotFoundError("Contraindication not found")
        rule = self._kb.get_rule(row.rule_id) if row.rule_id else None
        ci.check_overridable(ContraindicationType(row.contraindication_type), row.is_overridden, rule)

        full_reason = ci.compose_override_reason(
            reason, patient_consent, alternatives_considered, precautions_taken
        )
        await self._repo.override_finding(db, row, reason=full_reason, overridden_by=actor_id)
        resolved = await self._repo.resolve_contraindication_alerts(
            db,
            organization_id=organization_id,
            patient_id=str(row.patient_id),
            note=f"Overridden by provider: {reason}",
            finding_id=finding_id,
            procedure=row.procedure,
            rule_id=row.rule_id,
        )

        await self._audit(
            db,
            action="CONTRAINDICATION_OVERRIDE",
            entity_type=_FINDING_ENTITY,
            entity_id=finding_id,
            actor_id=actor_id,
            organization_id=organization_id,
            changes={
                "procedure": row.procedure,
                "type": row.contraindication_type,
                "rule_id": row.rule_id,
                "override_reason": full_reason,
                "risk_acknowledged": risk_acknowledged,
                "patient_consent": patient_consent,
                "alerts_resolved": resolved,
            },
        )
        logger.warning(
            "Contraindication %s (%s) overridden by %s", finding_id, row.contraindication_type, actor_id
        )
        return self._to_finding_view(row)

    async def add_contraindication(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        patient_id: str,
        procedure: str,
        contraindication_type: ContraindicationType,
        reason: str | None,
        procedure_code: str | None = None,
        encounter_id: str | None = None,
        source: str | None = None,
        is_permanent: bool = False,
        expires_at: datetime | None = None,
        review_date: datetime | None = None,
    ) -> ContraindicationFindingView:
        """Record a provider-entered finding.

        ABSOLUTE entries raise a CRITICAL alert and RELATIVE entries a HIGH
        one, both linked to the new finding.
        """
        procedure = _require_text(procedure, "Procedure")
        reason = ci.validate_manual_reason(reason)
        patient = await self._repo.get_patient(db, patient_id, organization_id)
        if patient is None:
            raise NotFoundError("Patient not found")

        stored = await self._repo.list_findings(db, patient_id, organization_id)
        if ci.is_duplicate_manual(
            [self._to_existing_finding(row) for row in stored], procedure, reason
        ):
            raise InvalidStateError("A similar contraindication already exists for this patient")

        row = await self._repo.create_finding(
            db,
            organization_id=organization_id,
            patient_id=patient_id,
            encounter_id=encounter_id,
            procedure=procedure,
            procedure_code=procedure_code,
            contraindication_type=contraindication_type.value,
            reason=reason,
            source=source or MANUAL_SOURCE,
            identified_by=actor_id,
            is_permanent=is_permanent,
            expires_at=expires_at,
            review_date=review_date,
        )

        severity = ci.manual_alert_severity(contraindication_type)
        if severity is not None:
            await self._repo.create_alert(
                db,
                organization_id=organization_id,
                patient_id=patient_id,
                encounter_id=encounter_id,
                finding_id=row.id,
                alert_type=AlertType.CONTRAINDICATION.value,
                severity=severity.value,
                message=f"Contraindication added: {procedure} - {reason}",
                recommendation=MANUAL_ALERT_RECOMMENDATION,
                triggered_by=TRIGGER_MANUAL,
                related_data={"finding_id": str(row.id), "procedure": procedure},
            )

        await self._audit(
            db,
            action="CONTRAINDICATION_ADDED",
            entity_type=_FINDING_ENTITY,
            entity_id=str(row.id),
            actor_id=actor_id,
            organization_id=organization_id,
            changes={
                "procedure": procedure,
                "type": contraindication_type.value,
                "reason": reason,
                "source": row.source,
            },
        )
        logger.info("Contraindication %s added for patient %s", row.id, patient_id)
        return self._to_finding_view(row)

    async def deactivate_contraindication(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        finding_id: str,
        reason: str | None,
    ) -> ContraindicationFindingView:
        """Deactivate a finding (condition resolved, entered in error).

        Findings are never deleted.  Override state is left untouched.
        """
        reason = ci.validate_deactivation_reason(reason)
        row = await self._repo.get_finding(db, finding_id, organization_id, for_update=True)
        if row is None:
            raise NotFoundError("Contraindication not found")
        if not row.is_active:
            raise InvalidStateError("Contraindication is already inactive")

        await self._repo.deactivate_finding(db, row, reason=reason, deactivated_by=actor_id)
        resolved = await self._repo.resolve_contraindication_alerts(
            db,
            organization_id=organization_id,
            patient_id=str(row.patient_id),
            note=f"Contraindication deactivated: {reason}",
            finding_id=finding_id,
            rule_id=row.rule_id,
        )

        await self._audit(
            db,
            action="CONTRAINDICATION_DEACTIVATED",
            entity_type=_FINDING_ENTITY,
            entity_id=finding_id,
            actor_id=actor_id,
            organization_id=organization_id,
            changes={
                "procedure": row.procedure,
                "type": row.contraindication_type,
                "deactivation_reason": reason,
                "alerts_resolved": resolved,
            },
        )
        logger.info("Contraindication %s deactivated", finding_id)
        return self._to_finding_view(row)

    async def get_patient_contraindications(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        patient_id: str,
        include_inactive: bool = False,
    ) -> list[ContraindicationFindingView]:
        patient = await self._repo.get_patient(db, patient_id, organization_id)
        if patient is None:
            raise NotFoundError("Patient not found")
        rows = await self._repo.list_findings(
            db, patient_id, organization_id, include_inactive=include_inactive
        )
        return [self._to_finding_view(row) for row in rows]

    async def get_contraindication_stats(
        self, db: AsyncSession, *, organization_id: str
    ) -> ContraindicationStats:
        counts = await self._repo.finding_counts(db, organization_id)
        absolute = counts.get(ContraindicationType.ABSOLUTE.value, 0)
        relative = counts.get(ContraindicationType.RELATIVE.value, 0)
        precaution = counts.get(ContraindicationType.PRECAUTION.value, 0)
        return ContraindicationStats(
            absolute=absolute,
            relative=relative,
            precaution=precaution,
            overridden=counts.get("overridden", 0),
            inactive=counts.get("inactive", 0),
            active_total=absolute + relative + precaution,
        )

    # ==================================================================
    # Outcome prediction
    # ==================================================================

    async def predict_outcome(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        patient_id: str,
        diagnosis_code: str,
        diagnosis_description: str | None = None,
        treatment_approach: str | None = None,
        techniques: Sequence[str] = (),
        encounter_id: str | None = None,
        include_enrichment: bool = True,
    ) -> OutcomePredictionResult:
        """Predict the treatment outcome for a diagnosis and persist it.

        Comorbidities are the patient's other ACTIVE diagnoses.  Similar
        cases are past predictions in the same organization with a recorded
        actual outcome.  Enrichment may replace the narrative and timeline;
        the numeric fields are always rule-derived.
        """
        diagnosis_code = _require_text(diagnosis_code, "Diagnosis code")
        patient = await self._repo.get_patient(db, patient_id, organization_id)
        if patient is None:
            raise NotFoundError("Patient not found")

        chief_complaint = subjective = objective = ""
        if encounter_id is not None:
            encounter = await self._repo.get_encounter(db, encounter_id, organization_id)
            if encounter is None:
                raise NotFoundError("Encounter not found")
            chief_complaint = encounter.chief_complaint or ""
            subjective = encounter.subjective or ""
            objective = encounter.objective or ""

        age = calculate_age(patient.date_of_birth)
        duration = classify_duration(_join_text(chief_complaint, subjective))
        active = await self._repo.list_active_patient_diagnoses(db, patient_id, organization_id)
        comorbidities = [d.description for d in active if d.code != diagnosis_code]
        risk_factors = identify_risk_factors(
            chief_complaint=chief_complaint,
            subjective=subjective,
            objective=objective,
            age=age,
            duration=duration,
            comorbidities=comorbidities,
        )

        improvements = await self._repo.similar_case_improvements(
            db,
            organization_id=organization_id,
            code_prefix=diagnosis_code[:SIMILAR_CASE_CODE_PREFIX],
            age_range=(
                (age - SIMILAR_CASE_AGE_BAND, age + SIMILAR_CASE_AGE_BAND) if age is not None else None
            ),
            symptom_duration=duration.value if duration != SymptomDuration.UNKNOWN else None,
            limit=SIMILAR_CASE_LIMIT,
        )
        assessment = oc.assess_outcome(
            self._kb,
            condition_code=diagnosis_code,
            condition_description=diagnosis_description,
            duration=duration,
            age=age,
            risk_factors=risk_factors,
            comorbidities=comorbidities,
            similar=oc.similar_case_stats(improvements),
        )

        description = assessment.description
        timeline = assessment.timeline
        prognostic: dict[str, Any] = {
            **assessment.factors.model_dump(),
            "summary": assessment.prognostic_summary,
        }
        enrichment = None
        if self._use_enrichment(include_enrichment):
            enrichment = await self._enrichment.refine_outcome(
                OutcomeContext(
                    condition_code=diagnosis_code,
                    condition_description=diagnosis_description or "",
                    treatment_approach=treatment_approach,
                    patient_age=age,
                    symptom_duration=duration.value,
                    risk_factors=risk_factors,
                    comorbidities=comorbidities,
                    rule_improvement=assessment.improvement,
                    rule_timeline=assessment.timeline,
                )
            )
        if enrichment is not None:
            description = enrichment.predicted_outcome or description
            timeline = enrichment.timeline or timeline
            if enrichment.additional_factors:
                prognostic["insights"] = enrichment.additional_factors

        similar = assessment.similar_cases
        row = await self._repo.create_prediction(
            db,
            organization_id=organization_id,
            patient_id=patient_id,
            encounter_id=encounter_id,
            condition_code=diagnosis_code,
            condition_description=diagnosis_description or diagnosis_code,
            treatment_approach=treatment_approach,
            techniques=list(techniques),
            predicted_outcome=description,
            confidence=assessment.confidence,
            expected_timeline=timeline,
            expected_improvement=assessment.improvement,
            chronicity_risk=assessment.chronicity_risk,
            treatment_response=assessment.treatment_response.value,
            prognostic_factors=prognostic,
            similar_cases_count=similar.count,
            similar_cases_avg=similar.average_improvement,
            similar_cases=similar.distribution,
            patient_age=age,
            symptom_duration=duration.value,
            comorbidities=comorbidities,
            risk_factors=risk_factors,
            patient_explanation=assessment.patient_explanation,
            expectation_setting=assessment.expectation.model_dump(mode="json"),
        )

        alert_id = None
        if assessment.chronicity_risk > CHRONICITY_ALERT_THRESHOLD:
            severity = (
                Severity.HIGH
                if assessment.chronicity_risk > CHRONICITY_HIGH_THRESHOLD
                else Severity.MODERATE
            )
            alert = await self._repo.create_alert(
                db,
                organization_id=organization_id,
                patient_id=patient_id,
                encounter_id=encounter_id,
                alert_type=AlertType.OUTCOME_ALERT.value,
                severity=severity.value,
                message=(
                    f"Patient has {assessment.chronicity_risk:.0f}% risk of condition becoming chronic"
                ),
                recommendation=OUTCOME_ALERT_RECOMMENDATION,
                triggered_by=TRIGGER_OUTCOME,
                related_data={"prediction_id": str(row.id), "condition_code": diagnosis_code},
            )
            alert_id = str(alert.id)

        await self._audit(
            db,
            action="AI_OUTCOME_PREDICTION",
            entity_type=_PREDICTION_ENTITY,
            entity_id=str(row.id),
            actor_id=actor_id,
            organization_id=organization_id,
            changes={
                "diagnosis_code": diagnosis_code,
                "treatment_approach": treatment_approach,
                "confidence": assessment.confidence,
                "expected_improvement": assessment.improvement,
                "chronicity_risk": assessment.chronicity_risk,
                "similar_cases_count": similar.count,
                "enrichment_used": enrichment is not None,
            },
        )
        logger.info(
            "Outcome predicted for patient %s: prediction %s, %.0f%% improvement, %.0f%% chronicity",
            patient_id, row.id, assessment.improvement, assessment.chronicity_risk,
        )

        return OutcomePredictionResult(
            prediction=self._to_prediction_view(row),
            response_description=assessment.response_description,
            alert_id=alert_id,
            enrichment_used=enrichment is not None,
        )

    async def accept_outcome_prediction(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        prediction_id: str,
    ) -> OutcomePredictionView:
        row = await self._load_pending_prediction(db, prediction_id, organization_id)
        await self._repo.decide_prediction(
            db, row, status=PredictionStatus.ACCEPTED, decided_by=actor_id
        )
        await self._audit(
            db,
            action="OUTCOME_PREDICTION_ACCEPTED",
            entity_type=_PREDICTION_ENTITY,
            entity_id=prediction_id,
            actor_id=actor_id,
            organization_id=organization_id,
            changes={"condition_code": row.condition_code},
        )
        logger.info("Outcome prediction %s accepted", prediction_id)
        return self._to_prediction_view(row)

    async def reject_outcome_prediction(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        prediction_id: str,
        reason: str | None,
    ) -> OutcomePredictionView:
        reason = _require_text(reason, "Rejection reason")
        row = await self._load_pending_prediction(db, prediction_id, organization_id)
        await self._repo.decide_prediction(
            db,
            row,
            status=PredictionStatus.REJECTED,
            decided_by=actor_id,
            rejection_reason=reason,
        )
        await self._audit(
            db,
            action="OUTCOME_PREDICTION_REJECTED",
            entity_type=_PREDICTION_ENTITY,
            entity_id=prediction_id,
            actor_id=actor_id,
            organization_id=organization_id,
            changes={"condition_code": row.condition_code, "reason": reason},
        )
        logger.info("Outcome prediction %s rejected", prediction_id)
        return self._to_prediction_view(row)

    async def record_actual_outcome(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        prediction_id: str,
        actual_improvement: float,
        notes: str | None = None,
    ) -> OutcomePredictionView:
        """Record the observed improvement.  Write-once."""
        actual_improvement = oc.validate_actual_improvement(actual_improvement)
        row = await self._repo.get_prediction(db, prediction_id, organization_id, for_update=True)
        if row is None:
            raise NotFoundError("Outcome prediction not found")
        if row.actual_improvement is not None:
            raise InvalidStateError("Actual outcome has already been recorded")

        accurate = oc.is_accurate(actual_improvement, row.expected_improvement)
        await self._repo.record_actual_outcome(
            db, row, actual_improvement=actual_improvement, was_accurate=accurate, notes=notes
        )
        await self._audit(
            db,
            action="OUTCOME_ACTUAL_RECORDED",
            entity_type=_PREDICTION_ENTITY,
            entity_id=prediction_id,
            actor_id=actor_id,
            organization_id=organization_id,
            changes={
                "predicted_improvement": row.expected_improvement,
                "actual_improvement": actual_improvement,
                "was_accurate": accurate,
            },
        )
        logger.info("Actual outcome recorded for prediction %s (accurate=%s)", prediction_id, accurate)
        return self._to_prediction_view(row)

    async def get_patient_outcome_predictions(
        self, db: AsyncSession, *, organization_id: str, patient_id: str
    ) -> list[OutcomePredictionView]:
        patient = await self._repo.get_patient(db, patient_id, organization_id)
        if patient is None:
            raise NotFoundError("Patient not found")
        rows = await self._repo.list_predictions(db, patient_id, organization_id)
        return [self._to_prediction_view(row) for row in rows]

    async def get_outcome_prediction_stats(
        self, db: AsyncSession, *, organization_id: str
    ) -> OutcomePredictionStats:
        stats = await self._repo.prediction_stats(db, organization_id)
        recorded = stats["with_actual"]
        return OutcomePredictionStats(
            total=stats["total"],
            with_actual=recorded,
            accurate=stats["accurate"],
            accuracy_rate=round(stats["accurate"] / recorded * 100) if recorded else 0,
            mean_absolute_error=stats["mean_absolute_error"],
            mean_predicted_improvement=stats["mean_predicted_improvement"],
            by_status=stats["by_status"],
        )

    # ==================================================================
    # Alerts
    # ==================================================================

    async def get_patient_alerts(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        patient_id: str,
        encounter_id: str | None = None,
        include_acknowledged: bool = False,
    ) -> list[ClinicalAlertView]:
        """Alerts for a patient, most severe first, newest first within a severity.

        Only ACTIVE alerts unless *include_acknowledged* is set.
        """
        patient = await self._repo.get_patient(db, patient_id, organization_id)
        if patient is None:
            raise NotFoundError("Patient not found")
        rows = await self._repo.list_alerts(
            db,
            patient_id,
            organization_id,
            statuses=None if include_acknowledged else [AlertStatus.ACTIVE],
        )
        if encounter_id is not None:
            rows = [row for row in rows if str(row.encounter_id) == encounter_id]
        # list_alerts returns newest first; the stable sort keeps that per severity
        rows.sort(key=lambda row: SEVERITY_ORDER.index(row.severity))
        return [self._to_alert_view(row) for row in rows]

    async def acknowledge_alert(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        actor_id: str,
        alert_id: str,
        note: str | None = None,
    ) -> ClinicalAlertView:
        row = await self._repo.get_alert(db, alert_id, organization_id, for_update=True)
        if row is None:
            raise NotFoundError("Alert not found")
        if row.status != AlertStatus.ACTIVE:
            raise InvalidStateError(f"Alert is {row.status}, only ACTIVE alerts can be acknowledged")

        await self._repo.acknowledge_alert(db, row, acknowledged_by=actor_id, note=note)
        await self._audit(
            db,
            action="CLINICAL_ALERT_ACKNOWLEDGED",
            entity_type=_ALERT_ENTITY,
            entity_id=alert_id,
            actor_id=actor_id,
            organization_id=organization_id,
            changes={"alert_type": row.alert_type, "severity": row.severity, "note": note},
        )
        logger.info("Alert %s acknowledged", alert_id)
        return self._to_alert_view(row)

    # ==================================================================
    # Reference (no persistence)
    # ==================================================================

    async def recommend_treatment(
        self,
        *,
        diagnosis_code: str,
        diagnosis_description: str | None = None,
        chief_complaint: str | None = None,
        subjective: str | None = None,
        objective: str | None = None,
        age: int | None = None,
        preferences: Sequence[str] = (),
        include_enrichment: bool = True,
    ) -> TreatmentRecommendation:
        """Evidence-based treatment plan for a diagnosis.  Nothing is stored."""
        diagnosis_code = _require_text(diagnosis_code, "Diagnosis code")
        acuity = classify_acuity(chief_complaint, subjective, objective)
        red_flags = detect_red_flags(_join_text(chief_complaint, subjective, objective), self._kb)

        enrichment = None
        if self._use_enrichment(include_enrichment):
            enrichment = await self._enrichment.refine_treatment(
                TreatmentContext(
                    diagnosis_code=diagnosis_code,
                    diagnosis_description=diagnosis_description or "",
                    acuity=acuity.value,
                    chief_complaint=chief_complaint or "",
                    subjective=subjective or "",
                    objective=objective or "",
                    patient_age=age,
                    preferences=list(preferences),
                )
            )
        return build_treatment_plan(
            self._kb,
            diagnosis_code=diagnosis_code,
            diagnosis_description=diagnosis_description,
            acuity=acuity,
            red_flags=red_flags,
            age=age,
            preferences=preferences,
            enrichment=enrichment,
        )

    def find_guidelines(
        self, *, codes: Sequence[str], region: str | None = None
    ) -> list[GuidelineMatch]:
        return find_guidelines(self._kb, codes, region=region)

    # ==================================================================
    # Private helpers
    # ==================================================================

    async def _load_pending_prediction(
        self, db: AsyncSession, prediction_id: str, organization_id: str
    ) -> OutcomePrediction:
        row = await self._repo.get_prediction(db, prediction_id, organization_id, for_update=True)
        if row is None:
            raise NotFoundError("Outcome prediction not found")
        if row.status != PredictionStatus.PENDING:
            raise InvalidStateError("Outcome prediction has already been reviewed")
        return row

    async def _audit(
        self,
        db: AsyncSession,
        *,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: str,
        organization_id: str,
        changes: dict[str, Any],
    ) -> None:
        await self._repo.add_audit_entry(
            db,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            organization_id=organization_id,
            changes=changes,
        )

    # ------------------------------------------------------------------
    # Row -> view conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _to_existing_finding(row: ContraindicationFinding) -> ExistingFinding:
        return ExistingFinding(
            id=str(row.id),
            procedure=row.procedure,
            type=ContraindicationType(row.contraindication_type),
            reason=row.reason,
            rule_id=row.rule_id,
            is_overridden=row.is_overridden,
        )

    @staticmethod
    def _to_fired_rule_view(hit: FiredRule) -> FiredRuleView:
        rule = hit.rule
        return FiredRuleView(
            rule_id=rule.id,
            name=rule.name,
            type=rule.type,
            severity=hit.severity,
            reason=rule.reason,
            recommendation=rule.recommendation,
            matched_keywords=hit.matched_keywords,
            match_source=hit.match_source,
            overridable=rule.overridable,
            documentation_required=rule.documentation_required,
        )

    @staticmethod
    def _to_finding_view(row: ContraindicationFinding) -> ContraindicationFindingView:
        return ContraindicationFindingView(
            id=str(row.id),
            patient_id=str(row.patient_id),
            encounter_id=str(row.encounter_id) if row.encounter_id else None,
            procedure=row.procedure,
            procedure_code=row.procedure_code,
            type=ContraindicationType(row.contraindication_type),
            reason=row.reason,
            source=row.source,
            rule_id=row.rule_id,
            is_permanent=bool(row.is_permanent),
            review_date=row.review_date,
            expires_at=row.expires_at,
            is_overridden=bool(row.is_overridden),
            override_reason=row.override_reason,
            overridden_at=row.overridden_at,
            overridden_by=row.overridden_by,
            is_active=bool(row.is_active),
            deactivation_reason=row.deactivation_reason,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_suggestion_view(row: DiagnosisSuggestion) -> DiagnosisSuggestionView:
        return DiagnosisSuggestionView(
            id=str(row.id),
            encounter_id=str(row.encounter_id),
            code=row.code,
            description=row.description,
            confidence=row.confidence,
            reasoning=row.reasoning,
            supporting_findings=list(row.supporting_findings or []),
            has_red_flags=bool(row.has_red_flags),
            red_flag_details=row.red_flag_details,
            evidence_level=row.evidence_level,
            source=row.source,
            status=row.status,
            rejection_reason=row.rejection_reason,
            decided_by=row.decided_by,
            decided_at=row.decided_at,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_alert_view(row: ClinicalAlert) -> ClinicalAlertView:
        return ClinicalAlertView(
            id=str(row.id),
            patient_id=str(row.patient_id),
            encounter_id=str(row.encounter_id) if row.encounter_id else None,
            alert_type=row.alert_type,
            severity=Severity(row.severity),
            status=row.status,
            message=row.message,
            description=row.description,
            recommendation=row.recommendation,
            triggered_by=row.triggered_by,
            related_data=row.related_data,
            finding_id=str(row.finding_id) if row.finding_id else None,
            acknowledged_at=row.acknowledged_at,
            acknowledged_by=row.acknowledged_by,
            resolution_note=row.resolution_note,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_prediction_view(row: OutcomePrediction) -> OutcomePredictionView:
        return OutcomePredictionView(
            id=str(row.id),
            patient_id=str(row.patient_id),
            encounter_id=str(row.encounter_id) if row.encounter_id else None,
            condition_code=row.condition_code,
            condition_description=row.condition_description,
            treatment_approach=row.treatment_approach,
            techniques=list(row.techniques or []),
            predicted_outcome=row.predicted_outcome,
            confidence=row.confidence,
            expected_timeline=row.expected_timeline,
            expected_improvement=row.expected_improvement,
            chronicity_risk=row.chronicity_risk,
            treatment_response=TreatmentResponse(row.treatment_response),
            prognostic_factors=dict(row.prognostic_factors or {}),
            similar_cases={
                "count": row.similar_cases_count,
                "average_improvement": row.similar_cases_avg,
                "distribution": dict(row.similar_cases or {}),
            },
            patient_age=row.patient_age,
            symptom_duration=SymptomDuration(row.symptom_duration),
            comorbidities=list(row.comorbidities or []),
            risk_factors=list(row.risk_factors or []),
            patient_explanation=row.patient_explanation,
            expectation_setting=dict(row.expectation_setting or {}),
            status=row.status,
            decided_by=row.decided_by,
            decided_at=row.decided_at,
            rejection_reason=row.rejection_reason,
            actual_improvement=row.actual_improvement,
            was_accurate=row.was_accurate,
            outcome_notes=row.outcome_notes,
            actual_recorded_at=row.actual_recorded_at,
            created_at=row.created_at,
        )
