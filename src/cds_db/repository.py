"""Async repository for clinical decision support records.

All public methods accept an ``AsyncSession`` so the caller controls
transaction boundaries: the repository only ``flush()``es, the HTTP
dependency commits.  Every read is scoped by ``organization_id``.

The repository deliberately avoids business-logic validation — that belongs
in the knowledge engine.  It *does* enforce structural invariants (e.g. an
absolute finding is never overridden) via DB constraints.

Identifiers arrive as strings; a malformed id behaves like a missing row.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cds_db.models.audit import AuditLogEntry
from cds_db.models.base import utcnow
from cds_db.models.clinical import (
    ClinicalAlert,
    ContraindicationFinding,
    DiagnosisSuggestion,
    OutcomePrediction,
)
from cds_db.models.enums import (
    AlertStatus,
    AlertType,
    DiagnosisStatus,
    PredictionStatus,
    SuggestionStatus,
)
from cds_db.models.patient import Diagnosis, Encounter, Patient


def _as_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class ClinicalRepository:
    """Async read/write operations for the knowledge engine."""

    # ------------------------------------------------------------------
    # Patients and encounters (read-only)
    # ------------------------------------------------------------------

    async def get_patient(
        self, db: AsyncSession, patient_id: str, organization_id: str
    ) -> Patient | None:
        pk = _as_uuid(patient_id)
        if pk is None:
            return None
        stmt = select(Patient).where(
            Patient.id == pk, Patient.organization_id == organization_id
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_encounter(
        self, db: AsyncSession, encounter_id: str, organization_id: str
    ) -> Encounter | None:
        pk = _as_uuid(encounter_id)
        if pk is None:
            return None
        stmt = select(Encounter).where(
            Encounter.id == pk, Encounter.organization_id == organization_id
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Diagnoses
    # ------------------------------------------------------------------

    async def list_encounter_diagnoses(
        self, db: AsyncSession, encounter_id: str, organization_id: str
    ) -> list[Diagnosis]:
        stmt = (
            select(Diagnosis)
            .where(
                Diagnosis.encounter_id == _as_uuid(encounter_id),
                Diagnosis.organization_id == organization_id,
            )
            .order_by(Diagnosis.sequence)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def list_active_patient_diagnoses(
        self, db: AsyncSession, patient_id: str, organization_id: str
    ) -> list[Diagnosis]:
        """ACTIVE diagnoses across all of a patient's encounters, one per code."""
        stmt = (
            select(Diagnosis)
            .join(Encounter, Encounter.id == Diagnosis.encounter_id)
            .where(
                Encounter.patient_id == _as_uuid(patient_id),
                Encounter.organization_id == organization_id,
                Diagnosis.status == DiagnosisStatus.ACTIVE,
            )
            .order_by(Diagnosis.code, Diagnosis.created_at)
            .distinct(Diagnosis.code)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def next_diagnosis_sequence(self, db: AsyncSession, encounter_id: str) -> int:
        stmt = select(func.max(Diagnosis.sequence)).where(
            Diagnosis.encounter_id == _as_uuid(encounter_id)
        )
        result = await db.execute(stmt)
        highest = result.scalar_one_or_none()
        return (highest or 0) + 1

    async def clear_primary_diagnoses(self, db: AsyncSession, encounter_id: str) -> None:
        stmt = (
            update(Diagnosis)
            .where(Diagnosis.encounter_id == _as_uuid(encounter_id), Diagnosis.is_primary.is_(True))
            .values(is_primary=False)
        )
        await db.execute(stmt)
        await db.flush()

    async def add_diagnosis(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        encounter_id: str,
        code: str,
        description: str,
        sequence: int,
        is_primary: bool,
        notes: str | None,
    ) -> Diagnosis:
        diagnosis = Diagnosis(
            organization_id=organization_id,
            encounter_id=_as_uuid(encounter_id),
            code=code,
            description=description,
            sequence=sequence,
            is_primary=is_primary,
            notes=notes,
        )
        db.add(diagnosis)
        await db.flush()
        return diagnosis

    # ------------------------------------------------------------------
    # Diagnosis suggestions
    # ------------------------------------------------------------------

    async def create_suggestion(self, db: AsyncSession, **fields: Any) -> DiagnosisSuggestion:
        fields["encounter_id"] = _as_uuid(fields["encounter_id"])
        suggestion = DiagnosisSuggestion(**fields)
        db.add(suggestion)
        await db.flush()
        return suggestion

    async def get_suggestion(
        self,
        db: AsyncSession,
        suggestion_id: str,
        organization_id: str,
        *,
        for_update: bool = False,
    ) -> DiagnosisSuggestion | None:
        pk = _as_uuid(suggestion_id)
        if pk is None:
            return None
        stmt = select(DiagnosisSuggestion).where(
            DiagnosisSuggestion.id == pk,
            DiagnosisSuggestion.organization_id == organization_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_suggestions(
        self,
        db: AsyncSession,
        encounter_id: str,
        organization_id: str,
        *,
        status: SuggestionStatus | None = None,
    ) -> list[DiagnosisSuggestion]:
        """Suggestions for an encounter, highest confidence first."""
        stmt = select(DiagnosisSuggestion).where(
            DiagnosisSuggestion.encounter_id == _as_uuid(encounter_id),
            DiagnosisSuggestion.organization_id == organization_id,
        )
        if status is not None:
            stmt = stmt.where(DiagnosisSuggestion.status == status)
        stmt = stmt.order_by(DiagnosisSuggestion.confidence.desc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def decide_suggestion(
        self,
        db: AsyncSession,
        suggestion: DiagnosisSuggestion,
        *,
        status: SuggestionStatus,
        decided_by: str,
        rejection_reason: str | None = None,
    ) -> DiagnosisSuggestion:
        suggestion.status = status.value
        suggestion.decided_by = decided_by
        suggestion.decided_at = utcnow()
        suggestion.rejection_reason = rejection_reason
        await db.flush()
        return suggestion

    async def suggestion_status_counts(
        self, db: AsyncSession, organization_id: str, *, since: datetime | None = None
    ) -> dict[str, int]:
        stmt = select(DiagnosisSuggestion.status, func.count()).where(
            DiagnosisSuggestion.organization_id == organization_id
        )
        if since is not None:
            stmt = stmt.where(DiagnosisSuggestion.created_at >= since)
        stmt = stmt.group_by(DiagnosisSuggestion.status)
        result = await db.execute(stmt)
        return {status: count for status, count in result.all()}

    async def top_suggestion_codes(
        self,
        db: AsyncSession,
        organization_id: str,
        status: SuggestionStatus,
        *,
        since: datetime | None = None,
        limit: int = 5,
    ) -> list[tuple[str, int]]:
        count = func.count().label("n")
        stmt = select(DiagnosisSuggestion.code, count).where(
            DiagnosisSuggestion.organization_id == organization_id,
            DiagnosisSuggestion.status == status,
        )
        if since is not None:
            stmt = stmt.where(DiagnosisSuggestion.created_at >= since)
        stmt = stmt.group_by(DiagnosisSuggestion.code).order_by(count.desc()).limit(limit)
        result = await db.execute(stmt)
        return [(code, n) for code, n in result.all()]

    # ------------------------------------------------------------------
    # Contraindication findings
    # ------------------------------------------------------------------

    async def create_finding(self, db: AsyncSession, **fields: Any) -> ContraindicationFinding:
        fields["patient_id"] = _as_uuid(fields["patient_id"])
        fields["encounter_id"] = _as_uuid(fields.get("encounter_id"))
        finding = ContraindicationFinding(**fields)
        db.add(finding)
        await db.flush()
        return finding

    async def get_finding(
        self,
        db: AsyncSession,
        finding_id: str,
        organization_id: str,
        *,
        for_update: bool = False,
    ) -> ContraindicationFinding | None:
        """Fetch a finding; ``for_update`` serializes concurrent overrides."""
        pk = _as_uuid(finding_id)
        if pk is None:
            return None
        stmt = select(ContraindicationFinding).where(
            ContraindicationFinding.id == pk,
            ContraindicationFinding.organization_id == organization_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_findings(
        self,
        db: AsyncSession,
        patient_id: str,
        organization_id: str,
        *,
        include_inactive: bool = False,
    ) -> list[ContraindicationFinding]:
        stmt = select(ContraindicationFinding).where(
            ContraindicationFinding.patient_id == _as_uuid(patient_id),
            ContraindicationFinding.organization_id == organization_id,
        )
        if not include_inactive:
            stmt = stmt.where(ContraindicationFinding.is_active.is_(True))
        stmt = stmt.order_by(ContraindicationFinding.created_at.desc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def override_finding(
        self,
        db: AsyncSession,
        finding: ContraindicationFinding,
        *,
        reason: str,
        overridden_by: str,
    ) -> ContraindicationFinding:
        finding.is_overridden = True
        finding.override_reason = reason
        finding.overridden_at = utcnow()
        finding.overridden_by = overridden_by
        await db.flush()
        return finding

    async def deactivate_finding(
        self,
        db: AsyncSession,
        finding: ContraindicationFinding,
        *,
        reason: str,
        deactivated_by: str,
    ) -> ContraindicationFinding:
        finding.is_active = False
        finding.deactivation_reason = reason
        finding.deactivated_at = utcnow()
        finding.deactivated_by = deactivated_by
        await db.flush()
        return finding

    async def finding_counts(self, db: AsyncSession, organization_id: str) -> dict[str, int]:
        """Active finding counts keyed by type, plus ``overridden`` and ``inactive``."""
        stmt = (
            select(ContraindicationFinding.contraindication_type, func.count())
            .where(
                ContraindicationFinding.organization_id == organization_id,
                ContraindicationFinding.is_active.is_(True),
            )
            .group_by(ContraindicationFinding.contraindication_type)
        )
        result = await db.execute(stmt)
        counts = {t: n for t, n in result.all()}

        overridden = await db.execute(
            select(func.count()).where(
                ContraindicationFinding.organization_id == organization_id,
                ContraindicationFinding.is_active.is_(True),
                ContraindicationFinding.is_overridden.is_(True),
            )
        )
        inactive = await db.execute(
            select(func.count()).where(
                ContraindicationFinding.organization_id == organization_id,
                ContraindicationFinding.is_active.is_(False),
            )
        )
        counts["overridden"] = overridden.scalar_one()
        counts["inactive"] = inactive.scalar_one()
        return counts

    # ------------------------------------------------------------------
    # Clinical alerts
    # ------------------------------------------------------------------

    async def create_alert(self, db: AsyncSession, **fields: Any) -> ClinicalAlert:
        fields["patient_id"] = _as_uuid(fields["patient_id"])
        fields["encounter_id"] = _as_uuid(fields.get("encounter_id"))
        fields["finding_id"] = _as_uuid(fields.get("finding_id"))
        alert = ClinicalAlert(**fields)
        db.add(alert)
        await db.flush()
        return alert

    async def get_alert(
        self,
        db: AsyncSession,
        alert_id: str,
        organization_id: str,
        *,
        for_update: bool = False,
    ) -> ClinicalAlert | None:
        pk = _as_uuid(alert_id)
        if pk is None:
            return None
        stmt = select(ClinicalAlert).where(
            ClinicalAlert.id == pk, ClinicalAlert.organization_id == organization_id
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_alerts(
        self,
        db: AsyncSession,
        patient_id: str,
        organization_id: str,
        *,
        statuses: list[AlertStatus] | None = None,
    ) -> list[ClinicalAlert]:
        stmt = select(ClinicalAlert).where(
            ClinicalAlert.patient_id == _as_uuid(patient_id),
            ClinicalAlert.organization_id == organization_id,
        )
        if statuses:
            stmt = stmt.where(ClinicalAlert.status.in_(statuses))
        stmt = stmt.order_by(ClinicalAlert.created_at.desc())
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def acknowledge_alert(
        self,
        db: AsyncSession,
        alert: ClinicalAlert,
        *,
        acknowledged_by: str,
        note: str | None = None,
    ) -> ClinicalAlert:
        alert.status = AlertStatus.ACKNOWLEDGED.value
        alert.acknowledged_at = utcnow()
        alert.acknowledged_by = acknowledged_by
        if note:
            alert.resolution_note = note
        await db.flush()
        return alert

    async def resolve_contraindication_alerts(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        patient_id: str,
        note: str,
        finding_id: str | None = None,
        procedure: str | None = None,
        rule_id: str | None = None,
    ) -> int:
        """Resolve ACTIVE contraindication alerts tied to a finding.

        An alert is tied when it links the finding directly, or its related
        data names the same procedure or rule.  Returns the number resolved.
        """
        ties = []
        if finding_id is not None:
            ties.append(ClinicalAlert.finding_id == _as_uuid(finding_id))
        if procedure is not None:
            ties.append(ClinicalAlert.related_data["procedure"].astext == procedure)
        if rule_id is not None:
            ties.append(ClinicalAlert.related_data["rule_id"].astext == rule_id)
        if not ties:
            return 0

        stmt = (
            update(ClinicalAlert)
            .where(
                ClinicalAlert.organization_id == organization_id,
                ClinicalAlert.patient_id == _as_uuid(patient_id),
                ClinicalAlert.alert_type == AlertType.CONTRAINDICATION,
                ClinicalAlert.status == AlertStatus.ACTIVE,
                or_(*ties),
            )
            .values(status=AlertStatus.RESOLVED.value, resolved_at=utcnow(), resolution_note=note)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        await db.flush()
        return result.rowcount or 0

    # ------------------------------------------------------------------
    # Outcome predictions
    # ------------------------------------------------------------------

    async def create_prediction(self, db: AsyncSession, **fields: Any) -> OutcomePrediction:
        fields["patient_id"] = _as_uuid(fields["patient_id"])
        fields["encounter_id"] = _as_uuid(fields.get("encounter_id"))
        prediction = OutcomePrediction(**fields)
        db.add(prediction)
        await db.flush()
        return prediction

    async def get_prediction(
        self,
        db: AsyncSession,
        prediction_id: str,
        organization_id: str,
        *,
        for_update: bool = False,
    ) -> OutcomePrediction | None:
        pk = _as_uuid(prediction_id)
        if pk is None:
            return None
        stmt = select(OutcomePrediction).where(
            OutcomePrediction.id == pk,
            OutcomePrediction.organization_id == organization_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_predictions(
        self, db: AsyncSession, patient_id: str, organization_id: str
    ) -> list[OutcomePrediction]:
        stmt = (
            select(OutcomePrediction)
            .where(
                OutcomePrediction.patient_id == _as_uuid(patient_id),
                OutcomePrediction.organization_id == organization_id,
            )
            .order_by(OutcomePrediction.created_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def decide_prediction(
        self,
        db: AsyncSession,
        prediction: OutcomePrediction,
        *,
        status: PredictionStatus,
        decided_by: str,
        rejection_reason: str | None = None,
    ) -> OutcomePrediction:
        prediction.status = status.value
        prediction.decided_by = decided_by
        prediction.decided_at = utcnow()
        prediction.rejection_reason = rejection_reason
        await db.flush()
        return prediction

    async def record_actual_outcome(
        self,
        db: AsyncSession,
        prediction: OutcomePrediction,
        *,
        actual_improvement: float,
        was_accurate: bool,
        notes: str | None,
    ) -> OutcomePrediction:
        prediction.actual_improvement = actual_improvement
        prediction.was_accurate = was_accurate
        prediction.outcome_notes = notes
        prediction.actual_recorded_at = utcnow()
        await db.flush()
        return prediction

    async def similar_case_improvements(
        self,
        db: AsyncSession,
        *,
        organization_id: str,
        code_prefix: str,
        age_range: tuple[int, int] | None,
        symptom_duration: str | None,
        limit: int,
    ) -> list[float]:
        """Recorded actual improvements of comparable past predictions."""
        stmt = select(OutcomePrediction.actual_improvement).where(
            OutcomePrediction.organization_id == organization_id,
            OutcomePrediction.condition_code.startswith(code_prefix, autoescape=True),
            OutcomePrediction.actual_improvement.is_not(None),
        )
        if age_range is not None:
            low, high = age_range
            stmt = stmt.where(OutcomePrediction.patient_age.between(low, high))
        if symptom_duration is not None:
            stmt = stmt.where(OutcomePrediction.symptom_duration == symptom_duration)
        stmt = stmt.limit(limit)
        result = await db.execute(stmt)
        return [float(v) for v in result.scalars().all()]

    async def prediction_stats(self, db: AsyncSession, organization_id: str) -> dict[str, Any]:
        """Totals, recorded outcomes, accuracy and average error for an organization."""
        stmt = select(
            func.count(),
            func.count(OutcomePrediction.actual_improvement),
            func.count().filter(OutcomePrediction.was_accurate.is_(True)),
            func.avg(
                func.abs(OutcomePrediction.actual_improvement - OutcomePrediction.expected_improvement)
            ),
            func.avg(OutcomePrediction.expected_improvement),
        ).where(OutcomePrediction.organization_id == organization_id)
        result = await db.execute(stmt)
        total, recorded, accurate, mean_error, mean_predicted = result.one()

        by_status = await db.execute(
            select(OutcomePrediction.status, func.count())
            .where(OutcomePrediction.organization_id == organization_id)
            .group_by(OutcomePrediction.status)
        )
        return {
            "total": total,
            "with_actual": recorded,
            "accurate": accurate,
            "mean_absolute_error": float(mean_error) if mean_error is not None else None,
            "mean_predicted_improvement": float(mean_predicted) if mean_predicted is not None else None,
            "by_status": {status: n for status, n in by_status.all()},
        }

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    async def add_audit_entry(
        self,
        db: AsyncSession,
        *,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: str,
        organization_id: str,
        changes: dict[str, Any],
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            actor_id=actor_id,
            organization_id=organization_id,
            changes=changes,
        )
        db.add(entry)
        await db.flush()
        return entry
