"""Clinical decision support ORM models.

    - ContraindicationFinding: patient-level safety finding, never hard-deleted
    - ClinicalAlert: RED_FLAG / CONTRAINDICATION / OUTCOME_ALERT notices
    - DiagnosisSuggestion: ranked code suggestion awaiting a decision
    - OutcomePrediction: blended outcome estimate with write-once actuals

Structured detail that is only ever read back whole (rule match details,
prognostic factors, expectation setting) lives in JSONB columns.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    SmallInteger,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cds_db.models.base import Base, utcnow
from cds_db.models.enums import AlertStatus, PredictionStatus, SuggestionStatus


class ContraindicationFinding(Base):
    """A contraindication recorded against a patient for a procedure.

    Rule-generated findings carry ``rule_id``; manual entries do not.
    Findings are deactivated, never deleted.
    """

    __tablename__ = "contraindication_findings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    encounter_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("encounters.id", ondelete="SET NULL"), nullable=True
    )

    # --- What is contraindicated and why ---
    procedure: Mapped[str] = mapped_column(Text, nullable=False)
    procedure_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    contraindication_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    source: Mapped[str | None] = mapped_column(Text, nullable=True)
    rule_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    # {"rule_id": ..., "matched_keywords": [...]} for rule findings
    source_details: Mapped[dict] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )
    identified_by: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Review lifecycle ---
    is_permanent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review_date: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    # --- Override ---
    is_overridden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    override_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    overridden_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    overridden_by: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Deactivation ---
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deactivation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    deactivated_by: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "contraindication_type IN ('ABSOLUTE', 'RELATIVE', 'PRECAUTION')",
            name="ck_finding_type",
        ),
        # An absolute contraindication can never be overridden
        CheckConstraint(
            "NOT (contraindication_type = 'ABSOLUTE' AND is_overridden)",
            name="ck_absolute_not_overridden",
        ),
        CheckConstraint(
            "NOT is_overridden OR override_reason IS NOT NULL",
            name="ck_overridden_has_reason",
        ),
        Index(
            "ix_findings_active_patient",
            "organization_id",
            "patient_id",
            postgresql_where=text("is_active"),
        ),
        Index("ix_findings_rule_id", "rule_id", postgresql_where=text("rule_id IS NOT NULL")),
    )

    def __repr__(self) -> str:
        return (
            f"<ContraindicationFinding(id={self.id!s}, procedure={self.procedure!r}, "
            f"type={self.contraindication_type!r}, active={self.is_active}, "
            f"overridden={self.is_overridden})>"
        )


class ClinicalAlert(Base):
    __tablename__ = "clinical_alerts"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    encounter_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("encounters.id", ondelete="SET NULL"), nullable=True
    )
    finding_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("contraindication_findings.id", ondelete="SET NULL"),
        nullable=True,
    )

    alert_type: Mapped[str] = mapped_column(String(20), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AlertStatus.ACTIVE.value,
        server_default=text("'ACTIVE'"),
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    recommendation: Mapped[str | None] = mapped_column(Text, nullable=True)
    triggered_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    # {"rule_id", "procedure", "procedure_code", "contraindication_type", ...}
    related_data: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    acknowledged_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    acknowledged_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "alert_type IN ('RED_FLAG', 'CONTRAINDICATION', 'OUTCOME_ALERT')",
            name="ck_alert_type",
        ),
        CheckConstraint(
            "status IN ('ACTIVE', 'ACKNOWLEDGED', 'RESOLVED')",
            name="ck_alert_status",
        ),
        Index("ix_alerts_patient_status", "organization_id", "patient_id", "status"),
        Index("ix_alerts_related_data_gin", "related_data", postgresql_using="gin"),
    )

    def __repr__(self) -> str:
        return (
            f"<ClinicalAlert(id={self.id!s}, type={self.alert_type!r}, "
            f"severity={self.severity!r}, status={self.status!r})>"
        )


class DiagnosisSuggestion(Base):
    """Suggested diagnosis code for an encounter.

    ``status`` is exactly one of pending / accepted / rejected; only pending
    suggestions may transition.
    """

    __tablename__ = "diagnosis_suggestions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    encounter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("encounters.id", ondelete="CASCADE"), nullable=False
    )
    code: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    supporting_findings: Mapped[list[str]] = mapped_column(
        ARRAY(Text), nullable=False, server_default=text("'{}'")
    )
    has_red_flags: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    red_flag_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence_level: Mapped[str | None] = mapped_column(String(20), nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SuggestionStatus.PENDING.value,
        server_default=text("'pending'"),
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("confidence BETWEEN 0 AND 100", name="ck_suggestion_confidence"),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')",
            name="ck_suggestion_status",
        ),
        CheckConstraint(
            "status != 'rejected' OR rejection_reason IS NOT NULL",
            name="ck_rejected_has_reason",
        ),
        Index("ix_suggestions_encounter_status", "encounter_id", "status"),
        Index("ix_suggestions_org_status", "organization_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<DiagnosisSuggestion(id={self.id!s}, code={self.code!r}, "
            f"confidence={self.confidence}, status={self.status!r})>"
        )


class OutcomePrediction(Base):
    """Predicted treatment outcome.

    The ``actual_*`` fields and ``was_accurate`` are written at most once.
    """

    __tablename__ = "outcome_predictions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    encounter_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("encounters.id", ondelete="SET NULL"), nullable=True
    )

    # --- Condition and plan ---
    condition_code: Mapped[str] = mapped_column(Text, nullable=False)
    condition_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    treatment_approach: Mapped[str | None] = mapped_column(Text, nullable=True)
    techniques: Mapped[list[str]] = mapped_column(
        ARRAY(Text), nullable=False, server_default=text("'{}'")
    )

    # --- Prediction ---
    predicted_outcome: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    expected_timeline: Mapped[str] = mapped_column(Text, nullable=False)
    expected_improvement: Mapped[float] = mapped_column(Float, nullable=False)
    chronicity_risk: Mapped[float] = mapped_column(Float, nullable=False)
    treatment_response: Mapped[str] = mapped_column(String(20), nullable=False)
    # {"favorable": [...], "unfavorable": [...], "neutral": [...], "summary": ..., "insights": [...]}
    prognostic_factors: Mapped[dict] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )
    similar_cases_count: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    similar_cases_avg: Mapped[float | None] = mapped_column(Float, nullable=True)
    similar_cases: Mapped[dict] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )

    # --- Patient snapshot (used for similar-case lookups) ---
    patient_age: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    symptom_duration: Mapped[str] = mapped_column(String(20), nullable=False)
    comorbidities: Mapped[list[str]] = mapped_column(
        ARRAY(Text), nullable=False, server_default=text("'{}'")
    )
    risk_factors: Mapped[list[str]] = mapped_column(
        ARRAY(Text), nullable=False, server_default=text("'{}'")
    )
    patient_explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    expectation_setting: Mapped[dict] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )

    # --- Decision ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PredictionStatus.PENDING.value,
        server_default=text("'pending'"),
    )
    decided_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Actual outcome (write-once) ---
    actual_improvement: Mapped[float | None] = mapped_column(Float, nullable=True)
    was_accurate: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    outcome_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    actual_recorded_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("expected_improvement BETWEEN 10 AND 95", name="ck_prediction_improvement"),
        CheckConstraint("confidence BETWEEN 40 AND 95", name="ck_prediction_confidence"),
        CheckConstraint("chronicity_risk BETWEEN 5 AND 95", name="ck_prediction_chronicity"),
        CheckConstraint(
            "actual_improvement IS NULL OR actual_improvement BETWEEN 0 AND 100",
            name="ck_actual_improvement_range",
        ),
        CheckConstraint(
            "(actual_improvement IS NULL) = (actual_recorded_at IS NULL)",
            name="ck_actual_recorded_together",
        ),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')",
            name="ck_prediction_status",
        ),
        Index("ix_predictions_patient", "organization_id", "patient_id"),
        # Similar-case lookups only consider rows with a recorded outcome
        Index(
            "ix_predictions_similar_cases",
            "organization_id",
            "condition_code",
            postgresql_where=text("actual_improvement IS NOT NULL"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<OutcomePrediction(id={self.id!s}, code={self.condition_code!r}, "
            f"improvement={self.expected_improvement}, status={self.status!r})>"
        )
