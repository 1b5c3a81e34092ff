"""Create the clinical decision support schema.

Creates patients, encounters, diagnoses, contraindication findings,
clinical alerts, diagnosis suggestions, outcome predictions and the
audit log.

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, TIMESTAMP, UUID

# revision identifiers, used by Alembic.
revision = "20261018_initial"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, TIMESTAMP(timezone=True), nullable=nullable)


def _text_array(name: str) -> sa.Column:
    return sa.Column(name, ARRAY(sa.Text), nullable=False, server_default=sa.text("'{}'"))


def _jsonb(name: str) -> sa.Column:
    return sa.Column(name, JSONB, nullable=False, server_default=sa.text("'{}'::jsonb"))


def upgrade() -> None:
    # --- Patients and encounters (owned by the practice system) ---
    op.create_table(
        "patients",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column("date_of_birth", sa.Date, nullable=True),
        sa.Column("gender", sa.Text, nullable=True),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_patients_organization_id", "patients", ["organization_id"])

    op.create_table(
        "encounters",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column(
            "patient_id",
            UUID(as_uuid=True),
            sa.ForeignKey("patients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider_id", sa.Text, nullable=True),
        sa.Column("chief_complaint", sa.Text, nullable=True),
        sa.Column("subjective", sa.Text, nullable=True),
        sa.Column("objective", sa.Text, nullable=True),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_encounters_organization_id", "encounters", ["organization_id"])
    op.create_index("ix_encounters_patient_id", "encounters", ["patient_id"])

    op.create_table(
        "diagnoses",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column(
            "encounter_id",
            UUID(as_uuid=True),
            sa.ForeignKey("encounters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("sequence", sa.SmallInteger, nullable=False),
        sa.Column("is_primary", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("notes", sa.Text, nullable=True),
        _ts("created_at", nullable=False),
        sa.CheckConstraint("sequence >= 1", name="ck_diagnosis_sequence_positive"),
    )
    op.create_index("ix_diagnoses_encounter_sequence", "diagnoses", ["encounter_id", "sequence"])
    op.create_index(
        "ix_diagnoses_one_primary",
        "diagnoses",
        ["encounter_id"],
        unique=True,
        postgresql_where=sa.text("is_primary"),
    )

    # --- Contraindication findings ---
    op.create_table(
        "contraindication_findings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column(
            "patient_id",
            UUID(as_uuid=True),
            sa.ForeignKey("patients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "encounter_id",
            UUID(as_uuid=True),
            sa.ForeignKey("encounters.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("procedure", sa.Text, nullable=False),
        sa.Column("procedure_code", sa.Text, nullable=True),
        sa.Column("contraindication_type", sa.String(20), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("source", sa.Text, nullable=True),
        sa.Column("rule_id", sa.Text, nullable=True),
        _jsonb("source_details"),
        sa.Column("identified_by", sa.Text, nullable=True),
        sa.Column("is_permanent", sa.Boolean, nullable=False, server_default=sa.text("false")),
        _ts("review_date"),
        _ts("expires_at"),
        sa.Column("is_overridden", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("override_reason", sa.Text, nullable=True),
        _ts("overridden_at"),
        sa.Column("overridden_by", sa.Text, nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column("deactivation_reason", sa.Text, nullable=True),
        _ts("deactivated_at"),
        sa.Column("deactivated_by", sa.Text, nullable=True),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        sa.CheckConstraint(
            "contraindication_type IN ('ABSOLUTE', 'RELATIVE', 'PRECAUTION')",
            name="ck_finding_type",
        ),
        sa.CheckConstraint(
            "NOT (contraindication_type = 'ABSOLUTE' AND is_overridden)",
            name="ck_absolute_not_overridden",
        ),
        sa.CheckConstraint(
            "NOT is_overridden OR override_reason IS NOT NULL",
            name="ck_overridden_has_reason",
        ),
    )
    op.create_index(
        "ix_findings_active_patient",
        "contraindication_findings",
        ["organization_id", "patient_id"],
        postgresql_where=sa.text("is_active"),
    )
    op.create_index(
        "ix_findings_rule_id",
        "contraindication_findings",
        ["rule_id"],
        postgresql_where=sa.text("rule_id IS NOT NULL"),
    )

    # --- Clinical alerts ---
    op.create_table(
        "clinical_alerts",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column(
            "patient_id",
            UUID(as_uuid=True),
            sa.ForeignKey("patients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "encounter_id",
            UUID(as_uuid=True),
            sa.ForeignKey("encounters.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "finding_id",
            UUID(as_uuid=True),
            sa.ForeignKey("contraindication_findings.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("alert_type", sa.String(20), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("recommendation", sa.Text, nullable=True),
        sa.Column("triggered_by", sa.Text, nullable=True),
        sa.Column("related_data", JSONB, nullable=True),
        _ts("acknowledged_at"),
        sa.Column("acknowledged_by", sa.Text, nullable=True),
        _ts("resolved_at"),
        sa.Column("resolution_note", sa.Text, nullable=True),
        _ts("created_at", nullable=False),
        sa.CheckConstraint(
            "alert_type IN ('RED_FLAG', 'CONTRAINDICATION', 'OUTCOME_ALERT')",
            name="ck_alert_type",
        ),
        sa.CheckConstraint(
            "status IN ('ACTIVE', 'ACKNOWLEDGED', 'RESOLVED')",
            name="ck_alert_status",
        ),
    )
    op.create_index(
        "ix_alerts_patient_status",
        "clinical_alerts",
        ["organization_id", "patient_id", "status"],
    )
    op.create_index(
        "ix_alerts_related_data_gin",
        "clinical_alerts",
        ["related_data"],
        postgresql_using="gin",
    )

    # --- Diagnosis suggestions ---
    op.create_table(
        "diagnosis_suggestions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column(
            "encounter_id",
            UUID(as_uuid=True),
            sa.ForeignKey("encounters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.Text, nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("confidence", sa.Float, nullable=False),
        sa.Column("reasoning", sa.Text, nullable=True),
        _text_array("supporting_findings"),
        sa.Column("has_red_flags", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("red_flag_details", sa.Text, nullable=True),
        sa.Column("evidence_level", sa.String(20), nullable=True),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("decided_by", sa.Text, nullable=True),
        _ts("decided_at"),
        _ts("created_at", nullable=False),
        sa.CheckConstraint("confidence BETWEEN 0 AND 100", name="ck_suggestion_confidence"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')",
            name="ck_suggestion_status",
        ),
        sa.CheckConstraint(
            "status != 'rejected' OR rejection_reason IS NOT NULL",
            name="ck_rejected_has_reason",
        ),
    )
    op.create_index(
        "ix_suggestions_encounter_status", "diagnosis_suggestions", ["encounter_id", "status"]
    )
    op.create_index(
        "ix_suggestions_org_status", "diagnosis_suggestions", ["organization_id", "status"]
    )

    # --- Outcome predictions ---
    op.create_table(
        "outcome_predictions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("organization_id", sa.Text, nullable=False),
        sa.Column(
            "patient_id",
            UUID(as_uuid=True),
            sa.ForeignKey("patients.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "encounter_id",
            UUID(as_uuid=True),
            sa.ForeignKey("encounters.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("condition_code", sa.Text, nullable=False),
        sa.Column("condition_description", sa.Text, nullable=True),
        sa.Column("treatment_approach", sa.Text, nullable=True),
        _text_array("techniques"),
        sa.Column("predicted_outcome", sa.Text, nullable=False),
        sa.Column("confidence", sa.Float, nullable=False),
        sa.Column("expected_timeline", sa.Text, nullable=False),
        sa.Column("expected_improvement", sa.Float, nullable=False),
        sa.Column("chronicity_risk", sa.Float, nullable=False),
        sa.Column("treatment_response", sa.String(20), nullable=False),
        _jsonb("prognostic_factors"),
        sa.Column("similar_cases_count", sa.SmallInteger, nullable=False, server_default=sa.text("0")),
        sa.Column("similar_cases_avg", sa.Float, nullable=True),
        _jsonb("similar_cases"),
        sa.Column("patient_age", sa.SmallInteger, nullable=True),
        sa.Column("symptom_duration", sa.String(20), nullable=False),
        _text_array("comorbidities"),
        _text_array("risk_factors"),
        sa.Column("patient_explanation", sa.Text, nullable=True),
        _jsonb("expectation_setting"),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("decided_by", sa.Text, nullable=True),
        _ts("decided_at"),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("actual_improvement", sa.Float, nullable=True),
        sa.Column("was_accurate", sa.Boolean, nullable=True),
        sa.Column("outcome_notes", sa.Text, nullable=True),
        _ts("actual_recorded_at"),
        _ts("created_at", nullable=False),
        sa.CheckConstraint("expected_improvement BETWEEN 10 AND 95", name="ck_prediction_improvement"),
        sa.CheckConstraint("confidence BETWEEN 40 AND 95", name="ck_prediction_confidence"),
        sa.CheckConstraint("chronicity_risk BETWEEN 5 AND 95", name="ck_prediction_chronicity"),
        sa.CheckConstraint(
            "actual_improvement IS NULL OR actual_improvement BETWEEN 0 AND 100",
            name="ck_actual_improvement_range",
        ),
        sa.CheckConstraint(
            "(actual_improvement IS NULL) = (actual_recorded_at IS NULL)",
            name="ck_actual_recorded_together",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')",
            name="ck_prediction_status",
        ),
    )
    op.create_index(
        "ix_predictions_patient", "outcome_predictions", ["organization_id", "patient_id"]
    )
    op.create_index(
        "ix_predictions_similar_cases",
        "outcome_predictions",
        ["organization_id", "condition_code"],
        postgresql_where=sa.text("actual_improvement IS NOT NULL"),
    )

    # --- Audit log ---
    op.create_table(
        "audit_log",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("action", sa.Text, nullable=False),
        sa.Column("entity_type", sa.Text, nullable=False),
        sa.Column("entity_id", sa.Text, nullable=False),
        sa.Column("actor_id", sa.Text, nullable=False),
        sa.Column("organization_id", sa.Text, nullable=False),
        _jsonb("changes"),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_audit_org_created", "audit_log", ["organization_id", "created_at"])
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("outcome_predictions")
    op.drop_table("diagnosis_suggestions")
    op.drop_table("clinical_alerts")
    op.drop_table("contraindication_findings")
    op.drop_table("diagnoses")
    op.drop_table("encounters")
    op.drop_table("patients")
