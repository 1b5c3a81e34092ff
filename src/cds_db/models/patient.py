"""Patient, Encounter and Diagnosis ORM models.

Patients and encounters are owned by the surrounding practice system; the
knowledge engine reads them and only ever writes Diagnosis rows (when a
suggestion is accepted).
"""

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    SmallInteger,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from cds_db.models.base import Base, utcnow
from cds_db.models.enums import DiagnosisStatus


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    gender: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<Patient(id={self.id!s}, org={self.organization_id!r})>"


class Encounter(Base):
    """One visit.  Chief complaint and SOAP text feed the extractor."""

    __tablename__ = "encounters"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    chief_complaint: Mapped[str | None] = mapped_column(Text, nullable=True)
    subjective: Mapped[str | None] = mapped_column(Text, nullable=True)
    objective: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return f"<Encounter(id={self.id!s}, patient={self.patient_id!s})>"


class Diagnosis(Base):
    """Coded diagnosis on an encounter, ordered by ``sequence``."""

    __tablename__ = "diagnoses"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)
    encounter_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("encounters.id", ondelete="CASCADE"), nullable=False
    )
    code: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    sequence: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DiagnosisStatus.ACTIVE.value,
        server_default=text("'ACTIVE'"),
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("sequence >= 1", name="ck_diagnosis_sequence_positive"),
        Index("ix_diagnoses_encounter_sequence", "encounter_id", "sequence"),
        # At most one primary diagnosis per encounter
        Index(
            "ix_diagnoses_one_primary",
            "encounter_id",
            unique=True,
            postgresql_where=text("is_primary"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Diagnosis(id={self.id!s}, code={self.code!r}, "
            f"seq={self.sequence}, primary={self.is_primary})>"
        )
