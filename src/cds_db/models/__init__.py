"""ORM models for cds_db."""

from cds_db.models.audit import AuditLogEntry
from cds_db.models.base import Base
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

__all__ = [
    "Base",
    "AlertStatus",
    "AlertType",
    "AuditLogEntry",
    "ClinicalAlert",
    "ContraindicationFinding",
    "Diagnosis",
    "DiagnosisStatus",
    "DiagnosisSuggestion",
    "Encounter",
    "OutcomePrediction",
    "Patient",
    "PredictionStatus",
    "SuggestionStatus",
]
