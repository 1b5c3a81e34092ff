"""cds_db — PostgreSQL persistence layer for clinical decision support.

This package provides the ORM models, async engine factory, and repository
for the records the knowledge engine reads and writes: patients and
encounters (read-only), diagnoses, contraindication findings, clinical
alerts, diagnosis suggestions, outcome predictions and the audit log.
"""

from cds_db.engine import get_engine, get_session_factory
from cds_db.models import (
    AlertStatus,
    AlertType,
    AuditLogEntry,
    ClinicalAlert,
    ContraindicationFinding,
    Diagnosis,
    DiagnosisSuggestion,
    Encounter,
    OutcomePrediction,
    Patient,
    PredictionStatus,
    SuggestionStatus,
)
from cds_db.repository import ClinicalRepository

__all__ = [
    "AlertStatus",
    "AlertType",
    "AuditLogEntry",
    "ClinicalAlert",
    "ClinicalRepository",
    "ContraindicationFinding",
    "Diagnosis",
    "DiagnosisSuggestion",
    "Encounter",
    "OutcomePrediction",
    "Patient",
    "PredictionStatus",
    "SuggestionStatus",
    "get_engine",
    "get_session_factory",
]
