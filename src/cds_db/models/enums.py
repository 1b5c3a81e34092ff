"""Database-level enumerations for clinical decision support records.

Severity and contraindication type are stored as plain strings; their
vocabularies belong to the knowledge engine, not to the store.
"""

import enum


class AlertType(str, enum.Enum):
    RED_FLAG = "RED_FLAG"
    CONTRAINDICATION = "CONTRAINDICATION"
    OUTCOME_ALERT = "OUTCOME_ALERT"


class AlertStatus(str, enum.Enum):
    """Lifecycle of a clinical alert.

    Transitions:
        ACTIVE -> ACKNOWLEDGED  (provider has seen it)
        ACTIVE | ACKNOWLEDGED -> RESOLVED  (override, deactivation)
    """

    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


class SuggestionStatus(str, enum.Enum):
    """Decision state of a diagnosis suggestion.

    Transitions:
        pending -> accepted
        pending -> rejected
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class PredictionStatus(str, enum.Enum):
    """Decision state of an outcome prediction (same shape as suggestions)."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class DiagnosisStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    RESOLVED = "RESOLVED"
