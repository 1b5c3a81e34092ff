"""Enumerations shared by the knowledge catalogs and the scoring modules."""

import enum


class ContraindicationType(str, enum.Enum):
    """How strongly a finding restricts a procedure.

    ABSOLUTE findings can never be overridden.
    """

    ABSOLUTE = "ABSOLUTE"
    RELATIVE = "RELATIVE"
    PRECAUTION = "PRECAUTION"


class Severity(str, enum.Enum):
    """Alert severity, most severe first (see ``SEVERITY_ORDER``)."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MODERATE = "MODERATE"
    LOW = "LOW"


class EvidenceSource(str, enum.Enum):
    """Which slice of patient evidence a contraindication rule scans."""

    CONDITION = "condition"
    MEDICATION = "medication"
    AGE = "age"
    SURGERY = "surgery"
    TRAUMA = "trauma"
    RED_FLAG = "red_flag"
    GENERAL = "general"


class SymptomDuration(str, enum.Enum):
    ACUTE = "acute"
    SUBACUTE = "subacute"
    CHRONIC = "chronic"
    UNKNOWN = "unknown"


class Acuity(str, enum.Enum):
    """Presentation acuity, drives visit frequency."""

    ACUTE = "acute"
    SUBACUTE = "subacute"
    CHRONIC = "chronic"
    WELLNESS = "wellness"


class SafetyStatus(str, enum.Enum):
    """Aggregate outcome of a contraindication check, most restrictive first."""

    ABSOLUTE = "ABSOLUTE"
    RELATIVE = "RELATIVE"
    PRECAUTION = "PRECAUTION"
    CLEAR = "CLEAR"


class RiskLevel(str, enum.Enum):
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class TreatmentResponse(str, enum.Enum):
    """Expected response category derived from predicted improvement."""

    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    MODERATE = "MODERATE"
    POOR = "POOR"


class SuggestionSource(str, enum.Enum):
    RULE_BASED = "rule_based"
    ENRICHMENT = "enrichment"
