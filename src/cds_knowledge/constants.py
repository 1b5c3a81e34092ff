"""Clinical decision support constants shared across the SDK.

These values are referenced by the extractor, scorer, contraindication
engine, outcome predictor, and orchestrator.  They mirror conventions
encoded in the YAML catalogs under ``data/``.

Several constants can be overridden via environment variables so that
deployments can adjust clinical thresholds without code changes.
"""

import os

# Alert severities ordered from most to least severe.
# Fired rules are sorted by position in this list; ties keep catalog order.
SEVERITY_ORDER: list[str] = ["CRITICAL", "HIGH", "MODERATE", "LOW"]

# Contraindication risk levels ordered from most to least severe.
RISK_ORDER: list[str] = ["VERY_HIGH", "HIGH", "MODERATE", "LOW"]

# Guideline evidence levels, strongest first.  Used to order guideline matches.
EVIDENCE_ORDER: list[str] = ["HIGH", "MODERATE", "LOW", "VERY_LOW", "EXPERT"]

# --- Evidence recency windows ---
# A surgery counts as evidence only within this many calendar months,
# a trauma event only within this many days.
SURGERY_WINDOW_MONTHS = int(os.getenv("SURGERY_WINDOW_MONTHS", "6"))
TRAUMA_WINDOW_DAYS = int(os.getenv("TRAUMA_WINDOW_DAYS", "14"))

# --- Age rules ---
# Patients older than this trigger ci-elderly-general.
ELDERLY_AGE_THRESHOLD = int(os.getenv("ELDERLY_AGE_THRESHOLD", "75"))
# Patients younger than this trigger ci-pediatric-cervical for cervical work.
PEDIATRIC_CERVICAL_AGE_THRESHOLD = int(os.getenv("PEDIATRIC_CERVICAL_AGE_THRESHOLD", "12"))
ELDERLY_RULE_ID = "ci-elderly-general"
PEDIATRIC_CERVICAL_RULE_ID = "ci-pediatric-cervical"

# Wildcard entry in a rule's affected procedures.
ALL_MANUAL_THERAPIES = "All Manual Therapies"

# --- Reason length minimums (characters, after stripping) ---
MIN_OVERRIDE_REASON_LENGTH = int(os.getenv("MIN_OVERRIDE_REASON_LENGTH", "10"))
MIN_CONTRAINDICATION_REASON_LENGTH = int(os.getenv("MIN_CONTRAINDICATION_REASON_LENGTH", "5"))
MIN_DEACTIVATION_REASON_LENGTH = int(os.getenv("MIN_DEACTIVATION_REASON_LENGTH", "5"))
# Manual findings whose reasons share this many leading characters are duplicates.
DUPLICATE_REASON_PREFIX = 50

# --- Diagnosis suggestions ---
DEFAULT_MAX_SUGGESTIONS = int(os.getenv("DEFAULT_MAX_SUGGESTIONS", "10"))
MAX_SUGGESTIONS_LIMIT = 20
# Rule-based suggestions must score strictly above this to be kept.
MIN_SUGGESTION_SCORE = 20

# --- Outcome prediction ---
# Weight of the rule-adjusted improvement when blending with similar cases.
RULE_BLEND_WEIGHT = float(os.getenv("RULE_BLEND_WEIGHT", "0.7"))
# A prediction is accurate when |actual - predicted| is within this band.
ACCURACY_TOLERANCE = float(os.getenv("ACCURACY_TOLERANCE", "15"))
SIMILAR_CASE_LIMIT = int(os.getenv("SIMILAR_CASE_LIMIT", "100"))
SIMILAR_CASE_AGE_BAND = int(os.getenv("SIMILAR_CASE_AGE_BAND", "10"))
# Similar cases share this many leading characters of the diagnosis code.
SIMILAR_CASE_CODE_PREFIX = 5
# Chronicity risk above which an OUTCOME_ALERT is raised, and above which it is HIGH.
CHRONICITY_ALERT_THRESHOLD = float(os.getenv("CHRONICITY_ALERT_THRESHOLD", "50"))
CHRONICITY_HIGH_THRESHOLD = float(os.getenv("CHRONICITY_HIGH_THRESHOLD", "70"))

# --- Alert provenance ---
TRIGGER_SUGGESTION = "AI Clinical Decision Support"
TRIGGER_CONTRAINDICATION = "AI Contraindication Check"
TRIGGER_OUTCOME = "AI Outcome Prediction"
TRIGGER_MANUAL = "Manual Contraindication Entry"
