"""Evidence extraction — turns free text and structured history into
normalized keyword hits, duration/acuity classes and risk-factor labels.

Everything here is pure and total: empty or missing input produces empty
lists and the ``unknown`` / ``subacute`` defaults, never an error.
Matching is plain lowercase substring and regular-expression search.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta, timezone
from typing import Iterable

from cds_knowledge.constants import SURGERY_WINDOW_MONTHS, TRAUMA_WINDOW_DAYS
from cds_knowledge.knowledge import KnowledgeBase
from cds_knowledge.models.enums import Acuity, SymptomDuration
from cds_knowledge.models.evidence import ClinicalEvent
from cds_knowledge.models.results import RedFlagHit

# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

REGION_TERMS: tuple[str, ...] = (
    "cervical", "thoracic", "lumbar", "sacral", "pelvic",
    "neck", "back", "lower back", "upper back", "mid back",
)
SYMPTOM_TERMS: tuple[str, ...] = (
    "pain", "stiffness", "numbness", "tingling", "weakness",
    "spasm", "tension", "headache", "radiating", "shooting",
)
CONDITION_TERMS: tuple[str, ...] = (
    "sciatica", "radiculopathy", "disc", "spondylosis",
    "subluxation", "dysfunction", "sprain", "strain",
)

# Keyword -> catalog region it points at (used for the region bonus).
REGION_INDICATORS: dict[str, str] = {
    "lower back": "lumbar",
    "lumbar": "lumbar",
    "neck": "cervical",
    "cervical": "cervical",
    "upper back": "thoracic",
    "mid back": "thoracic",
    "thoracic": "thoracic",
}

# Checked in this order; the first family with a hit wins.
_CHRONIC_PATTERNS = [
    re.compile(p) for p in (
        r"\b(4|5|6|7|8|9|10|11|12)\s*months?\b",
        r"\byears?\b",
        r"\blong[- ]?term\b",
        r"\bchronic\b",
        r"\bpersistent\b",
        r"\bongoing\b",
        r"\bhistory of\b",
        r"\brecurrent\b",
    )
]
_SUBACUTE_PATTERNS = [
    re.compile(p) for p in (
        r"\b(3|4|5|6|7|8)\s*weeks?\b",
        r"\b(1|2|3)\s*months?\b",
        r"\bfor weeks\b",
        r"\bgradual(ly)?\b",
        r"\bprogressive\b",
    )
]
_ACUTE_PATTERNS = [
    re.compile(p) for p in (
        r"\b(\d+)\s*days?\b",
        r"\brecent(ly)?\b",
        r"\bsudden(ly)?\b",
        r"\bjust started\b",
        r"\bthis (week|morning|yesterday)\b",
        r"\ba (few|couple) days\b",
        r"\b(1|2)\s*weeks?\b",
    )
]

_ACUITY_CHRONIC = ("chronic", "years", "months", "long-term", "ongoing", "persistent", "recurrent")
_ACUITY_ACUTE = (
    "sudden", "acute", "yesterday", "today", "this morning", "last night",
    "days ago", "recent injury", "just started",
)
_ACUITY_WELLNESS = ("wellness", "maintenance", "prevention", "check-up", "routine")

# (pattern, label) pairs scanned over the combined encounter text.
_LIFESTYLE_RISKS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"sedentary|inactive|desk job|sits? all day"), "Sedentary lifestyle"),
    (re.compile(r"smok(e|ing|er)"), "Smoking history"),
    (re.compile(r"overweight|obese|obes"), "Overweight/obesity"),
    (re.compile(r"depress|anxiety|stress(ed|ful)?|anxious"), "Psychological distress"),
    (re.compile(r"fear[- ]?avoid|catastroph"), "Fear avoidance behavior"),
    (re.compile(r"heavy lifting|physical labor|manual work"), "Heavy physical work"),
    (re.compile(r"worker'?s? comp|work[- ]?related|on the job"), "Workers compensation case"),
    (re.compile(r"failed|not respond|didn'?t (help|work)|previous treatment"), "Previous treatment failure"),
]
_NEUROLOGICAL = re.compile(r"radiating|radicular|sciatica|numbness|tingling|weakness")
_RISKY_COMORBIDITIES = ("diabetes", "fibromyalgia", "depression", "anxiety", "obesity")


def _join(*texts: str | None) -> str:
    return " ".join(t for t in texts if t).lower()


# ---------------------------------------------------------------------------
# Keywords and red flags
# ---------------------------------------------------------------------------

def extract_keywords(text: str | None) -> list[str]:
    """Return vocabulary terms found in *text*, deduplicated, in vocabulary order."""
    lowered = (text or "").lower()
    seen: list[str] = []
    for term in (*REGION_TERMS, *SYMPTOM_TERMS, *CONDITION_TERMS):
        if term in lowered and term not in seen:
            seen.append(term)
    return seen


def detect_red_flags(text: str | None, kb: KnowledgeBase) -> list[RedFlagHit]:
    """Every red flag with at least one keyword in *text*, catalog order."""
    lowered = (text or "").lower()
    hits: list[RedFlagHit] = []
    for flag in kb.red_flags:
        matched = [kw for kw in flag.keywords if kw.lower() in lowered]
        if matched:
            hits.append(
                RedFlagHit(
                    type=flag.type,
                    severity=flag.severity,
                    message=flag.message,
                    recommendation=flag.recommendation,
                    matched_keywords=matched,
                )
            )
    return hits


# ---------------------------------------------------------------------------
# Duration and acuity
# ---------------------------------------------------------------------------

def classify_duration(text: str | None) -> SymptomDuration:
    """Classify symptom duration; chronic beats subacute beats acute."""
    lowered = (text or "").lower()
    if not lowered.strip():
        return SymptomDuration.UNKNOWN
    for patterns, result in (
        (_CHRONIC_PATTERNS, SymptomDuration.CHRONIC),
        (_SUBACUTE_PATTERNS, SymptomDuration.SUBACUTE),
        (_ACUTE_PATTERNS, SymptomDuration.ACUTE),
    ):
        if any(p.search(lowered) for p in patterns):
            return result
    return SymptomDuration.UNKNOWN


def classify_acuity(*texts: str | None) -> Acuity:
    """Classify presentation acuity from keyword presence.

    Wellness only when neither acute nor chronic indicators are present;
    any acute indicator wins over chronic; default is subacute.
    """
    text = _join(*texts)
    chronic = any(k in text for k in _ACUITY_CHRONIC)
    acute = any(k in text for k in _ACUITY_ACUTE)
    wellness = any(k in text for k in _ACUITY_WELLNESS)

    if wellness and not acute and not chronic:
        return Acuity.WELLNESS
    if chronic and not acute:
        return Acuity.CHRONIC
    if acute:
        return Acuity.ACUTE
    return Acuity.SUBACUTE


# ---------------------------------------------------------------------------
# Recency windows
# ---------------------------------------------------------------------------

def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _months_before(day: date, months: int) -> date:
    """Same day-of-month *months* calendar months earlier, clamped to month end."""
    total = day.year * 12 + (day.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last))


def recent_surgeries(
    events: Iterable[ClinicalEvent],
    now: datetime | None = None,
    months: int = SURGERY_WINDOW_MONTHS,
) -> list[ClinicalEvent]:
    """Surgeries dated within the last *months* calendar months."""
    today = _as_date(now or datetime.now(timezone.utc))
    cutoff = _months_before(today, months)
    return [e for e in events if e.occurred_on is not None and _as_date(e.occurred_on) >= cutoff]


def recent_trauma(
    events: Iterable[ClinicalEvent],
    now: datetime | None = None,
    days: int = TRAUMA_WINDOW_DAYS,
) -> list[ClinicalEvent]:
    """Trauma events dated within the last *days* days."""
    today = _as_date(now or datetime.now(timezone.utc))
    cutoff = today - timedelta(days=days)
    return [e for e in events if e.occurred_on is not None and _as_date(e.occurred_on) >= cutoff]


# ---------------------------------------------------------------------------
# Risk factors
# ---------------------------------------------------------------------------

def identify_risk_factors(
    *,
    chief_complaint: str | None = None,
    subjective: str | None = None,
    objective: str | None = None,
    age: int | None = None,
    duration: SymptomDuration = SymptomDuration.UNKNOWN,
    comorbidities: Iterable[str] = (),
) -> list[str]:
    """Return prognostic risk-factor labels in a fixed order.

    The labels are the ones :mod:`cds_knowledge.outcome` weighs, so they
    must not be reworded independently.
    """
    text = _join(chief_complaint, subjective, objective)
    factors: list[str] = []

    if age is not None:
        if age > 65:
            factors.append("Advanced age (>65)")
        if age > 75:
            factors.append("Elderly patient (>75)")
        if age < 18:
            factors.append("Pediatric patient")

    if duration == SymptomDuration.CHRONIC:
        factors.append("Chronic symptom duration")

    for pattern, label in _LIFESTYLE_RISKS:
        if pattern.search(text):
            factors.append(label)

    for comorbidity in comorbidities:
        lowered = comorbidity.lower()
        if any(term in lowered for term in _RISKY_COMORBIDITIES):
            factors.append(f"Comorbidity: {comorbidity}")

    if _NEUROLOGICAL.search(text):
        factors.append("Neurological involvement")

    return factors


def calculate_age(date_of_birth: date | datetime | None, now: datetime | None = None) -> int | None:
    """Whole years between *date_of_birth* and *now*, or None when unknown."""
    if date_of_birth is None:
        return None
    today = _as_date(now or datetime.now(timezone.utc))
    dob = _as_date(date_of_birth)
    age = today.year - dob.year
    # Birthday not reached yet this year
    if (today.month, today.day) < (dob.month, dob.day):
        age -= 1
    return age
