"""Patient evidence consumed by the contraindication engine and predictor.

``PatientEvidence`` is assembled by the orchestrator from the request and
the stored encounter.  Missing optional fields default to empty values so
that every matcher is total.
"""

from datetime import date

from pydantic import BaseModel, Field


class ClinicalEvent(BaseModel):
    """A dated history item such as a surgery or a trauma.

    Events without a date are never treated as recent.
    """

    description: str
    occurred_on: date | None = None


class PatientEvidence(BaseModel):
    """Structured plus free-text evidence about one patient."""

    age: int | None = None
    conditions: list[str] = Field(default_factory=list)
    medications: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    surgeries: list[ClinicalEvent] = Field(default_factory=list)
    trauma: list[ClinicalEvent] = Field(default_factory=list)
    # Concatenated clinical notes, chief complaint, subjective and objective
    clinical_notes: str = ""

    @property
    def notes_lower(self) -> str:
        return self.clinical_notes.lower()
