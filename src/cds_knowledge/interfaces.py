"""Abstract interface for the optional external enrichment service.

The knowledge engine is fully functional without enrichment.  When a
provider is configured, the orchestrator asks it for extra diagnosis
suggestions, advisory contraindications, treatment refinements and
outcome narrative, and merges the replies into rule output.

Typical integration flow::

    provider: EnrichmentProvider = HttpEnrichmentClient(api_key=..., base_url=...)
    engine = ClinicalDecisionEngine(kb, enrichment=provider)

    # Without a service:
    engine = ClinicalDecisionEngine(kb)       # uses NoOpEnrichment

Implementations must never raise: any failure is logged and reported as
"no enrichment" (``None`` or an empty list).
"""

from abc import ABC, abstractmethod

from cds_knowledge.models.enrichment import (
    ContraindicationContext,
    ContraindicationEnrichment,
    DiagnosisContext,
    EnrichmentSuggestion,
    OutcomeContext,
    OutcomeEnrichment,
    TreatmentContext,
    TreatmentEnrichment,
)


class EnrichmentProvider(ABC):
    """Capability interface for generative enrichment.

    Enrichment is advisory.  Replies never remove rule output and never
    change safety status or numeric outcome fields.
    """

    @property
    def enabled(self) -> bool:
        """False when the provider can never return enrichment."""
        return True

    @abstractmethod
    async def suggest_diagnoses(self, context: DiagnosisContext) -> list[EnrichmentSuggestion]:
        """Return additional diagnosis suggestions, or ``[]``."""
        ...

    @abstractmethod
    async def analyze_contraindications(
        self, context: ContraindicationContext
    ) -> ContraindicationEnrichment | None:
        """Return advisory contraindications and safety notes, or ``None``."""
        ...

    @abstractmethod
    async def refine_treatment(self, context: TreatmentContext) -> TreatmentEnrichment | None:
        ...

    @abstractmethod
    async def refine_outcome(self, context: OutcomeContext) -> OutcomeEnrichment | None:
        ...


class NoOpEnrichment(EnrichmentProvider):
    """Provider used when no external service is configured."""

    @property
    def enabled(self) -> bool:
        return False

    async def suggest_diagnoses(self, context: DiagnosisContext) -> list[EnrichmentSuggestion]:
        return []

    async def analyze_contraindications(
        self, context: ContraindicationContext
    ) -> ContraindicationEnrichment | None:
        return None

    async def refine_treatment(self, context: TreatmentContext) -> TreatmentEnrichment | None:
        return None

    async def refine_outcome(self, context: OutcomeContext) -> OutcomeEnrichment | None:
        return None
