"""cds_knowledge — Clinical decision support knowledge engine.

Public API:
    ClinicalDecisionEngine — orchestrator for suggestions, contraindication
                             checks, outcome predictions and alerts
    KnowledgeBase          — loads the YAML catalogs into typed models with
                             lookup helpers
    PromptManager          — jinja2 prompt rendering for the enrichment service

Enrichment:
    EnrichmentProvider     — ABC for the optional external enrichment service
    NoOpEnrichment         — provider that never enriches (the default)
    HttpEnrichmentClient   — provider backed by a messages-style HTTP API

Errors:
    KnowledgeEngineError   — base class (a ``ValueError``)
    NotFoundError          — entity absent or in another organization
    InvalidStateError      — entity state forbids the transition
    ValidationFailure      — caller input rejected before any write
    EnrichmentUnavailable  — internal to the enrichment adapter
"""

from cds_knowledge.engine import ClinicalDecisionEngine
from cds_knowledge.enrichment import HttpEnrichmentClient
from cds_knowledge.errors import (
    EnrichmentUnavailable,
    InvalidStateError,
    KnowledgeEngineError,
    NotFoundError,
    ValidationFailure,
)
from cds_knowledge.interfaces import EnrichmentProvider, NoOpEnrichment
from cds_knowledge.knowledge import KnowledgeBase
from cds_knowledge.prompt import PromptManager

__all__ = [
    # Engine & knowledge
    "ClinicalDecisionEngine",
    "KnowledgeBase",
    "PromptManager",
    # Enrichment
    "EnrichmentProvider",
    "HttpEnrichmentClient",
    "NoOpEnrichment",
    # Errors
    "EnrichmentUnavailable",
    "InvalidStateError",
    "KnowledgeEngineError",
    "NotFoundError",
    "ValidationFailure",
]
