"""Exception taxonomy raised by the knowledge engine.

Every error subclasses ``ValueError`` so callers that only know the
generic contract (``except ValueError``) keep working.  The server maps
each subclass to an HTTP status code in ``cds_server.errors``.
"""


class KnowledgeEngineError(ValueError):
    """Base class for all engine errors."""


class NotFoundError(KnowledgeEngineError):
    """Patient, encounter, finding, prediction, suggestion or alert is absent,
    or belongs to another organization."""


class InvalidStateError(KnowledgeEngineError):
    """The entity is not in a state that allows the requested transition."""


class ValidationFailure(KnowledgeEngineError):
    """Caller input failed a precondition.  Raised before any write."""


class EnrichmentUnavailable(KnowledgeEngineError):
    """The external enrichment service could not be used.

    Never escapes the enrichment adapter: it is caught at the adapter
    boundary, logged, and turned into "no enrichment".
    """
