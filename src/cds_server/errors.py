"""Global exception handlers — map engine exceptions to HTTP status codes.

The engine raises a typed ``KnowledgeEngineError`` taxonomy.  Rather than
catching these in every route, we install global handlers that pick the
HTTP status code from the exception class.  This keeps route handlers
clean and focused on the happy path.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from cds_knowledge.errors import (
    InvalidStateError,
    KnowledgeEngineError,
    NotFoundError,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

# --- Exception classes and their HTTP status codes ---
# Checked in order; first isinstance match wins.
_ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (ValidationFailure, 422),
]


# --- Client-safe messages keyed by HTTP status code ---
# Internal details (patient ids, clinical text) stay in the server log;
# the client receives only a generic description.
_SAFE_MESSAGES: dict[int, str] = {
    404: "Resource not found",
    409: "Request conflicts with the current state of the resource",
    422: "Invalid request",
    400: "Invalid request",
}


def status_for(exc: Exception) -> int:
    for exc_type, code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return code
    return 400


async def engine_error_handler(request: Request, exc: KnowledgeEngineError) -> JSONResponse:
    """Map a ``KnowledgeEngineError`` to a contextual HTTP error response.

    The raw exception message is logged server-side but **never** sent
    to the client.
    """
    status = status_for(exc)
    logger.warning("%s [%d] at %s: %s", type(exc).__name__, status, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": _SAFE_MESSAGES[status]})


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — log full traceback, return 500."""
    logger.exception("Unhandled exception at %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )
