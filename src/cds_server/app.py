"""Application factory and CLI entry point.

``create_app()`` builds the FastAPI application with:
  - Lifespan handler that loads the knowledge catalogs and builds the engine once
  - CORS middleware
  - Global exception handlers (engine errors → 404/409/422, others → 500)
  - All API routes mounted under ``/api/v1``
  - A ``/health`` endpoint for readiness probes

The ``cli()`` function is the ``cds-server`` console-script entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from cds_db.engine import dispose_engine, get_engine
from cds_knowledge.engine import ClinicalDecisionEngine
from cds_knowledge.enrichment import HttpEnrichmentClient
from cds_knowledge.errors import KnowledgeEngineError
from cds_knowledge.knowledge import KnowledgeBase

from cds_server.config import ServerSettings, load_settings
from cds_server.errors import engine_error_handler, generic_error_handler
from cds_server.routes import register_routes

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Lifespan — runs once at startup/shutdown
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialise shared resources at startup, tear down on shutdown.

    Startup:
      1. Load YAML catalogs into a ``KnowledgeBase``
      2. Build the enrichment client when enabled and a key is configured
      3. Build ``ClinicalDecisionEngine`` and stash it on ``app.state``

    Shutdown:
      1. Dispose the database engine's connection pool
    """
    settings: ServerSettings = app.state.settings

    # --- Load catalogs ---
    kb = KnowledgeBase(settings.knowledge_dir)
    kb.load()
    logger.info("KnowledgeBase loaded successfully")

    # --- Enrichment ---
    enrichment = None
    if settings.enrichment_enabled and settings.enrichment_api_key:
        enrichment = HttpEnrichmentClient(
            api_key=settings.enrichment_api_key,
            base_url=settings.enrichment_base_url,
            model=settings.enrichment_model,
            timeout=settings.enrichment_timeout,
        )
        logger.info("Enrichment enabled (model=%s)", settings.enrichment_model)
    else:
        logger.info("Enrichment disabled — rule-based output only")

    app.state.kb = kb
    app.state.engine = ClinicalDecisionEngine(kb, enrichment)

    yield

    # --- Shutdown ---
    await dispose_engine()
    logger.info("Database engine disposed")


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------

def create_app(settings: ServerSettings | None = None) -> FastAPI:
    """Build and return the configured FastAPI application."""
    if settings is None:
        settings = load_settings()

    # --- Configure logging ---
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="Clinical Decision Support API",
        description="REST API for diagnosis suggestions, contraindication checks and outcome predictions",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings so the lifespan handler can read them
    app.state.settings = settings

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Exception handlers ---
    app.add_exception_handler(KnowledgeEngineError, engine_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    # --- Health check (outside /api/v1 prefix) ---
    @app.get("/health")
    async def health(request: Request) -> dict:
        """Readiness probe: database reachability plus the loaded catalog
        versions and whether enrichment is active."""
        state = request.app.state
        report = {
            "catalogs": dict(state.kb.versions) if hasattr(state, "kb") else {},
            "enrichment": state.engine.enrichment_enabled if hasattr(state, "engine") else False,
        }
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as exc:
            logger.error("Health check failed: %s", exc)
            return {"status": "error", "detail": "database unavailable", **report}
        return {"status": "ok", **report}

    # --- Mount all API routes ---
    register_routes(app)

    return app


# ------------------------------------------------------------------
# Module-level ASGI export (for uvicorn cds_server.app:app)
# ------------------------------------------------------------------
app = create_app()


# ------------------------------------------------------------------
# CLI entry point
# ------------------------------------------------------------------

def cli() -> None:
    """Console-script entry point: ``cds-server``."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "cds_server.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
