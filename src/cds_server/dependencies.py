"""FastAPI dependency injection — provides DB sessions, the engine, the
knowledge base, and caller identity.

Each request that touches the database gets a fresh ``AsyncSession`` via
``get_db()``.  The session is committed on success and rolled back on error,
matching the SDK convention where engine/repository call ``flush()`` but
never ``commit()``.
"""

import hmac
from dataclasses import dataclass
from typing import AsyncGenerator

from fastapi import Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from cds_db.engine import get_session_factory
from cds_knowledge.engine import ClinicalDecisionEngine
from cds_knowledge.knowledge import KnowledgeBase


# ------------------------------------------------------------------
# Database session — transaction boundary lives here
# ------------------------------------------------------------------

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session; commit on success, rollback on error.

    The SDK's repository methods call ``flush()`` but never ``commit()``,
    so this dependency is the single place where transactions are finalised.
    """
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ------------------------------------------------------------------
# Engine & knowledge base — stashed on app.state during lifespan
# ------------------------------------------------------------------

def get_engine(request: Request) -> ClinicalDecisionEngine:
    """Return the engine singleton from ``app.state``."""
    return request.app.state.engine


def get_kb(request: Request) -> KnowledgeBase:
    """Return the KnowledgeBase singleton from ``app.state``."""
    return request.app.state.kb


# ------------------------------------------------------------------
# Caller identity — X-User-ID and X-Organization-ID headers
# ------------------------------------------------------------------

@dataclass(frozen=True)
class Caller:
    user_id: str
    organization_id: str


async def get_caller(
    request: Request,
    x_user_id: str | None = Header(None, alias="X-User-ID"),
    x_organization_id: str | None = Header(None, alias="X-Organization-ID"),
    x_proxy_secret: str | None = Header(None, alias="X-Proxy-Secret"),
) -> Caller:
    """Extract caller identity from the ``X-User-ID`` and
    ``X-Organization-ID`` headers.

    Returns 401 if either header is missing: every clinical endpoint is
    scoped to a known user in a known organization.

    When ``TRUSTED_PROXY_SECRET`` is configured, the request must also
    carry a matching ``X-Proxy-Secret`` header, proving the identity
    headers were injected by a trusted API gateway.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-ID header is required")
    if not x_organization_id:
        raise HTTPException(status_code=401, detail="X-Organization-ID header is required")

    expected_secret: str | None = request.app.state.settings.trusted_proxy_secret
    if expected_secret:
        if not x_proxy_secret:
            raise HTTPException(status_code=403, detail="X-Proxy-Secret header is required")
        # Constant-time comparison to prevent timing side-channels.
        if not hmac.compare_digest(x_proxy_secret, expected_secret):
            raise HTTPException(status_code=403, detail="Invalid proxy secret")

    return Caller(user_id=x_user_id, organization_id=x_organization_id)
