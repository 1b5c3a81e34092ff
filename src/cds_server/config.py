"""Server configuration — reads settings from environment variables.

All settings have sensible defaults for local development.  In production
the values are typically overridden via env vars or a ``.env`` file.
"""

import os
from dataclasses import dataclass, field

from cds_knowledge.enrichment import DEFAULT_BASE_URL, DEFAULT_MODEL, DEFAULT_TIMEOUT_SECONDS


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ServerSettings:
    """Immutable server configuration read from environment at startup."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8080

    # CORS — comma-separated origins, or "*" for wide-open dev mode
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # Catalog directory (None → the YAML files shipped inside cds_knowledge)
    knowledge_dir: str | None = None

    # Logging
    log_level: str = "INFO"

    # Trusted proxy secret — when set, every request that carries
    # X-User-ID must also carry X-Proxy-Secret matching this value.
    trusted_proxy_secret: str | None = None

    # External enrichment.  Disabled, or enabled without a key, means
    # rule-based output only.
    enrichment_enabled: bool = True
    enrichment_api_key: str | None = None
    enrichment_base_url: str = DEFAULT_BASE_URL
    enrichment_model: str = DEFAULT_MODEL
    enrichment_timeout: float = DEFAULT_TIMEOUT_SECONDS


def load_settings() -> ServerSettings:
    """Build settings from ``SERVER_*`` and ``ENRICHMENT_*`` environment variables."""
    raw_origins = os.getenv("SERVER_CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

    return ServerSettings(
        host=os.getenv("SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("SERVER_PORT", "8080")),
        cors_origins=origins,
        knowledge_dir=os.getenv("SERVER_KNOWLEDGE_DIR") or None,
        log_level=os.getenv("SERVER_LOG_LEVEL", "INFO").upper(),
        trusted_proxy_secret=os.getenv("TRUSTED_PROXY_SECRET") or None,
        enrichment_enabled=_env_flag("ENRICHMENT_ENABLED", "true"),
        enrichment_api_key=os.getenv("ENRICHMENT_API_KEY") or None,
        enrichment_base_url=os.getenv("ENRICHMENT_BASE_URL", DEFAULT_BASE_URL),
        enrichment_model=os.getenv("ENRICHMENT_MODEL", DEFAULT_MODEL),
        enrichment_timeout=float(os.getenv("ENRICHMENT_TIMEOUT", str(DEFAULT_TIMEOUT_SECONDS))),
    )
