"""Alembic environment for the clinical decision support schema.

Migrations run synchronously through psycopg2, so the URL comes from
``get_sync_url()`` rather than the asyncpg URL used at runtime.
Autogenerate compares column types and server defaults.
"""

import logging
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import make_url

from cds_db.config import get_sync_url
from cds_db.models.base import Base

# Import all models so Base.metadata knows about their tables.
import cds_db.models  # noqa: F401

config = context.config
config.set_main_option("sqlalchemy.url", get_sync_url())

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")
target_metadata = Base.metadata

_COMPARE_OPTIONS = {
    "compare_type": True,
    "compare_server_default": True,
}


def _include_object(obj, name, type_, reflected, compare_to) -> bool:
    # Tables created outside this schema (other services sharing the DB)
    if type_ == "table" and reflected and compare_to is None:
        return False
    return True


def run_migrations_offline() -> None:
    """Emit SQL for the clinical schema without connecting."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=_include_object,
        **_COMPARE_OPTIONS,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = make_url(config.get_main_option("sqlalchemy.url"))
    logger.info("Migrating %s", url.render_as_string(hide_password=True))
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=_include_object,
            **_COMPARE_OPTIONS,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
