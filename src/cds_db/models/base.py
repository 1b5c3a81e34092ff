"""SQLAlchemy declarative base shared by all ORM models.

Constraint names follow PostgreSQL's own defaults so that autogenerated
migrations agree with the hand-written initial schema.  Check constraints
and indexes are always named explicitly in the models.
"""

from datetime import datetime, timezone

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

NAMING_CONVENTION = {
    "pk": "%(table_name)s_pkey",
    "fk": "%(table_name)s_%(column_0_name)s_fkey",
    "uq": "%(table_name)s_%(column_0_name)s_key",
}


def utcnow() -> datetime:
    """Timezone-aware default for created/updated/decision timestamps."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for the clinical decision support tables."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
