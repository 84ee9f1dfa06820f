# consentlink/models/base.py
import uuid

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests and local dev)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def new_id() -> str:
    """Opaque string ids; callers must not parse them."""
    return str(uuid.uuid4())


def enum_values(enum_cls) -> list[str]:
    """Persist enum values ("pending"), not member names ("PENDING")."""
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """
    Base class for all ORM models.
    """

    pass
