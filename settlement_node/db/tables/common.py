from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Column
from sqlalchemy.dialects.postgresql import JSONB


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def json_column(nullable: bool = False) -> Column:
    """JSONB on PostgreSQL, plain JSON on other backends."""
    return Column(JSON().with_variant(JSONB(), "postgresql"), nullable=nullable)
