"""Game score entries."""
from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Optional

from sqlalchemy import BigInteger, Column
from sqlmodel import Field, SQLModel

from settlement_node.db.tables.common import json_column, utc_now


class ScoreEntryRow(SQLModel, table=True):
    __tablename__ = "score_entries"

    natural_key: ClassVar[tuple[str, ...]] = ("id",)

    id: str = Field(primary_key=True)

    family: str = Field(index=True)
    player_key: str = Field(index=True)
    week: int = Field(index=True)

    score: int = Field(default=0, sa_column=Column(BigInteger, nullable=False, default=0))

    metrics_jsonb: Optional[dict[str, Any]] = Field(default=None, sa_column=json_column(nullable=True))
    flagged: bool = Field(default=False, index=True)
    flag_reasons_jsonb: list[str] = Field(default_factory=list, sa_column=json_column())
    checksum_valid: bool = Field(default=True)
    review_status: str = Field(default="NONE", index=True)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)
