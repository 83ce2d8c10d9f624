"""Verified on-chain actions, one row per source transaction."""
from __future__ import annotations

from datetime import datetime
from typing import ClassVar, Optional

from sqlmodel import Field, SQLModel

from settlement_node.db.tables.common import utc_now


class ClaimEventRow(SQLModel, table=True):
    __tablename__ = "claim_events"

    natural_key: ClassVar[tuple[str, ...]] = ("source_tx_hash",)

    # tx hash, or "{actor}:{kind}:{epoch}" for actions without a transaction
    source_tx_hash: str = Field(primary_key=True)

    actor_address: str = Field(index=True)
    action_kind: str = Field(index=True)
    family: str = Field(index=True)
    epoch: int = Field(index=True)

    raw_amount: str = Field(default="")
    points: float = Field(default=0.0)
    message: str = Field(default="")
    image_url: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now, index=True)
