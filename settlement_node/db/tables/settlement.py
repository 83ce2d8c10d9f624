"""Distribution ledger, settlement leases and per-rank payouts."""
from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from settlement_node.db.tables.common import json_column, utc_now


class DistributionRow(SQLModel, table=True):
    __tablename__ = "distributions"
    __table_args__ = (UniqueConstraint("family", "epoch", name="uq_distributions_family_epoch"),)

    natural_key: ClassVar[tuple[str, ...]] = ("family", "epoch")

    id: Optional[int] = Field(default=None, primary_key=True)
    family: str = Field(index=True)
    epoch: int = Field(index=True)
    status: str = Field(index=True)

    total_pool_jsonb: dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    per_rank_amounts_jsonb: list[dict[str, Any]] = Field(default_factory=list, sa_column=json_column())
    winners_jsonb: list[str] = Field(default_factory=list, sa_column=json_column())
    tx_hashes_jsonb: list[str] = Field(default_factory=list, sa_column=json_column())

    distributed_at: datetime = Field(default_factory=utc_now, index=True)


class SettlementAttemptRow(SQLModel, table=True):
    __tablename__ = "settlement_attempts"
    __table_args__ = (UniqueConstraint("family", "epoch", name="uq_settlement_attempts_family_epoch"),)

    natural_key: ClassVar[tuple[str, ...]] = ("family", "epoch")

    id: Optional[int] = Field(default=None, primary_key=True)
    family: str = Field(index=True)
    epoch: int = Field(index=True)
    tx_hash: Optional[str] = Field(default=None)
    payload_jsonb: dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    started_at: datetime = Field(default_factory=utc_now)


class PrizePayoutRow(SQLModel, table=True):
    __tablename__ = "prize_payouts"
    __table_args__ = (
        UniqueConstraint("family", "epoch", "rank", name="uq_prize_payouts_family_epoch_rank"),
    )

    natural_key: ClassVar[tuple[str, ...]] = ("family", "epoch", "rank")

    id: Optional[int] = Field(default=None, primary_key=True)
    family: str = Field(index=True)
    epoch: int = Field(index=True)
    rank: int
    player_key: str
    amount: float
    asset: str
    tx_hash: str
    paid_at: datetime = Field(default_factory=utc_now)
