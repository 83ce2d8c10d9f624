from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class DistributionStatus(StrEnum):
    DISTRIBUTED = "DISTRIBUTED"
    ROLLED_OVER = "ROLLED_OVER"


class SettlementStatus(StrEnum):
    DISTRIBUTED = "distributed"
    DRY_RUN = "dry_run"
    ALREADY_DISTRIBUTED = "already_distributed"
    NO_WINNERS = "no_winners"
    NO_FUNDS = "no_funds"
    NOT_READY = "not_ready"
    EPOCH_OPEN = "epoch_open"
    INSUFFICIENT_GAS = "insufficient_gas"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class Distribution:
    """At most one per (family, epoch). Written only after on-chain success."""
    family: str
    epoch: int
    status: DistributionStatus
    total_pool: dict[str, float] = field(default_factory=dict)            # asset -> amount
    per_rank_amounts: list[dict[str, float]] = field(default_factory=list)  # index 0 == rank 1
    winners: list[str] = field(default_factory=list)
    tx_hashes: list[str] = field(default_factory=list)
    distributed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def tx_hash(self) -> str | None:
        return self.tx_hashes[0] if self.tx_hashes else None

    def to_payload(self) -> dict[str, Any]:
        return {
            "family": self.family,
            "epoch": self.epoch,
            "status": self.status.value,
            "totalPool": self.total_pool,
            "perRankAmounts": self.per_rank_amounts,
            "winners": self.winners,
            "txHashes": self.tx_hashes,
            "distributedAt": self.distributed_at.isoformat(),
        }


@dataclass
class SettlementAttempt:
    """Lease guarding one in-flight distribution of (family, epoch)."""
    family: str
    epoch: int
    tx_hash: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PrizePayout:
    """One confirmed transfer to one ranked winner of a fixed pool."""
    family: str
    epoch: int
    rank: int
    player_key: str
    amount: float
    asset: str
    tx_hash: str
    paid_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SettlementResult:
    status: SettlementStatus
    family: str
    epoch: int
    winners: list[str] = field(default_factory=list)
    amounts: list[dict[str, float]] = field(default_factory=list)
    tx_hashes: list[str] = field(default_factory=list)
    distribution: Distribution | None = None
    message: str | None = None

    @property
    def distributed(self) -> bool:
        return self.status == SettlementStatus.DISTRIBUTED

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "distributed": self.distributed,
            "status": self.status.value,
            "family": self.family,
            "epoch": self.epoch,
        }
        if self.winners:
            payload["winners"] = self.winners
            payload["amounts"] = self.amounts
        if self.tx_hashes:
            payload["txHash"] = self.tx_hashes[0]
            payload["txHashes"] = self.tx_hashes
        if self.message:
            payload["reason"] = self.message
        return payload
