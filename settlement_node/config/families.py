"""Leaderboard family configuration.

Each family owns its epoch anchor, period, percent table and prize pool. The
clock, ranking and settlement code receive a family instead of reading
per-game constants.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from settlement_node.config.runtime import ContractAddresses
from settlement_node.errors import UnknownFamily

logger = logging.getLogger(__name__)

WEEK_SECONDS = 7 * 24 * 3600

# Friday 2025-01-03 23:00 UTC == 18:00 America/New_York (EST)
ARCADE_ANCHOR = datetime(2025, 1, 3, 23, 0, 0, tzinfo=timezone.utc)
GLAZE_ANCHOR = datetime(2025, 12, 12, 12, 0, 0, tzinfo=timezone.utc)

TOP3_PERCENTS = [50, 30, 20]
TOP10_PERCENTS = [40, 20, 15, 8, 5, 4, 3, 2, 2, 1]


class PoolAsset(BaseModel):
    name: str
    token: str | None = None  # None means the chain's native coin
    decimals: int = Field(default=18, ge=0)

    @field_validator("token")
    @classmethod
    def _lower(cls, v: str | None) -> str | None:
        return v.lower() if v else v


class FixedPool(BaseModel):
    """A fixed amount paid per winner by ERC-20 transfers from the payout wallet."""

    kind: Literal["fixed"] = "fixed"
    amount: float = Field(ge=0)
    asset: PoolAsset

    @field_validator("asset")
    @classmethod
    def _token_required(cls, v: PoolAsset) -> PoolAsset:
        if v.token is None:
            raise ValueError("fixed pools pay out an ERC-20 token")
        return v


class ContractPool(BaseModel):
    """An on-chain pool contract that splits its own balances via distributeWeekly()."""

    kind: Literal["contract"] = "contract"
    address: str
    assets: list[PoolAsset] = Field(default_factory=list)

    @field_validator("address")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.lower()


class LeaderboardFamily(BaseModel):
    name: str = Field(min_length=1)
    anchor: datetime
    period_seconds: int = Field(default=WEEK_SECONDS, ge=1)
    scoring: Literal["best_score", "points"] = "best_score"
    percent_table: list[float] = Field(default_factory=lambda: list(TOP10_PERCENTS))
    pool: Annotated[Union[FixedPool, ContractPool], Field(discriminator="kind")]
    anti_cheat: bool = False
    trust_threshold: int = 100
    exclude_flagged: bool = True
    max_score: int = 1_000_000

    model_config = ConfigDict(extra="allow")

    @field_validator("anchor")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_percents(self) -> "LeaderboardFamily":
        if any(p < 0 for p in self.percent_table):
            raise ValueError(f"{self.name}: percentages must be non-negative")
        if sum(self.percent_table) > 100 + 1e-9:
            raise ValueError(f"{self.name}: percent table sums above 100")
        if isinstance(self.pool, ContractPool) and len(self.percent_table) > 3:
            raise ValueError(f"{self.name}: distributeWeekly pays at most three places")
        return self


def default_families(addresses: ContractAddresses | None = None) -> list[LeaderboardFamily]:
    addresses = addresses or ContractAddresses.from_env()
    usdc = PoolAsset(name="USDC", token=addresses.usdc_token, decimals=6)

    def _arcade(name: str, anti_cheat: bool = False) -> LeaderboardFamily:
        return LeaderboardFamily(
            name=name,
            anchor=ARCADE_ANCHOR,
            scoring="best_score",
            percent_table=list(TOP10_PERCENTS),
            pool=FixedPool(amount=5.0, asset=usdc),
            anti_cheat=anti_cheat,
        )

    return [
        LeaderboardFamily(
            name="glaze",
            anchor=GLAZE_ANCHOR,
            scoring="points",
            percent_table=list(TOP3_PERCENTS),
            pool=ContractPool(
                address=addresses.leaderboard_pool,
                assets=[
                    PoolAsset(name="ETH"),
                    PoolAsset(name="DONUT", token=addresses.donut_token),
                    PoolAsset(name="SPRINKLES", token=addresses.sprinkles_token),
                ],
            ),
        ),
        _arcade("flappy"),
        _arcade("donut_survivors", anti_cheat=True),
        _arcade("stack_tower"),
    ]


def load_families(
    path: str | None = None,
    addresses: ContractAddresses | None = None,
) -> "FamilyRegistry":
    """Load families from a JSON array at `path`, or the built-in defaults."""
    if not path:
        return FamilyRegistry(default_families(addresses))

    payload: Any = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("LEADERBOARD_FAMILIES_PATH must point to a JSON array")
    families = [LeaderboardFamily.model_validate(item) for item in payload]
    logger.info("Loaded %d leaderboard families from %s", len(families), path)
    return FamilyRegistry(families)


class FamilyRegistry:
    def __init__(self, families: list[LeaderboardFamily]):
        self._families: dict[str, LeaderboardFamily] = {}
        for family in families:
            if family.name in self._families:
                raise ValueError(f"duplicate leaderboard family: {family.name}")
            self._families[family.name] = family

    def get(self, name: str) -> LeaderboardFamily:
        family = self._families.get(name)
        if family is None:
            raise UnknownFamily(name)
        return family

    def names(self) -> list[str]:
        return list(self._families)

    def __iter__(self):
        return iter(self._families.values())

    def __len__(self) -> int:
        return len(self._families)
