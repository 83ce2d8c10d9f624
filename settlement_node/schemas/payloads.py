from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class MiningClaimRequest(_CamelModel):
    """Client report of a DONUT or SPRINKLES mine transaction."""

    tx_hash: str = Field(min_length=66, max_length=66, pattern=r"^0x[0-9a-fA-F]{64}$")
    address: str = Field(pattern=r"^0x[0-9a-fA-F]{40}$")
    mine_type: Literal["donut", "sprinkles"] = "donut"
    amount: str | None = None
    image_url: str | None = None


class ChatClaimRequest(_CamelModel):
    tx_hash: str = Field(min_length=66, max_length=66, pattern=r"^0x[0-9a-fA-F]{64}$")
    address: str = Field(pattern=r"^0x[0-9a-fA-F]{40}$")


class StartEntryRequest(_CamelModel):
    player_key: str = Field(min_length=1)
    entry_id: str | None = None


class SubmitScoreRequest(_CamelModel):
    entry_id: str = Field(min_length=1)
    player_key: str = Field(min_length=1)
    score: int
    metrics: dict[str, Any] | None = None


class ReviewRequest(_CamelModel):
    approved: bool


class SettleRequest(_CamelModel):
    dry_run: bool = False
    epoch: int | None = Field(default=None, ge=1)


class FamilyInfo(_CamelModel):
    name: str
    scoring: str
    current_epoch: int
    epoch_ends_at: str
    percent_table: list[float]
    pool_kind: str
