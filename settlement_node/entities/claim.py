from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum


class ActionKind(StrEnum):
    MINE_DONUT = "mine_donut"
    MINE_SPRINKLES = "mine_sprinkles"
    GAME_SCORE = "game_score"
    CHAT_MESSAGE = "chat_message"


class MineType(StrEnum):
    DONUT = "donut"
    SPRINKLES = "sprinkles"

    @property
    def action_kind(self) -> ActionKind:
        return ActionKind.MINE_DONUT if self is MineType.DONUT else ActionKind.MINE_SPRINKLES


def natural_key(actor_address: str, action_kind: str, epoch: int) -> str:
    """Ledger key for actions that are not backed by a transaction."""
    return f"{actor_address.lower()}:{action_kind}:{epoch}"


@dataclass
class ClaimEvent:
    """A verified on-chain action credited at most once.

    `source_tx_hash` is the idempotency key. `raw_amount` is fixed at first
    record; only `image_url` may be filled in later.
    """
    source_tx_hash: str
    actor_address: str
    action_kind: ActionKind
    epoch: int
    family: str
    raw_amount: str = ""
    points: float = 0.0
    message: str = ""
    image_url: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ClaimOutcome:
    accepted: bool
    reason: str | None = None
    already_recorded: bool = False
    points: float = 0.0
    epoch: int | None = None
    event: ClaimEvent | None = None

    def to_payload(self) -> dict:
        payload: dict = {"accepted": self.accepted}
        if self.reason:
            payload["reason"] = self.reason
        if self.already_recorded:
            payload["alreadyRecorded"] = True
        if self.accepted and not self.already_recorded:
            payload["pointsAdded"] = self.points
        if self.epoch is not None:
            payload["epoch"] = self.epoch
        return payload
