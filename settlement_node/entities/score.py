from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any


class ReviewStatus(StrEnum):
    NONE = "NONE"
    CLEARED = "CLEARED"
    REJECTED = "REJECTED"


@dataclass
class AntiCheatVerdict:
    """Suspicion markers attached to a score. Never blocks storage."""
    entry_id: str
    flagged: bool = False
    reasons: list[str] = field(default_factory=list)
    checksum_valid: bool = True


@dataclass
class ScoreEntry:
    """One play session. `score` moves from 0 to its final value exactly once."""
    entry_id: str
    family: str
    player_key: str                                              # fid or lower-cased address
    week: int
    score: int | float = 0                                       # float only for aggregated points
    metrics: dict[str, Any] | None = None
    flagged: bool = False
    flag_reasons: list[str] = field(default_factory=list)
    checksum_valid: bool = True
    review_status: ReviewStatus = ReviewStatus.NONE
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def payable(self) -> bool:
        """Eligible for prizes once flags are resolved in the player's favour."""
        if self.review_status == ReviewStatus.REJECTED:
            return False
        return not self.flagged or self.review_status == ReviewStatus.CLEARED


@dataclass(frozen=True)
class RankEntry:
    """Transient view rebuilt from ScoreEntry rows; never authoritative."""
    player_key: str
    best_score: int | float
    rank: int
    entry_id: str | None = None
    achieved_at: datetime | None = None
    flagged: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "playerKey": self.player_key,
            "bestScore": display_number(self.best_score),
            "entryId": self.entry_id,
            "achievedAt": self.achieved_at.isoformat() if self.achieved_at else None,
            "flagged": self.flagged,
        }


def display_number(value: int | float) -> int | float:
    """Integral floats render as ints in JSON payloads."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value
