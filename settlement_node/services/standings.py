from __future__ import annotations

from typing import Protocol

from settlement_node.config.families import LeaderboardFamily
from settlement_node.entities.claim import ClaimEvent
from settlement_node.entities.score import RankEntry, ScoreEntry
from settlement_node.services.ranking import aggregate_points, rank_entries


class WeekScores(Protocol):
    def fetch_week(self, family: str, week: int) -> list[ScoreEntry]: ...


class EpochClaims(Protocol):
    def fetch_epoch(self, family: str, epoch: int) -> list[ClaimEvent]: ...


class Standings:
    """Score entries for a family's epoch, whichever way the family scores."""

    def __init__(self, scores: WeekScores, claims: EpochClaims | None = None):
        self.scores = scores
        self.claims = claims

    def entries(self, family: LeaderboardFamily, epoch: int) -> list[ScoreEntry]:
        if family.scoring == "points":
            if self.claims is None:
                raise RuntimeError(f"{family.name} ranks claim points but no claim repository is wired")
            return aggregate_points(self.claims.fetch_epoch(family.name, epoch), family.name, epoch)
        return self.scores.fetch_week(family.name, epoch)

    def ranked(self, family: LeaderboardFamily, epoch: int, payable_only: bool = False) -> list[RankEntry]:
        include_flagged = not (payable_only and family.exclude_flagged)
        return rank_entries(self.entries(family, epoch), epoch=epoch, include_flagged=include_flagged)
