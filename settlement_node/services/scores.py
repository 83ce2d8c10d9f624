from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Protocol

from web3 import Web3

from settlement_node.config.families import FamilyRegistry, LeaderboardFamily
from settlement_node.entities.score import AntiCheatVerdict, RankEntry, ReviewStatus, ScoreEntry
from settlement_node.errors import InvalidSubmission
from settlement_node.services import anti_cheat
from settlement_node.services.epoch_clock import EpochClock
from settlement_node.services.ranking import LeaderboardStats, leaderboard_stats, rank_entries, rank_of
from settlement_node.services.standings import EpochClaims, Standings

logger = logging.getLogger(__name__)


class ScoreRepository(Protocol):
    def create(self, entry: ScoreEntry) -> tuple[bool, ScoreEntry]: ...

    def get(self, entry_id: str) -> ScoreEntry | None: ...

    def submit_score(
        self,
        entry_id: str,
        player_key: str,
        score: int,
        metrics: dict[str, Any] | None,
        verdict: AntiCheatVerdict,
    ) -> bool: ...

    def set_review(self, entry_id: str, status: ReviewStatus) -> ScoreEntry | None: ...

    def fetch_week(self, family: str, week: int) -> list[ScoreEntry]: ...


class ScoreService:
    def __init__(
        self,
        repository: ScoreRepository,
        families: FamilyRegistry,
        now: Callable[[], datetime] = EpochClock.now,
        limits: anti_cheat.AntiCheatLimits | None = None,
        claims: EpochClaims | None = None,
    ):
        self.repository = repository
        self.standings = Standings(repository, claims)
        self.families = families
        self._now = now
        self.limits = limits or anti_cheat.AntiCheatLimits()

    def _family(self, name: str) -> LeaderboardFamily:
        family = self.families.get(name)
        if family.scoring != "best_score":
            raise InvalidSubmission("family_not_scored")
        return family

    def start_entry(self, family: str, player_key: str, entry_id: str | None = None) -> ScoreEntry:
        fam = self._family(family)
        if not player_key:
            raise InvalidSubmission("missing_player_key")
        if not Web3.is_address(player_key):
            # prizes are paid to the player key
            raise InvalidSubmission("invalid_player_key")
        now = self._now()
        entry = ScoreEntry(
            entry_id=entry_id or uuid.uuid4().hex,
            family=fam.name,
            player_key=player_key.lower(),
            week=EpochClock(fam).current(now),
            created_at=now,
            updated_at=now,
        )
        inserted, stored = self.repository.create(entry)
        if not inserted and (stored.family != fam.name or stored.player_key != entry.player_key):
            raise InvalidSubmission("entry_id_taken", status_code=409)
        return stored

    def submit(
        self,
        family: str,
        entry_id: str,
        player_key: str,
        score: int,
        metrics: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        fam = self._family(family)
        player_key = (player_key or "").lower()
        if not entry_id or not player_key:
            raise InvalidSubmission("missing_fields")
        if score < 0 or score > fam.max_score:
            raise InvalidSubmission("invalid_score")

        entry = self.repository.get(entry_id)
        if entry is None or entry.family != fam.name or entry.player_key != player_key:
            raise InvalidSubmission("entry_not_found", status_code=404)
        if entry.score > 0:
            raise InvalidSubmission("score_already_submitted")

        if fam.anti_cheat:
            limits = self.limits
            if limits.trust_threshold != fam.trust_threshold:
                limits = replace(limits, trust_threshold=fam.trust_threshold)
            verdict = anti_cheat.validate(score, metrics, entry_id, limits)
        else:
            verdict = AntiCheatVerdict(entry_id=entry_id)

        # the conditional update is the real guard against a concurrent double submit
        if not self.repository.submit_score(entry_id, player_key, score, metrics, verdict):
            raise InvalidSubmission("score_already_submitted")

        week_entries = self.repository.fetch_week(fam.name, entry.week)
        ranked = rank_entries(week_entries, epoch=entry.week)
        best = max((e.score for e in week_entries if e.player_key == player_key), default=score)
        previous_best = max(
            (e.score for e in week_entries if e.player_key == player_key and e.entry_id != entry_id),
            default=0,
        )
        logger.info(
            "Score %d for %s in %s week %d%s",
            score, player_key, fam.name, entry.week, " (flagged)" if verdict.flagged else "",
        )
        return {
            "accepted": True,
            "score": score,
            "best_score": best,
            "is_personal_best": score > previous_best,
            "rank": rank_of(player_key, ranked),
            "week": entry.week,
            "flagged": verdict.flagged,
            "reasons": list(verdict.reasons),
        }

    def review(self, entry_id: str, approved: bool) -> ScoreEntry:
        status = ReviewStatus.CLEARED if approved else ReviewStatus.REJECTED
        entry = self.repository.set_review(entry_id, status)
        if entry is None:
            raise InvalidSubmission("entry_not_found", status_code=404)
        logger.info("Review of %s: %s", entry_id, status)
        return entry

    def leaderboard(
        self,
        family: str,
        epoch: int | None = None,
        limit: int = 10,
    ) -> tuple[int, list[RankEntry], LeaderboardStats]:
        fam = self.families.get(family)
        week = epoch or EpochClock(fam).current(self._now())
        entries = self.standings.entries(fam, week)
        ranked = rank_entries(entries, epoch=week)
        return week, ranked[:limit], leaderboard_stats(entries, epoch=week)
