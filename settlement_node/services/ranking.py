from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from settlement_node.entities.claim import ActionKind, ClaimEvent
from settlement_node.entities.score import RankEntry, ReviewStatus, ScoreEntry

_EPOCH_ZERO = datetime.min.replace(tzinfo=timezone.utc)


def _eligible(entry: ScoreEntry, epoch: int | None, include_flagged: bool) -> bool:
    if epoch is not None and entry.week != epoch:
        return False
    if entry.score <= 0 or entry.review_status == ReviewStatus.REJECTED:
        return False
    return include_flagged or entry.payable


def _achieved_at(entry: ScoreEntry) -> datetime:
    return entry.created_at or _EPOCH_ZERO


def rank_entries(
    entries: Iterable[ScoreEntry],
    epoch: int | None = None,
    include_flagged: bool = True,
) -> list[RankEntry]:
    """Best score per player, ranked 1..N.

    Equal scores are ordered by who reached them first, then by player key,
    so the ordering is total and stable across calls.
    """
    best: dict[str, ScoreEntry] = {}
    for entry in entries:
        if not _eligible(entry, epoch, include_flagged):
            continue
        current = best.get(entry.player_key)
        if current is None or (-entry.score, _achieved_at(entry), entry.entry_id) < (
            -current.score,
            _achieved_at(current),
            current.entry_id,
        ):
            best[entry.player_key] = entry

    ordered = sorted(best.values(), key=lambda e: (-e.score, _achieved_at(e), e.player_key))
    return [
        RankEntry(
            player_key=e.player_key,
            best_score=e.score,
            rank=index,
            entry_id=e.entry_id,
            achieved_at=e.created_at,
            flagged=e.flagged and e.review_status != ReviewStatus.CLEARED,
        )
        for index, e in enumerate(ordered, start=1)
    ]


def rank_of(player_key: str, ranked: list[RankEntry]) -> int | None:
    for entry in ranked:
        if entry.player_key == player_key:
            return entry.rank
    return None


@dataclass(frozen=True)
class LeaderboardStats:
    games_played: int
    unique_players: int
    top_score: int | float

    def to_payload(self) -> dict:
        return {
            "gamesPlayed": self.games_played,
            "uniquePlayers": self.unique_players,
            "topScore": self.top_score,
        }


def leaderboard_stats(entries: Iterable[ScoreEntry], epoch: int | None = None) -> LeaderboardStats:
    played = [e for e in entries if (epoch is None or e.week == epoch) and e.score > 0]
    return LeaderboardStats(
        games_played=len(played),
        unique_players=len({e.player_key for e in played}),
        top_score=max((e.score for e in played), default=0),
    )


def aggregate_points(events: Iterable[ClaimEvent], family: str, epoch: int) -> list[ScoreEntry]:
    """Collapse per-transaction point events into one synthetic entry per actor.

    The entry's timestamp is the actor's last qualifying event, so of two equal
    totals the one reached first ranks higher.
    """
    totals: dict[str, float] = defaultdict(float)
    last_seen: dict[str, datetime] = {}
    for event in events:
        if event.epoch != epoch or event.points <= 0:
            continue
        actor = event.actor_address.lower()
        totals[actor] += event.points
        if actor not in last_seen or event.created_at > last_seen[actor]:
            last_seen[actor] = event.created_at

    return [
        ScoreEntry(
            entry_id=f"points:{actor}:{epoch}",
            family=family,
            player_key=actor,
            week=epoch,
            score=total,
            created_at=last_seen[actor],
            updated_at=last_seen[actor],
        )
        for actor, total in totals.items()
    ]


@dataclass(frozen=True)
class ChatStanding:
    rank: int
    address: str
    total_points: float
    total_messages: int
    last_message_at: datetime

    def to_payload(self) -> dict:
        return {
            "rank": self.rank,
            "address": self.address,
            "totalPoints": self.total_points,
            "totalMessages": self.total_messages,
            "lastMessageAt": self.last_message_at.isoformat(),
        }


@dataclass(frozen=True)
class ChatStats:
    total_users: int
    total_messages: int
    total_points: float

    def to_payload(self) -> dict:
        return {
            "totalUsers": self.total_users,
            "totalMessages": self.total_messages,
            "totalPoints": self.total_points,
        }


def chat_standings(events: Iterable[ClaimEvent], epoch: int | None = None) -> tuple[list[ChatStanding], ChatStats]:
    """Points and message counts per sender, highest total first.

    Equal totals go to whoever stopped posting first. Stats cover every
    sender, not just the ones a caller chooses to display.
    """
    points: dict[str, float] = defaultdict(float)
    messages: dict[str, int] = defaultdict(int)
    last_seen: dict[str, datetime] = {}
    for event in events:
        if event.action_kind != ActionKind.CHAT_MESSAGE:
            continue
        if epoch is not None and event.epoch != epoch:
            continue
        actor = event.actor_address.lower()
        points[actor] += event.points
        messages[actor] += 1
        if actor not in last_seen or event.created_at > last_seen[actor]:
            last_seen[actor] = event.created_at

    ordered = sorted(points, key=lambda actor: (-points[actor], last_seen[actor], actor))
    standings = [
        ChatStanding(
            rank=index,
            address=actor,
            total_points=points[actor],
            total_messages=messages[actor],
            last_message_at=last_seen[actor],
        )
        for index, actor in enumerate(ordered, start=1)
    ]
    stats = ChatStats(
        total_users=len(ordered),
        total_messages=sum(messages.values()),
        total_points=sum(points.values()),
    )
    return standings, stats
