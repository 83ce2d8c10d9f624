from __future__ import annotations

from datetime import datetime, timedelta, timezone

from settlement_node.config.families import WEEK_SECONDS, LeaderboardFamily


def _utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def epoch_of(instant: datetime, anchor: datetime, period_seconds: int = WEEK_SECONDS) -> int:
    """1-based period index of `instant`; anything before the anchor is epoch 1."""
    elapsed = (_utc(instant) - _utc(anchor)).total_seconds()
    if elapsed < 0:
        return 1
    return int(elapsed // period_seconds) + 1


def epoch_start(epoch: int, anchor: datetime, period_seconds: int = WEEK_SECONDS) -> datetime:
    if epoch < 1:
        raise ValueError("epochs start at 1")
    return _utc(anchor) + timedelta(seconds=(epoch - 1) * period_seconds)


def epoch_end(epoch: int, anchor: datetime, period_seconds: int = WEEK_SECONDS) -> datetime:
    """Exclusive end: the first instant of the next epoch."""
    return epoch_start(epoch + 1, anchor, period_seconds)


def previous_epoch(instant: datetime, anchor: datetime, period_seconds: int = WEEK_SECONDS) -> int:
    return max(1, epoch_of(instant, anchor, period_seconds) - 1)


class EpochClock:
    """A family's anchor and period bound together."""

    def __init__(self, family: LeaderboardFamily):
        self.anchor = family.anchor
        self.period_seconds = family.period_seconds

    @staticmethod
    def now() -> datetime:
        return datetime.now(timezone.utc)

    def current(self, now: datetime | None = None) -> int:
        return epoch_of(now or self.now(), self.anchor, self.period_seconds)

    def previous(self, now: datetime | None = None) -> int:
        return previous_epoch(now or self.now(), self.anchor, self.period_seconds)

    def start(self, epoch: int) -> datetime:
        return epoch_start(epoch, self.anchor, self.period_seconds)

    def end(self, epoch: int) -> datetime:
        return epoch_end(epoch, self.anchor, self.period_seconds)

    def has_ended(self, epoch: int, now: datetime | None = None) -> bool:
        return _utc(now or self.now()) >= self.end(epoch)
