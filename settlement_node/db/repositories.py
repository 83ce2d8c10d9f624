from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, update
from sqlmodel import Session, select

from settlement_node.db.ledger import IdempotentLedger
from settlement_node.db.tables import (
    ClaimEventRow,
    DistributionRow,
    PrizePayoutRow,
    ScoreEntryRow,
    SettlementAttemptRow,
)
from settlement_node.entities.claim import ActionKind, ClaimEvent
from settlement_node.entities.distribution import (
    Distribution,
    DistributionStatus,
    PrizePayout,
    SettlementAttempt,
)
from settlement_node.entities.score import AntiCheatVerdict, ReviewStatus, ScoreEntry


def _utc(value: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class DBClaimRepository:
    def __init__(self, session: Session):
        self._session = session
        self._ledger = IdempotentLedger(session)

    def record(self, event: ClaimEvent) -> tuple[bool, ClaimEvent]:
        result = self._ledger.record_if_new(self._domain_to_row(event))
        return result.inserted, self._row_to_domain(result.row)

    def attach_image(self, source_tx_hash: str, image_url: str) -> bool:
        """Fill image_url only where it is still empty. Nothing else changes."""
        stmt = (
            update(ClaimEventRow)
            .where(ClaimEventRow.source_tx_hash == source_tx_hash)
            .where(ClaimEventRow.image_url.is_(None))
            .values(image_url=image_url)
        )

        def _apply() -> int:
            result = self._session.exec(stmt)
            self._session.commit()
            return result.rowcount

        return self._ledger.run(_apply) > 0

    def find(self, source_tx_hash: str) -> ClaimEvent | None:
        row = self._ledger.run(self._session.get, ClaimEventRow, source_tx_hash)
        return self._row_to_domain(row) if row else None

    def fetch_epoch(self, family: str, epoch: int) -> list[ClaimEvent]:
        stmt = (
            select(ClaimEventRow)
            .where(ClaimEventRow.family == family)
            .where(ClaimEventRow.epoch == epoch)
            .order_by(ClaimEventRow.created_at)
        )
        rows = self._ledger.run(lambda: self._session.exec(stmt).all())
        return [self._row_to_domain(row) for row in rows]

    def fetch_family(self, family: str) -> list[ClaimEvent]:
        stmt = (
            select(ClaimEventRow)
            .where(ClaimEventRow.family == family)
            .order_by(ClaimEventRow.created_at)
        )
        rows = self._ledger.run(lambda: self._session.exec(stmt).all())
        return [self._row_to_domain(row) for row in rows]

    @staticmethod
    def _row_to_domain(row: ClaimEventRow) -> ClaimEvent:
        return ClaimEvent(
            source_tx_hash=row.source_tx_hash,
            actor_address=row.actor_address,
            action_kind=ActionKind(row.action_kind),
            epoch=row.epoch,
            family=row.family,
            raw_amount=row.raw_amount,
            points=row.points,
            message=row.message,
            image_url=row.image_url,
            created_at=_utc(row.created_at),
        )

    @staticmethod
    def _domain_to_row(event: ClaimEvent) -> ClaimEventRow:
        return ClaimEventRow(
            source_tx_hash=event.source_tx_hash,
            actor_address=event.actor_address.lower(),
            action_kind=event.action_kind.value,
            family=event.family,
            epoch=event.epoch,
            raw_amount=event.raw_amount,
            points=event.points,
            message=event.message,
            image_url=event.image_url,
            created_at=event.created_at,
        )


class DBScoreRepository:
    def __init__(self, session: Session):
        self._session = session
        self._ledger = IdempotentLedger(session)

    def create(self, entry: ScoreEntry) -> tuple[bool, ScoreEntry]:
        row = ScoreEntryRow(
            id=entry.entry_id,
            family=entry.family,
            player_key=entry.player_key,
            week=entry.week,
            score=0,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )
        result = self._ledger.record_if_new(row)
        return result.inserted, self._row_to_domain(result.row)

    def get(self, entry_id: str) -> ScoreEntry | None:
        row = self._ledger.run(self._session.get, ScoreEntryRow, entry_id)
        return self._row_to_domain(row) if row else None

    def submit_score(
        self,
        entry_id: str,
        player_key: str,
        score: int,
        metrics: dict[str, Any] | None,
        verdict: AntiCheatVerdict,
    ) -> bool:
        """Move score from 0 to `score`. Returns False when it was already set."""
        stmt = (
            update(ScoreEntryRow)
            .where(ScoreEntryRow.id == entry_id)
            .where(ScoreEntryRow.player_key == player_key)
            .where(ScoreEntryRow.score == 0)
            .values(
                score=score,
                metrics_jsonb=metrics,
                flagged=verdict.flagged,
                flag_reasons_jsonb=list(verdict.reasons),
                checksum_valid=verdict.checksum_valid,
                updated_at=datetime.now(timezone.utc),
            )
        )

        def _apply() -> int:
            result = self._session.exec(stmt)
            self._session.commit()
            return result.rowcount

        return self._ledger.run(_apply) == 1

    def set_review(self, entry_id: str, status: ReviewStatus) -> ScoreEntry | None:
        def _apply() -> ScoreEntryRow | None:
            row = self._session.get(ScoreEntryRow, entry_id)
            if row is None:
                return None
            row.review_status = status.value
            row.updated_at = datetime.now(timezone.utc)
            self._session.add(row)
            self._session.commit()
            self._session.refresh(row)
            return row

        row = self._ledger.run(_apply)
        return self._row_to_domain(row) if row else None

    def fetch_week(self, family: str, week: int) -> list[ScoreEntry]:
        stmt = (
            select(ScoreEntryRow)
            .where(ScoreEntryRow.family == family)
            .where(ScoreEntryRow.week == week)
            .where(ScoreEntryRow.score > 0)
        )
        rows = self._ledger.run(lambda: self._session.exec(stmt).all())
        return [self._row_to_domain(row) for row in rows]

    @staticmethod
    def _row_to_domain(row: ScoreEntryRow) -> ScoreEntry:
        return ScoreEntry(
            entry_id=row.id,
            family=row.family,
            player_key=row.player_key,
            week=row.week,
            score=row.score,
            metrics=row.metrics_jsonb,
            flagged=row.flagged,
            flag_reasons=list(row.flag_reasons_jsonb or []),
            checksum_valid=row.checksum_valid,
            review_status=ReviewStatus(row.review_status),
            created_at=_utc(row.created_at),
            updated_at=_utc(row.updated_at),
        )


class DBDistributionRepository:
    def __init__(self, session: Session):
        self._session = session
        self._ledger = IdempotentLedger(session)

    def get(self, family: str, epoch: int) -> Distribution | None:
        row = self._ledger.find(DistributionRow, family=family, epoch=epoch)
        return self._row_to_domain(row) if row else None

    def record(self, distribution: Distribution) -> tuple[bool, Distribution]:
        row = DistributionRow(
            family=distribution.family,
            epoch=distribution.epoch,
            status=distribution.status.value,
            total_pool_jsonb=distribution.total_pool,
            per_rank_amounts_jsonb=distribution.per_rank_amounts,
            winners_jsonb=distribution.winners,
            tx_hashes_jsonb=distribution.tx_hashes,
            distributed_at=distribution.distributed_at,
        )
        result = self._ledger.record_if_new(row)
        return result.inserted, self._row_to_domain(result.row)

    def fetch_family(self, family: str, limit: int = 20) -> list[Distribution]:
        stmt = (
            select(DistributionRow)
            .where(DistributionRow.family == family)
            .order_by(DistributionRow.epoch.desc())
            .limit(limit)
        )
        rows = self._ledger.run(lambda: self._session.exec(stmt).all())
        return [self._row_to_domain(row) for row in rows]

    @staticmethod
    def _row_to_domain(row: DistributionRow) -> Distribution:
        return Distribution(
            family=row.family,
            epoch=row.epoch,
            status=DistributionStatus(row.status),
            total_pool=dict(row.total_pool_jsonb or {}),
            per_rank_amounts=list(row.per_rank_amounts_jsonb or []),
            winners=list(row.winners_jsonb or []),
            tx_hashes=list(row.tx_hashes_jsonb or []),
            distributed_at=_utc(row.distributed_at),
        )


class DBSettlementAttemptRepository:
    """The (family, epoch) lease. Every change is a conditional statement."""

    def __init__(self, session: Session):
        self._session = session
        self._ledger = IdempotentLedger(session)

    def acquire(self, attempt: SettlementAttempt) -> tuple[bool, SettlementAttempt]:
        row = SettlementAttemptRow(
            family=attempt.family,
            epoch=attempt.epoch,
            tx_hash=attempt.tx_hash,
            payload_jsonb=attempt.payload,
            started_at=attempt.started_at,
        )
        result = self._ledger.record_if_new(row)
        return result.inserted, self._row_to_domain(result.row)

    def _execute(self, stmt) -> int:
        def _apply() -> int:
            result = self._session.exec(stmt)
            self._session.commit()
            return result.rowcount

        return self._ledger.run(_apply)

    def set_tx_hash(self, family: str, epoch: int, tx_hash: str, payload: dict[str, Any] | None = None) -> None:
        values: dict[str, Any] = {"tx_hash": tx_hash}
        if payload is not None:
            values["payload_jsonb"] = payload
        self._execute(
            update(SettlementAttemptRow)
            .where(SettlementAttemptRow.family == family)
            .where(SettlementAttemptRow.epoch == epoch)
            .values(**values)
        )

    def take_over(self, stale: SettlementAttempt, payload: dict[str, Any]) -> bool:
        """Reclaim a stale lease. Only one caller can win the swap."""
        stmt = (
            update(SettlementAttemptRow)
            .where(SettlementAttemptRow.family == stale.family)
            .where(SettlementAttemptRow.epoch == stale.epoch)
            .where(SettlementAttemptRow.started_at == stale.started_at)
            .values(tx_hash=None, payload_jsonb=payload, started_at=datetime.now(timezone.utc))
        )
        return self._execute(stmt) == 1

    def release(self, family: str, epoch: int) -> None:
        self._execute(
            delete(SettlementAttemptRow)
            .where(SettlementAttemptRow.family == family)
            .where(SettlementAttemptRow.epoch == epoch)
        )

    @staticmethod
    def _row_to_domain(row: SettlementAttemptRow) -> SettlementAttempt:
        return SettlementAttempt(
            family=row.family,
            epoch=row.epoch,
            tx_hash=row.tx_hash,
            payload=dict(row.payload_jsonb or {}),
            started_at=_utc(row.started_at),
        )


class DBPrizePayoutRepository:
    def __init__(self, session: Session):
        self._session = session
        self._ledger = IdempotentLedger(session)

    def paid(self, family: str, epoch: int) -> dict[int, PrizePayout]:
        stmt = (
            select(PrizePayoutRow)
            .where(PrizePayoutRow.family == family)
            .where(PrizePayoutRow.epoch == epoch)
        )
        rows = self._ledger.run(lambda: self._session.exec(stmt).all())
        return {row.rank: self._row_to_domain(row) for row in rows}

    def record(self, payout: PrizePayout) -> tuple[bool, PrizePayout]:
        row = PrizePayoutRow(
            family=payout.family,
            epoch=payout.epoch,
            rank=payout.rank,
            player_key=payout.player_key,
            amount=payout.amount,
            asset=payout.asset,
            tx_hash=payout.tx_hash,
            paid_at=payout.paid_at,
        )
        result = self._ledger.record_if_new(row)
        return result.inserted, self._row_to_domain(result.row)

    @staticmethod
    def _row_to_domain(row: PrizePayoutRow) -> PrizePayout:
        return PrizePayout(
            family=row.family,
            epoch=row.epoch,
            rank=row.rank,
            player_key=row.player_key,
            amount=row.amount,
            asset=row.asset,
            tx_hash=row.tx_hash,
            paid_at=_utc(row.paid_at),
        )
