"""Insert-or-return-existing over a unique natural key.

The unique constraint is the only duplicate check: a row is inserted and
committed, and a constraint violation means someone else already recorded
it. There is no read-before-write.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlmodel import Session, SQLModel, select
from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from settlement_node.errors import TransientInfraFailure

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT", bound=SQLModel)


@dataclass
class LedgerResult(Generic[RowT]):
    inserted: bool
    row: RowT

    @property
    def existing(self) -> RowT | None:
        return None if self.inserted else self.row


class IdempotentLedger:
    def __init__(self, session: Session, max_attempts: int = 3, backoff_seconds: float = 0.5):
        self._session = session
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=8),
            retry=retry_if_exception_type(OperationalError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    def run(self, fn, *args, **kwargs):
        """Run a unit of database work, retrying connection-level failures."""
        def _once():
            try:
                return fn(*args, **kwargs)
            except OperationalError:
                self._session.rollback()
                raise

        try:
            return self._retrying()(_once)
        except OperationalError as exc:
            raise TransientInfraFailure("database unavailable") from exc

    def _insert(self, row: RowT) -> None:
        self._session.add(row)
        self._session.commit()
        self._session.refresh(row)

    def record_if_new(self, row: RowT) -> LedgerResult[RowT]:
        key = {name: getattr(row, name) for name in type(row).natural_key}
        try:
            self.run(self._insert, row)
        except IntegrityError:
            self._session.rollback()
            existing = self.find(type(row), **key)
            if existing is None:
                raise
            logger.info("%s %s already recorded", type(row).__tablename__, key)
            return LedgerResult(inserted=False, row=existing)
        return LedgerResult(inserted=True, row=row)

    def find(self, row_type: type[RowT], **key) -> RowT | None:
        stmt = select(row_type)
        for name, value in key.items():
            stmt = stmt.where(getattr(row_type, name) == value)
        return self.run(lambda: self._session.exec(stmt).first())
