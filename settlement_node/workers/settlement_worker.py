"""Settlement worker: periodically pays out every closed epoch that has no distribution yet."""
from __future__ import annotations

import asyncio
import logging

from settlement_node.chain.reader import ChainReader
from settlement_node.chain.writer import ChainWriter
from settlement_node.config.families import FamilyRegistry, load_families
from settlement_node.config.runtime import ContractAddresses, RuntimeSettings
from settlement_node.db import (
    DBClaimRepository,
    DBDistributionRepository,
    DBPrizePayoutRepository,
    DBScoreRepository,
    DBSettlementAttemptRepository,
    create_session,
)
from settlement_node.entities.distribution import SettlementResult
from settlement_node.services.settlement import SettlementDispatcher
from settlement_node.services.standings import Standings
from settlement_node.utils.logging_config import setup_logging


class SettlementService:
    def __init__(
        self,
        dispatcher: SettlementDispatcher,
        families: FamilyRegistry,
        interval_seconds: int = 900,
    ):
        self.dispatcher = dispatcher
        self.families = families
        self.interval_seconds = interval_seconds
        self.logger = logging.getLogger(__name__)
        self.stop_event = asyncio.Event()
        # one pass at a time within this process; the lease covers other processes
        self._lock = asyncio.Lock()

    async def run(self) -> None:
        self.logger.info("settlement worker started (interval=%ds)", self.interval_seconds)
        while not self.stop_event.is_set():
            try:
                await self.settle_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.logger.exception("settlement error: %s", exc)
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def settle_once(self) -> list[SettlementResult]:
        if self._lock.locked():
            self.logger.info("Previous settlement pass still running, skipping")
            return []
        async with self._lock:
            return await asyncio.to_thread(self.settle_all)

    def settle_all(self) -> list[SettlementResult]:
        results: list[SettlementResult] = []
        for family in self.families:
            try:
                result = self.dispatcher.dispatch(family.name)
            except Exception as exc:
                # one family failing must not block the others
                self.logger.exception("Settlement of %s failed: %s", family.name, exc)
                continue
            self.logger.info(
                "Settlement %s epoch %d: %s%s",
                result.family, result.epoch, result.status,
                f" ({result.message})" if result.message else "",
            )
            results.append(result)
        return results

    async def shutdown(self) -> None:
        self.stop_event.set()


def build_service() -> SettlementService:
    settings = RuntimeSettings.from_env()
    addresses = ContractAddresses.from_env()
    families = load_families(settings.families_path, addresses)
    session = create_session()

    reader = ChainReader.from_urls(
        settings.rpc_urls,
        timeout_seconds=settings.rpc_timeout_seconds,
        max_attempts=settings.rpc_max_attempts,
    )
    writer = None
    if settings.payout_private_key:
        writer = ChainWriter(
            reader.primary,
            settings.payout_private_key,
            settings.chain_id,
            receipt_timeout=settings.receipt_timeout_seconds,
        )
    else:
        logging.getLogger(__name__).warning("PAYOUT_PRIVATE_KEY not set; settlement runs cannot pay out")

    dispatcher = SettlementDispatcher(
        families=families,
        standings=Standings(DBScoreRepository(session), DBClaimRepository(session)),
        distributions=DBDistributionRepository(session),
        attempts=DBSettlementAttemptRepository(session),
        payouts=DBPrizePayoutRepository(session),
        chain=reader,
        writer=writer,
        min_gas_balance_wei=settings.min_gas_balance_wei,
        lease_seconds=settings.settlement_lease_seconds,
    )
    return SettlementService(dispatcher, families, interval_seconds=settings.settlement_interval_seconds)


async def main() -> None:
    setup_logging()
    logging.getLogger(__name__).info("settlement worker bootstrap")
    service = build_service()
    await service.run()


if __name__ == "__main__":
    asyncio.run(main())
