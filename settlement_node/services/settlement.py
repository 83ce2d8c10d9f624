"""Pays out a closed epoch at most once.

The Distribution row is written only after every payout transaction is
confirmed. Until then a SettlementAttempt row (the lease) marks the epoch as
in flight and carries the last submitted tx hash, so an interrupted run is
resumed by re-reading that receipt instead of guessing.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Protocol

from web3 import Web3

from settlement_node.chain.abi import ERC20_ABI, LEADERBOARD_POOL_ABI, ZERO_ADDRESS
from settlement_node.chain.reader import ReceiptView, TransactionView
from settlement_node.config.families import ContractPool, FamilyRegistry, FixedPool, LeaderboardFamily
from settlement_node.entities.distribution import (
    Distribution,
    DistributionStatus,
    PrizePayout,
    SettlementAttempt,
    SettlementResult,
    SettlementStatus,
)
from settlement_node.entities.score import RankEntry
from settlement_node.services.epoch_clock import EpochClock
from settlement_node.services.prizes import PrizeShare, distribute, from_base_units, to_base_units
from settlement_node.services.standings import Standings

logger = logging.getLogger(__name__)

SUCCESS = "success"
REVERTED = "reverted"


class DistributionRepository(Protocol):
    def get(self, family: str, epoch: int) -> Distribution | None: ...

    def record(self, distribution: Distribution) -> tuple[bool, Distribution]: ...


class AttemptRepository(Protocol):
    def acquire(self, attempt: SettlementAttempt) -> tuple[bool, SettlementAttempt]: ...

    def set_tx_hash(self, family: str, epoch: int, tx_hash: str, payload: dict[str, Any] | None = None) -> None: ...

    def take_over(self, stale: SettlementAttempt, payload: dict[str, Any]) -> bool: ...

    def release(self, family: str, epoch: int) -> None: ...


class PayoutRepository(Protocol):
    def paid(self, family: str, epoch: int) -> dict[int, PrizePayout]: ...

    def record(self, payout: PrizePayout) -> tuple[bool, PrizePayout]: ...


class ChainView(Protocol):
    def call(self, address: str, abi: list[dict[str, Any]], fn_name: str, *args: Any) -> Any: ...

    def get_receipt(self, tx_hash: str) -> ReceiptView | None: ...

    def get_transaction(self, tx_hash: str) -> TransactionView | None: ...


class PayoutSender(Protocol):
    address: str

    def gas_balance(self) -> int: ...

    def sign(self, contract_address: str, abi: list[dict[str, Any]], fn_name: str, *args: Any) -> tuple[str, bytes]: ...

    def broadcast(self, tx_hash: str, raw: bytes) -> None: ...

    def wait(self, tx_hash: str) -> str: ...


class _Plan:
    def __init__(self, winners: list[RankEntry], pool: dict[str, Decimal], shares: dict[str, list[PrizeShare]]):
        self.winners = winners
        self.pool = pool
        self.shares = shares

    @property
    def winner_keys(self) -> list[str]:
        return [w.player_key for w in self.winners]

    @property
    def amounts(self) -> list[dict[str, float]]:
        per_rank: list[dict[str, float]] = [{} for _ in self.winners]
        for asset, shares in self.shares.items():
            for index, share in enumerate(shares):
                per_rank[index][asset] = float(share.amount)
        return per_rank

    def payload(self) -> dict[str, Any]:
        return {
            "winners": self.winner_keys,
            "amounts": self.amounts,
            "totalPool": {asset: float(amount) for asset, amount in self.pool.items()},
        }


class SettlementDispatcher:
    def __init__(
        self,
        families: FamilyRegistry,
        standings: Standings,
        distributions: DistributionRepository,
        attempts: AttemptRepository,
        payouts: PayoutRepository,
        chain: ChainView,
        writer: PayoutSender | None,
        min_gas_balance_wei: int = 10**14,
        lease_seconds: int = 600,
        now: Callable[[], datetime] = EpochClock.now,
    ):
        self.families = families
        self.standings = standings
        self.distributions = distributions
        self.attempts = attempts
        self.payouts = payouts
        self.chain = chain
        self.writer = writer
        self.min_gas_balance_wei = min_gas_balance_wei
        self.lease = timedelta(seconds=lease_seconds)
        self._now = now

    # --- planning ---------------------------------------------------------

    def _pool_balances(self, family: LeaderboardFamily) -> dict[str, Decimal]:
        pool = family.pool
        if isinstance(pool, FixedPool):
            return {pool.asset.name: Decimal(str(pool.amount))}

        balances: dict[str, Decimal] = {}
        for asset in pool.assets:
            if asset.token is None:
                raw = self.chain.call(pool.address, LEADERBOARD_POOL_ABI, "getBalance")
            else:
                raw = self.chain.call(
                    pool.address, LEADERBOARD_POOL_ABI, "getTokenBalance", Web3.to_checksum_address(asset.token)
                )
            balances[asset.name] = from_base_units(int(raw), asset.decimals)
        return balances

    def plan(self, family: LeaderboardFamily, epoch: int) -> tuple[list[RankEntry], dict[str, Decimal] | None, _Plan | None]:
        ranked = self.standings.ranked(family, epoch, payable_only=True)
        winners = ranked[: len(family.percent_table)]
        if not winners:
            return winners, None, None
        pool = self._pool_balances(family)
        if all(amount <= 0 for amount in pool.values()):
            return winners, pool, None
        shares = {asset: distribute(winners, amount, family.percent_table) for asset, amount in pool.items()}
        return winners, pool, _Plan(winners, pool, shares)

    # --- results ----------------------------------------------------------

    @staticmethod
    def _result(status: SettlementStatus, family: str, epoch: int, plan: _Plan | None = None, **kwargs) -> SettlementResult:
        if plan is not None:
            kwargs.setdefault("winners", plan.winner_keys)
            kwargs.setdefault("amounts", plan.amounts)
        return SettlementResult(status=status, family=family, epoch=epoch, **kwargs)

    def _finalize(self, family: LeaderboardFamily, epoch: int, payload: dict[str, Any], tx_hashes: list[str]) -> SettlementResult:
        distribution = Distribution(
            family=family.name,
            epoch=epoch,
            status=DistributionStatus.DISTRIBUTED,
            total_pool=dict(payload.get("totalPool") or {}),
            per_rank_amounts=list(payload.get("amounts") or []),
            winners=list(payload.get("winners") or []),
            tx_hashes=tx_hashes,
            distributed_at=self._now(),
        )
        inserted, stored = self.distributions.record(distribution)
        self.attempts.release(family.name, epoch)
        status = SettlementStatus.DISTRIBUTED if inserted else SettlementStatus.ALREADY_DISTRIBUTED
        logger.info("Distribution of %s epoch %d recorded: %s", family.name, epoch, tx_hashes)
        return SettlementResult(
            status=status,
            family=family.name,
            epoch=epoch,
            winners=stored.winners,
            amounts=stored.per_rank_amounts,
            tx_hashes=stored.tx_hashes,
            distribution=stored,
        )

    # --- lease ------------------------------------------------------------

    def _resume(self, family: LeaderboardFamily, epoch: int, lease: SettlementAttempt, plan: _Plan) -> SettlementResult | None:
        """Decide what to do with someone else's lease. None means we now own it."""
        now = self._now()
        if lease.tx_hash:
            receipt = self.chain.get_receipt(lease.tx_hash)
            if receipt is not None and receipt.succeeded:
                if isinstance(family.pool, ContractPool):
                    return self._finalize(family, epoch, lease.payload or plan.payload(), [lease.tx_hash])
                self._record_inflight(family, epoch, lease)
            elif receipt is not None:
                logger.warning("Settlement tx %s for %s epoch %d reverted", lease.tx_hash, family.name, epoch)
            elif self.chain.get_transaction(lease.tx_hash) is not None or now - lease.started_at < self.lease:
                return self._result(SettlementStatus.PENDING, family.name, epoch, plan, tx_hashes=[lease.tx_hash])
        elif now - lease.started_at < self.lease:
            return self._result(SettlementStatus.PENDING, family.name, epoch, plan, message="settlement in progress")

        if not self.attempts.take_over(lease, plan.payload()):
            return self._result(SettlementStatus.PENDING, family.name, epoch, plan, message="lease taken by another run")
        logger.info("Took over settlement lease for %s epoch %d", family.name, epoch)
        return None

    def _record_inflight(self, family: LeaderboardFamily, epoch: int, lease: SettlementAttempt) -> None:
        inflight = (lease.payload or {}).get("inflight")
        if not inflight:
            return
        self.payouts.record(
            PrizePayout(
                family=family.name,
                epoch=epoch,
                rank=int(inflight["rank"]),
                player_key=inflight["player"],
                amount=float(inflight["amount"]),
                asset=inflight["asset"],
                tx_hash=lease.tx_hash,
                paid_at=self._now(),
            )
        )

    # --- execution --------------------------------------------------------

    def _submit(self, family: LeaderboardFamily, epoch: int, payload: dict[str, Any], address: str, abi: list[dict[str, Any]], fn_name: str, *args: Any) -> str:
        """Sign, record the hash on the lease, then broadcast.

        A broadcast that fails after reaching the node leaves the hash on the
        lease, and the next run settles it by receipt instead of paying again.
        """
        tx_hash, raw = self.writer.sign(address, abi, fn_name, *args)
        self.attempts.set_tx_hash(family.name, epoch, tx_hash, payload)
        self.writer.broadcast(tx_hash, raw)
        return tx_hash

    def _pay_contract(self, family: LeaderboardFamily, epoch: int, plan: _Plan) -> SettlementResult:
        pool: ContractPool = family.pool
        places = (plan.winner_keys + [ZERO_ADDRESS] * 3)[:3]
        args = [Web3.to_checksum_address(address) for address in places]

        tx_hash = self._submit(family, epoch, plan.payload(), pool.address, LEADERBOARD_POOL_ABI, "distributeWeekly", *args, epoch)
        status = self.writer.wait(tx_hash)

        if status == SUCCESS:
            return self._finalize(family, epoch, plan.payload(), [tx_hash])
        if status == REVERTED:
            self.attempts.release(family.name, epoch)
            return self._result(SettlementStatus.FAILED, family.name, epoch, plan, tx_hashes=[tx_hash], message="distribution reverted")
        return self._result(SettlementStatus.PENDING, family.name, epoch, plan, tx_hashes=[tx_hash])

    def _pay_fixed(self, family: LeaderboardFamily, epoch: int, plan: _Plan) -> SettlementResult:
        pool: FixedPool = family.pool
        asset = pool.asset
        paid = self.payouts.paid(family.name, epoch)

        for share in plan.shares[asset.name]:
            if share.rank in paid:
                continue
            units = to_base_units(share.amount, asset.decimals)
            if units <= 0:
                continue
            inflight = {
                "rank": share.rank,
                "player": share.player_key,
                "amount": float(share.amount),
                "asset": asset.name,
            }
            tx_hash = self._submit(
                family, epoch, {**plan.payload(), "inflight": inflight},
                asset.token, ERC20_ABI, "transfer", Web3.to_checksum_address(share.player_key), units,
            )
            status = self.writer.wait(tx_hash)

            if status == REVERTED:
                self.attempts.release(family.name, epoch)
                return self._result(SettlementStatus.FAILED, family.name, epoch, plan, tx_hashes=[tx_hash], message=f"transfer to rank {share.rank} reverted")
            if status != SUCCESS:
                return self._result(SettlementStatus.PENDING, family.name, epoch, plan, tx_hashes=[tx_hash])

            _, payout = self.payouts.record(
                PrizePayout(
                    family=family.name,
                    epoch=epoch,
                    rank=share.rank,
                    player_key=share.player_key,
                    amount=float(share.amount),
                    asset=asset.name,
                    tx_hash=tx_hash,
                    paid_at=self._now(),
                )
            )
            paid[share.rank] = payout

        tx_hashes = [paid[rank].tx_hash for rank in sorted(paid)]
        return self._finalize(family, epoch, plan.payload(), tx_hashes)

    # --- entry point ------------------------------------------------------

    def dispatch(self, family_name: str, epoch: int | None = None, dry_run: bool = False) -> SettlementResult:
        family = self.families.get(family_name)
        clock = EpochClock(family)
        now = self._now()
        epoch = epoch or clock.previous(now)

        if not clock.has_ended(epoch, now):
            return self._result(SettlementStatus.EPOCH_OPEN, family.name, epoch, message=f"epoch ends {clock.end(epoch).isoformat()}")

        existing = self.distributions.get(family.name, epoch)
        if existing is not None:
            return SettlementResult(
                status=SettlementStatus.ALREADY_DISTRIBUTED,
                family=family.name,
                epoch=epoch,
                winners=existing.winners,
                amounts=existing.per_rank_amounts,
                tx_hashes=existing.tx_hashes,
                distribution=existing,
            )

        winners, _, plan = self.plan(family, epoch)
        if not winners:
            if dry_run:
                return self._result(SettlementStatus.NO_WINNERS, family.name, epoch)
            inserted, rolled = self.distributions.record(
                Distribution(family=family.name, epoch=epoch, status=DistributionStatus.ROLLED_OVER, distributed_at=now)
            )
            logger.info("No eligible winners for %s epoch %d; pool rolls over", family.name, epoch)
            return self._result(SettlementStatus.NO_WINNERS, family.name, epoch, distribution=rolled)
        if plan is None:
            return self._result(SettlementStatus.NO_FUNDS, family.name, epoch, winners=[w.player_key for w in winners])

        if dry_run:
            return self._result(SettlementStatus.DRY_RUN, family.name, epoch, plan)

        if self.writer is None:
            return self._result(SettlementStatus.FAILED, family.name, epoch, plan, message="payout wallet not configured")

        # an in-flight run is resolved first; the pool reports not ready once it has paid
        acquired, lease = self.attempts.acquire(
            SettlementAttempt(family=family.name, epoch=epoch, payload=plan.payload(), started_at=now)
        )
        if not acquired:
            resumed = self._resume(family, epoch, lease, plan)
            if resumed is not None:
                return resumed

        if isinstance(family.pool, ContractPool):
            if not self.chain.call(family.pool.address, LEADERBOARD_POOL_ABI, "canDistribute"):
                self.attempts.release(family.name, epoch)
                return self._result(SettlementStatus.NOT_READY, family.name, epoch, plan)

        if self.writer.gas_balance() < self.min_gas_balance_wei:
            logger.warning("Payout wallet %s is below the gas floor", self.writer.address)
            self.attempts.release(family.name, epoch)
            return self._result(SettlementStatus.INSUFFICIENT_GAS, family.name, epoch, plan)

        logger.info("Settling %s epoch %d for %s", family.name, epoch, plan.winner_keys)
        if isinstance(family.pool, ContractPool):
            return self._pay_contract(family, epoch, plan)
        return self._pay_fixed(family, epoch, plan)
