"""Turns client-reported transactions into credited claim events.

Nothing the client says is trusted beyond the tx hash and the mine type: the
transaction is re-read from chain, checked by the CallVerifier, and credited
through the ledger so replays of the same hash are harmless.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Protocol

from settlement_node.chain.abi import CHAT_SEND, DONUT_MINE, REGISTRY, SPRINKLES_MINE, TRANSFER_TOPIC
from settlement_node.chain.reader import ReceiptView, TransactionView
from settlement_node.config.families import FamilyRegistry
from settlement_node.config.runtime import ContractAddresses
from settlement_node.entities.claim import ActionKind, ClaimEvent, ClaimOutcome, MineType
from settlement_node.services.call_verifier import CallVerifier, VerificationRequest, param_equals
from settlement_node.services.epoch_clock import EpochClock
from settlement_node.services.ranking import ChatStanding, ChatStats, chat_standings

logger = logging.getLogger(__name__)

MINE_POINTS = {MineType.DONUT: 2.0, MineType.SPRINKLES: 1.0}
MINE_SCHEMAS = {DONUT_MINE: MineType.DONUT, SPRINKLES_MINE: MineType.SPRINKLES}

# the miner contract receives a tenth of what the player paid
SPRINKLES_FEE_MULTIPLIER = 10
TOKEN_DECIMALS = 18

CHAT_FAMILY = "chat"
CHAT_REWARDS_START = datetime(2025, 12, 8, 2, 0, 0, tzinfo=timezone.utc)
CHAT_HALVING_SECONDS = 30 * 24 * 3600
CHAT_MULTIPLIERS = (2.0, 1.0, 0.5, 0.25, 0.0)
CHAT_BASE_POINTS = 1.0
CHAT_MIN_SPRINKLES = 100_000 * 10**TOKEN_DECIMALS
CHAT_MESSAGE_LIMIT = 280

REWARDS_ENDED = "rewards_ended"
INSUFFICIENT_BALANCE = "insufficient_balance"
UNRECOGNIZED = "unrecognized_transaction"


class ClaimRepository(Protocol):
    def record(self, event: ClaimEvent) -> tuple[bool, ClaimEvent]: ...

    def attach_image(self, source_tx_hash: str, image_url: str) -> bool: ...

    def fetch_epoch(self, family: str, epoch: int) -> list[ClaimEvent]: ...

    def fetch_family(self, family: str) -> list[ClaimEvent]: ...


class ChainState(Protocol):
    def get_transaction(self, tx_hash: str) -> TransactionView | None: ...

    def token_balance(self, token: str, holder: str) -> int: ...


def chat_multiplier(now: datetime) -> float:
    elapsed = (now - CHAT_REWARDS_START).total_seconds()
    if elapsed < 0:
        return CHAT_MULTIPLIERS[0]
    halvings = int(elapsed // CHAT_HALVING_SECONDS)
    if halvings >= len(CHAT_MULTIPLIERS):
        return 0.0
    return CHAT_MULTIPLIERS[halvings]


def sprinkles_paid(receipt: ReceiptView, miner_address: str) -> str:
    """Whole SPRINKLES paid, from the fee Transfer into the miner contract."""
    miner = miner_address.lower()
    for log in receipt.logs:
        if len(log.topics) < 3 or log.topics[0] != TRANSFER_TOPIC:
            continue
        if "0x" + log.topics[2][-40:] != miner:
            continue
        fee_wei = int(log.data, 16) if log.data not in ("", "0x") else 0
        return str(fee_wei * SPRINKLES_FEE_MULTIPLIER // 10**TOKEN_DECIMALS)
    return ""


class ClaimService:
    def __init__(
        self,
        verifier: CallVerifier,
        repository: ClaimRepository,
        chain: ChainState,
        addresses: ContractAddresses,
        families: FamilyRegistry,
        now: Callable[[], datetime] = EpochClock.now,
    ):
        self.verifier = verifier
        self.repository = repository
        self.chain = chain
        self.addresses = addresses
        self.glaze_clock = EpochClock(families.get("glaze"))
        self._now = now

    def _mining_request(self, tx_hash: str, actor: str, mine_type: MineType) -> VerificationRequest:
        if mine_type is MineType.DONUT:
            return VerificationRequest(
                tx_hash=tx_hash,
                claimed_sender=actor,
                expected_contract=self.addresses.donut_multicall,
                schema=DONUT_MINE,
                param_checks=(param_equals("provider", self.addresses.fee_referrer),),
            )
        return VerificationRequest(
            tx_hash=tx_hash,
            claimed_sender=actor,
            expected_contract=self.addresses.sprinkles_miner,
            schema=SPRINKLES_MINE,
        )

    def _record(self, event: ClaimEvent, image_url: str | None = None) -> ClaimOutcome:
        inserted, stored = self.repository.record(event)
        if not inserted:
            logger.info("Claim %s already recorded", event.source_tx_hash)
            if image_url and stored.image_url is None:
                self.repository.attach_image(stored.source_tx_hash, image_url)
            return ClaimOutcome(
                accepted=True,
                already_recorded=True,
                points=stored.points,
                epoch=stored.epoch,
                event=stored,
            )
        logger.info(
            "Credited %s to %s: %s points (epoch %d)",
            event.action_kind, event.actor_address, event.points, event.epoch,
        )
        return ClaimOutcome(accepted=True, points=stored.points, epoch=stored.epoch, event=stored)

    def record_mining(
        self,
        tx_hash: str,
        actor: str,
        mine_type: MineType | str,
        amount: str | None = None,
        image_url: str | None = None,
    ) -> ClaimOutcome:
        mine_type = MineType(mine_type)
        tx_hash = tx_hash.lower()
        result = self.verifier.verify(self._mining_request(tx_hash, actor, mine_type))
        if not result.ok:
            return ClaimOutcome(accepted=False, reason=result.reason)

        if mine_type is MineType.DONUT:
            raw_amount = amount or str(result.transaction.value)
        else:
            raw_amount = sprinkles_paid(result.receipt, self.addresses.sprinkles_miner)
            if not raw_amount:
                logger.warning("No fee Transfer into the miner contract in %s", tx_hash)

        event = ClaimEvent(
            source_tx_hash=tx_hash,
            actor_address=actor.lower(),
            action_kind=mine_type.action_kind,
            epoch=self.glaze_clock.current(self._now()),
            family="glaze",
            raw_amount=raw_amount,
            points=MINE_POINTS[mine_type],
            message=str(result.params.get("uri") or ""),
            image_url=image_url or None,
            created_at=self._now(),
        )
        return self._record(event, image_url)

    def record_chat(self, tx_hash: str, actor: str) -> ClaimOutcome:
        tx_hash = tx_hash.lower()
        result = self.verifier.verify(
            VerificationRequest(
                tx_hash=tx_hash,
                claimed_sender=actor,
                expected_contract=self.addresses.chat,
                schema=CHAT_SEND,
            )
        )
        if not result.ok:
            return ClaimOutcome(accepted=False, reason=result.reason)

        now = self._now()
        multiplier = chat_multiplier(now)
        if multiplier == 0:
            return ClaimOutcome(accepted=False, reason=REWARDS_ENDED)

        # RPC failure propagates: no points are granted on an unknown balance
        balance = self.chain.token_balance(self.addresses.sprinkles_token, actor)
        if balance < CHAT_MIN_SPRINKLES:
            logger.info("Chat from %s below the SPRINKLES holding requirement", actor.lower())
            return ClaimOutcome(accepted=False, reason=INSUFFICIENT_BALANCE)

        event = ClaimEvent(
            source_tx_hash=tx_hash,
            actor_address=actor.lower(),
            action_kind=ActionKind.CHAT_MESSAGE,
            epoch=self.glaze_clock.current(now),
            family=CHAT_FAMILY,
            points=CHAT_BASE_POINTS * multiplier,
            message=str(result.params.get("message") or "")[:CHAT_MESSAGE_LIMIT],
            created_at=now,
        )
        return self._record(event)

    def infer_mine_type(self, tx: TransactionView) -> MineType | None:
        mine_type = MINE_SCHEMAS.get(REGISTRY.lookup(tx.input or ""))
        if mine_type is None:
            return None
        expected = self.addresses.donut_multicall if mine_type is MineType.DONUT else self.addresses.sprinkles_miner
        return mine_type if tx.to_address == expected else None

    def record_observed(self, tx_hash: str) -> ClaimOutcome:
        """Credit a transaction seen by a chain watcher; the sender comes from chain."""
        tx = self.chain.get_transaction(tx_hash)
        if tx is None:
            return ClaimOutcome(accepted=False, reason="not_found")
        mine_type = self.infer_mine_type(tx)
        if mine_type is None:
            return ClaimOutcome(accepted=False, reason=UNRECOGNIZED)
        return self.record_mining(tx_hash, tx.from_address, mine_type)

    def chat_leaderboard(self, limit: int = 10, epoch: int | None = None) -> tuple[list[ChatStanding], ChatStats]:
        """Chat points per sender: all time, or one glaze epoch."""
        if epoch is None:
            events = self.repository.fetch_family(CHAT_FAMILY)
        else:
            events = self.repository.fetch_epoch(CHAT_FAMILY, epoch)
        standings, stats = chat_standings(events, epoch)
        return standings[:limit], stats
