"""Confirms that a client-supplied tx hash performed the claimed action.

Checks run in a fixed order and stop at the first failure, so a rejection
always names the earliest thing that was wrong with the transaction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from settlement_node.chain.abi import FunctionSchema
from settlement_node.chain.reader import ReceiptView, TransactionView
from settlement_node.errors import VerificationFailure

logger = logging.getLogger(__name__)

NOT_FOUND = "not_found"
REVERTED = "reverted"
WRONG_CONTRACT = "wrong_contract"
WRONG_FUNCTION = "wrong_function"
PARAM_MISMATCH = "param_mismatch"
SENDER_MISMATCH = "sender_mismatch"


class ReceiptSource(Protocol):
    def get_receipt(self, tx_hash: str) -> ReceiptView | None: ...

    def get_transaction(self, tx_hash: str) -> TransactionView | None: ...


@dataclass(frozen=True)
class ParamCheck:
    name: str
    predicate: Callable[[Any], bool]
    description: str = ""


def param_equals(name: str, expected: Any) -> ParamCheck:
    if isinstance(expected, str):
        wanted = expected.lower()
        return ParamCheck(name, lambda v: isinstance(v, str) and v.lower() == wanted, f"{name} == {expected}")
    return ParamCheck(name, lambda v: v == expected, f"{name} == {expected!r}")


@dataclass(frozen=True)
class VerificationRequest:
    tx_hash: str
    claimed_sender: str
    expected_contract: str
    schema: FunctionSchema
    param_checks: tuple[ParamCheck, ...] = ()


@dataclass
class VerificationResult:
    tx_hash: str
    ok: bool
    reason: str | None = None
    detail: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    transaction: TransactionView | None = None
    receipt: ReceiptView | None = None

    def raise_for_status(self) -> "VerificationResult":
        if not self.ok:
            raise VerificationFailure(self.reason or "rejected", self.detail)
        return self

    @classmethod
    def verified(cls, tx_hash: str, params: dict[str, Any], transaction: TransactionView, receipt: ReceiptView) -> "VerificationResult":
        return cls(tx_hash=tx_hash, ok=True, params=params, transaction=transaction, receipt=receipt)

    @classmethod
    def rejected(cls, tx_hash: str, reason: str, detail: str | None = None) -> "VerificationResult":
        logger.info("Rejected %s: %s%s", tx_hash, reason, f" ({detail})" if detail else "")
        return cls(tx_hash=tx_hash, ok=False, reason=reason, detail=detail)


class CallVerifier:
    def __init__(self, reader: ReceiptSource):
        self.reader = reader

    def verify(self, request: VerificationRequest) -> VerificationResult:
        tx_hash = request.tx_hash

        receipt = self.reader.get_receipt(tx_hash)
        if receipt is None:
            return VerificationResult.rejected(tx_hash, NOT_FOUND, "no receipt")
        if not receipt.succeeded:
            return VerificationResult.rejected(tx_hash, REVERTED)

        tx = self.reader.get_transaction(tx_hash)
        if tx is None:
            return VerificationResult.rejected(tx_hash, NOT_FOUND, "no transaction body")

        if (tx.to_address or "") != request.expected_contract.lower():
            return VerificationResult.rejected(tx_hash, WRONG_CONTRACT, f"sent to {tx.to_address}")

        if not request.schema.matches(tx.input):
            return VerificationResult.rejected(tx_hash, WRONG_FUNCTION, f"selector {tx.input[:10]}")

        try:
            params = request.schema.decode(tx.input)
        except Exception as exc:  # eth_abi raises several decoding error types
            return VerificationResult.rejected(tx_hash, PARAM_MISMATCH, f"undecodable input: {exc}")

        for check in request.param_checks:
            if check.name not in params or not check.predicate(params[check.name]):
                return VerificationResult.rejected(tx_hash, PARAM_MISMATCH, check.description or check.name)

        if tx.from_address != request.claimed_sender.lower():
            return VerificationResult.rejected(tx_hash, SENDER_MISMATCH, f"sent by {tx.from_address}")

        return VerificationResult.verified(tx_hash, params, tx, receipt)
