"""Read-only chain access with provider fallback and bounded retries.

Every call tries the configured providers in order. A round in which all of
them fail is retried with exponential backoff; when the attempts run out the
call raises TransientInfraFailure. A transaction that does not exist is not a
failure and comes back as None.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence, TypeVar

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential
from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound

from settlement_node.chain.abi import ERC20_ABI
from settlement_node.errors import TransientInfraFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


def hexstr(value: Any) -> str:
    """Render bytes-like or hex values as lower-case 0x-prefixed strings."""
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    text = str(value).lower()
    return text if text.startswith("0x") else "0x" + text


def _address(value: Any) -> str | None:
    return str(value).lower() if value else None


@dataclass(frozen=True)
class LogView:
    address: str
    topics: tuple[str, ...]
    data: str

    @classmethod
    def from_web3(cls, log: Any) -> "LogView":
        return cls(
            address=_address(log["address"]) or "",
            topics=tuple(hexstr(t) for t in log.get("topics", [])),
            data=hexstr(log.get("data", b"")),
        )


@dataclass(frozen=True)
class TransactionView:
    tx_hash: str
    from_address: str
    to_address: str | None
    input: str
    value: int
    block_number: int | None

    @classmethod
    def from_web3(cls, tx: Any) -> "TransactionView":
        return cls(
            tx_hash=hexstr(tx.get("hash")),
            from_address=_address(tx.get("from")) or "",
            to_address=_address(tx.get("to")),
            input=hexstr(tx.get("input", b"")),
            value=int(tx.get("value") or 0),
            block_number=tx.get("blockNumber"),
        )


@dataclass(frozen=True)
class ReceiptView:
    tx_hash: str
    status: int
    block_number: int | None
    from_address: str
    to_address: str | None
    logs: tuple[LogView, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_web3(cls, receipt: Any) -> "ReceiptView":
        return cls(
            tx_hash=hexstr(receipt.get("transactionHash")),
            status=int(receipt.get("status", 0)),
            block_number=receipt.get("blockNumber"),
            from_address=_address(receipt.get("from")) or "",
            to_address=_address(receipt.get("to")),
            logs=tuple(LogView.from_web3(log) for log in receipt.get("logs", [])),
        )


class _AllProvidersFailed(Exception):
    pass


class ChainReader:
    def __init__(self, providers: Sequence[Web3], max_attempts: int = 3, backoff_seconds: float = 0.5):
        if not providers:
            raise ValueError("ChainReader needs at least one provider")
        self._providers = list(providers)
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    @classmethod
    def from_urls(cls, urls: Sequence[str], timeout_seconds: float = 10.0, max_attempts: int = 3) -> "ChainReader":
        providers = [
            Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": timeout_seconds}))
            for url in urls
        ]
        return cls(providers, max_attempts=max_attempts)

    @property
    def primary(self) -> Web3:
        return self._providers[0]

    # --- fallback / retry -------------------------------------------------

    def _round(self, label: str, fn: Callable[[Web3], T]) -> T:
        last_error: Exception | None = None
        for index, w3 in enumerate(self._providers):
            try:
                return fn(w3)
            except ContractLogicError:
                raise
            except Exception as exc:
                logger.warning("RPC %s failed on provider #%d: %s", label, index, exc)
                last_error = exc
        raise _AllProvidersFailed(label) from last_error

    def _run(self, label: str, fn: Callable[[Web3], T]) -> T:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=8),
            retry=retry_if_exception_type(_AllProvidersFailed),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(self._round, label, fn)
        except _AllProvidersFailed as exc:
            raise TransientInfraFailure(f"{label}: all RPC providers failed") from exc

    # --- reads ------------------------------------------------------------

    def get_receipt(self, tx_hash: str) -> ReceiptView | None:
        def _fetch(w3: Web3) -> ReceiptView | None:
            try:
                receipt = w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None
            return ReceiptView.from_web3(receipt) if receipt else None

        return self._run("get_receipt", _fetch)

    def get_transaction(self, tx_hash: str) -> TransactionView | None:
        def _fetch(w3: Web3) -> TransactionView | None:
            try:
                tx = w3.eth.get_transaction(tx_hash)
            except TransactionNotFound:
                return None
            return TransactionView.from_web3(tx) if tx else None

        return self._run("get_transaction", _fetch)

    def get_logs(
        self,
        address: str,
        topics: list[str | None],
        from_block: int | str = "earliest",
        to_block: int | str = "latest",
    ) -> list[LogView]:
        params = {
            "address": Web3.to_checksum_address(address),
            "topics": topics,
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        return self._run("get_logs", lambda w3: [LogView.from_web3(log) for log in w3.eth.get_logs(params)])

    def call(self, address: str, abi: list[dict[str, Any]], fn_name: str, *args: Any) -> Any:
        def _call(w3: Web3) -> Any:
            contract = w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)
            return contract.functions[fn_name](*args).call()

        return self._run(f"call {fn_name}", _call)

    def get_balance(self, address: str) -> int:
        return int(self._run("get_balance", lambda w3: w3.eth.get_balance(Web3.to_checksum_address(address))))

    def token_balance(self, token: str, holder: str) -> int:
        return int(self.call(token, ERC20_ABI, "balanceOf", Web3.to_checksum_address(holder)))
