from __future__ import annotations

import logging
from typing import Any

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3RPCError

from settlement_node.chain.reader import hexstr
from settlement_node.errors import TransientInfraFailure

logger = logging.getLogger(__name__)

FALLBACK_GAS = 300_000
GAS_HEADROOM = 1.2


class ChainWriter:
    """Signs and submits payout transactions from one hot wallet."""

    def __init__(
        self,
        w3: Web3,
        private_key: str,
        chain_id: int,
        receipt_timeout: float = 120.0,
        max_attempts: int = 3,
    ):
        if not private_key:
            raise ValueError("a payout private key is required to send transactions")
        self.w3 = w3
        self._account = w3.eth.account.from_key(private_key)
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self.max_attempts = max_attempts

    @property
    def address(self) -> str:
        return self._account.address

    def gas_balance(self) -> int:
        return int(self.w3.eth.get_balance(self.address))

    def sign(self, contract_address: str, abi: list[dict[str, Any]], fn_name: str, *args: Any) -> tuple[str, bytes]:
        """Build and sign a contract call without sending it.

        Returns (tx_hash, raw). The hash is known before anything reaches the
        node, so callers can persist it and resolve a lost broadcast later.
        """
        contract = self.w3.eth.contract(address=Web3.to_checksum_address(contract_address), abi=abi)
        fn = contract.functions[fn_name](*args)

        nonce = self.w3.eth.get_transaction_count(self.address, "pending")
        try:
            gas_est = fn.estimate_gas({"from": self.address})
        except ContractLogicError:
            raise
        except Exception as exc:
            logger.warning("Gas estimation for %s failed (%s); using %d", fn_name, exc, FALLBACK_GAS)
            gas_est = FALLBACK_GAS

        tx = fn.build_transaction({
            "from": self.address,
            "nonce": nonce,
            "chainId": self.chain_id,
            "gas": int(gas_est * GAS_HEADROOM),
            "gasPrice": self.w3.eth.gas_price,
        })
        signed = self._account.sign_transaction(tx)
        tx_hash = hexstr(signed.hash)
        logger.info("Signed %s to %s: %s (nonce %d)", fn_name, contract_address, tx_hash, nonce)
        return tx_hash, bytes(signed.raw_transaction)

    def broadcast(self, tx_hash: str, raw: bytes) -> None:
        """Send signed bytes. Retries resend the same bytes, never a new transaction."""
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=8),
            retry=retry_if_exception_type((ConnectionError, TimeoutError, OSError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            retrying(self.w3.eth.send_raw_transaction, raw)
        except (ConnectionError, TimeoutError, OSError) as exc:
            raise TransientInfraFailure(f"broadcast of {tx_hash} failed") from exc
        except (ValueError, Web3RPCError) as exc:
            # node already holds these exact bytes from an earlier attempt
            if "already known" not in str(exc).lower():
                raise
        logger.info("Broadcast %s", tx_hash)

    def wait(self, tx_hash: str) -> str:
        """Wait for the receipt: 'success', 'reverted' or 'timeout'."""
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted:
            try:
                receipt = self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                logger.warning("No receipt for %s after %.0fs", tx_hash, self.receipt_timeout)
                return "timeout"
        status = "success" if int(receipt.get("status", 0)) == 1 else "reverted"
        logger.info("Transaction %s confirmed: %s", tx_hash, status)
        return status
