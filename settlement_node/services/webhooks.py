"""Address-activity webhooks as one more source of claims.

The payload is only used to learn tx hashes. Each hash goes through the same
chain verification and ledger as a client-reported claim.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

from settlement_node.services.claims import ClaimService

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-alchemy-signature"


def verify_signature(body: bytes, signature: str | None, key: str) -> bool:
    if not key:
        logger.warning("Webhook signing key not configured; rejecting delivery")
        return False
    if not signature:
        return False
    expected = hmac.new(key.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


def extract_transactions(payload: dict[str, Any]) -> list[str]:
    """Distinct lower-cased tx hashes from activity and transaction entries."""
    event = payload.get("event") or {}
    hashes: list[str] = []

    def _add(value: Any) -> None:
        if isinstance(value, str) and value.startswith("0x"):
            tx_hash = value.lower()
            if tx_hash not in hashes:
                hashes.append(tx_hash)

    for activity in event.get("activity") or []:
        if isinstance(activity, dict):
            _add(activity.get("hash"))

    transactions = event.get("transactions") or [event.get("transaction")]
    for tx in transactions:
        if isinstance(tx, dict):
            _add(tx.get("hash"))

    return hashes


def process_webhook(claims: ClaimService, payload: dict[str, Any]) -> list[dict[str, Any]]:
    results = []
    for tx_hash in extract_transactions(payload):
        outcome = claims.record_observed(tx_hash)
        results.append({"txHash": tx_hash, **outcome.to_payload()})
    logger.info("Webhook delivered %d transactions", len(results))
    return results
