from __future__ import annotations

import unittest

from eth_abi import encode

from settlement_node.chain.abi import CHAT_SEND, DONUT_MINE
from settlement_node.chain.reader import ReceiptView, TransactionView
from settlement_node.errors import VerificationFailure
from settlement_node.services import call_verifier
from settlement_node.services.call_verifier import CallVerifier, VerificationRequest, param_equals

TX = "0x" + "ab" * 32
SENDER = "0x00000000000000000000000000000000000000a1"
MULTICALL = "0x3ec144554b484c6798a683e34c8e8e222293f323"
REFERRER = "0x30cb501b97c6b87b7b240755c730a9795dbb84f5"


def mine_input(provider: str = REFERRER) -> str:
    return DONUT_MINE.selector + encode(
        list(DONUT_MINE.param_types), [provider, 3, 1_700_000_000, 10**16, "ipfs://x"]
    ).hex()


class FakeReader:
    def __init__(self, receipt=None, transaction=None):
        self.receipt = receipt
        self.transaction = transaction

    def get_receipt(self, tx_hash):
        return self.receipt

    def get_transaction(self, tx_hash):
        return self.transaction


def _receipt(status: int = 1) -> ReceiptView:
    return ReceiptView(tx_hash=TX, status=status, block_number=10, from_address=SENDER, to_address=MULTICALL)


def _tx(to: str = MULTICALL, data: str | None = None, sender: str = SENDER) -> TransactionView:
    return TransactionView(
        tx_hash=TX, from_address=sender, to_address=to, input=data or mine_input(), value=5, block_number=10
    )


def _request(sender: str = SENDER) -> VerificationRequest:
    return VerificationRequest(
        tx_hash=TX,
        claimed_sender=sender,
        expected_contract=MULTICALL,
        schema=DONUT_MINE,
        param_checks=(param_equals("provider", REFERRER.upper().replace("0X", "0x")),),
    )


class TestCallVerifier(unittest.TestCase):
    def _verify(self, reader, request=None):
        return CallVerifier(reader).verify(request or _request())

    def test_verified_call(self):
        result = self._verify(FakeReader(_receipt(), _tx()))
        self.assertTrue(result.ok)
        self.assertEqual(result.params["provider"], REFERRER)
        self.assertIs(result.raise_for_status(), result)

    def test_missing_receipt(self):
        result = self._verify(FakeReader(None, _tx()))
        self.assertEqual(result.reason, call_verifier.NOT_FOUND)

    def test_reverted(self):
        self.assertEqual(self._verify(FakeReader(_receipt(0), _tx())).reason, call_verifier.REVERTED)

    def test_missing_body(self):
        self.assertEqual(self._verify(FakeReader(_receipt(), None)).reason, call_verifier.NOT_FOUND)

    def test_wrong_contract(self):
        result = self._verify(FakeReader(_receipt(), _tx(to="0x" + "9" * 40)))
        self.assertEqual(result.reason, call_verifier.WRONG_CONTRACT)

    def test_wrong_function(self):
        chat = CHAT_SEND.selector + encode(["string"], ["gm"]).hex()
        result = self._verify(FakeReader(_receipt(), _tx(data=chat)))
        self.assertEqual(result.reason, call_verifier.WRONG_FUNCTION)

    def test_undecodable_input(self):
        result = self._verify(FakeReader(_receipt(), _tx(data=DONUT_MINE.selector + "00")))
        self.assertEqual(result.reason, call_verifier.PARAM_MISMATCH)

    def test_param_mismatch(self):
        result = self._verify(FakeReader(_receipt(), _tx(data=mine_input(provider="0x" + "1" * 40))))
        self.assertEqual(result.reason, call_verifier.PARAM_MISMATCH)

    def test_sender_checked_last(self):
        result = self._verify(FakeReader(_receipt(), _tx()), _request(sender="0x" + "b" * 40))
        self.assertEqual(result.reason, call_verifier.SENDER_MISMATCH)
        with self.assertRaises(VerificationFailure) as ctx:
            result.raise_for_status()
        self.assertEqual(ctx.exception.reason, call_verifier.SENDER_MISMATCH)

    def test_sender_compared_case_insensitively(self):
        result = self._verify(FakeReader(_receipt(), _tx()), _request(sender=SENDER.upper().replace("0X", "0x")))
        self.assertTrue(result.ok)


if __name__ == "__main__":
    unittest.main()
