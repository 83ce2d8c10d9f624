from __future__ import annotations

import unittest
from types import SimpleNamespace

from web3 import Web3
from web3.exceptions import TimeExhausted, TransactionNotFound

from settlement_node.chain.reader import ChainReader
from settlement_node.chain.writer import ChainWriter
from settlement_node.errors import TransientInfraFailure

TX = "0x" + "cd" * 32


class FakeEth:
    def __init__(self, receipt=None, error: Exception | None = None, tx=None):
        self.receipt = receipt
        self.error = error
        self.tx = tx
        self.calls = 0
        self.account = SimpleNamespace(from_key=lambda key: SimpleNamespace(address="0x" + "a" * 40))

    def get_transaction_receipt(self, tx_hash):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if self.receipt is None:
            raise TransactionNotFound(f"Transaction with hash {tx_hash} not found")
        return self.receipt

    def get_transaction(self, tx_hash):
        if self.tx is None:
            raise TransactionNotFound(f"Transaction with hash {tx_hash} not found")
        return self.tx

    def wait_for_transaction_receipt(self, tx_hash, timeout):
        raise TimeExhausted(f"{tx_hash} not in chain after {timeout}s")


def _refuse(*args):
    raise ConnectionError("connection refused")


def _w3(**kwargs):
    return SimpleNamespace(eth=FakeEth(**kwargs))


RECEIPT = {
    "transactionHash": bytes.fromhex("cd" * 32),
    "status": 1,
    "blockNumber": 42,
    "from": "0xAbC0000000000000000000000000000000000001",
    "to": "0x3eC144554b484C6798A683E34c8e8E222293f323",
    "logs": [
        {
            "address": "0xA890060BE1788a676dBC3894160f5dc5DeD2C98D",
            "topics": [bytes.fromhex("ab" * 32)],
            "data": bytes.fromhex("01"),
        }
    ],
}


class TestChainReader(unittest.TestCase):
    def test_falls_back_to_next_provider(self):
        broken = _w3(error=ConnectionError("connection refused"))
        healthy = _w3(receipt=RECEIPT)
        reader = ChainReader([broken, healthy], max_attempts=1, backoff_seconds=0)

        receipt = reader.get_receipt(TX)

        self.assertTrue(receipt.succeeded)
        self.assertEqual(receipt.tx_hash, TX)
        self.assertEqual(receipt.from_address, "0xabc0000000000000000000000000000000000001")
        self.assertEqual(receipt.logs[0].data, "0x01")
        self.assertEqual(broken.eth.calls, 1)

    def test_unknown_transaction_is_none_not_failure(self):
        reader = ChainReader([_w3()], backoff_seconds=0)
        self.assertIsNone(reader.get_receipt(TX))
        self.assertIsNone(reader.get_transaction(TX))

    def test_exhausted_retries_raise_transient_failure(self):
        first = _w3(error=TimeoutError("read timed out"))
        second = _w3(error=ConnectionError("reset"))
        reader = ChainReader([first, second], max_attempts=3, backoff_seconds=0)

        with self.assertRaises(TransientInfraFailure):
            reader.get_receipt(TX)
        self.assertEqual(first.eth.calls, 3)
        self.assertEqual(second.eth.calls, 3)

    def test_logs_are_normalised(self):
        w3 = _w3()
        seen = []
        w3.eth.get_logs = lambda params: seen.append(params) or RECEIPT["logs"]
        reader = ChainReader([w3], backoff_seconds=0)

        logs = reader.get_logs(RECEIPT["logs"][0]["address"].lower(), ["0x" + "ab" * 32], from_block=10, to_block=20)

        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0].address, "0xa890060be1788a676dbc3894160f5dc5ded2c98d")
        self.assertEqual(logs[0].topics, ("0x" + "ab" * 32,))
        self.assertEqual(seen[0]["address"], Web3.to_checksum_address(logs[0].address))
        self.assertEqual((seen[0]["fromBlock"], seen[0]["toBlock"]), (10, 20))

    def test_balance_falls_back_to_next_provider(self):
        broken = _w3(error=ConnectionError("refused"))
        broken.eth.get_balance = _refuse
        healthy = _w3()
        healthy.eth.get_balance = lambda address: 7
        reader = ChainReader([broken, healthy], max_attempts=1, backoff_seconds=0)
        self.assertEqual(reader.get_balance("0x" + "a" * 40), 7)

    def test_requires_a_provider(self):
        with self.assertRaises(ValueError):
            ChainReader([])


class TestChainWriterWait(unittest.TestCase):
    def test_timeout_without_receipt(self):
        writer = ChainWriter(_w3(), "0x" + "11" * 32, chain_id=8453, receipt_timeout=1)
        self.assertEqual(writer.wait(TX), "timeout")

    def test_receipt_found_after_timeout(self):
        writer = ChainWriter(_w3(receipt={**RECEIPT, "status": 0}), "0x" + "11" * 32, chain_id=8453)
        self.assertEqual(writer.wait(TX), "reverted")

    def test_private_key_required(self):
        with self.assertRaises(ValueError):
            ChainWriter(_w3(), "", chain_id=8453)


class TestChainWriterBroadcast(unittest.TestCase):
    def _writer(self, *errors, max_attempts=1):
        w3 = _w3()
        sent = []
        pending = list(errors)

        def send_raw_transaction(raw):
            sent.append(raw)
            if pending:
                raise pending.pop(0)
            return bytes.fromhex("cd" * 32)

        w3.eth.send_raw_transaction = send_raw_transaction
        return ChainWriter(w3, "0x" + "11" * 32, chain_id=8453, max_attempts=max_attempts), sent

    def test_already_known_is_accepted(self):
        writer, sent = self._writer(ValueError("already known"))
        writer.broadcast(TX, b"\x01\x02")
        self.assertEqual(sent, [b"\x01\x02"])

    def test_lost_connection_raises_transient_failure(self):
        writer, _ = self._writer(ConnectionError("reset"))
        with self.assertRaises(TransientInfraFailure):
            writer.broadcast(TX, b"\x01")

    def test_retry_resends_the_same_bytes(self):
        writer, sent = self._writer(TimeoutError("read timed out"), max_attempts=2)
        writer.broadcast(TX, b"\x01\x02")
        self.assertEqual(sent, [b"\x01\x02", b"\x01\x02"])

    def test_other_node_errors_propagate(self):
        writer, _ = self._writer(ValueError("nonce too low"))
        with self.assertRaises(ValueError):
            writer.broadcast(TX, b"\x01")


if __name__ == "__main__":
    unittest.main()
