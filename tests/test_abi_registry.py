from __future__ import annotations

import unittest

from eth_abi import encode

from settlement_node.chain.abi import (
    CHAT_SEND,
    DONUT_MINE,
    ERC20_TRANSFER,
    REGISTRY,
    TRANSFER_TOPIC,
    FunctionSchema,
)

PROVIDER = "0x30cb501b97c6b87b7b240755c730a9795dbb84f5"


def _call(schema: FunctionSchema, *values) -> str:
    return schema.selector + encode(list(schema.param_types), list(values)).hex()


class TestFunctionSchema(unittest.TestCase):
    def test_known_selectors(self):
        self.assertEqual(ERC20_TRANSFER.selector, "0xa9059cbb")
        self.assertEqual(TRANSFER_TOPIC, "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef")

    def test_signature_parsing(self):
        self.assertEqual(DONUT_MINE.name, "mine")
        self.assertEqual(DONUT_MINE.param_types, ("address", "uint256", "uint256", "uint256", "string"))

    def test_mismatched_names_rejected(self):
        with self.assertRaises(ValueError):
            FunctionSchema("transfer(address,uint256)", ("to",))
        with self.assertRaises(ValueError):
            FunctionSchema("transfer", ())

    def test_decode_normalises_addresses(self):
        data = _call(DONUT_MINE, PROVIDER, 7, 1_700_000_000, 10**18, "ipfs://glaze")
        params = DONUT_MINE.decode(data)
        self.assertEqual(params["provider"], PROVIDER)
        self.assertEqual(params["epochId"], 7)
        self.assertEqual(params["uri"], "ipfs://glaze")

    def test_decode_rejects_other_selector(self):
        with self.assertRaises(ValueError):
            DONUT_MINE.decode(_call(CHAT_SEND, "gm"))


class TestRegistry(unittest.TestCase):
    def test_lookup_by_input_prefix(self):
        data = _call(CHAT_SEND, "hello")
        self.assertIs(REGISTRY.lookup(data), CHAT_SEND)
        schema, params = REGISTRY.decode(data)
        self.assertIs(schema, CHAT_SEND)
        self.assertEqual(params, {"message": "hello"})

    def test_unknown_selector(self):
        self.assertIsNone(REGISTRY.decode("0xdeadbeef"))
        self.assertIsNone(REGISTRY.lookup(""))


if __name__ == "__main__":
    unittest.main()
