from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from pydantic import ValidationError

from settlement_node.config.families import ContractPool, FixedPool, LeaderboardFamily, load_families
from settlement_node.config.runtime import ContractAddresses
from settlement_node.errors import UnknownFamily


class TestFamilies(unittest.TestCase):
    def test_defaults(self):
        families = load_families(None, ContractAddresses.from_env())
        self.assertEqual(families.names(), ["glaze", "flappy", "donut_survivors", "stack_tower"])
        self.assertIsInstance(families.get("glaze").pool, ContractPool)
        self.assertEqual(families.get("glaze").scoring, "points")
        self.assertTrue(families.get("donut_survivors").anti_cheat)
        with self.assertRaises(UnknownFamily):
            families.get("tetris")

    def test_load_from_json(self):
        payload = [{
            "name": "snake",
            "anchor": "2025-02-07T23:00:00",
            "period_seconds": 86400,
            "percent_table": [70, 30],
            "pool": {"kind": "fixed", "amount": 10, "asset": {"name": "USDC", "token": "0x" + "C" * 40, "decimals": 6}},
        }]
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "families.json"
            path.write_text(json.dumps(payload), encoding="utf-8")
            families = load_families(str(path))

        snake = families.get("snake")
        self.assertIsInstance(snake.pool, FixedPool)
        self.assertEqual(snake.pool.asset.token, "0x" + "c" * 40)
        self.assertEqual(snake.anchor.tzinfo.utcoffset(None).total_seconds(), 0)

    def test_invalid_tables_rejected(self):
        base = {"name": "x", "anchor": "2025-01-01T00:00:00Z"}
        fixed = {"kind": "fixed", "amount": 1, "asset": {"name": "USDC", "token": "0x" + "1" * 40}}
        with self.assertRaises(ValidationError):
            LeaderboardFamily.model_validate({**base, "percent_table": [80, 30], "pool": fixed})
        with self.assertRaises(ValidationError):
            LeaderboardFamily.model_validate(
                {**base, "percent_table": [40, 30, 20, 10], "pool": {"kind": "contract", "address": "0x" + "4" * 40}}
            )
        with self.assertRaises(ValidationError):
            LeaderboardFamily.model_validate(
                {**base, "pool": {"kind": "fixed", "amount": 1, "asset": {"name": "ETH"}}}
            )


if __name__ == "__main__":
    unittest.main()
