"""Function schemas keyed by selector.

Selectors are derived from the canonical signature at import time, so a
signature change is a one-line edit here and every verifier check becomes a
registry lookup instead of ad hoc input slicing.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from eth_abi import decode as abi_decode
from eth_utils import keccak


def _hex(data: bytes) -> str:
    return "0x" + data.hex()


def _strip0x(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


def _normalise(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return str(value).lower()
    if isinstance(value, (bytes, bytearray)):
        return _hex(bytes(value))
    return value


@dataclass(frozen=True)
class FunctionSchema:
    signature: str
    param_names: tuple[str, ...]
    name: str = field(init=False)
    param_types: tuple[str, ...] = field(init=False)
    selector: str = field(init=False)

    def __post_init__(self) -> None:
        name, _, rest = self.signature.partition("(")
        if not name or not rest.endswith(")"):
            raise ValueError(f"not a canonical signature: {self.signature!r}")
        inner = rest[:-1]
        if "(" in inner:
            raise ValueError(f"tuple parameters are not supported: {self.signature!r}")
        types = tuple(t.strip() for t in inner.split(",")) if inner else ()
        if len(types) != len(self.param_names):
            raise ValueError(
                f"{self.signature}: {len(types)} types but {len(self.param_names)} names"
            )
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "param_types", types)
        object.__setattr__(self, "selector", _hex(keccak(text=self.signature)[:4]))

    def matches(self, input_hex: str) -> bool:
        return (input_hex or "").lower().startswith(self.selector)

    def decode(self, input_hex: str) -> dict[str, Any]:
        """Decode call data (selector included) into named, normalised params."""
        if not self.matches(input_hex):
            raise ValueError(f"input does not start with {self.selector} ({self.signature})")
        body = bytes.fromhex(_strip0x(input_hex)[8:])
        values = abi_decode(list(self.param_types), body)
        return {
            name: _normalise(abi_type, value)
            for name, abi_type, value in zip(self.param_names, self.param_types, values)
        }


class FunctionRegistry:
    def __init__(self, schemas: list[FunctionSchema] | None = None):
        self._by_selector: dict[str, list[FunctionSchema]] = {}
        for schema in schemas or []:
            self.register(schema)

    def register(self, schema: FunctionSchema) -> None:
        bucket = self._by_selector.setdefault(schema.selector, [])
        if schema not in bucket:
            bucket.append(schema)

    def lookup(self, selector: str) -> FunctionSchema | None:
        bucket = self._by_selector.get(selector.lower()[:10])
        return bucket[0] if bucket else None

    def decode(self, input_hex: str) -> tuple[FunctionSchema, dict[str, Any]] | None:
        schema = self.lookup(input_hex or "")
        if schema is None:
            return None
        return schema, schema.decode(input_hex)


DONUT_MINE = FunctionSchema(
    "mine(address,uint256,uint256,uint256,string)",
    ("provider", "epochId", "deadline", "maxPrice", "uri"),
)
SPRINKLES_MINE = FunctionSchema(
    "mine(address,address,uint256,uint256,uint256,string)",
    ("to", "referrer", "epochId", "deadline", "maxPrice", "uri"),
)
CHAT_SEND = FunctionSchema("sendMessage(string)", ("message",))
ERC20_TRANSFER = FunctionSchema("transfer(address,uint256)", ("to", "amount"))
DISTRIBUTE_WEEKLY = FunctionSchema(
    "distributeWeekly(address,address,address,uint256)",
    ("first", "second", "third", "weekNumber"),
)

REGISTRY = FunctionRegistry([DONUT_MINE, SPRINKLES_MINE, CHAT_SEND, ERC20_TRANSFER, DISTRIBUTE_WEEKLY])

TRANSFER_TOPIC = _hex(keccak(text="Transfer(address,address,uint256)"))

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


# Minimal JSON ABIs for contract reads and writes.
ERC20_ABI: list[dict[str, Any]] = [
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

LEADERBOARD_POOL_ABI: list[dict[str, Any]] = [
    {
        "inputs": [
            {"name": "first", "type": "address"},
            {"name": "second", "type": "address"},
            {"name": "third", "type": "address"},
            {"name": "weekNumber", "type": "uint256"},
        ],
        "name": "distributeWeekly",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "canDistribute",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getBalance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "token", "type": "address"}],
        "name": "getTokenBalance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]
