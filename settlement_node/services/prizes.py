"""Splits a pool across ranked winners.

Only the first min(winners, places) percentages are consumed, and they are
renormalised so the whole pool is always paid out. Arithmetic is Decimal; the
rounding residue lands on rank 1 so the shares sum to the pool exactly.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Sequence

from settlement_node.entities.score import RankEntry

QUANTUM = Decimal("0.000000000000000001")  # 18 decimals


@dataclass(frozen=True)
class PrizeShare:
    rank: int
    player_key: str
    percent: Decimal
    amount: Decimal

    def to_payload(self) -> dict:
        return {
            "rank": self.rank,
            "playerKey": self.player_key,
            "percent": float(self.percent),
            "amount": float(self.amount),
        }


def _validate(total_pool: Decimal, percent_table: Sequence[float | int | Decimal]) -> list[Decimal]:
    if total_pool < 0:
        raise ValueError("total pool cannot be negative")
    percents = [Decimal(str(p)) for p in percent_table]
    if any(p < 0 for p in percents):
        raise ValueError("percentages cannot be negative")
    if sum(percents, Decimal(0)) > 100:
        raise ValueError("percent table sums above 100")
    return percents


def distribute(
    rank_entries: Sequence[RankEntry],
    total_pool: float | int | Decimal,
    percent_table: Sequence[float | int | Decimal],
) -> list[PrizeShare]:
    pool = Decimal(str(total_pool))
    percents = _validate(pool, percent_table)

    consumed = min(len(rank_entries), len(percents))
    if consumed == 0:
        return []

    used = percents[:consumed]
    weight = sum(used, Decimal(0))
    if weight == 0:
        return [PrizeShare(e.rank, e.player_key, Decimal(0), Decimal(0)) for e in rank_entries[:consumed]]

    amounts = [(pool * p / weight).quantize(QUANTUM, rounding=ROUND_DOWN) for p in used]
    amounts[0] += pool - sum(amounts, Decimal(0))

    return [
        PrizeShare(
            rank=entry.rank,
            player_key=entry.player_key,
            percent=(p / weight * 100),
            amount=amount,
        )
        for entry, p, amount in zip(rank_entries[:consumed], used, amounts)
    ]


def to_base_units(amount: Decimal | float, decimals: int) -> int:
    """Token amount to integer base units, rounded down."""
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(value: int, decimals: int) -> Decimal:
    return Decimal(value) / (Decimal(10) ** decimals)


def prize_structure(total_pool: float | Decimal, percent_table: Sequence[float | int]) -> list[dict]:
    """What each place would win if every place were filled."""
    pool = Decimal(str(total_pool))
    percents = _validate(pool, percent_table)
    return [
        {"rank": index, "percent": float(p), "amount": float(pool * p / 100)}
        for index, p in enumerate(percents, start=1)
    ]
