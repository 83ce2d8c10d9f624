"""Plausibility checks for client-submitted game scores.

The validator only flags. Flagged scores are stored like any other and wait
for review; nothing here raises on odd or partial metrics.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from settlement_node.entities.score import AntiCheatVerdict

logger = logging.getLogger(__name__)


class GameMetrics(BaseModel):
    """Client telemetry, camelCase on the wire. Missing fields default to 0."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    game_duration_ms: float = 0
    survival_time_seconds: float = 0
    kills: int = 0
    xp_collected: float = 0
    level: int = 0
    weapons_acquired: int = 0
    gadgets_acquired: int = 0
    bosses_defeated: int = 0
    power_ups_collected: int = 0
    damage_dealt: float = 0
    damage_taken: float = 0
    kills_per_minute: float = 0
    xp_per_minute: float = 0
    checksum: str = ""


@dataclass(frozen=True)
class AntiCheatLimits:
    min_duration_ms: int = 30_000
    short_game_score: int = 100
    duration_tolerance_ms: int = 5_000
    rate_check_after_seconds: int = 60
    max_kills_per_minute: float = 60
    max_xp_per_minute: float = 300
    seconds_per_level: int = 12
    level_slack: int = 5
    level_floor: int = 25
    score_tolerance: int = 5
    first_boss_seconds: int = 580
    final_boss_seconds: int = 1180
    max_loadout: int = 4
    trust_threshold: int = 100


def _num(value: float) -> str:
    """Render numbers the way a JS client stringifies them (no trailing .0)."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def rolling_checksum(text: str) -> str:
    """32-bit signed rolling hash rendered as signed lower-case hex."""
    h = 0
    for char in text:
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return format(h, "x")


def expected_checksum(score: int, metrics: GameMetrics, entry_id: str) -> str:
    payload = "-".join(
        [
            _num(score),
            _num(metrics.game_duration_ms),
            _num(metrics.survival_time_seconds),
            str(metrics.kills),
            str(metrics.level),
            entry_id,
        ]
    )
    return rolling_checksum(payload)


def parse_metrics(raw: dict[str, Any] | GameMetrics | None) -> GameMetrics | None:
    if raw is None or isinstance(raw, GameMetrics):
        return raw
    try:
        return GameMetrics.model_validate(raw)
    except ValidationError as exc:
        # unparseable telemetry still counts as submitted; every field falls back to 0
        logger.warning("Unparseable game metrics (%d errors); using defaults", exc.error_count())
        return GameMetrics()


def detect_patterns(score: int, m: GameMetrics, limits: AntiCheatLimits) -> list[str]:
    reasons: list[str] = []

    if m.game_duration_ms < limits.min_duration_ms and score > limits.short_game_score:
        reasons.append(f"Game too short: {_num(m.game_duration_ms)}ms with score {score}")

    if abs(m.survival_time_seconds * 1000 - m.game_duration_ms) > limits.duration_tolerance_ms:
        reasons.append(
            f"Survival time mismatch: {_num(m.survival_time_seconds)}s vs {_num(m.game_duration_ms)}ms duration"
        )

    long_enough = m.survival_time_seconds > limits.rate_check_after_seconds
    if long_enough and m.kills_per_minute > limits.max_kills_per_minute:
        reasons.append(f"Impossible kill rate: {_num(m.kills_per_minute)} kills/min")

    max_level = int(m.survival_time_seconds // limits.seconds_per_level) + limits.level_slack
    if m.level > max_level and m.level > limits.level_floor:
        reasons.append(f"Level {m.level} too high for {_num(m.survival_time_seconds)}s survival")

    if long_enough and m.xp_per_minute > limits.max_xp_per_minute:
        reasons.append(f"XP rate too high: {_num(m.xp_per_minute)} XP/min")

    if abs(score - m.kills) > limits.score_tolerance:
        reasons.append(f"Score mismatch: got {score}, expected {m.kills}")

    if m.kills == 0 and score > 0:
        reasons.append(f"No kills but score is {score}")

    if m.bosses_defeated > 0 and m.survival_time_seconds < limits.first_boss_seconds:
        reasons.append(f"Boss defeated before 10 minutes: {_num(m.survival_time_seconds)}s")
    if m.bosses_defeated > 1 and m.survival_time_seconds < limits.final_boss_seconds:
        reasons.append(f"Final boss defeated before 20 minutes: {_num(m.survival_time_seconds)}s")

    if m.weapons_acquired > limits.max_loadout or m.gadgets_acquired > limits.max_loadout:
        reasons.append(f"Too many weapons/gadgets: {m.weapons_acquired}/{m.gadgets_acquired}")

    return reasons


def validate(
    score: int,
    metrics: dict[str, Any] | GameMetrics | None,
    entry_id: str,
    limits: AntiCheatLimits | None = None,
) -> AntiCheatVerdict:
    limits = limits or AntiCheatLimits()
    parsed = parse_metrics(metrics)

    if parsed is None:
        if score > limits.trust_threshold:
            reasons = [f"No metrics submitted with score > {limits.trust_threshold}"]
            logger.warning("Flagged entry %s: %s", entry_id, reasons[0])
            return AntiCheatVerdict(entry_id=entry_id, flagged=True, reasons=reasons)
        return AntiCheatVerdict(entry_id=entry_id)

    reasons: list[str] = []
    checksum_valid = parsed.checksum == expected_checksum(score, parsed, entry_id)
    if not checksum_valid:
        reasons.append("Checksum mismatch - possible tampering")
    reasons.extend(detect_patterns(score, parsed, limits))

    if reasons:
        logger.warning("Flagged entry %s: %s", entry_id, "; ".join(reasons))
    return AntiCheatVerdict(
        entry_id=entry_id,
        flagged=bool(reasons),
        reasons=reasons,
        checksum_valid=checksum_valid,
    )
