from __future__ import annotations

import unittest

from settlement_node.services import anti_cheat
from settlement_node.services.anti_cheat import (
    AntiCheatLimits,
    GameMetrics,
    detect_patterns,
    expected_checksum,
    rolling_checksum,
)


def _clean_metrics(score: int, entry_id: str) -> dict:
    metrics = {
        "gameDurationMs": 120_000,
        "survivalTimeSeconds": 120,
        "kills": score,
        "level": 10,
        "killsPerMinute": 20,
        "xpPerMinute": 100,
        "weaponsAcquired": 2,
        "gadgetsAcquired": 1,
    }
    metrics["checksum"] = expected_checksum(score, GameMetrics.model_validate(metrics), entry_id)
    return metrics


class TestChecksum(unittest.TestCase):
    def test_rolling_hash_known_values(self):
        self.assertEqual(rolling_checksum(""), "0")
        self.assertEqual(rolling_checksum("a"), "61")
        self.assertEqual(rolling_checksum("ab"), "c21")

    def test_integral_floats_render_without_fraction(self):
        a = expected_checksum(40, GameMetrics(game_duration_ms=120000.0, survival_time_seconds=120.0), "e1")
        b = expected_checksum(40, GameMetrics(game_duration_ms=120000, survival_time_seconds=120), "e1")
        self.assertEqual(a, b)


class TestValidate(unittest.TestCase):
    def test_consistent_game_is_not_flagged(self):
        verdict = anti_cheat.validate(40, _clean_metrics(40, "entry-1"), "entry-1")
        self.assertFalse(verdict.flagged)
        self.assertTrue(verdict.checksum_valid)
        self.assertEqual(verdict.reasons, [])

    def test_checksum_bound_to_entry(self):
        verdict = anti_cheat.validate(40, _clean_metrics(40, "entry-1"), "entry-2")
        self.assertTrue(verdict.flagged)
        self.assertFalse(verdict.checksum_valid)
        self.assertEqual(verdict.reasons, ["Checksum mismatch - possible tampering"])

    def test_short_game_without_kills(self):
        verdict = anti_cheat.validate(
            500,
            {"gameDurationMs": 10_000, "survivalTimeSeconds": 10, "kills": 0},
            "entry-3",
        )
        self.assertTrue(verdict.flagged)
        self.assertIn("Game too short: 10000ms with score 500", verdict.reasons)
        self.assertIn("No kills but score is 500", verdict.reasons)
        self.assertIn("Score mismatch: got 500, expected 0", verdict.reasons)

    def test_missing_metrics_above_trust_threshold(self):
        verdict = anti_cheat.validate(101, None, "entry-4")
        self.assertEqual(verdict.reasons, ["No metrics submitted with score > 100"])
        self.assertFalse(anti_cheat.validate(100, None, "entry-5").flagged)

    def test_trust_threshold_is_configurable(self):
        verdict = anti_cheat.validate(60, None, "entry-6", AntiCheatLimits(trust_threshold=50))
        self.assertEqual(verdict.reasons, ["No metrics submitted with score > 50"])

    def test_boss_and_loadout_patterns(self):
        metrics = _clean_metrics(40, "entry-7")
        metrics.update(bossesDefeated=2, weaponsAcquired=6)
        reasons = anti_cheat.validate(40, metrics, "entry-7").reasons
        self.assertIn("Boss defeated before 10 minutes: 120s", reasons)
        self.assertIn("Final boss defeated before 20 minutes: 120s", reasons)
        self.assertIn("Too many weapons/gadgets: 6/1", reasons)

    def test_unparseable_metrics_fall_back_to_defaults(self):
        verdict = anti_cheat.validate(3, {"kills": "lots"}, "entry-8")
        self.assertTrue(verdict.flagged)
        self.assertFalse(verdict.checksum_valid)



def _metrics(**overrides) -> GameMetrics:
    fields = {
        "game_duration_ms": 120_000,
        "survival_time_seconds": 120,
        "kills": 40,
        "level": 10,
        "kills_per_minute": 20,
        "xp_per_minute": 100,
    }
    fields.update(overrides)
    return GameMetrics(**fields)


class TestDetectPatterns(unittest.TestCase):
    limits = AntiCheatLimits()

    def _reasons(self, **overrides) -> list[str]:
        return detect_patterns(40, _metrics(**overrides), self.limits)

    def test_baseline_is_clean(self):
        self.assertEqual(self._reasons(), [])

    def test_kill_rate_bound(self):
        self.assertEqual(self._reasons(kills_per_minute=61), ["Impossible kill rate: 61 kills/min"])
        self.assertEqual(self._reasons(kills_per_minute=60), [])

    def test_xp_rate_bound(self):
        self.assertEqual(self._reasons(xp_per_minute=301), ["XP rate too high: 301 XP/min"])
        self.assertEqual(self._reasons(xp_per_minute=300), [])

    def test_rates_ignored_up_to_sixty_seconds(self):
        at_limit = self._reasons(
            survival_time_seconds=60, game_duration_ms=60_000, kills_per_minute=500, xp_per_minute=5_000
        )
        self.assertEqual(at_limit, [])

        past_limit = self._reasons(
            survival_time_seconds=61, game_duration_ms=61_000, kills_per_minute=500, xp_per_minute=5_000
        )
        self.assertEqual(past_limit, [
            "Impossible kill rate: 500 kills/min",
            "XP rate too high: 5000 XP/min",
        ])

    def test_level_plausibility(self):
        # 120s allows 120 // 12 + 5 = 15
        self.assertEqual(self._reasons(level=26), ["Level 26 too high for 120s survival"])
        self.assertEqual(self._reasons(level=15), [])
        # above the survival bound but not above the floor of 25
        self.assertEqual(self._reasons(level=25), [])
        # 300s allows exactly 30
        self.assertEqual(self._reasons(level=30, survival_time_seconds=300, game_duration_ms=300_000), [])
        self.assertEqual(
            self._reasons(level=31, survival_time_seconds=300, game_duration_ms=300_000),
            ["Level 31 too high for 300s survival"],
        )

    def test_survival_duration_tolerance(self):
        self.assertEqual(self._reasons(game_duration_ms=125_000), [])
        self.assertEqual(self._reasons(game_duration_ms=115_000), [])
        self.assertEqual(
            self._reasons(game_duration_ms=125_001),
            ["Survival time mismatch: 120s vs 125001ms duration"],
        )
        self.assertEqual(
            self._reasons(game_duration_ms=114_999),
            ["Survival time mismatch: 120s vs 114999ms duration"],
        )


if __name__ == "__main__":
    unittest.main()
