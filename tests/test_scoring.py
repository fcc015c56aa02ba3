import unittest

import numpy as np
import pandas as pd

from orb_score.config import FIVE_ZONES, FOUR_ZONES
from orb_score.metrics.returns import PriceSeries
from orb_score.registry import SetupRegistry, UnknownSetupError
from orb_score.scoring.compose import compose_daily_scores, compose_score
from orb_score.scoring.zones import (
    ZoneThresholds,
    assign_zone,
    assign_zones,
    calibrate_thresholds,
    zone_display,
    zone_distribution,
)

MULTIPLIERS = {"active": 1.0, "watching": 0.3, "inactive": 0.0}
FOUR_SHARES = [0.15, 0.50, 0.25, 0.10]
FIVE_SHARES = [0.10, 0.20, 0.40, 0.20, 0.10]


class TestComposeScore(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = SetupRegistry.from_mapping({"up": "buy", "down": "avoid", "quiet": "buy"})
        self.weights = {"up": 1.5, "down": 0.8, "quiet": 0.3}

    def test_signed_weighted_sum(self) -> None:
        score = compose_score({"up": "active", "down": "watching"}, self.weights, self.registry, MULTIPLIERS)
        self.assertEqual(score, round(1.5 - 0.8 * 0.3, 3))
        self.assertEqual(compose_score({"down": "active"}, self.weights, self.registry, MULTIPLIERS), -0.8)

    def test_absent_and_inactive_setups_contribute_nothing(self) -> None:
        self.assertEqual(compose_score({}, self.weights, self.registry, MULTIPLIERS), 0.0)
        score = compose_score({"up": "inactive", "down": "inactive"}, self.weights, self.registry, MULTIPLIERS)
        self.assertEqual(score, 0.0)
        self.assertEqual(str(score), "0.0")

    def test_unknown_setup_and_bad_status_raise(self) -> None:
        with self.assertRaises(UnknownSetupError):
            compose_score({"ghost": "active"}, self.weights, self.registry, MULTIPLIERS)
        with self.assertRaises(ValueError):
            compose_score({"up": "maybe"}, self.weights, self.registry, MULTIPLIERS)

    def test_daily_scores_skip_days_without_price(self) -> None:
        dates = list(pd.bdate_range("2024-01-01", periods=3).date)
        statuses = pd.DataFrame({
            "date": dates,
            "setup_id": ["up", "up", "up"],
            "status": ["active", "watching", "inactive"],
        })
        prices = PriceSeries(pd.Series([10.0, 11.0], index=[dates[0], dates[2]]))
        daily, warnings = compose_daily_scores(statuses, prices, self.weights, self.registry, MULTIPLIERS)
        self.assertEqual(list(daily["date"]), [dates[0], dates[2]])
        self.assertEqual(list(daily["score"]), [1.5, 0.0])
        self.assertEqual(len(warnings), 1)
        unpriced, _ = compose_daily_scores(statuses, None, self.weights, self.registry, MULTIPLIERS)
        self.assertEqual(len(unpriced), 3)


class TestZoneThresholds(unittest.TestCase):
    def test_percentile_cutoffs_four_zone(self) -> None:
        th = calibrate_thresholds(range(100), FOUR_ZONES, FOUR_SHARES)
        self.assertEqual(th.cutoffs, (85.0, 35.0, 10.0))
        self.assertEqual(assign_zone(85.0, th), "FULL_SEND")
        self.assertEqual(assign_zone(84.9, th), "NEUTRAL")
        self.assertEqual(assign_zone(10.0, th), "CAUTION")
        self.assertEqual(assign_zone(-5.0, th), "DEFENSIVE")

    def test_cutoffs_non_increasing_with_ties(self) -> None:
        rng = np.random.default_rng(3)
        for _ in range(20):
            scores = rng.choice([-1.0, 0.0, 0.0, 0.0, 0.5, 2.0], size=int(rng.integers(1, 400)))
            for names, shares in ((FOUR_ZONES, FOUR_SHARES), (FIVE_ZONES, FIVE_SHARES)):
                cuts = calibrate_thresholds(scores, names, shares).cutoffs
                for i in range(1, len(cuts)):
                    self.assertGreaterEqual(cuts[i - 1], cuts[i])
        flat = calibrate_thresholds([1.0] * 50, FOUR_ZONES, FOUR_SHARES)
        self.assertEqual(flat.cutoffs, (1.0, 1.0, 1.0))
        self.assertEqual(assign_zone(1.0, flat), "FULL_SEND")

    def test_tie_block_does_not_swallow_top_zone(self) -> None:
        # 11 days at 1.1, the rest tied at zero: p85 lands on the zero block.
        scores = [1.1] * 11 + [0.0] * 89
        th = calibrate_thresholds(scores, FOUR_ZONES, FOUR_SHARES)
        self.assertEqual(th.cutoffs, (1.1, 0.0, 0.0))
        daily = pd.DataFrame({"date": range(100), "score": scores})
        dist = zone_distribution(assign_zones(daily, th), FOUR_ZONES)
        self.assertEqual(dist["FULL_SEND"]["count"], 11)
        self.assertEqual(dist["NEUTRAL"]["count"], 89)

        five = calibrate_thresholds(scores, FIVE_ZONES, FIVE_SHARES)
        self.assertEqual(five.cutoffs, (1.1, 1.1, 0.0, 0.0))

    def test_tie_block_kept_when_closer_to_target(self) -> None:
        scores = [2.0] * 5 + [1.0] * 12 + [0.0] * 83
        th = calibrate_thresholds(scores, FOUR_ZONES, FOUR_SHARES)
        # 17 days at or above 1.0 beats 5 above it for a 15-day target.
        self.assertEqual(th.cutoffs[0], 1.0)

    def test_zone_shares_track_targets(self) -> None:
        rng = np.random.default_rng(42)
        for names, shares in ((FOUR_ZONES, FOUR_SHARES), (FIVE_ZONES, FIVE_SHARES)):
            for n in (260, 500, 1200):
                scores = rng.normal(0.0, 1.5, size=n).round(3)
                th = calibrate_thresholds(scores, names, shares)
                daily = pd.DataFrame({"date": range(n), "score": scores})
                dist = zone_distribution(assign_zones(daily, th), names)
                for name, target in zip(names, shares):
                    self.assertAlmostEqual(dist[name]["share"], target, delta=0.03, msg=f"{name} n={n}")

    def test_empty_series_gives_undefined_cutoffs(self) -> None:
        th = calibrate_thresholds([], FOUR_ZONES, FOUR_SHARES)
        self.assertEqual(th.cutoffs, (None, None, None))
        self.assertFalse(th.calibrated)
        with self.assertRaises(ValueError):
            assign_zone(0.0, th)
        empty = assign_zones(pd.DataFrame(columns=["date", "score"]), th)
        self.assertIn("zone", empty.columns)
        dist = zone_distribution(empty, FOUR_ZONES)
        self.assertEqual(dist["NEUTRAL"], {"count": 0, "share": 0.0})

    def test_round_trip_dict(self) -> None:
        th = calibrate_thresholds(range(10), FIVE_ZONES, FIVE_SHARES)
        self.assertEqual(ZoneThresholds.from_dict(th.to_dict()), th)


class TestZoneDisplay(unittest.TestCase):
    def setUp(self) -> None:
        self.th = ZoneThresholds(names=tuple(FOUR_ZONES), cutoffs=(1.0, 0.0, -1.0), shares=tuple(FOUR_SHARES))

    def test_qualifiers_near_boundaries(self) -> None:
        cases = {
            1.02: ("FULL_SEND", "Emerging"),
            1.5: ("FULL_SEND", None),
            0.01: ("NEUTRAL", "Fading"),
            0.5: ("NEUTRAL", None),
            -0.02: ("CAUTION", "Emerging"),
            -0.98: ("CAUTION", "Deteriorating"),
            -0.5: ("CAUTION", None),
            -1.01: ("DEFENSIVE", None),
        }
        for score, (zone, qualifier) in cases.items():
            d = zone_display(score, self.th, 0.04)
            self.assertEqual((d.zone, d.qualifier), (zone, qualifier), msg=str(score))

    def test_emerging_includes_buffer_edge(self) -> None:
        d = zone_display(-0.04, self.th, 0.04)
        self.assertEqual((d.zone, d.qualifier), ("CAUTION", "Emerging"))
        self.assertIsNone(zone_display(-0.05, self.th, 0.04).qualifier)

    def test_label_format(self) -> None:
        self.assertEqual(zone_display(1.01, self.th).label, "FULL SEND (Emerging)")
        self.assertEqual(zone_display(-3.0, self.th).label, "DEFENSIVE")


if __name__ == "__main__":
    unittest.main()
