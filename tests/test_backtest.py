import unittest

import pandas as pd

from orb_score.backtest.engine import (
    aggregate_transitions,
    baseline_statistics,
    compute_spread,
    find_transitions,
    run_backtest,
    spread_verdict,
    zone_statistics,
)
from orb_score.config import FOUR_ZONES
from orb_score.metrics.returns import PriceSeries, ReturnStats

VERDICTS = {"SHIP_IT": 10.0, "STRONG": 6.0, "OK": 3.0}


def _prices(closes) -> PriceSeries:
    dates = pd.bdate_range("2024-01-01", periods=len(closes)).date
    return PriceSeries(pd.Series(list(closes), index=list(dates), dtype=float))


def _assignments(prices: PriceSeries, zones) -> pd.DataFrame:
    dates = prices.dates[: len(zones)]
    return pd.DataFrame({"date": dates, "score": [0.0] * len(zones), "zone": list(zones)})


class TestZoneStatistics(unittest.TestCase):
    def test_days_near_end_are_excluded_not_zeroed(self) -> None:
        prices = _prices([100.0 + i for i in range(30)])
        assignments = _assignments(prices, ["NEUTRAL"] * 30)
        stats = zone_statistics(assignments, prices, [5, 20], FOUR_ZONES)
        self.assertEqual(stats["NEUTRAL"][20].n, 10)
        self.assertEqual(stats["NEUTRAL"][5].n, 25)
        self.assertEqual(stats["NEUTRAL"][20].win_rate, 1.0)

        result = run_backtest(assignments, prices, FOUR_ZONES, horizons=[5, 20], spread_horizon=20)
        self.assertEqual(result.skipped, {5: 5, 20: 20})
        self.assertIn("FORWARD SAMPLES OUT OF RANGE: h=20 skipped=20", result.warnings)

    def test_empty_buckets_are_defined(self) -> None:
        prices = _prices([100.0] * 10)
        assignments = _assignments(prices, ["NEUTRAL"] * 10)
        stats = zone_statistics(assignments, prices, [5], FOUR_ZONES)
        empty = stats["FULL_SEND"][5]
        self.assertEqual((empty.n, empty.win_rate, empty.mean), (0, 0.0, None))

    def test_empty_series(self) -> None:
        prices = _prices([100.0] * 10)
        empty = pd.DataFrame(columns=["date", "score", "zone"])
        result = run_backtest(empty, prices, FOUR_ZONES, horizons=[5], spread_horizon=5)
        self.assertEqual(result.zone_stats["FULL_SEND"][5].n, 0)
        self.assertEqual(result.baseline[5].n, 0)
        self.assertIsNone(result.headline.spread)
        self.assertEqual(result.headline.verdict, "INSUFFICIENT_DATA")
        self.assertEqual(result.transitions, [])

    def test_baseline_ignores_zone(self) -> None:
        prices = _prices([100.0, 110.0, 99.0, 99.0])
        assignments = _assignments(prices, ["FULL_SEND", "DEFENSIVE", "NEUTRAL"])
        base = baseline_statistics(assignments, prices, [1])
        self.assertEqual(base[1].n, 3)
        self.assertAlmostEqual(base[1].mean, (10.0 - 10.0 + 0.0) / 3)
        self.assertAlmostEqual(base[1].win_rate, 1 / 3)


class TestSpread(unittest.TestCase):
    def test_pooled_top_minus_bottom(self) -> None:
        samples = {
            "FULL_SEND": {20: [10.0, 20.0]},
            "NEUTRAL": {20: [5.0]},
            "CAUTION": {20: [0.0]},
            "DEFENSIVE": {20: [-3.0, -3.0]},
        }
        baseline = ReturnStats(n=6, mean=4.8, median=2.5, win_rate=0.5, std=2.0)
        s = compute_spread(samples, FOUR_ZONES, 20, top_zones=1, bottom_zones=2, baseline=baseline, verdict_thresholds=VERDICTS)
        self.assertEqual(s.top_zones, ("FULL_SEND",))
        self.assertEqual(s.bottom_zones, ("CAUTION", "DEFENSIVE"))
        self.assertAlmostEqual(s.top_mean, 15.0)
        self.assertAlmostEqual(s.bottom_mean, -2.0)
        self.assertAlmostEqual(s.spread, 17.0)
        self.assertEqual((s.top_n, s.bottom_n), (2, 3))
        self.assertAlmostEqual(s.ratio_to_dispersion, 8.5)
        self.assertEqual(s.verdict, "SHIP_IT")

    def test_spread_undefined_when_side_empty(self) -> None:
        samples = {"FULL_SEND": {20: [1.0]}, "NEUTRAL": {20: []}, "CAUTION": {20: []}, "DEFENSIVE": {20: []}}
        s = compute_spread(samples, FOUR_ZONES, 20, verdict_thresholds=VERDICTS)
        self.assertIsNone(s.spread)
        self.assertEqual(s.verdict, "INSUFFICIENT_DATA")

    def test_verdict_thresholds(self) -> None:
        self.assertEqual(spread_verdict(7.0, VERDICTS), "STRONG")
        self.assertEqual(spread_verdict(4.0, VERDICTS), "OK")
        self.assertEqual(spread_verdict(3.0, VERDICTS), "WEAK")
        self.assertEqual(spread_verdict(-5.0, VERDICTS), "WEAK")
        self.assertEqual(spread_verdict(None, VERDICTS), "INSUFFICIENT_DATA")


class TestTransitions(unittest.TestCase):
    def test_records_only_zone_changes(self) -> None:
        prices = _prices([100.0 + i for i in range(10)])
        assignments = _assignments(prices, ["NEUTRAL", "NEUTRAL", "CAUTION", "CAUTION", "NEUTRAL", "DEFENSIVE"])
        records = find_transitions(assignments, prices, [1, 5])
        self.assertEqual(
            [(r.from_zone, r.to_zone) for r in records],
            [("NEUTRAL", "CAUTION"), ("CAUTION", "NEUTRAL"), ("NEUTRAL", "DEFENSIVE")],
        )
        self.assertEqual(records[0].date, prices.dates[2])
        self.assertEqual(set(records[-1].returns), {1})

    def test_aggregate_flags_low_sample(self) -> None:
        closes = [100.0 + i for i in range(40)]
        prices = _prices(closes)
        zones = ["NEUTRAL", "CAUTION"] * 8 + ["NEUTRAL"]
        assignments = _assignments(prices, zones)
        records = find_transitions(assignments, prices, [5, 10])
        summary = aggregate_transitions(records, [5, 10], min_samples=3, reference_horizon=10)
        by_pair = {(t.from_zone, t.to_zone): t for t in summary}
        self.assertEqual(by_pair[("NEUTRAL", "CAUTION")].count, 8)
        self.assertFalse(by_pair[("NEUTRAL", "CAUTION")].low_sample)
        self.assertEqual(by_pair[("NEUTRAL", "CAUTION")].stats[10].win_rate, 1.0)

        few = aggregate_transitions(records[:2], [5, 10], min_samples=3, reference_horizon=10)
        self.assertTrue(all(t.low_sample for t in few))


if __name__ == "__main__":
    unittest.main()
