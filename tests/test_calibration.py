import random
import unittest

import pandas as pd

from orb_score.calibration.alpha import SetupAlpha, estimate_alphas
from orb_score.calibration.weights import calibrate_weights
from orb_score.config import config_from_block
from orb_score.metrics.returns import PriceSeries
from orb_score.registry import Direction, SetupRegistry


def _prices(closes) -> PriceSeries:
    dates = pd.bdate_range("2024-01-01", periods=len(closes)).date
    return PriceSeries(pd.Series(list(closes), index=list(dates), dtype=float))


def _statuses(prices: PriceSeries, active: dict, registry: SetupRegistry) -> pd.DataFrame:
    rows = []
    for i, d in enumerate(prices.dates):
        for sid in registry.ids:
            status = "active" if i in active.get(sid, set()) else "inactive"
            rows.append({"date": d, "setup_id": sid, "status": status})
    return pd.DataFrame(rows)


def _alpha(sid: str, alpha: float, n: int, direction: str = "buy") -> SetupAlpha:
    return SetupAlpha(
        setup_id=sid,
        direction=Direction.parse(direction),
        sample_size=n,
        mean_active_return=alpha,
        baseline_return=0.0,
        alpha=alpha,
    )


WEIGHTING = config_from_block({}).weighting


class TestAlphaEstimator(unittest.TestCase):
    def setUp(self) -> None:
        # Flat at 100, jumps to 130 on day 40, drops to 90 on day 60.
        closes = [100.0] * 40 + [130.0] * 20 + [90.0] * 20
        self.prices = _prices(closes)
        self.registry = SetupRegistry.from_mapping({"pop": "buy", "drop": "avoid", "idle": "buy"})

    def test_sign_convention_for_buy_and_avoid(self) -> None:
        statuses = _statuses(self.prices, {"pop": set(range(35, 40)), "drop": set(range(55, 60))}, self.registry)
        result = estimate_alphas(statuses, self.prices, self.registry, horizon=5)
        self.assertGreater(result.alphas["pop"].alpha, 0)
        self.assertGreater(result.alphas["drop"].alpha, 0)
        self.assertEqual(result.alphas["pop"].sample_size, 5)
        self.assertAlmostEqual(result.alphas["pop"].mean_active_return, 30.0)
        self.assertEqual(result.baseline_n, 75)

    def test_wrong_way_setup_has_negative_alpha(self) -> None:
        statuses = _statuses(self.prices, {"pop": set(range(55, 60)), "drop": set(range(35, 40))}, self.registry)
        result = estimate_alphas(statuses, self.prices, self.registry, horizon=5)
        self.assertLess(result.alphas["pop"].alpha, 0)
        self.assertLess(result.alphas["drop"].alpha, 0)

    def test_never_active_setup_has_no_record(self) -> None:
        statuses = _statuses(self.prices, {"pop": {1, 2}}, self.registry)
        result = estimate_alphas(statuses, self.prices, self.registry, horizon=5)
        self.assertNotIn("idle", result.alphas)
        self.assertTrue(any("idle" in w for w in result.warnings))

    def test_samples_without_future_bar_are_excluded(self) -> None:
        statuses = _statuses(self.prices, {"pop": {10, 78, 79}}, self.registry)
        result = estimate_alphas(statuses, self.prices, self.registry, horizon=5)
        self.assertEqual(result.alphas["pop"].sample_size, 1)

    def test_dates_near_end_are_counted_as_skipped(self) -> None:
        statuses = _statuses(self.prices, {"pop": {10}}, self.registry)
        result = estimate_alphas(statuses, self.prices, self.registry, horizon=5)
        self.assertEqual(result.baseline_n, 75)
        self.assertIn("ALPHA 5D SAMPLES OUT OF RANGE: skipped=5", result.warnings)

        wide = estimate_alphas(statuses, self.prices, self.registry, horizon=30)
        self.assertIn("ALPHA 30D SAMPLES OUT OF RANGE: skipped=30", wide.warnings)

    def test_empty_history(self) -> None:
        empty = pd.DataFrame(columns=["date", "setup_id", "status"])
        result = estimate_alphas(empty, self.prices, self.registry, horizon=5)
        self.assertEqual(result.alphas, {})
        self.assertIsNone(result.baseline_return)


class TestWeightCalibrator(unittest.TestCase):
    def test_weights_stay_in_bounds_for_any_alpha(self) -> None:
        rng = random.Random(11)
        ids = [f"s{i}" for i in range(40)]
        registry = SetupRegistry.from_mapping({sid: rng.choice(["buy", "avoid"]) for sid in ids})
        for _ in range(50):
            alphas = {}
            for sid in ids:
                if rng.random() < 0.2:
                    continue
                alphas[sid] = _alpha(sid, rng.choice([0.0, rng.uniform(-8, 8)]), rng.randint(1, 60))
            weights = calibrate_weights(alphas, registry, WEIGHTING)
            self.assertEqual(set(weights), set(ids))
            for w in weights.values():
                self.assertGreaterEqual(w.weight, WEIGHTING["floor"])
                self.assertLessEqual(w.weight, WEIGHTING["w_max"])

    def test_linear_scaling_penalty_and_floor(self) -> None:
        registry = SetupRegistry.from_mapping({"a": "buy", "b": "buy", "c": "avoid", "d": "buy", "e": "avoid"})
        alphas = {
            "a": _alpha("a", 2.0, 40),
            "b": _alpha("b", 1.0, 40),
            "c": _alpha("c", 2.0, 10, "avoid"),
            "d": _alpha("d", -1.0, 40),
        }
        w = calibrate_weights(alphas, registry, WEIGHTING)
        self.assertAlmostEqual(w["a"].weight, 2.0)
        self.assertAlmostEqual(w["b"].weight, 1.15)
        self.assertAlmostEqual(w["c"].weight, 1.0)
        self.assertEqual(w["c"].reason, "low_sample")
        self.assertAlmostEqual(w["d"].weight, 0.3)
        self.assertEqual(w["d"].reason, "non_positive_alpha")
        self.assertAlmostEqual(w["e"].weight, 0.3)
        self.assertEqual(w["e"].reason, "no_active_days")

    def test_penalty_never_below_floor_multiplier(self) -> None:
        registry = SetupRegistry.from_mapping({"a": "buy"})
        w = calibrate_weights({"a": _alpha("a", 3.0, 1)}, registry, WEIGHTING)
        self.assertAlmostEqual(w["a"].weight, 0.6)

    def test_equal_strategy(self) -> None:
        weighting = config_from_block({"preset": "equal_weight_5zone"}).weighting
        registry = SetupRegistry.from_mapping({"a": "buy", "b": "avoid"})
        w = calibrate_weights({"a": _alpha("a", 5.0, 40)}, registry, weighting)
        self.assertEqual({k: v.weight for k, v in w.items()}, {"a": 1.0, "b": 1.0})
        self.assertEqual(w["b"].reason, "equal")

    def test_all_non_positive_gives_floor_everywhere(self) -> None:
        registry = SetupRegistry.from_mapping({"a": "buy", "b": "avoid"})
        w = calibrate_weights({"a": _alpha("a", -1.0, 40), "b": _alpha("b", 0.0, 40)}, registry, WEIGHTING)
        self.assertEqual([v.weight for v in w.values()], [0.3, 0.3])


if __name__ == "__main__":
    unittest.main()
