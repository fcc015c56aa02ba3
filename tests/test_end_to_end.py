import datetime as dt
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import pandas as pd

from orb_score.config import config_from_block
from orb_score.metrics.returns import PriceSeries
from orb_score.pipeline import run_calibration, score_with_artifact, write_run
from orb_score.storage import ARTIFACT_NAME, load_config_artifact, read_json

RUN_TS = dt.datetime(2025, 6, 2, 21, 0, 0, tzinfo=dt.timezone.utc)


def _close(i: int) -> float:
    # Drift, then a 15% leg up over days 21-40, then drift again.
    if i <= 20:
        return 100.0 + 0.1 * i
    if i <= 40:
        return 102.0 * (1 + 0.15 * (i - 20) / 20)
    return 117.3 + 0.1 * (i - 40)


def scenario(days: int = 100):
    dates = list(pd.bdate_range("2024-01-01", periods=days).date)
    prices = PriceSeries(pd.Series([_close(i) for i in range(days)], index=dates, dtype=float))
    rows = []
    for i, d in enumerate(dates):
        rows.append({"date": d, "setup_id": "breakout", "status": "active" if 10 <= i <= 20 else "inactive"})
        rows.append({"date": d, "setup_id": "dormant", "status": "inactive"})
    return pd.DataFrame(rows), prices


class TestEndToEnd(unittest.TestCase):
    BLOCK = {"setups": {"breakout": "buy", "dormant": "avoid"}}
    CUTOFFS = (1.1, 0.0, 0.0)

    def setUp(self) -> None:
        self.cfg = config_from_block(self.BLOCK)
        self.statuses, self.prices = scenario()
        self.result = run_calibration(self.cfg, self.statuses, self.prices, run_timestamp=RUN_TS)

    def test_weights_from_alpha(self) -> None:
        w = self.result.weights
        self.assertAlmostEqual(w["breakout"].weight, 1.1)
        self.assertEqual(w["breakout"].reason, "low_sample")
        self.assertEqual(w["breakout"].sample_size, 11)
        self.assertGreater(w["breakout"].alpha, 0)
        self.assertAlmostEqual(w["dormant"].weight, 0.3)
        self.assertEqual(w["dormant"].reason, "no_active_days")

    def test_active_days_land_in_top_zone_and_beat_baseline(self) -> None:
        r = self.result
        self.assertEqual(len(r.daily), 100)
        self.assertEqual(r.thresholds.cutoffs, self.CUTOFFS)
        top = r.daily[r.daily["zone"] == "FULL_SEND"]
        self.assertEqual(len(top), 11)
        self.assertEqual(r.report["distribution"]["FULL_SEND"]["count"], 11)

        top20 = r.backtest.zone_stats["FULL_SEND"][20]
        self.assertEqual(top20.n, 11)
        self.assertGreater(top20.mean, r.backtest.baseline[20].mean)
        self.assertEqual(top20.win_rate, 1.0)

        pairs = [(t.from_zone, t.to_zone) for t in r.backtest.transitions]
        self.assertEqual(pairs, [("NEUTRAL", "FULL_SEND"), ("FULL_SEND", "NEUTRAL")])
        self.assertEqual(r.report["headline"]["verdict"], "INSUFFICIENT_DATA")
        self.assertTrue(any("dormant" in w for w in r.warnings))

    def test_artifact_reproduces_daily_scores(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp)
            run_dir = write_run(self.result, out)
            for name in (ARTIFACT_NAME, "validation_report.json", "validation_report.txt", "validation_report.html",
                         "weights.csv", "zone_statistics.csv", "transitions.csv", "daily_scores.csv"):
                self.assertTrue((run_dir / name).exists(), msg=name)
            self.assertEqual(read_json(out / "latest.json")["config_hash"], self.result.report["run_meta"]["config_hash"])

            artifact = load_config_artifact(out)
            daily, warnings = score_with_artifact(artifact, self.statuses, self.prices)
            self.assertEqual(warnings, [])
            cols = ["date", "score", "zone", "label"]
            self.assertEqual(daily[cols].values.tolist(), self.result.daily[cols].values.tolist())

            with self.assertRaises(FileExistsError):
                write_run(self.result, out)

    def test_as_of_ignores_later_data(self) -> None:
        cutoff = self.prices.dates[59]
        r = run_calibration(self.cfg, self.statuses, self.prices, as_of=cutoff, run_timestamp=RUN_TS)
        self.assertEqual(r.daily["date"].max(), cutoff)
        self.assertEqual(r.report["run_meta"]["price_bars"], 60)
        # Active days 10-20 still have their 20D window inside the first 60 bars.
        self.assertEqual(r.weights["breakout"].sample_size, 11)

    def test_empty_history_writes_undefined_cutoffs(self) -> None:
        empty = self.statuses.iloc[0:0]
        r = run_calibration(self.cfg, empty, self.prices, run_timestamp=RUN_TS)
        self.assertFalse(r.thresholds.calibrated)
        self.assertIn("NO SCORED DAYS -> ZONE CUTOFFS UNDEFINED", r.warnings)
        self.assertEqual(r.config_artifact["zones"]["cutoffs"], [None] * len(self.CUTOFFS))

    def test_failed_report_leaves_no_run_dir(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp)
            with mock.patch("orb_score.pipeline.render_validation_html", side_effect=OSError("disk full")):
                with self.assertRaises(OSError):
                    write_run(self.result, out)
            self.assertEqual(list((out / "runs").iterdir()), [])
            self.assertFalse((out / "latest.json").exists())
            self.assertIsNone(self.result.run_dir)

            run_dir = write_run(self.result, out)
            self.assertTrue((run_dir / ARTIFACT_NAME).exists())


class TestEndToEndFiveZone(TestEndToEnd):
    BLOCK = {"preset": "alpha_5zone", "setups": {"breakout": "buy", "dormant": "avoid"}}
    # 89 tied zero days: the 30% cut lifts to 1.1 and FAVORABLE stays empty.
    CUTOFFS = (1.1, 1.1, 0.0, 0.0)


if __name__ == "__main__":
    unittest.main()
