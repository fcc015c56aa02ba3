from __future__ import annotations

import datetime as dt
import math
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from ..backtest.engine import BacktestResult
from ..calibration.alpha import AlphaResult
from ..calibration.weights import SetupWeight
from ..registry import Direction, SetupRegistry
from ..scoring.zones import ZoneThresholds

SCHEMA_VERSION = 1


def jsonable(v: Any) -> Any:
    if isinstance(v, dict):
        return {str(k): jsonable(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [jsonable(x) for x in v]
    if isinstance(v, np.generic):
        v = v.item()
    if isinstance(v, float):
        return None if (math.isnan(v) or math.isinf(v)) else v
    if isinstance(v, pd.Timestamp):
        if v.tzinfo is None:
            v = v.tz_localize("UTC")
        return v.tz_convert("UTC").isoformat()
    if isinstance(v, (dt.datetime, dt.date)):
        return v.isoformat()
    return v


def build_config_artifact(
    *,
    registry: SetupRegistry,
    weights: Mapping[str, SetupWeight],
    thresholds: ZoneThresholds,
    status_multipliers: Mapping[str, float],
    score_decimals: int,
    run_timestamp: dt.datetime,
    engine_version: str,
    config_hash: str,
    git_commit: Optional[str],
    preset: str,
    alpha_horizon: int,
    display_buffer: float,
) -> Dict[str, Any]:
    """Everything a production scorer needs to reproduce DailyScore and zone."""
    return jsonable({
        "schema_version": SCHEMA_VERSION,
        "run_timestamp": run_timestamp.isoformat(),
        "engine_version": engine_version,
        "config_hash": config_hash,
        "git_commit": git_commit,
        "preset": preset,
        "alpha_horizon": alpha_horizon,
        "registry": registry.to_mapping(),
        "weights": {sid: w.weight for sid, w in weights.items()},
        "weight_details": {sid: w.to_dict() for sid, w in weights.items()},
        "status_multipliers": dict(status_multipliers),
        "direction_signs": {d.value: d.sign for d in Direction},
        "zones": thresholds.to_dict(),
        "display_buffer": display_buffer,
        "score_decimals": score_decimals,
    })


def _stats_grid(stats: Mapping[int, Any]) -> Dict[str, Any]:
    return {str(h): s.to_dict() for h, s in sorted(stats.items())}


def build_validation_report(
    *,
    run_meta: Mapping[str, Any],
    alpha: AlphaResult,
    weights: Mapping[str, SetupWeight],
    registry: SetupRegistry,
    thresholds: ZoneThresholds,
    backtest: BacktestResult,
    current: Optional[Mapping[str, Any]] = None,
    comparison: Optional[Mapping[str, Any]] = None,
    warnings: Optional[List[str]] = None,
) -> Dict[str, Any]:
    targets = dict(zip(thresholds.names, thresholds.shares))
    distribution = {
        z: {**d, "target_share": targets.get(z)} for z, d in backtest.distribution.items()
    }
    weight_rows = []
    for setup in registry:
        w = weights[setup.id]
        a = alpha.alphas.get(setup.id)
        weight_rows.append({
            **w.to_dict(),
            "direction": setup.direction.value,
            "mean_active_return": None if a is None else a.mean_active_return,
        })
    headline = backtest.headline

    return jsonable({
        "schema_version": SCHEMA_VERSION,
        "run_meta": dict(run_meta),
        "alpha": {
            "horizon": alpha.horizon,
            "baseline_return": alpha.baseline_return,
            "baseline_n": alpha.baseline_n,
            "setups": [a.to_dict() for a in alpha.alphas.values()],
        },
        "weights": weight_rows,
        "zones": thresholds.to_dict(),
        "horizons": list(backtest.horizons),
        "distribution": distribution,
        "zone_statistics": {z: _stats_grid(by_h) for z, by_h in backtest.zone_stats.items()},
        "baseline": _stats_grid(backtest.baseline),
        "spreads": {str(h): s.to_dict() for h, s in sorted(backtest.spreads.items())},
        "headline": None if headline is None else headline.to_dict(),
        "transitions": [t.to_dict() for t in backtest.transition_summary],
        "transition_events": [t.to_dict() for t in backtest.transitions],
        "skipped_samples": {str(h): n for h, n in sorted(backtest.skipped.items())},
        "current": None if current is None else dict(current),
        "comparison": None if comparison is None else dict(comparison),
        "warnings": list(warnings or []),
    })


def weights_frame(report: Mapping[str, Any]) -> pd.DataFrame:
    cols = ["setup_id", "direction", "weight", "alpha", "sample_size", "mean_active_return", "reason"]
    rows = report.get("weights", []) or []
    return pd.DataFrame([{c: r.get(c) for c in cols} for r in rows], columns=cols)


def zone_statistics_frame(report: Mapping[str, Any]) -> pd.DataFrame:
    cols = ["zone", "horizon", "n", "mean", "median", "win_rate", "p75", "p90"]
    rows: List[Dict[str, Any]] = []
    grid = report.get("zone_statistics", {}) or {}
    for zone in report.get("zones", {}).get("names", list(grid)):
        for h, s in (grid.get(zone) or {}).items():
            rows.append({"zone": zone, "horizon": int(h), **{c: s.get(c) for c in cols[2:]}})
    for h, s in (report.get("baseline", {}) or {}).items():
        rows.append({"zone": "BASELINE", "horizon": int(h), **{c: s.get(c) for c in cols[2:]}})
    return pd.DataFrame(rows, columns=cols)


def transitions_frame(report: Mapping[str, Any]) -> pd.DataFrame:
    horizons = [str(h) for h in report.get("horizons", [])]
    cols = ["from_zone", "to_zone", "count", "low_sample"]
    rows: List[Dict[str, Any]] = []
    for t in report.get("transitions", []) or []:
        row = {c: t.get(c) for c in cols}
        stats = t.get("stats", {}) or {}
        for h in horizons:
            s = stats.get(h, {}) or {}
            row[f"mean_{h}d"] = s.get("mean")
            row[f"win_rate_{h}d"] = s.get("win_rate")
            row[f"n_{h}d"] = s.get("n", 0)
        rows.append(row)
    extra = [f"{k}_{h}d" for h in horizons for k in ("mean", "win_rate", "n")]
    return pd.DataFrame(rows, columns=cols + extra)
