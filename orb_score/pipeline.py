from __future__ import annotations

import datetime as dt
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd

from .backtest.engine import BacktestResult, run_backtest
from .calibration.alpha import estimate_alphas
from .calibration.weights import SetupWeight, calibrate_weights, weight_table
from .config import OrbScoreConfig, config_hash
from .io import load_price_csv, load_status_history
from .metrics.returns import PriceSeries
from .registry import SetupRegistry
from .reporting.bundle import (
    build_config_artifact,
    build_validation_report,
    transitions_frame,
    weights_frame,
    zone_statistics_frame,
)
from .reporting.render import render_validation_html
from .reporting.table import format_money_table
from .scoring.compose import compose_daily_scores
from .scoring.zones import ZoneThresholds, assign_zones, calibrate_thresholds, zone_display
from .sources import fetch_daily_closes
from .storage import (
    ARTIFACT_NAME,
    REPORT_HTML,
    REPORT_JSON,
    REPORT_TXT,
    ScoringArtifact,
    diff_artifacts,
    latest_run_dir,
    read_json,
    resolve_artifact_path,
    run_dir_path,
    staged_run_dir,
    write_csv,
    write_json,
    write_latest_pointer,
    write_text,
)
from .utils import git_commit, utc_now

logger = logging.getLogger(__name__)

ENGINE_VERSION = "1.0.0"


@dataclass
class RunResult:
    config_artifact: Dict[str, Any]
    report: Dict[str, Any]
    daily: pd.DataFrame
    weights: Dict[str, SetupWeight]
    thresholds: ZoneThresholds
    backtest: BacktestResult
    warnings: List[str] = field(default_factory=list)
    run_dir: Optional[Path] = None


def _warn(warnings: List[str], items: List[str]) -> None:
    for w in items:
        logger.warning(w)
        warnings.append(w)


def label_zones(daily: pd.DataFrame, thresholds: ZoneThresholds, buffer: float) -> pd.DataFrame:
    out = assign_zones(daily, thresholds)
    if out.empty:
        out["label"] = pd.Series(dtype=object)
        return out
    out["label"] = [zone_display(float(s), thresholds, buffer).label for s in out["score"]]
    return out


def _current(daily: pd.DataFrame) -> Optional[Dict[str, Any]]:
    if daily.empty:
        return None
    last = daily.iloc[-1]
    return {
        "date": last["date"],
        "score": float(last["score"]),
        "zone": last["zone"],
        "label": last["label"],
    }


def run_calibration(
    cfg: OrbScoreConfig,
    statuses: pd.DataFrame,
    prices: PriceSeries,
    registry: Optional[SetupRegistry] = None,
    as_of: Optional[dt.date] = None,
    previous_artifact: Optional[Mapping[str, Any]] = None,
    input_warnings: Optional[List[str]] = None,
    run_timestamp: Optional[dt.datetime] = None,
) -> RunResult:
    """Alpha -> weights -> scores -> zones -> backtest -> report, in one synchronous pass."""
    registry = registry or cfg.registry
    weighting = cfg.weighting
    multipliers = cfg.status_multipliers
    zones_cfg = cfg.zones
    bt_cfg = cfg.backtest
    run_timestamp = run_timestamp or utc_now()

    warnings: List[str] = []
    _warn(warnings, list(input_warnings or []))

    if as_of is not None:
        statuses = statuses[statuses["date"] <= as_of]
        prices = prices.truncate(as_of)
        logger.info("Calibrating as of %s", as_of)

    logger.info("Estimating alphas over %d status rows (%dD horizon)", len(statuses), cfg.alpha_horizon)
    alpha = estimate_alphas(statuses, prices, registry, cfg.alpha_horizon)
    _warn(warnings, alpha.warnings)

    weights = calibrate_weights(alpha.alphas, registry, weighting)
    daily, compose_warnings = compose_daily_scores(
        statuses, prices, weight_table(weights), registry, multipliers, cfg.score_decimals
    )
    _warn(warnings, compose_warnings)

    thresholds = calibrate_thresholds(daily["score"], zones_cfg["names"], zones_cfg["shares"])
    if not thresholds.calibrated:
        _warn(warnings, ["NO SCORED DAYS -> ZONE CUTOFFS UNDEFINED"])
        daily = daily.assign(zone=pd.Series(dtype=object), label=pd.Series(dtype=object))
    else:
        daily = label_zones(daily, thresholds, zones_cfg["display_buffer"])
    logger.info("Scored %d days; cutoffs %s", len(daily), list(thresholds.cutoffs))

    backtest = run_backtest(daily, prices, zones_cfg["names"], **bt_cfg)
    _warn(warnings, backtest.warnings)

    chash = config_hash(cfg)
    commit = git_commit()
    artifact = build_config_artifact(
        registry=registry,
        weights=weights,
        thresholds=thresholds,
        status_multipliers=multipliers,
        score_decimals=cfg.score_decimals,
        run_timestamp=run_timestamp,
        engine_version=ENGINE_VERSION,
        config_hash=chash,
        git_commit=commit,
        preset=cfg.preset,
        alpha_horizon=cfg.alpha_horizon,
        display_buffer=zones_cfg["display_buffer"],
    )
    comparison = diff_artifacts(previous_artifact, artifact) if previous_artifact else None

    run_meta = {
        "run_timestamp": run_timestamp.isoformat(),
        "engine_version": ENGINE_VERSION,
        "git_commit": commit,
        "config_hash": chash,
        "preset": cfg.preset,
        "as_of": as_of,
        "scored_days": int(len(daily)),
        "first_date": daily["date"].iloc[0] if not daily.empty else None,
        "last_date": daily["date"].iloc[-1] if not daily.empty else None,
        "price_bars": len(prices),
    }
    artifact["warnings"] = list(warnings)
    report = build_validation_report(
        run_meta=run_meta,
        alpha=alpha,
        weights=weights,
        registry=registry,
        thresholds=thresholds,
        backtest=backtest,
        current=_current(daily),
        comparison=comparison,
        warnings=warnings,
    )
    return RunResult(
        config_artifact=artifact,
        report=report,
        daily=daily,
        weights=weights,
        thresholds=thresholds,
        backtest=backtest,
        warnings=warnings,
    )


def write_reports(run_dir: Path, report: Mapping[str, Any]) -> Dict[str, Path]:
    return {
        "report_json": write_json(run_dir / REPORT_JSON, report),
        "report_txt": write_text(run_dir / REPORT_TXT, format_money_table(report)),
        "report_html": render_validation_html(report, run_dir / REPORT_HTML),
    }


def write_run(result: RunResult, out_dir: Path) -> Path:
    meta = result.report["run_meta"]
    run_dir = run_dir_path(out_dir, dt.datetime.fromisoformat(meta["run_timestamp"]), meta["config_hash"])
    with staged_run_dir(run_dir) as staging:
        write_json(staging / ARTIFACT_NAME, result.config_artifact)
        write_reports(staging, result.report)
        write_csv(staging / "weights.csv", weights_frame(result.report))
        write_csv(staging / "zone_statistics.csv", zone_statistics_frame(result.report))
        write_csv(staging / "transitions.csv", transitions_frame(result.report))
        write_csv(staging / "daily_scores.csv", result.daily)
    write_latest_pointer(out_dir, run_dir, {
        "run_timestamp": meta["run_timestamp"],
        "config_hash": meta["config_hash"],
        "verdict": (result.report.get("headline") or {}).get("verdict"),
    })
    result.run_dir = run_dir
    logger.info("Wrote run to %s", run_dir)
    return run_dir


def load_inputs(
    cfg: OrbScoreConfig,
    statuses_path: Path,
    prices_path: Optional[Path] = None,
    symbol: Optional[str] = None,
    registry: Optional[SetupRegistry] = None,
) -> Tuple[pd.DataFrame, PriceSeries, List[str]]:
    """Read the status history and the price series concurrently; either failure aborts."""
    registry = registry or cfg.registry
    src = cfg.sources
    with ThreadPoolExecutor(max_workers=2) as pool:
        status_future = pool.submit(load_status_history, Path(statuses_path), registry, src["status_table"])
        if prices_path is not None:
            price_future = pool.submit(load_price_csv, Path(prices_path))
        else:
            price_future = pool.submit(
                fetch_daily_closes,
                symbol or src["symbol"],
                lookback_years=src["lookback_years"],
                timeout=src["timeout_seconds"],
                price_url=src["price_url"],
            )
        statuses, status_warnings = status_future.result()
        prices, price_warnings = price_future.result()
    logger.info("Loaded %d status rows and %d price bars", len(statuses), len(prices))
    return statuses, prices, status_warnings + price_warnings


def run_calibration_from_sources(
    cfg: OrbScoreConfig,
    statuses_path: Path,
    prices_path: Optional[Path] = None,
    symbol: Optional[str] = None,
    out_dir: Optional[Path] = None,
    as_of: Optional[dt.date] = None,
    previous_path: Optional[Path] = None,
) -> RunResult:
    out_dir = Path(out_dir) if out_dir is not None else cfg.out_dir
    registry = cfg.registry
    statuses, prices, input_warnings = load_inputs(cfg, statuses_path, prices_path, symbol, registry)

    previous = None
    if previous_path is not None:
        previous = read_json(resolve_artifact_path(previous_path))
    elif latest_run_dir(out_dir) is not None:
        previous = read_json(resolve_artifact_path(out_dir))

    result = run_calibration(
        cfg,
        statuses,
        prices,
        registry=registry,
        as_of=as_of,
        previous_artifact=previous,
        input_warnings=input_warnings,
    )
    write_run(result, out_dir)
    return result


def score_with_artifact(
    artifact: ScoringArtifact,
    statuses: pd.DataFrame,
    prices: Optional[PriceSeries] = None,
) -> Tuple[pd.DataFrame, List[str]]:
    """Reproduce DailyScore and zones from a saved artifact without recalibrating."""
    daily, warnings = compose_daily_scores(
        statuses,
        prices,
        artifact.weights,
        artifact.registry,
        artifact.status_multipliers,
        artifact.score_decimals,
    )
    if not artifact.thresholds.calibrated:
        raise ValueError("Config artifact has undefined zone cutoffs; it cannot be used for scoring.")
    daily = label_zones(daily, artifact.thresholds, artifact.display_buffer)
    return daily, warnings
