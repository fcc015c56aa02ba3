from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from ..metrics.returns import EMPTY_STATS, PriceSeries, ReturnStats, summarize_returns
from ..scoring.zones import zone_distribution

ZoneSamples = Dict[str, Dict[int, List[float]]]

INSUFFICIENT = "INSUFFICIENT_DATA"
WEAK = "WEAK"


@dataclass(frozen=True)
class SpreadResult:
    horizon: int
    top_zones: Tuple[str, ...]
    bottom_zones: Tuple[str, ...]
    top_mean: Optional[float]
    bottom_mean: Optional[float]
    spread: Optional[float]
    top_n: int
    bottom_n: int
    baseline_mean: Optional[float] = None
    baseline_std: Optional[float] = None
    ratio_to_dispersion: Optional[float] = None
    verdict: str = INSUFFICIENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "horizon": self.horizon,
            "top_zones": list(self.top_zones),
            "bottom_zones": list(self.bottom_zones),
            "top_mean": self.top_mean,
            "bottom_mean": self.bottom_mean,
            "spread": self.spread,
            "top_n": self.top_n,
            "bottom_n": self.bottom_n,
            "baseline_mean": self.baseline_mean,
            "baseline_std": self.baseline_std,
            "ratio_to_dispersion": self.ratio_to_dispersion,
            "verdict": self.verdict,
        }


@dataclass(frozen=True)
class TransitionRecord:
    date: dt.date
    from_zone: str
    to_zone: str
    returns: Dict[int, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "from_zone": self.from_zone,
            "to_zone": self.to_zone,
            "returns": {str(h): r for h, r in sorted(self.returns.items())},
        }


@dataclass(frozen=True)
class TransitionSummary:
    from_zone: str
    to_zone: str
    count: int
    stats: Dict[int, ReturnStats]
    low_sample: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_zone": self.from_zone,
            "to_zone": self.to_zone,
            "count": self.count,
            "low_sample": self.low_sample,
            "stats": {str(h): s.to_dict() for h, s in sorted(self.stats.items())},
        }


@dataclass(frozen=True)
class BacktestResult:
    zone_names: Tuple[str, ...]
    horizons: Tuple[int, ...]
    zone_stats: Dict[str, Dict[int, ReturnStats]]
    baseline: Dict[int, ReturnStats]
    spreads: Dict[int, SpreadResult]
    spread_horizon: int
    distribution: Dict[str, Dict[str, Any]]
    transitions: List[TransitionRecord]
    transition_summary: List[TransitionSummary]
    skipped: Dict[int, int]
    warnings: List[str] = field(default_factory=list)

    @property
    def headline(self) -> Optional[SpreadResult]:
        return self.spreads.get(self.spread_horizon)


def zone_samples(
    assignments: pd.DataFrame,
    prices: PriceSeries,
    horizons: Sequence[int],
    zone_names: Sequence[str],
) -> Tuple[ZoneSamples, Dict[int, int]]:
    """Forward returns bucketed by (zone, horizon) plus the count of out-of-range samples per horizon."""
    samples: ZoneSamples = {z: {h: [] for h in horizons} for z in zone_names}
    skipped = {h: 0 for h in horizons}
    if assignments.empty:
        return samples, skipped
    for d, zone in assignments[["date", "zone"]].itertuples(index=False, name=None):
        bucket = samples.setdefault(str(zone), {h: [] for h in horizons})
        for h in horizons:
            r = prices.forward_return(d, h)
            if r is None:
                skipped[h] += 1
                continue
            bucket[h].append(r)
    return samples, skipped


def zone_statistics(
    assignments: pd.DataFrame,
    prices: PriceSeries,
    horizons: Sequence[int],
    zone_names: Sequence[str],
) -> Dict[str, Dict[int, ReturnStats]]:
    samples, _ = zone_samples(assignments, prices, horizons, zone_names)
    return summarize_samples(samples)


def summarize_samples(samples: ZoneSamples) -> Dict[str, Dict[int, ReturnStats]]:
    return {z: {h: summarize_returns(v) for h, v in by_h.items()} for z, by_h in samples.items()}


def baseline_statistics(
    assignments: pd.DataFrame,
    prices: PriceSeries,
    horizons: Sequence[int],
) -> Dict[int, ReturnStats]:
    if assignments.empty:
        return {h: EMPTY_STATS for h in horizons}
    dates = list(assignments["date"])
    return {h: summarize_returns(prices.forward_returns(dates, h).values()) for h in horizons}


def spread_verdict(spread: Optional[float], thresholds: Mapping[str, float]) -> str:
    if spread is None:
        return INSUFFICIENT
    for name, cutoff in sorted(thresholds.items(), key=lambda kv: kv[1], reverse=True):
        if spread > cutoff:
            return name
    return WEAK


def compute_spread(
    samples: ZoneSamples,
    zone_names: Sequence[str],
    horizon: int,
    top_zones: int = 1,
    bottom_zones: int = 2,
    baseline: Optional[ReturnStats] = None,
    verdict_thresholds: Optional[Mapping[str, float]] = None,
) -> SpreadResult:
    """Top-minus-bottom mean forward return, pooling the raw samples on each side."""
    top = tuple(zone_names[:top_zones])
    bottom = tuple(zone_names[-bottom_zones:])
    top_vals = [r for z in top for r in samples.get(z, {}).get(horizon, [])]
    bottom_vals = [r for z in bottom for r in samples.get(z, {}).get(horizon, [])]
    top_stats = summarize_returns(top_vals)
    bottom_stats = summarize_returns(bottom_vals)

    spread: Optional[float] = None
    if top_stats.n and bottom_stats.n:
        spread = top_stats.mean - bottom_stats.mean

    base_mean = baseline.mean if baseline is not None else None
    base_std = baseline.std if baseline is not None else None
    ratio = None
    if spread is not None and base_std:
        ratio = spread / base_std

    return SpreadResult(
        horizon=horizon,
        top_zones=top,
        bottom_zones=bottom,
        top_mean=top_stats.mean,
        bottom_mean=bottom_stats.mean,
        spread=spread,
        top_n=top_stats.n,
        bottom_n=bottom_stats.n,
        baseline_mean=base_mean,
        baseline_std=base_std,
        ratio_to_dispersion=ratio,
        verdict=spread_verdict(spread, verdict_thresholds or {}),
    )


def find_transitions(
    assignments: pd.DataFrame,
    prices: PriceSeries,
    horizons: Sequence[int],
) -> List[TransitionRecord]:
    """One record per scored day whose zone differs from the previous scored day."""
    out: List[TransitionRecord] = []
    if assignments.empty:
        return out
    ordered = assignments.sort_values("date")
    prev: Optional[str] = None
    for d, zone in ordered[["date", "zone"]].itertuples(index=False, name=None):
        zone = str(zone)
        if prev is not None and zone != prev:
            returns = {}
            for h in horizons:
                r = prices.forward_return(d, h)
                if r is not None:
                    returns[h] = r
            out.append(TransitionRecord(date=d, from_zone=prev, to_zone=zone, returns=returns))
        prev = zone
    return out


def aggregate_transitions(
    records: Sequence[TransitionRecord],
    horizons: Sequence[int],
    min_samples: int = 3,
    reference_horizon: Optional[int] = None,
) -> List[TransitionSummary]:
    ref_h = reference_horizon if reference_horizon in horizons else horizons[0]
    grouped: Dict[Tuple[str, str], List[TransitionRecord]] = {}
    for rec in records:
        grouped.setdefault((rec.from_zone, rec.to_zone), []).append(rec)

    out: List[TransitionSummary] = []
    for (src, dst), recs in grouped.items():
        stats = {h: summarize_returns([r.returns[h] for r in recs if h in r.returns]) for h in horizons}
        out.append(TransitionSummary(
            from_zone=src,
            to_zone=dst,
            count=len(recs),
            stats=stats,
            low_sample=stats[ref_h].n < min_samples,
        ))
    out.sort(key=lambda t: (-t.count, t.from_zone, t.to_zone))
    return out


def run_backtest(
    assignments: pd.DataFrame,
    prices: PriceSeries,
    zone_names: Sequence[str],
    horizons: Sequence[int] = (5, 10, 20, 60),
    spread_horizon: int = 20,
    top_zones: int = 1,
    bottom_zones: int = 2,
    min_transition_samples: int = 3,
    transition_reference_horizon: int = 10,
    verdict_thresholds: Optional[Mapping[str, float]] = None,
) -> BacktestResult:
    horizons = sorted(int(h) for h in horizons)
    warnings: List[str] = []
    if assignments.empty:
        warnings.append("NO SCORED DAYS -> ALL ZONE STATISTICS EMPTY")

    samples, skipped = zone_samples(assignments, prices, horizons, zone_names)
    for h in horizons:
        if skipped[h]:
            warnings.append(f"FORWARD SAMPLES OUT OF RANGE: h={h} skipped={skipped[h]}")

    baseline = baseline_statistics(assignments, prices, horizons)
    spreads = {
        h: compute_spread(
            samples,
            zone_names,
            h,
            top_zones=top_zones,
            bottom_zones=bottom_zones,
            baseline=baseline[h],
            verdict_thresholds=verdict_thresholds,
        )
        for h in horizons
    }
    if spreads[spread_horizon].spread is None:
        warnings.append(f"SPREAD UNDEFINED AT {spread_horizon}D (empty top or bottom zone)")

    transitions = find_transitions(assignments, prices, horizons)
    summary = aggregate_transitions(
        transitions,
        horizons,
        min_samples=min_transition_samples,
        reference_horizon=transition_reference_horizon,
    )

    return BacktestResult(
        zone_names=tuple(zone_names),
        horizons=tuple(horizons),
        zone_stats=summarize_samples(samples),
        baseline=baseline,
        spreads=spreads,
        spread_horizon=spread_horizon,
        distribution=zone_distribution(assignments, zone_names),
        transitions=transitions,
        transition_summary=summary,
        skipped=skipped,
        warnings=warnings,
    )
