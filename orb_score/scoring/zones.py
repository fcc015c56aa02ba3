from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..metrics.returns import pctile


@dataclass(frozen=True)
class ZoneThresholds:
    """Ordered cutoffs, most favorable zone first.

    ``cutoffs[i]`` is the lowest score still placed in ``names[i]``; the last
    zone catches everything below ``cutoffs[-1]``.
    """

    names: Tuple[str, ...]
    cutoffs: Tuple[Optional[float], ...]
    shares: Tuple[float, ...]

    @property
    def calibrated(self) -> bool:
        return all(c is not None for c in self.cutoffs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "names": list(self.names),
            "cutoffs": list(self.cutoffs),
            "shares": list(self.shares),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ZoneThresholds":
        names = tuple(str(n) for n in data["names"])
        cutoffs = tuple(None if c is None else float(c) for c in data["cutoffs"])
        shares = tuple(float(s) for s in data.get("shares", []))
        if len(cutoffs) != len(names) - 1:
            raise ValueError(f"Expected {len(names) - 1} cutoffs for {len(names)} zones, got {len(cutoffs)}")
        return cls(names=names, cutoffs=cutoffs, shares=shares)


@dataclass(frozen=True)
class ZoneDisplay:
    zone: str
    qualifier: Optional[str]
    label: str


def _finite(scores: Iterable[Any]) -> List[float]:
    out: List[float] = []
    for s in scores:
        if s is None:
            continue
        v = float(s)
        if math.isfinite(v):
            out.append(v)
    return out


def _tie_aware_cutoff(ordered: np.ndarray, p: float, target: float) -> Optional[float]:
    """Nearest-rank cutoff, moved above its tie block when that lands closer to ``target`` days."""
    v = pctile(ordered, p)
    if v is None:
        return None
    n = ordered.size
    at_or_above = n - int(np.searchsorted(ordered, v, side="left"))
    right = int(np.searchsorted(ordered, v, side="right"))
    if right >= n:
        return v
    above = n - right
    if abs(above - target) < abs(at_or_above - target):
        return float(ordered[right])
    return v


def calibrate_thresholds(
    scores: Iterable[Any],
    zone_names: Sequence[str],
    shares: Sequence[float],
) -> ZoneThresholds:
    """Percentile cutoffs from cumulative zone shares.

    Composite scores are sums of a few discrete weights, so many days tie on
    the same value. A cutoff sitting on a tie block is lifted to the next
    distinct score when that puts the bracket population nearer its target.
    """
    if len(zone_names) != len(shares):
        raise ValueError(f"Got {len(shares)} shares for {len(zone_names)} zones.")
    values = _finite(scores)
    ordered = np.sort(np.asarray(values, dtype=float))

    cutoffs: List[Optional[float]] = []
    cum = 0.0
    for share in shares[:-1]:
        cum += float(share)
        # 15/50/25/10 -> p85, p35, p10
        p = round(1.0 - cum, 10)
        cutoffs.append(_tie_aware_cutoff(ordered, p, cum * ordered.size))

    if values:
        for i in range(1, len(cutoffs)):
            cutoffs[i] = min(cutoffs[i], cutoffs[i - 1])

    return ZoneThresholds(
        names=tuple(zone_names),
        cutoffs=tuple(cutoffs),
        shares=tuple(float(s) for s in shares),
    )


def assign_zone(score: float, thresholds: ZoneThresholds) -> str:
    if not thresholds.calibrated:
        raise ValueError("Zone thresholds were calibrated on an empty score series.")
    for name, cutoff in zip(thresholds.names, thresholds.cutoffs):
        if score >= cutoff:
            return name
    return thresholds.names[-1]


def assign_zones(daily_scores: pd.DataFrame, thresholds: ZoneThresholds) -> pd.DataFrame:
    out = daily_scores.copy()
    if out.empty:
        out["zone"] = pd.Series(dtype=object)
        return out
    out["zone"] = [assign_zone(float(s), thresholds) for s in out["score"]]
    return out


def zone_distribution(assignments: pd.DataFrame, zone_names: Sequence[str]) -> Dict[str, Dict[str, Any]]:
    total = int(len(assignments))
    counts = assignments["zone"].value_counts() if total else pd.Series(dtype=int)
    out: Dict[str, Dict[str, Any]] = {}
    for name in zone_names:
        count = int(counts.get(name, 0))
        out[name] = {"count": count, "share": (count / total) if total else 0.0}
    return out


def zone_display(score: float, thresholds: ZoneThresholds, buffer: float = 0.04) -> ZoneDisplay:
    """Zone plus a boundary qualifier when the score sits within ``buffer`` of a cutoff."""
    zone = assign_zone(score, thresholds)
    names = thresholds.names
    cutoffs = thresholds.cutoffs
    idx = names.index(zone)
    last = len(names) - 1
    qualifier: Optional[str] = None

    if idx == 0:
        if score - cutoffs[0] < buffer:
            qualifier = "Emerging"
    elif idx < len(names) / 2:
        if idx < last and score - cutoffs[idx] < buffer:
            qualifier = "Fading"
    elif idx < last:
        if cutoffs[idx - 1] - score <= buffer:
            qualifier = "Emerging"
        elif score - cutoffs[idx] < buffer:
            qualifier = "Deteriorating"

    label = zone.replace("_", " ")
    if qualifier:
        label = f"{label} ({qualifier})"
    return ZoneDisplay(zone=zone, qualifier=qualifier, label=label)
