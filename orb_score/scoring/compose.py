from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd

from ..metrics.returns import PriceSeries
from ..registry import SetupRegistry, Status


def compose_score(
    day_statuses: Mapping[str, Any],
    weights: Mapping[str, float],
    registry: SetupRegistry,
    multipliers: Mapping[str, float],
    decimals: int = 3,
) -> float:
    """Signed, weighted sum of one day's setup statuses.

    Registered setups with no status on the day contribute nothing. An id the
    registry does not know raises ``UnknownSetupError``.
    """
    score = 0.0
    for setup_id, raw_status in day_statuses.items():
        setup = registry.get(setup_id)
        status = Status.parse(raw_status)
        mult = float(multipliers[status.value])
        if mult == 0:
            continue
        if setup_id not in weights:
            raise KeyError(f"No weight calibrated for setup '{setup_id}'")
        score += setup.direction.sign * float(weights[setup_id]) * mult
    # + 0.0 folds a rounded -0.0 back to 0.0
    return round(score, decimals) + 0.0


def statuses_by_date(statuses: pd.DataFrame) -> Dict[Any, Dict[str, str]]:
    out: Dict[Any, Dict[str, str]] = {}
    for d, sid, status in statuses[["date", "setup_id", "status"]].itertuples(index=False, name=None):
        out.setdefault(d, {})[str(sid)] = str(status)
    return out


def compose_daily_scores(
    statuses: pd.DataFrame,
    prices: Optional[PriceSeries],
    weights: Mapping[str, float],
    registry: SetupRegistry,
    multipliers: Mapping[str, float],
    decimals: int = 3,
) -> Tuple[pd.DataFrame, List[str]]:
    """DailyScore frame. Without a price series every status date is scored with a null price."""
    warnings: List[str] = []
    rows: List[Dict[str, Any]] = []
    missing_price: List[Any] = []

    by_date = statuses_by_date(statuses) if not statuses.empty else {}
    for d in sorted(by_date):
        price = None if prices is None else prices.close(d)
        if prices is not None and price is None:
            missing_price.append(d)
            continue
        rows.append({
            "date": d,
            "score": compose_score(by_date[d], weights, registry, multipliers, decimals),
            "price": price,
        })

    if missing_price:
        first, last = missing_price[0], missing_price[-1]
        warnings.append(f"STATUS DATES WITHOUT PRICE BAR: skipped={len(missing_price)} ({first} .. {last})")
    return pd.DataFrame(rows, columns=["date", "score", "price"]), warnings
