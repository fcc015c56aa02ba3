from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd


def pctile(values: Iterable[float], p: float) -> Optional[float]:
    """Nearest-rank percentile: ``sorted[min(floor(n * p), n - 1)]``."""
    arr = np.sort(np.asarray(list(values), dtype=float))
    if arr.size == 0:
        return None
    idx = min(int(math.floor(arr.size * p + 1e-9)), arr.size - 1)
    return float(arr[max(idx, 0)])


def win_rate(values: Iterable[float]) -> float:
    arr = np.asarray(list(values), dtype=float)
    if arr.size == 0:
        return 0.0
    return int((arr > 0).sum()) / int(arr.size)


@dataclass(frozen=True)
class ReturnStats:
    n: int
    mean: Optional[float]
    median: Optional[float]
    win_rate: float
    std: Optional[float] = None
    p75: Optional[float] = None
    p90: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n": self.n,
            "mean": self.mean,
            "median": self.median,
            "win_rate": self.win_rate,
            "std": self.std,
            "p75": self.p75,
            "p90": self.p90,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReturnStats":
        return cls(
            n=int(data.get("n", 0)),
            mean=data.get("mean"),
            median=data.get("median"),
            win_rate=float(data.get("win_rate", 0.0)),
            std=data.get("std"),
            p75=data.get("p75"),
            p90=data.get("p90"),
        )


EMPTY_STATS = ReturnStats(n=0, mean=None, median=None, win_rate=0.0)


def summarize_returns(values: Iterable[float]) -> ReturnStats:
    arr = np.asarray(list(values), dtype=float)
    arr = arr[~np.isnan(arr)]
    if arr.size == 0:
        return EMPTY_STATS
    return ReturnStats(
        n=int(arr.size),
        mean=float(arr.mean()),
        median=float(np.median(arr)),
        win_rate=win_rate(arr),
        std=float(arr.std(ddof=1)) if arr.size > 1 else None,
        p75=pctile(arr, 0.75),
        p90=pctile(arr, 0.90),
    )


def to_date(value: object) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return pd.Timestamp(value).date()


class PriceSeries:
    """Daily closes on a sparse trading-day calendar.

    Forward returns are measured in trading days: the bar ``horizon`` positions
    after the origin, never a calendar offset.
    """

    def __init__(self, closes: pd.Series) -> None:
        s = pd.to_numeric(pd.Series(closes), errors="coerce")
        s.index = [to_date(d) for d in s.index]
        s = s[s.notna() & (s > 0)]
        s = s[~s.index.duplicated(keep="last")].sort_index()
        self._closes: List[float] = [float(v) for v in s.to_numpy()]
        self._dates: List[dt.date] = list(s.index)
        self._pos: Dict[dt.date, int] = {d: i for i, d in enumerate(self._dates)}

    @classmethod
    def from_frame(cls, df: pd.DataFrame, date_col: str = "date", close_col: str = "close") -> "PriceSeries":
        if df.empty:
            return cls(pd.Series(dtype=float))
        return cls(pd.Series(df[close_col].to_numpy(), index=df[date_col].to_numpy()))

    @classmethod
    def from_mapping(cls, closes: Dict[dt.date, float]) -> "PriceSeries":
        return cls(pd.Series(closes, dtype=float))

    def __len__(self) -> int:
        return len(self._dates)

    def __contains__(self, date: object) -> bool:
        return date in self._pos

    @property
    def dates(self) -> List[dt.date]:
        return list(self._dates)

    @property
    def empty(self) -> bool:
        return not self._dates

    def close(self, date: dt.date) -> Optional[float]:
        i = self._pos.get(date)
        return None if i is None else self._closes[i]

    def forward_return(self, date: dt.date, horizon: int) -> Optional[float]:
        """Percent change from ``date`` to the close ``horizon`` bars later, or None if out of range."""
        if horizon <= 0:
            raise ValueError(f"horizon must be positive, got {horizon}")
        i = self._pos.get(date)
        if i is None or i + horizon >= len(self._closes):
            return None
        origin = self._closes[i]
        return (self._closes[i + horizon] - origin) / origin * 100.0

    def forward_returns(self, dates: Sequence[dt.date], horizon: int) -> Dict[dt.date, float]:
        out: Dict[dt.date, float] = {}
        for d in dates:
            r = self.forward_return(d, horizon)
            if r is not None:
                out[d] = r
        return out

    def truncate(self, end: dt.date) -> "PriceSeries":
        """Bars on or before ``end``."""
        keep = [i for i, d in enumerate(self._dates) if d <= end]
        return PriceSeries(pd.Series([self._closes[i] for i in keep], index=[self._dates[i] for i in keep], dtype=float))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({"date": self._dates, "close": self._closes})
