from .returns import EMPTY_STATS, PriceSeries, ReturnStats, pctile, summarize_returns, win_rate

__all__ = [
    "EMPTY_STATS",
    "PriceSeries",
    "ReturnStats",
    "pctile",
    "summarize_returns",
    "win_rate",
]
