from .engine import (
    BacktestResult,
    SpreadResult,
    TransitionRecord,
    TransitionSummary,
    aggregate_transitions,
    baseline_statistics,
    compute_spread,
    find_transitions,
    run_backtest,
    spread_verdict,
    zone_samples,
    zone_statistics,
)
from ..metrics.returns import summarize_returns

__all__ = [
    "BacktestResult",
    "SpreadResult",
    "TransitionRecord",
    "TransitionSummary",
    "aggregate_transitions",
    "baseline_statistics",
    "compute_spread",
    "find_transitions",
    "run_backtest",
    "spread_verdict",
    "summarize_returns",
    "zone_samples",
    "zone_statistics",
]
