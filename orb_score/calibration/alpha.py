from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from ..metrics.returns import PriceSeries
from ..registry import Direction, SetupRegistry, Status


@dataclass(frozen=True)
class SetupAlpha:
    setup_id: str
    direction: Direction
    sample_size: int
    mean_active_return: float
    baseline_return: float
    alpha: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "setup_id": self.setup_id,
            "direction": self.direction.value,
            "sample_size": self.sample_size,
            "mean_active_return": self.mean_active_return,
            "baseline_return": self.baseline_return,
            "alpha": self.alpha,
        }


@dataclass(frozen=True)
class AlphaResult:
    horizon: int
    baseline_return: Optional[float]
    baseline_n: int
    alphas: Dict[str, SetupAlpha] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


def signed_alpha(direction: Direction, mean_active_return: float, baseline_return: float) -> float:
    # Positive always means the setup pointed the way it claims to.
    if direction is Direction.BUY:
        return mean_active_return - baseline_return
    return baseline_return - mean_active_return


def estimate_alphas(
    statuses: pd.DataFrame,
    prices: PriceSeries,
    registry: SetupRegistry,
    horizon: int = 20,
) -> AlphaResult:
    warnings: List[str] = []
    if statuses.empty:
        return AlphaResult(horizon=horizon, baseline_return=None, baseline_n=0, warnings=["NO STATUS ROWS FOR ALPHA ESTIMATION"])

    dates = sorted(set(statuses["date"].tolist()))
    priced = [d for d in dates if d in prices]
    forward = prices.forward_returns(priced, horizon)
    skipped = len(priced) - len(forward)
    if skipped:
        warnings.append(f"ALPHA {horizon}D SAMPLES OUT OF RANGE: skipped={skipped}")
    if not forward:
        warnings.append(f"NO VALID {horizon}D FORWARD SAMPLES -> ALL SETUPS GET FLOOR WEIGHT")
        return AlphaResult(horizon=horizon, baseline_return=None, baseline_n=0, warnings=warnings)

    baseline = float(np.mean(list(forward.values())))

    active = statuses[statuses["status"] == Status.ACTIVE.value]
    active_dates: Dict[str, List[Any]] = {
        str(sid): grp["date"].tolist() for sid, grp in active.groupby("setup_id", sort=False)
    }

    alphas: Dict[str, SetupAlpha] = {}
    no_samples: List[str] = []
    for setup in registry:
        rets = [forward[d] for d in active_dates.get(setup.id, []) if d in forward]
        if not rets:
            no_samples.append(setup.id)
            continue
        mean_ret = float(np.mean(rets))
        alphas[setup.id] = SetupAlpha(
            setup_id=setup.id,
            direction=setup.direction,
            sample_size=len(rets),
            mean_active_return=mean_ret,
            baseline_return=baseline,
            alpha=signed_alpha(setup.direction, mean_ret, baseline),
        )
    if no_samples:
        warnings.append(f"SETUPS WITHOUT ACTIVE {horizon}D SAMPLES: {', '.join(no_samples)}")
    return AlphaResult(
        horizon=horizon,
        baseline_return=baseline,
        baseline_n=len(forward),
        alphas=alphas,
        warnings=warnings,
    )
