from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from ..registry import SetupRegistry
from ..utils import clamp
from .alpha import SetupAlpha


@dataclass(frozen=True)
class SetupWeight:
    setup_id: str
    weight: float
    alpha: Optional[float] = None
    sample_size: int = 0
    reason: str = "alpha"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "setup_id": self.setup_id,
            "weight": self.weight,
            "alpha": self.alpha,
            "sample_size": self.sample_size,
            "reason": self.reason,
        }


def _alpha_weight(
    alpha: Optional[SetupAlpha],
    alpha_max: Optional[float],
    weighting: Mapping[str, Any],
) -> tuple[float, str]:
    floor = float(weighting["floor"])
    if alpha is None:
        return floor, "no_active_days"
    # Weak or inverted setups stay in the score at the floor.
    if alpha.alpha <= 0 or not alpha_max:
        return floor, "non_positive_alpha"

    w_min = float(weighting["w_min"])
    w_max = float(weighting["w_max"])
    raw = clamp(alpha.alpha / alpha_max, 0.0, 1.0)
    weight = w_min + raw * (w_max - w_min)
    reason = "alpha"
    min_samples = int(weighting["min_samples"])
    if alpha.sample_size < min_samples:
        weight *= max(float(weighting["penalty_floor"]), alpha.sample_size / min_samples)
        reason = "low_sample"
    return weight, reason


def calibrate_weights(
    alphas: Mapping[str, SetupAlpha],
    registry: SetupRegistry,
    weighting: Mapping[str, Any],
) -> Dict[str, SetupWeight]:
    """One weight per registered setup, always within ``[floor, w_max]``."""
    strategy = str(weighting.get("strategy", "alpha"))
    decimals = int(weighting.get("decimals", 2))
    floor = float(weighting["floor"])
    w_max = float(weighting["w_max"])

    positive = [a.alpha for sid, a in alphas.items() if sid in registry and a.alpha > 0]
    alpha_max = max(positive) if positive else None

    out: Dict[str, SetupWeight] = {}
    for setup in registry:
        alpha = alphas.get(setup.id)
        if strategy == "equal":
            weight, reason = float(weighting["equal_weight"]), "equal"
            out[setup.id] = SetupWeight(
                setup_id=setup.id,
                weight=round(weight, decimals),
                alpha=None if alpha is None else alpha.alpha,
                sample_size=0 if alpha is None else alpha.sample_size,
                reason=reason,
            )
            continue
        weight, reason = _alpha_weight(alpha, alpha_max, weighting)
        out[setup.id] = SetupWeight(
            setup_id=setup.id,
            weight=clamp(round(weight, decimals), floor, w_max),
            alpha=None if alpha is None else alpha.alpha,
            sample_size=0 if alpha is None else alpha.sample_size,
            reason=reason,
        )
    return out


def weight_table(weights: Mapping[str, SetupWeight]) -> Dict[str, float]:
    return {sid: float(w.weight) for sid, w in weights.items()}
