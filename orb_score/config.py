from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .registry import DEFAULT_SETUPS, SetupRegistry, Status


FOUR_ZONES = ["FULL_SEND", "NEUTRAL", "CAUTION", "DEFENSIVE"]
FIVE_ZONES = ["FULL_SEND", "FAVORABLE", "NEUTRAL", "CAUTION", "DEFENSIVE"]

DEFAULTS: Dict[str, Any] = {
    "preset": "alpha_4zone",
    "setups": dict(DEFAULT_SETUPS),
    "alpha": {
        "horizon": 20,
    },
    "weighting": {
        "strategy": "alpha",
        "w_min": 0.3,
        "w_max": 2.0,
        "floor": 0.3,
        "min_samples": 20,
        "penalty_floor": 0.3,
        "equal_weight": 1.0,
        "decimals": 2,
    },
    "scoring": {
        "status_multipliers": {
            "active": 1.0,
            "watching": 0.3,
            "inactive": 0.0,
        },
        "decimals": 3,
    },
    "zones": {
        "names": list(FOUR_ZONES),
        "shares": [0.15, 0.50, 0.25, 0.10],
        "display_buffer": 0.04,
    },
    "backtest": {
        "horizons": [5, 10, 20, 60],
        "spread_horizon": 20,
        "top_zones": 1,
        "bottom_zones": 2,
        "min_transition_samples": 3,
        "transition_reference_horizon": 10,
        "verdict_thresholds": {
            "SHIP_IT": 10.0,
            "STRONG": 6.0,
            "OK": 3.0,
        },
    },
    "sources": {
        "symbol": "TSLA",
        "price_url": "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}",
        "lookback_years": 5,
        "timeout_seconds": 30,
        "status_table": "orb_daily_snapshots",
    },
    "output": {
        "out_dir": "outputs",
    },
}

# Each historical pipeline version is one set of overrides on DEFAULTS.
PRESETS: Dict[str, Dict[str, Any]] = {
    "alpha_4zone": {},
    "alpha_5zone": {
        "zones": {"names": list(FIVE_ZONES), "shares": [0.10, 0.20, 0.40, 0.20, 0.10]},
        "backtest": {"top_zones": 2, "bottom_zones": 2},
    },
    "equal_weight_5zone": {
        "weighting": {"strategy": "equal"},
        "scoring": {"status_multipliers": {"watching": 0.5}},
        "zones": {"names": list(FIVE_ZONES), "shares": [0.10, 0.20, 0.40, 0.20, 0.10]},
        "backtest": {"top_zones": 2, "bottom_zones": 2},
    },
}

WEIGHTING_STRATEGIES = {"alpha", "equal"}


@dataclass(frozen=True)
class OrbScoreConfig:
    raw: Dict[str, Any]

    @property
    def preset(self) -> str:
        return str(self.raw.get("preset", DEFAULTS["preset"]))

    @property
    def registry(self) -> SetupRegistry:
        return SetupRegistry.from_mapping(self.raw.get("setups", DEFAULT_SETUPS))

    @property
    def alpha_horizon(self) -> int:
        block = self.raw.get("alpha", {})
        horizon = int(block.get("horizon", 20))
        if horizon <= 0:
            raise ValueError(f"alpha.horizon must be positive, got {horizon}")
        return horizon

    @property
    def weighting(self) -> Dict[str, Any]:
        block = self.raw.get("weighting", {})
        out = {
            "strategy": str(block.get("strategy", "alpha")).strip().lower(),
            "w_min": float(block.get("w_min", 0.3)),
            "w_max": float(block.get("w_max", 2.0)),
            "floor": float(block.get("floor", block.get("w_min", 0.3))),
            "min_samples": int(block.get("min_samples", 20)),
            "penalty_floor": float(block.get("penalty_floor", 0.3)),
            "equal_weight": float(block.get("equal_weight", 1.0)),
            "decimals": int(block.get("decimals", 2)),
        }
        if out["strategy"] not in WEIGHTING_STRATEGIES:
            raise ValueError(f"Invalid weighting.strategy: {out['strategy']}")
        if not 0 < out["w_min"] <= out["w_max"]:
            raise ValueError("weighting requires 0 < w_min <= w_max.")
        if not out["w_min"] <= out["floor"] <= out["w_max"]:
            raise ValueError("weighting.floor must lie within [w_min, w_max].")
        if not out["w_min"] <= out["equal_weight"] <= out["w_max"]:
            raise ValueError("weighting.equal_weight must lie within [w_min, w_max].")
        if out["min_samples"] < 1:
            raise ValueError("weighting.min_samples must be >= 1.")
        if not 0 < out["penalty_floor"] <= 1:
            raise ValueError("weighting.penalty_floor must lie within (0, 1].")
        return out

    @property
    def status_multipliers(self) -> Dict[str, float]:
        block = self.raw.get("scoring", {}).get("status_multipliers", {})
        defaults = DEFAULTS["scoring"]["status_multipliers"]
        out: Dict[str, float] = {}
        for status in Status:
            out[status.value] = float(block.get(status.value, defaults[status.value]))
        unknown = sorted(set(block) - set(out))
        if unknown:
            raise ValueError(f"Unknown status multiplier keys: {unknown}")
        if out["active"] <= 0:
            raise ValueError("scoring.status_multipliers.active must be > 0.")
        if not 0 <= out["watching"] <= out["active"]:
            raise ValueError("scoring.status_multipliers.watching must lie within [0, active].")
        if out["inactive"] != 0:
            raise ValueError("scoring.status_multipliers.inactive must be 0.")
        return out

    @property
    def score_decimals(self) -> int:
        return int(self.raw.get("scoring", {}).get("decimals", 3))

    @property
    def zones(self) -> Dict[str, Any]:
        block = self.raw.get("zones", {})
        names = [str(n).strip().upper() for n in block.get("names", FOUR_ZONES)]
        shares = [float(s) for s in block.get("shares", DEFAULTS["zones"]["shares"])]
        validate_zone_scheme(names, shares)
        return {
            "names": names,
            "shares": shares,
            "display_buffer": float(block.get("display_buffer", 0.04)),
        }

    @property
    def backtest(self) -> Dict[str, Any]:
        block = self.raw.get("backtest", {})
        horizons = sorted({int(h) for h in block.get("horizons", [5, 10, 20, 60])})
        if not horizons or horizons[0] <= 0:
            raise ValueError("backtest.horizons must be positive integers.")
        spread_h = int(block.get("spread_horizon", 20))
        if spread_h not in horizons:
            raise ValueError(f"backtest.spread_horizon {spread_h} is not one of {horizons}")
        zone_count = len(self.zones["names"])
        top = int(block.get("top_zones", 1))
        bottom = int(block.get("bottom_zones", 2))
        if top < 1 or bottom < 1 or top + bottom > zone_count:
            raise ValueError(f"backtest top_zones + bottom_zones must fit within {zone_count} zones.")
        ref_h = int(block.get("transition_reference_horizon", 10))
        if ref_h not in horizons:
            ref_h = horizons[0]
        verdicts = block.get("verdict_thresholds", DEFAULTS["backtest"]["verdict_thresholds"])
        return {
            "horizons": horizons,
            "spread_horizon": spread_h,
            "top_zones": top,
            "bottom_zones": bottom,
            "min_transition_samples": int(block.get("min_transition_samples", 3)),
            "transition_reference_horizon": ref_h,
            "verdict_thresholds": {str(k).upper(): float(v) for k, v in verdicts.items()},
        }

    @property
    def sources(self) -> Dict[str, Any]:
        block = self.raw.get("sources", {})
        return {
            "symbol": str(block.get("symbol", "TSLA")).strip().upper(),
            "price_url": str(block.get("price_url", DEFAULTS["sources"]["price_url"])),
            "lookback_years": int(block.get("lookback_years", 5)),
            "timeout_seconds": float(block.get("timeout_seconds", 30)),
            "status_table": str(block.get("status_table", "orb_daily_snapshots")),
        }

    @property
    def out_dir(self) -> Path:
        return Path(self.raw.get("output", {}).get("out_dir", "outputs"))


def validate_zone_scheme(names: List[str], shares: List[float]) -> None:
    if len(names) < 2:
        raise ValueError("At least two zones are required.")
    if len(set(names)) != len(names):
        raise ValueError(f"Zone names must be unique: {names}")
    if len(shares) != len(names):
        raise ValueError(f"Got {len(shares)} zone shares for {len(names)} zones.")
    if any(s <= 0 for s in shares):
        raise ValueError("Zone shares must be positive.")
    if abs(sum(shares) - 1.0) > 1e-6:
        raise ValueError(f"Zone shares must sum to 1.0, got {sum(shares):.6f}")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def config_from_block(block: Optional[Dict[str, Any]] = None) -> OrbScoreConfig:
    block = dict(block or {})
    preset = str(block.get("preset", DEFAULTS["preset"])).strip().lower()
    if preset not in PRESETS:
        raise ValueError(f"Unknown preset '{preset}'. Expected one of {sorted(PRESETS)}.")
    merged = _deep_merge(copy.deepcopy(DEFAULTS), copy.deepcopy(PRESETS[preset]))
    merged = _deep_merge(merged, copy.deepcopy(block))
    merged["preset"] = preset
    # A user-supplied registry replaces the default one instead of extending it.
    if isinstance(block.get("setups"), dict):
        merged["setups"] = dict(block["setups"])
    return OrbScoreConfig(raw=merged)


def load_config(config_path: Optional[str] = None, preset: Optional[str] = None) -> OrbScoreConfig:
    path = Path(config_path) if config_path else Path("config.yaml")
    doc: Dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            doc = loaded
    elif config_path:
        raise FileNotFoundError(f"Config file not found: {path}")
    block = doc.get("orb_score")
    if not isinstance(block, dict):
        block = {}
    if preset:
        block = {**block, "preset": preset}
    return config_from_block(block)


def config_hash(cfg: OrbScoreConfig) -> str:
    payload = json.dumps(cfg.raw, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(payload).hexdigest()
