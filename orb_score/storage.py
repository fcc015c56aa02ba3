from __future__ import annotations

import datetime as dt
import json
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional

import pandas as pd

from .registry import SetupRegistry
from .reporting.bundle import jsonable
from .scoring.zones import ZoneThresholds
from .utils import ensure_dir

logger = logging.getLogger(__name__)

ARTIFACT_NAME = "weights_config.json"
REPORT_JSON = "validation_report.json"
REPORT_TXT = "validation_report.txt"
REPORT_HTML = "validation_report.html"
LATEST_NAME = "latest.json"


@dataclass(frozen=True)
class ScoringArtifact:
    """The parts of a saved config artifact a production scorer needs."""

    registry: SetupRegistry
    weights: Dict[str, float]
    status_multipliers: Dict[str, float]
    thresholds: ZoneThresholds
    score_decimals: int
    display_buffer: float
    raw: Dict[str, Any]


def _atomic_write(path: Path, write) -> Path:
    ensure_dir(path.parent)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            write(f)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise
    return path


def write_json(path: Path, data: Any) -> Path:
    return _atomic_write(path, lambda f: f.write(json.dumps(jsonable(data), indent=2)))


def write_text(path: Path, text: str) -> Path:
    return _atomic_write(path, lambda f: f.write(text))


def write_csv(path: Path, df: pd.DataFrame) -> Path:
    return _atomic_write(path, lambda f: df.to_csv(f, index=False))


def read_json(path: Path) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}")
    return data


def run_dir_name(run_timestamp: dt.datetime, config_hash: str) -> str:
    return f"{run_timestamp.strftime('%Y%m%dT%H%M%SZ')}_{config_hash[:8]}"


def run_dir_path(out_dir: Path, run_timestamp: dt.datetime, config_hash: str) -> Path:
    return Path(out_dir) / "runs" / run_dir_name(run_timestamp, config_hash)


@contextmanager
def staged_run_dir(run_dir: Path) -> Iterator[Path]:
    """Yield a hidden staging directory that becomes ``run_dir`` only if the block completes.

    An existing run directory is never reused. On any error the staging
    directory is removed, so a run dir either holds every file or does not exist.
    """
    run_dir = Path(run_dir)
    if run_dir.exists():
        raise FileExistsError(f"Run directory already exists: {run_dir}")
    ensure_dir(run_dir.parent)
    staging = Path(tempfile.mkdtemp(prefix=f".{run_dir.name}.", suffix=".staging", dir=str(run_dir.parent)))
    try:
        yield staging
        if run_dir.exists():
            raise FileExistsError(f"Run directory already exists: {run_dir}")
        os.replace(staging, run_dir)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise


def write_latest_pointer(out_dir: Path, run_dir: Path, meta: Mapping[str, Any]) -> Path:
    pointer = {
        "run_dir": str(Path(run_dir).resolve()),
        "artifact": str((Path(run_dir) / ARTIFACT_NAME).resolve()),
        **dict(meta),
    }
    return write_json(Path(out_dir) / LATEST_NAME, pointer)


def latest_run_dir(out_dir: Path) -> Optional[Path]:
    path = Path(out_dir) / LATEST_NAME
    if not path.exists():
        return None
    return Path(read_json(path)["run_dir"])


def resolve_artifact_path(path: Path) -> Path:
    path = Path(path)
    if path.is_dir():
        if (path / LATEST_NAME).exists():
            return Path(read_json(path / LATEST_NAME)["artifact"])
        return path / ARTIFACT_NAME
    return path


def parse_config_artifact(raw: Mapping[str, Any]) -> ScoringArtifact:
    for key in ("registry", "weights", "status_multipliers", "zones"):
        if key not in raw:
            raise ValueError(f"Config artifact is missing '{key}'")
    registry = SetupRegistry.from_mapping(raw["registry"])
    weights = {str(k): float(v) for k, v in raw["weights"].items()}
    missing = [sid for sid in registry.ids if sid not in weights]
    if missing:
        raise ValueError(f"Config artifact has no weight for: {', '.join(missing)}")
    return ScoringArtifact(
        registry=registry,
        weights=weights,
        status_multipliers={str(k): float(v) for k, v in raw["status_multipliers"].items()},
        thresholds=ZoneThresholds.from_dict(raw["zones"]),
        score_decimals=int(raw.get("score_decimals", 3)),
        display_buffer=float(raw.get("display_buffer", 0.04)),
        raw=dict(raw),
    )


def load_config_artifact(path: Path) -> ScoringArtifact:
    """Load a config artifact from a file, a run directory, or an output dir holding latest.json."""
    return parse_config_artifact(read_json(resolve_artifact_path(path)))


def _delta(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None or b is None:
        return None
    return b - a


def diff_artifacts(base: Mapping[str, Any], candidate: Mapping[str, Any]) -> Dict[str, Any]:
    """A/B comparison of two config artifacts."""
    base_w = base.get("weights", {}) or {}
    cand_w = candidate.get("weights", {}) or {}
    added = [sid for sid in cand_w if sid not in base_w]
    removed = [sid for sid in base_w if sid not in cand_w]

    weight_rows: List[Dict[str, Any]] = []
    for sid in list(base_w) + added:
        a = base_w.get(sid)
        b = cand_w.get(sid)
        weight_rows.append({
            "setup_id": sid,
            "base": a,
            "candidate": b,
            "delta": _delta(a, b),
        })

    base_z = base.get("zones", {}) or {}
    cand_z = candidate.get("zones", {}) or {}
    base_cuts = list(base_z.get("cutoffs", []))
    cand_cuts = list(cand_z.get("cutoffs", []))
    names = list(cand_z.get("names", [])) or list(base_z.get("names", []))
    cutoff_rows: List[Dict[str, Any]] = []
    for i in range(max(len(base_cuts), len(cand_cuts))):
        a = base_cuts[i] if i < len(base_cuts) else None
        b = cand_cuts[i] if i < len(cand_cuts) else None
        cutoff_rows.append({
            "zone": names[i] if i < len(names) else f"#{i}",
            "base": a,
            "candidate": b,
            "delta": _delta(a, b),
        })

    base_m = base.get("status_multipliers", {}) or {}
    cand_m = candidate.get("status_multipliers", {}) or {}
    multiplier_changes = {
        k: {"base": base_m.get(k), "candidate": cand_m.get(k)}
        for k in sorted(set(base_m) | set(cand_m))
        if base_m.get(k) != cand_m.get(k)
    }

    changed = [r for r in weight_rows if r["delta"] not in (None, 0.0)]
    return {
        "base": {"run_timestamp": base.get("run_timestamp"), "config_hash": base.get("config_hash")},
        "candidate": {"run_timestamp": candidate.get("run_timestamp"), "config_hash": candidate.get("config_hash")},
        "added_setups": added,
        "removed_setups": removed,
        "weights_changed": len(changed),
        "max_abs_weight_delta": max((abs(r["delta"]) for r in changed), default=0.0),
        "weights": weight_rows,
        "zone_names_changed": list(base_z.get("names", [])) != list(cand_z.get("names", [])),
        "cutoffs": cutoff_rows,
        "status_multipliers": multiplier_changes,
    }


def format_diff(diff: Mapping[str, Any]) -> str:
    lines = [
        f"BASE       {diff['base'].get('run_timestamp')}  {str(diff['base'].get('config_hash') or '')[:8]}",
        f"CANDIDATE  {diff['candidate'].get('run_timestamp')}  {str(diff['candidate'].get('config_hash') or '')[:8]}",
        "",
        f"weights changed: {diff['weights_changed']}  max |delta|: {diff['max_abs_weight_delta']:.2f}",
    ]
    if diff["added_setups"]:
        lines.append(f"added: {', '.join(diff['added_setups'])}")
    if diff["removed_setups"]:
        lines.append(f"removed: {', '.join(diff['removed_setups'])}")
    for row in diff["weights"]:
        if row["delta"] in (None, 0.0) and row["base"] is not None and row["candidate"] is not None:
            continue
        lines.append(f"  {row['setup_id']:<24} {row['base']!s:>6} -> {row['candidate']!s:<6} ({row['delta']})")
    if diff["zone_names_changed"]:
        lines.append("zone scheme changed")
    lines.append("cutoffs:")
    for row in diff["cutoffs"]:
        lines.append(f"  {row['zone']:<12} {row['base']!s:>8} -> {row['candidate']!s:<8}")
    for k, v in diff["status_multipliers"].items():
        lines.append(f"multiplier {k}: {v['base']} -> {v['candidate']}")
    return "\n".join(lines) + "\n"
