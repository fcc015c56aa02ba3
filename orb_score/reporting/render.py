from __future__ import annotations

import html
import json
from pathlib import Path
from typing import Any, Dict, List, Mapping

import pandas as pd

from .bundle import transitions_frame, weights_frame


def load_report(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise RuntimeError(f"Missing required file: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return data if isinstance(data, dict) else {}


def _fmt_cell(v: object) -> str:
    if isinstance(v, list):
        return ", ".join(str(x) for x in v)
    if isinstance(v, bool):
        return "true" if v else "false"
    if v is None or (isinstance(v, float) and pd.isna(v)):
        return ""
    if isinstance(v, (int, float)):
        if isinstance(v, float) and abs(v - round(v)) > 1e-9:
            return f"{v:.3f}"
        return str(int(v)) if float(v).is_integer() else str(v)
    return str(v)


def _safe_table(df: pd.DataFrame) -> str:
    if df.empty:
        return "<div class='empty'>No data.</div>"
    out = df.copy()
    for c in out.columns:
        out[c] = out[c].map(_fmt_cell)
    return out.to_html(index=False, escape=True, classes="data-table")


def _kpi_card(label: str, value: object, subtitle: str = "") -> str:
    subtitle_html = f"<div class='kpi-sub'>{html.escape(subtitle)}</div>" if subtitle else ""
    return (
        "<div class='kpi-card'>"
        f"<div class='kpi-label'>{html.escape(label)}</div>"
        f"<div class='kpi-value'>{html.escape(_fmt_cell(value))}</div>"
        f"{subtitle_html}"
        "</div>"
    )


def _warnings_html(warnings: Any) -> str:
    if not isinstance(warnings, list) or not warnings:
        return "<div class='ok'>No warnings.</div>"
    items = "".join(f"<li>{html.escape(str(w))}</li>" for w in warnings)
    return f"<div class='warn'><ul>{items}</ul></div>"


def _pct(v: Any) -> str:
    return "" if v is None else f"{float(v):+.2f}%"


def _money_frame(report: Mapping[str, Any]) -> pd.DataFrame:
    horizons = [str(h) for h in report.get("horizons", [])]
    grid = report.get("zone_statistics", {}) or {}
    rows: List[Dict[str, Any]] = []
    names = list((report.get("zones", {}) or {}).get("names", []))
    for name, by_h in [(n, grid.get(n) or {}) for n in names] + [("BASELINE", report.get("baseline", {}) or {})]:
        row: Dict[str, Any] = {"Zone": name}
        for h in horizons:
            s = by_h.get(h, {}) or {}
            n = int(s.get("n", 0) or 0)
            row[f"{h}D Mean"] = _pct(s.get("mean"))
            row[f"{h}D Win"] = f"{float(s.get('win_rate', 0.0)) * 100:.0f}%" if n else ""
            row[f"{h}D N"] = n
        rows.append(row)
    return pd.DataFrame(rows)


def _distribution_frame(report: Mapping[str, Any]) -> pd.DataFrame:
    zones = report.get("zones", {}) or {}
    cutoffs = list(zones.get("cutoffs", []))
    dist = report.get("distribution", {}) or {}
    rows = []
    for i, name in enumerate(zones.get("names", [])):
        d = dist.get(name, {}) or {}
        target = d.get("target_share")
        rows.append({
            "Zone": name,
            "Cutoff": cutoffs[i] if i < len(cutoffs) else None,
            "Days": d.get("count", 0),
            "Share": f"{float(d.get('share', 0.0)) * 100:.1f}%",
            "Target": "" if target is None else f"{float(target) * 100:.1f}%",
        })
    return pd.DataFrame(rows)


def _spread_frame(report: Mapping[str, Any]) -> pd.DataFrame:
    rows = []
    for h, s in (report.get("spreads", {}) or {}).items():
        rows.append({
            "Horizon": f"{h}D",
            "Top": "+".join(s.get("top_zones", [])),
            "Top Mean": _pct(s.get("top_mean")),
            "Bottom": "+".join(s.get("bottom_zones", [])),
            "Bottom Mean": _pct(s.get("bottom_mean")),
            "Spread": _pct(s.get("spread")),
            "Baseline Std": s.get("baseline_std"),
            "Spread/Std": s.get("ratio_to_dispersion"),
            "Verdict": s.get("verdict"),
        })
    return pd.DataFrame(rows)


def render_validation_html(report: Mapping[str, Any], output_path: Path) -> Path:
    output_path = Path(output_path)
    meta = report.get("run_meta", {}) or {}
    headline = report.get("headline") or {}
    current = report.get("current") or {}
    warnings = report.get("warnings", []) or []
    alpha = report.get("alpha", {}) or {}

    parts: List[str] = []
    parts.append("<!doctype html>")
    parts.append("<html><head><meta charset='utf-8'>")
    parts.append("<meta name='viewport' content='width=device-width, initial-scale=1'>")
    parts.append("<title>Orb Score Validation Report</title>")
    parts.append(
        "<style>"
        ":root{--bg:#f3f6f8;--card:#ffffff;--ink:#13232d;--muted:#4d6978;--line:#d7e0e6;"
        "--accent:#0d7b8f;--ok:#1f9a5b;--warn:#9f5b00;}"
        "*{box-sizing:border-box}"
        "body{margin:0;background:var(--bg);color:var(--ink);"
        "font-family:'IBM Plex Sans','Trebuchet MS','Segoe UI',sans-serif;}"
        ".wrap{max-width:1200px;margin:0 auto;padding:28px 18px 36px;}"
        "h1{margin:0 0 4px;font-size:30px}"
        ".sub{color:var(--muted);margin:0 0 16px;font-size:14px}"
        ".meta{display:grid;grid-template-columns:repeat(auto-fit,minmax(220px,1fr));gap:10px;margin:0 0 16px;}"
        ".meta div{background:var(--card);border:1px solid var(--line);border-radius:12px;padding:10px 12px;font-size:12px;}"
        ".kpis{display:grid;grid-template-columns:repeat(auto-fit,minmax(180px,1fr));gap:12px;margin:0 0 18px;}"
        ".kpi-card{background:var(--card);border:1px solid var(--line);border-radius:12px;padding:12px;}"
        ".kpi-label{font-size:11px;color:var(--muted);text-transform:uppercase;letter-spacing:.6px}"
        ".kpi-value{font-size:24px;font-weight:700;margin-top:6px}"
        ".kpi-sub{font-size:12px;color:var(--muted);margin-top:3px}"
        ".panel{background:var(--card);border:1px solid var(--line);border-radius:14px;padding:14px 14px 6px;margin:12px 0;}"
        "h2{margin:0 0 10px;font-size:18px}"
        ".warn{background:#fff1dd;border:1px solid #ffd9a8;border-radius:10px;padding:10px 12px;color:var(--warn)}"
        ".ok{background:#e9f8ee;border:1px solid #c4ebd0;border-radius:10px;padding:10px 12px;color:var(--ok)}"
        ".warn ul{margin:0;padding-left:18px}"
        ".empty{padding:10px 0;color:var(--muted);font-size:13px}"
        ".data-table{width:100%;border-collapse:collapse;margin:0 0 8px;font-size:12px}"
        ".data-table th{background:#0d7b8f;color:#fff;border:1px solid #0b6c7d;padding:7px;text-align:left}"
        ".data-table td{border:1px solid var(--line);padding:6px;vertical-align:top}"
        ".grid{display:grid;grid-template-columns:1fr;gap:12px}"
        "@media(min-width:980px){.grid{grid-template-columns:1fr 1fr}}"
        "</style>"
    )
    parts.append("</head><body><div class='wrap'>")

    parts.append("<h1>Orb Score Validation Report</h1>")
    parts.append(
        f"<p class='sub'>Preset {html.escape(str(meta.get('preset', '')))}; "
        f"{html.escape(str(meta.get('first_date', '')))} to {html.escape(str(meta.get('last_date', '')))}.</p>"
    )

    parts.append("<section class='meta'>")
    for key in ("run_timestamp", "engine_version", "git_commit", "config_hash"):
        parts.append(f"<div><strong>{key}</strong><br>{html.escape(str(meta.get(key, '') or ''))}</div>")
    parts.append("</section>")

    parts.append("<section class='kpis'>")
    parts.append(_kpi_card("Scored Days", meta.get("scored_days", 0)))
    parts.append(_kpi_card(
        f"Spread {headline.get('horizon', '')}D",
        _pct(headline.get("spread")) or "n/a",
        str(headline.get("verdict", "")),
    ))
    parts.append(_kpi_card(f"Baseline {alpha.get('horizon', '')}D", _pct(alpha.get("baseline_return")) or "n/a"))
    if current:
        parts.append(_kpi_card("Latest Zone", current.get("label", ""), f"score {current.get('score')} on {current.get('date')}"))
    parts.append(_kpi_card("Warnings", len(warnings)))
    parts.append("</section>")

    parts.append("<section class='panel'><h2>Run Warnings</h2>")
    parts.append(_warnings_html(warnings))
    parts.append("</section>")

    parts.append("<section class='panel'><h2>Forward Returns by Zone</h2>")
    parts.append(_safe_table(_money_frame(report)))
    parts.append("</section>")

    parts.append("<section class='grid'>")
    parts.append("<div class='panel'><h2>Zone Distribution</h2>")
    parts.append(_safe_table(_distribution_frame(report)))
    parts.append("</div>")
    parts.append("<div class='panel'><h2>Spread</h2>")
    parts.append(_safe_table(_spread_frame(report)))
    parts.append("</div>")
    parts.append("</section>")

    parts.append("<section class='panel'><h2>Zone Transitions</h2>")
    parts.append(_safe_table(transitions_frame(report)))
    parts.append("</section>")

    parts.append("<section class='panel'><h2>Setup Weights</h2>")
    parts.append(_safe_table(weights_frame(report)))
    parts.append("</section>")

    comparison = report.get("comparison") or {}
    if comparison:
        parts.append("<section class='panel'><h2>Changes vs Previous Artifact</h2>")
        parts.append(_safe_table(pd.DataFrame(comparison.get("weights", []))))
        parts.append("</section>")

    parts.append("</div></body></html>")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text("\n".join(parts), encoding="utf-8")
    return output_path
