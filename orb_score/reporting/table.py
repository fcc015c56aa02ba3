from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional


def _pct(v: Optional[float], signed: bool = True) -> str:
    if v is None:
        return "-"
    return f"{v:+.2f}%" if signed else f"{v:.2f}%"


def _share(v: Optional[float]) -> str:
    return "-" if v is None else f"{v * 100:.1f}%"


def _cell(stats: Mapping[str, Any]) -> str:
    n = int(stats.get("n", 0) or 0)
    if n == 0:
        return f"{'-':>8} {'-':>4} n=0"
    mean = _pct(stats.get("mean"))
    win = f"{float(stats.get('win_rate', 0.0)) * 100:.0f}%"
    return f"{mean:>8} {win:>4} n={n}"


def format_money_table(report: Mapping[str, Any]) -> str:
    """Fixed-width zone x horizon summary of a validation report."""
    meta = report.get("run_meta", {}) or {}
    zones = report.get("zones", {}) or {}
    names: List[str] = list(zones.get("names", []))
    horizons = [str(h) for h in report.get("horizons", [])]
    dist = report.get("distribution", {}) or {}
    grid = report.get("zone_statistics", {}) or {}
    baseline = report.get("baseline", {}) or {}

    width = max([len(n) for n in names] + [len("BASELINE")]) + 2
    lines: List[str] = []
    lines.append(
        f"ORB SCORE VALIDATION  preset={meta.get('preset', '')}  "
        f"days={meta.get('scored_days', 0)}  range={meta.get('first_date', '')}..{meta.get('last_date', '')}"
    )
    lines.append(f"config_hash={meta.get('config_hash', '')}  run={meta.get('run_timestamp', '')}")
    lines.append("")

    header = f"{'ZONE':<{width}}{'CUTOFF':>8} {'SHARE':>6} {'TARGET':>6}"
    for h in horizons:
        header += f" | {h + 'D mean  win':<20}"
    lines.append(header)
    lines.append("-" * len(header))

    cutoffs = list(zones.get("cutoffs", []))
    for i, name in enumerate(names):
        cutoff = cutoffs[i] if i < len(cutoffs) else None
        cut_s = "-" if cutoff is None else f"{cutoff:.3f}"
        d = dist.get(name, {}) or {}
        row = f"{name:<{width}}{cut_s:>8} {_share(d.get('share')):>6} {_share(d.get('target_share')):>6}"
        for h in horizons:
            row += f" | {_cell((grid.get(name) or {}).get(h, {}) or {}):<20}"
        lines.append(row)
    row = f"{'BASELINE':<{width}}{'':>8} {'':>6} {'':>6}"
    for h in horizons:
        row += f" | {_cell(baseline.get(h, {}) or {}):<20}"
    lines.append(row)
    lines.append("")

    lines.append("SPREAD (top zones minus bottom zones)")
    spreads: Dict[str, Any] = report.get("spreads", {}) or {}
    for h in horizons:
        s = spreads.get(h) or {}
        ratio = s.get("ratio_to_dispersion")
        ratio_s = "-" if ratio is None else f"{ratio:.2f}"
        lines.append(
            f"  {h:>3}D  {_pct(s.get('spread')):>8}  top={_pct(s.get('top_mean'))} (n={s.get('top_n', 0)})"
            f"  bottom={_pct(s.get('bottom_mean'))} (n={s.get('bottom_n', 0)})  ratio/std={ratio_s}"
        )
    headline = report.get("headline") or {}
    if headline:
        lines.append(
            f"  VERDICT @{headline.get('horizon')}D: {headline.get('verdict')} "
            f"({'+'.join(headline.get('top_zones', []))} vs {'+'.join(headline.get('bottom_zones', []))})"
        )
    lines.append("")

    transitions = report.get("transitions", []) or []
    lines.append("TRANSITIONS")
    if not transitions:
        lines.append("  none")
    for t in transitions:
        flag = "  (low sample)" if t.get("low_sample") else ""
        row = f"  {t.get('from_zone')} -> {t.get('to_zone')}  x{t.get('count')}"
        stats = t.get("stats", {}) or {}
        for h in horizons:
            row += f" | {h}D {_cell(stats.get(h, {}) or {})}"
        lines.append(row + flag)
    lines.append("")

    current = report.get("current") or {}
    if current:
        lines.append(f"LATEST {current.get('date')}: score={current.get('score')}  zone={current.get('label')}")
        lines.append("")

    warnings = report.get("warnings", []) or []
    lines.append(f"WARNINGS ({len(warnings)})")
    for w in warnings:
        lines.append(f"  - {w}")
    return "\n".join(lines) + "\n"
