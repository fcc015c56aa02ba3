from __future__ import annotations

import argparse
import calendar
import datetime as dt
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd


def subtract_months(date_value: dt.date, months: int) -> dt.date:
    month_index = date_value.month - 1 - months
    year = date_value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(date_value.day, calendar.monthrange(year, month)[1])
    return dt.date(year, month, day)


def load_status_dates(statuses_csv: Path) -> List[dt.date]:
    if not statuses_csv.exists():
        raise FileNotFoundError(f"Missing status history at {statuses_csv}.")
    df = pd.read_csv(statuses_csv, sep=None, engine="python")
    if "date" not in df.columns:
        raise ValueError(f"{statuses_csv} does not contain a date column.")
    series = pd.to_datetime(df["date"], errors="coerce").dt.date.dropna()
    return sorted(set(series.tolist()))


def month_ends(dates: List[dt.date]) -> List[dt.date]:
    """Last available status date of each calendar month."""
    last: dict = {}
    for d in dates:
        last[(d.year, d.month)] = d
    return [last[k] for k in sorted(last)]


def run_calibration(as_of: dt.date, statuses: Path, prices: Optional[Path], out_root: Path, preset: Optional[str]) -> None:
    cmd = [
        sys.executable,
        "-m",
        "orb_score",
        "calibrate",
        "--statuses",
        str(statuses),
        "--out",
        str(out_root / as_of.isoformat()),
        "--as-of",
        as_of.isoformat(),
    ]
    if prices is not None:
        cmd += ["--prices", str(prices)]
    if preset:
        cmd += ["--preset", preset]
    subprocess.run(cmd, check=True)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Re-run calibration as of each month end in the last N months (walk-forward check)."
    )
    parser.add_argument("--statuses", required=True, help="Status history CSV.")
    parser.add_argument("--prices", default=None, help="Daily closes CSV (default: fetch).")
    parser.add_argument("--months", type=int, default=6, help="Months of history to include.")
    parser.add_argument("--preset", default=None, help="Configuration preset.")
    parser.add_argument("--out", default="outputs/walk_forward", help="Root output directory.")
    args = parser.parse_args()

    if args.months <= 0:
        raise ValueError("--months must be >= 1.")

    statuses = Path(args.statuses)
    dates = load_status_dates(statuses)
    if not dates:
        raise ValueError("No status dates found.")

    latest = dates[-1]
    cutoff = subtract_months(latest, args.months)
    selected = [d for d in month_ends(dates) if d >= cutoff]

    out_root = Path(args.out)
    out_root.mkdir(parents=True, exist_ok=True)
    print(
        f"Calibrating {len(selected)} month ends from {selected[0].isoformat()} "
        f"to {selected[-1].isoformat()} (latest={latest.isoformat()}, months={args.months}).",
        flush=True,
    )
    prices = Path(args.prices) if args.prices else None
    for as_of in selected:
        print(f"- {as_of.isoformat()}", flush=True)
        run_calibration(as_of, statuses, prices, out_root, args.preset)


if __name__ == "__main__":
    main()
