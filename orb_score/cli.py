from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import load_config
from .io import DataUnavailableError, load_price_csv, load_status_history
from .pipeline import run_calibration_from_sources, score_with_artifact, write_reports
from .reporting.render import load_report
from .reporting.table import format_money_table
from .storage import REPORT_JSON, diff_artifacts, format_diff, load_config_artifact, read_json, resolve_artifact_path, write_csv
from .utils import parse_iso_date

logger = logging.getLogger(__name__)


def cmd_calibrate(args: argparse.Namespace) -> None:
    cfg = load_config(args.config, preset=args.preset)
    result = run_calibration_from_sources(
        cfg,
        statuses_path=Path(args.statuses),
        prices_path=Path(args.prices) if args.prices else None,
        symbol=args.symbol,
        out_dir=Path(args.out) if args.out else None,
        as_of=parse_iso_date(args.as_of),
        previous_path=Path(args.previous) if args.previous else None,
    )
    print(format_money_table(result.report), end="")
    print(f"Wrote: {result.run_dir}")


def cmd_score(args: argparse.Namespace) -> None:
    artifact = load_config_artifact(Path(args.artifact))
    statuses, warnings = load_status_history(Path(args.statuses), artifact.registry, args.table)
    prices = None
    if args.prices:
        prices, price_warnings = load_price_csv(Path(args.prices))
        warnings += price_warnings
    daily, score_warnings = score_with_artifact(artifact, statuses, prices)
    for w in warnings + score_warnings:
        logger.warning(w)

    out = Path(args.out)
    write_csv(out, daily)
    if not daily.empty:
        last = daily.iloc[-1]
        print(f"{last['date']}: score={last['score']} zone={last['label']}")
    print(f"Wrote: {out}")


def cmd_compare(args: argparse.Namespace) -> None:
    base = read_json(resolve_artifact_path(Path(args.base)))
    candidate = read_json(resolve_artifact_path(Path(args.candidate)))
    print(format_diff(diff_artifacts(base, candidate)), end="")


def cmd_render(args: argparse.Namespace) -> None:
    run_dir = Path(args.run_dir)
    report = load_report(run_dir / REPORT_JSON)
    paths = write_reports(run_dir, report)
    for key in ("report_txt", "report_html"):
        print(f"Wrote: {paths[key]}")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="orb-score", description="Orb Score calibration and zone validation")
    p.add_argument("--config", default=None, help="Optional path to config.yaml (reads the orb_score block).")
    p.add_argument("--verbose", action="store_true", help="Debug logging.")

    sub = p.add_subparsers(dest="cmd", required=True)

    p_cal = sub.add_parser("calibrate", help="Calibrate weights and zones, backtest them, write a new run.")
    p_cal.add_argument("--statuses", required=True, help="Status history (CSV, or SQLite .db/.sqlite).")
    src = p_cal.add_mutually_exclusive_group()
    src.add_argument("--prices", default=None, help="Daily closes CSV (date, close).")
    src.add_argument("--symbol", default=None, help="Fetch daily closes for this symbol instead of a CSV.")
    p_cal.add_argument("--out", default=None, help="Output directory (default from config: outputs).")
    p_cal.add_argument("--previous", default=None, help="Artifact or run dir to compare against.")
    p_cal.add_argument("--as-of", default=None, help="Ignore data after this date (YYYY-MM-DD).")
    p_cal.add_argument("--preset", default=None, help="alpha_4zone | alpha_5zone | equal_weight_5zone")
    p_cal.set_defaults(func=cmd_calibrate)

    p_score = sub.add_parser("score", help="Score status history with a saved config artifact.")
    p_score.add_argument("--artifact", required=True, help="weights_config.json, a run dir, or an output dir.")
    p_score.add_argument("--statuses", required=True, help="Status history (CSV, or SQLite .db/.sqlite).")
    p_score.add_argument("--prices", default=None, help="Optional daily closes CSV.")
    p_score.add_argument("--table", default="orb_daily_snapshots", help="SQLite table name.")
    p_score.add_argument("--out", default="daily_scores.csv", help="Output CSV path.")
    p_score.set_defaults(func=cmd_score)

    p_cmp = sub.add_parser("compare", help="Diff two config artifacts.")
    p_cmp.add_argument("--base", required=True)
    p_cmp.add_argument("--candidate", required=True)
    p_cmp.set_defaults(func=cmd_compare)

    p_ren = sub.add_parser("render", help="Re-render text and HTML reports for a run directory.")
    p_ren.add_argument("--run-dir", required=True)
    p_ren.set_defaults(func=cmd_render)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except (DataUnavailableError, FileExistsError, FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
