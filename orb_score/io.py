from __future__ import annotations

import re
import sqlite3
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from .metrics.returns import PriceSeries
from .registry import SetupRegistry, Status

STATUS_COLUMNS = ["date", "setup_id", "status"]
SQLITE_SUFFIXES = {".sqlite", ".sqlite3", ".db"}

DATE_ALIASES = ["date", "ts", "timestamp", "datetime", "report_date", "day"]
SETUP_ALIASES = ["setup_id", "setup", "id", "setup_name"]
STATUS_ALIASES = ["status", "state", "setup_status"]
CLOSE_ALIASES = ["close", "adj_close", "adjclose", "price", "c"]


class DataUnavailableError(RuntimeError):
    """An input could not be read at all; no artifact may be written."""


def norm_cols(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    out.columns = [re.sub(r"[^a-zA-Z0-9]+", "_", str(c)).strip("_").lower() for c in out.columns]
    return out


def pick_col(df: pd.DataFrame, names: Iterable[str]) -> Optional[str]:
    cols = set(df.columns)
    for c in names:
        if c in cols:
            return c
    return None


def to_dates(series: pd.Series) -> pd.Series:
    """Parse to ``datetime.date``; unparseable values become None."""
    parsed = pd.to_datetime(series, errors="coerce", utc=True)
    return pd.Series([None if pd.isna(v) else v.date() for v in parsed], index=series.index, dtype=object)


def read_csv_table(path: Path) -> pd.DataFrame:
    if not path.exists() or not path.is_file():
        raise DataUnavailableError(f"Input file not found: {path}")
    try:
        return norm_cols(pd.read_csv(path, sep=None, engine="python"))
    except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise DataUnavailableError(f"Could not read {path}: {exc}") from exc


def read_sqlite_table(path: Path, table: str) -> pd.DataFrame:
    if not path.exists() or not path.is_file():
        raise DataUnavailableError(f"Input database not found: {path}")
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", table):
        raise ValueError(f"Invalid table name: {table}")
    try:
        with sqlite3.connect(str(path)) as conn:
            df = pd.read_sql_query(f"SELECT * FROM {table}", conn)
    except (sqlite3.Error, pd.errors.DatabaseError) as exc:
        raise DataUnavailableError(f"Could not read table {table} from {path}: {exc}") from exc
    return norm_cols(df)


def normalize_statuses(raw: pd.DataFrame, registry: SetupRegistry) -> Tuple[pd.DataFrame, List[str]]:
    """Validate raw status rows against the registry.

    Rows with unparseable dates, invalid statuses or unknown setup ids are
    dropped, duplicate ``(date, setup_id)`` rows keep the last occurrence, and
    each kind of drop is reported once with its count.
    """
    warnings: List[str] = []
    df = norm_cols(raw)
    date_col = pick_col(df, DATE_ALIASES)
    setup_col = pick_col(df, SETUP_ALIASES)
    status_col = pick_col(df, STATUS_ALIASES)
    missing = [name for name, col in (("date", date_col), ("setup_id", setup_col), ("status", status_col)) if col is None]
    if missing:
        raise DataUnavailableError(f"Status history is missing columns: {', '.join(missing)}")

    out = pd.DataFrame({
        "date": to_dates(df[date_col]),
        "setup_id": df[setup_col].astype(str).str.strip(),
        "status": df[status_col].astype(str).str.strip().str.lower(),
    })

    bad_date = out["date"].isna()
    if bad_date.any():
        warnings.append(f"STATUS ROWS WITH INVALID DATE DROPPED: {int(bad_date.sum())}")
        out = out[~bad_date]

    valid_status = {s.value for s in Status}
    bad_status = ~out["status"].isin(valid_status)
    if bad_status.any():
        values = sorted(set(out.loc[bad_status, "status"]))[:5]
        warnings.append(f"STATUS ROWS WITH INVALID STATUS DROPPED: {int(bad_status.sum())} (e.g. {', '.join(values)})")
        out = out[~bad_status]

    unknown = ~out["setup_id"].isin(registry.ids)
    if unknown.any():
        ids = sorted(set(out.loc[unknown, "setup_id"]))
        warnings.append(f"UNKNOWN SETUP IDS DROPPED: {', '.join(ids)} ({int(unknown.sum())} rows)")
        out = out[~unknown]

    dupes = out.duplicated(subset=["date", "setup_id"], keep="last")
    if dupes.any():
        warnings.append(f"DUPLICATE STATUS ROWS (kept last): {int(dupes.sum())}")
        out = out[~dupes]

    if out.empty:
        raise DataUnavailableError("Status history has no usable rows.")
    out = out.sort_values(["date", "setup_id"], kind="mergesort").reset_index(drop=True)
    return out[STATUS_COLUMNS], warnings


def load_status_history(
    path: Path,
    registry: SetupRegistry,
    table: str = "orb_daily_snapshots",
) -> Tuple[pd.DataFrame, List[str]]:
    path = Path(path)
    if path.suffix.lower() in SQLITE_SUFFIXES:
        raw = read_sqlite_table(path, table)
    else:
        raw = read_csv_table(path)
    return normalize_statuses(raw, registry)


def normalize_prices(raw: pd.DataFrame) -> Tuple[PriceSeries, List[str]]:
    warnings: List[str] = []
    df = norm_cols(raw)
    date_col = pick_col(df, DATE_ALIASES)
    close_col = pick_col(df, CLOSE_ALIASES)
    if date_col is None or close_col is None:
        raise DataUnavailableError("Price history needs a date column and a close column.")

    dates = to_dates(df[date_col])
    closes = pd.to_numeric(df[close_col], errors="coerce")
    bad = dates.isna() | closes.isna() | (closes <= 0)
    if bad.any():
        warnings.append(f"MISSING PRICE BARS DROPPED: {int(bad.sum())}")

    series = PriceSeries(pd.Series(closes[~bad].to_numpy(), index=list(dates[~bad])))
    if series.empty:
        raise DataUnavailableError("Price history has no usable bars.")
    return series, warnings


def load_price_csv(path: Path) -> Tuple[PriceSeries, List[str]]:
    return normalize_prices(read_csv_table(Path(path)))
