from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import requests

from .io import DataUnavailableError
from .metrics.returns import PriceSeries

logger = logging.getLogger(__name__)

YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"


def parse_chart_payload(payload: Dict[str, Any]) -> Tuple[PriceSeries, List[str]]:
    """Daily closes from a Yahoo chart response; null closes are dropped and counted."""
    warnings: List[str] = []
    chart = payload.get("chart") or {}
    if chart.get("error"):
        raise DataUnavailableError(f"Price provider error: {chart['error']}")
    results = chart.get("result") or []
    if not results:
        raise DataUnavailableError("Price provider returned no chart result.")
    result = results[0] or {}
    stamps = result.get("timestamp") or []
    quotes = ((result.get("indicators") or {}).get("quote") or [{}])[0] or {}
    closes = quotes.get("close") or []

    rows: Dict[dt.date, float] = {}
    missing = 0
    for i, ts in enumerate(stamps):
        close = closes[i] if i < len(closes) else None
        if close is None:
            missing += 1
            continue
        day = dt.datetime.fromtimestamp(int(ts), tz=dt.timezone.utc).date()
        rows[day] = float(close)
    if missing:
        warnings.append(f"MISSING PRICE BARS DROPPED: {missing}")

    series = PriceSeries(pd.Series(rows, dtype=float))
    if series.empty:
        raise DataUnavailableError("Price provider returned no usable closes.")
    return series, warnings


def fetch_daily_closes(
    symbol: str,
    *,
    lookback_years: int = 5,
    timeout: float = 30,
    price_url: str = YAHOO_CHART_URL,
    end: Optional[dt.datetime] = None,
) -> Tuple[PriceSeries, List[str]]:
    end = end or dt.datetime.now(dt.timezone.utc)
    start = end - dt.timedelta(days=int(round(365.25 * lookback_years)))
    url = price_url.format(symbol=symbol)
    params = {
        "period1": int(start.timestamp()),
        "period2": int(end.timestamp()),
        "interval": "1d",
    }
    logger.info("Fetching %s daily closes from %s", symbol, url)
    try:
        r = requests.get(url, params=params, headers={"User-Agent": "Mozilla/5.0"}, timeout=timeout)
    except requests.RequestException as exc:
        raise DataUnavailableError(f"Download failed: {url} ({exc})") from exc
    if not r.ok:
        raise DataUnavailableError(f"Download failed: {url} (status {r.status_code})")
    try:
        payload = r.json()
    except ValueError as exc:
        raise DataUnavailableError(f"Price provider returned invalid JSON: {exc}") from exc
    series, warnings = parse_chart_payload(payload if isinstance(payload, dict) else {})
    logger.info("Fetched %d bars for %s", len(series), symbol)
    return series, warnings
