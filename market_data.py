#!/usr/bin/env python3
"""
Stock Check — Phase 3: Live Market Data (Alpha Vantage)
========================================================
Strict fetcher, parser and trailing-return calculator for LIVE mode.

Every failure is loud: a missing API key, a transport error, an HTTP error,
a provider error/throttle note, a missing series, or a single unparseable
close anywhere in the requested window raises a ``LiveDataError`` subclass.
Nothing here ever substitutes synthetic values for missing data.

Each outbound request is logged *before* the response is awaited:

    [market-data] ts=... source=ALPHA_VANTAGE op=... symbol=... url=...

The API key is redacted from every logged or traced URL.
"""

import logging
import math
import os
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Optional, Sequence

import requests

from instrumentation import EventLog, trace_net_call
from schemas import HistoryPoint, PriceQuote, RunConfig

logger = logging.getLogger("stock_check.market_data")

SOURCE = "ALPHA_VANTAGE"
SERIES_FUNCTION = "TIME_SERIES_DAILY_ADJUSTED"
SERIES_KEY = "Time Series (Daily)"
ADJUSTED_CLOSE_FIELD = "5. adjusted close"
CLOSE_FIELD = "4. close"
PROVIDER_ERROR_KEYS = ("Error Message", "Information", "Note")

OP_LATEST_PRICE = "price.latest_daily_adjusted_close"
OP_HISTORY = "history.daily_adjusted_close"

TRAILING_WINDOWS = {"return_3": 63, "return_6": 126, "return_12": 252}
DEFAULT_HISTORY_LIMIT = 320

_REDACTED = "REDACTED"
_APIKEY_RE = re.compile(r"(apikey=)[^&]*")


# =========================================================================
# A. Error taxonomy
# =========================================================================
class LiveDataError(Exception):
    """LIVE market data was unavailable, rejected, or malformed.

    ``meta`` carries machine-readable context (operation, symbol, field,
    counts) alongside the human-readable message.
    """

    def __init__(self, message: str, **meta):
        super().__init__(message)
        self.message = message
        self.meta = meta


class ConfigurationError(LiveDataError):
    """Required configuration (the API key) is missing."""


class NetworkError(LiveDataError):
    """Transport-level failure; never retried."""


class ProviderError(LiveDataError):
    """HTTP error status, or an error/throttle note in the payload."""


class MalformedDataError(LiveDataError):
    """Payload structure or values failed validation."""


class InsufficientHistoryError(MalformedDataError):
    """Fewer daily points than a trailing window needs."""


# =========================================================================
# B. Request building and logging
# =========================================================================
def _live_cfg(live_cfg: Optional[RunConfig.LiveConfig]) -> RunConfig.LiveConfig:
    return live_cfg if live_cfg is not None else RunConfig.LiveConfig()


def has_api_key(live_cfg: Optional[RunConfig.LiveConfig] = None) -> bool:
    """True when LIVE mode can run; safe to call with the key unset."""
    return bool(os.environ.get(_live_cfg(live_cfg).api_key_env))


def get_api_key(live_cfg: Optional[RunConfig.LiveConfig] = None) -> str:
    env_var = _live_cfg(live_cfg).api_key_env
    value = os.environ.get(env_var)
    if not value:
        raise ConfigurationError(f"LIVE mode requires {env_var} to be set.",
                                 env_var=env_var)
    return value


def build_request_url(base_url: str, symbol: str, outputsize: str,
                      api_key: str) -> str:
    params = {
        "function": SERIES_FUNCTION,
        "symbol": symbol,
        "outputsize": outputsize,
        "apikey": api_key,
    }
    return requests.Request("GET", base_url, params=params).prepare().url


def redact_url(url: str) -> str:
    return _APIKEY_RE.sub(r"\g<1>" + _REDACTED, url)


def log_live_call(operation: str, symbol: str, url: str) -> None:
    ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    logger.info("[market-data] ts=%s source=%s op=%s symbol=%s url=%s",
                ts, SOURCE, operation, symbol, url,
                extra={"source": SOURCE, "op": operation, "symbol": symbol,
                       "url": url})


def parse_provider_error(payload) -> Optional[str]:
    """Return the provider's error/throttle text, if the payload carries one."""
    if not isinstance(payload, dict):
        return None
    for key in PROVIDER_ERROR_KEYS:
        if isinstance(payload.get(key), str):
            return payload[key]
    return None


def fetch_json_strict(url: str, operation: str, symbol: str,
                      timeout: float = 30.0, session=None,
                      event_log: Optional[EventLog] = None,
                      log_url: Optional[str] = None) -> dict:
    """GET one provider URL and return its decoded JSON body.

    ``log_url`` is what gets logged and traced (the redacted URL); it
    defaults to ``url``.
    """
    log_url = log_url or url
    log_live_call(operation, symbol, log_url)
    http = session if session is not None else requests

    t0 = time.monotonic()
    try:
        resp = http.get(url, timeout=timeout)
    except requests.RequestException as e:
        trace_net_call(event_log, operation, source=SOURCE, symbol=symbol,
                       url=log_url, duration_ms=(time.monotonic() - t0) * 1000,
                       status="FAIL")
        raise NetworkError(
            "Network error while fetching LIVE data from Alpha Vantage.",
            operation=operation, symbol=symbol, cause=str(e),
        ) from e

    elapsed_ms = (time.monotonic() - t0) * 1000
    trace_net_call(event_log, operation, source=SOURCE, symbol=symbol,
                   url=log_url, status_code=resp.status_code,
                   duration_ms=elapsed_ms,
                   status="OK" if resp.ok else "FAIL")

    if not resp.ok:
        raise ProviderError(
            f"Alpha Vantage request failed (HTTP {resp.status_code}).",
            operation=operation, symbol=symbol, http_status=resp.status_code,
        )

    try:
        payload = resp.json()
    except ValueError as e:
        raise MalformedDataError(
            "Alpha Vantage response was not valid JSON.",
            operation=operation, symbol=symbol, cause=str(e),
        ) from e

    provider_msg = parse_provider_error(payload)
    if provider_msg:
        raise ProviderError(f"Alpha Vantage returned an error: {provider_msg}",
                            operation=operation, symbol=symbol)
    return payload


# =========================================================================
# C. Strict payload parsing
# =========================================================================
def _to_price_strict(value, operation: str, symbol: str) -> float:
    """Parse a close value; it must be a finite number above zero."""
    field = f"{ADJUSTED_CLOSE_FIELD} (or {CLOSE_FIELD})"
    x = float("nan")
    if value is not None and not isinstance(value, bool):
        try:
            x = float(value)
        except (TypeError, ValueError):
            pass
    if not math.isfinite(x) or x <= 0:
        raise MalformedDataError(
            f'Missing/invalid numeric field "{field}" from Alpha Vantage.',
            operation=operation, symbol=symbol, field=field, raw_value=value,
        )
    return x


def _close_from_row(row: dict, operation: str, symbol: str) -> float:
    # The adjusted close wins whenever it is present, valid or not.
    value = row.get(ADJUSTED_CLOSE_FIELD)
    if value is None:
        value = row.get(CLOSE_FIELD)
    return _to_price_strict(value, operation, symbol)


def _series_dates_desc(payload, operation: str, symbol: str):
    series = payload.get(SERIES_KEY) if isinstance(payload, dict) else None
    if not isinstance(series, dict):
        raise MalformedDataError(
            f"Missing '{SERIES_KEY}' in Alpha Vantage response.",
            operation=operation, symbol=symbol,
        )
    dates = sorted(series, reverse=True)
    if not dates:
        raise MalformedDataError(
            "Alpha Vantage time series contained no data points.",
            operation=operation, symbol=symbol,
        )
    return series, dates


def extract_latest_close_strict(payload, operation: str = OP_LATEST_PRICE,
                                symbol: str = "") -> PriceQuote:
    """Latest daily close and its date from a daily-adjusted payload."""
    series, dates = _series_dates_desc(payload, operation, symbol)
    as_of = dates[0]
    row = series[as_of]
    if not isinstance(row, dict):
        raise MalformedDataError(
            "Alpha Vantage time series latest row was missing/invalid.",
            operation=operation, symbol=symbol, as_of_date=as_of,
        )
    price = _close_from_row(row, operation, symbol)
    return PriceQuote(price=price, as_of_date=as_of, source=SOURCE)


def extract_daily_history_strict(payload, operation: str = OP_HISTORY,
                                 symbol: str = "",
                                 limit: int = DEFAULT_HISTORY_LIMIT
                                 ) -> list[HistoryPoint]:
    """Most recent ``limit`` daily closes, returned oldest first.

    Every row in the window is validated; one bad row fails the whole
    history.
    """
    series, dates = _series_dates_desc(payload, operation, symbol)
    points = []
    for d in dates[:limit]:
        row = series[d]
        if not isinstance(row, dict):
            raise MalformedDataError(
                "Alpha Vantage time series row was missing/invalid.",
                operation=operation, symbol=symbol, date=d,
            )
        points.append(HistoryPoint(date=d,
                                   close=_close_from_row(row, operation, symbol)))
    points.reverse()
    return points


# =========================================================================
# D. Provider contract
# =========================================================================
def _fetch_series(symbol: str, outputsize: str, operation: str,
                  live_cfg, session, event_log) -> dict:
    cfg = _live_cfg(live_cfg)
    api_key = get_api_key(cfg)
    url = build_request_url(cfg.base_url, symbol, outputsize, api_key)
    return fetch_json_strict(url, operation, symbol,
                             timeout=cfg.request_timeout_s, session=session,
                             event_log=event_log,
                             log_url=redact_url(url))


def fetch_current_price(symbol: str,
                        live_cfg: Optional[RunConfig.LiveConfig] = None,
                        session=None,
                        event_log: Optional[EventLog] = None) -> PriceQuote:
    """Latest available daily close for ``symbol``."""
    payload = _fetch_series(symbol, "compact", OP_LATEST_PRICE,
                            live_cfg, session, event_log)
    return extract_latest_close_strict(payload, OP_LATEST_PRICE, symbol)


def fetch_daily_history(symbol: str, limit: Optional[int] = None,
                        live_cfg: Optional[RunConfig.LiveConfig] = None,
                        session=None,
                        event_log: Optional[EventLog] = None
                        ) -> list[HistoryPoint]:
    """Up to ``limit`` daily closes for ``symbol``, ascending by date."""
    cfg = _live_cfg(live_cfg)
    if limit is None:
        limit = cfg.history_limit
    payload = _fetch_series(symbol, "full", OP_HISTORY, cfg, session, event_log)
    return extract_daily_history_strict(payload, OP_HISTORY, symbol, limit)


def fetch_live_snapshot(symbol: str,
                        live_cfg: Optional[RunConfig.LiveConfig] = None,
                        session=None,
                        event_log: Optional[EventLog] = None):
    """Fetch latest price and history concurrently; return (quote, history).

    Both requests are in flight at once. The first failure is re-raised as
    soon as it surfaces: the pool is released without waiting and the other
    request's result, if it ever arrives, is discarded.
    """
    cfg = _live_cfg(live_cfg)
    # Fail before any request goes out.
    get_api_key(cfg)

    results = {}
    pool = ThreadPoolExecutor(max_workers=2)
    try:
        futs = {
            pool.submit(fetch_current_price, symbol, cfg, session,
                        event_log): "quote",
            pool.submit(fetch_daily_history, symbol, cfg.history_limit, cfg,
                        session, event_log): "history",
        }
        for fut in as_completed(futs):
            results[futs[fut]] = fut.result()
    except Exception:
        pool.shutdown(wait=False, cancel_futures=True)
        raise
    pool.shutdown()

    history = results["history"]
    logger.info("Fetched %s: close %.4f as of %s, %d history points",
                symbol, results["quote"].price, results["quote"].as_of_date,
                len(history), extra={"symbol": symbol, "count": len(history)})
    return results["quote"], history


# =========================================================================
# E. Trailing returns
# =========================================================================
def compute_trailing_return_pct(closes: Sequence[float],
                                trading_days: int) -> float:
    """Percent change from ``trading_days`` points before the last close.

    ``closes`` must be ascending by date and hold at least
    ``trading_days + 1`` values.
    """
    required = trading_days + 1
    if len(closes) < required:
        raise InsufficientHistoryError(
            f"LIVE mode requires at least {required} daily data points for "
            f"{trading_days}-day return; received {len(closes)}.",
            required=required, received=len(closes),
        )
    start = closes[len(closes) - 1 - trading_days]
    end = closes[-1]
    if start == 0:
        raise MalformedDataError(
            "LIVE return computation failed due to invalid values.",
            trading_days=trading_days, start=start, end=end,
        )
    pct = (end - start) / start * 100
    if not math.isfinite(pct):
        raise MalformedDataError(
            "LIVE return computation failed due to invalid values.",
            trading_days=trading_days, start=start, end=end,
        )
    return pct


def compute_trailing_returns(history: Sequence[HistoryPoint],
                             windows: Optional[dict] = None) -> dict:
    """Trailing return for each named window, e.g. {"return_3": 63, ...}."""
    windows = windows or TRAILING_WINDOWS
    closes = [p.close for p in history]
    return {name: compute_trailing_return_pct(closes, days)
            for name, days in windows.items()}
