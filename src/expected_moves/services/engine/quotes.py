"""
Latest-quote adapter backed by yfinance.

``fetch_all_quotes`` downloads a short daily history per contract on a
thread pool and derives ``{last_price, previous_close, change,
change_percent}`` from the last two closes.  The whole batch shares one
deadline (``QUOTE_TIMEOUT_SECONDS``); a hung request can never block the
scheduler past it.

Failure semantics:
  - a symbol that errors, or is still pending when the deadline expires, is
    logged and left out of the result
  - an empty batch, or no quote at all coming back, raises
    ``UpstreamQuoteError`` (the daily job aborts and retries next check)
"""

import concurrent.futures
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional
from zoneinfo import ZoneInfo

import pandas as pd
import yfinance as yf

from expected_moves.core.errors import UpstreamQuoteError
from expected_moves.core.models import CONTRACT_SPECS

logger = logging.getLogger("engine.quotes")

_EST = ZoneInfo("America/New_York")

QUOTE_TIMEOUT_SECONDS = float(os.getenv("QUOTE_TIMEOUT_SECONDS", "30"))
QUOTE_MAX_WORKERS = int(os.getenv("QUOTE_MAX_WORKERS", "6"))

# Daily bars requested per symbol; enough to span a long weekend
_HISTORY_PERIOD = "5d"


@dataclass(frozen=True)
class Quote:
    symbol: str
    last_price: float
    previous_close: float
    change: float
    change_percent: float
    fetched_at: Optional[datetime] = None

    @classmethod
    def from_prices(
        cls,
        symbol: str,
        last_price: float,
        previous_close: float,
        fetched_at: Optional[datetime] = None,
    ) -> "Quote":
        change = last_price - previous_close
        change_pct = (change / previous_close * 100.0) if previous_close else 0.0
        return cls(
            symbol=symbol,
            last_price=last_price,
            previous_close=previous_close,
            change=change,
            change_percent=change_pct,
            fetched_at=fetched_at,
        )


def _flatten_columns(df: pd.DataFrame) -> pd.DataFrame:
    """yfinance returns MultiIndex columns (field, ticker); keep the field."""
    if df is not None and isinstance(df.columns, pd.MultiIndex):
        df = df.copy()
        df.columns = df.columns.get_level_values(0)
    return df


def data_ticker(symbol: str) -> str:
    """Yahoo ticker for *symbol* ("/ES" -> "ES=F"); unknown symbols pass through."""
    spec = CONTRACT_SPECS.get(symbol)
    return spec.data_ticker if spec else symbol


def fetch_quote(symbol: str) -> Quote:
    """Fetch the latest two daily closes for *symbol* from Yahoo Finance."""
    ticker = data_ticker(symbol)
    df = _flatten_columns(
        yf.download(
            ticker,
            interval="1d",
            period=_HISTORY_PERIOD,
            auto_adjust=False,
            progress=False,
        )
    )
    if df is None or df.empty or "Close" not in df.columns:
        raise UpstreamQuoteError(
            f"No price data returned for {symbol} ({ticker})",
            failed_symbols=[symbol],
        )

    closes = df["Close"].dropna()
    if len(closes) < 2:
        raise UpstreamQuoteError(
            f"Need two daily closes for {symbol} ({ticker}), got {len(closes)}",
            failed_symbols=[symbol],
        )

    return Quote.from_prices(
        symbol=symbol,
        last_price=float(closes.iloc[-1]),
        previous_close=float(closes.iloc[-2]),
        fetched_at=datetime.now(tz=_EST),
    )


def fetch_all_quotes(
    symbols: Iterable[str],
    timeout: Optional[float] = None,
    max_workers: Optional[int] = None,
    fetch_one: Callable[[str], Quote] = fetch_quote,
) -> list[Quote]:
    """Fetch quotes for *symbols* concurrently under one total deadline."""
    symbols = list(symbols)
    if not symbols:
        raise UpstreamQuoteError("No symbols requested")
    if timeout is None:
        timeout = QUOTE_TIMEOUT_SECONDS
    workers = max(1, min(max_workers or QUOTE_MAX_WORKERS, len(symbols)))

    quotes: list[Quote] = []
    failed: list[str] = []
    timed_out: list[str] = []
    pool = concurrent.futures.ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix="quote"
    )
    futures = {pool.submit(fetch_one, s): s for s in symbols}
    try:
        for future in concurrent.futures.as_completed(futures, timeout=timeout):
            symbol = futures[future]
            try:
                quotes.append(future.result())
            except Exception as exc:
                logger.warning("Quote fetch failed for %s: %s", symbol, exc)
                failed.append(symbol)
    except concurrent.futures.TimeoutError:
        timed_out = sorted(futures[f] for f in futures if not f.done())
        logger.warning(
            "Quote batch deadline (%gs) hit, giving up on: %s",
            timeout,
            ", ".join(timed_out),
        )
        failed.extend(timed_out)
    finally:
        # Do not wait on hung requests
        pool.shutdown(wait=False, cancel_futures=True)

    if not quotes:
        raise UpstreamQuoteError(
            f"All {len(symbols)} quote requests failed",
            failed_symbols=failed,
            context={"timeout": timeout, "timed_out": timed_out},
        )

    logger.info(
        "Fetched %d/%d quotes%s",
        len(quotes),
        len(symbols),
        f" (failed: {', '.join(failed)})" if failed else "",
    )
    return quotes
