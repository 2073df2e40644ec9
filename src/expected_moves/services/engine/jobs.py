"""
Nightly jobs — daily expected moves and Saturday weekly bands.

Both jobs are safe to call directly and repeatedly:

  - ``run_daily_job`` skips when ``state.last_daily_run`` is today, and the
    (symbol, trade_date) UNIQUE constraint turns any concurrent second
    insert into a logged ``DuplicateRecordError``.
  - ``run_weekly_job`` reuses a weekly row already anchored on the upcoming
    Monday and only replaces stale ones.

Each contract is processed inside its own try/except so one bad contract
never aborts the batch.  A whole-batch quote failure aborts the daily job
without marking the run, so the next scheduler check retries it.
"""

import os
from datetime import datetime
from typing import Callable, Iterable, Optional

from expected_moves.analysis.expected_move import build_weekly_moves, expected_range
from expected_moves.analysis.trading_calendar import (
    dynamic_daily_volatility,
    expiration_info,
    upcoming_week_start,
)
from expected_moves.analysis.volatility import forecast_volatility
from expected_moves.core import db
from expected_moves.core.errors import (
    DuplicateRecordError,
    ExpectedMoveError,
    UpstreamQuoteError,
)
from expected_moves.core.logging_config import get_logger
from expected_moves.core.market_hours import to_exchange_time
from expected_moves.core.models import Contract, ExpectedMoveRecord, SchedulerState
from expected_moves.core.ticks import format_tick_price
from expected_moves.services.engine.quotes import Quote, fetch_all_quotes

logger = get_logger("engine.jobs")

VOL_MODEL = os.getenv("VOL_MODEL", "standard")

QuoteFetcher = Callable[[Iterable[str]], list[Quote]]


def _load_state(state: Optional[SchedulerState]) -> SchedulerState:
    return state if state is not None else db.load_scheduler_state()


# ---------------------------------------------------------------------------
# Daily job
# ---------------------------------------------------------------------------


def process_contract(
    contract: Contract,
    quote: Quote,
    now: datetime,
    model: str = VOL_MODEL,
) -> ExpectedMoveRecord:
    """Refresh one contract from *quote* and store its next-session range."""
    db.update_contract_quote(
        contract.symbol,
        current_price=quote.last_price,
        previous_close=quote.previous_close,
        daily_change=quote.change,
        daily_change_pct=quote.change_percent,
        now=now,
    )

    info = expiration_info(contract.symbol, now)
    iv = contract.effective_iv
    db.update_contract_calendar(
        contract.symbol,
        days_remaining=info.days_remaining,
        expiration_date=info.expiration_date,
        is_expiration_week=info.is_expiration_week,
        daily_volatility=dynamic_daily_volatility(iv, info.days_remaining),
        now=now,
    )

    forecast = forecast_volatility(
        model,
        iv,
        1,
        recent_return=quote.change_percent / 100.0,
        prior_forecast=contract.forecast_iv,
        price=quote.last_price,
    )
    band = expected_range(quote.last_price, forecast, contract.tick_size)

    record = db.insert_daily_record(
        ExpectedMoveRecord(
            symbol=contract.symbol,
            trade_date=now.date(),
            last_price=quote.last_price,
            previous_close=quote.previous_close,
            annualized_iv=iv,
            forecast_iv=forecast.forecast_iv,
            horizon_volatility=forecast.horizon_volatility,
            expected_high=band.high,
            expected_low=band.low,
            model=forecast.model,
            days_remaining=info.days_remaining,
        ),
        now=now,
    )
    db.set_contract_forecast_iv(contract.symbol, forecast.forecast_iv)
    return record


def run_daily_job(
    state: Optional[SchedulerState] = None,
    now: Optional[datetime] = None,
    quote_fetcher: Optional[QuoteFetcher] = None,
    model: Optional[str] = None,
) -> dict:
    """Fetch quotes, refresh contracts and record tomorrow's expected moves.

    Returns a summary dict with ``status`` one of ``completed``,
    ``skipped`` (already ran today) or ``aborted`` (quote batch failed).
    """
    state = _load_state(state)
    now = to_exchange_time(now)
    today = now.date()
    model = model or VOL_MODEL
    log = logger.bind(job="daily", trade_date=today.isoformat())

    if state.last_daily_run == today:
        log.info("daily_job_skipped", reason="already_ran_today")
        return {"status": "skipped", "trade_date": today.isoformat()}

    contracts = {c.symbol: c for c in db.list_contracts()}
    fetcher = quote_fetcher or fetch_all_quotes
    log.info("daily_job_started", contracts=len(contracts), model=model)

    try:
        quotes = fetcher(list(contracts))
    except UpstreamQuoteError as exc:
        log.error(
            "quote_batch_failed",
            error=str(exc),
            failed_symbols=exc.failed_symbols,
        )
        return {"status": "aborted", "trade_date": today.isoformat(), "error": str(exc)}

    created: list[str] = []
    duplicates: list[str] = []
    skipped: list[str] = []
    failed: dict[str, str] = {}

    for quote in quotes:
        contract = contracts.get(quote.symbol)
        if contract is None:
            log.warning("unknown_contract_quote", symbol=quote.symbol)
            skipped.append(quote.symbol)
            continue
        try:
            record = process_contract(contract, quote, now, model=model)
            created.append(contract.symbol)
            log.info(
                "expected_move_recorded",
                symbol=contract.symbol,
                last_price=format_tick_price(record.last_price, contract.tick_size),
                low=format_tick_price(record.expected_low, contract.tick_size),
                high=format_tick_price(record.expected_high, contract.tick_size),
                days_remaining=record.days_remaining,
            )
        except DuplicateRecordError:
            log.info("expected_move_exists", symbol=contract.symbol)
            duplicates.append(contract.symbol)
        except ExpectedMoveError as exc:
            log.error("contract_failed", symbol=contract.symbol, error=str(exc), context=exc.context)
            failed[contract.symbol] = str(exc)
        except Exception as exc:
            log.exception("contract_failed", symbol=contract.symbol, error=str(exc))
            failed[contract.symbol] = str(exc)

    state.last_daily_run = today
    db.save_scheduler_state(state)

    log.info(
        "daily_job_complete",
        created=len(created),
        duplicates=len(duplicates),
        skipped=len(skipped),
        failed=len(failed),
    )
    return {
        "status": "completed",
        "trade_date": today.isoformat(),
        "created": created,
        "duplicates": duplicates,
        "skipped": skipped,
        "failed": failed,
    }


# ---------------------------------------------------------------------------
# Weekly job
# ---------------------------------------------------------------------------


def run_weekly_job(
    state: Optional[SchedulerState] = None,
    now: Optional[datetime] = None,
) -> dict:
    """Build Monday..Friday bands for the upcoming week for every contract."""
    state = _load_state(state)
    now = to_exchange_time(now)
    today = now.date()
    anchor = upcoming_week_start(today)
    log = logger.bind(job="weekly", week_start=anchor.isoformat())

    if state.last_weekly_run == today:
        log.info("weekly_job_skipped", reason="already_ran_today")
        return {"status": "skipped", "week_start": anchor.isoformat()}

    replaced: list[str] = []
    reused: list[str] = []
    failed: dict[str, str] = {}

    for contract in db.list_contracts():
        try:
            existing = db.get_weekly_moves(contract.symbol)
            if existing is not None and existing.week_start == anchor:
                reused.append(contract.symbol)
                continue
            moves = build_weekly_moves(
                contract.symbol,
                contract.current_price,
                contract.weekly_iv,
                contract.tick_size,
                anchor,
            )
            db.replace_weekly_moves(moves, now=now)
            replaced.append(contract.symbol)
            log.info(
                "weekly_bands_stored",
                symbol=contract.symbol,
                open=contract.current_price,
                friday_low=moves.days["friday"].expected_low,
                friday_high=moves.days["friday"].expected_high,
            )
        except ExpectedMoveError as exc:
            log.error("contract_failed", symbol=contract.symbol, error=str(exc), context=exc.context)
            failed[contract.symbol] = str(exc)
        except Exception as exc:
            log.exception("contract_failed", symbol=contract.symbol, error=str(exc))
            failed[contract.symbol] = str(exc)

    state.last_weekly_run = today
    db.save_scheduler_state(state)

    log.info(
        "weekly_job_complete",
        replaced=len(replaced),
        reused=len(reused),
        failed=len(failed),
    )
    return {
        "status": "completed",
        "week_start": anchor.isoformat(),
        "replaced": replaced,
        "reused": reused,
        "failed": failed,
    }
