"""
CME Globex trading-hours status for the equity-index and commodity futures.

Hours (US Eastern):
  - Sunday 18:00 ET → Friday 17:00 ET, nearly 24/5
  - Daily maintenance break 17:00–18:00 ET, Monday–Thursday
  - Weekend: Friday 17:00 ET → Sunday 18:00 ET

The nightly scheduler only runs its daily job while ``is_open`` is False and
the ET clock is past 17:00, so the maintenance break (or the Friday close)
is the window where the session's final prices are stable.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from datetime import time as dt_time
from typing import Optional
from zoneinfo import ZoneInfo

_EST = ZoneInfo("America/New_York")

SESSION_CLOSE = dt_time(17, 0)
SESSION_REOPEN = dt_time(18, 0)


@dataclass(frozen=True)
class MarketStatus:
    is_open: bool
    status: str  # "open" | "closed" | "maintenance"
    message: str
    next_open: Optional[datetime] = None


def to_exchange_time(now: Optional[datetime] = None) -> datetime:
    """Return *now* in exchange (ET) time.  Naive datetimes are taken as ET."""
    if now is None:
        return datetime.now(tz=_EST)
    if now.tzinfo is None:
        return now.replace(tzinfo=_EST)
    return now.astimezone(_EST)


def _at(day: datetime, t: dt_time) -> datetime:
    return datetime.combine(day.date(), t, tzinfo=_EST)


def get_market_status(now: Optional[datetime] = None) -> MarketStatus:
    """Return whether futures are trading at *now* and when they next open."""
    et = to_exchange_time(now)
    weekday = et.weekday()  # Monday=0 .. Sunday=6
    t = et.time()

    if weekday == 5:
        return MarketStatus(
            is_open=False,
            status="closed",
            message="Markets closed (weekend)",
            next_open=_at(et + timedelta(days=1), SESSION_REOPEN),
        )

    if weekday == 6:
        if t < SESSION_REOPEN:
            return MarketStatus(
                is_open=False,
                status="closed",
                message="Markets closed (weekend)",
                next_open=_at(et, SESSION_REOPEN),
            )
        return MarketStatus(is_open=True, status="open", message="Markets open")

    if weekday == 4 and t >= SESSION_CLOSE:
        return MarketStatus(
            is_open=False,
            status="closed",
            message="Markets closed (weekend)",
            next_open=_at(et + timedelta(days=2), SESSION_REOPEN),
        )

    if SESSION_CLOSE <= t < SESSION_REOPEN:
        return MarketStatus(
            is_open=False,
            status="maintenance",
            message="Daily maintenance break",
            next_open=_at(et, SESSION_REOPEN),
        )

    return MarketStatus(is_open=True, status="open", message="Markets open")


def is_after_close(now: Optional[datetime] = None) -> bool:
    """True once the ET clock has passed the 17:00 session close."""
    return to_exchange_time(now).time() >= SESSION_CLOSE
