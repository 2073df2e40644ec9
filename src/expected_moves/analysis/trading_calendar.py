"""
Trading-Day Calendar — business-day counting and contract expiration rules
============================================================================
Derives "trading days remaining" for every tracked futures contract.

Rules by contract class:
  - **Index futures** (/NQ, /ES, /YM, /RTY): weekly expiry, next Friday at
    17:00 ET.  On a Friday at/after 17:00 ET the expiry rolls a full week.
  - **Gold** (/GC): third-from-last business day of the contract month.
  - **Crude oil** (/CL): three business days before the 25th calendar day of
    the month preceding the contract month.
  - **Other commodities**: third Friday of the contract month.

Day counting:
  - ``trading_days_between(start, end)`` counts weekdays in ``[start, end]``
    that are not listed exchange holidays (``numpy.busday_count``).
  - ``expiration_info()`` starts counting from the *current session*: once
    the ET clock is past the 17:00 close, today's session is over and the
    count starts at the next trading day.

The holiday table is static and versioned.  Any lookup outside the covered
years raises ``CalendarDataGapError`` instead of silently treating the
missing holidays as trading days.

Usage:
    from expected_moves.analysis.trading_calendar import expiration_info

    info = expiration_info("/ES", now)
    # info.days_remaining -> 4, info.is_expiration_week -> True
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Union

import numpy as np

from expected_moves.core.errors import CalendarDataGapError, InvalidArgumentError
from expected_moves.core.market_hours import SESSION_CLOSE, _EST, to_exchange_time
from expected_moves.core.models import (
    CONTRACT_SPECS,
    ContractClass,
    ContractSpec,
    ExpirationRule,
    get_contract_spec,
)

logger = logging.getLogger("calendar")

TRADING_DAYS_PER_YEAR = 252
EXPIRATION_WEEK_DAYS = 5

# ---------------------------------------------------------------------------
# Holiday table — CME/NYSE full-closure days (observed dates)
# ---------------------------------------------------------------------------
HOLIDAY_TABLE_VERSION = "2024.1-2027"

US_MARKET_HOLIDAYS: dict[int, tuple[date, ...]] = {
    2024: (
        date(2024, 1, 1),  # New Year's Day
        date(2024, 1, 15),  # Martin Luther King Jr. Day
        date(2024, 2, 19),  # Presidents' Day
        date(2024, 3, 29),  # Good Friday
        date(2024, 5, 27),  # Memorial Day
        date(2024, 6, 19),  # Juneteenth
        date(2024, 7, 4),  # Independence Day
        date(2024, 9, 2),  # Labor Day
        date(2024, 11, 28),  # Thanksgiving
        date(2024, 12, 25),  # Christmas
    ),
    2025: (
        date(2025, 1, 1),
        date(2025, 1, 9),  # National Day of Mourning
        date(2025, 1, 20),
        date(2025, 2, 17),
        date(2025, 4, 18),
        date(2025, 5, 26),
        date(2025, 6, 19),
        date(2025, 7, 4),
        date(2025, 9, 1),
        date(2025, 11, 27),
        date(2025, 12, 25),
    ),
    2026: (
        date(2026, 1, 1),
        date(2026, 1, 19),
        date(2026, 2, 16),
        date(2026, 4, 3),
        date(2026, 5, 25),
        date(2026, 6, 19),
        date(2026, 7, 3),  # Independence Day (observed)
        date(2026, 9, 7),
        date(2026, 11, 26),
        date(2026, 12, 25),
    ),
    2027: (
        date(2027, 1, 1),
        date(2027, 1, 18),
        date(2027, 2, 15),
        date(2027, 3, 26),
        date(2027, 5, 31),
        date(2027, 6, 18),  # Juneteenth (observed)
        date(2027, 7, 5),  # Independence Day (observed)
        date(2027, 9, 6),
        date(2027, 11, 25),
        date(2027, 12, 24),  # Christmas (observed)
    ),
}

COVERED_YEARS = (min(US_MARKET_HOLIDAYS), max(US_MARKET_HOLIDAYS))

_HOLIDAYS: frozenset[date] = frozenset(
    d for days in US_MARKET_HOLIDAYS.values() for d in days
)
_HOLIDAYS_NP = np.array(sorted(_HOLIDAYS), dtype="datetime64[D]")

DateLike = Union[date, datetime]


@dataclass(frozen=True)
class ExpirationInfo:
    symbol: str
    contract_class: ContractClass
    expiration_date: datetime  # last trading moment, ET
    days_remaining: int
    is_expiration_week: bool

    @property
    def last_trading_day(self) -> date:
        return self.expiration_date.date()


# ---------------------------------------------------------------------------
# Business-day primitives
# ---------------------------------------------------------------------------


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return to_exchange_time(value).date()
    return value


def _require_covered(*days: date) -> None:
    first, last = COVERED_YEARS
    for d in days:
        if not first <= d.year <= last:
            raise CalendarDataGapError(
                f"No holiday data for {d.isoformat()} "
                f"(table {HOLIDAY_TABLE_VERSION} covers {first}-{last})",
                context={"date": d.isoformat(), "covered_years": COVERED_YEARS},
            )


def is_trading_day(d: DateLike) -> bool:
    """True for a weekday that is not a listed exchange holiday."""
    day = _as_date(d)
    _require_covered(day)
    return day.weekday() < 5 and day not in _HOLIDAYS


def trading_days_between(start: DateLike, end: DateLike) -> int:
    """Count trading days in the inclusive range ``[start, end]``.

    Returns 0 when *start* is after *end*.  Raises ``CalendarDataGapError``
    when either end falls outside the holiday table.
    """
    start_d, end_d = _as_date(start), _as_date(end)
    if start_d > end_d:
        return 0
    _require_covered(start_d, end_d)
    return int(
        np.busday_count(
            np.datetime64(start_d, "D"),
            np.datetime64(end_d + timedelta(days=1), "D"),
            holidays=_HOLIDAYS_NP,
        )
    )


def next_trading_day(d: DateLike) -> date:
    """First trading day strictly after *d*."""
    day = _as_date(d) + timedelta(days=1)
    while not is_trading_day(day):
        day += timedelta(days=1)
    return day


def _step_business_days(anchor: date, count: int, step: int, include_anchor: bool) -> date:
    """Walk from *anchor* in direction *step* until *count* trading days are seen."""
    day = anchor if include_anchor else anchor + timedelta(days=step)
    seen = 0
    while True:
        if is_trading_day(day):
            seen += 1
            if seen == count:
                return day
        day += timedelta(days=step)


def _session_start(as_of: datetime) -> date:
    """First date whose session is still ahead of *as_of*."""
    if as_of.time() >= SESSION_CLOSE:
        return as_of.date() + timedelta(days=1)
    return as_of.date()


# ---------------------------------------------------------------------------
# Expiration rules
# ---------------------------------------------------------------------------


def _expiry_moment(day: date) -> datetime:
    return datetime.combine(day, SESSION_CLOSE, tzinfo=_EST)


def next_weekly_expiration(as_of: datetime) -> datetime:
    """Next Friday 17:00 ET; a Friday at/after 17:00 ET rolls a full week."""
    et = to_exchange_time(as_of)
    weekday = et.weekday()
    if weekday == 4:
        days_ahead = 7 if et.time() >= SESSION_CLOSE else 0
    else:
        days_ahead = (4 - weekday) % 7
    return _expiry_moment(et.date() + timedelta(days=days_ahead))


def third_last_business_day(year: int, month: int) -> date:
    """Third trading day counting back from the last calendar day of the month."""
    month_end = _month_start(year, month + 1) - timedelta(days=1)
    return _step_business_days(month_end, 3, -1, include_anchor=True)


def before_25th_prior_month(year: int, month: int) -> date:
    """Third trading day before the 25th of the month preceding *month*."""
    prior = _month_start(year, month - 1)
    return _step_business_days(prior.replace(day=25), 3, -1, include_anchor=False)


def third_friday(year: int, month: int) -> date:
    first = date(year, month, 1)
    first_friday = first + timedelta(days=(4 - first.weekday()) % 7)
    return first_friday + timedelta(weeks=2)


def _month_start(year: int, month: int) -> date:
    """First day of *month*, normalising months outside 1..12."""
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    return date(year, month, 1)


_MONTHLY_RULES = {
    ExpirationRule.THIRD_LAST_BUSINESS_DAY: third_last_business_day,
    ExpirationRule.BEFORE_25TH_PRIOR_MONTH: before_25th_prior_month,
    ExpirationRule.THIRD_FRIDAY: third_friday,
}


def contract_month_expiration(spec: ContractSpec, year: int, month: int) -> date:
    """Last trading day of *spec*'s contract for the given month."""
    rule = _MONTHLY_RULES.get(spec.expiration_rule)
    if rule is None:
        raise CalendarDataGapError(
            f"{spec.symbol}: rule {spec.expiration_rule.value} has no monthly expiry",
            symbol=spec.symbol,
        )
    return rule(year, month)


def front_month_expiration(spec: ContractSpec, as_of: datetime) -> datetime:
    """Expiration of the nearest monthly contract still trading after *as_of*."""
    et = to_exchange_time(as_of)
    start = _session_start(et)
    month = _month_start(et.year, et.month)
    # A contract month at most a year out always expires after `start`
    for _ in range(13):
        expiry = contract_month_expiration(spec, month.year, month.month)
        if expiry >= start:
            return _expiry_moment(expiry)
        month = _month_start(month.year, month.month + 1)
    raise CalendarDataGapError(
        f"{spec.symbol}: no contract month expires after {start.isoformat()}",
        symbol=spec.symbol,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def expiration_for_spec(spec: ContractSpec, as_of: Optional[datetime] = None) -> ExpirationInfo:
    et = to_exchange_time(as_of)
    if spec.expiration_rule is ExpirationRule.WEEKLY_FRIDAY:
        expiration = next_weekly_expiration(et)
    else:
        expiration = front_month_expiration(spec, et)

    days_remaining = trading_days_between(_session_start(et), expiration.date())
    return ExpirationInfo(
        symbol=spec.symbol,
        contract_class=spec.contract_class,
        expiration_date=expiration,
        days_remaining=days_remaining,
        is_expiration_week=0 < days_remaining <= EXPIRATION_WEEK_DAYS,
    )


def expiration_info(symbol: str, as_of: Optional[datetime] = None) -> ExpirationInfo:
    """Expiration date and trading days remaining for *symbol* as of *as_of*.

    *as_of* may be in any timezone (naive values are taken as ET); weekday
    and hour are always evaluated in exchange time.
    """
    return expiration_for_spec(get_contract_spec(symbol), as_of)


def all_contract_expirations(as_of: Optional[datetime] = None) -> list[ExpirationInfo]:
    return [expiration_for_spec(spec, as_of) for spec in CONTRACT_SPECS.values()]


def dynamic_daily_volatility(annualized_iv: float, days_remaining: int) -> float:
    """Volatility to expiry: ``iv × √(days/252)``, with days floored at 1."""
    if annualized_iv < 0:
        raise InvalidArgumentError(
            f"Annualized IV must be >= 0, got {annualized_iv}",
            argument="annualized_iv",
        )
    days = max(days_remaining, 1)
    return annualized_iv * float(np.sqrt(days / TRADING_DAYS_PER_YEAR))


# ---------------------------------------------------------------------------
# Week anchors
# ---------------------------------------------------------------------------


def week_start(d: DateLike) -> date:
    """Monday of the week containing *d*."""
    day = _as_date(d)
    return day - timedelta(days=day.weekday())


def next_monday(d: DateLike) -> date:
    """First Monday strictly after *d* (Saturday -> the coming Monday)."""
    day = _as_date(d)
    return day + timedelta(days=7 - day.weekday())


def upcoming_week_start(d: DateLike) -> date:
    """Anchor Monday for forward-looking bands: this Monday on weekdays,
    the coming Monday on weekends."""
    day = _as_date(d)
    if day.weekday() >= 5:
        return next_monday(day)
    return week_start(day)
