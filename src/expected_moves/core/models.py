"""
Contract catalogue and record types for the expected-move engine.

Contract specifications
-----------------------
``CONTRACT_SPECS`` lists the instruments the nightly pipeline tracks, keyed
by the exchange-style symbol used throughout the engine (``"/ES"``).  Each
spec carries the tick size used for rounding, the contract class, the
expiration rule the calendar applies, the Yahoo Finance data ticker, and the
template weekly IV seeded into a fresh database.

Record types
------------
Plain dataclasses shared by the calculators, the database layer and the
scheduler jobs:

  - ``Contract``              — mutable per-contract row (price, IV, calendar state)
  - ``ExpectedMoveRecord``    — append-only nightly prediction, one per (symbol, date)
  - ``WeeklyExpectedMoves``   — forward-looking Monday..Friday band table, one per symbol
  - ``IvUpdate``              — manual IV entry history, one per (symbol, date)
  - ``SchedulerState``        — persisted last-run dates for the two jobs
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

from expected_moves.core.errors import CalendarDataGapError, InvalidArgumentError


class ContractClass(str, Enum):
    INDEX = "index"
    COMMODITY = "commodity"


class ExpirationRule(str, Enum):
    """How the calendar derives a contract's last trading day."""

    WEEKLY_FRIDAY = "weekly_friday"  # index futures, Friday 17:00 ET
    THIRD_LAST_BUSINESS_DAY = "third_last_business_day"  # gold
    BEFORE_25TH_PRIOR_MONTH = "before_25th_prior_month"  # crude oil
    THIRD_FRIDAY = "third_friday"  # any other commodity


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")


# ---------------------------------------------------------------------------
# Contract specifications
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContractSpec:
    symbol: str
    name: str
    tick_size: float
    contract_class: ContractClass
    expiration_rule: ExpirationRule
    data_ticker: str
    default_weekly_iv: float
    default_price: float = 0.0

    def __post_init__(self):
        if self.tick_size <= 0:
            raise InvalidArgumentError(
                f"{self.symbol}: tick size must be > 0, got {self.tick_size}",
                argument="tick_size",
            )


CONTRACT_SPECS: dict[str, ContractSpec] = {
    "/NQ": ContractSpec(
        symbol="/NQ",
        name="E-mini Nasdaq-100",
        tick_size=0.25,
        contract_class=ContractClass.INDEX,
        expiration_rule=ExpirationRule.WEEKLY_FRIDAY,
        data_ticker="NQ=F",
        default_weekly_iv=0.0285,
        default_price=24726.75,
    ),
    "/ES": ContractSpec(
        symbol="/ES",
        name="E-mini S&P 500",
        tick_size=0.25,
        contract_class=ContractClass.INDEX,
        expiration_rule=ExpirationRule.WEEKLY_FRIDAY,
        data_ticker="ES=F",
        default_weekly_iv=0.0245,
        default_price=6595.25,
    ),
    "/YM": ContractSpec(
        symbol="/YM",
        name="E-mini Dow Jones",
        tick_size=1.0,
        contract_class=ContractClass.INDEX,
        expiration_rule=ExpirationRule.WEEKLY_FRIDAY,
        data_ticker="YM=F",
        default_weekly_iv=0.0235,
        default_price=45706.00,
    ),
    "/RTY": ContractSpec(
        symbol="/RTY",
        name="E-mini Russell 2000",
        tick_size=0.10,
        contract_class=ContractClass.INDEX,
        expiration_rule=ExpirationRule.WEEKLY_FRIDAY,
        data_ticker="RTY=F",
        default_weekly_iv=0.0325,
        default_price=2234.20,
    ),
    "/GC": ContractSpec(
        symbol="/GC",
        name="Gold Futures",
        tick_size=0.10,
        contract_class=ContractClass.COMMODITY,
        expiration_rule=ExpirationRule.THIRD_LAST_BUSINESS_DAY,
        data_ticker="GC=F",
        default_weekly_iv=0.0195,
        default_price=4000.40,
    ),
    "/CL": ContractSpec(
        symbol="/CL",
        name="Crude Oil Futures",
        tick_size=0.01,
        contract_class=ContractClass.COMMODITY,
        expiration_rule=ExpirationRule.BEFORE_25TH_PRIOR_MONTH,
        data_ticker="CL=F",
        default_weekly_iv=0.0415,
        default_price=58.90,
    ),
}


def get_contract_spec(symbol: str) -> ContractSpec:
    """Return the spec for *symbol* or raise ``CalendarDataGapError``."""
    spec = CONTRACT_SPECS.get(symbol)
    if spec is None:
        raise CalendarDataGapError(
            f"No contract specification for symbol {symbol!r}",
            symbol=symbol,
            context={"known_symbols": sorted(CONTRACT_SPECS)},
        )
    return spec


# ---------------------------------------------------------------------------
# Record types
# ---------------------------------------------------------------------------


@dataclass
class Contract:
    """Mutable per-contract state, refreshed by the nightly job."""

    symbol: str
    name: str
    tick_size: float
    contract_class: ContractClass
    current_price: float
    previous_close: float
    weekly_iv: float
    daily_iv: Optional[float] = None  # manual override for the daily forecast
    daily_change: float = 0.0
    daily_change_pct: float = 0.0
    forecast_iv: Optional[float] = None  # last model output, fed back as the prior
    daily_volatility: Optional[float] = None  # iv × √(days_remaining/252)
    days_remaining: Optional[int] = None
    expiration_date: Optional[datetime] = None
    is_expiration_week: bool = False
    updated_at: Optional[datetime] = None

    @property
    def effective_iv(self) -> float:
        """IV used for the next-session forecast (daily override wins)."""
        return self.daily_iv if self.daily_iv is not None else self.weekly_iv


@dataclass
class ExpectedMoveRecord:
    """Append-only nightly prediction for one contract and trade date."""

    symbol: str
    trade_date: date
    last_price: float
    previous_close: float
    annualized_iv: float
    forecast_iv: float
    horizon_volatility: float
    expected_high: float
    expected_low: float
    model: str = "standard"
    days_remaining: Optional[int] = None
    actual_close: Optional[float] = None
    within_range: Optional[bool] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def range_width(self) -> float:
        return self.expected_high - self.expected_low


@dataclass
class DayBand:
    expected_high: float
    expected_low: float
    actual_close: Optional[float] = None

    @property
    def within_range(self) -> Optional[bool]:
        if self.actual_close is None:
            return None
        return self.expected_low <= self.actual_close <= self.expected_high


@dataclass
class WeeklyExpectedMoves:
    """Monday..Friday band table anchored to one week-start Monday."""

    symbol: str
    week_start: date
    week_open_price: float
    annualized_iv: float
    days: dict[str, DayBand] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def band(self, weekday: str) -> DayBand:
        key = weekday.lower()
        if key not in WEEKDAYS:
            raise InvalidArgumentError(
                f"Unknown weekday {weekday!r}; expected one of {WEEKDAYS}",
                argument="weekday",
            )
        return self.days[key]


@dataclass
class IvUpdate:
    symbol: str
    update_date: date
    weekly_iv: float
    source: str = "manual"
    id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class SchedulerState:
    """Last successful run dates, persisted between process restarts."""

    last_daily_run: Optional[date] = None
    last_weekly_run: Optional[date] = None
