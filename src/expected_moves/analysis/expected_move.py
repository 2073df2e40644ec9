"""
Expected-Move and Weekly-Range Calculators.

Turns a volatility forecast into tick-valid price bands:

  - ``expected_range(price, forecast, tick_size)`` — one-session high/low
    around the last price, rounded to the contract tick.
  - ``weekly_bands(week_open_price, iv, tick_size)`` — cumulative
    Monday..Friday bands anchored to the week's open.  Day *n* uses
    ``open × iv × √(n/252)``, so Monday equals the one-day move and
    Friday the full five-day move; widths strictly increase when iv > 0.

Usage:
    from expected_moves.analysis.expected_move import expected_range, weekly_bands
    from expected_moves.analysis.volatility import forecast_volatility

    fc = forecast_volatility("standard", 0.0245, 1)
    rng = expected_range(6595.25, fc, 0.25)
    # rng.low -> 6585.0, rng.high -> 6605.5
"""

import math
from dataclasses import dataclass
from datetime import date
from typing import Optional

import pandas as pd

from expected_moves.analysis.trading_calendar import TRADING_DAYS_PER_YEAR
from expected_moves.analysis.volatility import VolatilityForecast
from expected_moves.core.errors import InvalidArgumentError
from expected_moves.core.models import WEEKDAYS, DayBand, WeeklyExpectedMoves
from expected_moves.core.ticks import round_to_tick


@dataclass(frozen=True)
class PriceRange:
    low: float
    high: float

    @property
    def width(self) -> float:
        return self.high - self.low

    def contains(self, price: float) -> bool:
        return self.low <= price <= self.high


@dataclass(frozen=True)
class WeeklyBand:
    weekday: str
    day_number: int  # 1 = Monday .. 5 = Friday
    expected_move: float
    high: float
    low: float

    @property
    def width(self) -> float:
        return self.high - self.low


def _check_price(price: float, argument: str = "price") -> None:
    if not isinstance(price, (int, float)) or not math.isfinite(price) or price < 0:
        raise InvalidArgumentError(
            f"{argument} must be a finite number >= 0, got {price!r}",
            argument=argument,
        )


def expected_range(
    price: float, forecast: VolatilityForecast, tick_size: float
) -> PriceRange:
    """Tick-rounded ``price ± move`` for the forecast's horizon."""
    _check_price(price)
    move = forecast.move_for(price)
    return PriceRange(
        low=round_to_tick(price - move, tick_size),
        high=round_to_tick(price + move, tick_size),
    )


def weekly_bands(
    week_open_price: float, annualized_iv: float, tick_size: float
) -> list[WeeklyBand]:
    """Monday..Friday cumulative bands around the week's open."""
    _check_price(week_open_price, "week_open_price")
    _check_price(annualized_iv, "annualized_iv")

    daily_move = week_open_price * annualized_iv * math.sqrt(1 / TRADING_DAYS_PER_YEAR)
    bands = []
    for n, weekday in enumerate(WEEKDAYS, start=1):
        move = daily_move * math.sqrt(n)
        bands.append(
            WeeklyBand(
                weekday=weekday,
                day_number=n,
                expected_move=move,
                high=round_to_tick(week_open_price + move, tick_size),
                low=round_to_tick(week_open_price - move, tick_size),
            )
        )
    return bands


def build_weekly_moves(
    symbol: str,
    week_open_price: float,
    annualized_iv: float,
    tick_size: float,
    week_start: date,
) -> WeeklyExpectedMoves:
    """Weekly row for *symbol* anchored on the Monday *week_start*."""
    if week_start.weekday() != 0:
        raise InvalidArgumentError(
            f"week_start must be a Monday, got {week_start.isoformat()}",
            argument="week_start",
        )
    days = {
        band.weekday: DayBand(expected_high=band.high, expected_low=band.low)
        for band in weekly_bands(week_open_price, annualized_iv, tick_size)
    }
    return WeeklyExpectedMoves(
        symbol=symbol,
        week_start=week_start,
        week_open_price=week_open_price,
        annualized_iv=annualized_iv,
        days=days,
    )


def weekly_bands_frame(
    week_open_price: float,
    annualized_iv: float,
    tick_size: float,
    week_start: Optional[date] = None,
) -> pd.DataFrame:
    """Weekly bands as a DataFrame indexed by weekday (dates added when anchored)."""
    bands = weekly_bands(week_open_price, annualized_iv, tick_size)
    df = pd.DataFrame(
        [
            {
                "weekday": b.weekday,
                "day_number": b.day_number,
                "expected_move": b.expected_move,
                "high": b.high,
                "low": b.low,
                "width": b.width,
            }
            for b in bands
        ]
    ).set_index("weekday")
    if week_start is not None:
        df["date"] = pd.date_range(week_start, periods=len(bands), freq="D").date
    return df
