"""
expected_moves.analysis — Calendar, volatility and range calculators.

Re-exports the public API from each sub-module so callers can do:

    from expected_moves.analysis import expiration_info, forecast_volatility, weekly_bands
"""

from expected_moves.analysis.accuracy import accuracy_summary, records_frame
from expected_moves.analysis.expected_move import (
    PriceRange,
    WeeklyBand,
    build_weekly_moves,
    expected_range,
    weekly_bands,
    weekly_bands_frame,
)
from expected_moves.analysis.trading_calendar import (
    HOLIDAY_TABLE_VERSION,
    ExpirationInfo,
    all_contract_expirations,
    dynamic_daily_volatility,
    expiration_info,
    is_trading_day,
    next_monday,
    next_trading_day,
    trading_days_between,
    week_start,
)
from expected_moves.analysis.volatility import (
    MODELS,
    VolatilityForecast,
    VolatilityModel,
    available_models,
    forecast_volatility,
    get_model,
    register_model,
)

__all__ = [
    "HOLIDAY_TABLE_VERSION",
    "MODELS",
    "ExpirationInfo",
    "PriceRange",
    "VolatilityForecast",
    "VolatilityModel",
    "WeeklyBand",
    "accuracy_summary",
    "all_contract_expirations",
    "available_models",
    "build_weekly_moves",
    "dynamic_daily_volatility",
    "expected_range",
    "expiration_info",
    "forecast_volatility",
    "get_model",
    "is_trading_day",
    "next_monday",
    "next_trading_day",
    "records_frame",
    "register_model",
    "trading_days_between",
    "week_start",
    "weekly_bands",
    "weekly_bands_frame",
]
