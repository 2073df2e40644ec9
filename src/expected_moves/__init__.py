"""
expected_moves — Futures expected-move engine.

Modules live under organised sub-packages:

    # Core infrastructure
    from expected_moves.core.db import init_db, list_contracts
    from expected_moves.core.models import CONTRACT_SPECS, get_contract_spec
    from expected_moves.core.ticks import round_to_tick
    from expected_moves.core.market_hours import get_market_status
    from expected_moves.core.logging_config import setup_logging, get_logger

    # Analysis modules
    from expected_moves.analysis.trading_calendar import expiration_info
    from expected_moves.analysis.volatility import forecast_volatility
    from expected_moves.analysis.expected_move import expected_range, weekly_bands
    from expected_moves.analysis.accuracy import accuracy_summary

The nightly scheduler service is a sub-package:

    python -m expected_moves.services.engine.main

Install in editable mode for development:

    pip install -e ".[test]"
"""

__version__ = "0.1.0"
