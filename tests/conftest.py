"""
Shared pytest fixtures for the expected-move test suite.

Every test that touches the database gets its own SQLite file under
``tmp_path``; nothing here talks to the network.
"""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from expected_moves.core import db
from expected_moves.core.models import SchedulerState
from expected_moves.services.engine.quotes import Quote

_EST = ZoneInfo("America/New_York")


@pytest.fixture()
def temp_db(tmp_path, monkeypatch):
    """Point DB_PATH at a temp SQLite file and initialise it."""
    db_file = str(tmp_path / "expected_moves_test.db")
    monkeypatch.setenv("DB_PATH", db_file)
    monkeypatch.setattr(db, "DB_PATH", db_file)
    monkeypatch.setattr(db, "_USE_POSTGRES", False)
    db.init_db()
    return db_file


@pytest.fixture()
def fresh_state():
    return SchedulerState()


def make_quotes(symbols, change_pct: float = 0.5) -> list[Quote]:
    """Deterministic quotes around each contract's seeded default price."""
    from expected_moves.core.models import CONTRACT_SPECS

    quotes = []
    for symbol in symbols:
        spec = CONTRACT_SPECS.get(symbol)
        prev = spec.default_price if spec else 100.0
        last = prev * (1 + change_pct / 100.0)
        quotes.append(
            Quote.from_prices(
                symbol, last, prev, fetched_at=datetime(2026, 10, 15, 17, 5, tzinfo=_EST)
            )
        )
    return quotes


@pytest.fixture()
def fake_fetcher():
    """Quote fetcher stand-in that records the symbols it was asked for."""
    calls: list[list[str]] = []

    def _fetch(symbols):
        symbols = list(symbols)
        calls.append(symbols)
        return make_quotes(symbols)

    _fetch.calls = calls
    return _fetch
