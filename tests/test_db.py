"""
Tests for the SQLite persistence layer.

Covers:
  - init_db creates tables, seeds contracts, and is idempotent
  - Contract quote / calendar / IV updates
  - Append-only daily records: UNIQUE (symbol, trade_date)
  - Actual-close grading: within_range computed, second patch refused
  - Weekly rows: replace on new week, per-day actual close patches
  - IV history: same-day conflicts, overwrite, batch updates
  - Scheduler state round trip
"""

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from expected_moves.analysis.expected_move import build_weekly_moves
from expected_moves.core import db
from expected_moves.core.errors import (
    CalendarDataGapError,
    DuplicateRecordError,
    InvalidArgumentError,
)
from expected_moves.core.models import (
    CONTRACT_SPECS,
    ContractClass,
    ExpectedMoveRecord,
    SchedulerState,
)

_EST = ZoneInfo("America/New_York")
_NOW = datetime(2026, 10, 15, 17, 5, tzinfo=_EST)


def _record(symbol="/ES", trade_date=date(2026, 10, 15), low=6585.0, high=6605.5):
    return ExpectedMoveRecord(
        symbol=symbol,
        trade_date=trade_date,
        last_price=6595.25,
        previous_close=6580.0,
        annualized_iv=0.0245,
        forecast_iv=0.0245,
        horizon_volatility=0.0245 / 252**0.5,
        expected_high=high,
        expected_low=low,
        days_remaining=2,
    )


class TestInitDb:
    def test_seeds_catalogue(self, temp_db):
        contracts = db.list_contracts()
        assert {c.symbol for c in contracts} == set(CONTRACT_SPECS)
        es = db.get_contract("/ES")
        assert es.tick_size == 0.25
        assert es.contract_class == ContractClass.INDEX
        assert es.weekly_iv == 0.0245
        assert es.daily_iv is None
        assert es.forecast_iv is None

    def test_idempotent_and_keeps_existing_rows(self, temp_db):
        db.set_contract_iv("/ES", weekly_iv=0.03)
        db.init_db()
        assert len(db.list_contracts()) == len(CONTRACT_SPECS)
        assert db.get_contract("/ES").weekly_iv == 0.03

    def test_unknown_contract_is_none(self, temp_db):
        assert db.get_contract("/ZZ") is None


class TestContractUpdates:
    def test_update_quote(self, temp_db):
        db.update_contract_quote("/CL", 59.50, 58.90, 0.60, 1.0187, now=_NOW)
        cl = db.get_contract("/CL")
        assert cl.current_price == 59.50
        assert cl.previous_close == 58.90
        assert cl.daily_change_pct == pytest.approx(1.0187)
        assert cl.updated_at == datetime(2026, 10, 15, 17, 5)

    def test_update_calendar(self, temp_db):
        expiry = datetime(2026, 10, 16, 17, 0, tzinfo=_EST)
        db.update_contract_calendar("/ES", 1, expiry, True, daily_volatility=0.0015)
        es = db.get_contract("/ES")
        assert es.days_remaining == 1
        assert es.is_expiration_week
        assert es.expiration_date == expiry
        assert es.daily_volatility == 0.0015

    def test_negative_days_rejected(self, temp_db):
        with pytest.raises(InvalidArgumentError):
            db.update_contract_calendar("/ES", -1, _NOW, False)

    def test_daily_iv_override_and_clear(self, temp_db):
        es = db.set_contract_iv("/ES", daily_iv=0.05)
        assert es.daily_iv == 0.05
        assert es.effective_iv == 0.05
        es = db.set_contract_iv("/ES", clear_daily=True)
        assert es.daily_iv is None
        assert es.effective_iv == es.weekly_iv

    def test_set_iv_validation(self, temp_db):
        with pytest.raises(InvalidArgumentError):
            db.set_contract_iv("/ES", weekly_iv=-0.1)
        with pytest.raises(CalendarDataGapError):
            db.set_contract_iv("/ZZ", weekly_iv=0.1)

    def test_forecast_iv(self, temp_db):
        db.set_contract_forecast_iv("/GC", 0.021)
        assert db.get_contract("/GC").forecast_iv == 0.021


class TestDailyRecords:
    def test_insert_and_get(self, temp_db):
        stored = db.insert_daily_record(_record(), now=_NOW)
        assert stored.id is not None
        assert stored.trade_date == date(2026, 10, 15)
        assert stored.actual_close is None
        assert stored.within_range is None
        assert stored.range_width == pytest.approx(20.5)

    def test_duplicate_raises(self, temp_db):
        db.insert_daily_record(_record())
        with pytest.raises(DuplicateRecordError) as exc_info:
            db.insert_daily_record(_record(low=1.0, high=2.0))
        assert exc_info.value.symbol == "/ES"
        assert exc_info.value.trade_date == "2026-10-15"
        # the original row is untouched
        assert db.get_daily_record("/ES", date(2026, 10, 15)).expected_low == 6585.0

    def test_list_filters(self, temp_db):
        db.insert_daily_record(_record("/ES", date(2026, 10, 14)))
        db.insert_daily_record(_record("/ES", date(2026, 10, 15)))
        db.insert_daily_record(_record("/NQ", date(2026, 10, 15)))
        assert len(db.list_daily_records()) == 3
        es = db.list_daily_records(symbol="/ES")
        assert [r.trade_date for r in es] == [date(2026, 10, 15), date(2026, 10, 14)]
        assert len(db.list_daily_records(start=date(2026, 10, 15))) == 2
        assert len(db.list_daily_records(end=date(2026, 10, 14))) == 1
        assert len(db.list_daily_records(limit=1)) == 1

    def test_record_actual_close_inside(self, temp_db):
        db.insert_daily_record(_record())
        graded = db.record_actual_close("/ES", date(2026, 10, 15), 6600.0)
        assert graded.actual_close == 6600.0
        assert graded.within_range is True

    def test_record_actual_close_on_edge_counts(self, temp_db):
        db.insert_daily_record(_record())
        assert db.record_actual_close("/ES", date(2026, 10, 15), 6605.5).within_range

    def test_record_actual_close_outside(self, temp_db):
        db.insert_daily_record(_record())
        graded = db.record_actual_close("/ES", date(2026, 10, 15), 6620.0)
        assert graded.within_range is False

    def test_second_patch_refused(self, temp_db):
        db.insert_daily_record(_record())
        db.record_actual_close("/ES", date(2026, 10, 15), 6600.0)
        with pytest.raises(DuplicateRecordError):
            db.record_actual_close("/ES", date(2026, 10, 15), 6500.0)
        assert db.get_daily_record("/ES", date(2026, 10, 15)).actual_close == 6600.0

    def test_patch_missing_record(self, temp_db):
        with pytest.raises(InvalidArgumentError):
            db.record_actual_close("/ES", date(2026, 10, 15), 6600.0)


class TestWeeklyMoves:
    def test_replace_and_get(self, temp_db):
        moves = build_weekly_moves("/ES", 6595.25, 0.0245, 0.25, date(2026, 10, 19))
        stored = db.replace_weekly_moves(moves, now=_NOW)
        assert stored.week_start == date(2026, 10, 19)
        assert stored.band("monday").expected_high == 6605.5
        assert stored.band("friday").actual_close is None

    def test_one_row_per_symbol(self, temp_db):
        db.replace_weekly_moves(build_weekly_moves("/ES", 6595.25, 0.0245, 0.25, date(2026, 10, 12)))
        db.replace_weekly_moves(build_weekly_moves("/ES", 6700.00, 0.0245, 0.25, date(2026, 10, 19)))
        rows = db.list_weekly_moves()
        assert len(rows) == 1
        assert rows[0].week_start == date(2026, 10, 19)
        assert rows[0].week_open_price == 6700.00

    def test_patch_actual_close(self, temp_db):
        db.replace_weekly_moves(build_weekly_moves("/ES", 6595.25, 0.0245, 0.25, date(2026, 10, 19)))
        stored = db.update_weekly_actual_close("/ES", "Tuesday", 6601.0)
        assert stored.band("tuesday").actual_close == 6601.0
        assert stored.band("tuesday").within_range is True
        assert stored.band("monday").actual_close is None

    def test_patch_validation(self, temp_db):
        with pytest.raises(InvalidArgumentError):
            db.update_weekly_actual_close("/ES", "sunday", 1.0)
        with pytest.raises(InvalidArgumentError):
            db.update_weekly_actual_close("/ES", "monday", 1.0)


class TestIvUpdates:
    def test_create_applies_to_contract(self, temp_db):
        result = db.record_iv_update("/NQ", 0.031, date(2026, 10, 15))
        assert result["status"] == "created"
        assert db.get_contract("/NQ").weekly_iv == 0.031
        assert len(db.list_iv_updates("/NQ")) == 1

    def test_same_day_conflict(self, temp_db):
        db.record_iv_update("/NQ", 0.031, date(2026, 10, 15))
        result = db.record_iv_update("/NQ", 0.040, date(2026, 10, 15))
        assert result == {
            "status": "conflict",
            "symbol": "/NQ",
            "existing_iv": 0.031,
            "requested_iv": 0.040,
        }
        assert db.get_contract("/NQ").weekly_iv == 0.031

    def test_overwrite(self, temp_db):
        db.record_iv_update("/NQ", 0.031, date(2026, 10, 15))
        result = db.record_iv_update("/NQ", 0.040, date(2026, 10, 15), overwrite=True)
        assert result["status"] == "updated"
        assert db.get_iv_update("/NQ", date(2026, 10, 15)).weekly_iv == 0.040
        assert db.get_contract("/NQ").weekly_iv == 0.040
        assert len(db.list_iv_updates()) == 1

    def test_batch_conflict_writes_nothing(self, temp_db):
        db.record_iv_update("/ES", 0.025, date(2026, 10, 15))
        result = db.batch_update_iv({"/ES": 0.03, "/GC": 0.02}, date(2026, 10, 15))
        assert result["status"] == "conflict"
        assert [c["symbol"] for c in result["conflicts"]] == ["/ES"]
        assert db.get_iv_update("/GC", date(2026, 10, 15)) is None

    def test_batch_overwrite(self, temp_db):
        db.record_iv_update("/ES", 0.025, date(2026, 10, 15))
        result = db.batch_update_iv(
            {"/ES": 0.03, "/GC": 0.02}, date(2026, 10, 15), overwrite=True
        )
        assert result["status"] == "applied"
        assert [a["status"] for a in result["applied"]] == ["updated", "created"]

    def test_validation(self, temp_db):
        with pytest.raises(InvalidArgumentError):
            db.record_iv_update("/ES", float("nan"), date(2026, 10, 15))
        with pytest.raises(CalendarDataGapError):
            db.batch_update_iv({"/ZZ": 0.1}, date(2026, 10, 15))


class TestSchedulerState:
    def test_empty_state(self, temp_db):
        assert db.load_scheduler_state() == SchedulerState()

    def test_round_trip(self, temp_db):
        db.save_scheduler_state(
            SchedulerState(last_daily_run=date(2026, 10, 15), last_weekly_run=date(2026, 10, 10))
        )
        db.save_scheduler_state(
            SchedulerState(last_daily_run=date(2026, 10, 16), last_weekly_run=date(2026, 10, 10))
        )
        state = db.load_scheduler_state()
        assert state.last_daily_run == date(2026, 10, 16)
        assert state.last_weekly_run == date(2026, 10, 10)
