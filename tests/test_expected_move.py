"""
Tests for the expected-range and weekly-band calculators.

Covers:
  - End-to-end /ES range at the seeded IV
  - Bands are tick-valid and centred on the price
  - Weekly bands: √n scaling, strictly widening Monday..Friday
  - Monday band equals the one-day expected range
  - build_weekly_moves / weekly_bands_frame
"""

import math
from datetime import date

import pytest

from expected_moves.analysis.expected_move import (
    build_weekly_moves,
    expected_range,
    weekly_bands,
    weekly_bands_frame,
)
from expected_moves.analysis.volatility import forecast_volatility
from expected_moves.core.errors import InvalidArgumentError
from expected_moves.core.models import CONTRACT_SPECS, WEEKDAYS


def _is_tick_multiple(price, tick):
    steps = price / tick
    return math.isclose(steps, round(steps), abs_tol=1e-6)


class TestExpectedRange:
    def test_end_to_end_es(self):
        fc = forecast_volatility("standard", 0.0245, 1)
        rng = expected_range(6595.25, fc, 0.25)
        assert rng.low == 6585.00
        assert rng.high == 6605.50
        assert rng.contains(6595.25)
        assert not rng.contains(6610.0)

    @pytest.mark.parametrize("symbol", sorted(CONTRACT_SPECS))
    def test_catalogue_ranges_are_tick_valid(self, symbol):
        spec = CONTRACT_SPECS[symbol]
        fc = forecast_volatility("garch", spec.default_weekly_iv, 1, recent_return=0.01)
        rng = expected_range(spec.default_price, fc, spec.tick_size)
        assert _is_tick_multiple(rng.low, spec.tick_size)
        assert _is_tick_multiple(rng.high, spec.tick_size)
        assert rng.low <= spec.default_price <= rng.high

    def test_zero_iv_collapses_to_price(self):
        fc = forecast_volatility("standard", 0.0, 1)
        rng = expected_range(58.90, fc, 0.01)
        assert rng.low == rng.high == 58.90
        assert rng.width == 0

    def test_bad_tick(self):
        fc = forecast_volatility("standard", 0.2, 1)
        with pytest.raises(InvalidArgumentError):
            expected_range(100.0, fc, 0)


class TestWeeklyBands:
    def test_es_week(self):
        bands = weekly_bands(6595.25, 0.0245, 0.25)
        assert [b.weekday for b in bands] == list(WEEKDAYS)
        assert (bands[0].low, bands[0].high) == (6585.00, 6605.50)
        assert (bands[4].low, bands[4].high) == (6572.50, 6618.00)

    def test_sqrt_n_scaling(self):
        bands = weekly_bands(1000.0, 0.2, 0.01)
        daily = 1000.0 * 0.2 / math.sqrt(252)
        for b in bands:
            assert math.isclose(b.expected_move, daily * math.sqrt(b.day_number))

    @pytest.mark.parametrize("symbol", sorted(CONTRACT_SPECS))
    def test_widths_strictly_increase(self, symbol):
        spec = CONTRACT_SPECS[symbol]
        bands = weekly_bands(spec.default_price, spec.default_weekly_iv, spec.tick_size)
        widths = [b.width for b in bands]
        assert all(later > earlier for earlier, later in zip(widths, widths[1:]))

    def test_monday_matches_one_day_range(self):
        fc = forecast_volatility("standard", 0.0285, 1)
        one_day = expected_range(24726.75, fc, 0.25)
        monday = weekly_bands(24726.75, 0.0285, 0.25)[0]
        assert (monday.low, monday.high) == (one_day.low, one_day.high)

    def test_friday_matches_five_day_range(self):
        fc = forecast_volatility("standard", 0.0285, 5)
        week = expected_range(24726.75, fc, 0.25)
        friday = weekly_bands(24726.75, 0.0285, 0.25)[-1]
        assert (friday.low, friday.high) == (week.low, week.high)

    def test_negative_iv_rejected(self):
        with pytest.raises(InvalidArgumentError):
            weekly_bands(100.0, -0.1, 0.01)


class TestWeeklyMovesRow:
    def test_build(self):
        moves = build_weekly_moves("/ES", 6595.25, 0.0245, 0.25, date(2026, 10, 19))
        assert moves.symbol == "/ES"
        assert moves.week_start == date(2026, 10, 19)
        assert set(moves.days) == set(WEEKDAYS)
        assert moves.band("Monday").expected_high == 6605.50
        assert moves.band("friday").expected_low == 6572.50
        assert moves.band("friday").within_range is None

    def test_week_start_must_be_monday(self):
        with pytest.raises(InvalidArgumentError):
            build_weekly_moves("/ES", 6595.25, 0.0245, 0.25, date(2026, 10, 20))

    def test_unknown_weekday(self):
        moves = build_weekly_moves("/ES", 6595.25, 0.0245, 0.25, date(2026, 10, 19))
        with pytest.raises(InvalidArgumentError):
            moves.band("saturday")

    def test_frame(self):
        df = weekly_bands_frame(6595.25, 0.0245, 0.25, week_start=date(2026, 10, 19))
        assert list(df.index) == list(WEEKDAYS)
        assert df["width"].is_monotonic_increasing
        assert df.loc["friday", "date"] == date(2026, 10, 23)
