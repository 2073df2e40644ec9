"""
Tests for the volatility forecast models.

Covers:
  - Standard model: forecast IV equals input, √(h/252) horizon scaling
  - GARCH(1,1) and EWMA recursions against hand-computed values
  - Degenerate case: recent_return=0, no prior -> all models agree
  - Prior forecast feeds the recursion
  - Registry: lookup, unknown names, custom registration
  - Argument validation (horizon, IV, prices)
"""

import math

import pytest

from expected_moves.analysis.volatility import (
    MODELS,
    TRADING_DAYS_PER_YEAR,
    EwmaModel,
    GarchModel,
    StandardModel,
    VolatilityModel,
    available_models,
    forecast_volatility,
    get_model,
    register_model,
)
from expected_moves.core.errors import InvalidArgumentError


class TestStandardModel:
    def test_end_to_end_es(self):
        fc = forecast_volatility("standard", 0.0245, 1, price=6595.25)
        expected = 6595.25 * 0.0245 * math.sqrt(1 / 252)
        assert math.isclose(fc.expected_move, expected, rel_tol=1e-12)
        assert math.isclose(fc.expected_move, 10.1788, abs_tol=1e-3)
        assert fc.confidence == 0.68
        assert fc.forecast_iv == 0.0245

    def test_horizon_scaling(self):
        one = forecast_volatility("standard", 0.2, 1)
        five = forecast_volatility("standard", 0.2, 5)
        assert math.isclose(five.horizon_volatility, one.horizon_volatility * math.sqrt(5))

    def test_ignores_shock_and_prior(self):
        fc = forecast_volatility("standard", 0.2, 1, recent_return=0.05, prior_forecast=0.4)
        assert fc.forecast_iv == 0.2

    def test_move_for_other_price(self):
        fc = forecast_volatility("standard", 0.2, 252)
        assert math.isclose(fc.move_for(100.0), 20.0)
        assert fc.expected_move is None


class TestGarchModel:
    def test_recursion_with_shock(self):
        iv, r = 0.0245, -0.012
        fc = forecast_volatility("garch", iv, 1, recent_return=r)
        omega = max(1e-6, 0.05 * iv**2)
        var = omega + 0.10 * (r**2 * TRADING_DAYS_PER_YEAR) + 0.85 * iv**2
        assert math.isclose(fc.forecast_iv, math.sqrt(var), rel_tol=1e-12)
        assert fc.forecast_iv > iv
        assert fc.confidence == 0.75
        assert fc.parameters == {"omega": omega, "alpha": 0.10, "beta": 0.85}

    def test_parameters_rebuild_variance(self):
        iv, r = 0.20, 0.01
        fc = forecast_volatility("garch", iv, 1, recent_return=r)
        p = fc.parameters
        assert math.isclose(p["omega"], 0.05 * iv**2)
        rebuilt = p["omega"] + p["alpha"] * r**2 * TRADING_DAYS_PER_YEAR + p["beta"] * iv**2
        assert math.isclose(fc.forecast_iv**2, rebuilt, rel_tol=1e-12)

    def test_reported_omega_floor(self):
        fc = forecast_volatility("garch", 0.0, 1)
        assert fc.parameters["omega"] == 1e-6

    def test_flat_close_counts_as_no_shock(self):
        flat = forecast_volatility("garch", 0.20, 1, recent_return=0.0)
        missing = forecast_volatility("garch", 0.20, 1)
        tiny = forecast_volatility("garch", 0.20, 1, recent_return=1e-9)
        assert flat.forecast_iv == missing.forecast_iv
        assert math.isclose(flat.forecast_iv, 0.20)
        assert tiny.forecast_iv < flat.forecast_iv

    def test_prior_forecast_seeds_variance(self):
        fc = forecast_volatility("garch", 0.20, 1, prior_forecast=0.30)
        # no shock information: E[eps^2] = prior variance
        omega = 0.05 * 0.04
        var = omega + 0.10 * 0.09 + 0.85 * 0.09
        assert math.isclose(fc.forecast_iv, math.sqrt(var), rel_tol=1e-12)

    def test_omega_floor_for_tiny_iv(self):
        fc = forecast_volatility("garch", 0.0, 1)
        assert math.isclose(fc.forecast_iv, math.sqrt(1e-6))

    def test_rejects_non_stationary_parameters(self):
        with pytest.raises(InvalidArgumentError):
            GarchModel(alpha=0.2, beta=0.85)


class TestEwmaModel:
    def test_recursion_with_shock(self):
        iv, r = 0.20, 0.02
        fc = forecast_volatility("ewma", iv, 1, recent_return=r)
        var = 0.94 * iv**2 + 0.06 * (r**2 * TRADING_DAYS_PER_YEAR)
        assert math.isclose(fc.forecast_iv, math.sqrt(var), rel_tol=1e-12)
        assert fc.confidence == 0.70
        assert fc.parameters == {"lambda": 0.94}

    def test_rejects_bad_lambda(self):
        with pytest.raises(InvalidArgumentError):
            EwmaModel(lam=1.0)


class TestDegenerateCase:
    @pytest.mark.parametrize("iv", [0.0195, 0.0245, 0.0415, 0.15, 0.60])
    @pytest.mark.parametrize("horizon", [1, 5, 21])
    @pytest.mark.parametrize("recent_return", [0, 0.0, None])
    def test_models_agree(self, iv, horizon, recent_return):
        price = 6595.25
        moves = [
            forecast_volatility(
                name, iv, horizon, recent_return=recent_return, price=price
            ).expected_move
            for name in ("standard", "garch", "ewma")
        ]
        for move in moves[1:]:
            assert math.isclose(move, moves[0], rel_tol=1e-6)


class TestRegistry:
    def test_builtin_models(self):
        assert available_models() == ["ewma", "garch", "standard"]

    def test_lookup_is_case_insensitive(self):
        assert isinstance(get_model("GARCH"), GarchModel)
        assert isinstance(get_model("Standard"), StandardModel)

    def test_unknown_model(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            forecast_volatility("arima", 0.2, 1)
        assert exc_info.value.argument == "model"

    def test_register_custom_model(self, monkeypatch):
        class DoubleVol(VolatilityModel):
            name = "double"
            label = "Double IV"
            confidence = 0.5

            def next_variance(self, iv_var, prior_var, shock_var):
                return 4 * iv_var

        monkeypatch.setitem(MODELS, "double", DoubleVol())
        fc = forecast_volatility("double", 0.1, 1)
        assert math.isclose(fc.forecast_iv, 0.2)

    def test_register_model_replaces_by_name(self, monkeypatch):
        monkeypatch.setattr(
            "expected_moves.analysis.volatility.MODELS", dict(MODELS)
        )
        from expected_moves.analysis import volatility

        register_model(GarchModel(alpha=0.05, beta=0.90))
        assert volatility.MODELS["garch"].alpha == 0.05
        assert MODELS["garch"].alpha == 0.10


class TestValidation:
    @pytest.mark.parametrize("horizon", [0, -1, 1.5, True])
    def test_bad_horizon(self, horizon):
        with pytest.raises(InvalidArgumentError) as exc_info:
            forecast_volatility("standard", 0.2, horizon)
        assert exc_info.value.argument == "horizon_days"

    @pytest.mark.parametrize("iv", [-0.01, float("nan"), float("inf")])
    def test_bad_iv(self, iv):
        with pytest.raises(InvalidArgumentError):
            forecast_volatility("ewma", iv, 1)

    def test_bad_price(self):
        with pytest.raises(InvalidArgumentError):
            forecast_volatility("standard", 0.2, 1, price=-5.0)

    def test_bad_recent_return(self):
        with pytest.raises(InvalidArgumentError):
            forecast_volatility("garch", 0.2, 1, recent_return=float("nan"))

    def test_to_dict(self):
        d = forecast_volatility("garch", 0.2, 1, price=100.0).to_dict()
        assert d["model"] == "garch"
        assert d["label"] == "GARCH(1,1)"
        assert d["price"] == 100.0
