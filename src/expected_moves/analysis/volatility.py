"""
Volatility Forecast Models — Standard, GARCH(1,1) and EWMA.

Each model turns an annualized implied volatility into a forecast IV for
the next session and scales it to the requested horizon:

    horizon_volatility = forecast_iv × √(horizon_days / 252)
    expected_move      = price × horizon_volatility

Models:
  - **Standard** — forecast IV is the input IV.  Confidence 0.68 (±1σ).
  - **GARCH(1,1)** — σ²_t = ω + α·ε²_{t−1} + β·σ²_{t−1} with α=0.10,
    β=0.85, ω floored at 1e-6.  Confidence 0.75.
  - **EWMA** — σ²_t = λ·σ²_{t−1} + (1−λ)·r²_{t−1} with λ=0.94
    (RiskMetrics).  Confidence 0.70.

Conventions shared by the recursive models:
  - σ²_{t−1} is the prior forecast squared, seeded with IV² when there is
    no prior.
  - The daily shock ε² = r² is annualized by ×252 so it lives on the same
    scale as IV².
  - ``recent_return=None`` and an exact-zero return (a flat close) both
    count as "no shock observed": the expected shock E[ε²] = σ²_{t−1} is
    used instead of r²·252.  The forecast is therefore not continuous at
    r=0; any non-zero return, however small, is taken at face value.
  - GARCH targets the input IV as its long-run variance:
    ω = max(1e-6, (1−α−β)·IV²).

With those conventions, ``recent_return=0`` and no prior forecast gives
all three models the same expected move.

Usage:
    from expected_moves.analysis.volatility import forecast_volatility

    fc = forecast_volatility("garch", 0.0245, 1, recent_return=-0.012, price=6595.25)
    # fc.forecast_iv -> 0.0646..., fc.expected_move -> 26.8...

Public API:
    forecast_volatility(model, annualized_iv, horizon_days, ...) -> VolatilityForecast
    get_model(name) -> VolatilityModel
    register_model(model)
    available_models() -> list[str]
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional

from expected_moves.core.errors import InvalidArgumentError

logger = logging.getLogger("volatility")

TRADING_DAYS_PER_YEAR = 252

GARCH_OMEGA = 1e-6
GARCH_ALPHA = 0.10
GARCH_BETA = 0.85
EWMA_LAMBDA = 0.94


@dataclass(frozen=True)
class VolatilityForecast:
    model: str
    label: str
    annualized_iv: float
    forecast_iv: float
    horizon_days: int
    horizon_volatility: float
    confidence: float
    parameters: dict[str, float] = field(default_factory=dict)
    price: Optional[float] = None
    expected_move: Optional[float] = None

    def move_for(self, price: float) -> float:
        """Dollar expected move for *price* at this forecast's horizon."""
        _check_finite_non_negative(price, "price")
        return price * self.horizon_volatility

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "label": self.label,
            "annualized_iv": self.annualized_iv,
            "forecast_iv": self.forecast_iv,
            "horizon_days": self.horizon_days,
            "horizon_volatility": self.horizon_volatility,
            "confidence": self.confidence,
            "parameters": dict(self.parameters),
            "price": self.price,
            "expected_move": self.expected_move,
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _check_finite_non_negative(value: Any, argument: str) -> None:
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not math.isfinite(value)
        or value < 0
    ):
        raise InvalidArgumentError(
            f"{argument} must be a finite number >= 0, got {value!r}",
            argument=argument,
        )


def _check_horizon(horizon_days: Any) -> None:
    if isinstance(horizon_days, bool) or not isinstance(horizon_days, int) or horizon_days < 1:
        raise InvalidArgumentError(
            f"horizon_days must be an integer >= 1, got {horizon_days!r}",
            argument="horizon_days",
        )


# ---------------------------------------------------------------------------
# Model strategies
# ---------------------------------------------------------------------------


class VolatilityModel:
    """Base strategy: subclasses implement ``next_variance``."""

    name = "base"
    label = "Base"
    confidence = 0.0

    def parameters(self, iv_var: float) -> dict[str, float]:
        """Parameters in effect for a forecast whose input variance is *iv_var*."""
        return {}

    def next_variance(self, iv_var: float, prior_var: float, shock_var: float) -> float:
        raise NotImplementedError

    def forecast(
        self,
        annualized_iv: float,
        horizon_days: int,
        recent_return: Optional[float] = None,
        prior_forecast: Optional[float] = None,
        price: Optional[float] = None,
    ) -> VolatilityForecast:
        """Forecast next-session IV and scale it to *horizon_days*.

        A ``recent_return`` of exactly 0.0 is treated like ``None`` (no
        shock observed) and the prior variance stands in for the shock.
        """
        _check_finite_non_negative(annualized_iv, "annualized_iv")
        _check_horizon(horizon_days)
        if prior_forecast is not None:
            _check_finite_non_negative(prior_forecast, "prior_forecast")
        if recent_return is not None and not math.isfinite(recent_return):
            raise InvalidArgumentError(
                f"recent_return must be finite, got {recent_return!r}",
                argument="recent_return",
            )
        if price is not None:
            _check_finite_non_negative(price, "price")

        iv_var = annualized_iv**2
        prior_var = (prior_forecast if prior_forecast is not None else annualized_iv) ** 2
        if recent_return:
            shock_var = recent_return**2 * TRADING_DAYS_PER_YEAR
        else:
            shock_var = prior_var

        variance = max(self.next_variance(iv_var, prior_var, shock_var), 0.0)
        forecast_iv = math.sqrt(variance)
        horizon_vol = forecast_iv * math.sqrt(horizon_days / TRADING_DAYS_PER_YEAR)

        return VolatilityForecast(
            model=self.name,
            label=self.label,
            annualized_iv=annualized_iv,
            forecast_iv=forecast_iv,
            horizon_days=horizon_days,
            horizon_volatility=horizon_vol,
            confidence=self.confidence,
            parameters=self.parameters(iv_var),
            price=price,
            expected_move=price * horizon_vol if price is not None else None,
        )


class StandardModel(VolatilityModel):
    name = "standard"
    label = "Standard (IV-implied)"
    confidence = 0.68

    def next_variance(self, iv_var, prior_var, shock_var):
        return iv_var


class GarchModel(VolatilityModel):
    name = "garch"
    label = "GARCH(1,1)"
    confidence = 0.75

    def __init__(self, omega: float = GARCH_OMEGA, alpha: float = GARCH_ALPHA, beta: float = GARCH_BETA):
        if alpha < 0 or beta < 0 or alpha + beta >= 1:
            raise InvalidArgumentError(
                f"GARCH needs alpha, beta >= 0 and alpha + beta < 1 (got {alpha}, {beta})",
                argument="alpha",
            )
        self.omega = omega
        self.alpha = alpha
        self.beta = beta

    def effective_omega(self, iv_var: float) -> float:
        # Variance targeting: long-run variance = IV², floored at self.omega
        return max(self.omega, (1.0 - self.alpha - self.beta) * iv_var)

    def parameters(self, iv_var):
        return {
            "omega": self.effective_omega(iv_var),
            "alpha": self.alpha,
            "beta": self.beta,
        }

    def next_variance(self, iv_var, prior_var, shock_var):
        return self.effective_omega(iv_var) + self.alpha * shock_var + self.beta * prior_var


class EwmaModel(VolatilityModel):
    name = "ewma"
    label = "EWMA (RiskMetrics)"
    confidence = 0.70

    def __init__(self, lam: float = EWMA_LAMBDA):
        if not 0 < lam < 1:
            raise InvalidArgumentError(
                f"EWMA lambda must be in (0, 1), got {lam}", argument="lam"
            )
        self.lam = lam

    def parameters(self, iv_var):
        return {"lambda": self.lam}

    def next_variance(self, iv_var, prior_var, shock_var):
        return self.lam * prior_var + (1.0 - self.lam) * shock_var


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

MODELS: dict[str, VolatilityModel] = {}


def register_model(model: VolatilityModel) -> None:
    """Add (or replace) a model under ``model.name``."""
    MODELS[model.name.lower()] = model


def get_model(name: str) -> VolatilityModel:
    model = MODELS.get(str(name).lower())
    if model is None:
        raise InvalidArgumentError(
            f"Unknown volatility model {name!r}; available: {available_models()}",
            argument="model",
        )
    return model


def available_models() -> list[str]:
    return sorted(MODELS)


for _model in (StandardModel(), GarchModel(), EwmaModel()):
    register_model(_model)


def forecast_volatility(
    model: str,
    annualized_iv: float,
    horizon_days: int,
    recent_return: Optional[float] = None,
    prior_forecast: Optional[float] = None,
    price: Optional[float] = None,
) -> VolatilityForecast:
    """Forecast volatility with the named model.

    Raises ``InvalidArgumentError`` for an unknown model, ``horizon_days < 1``
    or a negative / non-finite IV.
    """
    forecast = get_model(model).forecast(
        annualized_iv,
        horizon_days,
        recent_return=recent_return,
        prior_forecast=prior_forecast,
        price=price,
    )
    logger.debug(
        "%s forecast: iv=%.4f -> %.4f over %dd (vol %.5f)",
        forecast.model,
        annualized_iv,
        forecast.forecast_iv,
        horizon_days,
        forecast.horizon_volatility,
    )
    return forecast
