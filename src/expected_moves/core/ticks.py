"""
Tick rounding for futures prices.

Futures trade in fixed minimum increments (0.25 for /ES, 0.10 for /GC,
0.01 for /CL, 1.0 for /YM).  Every computed band edge goes through
``round_to_tick`` before it is stored so the values are prices that could
actually print.

    round_to_tick(24726.678, 0.25)  -> 24726.75
    round_to_tick(2234.234, 0.10)   -> 2234.2
    round_to_tick(58.9087, 0.01)    -> 58.91
    round_to_tick(45706.3, 1.0)     -> 45706.0
"""

import math
from decimal import Decimal

from expected_moves.core.errors import InvalidArgumentError


def _check_tick(tick_size: float) -> None:
    if not isinstance(tick_size, (int, float)) or not math.isfinite(tick_size):
        raise InvalidArgumentError(
            f"Tick size must be a finite number, got {tick_size!r}",
            argument="tick_size",
        )
    if tick_size <= 0:
        raise InvalidArgumentError(
            f"Tick size must be greater than 0, got {tick_size}",
            argument="tick_size",
            context={"tick_size": tick_size},
        )


def tick_decimals(tick_size: float) -> int:
    """Number of decimal places implied by the tick's shortest repr.

    0.25 -> 2, 0.10 -> 1, 0.0005 -> 4, 1.0 -> 0, 10 -> 0
    """
    _check_tick(tick_size)
    exponent = Decimal(repr(float(tick_size))).normalize().as_tuple().exponent
    return max(0, -int(exponent))


def round_to_tick(price: float, tick_size: float) -> float:
    """Round *price* to the nearest multiple of *tick_size* (half rounds up).

    The result is re-quantised to the tick's decimal places so binary
    floating-point drift (e.g. 2234.2000000000003) never leaks out.
    """
    _check_tick(tick_size)
    if not math.isfinite(price):
        raise InvalidArgumentError(
            f"Price must be finite, got {price!r}", argument="price"
        )
    steps = math.floor(price / tick_size + 0.5)
    return round(steps * tick_size, tick_decimals(tick_size))


def format_tick_price(price: float, tick_size: float) -> str:
    """Format *price* with the tick's decimal places (58.9 @ 0.01 -> "58.90")."""
    return f"{price:.{tick_decimals(tick_size)}f}"
