"""
Error taxonomy for the expected-move engine.

Every exception carries a ``context`` dict so the scheduler can log the
offending inputs as structured fields:

  - ``InvalidArgumentError``  — bad caller input (tick <= 0, unknown model,
    horizon < 1).  Rejected immediately, never retried.
  - ``CalendarDataGapError``  — date outside the holiday table or a symbol
    with no expiration rule.  Never silently defaulted.
  - ``UpstreamQuoteError``    — quote provider failed, timed out or returned
    nothing.  The daily job aborts for the cycle and retries next tick.
  - ``DuplicateRecordError``  — second historical insert for the same
    (symbol, trade date).  Benign; the job logs and skips it.
"""

from typing import Any, Optional


class ExpectedMoveError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}


class InvalidArgumentError(ExpectedMoveError, ValueError):
    """Caller supplied a value the engine cannot work with."""

    def __init__(self, message: str, argument: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.argument = argument


class CalendarDataGapError(ExpectedMoveError, LookupError):
    """Calendar lookup fell outside the known holiday table or contract rules."""

    def __init__(self, message: str, symbol: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.symbol = symbol


class UpstreamQuoteError(ExpectedMoveError, RuntimeError):
    """Quote batch could not be retrieved."""

    def __init__(
        self,
        message: str,
        failed_symbols: Optional[list[str]] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.failed_symbols = failed_symbols or []


class DuplicateRecordError(ExpectedMoveError):
    """An append-only record already exists for (symbol, trade date)."""

    def __init__(self, message: str, symbol: str = "", trade_date: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.symbol = symbol
        self.trade_date = trade_date
