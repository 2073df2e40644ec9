"""
Nightly Scheduler — once-per-day gating for the expected-move jobs
===================================================================
Decides, from the Eastern Time clock and the persisted ``SchedulerState``,
which of the two engine jobs should run right now:

  - **Daily expected moves:** trading days only, once the session has
    closed (ET clock at/after 17:00 and the market not open), at most once
    per calendar day.
  - **Weekly bands:** Saturdays only, at most once per day.

The main loop checks hourly (``SCHEDULER_CHECK_INTERVAL``) and once at
start-up.  Between checks it never sleeps past the 17:00 ET close, so the
17:00–18:00 maintenance window is always observed.  An attempt that aborts
(quote batch failure) or raises leaves the daily job due, and the loop then
re-checks every ``SCHEDULER_RETRY_INTERVAL`` seconds (default 300) so the
retry happens inside the same window.  There is no missed-run
queue: a day whose window passed while the process was down is skipped,
unless the start-up check runs with ``catch_up=True`` (it then ignores the
market-open condition for today's job).

Usage:
    from expected_moves.services.engine.scheduler import ScheduleManager

    mgr = ScheduleManager(db.load_scheduler_state())
    while running:
        for action in mgr.get_pending_actions():
            run(action)
            mgr.mark_done(action.action)
        sleep(mgr.seconds_until_next_check())
"""

import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Optional

from expected_moves.analysis.trading_calendar import is_trading_day
from expected_moves.core.errors import CalendarDataGapError
from expected_moves.core.market_hours import (
    SESSION_CLOSE,
    get_market_status,
    to_exchange_time,
)
from expected_moves.core.models import SchedulerState

logger = logging.getLogger("engine.scheduler")

CHECK_INTERVAL = float(os.getenv("SCHEDULER_CHECK_INTERVAL", "3600"))
RETRY_INTERVAL = float(os.getenv("SCHEDULER_RETRY_INTERVAL", "300"))


class ActionType(str, Enum):
    """All schedulable engine actions."""

    DAILY_EXPECTED_MOVES = "daily_expected_moves"
    WEEKLY_BANDS = "weekly_bands"


@dataclass
class ScheduledAction:
    """A single action the engine should execute."""

    action: ActionType
    priority: int = 0  # lower = higher priority
    description: str = ""


@dataclass
class _ActionTracker:
    """Per-process counters for status reporting."""

    last_attempt: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0
    failure_count: int = 0


class ScheduleManager:
    """Once-per-day gating for the nightly jobs.

    The last-run dates live in ``self.state``, which the jobs update and
    persist; the manager only reads it and keeps attempt counters.
    """

    def __init__(
        self,
        state: Optional[SchedulerState] = None,
        check_interval: Optional[float] = None,
        retry_interval: Optional[float] = None,
    ) -> None:
        self.state = state if state is not None else SchedulerState()
        self.check_interval = CHECK_INTERVAL if check_interval is None else check_interval
        self.retry_interval = RETRY_INTERVAL if retry_interval is None else retry_interval
        self._trackers: dict[ActionType, _ActionTracker] = {
            action: _ActionTracker() for action in ActionType
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_pending_actions(
        self,
        now: Optional[datetime] = None,
        catch_up: bool = False,
    ) -> list[ScheduledAction]:
        """Return the actions that should run right now, by priority.

        Raises ``CalendarDataGapError`` when today is outside the holiday
        table; the caller logs it and skips the cycle.
        """
        et = to_exchange_time(now)
        today = et.date()
        pending: list[ScheduledAction] = []

        if self.daily_due(et, catch_up=catch_up):
            pending.append(
                ScheduledAction(
                    action=ActionType.DAILY_EXPECTED_MOVES,
                    priority=0,
                    description=f"Expected moves for the session after {today}",
                )
            )

        if self.weekly_due(et):
            pending.append(
                ScheduledAction(
                    action=ActionType.WEEKLY_BANDS,
                    priority=1,
                    description="Weekly Monday-Friday bands",
                )
            )

        pending.sort(key=lambda a: a.priority)
        return pending

    def daily_due(self, now: Optional[datetime] = None, catch_up: bool = False) -> bool:
        et = to_exchange_time(now)
        today = et.date()
        if self.state.last_daily_run == today:
            return False
        if et.time() < SESSION_CLOSE:
            return False
        if not is_trading_day(today):
            return False
        if get_market_status(et).is_open and not catch_up:
            return False
        return True

    def weekly_due(self, now: Optional[datetime] = None) -> bool:
        et = to_exchange_time(now)
        return et.weekday() == 5 and self.state.last_weekly_run != et.date()

    def mark_done(self, action: ActionType, now: Optional[datetime] = None) -> None:
        """Record a successful run.  Called after the job returns.

        Parameters
        ----------
        action : ActionType
            The action that completed.
        now : datetime, optional
            Override the current time (used by tests).
        """
        et = to_exchange_time(now)
        tracker = self._trackers[action]
        tracker.last_attempt = et
        tracker.last_error = None
        tracker.run_count += 1
        if action is ActionType.DAILY_EXPECTED_MOVES:
            self.state.last_daily_run = et.date()
        else:
            self.state.last_weekly_run = et.date()
        logger.debug("Action completed: %s (run #%d)", action.value, tracker.run_count)

    def mark_failed(
        self, action: ActionType, error: str, now: Optional[datetime] = None
    ) -> None:
        """Record a failure.  The last-run date is untouched, so the next
        check retries."""
        tracker = self._trackers[action]
        tracker.last_attempt = to_exchange_time(now)
        tracker.last_error = error
        tracker.failure_count += 1
        logger.warning("Action failed: %s — %s", action.value, error)

    def seconds_until_next_check(self, now: Optional[datetime] = None) -> float:
        """Sleep length for the main loop.

        Normally the check interval, cut short so the 17:00 ET close is never
        skipped over.  While today's daily job is still due (its last attempt
        aborted or raised), the retry interval is used instead so the retry
        lands before the 18:00 reopen.
        """
        et = to_exchange_time(now)
        if self._daily_retry_pending(et):
            return max(1.0, min(self.check_interval, self.retry_interval))
        close = et.replace(
            hour=SESSION_CLOSE.hour, minute=SESSION_CLOSE.minute, second=0, microsecond=0
        ) + timedelta(minutes=1)
        if et < close:
            return max(1.0, min(self.check_interval, (close - et).total_seconds()))
        return self.check_interval

    def _daily_retry_pending(self, et: datetime) -> bool:
        try:
            return self.daily_due(et)
        except CalendarDataGapError:
            return False

    def get_status(self, now: Optional[datetime] = None) -> dict:
        """Return scheduler status for the health file."""
        et = to_exchange_time(now)
        market = get_market_status(et)

        actions = {}
        for action, tracker in self._trackers.items():
            actions[action.value] = {
                "last_attempt": tracker.last_attempt.isoformat()
                if tracker.last_attempt
                else None,
                "run_count": tracker.run_count,
                "failure_count": tracker.failure_count,
                "last_error": tracker.last_error,
            }

        return {
            "current_time_et": et.strftime("%Y-%m-%d %H:%M:%S"),
            "market_status": market.status,
            "last_daily_run": _iso(self.state.last_daily_run),
            "last_weekly_run": _iso(self.state.last_weekly_run),
            "check_interval": self.check_interval,
            "actions": actions,
        }


def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None
