"""
Nightly Scheduler Service — expected-move engine worker
========================================================
Runs the two nightly jobs on the ``ScheduleManager`` clock:

  - **Daily expected moves:** trading days, after the 17:00 ET close.
  - **Weekly bands:** Saturdays.

Start-up sequence: configure logging, ``init_db()`` (creates tables and
seeds contracts), load the persisted ``SchedulerState``, run one immediate
check (with catch-up when ``STARTUP_CATCH_UP`` is on), then check every
``SCHEDULER_CHECK_INTERVAL`` seconds until SIGTERM / SIGINT.

A health file (``HEALTH_FILE``) is rewritten every cycle for the Docker
healthcheck.

Usage:
    python -m expected_moves.services.engine.main

Docker:
    CMD ["python", "-m", "expected_moves.services.engine.main"]
"""

import json
import os
import signal
import threading
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from expected_moves.core import db
from expected_moves.core.errors import ExpectedMoveError
from expected_moves.core.logging_config import get_logger, setup_logging
from expected_moves.core.market_hours import to_exchange_time
from expected_moves.services.engine.jobs import run_daily_job, run_weekly_job
from expected_moves.services.engine.scheduler import ActionType, ScheduleManager

logger = get_logger("engine_service")

_EST = ZoneInfo("America/New_York")

HEALTH_FILE = os.getenv("HEALTH_FILE", "/tmp/expected_moves_health.json")
STARTUP_CATCH_UP = os.getenv("STARTUP_CATCH_UP", "1").lower() in ("1", "true", "yes")

ActionHandler = Callable[[Optional[datetime]], dict]


def _write_health(healthy: bool, status: str, **extras):
    """Write health status to a file for Docker healthcheck."""
    data = {
        "healthy": healthy,
        "status": status,
        "timestamp": datetime.now(tz=_EST).isoformat(),
        **extras,
    }
    try:
        with open(HEALTH_FILE, "w") as f:
            json.dump(data, f, default=str)
    except OSError as exc:
        logger.warning("health_file_write_failed", path=HEALTH_FILE, error=str(exc))


def build_action_handlers(scheduler: ScheduleManager) -> dict[ActionType, ActionHandler]:
    """Dispatch table: each handler runs its job against the scheduler's state."""
    return {
        ActionType.DAILY_EXPECTED_MOVES: lambda now: run_daily_job(
            state=scheduler.state, now=now
        ),
        ActionType.WEEKLY_BANDS: lambda now: run_weekly_job(
            state=scheduler.state, now=now
        ),
    }


def run_cycle(
    scheduler: ScheduleManager,
    handlers: dict[ActionType, ActionHandler],
    now: Optional[datetime] = None,
    catch_up: bool = False,
) -> dict[str, dict]:
    """Run every pending action once.  Job failures are logged, never raised."""
    now = to_exchange_time(now)
    results: dict[str, dict] = {}

    try:
        pending = scheduler.get_pending_actions(now, catch_up=catch_up)
    except ExpectedMoveError as exc:
        logger.error("schedule_check_failed", error=str(exc), context=exc.context)
        return results

    for action in pending:
        handler = handlers.get(action.action)
        if handler is None:
            logger.warning("no_handler", action=action.action.value)
            continue
        logger.info("action_started", action=action.action.value, description=action.description)
        try:
            result = handler(now)
        except Exception as exc:
            scheduler.mark_failed(action.action, str(exc), now=now)
            logger.exception("action_failed", action=action.action.value, error=str(exc))
            results[action.action.value] = {"status": "failed", "error": str(exc)}
            continue

        if result.get("status") == "aborted":
            scheduler.mark_failed(action.action, result.get("error", "aborted"), now=now)
        else:
            scheduler.mark_done(action.action, now=now)
        results[action.action.value] = result

    return results


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------


def main():
    setup_logging(service="nightly-scheduler")

    logger.info("=" * 60)
    logger.info("  Expected-move scheduler starting up")
    logger.info("=" * 60)

    db.init_db()
    scheduler = ScheduleManager(db.load_scheduler_state())
    handlers = build_action_handlers(scheduler)

    logger.info(
        "scheduler_ready",
        check_interval=scheduler.check_interval,
        startup_catch_up=STARTUP_CATCH_UP,
        last_daily_run=scheduler.state.last_daily_run,
        last_weekly_run=scheduler.state.last_weekly_run,
        handlers=len(handlers),
    )

    stop = threading.Event()

    def handle_signal(signum, frame):
        logger.info("Received signal %s, shutting down...", signum)
        stop.set()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    # Start-up check
    results = run_cycle(scheduler, handlers, catch_up=STARTUP_CATCH_UP)
    _write_health(True, "running", last_results=results, **scheduler.get_status())

    while not stop.wait(scheduler.seconds_until_next_check()):
        results = run_cycle(scheduler, handlers)
        _write_health(True, "running", last_results=results, **scheduler.get_status())

    logger.info("=" * 60)
    logger.info("  Expected-move scheduler shutting down")
    logger.info("=" * 60)
    _write_health(False, "stopped")


if __name__ == "__main__":
    main()
