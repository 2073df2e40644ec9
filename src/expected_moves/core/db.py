"""
Persistence for contracts, nightly predictions, weekly bands, IV history
and scheduler state.

Supports dual-database backends:
  - PostgreSQL via DATABASE_URL (production / Docker)
  - SQLite via DB_PATH (local dev / tests)

The active backend is chosen automatically at module load time:
  - If DATABASE_URL is set and starts with "postgresql", use Postgres.
  - Otherwise, fall back to SQLite at DB_PATH.

SQL is written once with ``?`` placeholders and converted to ``%s`` when
running against Postgres.  Idempotency rests on UNIQUE constraints plus
``ON CONFLICT ... DO NOTHING``, which both backends accept, so the
"check, then create" step of the nightly job is a single statement.

Tables:
  - contracts               — one mutable row per symbol (seeded by init_db)
  - historical_daily_moves  — append-only, UNIQUE(symbol, trade_date)
  - weekly_expected_moves   — one row per symbol, replaced on a new week
  - iv_updates              — manual IV history, UNIQUE(symbol, update_date)
  - scheduler_state         — key/value last-run dates
"""

import logging
import math
import os
import sqlite3
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from expected_moves.core.errors import DuplicateRecordError, InvalidArgumentError
from expected_moves.core.models import (
    CONTRACT_SPECS,
    WEEKDAYS,
    Contract,
    ContractClass,
    DayBand,
    ExpectedMoveRecord,
    IvUpdate,
    SchedulerState,
    WeeklyExpectedMoves,
    get_contract_spec,
)

_EST = ZoneInfo("America/New_York")

logger = logging.getLogger("db")

# ---------------------------------------------------------------------------
# Database configuration
# ---------------------------------------------------------------------------
DB_PATH = os.getenv("DB_PATH", "expected_moves.db")
DATABASE_URL = os.getenv("DATABASE_URL", "")

_USE_POSTGRES = DATABASE_URL.startswith("postgresql")

# SQLAlchemy engine (lazy-initialised for Postgres)
_sa_engine = None

_TS_FORMAT = "%Y-%m-%d %H:%M:%S"


# ═══════════════════════════════════════════════════════════════════════════
# Connection layer
# ═══════════════════════════════════════════════════════════════════════════


def _get_sa_engine():
    """Lazily create the SQLAlchemy engine for Postgres."""
    global _sa_engine
    if _sa_engine is None:
        from sqlalchemy import create_engine

        _sa_engine = create_engine(
            DATABASE_URL,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        logger.info("Postgres engine created: %s", DATABASE_URL.split("@")[-1])
    return _sa_engine


def _convert_placeholders(sql: str) -> str:
    """Convert SQLite-style `?` placeholders to Postgres-style `%s`."""
    return sql.replace("?", "%s")


class _RowProxy(dict):
    """Dict built from a Postgres row tuple, matching sqlite3.Row access."""

    def __init__(self, columns: list[str], values: tuple):
        super().__init__(zip(columns, values))


class _PgCursorWrapper:
    """Wraps a DBAPI cursor: converts `?` → `%s`, returns _RowProxy rows."""

    def __init__(self, cursor):
        self._cursor = cursor

    def execute(self, sql: str, params=None):
        converted = _convert_placeholders(sql)
        if params:
            self._cursor.execute(converted, params)
        else:
            self._cursor.execute(converted)
        return self

    def _columns(self) -> list[str]:
        return [desc[0] for desc in self._cursor.description]

    def fetchone(self):
        row = self._cursor.fetchone()
        if row is None or not self._cursor.description:
            return row
        return _RowProxy(self._columns(), row)

    def fetchall(self):
        rows = self._cursor.fetchall()
        if not rows or not self._cursor.description:
            return rows
        columns = self._columns()
        return [_RowProxy(columns, r) for r in rows]

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


class _PgConnectionWrapper:
    """Wraps a SQLAlchemy raw connection to match the sqlite3.Connection API."""

    def __init__(self, raw_conn):
        self._conn = raw_conn
        self._cursor = raw_conn.cursor()

    def execute(self, sql: str, params=None):
        return _PgCursorWrapper(self._cursor).execute(sql, params)

    def executescript(self, sql: str):
        self._cursor.execute(sql.replace("AUTOINCREMENT", ""))

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._cursor.close()
        self._conn.close()


def _get_sqlite_conn() -> sqlite3.Connection:
    """Create a SQLite connection with WAL mode and row factory."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def _get_conn():
    """Get a database connection (Postgres or SQLite).

    Returns an object with execute(), executescript(), commit(), close()
    methods.  Rows are accessible by column name via dict-style access.
    """
    if _USE_POSTGRES:
        return _PgConnectionWrapper(_get_sa_engine().raw_connection())
    return _get_sqlite_conn()


def _now_ts(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(tz=_EST)).strftime(_TS_FORMAT)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_CONTRACTS = """
CREATE TABLE IF NOT EXISTS contracts (
    symbol              TEXT    PRIMARY KEY,
    name                TEXT    NOT NULL,
    tick_size           REAL    NOT NULL CHECK (tick_size > 0),
    contract_class      TEXT    NOT NULL,
    current_price       REAL    NOT NULL DEFAULT 0.0,
    previous_close      REAL    NOT NULL DEFAULT 0.0,
    daily_change        REAL    NOT NULL DEFAULT 0.0,
    daily_change_pct    REAL    NOT NULL DEFAULT 0.0,
    weekly_iv           REAL    NOT NULL,
    daily_iv            REAL,
    forecast_iv         REAL,
    daily_volatility    REAL,
    days_remaining      INTEGER CHECK (days_remaining >= 0),
    expiration_date     TEXT,
    is_expiration_week  INTEGER NOT NULL DEFAULT 0,
    updated_at          TEXT
);
"""

_SCHEMA_DAILY_MOVES_SQLITE = """
CREATE TABLE IF NOT EXISTS historical_daily_moves (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol              TEXT    NOT NULL,
    trade_date          TEXT    NOT NULL,
    last_price          REAL    NOT NULL,
    previous_close      REAL    NOT NULL,
    annualized_iv       REAL    NOT NULL,
    forecast_iv         REAL    NOT NULL,
    horizon_volatility  REAL    NOT NULL,
    expected_high       REAL    NOT NULL,
    expected_low        REAL    NOT NULL,
    model               TEXT    NOT NULL DEFAULT 'standard',
    days_remaining      INTEGER,
    actual_close        REAL,
    within_range        INTEGER,
    created_at          TEXT    NOT NULL,
    UNIQUE (symbol, trade_date)
);
"""

_SCHEMA_DAILY_MOVES_PG = """
CREATE TABLE IF NOT EXISTS historical_daily_moves (
    id                  SERIAL PRIMARY KEY,
    symbol              TEXT    NOT NULL,
    trade_date          TEXT    NOT NULL,
    last_price          DOUBLE PRECISION NOT NULL,
    previous_close      DOUBLE PRECISION NOT NULL,
    annualized_iv       DOUBLE PRECISION NOT NULL,
    forecast_iv         DOUBLE PRECISION NOT NULL,
    horizon_volatility  DOUBLE PRECISION NOT NULL,
    expected_high       DOUBLE PRECISION NOT NULL,
    expected_low        DOUBLE PRECISION NOT NULL,
    model               TEXT    NOT NULL DEFAULT 'standard',
    days_remaining      INTEGER,
    actual_close        DOUBLE PRECISION,
    within_range        INTEGER,
    created_at          TEXT    NOT NULL,
    UNIQUE (symbol, trade_date)
);
"""

_SCHEMA_WEEKLY_MOVES = """
CREATE TABLE IF NOT EXISTS weekly_expected_moves (
    symbol              TEXT    PRIMARY KEY,
    week_start          TEXT    NOT NULL,
    week_open_price     REAL    NOT NULL,
    annualized_iv       REAL    NOT NULL,
    monday_high         REAL,
    monday_low          REAL,
    monday_close        REAL,
    tuesday_high        REAL,
    tuesday_low         REAL,
    tuesday_close       REAL,
    wednesday_high      REAL,
    wednesday_low       REAL,
    wednesday_close     REAL,
    thursday_high       REAL,
    thursday_low        REAL,
    thursday_close      REAL,
    friday_high         REAL,
    friday_low          REAL,
    friday_close        REAL,
    updated_at          TEXT    NOT NULL
);
"""

_SCHEMA_IV_UPDATES_SQLITE = """
CREATE TABLE IF NOT EXISTS iv_updates (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    symbol              TEXT    NOT NULL,
    update_date         TEXT    NOT NULL,
    weekly_iv           REAL    NOT NULL,
    source              TEXT    NOT NULL DEFAULT 'manual',
    created_at          TEXT    NOT NULL,
    UNIQUE (symbol, update_date)
);
"""

_SCHEMA_IV_UPDATES_PG = """
CREATE TABLE IF NOT EXISTS iv_updates (
    id                  SERIAL PRIMARY KEY,
    symbol              TEXT    NOT NULL,
    update_date         TEXT    NOT NULL,
    weekly_iv           DOUBLE PRECISION NOT NULL,
    source              TEXT    NOT NULL DEFAULT 'manual',
    created_at          TEXT    NOT NULL,
    UNIQUE (symbol, update_date)
);
"""

_SCHEMA_SCHEDULER_STATE = """
CREATE TABLE IF NOT EXISTS scheduler_state (
    key                 TEXT    PRIMARY KEY,
    value               TEXT
);
"""


# ---------------------------------------------------------------------------
# Database initialisation
# ---------------------------------------------------------------------------


def init_db() -> None:
    """Create all tables (idempotent) and seed the contract catalogue.

    Existing contract rows are left untouched, so prices and IVs survive
    restarts.
    """
    if _USE_POSTGRES:
        scripts = [
            _SCHEMA_CONTRACTS.replace("REAL", "DOUBLE PRECISION"),
            _SCHEMA_DAILY_MOVES_PG,
            _SCHEMA_WEEKLY_MOVES.replace("REAL", "DOUBLE PRECISION"),
            _SCHEMA_IV_UPDATES_PG,
            _SCHEMA_SCHEDULER_STATE,
        ]
    else:
        scripts = [
            _SCHEMA_CONTRACTS,
            _SCHEMA_DAILY_MOVES_SQLITE,
            _SCHEMA_WEEKLY_MOVES,
            _SCHEMA_IV_UPDATES_SQLITE,
            _SCHEMA_SCHEDULER_STATE,
        ]

    conn = _get_conn()
    try:
        for script in scripts:
            conn.executescript(script)
        ts = _now_ts()
        for spec in CONTRACT_SPECS.values():
            conn.execute(
                """INSERT INTO contracts
                   (symbol, name, tick_size, contract_class, current_price,
                    previous_close, weekly_iv, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT (symbol) DO NOTHING""",
                (
                    spec.symbol,
                    spec.name,
                    spec.tick_size,
                    spec.contract_class.value,
                    spec.default_price,
                    spec.default_price,
                    spec.default_weekly_iv,
                    ts,
                ),
            )
        conn.commit()
        logger.info(
            "Database initialised (%s), %d contracts seeded",
            "postgres" if _USE_POSTGRES else DB_PATH,
            len(CONTRACT_SPECS),
        )
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Row conversion helpers
# ---------------------------------------------------------------------------


def _row_to_dict(row) -> dict:
    """Convert a database row to a plain dict."""
    if row is None:
        return {}
    if isinstance(row, dict):
        return dict(row)
    return {k: row[k] for k in row.keys()}


def _parse_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value)


def _parse_ts(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return datetime.strptime(value, _TS_FORMAT)


def _opt_bool(value) -> Optional[bool]:
    return None if value is None else bool(value)


def _row_to_contract(row) -> Contract:
    d = _row_to_dict(row)
    return Contract(
        symbol=d["symbol"],
        name=d["name"],
        tick_size=d["tick_size"],
        contract_class=ContractClass(d["contract_class"]),
        current_price=d["current_price"],
        previous_close=d["previous_close"],
        weekly_iv=d["weekly_iv"],
        daily_iv=d["daily_iv"],
        daily_change=d["daily_change"],
        daily_change_pct=d["daily_change_pct"],
        forecast_iv=d["forecast_iv"],
        daily_volatility=d["daily_volatility"],
        days_remaining=d["days_remaining"],
        expiration_date=_parse_ts(d["expiration_date"]),
        is_expiration_week=bool(d["is_expiration_week"]),
        updated_at=_parse_ts(d["updated_at"]),
    )


def _row_to_record(row) -> ExpectedMoveRecord:
    d = _row_to_dict(row)
    return ExpectedMoveRecord(
        id=d["id"],
        symbol=d["symbol"],
        trade_date=_parse_date(d["trade_date"]),
        last_price=d["last_price"],
        previous_close=d["previous_close"],
        annualized_iv=d["annualized_iv"],
        forecast_iv=d["forecast_iv"],
        horizon_volatility=d["horizon_volatility"],
        expected_high=d["expected_high"],
        expected_low=d["expected_low"],
        model=d["model"],
        days_remaining=d["days_remaining"],
        actual_close=d["actual_close"],
        within_range=_opt_bool(d["within_range"]),
        created_at=_parse_ts(d["created_at"]),
    )


def _row_to_weekly(row) -> WeeklyExpectedMoves:
    d = _row_to_dict(row)
    days = {
        day: DayBand(
            expected_high=d[f"{day}_high"],
            expected_low=d[f"{day}_low"],
            actual_close=d[f"{day}_close"],
        )
        for day in WEEKDAYS
    }
    return WeeklyExpectedMoves(
        symbol=d["symbol"],
        week_start=_parse_date(d["week_start"]),
        week_open_price=d["week_open_price"],
        annualized_iv=d["annualized_iv"],
        days=days,
        updated_at=_parse_ts(d["updated_at"]),
    )


def _row_to_iv_update(row) -> IvUpdate:
    d = _row_to_dict(row)
    return IvUpdate(
        id=d["id"],
        symbol=d["symbol"],
        update_date=_parse_date(d["update_date"]),
        weekly_iv=d["weekly_iv"],
        source=d["source"],
        created_at=_parse_ts(d["created_at"]),
    )


def _query(sql: str, params: tuple = ()) -> list:
    conn = _get_conn()
    try:
        return conn.execute(sql, params).fetchall()
    finally:
        conn.close()


def _query_one(sql: str, params: tuple = ()):
    conn = _get_conn()
    try:
        return conn.execute(sql, params).fetchone()
    finally:
        conn.close()


def _write(sql: str, params: tuple = ()) -> int:
    """Execute one write statement, commit, and return the affected row count."""
    conn = _get_conn()
    try:
        count = conn.execute(sql, params).rowcount
        conn.commit()
        return count
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _check_iv(value: float, argument: str = "weekly_iv") -> None:
    if value is None or not math.isfinite(value) or value < 0:
        raise InvalidArgumentError(
            f"{argument} must be a finite number >= 0, got {value!r}",
            argument=argument,
        )


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------


def get_contract(symbol: str) -> Optional[Contract]:
    row = _query_one("SELECT * FROM contracts WHERE symbol = ?", (symbol,))
    return _row_to_contract(row) if row else None


def list_contracts() -> list[Contract]:
    rows = _query("SELECT * FROM contracts ORDER BY symbol")
    return [_row_to_contract(r) for r in rows]


def update_contract_quote(
    symbol: str,
    current_price: float,
    previous_close: float,
    daily_change: float,
    daily_change_pct: float,
    now: Optional[datetime] = None,
) -> None:
    """Store the latest quote fields for *symbol*."""
    _write(
        """UPDATE contracts
           SET current_price = ?, previous_close = ?, daily_change = ?,
               daily_change_pct = ?, updated_at = ?
           WHERE symbol = ?""",
        (
            current_price,
            previous_close,
            daily_change,
            daily_change_pct,
            _now_ts(now),
            symbol,
        ),
    )


def update_contract_calendar(
    symbol: str,
    days_remaining: int,
    expiration_date: datetime,
    is_expiration_week: bool,
    daily_volatility: Optional[float] = None,
    now: Optional[datetime] = None,
) -> None:
    """Store freshly computed calendar state.

    ``days_remaining`` is always a recomputed value; it is never decremented
    in place.
    """
    if days_remaining < 0:
        raise InvalidArgumentError(
            f"{symbol}: days_remaining must be >= 0, got {days_remaining}",
            argument="days_remaining",
        )
    _write(
        """UPDATE contracts
           SET days_remaining = ?, expiration_date = ?, is_expiration_week = ?,
               daily_volatility = ?, updated_at = ?
           WHERE symbol = ?""",
        (
            days_remaining,
            expiration_date.isoformat(),
            int(is_expiration_week),
            daily_volatility,
            _now_ts(now),
            symbol,
        ),
    )


def set_contract_forecast_iv(symbol: str, forecast_iv: float) -> None:
    """Remember the last model output; it seeds the next night's forecast."""
    _check_iv(forecast_iv, "forecast_iv")
    _write(
        "UPDATE contracts SET forecast_iv = ? WHERE symbol = ?",
        (forecast_iv, symbol),
    )


def set_contract_iv(
    symbol: str,
    weekly_iv: Optional[float] = None,
    daily_iv: Optional[float] = None,
    clear_daily: bool = False,
    now: Optional[datetime] = None,
) -> Contract:
    """Set the weekly IV and/or the daily IV override for *symbol*.

    ``clear_daily=True`` removes the daily override so the weekly IV is used
    again.  Returns the updated contract.
    """
    get_contract_spec(symbol)
    if weekly_iv is not None:
        _check_iv(weekly_iv, "weekly_iv")
    if daily_iv is not None:
        _check_iv(daily_iv, "daily_iv")

    conn = _get_conn()
    try:
        ts = _now_ts(now)
        if weekly_iv is not None:
            conn.execute(
                "UPDATE contracts SET weekly_iv = ?, updated_at = ? WHERE symbol = ?",
                (weekly_iv, ts, symbol),
            )
        if daily_iv is not None or clear_daily:
            conn.execute(
                "UPDATE contracts SET daily_iv = ?, updated_at = ? WHERE symbol = ?",
                (None if clear_daily else daily_iv, ts, symbol),
            )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

    contract = get_contract(symbol)
    assert contract is not None
    return contract


# ---------------------------------------------------------------------------
# Historical daily moves (append-only)
# ---------------------------------------------------------------------------


def insert_daily_record(
    record: ExpectedMoveRecord, now: Optional[datetime] = None
) -> ExpectedMoveRecord:
    """Insert *record*; raise ``DuplicateRecordError`` if (symbol, date) exists.

    The existence check and the insert are one statement, so two concurrent
    jobs cannot both create a row for the same key.
    """
    created_at = _now_ts(now)
    conn = _get_conn()
    try:
        inserted = conn.execute(
            """INSERT INTO historical_daily_moves
               (symbol, trade_date, last_price, previous_close, annualized_iv,
                forecast_iv, horizon_volatility, expected_high, expected_low,
                model, days_remaining, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT (symbol, trade_date) DO NOTHING""",
            (
                record.symbol,
                record.trade_date.isoformat(),
                record.last_price,
                record.previous_close,
                record.annualized_iv,
                record.forecast_iv,
                record.horizon_volatility,
                record.expected_high,
                record.expected_low,
                record.model,
                record.days_remaining,
                created_at,
            ),
        ).rowcount
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

    if inserted == 0:
        raise DuplicateRecordError(
            f"Expected move for {record.symbol} on {record.trade_date} already exists",
            symbol=record.symbol,
            trade_date=record.trade_date.isoformat(),
        )
    stored = get_daily_record(record.symbol, record.trade_date)
    assert stored is not None
    return stored


def get_daily_record(symbol: str, trade_date: date) -> Optional[ExpectedMoveRecord]:
    row = _query_one(
        "SELECT * FROM historical_daily_moves WHERE symbol = ? AND trade_date = ?",
        (symbol, trade_date.isoformat()),
    )
    return _row_to_record(row) if row else None


def list_daily_records(
    symbol: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: Optional[int] = None,
) -> list[ExpectedMoveRecord]:
    """Return records newest first, optionally filtered by symbol and date range."""
    clauses, params = [], []
    if symbol:
        clauses.append("symbol = ?")
        params.append(symbol)
    if start:
        clauses.append("trade_date >= ?")
        params.append(start.isoformat())
    if end:
        clauses.append("trade_date <= ?")
        params.append(end.isoformat())

    sql = "SELECT * FROM historical_daily_moves"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY trade_date DESC, symbol"
    if limit:
        sql += " LIMIT ?"
        params.append(int(limit))
    return [_row_to_record(r) for r in _query(sql, tuple(params))]


def record_actual_close(
    symbol: str, trade_date: date, actual_close: float
) -> ExpectedMoveRecord:
    """Attach the realised close to a stored prediction.

    ``within_range`` is computed from the stored band.  A record can be
    graded only once; a second patch raises ``DuplicateRecordError``.
    """
    existing = get_daily_record(symbol, trade_date)
    if existing is None:
        raise InvalidArgumentError(
            f"No expected move for {symbol} on {trade_date}",
            argument="trade_date",
            context={"symbol": symbol, "trade_date": trade_date.isoformat()},
        )

    within = existing.expected_low <= actual_close <= existing.expected_high
    updated = _write(
        """UPDATE historical_daily_moves
           SET actual_close = ?, within_range = ?
           WHERE symbol = ? AND trade_date = ? AND actual_close IS NULL""",
        (actual_close, int(within), symbol, trade_date.isoformat()),
    )
    if updated == 0:
        raise DuplicateRecordError(
            f"Actual close for {symbol} on {trade_date} already recorded",
            symbol=symbol,
            trade_date=trade_date.isoformat(),
        )
    logger.info(
        "Actual close %s %s = %.4f (%s)",
        symbol,
        trade_date,
        actual_close,
        "within range" if within else "outside range",
    )
    stored = get_daily_record(symbol, trade_date)
    assert stored is not None
    return stored


# ---------------------------------------------------------------------------
# Weekly expected moves (one row per symbol)
# ---------------------------------------------------------------------------


def get_weekly_moves(symbol: str) -> Optional[WeeklyExpectedMoves]:
    row = _query_one("SELECT * FROM weekly_expected_moves WHERE symbol = ?", (symbol,))
    return _row_to_weekly(row) if row else None


def list_weekly_moves() -> list[WeeklyExpectedMoves]:
    rows = _query("SELECT * FROM weekly_expected_moves ORDER BY symbol")
    return [_row_to_weekly(r) for r in rows]


def replace_weekly_moves(
    moves: WeeklyExpectedMoves, now: Optional[datetime] = None
) -> WeeklyExpectedMoves:
    """Create or replace the single weekly row for ``moves.symbol``."""
    missing = [day for day in WEEKDAYS if day not in moves.days]
    if missing:
        raise InvalidArgumentError(
            f"{moves.symbol}: weekly moves missing days {missing}",
            argument="days",
        )

    band_cols = [f"{day}_{part}" for day in WEEKDAYS for part in ("high", "low", "close")]
    band_vals = []
    for day in WEEKDAYS:
        band = moves.days[day]
        band_vals.extend([band.expected_high, band.expected_low, band.actual_close])

    columns = ["symbol", "week_start", "week_open_price", "annualized_iv", *band_cols, "updated_at"]
    values = (
        moves.symbol,
        moves.week_start.isoformat(),
        moves.week_open_price,
        moves.annualized_iv,
        *band_vals,
        _now_ts(now),
    )
    assignments = ", ".join(f"{c} = excluded.{c}" for c in columns[1:])
    _write(
        f"""INSERT INTO weekly_expected_moves ({", ".join(columns)})
            VALUES ({", ".join("?" for _ in columns)})
            ON CONFLICT (symbol) DO UPDATE SET {assignments}""",
        values,
    )
    stored = get_weekly_moves(moves.symbol)
    assert stored is not None
    return stored


def update_weekly_actual_close(
    symbol: str, weekday: str, actual_close: float, now: Optional[datetime] = None
) -> WeeklyExpectedMoves:
    """Patch one day's realised close into the current weekly row."""
    day = weekday.lower()
    if day not in WEEKDAYS:
        raise InvalidArgumentError(
            f"Unknown weekday {weekday!r}; expected one of {WEEKDAYS}",
            argument="weekday",
        )
    updated = _write(
        f"UPDATE weekly_expected_moves SET {day}_close = ?, updated_at = ? WHERE symbol = ?",
        (actual_close, _now_ts(now), symbol),
    )
    if updated == 0:
        raise InvalidArgumentError(
            f"No weekly expected moves stored for {symbol}",
            argument="symbol",
        )
    stored = get_weekly_moves(symbol)
    assert stored is not None
    return stored


# ---------------------------------------------------------------------------
# IV update history
# ---------------------------------------------------------------------------


def get_iv_update(symbol: str, update_date: date) -> Optional[IvUpdate]:
    row = _query_one(
        "SELECT * FROM iv_updates WHERE symbol = ? AND update_date = ?",
        (symbol, update_date.isoformat()),
    )
    return _row_to_iv_update(row) if row else None


def list_iv_updates(symbol: Optional[str] = None) -> list[IvUpdate]:
    if symbol:
        rows = _query(
            "SELECT * FROM iv_updates WHERE symbol = ? ORDER BY update_date DESC",
            (symbol,),
        )
    else:
        rows = _query("SELECT * FROM iv_updates ORDER BY update_date DESC, symbol")
    return [_row_to_iv_update(r) for r in rows]


def record_iv_update(
    symbol: str,
    weekly_iv: float,
    update_date: date,
    overwrite: bool = False,
    source: str = "manual",
    now: Optional[datetime] = None,
) -> dict:
    """Record a manual weekly IV entry and apply it to the contract.

    Returns ``{"status": "created" | "updated" | "conflict", ...}``.  A second
    entry for the same (symbol, date) is reported as a conflict, carrying the
    existing value, unless ``overwrite`` is True.
    """
    get_contract_spec(symbol)
    _check_iv(weekly_iv)

    existing = get_iv_update(symbol, update_date)
    if existing is not None and not overwrite:
        return {
            "status": "conflict",
            "symbol": symbol,
            "existing_iv": existing.weekly_iv,
            "requested_iv": weekly_iv,
        }

    ts = _now_ts(now)
    conn = _get_conn()
    try:
        if existing is None:
            conn.execute(
                """INSERT INTO iv_updates (symbol, update_date, weekly_iv, source, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (symbol, update_date.isoformat(), weekly_iv, source, ts),
            )
        else:
            conn.execute(
                """UPDATE iv_updates SET weekly_iv = ?, source = ?, created_at = ?
                   WHERE symbol = ? AND update_date = ?""",
                (weekly_iv, source, ts, symbol, update_date.isoformat()),
            )
        conn.execute(
            "UPDATE contracts SET weekly_iv = ?, updated_at = ? WHERE symbol = ?",
            (weekly_iv, ts, symbol),
        )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

    status = "created" if existing is None else "updated"
    logger.info("IV %s for %s on %s: %.4f", status, symbol, update_date, weekly_iv)
    return {"status": status, "symbol": symbol, "weekly_iv": weekly_iv}


def batch_update_iv(
    updates: dict[str, float],
    update_date: date,
    overwrite: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    """Apply several IV entries at once.

    Without ``overwrite``, nothing is written if any symbol already has an
    entry for *update_date*; the conflicts are returned for confirmation.
    """
    for symbol, iv in updates.items():
        get_contract_spec(symbol)
        _check_iv(iv)

    if not overwrite:
        conflicts = []
        for symbol, iv in updates.items():
            existing = get_iv_update(symbol, update_date)
            if existing is not None:
                conflicts.append(
                    {"symbol": symbol, "existing_iv": existing.weekly_iv, "requested_iv": iv}
                )
        if conflicts:
            return {"status": "conflict", "conflicts": conflicts, "applied": []}

    applied = [
        record_iv_update(symbol, iv, update_date, overwrite=True, now=now)
        for symbol, iv in updates.items()
    ]
    return {"status": "applied", "conflicts": [], "applied": applied}


# ---------------------------------------------------------------------------
# Scheduler state
# ---------------------------------------------------------------------------

_STATE_KEYS = ("last_daily_run", "last_weekly_run")


def load_scheduler_state() -> SchedulerState:
    rows = [_row_to_dict(r) for r in _query("SELECT key, value FROM scheduler_state")]
    values = {r["key"]: r["value"] for r in rows}
    return SchedulerState(
        last_daily_run=_parse_date(values.get("last_daily_run")),
        last_weekly_run=_parse_date(values.get("last_weekly_run")),
    )


def save_scheduler_state(state: SchedulerState) -> None:
    conn = _get_conn()
    try:
        for key in _STATE_KEYS:
            value = getattr(state, key)
            conn.execute(
                """INSERT INTO scheduler_state (key, value) VALUES (?, ?)
                   ON CONFLICT (key) DO UPDATE SET value = excluded.value""",
                (key, value.isoformat() if value else None),
            )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

