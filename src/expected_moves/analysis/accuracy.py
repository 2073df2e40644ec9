"""
Accuracy analytics for stored expected-move predictions.

Only records with an ``actual_close`` attached count as graded.  A hit is a
close inside the predicted [low, high] band.

    df = records_frame(db.list_daily_records())
    summary = accuracy_summary(df)
    # summary.loc["/ES", "hit_rate"] -> 0.71
"""

import logging
from typing import Iterable, Union

import numpy as np
import pandas as pd

from expected_moves.core.models import ExpectedMoveRecord

logger = logging.getLogger("accuracy")

_RECORD_COLUMNS = [
    "symbol",
    "trade_date",
    "model",
    "last_price",
    "annualized_iv",
    "forecast_iv",
    "expected_low",
    "expected_high",
    "actual_close",
    "within_range",
]

_SUMMARY_COLUMNS = ["graded", "hits", "hit_rate", "mean_range_width", "mean_abs_miss"]


def records_frame(records: Iterable[ExpectedMoveRecord]) -> pd.DataFrame:
    """Records as a DataFrame sorted by (symbol, trade_date), plus range width."""
    rows = [{col: getattr(r, col) for col in _RECORD_COLUMNS} for r in records]
    df = pd.DataFrame(rows, columns=_RECORD_COLUMNS)
    if df.empty:
        df["range_width"] = pd.Series(dtype=float)
        return df
    df["range_width"] = df["expected_high"] - df["expected_low"]
    return df.sort_values(["symbol", "trade_date"]).reset_index(drop=True)


def _abs_miss(df: pd.DataFrame) -> pd.Series:
    """Distance from the close to the nearest band edge (0 inside the band)."""
    above = (df["actual_close"] - df["expected_high"]).clip(lower=0)
    below = (df["expected_low"] - df["actual_close"]).clip(lower=0)
    return above + below


def accuracy_summary(
    records: Union[pd.DataFrame, Iterable[ExpectedMoveRecord]],
) -> pd.DataFrame:
    """Per-symbol hit statistics over graded predictions.

    Columns: graded, hits, hit_rate, mean_range_width, mean_abs_miss.
    Symbols with no graded record are omitted.
    """
    df = records if isinstance(records, pd.DataFrame) else records_frame(records)
    graded = df[df["actual_close"].notna()].copy()
    if graded.empty:
        return pd.DataFrame(columns=_SUMMARY_COLUMNS, index=pd.Index([], name="symbol"))

    graded["hit"] = (graded["actual_close"] >= graded["expected_low"]) & (
        graded["actual_close"] <= graded["expected_high"]
    )
    graded["abs_miss"] = _abs_miss(graded)
    graded["range_width"] = graded["expected_high"] - graded["expected_low"]

    summary = graded.groupby("symbol").agg(
        graded=("hit", "size"),
        hits=("hit", "sum"),
        mean_range_width=("range_width", "mean"),
        mean_abs_miss=("abs_miss", "mean"),
    )
    summary["hits"] = summary["hits"].astype(int)
    summary["hit_rate"] = np.where(
        summary["graded"] > 0, summary["hits"] / summary["graded"], np.nan
    )
    logger.debug("Accuracy over %d graded predictions", len(graded))
    return summary[_SUMMARY_COLUMNS]
