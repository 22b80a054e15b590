"""
Optional pandas conversion of fetched payloads.

Converts the normalized payloads produced by the fetch core into typed
DataFrames. Empty or absent payloads mean "no dataset" and return None.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import pandas as pd

HISTORY_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume", "adj_close"]

HISTORY_DTYPES = {
    "timestamp": "int64",
    "open": "float64",
    "high": "float64",
    "low": "float64",
    "close": "float64",
    # Provider sends null volumes for halted bars
    "volume": "Int64",
    "adj_close": "float64",
}


def _typed(df: pd.DataFrame, dtypes: Mapping[str, str]) -> pd.DataFrame:
    return df.astype({col: dtype for col, dtype in dtypes.items() if col in df.columns})


def historical_to_frame(rows: Sequence[Mapping[str, Any]] | None) -> pd.DataFrame | None:
    """OHLCV rows to a DataFrame with a fixed column order.

    adj_close is kept only if at least one row carries it.
    """
    if not rows:
        return None
    df = pd.DataFrame.from_records(list(rows))
    columns = [col for col in HISTORY_COLUMNS if col in df.columns]
    return _typed(df[columns], HISTORY_DTYPES)


def prices_to_frame(prices: Mapping[str, float] | None) -> pd.DataFrame | None:
    """{subject: price} to a two-column DataFrame."""
    if not prices:
        return None
    df = pd.DataFrame({"subject": list(prices.keys()), "price": list(prices.values())})
    return df.astype({"subject": "string", "price": "float64"})


def dividends_splits_to_frames(
    events: Mapping[str, Mapping[str, Any]] | None,
) -> dict[str, pd.DataFrame] | None:
    """Dividend/split event maps to separate DataFrames.

    Dividend columns: timestamp, amount.
    Split columns: timestamp, numerator, denominator.
    Returns None if both are empty.
    """
    if not events:
        return None

    frames: dict[str, pd.DataFrame] = {}

    dividends = events.get("dividends") or {}
    if dividends:
        frames["dividends"] = pd.DataFrame(
            {
                "timestamp": [int(ts) for ts in dividends],
                "amount": [entry.get("amount") for entry in dividends.values()],
            }
        ).astype({"timestamp": "int64", "amount": "float64"})

    splits = events.get("splits") or {}
    if splits:
        frames["splits"] = pd.DataFrame(
            {
                "timestamp": [int(ts) for ts in splits],
                "numerator": [entry.get("numerator") for entry in splits.values()],
                "denominator": [entry.get("denominator") for entry in splits.values()],
            }
        ).astype({"timestamp": "int64", "numerator": "float64", "denominator": "float64"})

    return frames or None


def info_to_frame(info: Mapping[str, Any] | None) -> pd.DataFrame | None:
    """Instrument metadata to a single-row DataFrame."""
    if not info:
        return None
    return pd.DataFrame([dict(info)])


def multi_subject_historical_to_frame(
    histories: Mapping[str, Sequence[Mapping[str, Any]] | None],
) -> pd.DataFrame | None:
    """Combine per-subject OHLCV rows into one frame with a subject column.

    Subjects with no rows are skipped; None if nothing remains.
    """
    frames = []
    for subject, rows in histories.items():
        df = historical_to_frame(rows)
        if df is not None:
            frames.append(df.assign(subject=subject))
    if not frames:
        return None
    combined = pd.concat(frames, ignore_index=True)
    columns = ["subject", *[col for col in HISTORY_COLUMNS if col in combined.columns]]
    return _typed(combined[columns], {"subject": "string", **HISTORY_DTYPES})
