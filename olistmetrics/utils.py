from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt


# -----------------------------
# DataFrame cleaning helpers
# -----------------------------
def standardize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Return a copy with standardized snake_case column names:
    - strip, lower
    - non-word -> underscore
    - trim leading/trailing underscores
    """
    def _clean(c: str) -> str:
        c = str(c).strip().lower()
        c = re.sub(r"[^\w]+", "_", c)
        c = re.sub(r"(^_+|_+$)", "", c)
        return c
    out = df.copy()
    out.columns = [_clean(c) for c in out.columns]
    return out


def trim_strings(df: pd.DataFrame) -> pd.DataFrame:
    """
    Trim whitespace in object columns and coerce common empties to NaN.
    Converts '', 'nan', 'none', 'null' (any case) to NaN.
    """
    out = df.copy()
    obj_cols = out.select_dtypes(include=["object", "string"]).columns
    if len(obj_cols) == 0:
        return out
    empties = r"(?:nan|none|null)?"
    for c in obj_cols:
        # nulls may survive astype(str) as NaN, so they count as blank too
        s = out[c].astype(str).str.strip()
        blank = s.str.fullmatch(empties, case=False).fillna(True).astype(bool)
        out[c] = s.mask(blank | out[c].isna())
    return out


def find_datetime_cols(df: pd.DataFrame) -> List[str]:
    """
    Columns that are already datetime64 or whose names carry a time token
    (order_purchase_timestamp, shipping_limit_date, order_approved_at, ...).
    """
    tokens = ("date", "timestamp", "_at")
    cols = []
    for c in df.columns:
        if pd.api.types.is_datetime64_any_dtype(df[c]):
            cols.append(c)
            continue
        lc = str(c).lower()
        if any(tok in lc for tok in tokens):
            cols.append(c)
    return cols


def coerce_datetimes_inplace(df: pd.DataFrame, dt_cols: Iterable[str]) -> None:
    """
    Parse columns to datetime (UTC), then make them timezone-naive.
    Unparseable values become NaT.
    """
    for c in dt_cols:
        s = pd.to_datetime(df[c], errors="coerce", utc=True)
        df[c] = s.dt.tz_convert("UTC").dt.tz_localize(None)


def numericize(df: pd.DataFrame, cols: Iterable[str]) -> None:
    """Inplace: coerce listed columns to numeric with NaN on errors."""
    for c in cols:
        if c and c in df.columns:
            df[c] = pd.to_numeric(df[c], errors="coerce")


def require_columns(df: pd.DataFrame, cols: Sequence[str], table: str) -> None:
    """Raise ValueError if ``df`` lacks any of ``cols``."""
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ValueError(f"Table '{table}' is missing required columns: {missing}")


# -----------------------------
# Numeric helpers
# -----------------------------
def safe_div(num, den):
    """
    Element-wise ``num / den`` with NaN wherever ``den`` is zero or null.
    A Series numerator always yields a Series, even over a zero scalar.
    """
    num = pd.to_numeric(num, errors="coerce") if isinstance(num, pd.Series) else num
    if isinstance(den, pd.Series):
        den = pd.to_numeric(den, errors="coerce").astype(float)
        return num / den.replace(0, np.nan)
    if den is None or pd.isna(den) or den == 0:
        if isinstance(num, pd.Series):
            return pd.Series(np.nan, index=num.index, dtype=float)
        return np.nan
    return num / den


def ntile(values: pd.Series, n: int) -> pd.Series:
    """
    SQL NTILE(n) OVER (ORDER BY values): 1-based equal-population buckets.

    Ties are broken by original position so the split is deterministic. The
    first ``len % n`` buckets receive one extra member.
    """
    size = len(values)
    if size == 0:
        return pd.Series([], index=values.index, dtype="int64")
    pos = values.rank(method="first").to_numpy(dtype="int64") - 1
    q, rem = divmod(size, n)
    threshold = rem * (q + 1)
    big = pos // (q + 1)
    small = rem + (pos - threshold) // q if q else big
    bucket = np.where(pos < threshold, big, small)
    return pd.Series(bucket + 1, index=values.index, dtype="int64")


def percent_rank(values: pd.Series) -> pd.Series:
    """SQL PERCENT_RANK(): (rank - 1) / (rows - 1), 0 for a single row."""
    size = len(values)
    if size <= 1:
        return pd.Series(0.0, index=values.index)
    return (values.rank(method="min") - 1) / (size - 1)


# -----------------------------
# Plot helper
# -----------------------------
def finish_fig(
    fig: plt.Figure,
    filename: Optional[str] = None,
    *,
    out_dir: Optional[str | Path] = None,
    show: bool = False,
    save: bool = True,
    dpi: int = 150
) -> Optional[Path]:
    """
    Save &/or show a Matplotlib figure, then close it.
    Returns the written path when the figure was saved.
    """
    path = None
    if save and filename:
        path = Path(out_dir if out_dir is not None else ".") / filename
        path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(path, bbox_inches="tight", dpi=dpi)

    if show:
        plt.show()

    plt.close(fig)
    return path
