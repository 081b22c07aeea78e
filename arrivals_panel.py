"""
arrivals_panel.py
Daily arrivals panel: loading, cadence checks, per-country series, k-NN imputation.

The panel is wide: one row per day, one arrival-count column per country.
Missing days and unreadable counts stay explicit NaN until a pair of series
is imputed for a scan.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.impute import KNNImputer

logger = logging.getLogger(__name__)

DEFAULT_NEIGHBORS = 5


# ---------------------------
# Loading
# ---------------------------

def load_csv(path: str) -> pd.DataFrame:
    """Universal CSV loader: read + lowercase column names."""
    df = pd.read_csv(path, low_memory=False)
    df.columns = df.columns.str.lower().str.strip()
    return df


def long_to_wide(df: pd.DataFrame, date_col: str = "date",
                 country_col: str = "country", value_col: str = "arrivals") -> pd.DataFrame:
    """Pivot (date, country, arrivals) rows into one column per country."""
    for col in (date_col, country_col, value_col):
        if col not in df.columns:
            raise KeyError(f"column '{col}' not found; available: {list(df.columns)}")

    tmp = df[[date_col, country_col, value_col]].copy()
    tmp[country_col] = tmp[country_col].astype("string").str.lower().str.strip()
    tmp[value_col] = pd.to_numeric(tmp[value_col], errors="coerce")

    wide = tmp.pivot_table(index=date_col, columns=country_col, values=value_col,
                           aggfunc=lambda s: s.sum(min_count=1))
    wide.columns = [str(c) for c in wide.columns]
    return wide.reset_index()


# ---------------------------
# Panel
# ---------------------------

def build_panel(df: pd.DataFrame, date_col: str = "date",
                countries: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """
    Validate and normalise a wide arrivals table into a daily panel.

    - unparseable or duplicate dates are rejected
    - rows are sorted and reindexed to a full daily range, so calendar gaps
      become explicit NaN rows
    - country columns are coerced to numeric (bad or infinite entries -> NaN)

    Returns:
        DataFrame indexed by date (DatetimeIndex, daily freq), one column per country
    """
    if date_col not in df.columns:
        raise KeyError(f"date column '{date_col}' not found; available: {list(df.columns)}")

    panel = df.copy()
    panel[date_col] = pd.to_datetime(panel[date_col], errors="coerce")

    bad_dates = int(panel[date_col].isna().sum())
    if bad_dates:
        raise ValueError(f"{bad_dates} rows have an unparseable '{date_col}'")

    dupes = panel[date_col].duplicated()
    if dupes.any():
        first = panel.loc[dupes, date_col].iloc[0].date()
        raise ValueError(f"{int(dupes.sum())} duplicate dates in panel (first: {first})")

    if countries is None:
        countries = [c for c in panel.columns if c != date_col]
    countries = list(countries)
    missing_cols = [c for c in countries if c not in panel.columns]
    if missing_cols:
        raise KeyError(f"countries not in data: {missing_cols}")

    panel = panel.set_index(date_col).sort_index()[countries].copy()
    for col in countries:
        panel[col] = pd.to_numeric(panel[col], errors="coerce").replace([np.inf, -np.inf], np.nan)

    full_range = pd.date_range(panel.index.min(), panel.index.max(), freq="D")
    n_gaps = len(full_range) - len(panel)
    if n_gaps:
        logger.info("Reindexing panel: %d missing calendar days added as NaN", n_gaps)
    panel = panel.reindex(full_range)
    panel.index.name = date_col
    return panel


def country_series(panel: pd.DataFrame, country: str) -> pd.Series:
    """One country's daily arrivals as a date-indexed Series."""
    if country not in panel.columns:
        raise KeyError(f"country '{country}' not in panel; available: {list(panel.columns)}")
    return panel[country].astype(float).rename(country)


# ---------------------------
# Imputation
# ---------------------------

def knn_impute_pair(source: pd.Series, target: pd.Series,
                    n_neighbors: int = DEFAULT_NEIGHBORS) -> Tuple[pd.Series, pd.Series]:
    """
    Fill missing values in two aligned series with a joint KNN imputer.

    Each day is a sample with two features (source, target); a missing value
    is estimated from the n_neighbors most similar days, distance-weighted.
    Deterministic for fixed input and n_neighbors.
    """
    if not source.index.equals(target.index):
        raise ValueError("source and target must share the same date index")

    for s in (source, target):
        if s.notna().sum() == 0:
            raise ValueError(f"series '{s.name}' has no observed values to impute from")

    pair = pd.concat([source.rename("source"), target.rename("target")], axis=1).astype(float)
    n_missing = int(pair.isna().sum().sum())
    if n_missing == 0:
        return source.astype(float).copy(), target.astype(float).copy()

    knn = KNNImputer(n_neighbors=n_neighbors, weights="distance")
    filled = knn.fit_transform(pair.to_numpy())
    logger.debug("KNN imputed %d cells for %s/%s", n_missing, source.name, target.name)

    src = pd.Series(filled[:, 0], index=source.index, name=source.name)
    tgt = pd.Series(filled[:, 1], index=target.index, name=target.name)
    return src, tgt


# ---------------------------
# Quality report
# ---------------------------

def missing_report(panel: pd.DataFrame) -> pd.DataFrame:
    """Missing count and percentage per country, most missing first."""
    report = pd.DataFrame({
        "Count": panel.isnull().sum(),
        "Pct": (panel.isnull().mean() * 100).round(2),
    })
    return report.sort_values(["Pct", "Count"], ascending=False)


def print_quality_report(panel: pd.DataFrame) -> None:
    print("\n" + "=" * 70)
    print("📊 Arrivals panel quality report")
    print("=" * 70)
    print(f"Days: {len(panel):,} | Countries: {panel.shape[1]}")
    if len(panel):
        print("Date range:", panel.index.min().date(), "→", panel.index.max().date())

    missing = missing_report(panel).query("Count > 0")
    print("\nMissing values:")
    print(missing.to_string() if not missing.empty else "  (none)")


def numeric_countries(panel: pd.DataFrame) -> List[str]:
    return [c for c in panel.columns if pd.api.types.is_numeric_dtype(panel[c])
            and np.isfinite(panel[c]).any()]
