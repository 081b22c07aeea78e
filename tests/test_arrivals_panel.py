# tests/test_arrivals_panel.py
"""
Panel + imputation tests
- Daily reindexing makes calendar gaps explicit NaN
- Duplicate / bad dates are rejected
- Long -> wide pivot
- Joint KNN imputation fills every gap, keeps observed values, is deterministic
"""

import numpy as np
import pandas as pd
import pytest

from arrivals_panel import (
    build_panel,
    country_series,
    knn_impute_pair,
    load_csv,
    long_to_wide,
    missing_report,
)

# ---------- Helpers -----------------------------------------------------------

def _wide_frame(n=30, seed=0):
    rng = np.random.default_rng(seed)
    dates = pd.date_range("2016-01-01", periods=n, freq="D")
    return pd.DataFrame({
        "date": dates.strftime("%Y-%m-%d"),
        "greece": rng.poisson(800, n).astype(float),
        "italy": rng.poisson(300, n).astype(float),
    })

# ---------- Panel -------------------------------------------------------------

def test_load_csv_lowercases_columns(tmp_path):
    path = tmp_path / "arrivals.csv"
    path.write_text("Date , Greece,ITALY\n2016-01-01,5,3\n")
    df = load_csv(str(path))
    assert list(df.columns) == ["date", "greece", "italy"]

def test_build_panel_reindexes_gaps_as_missing():
    df = _wide_frame(10).drop(index=[3, 4]).sample(frac=1.0, random_state=1)
    panel = build_panel(df)
    assert len(panel) == 10
    assert panel.index.is_monotonic_increasing
    assert panel.index.to_series().diff().dropna().eq(pd.Timedelta(days=1)).all()
    assert panel.iloc[3:5].isna().all().all()

def test_build_panel_coerces_bad_counts_to_missing():
    df = _wide_frame(5)
    df["greece"] = df["greece"].astype(object)
    df.loc[2, "greece"] = "n/a"
    panel = build_panel(df)
    assert np.isnan(panel["greece"].iloc[2])
    assert panel["greece"].notna().sum() == 4

def test_build_panel_turns_infinite_counts_into_missing():
    df = _wide_frame(5)
    df["greece"] = df["greece"].astype(object)
    df.loc[1, "greece"] = "inf"
    df.loc[3, "italy"] = -np.inf
    panel = build_panel(df)
    assert np.isnan(panel["greece"].iloc[1])
    assert np.isnan(panel["italy"].iloc[3])
    assert np.isfinite(panel.dropna()).all().all()

def test_build_panel_rejects_duplicate_dates():
    df = _wide_frame(5)
    df.loc[4, "date"] = df.loc[3, "date"]
    with pytest.raises(ValueError, match="duplicate"):
        build_panel(df)

def test_build_panel_rejects_unparseable_dates():
    df = _wide_frame(5)
    df.loc[0, "date"] = "not a date"
    with pytest.raises(ValueError):
        build_panel(df)

def test_build_panel_unknown_country():
    with pytest.raises(KeyError):
        build_panel(_wide_frame(5), countries=["greece", "spain"])

def test_long_to_wide_sums_duplicates():
    long_df = pd.DataFrame({
        "date": ["2016-01-01", "2016-01-01", "2016-01-01", "2016-01-02"],
        "country": ["Greece", "Greece", "Italy", "Greece"],
        "arrivals": [10, 5, 7, 3],
    })
    wide = long_to_wide(long_df)
    panel = build_panel(wide)
    assert panel.loc[pd.Timestamp("2016-01-01"), "greece"] == 15
    assert panel.loc[pd.Timestamp("2016-01-01"), "italy"] == 7
    assert np.isnan(panel.loc[pd.Timestamp("2016-01-02"), "italy"])

def test_country_series_unknown_country():
    panel = build_panel(_wide_frame(5))
    with pytest.raises(KeyError):
        country_series(panel, "spain")

def test_missing_report_orders_by_missing_share():
    panel = build_panel(_wide_frame(10).drop(index=[2]))
    panel.loc[panel.index[5], "italy"] = np.nan
    report = missing_report(panel)
    assert report.index[0] == "italy"
    assert report.loc["italy", "Count"] == 2
    assert report.loc["greece", "Pct"] == pytest.approx(10.0)

# ---------- Imputation --------------------------------------------------------

def test_knn_impute_pair_fills_all_and_keeps_observed():
    panel = build_panel(_wide_frame(40, seed=3))
    panel.iloc[[5, 12, 30], 0] = np.nan
    panel.iloc[[7, 12], 1] = np.nan
    src, tgt = knn_impute_pair(panel["greece"], panel["italy"], n_neighbors=5)

    assert src.notna().all() and tgt.notna().all()
    assert src.index.equals(panel.index) and src.name == "greece" and tgt.name == "italy"
    observed = panel["greece"].notna()
    assert np.allclose(src[observed], panel["greece"][observed])
    assert src.iloc[5] >= panel["greece"].min() and src.iloc[5] <= panel["greece"].max()

def test_knn_impute_pair_is_deterministic():
    panel = build_panel(_wide_frame(40, seed=4))
    panel.iloc[[3, 9], 1] = np.nan
    a = knn_impute_pair(panel["greece"], panel["italy"], n_neighbors=3)
    b = knn_impute_pair(panel["greece"], panel["italy"], n_neighbors=3)
    pd.testing.assert_series_equal(a[1], b[1])

def test_knn_impute_pair_without_gaps_returns_copies():
    panel = build_panel(_wide_frame(10))
    src, tgt = knn_impute_pair(panel["greece"], panel["italy"])
    pd.testing.assert_series_equal(src, panel["greece"])
    assert src is not panel["greece"]

def test_knn_impute_pair_rejects_empty_series():
    panel = build_panel(_wide_frame(10))
    panel["italy"] = np.nan
    with pytest.raises(ValueError):
        knn_impute_pair(panel["greece"], panel["italy"])
