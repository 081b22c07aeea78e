"""
lag_scan.py
Per-day best-lag scan between country arrival series.

For a target country, every source country is paired with it, the pair is
KNN-imputed, and the best lag (0..max_lag days) is found for each trailing
window. Results are written as CSV for the plotting / modelling notebooks.

Output: outputs/lag_scan/lag_scan_<target>.csv
        outputs/lag_scan/lag_summary_<target>.csv

Usage:
    python lag_scan.py --data arrivals.csv --target greece --max-lag 20 --window 30

Environment:
    ARRIVALS_DATA_PATH  default input CSV
    LAG_SCAN_OUTDIR     default output directory
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from arrivals_panel import (
    DEFAULT_NEIGHBORS,
    build_panel,
    country_series,
    knn_impute_pair,
    load_csv,
    long_to_wide,
    numeric_countries,
    print_quality_report,
)
from lag_correlation import LagScanError, scan

logger = logging.getLogger(__name__)


# ---------------------------
# Config
# ---------------------------

DATA_PATH = os.getenv("ARRIVALS_DATA_PATH", "arrivals.csv")
DEFAULT_OUTPUT_DIR = Path(os.getenv("LAG_SCAN_OUTDIR", str(Path("outputs") / "lag_scan")))

MAX_LAG = 20        # days
WINDOW_SIZE = 30    # rows per trailing window

RESULT_COLUMNS = ["source", "target", "start_row", "date", "lag",
                  "correlation", "p_value", "n_obs"]


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


# ---------------------------
# Scanning
# ---------------------------

def scan_pair(panel: pd.DataFrame, source: str, target: str,
              max_lag: int = MAX_LAG, window_size: int = WINDOW_SIZE,
              n_neighbors: int = DEFAULT_NEIGHBORS) -> Tuple[pd.DataFrame, Optional[int], Optional[str]]:
    """
    Best lag per trailing window for one (source, target) pair.

    Returns:
        (results, stopped_at, stop_reason) where results has RESULT_COLUMNS and
        `date` is the last day of each window
    """
    src, tgt = knn_impute_pair(country_series(panel, source),
                               country_series(panel, target),
                               n_neighbors=n_neighbors)

    lag_scan = scan(src.to_numpy(), tgt.to_numpy(), max_lag=max_lag,
                    window_size=window_size, dataset_length=len(panel))

    dates = panel.index
    rows = []
    for res in lag_scan:
        rows.append({
            "source": source,
            "target": target,
            "start_row": res.start_row,
            "date": dates[res.start_row + window_size - 1],
            "lag": res.lag,
            "correlation": res.correlation,
            "p_value": res.p_value,
            "n_obs": res.n_obs,
        })

    results = pd.DataFrame(rows, columns=RESULT_COLUMNS)
    logger.info("%s → %s: %d windows scored", source, target, len(results))
    if lag_scan.stopped_at is not None:
        logger.warning("%s → %s: scan stopped at row %d (%s)",
                       source, target, lag_scan.stopped_at, lag_scan.stop_reason)
    return results, lag_scan.stopped_at, lag_scan.stop_reason


def scan_panel(panel: pd.DataFrame, target: str, sources: Optional[Iterable[str]] = None,
               max_lag: int = MAX_LAG, window_size: int = WINDOW_SIZE,
               n_neighbors: int = DEFAULT_NEIGHBORS) -> pd.DataFrame:
    """Run scan_pair for each source against the target (all other countries by default)."""
    if target not in panel.columns:
        raise KeyError(f"target '{target}' not in panel; available: {list(panel.columns)}")

    if sources is None:
        sources = [c for c in numeric_countries(panel) if c != target]
    sources = list(sources)

    frames: List[pd.DataFrame] = []
    for source in sources:
        if source == target:
            logger.warning("Skipping %s: source equals target", source)
            continue
        results, _, _ = scan_pair(panel, source, target, max_lag=max_lag,
                                  window_size=window_size, n_neighbors=n_neighbors)
        frames.append(results)

    if not frames:
        return pd.DataFrame(columns=RESULT_COLUMNS)
    return pd.concat(frames, ignore_index=True)


def summarise_lags(results: pd.DataFrame) -> pd.DataFrame:
    """Modal lag, median lag and mean winning correlation per source country."""
    cols = ["source", "target", "windows", "modal_lag", "median_lag", "mean_correlation"]
    if results.empty:
        return pd.DataFrame(columns=cols)

    summary = (
        results.groupby(["source", "target"], as_index=False)
        .agg(windows=("lag", "size"),
             modal_lag=("lag", lambda s: int(s.mode().min())),
             median_lag=("lag", "median"),
             mean_correlation=("correlation", "mean"))
    )
    return summary.sort_values("mean_correlation", ascending=False).reset_index(drop=True)[cols]


# ---------------------------
# Main
# ---------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Best lag between country arrival series, per trailing window"
    )
    parser.add_argument("--data", type=str, default=DATA_PATH, help="Input CSV")
    parser.add_argument("--date-col", type=str, default="date", help="Date column")
    parser.add_argument("--target", type=str, required=True, help="Target country column")
    parser.add_argument("--sources", type=str, nargs="*", default=None,
                        help="Source country columns (default: all other countries)")
    parser.add_argument("--max-lag", type=int, default=MAX_LAG, help="Largest lag in days")
    parser.add_argument("--window", type=int, default=WINDOW_SIZE, help="Trailing window size in rows")
    parser.add_argument("--neighbors", type=int, default=DEFAULT_NEIGHBORS, help="k for KNN imputation")
    parser.add_argument("--long", action="store_true",
                        help="Input is long format (date, country, arrivals)")
    parser.add_argument("--country-col", type=str, default="country", help="Country column (long format)")
    parser.add_argument("--value-col", type=str, default="arrivals", help="Arrivals column (long format)")
    parser.add_argument("--outdir", type=str, default=str(DEFAULT_OUTPUT_DIR), help="Output directory")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    # column names are lower-cased by load_csv
    date_col = args.date_col.lower().strip()
    target = args.target.lower().strip()
    sources = [s.lower().strip() for s in args.sources] if args.sources else None

    print("=" * 70)
    print(f"🚀 Lag scan | target: {target} | max lag: {args.max_lag} | window: {args.window}")
    print("=" * 70)

    try:
        df = load_csv(args.data)
        if args.long:
            df = long_to_wide(df, date_col=date_col,
                              country_col=args.country_col.lower().strip(),
                              value_col=args.value_col.lower().strip())
        panel = build_panel(df, date_col=date_col)
        print_quality_report(panel)

        results = scan_panel(panel, target, sources=sources, max_lag=args.max_lag,
                             window_size=args.window, n_neighbors=args.neighbors)
    except (OSError, KeyError, ValueError, LagScanError) as e:
        logger.error("❌ Lag scan failed: %s", e)
        return 1

    output_dir = Path(args.outdir)
    output_dir.mkdir(parents=True, exist_ok=True)

    summary = summarise_lags(results)
    scan_file = output_dir / f"lag_scan_{target}.csv"
    summary_file = output_dir / f"lag_summary_{target}.csv"
    results.to_csv(scan_file, index=False)
    summary.to_csv(summary_file, index=False)

    print("\nBest-lag summary:")
    print(summary.to_string(index=False) if not summary.empty else "  (no windows scored)")
    print(f"\n✓ Saved: {scan_file}")
    print(f"✓ Saved: {summary_file}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
