"""
lag_correlation.py
Best-lag scan between two daily arrival series.

For every trailing window the source country's series is shifted forward by
0..max_lag days and correlated (Pearson) with the target country's series.
The lag with the highest correlation is the estimated travel time between
the two locations for that window.

Inputs are expected to be imputed already (see arrivals_panel.knn_impute_pair).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

import numpy as np
from scipy import stats

logger = logging.getLogger(__name__)


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  ERRORS                                                                  ║
# ╚═══════════════════════════════════════════════════════════════════════════╝

class LagScanError(Exception):
    """Base class for lag-scan failures."""


class InsufficientDataError(LagScanError):
    """The window does not hold enough rows to evaluate every lag."""


class DegenerateSeriesError(LagScanError):
    """A compared slice has zero variance, so its correlation is undefined."""


class NoValidLagError(LagScanError):
    """Every candidate lag in the window was degenerate."""


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  RESULT TYPE                                                             ║
# ╚═══════════════════════════════════════════════════════════════════════════╝

@dataclass(frozen=True)
class LagResult:
    """Winning lag for the window starting at start_row."""
    start_row: int
    lag: int
    correlation: float
    p_value: float = float("nan")
    n_obs: int = 0

    def as_tuple(self):
        return (self.start_row, self.lag, self.correlation)


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  HELPERS                                                                 ║
# ╚═══════════════════════════════════════════════════════════════════════════╝

def _as_array(values: Sequence[float], name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 1:
        raise ValueError(f"{name} must be one-dimensional, got shape {arr.shape}")
    if not np.isfinite(arr).all():
        raise ValueError(f"{name} contains missing or infinite values; impute before scanning")
    return arr


def lagged_correlation(source: np.ndarray, target: np.ndarray, lag: int,
                       first_row: int, window_end: int):
    """
    Pearson correlation of target[first_row..window_end] against the source
    shifted forward by `lag` rows over the same target rows.

    Args:
        source: Source series (imputed)
        target: Target series (imputed)
        lag: Days the source is shifted forward
        first_row: First target row compared (needs first_row - lag >= 0)
        window_end: Last target row compared, inclusive

    Returns:
        (r, p_value, n_obs)

    Raises:
        ValueError: if first_row < lag
        DegenerateSeriesError: if either slice is constant or r is undefined
    """
    if first_row < lag:
        raise ValueError(f"first_row {first_row} is before lag {lag}; "
                         "the shifted source would start at a negative row")

    y = target[first_row:window_end + 1]
    x = source[first_row - lag:window_end + 1 - lag]

    if len(x) < 2 or np.ptp(x) == 0 or np.ptp(y) == 0:
        raise DegenerateSeriesError(
            f"zero variance at lag {lag} over rows {first_row}..{window_end}")

    r, pval = stats.pearsonr(x, y)
    if not np.isfinite(r):
        raise DegenerateSeriesError(
            f"undefined correlation at lag {lag} over rows {first_row}..{window_end}")
    # pearsonr can overshoot by an ulp on perfectly aligned input
    r = float(np.clip(r, -1.0, 1.0))
    return r, float(pval), len(y)


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  BEST LAG                                                                ║
# ╚═══════════════════════════════════════════════════════════════════════════╝

def best_lag(source: Sequence[float], target: Sequence[float], start_row: int,
             max_lag: int, window_end: int) -> LagResult:
    """
    Find the lag in [0, max_lag] with the highest correlation for one window.

    All candidates are compared on the same target rows
    start_row + max_lag .. window_end, so each lag uses the same sample size
    and no shifted source value comes from before start_row.
    Exact ties go to the smallest lag.
    """
    src = _as_array(source, "source")
    tgt = _as_array(target, "target")

    if len(src) != len(tgt):
        raise ValueError(f"source and target lengths differ: {len(src)} != {len(tgt)}")
    if start_row < 0:
        raise ValueError(f"start_row must be >= 0, got {start_row}")
    if max_lag < 0:
        raise ValueError(f"max_lag must be >= 0, got {max_lag}")
    if window_end >= len(src):
        raise InsufficientDataError(
            f"window_end {window_end} is past the last row ({len(src) - 1})")
    if start_row + max_lag > window_end:
        raise InsufficientDataError(
            f"rows {start_row}..{window_end} cannot hold lags up to {max_lag}")

    first_row = start_row + max_lag
    best: Optional[LagResult] = None

    for lag in range(max_lag + 1):
        try:
            r, pval, n_obs = lagged_correlation(src, tgt, lag, first_row, window_end)
        except DegenerateSeriesError as e:
            logger.debug("start_row=%d: skipping lag %d (%s)", start_row, lag, e)
            continue
        # strict '>' keeps the smallest lag on ties
        if best is None or r > best.correlation:
            best = LagResult(start_row, lag, r, pval, n_obs)

    if best is None:
        raise NoValidLagError(
            f"no lag in 0..{max_lag} has a defined correlation for rows "
            f"{start_row}..{window_end}")
    return best


# ╔═══════════════════════════════════════════════════════════════════════════╗
# ║  SCAN                                                                    ║
# ╚═══════════════════════════════════════════════════════════════════════════╝

class LagScan:
    """
    Lazy, restartable sequence of LagResult, one per start_row.

    start_row runs from 1 to dataset_length - window_size; the window for a
    row ends at start_row + window_size - 1. The sequence ends early on the
    first window with no valid lag, and the row and reason are kept in
    `stopped_at` / `stop_reason`. Errors raised before any result was
    produced propagate to the caller.
    """

    def __init__(self, source: Sequence[float], target: Sequence[float],
                 max_lag: int, window_size: int, dataset_length: int):
        self.source = _as_array(source, "source")
        self.target = _as_array(target, "target")
        if len(self.source) != len(self.target):
            raise ValueError(
                f"source and target lengths differ: {len(self.source)} != {len(self.target)}")
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        if dataset_length > len(self.source):
            raise InsufficientDataError(
                f"dataset_length {dataset_length} exceeds series length {len(self.source)}")

        self.max_lag = max_lag
        self.window_size = window_size
        self.dataset_length = dataset_length
        self.stopped_at: Optional[int] = None
        self.stop_reason: Optional[str] = None

    @property
    def last_start_row(self) -> int:
        return self.dataset_length - self.window_size

    def __iter__(self) -> Iterator[LagResult]:
        self.stopped_at = None
        self.stop_reason = None
        produced = 0

        for start_row in range(1, self.last_start_row + 1):
            window_end = start_row + self.window_size - 1
            try:
                result = best_lag(self.source, self.target, start_row,
                                  self.max_lag, window_end)
            except NoValidLagError as e:
                self._stop(start_row, e)
                return
            except (InsufficientDataError, DegenerateSeriesError) as e:
                if produced == 0:
                    raise
                self._stop(start_row, e)
                return
            produced += 1
            yield result

    def _stop(self, start_row: int, error: LagScanError) -> None:
        self.stopped_at = start_row
        self.stop_reason = str(error)
        logger.info("Scan stopped at start_row=%d: %s", start_row, error)

    def to_list(self) -> List[LagResult]:
        return list(self)


def scan(source: Sequence[float], target: Sequence[float], max_lag: int,
         window_size: int, dataset_length: Optional[int] = None) -> LagScan:
    """Best lag for every trailing window of `window_size` rows."""
    if dataset_length is None:
        dataset_length = len(source)
    return LagScan(source, target, max_lag, window_size, dataset_length)
