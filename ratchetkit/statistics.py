"""Summary statistics for sweep reduction.

All univariate estimators share one contract: non-finite values are
dropped first, and empty (or entirely non-finite) input returns None
instead of raising. A summary row can then still be written when some
seeds produced no usable value -- the missing cell is simply empty.

Paired estimators (mean_abs_diff, spearman) raise ValueError when the two
sequences differ in length; that is a caller bug, not missing data.

Conventions:
    variance   -- population variance (divide by n), matching the
                  per-seed spread reported in the summary tables.
    percentile -- nearest-rank on the sorted finite values, index
                  floor(p * (n - 1)); no interpolation.
    ci         -- fixed normal quantile z = 1.96 unless a sweep
                  overrides it.
    spearman   -- tied values share their average rank.
"""

from __future__ import annotations

import math

import numpy as np

from ratchetkit.rng import XorShift32

Z_95 = 1.96


def _finite(values) -> np.ndarray:
    """Float array of the finite entries; None counts as missing."""
    if isinstance(values, np.ndarray):
        arr = values.astype(np.float64, copy=False).ravel()
    else:
        arr = np.array([np.nan if v is None else v for v in values], dtype=np.float64)
    return arr[np.isfinite(arr)]


def mean(values) -> float | None:
    arr = _finite(values)
    if arr.size == 0:
        return None
    return float(np.mean(arr))


def variance(values, given_mean: float | None = None) -> float | None:
    """Population variance, optionally around a precomputed mean."""
    arr = _finite(values)
    if arr.size == 0:
        return None
    m = float(np.mean(arr)) if given_mean is None else float(given_mean)
    return float(np.mean((arr - m) ** 2))


def std(values, given_mean: float | None = None) -> float | None:
    var = variance(values, given_mean)
    if var is None:
        return None
    return math.sqrt(var)


def median(values) -> float | None:
    """Middle value; average of the two middle values for even counts."""
    arr = np.sort(_finite(values))
    n = arr.size
    if n == 0:
        return None
    mid = n // 2
    if n % 2 == 0:
        return 0.5 * float(arr[mid - 1] + arr[mid])
    return float(arr[mid])


def percentile(values, p: float) -> float | None:
    arr = np.sort(_finite(values))
    n = arr.size
    if n == 0:
        return None
    idx = min(n - 1, max(0, int(math.floor(p * (n - 1)))))
    return float(arr[idx])


def mean_std(values) -> tuple[float | None, float | None]:
    """Return (mean, std) of the finite values, or (None, None)."""
    m = mean(values)
    if m is None:
        return None, None
    return m, std(values, m)


def mean_abs_diff(a, b) -> float:
    """Elementwise mean of |a[i] - b[i]|; 0.0 for empty input."""
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape:
        raise ValueError(
            f"mean_abs_diff needs equal lengths, got {a.size} and {b.size}"
        )
    if a.size == 0:
        return 0.0
    return float(np.mean(np.abs(a - b)))


def nonzero_fraction(values) -> float:
    arr = np.asarray(values).ravel()
    if arr.size == 0:
        return 0.0
    return float(np.count_nonzero(arr)) / arr.size


def ci_half_width(std_value: float | None, n: int, z: float = Z_95) -> float | None:
    """Half-width z * std / sqrt(n) of a normal confidence interval."""
    if std_value is None or n is None or n <= 0 or not math.isfinite(std_value):
        return None
    return z * std_value / math.sqrt(n)


def _average_ranks(arr: np.ndarray) -> np.ndarray:
    """1-based ranks; equal values share the mean of their positions."""
    order = np.argsort(arr, kind="mergesort")
    sorted_vals = arr[order]
    ranks = np.empty(arr.size, dtype=np.float64)
    i = 0
    n = arr.size
    while i < n:
        j = i
        while j + 1 < n and sorted_vals[j + 1] == sorted_vals[i]:
            j += 1
        ranks[order[i:j + 1]] = 0.5 * (i + j) + 1.0
        i = j + 1
    return ranks


def spearman(xs, ys) -> float | None:
    """Spearman rank correlation (Pearson correlation of average ranks).

    Pairs where either value is non-finite are dropped. Returns None
    when fewer than two pairs remain or either rank vector is constant.
    """
    x = np.asarray(xs, dtype=np.float64).ravel()
    y = np.asarray(ys, dtype=np.float64).ravel()
    if x.shape != y.shape:
        raise ValueError(f"spearman needs equal lengths, got {x.size} and {y.size}")
    keep = np.isfinite(x) & np.isfinite(y)
    x = x[keep]
    y = y[keep]
    if x.size < 2:
        return None

    rx = _average_ranks(x)
    ry = _average_ranks(y)
    dx = rx - rx.mean()
    dy = ry - ry.mean()
    denom = math.sqrt(float(np.sum(dx * dx)) * float(np.sum(dy * dy)))
    if denom == 0.0:
        return None
    return float(np.sum(dx * dy)) / denom


def relative_variance(mean_value: float | None, var_value: float | None) -> float | None:
    """var / mean^2; infinite when the mean current is exactly zero."""
    if mean_value is None or var_value is None:
        return None
    if mean_value == 0:
        return math.inf
    return var_value / (mean_value * mean_value)


def tur_ratio(mean_q, var_q, mean_sigma) -> float | None:
    """Thermodynamic uncertainty ratio R = relVar(Q) * <Sigma> / 2.

    The TUR bound states R >= 1 for any current Q in steady state.
    """
    rel = relative_variance(mean_q, var_q)
    if rel is None or mean_sigma is None:
        return None
    return rel * mean_sigma / 2.0


def bootstrap_mean_ci(
    values,
    samples: int = 2000,
    seed: int = 12345,
    alpha: float = 0.05,
) -> tuple[float | None, float | None]:
    """Percentile bootstrap interval for the mean.

    Resampling indices come from XorShift32 so the interval is
    reproducible for a given seed.

    Returns:
        (low, high) at the alpha/2 and 1 - alpha/2 percentiles, or
        (None, None) when there are no finite values.
    """
    arr = _finite(values)
    n = arr.size
    if n == 0 or samples <= 0:
        return None, None
    rng = XorShift32(seed)
    means = np.empty(samples, dtype=np.float64)
    for i in range(samples):
        idx = (rng.draws(n) * n).astype(np.int64)
        means[i] = float(np.mean(arr[idx]))
    return percentile(means, alpha / 2.0), percentile(means, 1.0 - alpha / 2.0)
