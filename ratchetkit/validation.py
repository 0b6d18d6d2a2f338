"""Pass/fail scientific invariants over sweep summaries.

Each check either returns a small result dict describing what it measured
or raises InvariantViolation naming the violated property. There is no
retry and no partial salvage: the first failure aborts the sweep.

Checks:
    check_monotonic    -- count adjacent point pairs that satisfy an
                          ordering predicate on one summary field; when
                          the count is below the minimum, optionally fall
                          back to a Spearman correlation between two
                          summary fields.
    check_tur_bounds   -- thermodynamic uncertainty ratios: every ratio
                          and the median ratio must clear lower bounds.
    check_budget_sums  -- every cell's token allocation sums to the
                          configured budget, with no entry outside
                          [0, budget].
    check_ci_contains  -- a confidence interval around a mean contains a
                          reference value (zero for null-drive EP rates).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from ratchetkit.statistics import median, spearman


class InvariantViolation(RuntimeError):
    """A sweep invariant failed. ``property`` names the invariant."""

    def __init__(self, property: str, message: str):
        super().__init__(f"{property}: {message}")
        self.property = property


_PREDICATES: dict[str, Callable[[float, float], bool]] = {
    "non_decreasing": lambda prev, cur: cur >= prev,
    "non_increasing": lambda prev, cur: cur <= prev,
    "increasing": lambda prev, cur: cur > prev,
    "decreasing": lambda prev, cur: cur < prev,
}


def monotonicity_count(values: Sequence[float | None], predicate: str = "non_decreasing") -> int:
    """Number of adjacent pairs (values[i-1], values[i]) satisfying predicate.

    Pairs with a missing or NaN member never count.
    """
    if predicate not in _PREDICATES:
        raise ValueError(
            f"predicate must be one of {sorted(_PREDICATES)}, got '{predicate}'"
        )
    test = _PREDICATES[predicate]
    count = 0
    for prev, cur in zip(values[:-1], values[1:]):
        if prev is None or cur is None:
            continue
        if math.isnan(prev) or math.isnan(cur):
            continue
        if test(prev, cur):
            count += 1
    return count


@dataclass(frozen=True)
class CorrelationFallback:
    """Spearman fallback between two summary fields.

    Passes when spearman(x, y) > threshold. With invert_y, y is replaced
    by 1 / y (e.g. precision = 1 / relative variance).
    """

    x_field: str
    y_field: str
    threshold: float = 0.7
    invert_y: bool = False


@dataclass(frozen=True)
class MonotonicityCheck:
    """Ordering requirement on one summary field across parameter points.

    min_count of None means every transition must satisfy the predicate.
    """

    field: str
    predicate: str = "non_decreasing"
    min_count: int | None = None
    fallback: CorrelationFallback | None = None


def _invert(values):
    out = []
    for v in values:
        if v is None:
            out.append(None)
        elif v == 0:
            out.append(math.inf)
        else:
            out.append(1.0 / v)
    return out


def check_monotonic(summaries: Sequence, check: MonotonicityCheck) -> dict:
    """Apply a MonotonicityCheck to an ordered list of summaries.

    Each summary must provide ``quantity(field_name)``.

    Returns:
        Dict with field, predicate, count, possible, required, passed,
        used_fallback, correlation.

    Raises:
        InvariantViolation: count below the minimum and no fallback, or
            the fallback correlation is missing or too weak.
    """
    values = [s.quantity(check.field) for s in summaries]
    possible = max(0, len(values) - 1)
    required = possible if check.min_count is None else check.min_count
    count = monotonicity_count(values, check.predicate)
    result = {
        "field": check.field,
        "predicate": check.predicate,
        "count": count,
        "possible": possible,
        "required": required,
        "passed": count >= required,
        "used_fallback": False,
        "correlation": None,
    }
    if result["passed"]:
        return result

    name = f"{check.field} monotonicity"
    if check.fallback is None:
        raise InvariantViolation(name, f"count={count} of {possible}, need {required}")

    fb = check.fallback
    xs = [s.quantity(fb.x_field) for s in summaries]
    ys = [s.quantity(fb.y_field) for s in summaries]
    if fb.invert_y:
        ys = _invert(ys)
    corr = spearman(_nan_for_none(xs), _nan_for_none(ys))
    result["used_fallback"] = True
    result["correlation"] = corr
    if corr is None or not corr > fb.threshold:
        raise InvariantViolation(
            name,
            f"count={count} of {possible}, need {required}; "
            f"spearman({fb.x_field}, {'1/' if fb.invert_y else ''}{fb.y_field})="
            f"{corr} not > {fb.threshold}",
        )
    result["passed"] = True
    return result


def _nan_for_none(values):
    return [math.nan if v is None else v for v in values]


def check_tur_bounds(
    ratios: Sequence[float | None],
    min_ratio: float = 0.6,
    min_median: float = 1.0,
    labels: Sequence | None = None,
) -> dict:
    """Require every TUR ratio >= min_ratio and their median >= min_median."""
    labels = list(labels) if labels is not None else list(range(len(ratios)))
    for label, r in zip(labels, ratios):
        if r is None or not r >= min_ratio:
            raise InvariantViolation("TUR ratio", f"too low at {label}: R={r}, need >= {min_ratio}")
    med = median(ratios)
    if med is None or not med >= min_median:
        raise InvariantViolation("TUR median", f"median R={med}, need >= {min_median}")
    return {"min_ratio": min(ratios) if ratios else None, "median_ratio": med}


def check_budget_sums(tokens, interfaces: int, cells: int, r_count: int, budget: int) -> dict:
    """Check per-cell token allocations against a fixed budget.

    Args:
        tokens: Flat array laid out as interfaces x cells x r_count.
        interfaces: Number of interfaces.
        cells: Cells per interface.
        r_count: Token slots per cell.
        budget: Required per-cell sum.

    Raises:
        InvariantViolation: wrong layout, an entry outside [0, budget],
            or any cell whose slots do not sum to budget.
    """
    tokens = np.asarray(tokens, dtype=np.int64).ravel()
    if r_count <= 0:
        raise InvariantViolation("token layout", f"r_count must be > 0, got {r_count}")
    expected = interfaces * cells * r_count
    if tokens.size != expected:
        raise InvariantViolation(
            "token layout", f"{tokens.size} entries, expected {interfaces}*{cells}*{r_count}"
        )
    if tokens.size and (tokens.min() < 0 or tokens.max() > budget):
        raise InvariantViolation(
            "token range", f"entries span [{tokens.min()}, {tokens.max()}], budget {budget}"
        )
    sums = tokens.reshape(interfaces * cells, r_count).sum(axis=1)
    bad = np.flatnonzero(sums != budget)
    if bad.size:
        i = int(bad[0])
        raise InvariantViolation(
            "budget sum",
            f"{bad.size} cells off budget; interface {i // cells} cell {i % cells} "
            f"sums to {int(sums[i])}, expected {budget}",
        )
    return {"cells_checked": int(sums.size), "budget": budget}


def check_ci_contains(center: float | None, half_width: float | None, value: float = 0.0,
                      max_half_width: float | None = None) -> dict:
    """Require center +/- half_width to contain value (and be narrow enough)."""
    if center is None or half_width is None:
        raise InvariantViolation("confidence interval", "mean or half-width missing")
    low, high = center - half_width, center + half_width
    if not (low <= value <= high):
        raise InvariantViolation(
            "confidence interval", f"[{low:.3g}, {high:.3g}] excludes {value}"
        )
    if max_half_width is not None and half_width > max_half_width:
        raise InvariantViolation(
            "confidence interval", f"half-width {half_width:.3g} > {max_half_width:.3g}"
        )
    return {"low": low, "high": high}
