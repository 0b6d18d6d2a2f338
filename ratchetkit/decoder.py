"""Partial-observation decoding of coarse logical bits from a field.

A square field of grid_size x grid_size cells carries four logical bits,
one per quadrant (split at the horizontal and vertical midlines, quadrant
index = 2 * qy + qx). A bit is 1 when the quadrant's mean value is at
least threshold / 2.

To measure how reconstructible a redundant (meta) copy is, only a random
subset of its cells is observed: each cell is kept independently with
probability ``frac``, using an XorShift32 stream. The decoded bits are
compared against the base field's bits, and the mismatch fraction is
averaged over several independent masks. This is an erasure-channel
benchmark on simulator output, not an inverse of the simulator's own
encoding.

Region helpers restrict the comparison to a vertical stripe or a single
quadrant, which is how localized perturbations are scored.
"""

from __future__ import annotations

import numpy as np

from ratchetkit.rng import XorShift32

N_QUADRANTS = 4
MASK_SEED_STRIDE = 101
DEFAULT_FRACTIONS = (0.25, 0.5, 0.75, 1.0)


def _check_grid(field: np.ndarray, grid_size: int) -> None:
    if grid_size <= 0 or grid_size % 2 != 0:
        raise ValueError(f"quadrant partition needs an even grid_size, got {grid_size}")
    if field.size != grid_size * grid_size:
        raise ValueError(
            f"field has {field.size} cells, expected {grid_size}x{grid_size}"
        )


def make_mask(seed: int, size: int, frac: float) -> np.ndarray:
    """Boolean mask with each position observed with probability frac."""
    rng = XorShift32(seed)
    return rng.draws(size) < frac


def quadrant_index(idx: int, grid_size: int) -> int:
    x = idx % grid_size
    y = idx // grid_size
    qx = 0 if x < grid_size / 2 else 1
    qy = 0 if y < grid_size / 2 else 1
    return qy * 2 + qx


def quadrant_labels(grid_size: int) -> np.ndarray:
    """Quadrant index of every cell in row-major order."""
    idx = np.arange(grid_size * grid_size)
    qx = (idx % grid_size >= grid_size / 2).astype(np.int64)
    qy = (idx // grid_size >= grid_size / 2).astype(np.int64)
    return qy * 2 + qx


def quadrant_means(field, grid_size: int, mask=None) -> np.ndarray:
    """Mean of the observed cells in each quadrant (0.0 if none observed)."""
    field = np.asarray(field, dtype=np.float64).ravel()
    _check_grid(field, grid_size)
    labels = quadrant_labels(grid_size)
    if mask is not None:
        mask = np.asarray(mask, dtype=bool).ravel()
        if mask.size != field.size:
            raise ValueError(f"mask length {mask.size} != field length {field.size}")
        labels = labels[mask]
        field = field[mask]
    sums = np.bincount(labels, weights=field, minlength=N_QUADRANTS)
    counts = np.bincount(labels, minlength=N_QUADRANTS)
    return np.divide(sums, counts, out=np.zeros(N_QUADRANTS), where=counts > 0)


def logical_bits_from_field(field, grid_size: int, threshold: float, mask=None) -> np.ndarray:
    """Decode the four quadrant bits of a field.

    Args:
        field: Flat field of grid_size**2 values.
        grid_size: Side length of the grid. Must be even.
        threshold: Field scale; a bit is set when its quadrant mean is
            >= threshold / 2.
        mask: Optional boolean mask of observed cells, same length as
            the field.

    Returns:
        int array of shape (4,) with entries 0 or 1.
    """
    means = quadrant_means(field, grid_size, mask)
    return (means >= threshold / 2.0).astype(np.int64)


def error_rate(bits_a, bits_b) -> float:
    a = np.asarray(bits_a).ravel()
    b = np.asarray(bits_b).ravel()
    if a.shape != b.shape:
        raise ValueError(f"bit vectors differ in length: {a.size} vs {b.size}")
    if a.size == 0:
        return 0.0
    return float(np.count_nonzero(a != b)) / a.size


def estimate_error_rate(
    base_bits,
    field,
    grid_size: int,
    threshold: float,
    seed: int,
    frac: float,
    trials: int = 20,
    region=None,
) -> float:
    """Average decoding error of ``field`` under random partial observation.

    Trial t observes the field through make_mask(seed + 101 * t, ...). If
    a region mask is given it is intersected with every trial mask.

    Returns:
        Mean error rate against base_bits over all trials (0.0 when
        trials <= 0).
    """
    field = np.asarray(field, dtype=np.float64).ravel()
    if region is not None:
        region = np.asarray(region, dtype=bool).ravel()
    if trials <= 0:
        return 0.0
    acc = 0.0
    for t in range(trials):
        mask = make_mask(seed + t * MASK_SEED_STRIDE, field.size, frac)
        if region is not None:
            mask &= region
        bits = logical_bits_from_field(field, grid_size, threshold, mask)
        acc += error_rate(bits, base_bits)
    return acc / trials


def reconstructibility_curve(
    base_bits,
    field,
    grid_size: int,
    threshold: float,
    seed: int,
    fractions=DEFAULT_FRACTIONS,
    trials: int = 20,
) -> dict[float, float]:
    """Error rate at several observation fractions from one shared stream.

    All masks for all fractions are drawn in sequence from a single
    XorShift32(seed), so the curve as a whole is reproducible from one
    seed.
    """
    field = np.asarray(field, dtype=np.float64).ravel()
    rng = XorShift32(seed)
    curve = {}
    for frac in fractions:
        acc = 0.0
        for _ in range(trials):
            mask = rng.draws(field.size) < frac
            bits = logical_bits_from_field(field, grid_size, threshold, mask)
            acc += error_rate(bits, base_bits)
        curve[float(frac)] = acc / trials if trials > 0 else 0.0
    return curve


def region_mask(
    grid_size: int,
    region: str,
    index: int,
    span: int = 1,
    bins: int | None = None,
) -> np.ndarray:
    """Boolean cell mask for a stripe or quadrant region.

    Args:
        grid_size: Grid side length.
        region: "stripe" (vertical bands of columns) or "quadrant".
        index: Stripe bin or quadrant index.
        span: Number of consecutive stripe bins (wrapping) to include.
        bins: Number of stripe bins; defaults to grid_size.
    """
    cells = grid_size * grid_size
    idx = np.arange(cells)
    if region == "stripe":
        bins = bins or grid_size
        x = idx % grid_size
        stripe = np.minimum(bins - 1, (x * bins) // grid_size)
        wanted = {(index + k) % bins for k in range(max(1, span))}
        return np.isin(stripe, sorted(wanted))
    if region == "quadrant":
        return quadrant_labels(grid_size) == index
    raise ValueError(f"region must be 'stripe' or 'quadrant', got '{region}'")


def mean_abs_diff_region(a, b, mask) -> float:
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    mask = np.asarray(mask, dtype=bool).ravel()
    if not (a.size == b.size == mask.size):
        raise ValueError("field and mask lengths differ")
    if not mask.any():
        return 0.0
    return float(np.mean(np.abs(a[mask] - b[mask])))


def region_error_rate(base_field, meta_field, grid_size: int, threshold: float, mask) -> float:
    """Bit error between base and meta decoded through the same mask."""
    base_bits = logical_bits_from_field(base_field, grid_size, threshold, mask)
    meta_bits = logical_bits_from_field(meta_field, grid_size, threshold, mask)
    return error_rate(meta_bits, base_bits)


def quadrant_mean_error(base_field, meta_field, grid_size: int, threshold: float, mask=None) -> float:
    """Mean |quadrant mean difference|, normalized by the field scale."""
    denom = threshold if threshold > 0 else 1.0
    base = quadrant_means(base_field, grid_size, mask)
    meta = quadrant_means(meta_field, grid_size, mask)
    return float(np.sum(np.abs(base - meta))) / (N_QUADRANTS * denom)


def split_layers(stacked, cells: int) -> list[np.ndarray]:
    """Split a layers x cells stacked field into per-layer views."""
    stacked = np.asarray(stacked).ravel()
    if cells <= 0:
        return []
    if stacked.size % cells != 0:
        raise ValueError(f"stacked field of {stacked.size} is not a multiple of {cells}")
    return [stacked[i * cells:(i + 1) * cells] for i in range(stacked.size // cells)]


class PartialObservationDecoder:
    """Decoder bound to one grid geometry and field scale.

    Example:
        decoder = PartialObservationDecoder(grid_size=8, threshold=20)
        base_bits = decoder.decode(base_field)
        err = decoder.estimate(base_bits, meta_field, seed=7001, frac=0.5)
    """

    def __init__(self, grid_size: int, threshold: float, trials: int = 20):
        if grid_size <= 0 or grid_size % 2 != 0:
            raise ValueError(f"grid_size must be a positive even integer, got {grid_size}")
        self.grid_size = grid_size
        self.threshold = threshold
        self.trials = trials

    def decode(self, field, mask=None) -> np.ndarray:
        return logical_bits_from_field(field, self.grid_size, self.threshold, mask)

    def estimate(self, base_bits, field, seed: int, frac: float, region=None) -> float:
        return estimate_error_rate(
            base_bits, field, self.grid_size, self.threshold,
            seed, frac, trials=self.trials, region=region,
        )

    def curve(self, base_bits, field, seed: int, fractions=DEFAULT_FRACTIONS) -> dict[float, float]:
        return reconstructibility_curve(
            base_bits, field, self.grid_size, self.threshold,
            seed, fractions=fractions, trials=self.trials,
        )
