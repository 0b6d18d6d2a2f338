"""Shared test fixtures for the ratchet validation toolkit test suite.

Provides a deterministic toy simulator that satisfies the SimulatorHandle
protocol without any physics:

    ToySimulator(particle_count, seed)
        Options: "muHigh" (drive), "gridSize", "lS", "metaLayers".

        Base field: quadrants 0 and 3 hold lS, quadrants 1 and 2 hold 0,
        so the decoded logical bits are [1, 0, 0, 1].

        Meta field: starts as an exact copy of the base. perturb() sets
        the first ceil(fraction * cells) cells of the layer to lS - base.
        Every advance() call halves the remaining |meta - base|, so the
        divergence after k calls is (initial divergence) * 0.5**k.

        Entropy production grows linearly: EP = 0.01 * drive * steps,
        naive EP is 10% higher.

        Clock: forward = floor(0.1 * drive * steps) + seed, backward = 0,
        so the net current varies across seeds by exactly the seed.

        Bonds: a chain over the first half of the particles.

        "opK" auxiliary field: 2 interfaces x 4 cells x 3 slots, each
        cell [2, 2, 2] (budget 6).
"""

import math

import numpy as np
import pytest

from ratchetkit.base import MoveKind


class ToySimulator:
    def __init__(self, particle_count: int, seed: int):
        self.particle_count = particle_count
        self.seed = seed
        self.options = {"muHigh": 0.2, "gridSize": 4, "lS": 6, "metaLayers": 1}
        self.step = 0
        self.advance_calls = []
        self.perturb_requests = []
        self.break_budget = False
        self._meta = None

    # ---- geometry ----

    @property
    def grid_size(self) -> int:
        return int(self.options["gridSize"])

    def _base(self) -> np.ndarray:
        g = self.grid_size
        idx = np.arange(g * g)
        qx = (idx % g >= g / 2).astype(int)
        qy = (idx // g >= g / 2).astype(int)
        quadrant = qy * 2 + qx
        return np.where((quadrant == 0) | (quadrant == 3), float(self.options["lS"]), 0.0)

    def _ensure_meta(self):
        if self._meta is None:
            layers = int(self.options.get("metaLayers", 0))
            self._meta = np.tile(self._base(), layers)

    # ---- SimulatorHandle ----

    def configure(self, options):
        self.options.update(options)
        self._meta = None

    def advance(self, steps: int):
        self._ensure_meta()
        self.step += steps
        self.advance_calls.append(steps)
        if self._meta.size:
            base = np.tile(self._base(), self._meta.size // self._base().size)
            self._meta = base + (self._meta - base) * 0.5

    def spatial_field(self):
        return self._base()

    def meta_field(self):
        self._ensure_meta()
        return self._meta.copy()

    def meta_edge_field(self):
        return np.zeros(0)

    def auxiliary_field(self, name: str):
        if name != "opK":
            return np.zeros(0)
        tokens = np.full(2 * 4 * 3, 2, dtype=int)
        if self.break_budget:
            tokens[0] = 3
        return tokens

    def bonds(self, threshold: int):
        half = self.particle_count // 2
        edges = []
        for i in range(half - 1):
            edges += [i, i + 1]
        return edges

    def energy_breakdown(self):
        return {"total": -1.0 * self.step}

    def diagnostics(self):
        return {"clock_current": self._clock_fwd() / max(1, self.step)}

    @property
    def drive(self) -> float:
        return float(self.options["muHigh"])

    def ep_exact_total(self) -> float:
        return 0.01 * self.drive * self.step

    def ep_naive_total(self) -> float:
        return 1.1 * self.ep_exact_total()

    def ep_exact_by_move(self):
        total = self.ep_exact_total()
        by_move = [0.0] * len(MoveKind)
        by_move[MoveKind.X] = 0.5 * total
        by_move[MoveKind.CLOCK] = 0.3 * total
        by_move[MoveKind.P5_BASE] = 0.1 * total
        by_move[MoveKind.P5_META] = 0.1 * total
        return by_move

    def ep_naive_by_move(self):
        return [1.1 * v for v in self.ep_exact_by_move()]

    def _clock_fwd(self) -> int:
        return int(math.floor(0.1 * self.drive * self.step)) + self.seed

    def clock_counters(self):
        fwd = self._clock_fwd()
        return fwd, fwd, 0

    def perturb(self, request):
        self._ensure_meta()
        self.perturb_requests.append(request)
        base = self._base()
        cells = base.size
        lo = request.layer * cells
        n = int(math.ceil(request.fraction * cells))
        flipped = float(self.options["lS"]) - base
        self._meta[lo:lo + n] = flipped[:n]


class ToyFactory:
    """Factory that remembers every handle it built."""

    def __init__(self):
        self.handles = []

    def __call__(self, particle_count: int, seed: int) -> ToySimulator:
        handle = ToySimulator(particle_count, seed)
        self.handles.append(handle)
        return handle


# ---- Pytest fixtures ----

@pytest.fixture
def toy_sim():
    """Toy simulator with 10 particles and seed 1."""
    return ToySimulator(10, 1)


@pytest.fixture
def toy_factory():
    return ToyFactory()


@pytest.fixture
def quadrant_field():
    """4x4 field with bits [1, 0, 0, 1] at threshold 6."""
    g = 4
    idx = np.arange(g * g)
    qx = (idx % g >= g / 2).astype(int)
    qy = (idx // g >= g / 2).astype(int)
    quadrant = qy * 2 + qx
    return np.where((quadrant == 0) | (quadrant == 3), 6.0, 0.0)
