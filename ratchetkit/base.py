"""Capability interface for the external particle simulator.

The toolkit never imports a simulator. It talks to one through two
protocols:

    SimulatorFactory
        factory(particle_count, seed) -> SimulatorHandle
        Builds one fresh, exclusively-owned simulator run.

    SimulatorHandle
        configure(options)      merge named numeric options; unknown keys
                                are ignored by convention
        advance(steps)          synchronous, all-or-nothing stepping
        spatial_field()         base field, grid_size**2 cells
        meta_field()            stacked meta layers, layers x cells
        meta_edge_field()       stacked per-layer edge weights
        auxiliary_field(name)   any other per-layer array (e.g. tokens)
        bonds(threshold)        flat edge list [a0, b0, a1, b1, ...]
        energy_breakdown()      mapping of named energies
        diagnostics()           mapping of named currents / affinities
        ep_exact_total(), ep_naive_total()
        ep_exact_by_move(), ep_naive_by_move()   indexed by MoveKind
        clock_counters()        (net, forward, backward)
        perturb(request)        out-of-band mutation, fire-and-forget

Anything satisfying these signatures -- an in-process engine, a
subprocess bridge, a network client -- can be swept. The handle is read
only between advance() calls and is dropped once its run's final
readouts are captured.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Mapping, Protocol, Sequence, runtime_checkable

import numpy as np


class MoveKind(IntEnum):
    """Fixed move-category enumeration for per-move entropy production."""

    X = 0
    P1_BASE = 1
    P1_META = 2
    P2_BASE = 3
    P2_META = 4
    P4_BASE = 5
    P4_META = 6
    P5_BASE = 7
    P5_META = 8
    OPK = 9
    CLOCK = 10


REPAIR_MOVES = (MoveKind.P5_BASE, MoveKind.P5_META)


@dataclass(frozen=True)
class PerturbationRequest:
    """Parameters of one perturbation injection.

    region is None for the whole layer, or a mapping such as
    {"region": "stripe", "bin": 3, "bins": 8, "span": 1} or
    {"region": "quadrant", "quadrant": 2}.
    """

    target: str = "metaS"
    layer: int = 0
    fraction: float = 0.3
    mode: str = "randomize"
    seed: int = 0
    region: Mapping[str, float | str] | None = None

    def to_dict(self) -> dict:
        d = {
            "target": self.target,
            "layer": self.layer,
            "frac": self.fraction,
            "mode": self.mode,
            "seed": self.seed,
        }
        if self.region:
            d.update(self.region)
        return d


@runtime_checkable
class SimulatorHandle(Protocol):
    """One live simulator run. See the module docstring for semantics."""

    def configure(self, options: Mapping[str, float]) -> None: ...

    def advance(self, steps: int) -> None: ...

    def spatial_field(self) -> Sequence[float]: ...

    def meta_field(self) -> Sequence[float]: ...

    def meta_edge_field(self) -> Sequence[float]: ...

    def auxiliary_field(self, name: str) -> Sequence[float]: ...

    def bonds(self, threshold: int) -> Sequence[int]: ...

    def energy_breakdown(self) -> Mapping[str, float]: ...

    def diagnostics(self) -> Mapping[str, float]: ...

    def ep_exact_total(self) -> float: ...

    def ep_naive_total(self) -> float: ...

    def ep_exact_by_move(self) -> Sequence[float]: ...

    def ep_naive_by_move(self) -> Sequence[float]: ...

    def clock_counters(self) -> tuple[int, int, int]: ...

    def perturb(self, request: PerturbationRequest) -> None: ...


class SimulatorFactory(Protocol):
    def __call__(self, particle_count: int, seed: int) -> SimulatorHandle: ...


@dataclass
class DiagnosticSnapshot:
    """Scalar readout of a handle at one step."""

    step: int
    energies: dict[str, float] = field(default_factory=dict)
    currents: dict[str, float] = field(default_factory=dict)
    ep_exact: float = 0.0
    ep_naive: float = 0.0
    ep_exact_by_move: list[float] = field(default_factory=list)
    clock_q: int = 0
    clock_fwd: int = 0
    clock_bwd: int = 0

    def ep_for(self, *kinds: MoveKind) -> float:
        """Summed exact EP of the given move categories (missing = 0)."""
        total = 0.0
        for kind in kinds:
            if int(kind) < len(self.ep_exact_by_move):
                total += self.ep_exact_by_move[int(kind)]
        return total


def read_snapshot(handle: SimulatorHandle, step: int) -> DiagnosticSnapshot:
    """Pull every scalar diagnostic from a handle in one go."""
    q, fwd, bwd = handle.clock_counters()
    return DiagnosticSnapshot(
        step=step,
        energies={k: float(v) for k, v in handle.energy_breakdown().items()},
        currents={k: float(v) for k, v in handle.diagnostics().items()},
        ep_exact=float(handle.ep_exact_total()),
        ep_naive=float(handle.ep_naive_total()),
        ep_exact_by_move=[float(v) for v in handle.ep_exact_by_move()],
        clock_q=int(q),
        clock_fwd=int(fwd),
        clock_bwd=int(bwd),
    )


def base_meta_divergence(handle: SimulatorHandle, layer: int = 0) -> float:
    """Mean |base - meta[layer]| over all cells.

    Returns 0.0 when the handle has no meta layer of that index.
    """
    base = np.asarray(handle.spatial_field(), dtype=np.float64).ravel()
    meta = np.asarray(handle.meta_field(), dtype=np.float64).ravel()
    cells = base.size
    lo = layer * cells
    if cells == 0 or meta.size < lo + cells:
        return 0.0
    return float(np.mean(np.abs(base - meta[lo:lo + cells])))
