"""Connected components of the particle bond graph.

The simulator reports bonds as a flat id list [a0, b0, a1, b1, ...]. This
module folds that list into component statistics with a union-find over
flat parent/size lists: union by size, and a find() that walks to the
root and then relinks every visited node directly to it.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ComponentStats:
    """Component statistics of one bond snapshot.

    component_sizes is sorted largest first and always sums to
    particle_count (isolated particles are singleton components).
    """

    particle_count: int
    edge_count: int
    component_count: int
    largest_component_size: int
    component_sizes: tuple[int, ...]

    def to_dict(self) -> dict:
        return {
            "particle_count": self.particle_count,
            "edge_count": self.edge_count,
            "component_count": self.component_count,
            "largest_component_size": self.largest_component_size,
        }


class UnionFind:
    """Disjoint-set forest over ids 0..n-1."""

    def __init__(self, n: int):
        if n < 0:
            raise ValueError(f"particle count must be >= 0, got {n}")
        self.parent = list(range(n))
        self.size = [1] * n

    def find(self, x: int) -> int:
        parent = self.parent
        root = x
        while parent[root] != root:
            root = parent[root]
        while x != root:
            nxt = parent[x]
            parent[x] = root
            x = nxt
        return root

    def union(self, a: int, b: int) -> bool:
        """Merge the sets of a and b. Returns False if already joined."""
        ra = self.find(a)
        rb = self.find(b)
        if ra == rb:
            return False
        if self.size[ra] < self.size[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        self.size[ra] += self.size[rb]
        return True

    def component_sizes(self) -> list[int]:
        return [self.size[i] for i in range(len(self.parent)) if self.parent[i] == i]


def _flatten_edges(edges, particle_count: int) -> np.ndarray:
    flat = np.asarray(edges if edges is not None else [], dtype=np.int64).ravel()
    if flat.size % 2 != 0:
        raise ValueError(f"edge list must have even length, got {flat.size}")
    if flat.size and (flat.min() < 0 or flat.max() >= particle_count):
        raise ValueError(
            f"edge ids must lie in [0, {particle_count}), "
            f"got range [{int(flat.min())}, {int(flat.max())}]"
        )
    return flat


def graph_stats(particle_count: int, edges) -> ComponentStats:
    """Build the bond graph and summarize its connected components.

    Args:
        particle_count: Number of particles (nodes). Must be >= 0.
        edges: Flat sequence of ids with even length, or an array of
            shape (k, 2). Duplicate edges and self-loops are allowed.

    Returns:
        ComponentStats. edge_count counts listed pairs, duplicates
        included.

    Raises:
        ValueError: negative particle_count, odd-length edge list, or an
            id outside [0, particle_count).
    """
    uf = UnionFind(particle_count)
    flat = _flatten_edges(edges, particle_count)
    for i in range(0, flat.size, 2):
        uf.union(int(flat[i]), int(flat[i + 1]))

    sizes = sorted(uf.component_sizes(), reverse=True)
    return ComponentStats(
        particle_count=particle_count,
        edge_count=flat.size // 2,
        component_count=len(sizes),
        largest_component_size=sizes[0] if sizes else 0,
        component_sizes=tuple(sizes),
    )
