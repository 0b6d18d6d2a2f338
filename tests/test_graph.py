"""Tests for bond graph connected components."""
import numpy as np
import pytest

from ratchetkit.graph import UnionFind, graph_stats


class TestUnionFind:

    def test_initially_disjoint(self):
        uf = UnionFind(4)
        assert uf.component_sizes() == [1, 1, 1, 1]

    def test_union_returns_whether_merged(self):
        uf = UnionFind(3)
        assert uf.union(0, 1) is True
        assert uf.union(1, 0) is False

    def test_find_relinks_path_to_root(self):
        uf = UnionFind(4)
        uf.parent = [0, 0, 1, 2]
        assert uf.find(3) == 0
        assert uf.parent[3] == 0
        assert uf.parent[2] == 0

    def test_union_by_size(self):
        uf = UnionFind(4)
        uf.union(0, 1)
        uf.union(2, 0)
        assert uf.find(2) == uf.find(0)
        assert sorted(uf.component_sizes()) == [1, 3]

    def test_negative_count(self):
        with pytest.raises(ValueError):
            UnionFind(-1)


class TestGraphStats:
    """Component statistics from flat bond lists."""

    def test_no_edges(self):
        stats = graph_stats(5, [])
        assert stats.edge_count == 0
        assert stats.component_count == 5
        assert stats.largest_component_size == 1

    def test_chain_and_singletons(self):
        stats = graph_stats(6, [0, 1, 1, 2, 4, 5])
        assert stats.edge_count == 3
        assert stats.component_count == 3
        assert stats.largest_component_size == 3
        assert stats.component_sizes == (3, 2, 1)

    def test_sizes_sum_to_particle_count(self):
        stats = graph_stats(10, [0, 1, 2, 3, 3, 4, 9, 8])
        assert sum(stats.component_sizes) == 10

    def test_duplicates_and_self_loops(self):
        stats = graph_stats(3, [0, 1, 0, 1, 2, 2])
        assert stats.edge_count == 3
        assert stats.component_count == 2

    def test_pair_array_input(self):
        stats = graph_stats(4, np.array([[0, 1], [2, 3]]))
        assert stats.component_count == 2
        assert stats.largest_component_size == 2

    def test_zero_particles(self):
        stats = graph_stats(0, [])
        assert stats.component_count == 0
        assert stats.largest_component_size == 0

    def test_odd_length_rejected(self):
        with pytest.raises(ValueError, match="even length"):
            graph_stats(3, [0, 1, 2])

    def test_out_of_range_rejected(self):
        with pytest.raises(ValueError, match="edge ids"):
            graph_stats(3, [0, 3])

    def test_to_dict(self):
        d = graph_stats(2, [0, 1]).to_dict()
        assert d == {
            "particle_count": 2,
            "edge_count": 1,
            "component_count": 1,
            "largest_component_size": 2,
        }

    def test_chain_plus_pair(self):
        stats = graph_stats(5, [0, 1, 1, 2, 3, 4])
        assert stats.component_count == 2
        assert stats.largest_component_size == 3

    def test_same_input_same_result(self):
        edges = [0, 1, 1, 2, 3, 4, 6, 7, 7, 0]
        first = graph_stats(8, edges)
        second = graph_stats(8, list(edges))
        assert first == second
        assert first.component_sizes == second.component_sizes
