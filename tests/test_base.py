"""Tests for the simulator capability interface."""
import numpy as np

from ratchetkit.base import (
    REPAIR_MOVES,
    DiagnosticSnapshot,
    MoveKind,
    PerturbationRequest,
    SimulatorHandle,
    base_meta_divergence,
    read_snapshot,
)


class TestMoveKind:

    def test_indices_fixed(self):
        assert MoveKind.X == 0
        assert MoveKind.P5_META == 8
        assert MoveKind.OPK == 9
        assert MoveKind.CLOCK == 10
        assert len(MoveKind) == 11

    def test_repair_moves(self):
        assert REPAIR_MOVES == (MoveKind.P5_BASE, MoveKind.P5_META)


class TestPerturbationRequest:

    def test_to_dict_whole_layer(self):
        d = PerturbationRequest(layer=1, fraction=0.5, seed=1007).to_dict()
        assert d == {"target": "metaS", "layer": 1, "frac": 0.5, "mode": "randomize", "seed": 1007}

    def test_to_dict_with_region(self):
        d = PerturbationRequest(region={"region": "quadrant", "quadrant": 2}).to_dict()
        assert d["region"] == "quadrant"
        assert d["quadrant"] == 2


class TestHandleReadout:

    def test_toy_satisfies_protocol(self, toy_sim):
        assert isinstance(toy_sim, SimulatorHandle)

    def test_read_snapshot(self, toy_sim):
        toy_sim.advance(100)
        snap = read_snapshot(toy_sim, 100)
        assert snap.step == 100
        assert snap.ep_exact == 0.01 * 0.2 * 100
        assert snap.clock_q == 2 + 1
        assert snap.clock_bwd == 0
        assert snap.ep_for(MoveKind.CLOCK) == 0.3 * snap.ep_exact
        assert np.isclose(snap.ep_for(*REPAIR_MOVES), 0.2 * snap.ep_exact)
        assert "total" in snap.energies

    def test_ep_for_missing_move(self):
        snap = DiagnosticSnapshot(step=0, ep_exact_by_move=[1.0])
        assert snap.ep_for(MoveKind.CLOCK) == 0.0

    def test_divergence_zero_for_copy(self, toy_sim):
        assert base_meta_divergence(toy_sim) == 0.0

    def test_divergence_after_full_perturb(self, toy_sim):
        toy_sim.perturb(PerturbationRequest(fraction=1.0))
        assert base_meta_divergence(toy_sim) == 6.0

    def test_divergence_missing_layer(self, toy_sim):
        assert base_meta_divergence(toy_sim, layer=3) == 0.0
        toy_sim.configure({"metaLayers": 0})
        assert base_meta_divergence(toy_sim) == 0.0

    def test_divergence_halves_per_advance(self, toy_sim):
        toy_sim.perturb(PerturbationRequest(fraction=1.0))
        toy_sim.advance(10)
        assert np.isclose(base_meta_divergence(toy_sim), 3.0)
