"""Tests for the xorshift32 mask stream."""
import numpy as np

from ratchetkit.rng import XorShift32


class TestXorShift32:
    """Known sequence, seed handling, and draw range."""

    def test_first_values_from_seed_one(self):
        rng = XorShift32(1)
        assert rng.next_u32() == 270369
        assert rng.next_u32() == 67634689

    def test_draw_uses_upper_24_bits(self):
        rng = XorShift32(1)
        assert rng.draw() == (270369 >> 8) / 2**24

    def test_zero_seed_coerced_to_one(self):
        a = XorShift32(0)
        b = XorShift32(1)
        assert a.state == 1
        assert [a.next_u32() for _ in range(5)] == [b.next_u32() for _ in range(5)]

    def test_seed_reduced_mod_2_32(self):
        a = XorShift32(2**32 + 7)
        b = XorShift32(7)
        assert a.draws(10).tolist() == b.draws(10).tolist()

    def test_same_seed_same_stream(self):
        assert np.array_equal(XorShift32(42).draws(100), XorShift32(42).draws(100))

    def test_different_seeds_differ(self):
        assert not np.array_equal(XorShift32(42).draws(20), XorShift32(43).draws(20))

    def test_draws_in_unit_interval(self):
        d = XorShift32(12345).draws(2000)
        assert d.min() >= 0.0
        assert d.max() < 1.0

    def test_draws_continue_the_stream(self):
        a = XorShift32(9)
        first = a.draws(3)
        rest = a.draws(3)
        b = XorShift32(9)
        assert np.array_equal(np.concatenate([first, rest]), b.draws(6))

    def test_roughly_uniform(self):
        d = XorShift32(2024).draws(5000)
        assert abs(d.mean() - 0.5) < 0.03

    def test_state_never_zero(self):
        rng = XorShift32(3)
        for _ in range(1000):
            assert rng.next_u32() != 0

    def test_draws_zero_length(self):
        assert XorShift32(1).draws(0).shape == (0,)
