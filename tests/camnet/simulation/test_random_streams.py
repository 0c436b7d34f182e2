"""Unit tests for RandomStreamSet -- seeded, per-purpose random streams."""

from __future__ import annotations

import pytest

from camnet.simulation.random_streams import RandomStreamSet, RandomUse

pytestmark = pytest.mark.unit


class TestRandomStreamSet:
    def test_same_seed_same_sequence(self):
        a = RandomStreamSet(42)
        b = RandomStreamSet(42)
        for use in RandomUse:
            assert [a.next_double(use) for _ in range(5)] == [b.next_double(use) for _ in range(5)]

    def test_different_seeds_differ(self):
        a = RandomStreamSet(1)
        b = RandomStreamSet(2)
        assert [a.next_double(RandomUse.UNIV) for _ in range(5)] != \
            [b.next_double(RandomUse.UNIV) for _ in range(5)]

    def test_streams_are_independent(self):
        quiet = RandomStreamSet(7)
        noisy = RandomStreamSet(7)
        for _ in range(100):
            noisy.next_int(100, RandomUse.ERROR)
            noisy.next_gaussian(RandomUse.UNIV)
        assert [quiet.next_double(RandomUse.COMM) for _ in range(10)] == \
            [noisy.next_double(RandomUse.COMM) for _ in range(10)]

    def test_purposes_draw_different_values(self):
        rnd = RandomStreamSet(3)
        assert rnd.next_double(RandomUse.UNIV) != rnd.next_double(RandomUse.COMM)

    def test_next_double_in_unit_interval(self):
        rnd = RandomStreamSet(0)
        for _ in range(200):
            assert 0.0 <= rnd.next_double(RandomUse.UNIV) < 1.0

    def test_next_int_bounds(self):
        rnd = RandomStreamSet(0)
        values = {rnd.next_int(3, RandomUse.ERROR) for _ in range(200)}
        assert values == {0, 1, 2}

    @pytest.mark.parametrize("bound", [0, -5])
    def test_next_int_rejects_empty_range(self, bound):
        with pytest.raises(ValueError):
            RandomStreamSet(0).next_int(bound, RandomUse.UNIV)

    def test_gaussian_with_zero_std(self):
        assert RandomStreamSet(0).next_gaussian(RandomUse.UNIV, 5.0, 0.0) == 5.0

    def test_seed_exposed(self):
        assert RandomStreamSet(9).seed == 9
