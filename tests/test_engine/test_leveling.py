"""
Tests for the leveling curve.

Covers:
- Band boundaries (0, 100, 400, 900)
- Progress fields
- Negative balances
- Monotonicity (Hypothesis)
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from seedledger.engine.leveling import level_for


@pytest.mark.parametrize(
    "total, level",
    [(0, 1), (99, 1), (100, 2), (399, 2), (400, 3), (900, 4), (10_000, 11)],
)
def test_level_bands(total, level):
    assert level_for(total).level == level


def test_progress_at_250():
    info = level_for(250)
    assert info.level == 2
    assert info.seeds_for_current_level == 100
    assert info.seeds_to_next_level == 150


def test_exact_boundary_needs_full_next_band():
    info = level_for(400)
    assert info.level == 3
    assert info.seeds_for_current_level == 400
    assert info.seeds_to_next_level == 500


def test_negative_total_clamps_to_level_one():
    info = level_for(-35)
    assert info.level == 1
    assert info.seeds_to_next_level == 100
    assert info.seeds_for_current_level == 0


class TestLevelingProperties:
    @given(a=st.integers(min_value=-1000, max_value=10**7), b=st.integers(min_value=-1000, max_value=10**7))
    @settings(max_examples=200)
    def test_monotone(self, a, b):
        if a > b:
            a, b = b, a
        assert level_for(a).level <= level_for(b).level

    @given(total=st.integers(min_value=0, max_value=10**7))
    @settings(max_examples=200)
    def test_total_inside_current_band(self, total):
        info = level_for(total)
        assert info.seeds_for_current_level <= total
        assert total + info.seeds_to_next_level == info.level ** 2 * 100
        assert info.seeds_to_next_level > 0
