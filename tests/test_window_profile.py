#!/usr/bin/env python3
"""
Tests for sliding window conservation profiles.

Windows are anchored at the alignment end: the first window in a profile
always ends at the last column and labels count back from there.
"""

import pytest
from triad_conservation import (
    Alignment,
    EMPTY_SCORES,
    window_ends,
    window_profile,
)


def uniform_alignment(length):
    return Alignment(('A', 'B', 'D'), ('A' * length,) * 3)


class TestWindowEnds:

    @pytest.mark.parametrize("length,offset,expected", [
        (10, 4, [10, 6, 2]),
        (100, 25, [100, 75, 50, 25, 0]),
        (7, 25, [7]),
        (0, 25, [0]),
        (8, 4, [8, 4, 0]),
    ])
    def test_boundaries(self, length, offset, expected):
        assert window_ends(length, offset) == expected


class TestWindowProfile:
    """Test window placement, labels and scoring."""

    @pytest.mark.parametrize("length,size,offset", [
        (10, 4, 4),
        (10, 10, 3),
        (100, 100, 25),
        (250, 100, 25),
        (101, 7, 5),
        (13, 1, 1),
    ])
    def test_anchored_at_alignment_end(self, length, size, offset):
        profile = window_profile(uniform_alignment(length), size, offset)
        assert profile[0].window_end == length
        assert max(window.window_end for window in profile) == length

    def test_labels_and_bounds(self):
        profile = window_profile(uniform_alignment(10), window_size=4, offset=4)
        assert [(w.index, w.label_start, w.label_end) for w in profile] == [
            (0, 0, 4), (1, 4, 8), (2, 8, 12)]
        assert [(w.window_start, w.window_end) for w in profile] == [
            (6, 10), (2, 6), (0, 2)]

    def test_window_scores(self):
        alignment = Alignment(('a', 'b'), ("AAAAAAAAAA", "AAAAAA----"))
        profile = window_profile(alignment, window_size=4, offset=4)
        assert profile[0].as_row() == (0, 4, -8, -2.0, 0, 0.0)
        assert profile[1].as_row() == (4, 8, 4, 1.0, 4, 1.0)
        # Only two columns remain before the alignment start
        assert profile[2].as_row() == (8, 12, 2, 1.0, 2, 1.0)

    def test_empty_window_scores_zero(self):
        profile = window_profile(uniform_alignment(8), window_size=4, offset=4)
        assert len(profile) == 3
        assert profile[-1].window_start == profile[-1].window_end == 0
        assert profile[-1].scores == EMPTY_SCORES
        assert profile[-1].as_row() == (8, 12, 0, 0.0, 0, 0.0)

    def test_window_wider_than_alignment(self):
        profile = window_profile(uniform_alignment(30))
        assert [(w.window_start, w.window_end) for w in profile] == [(0, 30), (0, 5)]
        assert profile[0].scores.sum_of_pairs == 90
        assert profile[1].scores.identity == 1.0

    def test_default_parameters(self):
        profile = window_profile(uniform_alignment(200))
        assert len(profile) == 9
        assert profile[0].label_end == 100
        assert profile[-1].label_start == 200

    def test_empty_alignment(self):
        profile = window_profile(Alignment(('a', 'b'), ("", "")), 4, 2)
        assert len(profile) == 1
        assert profile[0].scores == EMPTY_SCORES

    def test_recomputed_each_call(self):
        alignment = uniform_alignment(50)
        first = window_profile(alignment, 10, 5)
        second = window_profile(alignment, 10, 5)
        assert first == second
        assert first is not second

    @pytest.mark.parametrize("size,offset", [(0, 25), (100, 0)])
    def test_invalid_parameters(self, size, offset):
        with pytest.raises(ValueError, match="must be >= 1"):
            window_profile(uniform_alignment(10), size, offset)
