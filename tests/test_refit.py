from __future__ import annotations

import numpy as np

from luxtrace.accel.refit import SENTINEL, ArrivalFlags, refit_bounds


def _three_leaf_tree():
    # Internal 0 -> (leaf 2, internal 1); internal 1 -> (leaf 3, leaf 4).
    parent = np.array([SENTINEL, 0, 0, 1, 1], dtype=np.uint32)
    left = np.array([2, 3, SENTINEL, SENTINEL, SENTINEL], dtype=np.uint32)
    right = np.array([1, 4, SENTINEL, SENTINEL, SENTINEL], dtype=np.uint32)
    bounds = np.zeros((5, 6), dtype=np.float64)
    bounds[2] = [0.0, 0.0, 0.0, 1.0, 1.0, 1.0]
    bounds[3] = [5.0, -1.0, 0.0, 6.0, 0.0, 1.0]
    bounds[4] = [2.0, 2.0, 2.0, 3.0, 3.0, 3.0]
    return bounds, parent, left, right


def test_arrival_flags_second_arrival_wins() -> None:
    for atomic in (False, True):
        flags = ArrivalFlags(2, atomic=atomic)
        assert len(flags) == 2
        assert flags.test_and_set(1) is False
        assert flags.test_and_set(1) is True
        assert not flags.all_set()
        flags.test_and_set(0)
        assert flags.all_set()


def test_refit_bounds_sequential() -> None:
    bounds, parent, left, right = _three_leaf_tree()
    assert refit_bounds(bounds, parent, left, right, 2) == 2
    assert bounds[1].tolist() == [2.0, -1.0, 0.0, 6.0, 3.0, 3.0]
    assert bounds[0].tolist() == [0.0, -1.0, 0.0, 6.0, 3.0, 3.0]


def test_refit_bounds_threaded_matches_sequential() -> None:
    seq, parent, left, right = _three_leaf_tree()
    refit_bounds(seq, parent, left, right, 2)
    par, _, _, _ = _three_leaf_tree()
    assert refit_bounds(par, parent, left, right, 2, workers=3, chunk=1) == 2
    assert np.array_equal(seq, par)


def test_refit_single_leaf_is_noop() -> None:
    bounds = np.array([[0.0, 0.0, 0.0, 1.0, 1.0, 1.0]])
    none = np.array([SENTINEL], dtype=np.uint32)
    assert refit_bounds(bounds, none, none, none, 0) == 0
