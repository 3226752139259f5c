from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

import numpy as np

SENTINEL = 0xFFFFFFFF

logger = logging.getLogger(__name__)


class ArrivalFlags:
    """
    Per-internal-node "first child has arrived" flags.

    ``test_and_set`` marks a node and reports whether it was already marked,
    so exactly one of the two children (the second to arrive) goes on to
    compute the node's box. With ``atomic=True`` the test-and-set is guarded
    by a lock and can be shared between worker threads.
    """

    def __init__(self, count: int, *, atomic: bool = False) -> None:
        self._flags = bytearray(count)
        self._lock: Optional[threading.Lock] = threading.Lock() if atomic else None

    def __len__(self) -> int:
        return len(self._flags)

    def test_and_set(self, idx: int) -> bool:
        if self._lock is None:
            prev = self._flags[idx]
            self._flags[idx] = 1
            return bool(prev)
        with self._lock:
            prev = self._flags[idx]
            self._flags[idx] = 1
        return bool(prev)

    def all_set(self) -> bool:
        return all(self._flags)


def _climb(
    leaf: int,
    bounds: np.ndarray,
    parent: Sequence[int],
    left: Sequence[int],
    right: Sequence[int],
    flags: ArrivalFlags,
) -> int:
    """Walk from ``leaf`` towards the root; return how many internal boxes were computed."""
    computed = 0
    node = parent[leaf]
    while node != SENTINEL:
        if not flags.test_and_set(node):
            return computed
        lb = bounds[left[node]]
        rb = bounds[right[node]]
        bounds[node, :3] = np.minimum(lb[:3], rb[:3])
        bounds[node, 3:] = np.maximum(lb[3:], rb[3:])
        computed += 1
        node = parent[node]
    return computed


def refit_bounds(
    bounds: np.ndarray,
    parent: np.ndarray,
    left: np.ndarray,
    right: np.ndarray,
    branch_count: int,
    *,
    workers: int = 1,
    chunk: int = 256,
) -> int:
    """
    Fill internal-node boxes bottom-up from the leaf boxes already in ``bounds``.

    ``bounds`` is an ``(2n-1, 6)`` array with leaves at ``[branch_count, 2n-1)``.
    Every internal box is written exactly once, after both children are final.
    Returns the number of internal boxes computed (``branch_count`` on success).
    """
    total = int(bounds.shape[0])
    if branch_count == 0:
        return 0
    parent_l: List[int] = [int(v) for v in parent]
    left_l: List[int] = [int(v) for v in left]
    right_l: List[int] = [int(v) for v in right]

    if workers <= 1:
        flags = ArrivalFlags(branch_count)
        computed = 0
        for leaf in range(branch_count, total):
            computed += _climb(leaf, bounds, parent_l, left_l, right_l, flags)
        return computed

    flags = ArrivalFlags(branch_count, atomic=True)

    def _run(start: int, stop: int) -> int:
        n = 0
        for leaf in range(start, stop):
            n += _climb(leaf, bounds, parent_l, left_l, right_l, flags)
        return n

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(_run, s, min(s + chunk, total)) for s in range(branch_count, total, chunk)]
        computed = sum(f.result() for f in futures)
    logger.debug("threaded refit: %d internal boxes over %d leaves with %d workers", computed, total - branch_count, workers)
    return computed
