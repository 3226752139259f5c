from __future__ import annotations

import numba
import numpy as np

from luxtrace.accel.refit import SENTINEL


@numba.njit(cache=True)
def _aabb_hit(
    origin: np.ndarray,
    inv_direction: np.ndarray,
    bounds: np.ndarray,
    t_min: float,
    t_max: float,
) -> bool:
    lo = t_min
    hi = t_max
    for axis in range(3):
        inv_d = inv_direction[axis]
        t0 = (bounds[axis] - origin[axis]) * inv_d
        t1 = (bounds[axis + 3] - origin[axis]) * inv_d
        if inv_d < 0.0:
            tmp = t0
            t0 = t1
            t1 = tmp
        if t0 > lo:
            lo = t0
        if t1 < hi:
            hi = t1
        if hi <= lo:
            return False
    return True


@numba.njit(cache=True)
def _traverse(
    origin: np.ndarray,
    inv_direction: np.ndarray,
    t_min: float,
    t_max: float,
    node_bounds: np.ndarray,
    node_left: np.ndarray,
    node_right: np.ndarray,
    node_primitive: np.ndarray,
    stack: np.ndarray,
    out: np.ndarray,
    write_at: int,
    write: bool,
) -> int:
    n_nodes = node_bounds.shape[0]
    if n_nodes == 0:
        return 0
    if not _aabb_hit(origin, inv_direction, node_bounds[0], t_min, t_max):
        return 0
    if node_primitive[0] != SENTINEL:
        if write:
            out[write_at] = node_primitive[0]
        return 1

    found = 0
    top = 0
    stack[top] = 0
    top += 1
    while top > 0:
        top -= 1
        node_idx = stack[top]
        # Right is pushed first so the left subtree is visited first.
        for side in range(2):
            child = node_right[node_idx] if side == 0 else node_left[node_idx]
            if not _aabb_hit(origin, inv_direction, node_bounds[child], t_min, t_max):
                continue
            if node_primitive[child] != SENTINEL:
                if write:
                    out[write_at + found] = node_primitive[child]
                found += 1
            else:
                stack[top] = child
                top += 1
    return found


@numba.njit(cache=True)
def batch_hit_test(
    origins: np.ndarray,
    inv_directions: np.ndarray,
    t_mins: np.ndarray,
    t_maxs: np.ndarray,
    node_bounds: np.ndarray,
    node_left: np.ndarray,
    node_right: np.ndarray,
    node_primitive: np.ndarray,
):
    """Candidate primitives for many rays as CSR ``(offsets, ids)``; ray ``i`` owns ``ids[offsets[i]:offsets[i+1]]``."""
    n = origins.shape[0]
    stack = np.empty(max(node_bounds.shape[0], 1), dtype=np.int64)
    dummy = np.empty(0, dtype=np.int64)
    offsets = np.zeros(n + 1, dtype=np.int64)
    for i in range(n):
        c = _traverse(
            origins[i], inv_directions[i], t_mins[i], t_maxs[i],
            node_bounds, node_left, node_right, node_primitive,
            stack, dummy, 0, False,
        )
        offsets[i + 1] = offsets[i] + c
    ids = np.empty(offsets[n], dtype=np.int64)
    for i in range(n):
        _traverse(
            origins[i], inv_directions[i], t_mins[i], t_maxs[i],
            node_bounds, node_left, node_right, node_primitive,
            stack, ids, offsets[i], True,
        )
    return offsets, ids
