from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, NewType, Optional, Sequence, Tuple

import numpy as np

from luxtrace.accel._blas_jit import batch_hit_test
from luxtrace.accel.config import DEFAULT_BLAS_CONFIG, BLASBuildConfig
from luxtrace.accel.morton import leading_zeros32, morton_codes
from luxtrace.accel.refit import SENTINEL, refit_bounds
from luxtrace.errors import AccelerationBuildError
from luxtrace.geometry.aabb import AABB
from luxtrace.geometry.core import Transform
from luxtrace.geometry.ray import Ray
from luxtrace.geometry.tolerance import EPS_BOX_PAD, EPS_POS

logger = logging.getLogger(__name__)

# Index into the BLAS node arrays: internal nodes first, then leaves.
NodeIndex = NewType("NodeIndex", int)


@dataclass(frozen=True)
class BVHFlatNode:
    parent_idx: int
    left_child_idx: int
    right_child_idx: int
    primitive_idx: int

    def is_leaf(self) -> bool:
        return self.primitive_idx != SENTINEL


# =============================================================================
# Radix tree (Karras 2012) over sorted Morton keys
# =============================================================================

def common_prefix(codes: Sequence[int], i: int, j: int) -> int:
    """
    Common-prefix length of sorted keys ``i`` and ``j``; -1 when ``j`` is out of range.

    Equal codes fall back to the prefix of their sorted positions, offset by
    32, so every key is distinct and runs of duplicates still split cleanly.
    """
    if j < 0 or j >= len(codes):
        return -1
    ci = codes[i]
    cj = codes[j]
    if ci == cj:
        return 32 + leading_zeros32(i ^ j)
    return leading_zeros32(ci ^ cj)


def find_range(codes: Sequence[int], idx: int) -> Tuple[int, int]:
    if idx == 0:
        return 0, len(codes) - 1

    l_delta = common_prefix(codes, idx, idx - 1)
    r_delta = common_prefix(codes, idx, idx + 1)
    d = 1 if r_delta > l_delta else -1
    delta_min = min(l_delta, r_delta)

    l_max = 2
    while common_prefix(codes, idx, idx + d * l_max) > delta_min:
        l_max <<= 1

    l = 0
    t = l_max >> 1
    while t > 0:
        if common_prefix(codes, idx, idx + (l + t) * d) > delta_min:
            l += t
        t >>= 1

    jdx = idx + l * d
    if d < 0:
        return jdx, idx
    return idx, jdx


def find_split(codes: Sequence[int], first: int, last: int) -> int:
    delta_node = common_prefix(codes, first, last)
    split = first
    stride = last - first
    while stride > 1:
        stride = (stride + 1) >> 1
        middle = split + stride
        if middle < last and common_prefix(codes, first, middle) > delta_node:
            split = middle
    return split


def _children(codes: Sequence[int], idx: int, branch_count: int) -> Tuple[int, int]:
    first, last = find_range(codes, idx)
    split = find_split(codes, first, last)
    left = split + branch_count if split == first else split
    right = split + 1 + branch_count if split + 1 == last else split + 1
    return left, right


def _leaf_bounds(positions: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    v = positions[triangles]
    lo = v.min(axis=1)
    hi = v.max(axis=1)
    flat = (hi - lo) <= EPS_POS
    lo = np.where(flat, lo - EPS_BOX_PAD, lo)
    hi = np.where(flat, hi + EPS_BOX_PAD, hi)
    return np.concatenate([lo, hi], axis=1)


def _triangles(positions: np.ndarray, indices: Optional[Sequence[int]]) -> np.ndarray:
    if indices is None:
        if positions.shape[0] % 3 != 0:
            raise AccelerationBuildError(f"Triangle soup needs a multiple of 3 positions, got {positions.shape[0]}.")
        return np.arange(positions.shape[0], dtype=np.int64).reshape(-1, 3)
    idx = np.asarray(indices, dtype=np.int64).reshape(-1)
    if idx.size % 3 != 0:
        raise AccelerationBuildError(f"Index buffer length must be a multiple of 3, got {idx.size}.")
    if idx.size and (idx.min() < 0 or idx.max() >= positions.shape[0]):
        raise AccelerationBuildError(f"Triangle index out of range for {positions.shape[0]} vertices.")
    return idx.reshape(-1, 3)


def _readonly(a: np.ndarray) -> np.ndarray:
    a.flags.writeable = False
    return a


# =============================================================================
# Bottom-level acceleration structure
# =============================================================================

@dataclass(frozen=True, eq=False)
class BottomLevelAccelerationStructure:
    total_bb: AABB
    # (2n-1, 6) boxes, same indexing as the node arrays.
    node_bounds: np.ndarray
    node_parent: np.ndarray
    node_left: np.ndarray
    node_right: np.ndarray
    node_primitive: np.ndarray
    _rows: List[List[float]] = field(init=False, repr=False)
    _left: List[int] = field(init=False, repr=False)
    _right: List[int] = field(init=False, repr=False)
    _prim: List[int] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_rows", self.node_bounds.tolist())
        object.__setattr__(self, "_left", [int(v) for v in self.node_left])
        object.__setattr__(self, "_right", [int(v) for v in self.node_right])
        object.__setattr__(self, "_prim", [int(v) for v in self.node_primitive])

    @classmethod
    def build(
        cls,
        positions: Sequence[Sequence[float]] | np.ndarray,
        indices: Optional[Sequence[int] | np.ndarray] = None,
        *,
        config: BLASBuildConfig = DEFAULT_BLAS_CONFIG,
    ) -> "BottomLevelAccelerationStructure":
        t0 = time.perf_counter()
        pos = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        tris = _triangles(pos, indices)
        leaf_count = int(tris.shape[0])
        if leaf_count == 0:
            raise AccelerationBuildError("Cannot build a BLAS without at least one triangle.")
        branch_count = leaf_count - 1
        total_count = leaf_count + branch_count

        leaf_bb = _leaf_bounds(pos, tris)
        lo = leaf_bb[:, :3].min(axis=0)
        hi = leaf_bb[:, 3:].max(axis=0)
        total_bb = AABB.from_bounds(*lo, *hi)

        centers = (leaf_bb[:, :3] + leaf_bb[:, 3:]) * 0.5
        extent = hi - lo
        unit = np.divide(centers - lo, extent, out=np.zeros_like(centers), where=extent > EPS_POS)
        codes = morton_codes(unit)
        order = np.argsort(codes, kind="stable")
        sorted_codes: List[int] = [int(c) for c in codes[order]]

        node_bounds = np.zeros((total_count, 6), dtype=np.float64)
        node_bounds[branch_count:] = leaf_bb[order]
        node_parent = np.full(total_count, SENTINEL, dtype=np.uint32)
        node_left = np.full(total_count, SENTINEL, dtype=np.uint32)
        node_right = np.full(total_count, SENTINEL, dtype=np.uint32)
        node_primitive = np.full(total_count, SENTINEL, dtype=np.uint32)
        node_primitive[branch_count:] = order.astype(np.uint32)

        if config.workers > 1 and branch_count > 1:
            with ThreadPoolExecutor(max_workers=config.workers) as pool:
                pairs = list(pool.map(lambda i: _children(sorted_codes, i, branch_count), range(branch_count), chunksize=config.refit_chunk))
        else:
            pairs = [_children(sorted_codes, i, branch_count) for i in range(branch_count)]

        for i, (left, right) in enumerate(pairs):
            node_left[i] = left
            node_right[i] = right
            node_parent[left] = i
            node_parent[right] = i

        refit_bounds(
            node_bounds,
            node_parent,
            node_left,
            node_right,
            branch_count,
            workers=config.workers,
            chunk=config.refit_chunk,
        )

        blas = cls(
            total_bb=total_bb,
            node_bounds=_readonly(node_bounds),
            node_parent=_readonly(node_parent),
            node_left=_readonly(node_left),
            node_right=_readonly(node_right),
            node_primitive=_readonly(node_primitive),
        )
        logger.debug(
            "built BLAS: %d primitives, %d nodes, depth %d in %.3f ms",
            leaf_count,
            total_count,
            blas.depth(),
            (time.perf_counter() - t0) * 1e3,
        )
        return blas

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def bounding_box(self) -> AABB:
        return self.total_bb

    @property
    def primitive_count(self) -> int:
        return (len(self._prim) + 1) // 2

    @property
    def branch_count(self) -> int:
        return self.primitive_count - 1

    @property
    def node_count(self) -> int:
        return len(self._prim)

    def node(self, idx: NodeIndex | int) -> BVHFlatNode:
        return BVHFlatNode(
            parent_idx=int(self.node_parent[idx]),
            left_child_idx=self._left[idx],
            right_child_idx=self._right[idx],
            primitive_idx=self._prim[idx],
        )

    def is_leaf(self, idx: NodeIndex | int) -> bool:
        return self._prim[idx] != SENTINEL

    def node_bounds_of(self, idx: NodeIndex | int) -> AABB:
        return AABB.from_row(self._rows[idx])

    def leaf_primitives(self) -> List[int]:
        """Primitive ids in Morton order."""
        return self._prim[self.branch_count:]

    def depth(self) -> int:
        if self.branch_count == 0:
            return 0
        deepest = 0
        stack: List[Tuple[int, int]] = [(0, 0)]
        while stack:
            node, d = stack.pop()
            if self._prim[node] != SENTINEL:
                deepest = max(deepest, d)
                continue
            stack.append((self._left[node], d + 1))
            stack.append((self._right[node], d + 1))
        return deepest

    def validate(self) -> None:
        """Check the full-binary-tree invariants; raises ``ValueError`` on the first violation."""
        n = self.primitive_count
        b = self.branch_count
        if sorted(self.leaf_primitives()) != list(range(n)):
            raise ValueError("Leaf primitive ids are not a permutation of the primitive range.")
        if any(p != SENTINEL for p in self._prim[:b]):
            raise ValueError("Internal node carries a primitive id.")
        if b == 0:
            return
        if int(self.node_parent[0]) != SENTINEL:
            raise ValueError("Root node has a parent.")
        seen = [0] * self.node_count
        stack = [0]
        while stack:
            node = stack.pop()
            seen[node] += 1
            if self._prim[node] != SENTINEL:
                continue
            for child in (self._left[node], self._right[node]):
                if int(self.node_parent[child]) != node:
                    raise ValueError(f"Node {child} does not point back to parent {node}.")
                stack.append(child)
        if any(c != 1 for c in seen):
            raise ValueError("Tree does not reach every node exactly once.")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _world_box(self, idx: int, object_to_world: Optional[Transform]) -> AABB:
        box = AABB.from_row(self._rows[idx])
        if object_to_world is None:
            return box
        return box.transformed(object_to_world)

    def _hit_internal(
        self,
        object_to_world: Optional[Transform],
        ray: Ray,
        t_min: float,
        t_max: float,
        node: int,
        results: List[int],
    ) -> None:
        for child in (self._left[node], self._right[node]):
            if not self._world_box(child, object_to_world).hit(ray, t_min, t_max):
                continue
            if self._prim[child] != SENTINEL:
                results.append(self._prim[child])
            else:
                self._hit_internal(object_to_world, ray, t_min, t_max, child, results)

    def hit_test(self, object_to_world: Optional[Transform], ray: Ray, t_min: float, t_max: float) -> List[int]:
        """
        Candidate primitive ids whose node boxes the world-space ray overlaps in ``[t_min, t_max]``.

        Boxes are carried to world space through ``object_to_world`` (``None``
        or identity skips the transform). The result is a sound superset; exact
        ray/triangle tests are left to the caller.
        """
        if object_to_world is not None and object_to_world.is_identity():
            object_to_world = None
        results: List[int] = []
        if not self._world_box(0, object_to_world).hit(ray, t_min, t_max):
            return results
        if self._prim[0] != SENTINEL:
            results.append(self._prim[0])
            return results
        self._hit_internal(object_to_world, ray, t_min, t_max, 0, results)
        return results

    def hit_test_batch(
        self,
        origins: np.ndarray,
        directions: np.ndarray,
        t_min: float | np.ndarray,
        t_max: float | np.ndarray,
        object_to_world: Optional[Transform] = None,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Compiled traversal for many rays at once.

        Rays are mapped into object space through the inverse transform
        without renormalising, so ``t`` bounds keep their world meaning.
        Returns CSR ``(offsets, primitive_ids)``.
        """
        o = np.asarray(origins, dtype=np.float64).reshape(-1, 3)
        d = np.asarray(directions, dtype=np.float64).reshape(-1, 3)
        if o.shape != d.shape:
            raise ValueError("origins and directions must have the same shape.")
        if object_to_world is not None and not object_to_world.is_identity():
            world_to_object = object_to_world.inverse()
            o = world_to_object.transform_points(o)
            d = d @ world_to_object.matrix[:, :3].T
        with np.errstate(divide="ignore"):
            inv_d = np.divide(1.0, d)
        n = o.shape[0]
        t_mins = np.broadcast_to(np.asarray(t_min, dtype=np.float64), (n,)).copy()
        t_maxs = np.broadcast_to(np.asarray(t_max, dtype=np.float64), (n,)).copy()
        return batch_hit_test(
            np.ascontiguousarray(o),
            np.ascontiguousarray(inv_d),
            t_mins,
            t_maxs,
            self.node_bounds,
            self.node_left.astype(np.int64),
            self.node_right.astype(np.int64),
            self.node_primitive.astype(np.int64),
        )

    # -------------------------------------------------------------------------
    # Serialisation
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_bb": self.total_bb.to_dict(),
            "node_bounds": [list(r) for r in self._rows],
            "node_parent": [int(v) for v in self.node_parent],
            "node_left": list(self._left),
            "node_right": list(self._right),
            "node_primitive": list(self._prim),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BottomLevelAccelerationStructure":
        return cls(
            total_bb=AABB.from_dict(data["total_bb"]),
            node_bounds=_readonly(np.asarray(data["node_bounds"], dtype=np.float64).reshape(-1, 6)),
            node_parent=_readonly(np.asarray(data["node_parent"], dtype=np.uint32)),
            node_left=_readonly(np.asarray(data["node_left"], dtype=np.uint32)),
            node_right=_readonly(np.asarray(data["node_right"], dtype=np.uint32)),
            node_primitive=_readonly(np.asarray(data["node_primitive"], dtype=np.uint32)),
        )


def build_blas(
    positions: Sequence[Sequence[float]] | np.ndarray,
    indices: Optional[Sequence[int] | np.ndarray] = None,
    *,
    config: BLASBuildConfig = DEFAULT_BLAS_CONFIG,
) -> BottomLevelAccelerationStructure:
    return BottomLevelAccelerationStructure.build(positions, indices, config=config)
