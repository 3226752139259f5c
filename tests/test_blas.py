from __future__ import annotations

import json

import numpy as np
import pytest

from luxtrace.accel.blas import BottomLevelAccelerationStructure, build_blas, find_range, find_split
from luxtrace.accel.config import BLASBuildConfig
from luxtrace.accel.refit import SENTINEL
from luxtrace.errors import AccelerationBuildError
from luxtrace.geometry.aabb import AABB
from luxtrace.geometry.core import Transform, Vector3
from luxtrace.geometry.ray import Ray
from luxtrace.scene.synthetic import random_triangles, sweep_rays


def _leaf_boxes(soup: np.ndarray) -> list[AABB]:
    return [AABB.from_points(Vector3.from_array(p) for p in soup[3 * i : 3 * i + 3]) for i in range(len(soup) // 3)]


def _assert_full_binary_tree(blas: BottomLevelAccelerationStructure) -> None:
    n = blas.primitive_count
    assert blas.node_count == 2 * n - 1
    assert sum(1 for i in range(blas.node_count) if blas.is_leaf(i)) == n
    assert all(not blas.is_leaf(i) for i in range(n - 1))
    blas.validate()


def test_leaves_are_a_permutation_and_tree_is_full() -> None:
    blas = build_blas(random_triangles(300, seed=11))
    assert sorted(blas.leaf_primitives()) == list(range(300))
    _assert_full_binary_tree(blas)
    root = blas.node(0)
    assert root.parent_idx == SENTINEL
    assert not root.is_leaf()


def test_internal_boxes_are_union_of_children() -> None:
    blas = build_blas(random_triangles(257, seed=2))
    b = blas.node_bounds
    for i in range(blas.branch_count):
        node = blas.node(i)
        lb = b[node.left_child_idx]
        rb = b[node.right_child_idx]
        assert b[i, :3].tolist() == np.minimum(lb[:3], rb[:3]).tolist()
        assert b[i, 3:].tolist() == np.maximum(lb[3:], rb[3:]).tolist()
    assert blas.node_bounds_of(0) == blas.bounding_box()


def test_duplicate_morton_codes_keep_valid_topology() -> None:
    tri = [[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]]
    blas = build_blas(np.asarray(tri * 9))
    assert sorted(blas.leaf_primitives()) == list(range(9))
    _assert_full_binary_tree(blas)

    mixed = np.concatenate([np.asarray(tri * 5), random_triangles(20, seed=4)])
    blas = build_blas(mixed)
    assert sorted(blas.leaf_primitives()) == list(range(25))
    _assert_full_binary_tree(blas)


def test_radix_split_on_identical_codes_uses_index_midpoint() -> None:
    codes = [7, 7, 7, 7, 7, 7, 7, 7]
    assert find_range(codes, 0) == (0, 7)
    assert find_split(codes, 0, 7) == 3
    assert find_split(codes, 0, 3) == 1


def test_single_triangle() -> None:
    blas = build_blas([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    assert blas.primitive_count == 1
    assert blas.branch_count == 0
    assert blas.node_count == 1
    assert blas.depth() == 0
    down = Ray(Vector3(0.25, 0.25, 1.0), Vector3(0.0, 0.0, -1.0))
    assert blas.hit_test(None, down, 0.0, 10.0) == [0]
    away = Ray(Vector3(5.0, 5.0, 1.0), Vector3(0.0, 0.0, -1.0))
    assert blas.hit_test(None, away, 0.0, 10.0) == []


def test_two_disjoint_triangles_along_x() -> None:
    positions = [
        [0.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0],
        [10.0, 0.0, 0.0], [10.0, 1.0, 0.0], [10.0, 0.0, 1.0],
    ]
    blas = BottomLevelAccelerationStructure.build(positions, [0, 1, 2, 3, 4, 5])
    assert blas.depth() == 1
    ray = Ray(Vector3(-5.0, 0.25, 0.25), Vector3(1.0, 0.0, 0.0))
    assert sorted(blas.hit_test(Transform.identity(), ray, 0.0, 100.0)) == [0, 1]
    assert blas.hit_test(Transform.identity(), ray, 0.0, 7.0) == [0]
    moved = Transform.from_translation(0.0, 50.0, 0.0)
    assert blas.hit_test(moved, ray, 0.0, 100.0) == []


@pytest.mark.parametrize(
    "xf",
    [
        Transform.identity(),
        Transform.from_translation(3.0, -2.0, 0.5),
        Transform.from_axis_angle((0.0, 0.0, 1.0), 30.0).with_position(1.0, 2.0, 0.0),
    ],
)
def test_hit_test_matches_brute_force(xf: Transform) -> None:
    soup = random_triangles(400, seed=5)
    blas = build_blas(soup)
    boxes = [box.transformed(xf) for box in _leaf_boxes(soup)]
    for origin, direction in sweep_rays(300):
        ray = Ray(origin, direction)
        expected = sorted(i for i, box in enumerate(boxes) if box.hit(ray, 1e-4, 120.0))
        assert sorted(blas.hit_test(xf, ray, 1e-4, 120.0)) == expected


def test_build_is_deterministic_and_threading_does_not_change_it() -> None:
    soup = random_triangles(500, seed=9)
    a = build_blas(soup)
    b = build_blas(soup)
    c = build_blas(soup, config=BLASBuildConfig(workers=4, refit_chunk=16))
    for other in (b, c):
        assert np.array_equal(a.node_parent, other.node_parent)
        assert np.array_equal(a.node_left, other.node_left)
        assert np.array_equal(a.node_right, other.node_right)
        assert np.array_equal(a.node_primitive, other.node_primitive)
        assert np.array_equal(a.node_bounds, other.node_bounds)


def test_indexed_and_soup_inputs_agree() -> None:
    positions = np.asarray([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 2.0]])
    indices = np.asarray([[0, 1, 2], [0, 2, 3], [0, 1, 4], [3, 2, 4]])
    indexed = build_blas(positions, indices)
    soup = build_blas(positions[indices.reshape(-1)])
    assert np.array_equal(indexed.node_left, soup.node_left)
    assert np.array_equal(indexed.node_primitive, soup.node_primitive)
    assert np.array_equal(indexed.node_bounds, soup.node_bounds)


def test_invalid_builds_raise() -> None:
    with pytest.raises(AccelerationBuildError):
        build_blas(np.zeros((0, 3)))
    with pytest.raises(AccelerationBuildError):
        build_blas([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]], [])
    with pytest.raises(AccelerationBuildError):
        build_blas([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]], [0, 1])
    with pytest.raises(AccelerationBuildError):
        build_blas([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]], [0, 1, 3])
    with pytest.raises(ValueError):
        build_blas([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])


def test_node_arrays_are_read_only() -> None:
    blas = build_blas(random_triangles(8, seed=1))
    with pytest.raises(ValueError):
        blas.node_left[0] = 3
    with pytest.raises(ValueError):
        blas.node_bounds[0, 0] = -1.0


def test_to_dict_is_json_safe_and_restores_queries() -> None:
    blas = build_blas(random_triangles(64, seed=8))
    data = json.loads(json.dumps(blas.to_dict()))
    restored = BottomLevelAccelerationStructure.from_dict(data)
    restored.validate()
    for origin, direction in sweep_rays(80):
        ray = Ray(origin, direction)
        assert restored.hit_test(None, ray, 1e-4, 120.0) == blas.hit_test(None, ray, 1e-4, 120.0)
