from __future__ import annotations

import random

import pytest

from luxtrace.accel.config import SplitAxisPolicy, TLASBuildConfig
from luxtrace.accel.tlas import TLASNodeKind, TopLevelAccelerationStructure
from luxtrace.errors import AccelerationBuildError
from luxtrace.geometry.aabb import AABB, merge_aabbs
from luxtrace.geometry.core import Vector3
from luxtrace.geometry.mesh import TriangleMesh
from luxtrace.geometry.ray import Ray
from luxtrace.scene.instance import Instance
from luxtrace.scene.registry import GeometryRegistry


def _five_boxes() -> list[tuple[int, AABB]]:
    return [
        (100 + i, AABB(Vector3(10.0 * i, 0.0, 0.0), Vector3(10.0 * i + 1.0, 1.0, 1.0)))
        for i in range(5)
    ]


def _random_boxes(n: int, seed: int) -> list[tuple[int, AABB]]:
    rng = random.Random(seed)
    out = []
    for i in range(n):
        x, y, z = rng.uniform(-50, 50), rng.uniform(-50, 50), rng.uniform(-10, 10)
        s = rng.uniform(0.5, 4.0)
        out.append((i, AABB(Vector3(x, y, z), Vector3(x + s, y + s, z + s))))
    return out


def test_five_instances_miss_and_single_hit() -> None:
    tlas = TopLevelAccelerationStructure.from_bounds(_five_boxes())
    assert tlas.node_count == 9
    assert tlas.depth() == 3
    assert tlas.intersect_instance(Ray(Vector3(-5.0, 5.0, 5.0), Vector3(1.0, 0.0, 0.0)), 0.0, 100.0) == []
    assert tlas.intersect_instance(Ray(Vector3(20.5, 0.5, -5.0), Vector3(0.0, 0.0, 1.0)), 0.0, 100.0) == [102]
    along = tlas.intersect_instance(Ray(Vector3(-5.0, 0.5, 0.5), Vector3(1.0, 0.0, 0.0)), 0.0, 100.0)
    assert sorted(along) == [100, 101, 102, 103, 104]


@pytest.mark.parametrize("policy", list(SplitAxisPolicy))
def test_candidates_match_brute_force_for_every_policy(policy: SplitAxisPolicy) -> None:
    boxes = _random_boxes(60, seed=17)
    tlas = TopLevelAccelerationStructure.from_bounds(boxes, config=TLASBuildConfig(axis_policy=policy, axis=1, seed=5))
    assert sorted(tlas.leaf_ids()) == list(range(60))
    assert tlas.bounding_box() == merge_aabbs(b for _, b in boxes)
    rng = random.Random(99)
    for _ in range(150):
        o = Vector3(rng.uniform(-60, 60), rng.uniform(-60, 60), rng.uniform(-20, 20))
        d = Vector3(rng.uniform(-1, 1), rng.uniform(-1, 1), rng.uniform(-1, 1))
        ray = Ray(o, d)
        expected = sorted(i for i, box in boxes if box.hit(ray, 0.0, 200.0))
        assert sorted(tlas.intersect_instance(ray, 0.0, 200.0)) == expected


def test_branch_boxes_are_union_of_children() -> None:
    tlas = TopLevelAccelerationStructure.from_bounds(_random_boxes(33, seed=3))
    for node in tlas.nodes:
        if node.kind is TLASNodeKind.BRANCH:
            assert node.bbox == tlas.nodes[node.left].bbox.union(tlas.nodes[node.right].bbox)
    assert tlas.nodes[tlas.root].kind is TLASNodeKind.BRANCH


def test_seeded_builds_are_identical() -> None:
    config = TLASBuildConfig(axis_policy=SplitAxisPolicy.RANDOM_PER_NODE, seed=3)
    a = TopLevelAccelerationStructure.from_bounds(_random_boxes(40, seed=1), config=config)
    b = TopLevelAccelerationStructure.from_bounds(_random_boxes(40, seed=1), config=config)
    assert a.to_dict() == b.to_dict()
    restored = TopLevelAccelerationStructure.from_dict(a.to_dict())
    assert restored.to_dict() == a.to_dict()


def test_config_validation() -> None:
    assert TLASBuildConfig().axis_policy is SplitAxisPolicy.LONGEST_EXTENT
    assert TLASBuildConfig(axis_policy="fixed").axis_policy is SplitAxisPolicy.FIXED
    with pytest.raises(ValueError):
        TLASBuildConfig(axis=3)


def test_empty_build_raises() -> None:
    with pytest.raises(AccelerationBuildError):
        TopLevelAccelerationStructure.from_bounds([])
    with pytest.raises(ValueError):
        TopLevelAccelerationStructure.build([], GeometryRegistry())


def test_build_from_instances_and_registry() -> None:
    registry = GeometryRegistry()
    quad = registry.add(
        TriangleMesh([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [1.0, 1.0, 0.0], [0.0, 1.0, 0.0]], [0, 1, 2, 0, 2, 3])
    )
    registry.freeze()
    instances = [Instance(geometry_id=quad, instance_id=7 + i).with_position(0.0, 0.0, 3.0 * i) for i in range(3)]
    tlas = TopLevelAccelerationStructure.build(instances, registry)
    assert tlas.instance(8) is instances[1]
    assert tlas.instance(42) is None
    assert len(tlas.instances) == 3
    ray = Ray(Vector3(0.5, 0.5, 10.0), Vector3(0.0, 0.0, -1.0))
    assert sorted(tlas.intersect_instance(ray, 0.0, 100.0)) == [7, 8, 9]
    assert tlas.intersect_instance(ray, 0.0, 5.0) == [9]
