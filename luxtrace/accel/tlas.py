from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence, Tuple

from luxtrace.accel.config import DEFAULT_TLAS_CONFIG, SplitAxisPolicy, TLASBuildConfig
from luxtrace.errors import AccelerationBuildError
from luxtrace.geometry.aabb import AABB
from luxtrace.geometry.ray import Ray

if TYPE_CHECKING:
    from luxtrace.scene.instance import Instance
    from luxtrace.scene.registry import GeometryRegistry

logger = logging.getLogger(__name__)


class TLASNodeKind(Enum):
    BRANCH = "branch"
    LEAF = "leaf"


@dataclass(frozen=True)
class TLASNode:
    kind: TLASNodeKind
    bbox: AABB
    # Arena indices of the children; -1 on leaves.
    left: int = -1
    right: int = -1
    # Instance id carried by a leaf; -1 on branches.
    instance_id: int = -1

    @classmethod
    def branch(cls, left: int, right: int, bbox: AABB) -> "TLASNode":
        return cls(kind=TLASNodeKind.BRANCH, bbox=bbox, left=left, right=right)

    @classmethod
    def leaf(cls, instance_id: int, bbox: AABB) -> "TLASNode":
        return cls(kind=TLASNodeKind.LEAF, bbox=bbox, instance_id=instance_id)

    @property
    def is_leaf(self) -> bool:
        return self.kind is TLASNodeKind.LEAF


class _AxisChooser:
    def __init__(self, config: TLASBuildConfig) -> None:
        self.policy = config.axis_policy
        self._rng = random.Random(config.seed)
        self._axis = config.axis
        if self.policy is SplitAxisPolicy.RANDOM_PER_BUILD:
            self._axis = self._rng.randrange(3)

    def choose(self, items: Sequence[Tuple[int, AABB]]) -> int:
        if self.policy is SplitAxisPolicy.RANDOM_PER_NODE:
            return self._rng.randrange(3)
        if self.policy is SplitAxisPolicy.LONGEST_EXTENT:
            cents = [b.center() for _, b in items]
            xs = [c.x for c in cents]
            ys = [c.y for c in cents]
            zs = [c.z for c in cents]
            spans = (max(xs) - min(xs), max(ys) - min(ys), max(zs) - min(zs))
            return spans.index(max(spans))
        return self._axis


def _build_tree(items: List[Tuple[int, AABB]], chooser: _AxisChooser, arena: List[TLASNode]) -> int:
    if len(items) == 1:
        instance_id, box = items[0]
        arena.append(TLASNode.leaf(instance_id, box))
        return len(arena) - 1

    axis = chooser.choose(items)
    ordered = sorted(items, key=lambda item: item[1].min[axis])
    mid = len(ordered) // 2
    left = _build_tree(ordered[:mid], chooser, arena)
    right = _build_tree(ordered[mid:], chooser, arena)
    arena.append(TLASNode.branch(left, right, arena[left].bbox.union(arena[right].bbox)))
    return len(arena) - 1


class TopLevelAccelerationStructure:
    """
    Median-split tree over instance world boxes.

    Nodes live in a flat arena and reference their children by index; the
    root is the last node appended. Queries return every instance whose box
    the ray overlaps, in left-to-right tree order.
    """

    def __init__(
        self,
        nodes: Sequence[TLASNode],
        root: int,
        instances: Sequence["Instance"] = (),
    ) -> None:
        self._nodes: Tuple[TLASNode, ...] = tuple(nodes)
        self._root = int(root)
        self._instances: Tuple["Instance", ...] = tuple(instances)
        self._by_id: Dict[int, "Instance"] = {inst.instance_id: inst for inst in self._instances}

    @classmethod
    def build(
        cls,
        instances: Iterable["Instance"],
        registry: "GeometryRegistry",
        config: TLASBuildConfig = DEFAULT_TLAS_CONFIG,
    ) -> "TopLevelAccelerationStructure":
        inst_list = list(instances)
        pairs = [(inst.instance_id, inst.world_bounds(registry)) for inst in inst_list]
        return cls.from_bounds(pairs, config=config, instances=inst_list)

    @classmethod
    def from_bounds(
        cls,
        pairs: Iterable[Tuple[int, AABB]],
        config: TLASBuildConfig = DEFAULT_TLAS_CONFIG,
        instances: Sequence["Instance"] = (),
    ) -> "TopLevelAccelerationStructure":
        items = [(int(i), box) for i, box in pairs]
        if not items:
            raise AccelerationBuildError("Cannot build a TLAS without at least one instance.")
        t0 = time.perf_counter()
        arena: List[TLASNode] = []
        root = _build_tree(items, _AxisChooser(config), arena)
        tlas = cls(arena, root, instances)
        logger.debug(
            "built TLAS: %d instances, %d nodes, depth %d, policy %s in %.3f ms",
            len(items),
            len(arena),
            tlas.depth(),
            config.axis_policy.value,
            (time.perf_counter() - t0) * 1e3,
        )
        return tlas

    @property
    def nodes(self) -> Tuple[TLASNode, ...]:
        return self._nodes

    @property
    def root(self) -> int:
        return self._root

    @property
    def instances(self) -> Tuple["Instance", ...]:
        return self._instances

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    def instance(self, instance_id: int) -> Optional["Instance"]:
        return self._by_id.get(int(instance_id))

    def bounding_box(self) -> AABB:
        return self._nodes[self._root].bbox

    def depth(self) -> int:
        deepest = 0
        stack = [(self._root, 0)]
        while stack:
            idx, d = stack.pop()
            node = self._nodes[idx]
            if node.is_leaf:
                deepest = max(deepest, d)
            else:
                stack.append((node.left, d + 1))
                stack.append((node.right, d + 1))
        return deepest

    def leaf_ids(self) -> List[int]:
        return [n.instance_id for n in self._nodes if n.is_leaf]

    def _intersect(self, idx: int, ray: Ray, t_min: float, t_max: float, out: List[int]) -> None:
        node = self._nodes[idx]
        if not node.bbox.hit(ray, t_min, t_max):
            return
        if node.is_leaf:
            out.append(node.instance_id)
            return
        self._intersect(node.left, ray, t_min, t_max, out)
        self._intersect(node.right, ray, t_min, t_max, out)

    def intersect_instance(self, ray: Ray, t_min: float, t_max: float) -> List[int]:
        out: List[int] = []
        self._intersect(self._root, ray, t_min, t_max, out)
        return out

    def to_dict(self) -> Dict[str, Any]:
        nodes: List[Dict[str, Any]] = []
        for n in self._nodes:
            if n.is_leaf:
                nodes.append({"kind": n.kind.value, "instance_id": n.instance_id, "bbox": n.bbox.to_dict()})
            else:
                nodes.append({"kind": n.kind.value, "left": n.left, "right": n.right, "bbox": n.bbox.to_dict()})
        return {"root": self._root, "nodes": nodes}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TopLevelAccelerationStructure":
        nodes: List[TLASNode] = []
        for raw in data["nodes"]:
            box = AABB.from_dict(raw["bbox"])
            if raw["kind"] == TLASNodeKind.LEAF.value:
                nodes.append(TLASNode.leaf(int(raw["instance_id"]), box))
            else:
                nodes.append(TLASNode.branch(int(raw["left"]), int(raw["right"]), box))
        if not nodes:
            raise AccelerationBuildError("TLAS data holds no nodes.")
        return cls(nodes, int(data["root"]))

