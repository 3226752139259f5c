from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from luxtrace.geometry.aabb import AABB
from luxtrace.geometry.core import Transform

if TYPE_CHECKING:
    from luxtrace.scene.registry import GeometryRegistry


@dataclass(frozen=True)
class GeometryHandle:
    """Opaque key into a :class:`GeometryRegistry`."""

    key: int


@dataclass(frozen=True)
class Instance:
    """One placement of shared geometry in the scene."""

    geometry_id: GeometryHandle
    instance_id: int
    material_id: Any = None
    transform: Transform = field(default_factory=Transform.identity)
    # Back-face culling for triangle geometry.
    cull: bool = False
    hit_shader_id: int = 0

    def with_transform(self, transform: Transform) -> "Instance":
        return replace(self, transform=transform)

    def with_position(self, x: float, y: float, z: float) -> "Instance":
        return self.with_transform(self.transform.with_position(x, y, z))

    def with_scale(self, x: float, y: float, z: float) -> "Instance":
        return self.with_transform(self.transform.with_scale(x, y, z))

    def with_uniform_scale(self, s: float) -> "Instance":
        return self.with_transform(self.transform.with_uniform_scale(s))

    def with_hit_shader(self, hit_shader_id: int) -> "Instance":
        return replace(self, hit_shader_id=int(hit_shader_id))

    def world_bounds(self, registry: "GeometryRegistry") -> AABB:
        return registry[self.geometry_id].bounding_box().transformed(self.transform)
