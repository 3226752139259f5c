from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple

import numpy as np

from luxtrace.accel.blas import BottomLevelAccelerationStructure
from luxtrace.accel.config import DEFAULT_BLAS_CONFIG, BLASBuildConfig
from luxtrace.geometry.aabb import AABB
from luxtrace.geometry.core import Point3, Transform, Vector3
from luxtrace.geometry.ray import Ray
from luxtrace.geometry.tolerance import EPS_DET, EPS_POS


@dataclass(frozen=True)
class Intersection:
    ray: Ray
    t: float
    primitive_id: int
    # (u, v) weights of the second and third vertex; the first gets 1 - u - v.
    barycentrics: Tuple[float, float] = (0.0, 0.0)

    def point(self) -> Point3:
        return self.ray.at(self.t)


class Hittable(Protocol):
    def bounding_box(self) -> AABB:
        ...

    def intersect(
        self,
        object_to_world: Transform,
        ray: Ray,
        cull: bool,
        t_min: float,
        t_max: float,
    ) -> Optional[Intersection]:
        ...

    def normal(self, object_to_world: Transform, hit: Intersection) -> Vector3:
        ...

    def uv(self, object_to_world: Transform, hit: Intersection) -> Tuple[float, float]:
        ...


def ray_intersects_triangle(
    origin: Vector3,
    direction: Vector3,
    a: Vector3,
    b: Vector3,
    c: Vector3,
    *,
    cull: bool = False,
    t_min: float = 0.0,
    t_max: float = math.inf,
) -> Optional[Tuple[float, float, float]]:
    # Moller-Trumbore intersection; returns (t, u, v).
    e1 = b - a
    e2 = c - a
    pvec = direction.cross(e2)
    det = e1.dot(pvec)
    if cull:
        # Back faces (clockwise as seen along the ray) are rejected.
        if det < EPS_DET:
            return None
    elif abs(det) < EPS_DET:
        return None
    inv_det = 1.0 / det
    tvec = origin - a
    u = tvec.dot(pvec) * inv_det
    if u < 0.0 or u > 1.0:
        return None
    qvec = tvec.cross(e1)
    v = direction.dot(qvec) * inv_det
    if v < 0.0 or (u + v) > 1.0:
        return None
    t = e2.dot(qvec) * inv_det
    if t < t_min or t > t_max:
        return None
    return t, u, v


def smooth_normals(positions: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """Per-vertex normals from the normalised face normals of every adjacent triangle."""
    v0 = positions[triangles[:, 0]]
    v1 = positions[triangles[:, 1]]
    v2 = positions[triangles[:, 2]]
    face = np.cross(v1 - v0, v2 - v0)
    lengths = np.linalg.norm(face, axis=1, keepdims=True)
    face = np.divide(face, lengths, out=np.zeros_like(face), where=lengths > EPS_POS)
    normals = np.zeros_like(positions)
    for k in range(3):
        np.add.at(normals, triangles[:, k], face)
    lengths = np.linalg.norm(normals, axis=1, keepdims=True)
    return np.divide(normals, lengths, out=np.zeros_like(normals), where=lengths > EPS_POS)


class TriangleMesh:
    """Indexed triangle mesh with its own BLAS, built once at construction."""

    def __init__(
        self,
        positions: Sequence[Sequence[float]] | np.ndarray,
        indices: Optional[Sequence[int] | np.ndarray] = None,
        normals: Optional[Sequence[Sequence[float]] | np.ndarray] = None,
        tex_coords: Optional[Sequence[Sequence[float]] | np.ndarray] = None,
        *,
        config: BLASBuildConfig = DEFAULT_BLAS_CONFIG,
    ) -> None:
        pos = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        self.blas = BottomLevelAccelerationStructure.build(pos, indices, config=config)
        if indices is None:
            tris = np.arange(pos.shape[0], dtype=np.int64).reshape(-1, 3)
        else:
            tris = np.asarray(indices, dtype=np.int64).reshape(-1, 3)

        if normals is None or len(normals) == 0:
            nrm = smooth_normals(pos, tris)
        else:
            nrm = np.asarray(normals, dtype=np.float64).reshape(-1, 3)
            lengths = np.linalg.norm(nrm, axis=1, keepdims=True)
            nrm = np.divide(nrm, lengths, out=np.zeros_like(nrm), where=lengths > EPS_POS)
        if tex_coords is None or len(tex_coords) == 0:
            uvs = np.zeros((pos.shape[0], 2), dtype=np.float64)
        else:
            uvs = np.asarray(tex_coords, dtype=np.float64).reshape(-1, 2)

        for a in (pos, tris, nrm, uvs):
            a.flags.writeable = False
        self.positions = pos
        self.triangles = tris
        self.normals = nrm
        self.tex_coords = uvs
        self._verts = [Vector3(*row) for row in pos.tolist()]

    @property
    def triangle_count(self) -> int:
        return int(self.triangles.shape[0])

    def bounding_box(self) -> AABB:
        return self.blas.bounding_box()

    def world_vertices(self, object_to_world: Transform, primitive_id: int) -> Tuple[Vector3, Vector3, Vector3]:
        i0, i1, i2 = (int(i) for i in self.triangles[primitive_id])
        if object_to_world.is_identity():
            return self._verts[i0], self._verts[i1], self._verts[i2]
        tp = object_to_world.transform_point
        return tp(self._verts[i0]), tp(self._verts[i1]), tp(self._verts[i2])

    def intersect(
        self,
        object_to_world: Transform,
        ray: Ray,
        cull: bool,
        t_min: float,
        t_max: float,
    ) -> Optional[Intersection]:
        best: Optional[Intersection] = None
        closest = t_max
        for prim in self.blas.hit_test(object_to_world, ray, t_min, t_max):
            a, b, c = self.world_vertices(object_to_world, prim)
            hit = ray_intersects_triangle(ray.origin, ray.direction, a, b, c, cull=cull, t_min=t_min, t_max=closest)
            if hit is None:
                continue
            t, u, v = hit
            if best is None or t < closest:
                closest = t
                best = Intersection(ray=ray, t=t, primitive_id=prim, barycentrics=(u, v))
        return best

    def normal(self, object_to_world: Transform, hit: Intersection) -> Vector3:
        u, v = hit.barycentrics
        i0, i1, i2 = self.triangles[hit.primitive_id]
        n = self.normals[i0] * (1.0 - u - v) + self.normals[i1] * u + self.normals[i2] * v
        # Normals follow the inverse transpose of the linear part.
        normal_matrix = np.linalg.inv(object_to_world.matrix[:, :3]).T
        return Vector3.from_array(normal_matrix @ n).normalize()

    def uv(self, object_to_world: Transform, hit: Intersection) -> Tuple[float, float]:
        u, v = hit.barycentrics
        i0, i1, i2 = self.triangles[hit.primitive_id]
        st = self.tex_coords[i0] * (1.0 - u - v) + self.tex_coords[i1] * u + self.tex_coords[i2] * v
        return float(st[0]), float(st[1])


@dataclass(frozen=True)
class Sphere:
    radius: float
    center: Point3 = Vector3(0.0, 0.0, 0.0)

    def __post_init__(self) -> None:
        if self.radius <= 0.0:
            raise ValueError(f"Sphere radius must be positive, got {self.radius}.")

    def bounding_box(self) -> AABB:
        r = Vector3.splat(self.radius)
        return AABB(min=self.center - r, max=self.center + r)

    def _world(self, object_to_world: Transform) -> Tuple[Point3, float]:
        # Uniform scale is assumed; the x axis length stands in for all three.
        scale = object_to_world.transform_direction(Vector3(1.0, 0.0, 0.0)).length()
        return object_to_world.transform_point(self.center), self.radius * scale

    def intersect(
        self,
        object_to_world: Transform,
        ray: Ray,
        cull: bool,
        t_min: float,
        t_max: float,
    ) -> Optional[Intersection]:
        center, r = self._world(object_to_world)
        oc = ray.origin - center
        a = ray.direction.dot(ray.direction)
        half_b = oc.dot(ray.direction)
        c = oc.dot(oc) - r * r
        discr = half_b * half_b - a * c
        if discr < EPS_DET:
            return None
        sqrtd = math.sqrt(discr)
        root = (-half_b - sqrtd) / a
        if root < t_min or root > t_max:
            root = (-half_b + sqrtd) / a
            if root < t_min or root > t_max:
                return None
        return Intersection(ray=ray, t=root, primitive_id=0)

    def normal(self, object_to_world: Transform, hit: Intersection) -> Vector3:
        center, _ = self._world(object_to_world)
        return (hit.point() - center).normalize()

    def uv(self, object_to_world: Transform, hit: Intersection) -> Tuple[float, float]:
        return 0.0, 0.0
