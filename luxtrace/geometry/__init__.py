"""
Luxtrace Geometry Module

Vectors, affine transforms, rays and axis-aligned boxes. Mesh and sphere
providers live in :mod:`luxtrace.geometry.mesh`.
"""

from luxtrace.geometry.aabb import AABB, aabb_rows, merge_aabbs
from luxtrace.geometry.core import Point3, Transform, Vector3
from luxtrace.geometry.ray import Ray

__all__ = [
    "AABB",
    "Point3",
    "Ray",
    "Transform",
    "Vector3",
    "aabb_rows",
    "merge_aabbs",
]
