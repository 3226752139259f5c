from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence

import numpy as np

from luxtrace.geometry.core import Point3, Transform, Vector3
from luxtrace.geometry.ray import Ray
from luxtrace.geometry.tolerance import EPS_BOX_PAD, EPS_POS


def _pad_axis(lo: float, hi: float, pad: float) -> tuple[float, float]:
    if hi - lo <= EPS_POS:
        return lo - pad, hi + pad
    return lo, hi


@dataclass(frozen=True)
class AABB:
    min: Point3
    max: Point3

    def __post_init__(self) -> None:
        if self.min.x > self.max.x or self.min.y > self.max.y or self.min.z > self.max.z:
            raise ValueError(f"AABB min {self.min} exceeds max {self.max}.")

    @classmethod
    def from_points(cls, points: Iterable[Point3], pad: float = EPS_BOX_PAD) -> "AABB":
        pts = list(points)
        if not pts:
            raise ValueError("AABB.from_points requires at least one point.")
        xs = [float(p[0]) for p in pts]
        ys = [float(p[1]) for p in pts]
        zs = [float(p[2]) for p in pts]
        return cls.from_bounds(min(xs), min(ys), min(zs), max(xs), max(ys), max(zs), pad=pad)

    @classmethod
    def from_bounds(
        cls,
        min_x: float,
        min_y: float,
        min_z: float,
        max_x: float,
        max_y: float,
        max_z: float,
        pad: float = EPS_BOX_PAD,
    ) -> "AABB":
        x0, x1 = _pad_axis(float(min_x), float(max_x), pad)
        y0, y1 = _pad_axis(float(min_y), float(max_y), pad)
        z0, z1 = _pad_axis(float(min_z), float(max_z), pad)
        return cls(min=Vector3(x0, y0, z0), max=Vector3(x1, y1, z1))

    @classmethod
    def from_row(cls, row: Sequence[float]) -> "AABB":
        return cls(
            min=Vector3(float(row[0]), float(row[1]), float(row[2])),
            max=Vector3(float(row[3]), float(row[4]), float(row[5])),
        )

    def to_row(self) -> List[float]:
        return [self.min.x, self.min.y, self.min.z, self.max.x, self.max.y, self.max.z]

    def to_dict(self) -> Dict[str, Any]:
        return {"min": list(self.min.to_tuple()), "max": list(self.max.to_tuple())}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AABB":
        return cls(min=Vector3.from_array(data["min"]), max=Vector3.from_array(data["max"]))

    def padded(self, pad: float = EPS_BOX_PAD) -> "AABB":
        return AABB.from_bounds(*self.to_row(), pad=pad)

    @staticmethod
    def merge(boxes: Iterable["AABB"]) -> "AABB":
        return merge_aabbs(boxes)

    def center(self) -> Point3:
        return (self.min + self.max) * 0.5

    def dimensions(self) -> Vector3:
        return self.max - self.min

    def relative_position(self, p: Point3) -> Vector3:
        """Position of ``p`` normalised into ``[0, 1]^3`` against this box."""
        d = self.dimensions()
        return Vector3(
            (p.x - self.min.x) / d.x if d.x > EPS_POS else 0.0,
            (p.y - self.min.y) / d.y if d.y > EPS_POS else 0.0,
            (p.z - self.min.z) / d.z if d.z > EPS_POS else 0.0,
        )

    def union(self, other: "AABB") -> "AABB":
        return AABB(min=self.min.min_with(other.min), max=self.max.max_with(other.max))

    def contains_box(self, other: "AABB") -> bool:
        return (
            self.min.x <= other.min.x
            and self.min.y <= other.min.y
            and self.min.z <= other.min.z
            and self.max.x >= other.max.x
            and self.max.y >= other.max.y
            and self.max.z >= other.max.z
        )

    def hit(self, ray: Ray, t_min: float, t_max: float) -> bool:
        # Slab test. NaN products (0 * inf) fail both comparisons and leave the interval untouched.
        o = ray.origin
        inv = ray.inv_direction
        for mn, mx, oa, inv_d in (
            (self.min.x, self.max.x, o.x, inv.x),
            (self.min.y, self.max.y, o.y, inv.y),
            (self.min.z, self.max.z, o.z, inv.z),
        ):
            t0 = (mn - oa) * inv_d
            t1 = (mx - oa) * inv_d
            if inv_d < 0.0:
                t0, t1 = t1, t0
            if t0 > t_min:
                t_min = t0
            if t1 < t_max:
                t_max = t1
            if t_max <= t_min:
                return False
        return True

    def transformed(self, transform: Transform) -> "AABB":
        """
        World box of the eight transformed corners.

        Exact for translation and axis-aligned scale; for rotated transforms it
        is a conservative over-approximation of the underlying geometry.
        """
        mn = self.min.to_tuple()
        mx = self.max.to_tuple()
        out_lo: List[float] = []
        out_hi: List[float] = []
        for r in transform.rows:
            lo = hi = r[3]
            for k in range(3):
                a = r[k] * mn[k]
                b = r[k] * mx[k]
                if a < b:
                    lo += a
                    hi += b
                else:
                    lo += b
                    hi += a
            out_lo.append(lo)
            out_hi.append(hi)
        return AABB.from_bounds(*out_lo, *out_hi)


def merge_aabbs(boxes: Iterable[AABB]) -> AABB:
    it = iter(boxes)
    try:
        out = next(it)
    except StopIteration:
        raise ValueError("merge_aabbs requires at least one box.") from None
    for b in it:
        out = out.union(b)
    return out


def aabb_rows(boxes: Sequence[AABB]) -> np.ndarray:
    """Pack boxes into an ``(N, 6)`` float64 array of ``min xyz, max xyz``."""
    if not boxes:
        return np.zeros((0, 6), dtype=np.float64)
    return np.asarray([b.to_row() for b in boxes], dtype=np.float64)
