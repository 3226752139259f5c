from __future__ import annotations

import math
from dataclasses import dataclass, field

from luxtrace.geometry.core import Point3, Transform, Vector3


def _reciprocal(d: float) -> float:
    if d == 0.0:
        return math.copysign(math.inf, d)
    return 1.0 / d


@dataclass(frozen=True)
class Ray:
    origin: Point3
    direction: Vector3
    # Componentwise reciprocal of ``direction``; computed once per ray for the slab test.
    inv_direction: Vector3 = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        d = self.direction
        object.__setattr__(self, "inv_direction", Vector3(_reciprocal(d.x), _reciprocal(d.y), _reciprocal(d.z)))

    def at(self, t: float) -> Point3:
        return self.origin + self.direction * t

    def transformed(self, transform: Transform) -> "Ray":
        """Map the ray through ``transform`` without renormalising, so ``t`` is preserved."""
        return Ray(origin=transform.transform_point(self.origin), direction=transform.transform_direction(self.direction))
