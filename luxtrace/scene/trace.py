from __future__ import annotations

from typing import Optional, Tuple

from luxtrace.accel.tlas import TopLevelAccelerationStructure
from luxtrace.geometry.mesh import Intersection
from luxtrace.geometry.ray import Ray
from luxtrace.geometry.tolerance import RAY_TMAX, RAY_TMIN
from luxtrace.scene.registry import GeometryRegistry


def closest_hit(
    tlas: TopLevelAccelerationStructure,
    registry: GeometryRegistry,
    ray: Ray,
    t_min: float = RAY_TMIN,
    t_max: float = RAY_TMAX,
) -> Optional[Tuple[int, Intersection]]:
    """Nearest ``(instance_id, Intersection)`` along ``ray`` within ``[t_min, t_max]``, or ``None``."""
    best: Optional[Tuple[int, Intersection]] = None
    closest = t_max
    for instance_id in tlas.intersect_instance(ray, t_min, t_max):
        inst = tlas.instance(instance_id)
        if inst is None:
            continue
        hit = registry[inst.geometry_id].intersect(inst.transform, ray, inst.cull, t_min, closest)
        if hit is None:
            continue
        if best is None or hit.t < closest:
            closest = hit.t
            best = (inst.instance_id, hit)
    return best
