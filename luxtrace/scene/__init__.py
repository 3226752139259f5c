from .instance import GeometryHandle, Instance
from .registry import GeometryRegistry
from .trace import closest_hit

__all__ = [
    "GeometryHandle",
    "GeometryRegistry",
    "Instance",
    "closest_hit",
]
