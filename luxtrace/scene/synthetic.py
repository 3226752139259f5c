from __future__ import annotations

import random
from typing import List, Tuple

import numpy as np

from luxtrace.geometry.core import Vector3


def random_triangles(n: int, seed: int = 7) -> np.ndarray:
    """``(3n, 3)`` triangle soup of small triangles scattered over a 40 x 40 x 8 slab."""
    rng = random.Random(seed)
    out: List[Tuple[float, float, float]] = []
    for _ in range(n):
        x = rng.uniform(-20.0, 20.0)
        y = rng.uniform(-20.0, 20.0)
        z = rng.uniform(0.0, 8.0)
        s = rng.uniform(0.2, 1.2)
        out.append((x, y, z))
        out.append((x + s, y, z))
        out.append((x, y + s, z + 0.1 * s))
    return np.asarray(out, dtype=np.float64).reshape(-1, 3)


def sweep_rays(count: int) -> List[Tuple[Vector3, Vector3]]:
    """A fan of parallel rays across the slab built by :func:`random_triangles`."""
    direction = Vector3(1.0, 1.0, 0.1).normalize()
    rays: List[Tuple[Vector3, Vector3]] = []
    for i in range(count):
        ox = -30.0 + (i % 40) * 1.5
        oy = -30.0 + (i // 40) * 1.0
        rays.append((Vector3(ox, oy, 1.5), direction))
    return rays
