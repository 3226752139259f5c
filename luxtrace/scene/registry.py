from __future__ import annotations

import logging
from typing import Dict, Iterator, Tuple

from luxtrace.geometry.mesh import Hittable
from luxtrace.scene.instance import GeometryHandle

logger = logging.getLogger(__name__)


class GeometryRegistry:
    """
    Handle-keyed table of shared geometry.

    Geometry is added while a scene is being assembled; :meth:`freeze` makes
    the table read-only so it can be shared by concurrent queries.
    """

    def __init__(self) -> None:
        self._items: Dict[GeometryHandle, Hittable] = {}
        self._next = 0
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def add(self, geometry: Hittable) -> GeometryHandle:
        if self._frozen:
            raise RuntimeError("GeometryRegistry is frozen; no geometry can be added.")
        handle = GeometryHandle(self._next)
        self._next += 1
        self._items[handle] = geometry
        logger.debug("registered %s as %s", type(geometry).__name__, handle)
        return handle

    def get(self, handle: GeometryHandle) -> Hittable:
        try:
            return self._items[handle]
        except KeyError:
            raise KeyError(f"Unknown geometry handle: {handle}") from None

    def __getitem__(self, handle: GeometryHandle) -> Hittable:
        return self.get(handle)

    def __contains__(self, handle: object) -> bool:
        return handle in self._items

    def __len__(self) -> int:
        return len(self._items)

    def items(self) -> Iterator[Tuple[GeometryHandle, Hittable]]:
        return iter(self._items.items())

    def freeze(self) -> "GeometryRegistry":
        self._frozen = True
        return self
