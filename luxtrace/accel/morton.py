from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np

from luxtrace.geometry.core import Point3

# 10 bits per axis, interleaved into a 30-bit key.
MORTON_BITS_PER_AXIS = 10
MORTON_GRID = 1 << MORTON_BITS_PER_AXIS
MORTON_MAX_CELL = MORTON_GRID - 1


def expand_bits(v: int) -> int:
    """Spread a 10-bit value over 30 bits, two zero bits after every input bit."""
    if v < 0 or v > MORTON_MAX_CELL:
        raise ValueError(f"expand_bits expects a 10-bit value, got {v}.")
    v = (v | (v << 16)) & 0x030000FF
    v = (v | (v << 8)) & 0x0300F00F
    v = (v | (v << 4)) & 0x030C30C3
    v = (v | (v << 2)) & 0x09249249
    return v


def expand_bits_array(v: np.ndarray) -> np.ndarray:
    x = np.asarray(v, dtype=np.uint64)
    x = (x | (x << np.uint64(16))) & np.uint64(0x030000FF)
    x = (x | (x << np.uint64(8))) & np.uint64(0x0300F00F)
    x = (x | (x << np.uint64(4))) & np.uint64(0x030C30C3)
    x = (x | (x << np.uint64(2))) & np.uint64(0x09249249)
    return x.astype(np.uint32)


def quantize_unit(c: float) -> int:
    return int(min(max(c * MORTON_GRID, 0.0), float(MORTON_MAX_CELL)))


def morton3d(x: float, y: float, z: float) -> int:
    """Morton key of a point already normalised into ``[0, 1]^3``."""
    return expand_bits(quantize_unit(x)) | (expand_bits(quantize_unit(y)) << 1) | (expand_bits(quantize_unit(z)) << 2)


@dataclass(frozen=True)
class MortonCode:
    code: int
    primitive_id: int

    @classmethod
    def from_position(cls, position: Point3, primitive_id: int) -> "MortonCode":
        return cls(code=morton3d(position.x, position.y, position.z), primitive_id=int(primitive_id))


def morton_codes(unit_positions: np.ndarray) -> np.ndarray:
    """Vectorised :func:`morton3d` over an ``(N, 3)`` array of normalised positions."""
    p = np.asarray(unit_positions, dtype=np.float64).reshape(-1, 3)
    # NaN (from an unreachable zero-extent axis) collapses to cell 0.
    cells = np.nan_to_num(p * MORTON_GRID, nan=0.0)
    cells = np.clip(cells, 0.0, float(MORTON_MAX_CELL)).astype(np.uint32)
    x = expand_bits_array(cells[:, 0])
    y = expand_bits_array(cells[:, 1])
    z = expand_bits_array(cells[:, 2])
    return (x | (y << np.uint32(1)) | (z << np.uint32(2))).astype(np.uint32)


def sorted_morton_codes(unit_positions: np.ndarray) -> List[MortonCode]:
    """Morton codes paired with primitive ids, ascending by code; ties keep primitive order."""
    codes = morton_codes(unit_positions)
    order = np.argsort(codes, kind="stable")
    return [MortonCode(code=int(codes[i]), primitive_id=int(i)) for i in order]


def leading_zeros32(x: int) -> int:
    return 32 - int(x).bit_length()
