from __future__ import annotations

import random

import numpy as np
import pytest

from luxtrace.accel.morton import (
    MortonCode,
    expand_bits,
    expand_bits_array,
    leading_zeros32,
    morton3d,
    morton_codes,
    quantize_unit,
    sorted_morton_codes,
)
from luxtrace.geometry.core import Vector3


def test_expand_bits_layout() -> None:
    assert expand_bits(0) == 0
    assert expand_bits(1) == 1
    assert expand_bits(2) == 0b1000
    assert expand_bits(3) == 0b1001
    assert expand_bits(1023) == 0x09249249
    with pytest.raises(ValueError):
        expand_bits(1024)
    with pytest.raises(ValueError):
        expand_bits(-1)


def test_expand_bits_array_matches_scalar() -> None:
    values = np.arange(0, 1024, 7)
    expected = [expand_bits(int(v)) for v in values]
    assert expand_bits_array(values).tolist() == expected


def test_quantize_clamps() -> None:
    assert quantize_unit(-0.5) == 0
    assert quantize_unit(0.0) == 0
    assert quantize_unit(0.5) == 512
    assert quantize_unit(1.0) == 1023
    assert quantize_unit(7.0) == 1023


def test_morton3d_interleaves_xyz() -> None:
    cell = 1.0 / 1024.0
    assert morton3d(cell, 0.0, 0.0) == 0b001
    assert morton3d(0.0, cell, 0.0) == 0b010
    assert morton3d(0.0, 0.0, cell) == 0b100
    assert morton3d(1.0, 1.0, 1.0) == 0x3FFFFFFF
    assert MortonCode.from_position(Vector3(0.0, 0.0, cell), 4) == MortonCode(code=4, primitive_id=4)


def test_vectorised_codes_match_scalar() -> None:
    rng = random.Random(3)
    pts = [(rng.random(), rng.random(), rng.random()) for _ in range(64)]
    codes = morton_codes(np.asarray(pts))
    assert codes.dtype == np.uint32
    assert codes.tolist() == [morton3d(*p) for p in pts]


def test_sorted_codes_keep_primitive_order_on_ties() -> None:
    pts = np.asarray([[0.5, 0.5, 0.5], [0.0, 0.0, 0.0], [0.5, 0.5, 0.5]])
    ordered = sorted_morton_codes(pts)
    assert [m.primitive_id for m in ordered] == [1, 0, 2]
    assert ordered[1].code == ordered[2].code


def test_leading_zeros32() -> None:
    assert leading_zeros32(0) == 32
    assert leading_zeros32(1) == 31
    assert leading_zeros32(0x80000000) == 0
