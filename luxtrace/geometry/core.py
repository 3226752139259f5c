"""
Luxtrace Geometry Core

Vector and affine transform primitives shared by the acceleration
structures, the geometry providers and the ray queries.

Transforms follow the usual renderer convention of a 3x4 affine matrix:
the left 3x3 block holds rotation and scale, the last column holds the
translation. Points pick up the translation, directions do not.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterator, List, Sequence, Tuple

import numpy as np


# =============================================================================
# Vector and Point Classes
# =============================================================================

@dataclass(frozen=True)
class Vector3:
    """3D vector for positions, directions and box corners."""
    x: float
    y: float
    z: float

    def __add__(self, other: 'Vector3') -> 'Vector3':
        return Vector3(self.x + other.x, self.y + other.y, self.z + other.z)

    def __sub__(self, other: 'Vector3') -> 'Vector3':
        return Vector3(self.x - other.x, self.y - other.y, self.z - other.z)

    def __mul__(self, scalar: float) -> 'Vector3':
        return Vector3(self.x * scalar, self.y * scalar, self.z * scalar)

    def __rmul__(self, scalar: float) -> 'Vector3':
        return self.__mul__(scalar)

    def __truediv__(self, scalar: float) -> 'Vector3':
        return Vector3(self.x / scalar, self.y / scalar, self.z / scalar)

    def __neg__(self) -> 'Vector3':
        return Vector3(-self.x, -self.y, -self.z)

    def __getitem__(self, axis: int) -> float:
        return (self.x, self.y, self.z)[axis]

    def __iter__(self) -> Iterator[float]:
        yield self.x
        yield self.y
        yield self.z

    def dot(self, other: 'Vector3') -> float:
        """Dot product."""
        return self.x * other.x + self.y * other.y + self.z * other.z

    def cross(self, other: 'Vector3') -> 'Vector3':
        """Cross product."""
        return Vector3(
            self.y * other.z - self.z * other.y,
            self.z * other.x - self.x * other.z,
            self.x * other.y - self.y * other.x
        )

    def length(self) -> float:
        """Euclidean length."""
        return math.sqrt(self.x**2 + self.y**2 + self.z**2)

    def length_squared(self) -> float:
        """Squared length (faster when comparing distances)."""
        return self.x**2 + self.y**2 + self.z**2

    def normalize(self) -> 'Vector3':
        """Return unit vector."""
        L = self.length()
        if L < 1e-10:
            return Vector3(0, 0, 1)
        return self / L

    def min_with(self, other: 'Vector3') -> 'Vector3':
        """Componentwise minimum."""
        return Vector3(min(self.x, other.x), min(self.y, other.y), min(self.z, other.z))

    def max_with(self, other: 'Vector3') -> 'Vector3':
        """Componentwise maximum."""
        return Vector3(max(self.x, other.x), max(self.y, other.y), max(self.z, other.z))

    def to_array(self) -> np.ndarray:
        """Convert to numpy array."""
        return np.array([self.x, self.y, self.z], dtype=float)

    def to_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    @staticmethod
    def from_array(arr: Sequence[float]) -> 'Vector3':
        return Vector3(float(arr[0]), float(arr[1]), float(arr[2]))

    @staticmethod
    def zero() -> 'Vector3':
        return Vector3(0.0, 0.0, 0.0)

    @staticmethod
    def splat(value: float) -> 'Vector3':
        return Vector3(value, value, value)


# Alias for clarity
Point3 = Vector3


# =============================================================================
# Affine Transform
# =============================================================================

def _identity_3x4() -> np.ndarray:
    return np.eye(4, dtype=float)[:3].copy()


@dataclass(frozen=True, eq=False)
class Transform:
    """
    Object-to-world affine transform stored as a read-only 3x4 matrix.

    Builder methods never mutate; they return a new transform so an
    instance list can be shared freely between threads.
    """
    matrix: np.ndarray = field(default_factory=_identity_3x4)
    # Plain-float copy of the matrix rows for scalar hot paths.
    rows: Tuple[Tuple[float, float, float, float], ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        m = np.array(self.matrix, dtype=float)
        if m.shape == (4, 4):
            m = m[:3]
        m = m.reshape(3, 4)
        m.flags.writeable = False
        object.__setattr__(self, "matrix", m)
        object.__setattr__(self, "rows", tuple(tuple(float(v) for v in row) for row in m))

    @classmethod
    def identity(cls) -> "Transform":
        return cls()

    @classmethod
    def from_translation(cls, x: float, y: float, z: float) -> "Transform":
        return cls().with_position(x, y, z)

    @classmethod
    def from_rotation_matrix(cls, rotation: np.ndarray, position: Tuple[float, float, float] = (0.0, 0.0, 0.0)) -> "Transform":
        m = _identity_3x4()
        m[:, :3] = np.asarray(rotation, dtype=float).reshape(3, 3)
        m[:, 3] = np.asarray(position, dtype=float)
        return cls(matrix=m)

    @classmethod
    def from_axis_angle(cls, axis: Tuple[float, float, float], angle_deg: float) -> "Transform":
        """Rotation about an arbitrary axis (Rodrigues)."""
        a = np.asarray(axis, dtype=float)
        n = float(np.linalg.norm(a))
        if n <= 0.0:
            raise ValueError("Rotation axis must be non-zero.")
        kx, ky, kz = a / n
        K = np.array([[0.0, -kz, ky], [kz, 0.0, -kx], [-ky, kx, 0.0]])
        theta = math.radians(angle_deg)
        R = np.eye(3) + math.sin(theta) * K + (1.0 - math.cos(theta)) * (K @ K)
        return cls.from_rotation_matrix(R)

    def _replace(self, m: np.ndarray) -> "Transform":
        return Transform(matrix=m)

    def with_position(self, x: float, y: float, z: float) -> "Transform":
        m = np.array(self.matrix)
        m[:, 3] = (x, y, z)
        return self._replace(m)

    def with_scale(self, x: float, y: float, z: float) -> "Transform":
        m = np.array(self.matrix)
        m[0, 0] = x
        m[1, 1] = y
        m[2, 2] = z
        return self._replace(m)

    def with_uniform_scale(self, s: float) -> "Transform":
        return self.with_scale(s, s, s)

    def compose(self, other: "Transform") -> "Transform":
        """Return ``self * other`` (``other`` is applied first)."""
        return Transform(matrix=(self.to_4x4() @ other.to_4x4())[:3])

    def to_4x4(self) -> np.ndarray:
        m = np.eye(4, dtype=float)
        m[:3] = self.matrix
        return m

    def inverse(self) -> "Transform":
        """Invert the affine map. Raises ``numpy.linalg.LinAlgError`` when singular."""
        return Transform(matrix=np.linalg.inv(self.to_4x4())[:3])

    def is_identity(self) -> bool:
        return bool(np.array_equal(self.matrix, _identity_3x4()))

    def transform_point(self, p: Vector3) -> Vector3:
        """Apply rotation/scale and translation to a point."""
        r0, r1, r2 = self.rows
        return Vector3(
            r0[0] * p.x + r0[1] * p.y + r0[2] * p.z + r0[3],
            r1[0] * p.x + r1[1] * p.y + r1[2] * p.z + r1[3],
            r2[0] * p.x + r2[1] * p.y + r2[2] * p.z + r2[3],
        )

    def transform_direction(self, d: Vector3) -> Vector3:
        """Apply rotation/scale to a direction (no translation)."""
        r0, r1, r2 = self.rows
        return Vector3(
            r0[0] * d.x + r0[1] * d.y + r0[2] * d.z,
            r1[0] * d.x + r1[1] * d.y + r1[2] * d.z,
            r2[0] * d.x + r2[1] * d.y + r2[2] * d.z,
        )

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Vectorised point transform for an ``(N, 3)`` array."""
        pts = np.asarray(points, dtype=float).reshape(-1, 3)
        return pts @ self.matrix[:, :3].T + self.matrix[:, 3]

    def to_list(self) -> List[List[float]]:
        return [[float(v) for v in row] for row in self.matrix]

    @classmethod
    def from_list(cls, rows: Sequence[Sequence[float]]) -> "Transform":
        return cls(matrix=np.asarray(rows, dtype=float))
