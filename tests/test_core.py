from __future__ import annotations

import numpy as np
import pytest

from luxtrace.geometry.core import Transform, Vector3


def test_vector_ops() -> None:
    a = Vector3(1.0, 2.0, 3.0)
    b = Vector3(-1.0, 0.5, 2.0)
    assert a + b == Vector3(0.0, 2.5, 5.0)
    assert a.dot(b) == pytest.approx(6.0)
    assert Vector3(1.0, 0.0, 0.0).cross(Vector3(0.0, 1.0, 0.0)) == Vector3(0.0, 0.0, 1.0)
    assert a.min_with(b) == Vector3(-1.0, 0.5, 2.0)
    assert Vector3(3.0, 0.0, 4.0).normalize().length() == pytest.approx(1.0)
    assert list(a) == [1.0, 2.0, 3.0]


def test_transform_builders() -> None:
    xf = Transform.identity().with_uniform_scale(2.0).with_position(1.0, 2.0, 3.0)
    assert xf.transform_point(Vector3(1.0, 1.0, 1.0)) == Vector3(3.0, 4.0, 5.0)
    assert xf.transform_direction(Vector3(1.0, 1.0, 1.0)) == Vector3(2.0, 2.0, 2.0)
    assert not xf.is_identity()
    assert Transform.identity().is_identity()
    assert Transform.from_list(xf.to_list()).to_list() == xf.to_list()


def test_transform_inverse_and_compose() -> None:
    xf = Transform.from_axis_angle((0.0, 0.0, 1.0), 90.0).with_position(4.0, 0.0, -1.0)
    p = Vector3(1.0, 2.0, 3.0)
    q = xf.inverse().transform_point(xf.transform_point(p))
    assert q.to_array() == pytest.approx(p.to_array())
    r = xf.transform_direction(Vector3(1.0, 0.0, 0.0))
    assert r.to_array() == pytest.approx([0.0, 1.0, 0.0], abs=1e-12)
    both = Transform.from_translation(1.0, 0.0, 0.0).compose(Transform.identity().with_uniform_scale(3.0))
    assert both.transform_point(Vector3(1.0, 1.0, 1.0)) == Vector3(4.0, 3.0, 3.0)


def test_transform_matrix_is_read_only() -> None:
    xf = Transform.from_translation(1.0, 2.0, 3.0)
    assert xf.matrix.shape == (3, 4)
    with pytest.raises(ValueError):
        xf.matrix[0, 3] = 9.0
    assert Transform(matrix=np.eye(4)).is_identity()
