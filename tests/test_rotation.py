import math

import numpy as np
import pytest

from slamopt.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    cross_product,
    dot_product,
    quaternion_to_angle_axis,
)


def test_dot_product_symmetric_and_self_is_squared_norm():
    x = [1.5, -2.0, 0.25]
    y = [0.3, 4.0, -1.0]
    assert dot_product(x, y) == pytest.approx(dot_product(y, x))
    assert dot_product(x, x) == pytest.approx(float(np.linalg.norm(x)) ** 2)


def test_cross_product_is_perpendicular():
    x = [1.0, 2.0, 3.0]
    y = [-4.0, 0.5, 2.0]
    c = cross_product(x, y)
    assert dot_product(c, x) == pytest.approx(0.0, abs=1e-12)
    assert dot_product(c, y) == pytest.approx(0.0, abs=1e-12)
    assert np.allclose(cross_product(y, x), -c)


def test_cross_product_of_vector_with_itself_is_zero():
    assert np.allclose(cross_product([3.0, -1.0, 2.0], [3.0, -1.0, 2.0]), 0.0)


def test_zero_angle_axis_gives_identity_quaternion():
    assert np.allclose(angle_axis_to_quaternion([0.0, 0.0, 0.0]), [1.0, 0.0, 0.0, 0.0])


@pytest.mark.parametrize(
    "aa",
    [[0.1, -0.2, 0.3], [1.0, 0.5, -0.7], [0.0, 0.0, 2.5], [1e-9, 0.0, 0.0]],
)
def test_angle_axis_quaternion_round_trip(aa):
    q = angle_axis_to_quaternion(aa)
    assert np.allclose(quaternion_to_angle_axis(q), aa, atol=1e-12)


def test_quaternion_is_unit_for_large_rotation():
    q = angle_axis_to_quaternion([0.4, -1.2, 0.9])
    assert np.linalg.norm(q) == pytest.approx(1.0)


def test_negated_quaternion_gives_same_angle_axis():
    aa = [0.3, 0.2, -0.5]
    q = angle_axis_to_quaternion(aa)
    assert np.allclose(quaternion_to_angle_axis(-q), aa)


def test_rotate_quarter_turn_about_z():
    result = angle_axis_rotate_point([0.0, 0.0, math.pi / 2], [1.0, 0.0, 0.0])
    assert np.allclose(result, [0.0, 1.0, 0.0])


def test_rotation_preserves_norm_and_inverts():
    aa = np.array([0.7, -0.3, 1.1])
    pt = np.array([2.0, -1.0, 5.0])
    rotated = angle_axis_rotate_point(aa, pt)
    assert np.linalg.norm(rotated) == pytest.approx(np.linalg.norm(pt))
    assert np.allclose(angle_axis_rotate_point(-aa, rotated), pt)


def test_tiny_rotation_uses_first_order_approximation():
    aa = np.array([1e-9, -2e-9, 3e-9])
    pt = np.array([1.0, 2.0, 3.0])
    assert np.allclose(angle_axis_rotate_point(aa, pt), pt + cross_product(aa, pt))


def test_rotation_about_axis_keeps_axis_fixed():
    aa = np.array([0.0, 1.3, 0.0])
    pt = np.array([0.0, 4.0, 0.0])
    assert np.allclose(angle_axis_rotate_point(aa, pt), pt)


def test_wrong_length_raises():
    with pytest.raises(ValueError):
        angle_axis_to_quaternion([1.0, 2.0])