"""Angle-axis and quaternion rotation helpers for 3-vectors."""

from __future__ import annotations

import math
import sys
from typing import Sequence

import numpy as np

_EPSILON = sys.float_info.epsilon


def _vec(values: Sequence[float], size: int) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (size,):
        raise ValueError(f"expected a vector of length {size}, got shape {arr.shape}")
    return arr


def dot_product(x: Sequence[float], y: Sequence[float]) -> float:
    """Dot product of two 3-vectors."""
    a, b = _vec(x, 3), _vec(y, 3)
    return float(a[0] * b[0] + a[1] * b[1] + a[2] * b[2])


def cross_product(x: Sequence[float], y: Sequence[float]) -> np.ndarray:
    """Cross product of two 3-vectors."""
    a, b = _vec(x, 3), _vec(y, 3)
    return np.array(
        [
            a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0],
        ]
    )


def angle_axis_to_quaternion(angle_axis: Sequence[float]) -> np.ndarray:
    """Convert an angle-axis vector to a quaternion ordered (w, x, y, z)."""
    a = _vec(angle_axis, 3)
    theta_squared = dot_product(a, a)
    if theta_squared > _EPSILON:
        theta = math.sqrt(theta_squared)
        half_theta = theta * 0.5
        k = math.sin(half_theta) / theta
        w = math.cos(half_theta)
    else:
        k = 0.5
        w = 1.0
    return np.array([w, a[0] * k, a[1] * k, a[2] * k])


def quaternion_to_angle_axis(quaternion: Sequence[float]) -> np.ndarray:
    """Convert a quaternion ordered (w, x, y, z) to an angle-axis vector."""
    q = _vec(quaternion, 4)
    imag = q[1:]
    sin_squared_theta = dot_product(imag, imag)
    if sin_squared_theta > _EPSILON:
        sin_theta = math.sqrt(sin_squared_theta)
        cos_theta = q[0]
        # Keep the resulting angle within [-pi, pi].
        if cos_theta < 0.0:
            two_theta = 2.0 * math.atan2(-sin_theta, -cos_theta)
        else:
            two_theta = 2.0 * math.atan2(sin_theta, cos_theta)
        k = two_theta / sin_theta
    else:
        k = 2.0
    return imag * k


def angle_axis_rotate_point(angle_axis: Sequence[float], pt: Sequence[float]) -> np.ndarray:
    """Rotate a 3D point by an angle-axis rotation (Rodrigues' formula)."""
    a = _vec(angle_axis, 3)
    p = _vec(pt, 3)
    theta2 = dot_product(a, a)
    if theta2 > _EPSILON:
        theta = math.sqrt(theta2)
        costheta = math.cos(theta)
        sintheta = math.sin(theta)
        w = a / theta
        w_cross_pt = cross_product(w, p)
        tmp = dot_product(w, p) * (1.0 - costheta)
        return p * costheta + w_cross_pt * sintheta + w * tmp
    # First-order Taylor approximation near zero rotation: R * p = p + a x p.
    return p + cross_product(a, p)