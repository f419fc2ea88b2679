"""Rigid-body transforms in 3D with their Lie-algebra exponential and logarithm.

Tangent vectors are ordered (upsilon, omega): translational part first,
rotational part last. Quaternions are ordered (w, x, y, z).
"""

from __future__ import annotations

import math
from typing import Sequence, Union

import numpy as np

SMALL_EPS = 1e-10


def _vector(values: Sequence[float], size: int, what: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (size,):
        raise ValueError(f"{what} must have length {size}, got shape {arr.shape}")
    return arr


def hat(v: Sequence[float]) -> np.ndarray:
    """Skew-symmetric matrix such that hat(v) @ w equals the cross product v x w."""
    x, y, z = _vector(v, 3, "vector")
    return np.array([
        [0.0, -z, y],
        [z, 0.0, -x],
        [-y, x, 0.0],
    ])


def _normalized(quaternion: Sequence[float]) -> np.ndarray:
    q = _vector(quaternion, 4, "quaternion")
    norm = float(np.linalg.norm(q))
    if norm == 0.0:
        raise ValueError("quaternion must not be zero")
    return q / norm


def _quat_multiply(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    w1, v1 = a[0], a[1:]
    w2, v2 = b[0], b[1:]
    w = w1 * w2 - float(v1 @ v2)
    v = w1 * v2 + w2 * v1 + np.cross(v1, v2)
    return np.concatenate([[w], v])


def _quat_to_matrix(q: np.ndarray) -> np.ndarray:
    w, x, y, z = q
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
        [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
        [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
    ])


def _matrix_to_quat(rotation: Sequence[Sequence[float]]) -> np.ndarray:
    r = np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError(f"rotation must be a 3x3 matrix, got shape {r.shape}")
    trace = r[0, 0] + r[1, 1] + r[2, 2]
    if trace > 0.0:
        s = math.sqrt(trace + 1.0) * 2.0
        q = [0.25 * s, (r[2, 1] - r[1, 2]) / s, (r[0, 2] - r[2, 0]) / s, (r[1, 0] - r[0, 1]) / s]
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        s = math.sqrt(1.0 + r[0, 0] - r[1, 1] - r[2, 2]) * 2.0
        q = [(r[2, 1] - r[1, 2]) / s, 0.25 * s, (r[0, 1] + r[1, 0]) / s, (r[0, 2] + r[2, 0]) / s]
    elif r[1, 1] > r[2, 2]:
        s = math.sqrt(1.0 + r[1, 1] - r[0, 0] - r[2, 2]) * 2.0
        q = [(r[0, 2] - r[2, 0]) / s, (r[0, 1] + r[1, 0]) / s, 0.25 * s, (r[1, 2] + r[2, 1]) / s]
    else:
        s = math.sqrt(1.0 + r[2, 2] - r[0, 0] - r[1, 1]) * 2.0
        q = [(r[1, 0] - r[0, 1]) / s, (r[0, 2] + r[2, 0]) / s, (r[1, 2] + r[2, 1]) / s, 0.25 * s]
    return _normalized(q)


def _quat_exp(phi: Sequence[float]) -> tuple:
    omega = _vector(phi, 3, "rotation vector")
    theta_sq = float(omega @ omega)
    theta = math.sqrt(theta_sq)
    half_theta = 0.5 * theta
    if theta < SMALL_EPS:
        theta_po4 = theta_sq * theta_sq
        imag_factor = 0.5 - theta_sq / 48.0 + theta_po4 / 3840.0
        real_factor = 1.0 - 0.5 * theta_sq + theta_po4 / 384.0
    else:
        imag_factor = math.sin(half_theta) / theta
        real_factor = math.cos(half_theta)
    q = np.concatenate([[real_factor], imag_factor * omega])
    return q, theta


def _quat_log(q: np.ndarray) -> tuple:
    vec = q[1:]
    n = float(np.linalg.norm(vec))
    w = float(q[0])
    if n < SMALL_EPS:
        if abs(w) <= SMALL_EPS:
            raise ValueError("quaternion is not a valid rotation")
        factor = 2.0 / w - 2.0 * (n * n) / (w * w * w)
    elif abs(w) < SMALL_EPS:
        factor = math.pi / n if w >= 0.0 else -math.pi / n
    else:
        factor = 2.0 * math.atan(n / w) / n
    return factor * vec, factor * n


def so3_exp(phi: Sequence[float]) -> np.ndarray:
    """Rotation matrix of a rotation vector."""
    q, _ = _quat_exp(phi)
    return _quat_to_matrix(_normalized(q))


def so3_log(rotation: Sequence[Sequence[float]]) -> np.ndarray:
    """Rotation vector of a 3x3 rotation matrix."""
    phi, _ = _quat_log(_matrix_to_quat(rotation))
    return phi


class SE3:
    """A rigid-body transform stored as a unit quaternion and a translation."""

    __slots__ = ("_quaternion", "_translation")

    def __init__(self, quaternion: Sequence[float] = (1.0, 0.0, 0.0, 0.0),
                 translation: Sequence[float] = (0.0, 0.0, 0.0)) -> None:
        self._quaternion = _normalized(quaternion)
        self._translation = _vector(translation, 3, "translation").copy()

    @classmethod
    def from_quaternion(cls, quaternion: Sequence[float],
                        translation: Sequence[float]) -> "SE3":
        """Build from a (w, x, y, z) quaternion, normalised, and a translation."""
        return cls(quaternion, translation)

    @classmethod
    def exp(cls, xi: Sequence[float]) -> "SE3":
        """Exponential map of a 6-vector (upsilon, omega)."""
        v = _vector(xi, 6, "tangent vector")
        upsilon, omega = v[:3], v[3:]
        q, theta = _quat_exp(omega)
        q = _normalized(q)
        if theta < SMALL_EPS:
            jacobian = _quat_to_matrix(q)
        else:
            omega_hat = hat(omega)
            theta_sq = theta * theta
            jacobian = (np.eye(3)
                        + (1.0 - math.cos(theta)) / theta_sq * omega_hat
                        + (theta - math.sin(theta)) / (theta_sq * theta)
                        * (omega_hat @ omega_hat))
        return cls(q, jacobian @ upsilon)

    @property
    def translation(self) -> np.ndarray:
        return self._translation.copy()

    @property
    def rotation_matrix(self) -> np.ndarray:
        return _quat_to_matrix(self._quaternion)

    def matrix(self) -> np.ndarray:
        """Homogeneous 4x4 matrix of the transform."""
        m = np.eye(4)
        m[:3, :3] = self.rotation_matrix
        m[:3, 3] = self._translation
        return m

    def unit_quaternion(self) -> np.ndarray:
        """Rotation as a unit quaternion ordered (w, x, y, z)."""
        return self._quaternion.copy()

    def rotation_log(self) -> np.ndarray:
        """Rotation vector of the rotational part."""
        phi, _ = _quat_log(self._quaternion)
        return phi

    def log(self) -> np.ndarray:
        """Logarithm map as a 6-vector (upsilon, omega)."""
        omega, theta = _quat_log(self._quaternion)
        omega_hat = hat(omega)
        if abs(theta) < SMALL_EPS:
            v_inv = np.eye(3) - 0.5 * omega_hat + (1.0 / 12.0) * (omega_hat @ omega_hat)
        else:
            v_inv = (np.eye(3) - 0.5 * omega_hat
                     + (1.0 - theta / (2.0 * math.tan(theta / 2.0))) / (theta * theta)
                     * (omega_hat @ omega_hat))
        return np.concatenate([v_inv @ self._translation, omega])

    def inverse(self) -> "SE3":
        q = self._quaternion
        q_inv = np.concatenate([[q[0]], -q[1:]])
        return SE3(q_inv, -(_quat_to_matrix(q_inv) @ self._translation))

    def __matmul__(self, other: Union["SE3", Sequence[float]]):
        """Compose with another transform, or transform a 3D point."""
        if isinstance(other, SE3):
            q = _normalized(_quat_multiply(self._quaternion, other._quaternion))
            t = self.rotation_matrix @ other._translation + self._translation
            return SE3(q, t)
        point = _vector(other, 3, "point")
        return self.rotation_matrix @ point + self._translation

    def adjoint(self) -> np.ndarray:
        """6x6 adjoint matrix acting on (upsilon, omega) vectors."""
        r = self.rotation_matrix
        adj = np.zeros((6, 6))
        adj[:3, :3] = r
        adj[3:, 3:] = r
        adj[:3, 3:] = hat(self._translation) @ r
        return adj

    def __repr__(self) -> str:
        return (f"SE3(quaternion={self._quaternion.tolist()}, "
                f"translation={self._translation.tolist()})")


def jr_inv(error: SE3) -> np.ndarray:
    """Approximate inverse right Jacobian of SE3 at the given error transform."""
    phi_hat = hat(error.rotation_log())
    j = np.zeros((6, 6))
    j[:3, :3] = phi_hat
    j[:3, 3:] = hat(error.translation)
    j[3:, 3:] = phi_hat
    return j * 0.5 + np.eye(6)