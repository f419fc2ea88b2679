"""Bundle adjustment problems in the BAL text format."""

from __future__ import annotations

import random
from typing import Callable, Iterator, Optional, Sequence, Tuple, TypeVar

import numpy as np

from slamopt.noise import rand_normal
from slamopt.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)

_T = TypeVar("_T")


class BALFormatError(ValueError):
    """Raised when a BAL file cannot be read."""


def median(data: Sequence[float]) -> float:
    """Element at position n // 2 of the sorted data (upper median for even n)."""
    values = np.asarray(data, dtype=float).ravel()
    if values.size == 0:
        raise ValueError("median of empty data")
    mid = values.size // 2
    return float(np.partition(values, mid)[mid])


def perturb_point3(sigma: float, point: Sequence[float],
                   rng: Optional[random.Random] = None) -> np.ndarray:
    """Return the 3-vector with Gaussian noise of the given deviation added."""
    noise = np.array([rand_normal(rng) for _ in range(3)])
    return np.asarray(point, dtype=float) + noise * sigma


def _take(tokens: Iterator[str], convert: Callable[[str], _T], what: str) -> _T:
    token = next(tokens, None)
    if token is None:
        raise BALFormatError(f"unexpected end of file while reading {what}")
    try:
        return convert(token)
    except ValueError:
        raise BALFormatError(f"invalid {what}: {token!r}") from None


class BALProblem:
    """Cameras, points and observations of a bundle adjustment problem.

    Cameras hold an angle-axis rotation (or a quaternion), a translation,
    the focal length and two distortion coefficients. The parameter vector
    stores all cameras first and then all points; ``cameras`` and ``points``
    are views into it.
    """

    point_block_size = 3

    def __init__(self, num_cameras: int, num_points: int,
                 camera_index: Sequence[int], point_index: Sequence[int],
                 observations: Sequence[Sequence[float]], parameters: Sequence[float],
                 use_quaternions: bool = False) -> None:
        self.use_quaternions = use_quaternions
        self.num_cameras = int(num_cameras)
        self.num_points = int(num_points)
        self.camera_index = np.asarray(camera_index, dtype=int).ravel()
        self.point_index = np.asarray(point_index, dtype=int).ravel()
        self.observations = np.asarray(observations, dtype=float).reshape(-1, 2)
        self.parameters = np.array(parameters, dtype=float).ravel()
        n_obs = len(self.observations)
        if len(self.camera_index) != n_obs or len(self.point_index) != n_obs:
            raise ValueError("index arrays must have one entry per observation")
        expected = self.camera_block_size * self.num_cameras + 3 * self.num_points
        if self.parameters.size != expected:
            raise ValueError(f"expected {expected} parameters, got {self.parameters.size}")

    @classmethod
    def from_file(cls, path, use_quaternions: bool = False) -> "BALProblem":
        """Read a BAL file; optionally store rotations as quaternions."""
        with open(path, "r") as handle:
            tokens = iter(handle.read().split())
        num_cameras = _take(tokens, int, "camera count")
        num_points = _take(tokens, int, "point count")
        num_observations = _take(tokens, int, "observation count")
        if min(num_cameras, num_points, num_observations) < 0:
            raise BALFormatError("negative count in header")

        camera_index, point_index, observations = [], [], []
        for _ in range(num_observations):
            camera_index.append(_take(tokens, int, "camera index"))
            point_index.append(_take(tokens, int, "point index"))
            observations.append([_take(tokens, float, "observation") for _ in range(2)])

        count = 9 * num_cameras + 3 * num_points
        parameters = np.array([_take(tokens, float, "parameter") for _ in range(count)])

        if use_quaternions:
            cameras = parameters[: 9 * num_cameras].reshape(num_cameras, 9)
            converted = [np.concatenate([angle_axis_to_quaternion(c[:3]), c[3:]])
                         for c in cameras]
            parameters = np.concatenate(
                [np.ravel(converted) if converted else np.empty(0),
                 parameters[9 * num_cameras:]]
            )
        return cls(num_cameras, num_points, camera_index, point_index,
                   np.reshape(observations, (-1, 2)), parameters, use_quaternions)

    @property
    def camera_block_size(self) -> int:
        return 10 if self.use_quaternions else 9

    @property
    def num_observations(self) -> int:
        return len(self.observations)

    @property
    def num_parameters(self) -> int:
        return self.parameters.size

    @property
    def cameras(self) -> np.ndarray:
        """Camera blocks as a (num_cameras, block) view of the parameters."""
        size = self.camera_block_size * self.num_cameras
        return self.parameters[:size].reshape(self.num_cameras, self.camera_block_size)

    @property
    def points(self) -> np.ndarray:
        """Points as a (num_points, 3) view of the parameters."""
        start = self.camera_block_size * self.num_cameras
        return self.parameters[start:].reshape(self.num_points, 3)

    def camera_for_observation(self, i: int) -> np.ndarray:
        """View of the camera block seen in observation i."""
        return self.cameras[self.camera_index[i]]

    def point_for_observation(self, i: int) -> np.ndarray:
        """View of the point seen in observation i."""
        return self.points[self.point_index[i]]

    def _camera_to_angle_axis_and_center(self, camera: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        if self.use_quaternions:
            angle_axis = quaternion_to_angle_axis(camera[:4])
        else:
            angle_axis = np.array(camera[:3], dtype=float)
        t = self.camera_block_size - 6
        # c = -R' t
        center = -angle_axis_rotate_point(-angle_axis, camera[t:t + 3])
        return angle_axis, center

    def _angle_axis_and_center_to_camera(self, angle_axis: np.ndarray, center: np.ndarray,
                                         camera: np.ndarray) -> None:
        if self.use_quaternions:
            camera[:4] = angle_axis_to_quaternion(angle_axis)
        else:
            camera[:3] = angle_axis
        t = self.camera_block_size - 6
        # t = -R c
        camera[t:t + 3] = -angle_axis_rotate_point(angle_axis, center)

    def write_to_file(self, path) -> None:
        """Write the problem in BAL layout, with rotations as angle-axis."""
        lines = [f"{self.num_cameras} {self.num_cameras} {self.num_points} "
                 f"{self.num_observations}"]
        for cam, pt, (x, y) in zip(self.camera_index, self.point_index, self.observations):
            lines.append(f"{cam} {pt} {format(x, 'g')} {format(y, 'g')}")
        for camera in self.cameras:
            if self.use_quaternions:
                values = np.concatenate([quaternion_to_angle_axis(camera[:4]), camera[4:10]])
            else:
                values = camera[:9]
            lines.extend(format(v, ".16g") for v in values)
        lines.extend(format(v, ".16g") for v in self.points.ravel())
        with open(path, "w") as handle:
            handle.write("\n".join(lines) + "\n")

    def write_to_ply_file(self, path) -> None:
        """Write camera centres (green) and points (white) as an ASCII PLY file."""
        parts = [
            "ply\n",
            "format ascii 1.0\n",
            f"element vertex {self.num_cameras + self.num_points}\n",
            "property float x\n",
            "property float y\n",
            "property float z\n",
            "property uchar red\n",
            "property uchar green\n",
            "property uchar blue\n",
            "end_header\n",
        ]
        for camera in self.cameras:
            _, center = self._camera_to_angle_axis_and_center(camera)
            parts.append(" ".join(format(c, "g") for c in center) + "0 255 0\n")
        for point in self.points:
            parts.append("".join(format(c, "g") + " " for c in point) + "255 255 255\n")
        with open(path, "w") as handle:
            handle.write("".join(parts))

    def normalize(self) -> None:
        """Centre the points on their median and scale the median absolute deviation to 100."""
        points = self.points
        centre = np.array([median(points[:, axis]) for axis in range(3)])
        deviation = median(np.abs(points - centre).sum(axis=1))
        if deviation == 0.0:
            raise ValueError("points have zero median absolute deviation")
        scale = 100.0 / deviation
        points[:] = scale * (points - centre)

        for camera in self.cameras:
            angle_axis, center = self._camera_to_angle_axis_and_center(camera)
            self._angle_axis_and_center_to_camera(angle_axis, scale * (center - centre), camera)

    def perturb(self, rotation_sigma: float, translation_sigma: float, point_sigma: float,
                rng: Optional[random.Random] = None) -> None:
        """Add Gaussian noise to points, camera rotations and camera translations."""
        if min(rotation_sigma, translation_sigma, point_sigma) < 0.0:
            raise ValueError("standard deviations must not be negative")

        points = self.points
        if point_sigma > 0:
            for point in points:
                point[:] = perturb_point3(point_sigma, point, rng)

        t = self.camera_block_size - 6
        for camera in self.cameras:
            angle_axis, center = self._camera_to_angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = perturb_point3(rotation_sigma, angle_axis, rng)
            self._angle_axis_and_center_to_camera(angle_axis, center, camera)
            if translation_sigma > 0.0:
                camera[t:t + 3] = perturb_point3(translation_sigma, camera[t:t + 3], rng)