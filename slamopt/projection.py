"""Pinhole projection with radial distortion and its reprojection error."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from slamopt.rotation import angle_axis_rotate_point


def cam_projection_with_distortion(camera: Sequence[float], point: Sequence[float]) -> np.ndarray:
    """Project a 3D point through a 9-parameter camera.

    The camera holds an angle-axis rotation [0:3], a translation [3:6],
    the focal length [6] and two radial distortion coefficients [7:9].
    """
    cam = np.asarray(camera, dtype=float)
    if cam.shape[0] < 9:
        raise ValueError("camera needs at least 9 parameters")
    p = angle_axis_rotate_point(cam[0:3], point) + cam[3:6]

    xp = -p[0] / p[2]
    yp = -p[1] / p[2]

    l1, l2 = cam[7], cam[8]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (l1 + l2 * r2)

    focal = cam[6]
    return np.array([focal * distortion * xp, focal * distortion * yp])


@dataclass(frozen=True)
class SnavelyReprojectionError:
    """Residual between a projected point and an observed image position."""

    observed_x: float
    observed_y: float

    def __call__(self, camera: Sequence[float], point: Sequence[float]) -> np.ndarray:
        predicted = cam_projection_with_distortion(camera, point)
        return predicted - np.array([self.observed_x, self.observed_y])