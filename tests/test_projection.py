import numpy as np
import pytest

from slamopt.projection import SnavelyReprojectionError, cam_projection_with_distortion

IDENTITY_CAMERA = [0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0]


def test_identity_camera_projects_by_negated_division():
    result = cam_projection_with_distortion(IDENTITY_CAMERA, [2.0, 4.0, -2.0])
    assert np.allclose(result, [1.0, 2.0])


def test_focal_length_scales_projection_without_distortion():
    point = [0.3, -0.7, -4.0]
    base = cam_projection_with_distortion(IDENTITY_CAMERA, point)
    camera = list(IDENTITY_CAMERA)
    camera[6] = 500.0
    assert np.allclose(cam_projection_with_distortion(camera, point), 500.0 * base)


def test_points_on_same_ray_project_identically():
    point = np.array([0.5, 0.25, -3.0])
    a = cam_projection_with_distortion(IDENTITY_CAMERA, point)
    b = cam_projection_with_distortion(IDENTITY_CAMERA, 2.5 * point)
    assert np.allclose(a, b)


def test_principal_axis_point_is_unaffected_by_distortion():
    camera = [0.1, -0.2, 0.05, 0.0, 0.0, 0.0, 800.0, 0.3, -0.1]
    point = np.array([0.0, 0.0, -5.0])
    # Move the point onto the optical axis after rotation.
    from slamopt.rotation import angle_axis_rotate_point

    on_axis = angle_axis_rotate_point(-np.array(camera[:3]), point)
    assert np.allclose(cam_projection_with_distortion(camera, on_axis), [0.0, 0.0], atol=1e-9)


def test_positive_distortion_pushes_points_outward():
    point = [1.0, 1.0, -2.0]
    plain = cam_projection_with_distortion(IDENTITY_CAMERA, point)
    camera = list(IDENTITY_CAMERA)
    camera[7] = 0.2
    distorted = cam_projection_with_distortion(camera, point)
    assert np.linalg.norm(distorted) > np.linalg.norm(plain)


def test_residual_is_prediction_minus_observation():
    camera = [0.01, 0.02, -0.03, 0.1, -0.2, -0.3, 400.0, 0.01, 0.001]
    point = [1.0, -2.0, -10.0]
    predicted = cam_projection_with_distortion(camera, point)
    cost = SnavelyReprojectionError(10.0, -5.0)
    assert np.allclose(cost(camera, point), predicted - np.array([10.0, -5.0]))


def test_residual_zero_at_exact_observation():
    camera = [0.2, 0.0, 0.1, 1.0, 0.5, -2.0, 300.0, 0.0, 0.0]
    point = [0.4, 0.3, -6.0]
    u, v = cam_projection_with_distortion(camera, point)
    assert np.allclose(SnavelyReprojectionError(u, v)(camera, point), 0.0)


def test_short_camera_raises():
    with pytest.raises(ValueError):
        cam_projection_with_distortion([0.0] * 6, [0.0, 0.0, -1.0])