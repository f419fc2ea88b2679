import io

import numpy as np
import pytest

from slamopt.bal_problem import BALProblem
from slamopt.bundle import (
    SolverOptions,
    build_problem,
    main,
    reprojection_residuals,
    solve_problem,
    solver_options_from_params,
)
from slamopt.bundle_params import Backend, BundleParams
from slamopt.projection import SnavelyReprojectionError, cam_projection_with_distortion

CAMERAS = [
    [0.01, 0.02, 0.0, 0.0, 0.0, -10.0, 500.0, 0.0, 0.0],
    [0.0, 0.1, 0.02, 0.5, 0.0, -10.0, 500.0, 0.0, 0.0],
    [-0.05, 0.0, 0.03, -0.5, 0.2, -10.0, 500.0, 0.0, 0.0],
]


def _points():
    return np.random.default_rng(3).uniform(-1.0, 1.0, (20, 3))


@pytest.fixture
def bal_path(tmp_path):
    points = _points()
    lines = [f"{len(CAMERAS)} {len(points)} {len(CAMERAS) * len(points)}"]
    for c, camera in enumerate(CAMERAS):
        for p, point in enumerate(points):
            x, y = cam_projection_with_distortion(camera, point)
            lines.append(f"{c} {p} {x!r} {y!r}")
    for camera in CAMERAS:
        lines.extend(repr(float(v)) for v in camera)
    lines.extend(repr(float(v)) for v in points.ravel())
    path = tmp_path / "problem.txt"
    path.write_text("\n".join(lines) + "\n")
    return path


def _costs(text):
    values = {}
    for line in text.splitlines():
        for key in ("Initial cost", "Final cost"):
            if line.startswith(key + ":"):
                values[key] = float(line.split(":", 1)[1])
    return values["Initial cost"], values["Final cost"]


def test_residuals_match_reprojection_error(bal_path):
    problem = BALProblem.from_file(bal_path)
    problem.parameters[0] += 0.05
    residuals = reprojection_residuals(problem)
    assert residuals.shape == (problem.num_observations, 2)
    for i in range(problem.num_observations):
        cost = SnavelyReprojectionError(*problem.observations[i])
        expected = cost(problem.camera_for_observation(i), problem.point_for_observation(i))
        assert np.allclose(residuals[i], expected)


def test_exact_data_has_zero_residuals(bal_path):
    problem = BALProblem.from_file(bal_path)
    assert np.abs(reprojection_residuals(problem)).max() < 1e-6


def test_residuals_reject_quaternion_cameras(bal_path):
    problem = BALProblem.from_file(bal_path, use_quaternions=True)
    with pytest.raises(ValueError):
        reprojection_residuals(problem)


def test_default_ceres_options():
    options = solver_options_from_params(BundleParams())
    assert options.max_num_iterations == 10
    assert options.trust_region_strategy == "levenberg_marquardt"
    assert options.linear_solver_type == "dense_schur"
    assert options.num_threads == 1
    assert options.points_before_cameras is False
    assert options.function_tolerance == 1e-16
    assert options.gradient_tolerance == 1e-16
    assert options.uses_sparse_jacobian is True


def test_ceres_names_are_case_insensitive():
    options = solver_options_from_params(
        BundleParams(trust_region_strategy="DOGLEG", linear_solver="DENSE_QR", ordering="user"))
    assert options.trust_region_strategy == "dogleg"
    assert options.linear_solver_type == "dense_qr"
    assert options.uses_sparse_jacobian is False
    assert options.points_before_cameras is True


@pytest.mark.parametrize("backend", [Backend.CERES, Backend.G2O])
def test_unknown_trust_region_raises(backend):
    with pytest.raises(ValueError):
        solver_options_from_params(BundleParams(backend=backend, trust_region_strategy="newton"))


def test_g2o_rejects_unsupported_linear_solver():
    params = BundleParams(backend=Backend.G2O, linear_solver="sparse_normal_cholesky")
    with pytest.raises(ValueError):
        solver_options_from_params(params)


def test_g2o_marginalises_points():
    params = BundleParams(backend=Backend.G2O, num_iterations=20, linear_solver="sparse_schur")
    options = solver_options_from_params(params)
    assert options.points_before_cameras is True
    assert options.max_num_iterations == 20
    assert options.linear_solver_type == "sparse_schur"


def test_solver_options_defaults():
    options = SolverOptions()
    assert options.max_num_iterations == 50
    assert options.uses_sparse_jacobian is True


def test_build_problem_residuals_and_sparsity(bal_path):
    problem = BALProblem.from_file(bal_path)
    problem.parameters[3:6] += 0.1
    model = build_problem(problem, BundleParams())
    assert np.allclose(model.residuals(model.x0), reprojection_residuals(problem).ravel())
    sparsity = model.jacobian_sparsity()
    assert sparsity.shape == (2 * problem.num_observations, problem.num_parameters)
    assert (sparsity.tocsr().getnnz(axis=1) == 12).all()


def test_build_problem_robust_loss(bal_path):
    problem = BALProblem.from_file(bal_path)
    problem.observations[0] -= [3.0, 4.0]
    model = build_problem(problem, BundleParams(robustify=True))
    robust = model.residuals(model.x0).reshape(-1, 2)
    assert robust[0] @ robust[0] == pytest.approx(9.0)
    assert np.allclose(robust[1:], reprojection_residuals(problem)[1:])


def test_build_problem_without_observations_raises():
    problem = BALProblem(1, 1, [], [], np.empty((0, 2)), np.zeros(12))
    with pytest.raises(ValueError):
        build_problem(problem, BundleParams())


@pytest.mark.parametrize(
    "strategy,solver",
    [("levenberg_marquardt", "dense_schur"), ("dogleg", "dense_qr")],
)
def test_solve_problem_reduces_cost(bal_path, tmp_path, strategy, solver):
    params = BundleParams(
        input=str(bal_path), num_iterations=30, trust_region_strategy=strategy,
        linear_solver=solver, point_sigma=0.5, translation_sigma=0.5, rotation_sigma=0.001,
        initial_ply=str(tmp_path / "initial.ply"), final_ply=str(tmp_path / "final.ply"),
    )
    out = io.StringIO()
    problem = solve_problem(params, out)
    initial, final = _costs(out.getvalue())
    assert final < initial
    assert 0.5 * float((reprojection_residuals(problem) ** 2).sum()) == pytest.approx(final)
    assert "bal problem have 3 cameras and 20 points. " in out.getvalue()
    assert (tmp_path / "initial.ply").read_text().startswith("ply\n")
    assert (tmp_path / "final.ply").read_text().startswith("ply\n")


def test_solve_problem_without_iterations_keeps_cost(bal_path):
    params = BundleParams(input=str(bal_path), num_iterations=0, point_sigma=0.5,
                          initial_ply="", final_ply="")
    out = io.StringIO()
    solve_problem(params, out)
    initial, final = _costs(out.getvalue())
    assert final == initial


def test_solve_problem_g2o_messages(bal_path):
    params = BundleParams(backend=Backend.G2O, input=str(bal_path), num_iterations=5,
                          linear_solver="sparse_schur", trust_region_strategy="dogleg",
                          point_sigma=0.5, initial_ply="", final_ply="")
    out = io.StringIO()
    solve_problem(params, out)
    text = out.getvalue()
    assert "begin optimizaiton .." in text
    assert "optimization complete.. " in text


def test_main_without_input_prints_usage(capsys):
    assert main(["bundle_adjuster"]) == 1
    assert "Usage: bundle_adjuster -input <path for dataset>" in capsys.readouterr().out


def test_main_runs_g2o_backend(bal_path, tmp_path, capsys):
    final_ply = tmp_path / "result.ply"
    code = main(["g2o_bundle", "-input", str(bal_path), "-num_iterations", "3",
                 "-initial_ply", "", "-final_ply", str(final_ply)])
    assert code == 0
    assert "optimization complete.. " in capsys.readouterr().out
    assert final_ply.read_text().startswith("ply\n")


def test_main_missing_file_fails(tmp_path):
    assert main(["bundle_adjuster", "-input", str(tmp_path / "missing.txt")]) == 1