"""Bundle adjustment of BAL problems with a sparse trust-region least-squares solver."""

from __future__ import annotations

import os
import random
import sys
from dataclasses import dataclass
from typing import Optional, Sequence, TextIO, Tuple

import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import coo_matrix, csc_matrix

from slamopt.bal_problem import BALProblem
from slamopt.bundle_params import Backend, BundleParams

_EPS = sys.float_info.epsilon
_CAMERA_SIZE = 9

_TRUST_REGION = ("levenberg_marquardt", "dogleg")
_CERES_LINEAR = (
    "dense_normal_cholesky",
    "dense_qr",
    "sparse_normal_cholesky",
    "dense_schur",
    "sparse_schur",
    "iterative_schur",
    "cgnr",
)
_G2O_LINEAR = ("dense_schur", "sparse_schur")
_SPARSE_LIBRARIES = ("suite_sparse", "cx_sparse", "eigen_sparse", "accelerate_sparse", "no_sparse")
_DENSE_LIBRARIES = ("eigen", "lapack")
_DENSE_SOLVERS = ("dense_normal_cholesky", "dense_qr")
_METHODS = {"levenberg_marquardt": "trf", "dogleg": "dogbox"}


@dataclass(frozen=True)
class SolverOptions:
    """Settings that control the trust-region minimiser."""

    max_num_iterations: int = 50
    trust_region_strategy: str = "levenberg_marquardt"
    linear_solver_type: str = "sparse_normal_cholesky"
    sparse_linear_algebra_library: str = "suite_sparse"
    dense_linear_algebra_library: str = "eigen"
    num_threads: int = 1
    num_linear_solver_threads: int = 1
    points_before_cameras: bool = False
    minimizer_progress_to_stdout: bool = True
    gradient_tolerance: float = 1e-16
    function_tolerance: float = 1e-16

    @property
    def uses_sparse_jacobian(self) -> bool:
        """Whether the linear solver works on a sparse Jacobian."""
        return self.linear_solver_type not in _DENSE_SOLVERS


def _choice(value: str, choices: Sequence[str], what: str) -> str:
    normalized = value.lower()
    if normalized not in choices:
        raise ValueError(f"unknown {what}: {value!r}")
    return normalized


def solver_options_from_params(params: BundleParams) -> SolverOptions:
    """Build solver options from bundle parameters, validating every choice."""
    if params.backend is Backend.CERES:
        return SolverOptions(
            max_num_iterations=params.num_iterations,
            trust_region_strategy=_choice(
                params.trust_region_strategy, _TRUST_REGION, "trust region strategy"),
            linear_solver_type=_choice(params.linear_solver, _CERES_LINEAR, "linear solver"),
            sparse_linear_algebra_library=_choice(
                params.sparse_linear_algebra_library, _SPARSE_LIBRARIES,
                "sparse linear algebra library"),
            dense_linear_algebra_library=_choice(
                params.dense_linear_algebra_library, _DENSE_LIBRARIES,
                "dense linear algebra library"),
            num_threads=params.num_threads,
            num_linear_solver_threads=params.num_threads,
            points_before_cameras=params.ordering != "automatic",
        )
    if params.trust_region_strategy not in _TRUST_REGION:
        raise ValueError("Please check your trust_region_strategy parameter again..")
    if params.linear_solver not in _G2O_LINEAR:
        raise ValueError(f"unknown linear solver: {params.linear_solver!r}")
    # Point vertices are marginalised, so they are eliminated before the cameras.
    return SolverOptions(
        max_num_iterations=params.num_iterations,
        trust_region_strategy=params.trust_region_strategy,
        linear_solver_type=params.linear_solver,
        points_before_cameras=True,
    )


def _rotate(angle_axis: np.ndarray, points: np.ndarray) -> np.ndarray:
    theta2 = np.einsum("ij,ij->i", angle_axis, angle_axis)
    big = theta2 > _EPS
    theta = np.sqrt(np.where(big, theta2, 1.0))
    w = angle_axis / theta[:, None]
    cos = np.cos(theta)
    sin = np.sin(theta)
    tmp = np.einsum("ij,ij->i", w, points) * (1.0 - cos)
    rodrigues = points * cos[:, None] + np.cross(w, points) * sin[:, None] + w * tmp[:, None]
    taylor = points + np.cross(angle_axis, points)
    return np.where(big[:, None], rodrigues, taylor)


def _predict(cameras: np.ndarray, points: np.ndarray) -> np.ndarray:
    p = _rotate(cameras[:, 0:3], points) + cameras[:, 3:6]
    xp = -p[:, 0] / p[:, 2]
    yp = -p[:, 1] / p[:, 2]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (cameras[:, 7] + cameras[:, 8] * r2)
    scale = cameras[:, 6] * distortion
    return np.stack([scale * xp, scale * yp], axis=1)


def _require_angle_axis(problem: BALProblem) -> None:
    if problem.use_quaternions:
        raise ValueError("reprojection needs cameras stored in angle-axis form")


def reprojection_residuals(problem: BALProblem) -> np.ndarray:
    """Predicted minus observed image positions, one row per observation."""
    _require_angle_axis(problem)
    cameras = problem.cameras[problem.camera_index]
    points = problem.points[problem.point_index]
    return _predict(cameras, points) - problem.observations


def _huber_scale(residuals: np.ndarray) -> np.ndarray:
    squared = np.einsum("ij,ij->i", residuals, residuals)
    scale = np.ones_like(squared)
    outside = squared > 1.0
    scale[outside] = np.sqrt((2.0 * np.sqrt(squared[outside]) - 1.0) / squared[outside])
    return residuals * scale[:, None]


@dataclass(frozen=True)
class _ResidualModel:
    num_cameras: int
    num_points: int
    camera_index: np.ndarray
    point_index: np.ndarray
    observations: np.ndarray
    x0: np.ndarray
    robust: bool

    @property
    def num_residuals(self) -> int:
        return 2 * len(self.observations)

    def split(self, x: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        boundary = _CAMERA_SIZE * self.num_cameras
        cameras = x[:boundary].reshape(self.num_cameras, _CAMERA_SIZE)
        points = x[boundary:].reshape(self.num_points, 3)
        return cameras, points

    def residuals(self, x: np.ndarray) -> np.ndarray:
        """Residual vector whose half squared norm is the (robust) cost."""
        cameras, points = self.split(x)
        raw = _predict(cameras[self.camera_index], points[self.point_index]) - self.observations
        if self.robust:
            raw = _huber_scale(raw)
        return raw.ravel()

    def cost(self, x: np.ndarray) -> float:
        r = self.residuals(x)
        return 0.5 * float(r @ r)

    def jacobian_sparsity(self) -> csc_matrix:
        n_obs = len(self.observations)
        rows, cols = [], []
        point_offset = _CAMERA_SIZE * self.num_cameras
        for k in range(2):
            obs_rows = 2 * np.arange(n_obs) + k
            for c in range(_CAMERA_SIZE):
                rows.append(obs_rows)
                cols.append(_CAMERA_SIZE * self.camera_index + c)
            for c in range(3):
                rows.append(obs_rows)
                cols.append(point_offset + 3 * self.point_index + c)
        row = np.concatenate(rows)
        col = np.concatenate(cols)
        shape = (self.num_residuals, self.x0.size)
        return coo_matrix((np.ones(row.size), (row, col)), shape=shape).tocsc()


def build_problem(problem: BALProblem, params: BundleParams) -> _ResidualModel:
    """Set up one two-dimensional residual per observation of a camera and a point."""
    _require_angle_axis(problem)
    if problem.num_observations == 0:
        raise ValueError("problem has no observations")
    return _ResidualModel(
        num_cameras=problem.num_cameras,
        num_points=problem.num_points,
        camera_index=problem.camera_index.copy(),
        point_index=problem.point_index.copy(),
        observations=problem.observations.copy(),
        x0=problem.parameters.copy(),
        robust=bool(params.robustify),
    )


@dataclass(frozen=True)
class _Outcome:
    x: np.ndarray
    initial_cost: float
    final_cost: float
    evaluations: int
    message: str


def _solve(model: _ResidualModel, options: SolverOptions, verbose: int) -> _Outcome:
    x0 = model.x0
    initial = model.cost(x0)
    if options.max_num_iterations <= 0:
        return _Outcome(x0.copy(), initial, initial, 0, "no iterations requested")

    n = x0.size
    if options.points_before_cameras:
        boundary = _CAMERA_SIZE * model.num_cameras
        order = np.concatenate([np.arange(boundary, n), np.arange(boundary)])
    else:
        order = np.arange(n)

    def unpermute(y: np.ndarray) -> np.ndarray:
        x = np.empty_like(y)
        x[order] = y
        return x

    kwargs = {
        "method": _METHODS[options.trust_region_strategy],
        "ftol": max(options.function_tolerance, _EPS),
        "gtol": max(options.gradient_tolerance, _EPS),
        "max_nfev": options.max_num_iterations,
        "verbose": verbose,
    }
    if options.uses_sparse_jacobian:
        kwargs["jac_sparsity"] = model.jacobian_sparsity()[:, order]
        kwargs["tr_solver"] = "lsmr"
    else:
        kwargs["tr_solver"] = "exact"

    result = least_squares(lambda y: model.residuals(unpermute(y)), x0[order], **kwargs)
    x = unpermute(result.x)
    return _Outcome(x, initial, model.cost(x), int(result.nfev), str(result.message))


def _report(model: _ResidualModel, options: SolverOptions, outcome: _Outcome) -> str:
    lines = [
        "Solver Summary",
        f"Parameters: {model.x0.size}",
        f"Residuals: {model.num_residuals}",
        f"Trust region strategy: {options.trust_region_strategy}",
        f"Linear solver: {options.linear_solver_type}",
        f"Initial cost: {outcome.initial_cost:.12e}",
        f"Final cost: {outcome.final_cost:.12e}",
        f"Function evaluations: {outcome.evaluations}",
        f"Termination: {outcome.message}",
    ]
    return "\n".join(lines)


def solve_problem(params: BundleParams, out: Optional[TextIO] = None) -> BALProblem:
    """Load, normalise, perturb and optimise a BAL problem; return the refined problem."""
    out = out if out is not None else sys.stdout
    problem = BALProblem.from_file(params.input)

    print("bal problem file loaded...", file=out)
    print(f"bal problem have {problem.num_cameras} cameras and "
          f"{problem.num_points} points. ", file=out)
    print(f"Forming {problem.num_observations} observatoins. ", file=out)

    if params.initial_ply:
        problem.write_to_ply_file(params.initial_ply)

    print("beginning problem...", file=out)
    rng = random.Random(params.random_seed)
    problem.normalize()
    problem.perturb(params.rotation_sigma, params.translation_sigma, params.point_sigma, rng)
    print("Normalization complete...", file=out)

    options = solver_options_from_params(params)
    model = build_problem(problem, params)
    if params.backend is Backend.CERES:
        print("the problem is successfully build..", file=out)
    else:
        print("begin optimizaiton ..", file=out)

    verbose = 2 if options.minimizer_progress_to_stdout and out is sys.stdout else 0
    outcome = _solve(model, options, verbose)
    problem.parameters[:] = outcome.x

    if params.backend is Backend.G2O:
        print("optimization complete.. ", file=out)
    print(_report(model, options, outcome), file=out)

    if params.final_ply:
        problem.write_to_ply_file(params.final_ply)
    return problem


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run bundle adjustment; a program name containing 'g2o' selects that option set."""
    argv = list(sys.argv if argv is None else argv)
    prog = os.path.basename(argv[0]) if argv else ""
    backend = Backend.G2O if "g2o" in prog.lower() else Backend.CERES
    params = BundleParams.from_argv(argv, backend)

    if backend is Backend.CERES:
        print(params.input)
    if not params.input:
        print("Usage: bundle_adjuster -input <path for dataset>")
        return 1
    try:
        solve_problem(params)
    except (OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0