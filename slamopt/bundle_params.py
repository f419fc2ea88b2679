"""Settings for a bundle adjustment run, read from the command line."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Tuple

from slamopt.command_args import CommandArgs


class Backend(Enum):
    """Optimisation back end whose option set is used."""

    CERES = "ceres"
    G2O = "g2o"


_Option = Tuple[str, Any, str]


def _options(backend: Backend) -> List[_Option]:
    if backend is Backend.CERES:
        solvers = "Options are: sparse_schur, dense_schur, sparse_normal_cholesky"
    else:
        solvers = "Options are: sparse_schur, dense_schur"
    options: List[_Option] = [
        ("input", "", "file which will be processed"),
        ("trust_region_strategy", "levenberg_marquardt",
         "Options are: levenberg_marquardt, dogleg."),
        ("linear_solver", "dense_schur", solvers),
    ]
    if backend is Backend.CERES:
        options += [
            ("sparse_linear_algebra_library", "suite_sparse",
             "Options are: suite_sparse and cx_sparse."),
            ("dense_linear_algebra_library", "eigen", "Options are: eigen and lapack."),
            ("ordering", "automatic", "Options are: automatic, user."),
        ]
    options.append(("robustify", False, "Use a robust loss function"))
    if backend is Backend.CERES:
        options += [
            ("num_threads", 1, "Number of threads."),
            ("num_iterations", 10, "Number of iterations."),
        ]
    else:
        options.append(("num_iterations", 20, "Number of iterations."))
    options += [
        ("rotation_sigma", 0.0, "Standard deviation of camera rotation perturbation."),
        ("translation_sigma", 0.0, "translation perturbation."),
        ("point_sigma", 0.0, "Standard deviation of the point perturbation."),
        ("random_seed", 38401, "Random seed used to set the state "),
        ("initial_ply", "initial.ply", "Export the BAL file data as a PLY file."),
        ("final_ply", "final.ply", "Export the refined BAL file data as a PLY"),
    ]
    return options


@dataclass
class BundleParams:
    """Solver, noise and output settings for bundle adjustment."""

    backend: Backend = Backend.CERES
    input: str = ""
    trust_region_strategy: str = "levenberg_marquardt"
    linear_solver: str = "dense_schur"
    sparse_linear_algebra_library: str = "suite_sparse"
    dense_linear_algebra_library: str = "eigen"
    ordering: str = "automatic"
    robustify: bool = False
    num_threads: int = 1
    num_iterations: int = 10
    random_seed: int = 38401
    rotation_sigma: float = 0.0
    translation_sigma: float = 0.0
    point_sigma: float = 0.0
    initial_ply: str = "initial.ply"
    final_ply: str = "final.ply"

    @classmethod
    def from_argv(cls, argv: Optional[Sequence[str]] = None,
                  backend: Backend = Backend.CERES) -> "BundleParams":
        """Parse argv (program name first) with the options of the given back end."""
        args = CommandArgs()
        options = _options(backend)
        for name, default, description in options:
            args.param(name, default, description)
        args.parse_args(argv)
        values = {name: args.get(name) for name, _, _ in options}
        if backend is Backend.G2O:
            # These settings are not options of this back end and stay unset.
            values.setdefault("sparse_linear_algebra_library", "")
            values.setdefault("dense_linear_algebra_library", "")
        return cls(backend=backend, **values)