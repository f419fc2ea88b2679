"""Bundle adjustment on BAL datasets and pose graph optimisation on g2o files."""

__version__ = "0.1.0"

__all__ = [
    "rotation",
    "noise",
    "projection",
    "command_args",
    "bundle_params",
    "bal_problem",
    "bundle",
    "se3",
    "pose_graph",
]