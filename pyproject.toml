[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamopt"
version = "0.1.0"
description = "Bundle adjustment on BAL datasets and pose graph optimisation on g2o files"
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "scipy",
]
keywords = [
    "slam",
    "bundle adjustment",
    "pose graph",
    "g2o",
    "bal",
    "lie algebra",
    "se3",
    "least squares",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
slamopt-bundle = "slamopt.bundle:main"
slamopt-pose-graph = "slamopt.pose_graph:main"

[tool.hatch.build.targets.wheel]
packages = ["slamopt"]

[tool.hatch.build.targets.sdist]
include = [
    "slamopt",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
ignore_missing_imports = true
