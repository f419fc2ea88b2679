# slamopt

Nonlinear least-squares tools for visual SLAM back ends, built on NumPy and SciPy:

- **Bundle adjustment** on datasets in the BAL ("Bundle Adjustment in the Large")
  text format, with normalisation, optional noise injection and PLY export of
  camera centres and points.
- **Pose graph optimisation** on `VERTEX_SE3:QUAT` / `EDGE_SE3:QUAT` graphs in the
  g2o text format, using a Lie-algebra error model on SE(3) and a
  Levenberg-Marquardt loop over a sparse linear system.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Command line

### Bundle adjustment

```
slamopt-bundle -input problem-16-22106-pre.txt
```

The command prints the input path, loads the dataset and writes it to the
initial PLY file. It then normalises the scene (points centred on their
per-axis median and scaled so that the median absolute deviation is 100),
adds Gaussian noise if any sigma is positive, and optimises all cameras and
points with `scipy.optimize.least_squares`. A short summary (initial and final
cost, function evaluations, termination message) is printed, and the refined
scene is written to the final PLY file. Without `-input` it prints a usage line
and exits with status 1; a missing or malformed file also gives status 1.

Options start with a dash and are followed by a value; boolean options are
switches that toggle their default:

| option | meaning | default |
| --- | --- | --- |
| `-input <string>` | BAL file to process | (none) |
| `-trust_region_strategy <string>` | `levenberg_marquardt` (SciPy `trf`) or `dogleg` (SciPy `dogbox`) | `levenberg_marquardt` |
| `-linear_solver <string>` | `dense_normal_cholesky` and `dense_qr` use a dense exact solve; the other accepted names (`dense_schur`, `sparse_schur`, `sparse_normal_cholesky`, `iterative_schur`, `cgnr`) use a sparse Jacobian with LSMR | `dense_schur` |
| `-sparse_linear_algebra_library <string>` | checked against `suite_sparse`, `cx_sparse`, `eigen_sparse`, `accelerate_sparse`, `no_sparse` | `suite_sparse` |
| `-dense_linear_algebra_library <string>` | checked against `eigen`, `lapack` | `eigen` |
| `-ordering <string>` | `automatic`, or anything else to order points before cameras | `automatic` |
| `-robustify` | use a Huber loss with threshold 1.0 | off |
| `-num_threads <int>` | recorded in the solver options | 1 |
| `-num_iterations <int>` | maximum number of residual evaluations | 10 |
| `-rotation_sigma <double>` | standard deviation of camera rotation noise | 0 |
| `-translation_sigma <double>` | standard deviation of camera translation noise | 0 |
| `-point_sigma <double>` | standard deviation of point noise | 0 |
| `-random_seed <int>` | seed for the noise generator | 38401 |
| `-initial_ply <string>` | PLY file for the scene before optimisation; empty to skip | `initial.ply` |
| `-final_ply <string>` | PLY file for the scene after optimisation; empty to skip | `final.ply` |

`slamopt-bundle -help` prints the full list with defaults.

When `slamopt.bundle.main` is started under a program name containing `g2o`,
it uses a smaller option set: only `dense_schur` and `sparse_schur` are
accepted as linear solvers, `-num_iterations` defaults to 20, and there are no
library, ordering or thread options.

### Pose graph optimisation

```
slamopt-pose-graph sphere.g2o
```

Reads the graph, holds the vertex with id 0 fixed, runs up to 30
Levenberg-Marquardt iterations (printing chi2 and the damping per iteration),
and writes the optimised graph to `result_lie.g2o` in the current directory.
It takes exactly one argument and exits with status 1 otherwise, or when the
file cannot be opened or read.

## Library use

### Rotations and projection

```python
from slamopt.rotation import angle_axis_to_quaternion, angle_axis_rotate_point
from slamopt.projection import cam_projection_with_distortion, SnavelyReprojectionError

q = angle_axis_to_quaternion([0.0, 0.0, 0.1])          # (w, x, y, z)
p = angle_axis_rotate_point([0.0, 0.0, 0.1], [1.0, 0.0, 0.0])

# camera: angle-axis (3), translation (3), focal length, k1, k2
camera = [0, 0, 0, 0, 0, -5, 500, 0, 0]
uv = cam_projection_with_distortion(camera, [0.1, 0.2, 0.0])

residual = SnavelyReprojectionError(uv[0], uv[1])(camera, [0.1, 0.2, 0.0])
```

`slamopt.noise` provides `rand_double` and `rand_normal` (polar method), each
taking an optional `random.Random`.

### BAL datasets

```python
from slamopt.bal_problem import BALProblem

problem = BALProblem.from_file("problem-16-22106-pre.txt", use_quaternions=False)
problem.normalize()
problem.perturb(0.1, 0.5, 0.5)
problem.write_to_ply_file("scene.ply")
problem.write_to_file("normalized.txt")
```

`cameras` and `points` are NumPy views into `parameters`. A malformed file
raises `slamopt.bal_problem.BALFormatError`.

To optimise from Python:

```python
from slamopt.bundle_params import BundleParams
from slamopt.bundle import solve_problem

params = BundleParams(input="problem-16-22106-pre.txt", num_iterations=20)
refined = solve_problem(params)
```

`slamopt.bundle.reprojection_residuals(problem)` returns the predicted minus
observed image positions, one row per observation.

### Pose graphs

```python
from slamopt.pose_graph import PoseGraph

with open("sphere.g2o") as stream:
    graph = PoseGraph.read(stream)

print("initial error:", graph.total_error())
graph.optimize(30, verbose=True)
print("final error:", graph.total_error())

with open("result.g2o", "w") as stream:
    graph.write(stream)
```

`g2o_to_gtsam_information` and `gtsam_to_g2o_information` swap the translation
and rotation blocks of a 6x6 information matrix.

SE(3) poses are available through `slamopt.se3.SE3`, with `exp`, `log`,
`inverse`, composition via `a @ b`, `adjoint` and `unit_quaternion`;
`hat`, `so3_exp`, `so3_log` and `jr_inv` are module functions.

### Command line options

`slamopt.command_args.CommandArgs` is the single-dash option parser used by
the bundle command: `param`, `param_left_over`, `parse_args`, `get`,
`print_help` and `parsed_param`.

## What it does not do

- Bundle adjustment works on cameras stored in angle-axis form only; a
  `BALProblem` loaded with `use_quaternions=True` can be read, normalised,
  perturbed and written, but not optimised.
- Pose graph optimisation uses one error model (the Lie-algebra one); there is
  no choice of Gauss-Newton or dogleg, no robust kernel, and no prior factors
  other than holding vertex 0 fixed.
- There is no image feature extraction, vocabulary training or loop-closure
  detection, and no viewer: results are written as PLY and g2o text files for
  other tools to display.