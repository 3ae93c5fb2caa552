# balbundle

Bundle adjustment for datasets in the *Bundle Adjustment in the Large* (BAL)
text format. Each camera has nine parameters: an angle-axis rotation, a
translation, a focal length and two radial distortion terms. Each point has
three coordinates.

The `balbundle` command reads a BAL file, writes its camera centres and points
to a PLY file, normalises the reconstruction (points centred on their median,
median L1 deviation scaled to 100), optionally perturbs it with seeded Gaussian
noise, and then minimises the reprojection error with SciPy's sparse
`least_squares` solver. The refined reconstruction is written to a second PLY
file.

## Installation

```
pip install .
```

Install the test dependencies with `pip install .[test]`.

## Command line

```
balbundle -input problem-16-22106-pre.txt
```

Options are single-dash flags followed by a value. `-help` (or `-h`) prints the
list of options and exits. An unknown option, or an option missing its value,
prints an error and exits with status 1. Without `-input` the command prints a
usage line and returns 1; a file that cannot be read or parsed is reported on
standard error with status 1.

| Option | Default | Meaning |
| --- | --- | --- |
| `-input <string>` | (none) | BAL file to process |
| `-trust_region_strategy <string>` | `levenberg_marquardt` | `levenberg_marquardt` or `dogleg` |
| `-linear_solver <string>` | `dense_schur` | linear solver name (validated, see below) |
| `-sparse_linear_algebra_library <string>` | `suite_sparse` | sparse library name (validated, see below) |
| `-dense_linear_algebra_library <string>` | `eigen` | `eigen` or `lapack` (validated, see below) |
| `-ordering <string>` | `automatic` | `automatic`, or anything else for points-before-cameras groups |
| `-robustify` | off | use a Huber loss of scale 1; the flag takes no value and turns it on |
| `-num_threads <int>` | `1` | thread count (validated, see below) |
| `-num_iterations <int>` | `10` | iteration limit |
| `-rotation_sigma <double>` | `0` | standard deviation of camera rotation noise |
| `-translation_sigma <double>` | `0` | standard deviation of camera translation noise |
| `-point_sigma <double>` | `0` | standard deviation of point noise |
| `-random_seed <int>` | `38401` | seed for the perturbation noise |
| `-initial_ply <string>` | `initial.ply` | PLY export of the data as loaded; empty to skip |
| `-final_ply <string>` | `final.ply` | PLY export of the refined data; empty to skip |

`levenberg_marquardt` runs SciPy's `trf` method and `dogleg` runs `dogbox`.
The iteration limit is applied as a limit of `num_iterations + 1` residual
evaluations. The command sets the gradient and function tolerances to
`1e-16` (clamped to machine epsilon), prints SciPy's progress and ends with a
short summary of initial and final cost.

## Library use

```python
from balbundle.bal_problem import BALProblem
from balbundle.bundle import build_problem, solver_options
from balbundle.noise import NoiseSource
from balbundle.params import BundleParams

params = BundleParams.from_argv(["balbundle", "-input", "data.txt", "-point_sigma", "0.1"])

problem = BALProblem.from_file(params.input)
problem.normalize()
problem.perturb(params.rotation_sigma, params.translation_sigma,
                params.point_sigma, NoiseSource(params.random_seed))

bundle = build_problem(problem, params)
result = bundle.solve(solver_options(params))   # writes the solution back into `problem`
problem.write_to_ply_file("final.ply")
```

`solve_problem(filename, params, out)` in `balbundle.bundle` runs the whole
pipeline, writes its progress report to `out` (standard output by default)
and returns SciPy's `OptimizeResult`.

Modules:

- `balbundle.rotation`: `dot_product`, `cross_product`,
  `angle_axis_to_quaternion`, `quaternion_to_angle_axis` and
  `angle_axis_rotate_point`.
- `balbundle.noise`: `NoiseSource`, a seeded source of uniform and normal
  (polar method) samples with `perturb_point3`.
- `balbundle.reprojection`: `cam_projection_with_distortion` and the
  `SnavelyReprojectionError` residual.
- `balbundle.cmdargs`: the `CommandArgs` option parser, with `ArgumentType`,
  `CommandArgumentError` and the vector helpers `parse_int_vector`,
  `parse_double_vector`, `format_int_vector` and `format_double_vector`.
- `balbundle.bal_problem`: `BALProblem` (load with `from_file`/`from_text`,
  optionally with quaternion cameras; `write_to_file`, `write_to_ply_file`,
  `normalize`, `perturb`), `BALFormatError` and `median`.
- `balbundle.params`: the `BundleParams` dataclass and `from_argv`.
- `balbundle.bundle`: `SolverOptions`, `solver_options`,
  `parameter_ordering`, `BundleProblem` (`residuals`, `jacobian_sparsity`,
  `solve`), `build_problem`, `solve_problem` and `main`.

## What it does not do

- The linear solver, sparse and dense library names and the thread counts are
  checked and stored in `SolverOptions`, but the step is always computed with
  SciPy's sparse iterative `lsmr` solver on one thread.
- The parameter ordering from `-ordering` is recorded in
  `SolverOptions.linear_solver_ordering` but does not change how the problem
  is solved.
- `BundleProblem` only works with 9-parameter angle-axis cameras; a
  `BALProblem` loaded with quaternion cameras can be read, normalised,
  perturbed and written, but not optimised.