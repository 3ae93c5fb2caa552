"""Building and solving the reprojection least-squares problem of a BAL dataset."""

from __future__ import annotations

import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Sequence, TextIO

import numpy as np
from scipy.optimize import OptimizeResult, least_squares
from scipy.sparse import coo_matrix, csr_matrix

from balbundle.bal_problem import BALProblem
from balbundle.noise import NoiseSource
from balbundle.params import BundleParams
from balbundle.reprojection import SnavelyReprojectionError

_EPSILON = np.finfo(float).eps
_CAMERA_SIZE = 9
_POINT_SIZE = 3

_TRUST_REGION_METHODS = {"levenberg_marquardt": "trf", "dogleg": "dogbox"}
_LINEAR_SOLVERS = frozenset(
    {
        "dense_normal_cholesky",
        "dense_qr",
        "sparse_normal_cholesky",
        "dense_schur",
        "sparse_schur",
        "iterative_schur",
        "cgnr",
    }
)
_SPARSE_LIBRARIES = frozenset(
    {"suite_sparse", "cx_sparse", "eigen_sparse", "accelerate_sparse", "no_sparse"}
)
_DENSE_LIBRARIES = frozenset({"eigen", "lapack"})


def _choose(value: str, allowed: frozenset[str] | dict, what: str) -> str:
    key = value.lower()
    if key not in allowed:
        raise ValueError(f"unknown {what}: {value!r}")
    return key


@dataclass
class SolverOptions:
    """Minimizer and linear solver settings.

    Names are matched case-insensitively and stored in lower case. The
    trust region step is always computed with a sparse iterative solver;
    the linear solver and library names are validated and recorded.
    ``linear_solver_ordering`` holds parameter block offsets, points first,
    or ``None`` for an automatic ordering.
    """

    max_num_iterations: int = 50
    minimizer_progress_to_stdout: bool = False
    num_threads: int = 1
    trust_region_strategy: str = "levenberg_marquardt"
    linear_solver_type: str = "sparse_normal_cholesky"
    sparse_linear_algebra_library_type: str = "suite_sparse"
    dense_linear_algebra_library_type: str = "eigen"
    num_linear_solver_threads: int = 1
    linear_solver_ordering: tuple[tuple[int, ...], tuple[int, ...]] | None = None
    gradient_tolerance: float = 1e-10
    function_tolerance: float = 1e-6
    parameter_tolerance: float = 1e-8

    def __post_init__(self) -> None:
        self.trust_region_strategy = _choose(
            self.trust_region_strategy, _TRUST_REGION_METHODS, "trust region strategy"
        )
        self.linear_solver_type = _choose(
            self.linear_solver_type, _LINEAR_SOLVERS, "linear solver"
        )
        self.sparse_linear_algebra_library_type = _choose(
            self.sparse_linear_algebra_library_type,
            _SPARSE_LIBRARIES,
            "sparse linear algebra library",
        )
        self.dense_linear_algebra_library_type = _choose(
            self.dense_linear_algebra_library_type,
            _DENSE_LIBRARIES,
            "dense linear algebra library",
        )
        if self.max_num_iterations < 0:
            raise ValueError("max_num_iterations must not be negative")
        if self.num_threads < 1 or self.num_linear_solver_threads < 1:
            raise ValueError("thread counts must be at least 1")


def solver_options(params: BundleParams) -> SolverOptions:
    """Return the minimizer and linear solver options chosen by ``params``."""
    return SolverOptions(
        max_num_iterations=params.num_iterations,
        minimizer_progress_to_stdout=True,
        num_threads=params.num_threads,
        trust_region_strategy=params.trust_region_strategy,
        linear_solver_type=params.linear_solver,
        sparse_linear_algebra_library_type=params.sparse_linear_algebra_library,
        dense_linear_algebra_library_type=params.dense_linear_algebra_library,
        num_linear_solver_threads=params.num_threads,
    )


def parameter_ordering(
    bal_problem: BALProblem, params: BundleParams
) -> tuple[tuple[int, ...], tuple[int, ...]] | None:
    """Return elimination groups of parameter block offsets, points before cameras.

    ``None`` means the ordering is left to the solver.
    """
    if params.ordering == "automatic":
        return None
    camera_size = bal_problem.camera_block_size
    point_size = bal_problem.point_block_size
    start = camera_size * bal_problem.num_cameras
    points = tuple(start + point_size * i for i in range(bal_problem.num_points))
    cameras = tuple(camera_size * i for i in range(bal_problem.num_cameras))
    return points, cameras


def _rotate_points(angle_axis: np.ndarray, pts: np.ndarray) -> np.ndarray:
    theta2 = np.einsum("ij,ij->i", angle_axis, angle_axis)
    big = theta2 > _EPSILON
    theta = np.sqrt(np.where(big, theta2, 1.0))
    costheta = np.cos(theta)[:, None]
    sintheta = np.sin(theta)[:, None]
    w = angle_axis / theta[:, None]
    tmp = np.einsum("ij,ij->i", w, pts)[:, None] * (1.0 - costheta)
    rodrigues = pts * costheta + np.cross(w, pts) * sintheta + w * tmp
    first_order = pts + np.cross(angle_axis, pts)
    return np.where(big[:, None], rodrigues, first_order)


def _project(cameras: np.ndarray, pts: np.ndarray) -> np.ndarray:
    p = _rotate_points(cameras[:, :3], pts) + cameras[:, 3:6]
    xp = -p[:, 0] / p[:, 2]
    yp = -p[:, 1] / p[:, 2]
    l1 = cameras[:, 7]
    l2 = cameras[:, 8]
    r2 = xp * xp + yp * yp
    scale = cameras[:, 6] * (1.0 + r2 * (l1 + l2 * r2))
    return np.column_stack([scale * xp, scale * yp])


class BundleProblem:
    """Reprojection residuals of every observation over all problem parameters.

    Parameters are the flat parameter vector of the underlying
    ``BALProblem``: 9-value angle-axis cameras followed by 3D points.
    With ``robustify`` each residual component goes through a Huber loss
    of scale 1.
    """

    def __init__(
        self,
        bal_problem: BALProblem,
        cost_functions: Sequence[SnavelyReprojectionError],
        robustify: bool = False,
    ) -> None:
        if bal_problem.camera_block_size != _CAMERA_SIZE:
            raise ValueError("reprojection residuals need 9-parameter angle-axis cameras")
        if len(cost_functions) != bal_problem.num_observations:
            raise ValueError("one cost function is needed per observation")
        self.bal_problem = bal_problem
        self.cost_functions = tuple(cost_functions)
        self.robustify = robustify
        self._camera_index = bal_problem.camera_index.copy()
        self._point_index = bal_problem.point_index.copy()
        self._observed = np.array(
            [[c.observed_x, c.observed_y] for c in self.cost_functions], dtype=float
        ).reshape(-1, 2)

    @property
    def num_residuals(self) -> int:
        return 2 * len(self.cost_functions)

    def residuals(self, x: Sequence[float]) -> np.ndarray:
        """Return the stacked 2D residuals for the parameter vector ``x``."""
        params = np.asarray(x, dtype=float)
        size = self.bal_problem.num_parameters
        if params.shape != (size,):
            raise ValueError(f"x must have {size} elements, got shape {params.shape}")
        split = _CAMERA_SIZE * self.bal_problem.num_cameras
        cameras = params[:split].reshape(-1, _CAMERA_SIZE)[self._camera_index]
        pts = params[split:].reshape(-1, _POINT_SIZE)[self._point_index]
        return (_project(cameras, pts) - self._observed).ravel()

    def jacobian_sparsity(self) -> csr_matrix:
        """Return the pattern of non-zero Jacobian entries."""
        m = len(self.cost_functions)
        n = self.bal_problem.num_parameters
        offset = _CAMERA_SIZE * self.bal_problem.num_cameras
        cam_cols = self._camera_index[:, None] * _CAMERA_SIZE + np.arange(_CAMERA_SIZE)
        pt_cols = offset + self._point_index[:, None] * _POINT_SIZE + np.arange(_POINT_SIZE)
        per_obs = np.hstack([cam_cols, pt_cols])
        cols = np.repeat(per_obs, 2, axis=0).ravel()
        rows = np.repeat(np.arange(2 * m), _CAMERA_SIZE + _POINT_SIZE)
        data = np.ones(rows.size, dtype=np.int8)
        return coo_matrix((data, (rows, cols)), shape=(2 * m, n)).tocsr()

    def _cost(self, x: Sequence[float]) -> float:
        z = self.residuals(x) ** 2
        if self.robustify:
            z = np.where(z <= 1.0, z, 2.0 * np.sqrt(z) - 1.0)
        return 0.5 * float(z.sum())

    def solve(self, options: SolverOptions) -> OptimizeResult:
        """Minimise the residuals and write the solution into the problem's parameters."""
        if not self.cost_functions:
            raise ValueError("the problem has no observations")
        x0 = self.bal_problem.parameters.copy()
        result = least_squares(
            self.residuals,
            x0,
            jac_sparsity=self.jacobian_sparsity(),
            method=_TRUST_REGION_METHODS[options.trust_region_strategy],
            ftol=max(options.function_tolerance, _EPSILON),
            xtol=max(options.parameter_tolerance, _EPSILON),
            gtol=max(options.gradient_tolerance, _EPSILON),
            x_scale="jac",
            loss="huber" if self.robustify else "linear",
            f_scale=1.0,
            tr_solver="lsmr",
            max_nfev=options.max_num_iterations + 1,
            verbose=2 if options.minimizer_progress_to_stdout else 0,
        )
        self.bal_problem.parameters[:] = result.x
        return result


def build_problem(bal_problem: BALProblem, params: BundleParams) -> BundleProblem:
    """Create one reprojection residual per observation of ``bal_problem``."""
    cost_functions = [
        SnavelyReprojectionError(float(x), float(y)) for x, y in bal_problem.observations
    ]
    return BundleProblem(bal_problem, cost_functions, robustify=params.robustify)


def _report(initial_cost: float, result: OptimizeResult) -> str:
    return "\n".join(
        [
            "Solver Summary",
            "",
            f"Initial cost: {initial_cost:.6e}",
            f"Final cost: {result.cost:.6e}",
            f"Function evaluations: {result.nfev}",
            f"Jacobian evaluations: {result.njev}",
            f"Termination: {result.message}",
        ]
    )


def solve_problem(
    filename: str | Path, params: BundleParams, out: TextIO | None = None
) -> OptimizeResult:
    """Load, normalise, perturb and solve a BAL problem, writing progress to ``out``."""
    out = out if out is not None else sys.stdout
    bal_problem = BALProblem.from_file(filename)

    print("bal problem file loaded...", file=out)
    print(
        f"bal problem have {bal_problem.num_cameras} cameras and "
        f"{bal_problem.num_points} points. ",
        file=out,
    )
    print(f"Forming {bal_problem.num_observations} observations. ", file=out)

    if params.initial_ply:
        bal_problem.write_to_ply_file(params.initial_ply)

    print("beginning problem...", file=out)
    noise = NoiseSource(params.random_seed)
    bal_problem.normalize()
    bal_problem.perturb(
        params.rotation_sigma, params.translation_sigma, params.point_sigma, noise
    )
    print("Normalization complete...", file=out)

    problem = build_problem(bal_problem, params)
    print("the problem is successfully built..", file=out)

    options = replace(
        solver_options(params),
        linear_solver_ordering=parameter_ordering(bal_problem, params),
        gradient_tolerance=1e-16,
        function_tolerance=1e-16,
    )
    initial_cost = problem._cost(bal_problem.parameters)
    result = problem.solve(options)
    print(_report(initial_cost, result), file=out)

    if params.final_ply:
        bal_problem.write_to_ply_file(params.final_ply)
    return result


def main(argv: Sequence[str] | None = None) -> int:
    """Run bundle adjustment on the dataset named by ``-input``."""
    params = BundleParams.from_argv(argv)
    print(params.input)
    if not params.input:
        print("Usage: bundle_adjuster -input <path for dataset>")
        return 1
    try:
        solve_problem(params.input, params)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0