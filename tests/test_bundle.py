import io
from dataclasses import replace

import numpy as np
import pytest

from balbundle.bal_problem import BALProblem
from balbundle.bundle import (
    BundleProblem,
    SolverOptions,
    build_problem,
    main,
    parameter_ordering,
    solve_problem,
    solver_options,
)
from balbundle.params import BundleParams
from balbundle.reprojection import SnavelyReprojectionError, cam_projection_with_distortion

_CAMERAS = [
    [0.01, -0.02, 0.03, 0.1, -0.2, -10.0, 500.0, 1e-3, 1e-5],
    [-0.02, 0.05, 0.01, 0.5, 0.3, -12.0, 480.0, 2e-3, 0.0],
    [0.0, 0.0, 0.0, -0.4, 0.2, -11.0, 520.0, 0.0, 1e-5],
]


def _true_data():
    rng = np.random.default_rng(7)
    points = rng.uniform(-1.0, 1.0, size=(10, 3))
    camera_index, point_index, obs = [], [], []
    for c, camera in enumerate(_CAMERAS):
        for p, point in enumerate(points):
            camera_index.append(c)
            point_index.append(p)
            obs.extend(cam_projection_with_distortion(camera, point))
    parameters = np.concatenate([np.ravel(_CAMERAS), points.ravel()])
    return camera_index, point_index, obs, parameters


def _true_problem(use_quaternions=False):
    camera_index, point_index, obs, parameters = _true_data()
    return BALProblem(3, 10, camera_index, point_index, obs, parameters)


def _bal_text():
    camera_index, point_index, obs, parameters = _true_data()
    lines = [f"3 10 {len(camera_index)}"]
    for i, (c, p) in enumerate(zip(camera_index, point_index)):
        lines.append(f"{c} {p} {obs[2 * i]!r} {obs[2 * i + 1]!r}")
    lines.extend(repr(float(v)) for v in parameters)
    return "\n".join(lines) + "\n"


def test_residuals_vanish_at_true_parameters():
    bal = _true_problem()
    problem = build_problem(bal, BundleParams())
    residuals = problem.residuals(bal.parameters)
    assert residuals.shape == (60,)
    assert np.allclose(residuals, 0.0, atol=1e-9)


def test_residuals_match_per_observation_cost_functions():
    bal = _true_problem()
    problem = build_problem(bal, BundleParams())
    rng = np.random.default_rng(3)
    bal.parameters[:] += rng.normal(scale=0.01, size=bal.parameters.size)
    residuals = problem.residuals(bal.parameters).reshape(-1, 2)
    for i, cost in enumerate(problem.cost_functions):
        expected = cost(bal.camera_for_observation(i), bal.point_for_observation(i))
        assert np.allclose(residuals[i], expected)


def test_cost_functions_hold_observations():
    bal = _true_problem()
    problem = build_problem(bal, BundleParams())
    assert len(problem.cost_functions) == bal.num_observations
    first = problem.cost_functions[0]
    assert first == SnavelyReprojectionError(*bal.observations[0])


def test_residuals_reject_wrong_length():
    problem = build_problem(_true_problem(), BundleParams())
    with pytest.raises(ValueError):
        problem.residuals(np.zeros(5))


def test_jacobian_sparsity_pattern():
    bal = _true_problem()
    problem = build_problem(bal, BundleParams())
    sparsity = problem.jacobian_sparsity()
    assert sparsity.shape == (60, bal.num_parameters)
    assert sparsity.nnz == 60 * 12
    dense = sparsity.toarray()
    # Observation 0 sees camera 0 and point 0.
    row = dense[0]
    assert row[:9].all()
    assert not row[9:27].any()
    assert row[27:30].all()
    assert not row[30:].any()


def test_quaternion_problem_is_rejected():
    text = _bal_text()
    bal = BALProblem.from_text(text, use_quaternions=True)
    with pytest.raises(ValueError):
        build_problem(bal, BundleParams())


def test_solver_options_follow_params():
    params = BundleParams(num_iterations=25, num_threads=2, trust_region_strategy="DOGLEG")
    options = solver_options(params)
    assert options.max_num_iterations == 25
    assert options.num_threads == 2
    assert options.num_linear_solver_threads == 2
    assert options.trust_region_strategy == "dogleg"
    assert options.linear_solver_type == "dense_schur"
    assert options.minimizer_progress_to_stdout is True


@pytest.mark.parametrize(
    "field",
    ["trust_region_strategy", "linear_solver", "sparse_linear_algebra_library",
     "dense_linear_algebra_library"],
)
def test_solver_options_reject_unknown_names(field):
    params = replace(BundleParams(), **{field: "nonsense"})
    with pytest.raises(ValueError):
        solver_options(params)


def test_solver_options_reject_bad_counts():
    with pytest.raises(ValueError):
        SolverOptions(max_num_iterations=-1)
    with pytest.raises(ValueError):
        SolverOptions(num_threads=0)


def test_automatic_ordering_is_left_to_solver():
    assert parameter_ordering(_true_problem(), BundleParams()) is None


def test_user_ordering_puts_points_first():
    bal = _true_problem()
    points, cameras = parameter_ordering(bal, BundleParams(ordering="user"))
    assert cameras == tuple(9 * i for i in range(3))
    assert points == tuple(27 + 3 * i for i in range(10))


@pytest.mark.parametrize("strategy", ["levenberg_marquardt", "dogleg"])
def test_solve_reduces_error_and_updates_problem(strategy):
    bal = _true_problem()
    bal.points[:] += 0.05
    problem = build_problem(bal, BundleParams())
    initial = float(np.sum(problem.residuals(bal.parameters) ** 2))
    options = replace(
        solver_options(BundleParams(num_iterations=50, trust_region_strategy=strategy)),
        minimizer_progress_to_stdout=False,
    )
    result = problem.solve(options)
    final = float(np.sum(problem.residuals(bal.parameters) ** 2))
    assert final < initial * 1e-3
    assert np.array_equal(bal.parameters, result.x)


def test_robust_problem_solves():
    bal = _true_problem()
    bal.points[:] += 0.05
    problem = build_problem(bal, BundleParams(robustify=True))
    assert problem.robustify is True
    initial = problem._cost(bal.parameters)
    options = replace(solver_options(BundleParams(num_iterations=50)),
                      minimizer_progress_to_stdout=False)
    result = problem.solve(options)
    assert result.cost < initial


def test_solve_without_observations_fails():
    bal = BALProblem(0, 0, [], [], [], [])
    problem = BundleProblem(bal, [])
    with pytest.raises(ValueError):
        problem.solve(SolverOptions())


def test_solve_problem_writes_ply_files(tmp_path):
    data = tmp_path / "problem.txt"
    data.write_text(_bal_text())
    params = BundleParams(
        input=str(data),
        initial_ply=str(tmp_path / "initial.ply"),
        final_ply=str(tmp_path / "final.ply"),
    )
    out = io.StringIO()
    result = solve_problem(data, params, out)
    text = out.getvalue()
    assert "bal problem file loaded..." in text
    assert "bal problem have 3 cameras and 10 points. " in text
    assert "Normalization complete..." in text
    assert "Final cost" in text
    assert (tmp_path / "initial.ply").read_text().startswith("ply\n")
    assert (tmp_path / "final.ply").read_text().startswith("ply\n")
    assert result.cost < 1e-8


def test_solve_problem_skips_empty_ply_names(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    data = tmp_path / "problem.txt"
    data.write_text(_bal_text())
    params = BundleParams(input=str(data), initial_ply="", final_ply="")
    out = io.StringIO()
    result = solve_problem(data, params, out)
    assert list(tmp_path.glob("*.ply")) == []
    assert result.cost < 1e-8
    assert "bal problem have 3 cameras and 10 points. " in out.getvalue()


def test_main_without_input_prints_usage(capsys):
    assert main(["prog"]) == 1
    assert "Usage: bundle_adjuster -input <path for dataset>" in capsys.readouterr().out


def test_main_with_missing_file_fails(tmp_path, capsys):
    missing = tmp_path / "missing.txt"
    assert main(["prog", "-input", str(missing)]) == 1
    assert "Error:" in capsys.readouterr().err


def test_main_runs_dataset(tmp_path):
    data = tmp_path / "problem.txt"
    data.write_text(_bal_text())
    argv = [
        "prog",
        "-input", str(data),
        "-initial_ply", str(tmp_path / "a.ply"),
        "-final_ply", str(tmp_path / "b.ply"),
    ]
    assert main(argv) == 0
    assert (tmp_path / "b.ply").exists()