import pytest

from balbundle.params import BundleParams


def test_defaults_from_empty_command_line():
    params = BundleParams.from_argv(["prog"])
    assert params == BundleParams()
    assert params.trust_region_strategy == "levenberg_marquardt"
    assert params.linear_solver == "dense_schur"
    assert params.random_seed == 38401
    assert params.initial_ply == "initial.ply"
    assert params.final_ply == "final.ply"


def test_values_are_parsed_by_type():
    params = BundleParams.from_argv(
        [
            "prog",
            "-input",
            "data.txt",
            "-num_iterations",
            "50",
            "-point_sigma",
            "0.5",
            "-trust_region_strategy",
            "dogleg",
        ]
    )
    assert params.input == "data.txt"
    assert params.num_iterations == 50
    assert params.point_sigma == 0.5
    assert params.trust_region_strategy == "dogleg"


def test_double_dash_options_are_accepted():
    params = BundleParams.from_argv(["prog", "--input", "file.txt"])
    assert params.input == "file.txt"


def test_robustify_flag_toggles_without_value():
    params = BundleParams.from_argv(["prog", "-robustify", "-num_threads", "4"])
    assert params.robustify is True
    assert params.num_threads == 4


def test_invalid_number_keeps_default():
    params = BundleParams.from_argv(["prog", "-num_threads", "abc"])
    assert params.num_threads == 1


def test_unknown_option_exits_with_error(capsys):
    with pytest.raises(SystemExit) as info:
        BundleParams.from_argv(["prog", "-bogus", "1"])
    assert info.value.code == 1
    assert "Unknown Option 'bogus'" in capsys.readouterr().err


def test_missing_value_exits_with_error():
    with pytest.raises(SystemExit) as info:
        BundleParams.from_argv(["prog", "-input"])
    assert info.value.code == 1


def test_help_lists_options_and_exits(capsys):
    with pytest.raises(SystemExit) as info:
        BundleParams.from_argv(["prog", "-help"])
    assert info.value.code == 0
    text = capsys.readouterr().out
    assert "Usage: prog [options]" in text
    assert "-num_iterations <int>" in text
    assert "(default: levenberg_marquardt)" in text