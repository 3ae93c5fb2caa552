"""Settings for a bundle adjustment run, read from the command line."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Sequence

from balbundle.cmdargs import CommandArgs

_DESCRIPTIONS = {
    "input": "file which will be processed",
    "trust_region_strategy": "Options are: levenberg_marquardt, dogleg.",
    "linear_solver": "Options are: sparse_schur, dense_schur, sparse_normal_cholesky",
    "sparse_linear_algebra_library": "Options are: suite_sparse and cx_sparse.",
    "dense_linear_algebra_library": "Options are: eigen and lapack.",
    "ordering": "Options are: automatic, user.",
    "robustify": "Use a robust loss function",
    "num_threads": "Number of threads.",
    "num_iterations": "Number of iterations.",
    "rotation_sigma": "Standard deviation of camera rotation perturbation.",
    "translation_sigma": "translation perturbation.",
    "point_sigma": "Standard deviation of the point perturbation.",
    "random_seed": "Random seed used to set the state ",
    "initial_ply": "Export the BAL file data as a PLY file.",
    "final_ply": "Export the refined BAL file data as a PLY",
}


@dataclass
class BundleParams:
    """Input file, solver choices, perturbation noise and output files."""

    input: str = ""
    trust_region_strategy: str = "levenberg_marquardt"
    linear_solver: str = "dense_schur"
    sparse_linear_algebra_library: str = "suite_sparse"
    dense_linear_algebra_library: str = "eigen"
    ordering: str = "automatic"
    robustify: bool = False
    num_threads: int = 1
    num_iterations: int = 10
    rotation_sigma: float = 0.0
    translation_sigma: float = 0.0
    point_sigma: float = 0.0
    random_seed: int = 38401
    initial_ply: str = "initial.ply"
    final_ply: str = "final.ply"

    @classmethod
    def from_argv(cls, argv: Sequence[str] | None = None) -> "BundleParams":
        """Parse ``argv`` (program name first, ``sys.argv`` by default).

        Options are given as ``-name value``; ``-robustify`` takes no value.
        Invalid command lines print a message and raise ``SystemExit``.
        """
        args = CommandArgs()
        for field in fields(cls):
            args.param(field.name, field.default, _DESCRIPTIONS[field.name])
        args.parse_args(argv)
        return cls(**{field.name: args[field.name] for field in fields(cls)})