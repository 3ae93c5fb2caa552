"""Bundle adjustment of BAL datasets with a Snavely camera model."""

__version__ = "0.1.0"