[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "balbundle"
version = "0.1.0"
description = "Bundle adjustment for Bundle Adjustment in the Large (BAL) datasets with a Snavely camera model"
requires-python = ">=3.10"
keywords = ["bundle adjustment", "BAL", "structure from motion", "reprojection", "computer vision"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
]
dependencies = [
    "numpy",
    "scipy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
balbundle = "balbundle.bundle:main"

[tool.hatch.build.targets.wheel]
packages = ["balbundle"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
