[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamkit"
version = "0.1.0"
description = "Visual SLAM building blocks: Lie groups, triangulation, curve fitting, pose graphs, dense mapping and stereo odometry components."
requires-python = ">=3.10"
keywords = [
    "slam",
    "visual-odometry",
    "lie-group",
    "se3",
    "pose-graph",
    "triangulation",
    "gauss-newton",
    "bundle-adjustment",
    "point-cloud",
    "depth-estimation",
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
    "Topic :: Scientific/Engineering",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy",
    "scipy",
    "pillow",
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
slamkit-curve-fit = "slamkit.curve_fitting:main"
slamkit-trajectory-error = "slamkit.trajectory:main"
slamkit-pose-graph = "slamkit.pose_graph:main"
slamkit-dense-mapping = "slamkit.dense_mapping:main"

[tool.hatch.build.targets.wheel]
packages = ["slamkit"]

[tool.hatch.build.targets.sdist]
include = ["slamkit", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
