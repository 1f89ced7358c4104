# slamkit

Building blocks for visual SLAM, written with NumPy, SciPy, Pillow and PyYAML.

## Modules

- `slamkit.lie`: rotations and rigid motions. `SO3` and `SE3` have `exp`,
  `log`, `inverse`, `quaternion` and composition with `@` (which also
  transforms a 3-vector or an `(N, 3)` array). `SE3` adds `hat`, `vee`,
  `matrix`, `matrix3x4` and `adjoint`. Free functions `hat`, `vee`,
  `quaternion_to_matrix`, `matrix_to_quaternion`, `angle_axis_to_matrix` and
  `euler_zyx` convert between representations. Quaternions are `(w, x, y, z)`;
  SE(3) tangent vectors are translation first, rotation second.
- `slamkit.algorithm`: `triangulate(poses, points)`, linear SVD triangulation
  of one point from normalised-plane observations; returns `None` when the
  solution is poorly conditioned.
- `slamkit.camera`: `Camera`, a pinhole model with `intrinsics()` and
  conversions between world, camera and pixel coordinates.
- `slamkit.curve_fitting`: fitting `y = exp(a x² + b x + c)` with
  `gauss_newton` or `levenberg_marquardt`, both returning a `FitResult`;
  `generate_data` makes noisy samples.
- `slamkit.trajectory`: `read_trajectory` / `parse_trajectory` for files of
  `time tx ty tz qx qy qz qw` lines, `rmse` between two trajectories, and
  `axis_segments`, which returns coloured line segments for each pose's axes.
- `slamkit.imaging`: `undistort_image`, `read_poses`, `depth_to_points`
  (RGB-D to an `(N, 6)` cloud), `disparity_to_points` (stereo to an `(N, 4)`
  cloud), `statistical_outlier_removal` and `voxel_filter`. Images are numpy
  arrays indexed `[row, column]`, colour channels in RGB order.
- `slamkit.pose_graph`: `PoseGraph.read` / `write` for the `VERTEX_SE3:QUAT`
  and `EDGE_SE3:QUAT` text format, `edge_error`, `total_error`, and
  `optimize`, a Levenberg-Marquardt solver with Lie-algebra errors that keeps
  vertex 0 fixed.
- `slamkit.dense_mapping`: monocular dense depth estimation by epipolar
  search, NCC matching and Gaussian depth filtering (`update`,
  `epipolar_search`, `update_depth_filter`, `evaluate_depth`, `read_dataset`).
- `slamkit.config`: `Config.set_parameter_file` loads a YAML file (a leading
  `%YAML:1.0` line and `!!opencv-matrix` nodes are accepted) and `Config.get`
  reads values from it.
- `slamkit.frame`: `Feature`, `Frame` and `MapPoint`, with factory ids and
  weak links between features, frames and map points.
- `slamkit.map`: `Map`, holding keyframes and map points with a sliding
  window of active keyframes.
- `slamkit.dataset`: `Dataset`, reading `calib.txt` and half-scaled grey
  stereo images from a KITTI-style sequence directory.
- `slamkit.projection`: reprojection edges `EdgeProjectionPoseOnly` and
  `EdgeProjection` with their Jacobians.
- `slamkit.backend`: `Backend`, which runs bundle adjustment of a map's
  active window on a worker thread when `update_map()` is called, flags
  outlier observations, and stops with `stop()` or on leaving a `with` block.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
import numpy as np
from slamkit.lie import SE3, SO3
from slamkit.algorithm import triangulate

R = SO3.exp(np.array([0.0, 0.0, np.pi / 2]))
T = SE3(R, np.array([1.0, 0.0, 0.0]))
xi = T.log()
assert np.allclose(SE3.exp(xi).matrix(), T.matrix())

point = np.array([30.0, 20.0, 10.0])
poses = [SE3(translation=np.array([0.0, y, 0.0])) for y in (0.0, -10.0, 10.0)]
observations = []
for pose in poses:
    p = pose @ point
    observations.append(p / p[2])
estimate = triangulate(poses, observations)
```

## Command-line tools

Fit the exponential curve to generated noisy data (`--method`,
`--iterations`, `--seed`):

```
slamkit-curve-fit
slamkit-curve-fit --method levenberg-marquardt --seed 1
```

Compute the RMSE between a ground-truth and an estimated trajectory
(defaults: `./example/groundtruth.txt` and `./example/estimated.txt`):

```
slamkit-trajectory-error groundtruth.txt estimated.txt
```

Optimise a pose graph and write the result (default `result_lie.g2o`,
`--iterations` defaults to 30):

```
slamkit-pose-graph sphere.g2o -o result.g2o
```

Run dense monocular depth estimation on a dataset directory; the estimated
depth is written, rounded and clipped to 0–255, as an 8-bit image (default
`depth.png`):

```
slamkit-dense-mapping path/to/dataset
```

## What it does not do

There is no front end that detects and tracks features, no command that runs
stereo visual odometry end to end, and no viewer: nothing opens a window or
draws plots. `Dataset`, `Map`, `Frame`, `MapPoint`, the projection edges and
`Backend` are provided as parts to assemble such a system. Point clouds are
returned as numpy arrays and are not written to any point-cloud or map file
format.