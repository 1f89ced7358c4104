import numpy as np
import pytest

from slamkit.imaging import (
    STEREO_BASELINE,
    Distortion,
    Intrinsics,
    RGBD_INTRINSICS,
    depth_to_points,
    disparity_to_points,
    read_poses,
    statistical_outlier_removal,
    undistort_image,
    voxel_filter,
)
from slamkit.lie import SE3

UNIT = Intrinsics(fx=1.0, fy=1.0, cx=0.0, cy=0.0)


def _image(rows=4, cols=5):
    return np.arange(1, rows * cols + 1, dtype=np.uint8).reshape(rows, cols)


def test_undistort_without_distortion_is_identity():
    image = _image()
    result = undistort_image(image, Distortion(), UNIT)
    assert np.array_equal(result, image)
    assert result.dtype == image.dtype


def test_undistort_out_of_range_pixels_are_zero():
    image = _image(4, 4)
    result = undistort_image(image, Distortion(k1=10.0), UNIT)
    assert result[0, 0] == image[0, 0]
    mask = np.ones_like(image, dtype=bool)
    mask[0, 0] = False
    assert np.all(result[mask] == 0)


def test_undistort_rejects_colour_image():
    with pytest.raises(ValueError):
        undistort_image(np.zeros((3, 3, 3)), Distortion(), UNIT)


def test_read_poses(tmp_path):
    path = tmp_path / "pose.txt"
    path.write_text("1 2 3 0 0 0 1\n-1 0 0.5 0 0 0 1\n")
    poses = read_poses(path, count=2)
    assert len(poses) == 2
    assert np.allclose(poses[0].translation, [1, 2, 3])
    assert np.allclose(poses[1].translation, [-1, 0, 0.5])
    assert np.allclose(poses[0].rotation_matrix, np.eye(3))


def test_read_poses_too_short(tmp_path):
    path = tmp_path / "pose.txt"
    path.write_text("1 2 3 0 0 0 1\n")
    with pytest.raises(ValueError):
        read_poses(path, count=2)


def test_read_poses_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_poses(tmp_path / "absent.txt")


def _rgbd():
    color = np.zeros((2, 3, 3), dtype=np.uint8)
    color[0, 0] = (10, 20, 30)
    color[1, 2] = (40, 50, 60)
    depth = np.zeros((2, 3), dtype=np.uint16)
    depth[0, 0] = 1000
    depth[1, 2] = 2500
    return color, depth


def test_depth_to_points_skips_zero_depth_and_keeps_colour():
    color, depth = _rgbd()
    cloud = depth_to_points(color, depth, SE3(), UNIT, 1000.0)
    assert cloud.shape == (2, 6)
    assert np.allclose(cloud[0, :3], [0.0, 0.0, 1.0])
    assert np.array_equal(cloud[0, 3:], [10, 20, 30])
    assert np.array_equal(cloud[1, 3:], [40, 50, 60])


def test_depth_to_points_reprojects_to_source_pixel():
    color, depth = _rgbd()
    cloud = depth_to_points(color, depth, SE3(), RGBD_INTRINSICS, 1000.0)
    x, y, z = cloud[1, :3]
    assert z == pytest.approx(depth[1, 2] / 1000.0)
    assert x / z * RGBD_INTRINSICS.fx + RGBD_INTRINSICS.cx == pytest.approx(2.0)
    assert y / z * RGBD_INTRINSICS.fy + RGBD_INTRINSICS.cy == pytest.approx(1.0)


def test_depth_to_points_applies_pose():
    color, depth = _rgbd()
    t = np.array([1.0, -2.0, 3.0])
    base = depth_to_points(color, depth, SE3(), UNIT, 1000.0)
    moved = depth_to_points(color, depth, SE3(None, t), UNIT, 1000.0)
    assert np.allclose(moved[:, :3], base[:, :3] + t)


def test_depth_to_points_size_mismatch():
    color, _ = _rgbd()
    with pytest.raises(ValueError):
        depth_to_points(color, np.zeros((3, 3)), SE3(), UNIT, 1000.0)


def test_disparity_to_points_filters_range():
    image = np.full((2, 2), 255, dtype=np.uint8)
    disparity = np.array([[0.0, 1.0], [96.0, 2.0]])
    intr = Intrinsics(fx=2.0, fy=2.0, cx=1.0, cy=0.0)
    cloud = disparity_to_points(image, disparity, intr, 0.5)
    assert cloud.shape == (2, 4)
    assert np.allclose(cloud[0], [0.0, 0.0, 1.0, 1.0])
    assert np.allclose(cloud[:, 2] * disparity[[0, 1], [1, 1]], 2.0 * 0.5)


def test_disparity_depth_inverse_to_disparity():
    image = np.zeros((1, 2), dtype=np.uint8)
    disparity = np.array([[4.0, 8.0]])
    cloud = disparity_to_points(image, disparity, UNIT, STEREO_BASELINE)
    assert cloud[0, 2] == pytest.approx(2 * cloud[1, 2])
    assert np.all(cloud[:, 3] == 0)


def test_statistical_outlier_removal_drops_far_point():
    rng = np.random.default_rng(0)
    cluster = rng.normal(0.0, 0.01, size=(60, 3))
    cloud = np.vstack((cluster, [[5.0, 5.0, 5.0]]))
    kept = statistical_outlier_removal(cloud, mean_k=10, std_mul=1.0)
    assert not np.any(np.all(kept == [5.0, 5.0, 5.0], axis=1))
    assert 0 < len(kept) <= 60
    for row in kept:
        assert np.any(np.all(cluster == row, axis=1))


def test_statistical_outlier_removal_keeps_extra_columns():
    cloud = np.column_stack((np.eye(3), np.arange(3)))
    kept = statistical_outlier_removal(cloud, mean_k=2)
    assert kept.shape[1] == 4


def test_statistical_outlier_removal_invalid_k():
    with pytest.raises(ValueError):
        statistical_outlier_removal(np.zeros((3, 3)), mean_k=0)


def test_voxel_filter_averages_within_voxel():
    cloud = np.array(
        [
            [0.01, 0.01, 0.01, 10.0],
            [0.02, 0.02, 0.02, 20.0],
            [1.00, 1.00, 1.00, 5.0],
        ]
    )
    result = voxel_filter(cloud, 0.1)
    assert result.shape == (2, 4)
    assert np.allclose(result[0], cloud[:2].mean(axis=0))
    assert np.allclose(result[1], cloud[2])


def test_voxel_filter_preserves_centroid_of_single_voxel():
    rng = np.random.default_rng(1)
    cloud = rng.uniform(0.0, 0.5, size=(20, 3))
    result = voxel_filter(cloud, 1.0)
    assert np.allclose(result, cloud.mean(axis=0, keepdims=True))


def test_voxel_filter_invalid_resolution():
    with pytest.raises(ValueError):
        voxel_filter(np.zeros((2, 3)), 0.0)