"""Pixel-level image operations and point-cloud construction.

Covers lens undistortion, back-projection of RGB-D and stereo images into
point clouds, and the two point-cloud filters used when fusing them
(statistical outlier removal and voxel-grid downsampling).

Images are numpy arrays indexed ``[row, column]``. Colour images hold their
channels in RGB order, as Pillow loads them.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.spatial import cKDTree

from slamkit.lie import SE3


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole camera intrinsics."""

    fx: float
    fy: float
    cx: float
    cy: float


@dataclass(frozen=True)
class Distortion:
    """Radial (k1, k2) and tangential (p1, p2) lens distortion coefficients."""

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0


UNDISTORT_INTRINSICS = Intrinsics(458.654, 457.296, 367.215, 248.375)
UNDISTORT_DISTORTION = Distortion(-0.28340811, 0.07395907, 0.00019359, 1.76187114e-05)

RGBD_INTRINSICS = Intrinsics(518.0, 519.0, 325.5, 253.5)
RGBD_DEPTH_SCALE = 1000.0

DENSE_RGBD_INTRINSICS = Intrinsics(481.2, -480.0, 319.5, 239.5)
DENSE_RGBD_DEPTH_SCALE = 5000.0

STEREO_INTRINSICS = Intrinsics(718.856, 718.856, 607.1928, 185.2157)
STEREO_BASELINE = 0.573
STEREO_MAX_DISPARITY = 96.0


def undistort_image(image, distortion, intrinsics):
    """Undistort a grey image by nearest-neighbour lookup.

    Each output pixel takes the value of the distorted image at the location
    its undistorted ray maps to; locations outside the image give 0.
    """
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError(f"expected a 2D grey image, got shape {img.shape}")
    rows, cols = img.shape
    v, u = np.mgrid[0:rows, 0:cols].astype(float)
    k = intrinsics
    d = distortion

    x = (u - k.cx) / k.fx
    y = (v - k.cy) / k.fy
    r2 = x * x + y * y
    radial = 1.0 + d.k1 * r2 + d.k2 * r2 * r2
    x_distorted = x * radial + 2.0 * d.p1 * x * y + d.p2 * (r2 + 2.0 * x * x)
    y_distorted = y * radial + d.p1 * (r2 + 2.0 * y * y) + 2.0 * d.p2 * x * y
    u_distorted = k.fx * x_distorted + k.cx
    v_distorted = k.fy * y_distorted + k.cy

    with np.errstate(invalid="ignore"):
        valid = (u_distorted >= 0) & (v_distorted >= 0) & (u_distorted < cols) & (v_distorted < rows)
    result = np.zeros_like(img)
    result[valid] = img[v_distorted[valid].astype(int), u_distorted[valid].astype(int)]
    return result


def read_poses(path, count=5):
    """Read ``count`` camera-to-world poses stored as ``tx ty tz qx qy qz qw``."""
    if count < 0:
        raise ValueError("count must not be negative")
    with open(path, encoding="utf-8") as handle:
        values = handle.read().split()
    needed = 7 * count
    if len(values) < needed:
        raise ValueError(f"{path}: expected {needed} numbers for {count} poses, got {len(values)}")
    data = np.array([float(v) for v in values[:needed]]).reshape(count, 7)
    return [
        SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz))
        for tx, ty, tz, qx, qy, qz, qw in data
    ]


def depth_to_points(color, depth, pose, intrinsics, depth_scale=RGBD_DEPTH_SCALE):
    """World points of an RGB-D frame as an (N, 6) array of ``x, y, z, r, g, b``.

    Pixels with depth 0 carry no measurement and are skipped. ``pose`` maps
    camera coordinates to world coordinates. Points come in row-major pixel
    order.
    """
    rgb = np.asarray(color)
    raw_depth = np.asarray(depth)
    if rgb.ndim != 3 or rgb.shape[2] < 3:
        raise ValueError(f"expected a colour image with 3 channels, got shape {rgb.shape}")
    if raw_depth.shape != rgb.shape[:2]:
        raise ValueError("depth and colour images must have the same size")
    if depth_scale <= 0:
        raise ValueError("depth_scale must be positive")

    v, u = np.nonzero(raw_depth)
    z = raw_depth[v, u].astype(float) / depth_scale
    x = (u - intrinsics.cx) * z / intrinsics.fx
    y = (v - intrinsics.cy) * z / intrinsics.fy
    world = pose @ np.column_stack((x, y, z))
    colors = rgb[v, u, :3].astype(float)
    return np.column_stack((np.reshape(world, (-1, 3)), colors))


def disparity_to_points(image, disparity, intrinsics, baseline, max_disparity=STEREO_MAX_DISPARITY):
    """Camera-frame points from a disparity map as an (N, 4) array ``x, y, z, intensity``.

    Disparities not strictly between 0 and ``max_disparity`` are skipped;
    intensity is the grey value of the left image scaled to [0, 1].
    """
    grey = np.asarray(image)
    disp = np.asarray(disparity, dtype=float)
    if grey.ndim != 2:
        raise ValueError(f"expected a 2D grey image, got shape {grey.shape}")
    if disp.shape != grey.shape:
        raise ValueError("image and disparity must have the same size")

    with np.errstate(invalid="ignore"):
        mask = (disp > 0.0) & (disp < max_disparity)
    v, u = np.nonzero(mask)
    d = disp[v, u]
    depth = intrinsics.fx * baseline / d
    x = (u - intrinsics.cx) / intrinsics.fx * depth
    y = (v - intrinsics.cy) / intrinsics.fy * depth
    intensity = grey[v, u].astype(float) / 255.0
    return np.column_stack((x, y, depth, intensity))


def _as_cloud(points):
    pts = np.asarray(points, dtype=float)
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise ValueError(f"expected an (N, >=3) array of points, got shape {pts.shape}")
    return pts


def statistical_outlier_removal(points, mean_k=50, std_mul=1.0):
    """Drop points whose mean distance to their ``mean_k`` nearest neighbours is unusual.

    A point is kept when that mean distance is at most the average over the
    cloud plus ``std_mul`` standard deviations. Only the first three columns
    are used as coordinates; all columns are kept.
    """
    pts = _as_cloud(points)
    if mean_k < 1:
        raise ValueError("mean_k must be at least 1")
    k = min(mean_k + 1, len(pts))
    if k < 2:
        return pts.copy()
    coords = pts[:, :3]
    distances, _ = cKDTree(coords).query(coords, k=k)
    mean_distances = distances[:, 1:].mean(axis=1)
    average = mean_distances.mean()
    spread = mean_distances.std(ddof=1)
    return pts[mean_distances <= average + std_mul * spread]


def voxel_filter(points, resolution):
    """Replace the points inside each cubic voxel by their centroid (all columns averaged)."""
    pts = _as_cloud(points)
    if resolution <= 0:
        raise ValueError("resolution must be positive")
    if len(pts) == 0:
        return pts.copy()
    keys = np.floor(pts[:, :3] / resolution).astype(np.int64)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = np.ravel(inverse)
    sums = np.zeros((len(counts), pts.shape[1]))
    np.add.at(sums, inverse, pts)
    return sums / counts[:, None]