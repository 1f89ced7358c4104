"""Monocular dense depth estimation along a known camera trajectory.

Every pixel of a reference image carries a Gaussian depth estimate (mean
and variance). For each new image the pixel is searched along its epipolar
line with zero-mean normalised cross-correlation, the match is
triangulated, and the result is fused into the estimate. Depth here is the
distance along the pixel's viewing ray.
"""

from __future__ import annotations

import argparse
import itertools
import math
import sys
from pathlib import Path
from typing import NamedTuple

import numpy as np
from PIL import Image

from slamkit.lie import SE3

BORDER = 20
WIDTH = 640
HEIGHT = 480
# Intrinsics of the dataset, kept at single precision.
FX = float(np.float32(481.2))
FY = -480.0
CX = 319.5
CY = 239.5
NCC_WINDOW_SIZE = 3
NCC_AREA = (2 * NCC_WINDOW_SIZE + 1) ** 2
MIN_COV = 0.1
MAX_COV = 10.0
INIT_DEPTH = 3.0
INIT_COV2 = 3.0
MIN_DEPTH = 0.1
MAX_HALF_LENGTH = 100.0
SEARCH_STEP = 0.7
NCC_THRESHOLD = float(np.float32(0.85))

TRAJECTORY_FILE = "first_200_frames_traj_over_table_input_sequence.txt"
REFERENCE_DEPTH_FILE = "depthmaps/scene_000.depth"
DEFAULT_OUTPUT = "depth.png"

_window = np.arange(-NCC_WINDOW_SIZE, NCC_WINDOW_SIZE + 1, dtype=float)
_DX, _DY = (grid.ravel() for grid in np.meshgrid(_window, _window, indexing="ij"))


class DepthError(NamedTuple):
    mean_error: float
    mean_squared_error: float


class DatasetFiles(NamedTuple):
    image_files: list
    poses: list
    reference_depth: np.ndarray


def _normalized(vector):
    norm = float(np.linalg.norm(vector))
    return vector / norm if norm > 0 else vector


def px2cam(px):
    """Point on the normalised image plane (z = 1) of a pixel."""
    u, v = np.asarray(px, dtype=float)
    return np.array([(u - CX) / FX, (v - CY) / FY, 1.0])


def cam2px(p_cam):
    """Pixel of a point in camera coordinates."""
    x, y, z = np.asarray(p_cam, dtype=float)
    return np.array([x * FX / z + CX, y * FY / z + CY])


def _inside_image(pt, width, height):
    x, y = pt
    return bool(x >= BORDER and y >= BORDER and x + BORDER < width and y + BORDER <= height)


def inside(pt):
    """Whether a pixel lies inside the image, away from its border."""
    return _inside_image(pt, WIDTH, HEIGHT)


def bilinear(image, pt):
    """Bilinearly interpolated grey value scaled to [0, 1].

    ``pt`` is one ``(x, y)`` point, giving a float, or an (N, 2) array,
    giving an array of N values.
    """
    img = np.asarray(image)
    points = np.asarray(pt, dtype=float)
    grid = np.atleast_2d(points)
    x, y = grid[:, 0], grid[:, 1]
    xi = np.trunc(x).astype(int)
    yi = np.trunc(y).astype(int)
    xx = x - np.floor(x)
    yy = y - np.floor(y)
    values = (
        (1 - xx) * (1 - yy) * img[yi, xi]
        + xx * (1 - yy) * img[yi, xi + 1]
        + (1 - xx) * yy * img[yi + 1, xi]
        + xx * yy * img[yi + 1, xi + 1]
    ) / 255.0
    if points.ndim == 1:
        return float(values[0])
    return values


def ncc(ref, curr, pt_ref, pt_curr):
    """Zero-mean normalised cross-correlation of the windows around two pixels."""
    ref_img = np.asarray(ref)
    xr = np.trunc(_DX + pt_ref[0]).astype(int)
    yr = np.trunc(_DY + pt_ref[1]).astype(int)
    values_ref = ref_img[yr, xr].astype(float) / 255.0
    values_curr = bilinear(curr, np.column_stack((_DX + pt_curr[0], _DY + pt_curr[1])))
    dr = values_ref - values_ref.sum() / NCC_AREA
    dc = values_curr - values_curr.sum() / NCC_AREA
    return float(dr @ dc / math.sqrt(float(dr @ dr) * float(dc @ dc) + 1e-10))


def epipolar_search(ref, curr, T_C_R, pt_ref, depth_mu, depth_cov):
    """Best NCC match of ``pt_ref`` along its epipolar line in ``curr``.

    The search covers depths within three standard deviations of the mean.
    Returns ``(pt_curr, epipolar_direction)``, or ``None`` when no candidate
    scores at least the NCC threshold.
    """
    height, width = np.shape(curr)[:2]
    f_ref = _normalized(px2cam(pt_ref))
    px_mean_curr = cam2px(T_C_R @ (f_ref * depth_mu))
    d_min = max(depth_mu - 3 * depth_cov, MIN_DEPTH)
    d_max = depth_mu + 3 * depth_cov
    px_min_curr = cam2px(T_C_R @ (f_ref * d_min))
    px_max_curr = cam2px(T_C_R @ (f_ref * d_max))

    epipolar_line = px_max_curr - px_min_curr
    direction = _normalized(epipolar_line)
    half_length = min(0.5 * float(np.linalg.norm(epipolar_line)), MAX_HALF_LENGTH)

    best_ncc = -1.0
    best_px_curr = None
    offset = -half_length
    while offset <= half_length:
        px_curr = px_mean_curr + offset * direction
        if inside(px_curr) and _inside_image(px_curr, width, height):
            score = ncc(ref, curr, pt_ref, px_curr)
            if score > best_ncc:
                best_ncc = score
                best_px_curr = px_curr
        offset += SEARCH_STEP
    if best_px_curr is None or best_ncc < NCC_THRESHOLD:
        return None
    return best_px_curr, direction


def update_depth_filter(pt_ref, pt_curr, T_C_R, epipolar_direction, depth, depth_cov2):
    """Triangulate a match and fuse it into the depth maps in place.

    Returns the fused ``(mean, variance)`` of the pixel, or ``None`` when the
    triangulation is degenerate, in which case nothing is changed.
    """
    pt_ref = np.asarray(pt_ref, dtype=float)
    pt_curr = np.asarray(pt_curr, dtype=float)
    T_R_C = T_C_R.inverse()
    f_ref = _normalized(px2cam(pt_ref))
    f_curr = _normalized(px2cam(pt_curr))

    # d_ref * f_ref = d_cur * (R_RC * f_cur) + t_RC, projected onto f_ref and f2.
    t = T_R_C.translation
    f2 = T_R_C.so3 @ f_curr
    b = np.array([t @ f_ref, t @ f2])
    a01 = -float(f_ref @ f2)
    A = np.array([[float(f_ref @ f_ref), a01], [-a01, -float(f2 @ f2)]])
    try:
        ans = np.linalg.solve(A, b)
    except np.linalg.LinAlgError:
        return None
    xm = ans[0] * f_ref
    xn = t + ans[1] * f2
    depth_estimation = float(np.linalg.norm((xm + xn) / 2.0))

    # Uncertainty from a one-pixel error along the epipolar line.
    p = f_ref * depth_estimation
    a = p - t
    t_norm = float(np.linalg.norm(t))
    a_norm = float(np.linalg.norm(a))
    with np.errstate(invalid="ignore", divide="ignore"):
        alpha = math.acos(np.clip(f_ref @ t / t_norm, -1.0, 1.0))
        f_curr_prime = _normalized(px2cam(pt_curr + np.asarray(epipolar_direction, dtype=float)))
        beta_prime = math.acos(np.clip(f_curr_prime @ -t / t_norm, -1.0, 1.0))
        gamma = math.pi - alpha - beta_prime
        p_prime = t_norm * math.sin(beta_prime) / math.sin(gamma)
    d_cov = p_prime - depth_estimation
    d_cov2 = d_cov * d_cov

    row, col = int(pt_ref[1]), int(pt_ref[0])
    mu = float(depth[row, col])
    sigma2 = float(depth_cov2[row, col])
    mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / (sigma2 + d_cov2)
    sigma_fuse2 = (sigma2 * d_cov2) / (sigma2 + d_cov2)
    if not (math.isfinite(mu_fuse) and math.isfinite(sigma_fuse2)):
        return None
    depth[row, col] = mu_fuse
    depth_cov2[row, col] = sigma_fuse2
    return mu_fuse, sigma_fuse2


def update(ref, curr, T_C_R, depth, depth_cov2):
    """Update every unconverged pixel of the depth maps; returns how many were fused."""
    height, width = np.shape(depth)
    updated = 0
    for x in range(BORDER, width - BORDER):
        for y in range(BORDER, height - BORDER):
            cov2 = float(depth_cov2[y, x])
            if cov2 < MIN_COV or cov2 > MAX_COV:
                continue
            pt_ref = np.array([x, y], dtype=float)
            match = epipolar_search(ref, curr, T_C_R, pt_ref, float(depth[y, x]), math.sqrt(cov2))
            if match is None:
                continue
            pt_curr, direction = match
            if update_depth_filter(pt_ref, pt_curr, T_C_R, direction, depth, depth_cov2) is not None:
                updated += 1
    return updated


def evaluate_depth(depth_truth, depth_estimate):
    """Mean and mean squared error of the estimate inside the image border."""
    truth = np.asarray(depth_truth, dtype=float)
    estimate = np.asarray(depth_estimate, dtype=float)
    if truth.shape != estimate.shape:
        raise ValueError("depth maps must have the same shape")
    rows, cols = truth.shape
    region = (slice(BORDER, rows - BORDER), slice(BORDER, cols - BORDER))
    error = truth[region] - estimate[region]
    if error.size == 0:
        raise ValueError("depth maps are too small to evaluate inside the border")
    return DepthError(float(error.mean()), float((error * error).mean()))


def read_dataset(path):
    """Image files, camera-to-world poses and reference depth of a dataset directory."""
    base = Path(path)
    image_files = []
    poses = []
    with open(base / TRAJECTORY_FILE, encoding="utf-8") as handle:
        for number, line in enumerate(handle, start=1):
            fields = line.split()
            if not fields:
                continue
            if len(fields) != 8:
                raise ValueError(f"line {number}: expected 8 fields, got {len(fields)}")
            image, *numbers = fields
            try:
                tx, ty, tz, qx, qy, qz, qw = (float(v) for v in numbers)
            except ValueError as exc:
                raise ValueError(f"line {number}: {exc}") from None
            image_files.append(str(base / "images" / image))
            poses.append(SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz)))

    with open(base / REFERENCE_DEPTH_FILE, encoding="utf-8") as handle:
        values = handle.read().split()
    needed = HEIGHT * WIDTH
    if len(values) < needed:
        raise ValueError(f"reference depth needs {needed} values, got {len(values)}")
    reference = np.array([float(v) for v in values[:needed]]).reshape(HEIGHT, WIDTH) / 100.0
    return DatasetFiles(image_files, poses, reference)


def _load_grey(path):
    with Image.open(path) as img:
        return np.asarray(img.convert("L"))


def main(argv=None):
    parser = argparse.ArgumentParser(description="Dense monocular depth estimation.")
    parser.add_argument("dataset", help="path to the test dataset")
    parser.add_argument("-o", "--output", default=DEFAULT_OUTPUT)
    args = parser.parse_args(argv)

    try:
        dataset = read_dataset(args.dataset)
        ref = _load_grey(dataset.image_files[0])
    except (OSError, ValueError, IndexError):
        print("Reading image files failed!")
        return 1
    print(f"read total {len(dataset.image_files)} files.")

    pose_ref = dataset.poses[0]
    depth = np.full((HEIGHT, WIDTH), INIT_DEPTH)
    depth_cov2 = np.full((HEIGHT, WIDTH), INIT_COV2)
    frames = itertools.islice(zip(dataset.image_files, dataset.poses), 1, None)
    for index, (image_file, pose_curr) in enumerate(frames, start=1):
        print(f"*** loop {index} ***")
        try:
            curr = _load_grey(image_file)
        except OSError:
            continue
        update(ref, curr, pose_curr.inverse() @ pose_ref, depth, depth_cov2)
        error = evaluate_depth(dataset.reference_depth, depth)
        print(
            f"Average squared error = {error.mean_squared_error:g}, "
            f"average error: {error.mean_error:g}"
        )

    print("estimation returns, saving depth map ...")
    Image.fromarray(np.clip(np.rint(depth), 0, 255).astype(np.uint8)).save(args.output)
    print("done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())