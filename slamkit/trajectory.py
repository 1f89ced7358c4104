"""Reading pose trajectories and comparing an estimate with ground truth.

A trajectory file holds one pose per line: ``time tx ty tz qx qy qz qw``.
"""

from __future__ import annotations

import argparse
import math
import sys
from typing import NamedTuple

import numpy as np

from slamkit.lie import SE3

GROUNDTRUTH_FILE = "./example/groundtruth.txt"
ESTIMATED_FILE = "./example/estimated.txt"

_AXIS_COLORS = ((1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0))


class Segment(NamedTuple):
    start: np.ndarray
    end: np.ndarray
    color: tuple


def parse_trajectory(lines):
    """Poses (camera-to-world SE3) from an iterable of trajectory lines; blank lines are skipped."""
    poses = []
    for number, line in enumerate(lines, start=1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 8:
            raise ValueError(f"line {number}: expected 8 fields, got {len(fields)}")
        try:
            _, tx, ty, tz, qx, qy, qz, qw = (float(f) for f in fields)
        except ValueError as exc:
            raise ValueError(f"line {number}: {exc}") from None
        poses.append(SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz)))
    return poses


def read_trajectory(path):
    """Poses read from a trajectory file."""
    with open(path, encoding="utf-8") as handle:
        return parse_trajectory(handle)


def rmse(groundtruth, estimated):
    """Root mean square of the pose errors |log(T_gt^-1 T_est)|."""
    groundtruth = list(groundtruth)
    estimated = list(estimated)
    if not groundtruth or not estimated:
        raise ValueError("trajectories must not be empty")
    if len(groundtruth) != len(estimated):
        raise ValueError("trajectories must have the same length")
    total = 0.0
    for truth, estimate in zip(groundtruth, estimated):
        error = float(np.linalg.norm((truth.inverse() @ estimate).log()))
        total += error * error
    return math.sqrt(total / len(estimated))


def axis_segments(poses, length=0.1):
    """Line segments drawing each pose's x, y and z axes in red, green and blue."""
    segments = []
    for pose in poses:
        origin = np.array(pose.translation)
        for axis, color in zip(np.eye(3), _AXIS_COLORS):
            segments.append(Segment(origin, pose @ (length * axis), color))
    return segments


def main(argv=None):
    parser = argparse.ArgumentParser(description="Compute the RMSE between two trajectories.")
    parser.add_argument("groundtruth", nargs="?", default=GROUNDTRUTH_FILE)
    parser.add_argument("estimated", nargs="?", default=ESTIMATED_FILE)
    args = parser.parse_args(argv)

    trajectories = []
    for path in (args.groundtruth, args.estimated):
        try:
            trajectories.append(read_trajectory(path))
        except FileNotFoundError:
            print(f"trajectory {path} not found.", file=sys.stderr)
            return 1
    try:
        value = rmse(*trajectories)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 1
    print(f"RMSE = {value:g}")
    return 0


if __name__ == "__main__":
    sys.exit(main())