"""Geometric algorithms shared by the odometry pipeline."""

from __future__ import annotations

import numpy as np

_QUALITY_RATIO = 1e-2


def triangulate(poses, points):
    """Linear SVD triangulation of one point seen from several poses.

    ``poses`` are world-to-camera SE3 transforms and ``points`` the matching
    observations on the normalised image plane (only the first two
    coordinates are used). Returns the world point, or ``None`` when the
    solution is poorly conditioned.
    """
    poses = list(poses)
    points = list(points)
    if len(poses) != len(points):
        raise ValueError("poses and points must have the same length")
    if len(poses) < 2:
        raise ValueError("triangulation needs at least two observations")

    rows = []
    for pose, point in zip(poses, points):
        obs = np.asarray(point, dtype=float)
        if obs.ndim != 1 or obs.size < 2:
            raise ValueError("each observation needs at least two coordinates")
        m = pose.matrix3x4()
        u, v = obs[0], obs[1]
        rows.append(u * m[2] - m[0])
        rows.append(v * m[2] - m[1])

    _, singular, vt = np.linalg.svd(np.vstack(rows), full_matrices=False)
    solution = vt[3]
    if singular[2] == 0 or solution[3] == 0:
        return None
    if singular[3] / singular[2] >= _QUALITY_RATIO:
        return None
    return solution[:3] / solution[3]