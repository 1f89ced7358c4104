"""Reprojection errors and Jacobians used by bundle adjustment.

Poses are world-to-camera SE3 transforms, updated by left multiplication
with ``exp(dx)`` where ``dx`` holds translation first and rotation second.
The error of an observation is ``measurement - project(K, point)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from slamkit.lie import SE3

_Z_EPS = 1e-18


def _project(K, pos_cam):
    pixel = K @ pos_cam
    return pixel[:2] / pixel[2]


def _rotation(pose):
    return np.asarray(pose.matrix(), dtype=float)[:3, :3]


def pose_jacobian(K, pos_cam):
    """2x6 Jacobian of the reprojection error with respect to a left pose update.

    ``pos_cam`` is the point in camera coordinates; only fx and fy of ``K``
    are used.
    """
    K = np.asarray(K, dtype=float)
    fx, fy = K[0, 0], K[1, 1]
    X, Y, Z = np.asarray(pos_cam, dtype=float)
    zinv = 1.0 / (Z + _Z_EPS)
    zinv2 = zinv * zinv
    return np.array(
        [
            [
                -fx * zinv,
                0.0,
                fx * X * zinv2,
                fx * X * Y * zinv2,
                -fx - fx * X * X * zinv2,
                fx * Y * zinv,
            ],
            [
                0.0,
                -fy * zinv,
                fy * Y * zinv2,
                fy + fy * Y * Y * zinv2,
                -fy * X * Y * zinv2,
                -fy * X * zinv,
            ],
        ]
    )


@dataclass
class EdgeProjectionPoseOnly:
    """Observation of a fixed 3D point; only the camera pose is estimated."""

    pos3d: np.ndarray
    K: np.ndarray
    measurement: np.ndarray = field(default_factory=lambda: np.zeros(2))
    information: np.ndarray = field(default_factory=lambda: np.eye(2))

    def __post_init__(self):
        self.pos3d = np.asarray(self.pos3d, dtype=float)
        self.K = np.asarray(self.K, dtype=float)
        self.measurement = np.asarray(self.measurement, dtype=float)
        self.information = np.asarray(self.information, dtype=float)

    def error(self, pose: SE3):
        """Measured minus projected pixel."""
        return self.measurement - _project(self.K, pose @ self.pos3d)

    def jacobian(self, pose: SE3):
        """2x6 Jacobian of the error with respect to the pose."""
        return pose_jacobian(self.K, pose @ self.pos3d)

    def chi2(self, pose: SE3):
        """Information-weighted squared error."""
        e = self.error(pose)
        return float(e @ self.information @ e)


@dataclass
class EdgeProjection:
    """Observation linking a camera pose and a landmark, seen through an extrinsic."""

    K: np.ndarray
    cam_ext: SE3
    measurement: np.ndarray = field(default_factory=lambda: np.zeros(2))
    information: np.ndarray = field(default_factory=lambda: np.eye(2))

    def __post_init__(self):
        self.K = np.asarray(self.K, dtype=float)
        self.measurement = np.asarray(self.measurement, dtype=float)
        self.information = np.asarray(self.information, dtype=float)

    def _camera_point(self, pose, point):
        return self.cam_ext @ (pose @ np.asarray(point, dtype=float))

    def error(self, pose: SE3, point):
        """Measured minus projected pixel."""
        return self.measurement - _project(self.K, self._camera_point(pose, point))

    def jacobians(self, pose: SE3, point):
        """Jacobians of the error: 2x6 for the pose and 2x3 for the point."""
        j_pose = pose_jacobian(self.K, self._camera_point(pose, point))
        j_point = j_pose[:, :3] @ _rotation(self.cam_ext) @ _rotation(pose)
        return j_pose, j_point

    def chi2(self, pose: SE3, point):
        """Information-weighted squared error."""
        e = self.error(pose, point)
        return float(e @ self.information @ e)