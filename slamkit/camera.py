"""Pinhole camera model of one eye of a stereo rig."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from slamkit.lie import SE3


@dataclass
class Camera:
    """Pinhole intrinsics plus the extrinsic from the rig frame to this camera."""

    fx: float = 0.0
    fy: float = 0.0
    cx: float = 0.0
    cy: float = 0.0
    baseline: float = 0.0
    pose: SE3 = field(default_factory=SE3)
    pose_inv: SE3 = field(init=False, repr=False)

    def __post_init__(self):
        self.pose_inv = self.pose.inverse()

    def intrinsics(self):
        """The 3x3 intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]]
        )

    def world_to_camera(self, p_w, T_c_w):
        return self.pose @ T_c_w @ np.asarray(p_w, dtype=float)

    def camera_to_world(self, p_c, T_c_w):
        return T_c_w.inverse() @ self.pose_inv @ np.asarray(p_c, dtype=float)

    def camera_to_pixel(self, p_c):
        x, y, z = np.asarray(p_c, dtype=float)
        return np.array([self.fx * x / z + self.cx, self.fy * y / z + self.cy])

    def pixel_to_camera(self, p_p, depth=1.0):
        u, v = np.asarray(p_p, dtype=float)
        return np.array(
            [(u - self.cx) * depth / self.fx, (v - self.cy) * depth / self.fy, depth]
        )

    def pixel_to_world(self, p_p, T_c_w, depth=1.0):
        return self.camera_to_world(self.pixel_to_camera(p_p, depth), T_c_w)

    def world_to_pixel(self, p_w, T_c_w):
        return self.camera_to_pixel(self.world_to_camera(p_w, T_c_w))