"""Bundle adjustment of the active window, run on its own thread.

The front end calls :meth:`Backend.update_map` whenever the map changes;
the worker thread then optimises the active keyframes and landmarks of the
map, flags outlier observations and writes the results back.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import NamedTuple

import numpy as np
from scipy.sparse import coo_matrix, identity
from scipy.sparse.linalg import spsolve

from slamkit.lie import SE3
from slamkit.projection import EdgeProjection

logger = logging.getLogger(__name__)

CHI2_THRESHOLD = 5.991
OPTIMIZE_ITERATIONS = 10
MAX_THRESHOLD_ADJUSTMENTS = 5
MIN_INLIER_RATIO = 0.5

_POSE_DIM = 6
_POINT_DIM = 3
_TAU = 1e-5
_MAX_TRIALS = 10


class OptimizationResult(NamedTuple):
    inliers: int
    outliers: int
    chi2_threshold: float


class _Observation(NamedTuple):
    keyframe_id: int
    landmark_id: int
    edge: EdgeProjection
    feature: object


def _huber(e2, delta):
    """Robust cost and weight of a squared error under a Huber kernel."""
    if e2 <= delta * delta:
        return e2, 1.0
    root = math.sqrt(e2)
    return 2.0 * root * delta - delta * delta, delta / root


class Backend:
    """Optimises the map's active window whenever it is told the map changed."""

    def __init__(self):
        self._map = None
        self.cam_left = None
        self.cam_right = None
        self._condition = threading.Condition()
        self._pending = False
        self._running = True
        self._thread = threading.Thread(target=self._loop, name="backend", daemon=True)
        self._thread.start()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.stop()

    def set_cameras(self, left, right):
        self.cam_left = left
        self.cam_right = right

    def set_map(self, map_):
        self._map = map_

    def update_map(self):
        """Ask the worker thread to optimise the active window."""
        with self._condition:
            self._pending = True
            self._condition.notify()

    def stop(self):
        """Finish any requested optimisation and end the worker thread."""
        with self._condition:
            self._running = False
            self._condition.notify()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join()

    def _loop(self):
        while True:
            with self._condition:
                self._condition.wait_for(lambda: self._pending or not self._running)
                if not self._pending:
                    return
                self._pending = False
                map_ = self._map
                if map_ is None:
                    continue
                try:
                    self.optimize(map_.active_keyframes(), map_.active_map_points())
                except Exception:
                    logger.exception("backend optimisation failed")

    def _collect(self, keyframes, landmarks):
        K = self.cam_left.intrinsics()
        left_ext = self.cam_left.pose
        right_ext = self.cam_right.pose
        observations = []
        for landmark_id, landmark in landmarks.items():
            if landmark.is_outlier:
                continue
            for feature in landmark.observations():
                frame = feature.frame
                if feature.is_outlier or frame is None:
                    continue
                if frame.keyframe_id not in keyframes:
                    continue
                ext = left_ext if feature.is_on_left_image else right_ext
                edge = EdgeProjection(K, ext, np.array(feature.position, dtype=float)[:2])
                observations.append(_Observation(frame.keyframe_id, landmark_id, edge, feature))
        return observations

    def optimize(self, keyframes, landmarks):
        """Bundle-adjust the given keyframes and landmarks and flag outlier observations.

        Both arguments map ids to keyframes and map points; the optimised
        poses and positions are written back into them.
        """
        if self.cam_left is None or self.cam_right is None:
            raise RuntimeError("cameras have not been set")
        observations = self._collect(keyframes, landmarks)

        poses = {kf_id: keyframes[kf_id].pose for kf_id in {o.keyframe_id for o in observations}}
        for kf_id, frame in keyframes.items():
            poses.setdefault(kf_id, frame.pose)
        points = {}
        for obs in observations:
            if obs.landmark_id not in points:
                points[obs.landmark_id] = landmarks[obs.landmark_id].pos

        chi2_th = CHI2_THRESHOLD
        if observations:
            self._levenberg_marquardt(observations, poses, points, chi2_th)

        chi2 = [o.edge.chi2(poses[o.keyframe_id], points[o.landmark_id]) for o in observations]
        cnt_outlier = cnt_inlier = 0
        for _ in range(MAX_THRESHOLD_ADJUSTMENTS):
            cnt_outlier = sum(value > chi2_th for value in chi2)
            cnt_inlier = len(chi2) - cnt_outlier
            if not chi2 or cnt_inlier / len(chi2) > MIN_INLIER_RATIO:
                break
            chi2_th *= 2

        for obs, value in zip(observations, chi2):
            if value > chi2_th:
                obs.feature.is_outlier = True
                map_point = obs.feature.map_point
                if map_point is not None:
                    map_point.remove_observation(obs.feature)
            else:
                obs.feature.is_outlier = False

        logger.info("Outlier/Inlier in optimization: %d/%d", cnt_outlier, cnt_inlier)

        for kf_id, pose in poses.items():
            keyframes[kf_id].pose = pose
        for landmark_id, position in points.items():
            landmarks[landmark_id].pos = position
        return OptimizationResult(cnt_inlier, cnt_outlier, chi2_th)

    @staticmethod
    def _cost(observations, poses, points, delta):
        total = 0.0
        for obs in observations:
            e2 = obs.edge.chi2(poses[obs.keyframe_id], points[obs.landmark_id])
            total += _huber(e2, delta)[0]
        return total

    @staticmethod
    def _linearize(observations, poses, points, pose_index, point_index, size, delta):
        rows, cols, data = [], [], []
        gradient = np.zeros(size)
        for obs in observations:
            pose = poses[obs.keyframe_id]
            point = points[obs.landmark_id]
            error = obs.edge.error(pose, point)
            omega = obs.edge.information
            _, weight = _huber(float(error @ omega @ error), delta)
            j_pose, j_point = obs.edge.jacobians(pose, point)
            blocks = (
                (pose_index[obs.keyframe_id], j_pose),
                (point_index[obs.landmark_id], j_point),
            )
            for row, jac_a in blocks:
                weighted = weight * jac_a.T @ omega
                gradient[row : row + jac_a.shape[1]] -= weighted @ error
                for col, jac_b in blocks:
                    block = weighted @ jac_b
                    r, c = np.indices(block.shape)
                    rows.append((r + row).ravel())
                    cols.append((c + col).ravel())
                    data.append(block.ravel())
        hessian = coo_matrix(
            (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
            shape=(size, size),
        ).tocsc()
        return hessian, gradient

    def _levenberg_marquardt(self, observations, poses, points, delta):
        pose_index = {kf_id: k * _POSE_DIM for k, kf_id in enumerate(poses)}
        base = _POSE_DIM * len(poses)
        point_index = {lm_id: base + k * _POINT_DIM for k, lm_id in enumerate(points)}
        size = base + _POINT_DIM * len(points)
        eye = identity(size, format="csc")

        chi2 = self._cost(observations, poses, points, delta)
        damping = None
        nu = 2.0
        for _ in range(OPTIMIZE_ITERATIONS):
            hessian, gradient = self._linearize(
                observations, poses, points, pose_index, point_index, size, delta
            )
            if damping is None:
                peak = float(hessian.diagonal().max())
                damping = _TAU * peak if peak > 0 else _TAU
            saved_poses, saved_points = dict(poses), dict(points)
            accepted = False
            for _ in range(_MAX_TRIALS):
                dx = np.asarray(spsolve((hessian + damping * eye).tocsc(), gradient)).ravel()
                if np.all(np.isfinite(dx)):
                    for kf_id, start in pose_index.items():
                        poses[kf_id] = SE3.exp(dx[start : start + _POSE_DIM]) @ poses[kf_id]
                    for lm_id, start in point_index.items():
                        points[lm_id] = points[lm_id] + dx[start : start + _POINT_DIM]
                    new_chi2 = self._cost(observations, poses, points, delta)
                    scale = float(dx @ (damping * dx + gradient)) + 1e-3
                    rho = (chi2 - new_chi2) / scale
                    if np.isfinite(new_chi2) and rho > 0:
                        damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                        nu = 2.0
                        chi2 = new_chi2
                        accepted = True
                        break
                    poses.update(saved_poses)
                    points.update(saved_points)
                damping *= nu
                nu *= 2.0
            if not accepted:
                break
        return chi2