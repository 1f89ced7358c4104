"""The map: keyframes and landmarks, with a sliding window of active ones."""

from __future__ import annotations

import logging
import threading

import numpy as np

logger = logging.getLogger(__name__)

NUM_ACTIVE_KEYFRAMES = 7
MIN_DISTANCE_THRESHOLD = 0.2


class Map:
    """Keyframes and map points, keyed by keyframe id and map point id."""

    def __init__(self, num_active_keyframes=NUM_ACTIVE_KEYFRAMES):
        self._lock = threading.RLock()
        self._landmarks = {}
        self._active_landmarks = {}
        self._keyframes = {}
        self._active_keyframes = {}
        self.current_frame = None
        self.num_active_keyframes = num_active_keyframes

    def insert_keyframe(self, frame):
        """Add or replace a keyframe; the oldest one is deactivated when the window is full."""
        with self._lock:
            self.current_frame = frame
            self._keyframes[frame.keyframe_id] = frame
            self._active_keyframes[frame.keyframe_id] = frame
            if len(self._active_keyframes) > self.num_active_keyframes:
                self._remove_old_keyframe()

    def insert_map_point(self, map_point):
        """Add or replace a map point; it becomes active."""
        with self._lock:
            self._landmarks[map_point.id] = map_point
            self._active_landmarks[map_point.id] = map_point

    def all_map_points(self):
        with self._lock:
            return dict(self._landmarks)

    def all_keyframes(self):
        with self._lock:
            return dict(self._keyframes)

    def active_map_points(self):
        with self._lock:
            return dict(self._active_landmarks)

    def active_keyframes(self):
        with self._lock:
            return dict(self._active_keyframes)

    def _remove_old_keyframe(self):
        current = self.current_frame
        if current is None:
            return
        max_dis, min_dis = 0.0, 9999.0
        max_kf_id = min_kf_id = 0
        twc = current.pose.inverse()
        for kf_id, keyframe in self._active_keyframes.items():
            if keyframe is current:
                continue
            dis = float(np.linalg.norm((keyframe.pose @ twc).log()))
            if dis > max_dis:
                max_dis, max_kf_id = dis, kf_id
            if dis < min_dis:
                min_dis, min_kf_id = dis, kf_id

        # Prefer dropping a keyframe very close to the current one; else the farthest.
        target = min_kf_id if min_dis < MIN_DISTANCE_THRESHOLD else max_kf_id
        frame_to_remove = self._keyframes[target]
        logger.info("remove keyframe %s", frame_to_remove.keyframe_id)

        self._active_keyframes.pop(frame_to_remove.keyframe_id, None)
        for feature in (*frame_to_remove.features_left, *frame_to_remove.features_right):
            if feature is None:
                continue
            map_point = feature.map_point
            if map_point is not None:
                map_point.remove_observation(feature)

        self.clean_map()

    def clean_map(self):
        """Deactivate map points that no feature observes; returns how many were removed."""
        with self._lock:
            unobserved = [
                mp_id for mp_id, mp in self._active_landmarks.items() if mp.observed_times == 0
            ]
            for mp_id in unobserved:
                del self._active_landmarks[mp_id]
        logger.info("Removed %d active landmarks", len(unobserved))
        return len(unobserved)