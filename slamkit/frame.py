"""Frames, 2D features and 3D map points of the visual odometry map.

Features refer back to their frame and forward to their map point through
weak references, so that dropping a frame or a map point does not keep the
other side alive.
"""

from __future__ import annotations

import itertools
import threading
import weakref

import numpy as np

from slamkit.lie import SE3


def _deref(ref):
    return None if ref is None else ref()


def _weak(obj):
    return None if obj is None else weakref.ref(obj)


class Feature:
    """A 2D keypoint, linked to a map point once it has been triangulated."""

    def __init__(self, frame=None, position=(0.0, 0.0), size=7.0):
        self._frame = _weak(frame)
        self._map_point = None
        self.position = np.array(position, dtype=float)
        self.size = float(size)
        self.is_outlier = False
        self.is_on_left_image = True

    @property
    def frame(self):
        """The frame holding this feature, or None once it is gone."""
        return _deref(self._frame)

    @frame.setter
    def frame(self, frame):
        self._frame = _weak(frame)

    @property
    def map_point(self):
        """The associated map point, or None."""
        return _deref(self._map_point)

    @map_point.setter
    def map_point(self, map_point):
        self._map_point = _weak(map_point)

    def __repr__(self):
        return (
            f"Feature(position={self.position.tolist()!r}, outlier={self.is_outlier}, "
            f"left={self.is_on_left_image})"
        )


class Frame:
    """A stereo frame; keyframes get a separate keyframe id."""

    _ids = itertools.count()
    _keyframe_ids = itertools.count()

    def __init__(self, id=0, time_stamp=0.0, pose=None, left_img=None, right_img=None):
        self.id = id
        self.keyframe_id = 0
        self.is_keyframe = False
        self.time_stamp = time_stamp
        self._pose = SE3() if pose is None else pose
        self._pose_lock = threading.Lock()
        self.left_img = left_img
        self.right_img = right_img
        self.features_left = []
        # One entry per left feature; None where no match was found.
        self.features_right = []

    @property
    def pose(self):
        """World-to-camera pose T_cw."""
        with self._pose_lock:
            return self._pose

    @pose.setter
    def pose(self, pose):
        with self._pose_lock:
            self._pose = pose

    @classmethod
    def create(cls):
        """A new frame with the next free id."""
        return cls(id=next(cls._ids))

    def set_keyframe(self):
        """Mark this frame as a keyframe and give it the next keyframe id."""
        self.is_keyframe = True
        self.keyframe_id = next(Frame._keyframe_ids)

    def __repr__(self):
        return f"Frame(id={self.id}, keyframe_id={self.keyframe_id}, is_keyframe={self.is_keyframe})"


class MapPoint:
    """A landmark in the world, observed by one or more features."""

    _ids = itertools.count()

    def __init__(self, id=0, position=None):
        self.id = id
        self.is_outlier = False
        self._pos = np.zeros(3) if position is None else np.array(position, dtype=float)
        self._lock = threading.Lock()
        self.observed_times = 0
        self._observations = []

    @property
    def pos(self):
        """Position in world coordinates."""
        with self._lock:
            return self._pos.copy()

    @pos.setter
    def pos(self, position):
        value = np.array(position, dtype=float)
        if value.shape != (3,):
            raise ValueError(f"position must have shape (3,), got {value.shape}")
        with self._lock:
            self._pos = value

    @classmethod
    def create(cls):
        """A new map point with the next free id."""
        return cls(id=next(cls._ids))

    def add_observation(self, feature):
        with self._lock:
            self._observations.append(weakref.ref(feature))
            self.observed_times += 1

    def remove_observation(self, feature):
        """Forget one observation by ``feature`` and unlink the feature from this point."""
        with self._lock:
            for position, ref in enumerate(self._observations):
                if ref() is feature:
                    del self._observations[position]
                    feature.map_point = None
                    self.observed_times -= 1
                    break

    def observations(self):
        """The observing features that still exist, in the order they were added."""
        with self._lock:
            refs = list(self._observations)
        return [feature for feature in (ref() for ref in refs) if feature is not None]

    def __repr__(self):
        return f"MapPoint(id={self.id}, pos={self._pos.tolist()!r}, observed_times={self.observed_times})"