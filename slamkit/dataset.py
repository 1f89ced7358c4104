"""Stereo sequences laid out as a KITTI odometry sequence directory.

The directory holds ``calib.txt`` with four 3x4 projection matrices and the
grey images ``image_0/NNNNNN.png`` (left) and ``image_1/NNNNNN.png`` (right).
Images and intrinsics are scaled down by half.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from PIL import Image

from slamkit.camera import Camera
from slamkit.frame import Frame
from slamkit.lie import SE3, SO3

logger = logging.getLogger(__name__)

NUM_CAMERAS = 4
SCALE = 0.5


class _Scanner:
    def __init__(self, text):
        self._text = text
        self._pos = 0

    def _skip_space(self):
        while self._pos < len(self._text) and self._text[self._pos].isspace():
            self._pos += 1

    def chars(self, count):
        result = []
        for _ in range(count):
            self._skip_space()
            if self._pos >= len(self._text):
                raise ValueError("unexpected end of calibration file")
            result.append(self._text[self._pos])
            self._pos += 1
        return "".join(result)

    def number(self):
        self._skip_space()
        start = self._pos
        while self._pos < len(self._text) and not self._text[self._pos].isspace():
            self._pos += 1
        token = self._text[start:self._pos]
        if not token:
            raise ValueError("unexpected end of calibration file")
        try:
            return float(token)
        except ValueError:
            raise ValueError(f"bad number {token!r} in calibration file") from None


def _load_grey(path):
    with Image.open(path) as img:
        return np.asarray(img.convert("L"))


def _half(image):
    rows, cols = image.shape
    out_rows, out_cols = round(rows * SCALE), round(cols * SCALE)
    return np.ascontiguousarray(image[::2, ::2][:out_rows, :out_cols])


class Dataset:
    """Reads cameras and successive stereo frames of a sequence directory."""

    def __init__(self, dataset_path):
        self.dataset_path = str(dataset_path)
        self.current_image_index = 0
        self._cameras = []

    def init(self):
        """Read the camera intrinsics and extrinsics from ``calib.txt``."""
        calib = Path(self.dataset_path) / "calib.txt"
        try:
            text = calib.read_text(encoding="utf-8")
        except OSError:
            raise FileNotFoundError(f"cannot find {calib}!") from None

        scanner = _Scanner(text)
        cameras = []
        for index in range(NUM_CAMERAS):
            scanner.chars(3)
            data = np.array([scanner.number() for _ in range(12)]).reshape(3, 4)
            k = data[:, :3]
            t = np.linalg.solve(k, data[:, 3])
            k = k * SCALE
            cameras.append(
                Camera(k[0, 0], k[1, 1], k[0, 2], k[1, 2], float(np.linalg.norm(t)), SE3(SO3(), t))
            )
            logger.info("Camera %d extrinsics: %s", index, t)
        self._cameras = cameras
        self.current_image_index = 0

    def next_frame(self):
        """The next stereo frame, or None when its images cannot be read."""
        base = Path(self.dataset_path)
        name = f"{self.current_image_index:06d}.png"
        try:
            left = _load_grey(base / "image_0" / name)
            right = _load_grey(base / "image_1" / name)
        except OSError:
            logger.warning("cannot find images at index %d", self.current_image_index)
            return None

        frame = Frame.create()
        frame.left_img = _half(left)
        frame.right_img = _half(right)
        self.current_image_index += 1
        return frame

    def __iter__(self):
        while (frame := self.next_frame()) is not None:
            yield frame

    def camera(self, camera_id):
        """The camera with the given index."""
        if not 0 <= camera_id < len(self._cameras):
            raise IndexError(f"no camera {camera_id}")
        return self._cameras[camera_id]