"""Process-wide parameter store read from a YAML configuration file.

Files in the OpenCV storage dialect are accepted: a leading ``%YAML:1.0``
line is ignored and ``!!opencv-matrix`` nodes become numpy arrays.
"""

from __future__ import annotations

import numpy as np
import yaml

_MATRIX_TAG = "tag:yaml.org,2002:opencv-matrix"
_DTYPES = {
    "u": np.uint8,
    "c": np.int8,
    "w": np.uint16,
    "s": np.int16,
    "i": np.int32,
    "f": np.float32,
    "d": np.float64,
}


class _Loader(yaml.SafeLoader):
    pass


def _construct_matrix(loader, node):
    mapping = loader.construct_mapping(node, deep=True)
    try:
        rows, cols, data = int(mapping["rows"]), int(mapping["cols"]), mapping["data"]
    except KeyError as exc:
        raise yaml.constructor.ConstructorError(
            None, None, f"opencv-matrix is missing {exc}", node.start_mark
        ) from None
    dtype = _DTYPES.get(str(mapping.get("dt", "d")), np.float64)
    return np.array(data, dtype=dtype).reshape(rows, cols)


_Loader.add_constructor(_MATRIX_TAG, _construct_matrix)


def _strip_directive(text):
    first, newline, rest = text.partition("\n")
    if first.startswith("%YAML:"):
        return rest
    return text


class Config:
    """Parameters shared by the whole process; set once from a file, then read by key."""

    _values = None

    @classmethod
    def set_parameter_file(cls, filename):
        """Load the parameters of ``filename``, replacing any loaded before."""
        cls._values = None
        try:
            with open(filename, encoding="utf-8") as handle:
                text = handle.read()
        except OSError:
            raise FileNotFoundError(f"parameter file {filename} does not exist.") from None
        try:
            values = yaml.load(_strip_directive(text), Loader=_Loader)
        except yaml.YAMLError as exc:
            raise ValueError(f"parameter file {filename} is not valid: {exc}") from None
        if values is None:
            values = {}
        if not isinstance(values, dict):
            raise ValueError(f"parameter file {filename} must hold a mapping")
        cls._values = values

    @classmethod
    def get(cls, key):
        """The value stored under ``key``."""
        if cls._values is None:
            raise RuntimeError("no parameter file has been loaded")
        try:
            return cls._values[key]
        except KeyError:
            raise KeyError(f"parameter {key!r} is not set") from None