"""Rotations and rigid-body motions: SO(3), SE(3) and their Lie algebras.

Quaternions are given and returned as ``(w, x, y, z)``. Tangent vectors of
SE(3) are ordered translation first, rotation second: ``(rho, phi)``.
"""

from __future__ import annotations

import math

import numpy as np

_SMALL_ANGLE = 1e-6
_ZERO = 1e-10


def _vector(value, size, name):
    arr = np.asarray(value, dtype=float)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have shape ({size},), got {arr.shape}")
    return arr


def _square(value, size, name):
    arr = np.asarray(value, dtype=float)
    if arr.shape != (size, size):
        raise ValueError(f"{name} must have shape ({size}, {size}), got {arr.shape}")
    return arr


def _apply(rotation, translation, other):
    points = np.asarray(other, dtype=float)
    if points.shape == (3,):
        return rotation @ points + translation
    if points.ndim == 2 and points.shape[1] == 3:
        return points @ rotation.T + translation
    raise ValueError(f"expected a 3-vector or an (N, 3) array, got shape {points.shape}")


def hat(omega):
    """Skew-symmetric matrix of a 3-vector, so that hat(a) @ b == a x b."""
    x, y, z = _vector(omega, 3, "omega")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(matrix):
    """The 3-vector of a skew-symmetric matrix; the inverse of hat."""
    m = _square(matrix, 3, "matrix")
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def quaternion_to_matrix(quaternion):
    """Rotation matrix of a quaternion (w, x, y, z); the quaternion is normalised."""
    q = _vector(quaternion, 4, "quaternion")
    norm = np.linalg.norm(q)
    if norm < _ZERO:
        raise ValueError("quaternion must not be zero")
    w, x, y, z = q / norm
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def matrix_to_quaternion(matrix):
    """Unit quaternion (w, x, y, z) of a rotation matrix."""
    m = _square(matrix, 3, "matrix")
    diagonal_sum = float(m[0, 0] + m[1, 1] + m[2, 2])
    if diagonal_sum > 0:
        s = math.sqrt(diagonal_sum + 1.0)
        w = 0.5 * s
        s = 0.5 / s
        vec = np.array([(m[2, 1] - m[1, 2]) * s, (m[0, 2] - m[2, 0]) * s, (m[1, 0] - m[0, 1]) * s])
    else:
        i = int(np.argmax(np.diag(m)))
        j = (i + 1) % 3
        k = (j + 1) % 3
        s = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
        vec = np.zeros(3)
        vec[i] = 0.5 * s
        s = 0.5 / s
        w = (m[k, j] - m[j, k]) * s
        vec[j] = (m[j, i] + m[i, j]) * s
        vec[k] = (m[k, i] + m[i, k]) * s
    q = np.concatenate(([w], vec))
    return q / np.linalg.norm(q)


def angle_axis_to_matrix(angle, axis):
    """Rotation matrix of a rotation by ``angle`` radians about ``axis``."""
    a = _vector(axis, 3, "axis")
    norm = np.linalg.norm(a)
    if norm < _ZERO:
        raise ValueError("axis must not be zero")
    return SO3.exp(float(angle) * a / norm).matrix


def euler_zyx(matrix):
    """Yaw, pitch, roll with R = Rz(yaw) Ry(pitch) Rx(roll); yaw lies in [0, pi]."""
    m = _square(matrix, 3, "matrix")
    yaw = math.atan2(m[1, 0], m[0, 0])
    c2 = math.hypot(m[2, 2], m[2, 1])
    if yaw < 0:
        yaw += math.pi
        pitch = math.atan2(-m[2, 0], -c2)
    else:
        pitch = math.atan2(-m[2, 0], c2)
    s1, c1 = math.sin(yaw), math.cos(yaw)
    roll = math.atan2(s1 * m[0, 2] - c1 * m[1, 2], c1 * m[1, 1] - s1 * m[0, 1])
    return np.array([yaw, pitch, roll])


class SO3:
    """A 3D rotation."""

    __slots__ = ("_matrix",)

    def __init__(self, matrix=None):
        if matrix is None:
            m = np.eye(3)
        else:
            m = np.array(_square(matrix, 3, "matrix"))
            if not np.allclose(m @ m.T, np.eye(3), atol=1e-6) or np.linalg.det(m) <= 0:
                raise ValueError("matrix is not a rotation matrix")
        m.setflags(write=False)
        self._matrix = m

    @classmethod
    def _trusted(cls, matrix):
        obj = cls.__new__(cls)
        m = np.array(matrix, dtype=float)
        m.setflags(write=False)
        obj._matrix = m
        return obj

    @property
    def matrix(self):
        return self._matrix

    @classmethod
    def from_quaternion(cls, quaternion):
        return cls._trusted(quaternion_to_matrix(quaternion))

    @classmethod
    def exp(cls, omega):
        """Exponential map from so(3)."""
        w = _vector(omega, 3, "omega")
        theta_sq = float(w @ w)
        theta = math.sqrt(theta_sq)
        if theta < _SMALL_ANGLE:
            imag = 0.5 - theta_sq / 48.0 + theta_sq * theta_sq / 3840.0
            real = 1.0 - theta_sq / 8.0 + theta_sq * theta_sq / 384.0
        else:
            imag = math.sin(0.5 * theta) / theta
            real = math.cos(0.5 * theta)
        return cls.from_quaternion(np.concatenate(([real], imag * w)))

    def log(self):
        """Logarithm map to so(3)."""
        q = self.quaternion()
        w = q[0]
        vec = q[1:]
        n = float(np.linalg.norm(vec))
        if n < _ZERO:
            factor = 2.0 / w - (2.0 / 3.0) * n * n / (w * w * w)
        elif abs(w) < _ZERO:
            factor = (math.pi if w > 0 else -math.pi) / n
        else:
            factor = 2.0 * math.atan(n / w) / n
        return factor * vec

    def inverse(self):
        return SO3._trusted(self._matrix.T)

    def quaternion(self):
        return matrix_to_quaternion(self._matrix)

    def __matmul__(self, other):
        if isinstance(other, SO3):
            return SO3._trusted(self._matrix @ other._matrix)
        if isinstance(other, SE3):
            return NotImplemented
        return _apply(self._matrix, np.zeros(3), other)

    def __repr__(self):
        return f"SO3({self._matrix.tolist()!r})"


def _left_jacobian(phi):
    theta = float(np.linalg.norm(phi))
    k = hat(phi)
    if theta < _SMALL_ANGLE:
        return np.eye(3) + 0.5 * k + (k @ k) / 6.0
    return (
        np.eye(3)
        + (1.0 - math.cos(theta)) / theta**2 * k
        + (theta - math.sin(theta)) / theta**3 * (k @ k)
    )


def _left_jacobian_inverse(phi):
    theta = float(np.linalg.norm(phi))
    k = hat(phi)
    if theta < _SMALL_ANGLE:
        return np.eye(3) - 0.5 * k + (k @ k) / 12.0
    half = 0.5 * theta
    coeff = (1.0 - half * math.cos(half) / math.sin(half)) / theta**2
    return np.eye(3) - 0.5 * k + coeff * (k @ k)


class SE3:
    """A rigid-body motion: rotation followed by translation."""

    __slots__ = ("_so3", "_translation")

    def __init__(self, rotation=None, translation=None):
        if rotation is None:
            so3 = SO3()
        elif isinstance(rotation, SO3):
            so3 = rotation
        else:
            so3 = SO3(rotation)
        t = np.zeros(3) if translation is None else np.array(_vector(translation, 3, "translation"))
        t.setflags(write=False)
        self._so3 = so3
        self._translation = t

    @property
    def so3(self):
        return self._so3

    @property
    def rotation_matrix(self):
        return self._so3.matrix

    @property
    def translation(self):
        return self._translation

    @classmethod
    def from_quaternion(cls, quaternion, translation):
        return cls(SO3.from_quaternion(quaternion), translation)

    @classmethod
    def exp(cls, xi):
        """Exponential map from se(3); ``xi`` is (rho, phi)."""
        v = _vector(xi, 6, "xi")
        rho, phi = v[:3], v[3:]
        return cls(SO3.exp(phi), _left_jacobian(phi) @ rho)

    @staticmethod
    def hat(xi):
        v = _vector(xi, 6, "xi")
        m = np.zeros((4, 4))
        m[:3, :3] = hat(v[3:])
        m[:3, 3] = v[:3]
        return m

    @staticmethod
    def vee(matrix):
        m = _square(matrix, 4, "matrix")
        return np.concatenate((m[:3, 3], vee(m[:3, :3])))

    def log(self):
        """Logarithm map to se(3), returned as (rho, phi)."""
        phi = self._so3.log()
        rho = _left_jacobian_inverse(phi) @ self._translation
        return np.concatenate((rho, phi))

    def inverse(self):
        inv = self._so3.inverse()
        return SE3(inv, -(inv.matrix @ self._translation))

    def matrix(self):
        m = np.eye(4)
        m[:3, :3] = self._so3.matrix
        m[:3, 3] = self._translation
        return m

    def matrix3x4(self):
        return self.matrix()[:3, :]

    def adjoint(self):
        r = self._so3.matrix
        adj = np.zeros((6, 6))
        adj[:3, :3] = r
        adj[:3, 3:] = hat(self._translation) @ r
        adj[3:, 3:] = r
        return adj

    def quaternion(self):
        return self._so3.quaternion()

    def __matmul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self._so3 @ other._so3,
                self._so3.matrix @ other._translation + self._translation,
            )
        if isinstance(other, SO3):
            return SE3(self._so3 @ other, self._translation)
        return _apply(self._so3.matrix, self._translation, other)

    def __repr__(self):
        return f"SE3(rotation={self._so3.matrix.tolist()!r}, translation={self._translation.tolist()!r})"