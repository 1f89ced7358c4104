import math

import numpy as np
import pytest

from slamkit.lie import (
    SE3,
    SO3,
    angle_axis_to_matrix,
    euler_zyx,
    hat,
    matrix_to_quaternion,
    quaternion_to_matrix,
    vee,
)


def _rotation_z(angle):
    return angle_axis_to_matrix(angle, [0.0, 0.0, 1.0])


def test_hat_is_cross_product_and_vee_inverts_it():
    a = np.array([0.3, -1.2, 2.0])
    b = np.array([-0.7, 0.4, 1.1])
    assert np.allclose(hat(a) @ b, np.cross(a, b))
    assert np.allclose(vee(hat(a)), a)
    assert np.allclose(hat(a), -hat(a).T)


def test_quarter_turn_about_z():
    expected = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])
    assert np.allclose(_rotation_z(math.pi / 2), expected)


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_quaternion_matrix_round_trip(seed):
    q = np.random.default_rng(seed).normal(size=4)
    q /= np.linalg.norm(q)
    back = matrix_to_quaternion(quaternion_to_matrix(q))
    if np.dot(back, q) < 0:
        back = -back
    assert np.allclose(back, q)


def test_zero_quaternion_rejected():
    with pytest.raises(ValueError):
        quaternion_to_matrix([0.0, 0.0, 0.0, 0.0])


def test_zero_axis_rejected():
    with pytest.raises(ValueError):
        angle_axis_to_matrix(1.0, [0.0, 0.0, 0.0])


def test_so3_from_matrix_equals_from_quaternion():
    r = _rotation_z(math.pi / 2)
    q = matrix_to_quaternion(r)
    assert np.allclose(SO3(r).matrix, SO3.from_quaternion(q).matrix)


def test_so3_log_of_quarter_turn():
    assert np.allclose(SO3(_rotation_z(math.pi / 2)).log(), [0.0, 0.0, math.pi / 2])


@pytest.mark.parametrize(
    "omega",
    [[1e-9, 0.0, 0.0], [1e-4, 0.0, 0.0], [0.3, -0.2, 0.5], [1.0, 2.0, -0.5], [0.0, 0.0, 3.0]],
)
def test_so3_exp_log_round_trip(omega):
    rotation = SO3.exp(omega)
    assert np.allclose(rotation.log(), omega, atol=1e-9)
    assert np.allclose(SO3.exp(rotation.log()).matrix, rotation.matrix)


def test_so3_exp_log_near_pi_matrix_round_trip():
    rotation = SO3.exp([0.0, math.pi - 1e-7, 0.0])
    assert np.allclose(SO3.exp(rotation.log()).matrix, rotation.matrix, atol=1e-6)


def test_so3_rejects_non_rotation():
    with pytest.raises(ValueError):
        SO3(np.diag([1.0, 1.0, -1.0]))
    with pytest.raises(ValueError):
        SO3(np.ones((3, 3)))


def test_so3_inverse_and_composition():
    r = SO3.exp([0.2, 0.4, -0.1])
    assert np.allclose((r @ r.inverse()).matrix, np.eye(3))
    v = np.array([1.0, 2.0, 3.0])
    assert np.allclose(r @ v, r.matrix @ v)


def test_so3_left_update_is_small():
    r = SO3(_rotation_z(math.pi / 2))
    updated = SO3.exp([1e-4, 0.0, 0.0]) @ r
    assert np.allclose(updated.matrix, r.matrix, atol=2e-4)
    assert not np.allclose(updated.matrix, r.matrix, atol=1e-6)


@pytest.mark.parametrize(
    "xi",
    [[0.0] * 6, [1e-4, 0, 0, 0, 0, 0], [1.0, 0.5, -0.2, 0.1, 0.2, 0.3], [0.0, 2.0, 1.0, 0.0, 0.0, 2.5]],
)
def test_se3_exp_log_round_trip(xi):
    assert np.allclose(SE3.exp(xi).log(), xi, atol=1e-9)


def test_se3_log_of_quarter_turn_with_translation():
    pose = SE3(_rotation_z(math.pi / 2), [1.0, 0.0, 0.0])
    xi = pose.log()
    assert np.allclose(xi[3:], [0.0, 0.0, math.pi / 2])
    assert np.allclose(SE3.exp(xi).matrix(), pose.matrix())


def test_se3_hat_vee_round_trip():
    xi = np.array([0.1, -0.2, 0.3, 0.4, -0.5, 0.6])
    m = SE3.hat(xi)
    assert np.allclose(m[3], 0.0)
    assert np.allclose(SE3.vee(m), xi)


def test_se3_exp_zero_is_identity():
    assert np.allclose(SE3.exp(np.zeros(6)).matrix(), np.eye(4))


def test_se3_from_quaternion_matches_rotation_matrix():
    r = _rotation_z(math.pi / 2)
    t = [1.0, 0.0, 0.0]
    assert np.allclose(SE3(r, t).matrix(), SE3.from_quaternion(matrix_to_quaternion(r), t).matrix())


def test_se3_inverse_and_matrix_product():
    a = SE3.exp([0.3, -0.1, 0.2, 0.5, 0.1, -0.3])
    b = SE3.exp([-1.0, 0.2, 0.4, -0.2, 0.7, 0.1])
    assert np.allclose((a @ a.inverse()).matrix(), np.eye(4))
    assert np.allclose((a @ b).matrix(), a.matrix() @ b.matrix())
    assert np.allclose(a.matrix3x4(), a.matrix()[:3])


def test_se3_acts_on_points():
    pose = SE3.exp([0.3, -0.1, 0.2, 0.5, 0.1, -0.3])
    points = np.array([[1.0, 2.0, 3.0], [-1.0, 0.0, 4.0]])
    batch = pose @ points
    assert np.allclose(batch[0], pose @ points[0])
    assert np.allclose(batch[1], pose.rotation_matrix @ points[1] + pose.translation)


def test_se3_adjoint_property():
    pose = SE3.exp([0.3, -0.1, 0.2, 0.5, 0.1, -0.3])
    xi = np.array([0.05, 0.02, -0.03, 0.01, -0.04, 0.02])
    lhs = pose @ SE3.exp(xi) @ pose.inverse()
    rhs = SE3.exp(pose.adjoint() @ xi)
    assert np.allclose(lhs.matrix(), rhs.matrix())


def test_coordinate_transform_example():
    t1w = SE3.from_quaternion([0.35, 0.2, 0.3, 0.1], [0.3, 0.1, 0.1])
    t2w = SE3.from_quaternion([-0.5, 0.4, -0.1, 0.2], [-0.1, 0.5, 0.3])
    p2 = t2w @ t1w.inverse() @ np.array([0.5, 0.0, 0.2])
    assert np.allclose(p2, [-0.0309731, 0.73499, 0.296108], atol=1e-5)


def test_geometry_example_rotation_and_transform():
    r = _rotation_z(math.pi / 4)
    v = np.array([1.0, 0.0, 0.0])
    h = math.sqrt(0.5)
    assert np.allclose(r @ v, [h, h, 0.0])
    pose = SE3(r, [1.0, 3.0, 4.0])
    assert np.allclose(pose @ v, [1.0 + h, 3.0 + h, 4.0])
    q = matrix_to_quaternion(r)
    assert np.allclose(q, [math.cos(math.pi / 8), 0.0, 0.0, math.sin(math.pi / 8)])


def test_euler_zyx_of_yaw():
    assert np.allclose(euler_zyx(_rotation_z(math.pi / 4)), [math.pi / 4, 0.0, 0.0])


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_euler_zyx_reconstructs_matrix(seed):
    r = SO3.exp(np.random.default_rng(seed).normal(size=3)).matrix
    yaw, pitch, roll = euler_zyx(r)
    rebuilt = (
        angle_axis_to_matrix(yaw, [0, 0, 1])
        @ angle_axis_to_matrix(pitch, [0, 1, 0])
        @ angle_axis_to_matrix(roll, [1, 0, 0])
    )
    assert 0.0 <= yaw <= math.pi
    assert np.allclose(rebuilt, r)