import numpy as np
import pytest

from rgbdvo.camera import Camera
from rgbdvo.edges import (
    EdgeProjectXYZ2UVPoseOnly,
    EdgeProjectXYZRGBD,
    EdgeProjectXYZRGBDPoseOnly,
    apply_update,
    optimize_pose,
)
from rgbdvo.se3 import SE3, so3_exp

CAMERA = Camera(518.0, 519.0, 325.5, 253.5, 1000.0)
POSE = SE3.exp([0.1, -0.2, 0.3, 0.05, 0.02, -0.04])


def _numeric_pose_jacobian(error_fn, pose, eps=1e-6):
    columns = []
    for k in range(6):
        step = np.zeros(6)
        step[k] = eps
        plus = error_fn(apply_update(pose, step))
        minus = error_fn(apply_update(pose, -step))
        columns.append((plus - minus) / (2 * eps))
    return np.column_stack(columns)


def test_apply_update_zero_keeps_pose():
    result = apply_update(POSE, np.zeros(6))
    assert np.allclose(result.matrix(), POSE.matrix())


def test_apply_update_translation_part_comes_last():
    result = apply_update(SE3.identity(), [0, 0, 0, 1, 2, 3])
    assert np.allclose(result.translation, [1, 2, 3])
    assert np.allclose(result.rotation, np.eye(3))


def test_apply_update_rotation_part_comes_first():
    result = apply_update(SE3.identity(), [0, 0, 0.4, 0, 0, 0])
    assert np.allclose(result.rotation, so3_exp([0, 0, 0.4]))
    assert np.allclose(result.translation, 0)


def test_apply_update_rejects_wrong_size():
    with pytest.raises(ValueError):
        apply_update(POSE, [1, 2, 3])


def test_rgbd_error_zero_at_true_point():
    point = np.array([0.5, -0.3, 2.0])
    edge = EdgeProjectXYZRGBD(measurement=POSE.map(point))
    assert np.allclose(edge.compute_error(point, POSE), 0)


def test_rgbd_point_jacobian_matches_numeric():
    point = np.array([0.5, -0.3, 2.0])
    edge = EdgeProjectXYZRGBD(measurement=[1.0, 2.0, 3.0])
    j_point, _ = edge.linearize(point, POSE)
    eps = 1e-6
    numeric = np.column_stack(
        [
            (edge.compute_error(point + eps * d, POSE) - edge.compute_error(point - eps * d, POSE))
            / (2 * eps)
            for d in np.eye(3)
        ]
    )
    assert np.allclose(j_point, numeric, atol=1e-6)


def test_rgbd_pose_jacobian_matches_numeric():
    point = np.array([0.5, -0.3, 2.0])
    edge = EdgeProjectXYZRGBD(measurement=[1.0, 2.0, 3.0])
    _, j_pose = edge.linearize(point, POSE)
    numeric = _numeric_pose_jacobian(lambda p: edge.compute_error(point, p), POSE)
    assert np.allclose(j_pose, numeric, atol=1e-5)


def test_rgbd_pose_only_jacobian_matches_numeric():
    edge = EdgeProjectXYZRGBDPoseOnly(point=[0.2, 0.4, 1.5], measurement=[0.0, 0.1, 1.0])
    numeric = _numeric_pose_jacobian(edge.compute_error, POSE)
    assert np.allclose(edge.linearize(POSE), numeric, atol=1e-5)


def test_uv_error_zero_at_projection():
    point = np.array([0.2, -0.1, 2.5])
    edge = EdgeProjectXYZ2UVPoseOnly(
        point=point, camera=CAMERA, measurement=CAMERA.world2pixel(point, POSE)
    )
    assert np.allclose(edge.compute_error(POSE), 0)


def test_uv_jacobian_matches_numeric():
    edge = EdgeProjectXYZ2UVPoseOnly(point=[0.2, -0.1, 2.5], camera=CAMERA, measurement=[300, 200])
    numeric = _numeric_pose_jacobian(edge.compute_error, POSE)
    assert np.allclose(edge.linearize(POSE), numeric, rtol=1e-4, atol=1e-3)


def test_edge_rejects_bad_measurement():
    with pytest.raises(ValueError):
        EdgeProjectXYZRGBDPoseOnly(point=[0, 0, 1], measurement=[1, 2])


def test_optimize_pose_without_edges_returns_input():
    assert optimize_pose(POSE, [], 10) is POSE


def test_optimize_pose_3d_3d_recovers_pose():
    rng = np.random.default_rng(1)
    points = rng.uniform([-1, -1, 1], [1, 1, 4], size=(30, 3))
    edges = [EdgeProjectXYZRGBDPoseOnly(point=p, measurement=POSE.map(p)) for p in points]
    result = optimize_pose(SE3.identity(), edges, 20)
    assert np.allclose(result.matrix(), POSE.matrix(), atol=1e-6)


def test_optimize_pose_reprojection_recovers_pose():
    rng = np.random.default_rng(2)
    truth = SE3.exp([0.05, -0.03, 0.1, 0.02, -0.01, 0.03])
    points = rng.uniform([-1, -1, 2], [1, 1, 5], size=(40, 3))
    edges = [
        EdgeProjectXYZ2UVPoseOnly(
            point=p, camera=CAMERA, measurement=CAMERA.world2pixel(p, truth)
        )
        for p in points
    ]
    result = optimize_pose(SE3.identity(), edges, 20)
    assert np.allclose(result.matrix(), truth.matrix(), atol=1e-6)


def test_optimize_pose_skips_inactive_edges():
    edge = EdgeProjectXYZRGBDPoseOnly(point=[0, 0, 1], measurement=[5, 5, 5], level=1)
    result = optimize_pose(POSE, [edge], 10)
    assert np.allclose(result.matrix(), POSE.matrix())