import numpy as np
import pytest

from rgbdvo.camera import Camera
from rgbdvo.config import Config
from rgbdvo.se3 import SE3


@pytest.fixture
def camera():
    return Camera(fx=518.0, fy=519.0, cx=325.5, cy=253.5, depth_scale=1000.0)


@pytest.fixture
def pose():
    return SE3.exp([0.1, -0.2, 0.3, 0.05, -0.1, 0.02])


def test_from_config_reads_intrinsics():
    config = Config(
        {
            "camera.fx": 518.0,
            "camera.fy": 519.0,
            "camera.cx": 325.5,
            "camera.cy": 253.5,
            "camera.depth_scale": 1000.0,
        }
    )
    cam = Camera.from_config(config)
    assert (cam.fx, cam.fy, cam.cx, cam.cy, cam.depth_scale) == (
        518.0,
        519.0,
        325.5,
        253.5,
        1000.0,
    )


def test_from_config_missing_key():
    with pytest.raises(KeyError):
        Camera.from_config(Config({"camera.fx": 518.0}))


def test_default_depth_scale():
    assert Camera(1.0, 1.0, 0.0, 0.0).depth_scale == 0.0


def test_principal_point_on_optical_axis(camera):
    assert np.allclose(camera.camera2pixel([0.0, 0.0, 3.0]), [camera.cx, camera.cy])
    assert np.allclose(camera.pixel2camera([camera.cx, camera.cy], 2.0), [0.0, 0.0, 2.0])


def test_pixel_camera_round_trip(camera):
    pixel = np.array([100.0, 400.0])
    p_c = camera.pixel2camera(pixel, 1.7)
    assert p_c[2] == pytest.approx(1.7)
    assert np.allclose(camera.camera2pixel(p_c), pixel)


def test_pixel2camera_default_depth(camera):
    assert camera.pixel2camera([10.0, 20.0])[2] == pytest.approx(1.0)


def test_world_camera_round_trip(camera, pose):
    p_w = np.array([0.4, -0.3, 2.5])
    assert np.allclose(camera.camera2world(camera.world2camera(p_w, pose), pose), p_w)


def test_world2pixel_composes(camera, pose):
    p_w = np.array([0.2, 0.1, 3.0])
    expected = camera.camera2pixel(camera.world2camera(p_w, pose))
    assert np.allclose(camera.world2pixel(p_w, pose), expected)


def test_pixel_world_round_trip(camera, pose):
    pixel = np.array([250.0, 180.0])
    p_w = camera.pixel2world(pixel, pose, 2.2)
    assert np.allclose(camera.world2pixel(p_w, pose), pixel)
    assert camera.world2camera(p_w, pose)[2] == pytest.approx(2.2)


def test_intrinsic_matrix_projects_like_camera(camera):
    p_c = np.array([0.3, -0.2, 1.5])
    homogeneous = camera.K @ p_c
    assert np.allclose(homogeneous[:2] / homogeneous[2], camera.camera2pixel(p_c))