import numpy as np
import pytest

from rgbdvo.photometric import (
    EdgeSE3ProjectDirect,
    Measurement,
    bilinear_gray,
    pose_estimation_direct,
    project_2d_to_3d,
    project_3d_to_2d,
)
from rgbdvo.edges import apply_update
from rgbdvo.se3 import SE3

FX, FY, CX, CY = 518.0, 519.0, 325.5, 253.5
K = np.array([[FX, 0, CX], [0, FY, CY], [0, 0, 1.0]])
ROWS, COLS = 480, 640


def _linear_image():
    v, u = np.mgrid[0:ROWS, 0:COLS].astype(float)
    return 2.0 * u + 3.0 * v + 5.0


def _smooth_image():
    v, u = np.mgrid[0:ROWS, 0:COLS].astype(float)
    return 120 + 50 * np.sin(u / 20) + 40 * np.cos(v / 17) + 30 * np.sin((u + v) / 35)


def _edge(point, image, measurement=0.0):
    return EdgeSE3ProjectDirect(point, FX, FY, CX, CY, image, measurement=measurement)


def test_project_2d_to_3d_depth_scaled():
    p = project_2d_to_3d(300, 200, 2000, FX, FY, CX, CY, 1000.0)
    assert p[2] == pytest.approx(2.0)


def test_projection_round_trip():
    p = project_2d_to_3d(123, 321, 1500, FX, FY, CX, CY, 1000.0)
    uv = project_3d_to_2d(p[0], p[1], p[2], FX, FY, CX, CY)
    assert np.allclose(uv, [123, 321])


def test_bilinear_at_integer_pixel():
    image = _smooth_image()
    assert bilinear_gray(image, 40, 70) == pytest.approx(image[70, 40])


def test_bilinear_at_cell_centre_is_mean():
    image = _smooth_image()
    expected = np.mean(image[70:72, 40:42])
    assert bilinear_gray(image, 40.5, 70.5) == pytest.approx(expected)


def test_bilinear_outside_raises():
    with pytest.raises(IndexError):
        bilinear_gray(_smooth_image(), COLS - 1, 10)


def test_measurement_coerces_fields():
    m = Measurement([1, 2, 3], 7)
    assert m.pos_world.tolist() == [1.0, 2.0, 3.0]
    assert isinstance(m.grayscale, float)


def test_error_inside_image():
    image = _smooth_image()
    point = np.array([0.1, -0.05, 2.0])
    edge = _edge(point, image, measurement=100.0)
    u, v = project_3d_to_2d(*point, FX, FY, CX, CY)
    assert edge.compute_error(SE3.identity())[0] == pytest.approx(bilinear_gray(image, u, v) - 100.0)
    assert edge.level == 0


def test_error_outside_image_deactivates_edge():
    edge = _edge([10.0, 0.0, 1.0], _smooth_image(), measurement=50.0)
    assert edge.compute_error(SE3.identity())[0] == 0.0
    assert edge.level == 1
    assert np.array_equal(edge.linearize(SE3.identity()), np.zeros((1, 6)))


def test_jacobian_matches_numeric_on_linear_image():
    image = _linear_image()
    edge = _edge([0.1, -0.05, 2.0], image, measurement=10.0)
    pose = SE3.exp([0.01, 0.02, -0.01, 0.01, -0.02, 0.005])
    edge.compute_error(pose)
    analytic = edge.linearize(pose)
    eps = 1e-6
    numeric = []
    for k in range(6):
        step = np.zeros(6)
        step[k] = eps
        plus = edge.compute_error(apply_update(pose, step))[0]
        minus = edge.compute_error(apply_update(pose, -step))[0]
        numeric.append((plus - minus) / (2 * eps))
    assert np.allclose(analytic[0], numeric, rtol=1e-4, atol=1e-3)


def _rms(measurements, image, pose):
    errors = [
        _edge(m.pos_world, image, m.grayscale).compute_error(pose)[0] for m in measurements
    ]
    return float(np.sqrt(np.mean(np.square(errors))))


def test_pose_estimation_direct_reduces_photometric_error():
    image = _smooth_image()
    rng = np.random.default_rng(3)
    truth = SE3.exp([0.02, -0.01, 0.03, 0.01, -0.005, 0.008])
    measurements = []
    for _ in range(300):
        u = rng.uniform(60, COLS - 60)
        v = rng.uniform(60, ROWS - 60)
        d = rng.uniform(1000, 3000)
        p = project_2d_to_3d(u, v, d, FX, FY, CX, CY, 1000.0)
        q = truth.map(p)
        uv = project_3d_to_2d(*q, FX, FY, CX, CY)
        measurements.append(Measurement(p, bilinear_gray(image, uv[0], uv[1])))

    start = SE3.identity()
    initial = _rms(measurements, image, start)
    result = pose_estimation_direct(measurements, image, K, start, 30)
    final = _rms(measurements, image, result)
    assert final < 0.1 * initial