"""Photometric error terms for direct pose estimation on RGB-D images."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from .edges import optimize_pose
from .se3 import SE3

logger = logging.getLogger(__name__)

# Pixels closer than this to the border give no error term.
_BORDER = 4


@dataclass
class Measurement:
    """A world point together with the gray value observed for it."""

    pos_world: np.ndarray
    grayscale: float

    def __post_init__(self) -> None:
        self.pos_world = np.asarray(self.pos_world, dtype=float).reshape(3)
        self.grayscale = float(self.grayscale)


def project_2d_to_3d(x, y, d, fx, fy, cx, cy, scale) -> np.ndarray:
    """Back-project pixel ``(x, y)`` with raw depth ``d`` into camera coordinates."""
    zz = float(d) / scale
    xx = zz * (x - cx) / fx
    yy = zz * (y - cy) / fy
    return np.array([xx, yy, zz])


def project_3d_to_2d(x, y, z, fx, fy, cx, cy) -> np.ndarray:
    """Project a camera-frame point onto the image plane."""
    return np.array([fx * x / z + cx, fy * y / z + cy])


def bilinear_gray(image, x: float, y: float) -> float:
    """Bilinearly interpolated gray value of ``image`` at ``(x, y)``."""
    rows, cols = np.shape(image)[:2]
    ix, iy = int(x), int(y)
    if x < 0 or y < 0 or ix + 1 >= cols or iy + 1 >= rows:
        raise IndexError(f"pixel ({x}, {y}) is outside a {cols}x{rows} image")
    xx = x - math.floor(x)
    yy = y - math.floor(y)
    return float(
        (1 - xx) * (1 - yy) * float(image[iy, ix])
        + xx * (1 - yy) * float(image[iy, ix + 1])
        + (1 - xx) * yy * float(image[iy + 1, ix])
        + xx * yy * float(image[iy + 1, ix + 1])
    )


@dataclass
class EdgeSE3ProjectDirect:
    """Photometric error of a world point projected into a gray image.

    When the projection falls within the image border the error is zero and
    the edge moves to level 1, after which its Jacobian is zero too.
    """

    x_world: np.ndarray
    fx: float
    fy: float
    cx: float
    cy: float
    image: np.ndarray
    measurement: float = 0.0
    information: np.ndarray = field(default_factory=lambda: np.eye(1))
    level: int = 0

    def __post_init__(self) -> None:
        self.x_world = np.asarray(self.x_world, dtype=float).reshape(3)
        self.measurement = float(self.measurement)
        self.information = np.asarray(self.information, dtype=float).reshape(1, 1)

    def compute_error(self, pose: SE3) -> np.ndarray:
        """Interpolated intensity minus the measured one, at the given pose."""
        x_local = pose.map(self.x_world)
        x = x_local[0] * self.fx / x_local[2] + self.cx
        y = x_local[1] * self.fy / x_local[2] + self.cy
        rows, cols = np.shape(self.image)[:2]
        if x - _BORDER < 0 or x + _BORDER > cols or y - _BORDER < 0 or y + _BORDER > rows:
            self.level = 1
            return np.zeros(1)
        return np.array([bilinear_gray(self.image, x, y) - self.measurement])

    def linearize(self, pose: SE3) -> np.ndarray:
        """1x6 Jacobian of the error with respect to a ``(omega, upsilon)`` update."""
        if self.level == 1:
            return np.zeros((1, 6))
        x, y, z = pose.map(self.x_world)
        invz = 1.0 / z
        invz_2 = invz * invz
        fx, fy = self.fx, self.fy
        u = x * fx * invz + self.cx
        v = y * fy * invz + self.cy

        jacobian_uv_ksai = np.array(
            [
                [
                    -x * y * invz_2 * fx,
                    (1 + x * x * invz_2) * fx,
                    -y * invz * fx,
                    invz * fx,
                    0.0,
                    -x * invz_2 * fx,
                ],
                [
                    -(1 + y * y * invz_2) * fy,
                    x * y * invz_2 * fy,
                    x * invz * fy,
                    0.0,
                    invz * fy,
                    -y * invz_2 * fy,
                ],
            ]
        )
        jacobian_pixel_uv = np.array(
            [
                [
                    (bilinear_gray(self.image, u + 1, v) - bilinear_gray(self.image, u - 1, v)) / 2,
                    (bilinear_gray(self.image, u, v + 1) - bilinear_gray(self.image, u, v - 1)) / 2,
                ]
            ]
        )
        return jacobian_pixel_uv @ jacobian_uv_ksai


def pose_estimation_direct(
    measurements: Sequence[Measurement], gray, K, T_cw: SE3, iterations: int = 30
) -> SE3:
    """Estimate the camera pose that best explains ``measurements`` in ``gray``."""
    K = np.asarray(K, dtype=float)
    image = np.asarray(gray)
    edges = [
        EdgeSE3ProjectDirect(
            m.pos_world, K[0, 0], K[1, 1], K[0, 2], K[1, 2], image, measurement=m.grayscale
        )
        for m in measurements
    ]
    logger.info("edges in graph: %d", len(edges))
    return optimize_pose(T_cw, edges, iterations)