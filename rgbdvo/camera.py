"""Pinhole RGB-D camera model."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .config import Config
from .se3 import SE3


@dataclass
class Camera:
    """Pinhole intrinsics and the depth image scale."""

    fx: float
    fy: float
    cx: float
    cy: float
    depth_scale: float = 0.0

    @classmethod
    def from_config(cls, config: Config) -> "Camera":
        """Build a camera from the ``camera.*`` parameters."""
        return cls(
            fx=config.get("camera.fx", float),
            fy=config.get("camera.fy", float),
            cx=config.get("camera.cx", float),
            cy=config.get("camera.cy", float),
            depth_scale=config.get("camera.depth_scale", float),
        )

    @property
    def K(self) -> np.ndarray:
        """The 3x3 intrinsic matrix."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]]
        )

    def world2camera(self, p_w, T_c_w: SE3) -> np.ndarray:
        """World point to camera coordinates."""
        return T_c_w * np.asarray(p_w, dtype=float)

    def camera2world(self, p_c, T_c_w: SE3) -> np.ndarray:
        """Camera point to world coordinates."""
        return T_c_w.inverse() * np.asarray(p_c, dtype=float)

    def camera2pixel(self, p_c) -> np.ndarray:
        """Project a camera-frame point onto the image."""
        x, y, z = np.asarray(p_c, dtype=float).reshape(3)
        return np.array([self.fx * x / z + self.cx, self.fy * y / z + self.cy])

    def pixel2camera(self, p_p, depth: float = 1.0) -> np.ndarray:
        """Back-project a pixel at the given depth into the camera frame."""
        u, v = np.asarray(p_p, dtype=float).reshape(2)
        return np.array(
            [(u - self.cx) * depth / self.fx, (v - self.cy) * depth / self.fy, depth]
        )

    def pixel2world(self, p_p, T_c_w: SE3, depth: float = 1.0) -> np.ndarray:
        """Back-project a pixel at the given depth into the world frame."""
        return self.camera2world(self.pixel2camera(p_p, depth), T_c_w)

    def world2pixel(self, p_w, T_c_w: SE3) -> np.ndarray:
        """Project a world point onto the image."""
        return self.camera2pixel(self.world2camera(p_w, T_c_w))