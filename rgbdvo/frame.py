"""Frames: one RGB-D image pair with its pose and camera."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, ClassVar

import numpy as np

from .camera import Camera
from .se3 import SE3

# Neighbours tried when the pixel under a keypoint has no depth: left, up, right, down.
_NEIGHBOURS = ((-1, 0), (0, -1), (1, 0), (0, 1))


def _keypoint_xy(keypoint: Any) -> tuple[float, float]:
    pt = getattr(keypoint, "pt", keypoint)
    x, y = pt
    return float(x), float(y)


@dataclass(eq=False)
class Frame:
    """An image pair taken at one instant, with the world-to-camera pose."""

    id: int = -1
    time_stamp: float = 0.0
    T_c_w: SE3 = field(default_factory=SE3.identity)
    camera: Camera | None = None
    color: np.ndarray | None = None
    depth: np.ndarray | None = None
    is_key_frame: bool = False

    _ids: ClassVar[itertools.count] = itertools.count()

    @classmethod
    def create_frame(cls) -> "Frame":
        """Create an empty frame with the next free id."""
        return cls(id=next(cls._ids))

    def _require_camera(self) -> Camera:
        if self.camera is None:
            raise ValueError(f"frame {self.id} has no camera")
        return self.camera

    def _depth_at(self, x: int, y: int) -> int:
        rows, cols = self.depth.shape[:2]
        if 0 <= x < cols and 0 <= y < rows:
            return int(self.depth[y, x])
        return 0

    def find_depth(self, keypoint) -> float:
        """Depth in metres under a keypoint, or -1.0 when none is measured.

        ``keypoint`` is anything with a ``pt`` attribute or an ``(x, y)`` pair.
        When the pixel itself holds no depth, its four neighbours are tried.
        """
        camera = self._require_camera()
        if self.depth is None:
            raise ValueError(f"frame {self.id} has no depth image")
        fx, fy = _keypoint_xy(keypoint)
        x, y = int(round(fx)), int(round(fy))
        candidates = [(x, y)] + [(x + dx, y + dy) for dx, dy in _NEIGHBOURS]
        for cx, cy in candidates:
            d = self._depth_at(cx, cy)
            if d != 0:
                return d / camera.depth_scale
        return -1.0

    def cam_center(self) -> np.ndarray:
        """Camera centre in world coordinates."""
        return self.T_c_w.inverse().translation.copy()

    def set_pose(self, T_c_w: SE3) -> None:
        """Replace the world-to-camera pose."""
        self.T_c_w = T_c_w

    def is_in_frame(self, pt_world) -> bool:
        """Whether a world point lies in front of the camera and inside the image."""
        camera = self._require_camera()
        if self.color is None:
            raise ValueError(f"frame {self.id} has no colour image")
        p_cam = camera.world2camera(pt_world, self.T_c_w)
        if p_cam[2] < 0:
            return False
        with np.errstate(divide="ignore", invalid="ignore"):
            u, v = camera.world2pixel(pt_world, self.T_c_w)
        rows, cols = self.color.shape[:2]
        return bool(u > 0 and v > 0 and u < cols and v < rows)