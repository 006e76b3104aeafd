"""Geometric error terms for pose optimisation and a pose-only Levenberg-Marquardt solver.

Pose updates follow the convention ``(omega, upsilon)``: rotation first,
translation second, applied on the left of the current estimate.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from .camera import Camera
from .se3 import SE3, hat

_INITIAL_LAMBDA_FACTOR = 1e-5
_MAX_TRIALS = 10


def _as_vector(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.size != size:
        raise ValueError(f"{name} must have {size} elements, got {arr.size}")
    return arr


def _as_information(value, size: int) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.shape != (size, size):
        raise ValueError(f"information must be a {size}x{size} matrix, got shape {arr.shape}")
    return arr


def _pose_jacobian_of_error(q: np.ndarray) -> np.ndarray:
    """Jacobian of ``measurement - q`` with respect to a left pose update."""
    return np.hstack([hat(q), -np.eye(3)])


def apply_update(pose: SE3, update) -> SE3:
    """Left-multiply ``pose`` by the exponential of ``update = (omega, upsilon)``."""
    update = _as_vector(update, 6, "update")
    return SE3.exp(np.concatenate([update[3:], update[:3]])) * pose


@dataclass
class EdgeProjectXYZRGBD:
    """3D-3D error between a point vertex and a pose vertex: ``m - T p``."""

    measurement: np.ndarray = field(default_factory=lambda: np.zeros(3))
    information: np.ndarray = field(default_factory=lambda: np.eye(3))

    def __post_init__(self) -> None:
        self.measurement = _as_vector(self.measurement, 3, "measurement")
        self.information = _as_information(self.information, 3)

    def compute_error(self, point, pose: SE3) -> np.ndarray:
        """Residual for the given point estimate and pose estimate."""
        return self.measurement - pose.map(_as_vector(point, 3, "point"))

    def linearize(self, point, pose: SE3) -> tuple[np.ndarray, np.ndarray]:
        """Jacobians of the residual: (3x3 w.r.t. the point, 3x6 w.r.t. the pose)."""
        q = pose.map(_as_vector(point, 3, "point"))
        return -pose.rotation.copy(), _pose_jacobian_of_error(q)


@dataclass
class EdgeProjectXYZRGBDPoseOnly:
    """3D-3D error against a fixed point: ``m - T point``."""

    point: np.ndarray
    measurement: np.ndarray = field(default_factory=lambda: np.zeros(3))
    information: np.ndarray = field(default_factory=lambda: np.eye(3))
    level: int = 0

    def __post_init__(self) -> None:
        self.point = _as_vector(self.point, 3, "point")
        self.measurement = _as_vector(self.measurement, 3, "measurement")
        self.information = _as_information(self.information, 3)

    def compute_error(self, pose: SE3) -> np.ndarray:
        """Residual at the given pose."""
        return self.measurement - pose.map(self.point)

    def linearize(self, pose: SE3) -> np.ndarray:
        """3x6 Jacobian of the residual with respect to the pose."""
        return _pose_jacobian_of_error(pose.map(self.point))


@dataclass
class EdgeProjectXYZ2UVPoseOnly:
    """Reprojection error of a fixed 3D point: ``m - pi(T point)``."""

    point: np.ndarray
    camera: Camera
    measurement: np.ndarray = field(default_factory=lambda: np.zeros(2))
    information: np.ndarray = field(default_factory=lambda: np.eye(2))
    level: int = 0

    def __post_init__(self) -> None:
        self.point = _as_vector(self.point, 3, "point")
        self.measurement = _as_vector(self.measurement, 2, "measurement")
        self.information = _as_information(self.information, 2)

    def compute_error(self, pose: SE3) -> np.ndarray:
        """Pixel residual at the given pose."""
        return self.measurement - self.camera.camera2pixel(pose.map(self.point))

    def linearize(self, pose: SE3) -> np.ndarray:
        """2x6 Jacobian of the residual with respect to the pose."""
        x, y, z = pose.map(self.point)
        z_2 = z * z
        fx, fy = self.camera.fx, self.camera.fy
        return np.array(
            [
                [
                    x * y / z_2 * fx,
                    -(1 + x * x / z_2) * fx,
                    y / z * fx,
                    -1.0 / z * fx,
                    0.0,
                    x / z_2 * fx,
                ],
                [
                    (1 + y * y / z_2) * fy,
                    -x * y / z_2 * fy,
                    -x / z * fy,
                    0.0,
                    -1.0 / z * fy,
                    y / z_2 * fy,
                ],
            ]
        )


def _chi2(pose: SE3, edges: Sequence[Any]) -> float:
    total = 0.0
    for edge in edges:
        e = np.atleast_1d(edge.compute_error(pose))
        total += float(e @ np.atleast_2d(edge.information) @ e)
    return total


def optimize_pose(pose: SE3, edges: Sequence[Any], iterations: int = 10) -> SE3:
    """Refine a single pose against unary edges with Levenberg-Marquardt.

    Each edge provides ``compute_error(pose)``, ``linearize(pose)`` and an
    ``information`` matrix. Only edges at level 0 when the call starts take part.
    """
    active = [edge for edge in edges if getattr(edge, "level", 0) == 0]
    if not active or iterations <= 0:
        return pose

    chi = _chi2(pose, active)
    lam: float | None = None
    nu = 2.0
    for _ in range(iterations):
        hessian = np.zeros((6, 6))
        gradient = np.zeros(6)
        for edge in active:
            e = np.atleast_1d(edge.compute_error(pose))
            jac = np.atleast_2d(edge.linearize(pose))
            omega = np.atleast_2d(edge.information)
            hessian += jac.T @ omega @ jac
            gradient += jac.T @ omega @ e

        if lam is None:
            lam = _INITIAL_LAMBDA_FACTOR * float(np.max(np.diag(hessian)))
        if lam <= 0.0 or not np.any(gradient):
            break

        for _trial in range(_MAX_TRIALS):
            delta = np.linalg.solve(hessian + lam * np.eye(6), -gradient)
            candidate = apply_update(pose, delta)
            new_chi = _chi2(candidate, active)
            predicted = float(delta @ (lam * delta - gradient))
            rho = (chi - new_chi) / predicted if predicted > 0.0 else -1.0
            if rho > 0.0 and math.isfinite(new_chi):
                pose, chi = candidate, new_chi
                lam *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                nu = 2.0
                break
            lam *= nu
            nu *= 2.0
        else:
            break
    return pose