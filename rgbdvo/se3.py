"""Rigid-body transforms: SO(3) helpers and the SE(3) group."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

_SMALL_ANGLE = 1e-8
_NEAR_PI = 3.0


def _vector(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.size != size or (arr.ndim > 1 and max(arr.shape) != size):
        raise ValueError(f"{name} must have {size} elements, got shape {arr.shape}")
    return arr.reshape(size)


def _matrix3(value, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.shape != (3, 3):
        raise ValueError(f"{name} must be a 3x3 matrix, got shape {arr.shape}")
    return arr


def _vee(skew: np.ndarray) -> np.ndarray:
    return np.array([skew[2, 1], skew[0, 2], skew[1, 0]])


def _diagonal_sum(m: np.ndarray) -> float:
    return float(np.diagonal(m).sum())


def hat(v) -> np.ndarray:
    """Return the skew-symmetric matrix of a 3-vector, so that hat(a) @ b == a x b."""
    x, y, z = _vector(v, 3, "v")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def so3_exp(omega) -> np.ndarray:
    """Rotation matrix for the rotation vector ``omega`` (Rodrigues' formula)."""
    omega = _vector(omega, 3, "omega")
    theta = float(np.linalg.norm(omega))
    k = hat(omega)
    if theta < _SMALL_ANGLE:
        return np.eye(3) + k + 0.5 * (k @ k)
    return (
        np.eye(3)
        + (np.sin(theta) / theta) * k
        + ((1.0 - np.cos(theta)) / theta**2) * (k @ k)
    )


def so3_log(rotation) -> np.ndarray:
    """Rotation vector (angle in [0, pi]) of a rotation matrix."""
    r = _matrix3(rotation, "rotation")
    cos_theta = float(np.clip((_diagonal_sum(r) - 1.0) / 2.0, -1.0, 1.0))
    theta = float(np.arccos(cos_theta))
    skew_part = _vee(r - r.T)
    if theta < _SMALL_ANGLE:
        return 0.5 * skew_part
    if theta > _NEAR_PI:
        symmetric = 0.5 * (r + r.T)
        outer = (symmetric - cos_theta * np.eye(3)) / (1.0 - cos_theta)
        k = int(np.argmax(np.diag(outer)))
        axis = outer[:, k] / np.sqrt(max(outer[k, k], 0.0))
        axis /= np.linalg.norm(axis)
        if axis @ skew_part < 0.0:
            axis = -axis
        return theta * axis
    return (theta / (2.0 * np.sin(theta))) * skew_part


def _left_jacobian(omega: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(omega))
    w = hat(omega)
    if theta < _SMALL_ANGLE:
        return np.eye(3) + 0.5 * w + (w @ w) / 6.0
    return (
        np.eye(3)
        + ((1.0 - np.cos(theta)) / theta**2) * w
        + ((theta - np.sin(theta)) / theta**3) * (w @ w)
    )


@dataclass(frozen=True, eq=False)
class SE3:
    """A rigid transform ``p -> R p + t``.

    The tangent vector used by :meth:`exp` and :meth:`log` is ordered
    translation first, rotation second: ``(upsilon, omega)``.
    """

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __init__(self, rotation=None, translation=None):
        r = np.eye(3) if rotation is None else _matrix3(rotation, "rotation").copy()
        t = np.zeros(3) if translation is None else _vector(translation, 3, "translation").copy()
        r.setflags(write=False)
        t.setflags(write=False)
        object.__setattr__(self, "rotation", r)
        object.__setattr__(self, "translation", t)

    @classmethod
    def identity(cls) -> "SE3":
        """The identity transform."""
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def exp(cls, xi) -> "SE3":
        """Transform for the twist ``xi = (upsilon, omega)``."""
        xi = _vector(xi, 6, "xi")
        upsilon, omega = xi[:3], xi[3:]
        return cls(so3_exp(omega), _left_jacobian(omega) @ upsilon)

    def log(self) -> np.ndarray:
        """Twist ``(upsilon, omega)`` of this transform."""
        omega = so3_log(self.rotation)
        upsilon = np.linalg.solve(_left_jacobian(omega), self.translation)
        return np.concatenate([upsilon, omega])

    def inverse(self) -> "SE3":
        """The inverse transform."""
        r_t = self.rotation.T
        return SE3(r_t, -(r_t @ self.translation))

    def map(self, point) -> np.ndarray:
        """Apply the transform to one point (3,) or to an array of points (N, 3)."""
        arr = np.asarray(point, dtype=float)
        if arr.ndim == 2 and arr.shape[1] == 3:
            return arr @ self.rotation.T + self.translation
        return self.rotation @ _vector(arr, 3, "point") + self.translation

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3(
                self.rotation @ other.rotation,
                self.rotation @ other.translation + self.translation,
            )
        if isinstance(other, (np.ndarray, list, tuple)):
            return self.map(other)
        return NotImplemented

    def matrix(self) -> np.ndarray:
        """The homogeneous 4x4 matrix."""
        m = np.eye(4)
        m[:3, :3] = self.rotation
        m[:3, 3] = self.translation
        return m

    def __repr__(self) -> str:
        return f"SE3(rotation={self.rotation.tolist()}, translation={self.translation.tolist()})"