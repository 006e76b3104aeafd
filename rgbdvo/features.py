"""Feature detection, description, matching and robust PnP on plain numpy images."""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass

import numpy as np

from .camera import Camera
from .edges import EdgeProjectXYZ2UVPoseOnly, optimize_pose
from .se3 import SE3

# Bresenham circle of radius 3 used by the FAST segment test, in circular order.
_CIRCLE = (
    (0, -3), (1, -3), (2, -2), (3, -1), (3, 0), (3, 1), (2, 2), (1, 3),
    (0, 3), (-1, 3), (-2, 2), (-3, 1), (-3, 0), (-3, -1), (-2, -2), (-1, -3),
)
_ARC_LENGTH = 9

_HARRIS_K = 0.04
_HARRIS_HALF_BLOCK = 3
_ORIENTATION_RADIUS = 15
_DESCRIPTOR_BYTES = 32
_PATTERN_EXTENT = 13
# Largest distance a rotated sample can reach from the keypoint, plus rounding.
_DESCRIPTOR_BORDER = int(math.ceil(_PATTERN_EXTENT * math.sqrt(2.0))) + 1

_PNP_MIN_POINTS = 6


def _make_pattern() -> np.ndarray:
    rng = np.random.default_rng(0x0B5)
    pattern = rng.normal(0.0, 31.0 / 5.0, size=(_DESCRIPTOR_BYTES * 8, 4))
    return np.clip(np.rint(pattern), -_PATTERN_EXTENT, _PATTERN_EXTENT)


_PATTERN = _make_pattern()

_yy, _xx = np.mgrid[
    -_ORIENTATION_RADIUS : _ORIENTATION_RADIUS + 1,
    -_ORIENTATION_RADIUS : _ORIENTATION_RADIUS + 1,
]
_ORIENTATION_MASK = (_xx**2 + _yy**2) <= _ORIENTATION_RADIUS**2
_ORIENTATION_X = (_xx * _ORIENTATION_MASK).astype(float)
_ORIENTATION_Y = (_yy * _ORIENTATION_MASK).astype(float)

_POPCOUNT = np.array([bin(i).count("1") for i in range(256)], dtype=np.int32)


@dataclass(frozen=True)
class KeyPoint:
    """A detected image feature; ``pt`` is ``(x, y)`` in level-0 pixels."""

    pt: tuple[float, float]
    size: float = 7.0
    angle: float = -1.0
    response: float = 0.0
    octave: int = 0


@dataclass(frozen=True)
class Match:
    """Best train descriptor for one query descriptor."""

    query_idx: int
    train_idx: int
    distance: float


def to_gray(image) -> np.ndarray:
    """Convert an RGB(A) or single-channel image to 8-bit gray."""
    arr = np.asarray(image)
    if arr.ndim == 3 and arr.shape[2] == 1:
        arr = arr[..., 0]
    if arr.ndim == 2:
        if arr.dtype == np.uint8:
            return arr
        return np.clip(np.rint(arr), 0, 255).astype(np.uint8)
    if arr.ndim == 3 and arr.shape[2] in (3, 4):
        rgb = arr[..., :3].astype(float)
        gray = rgb @ np.array([0.299, 0.587, 0.114])
        return np.clip(np.rint(gray), 0, 255).astype(np.uint8)
    raise ValueError(f"cannot convert an image of shape {arr.shape} to gray")


def _has_arc(mask: np.ndarray, length: int = _ARC_LENGTH) -> np.ndarray:
    wrapped = np.concatenate([mask, mask[: length - 1]], axis=0).astype(np.int16)
    csum = np.concatenate(
        [np.zeros((1,) + mask.shape[1:], np.int16), np.cumsum(wrapped, axis=0, dtype=np.int16)]
    )
    return ((csum[length:] - csum[:-length]) == length).any(axis=0)


def _fast_scores(gray: np.ndarray, threshold: int) -> np.ndarray:
    img = gray.astype(np.int32)
    rows, cols = img.shape
    scores = np.zeros((rows, cols), dtype=np.int64)
    if rows < 7 or cols < 7:
        return scores
    center = img[3 : rows - 3, 3 : cols - 3]
    ring = np.stack(
        [img[3 + dy : rows - 3 + dy, 3 + dx : cols - 3 + dx] for dx, dy in _CIRCLE]
    )
    brighter = ring > center + threshold
    darker = ring < center - threshold
    corner = _has_arc(brighter) | _has_arc(darker)
    score_bright = np.where(brighter, ring - center - threshold, 0).sum(axis=0)
    score_dark = np.where(darker, center - ring - threshold, 0).sum(axis=0)
    scores[3 : rows - 3, 3 : cols - 3] = np.where(
        corner, np.maximum(score_bright, score_dark), 0
    )
    return scores


def _non_max_suppress(scores: np.ndarray) -> np.ndarray:
    rows, cols = scores.shape
    padded = np.pad(scores, 1)
    neighbours = np.zeros_like(scores)
    for dy in (-1, 0, 1):
        for dx in (-1, 0, 1):
            if dx == 0 and dy == 0:
                continue
            view = padded[1 + dy : 1 + dy + rows, 1 + dx : 1 + dx + cols]
            np.maximum(neighbours, view, out=neighbours)
    return (scores > 0) & (scores >= neighbours)


def detect_fast(gray, threshold: int = 10) -> list[KeyPoint]:
    """FAST-9 corners with non-maximum suppression, in row-major order."""
    arr = np.asarray(gray)
    if arr.ndim != 2:
        raise ValueError("FAST needs a single-channel image")
    scores = _fast_scores(arr, int(threshold))
    ys, xs = np.nonzero(_non_max_suppress(scores))
    return [
        KeyPoint(pt=(float(x), float(y)), response=float(scores[y, x]))
        for y, x in zip(ys, xs)
    ]


def _resize(img: np.ndarray, rows: int, cols: int) -> np.ndarray:
    src_rows, src_cols = img.shape
    ys = np.clip((np.arange(rows) + 0.5) * src_rows / rows - 0.5, 0, src_rows - 1)
    xs = np.clip((np.arange(cols) + 0.5) * src_cols / cols - 0.5, 0, src_cols - 1)
    y0 = np.floor(ys).astype(int)
    x0 = np.floor(xs).astype(int)
    y1 = np.minimum(y0 + 1, src_rows - 1)
    x1 = np.minimum(x0 + 1, src_cols - 1)
    wy = (ys - y0)[:, None]
    wx = (xs - x0)[None, :]
    top = img[y0][:, x0] * (1 - wx) + img[y0][:, x1] * wx
    bottom = img[y1][:, x0] * (1 - wx) + img[y1][:, x1] * wx
    return top * (1 - wy) + bottom * wy


def _gaussian_blur(img: np.ndarray, sigma: float = 2.0, size: int = 7) -> np.ndarray:
    half = size // 2
    offsets = np.arange(-half, half + 1)
    kernel = np.exp(-(offsets**2) / (2.0 * sigma**2))
    kernel /= kernel.sum()
    padded = np.pad(img.astype(float), half, mode="reflect")
    rows, cols = img.shape
    horiz = sum(w * padded[:, half + o : half + o + cols] for o, w in zip(offsets, kernel))
    return sum(w * horiz[half + o : half + o + rows, :] for o, w in zip(offsets, kernel))


def _harris_responses(img: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    gx = np.zeros_like(img)
    gy = np.zeros_like(img)
    gx[:, 1:-1] = (img[:, 2:] - img[:, :-2]) / 2.0
    gy[1:-1, :] = (img[2:, :] - img[:-2, :]) / 2.0

    def box(values: np.ndarray) -> np.ndarray:
        s = np.zeros((values.shape[0] + 1, values.shape[1] + 1))
        s[1:, 1:] = values.cumsum(0).cumsum(1)
        h = _HARRIS_HALF_BLOCK
        return s[ys + h + 1, xs + h + 1] - s[ys - h, xs + h + 1] - s[ys + h + 1, xs - h] + s[ys - h, xs - h]

    a, b, c = box(gx * gx), box(gy * gy), box(gx * gy)
    return a * b - c * c - _HARRIS_K * (a + b) ** 2


def _orientation(img: np.ndarray, x: int, y: int) -> float:
    r = _ORIENTATION_RADIUS
    patch = img[y - r : y + r + 1, x - r : x + r + 1]
    m10 = float((_ORIENTATION_X * patch).sum())
    m01 = float((_ORIENTATION_Y * patch).sum())
    return math.degrees(math.atan2(m01, m10)) % 360.0


class OrbExtractor:
    """Oriented FAST keypoints over an image pyramid with steered binary descriptors."""

    edge_threshold = 31
    patch_size = 31
    fast_threshold = 20

    def __init__(self, num_features: int = 500, scale_factor: float = 1.2, levels: int = 8):
        if num_features <= 0:
            raise ValueError("num_features must be positive")
        if scale_factor <= 1.0:
            raise ValueError("scale_factor must be greater than 1")
        if levels < 1:
            raise ValueError("levels must be at least 1")
        self.num_features = int(num_features)
        self.scale_factor = float(scale_factor)
        self.levels = int(levels)

    def _pyramid(self, gray: np.ndarray) -> list[tuple[float, np.ndarray]]:
        base = gray.astype(float)
        rows, cols = base.shape
        pyramid = [(1.0, base)]
        for level in range(1, self.levels):
            scale = self.scale_factor**level
            r, c = int(round(rows / scale)), int(round(cols / scale))
            if min(r, c) < 2 * self.edge_threshold + 1:
                break
            pyramid.append((scale, _resize(base, r, c)))
        return pyramid

    def _features_per_level(self) -> list[int]:
        factor = 1.0 / self.scale_factor
        if self.levels == 1:
            return [self.num_features]
        first = self.num_features * (1 - factor) / (1 - factor**self.levels)
        counts = [int(round(first * factor**i)) for i in range(self.levels - 1)]
        counts.append(max(self.num_features - sum(counts), 0))
        return counts

    def detect(self, image) -> list[KeyPoint]:
        """Detect at most ``num_features`` oriented keypoints."""
        gray = to_gray(image)
        counts = self._features_per_level()
        edge = self.edge_threshold
        keypoints: list[KeyPoint] = []
        for level, (scale, img) in enumerate(self._pyramid(gray)):
            rows, cols = img.shape
            level_u8 = np.clip(np.rint(img), 0, 255).astype(np.uint8)
            candidates = [
                kp
                for kp in detect_fast(level_u8, self.fast_threshold)
                if edge <= kp.pt[0] < cols - edge and edge <= kp.pt[1] < rows - edge
            ]
            if not candidates or counts[level] == 0:
                continue
            xs = np.array([int(kp.pt[0]) for kp in candidates])
            ys = np.array([int(kp.pt[1]) for kp in candidates])
            responses = _harris_responses(img, xs, ys)
            order = np.argsort(-responses, kind="stable")[: counts[level]]
            for i in order:
                x, y = int(xs[i]), int(ys[i])
                keypoints.append(
                    KeyPoint(
                        pt=(x * scale, y * scale),
                        size=self.patch_size * scale,
                        angle=_orientation(img, x, y),
                        response=float(responses[i]),
                        octave=level,
                    )
                )
        return keypoints

    def compute(self, image, keypoints) -> tuple[list[KeyPoint], np.ndarray]:
        """Describe keypoints; those too close to the border are dropped.

        Returns the kept keypoints and an ``(N, 32)`` uint8 descriptor array.
        """
        gray = to_gray(image)
        smoothed = [(scale, _gaussian_blur(img)) for scale, img in self._pyramid(gray)]
        kept: list[KeyPoint] = []
        rows_out: list[np.ndarray] = []
        border = _DESCRIPTOR_BORDER
        for kp in keypoints:
            if not 0 <= kp.octave < len(smoothed):
                continue
            scale, img = smoothed[kp.octave]
            rows, cols = img.shape
            x = int(round(kp.pt[0] / scale))
            y = int(round(kp.pt[1] / scale))
            if x < border or y < border or x >= cols - border or y >= rows - border:
                continue
            theta = math.radians(kp.angle) if kp.angle >= 0 else 0.0
            c, s = math.cos(theta), math.sin(theta)
            px1, py1, px2, py2 = _PATTERN.T
            x1 = np.rint(px1 * c - py1 * s).astype(int) + x
            y1 = np.rint(px1 * s + py1 * c).astype(int) + y
            x2 = np.rint(px2 * c - py2 * s).astype(int) + x
            y2 = np.rint(px2 * s + py2 * c).astype(int) + y
            bits = img[y1, x1] < img[y2, x2]
            rows_out.append(np.packbits(bits, bitorder="little"))
            kept.append(kp)
        if not rows_out:
            return kept, np.zeros((0, _DESCRIPTOR_BYTES), dtype=np.uint8)
        return kept, np.vstack(rows_out).astype(np.uint8)


def match_hamming(query, train) -> list[Match]:
    """Brute-force nearest neighbour of every query descriptor by Hamming distance."""
    q = np.asarray(query, dtype=np.uint8)
    t = np.asarray(train, dtype=np.uint8)
    if q.size == 0 or t.size == 0:
        return []
    q = np.atleast_2d(q)
    t = np.atleast_2d(t)
    if q.shape[1] != t.shape[1]:
        raise ValueError("query and train descriptors differ in length")
    distances = _POPCOUNT[np.bitwise_xor(q[:, None, :], t[None, :, :])].sum(axis=2)
    best = distances.argmin(axis=1)
    return [
        Match(query_idx=i, train_idx=int(j), distance=float(distances[i, j]))
        for i, j in enumerate(best)
    ]


def _dlt_pose(points3d: np.ndarray, normalized: np.ndarray) -> SE3 | None:
    centroid = points3d.mean(axis=0)
    xh = np.hstack([points3d - centroid, np.ones((len(points3d), 1))])
    zeros = np.zeros_like(xh)
    u = normalized[:, :1]
    v = normalized[:, 1:2]
    a = np.vstack([np.hstack([xh, zeros, -u * xh]), np.hstack([zeros, xh, -v * xh])])
    try:
        _, _, vt = np.linalg.svd(a)
    except np.linalg.LinAlgError:
        return None
    p = vt[-1].reshape(3, 4)
    m = p[:, :3]
    if np.linalg.det(m) < 0:
        p = -p
        m = -m
    u_m, s_m, vt_m = np.linalg.svd(m)
    rotation = u_m @ vt_m
    scale = float(s_m.mean())
    if scale < 1e-12 or np.linalg.det(rotation) < 0:
        return None
    translation = p[:, 3] / scale - rotation @ centroid
    pose = SE3(rotation, translation)
    if np.any(pose.map(points3d)[:, 2] <= 0):
        return None
    return pose


def _inlier_indices(pose: SE3, points3d, points2d, K, threshold: float) -> np.ndarray:
    cam = pose.map(points3d)
    z = cam[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        u = K[0, 0] * cam[:, 0] / z + K[0, 2]
        v = K[1, 1] * cam[:, 1] / z + K[1, 2]
        err2 = (u - points2d[:, 0]) ** 2 + (v - points2d[:, 1]) ** 2
        mask = (z > 0) & (err2 <= threshold * threshold)
    return np.nonzero(mask)[0]


def _ransac_iterations(confidence: float, inlier_ratio: float, model_points: int, max_iters: int) -> int:
    p = min(max(confidence, 0.0), 1.0)
    ep = min(max(1.0 - inlier_ratio, 0.0), 1.0)
    num = max(1.0 - p, sys.float_info.min)
    denom = 1.0 - (1.0 - ep) ** model_points
    if denom < sys.float_info.min:
        return 0
    num, denom = math.log(num), math.log(denom)
    if denom >= 0 or -num >= max_iters * (-denom):
        return max_iters
    return int(round(num / denom))


def solve_pnp_ransac(
    points3d, points2d, K, iterations: int = 100, reprojection_error: float = 8.0, confidence: float = 0.99
) -> tuple[SE3, np.ndarray]:
    """Robustly estimate the pose mapping ``points3d`` onto ``points2d``.

    Returns the pose and the indices of the inlier correspondences; when no
    consensus is found the identity and an empty index array are returned.
    """
    pts3 = np.asarray(points3d, dtype=float).reshape(-1, 3)
    pts2 = np.asarray(points2d, dtype=float).reshape(-1, 2)
    K = np.asarray(K, dtype=float)
    if K.shape != (3, 3):
        raise ValueError("K must be a 3x3 matrix")
    if len(pts3) != len(pts2):
        raise ValueError("points3d and points2d differ in length")
    if len(pts3) < _PNP_MIN_POINTS:
        raise ValueError(f"at least {_PNP_MIN_POINTS} correspondences are needed")
    if iterations < 1:
        raise ValueError("iterations must be positive")

    n = len(pts3)
    homogeneous = np.hstack([pts2, np.ones((n, 1))])
    normalized = (np.linalg.inv(K) @ homogeneous.T).T[:, :2]
    rng = np.random.default_rng(0)
    best_pose: SE3 | None = None
    best_inliers = np.zeros(0, dtype=int)
    max_iters = int(iterations)
    done = 0
    while done < max_iters:
        done += 1
        sample = rng.choice(n, _PNP_MIN_POINTS, replace=False)
        pose = _dlt_pose(pts3[sample], normalized[sample])
        if pose is None:
            continue
        inliers = _inlier_indices(pose, pts3, pts2, K, reprojection_error)
        if len(inliers) > len(best_inliers):
            best_pose, best_inliers = pose, inliers
            max_iters = min(
                max_iters,
                _ransac_iterations(confidence, len(inliers) / n, _PNP_MIN_POINTS, int(iterations)),
            )

    if best_pose is None or len(best_inliers) < _PNP_MIN_POINTS:
        return SE3.identity(), np.zeros(0, dtype=int)

    camera = Camera(K[0, 0], K[1, 1], K[0, 2], K[1, 2])
    edges = [
        EdgeProjectXYZ2UVPoseOnly(point=pts3[i], camera=camera, measurement=pts2[i])
        for i in best_inliers
    ]
    refined = optimize_pose(best_pose, edges, 10)
    refined_inliers = _inlier_indices(refined, pts3, pts2, K, reprojection_error)
    if len(refined_inliers) >= len(best_inliers):
        return refined, refined_inliers
    return best_pose, best_inliers