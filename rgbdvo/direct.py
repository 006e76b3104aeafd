"""Direct (photometric) RGB-D camera tracking against a reference frame."""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

import imageio.v3 as iio
import numpy as np

from .features import detect_fast, to_gray
from .photometric import (
    Measurement,
    pose_estimation_direct,
    project_2d_to_3d,
    project_3d_to_2d,
)
from .se3 import SE3

_CX, _CY, _FX, _FY = 325.5, 253.5, 518.0, 519.0
_DEPTH_SCALE = 1000.0
_SPARSE_BORDER = 20
_SEMIDENSE_BORDER = 10


def read_associations(path) -> list[tuple[str, str, str, str]]:
    """Read ``(rgb time, rgb file, depth time, depth file)`` entries from an association file."""
    tokens = Path(path).read_text(encoding="utf-8").split()
    return [tuple(tokens[i : i + 4]) for i in range(0, len(tokens) - 3, 4)]


def _intrinsics(K) -> tuple[float, float, float, float]:
    K = np.asarray(K, dtype=float)
    if K.shape != (3, 3):
        raise ValueError("K must be a 3x3 matrix")
    return K[0, 0], K[1, 1], K[0, 2], K[1, 2]


def select_sparse(gray, depth, keypoints, K, depth_scale) -> list[Measurement]:
    """Measurements at keypoints away from the border that have a depth reading."""
    gray = np.asarray(gray)
    depth = np.asarray(depth)
    fx, fy, cx, cy = _intrinsics(K)
    rows, cols = gray.shape[:2]
    measurements = []
    for kp in keypoints:
        x, y = getattr(kp, "pt", kp)
        if (
            x < _SPARSE_BORDER
            or y < _SPARSE_BORDER
            or x + _SPARSE_BORDER > cols
            or y + _SPARSE_BORDER > rows
        ):
            continue
        ix, iy = int(round(x)), int(round(y))
        d = int(depth[iy, ix])
        if d == 0:
            continue
        p3d = project_2d_to_3d(int(x), int(y), d, fx, fy, cx, cy, depth_scale)
        measurements.append(Measurement(p3d, float(gray[iy, ix])))
    return measurements


def select_semidense(gray, depth, K, depth_scale, threshold=50.0) -> list[Measurement]:
    """Measurements at every pixel whose gradient norm reaches ``threshold``.

    Pixels are visited column by column, top to bottom within a column.
    """
    g = np.asarray(gray).astype(np.int32)
    depth = np.asarray(depth)
    fx, fy, cx, cy = _intrinsics(K)
    rows, cols = g.shape[:2]
    b = _SEMIDENSE_BORDER
    if rows <= 2 * b or cols <= 2 * b:
        return []
    inner = (slice(b, rows - b), slice(b, cols - b))
    dx = g[b : rows - b, b + 1 : cols - b + 1] - g[b : rows - b, b - 1 : cols - b - 1]
    dy = g[b + 1 : rows - b + 1, b : cols - b] - g[b - 1 : rows - b - 1, b : cols - b]
    mask = (np.hypot(dx, dy) >= threshold) & (depth[inner] != 0)
    xs, ys = np.nonzero(mask.T)
    measurements = []
    for x, y in zip(xs + b, ys + b):
        d = int(depth[y, x])
        p3d = project_2d_to_3d(int(x), int(y), d, fx, fy, cx, cy, depth_scale)
        measurements.append(Measurement(p3d, float(g[y, x])))
    return measurements


def _as_rgb(image) -> np.ndarray:
    arr = np.asarray(image)
    if arr.ndim == 2:
        arr = np.stack([arr] * 3, axis=2)
    return np.clip(arr[..., :3], 0, 255).astype(np.uint8)


def _mark(canvas: np.ndarray, u: float, v: float, color) -> None:
    rows, cols = canvas.shape[:2]
    x, y = int(u), int(v)
    canvas[max(y - 1, 0) : min(y + 2, rows), max(x - 1, 0) : min(x + 2, cols)] = color


def _draw_result(prev_color, color, measurements, T_cw, keep_fraction, rng) -> np.ndarray:
    prev_rgb, curr_rgb = _as_rgb(prev_color), _as_rgb(color)
    rows, cols = curr_rgb.shape[:2]
    canvas = np.vstack([prev_rgb, curr_rgb])
    for m in measurements:
        if rng.random() > keep_fraction:
            continue
        u0, v0 = project_3d_to_2d(*m.pos_world, _FX, _FY, _CX, _CY)
        u1, v1 = project_3d_to_2d(*T_cw.map(m.pos_world), _FX, _FY, _CX, _CY)
        if u1 < 0 or u1 >= cols or v1 < 0 or v1 >= rows:
            continue
        shade = rng.integers(0, 256, 3).astype(np.uint8)
        _mark(canvas, u0, v0, shade)
        _mark(canvas, u1, v1 + rows, shade)
    return canvas


def main(argv=None) -> int:
    """Track the camera over a dataset relative to its first frame."""
    parser = argparse.ArgumentParser(
        prog="rgbdvo-direct", description="Direct RGB-D pose tracking against the first frame."
    )
    parser.add_argument("dataset", help="directory holding associate.txt and the images")
    parser.add_argument("--method", choices=("sparse", "semidense"), default="sparse")
    parser.add_argument("--frames", type=int, default=10, help="number of entries to process")
    parser.add_argument("--save", metavar="DIR", help="write visualisations to this directory")
    args = parser.parse_args(argv)

    dataset = Path(args.dataset)
    try:
        associations = read_associations(dataset / "associate.txt")
    except FileNotFoundError:
        print("cannot find associate.txt", file=sys.stderr)
        return 1

    K = np.array([[_FX, 0.0, _CX], [0.0, _FY, _CY], [0.0, 0.0, 1.0]])
    T_cw = SE3.identity()
    measurements: list[Measurement] = []
    prev_color = None
    rng = np.random.default_rng()
    keep_fraction = 0.2 if args.method == "sparse" else 0.5
    save_dir = Path(args.save) if args.save else None
    if save_dir is not None:
        save_dir.mkdir(parents=True, exist_ok=True)

    for index, (_, rgb_file, _, depth_file) in enumerate(associations[: args.frames]):
        print(f"*********** loop {index} ************")
        try:
            color = iio.imread(dataset / rgb_file)
            depth = iio.imread(dataset / depth_file)
        except (OSError, ValueError):
            continue
        gray = to_gray(color)
        if index == 0:
            if args.method == "sparse":
                keypoints = detect_fast(gray, 10)
                print(f"key.size={len(keypoints)}")
                measurements = select_sparse(gray, depth, keypoints, K, _DEPTH_SCALE)
            else:
                measurements = select_semidense(gray, depth, K, _DEPTH_SCALE)
            print(f"add total {len(measurements)} measurements.")
            prev_color = np.array(color, copy=True)
            continue

        start = time.perf_counter()
        T_cw = pose_estimation_direct(measurements, gray, K, T_cw, 30)
        elapsed = time.perf_counter() - start
        print(f"direct method costs time: {elapsed} seconds.")
        print(f"Tcw={np.array2string(T_cw.matrix())}")

        if save_dir is not None and prev_color is not None:
            canvas = _draw_result(prev_color, color, measurements, T_cw, keep_fraction, rng)
            iio.imwrite(save_dir / f"result_{index:04d}.png", canvas)
    return 0


if __name__ == "__main__":
    sys.exit(main())