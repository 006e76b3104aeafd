"""Frame-to-frame RGB-D visual odometry with ORB features and PnP."""

from __future__ import annotations

import argparse
import enum
import logging
import math
import sys
import time
from pathlib import Path

import imageio.v3 as iio
import numpy as np

from .camera import Camera
from .config import Config
from .direct import read_associations
from .edges import EdgeProjectXYZ2UVPoseOnly, optimize_pose
from .features import KeyPoint, Match, OrbExtractor, match_hamming, solve_pnp_ransac
from .frame import Frame
from .se3 import SE3
from .slammap import Map

logger = logging.getLogger(__name__)

_MIN_PNP_POINTS = 6
_MAX_MOTION = 5.0
_MATCH_DISTANCE_FLOOR = 30.0
_DESCRIPTOR_BYTES = 32


class VOState(enum.IntEnum):
    """Tracking state of the odometry."""

    INITIALIZING = -1
    OK = 0
    LOST = 1


class VisualOdometry:
    """Tracks each new frame against the previous reference frame."""

    def __init__(self, config: Config):
        self.state = VOState.INITIALIZING
        self.map = Map()
        self.ref: Frame | None = None
        self.curr: Frame | None = None

        self.num_of_features = config.get("number_of_features", int)
        self.scale_factor = config.get("scale_factor", float)
        self.level_pyramid = config.get("level_pyramid", int)
        self.match_ratio = config.get("match_ratio", float)
        self.max_num_lost = int(config.get("max_num_lost", float))
        self.min_inliers = config.get("min_inliers", int)
        self.key_frame_min_rot = config.get("keyframe_rotation", float)
        self.key_frame_min_trans = config.get("keyframe_translation", float)
        self.map_point_erase_ratio = (
            config.get("map_point_erase_ratio", float)
            if "map_point_erase_ratio" in config
            else 0.1
        )

        self.orb = OrbExtractor(self.num_of_features, self.scale_factor, self.level_pyramid)
        self.pts_3d_ref: list[np.ndarray] = []
        self.keypoints_curr: list[KeyPoint] = []
        self.descriptors_curr = np.zeros((0, _DESCRIPTOR_BYTES), dtype=np.uint8)
        self.descriptors_ref = np.zeros((0, _DESCRIPTOR_BYTES), dtype=np.uint8)
        self.feature_matches: list[Match] = []
        self.T_c_r_estimated = SE3.identity()
        self.num_inliers = 0
        self.num_lost = 0

    def add_frame(self, frame: Frame) -> bool:
        """Process a new frame; return False when its pose estimate is rejected."""
        if self.state is VOState.INITIALIZING:
            self.state = VOState.OK
            self.curr = self.ref = frame
            self.map.insert_keyframe(frame)
            self._extract_keypoints()
            self._compute_descriptors()
            self._set_ref_3d_points()
        elif self.state is VOState.OK:
            self.curr = frame
            self._extract_keypoints()
            self._compute_descriptors()
            self._feature_matching()
            self._pose_estimation_pnp()
            if not self._check_estimated_pose():
                self.num_lost += 1
                if self.num_lost > self.max_num_lost:
                    self.state = VOState.LOST
                return False
            frame.set_pose(self.T_c_r_estimated * self.ref.T_c_w)
            self.ref = frame
            self._set_ref_3d_points()
            self.num_lost = 0
            if self._check_key_frame():
                self._add_key_frame()
        else:
            logger.info("vo has lost.")
        return True

    def _color(self) -> np.ndarray:
        if self.curr.color is None:
            raise ValueError(f"frame {self.curr.id} has no colour image")
        return self.curr.color

    def _extract_keypoints(self) -> None:
        start = time.perf_counter()
        self.keypoints_curr = self.orb.detect(self._color())
        logger.info("extract keypoints cost time: %f", time.perf_counter() - start)

    def _compute_descriptors(self) -> None:
        start = time.perf_counter()
        self.keypoints_curr, self.descriptors_curr = self.orb.compute(
            self._color(), self.keypoints_curr
        )
        logger.info("descriptor computation cost time: %f", time.perf_counter() - start)

    def _feature_matching(self) -> None:
        start = time.perf_counter()
        matches = match_hamming(self.descriptors_ref, self.descriptors_curr)
        if matches:
            min_dis = min(m.distance for m in matches)
            limit = max(min_dis * self.match_ratio, _MATCH_DISTANCE_FLOOR)
            self.feature_matches = [m for m in matches if m.distance < limit]
        else:
            self.feature_matches = []
        logger.info("good matches: %d", len(self.feature_matches))
        logger.info("match cost time: %f", time.perf_counter() - start)

    def _set_ref_3d_points(self) -> None:
        """Keep the current features that have depth, as 3D points of the reference."""
        camera = self.ref.camera
        points: list[np.ndarray] = []
        rows: list[np.ndarray] = []
        for kp, descriptor in zip(self.keypoints_curr, self.descriptors_curr):
            d = self.ref.find_depth(kp)
            if d > 0:
                points.append(camera.pixel2camera(kp.pt, d))
                rows.append(descriptor)
        self.pts_3d_ref = points
        self.descriptors_ref = (
            np.vstack(rows).astype(np.uint8)
            if rows
            else np.zeros((0, _DESCRIPTOR_BYTES), dtype=np.uint8)
        )

    def _pose_estimation_pnp(self) -> None:
        pts3d = np.array(
            [self.pts_3d_ref[m.query_idx] for m in self.feature_matches], dtype=float
        ).reshape(-1, 3)
        pts2d = np.array(
            [self.keypoints_curr[m.train_idx].pt for m in self.feature_matches], dtype=float
        ).reshape(-1, 2)
        if len(pts3d) < _MIN_PNP_POINTS:
            self.num_inliers = 0
            self.T_c_r_estimated = SE3.identity()
            logger.info("pnp inliers: %d", self.num_inliers)
            return

        pose, inliers = solve_pnp_ransac(pts3d, pts2d, self.ref.camera.K, 100, 4.0, 0.99)
        self.num_inliers = len(inliers)
        logger.info("pnp inliers: %d", self.num_inliers)

        camera = self.curr.camera if self.curr.camera is not None else self.ref.camera
        edges = [
            EdgeProjectXYZ2UVPoseOnly(point=pts3d[i], camera=camera, measurement=pts2d[i])
            for i in inliers
        ]
        self.T_c_r_estimated = optimize_pose(pose, edges, 10)

    def _check_estimated_pose(self) -> bool:
        if self.num_inliers < self.min_inliers:
            logger.info("reject because inlier is too small: %d", self.num_inliers)
            return False
        motion = float(np.linalg.norm(self.T_c_r_estimated.log()))
        if motion > _MAX_MOTION:
            logger.info("reject because motion is too large: %f", motion)
            return False
        return True

    def _check_key_frame(self) -> bool:
        d = self.T_c_r_estimated.log()
        trans, rot = d[:3], d[3:]
        return bool(
            np.linalg.norm(rot) > self.key_frame_min_rot
            or np.linalg.norm(trans) > self.key_frame_min_trans
        )

    def _add_key_frame(self) -> None:
        logger.info("adding a key-frame")
        self.map.insert_keyframe(self.curr)


def _quaternion_xyzw(rotation: np.ndarray) -> tuple[float, float, float, float]:
    r = np.asarray(rotation, dtype=float)
    diag_sum = float(r[0, 0] + r[1, 1] + r[2, 2])
    if diag_sum > 0.0:
        t = math.sqrt(diag_sum + 1.0)
        w = 0.5 * t
        t = 0.5 / t
        return (
            (r[2, 1] - r[1, 2]) * t,
            (r[0, 2] - r[2, 0]) * t,
            (r[1, 0] - r[0, 1]) * t,
            w,
        )
    i = 0
    if r[1, 1] > r[0, 0]:
        i = 1
    if r[2, 2] > r[i, i]:
        i = 2
    j = (i + 1) % 3
    k = (j + 1) % 3
    t = math.sqrt(r[i, i] - r[j, j] - r[k, k] + 1.0)
    q = [0.0, 0.0, 0.0]
    q[i] = 0.5 * t
    t = 0.5 / t
    w = (r[k, j] - r[j, k]) * t
    q[j] = (r[j, i] + r[i, j]) * t
    q[k] = (r[k, i] + r[i, k]) * t
    return q[0], q[1], q[2], w


def main(argv=None) -> int:
    """Run the odometry over a dataset and write the camera trajectory."""
    parser = argparse.ArgumentParser(
        prog="rgbdvo", description="RGB-D visual odometry over an associated dataset."
    )
    parser.add_argument("parameter_file", help="YAML file with the odometry parameters")
    parser.add_argument(
        "--output", default="trajectory.txt", help="trajectory file to write"
    )
    args = parser.parse_args(argv)

    try:
        config = Config.load(args.parameter_file)
    except FileNotFoundError as exc:
        print(exc, file=sys.stderr)
        return 1
    vo = VisualOdometry(config)

    dataset_dir = config.get("dataset_dir", str)
    print(f"dataset: {dataset_dir}")
    try:
        associations = read_associations(Path(dataset_dir) / "associate.txt")
    except FileNotFoundError:
        print("please generate the associate file called associate.txt!")
        return 1

    camera = Camera.from_config(config)
    print(f"read total {len(associations)} entries")

    with open(args.output, "w", encoding="utf-8") as trajectory:
        for rgb_time, rgb_file, _, depth_file in associations:
            try:
                color = iio.imread(Path(dataset_dir) / rgb_file)
                depth = iio.imread(Path(dataset_dir) / depth_file)
            except (OSError, ValueError):
                break
            frame = Frame.create_frame()
            frame.camera = camera
            frame.color = color
            frame.depth = depth
            frame.time_stamp = float(rgb_time)

            start = time.perf_counter()
            vo.add_frame(frame)
            print(f"VO costs time: {time.perf_counter() - start}")
            if vo.state is VOState.LOST:
                break

            T_w_c = frame.T_c_w.inverse()
            tx, ty, tz = T_w_c.translation
            qx, qy, qz, qw = _quaternion_xyzw(T_w_c.rotation)
            trajectory.write(
                f"{rgb_time} {tx:g} {ty:g} {tz:g} {qx:g} {qy:g} {qz:g} {qw:g}\n"
            )
    return 0


if __name__ == "__main__":
    sys.exit(main())