# rgbdvo

Visual odometry for RGB-D image sequences. You give it colour images paired
with depth images, and it estimates how the camera moves from one frame to the
next. Everything runs on plain numpy arrays. Images are read with imageio.

## Modules

- `rgbdvo.se3`: the rigid transform `SE3`, with `identity`, `exp`, `log`,
  `inverse`, `map`, `matrix` and composition through `*`. It also holds the
  helpers `hat`, `so3_exp` and `so3_log`. Twists are ordered
  `(translation, rotation)`.
- `rgbdvo.config`: `Config`, a read-only parameter store.
  `Config.load(filename)` reads a YAML file. A leading `%YAML` header line is
  skipped and `!!opencv-matrix` nodes are accepted.
  `get(key, cast)` returns a value and `in` tests whether a key is present.
- `rgbdvo.camera`: `Camera(fx, fy, cx, cy, depth_scale)`, a pinhole camera.
  - It converts points with `world2camera`, `camera2world`, `camera2pixel`,
    `pixel2camera`, `pixel2world` and `world2pixel`.
  - `K` gives the intrinsic matrix.
  - `Camera.from_config` reads the `camera.*` keys.
- `rgbdvo.frame`: `Frame`, one image pair together with its world-to-camera
  pose `T_c_w`.
  - `create_frame()` hands out increasing ids.
  - `find_depth(keypoint)` returns the depth in metres. If the pixel itself has
    no depth it tries the four neighbours, and it returns `-1.0` when none of
    them has a depth either.
  - It also has `cam_center()`, `set_pose()` and `is_in_frame()`.
- `rgbdvo.mappoint`: `MapPoint`, a landmark. `create_map_point()` makes one at
  the origin with the next id.
- `rgbdvo.slammap`: `Map`, which holds key-frames and landmarks in dicts keyed
  by id.
- `rgbdvo.edges`: error terms for pose estimation.
  - 3D-3D: `EdgeProjectXYZRGBD` and `EdgeProjectXYZRGBDPoseOnly`.
  - 3D-2D: `EdgeProjectXYZ2UVPoseOnly`.
  - `apply_update(pose, update)` applies a left update `(omega, upsilon)` to a
    pose.
  - `optimize_pose(pose, edges, iterations)` refines a single pose by
    Levenberg–Marquardt.
- `rgbdvo.photometric`: tools for direct tracking.
  - The `Measurement` type.
  - Projection helpers `project_2d_to_3d` and `project_3d_to_2d`.
  - `bilinear_gray`, which interpolates a gray value.
  - The photometric edge `EdgeSE3ProjectDirect`. A projection that falls
    within 4 pixels of the image border gives a zero error.
  - `pose_estimation_direct(measurements, gray, K, T_cw, iterations)`.
- `rgbdvo.features`: feature detection and matching.
  - `to_gray` converts an image to gray.
  - `detect_fast(gray, threshold)` finds FAST-9 corners.
  - `OrbExtractor` detects oriented keypoints over an image pyramid and
    computes 32-byte binary descriptors.
  - `match_hamming` does brute-force matching and returns `Match` objects.
  - `solve_pnp_ransac` estimates a pose robustly and returns the pose together
    with the inlier indices.
- `rgbdvo.direct`: direct tracking of a sequence against its first frame.
  - `read_associations` reads `associate.txt`.
  - `select_sparse` and `select_semidense` choose the measurements.
  - It provides the `rgbdvo-direct` command.
- `rgbdvo.vo`: the feature-based tracker.
  - `VisualOdometry(config)` has `add_frame(frame)`, which returns `False` when
    it rejects a frame's pose estimate.
  - The tracking state is held in `VOState`: `INITIALIZING`, `OK` or `LOST`.
  - It provides the `rgbdvo` command.

## Installation

```
pip install .
```

To install the test dependencies as well:

```
pip install .[test]
```

## Datasets

A dataset is a directory that contains an `associate.txt` file. The file is
made of whitespace-separated entries with four fields each:

```
<rgb timestamp> <rgb file> <depth timestamp> <depth file>
```

File names are relative to the dataset directory. Depth values are raw
integers, and dividing one by the depth scale gives metres.

## Command line

### Feature-based odometry

```
rgbdvo parameters.yaml --output trajectory.txt
```

The parameter file must provide these keys:

- `dataset_dir`
- the camera: `camera.fx`, `camera.fy`, `camera.cx`, `camera.cy` and
  `camera.depth_scale`
- the tracker: `number_of_features`, `scale_factor`, `level_pyramid`,
  `match_ratio`, `max_num_lost`, `min_inliers`, `keyframe_rotation` and
  `keyframe_translation`

`map_point_erase_ratio` is optional and defaults to 0.1.

The command processes the frames in order and prints the time each one takes.
For every frame it writes a line to the output file (by default
`trajectory.txt`):

```
<rgb timestamp> tx ty tz qx qy qz qw
```

The line gives the camera-to-world pose of that frame. The command stops at
the first image that cannot be read, and it stops when the tracker becomes
`LOST`. Tracking is lost after more than `max_num_lost` rejected frames in a
row.

### Direct tracking

```
rgbdvo-direct path/to/dataset --method sparse --frames 10 --save out/
```

The first readable entry becomes the reference frame, and the command selects
measurements from it:

- `--method sparse` (the default) uses FAST corners that lie at least 20
  pixels from the border and have a depth reading.
- `--method semidense` uses every pixel at least 10 pixels from the border
  whose gradient norm is 50 or more and that has a depth reading.

Each later entry, up to `--frames` entries in all, is aligned photometrically
to the reference. The command prints the time taken and the estimated 4x4
`Tcw`. With `--save DIR`, it writes a PNG for each aligned frame that shows the
reference and the current image stacked, with some of the measurements marked.
The intrinsics are fixed: fx 518, fy 519, cx 325.5, cy 253.5, and a depth
scale of 1000.

## Library use

```python
import numpy as np
from rgbdvo.camera import Camera
from rgbdvo.se3 import SE3

camera = Camera(fx=518.0, fy=519.0, cx=325.5, cy=253.5, depth_scale=1000.0)
pose = SE3.exp(np.array([0.1, 0.0, 0.0, 0.0, 0.02, 0.0]))
point = np.array([0.2, -0.1, 1.5])
pixel = camera.world2pixel(point, pose)
depth = camera.world2camera(point, pose)[2]
back = camera.pixel2world(pixel, pose, depth)   # close to point
```

To feed frames to the tracker yourself:

```python
from rgbdvo.camera import Camera
from rgbdvo.config import Config
from rgbdvo.frame import Frame
from rgbdvo.vo import VisualOdometry, VOState

config = Config.load("parameters.yaml")
vo = VisualOdometry(config)
camera = Camera.from_config(config)
for color, depth in image_pairs:          # numpy arrays
    frame = Frame.create_frame()
    frame.camera, frame.color, frame.depth = camera, color, depth
    vo.add_frame(frame)
    if vo.state is VOState.LOST:
        break
```

## What it does not do

- There is no interactive display. Neither command opens a window. The only
  visual output is the PNG files that `rgbdvo-direct --save` writes.
- The tracker works frame to frame against the last accepted frame. It puts
  key-frames into its `Map`, but it never creates landmarks. There is no local
  mapping, loop closure or relocalisation. Once it is `LOST` it stays lost.

## Tests

```
pytest
```